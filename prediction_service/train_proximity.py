"""
Train-proximity evaluator.

Turns the candidate trains for a station (schedule + delay + optional live
progress) into a closed / warning / open judgement for a gate. Closure
thresholds depend on the train class and are shifted by a time-of-day offset.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .models import (DelayEntry, DelaySource, Direction, GateStatus, Prediction,
                     PredictionSource, TrainCandidate)
from .formatting import TIMETABLE_LABEL, data_source_label, delay_suffix
from . import config
from data_pipeline.utils import (minutes_since_midnight, minutes_to_hhmm, time_to_minutes,
                                 wrap_minutes_diff)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfidenceProfile:
    """Confidence assigned to each outcome for a given quality of arrival data"""
    closed:float
    warning:float
    open:float

LIVE_PROFILE = ConfidenceProfile(config.CLOSED_CONFIDENCE_LIVE, config.WARNING_CONFIDENCE_LIVE,
                                 config.OPEN_CONFIDENCE_LIVE)
SCHEDULE_PROFILE = ConfidenceProfile(config.CLOSED_CONFIDENCE, config.WARNING_CONFIDENCE,
                                     config.OPEN_CONFIDENCE)
TIMETABLE_PROFILE = ConfidenceProfile(config.TIMETABLE_CLOSED_CONFIDENCE, config.TIMETABLE_WARNING_CONFIDENCE,
                                      config.TIMETABLE_OPEN_CONFIDENCE)

@dataclass(frozen=True)
class TrainArrival:
    """A candidate train resolved against the current time"""
    train:TrainCandidate
    adjusted_minutes:int # expected arrival, minutes since midnight
    diff:int             # minutes from now, negative once past
    delay_minutes:int
    delay_source:DelaySource
    threshold:int

    @property
    def at_station(self) -> bool:
        return self.train.has_arrived and not self.train.has_departed

    @property
    def is_live(self) -> bool:
        return self.delay_source != DelaySource.SCHEDULE

    def to_info(self) -> Dict[str, object]:
        return {"number": self.train.number,
                "name": self.train.name,
                "train_type": self.train.train_type,
                "minutes_away": self.diff,
                "expected_at": minutes_to_hhmm(self.adjusted_minutes),
                "delay_minutes": self.delay_minutes,
                "delay_source": self.delay_source.value,
                "threshold": self.threshold,
                "stations_away": self.train.stations_away,
                "back_to_back": False}


# Thresholds
def time_of_day_adjustment(now:datetime) -> int:
    """Minutes added to every closure threshold at this time of day"""
    current = minutes_since_midnight(now)
    offset = 0
    for start, end, window_offset in config.TIME_OF_DAY_OFFSETS:
        if start <= end:
            in_window = start <= current < end
        else:
            in_window = current >= start or current < end
        if in_window:
            offset += window_offset
    if now.weekday() >= 5:
        offset += config.WEEKEND_OFFSET
    return offset

def base_closure_threshold(train_type:Optional[str]) -> int:
    key = (train_type or "UNKNOWN").strip().upper()
    return config.CLOSURE_THRESHOLDS.get(key, config.DEFAULT_CLOSURE_THRESHOLD)

def closure_threshold(train_type:Optional[str], now:datetime, time_adjustment:Optional[int] = None) -> int:
    """Minutes before arrival at which a train of this class closes the gate"""
    if time_adjustment is None:
        time_adjustment = time_of_day_adjustment(now)
    return max(config.MIN_CLOSURE_THRESHOLD, base_closure_threshold(train_type) + time_adjustment)


# Candidate resolution
def directions_conflict(gate_direction:Optional[Direction], train_direction:Optional[Direction]) -> bool:
    if gate_direction in (None, Direction.BOTH) or train_direction in (None, Direction.BOTH):
        return False
    return gate_direction != train_direction

def _resolve_delay(train:TrainCandidate, delays:Optional[Dict[str, DelayEntry]]) -> Tuple[int, DelaySource]:
    entry = delays.get(train.number) if delays else None
    has_live = bool(train.expected_arrival or train.delay_minutes)
    # A schedule-only entry must not mask the candidate's own live figure
    if entry is not None and not (entry.source == DelaySource.SCHEDULE and has_live):
        return entry.delay_minutes, DelaySource(entry.source)
    if has_live:
        return train.delay_minutes, DelaySource.RAILRADAR
    return 0, DelaySource.SCHEDULE

def resolve_arrival(train:TrainCandidate, now:datetime, time_adjustment:int,
                    delays:Optional[Dict[str, DelayEntry]] = None) -> Optional[TrainArrival]:
    """Adjusts a candidate's scheduled time by its delay; None if it has no usable time"""
    delay_minutes, delay_source = _resolve_delay(train, delays)
    scheduled = time_to_minutes(train.scheduled_arrival)
    if scheduled is not None:
        adjusted = scheduled + delay_minutes
    else:
        adjusted = time_to_minutes(train.expected_arrival)
        if adjusted is None:
            logger.debug(f"Skipping train {train.number}: no parseable arrival time")
            return None
    diff = wrap_minutes_diff(adjusted - minutes_since_midnight(now))
    return TrainArrival(train=train, adjusted_minutes=adjusted % (24 * 60), diff=diff,
                        delay_minutes=delay_minutes, delay_source=delay_source,
                        threshold=closure_threshold(train.train_type, now, time_adjustment))


# Decision policy
def _judge(arrival:TrainArrival, profile:ConfidenceProfile) -> Optional[Tuple[GateStatus, float, str]]:
    train = arrival.train
    suffix = delay_suffix(arrival.delay_minutes)
    if arrival.at_station:
        return GateStatus.CLOSED, config.AT_STATION_CONFIDENCE, f"Train {train.name} is at the station"
    if -config.GRACE_PERIOD_MINUTES <= arrival.diff <= arrival.threshold:
        if arrival.diff <= 0:
            message = f"Train {train.name} expected now{suffix}"
        else:
            message = f"Train {train.name} arriving in {arrival.diff} min{suffix}"
        return GateStatus.CLOSED, profile.closed, message
    if arrival.threshold < arrival.diff <= arrival.threshold + config.WARNING_BUFFER_MINUTES:
        return GateStatus.WARNING, profile.warning, f"Train {train.name} arriving in {arrival.diff} min{suffix}"
    return None

def _profile_for(arrival:TrainArrival) -> ConfidenceProfile:
    return LIVE_PROFILE if arrival.is_live else SCHEDULE_PROFILE

def find_back_to_back(arrivals:Iterable[TrainArrival]) -> Optional[Tuple[TrainArrival, TrainArrival]]:
    """First pair of upcoming trains arriving too close together for the gate to reopen"""
    upcoming = sorted((a for a in arrivals
                       if a.diff >= -config.GRACE_PERIOD_MINUTES and not a.train.has_departed),
                      key=lambda a: a.diff)
    for first, second in zip(upcoming, upcoming[1:]):
        if first.train.number == second.train.number:
            continue
        if second.diff - first.diff < config.BACK_TO_BACK_GAP_MINUTES:
            return first, second
    return None

def _prediction(status:GateStatus, confidence:float, message:str, arrival:TrainArrival,
                source:PredictionSource, **info) -> Prediction:
    train_info = arrival.to_info()
    train_info.update(info)
    if source == PredictionSource.TIMETABLE:
        label = TIMETABLE_LABEL
    else:
        label = data_source_label(arrival.delay_source)
    return Prediction(status=status, confidence=confidence, source=source, message=message,
                      data_source=label, train_info=train_info)

def _open_prediction(arrivals:List[TrainArrival], source:PredictionSource,
                     profile:Optional[ConfidenceProfile] = None) -> Prediction:
    upcoming = [a for a in arrivals if a.diff > 0]
    if not upcoming:
        last = min(arrivals, key=lambda a: abs(a.diff))
        confidence = (profile or _profile_for(last)).open
        return _prediction(GateStatus.OPEN, confidence,
                           f"No trains expected in the next {config.LOOKUP_WINDOW_MINUTES} minutes",
                           last, source)
    nxt = min(upcoming, key=lambda a: a.diff)
    confidence = (profile or _profile_for(nxt)).open
    message = (f"Next train {nxt.train.name} at {minutes_to_hhmm(nxt.adjusted_minutes)} "
               f"(in {nxt.diff} min){delay_suffix(nxt.delay_minutes)}")
    return _prediction(GateStatus.OPEN, confidence, message, nxt, source)

def evaluate(trains:Iterable[TrainCandidate], now:datetime, direction:Optional[Direction] = None,
             time_adjustment:Optional[int] = None,
             delays:Optional[Dict[str, DelayEntry]] = None) -> Optional[Prediction]:
    """
    Judges gate status from the trains expected at the gate's station.

    Args:
        trains: Candidate trains; cancelled or departed trains are ignored.
        now: Current local time at the station.
        direction: The gate's direction tag; trains running the other way are ignored.
        time_adjustment: Overrides the time-of-day threshold offset when given.
        delays: Resolved delays keyed by train number, taking precedence over
                each candidate's own delay figure.

    Returns:
        A proximity Prediction, or None if no train is within the lookup window.
    """
    if time_adjustment is None:
        time_adjustment = time_of_day_adjustment(now)

    arrivals:List[TrainArrival] = []
    for train in trains:
        if train.is_cancelled or train.has_departed:
            continue
        if directions_conflict(direction, train.direction):
            continue
        arrival = resolve_arrival(train, now, time_adjustment, delays)
        if arrival is None:
            continue
        if not arrival.at_station and abs(arrival.diff) > config.LOOKUP_WINDOW_MINUTES:
            continue
        arrivals.append(arrival)

    if not arrivals:
        logger.debug("No trains within the lookup window")
        return None

    # Nearest in time first; first match wins
    arrivals.sort(key=lambda a: abs(a.diff))
    primary = None
    for arrival in arrivals:
        judged = _judge(arrival, _profile_for(arrival))
        if judged is not None:
            primary = (arrival, judged)
            break

    if primary is not None and primary[1][0] == GateStatus.CLOSED:
        arrival, (status, confidence, message) = primary
        return _prediction(status, confidence, message, arrival, PredictionSource.PROXIMITY)

    pair = find_back_to_back(arrivals)
    if pair is not None:
        first, second = pair
        gap = second.diff - first.diff
        message = (f"Trains {first.train.name} and {second.train.name} arriving {gap} min apart "
                   f"(next in {max(first.diff, 0)} min)")
        return _prediction(GateStatus.WARNING, config.BACK_TO_BACK_CONFIDENCE, message, first,
                           PredictionSource.PROXIMITY, back_to_back=True,
                           following_train=second.train.number, gap_minutes=gap)

    if primary is not None:
        arrival, (status, confidence, message) = primary
        return _prediction(status, confidence, message, arrival, PredictionSource.PROXIMITY)

    return _open_prediction(arrivals, PredictionSource.PROXIMITY)

def evaluate_single(train:TrainCandidate, now:datetime, time_adjustment:Optional[int] = None,
                    profile:ConfidenceProfile = TIMETABLE_PROFILE,
                    source:PredictionSource = PredictionSource.TIMETABLE) -> Optional[Prediction]:
    """Applies the same thresholds to one scheduled train; None if its time is unusable"""
    if time_adjustment is None:
        time_adjustment = time_of_day_adjustment(now)
    arrival = resolve_arrival(train, now, time_adjustment)
    if arrival is None:
        return None
    judged = _judge(arrival, profile)
    if judged is not None:
        status, confidence, message = judged
        # Being at the station is a direct observation, a timetable never is
        confidence = min(confidence, profile.closed)
        return _prediction(status, confidence, message, arrival, source)
    return _open_prediction([arrival], source, profile)
