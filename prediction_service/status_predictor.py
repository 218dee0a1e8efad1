"""
Core prediction orchestrator.

Runs an ordered chain of prediction stages and returns the first usable
answer:
  1. crowd consensus (only when confidence > 0.7)
  2. train proximity from live/adjusted arrival times
  3. static timetable fallback
  4. 'unknown', flagging that a user report would be valuable

A stage that fails (feed timeout, malformed data) is treated as having no
opinion; the caller always receives exactly one fully populated Prediction.
"""
import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence

from .models import (Gate, GateStatus, Prediction, PredictionQuality, PredictionSource, Report,
                     StationContext, TrainCandidate, TrainProgress)
from .consensus import get_consensus_gate_status, is_consensus_trustworthy
from .formatting import NO_DATA_LABEL, agreement_label, data_source_label, pluralize
from .prediction_log import PredictionLog
from . import config
from . import train_proximity
from data_pipeline.api_clients import expected_arrival_from_progress
from data_pipeline.data_validator import parse_reports
from data_pipeline.utils import ensure_utc, format_age, get_local_now, time_it_async

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionRequest:
    """Everything a stage may look at for one gate in one refresh cycle"""
    gate:Gate
    context:StationContext
    reports:Sequence[Report]
    now:datetime

    @property
    def station_code(self) -> str:
        return self.gate.station_code or self.context.station_code


class ConsensusStage:
    """Crowd reports, accepted only when agreement is clear"""
    name = "consensus"

    async def try_predict(self, request:PredictionRequest) -> Optional[Prediction]:
        consensus = get_consensus_gate_status(request.gate.id, request.reports, request.now)
        if not is_consensus_trustworthy(consensus):
            if consensus is not None:
                logger.debug(f"Discarding weak consensus for gate {request.gate.id} "
                             f"({consensus.confidence:.2f})")
            return None
        age_text = format_age(ensure_utc(request.now) - consensus.latest_timestamp)
        return Prediction(
            status=consensus.status,
            confidence=consensus.confidence,
            source=PredictionSource.CROWDSOURCE,
            message=(f"{pluralize(consensus.report_count, 'user')} reported "
                     f"{consensus.status.value.upper()} ({age_text})"),
            data_source=data_source_label("crowdsource"),
            quality=PredictionQuality(report_count=consensus.report_count,
                                      latest_update=age_text,
                                      agreement=agreement_label(consensus.confidence)),
        )


class ProximityStage:
    """
    Train proximity judgement.

    With a train feed attached, the nearest few candidates are enriched with
    live station-by-station progress (fetched in parallel) so a train standing
    at the station is recognised directly.
    """
    name = "proximity"

    def __init__(self, train_feed:Optional[Any] = None, max_progress_lookups:int = 3):
        self.train_feed = train_feed
        self.max_progress_lookups = max_progress_lookups

    async def _with_live_progress(self, request:PredictionRequest) -> List[TrainCandidate]:
        trains = list(request.context.trains)
        if self.train_feed is None or not trains:
            return trains
        adjustment = train_proximity.time_of_day_adjustment(request.now)
        nearby = []
        for train in trains:
            arrival = train_proximity.resolve_arrival(train, request.now, adjustment, request.context.delays)
            if arrival is not None and abs(arrival.diff) <= config.LOOKUP_WINDOW_MINUTES:
                nearby.append(arrival)
        nearby.sort(key=lambda a: abs(a.diff))
        targets = [a.train.number for a in nearby[:self.max_progress_lookups]]
        if not targets:
            return trains
        results = await asyncio.gather(
            *(self.train_feed.get_train_progress(number, request.station_code, now=request.now)
              for number in targets),
            return_exceptions=True)
        progress_by_number = {}
        for number, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Progress lookup failed for train {number}: {result}")
            elif result is not None:
                progress_by_number[number] = result
        return [apply_progress(t, progress_by_number[t.number], request.now)
                if t.number in progress_by_number else t for t in trains]

    async def try_predict(self, request:PredictionRequest) -> Optional[Prediction]:
        trains = await self._with_live_progress(request)
        return train_proximity.evaluate(trains, request.now, direction=request.gate.direction,
                                        delays=request.context.delays)


class TimetableStage:
    """Static timetable: the single next scheduled train, without live delays"""
    name = "timetable"

    def __init__(self, timetable:Optional[Any] = None):
        self.timetable = timetable

    async def try_predict(self, request:PredictionRequest) -> Optional[Prediction]:
        if self.timetable is None or not request.station_code:
            return None
        train = await self.timetable.next_scheduled_arrival(request.station_code, request.now)
        if train is None:
            return None
        if train_proximity.directions_conflict(request.gate.direction, train.direction):
            logger.debug(f"Next timetable train {train.number} runs the other way at gate {request.gate.id}")
            return None
        return train_proximity.evaluate_single(train, request.now)


def apply_progress(train:TrainCandidate, progress:TrainProgress, now:datetime) -> TrainCandidate:
    """Candidate updated with live progress (presence at station, delay, class)"""
    train_type = train.train_type
    if train_type in ("", "UNKNOWN") and progress.train_type:
        train_type = progress.train_type
    return dataclasses.replace(
        train,
        train_type=train_type,
        has_arrived=train.has_arrived or progress.has_reached,
        has_departed=train.has_departed or progress.has_passed,
        delay_minutes=progress.delay_minutes,
        expected_arrival=expected_arrival_from_progress(progress, now) or train.expected_arrival,
        stations_away=progress.stations_away if progress.stations_away is not None else train.stations_away,
    )

def unknown_prediction() -> Prediction:
    return Prediction(status=GateStatus.UNKNOWN, confidence=config.UNKNOWN_CONFIDENCE,
                      source=PredictionSource.DEFAULT,
                      message="No recent data for this gate. Report its status to help others!",
                      data_source=NO_DATA_LABEL, needs_report=True)


class StatusPredictor:
    """
    Predicts gate status by running prediction stages in priority order.

    Args:
        stages: Custom stage chain; each stage exposes async try_predict(request).
        timetable: Static timetable for the default chain's fallback stage.
        train_feed: Live feed used by the default chain to fetch train progress.
        prediction_log: When given, every prediction is logged best-effort.
    """

    def __init__(self, stages:Optional[Iterable[Any]] = None, timetable:Optional[Any] = None,
                 train_feed:Optional[Any] = None, prediction_log:Optional[PredictionLog] = None):
        if stages is None:
            stages = [ConsensusStage(), ProximityStage(train_feed), TimetableStage(timetable)]
        self.stages = list(stages)
        self.prediction_log = prediction_log

    @time_it_async
    async def predict(self, gate:Gate, context:Optional[StationContext], reports:Optional[Iterable[Any]],
                      now:Optional[datetime] = None) -> Prediction:
        """
        Predicts the status of one gate.

        Args:
            gate: The gate; a missing gate or gate id is a programming error.
            context: Trains and resolved delays for the gate's station.
            reports: Recent crowd reports (Report objects or raw dicts);
                     malformed ones are skipped.
            now: Station-local time; defaults to the configured local clock.

        Returns:
            Exactly one Prediction, never partial.
        """
        if gate is None or not getattr(gate, "id", None):
            raise ValueError("predict() requires a gate with an id")
        if context is None:
            context = StationContext(station_code=gate.station_code or "")
        now = now or get_local_now(config.LOCAL_TIMEZONE)
        request = PredictionRequest(gate=gate, context=context,
                                    reports=parse_reports(reports, gate.id), now=now)

        prediction = None
        for stage in self.stages:
            stage_name = getattr(stage, "name", type(stage).__name__)
            try:
                prediction = await stage.try_predict(request)
            except Exception as e:
                logger.warning(f"Stage '{stage_name}' failed for gate {gate.id}: {e}", exc_info=True)
                prediction = None
            if prediction is not None:
                logger.debug(f"Gate {gate.id}: {prediction.status.value} from stage '{stage_name}'")
                break

        if prediction is None:
            prediction = unknown_prediction()

        if self.prediction_log is not None:
            self.prediction_log.log_prediction(gate, prediction, now)
        return prediction
