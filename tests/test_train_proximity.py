from datetime import datetime, timezone

import pytest

from prediction_service import train_proximity
from prediction_service.formatting import DATA_SOURCE_LABELS, TIMETABLE_LABEL
from prediction_service.models import (DelayEntry, DelaySource, Direction, GateStatus,
                                       PredictionSource)


def at(hour, minute, day=19):
    return datetime(2026, 10, day, hour, minute, tzinfo=timezone.utc)


# Thresholds

@pytest.mark.parametrize("moment,expected", [
    (at(8, 0), 3),        # morning peak
    (at(18, 30), 3),      # evening peak
    (at(14, 0), 0),
    (at(23, 0), -2),      # late night
    (at(5, 59), -2),
    (at(6, 0), 0),
    (at(14, 0, day=24), -1),  # Saturday
    (at(8, 0, day=25), 2),    # Sunday morning
])
def test_time_of_day_adjustment(moment, expected):
    assert train_proximity.time_of_day_adjustment(moment) == expected


def test_closure_threshold_per_train_class():
    moment = at(14, 0)
    assert train_proximity.closure_threshold("RAJ", moment) == 15
    assert train_proximity.closure_threshold("exp", moment) == 10
    assert train_proximity.closure_threshold("MEMU", moment) == 5
    assert train_proximity.closure_threshold("GARIB", moment) == 8
    assert train_proximity.closure_threshold(None, moment) == 8


def test_closure_threshold_never_below_one():
    assert train_proximity.closure_threshold("DMU", at(14, 0), time_adjustment=-10) == 1


# Single train outcomes (14:00 on a weekday, no offset)

def test_train_due_now_closes_gate(now, make_train):
    prediction = train_proximity.evaluate([make_train(scheduled="14:00")], now)
    assert prediction.status == GateStatus.CLOSED
    assert prediction.confidence == pytest.approx(0.85)
    assert prediction.source == PredictionSource.PROXIMITY
    assert prediction.message == "Train Express 12779 expected now"
    assert prediction.data_source == DATA_SOURCE_LABELS[DelaySource.SCHEDULE]
    assert prediction.train_info["minutes_away"] == 0
    assert prediction.train_info["threshold"] == 10


def test_train_inside_grace_period_still_closes(now, make_train):
    prediction = train_proximity.evaluate([make_train(scheduled="13:58")], now)
    assert prediction.status == GateStatus.CLOSED


def test_train_just_beyond_threshold_is_a_warning(now, make_train):
    prediction = train_proximity.evaluate([make_train(scheduled="14:12")], now)
    assert prediction.status == GateStatus.WARNING
    assert prediction.confidence == pytest.approx(0.75)
    assert prediction.message == "Train Express 12779 arriving in 12 min"


def test_train_outside_warning_buffer_leaves_gate_open(now, make_train):
    prediction = train_proximity.evaluate([make_train(scheduled="14:16")], now)
    assert prediction.status == GateStatus.OPEN
    assert prediction.confidence == pytest.approx(0.70)
    assert prediction.message == "Next train Express 12779 at 14:16 (in 16 min)"


def test_passed_train_leaves_gate_open(now, make_train):
    prediction = train_proximity.evaluate([make_train(scheduled="13:55")], now)
    assert prediction.status == GateStatus.OPEN
    assert prediction.message == "No trains expected in the next 20 minutes"


def test_no_train_in_lookup_window(now, make_train):
    assert train_proximity.evaluate([make_train(scheduled="14:25")], now) is None
    assert train_proximity.evaluate([], now) is None


def test_live_delay_shifts_arrival_and_raises_confidence(now, make_train):
    train = make_train(scheduled="13:55", expected_arrival="14:03", delay_minutes=8)
    prediction = train_proximity.evaluate([train], now)
    assert prediction.status == GateStatus.CLOSED
    assert prediction.confidence == pytest.approx(0.90)
    assert prediction.message == "Train Express 12779 arriving in 3 min (delayed 8 min)"
    assert prediction.data_source == DATA_SOURCE_LABELS[DelaySource.RAILRADAR]
    assert prediction.train_info["expected_at"] == "14:03"


def test_train_at_station_closes_with_high_confidence(now, make_train):
    train = make_train(scheduled="13:40", has_arrived=True)
    prediction = train_proximity.evaluate([train], now)
    assert prediction.status == GateStatus.CLOSED
    assert prediction.confidence == pytest.approx(0.95)
    assert prediction.message == "Train Express 12779 is at the station"


def test_departed_and_cancelled_trains_are_ignored(now, make_train):
    trains = [make_train("1", scheduled="14:01", has_arrived=True, has_departed=True),
              make_train("2", scheduled="14:02", is_cancelled=True)]
    assert train_proximity.evaluate(trains, now) is None


def test_direction_filter(now, make_train):
    down = make_train(scheduled="14:02", direction=Direction.DOWN)
    assert train_proximity.evaluate([down], now, direction=Direction.UP) is None
    assert train_proximity.evaluate([down], now, direction=Direction.DOWN).status == GateStatus.CLOSED
    assert train_proximity.evaluate([down], now, direction=Direction.BOTH).status == GateStatus.CLOSED
    undirected = make_train(scheduled="14:02")
    assert train_proximity.evaluate([undirected], now, direction=Direction.UP).status == GateStatus.CLOSED


def test_arrival_after_midnight(make_train):
    # Late night offset brings EXP down to 8 minutes
    prediction = train_proximity.evaluate([make_train(scheduled="00:03")], at(23, 55))
    assert prediction.status == GateStatus.CLOSED
    assert prediction.train_info["minutes_away"] == 8


def test_same_train_closes_at_peak_but_warns_off_peak(make_train):
    peak = train_proximity.evaluate([make_train(scheduled="08:12")], at(8, 0))
    off_peak = train_proximity.evaluate([make_train(scheduled="14:12")], at(14, 0))
    assert peak.status == GateStatus.CLOSED
    assert off_peak.status == GateStatus.WARNING


def test_train_without_usable_time_is_skipped(now, make_train):
    train = make_train(scheduled=None, expected_arrival=None)
    assert train_proximity.evaluate([train], now) is None


def test_nearest_train_decides(now, make_train):
    trains = [make_train("far", scheduled="14:18", train_type="RAJ"),
              make_train("near", scheduled="14:04", train_type="EXP")]
    prediction = train_proximity.evaluate(trains, now)
    assert prediction.status == GateStatus.CLOSED
    assert prediction.train_info["number"] == "near"


# Back-to-back

def test_back_to_back_trains_warn(now, make_train):
    trains = [make_train("A", scheduled="14:05", train_type="MEMU"),
              make_train("B", scheduled="14:12", train_type="MEMU")]
    prediction = train_proximity.evaluate(trains, now, time_adjustment=-2)
    assert prediction.status == GateStatus.WARNING
    assert prediction.confidence == pytest.approx(0.80)
    assert prediction.train_info["back_to_back"] is True
    assert prediction.train_info["number"] == "A"
    assert prediction.train_info["following_train"] == "B"
    assert prediction.train_info["gap_minutes"] == 7


def test_closure_takes_precedence_over_back_to_back(now, make_train):
    trains = [make_train("A", scheduled="14:03"), make_train("B", scheduled="14:10")]
    prediction = train_proximity.evaluate(trains, now)
    assert prediction.status == GateStatus.CLOSED
    assert prediction.train_info["back_to_back"] is False


def test_same_train_listed_twice_is_not_back_to_back(now, make_train):
    trains = [make_train("A", scheduled="14:16"), make_train("A", scheduled="14:18")]
    prediction = train_proximity.evaluate(trains, now)
    assert prediction.status == GateStatus.OPEN


def test_widely_spaced_trains_are_not_back_to_back(now, make_train):
    trains = [make_train("A", scheduled="13:59", train_type="MEMU"),
              make_train("B", scheduled="14:19", train_type="MEMU")]
    assert train_proximity.find_back_to_back(
        [train_proximity.resolve_arrival(t, now, 0) for t in trains]) is None


# Delay resolution

def test_resolved_delay_overrides_candidate_figure(now, make_train):
    train = make_train(scheduled="13:55", delay_minutes=2)
    delays = {"12779": DelayEntry(delay_minutes=6, source=DelaySource.CROWDSOURCE)}
    arrival = train_proximity.resolve_arrival(train, now, 0, delays)
    assert arrival.diff == 1
    assert arrival.delay_source == DelaySource.CROWDSOURCE


def test_schedule_entry_does_not_mask_live_delay(now, make_train):
    train = make_train(scheduled="13:55", expected_arrival="14:03", delay_minutes=8)
    delays = {"12779": DelayEntry(delay_minutes=0, source=DelaySource.SCHEDULE)}
    arrival = train_proximity.resolve_arrival(train, now, 0, delays)
    assert arrival.delay_minutes == 8
    assert arrival.is_live


def test_expected_time_used_when_schedule_missing(now, make_train):
    arrival = train_proximity.resolve_arrival(make_train(scheduled=None, expected_arrival="14:06"), now, 0)
    assert arrival.diff == 6


# Single timetable train

def test_timetable_train_far_off_is_open(now, make_train):
    prediction = train_proximity.evaluate_single(make_train(scheduled="14:20"), now)
    assert prediction.status == GateStatus.OPEN
    assert prediction.confidence == pytest.approx(0.55)
    assert prediction.source == PredictionSource.TIMETABLE
    assert prediction.data_source == TIMETABLE_LABEL


def test_timetable_train_due_closes(now, make_train):
    prediction = train_proximity.evaluate_single(make_train(scheduled="14:05"), now)
    assert prediction.status == GateStatus.CLOSED
    assert prediction.confidence == pytest.approx(0.65)
