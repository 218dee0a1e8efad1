from datetime import timedelta

import pytest

from prediction_service.models import GateStatus, Prediction, PredictionSource
from prediction_service.prediction_log import PredictionLog


def make_prediction(status=GateStatus.CLOSED, source=PredictionSource.PROXIMITY, confidence=0.85):
    return Prediction(status=status, confidence=confidence, source=source, message="test", data_source="test")


def test_verify_attaches_ground_truth(gate, now):
    log = PredictionLog()
    assert log.log_prediction(gate, make_prediction(), now)
    assert log.verify_prediction("G1", GateStatus.CLOSED, now + timedelta(minutes=5))
    entry = log.entries[0]
    assert entry.is_verified
    assert entry.is_correct is True


def test_verify_targets_latest_unverified_entry(gate, now):
    log = PredictionLog()
    log.log_prediction(gate, make_prediction(GateStatus.OPEN), now)
    log.log_prediction(gate, make_prediction(GateStatus.CLOSED), now + timedelta(minutes=1))
    log.verify_prediction("G1", GateStatus.OPEN, now + timedelta(minutes=2))
    first, second = log.entries
    assert not first.is_verified
    assert second.is_correct is False


def test_warning_counts_as_open(gate, now):
    log = PredictionLog()
    log.log_prediction(gate, make_prediction(GateStatus.WARNING), now)
    log.verify_prediction("G1", "open", now)
    assert log.entries[0].is_correct is True


def test_verification_outside_window_is_ignored(gate, now):
    log = PredictionLog(verification_window=timedelta(minutes=30))
    log.log_prediction(gate, make_prediction(), now)
    assert not log.verify_prediction("G1", GateStatus.CLOSED, now + timedelta(minutes=31))
    assert not log.verify_prediction("G9", GateStatus.CLOSED, now)
    assert not log.entries[0].is_verified


def test_log_is_bounded(gate, now):
    log = PredictionLog(max_entries=3)
    for i in range(5):
        log.log_prediction(gate, make_prediction(), now + timedelta(minutes=i))
    assert len(log) == 3


def test_logging_failures_do_not_raise(now):
    assert PredictionLog().log_prediction(None, make_prediction(), now) is False
    assert PredictionLog().verify_prediction("G1", "sideways", now) is False


def test_accuracy_summary(gate, now):
    log = PredictionLog()
    log.log_prediction(gate, make_prediction(GateStatus.CLOSED, PredictionSource.PROXIMITY), now)
    log.verify_prediction("G1", GateStatus.CLOSED, now)
    log.log_prediction(gate, make_prediction(GateStatus.OPEN, PredictionSource.PROXIMITY), now)
    log.verify_prediction("G1", GateStatus.CLOSED, now)
    log.log_prediction(gate, make_prediction(GateStatus.OPEN, PredictionSource.CROWDSOURCE, 0.9), now)
    log.verify_prediction("G1", GateStatus.OPEN, now)
    log.log_prediction(gate, make_prediction(), now)

    summary = log.accuracy_summary()
    assert summary["logged"] == 4
    assert summary["verified"] == 3
    assert summary["accuracy"] == pytest.approx(2 / 3)
    assert summary["by_source"]["proximity"] == {"accuracy": pytest.approx(0.5), "verified": 2}
    assert summary["by_source"]["crowdsource"]["accuracy"] == pytest.approx(1.0)


def test_accuracy_summary_without_verifications(gate, now):
    log = PredictionLog()
    log.log_prediction(gate, make_prediction(), now)
    summary = log.accuracy_summary()
    assert summary["accuracy"] is None
    assert summary["by_source"] == {}


def test_prediction_rejects_out_of_range_confidence():
    with pytest.raises(ValueError):
        make_prediction(confidence=1.2)
