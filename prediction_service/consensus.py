"""
Consensus engine: turns recent crowdsourced reports for one gate into a single
age-weighted vote with a confidence value.

Each report inside the recency window votes for its status with a weight that
decays linearly from 1 (just submitted) to 0 (at the window boundary). Reports
outside the window are invisible to the vote.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Dict

import numpy as np

from .models import ConsensusResult, GateStatus, Report
from . import config
from data_pipeline.utils import ensure_utc

logger = logging.getLogger(__name__)

RECENCY_WINDOW = config.GATE_REPORT_WINDOW


def _report_age(report:Report, now:datetime) -> timedelta:
    age = ensure_utc(now) - ensure_utc(report.timestamp)
    # Small future offsets come from client clock skew; count them as brand new
    return max(age, timedelta(0))

def get_consensus_gate_status(gate_id:str, reports:Iterable[Report], now:datetime,
                              window:timedelta = RECENCY_WINDOW) -> Optional[ConsensusResult]:
    """
    Computes the age-weighted consensus status for a gate.

    Args:
        gate_id: Gate whose reports are considered; reports for other gates are ignored.
        reports: Candidate reports, in any order.
        now: Reference time for report ages.
        window: Recency window; reports at least this old carry no vote.

    Returns:
        ConsensusResult, or None if no report for the gate is inside the window.
        Ties between open and closed resolve to open.
    """
    votes:Dict[GateStatus, float] = {GateStatus.OPEN: 0.0, GateStatus.CLOSED: 0.0}
    total_weight = 0.0
    report_count = 0
    latest_timestamp:Optional[datetime] = None
    window_seconds = window.total_seconds()

    for report in reports:
        if report.gate_id != gate_id:
            continue
        if report.status not in votes:
            logger.debug(f"Ignoring report with non-vote status {report.status} for gate {gate_id}")
            continue
        age = _report_age(report, now)
        if age >= window:
            continue
        weight = 1.0 - (age.total_seconds() / window_seconds)
        votes[report.status] += weight
        total_weight += weight
        report_count += 1
        ts = ensure_utc(report.timestamp)
        if latest_timestamp is None or ts > latest_timestamp:
            latest_timestamp = ts

    if report_count == 0 or total_weight <= 0:
        return None

    open_weight = votes[GateStatus.OPEN]
    closed_weight = votes[GateStatus.CLOSED]
    status = GateStatus.CLOSED if closed_weight > open_weight else GateStatus.OPEN
    confidence = float(np.clip(max(open_weight, closed_weight) / total_weight, 0.0, 1.0))
    logger.debug(f"Consensus for gate {gate_id}: {status.value} ({confidence:.2f}) from {report_count} reports")
    return ConsensusResult(status=status, confidence=confidence, report_count=report_count,
                           latest_timestamp=latest_timestamp, open_weight=open_weight,
                           closed_weight=closed_weight)

def is_consensus_trustworthy(result:Optional[ConsensusResult]) -> bool:
    """A near 50/50 split is not strong enough to override train data"""
    return result is not None and result.confidence > config.CONSENSUS_ACCEPT_CONFIDENCE

def report_confidence(data_age:timedelta, source:str) -> float:
    """
    Confidence of a single observation given its age and source.

    Crowd reports decay over the gate report window, live feed data over the
    train delay window; static schedule data does not decay.
    """
    source = getattr(source, "value", source)
    max_ages = {
        "crowdsource": config.GATE_REPORT_WINDOW,
        "railradar": config.TRAIN_DELAY_WINDOW,
    }
    base = config.SOURCE_BASE_CONFIDENCE.get(source, 0.5)
    max_age = max_ages.get(source)
    if max_age is None:
        return base
    if data_age > max_age:
        return 0.0
    decay_factor = 1.0 - (max(data_age, timedelta(0)) / max_age)
    return base * max(0.0, decay_factor)
