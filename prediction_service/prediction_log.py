"""
Prediction log for offline accuracy verification.

Every prediction shown to users can be logged; when a user later reports the
gate's actual state, that observation is attached to the most recent
unverified prediction for the gate. Logging is best-effort and never raises.
"""
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

import pandas as pd

from .models import Gate, GateStatus, Prediction
from . import config
from data_pipeline.utils import ensure_utc, get_current_utc_datetime

logger = logging.getLogger(__name__)

@dataclass
class PredictionLogEntry:
    gate_id:str
    station_code:Optional[str]
    status:GateStatus
    confidence:float
    source:str
    logged_at:datetime
    actual_status:Optional[GateStatus] = None
    verified_at:Optional[datetime] = None

    @property
    def is_verified(self) -> bool:
        return self.actual_status is not None

    @property
    def is_correct(self) -> Optional[bool]:
        if self.actual_status is None:
            return None
        # A warning means "closing soon", so the gate is still physically open
        predicted = GateStatus.OPEN if self.status == GateStatus.WARNING else self.status
        return predicted == self.actual_status


class PredictionLog:
    """Bounded in-memory log of recent predictions"""

    def __init__(self, max_entries:int = config.PREDICTION_LOG_MAX_ENTRIES,
                 verification_window:timedelta = config.VERIFICATION_WINDOW):
        self.verification_window = verification_window
        self._entries:Deque[PredictionLogEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[PredictionLogEntry]:
        return list(self._entries)

    def log_prediction(self, gate:Gate, prediction:Prediction, now:Optional[datetime] = None) -> bool:
        """Appends a prediction; returns False (and logs) instead of raising on failure"""
        try:
            entry = PredictionLogEntry(gate_id=gate.id, station_code=gate.station_code,
                                       status=prediction.status, confidence=prediction.confidence,
                                       source=prediction.source.value,
                                       logged_at=ensure_utc(now or get_current_utc_datetime()))
            self._entries.append(entry)
            return True
        except Exception as e:
            logger.debug(f"Failed to log prediction for gate {getattr(gate, 'id', None)}: {e}")
            return False

    def verify_prediction(self, gate_id:str, actual_status:GateStatus, now:Optional[datetime] = None) -> bool:
        """
        Attaches ground truth to the latest unverified prediction for a gate.

        Returns:
            True if an entry inside the verification window was updated.
        """
        try:
            actual = GateStatus(actual_status)
            now = ensure_utc(now or get_current_utc_datetime())
            for entry in reversed(self._entries):
                if entry.gate_id != gate_id or entry.is_verified:
                    continue
                if now - entry.logged_at > self.verification_window:
                    return False
                entry.actual_status = actual
                entry.verified_at = now
                logger.debug(f"Verified prediction for gate {gate_id}: predicted "
                             f"{entry.status.value}, actual {actual.value}")
                return True
        except Exception as e:
            logger.debug(f"Failed to verify prediction for gate {gate_id}: {e}")
        return False

    def to_dataframe(self) -> pd.DataFrame:
        columns = ["gate_id", "station_code", "status", "confidence", "source", "logged_at",
                   "actual_status", "correct"]
        rows = [{"gate_id": e.gate_id,
                 "station_code": e.station_code,
                 "status": e.status.value,
                 "confidence": e.confidence,
                 "source": e.source,
                 "logged_at": e.logged_at,
                 "actual_status": e.actual_status.value if e.actual_status else None,
                 "correct": e.is_correct} for e in self._entries]
        return pd.DataFrame(rows, columns=columns)

    def accuracy_summary(self) -> Dict[str, Any]:
        """Overall and per-source accuracy of verified predictions"""
        df = self.to_dataframe()
        verified = df[df["actual_status"].notna()]
        summary:Dict[str, Any] = {"logged": int(len(df)), "verified": int(len(verified)),
                                  "accuracy": None, "by_source": {}}
        if verified.empty:
            return summary
        correct = verified["correct"].astype(bool)
        summary["accuracy"] = float(correct.mean())
        by_source = correct.groupby(verified["source"]).agg(["mean", "count"])
        summary["by_source"] = {source: {"accuracy": float(row["mean"]), "verified": int(row["count"])}
                                for source, row in by_source.iterrows()}
        return summary
