"""
In-memory store for crowdsourced gate status reports and train delay reports.

Reports are append-only: older reports are never deleted here, callers simply
ask for the ones inside their recency window.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .utils import ensure_utc, get_current_utc_datetime
from .data_validator import REPORTABLE_STATUSES
from prediction_service.models import DelayReport, GateStatus, Report

logger = logging.getLogger(__name__)

DEFAULT_REPORT_WINDOW_MINUTES = 10

class CrowdReportStore:
    """Report source backed by process memory"""

    def __init__(self):
        self._reports:Dict[str, List[Report]] = defaultdict(list)
        self._delay_reports:Dict[str, List[DelayReport]] = defaultdict(list)

    def submit_report(self, gate_id:str, status:GateStatus, user_id:Optional[str] = None,
                      now:Optional[datetime] = None) -> Report:
        """Records an open/closed observation for a gate"""
        if not gate_id:
            raise ValueError("gate_id is required")
        status = GateStatus(status)
        if status.value not in REPORTABLE_STATUSES:
            raise ValueError(f"Only open/closed can be reported (got {status.value})")
        report = Report(gate_id=gate_id, status=status,
                        timestamp=ensure_utc(now or get_current_utc_datetime()), user_id=user_id)
        self._reports[gate_id].append(report)
        logger.info(f"Status reported for gate {gate_id}: {status.value}")
        return report

    def submit_delay_report(self, train_number:str, delay_minutes:int, user_id:Optional[str] = None,
                            now:Optional[datetime] = None) -> DelayReport:
        """Records an eyewitness delay estimate for a train"""
        if not train_number:
            raise ValueError("train_number is required")
        report = DelayReport(train_number=train_number, delay_minutes=int(delay_minutes),
                             timestamp=ensure_utc(now or get_current_utc_datetime()), user_id=user_id)
        self._delay_reports[train_number].append(report)
        logger.info(f"Delay reported for train {train_number}: {delay_minutes} min")
        return report

    async def list_recent_reports(self, gate_id:str, within_minutes:int = DEFAULT_REPORT_WINDOW_MINUTES,
                                  now:Optional[datetime] = None) -> List[Report]:
        cutoff = ensure_utc(now or get_current_utc_datetime()) - timedelta(minutes=within_minutes)
        return [r for r in self._reports.get(gate_id, []) if r.timestamp > cutoff]

    def get_delay_reports(self, train_number:str) -> List[DelayReport]:
        return list(self._delay_reports.get(train_number, []))

    def all_reports(self) -> List[Report]:
        return [r for reports in self._reports.values() for r in reports]
