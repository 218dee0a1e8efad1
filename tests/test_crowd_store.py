from datetime import timedelta

import pytest

from data_pipeline.crowd_store import CrowdReportStore
from prediction_service.models import GateStatus


@pytest.mark.asyncio
async def test_recent_reports_are_scoped_to_gate_and_window(now):
    store = CrowdReportStore()
    store.submit_report("G1", GateStatus.CLOSED, user_id="u1", now=now - timedelta(minutes=2))
    store.submit_report("G1", "open", now=now - timedelta(minutes=12))
    store.submit_report("G2", GateStatus.OPEN, now=now)
    recent = await store.list_recent_reports("G1", now=now)
    assert [(r.status, r.user_id) for r in recent] == [(GateStatus.CLOSED, "u1")]
    assert len(store.all_reports()) == 3


def test_only_open_or_closed_can_be_reported(now):
    store = CrowdReportStore()
    with pytest.raises(ValueError):
        store.submit_report("G1", GateStatus.WARNING, now=now)
    with pytest.raises(ValueError):
        store.submit_report("", GateStatus.OPEN, now=now)
    with pytest.raises(ValueError):
        store.submit_report("G1", "ajar", now=now)


def test_delay_reports(now):
    store = CrowdReportStore()
    store.submit_delay_report("12779", "15", now=now)
    assert store.get_delay_reports("12779")[0].delay_minutes == 15
    assert store.get_delay_reports("17415") == []
    with pytest.raises(ValueError):
        store.submit_delay_report("", 5, now=now)
