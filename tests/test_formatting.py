from prediction_service.formatting import (agreement_label, data_source_label, delay_suffix, pluralize,
                                           status_label)
from prediction_service.models import DelaySource, GateStatus


def test_data_source_label_accepts_enum_or_string():
    assert data_source_label(DelaySource.RAILRADAR) == "🛰️ Rail Radar"
    assert data_source_label("crowdsource") == "👥 User Report"
    assert data_source_label("carrier pigeon") == "📅 Schedule"


def test_text_fragments():
    assert pluralize(1, "user") == "1 user"
    assert pluralize(4, "user") == "4 users"
    assert delay_suffix(7) == " (delayed 7 min)"
    assert delay_suffix(0) == ""
    assert delay_suffix(-3) == ""
    assert status_label(GateStatus.CLOSED) == "🔴 CLOSED"


def test_agreement_label():
    assert agreement_label(0.9) == "strong"
    assert agreement_label(0.85) == "moderate"
