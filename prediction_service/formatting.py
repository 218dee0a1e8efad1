"""Display helpers: labels, emoji and short text fragments for predictions."""
from typing import Optional, Union

from .models import DelaySource, GateStatus
from . import config

STATUS_EMOJI = {
    GateStatus.OPEN: "🟢",
    GateStatus.CLOSED: "🔴",
    GateStatus.WARNING: "🟡",
    GateStatus.UNKNOWN: "⚪",
}

DATA_SOURCE_LABELS = {
    DelaySource.RAILRADAR: "🛰️ Rail Radar",
    DelaySource.CROWDSOURCE: "👥 User Report",
    DelaySource.SCHEDULE: "📅 Schedule",
}

TIMETABLE_LABEL = "📅 Timetable"
NO_DATA_LABEL = "❔ No data"


def _coerce_source(source:Union[DelaySource, str, None]) -> DelaySource:
    try:
        return DelaySource(source)
    except ValueError:
        return DelaySource.SCHEDULE

def data_source_label(source:Union[DelaySource, str, None]) -> str:
    return DATA_SOURCE_LABELS[_coerce_source(source)]

def status_label(status:GateStatus) -> str:
    return f"{STATUS_EMOJI.get(status, '⚪')} {status.value.upper()}"

def pluralize(count:int, word:str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"

def delay_suffix(delay_minutes:Optional[int]) -> str:
    """' (delayed 7 min)' for late trains, empty otherwise"""
    if delay_minutes and delay_minutes > 0:
        return f" (delayed {delay_minutes} min)"
    return ""

def agreement_label(confidence:float) -> str:
    return "strong" if confidence > config.STRONG_AGREEMENT_CONFIDENCE else "moderate"
