"""
Data models for gates, crowd reports, train candidates and the resulting
status predictions.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class GateStatus(str, Enum):
    """Status of a level-crossing gate."""
    OPEN = "open"
    CLOSED = "closed"
    WARNING = "warning"
    UNKNOWN = "unknown"

class Direction(str, Enum):
    """Direction of travel a gate (or train) is tagged with."""
    UP = "up"
    DOWN = "down"
    BOTH = "both"

class DelaySource(str, Enum):
    """Where a train delay figure came from."""
    RAILRADAR = "railradar"
    CROWDSOURCE = "crowdsource"
    SCHEDULE = "schedule"

class PredictionSource(str, Enum):
    """Which stage of the predictor produced a Prediction."""
    CROWDSOURCE = "crowdsource"
    PROXIMITY = "proximity"
    TIMETABLE = "timetable"
    DEFAULT = "default"


@dataclass(frozen=True)
class Location:
    """Represents a geographic coordinate"""
    latitude:float
    longitude:float

@dataclass(frozen=True)
class Gate:
    """A railway level crossing"""
    id:str
    name:str
    location:Optional[Location] = None
    station_code:Optional[str] = None
    direction:Optional[Direction] = None

@dataclass(frozen=True)
class Report:
    """A single crowdsourced open/closed observation"""
    gate_id:str
    status:GateStatus # OPEN or CLOSED only
    timestamp:datetime
    user_id:Optional[str] = None

@dataclass(frozen=True)
class DelayReport:
    """A crowdsourced train delay observation"""
    train_number:str
    delay_minutes:int
    timestamp:datetime
    user_id:Optional[str] = None

@dataclass(frozen=True)
class TrainCandidate:
    """Snapshot of a train expected at the gate's station"""
    number:str
    name:str
    train_type:str = "UNKNOWN"
    scheduled_arrival:Optional[str] = None # "HH:MM" at the station
    expected_arrival:Optional[str] = None  # live "HH:MM" if known
    delay_minutes:int = 0
    has_arrived:bool = False
    has_departed:bool = False
    is_cancelled:bool = False
    stations_away:Optional[int] = None
    direction:Optional[Direction] = None
    platform:Optional[str] = None

@dataclass(frozen=True)
class TrainProgress:
    """Live station-by-station progress of one train relative to a target station"""
    train_number:str
    train_name:Optional[str] = None
    train_type:str = "UNKNOWN"
    has_reached:bool = False
    has_passed:bool = False
    minutes_until_arrival:Optional[int] = None
    delay_minutes:int = 0
    stations_away:Optional[int] = None

@dataclass(frozen=True)
class DelayEntry:
    """Resolved delay for one train"""
    delay_minutes:int
    source:DelaySource
    observed_at:Optional[datetime] = None
    report_count:Optional[int] = None

@dataclass(frozen=True)
class ConsensusResult:
    """Age-weighted vote over recent reports for one gate"""
    status:GateStatus
    confidence:float
    report_count:int
    latest_timestamp:datetime
    open_weight:float = 0.0
    closed_weight:float = 0.0

@dataclass(frozen=True)
class PredictionQuality:
    report_count:int
    latest_update:str
    agreement:str # 'strong' | 'moderate'

@dataclass(frozen=True)
class Prediction:
    """Final, fully populated status estimate for a gate"""
    status:GateStatus
    confidence:float
    source:PredictionSource
    message:str
    data_source:str
    quality:Optional[PredictionQuality] = None
    train_info:Optional[Dict[str, Any]] = None
    needs_report:bool = False

    def __post_init__(self):
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"Prediction confidence must be between 0 and 1 (got {self.confidence})")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["source"] = self.source.value
        return data

@dataclass
class StationContext:
    """Per-refresh snapshot of what is known about trains at one station"""
    station_code:str
    trains:List[TrainCandidate] = field(default_factory=list)
    delays:Dict[str, DelayEntry] = field(default_factory=dict)
