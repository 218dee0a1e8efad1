"""
Validates and normalises raw records coming from the report store, the live
train feed and gate files.

Malformed records are skipped individually (with a warning) instead of
aborting the whole batch.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .utils import (parse_flexible_timestamp, safe_float, safe_int, time_to_minutes, time_it,
                    MIN_LATITUDE, MAX_LATITUDE, MIN_LONGITUDE, MAX_LONGITUDE)
from prediction_service.models import (DelayReport, Direction, Gate, GateStatus, Location,
                                       Report, TrainCandidate)

logger = logging.getLogger(__name__)

REPORTABLE_STATUSES = {GateStatus.OPEN.value, GateStatus.CLOSED.value}

def _first(record:Dict[str, Any], *keys:str) -> Any:
    """Value of the first present key (records arrive in camelCase or snake_case)"""
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None

def parse_direction(value:Any) -> Optional[Direction]:
    if value is None or value == "":
        return None
    try:
        return Direction(str(value).strip().lower())
    except ValueError:
        logger.debug(f"Unknown direction tag: {value}")
        return None

def parse_report(record:Any, gate_id:Optional[str] = None) -> Optional[Report]:
    """
    Parses one crowd report.

    Args:
        record: Raw dict with status, timestamp and optionally gateId/userId.
        gate_id: Gate to assume when the record does not carry one
                 (listRecentReports results are already scoped to a gate).

    Returns:
        Report, or None if a required field is missing or invalid.
    """
    if isinstance(record, Report):
        return record
    if not isinstance(record, dict):
        logger.warning(f"Skipping report that is not a mapping: {record!r}")
        return None
    record_gate = _first(record, "gate_id", "gateId") or gate_id
    status = str(_first(record, "status") or "").strip().lower()
    timestamp = parse_flexible_timestamp(_first(record, "timestamp", "reported_at"))
    if not record_gate or status not in REPORTABLE_STATUSES or timestamp is None:
        logger.warning(f"Skipping malformed report: {record}")
        return None
    user_id = _first(record, "user_id", "userId")
    return Report(gate_id=str(record_gate), status=GateStatus(status), timestamp=timestamp,
                  user_id=str(user_id) if user_id is not None else None)

def parse_reports(records:Optional[Iterable[Any]], gate_id:Optional[str] = None) -> List[Report]:
    if not records:
        return []
    reports = []
    for record in records:
        report = parse_report(record, gate_id)
        if report is not None:
            reports.append(report)
    return reports

def parse_delay_report(record:Any) -> Optional[DelayReport]:
    if isinstance(record, DelayReport):
        return record
    if not isinstance(record, dict):
        logger.warning(f"Skipping delay report that is not a mapping: {record!r}")
        return None
    train_number = _first(record, "train_number", "trainNumber")
    delay = safe_int(_first(record, "delay_minutes", "delayMinutes"))
    timestamp = parse_flexible_timestamp(_first(record, "timestamp"))
    if not train_number or delay is None or timestamp is None:
        logger.warning(f"Skipping malformed delay report: {record}")
        return None
    user_id = _first(record, "user_id", "userId")
    return DelayReport(train_number=str(train_number), delay_minutes=delay, timestamp=timestamp,
                       user_id=str(user_id) if user_id is not None else None)

def parse_train_candidate(record:Any) -> Optional[TrainCandidate]:
    """Parses a train record; requires a number and at least one valid arrival time"""
    if isinstance(record, TrainCandidate):
        return record
    if not isinstance(record, dict):
        logger.warning(f"Skipping train record that is not a mapping: {record!r}")
        return None
    number = _first(record, "number", "train_number", "trainNumber")
    scheduled = _first(record, "scheduled_arrival", "scheduledArrival", "arrival")
    expected = _first(record, "expected_arrival", "expectedArrival")
    if scheduled is not None and time_to_minutes(str(scheduled)) is None:
        scheduled = None
    if expected is not None and time_to_minutes(str(expected)) is None:
        expected = None
    if not number or (scheduled is None and expected is None):
        logger.warning(f"Skipping malformed train record: {record}")
        return None
    stations_away = safe_int(_first(record, "stations_away", "stationsAway"))
    platform = _first(record, "platform")
    return TrainCandidate(
        number=str(number),
        name=str(_first(record, "name", "train_name", "trainName") or number),
        train_type=str(_first(record, "train_type", "trainType") or "UNKNOWN").upper(),
        scheduled_arrival=str(scheduled) if scheduled is not None else None,
        expected_arrival=str(expected) if expected is not None else None,
        delay_minutes=safe_int(_first(record, "delay_minutes", "delayMinutes"), default=0),
        has_arrived=bool(_first(record, "has_arrived", "hasArrived") or False),
        has_departed=bool(_first(record, "has_departed", "hasDeparted") or False),
        is_cancelled=bool(_first(record, "is_cancelled", "isCancelled") or False),
        stations_away=stations_away,
        direction=parse_direction(_first(record, "direction")),
        platform=str(platform) if platform is not None else None,
    )

def parse_train_candidates(records:Optional[Iterable[Any]]) -> List[TrainCandidate]:
    if not records:
        return []
    trains = []
    for record in records:
        train = parse_train_candidate(record)
        if train is not None:
            trains.append(train)
    return trains

def parse_gate(record:Any) -> Optional[Gate]:
    if isinstance(record, Gate):
        return record
    if not isinstance(record, dict):
        logger.warning(f"Skipping gate record that is not a mapping: {record!r}")
        return None
    gate_id = _first(record, "id", "gate_id", "gateId")
    if not gate_id:
        logger.warning(f"Skipping gate without id: {record}")
        return None
    lat = safe_float(_first(record, "lat", "latitude"))
    lng = safe_float(_first(record, "lng", "lon", "longitude"))
    location = None
    if lat is not None and lng is not None:
        if MIN_LATITUDE <= lat <= MAX_LATITUDE and MIN_LONGITUDE <= lng <= MAX_LONGITUDE:
            location = Location(latitude=lat, longitude=lng)
        else:
            logger.warning(f"Gate {gate_id} has out of range coordinates ({lat}, {lng})")
    station_code = _first(record, "station_code", "stationCode")
    return Gate(id=str(gate_id), name=str(_first(record, "name") or gate_id), location=location,
                station_code=str(station_code) if station_code else None,
                direction=parse_direction(_first(record, "direction")))

@time_it
def load_gates(path:Union[str, Path], station_code:Optional[str] = None) -> List[Gate]:
    """
    Loads gates from a JSON file.

    Accepts either a list of gate records or a mapping of station code to a
    list of gate records (the fallback gate file layout).
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        records = data.get(station_code, []) if station_code else [g for gates in data.values() for g in gates]
    else:
        records = data
    gates = [gate for gate in (parse_gate(r) for r in records) if gate is not None]
    if station_code:
        gates = [g for g in gates if g.station_code in (None, station_code)]
    logger.info(f"Loaded {len(gates)} gates from {path}")
    return gates
