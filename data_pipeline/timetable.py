"""
Static timetable of scheduled arrivals per station, loaded from CSV.

Expected columns: station_code, train_number, train_name, train_type,
arrival (HH:MM), and optionally direction.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from .utils import minutes_since_midnight, time_to_minutes, MINUTES_PER_DAY
from .data_validator import parse_direction
from prediction_service.models import TrainCandidate

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["station_code", "train_number", "arrival"]
RECENT_ARRIVAL_MINUTES = 2

class StaticTimetable:
    """Answers 'which train is next at this station' from a fixed schedule"""

    def __init__(self, schedule:pd.DataFrame):
        missing = [c for c in REQUIRED_COLUMNS if c not in schedule.columns]
        if missing:
            raise ValueError(f"Timetable is missing columns: {missing}")
        df = schedule.copy()
        df["station_code"] = df["station_code"].astype(str).str.strip().str.upper()
        df["train_number"] = df["train_number"].astype(str).str.strip()
        df["arrival_minutes"] = df["arrival"].astype(str).map(time_to_minutes)
        invalid = df["arrival_minutes"].isna()
        if invalid.any():
            logger.warning(f"Dropping {int(invalid.sum())} timetable rows with unparseable arrival times")
            df = df[~invalid].copy()
        df["arrival_minutes"] = df["arrival_minutes"].astype(int)
        for column, default in (("train_name", ""), ("train_type", "UNKNOWN"), ("direction", "")):
            if column not in df.columns:
                df[column] = default
            df[column] = df[column].fillna(default).astype(str)
        self._schedule = df.sort_values(["station_code", "arrival_minutes"]).reset_index(drop=True)

    @classmethod
    def from_csv(cls, path:Union[str, Path]) -> "StaticTimetable":
        logger.info(f"Loading static timetable from {path}")
        return cls(pd.read_csv(path, dtype=str))

    def __len__(self) -> int:
        return len(self._schedule)

    async def next_scheduled_arrival(self, station_code:str, now:datetime) -> Optional[TrainCandidate]:
        """
        Next scheduled train at or after now, wrapping to tomorrow's first train.

        Trains that arrived within the last couple of minutes still count as
        'next' so a gate is not reported open while a train is at the crossing.
        """
        station = self._schedule[self._schedule["station_code"] == station_code.upper()]
        if station.empty:
            return None
        current = minutes_since_midnight(now)
        upcoming = station[station["arrival_minutes"] >= current - RECENT_ARRIVAL_MINUTES]
        row = upcoming.iloc[0] if not upcoming.empty else station.iloc[0]
        arrival = int(row["arrival_minutes"]) % MINUTES_PER_DAY
        return TrainCandidate(number=row["train_number"],
                              name=row["train_name"] or row["train_number"],
                              train_type=(row["train_type"] or "UNKNOWN").upper(),
                              scheduled_arrival=f"{arrival // 60:02d}:{arrival % 60:02d}",
                              direction=parse_direction(row["direction"]))
