"""
Asynchronous client for the RailRadar live train API.

Uses httpx for async requests. Requires an API key (RAILRADAR_API_KEY); without
one every call returns an empty result so the predictor falls back to
schedule-based reasoning.
"""
import asyncio
import logging
import math
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv

from .utils import (get_current_utc_datetime, minutes_to_hhmm, parse_flexible_timestamp,
                    safe_int, time_to_minutes, wrap_minutes_diff, ensure_utc)
from .data_validator import parse_train_candidate
from prediction_service.models import DelayEntry, DelaySource, TrainCandidate, TrainProgress

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)
DEFAULT_RETRY_STATUS = {500, 502, 503, 504}

RAILRADAR_API_KEY = os.getenv("RAILRADAR_API_KEY")
RAILRADAR_API_BASE_URL = os.getenv("RAILRADAR_API_BASE_URL", "https://api.railradar.in/api/v1")
USER_AGENT = "RailGate/1.0 (level crossing status)"

async def _make_api_request(session:httpx.AsyncClient, method:str, url:str,
                            params:Optional[Dict[str, Any]] = None,
                            headers:Optional[Dict[str, str]] = None,
                            max_retries:int = 0,
                            retry_delay:float = 1.0,
                            timeout:httpx.Timeout = DEFAULT_TIMEOUT) -> Optional[Dict[str, Any]]:
    retries = 0
    while retries <= max_retries:
        try:
            response = await session.request(method, url, params=params, headers=headers,
                                             timeout=timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"HTTP Error {e.response.status_code} for {e.request.url}")
            if e.response.status_code in DEFAULT_RETRY_STATUS and retries < max_retries:
                retries += 1
                logger.info(f"Retrying request ({retries}/{max_retries})...")
                await asyncio.sleep(retry_delay * (2**retries))
            else:
                logger.error(f"Non-retryable HTTP status error or max retries reached for {url}")
                return None
        except httpx.RequestError as e:
            logger.error(f"Network error requesting {url}: {e}")
            if retries < max_retries:
                retries += 1
                logger.info(f"Retrying request ({retries}/{max_retries})...")
                await asyncio.sleep(retry_delay * (2**retries))
            else:
                return None
        except ValueError as e:
            logger.error(f"Invalid JSON in response from {url}: {e}")
            return None
    return None

def _to_hhmm(value:Any, tz:Optional[Any] = None) -> Optional[str]:
    """RailRadar sends either 'HH:MM' strings or ISO timestamps"""
    if value is None:
        return None
    if isinstance(value, str) and time_to_minutes(value) is not None:
        return value[:5]
    dt = parse_flexible_timestamp(value)
    if dt is None:
        return None
    if tz is not None:
        dt = dt.astimezone(tz)
    return dt.strftime("%H:%M")


class RailRadarClient:
    """
    Train feed backed by the RailRadar REST API.

    Args:
        api_key: RailRadar key; defaults to RAILRADAR_API_KEY.
        session: Shared httpx.AsyncClient; one is created (and owned) if omitted.
        max_retries: Retries for 5xx/network errors. The predictor does not rely
                     on retries, a failed fetch just skips that stage.
        tz: tzinfo used to render ISO timestamps as station-local HH:MM.
    """

    def __init__(self, api_key:Optional[str] = None, base_url:str = RAILRADAR_API_BASE_URL,
                 session:Optional[httpx.AsyncClient] = None, max_retries:int = 0,
                 timeout:httpx.Timeout = DEFAULT_TIMEOUT, tz:Optional[Any] = None):
        self.api_key = api_key if api_key is not None else RAILRADAR_API_KEY
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self.max_retries = max_retries
        self.timeout = timeout
        self.tz = tz

    async def __aenter__(self) -> "RailRadarClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.aclose()
            self._session = None

    def _get_session(self) -> httpx.AsyncClient:
        if self._session is None:
            self._session = httpx.AsyncClient()
        return self._session

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json",
                "X-API-Key": self.api_key or "",
                "User-Agent": USER_AGENT}

    async def _get(self, path:str, params:Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        if not self.api_key:
            logger.info("RailRadar API key not set. Using schedule-based predictions")
            return None
        payload = await _make_api_request(self._get_session(), "GET", f"{self.base_url}{path}",
                                          params=params, headers=self._headers(),
                                          max_retries=self.max_retries, timeout=self.timeout)
        if not payload or not isinstance(payload, dict) or not payload.get("success"):
            return None
        data = payload.get("data")
        return data if isinstance(data, dict) else None

    async def list_approaching_trains(self, station_code:str, window_minutes:int = 120) -> List[TrainCandidate]:
        """
        Fetches trains due at a station within the next `window_minutes`.

        Returns:
            TrainCandidates with live expected arrival and delay. Cancelled and
            departed trains are dropped; a train currently at the platform is kept.
        """
        hours = max(1, math.ceil(window_minutes / 60))
        data = await self._get(f"/stations/{station_code}/live", params={"hours": hours})
        if data is None:
            return []
        raw_trains = data.get("trains")
        if not isinstance(raw_trains, list):
            logger.warning(f"Unexpected station payload for {station_code}")
            return []
        trains = []
        for raw in raw_trains:
            try:
                train = self._parse_station_train(raw)
            except (AttributeError, TypeError, KeyError) as e:
                logger.warning(f"Could not parse train entry {raw}: {e}")
                continue
            if train is None or train.is_cancelled or train.has_departed:
                continue
            trains.append(train)
        logger.info(f"Found {len(trains)} upcoming trains for {station_code}")
        return trains

    def _parse_station_train(self, raw:Dict[str, Any]) -> Optional[TrainCandidate]:
        info = raw.get("train") or {}
        schedule = raw.get("schedule") or {}
        live = raw.get("live") or {}
        status = raw.get("status") or {}
        scheduled = _to_hhmm(schedule.get("arrival"), self.tz)
        if scheduled is None:
            # Originating trains have no arrival at this station
            return None
        expected = _to_hhmm(live.get("expectedArrival"), self.tz)
        # Without a live estimate the train stays schedule-only
        delay = wrap_minutes_diff(time_to_minutes(expected) - time_to_minutes(scheduled)) if expected else 0
        return parse_train_candidate({
            "number": info.get("number"),
            "name": info.get("name"),
            "train_type": info.get("type") or "UNKNOWN",
            "scheduled_arrival": scheduled,
            "expected_arrival": expected,
            "delay_minutes": delay,
            "has_arrived": status.get("hasArrived", False),
            "has_departed": status.get("hasDeparted", False),
            "is_cancelled": status.get("isCancelled", False),
            "platform": raw.get("platform"),
            "direction": raw.get("direction"),
        })

    async def get_train_progress(self, train_number:str, station_code:str,
                                 now:Optional[datetime] = None) -> Optional[TrainProgress]:
        """Station-by-station progress of a train towards `station_code`, or None"""
        data = await self._get(f"/trains/{train_number}")
        if data is None:
            return None
        live = data.get("liveData") or {}
        static = data.get("staticData") or {}
        route = live.get("route") or []
        target_idx = next((i for i, s in enumerate(route) if s.get("stationCode") == station_code), None)
        if target_idx is None:
            return None
        target = route[target_idx]

        last_departed_idx = -1
        for i in range(len(route) - 1, -1, -1):
            if route[i].get("actualDeparture") is not None:
                last_departed_idx = i
                break

        delay = safe_int(target.get("delayArrivalMinutes"))
        if delay is None:
            delay = safe_int(live.get("overallDelayMinutes"), default=0)
        minutes_until = None
        scheduled_ts = safe_int(target.get("scheduledArrival"))
        if scheduled_ts is not None:
            now_ts = ensure_utc(now or get_current_utc_datetime()).timestamp()
            minutes_until = round((scheduled_ts + delay * 60 - now_ts) / 60)

        return TrainProgress(
            train_number=str(train_number),
            train_name=static.get("trainName"),
            train_type=str(static.get("trainType") or "UNKNOWN").upper(),
            has_reached=target.get("actualArrival") is not None,
            has_passed=target.get("actualDeparture") is not None,
            minutes_until_arrival=minutes_until,
            delay_minutes=delay,
            stations_away=target_idx - last_departed_idx if last_departed_idx >= 0 else None,
        )

    async def get_live_delay(self, train_number:str) -> Optional[DelayEntry]:
        """Overall live delay of a train, or None when the feed has nothing"""
        data = await self._get(f"/trains/{train_number}")
        if data is None:
            return None
        live = data.get("liveData")
        if not isinstance(live, dict):
            return None
        delay = safe_int(live.get("overallDelayMinutes"), default=0)
        return DelayEntry(delay_minutes=delay, source=DelaySource.RAILRADAR,
                          observed_at=parse_flexible_timestamp(live.get("lastUpdatedAt")))


def expected_arrival_from_progress(progress:TrainProgress, now:datetime) -> Optional[str]:
    """HH:MM the train is now expected at the station, from live progress"""
    if progress.minutes_until_arrival is None:
        return None
    return minutes_to_hhmm(now.hour * 60 + now.minute + progress.minutes_until_arrival)
