"""
Merges crowd-reported train delays with live feed delays.

Preference order: fresh eyewitness delay reports (averaged), then the live
feed, then the static schedule (no delay). Feed lookups are cached with a TTL;
crowd reports are local and always read fresh.
"""
import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .models import DelayEntry, DelaySource, TrainCandidate
from .consensus import report_confidence
from . import config
from data_pipeline.data_storage import InMemoryTimedCache, TimedCache
from data_pipeline.utils import (ensure_utc, get_current_utc_datetime, minutes_since_midnight,
                                 parse_flexible_timestamp, time_to_minutes, wrap_minutes_diff,
                                 time_it_async)

logger = logging.getLogger(__name__)

def _entry_to_cache(entry:Optional[DelayEntry]) -> Dict[str, Any]:
    if entry is None:
        return {"missing": True}
    return {"delay_minutes": entry.delay_minutes,
            "source": entry.source.value,
            "observed_at": entry.observed_at.isoformat() if entry.observed_at else None}

def _entry_from_cache(data:Dict[str, Any]) -> Optional[DelayEntry]:
    if data.get("missing"):
        return None
    return DelayEntry(delay_minutes=int(data["delay_minutes"]), source=DelaySource(data["source"]),
                      observed_at=parse_flexible_timestamp(data.get("observed_at")))


class DelayAggregator:
    """
    Resolves the best available delay for a train.

    Args:
        report_store: Provides get_delay_reports(train_number) -> [DelayReport].
        train_feed: Optional live feed providing async get_live_delay(train_number).
        cache: TimedCache for feed lookups (defaults to an in-memory cache).
        miss_ttl_seconds: How long an empty feed answer is cached.
    """

    def __init__(self, report_store:Any, train_feed:Optional[Any] = None,
                 cache:Optional[TimedCache] = None,
                 cache_ttl_seconds:float = config.DELAY_CACHE_TTL_SECONDS,
                 miss_ttl_seconds:float = config.DELAY_MISS_CACHE_TTL_SECONDS):
        self.report_store = report_store
        self.train_feed = train_feed
        self.cache = cache if cache is not None else InMemoryTimedCache(default_ttl_seconds=cache_ttl_seconds)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.miss_ttl_seconds = miss_ttl_seconds

    def crowd_delay(self, train_number:str, now:datetime) -> Optional[DelayEntry]:
        """Average of delay reports younger than the delay window, rounded"""
        now = ensure_utc(now)
        try:
            reports = self.report_store.get_delay_reports(train_number) or []
        except Exception as e:
            logger.warning(f"Could not read delay reports for train {train_number}: {e}")
            return None
        recent = [r for r in reports if now - ensure_utc(r.timestamp) < config.TRAIN_DELAY_WINDOW]
        if not recent:
            return None
        avg_delay = sum(r.delay_minutes for r in recent) / len(recent)
        latest = max(ensure_utc(r.timestamp) for r in recent)
        return DelayEntry(delay_minutes=int(round(avg_delay)), source=DelaySource.CROWDSOURCE,
                          observed_at=latest, report_count=len(recent))

    def _is_stale(self, entry:DelayEntry, now:datetime) -> bool:
        if entry.observed_at is None:
            return False
        age = ensure_utc(now) - ensure_utc(entry.observed_at)
        return report_confidence(age, entry.source) <= 0

    async def _fetch_feed_delay(self, train_number:str, cache_key:str, now:datetime) -> Optional[DelayEntry]:
        try:
            entry = await self.train_feed.get_live_delay(train_number)
        except Exception as e:
            logger.warning(f"Failed to get live delay for {train_number}: {e}")
            return None
        if entry is not None and entry.observed_at is None:
            entry = dataclasses.replace(entry, observed_at=ensure_utc(now))
        # Empty answers expire sooner than real ones
        ttl = self.cache_ttl_seconds if entry is not None else min(self.cache_ttl_seconds, self.miss_ttl_seconds)
        await self.cache.set(cache_key, _entry_to_cache(entry), ttl_seconds=ttl)
        return entry

    async def feed_delay(self, train_number:str, now:Optional[datetime] = None) -> Optional[DelayEntry]:
        """Live feed delay, served from cache while the cached observation is still fresh"""
        if self.train_feed is None:
            return None
        now = now or get_current_utc_datetime()
        cache_key = f"delay:{train_number}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            entry = _entry_from_cache(cached)
            if entry is None or not self._is_stale(entry, now):
                return entry
            logger.debug(f"Cached delay for train {train_number} is stale, refetching")
            await self.cache.delete(cache_key)
        return await self._fetch_feed_delay(train_number, cache_key, now)

    async def resolve_delay(self, train_number:str, now:Optional[datetime] = None) -> DelayEntry:
        """Best delay for a train; never raises, falls back to the schedule"""
        now = now or get_current_utc_datetime()
        crowd = self.crowd_delay(train_number, now)
        if crowd is not None:
            return crowd
        live = await self.feed_delay(train_number, now)
        if live is not None:
            if self._is_stale(live, now):
                logger.debug(f"Ignoring stale feed delay for train {train_number} (observed {live.observed_at})")
            else:
                return live
        return DelayEntry(delay_minutes=0, source=DelaySource.SCHEDULE)

    @time_it_async
    async def resolve_delays(self, trains:Iterable[TrainCandidate],
                             now:Optional[datetime] = None) -> Dict[str, DelayEntry]:
        """
        Resolves delays for trains arriving from 10 min ago to 30 min ahead.

        `now` should be station-local time; it is used both for the arrival
        window and for the age of crowd reports.
        """
        now = now or get_current_utc_datetime()
        current = minutes_since_midnight(now)
        low, high = config.DELAY_LOOKUP_WINDOW
        nearby = []
        for train in trains:
            scheduled = time_to_minutes(train.scheduled_arrival)
            if scheduled is None:
                continue
            if low <= wrap_minutes_diff(scheduled - current) <= high:
                nearby.append(train.number)
        nearby = list(dict.fromkeys(nearby))
        logger.debug(f"Resolving delays for {len(nearby)} nearby trains")
        entries = await asyncio.gather(*(self.resolve_delay(number, now) for number in nearby))
        return dict(zip(nearby, entries))
