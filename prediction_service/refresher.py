"""
Periodic refresh of gate predictions for one station.

Each cycle takes a fresh snapshot (approaching trains, resolved delays, recent
reports per gate) and predicts every gate sequentially. When the consuming
view is not visible the cycle is skipped entirely, without any fetch.

Run standalone with `python -m prediction_service.refresher`.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .delay_aggregator import DelayAggregator
from .formatting import status_label
from .models import Gate, GateStatus, Prediction, StationContext, TrainCandidate
from .prediction_log import PredictionLog
from .status_predictor import StatusPredictor
from . import config
from data_pipeline.api_clients import RailRadarClient
from data_pipeline.crowd_store import CrowdReportStore
from data_pipeline.data_storage import build_cache, close_redis_client
from data_pipeline.data_validator import load_gates, parse_train_candidates
from data_pipeline.timetable import StaticTimetable
from data_pipeline.utils import configure_logging, get_local_now

logger = logging.getLogger(__name__)

TRAIN_FETCH_WINDOW_MINUTES = 120


class GateStatusRefresher:
    """
    Drives prediction refreshes for the gates of one station.

    Args:
        predictor: StatusPredictor used for every gate.
        report_source: Provides async list_recent_reports(gate_id, now=...).
        train_feed: Optional feed providing async list_approaching_trains(station, window).
        delay_aggregator: Optional DelayAggregator resolving delays for the trains.
        is_visible: Returns False when nobody is looking; the cycle is then skipped.
        interval_seconds: Pause between cycles in run().
    """

    def __init__(self, predictor:StatusPredictor, report_source:Any, train_feed:Optional[Any] = None,
                 delay_aggregator:Optional[DelayAggregator] = None,
                 is_visible:Callable[[], bool] = lambda: True,
                 interval_seconds:float = config.REFRESH_INTERVAL_SECONDS):
        self.predictor = predictor
        self.report_source = report_source
        self.train_feed = train_feed
        self.delay_aggregator = delay_aggregator
        self.is_visible = is_visible
        self.interval_seconds = interval_seconds
        self.latest:Dict[str, Prediction] = {}

    async def _fetch_trains(self, station_code:str) -> List[TrainCandidate]:
        if self.train_feed is None:
            return []
        try:
            raw = await self.train_feed.list_approaching_trains(station_code, TRAIN_FETCH_WINDOW_MINUTES)
        except Exception as e:
            logger.warning(f"Failed to fetch trains for {station_code}: {e}")
            return []
        return parse_train_candidates(raw)

    async def _fetch_reports(self, gate_id:str, now:datetime) -> List[Any]:
        try:
            return list(await self.report_source.list_recent_reports(gate_id, now=now) or [])
        except Exception as e:
            logger.warning(f"Failed to fetch reports for gate {gate_id}: {e}")
            return []

    async def build_context(self, station_code:str, now:datetime) -> StationContext:
        trains = await self._fetch_trains(station_code)
        delays = {}
        if self.delay_aggregator is not None and trains:
            try:
                delays = await self.delay_aggregator.resolve_delays(trains, now)
            except Exception as e:
                logger.warning(f"Failed to resolve delays for {station_code}: {e}")
        return StationContext(station_code=station_code, trains=trains, delays=delays)

    async def refresh_once(self, gates:Iterable[Gate], station_code:str,
                           now:Optional[datetime] = None) -> Optional[Dict[str, Prediction]]:
        """One refresh cycle; None when skipped because the view is hidden"""
        if not self.is_visible():
            logger.debug("Skipping refresh (view hidden)")
            return None
        now = now or get_local_now(config.LOCAL_TIMEZONE)
        context = await self.build_context(station_code, now)
        predictions = {}
        for gate in gates:
            reports = await self._fetch_reports(gate.id, now)
            predictions[gate.id] = await self.predictor.predict(gate, context, reports, now)
            logger.debug(f"{gate.name}: {status_label(predictions[gate.id].status)} - {predictions[gate.id].message}")
        self.latest.update(predictions)
        logger.info(f"Refreshed {len(predictions)} gates at {station_code} "
                    f"({len(context.trains)} trains, {len(context.delays)} delays)")
        return predictions

    async def run(self, gates:Iterable[Gate], station_code:str, iterations:Optional[int] = None) -> None:
        """Refreshes every interval_seconds, forever unless iterations is given"""
        gates = list(gates)
        count = 0
        while iterations is None or count < iterations:
            await self.refresh_once(gates, station_code)
            count += 1
            if iterations is None or count < iterations:
                await asyncio.sleep(self.interval_seconds)

    def record_observation(self, gate_id:str, status:GateStatus, user_id:Optional[str] = None,
                           now:Optional[datetime] = None) -> None:
        """Stores a user report and uses it as ground truth for the last prediction"""
        self.report_source.submit_report(gate_id, status, user_id=user_id, now=now)
        prediction_log = self.predictor.prediction_log
        if prediction_log is not None:
            prediction_log.verify_prediction(gate_id, status, now=now)


async def _main_async() -> None:
    station_code = config.STATION_CODE
    gates = load_gates(config.GATES_FILE, station_code)
    timetable = StaticTimetable.from_csv(config.TIMETABLE_CSV) if config.TIMETABLE_CSV else None
    reports = CrowdReportStore()
    async with RailRadarClient(api_key=config.RAILRADAR_API_KEY,
                               base_url=config.RAILRADAR_API_BASE_URL) as feed:
        aggregator = DelayAggregator(reports, train_feed=feed,
                                     cache=build_cache(config.REDIS_URL, config.DELAY_CACHE_TTL_SECONDS))
        predictor = StatusPredictor(timetable=timetable, train_feed=feed, prediction_log=PredictionLog())
        refresher = GateStatusRefresher(predictor, reports, train_feed=feed, delay_aggregator=aggregator)
        try:
            await refresher.run(gates, station_code)
        finally:
            await close_redis_client()

def main() -> None:
    configure_logging(config.LOG_LEVEL)
    try:
        asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Refresher stopped")


if __name__ == "__main__":
    main()
