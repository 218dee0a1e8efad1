"""
Common utility functions for the data pipeline.

Includes helpers for configuration, clock access, time-string parsing,
timing decorators and safe data conversion.
"""
import logging
import os
import time
from functools import wraps
from typing import Any, Callable, Coroutine, Optional, TypeVar, ParamSpec
from datetime import datetime, timezone, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
MINUTES_PER_DAY = 24 * 60

def get_env_var(var_name:str, default:Optional[str] = None) -> Optional[str]:
    """Retrieves an environment variable"""
    value = os.getenv(var_name, default)
    if value is None:
        logger.warning(f"Environment variable '{var_name}' not set")
    return value

def configure_logging(level:str = "INFO") -> None:
    """Configure root logging for command line entry points"""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)

# Clock
def get_current_utc_datetime() -> datetime:
    """return current datetime in UTC with timezone info"""
    return datetime.now(timezone.utc)

def get_local_now(tz_name:Optional[str] = None) -> datetime:
    """Current wall-clock time in the given IANA timezone (UTC if unknown)"""
    if not tz_name:
        return get_current_utc_datetime()
    try:
        return datetime.now(ZoneInfo(tz_name))
    except ZoneInfoNotFoundError:
        logger.warning(f"Unknown timezone '{tz_name}', falling back to UTC")
        return get_current_utc_datetime()

def ensure_utc(dt:datetime) -> datetime:
    """Naive datetimes are assumed to be UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def parse_flexible_timestamp(ts_data:Any) -> Optional[datetime]:
    """Attempts to parse various timestamp formats into a timezone-aware UTC datetime"""
    if isinstance(ts_data, datetime):
        return ensure_utc(ts_data)
    if isinstance(ts_data, bool):
        return None
    if isinstance(ts_data, (int, float)):
        # Epoch milliseconds (JS Date.now()) are far larger than any epoch seconds value
        seconds = ts_data / 1000 if abs(ts_data) > 1e11 else ts_data
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            logger.debug(f"Could not parse numeric timestamp: {ts_data}")
            return None
    if isinstance(ts_data, str):
        try:
            dt = datetime.fromisoformat(ts_data.strip().replace("Z", "+00:00"))
            return ensure_utc(dt)
        except ValueError:
            logger.debug(f"Could not parse string timestamp: {ts_data}")
            return None
    return None

# Time-of-day helpers
def time_to_minutes(time_str:Optional[str]) -> Optional[int]:
    """Converts 'HH:MM' (or 'HH:MM:SS') into minutes since midnight"""
    if not time_str or not isinstance(time_str, str):
        return None
    parts = time_str.strip().split(":")
    if len(parts) < 2:
        return None
    hours = safe_int(parts[0])
    minutes = safe_int(parts[1])
    if hours is None or minutes is None:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes

def minutes_since_midnight(dt:datetime) -> int:
    return dt.hour * 60 + dt.minute

def minutes_to_hhmm(minutes:int) -> str:
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"

def wrap_minutes_diff(diff:int) -> int:
    """Normalise a minute difference across midnight into (-720, 720]"""
    diff = diff % MINUTES_PER_DAY
    if diff > MINUTES_PER_DAY // 2:
        diff -= MINUTES_PER_DAY
    return diff

def format_age(age:timedelta) -> str:
    """Human readable age of an observation ('45s ago', '1 min ago', '7 min ago')"""
    total_seconds = max(0, int(age.total_seconds()))
    minutes, seconds = divmod(total_seconds, 60)
    if minutes == 0:
        return f"{seconds}s ago"
    if minutes == 1:
        return "1 min ago"
    return f"{minutes} min ago"

def safe_float(value:Any, default:Optional[float] = None) -> Optional[float]:
    """Safely converts a value to a float, returning default on failure"""
    try:
        return float(value)
    except (ValueError, TypeError):
        return default

def safe_int(value:Any, default:Optional[int] = None) -> Optional[int]:
    """Safely converts a value to int, returning default on failure"""
    try:
        return int(value)
    except (ValueError, TypeError):
        return default

# For performance measurement
def time_it(func:Callable[P, T]) -> Callable[P, T]:
    """Simple decorator to measure and log the execution time of a synchronous function"""
    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        end_time = time.perf_counter()
        logger.debug(f"Function '{func.__name__}' executed in {end_time - start_time:.4f} seconds")
        return result
    return wrapper

def time_it_async(func:Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
    """Simple decorator to measure and log the execution time of an asynchronous function"""
    @wraps(func)
    async def wrapper(*args:P.args, **kwargs:P.kwargs) -> T:
        start_time = time.perf_counter()
        result = await func(*args, **kwargs)
        end_time = time.perf_counter()
        logger.debug(f"Async function '{func.__name__}' executed in {end_time - start_time:.4f} seconds")
        return result
    return wrapper


# Constant
DEFAULT_CACHE_TTL_SECONDS = 60 * 5 # 5 minutes
MIN_LATITUDE, MAX_LATITUDE = -90.0, 90.0
MIN_LONGITUDE, MAX_LONGITUDE = -180.0, 180.0
