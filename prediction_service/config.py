"""
Configuration settings for the gate status prediction service.

Centralizes environment-driven settings (API keys, cache backends, refresh
cadence) and the engine's tuning tables so every threshold lives in one place.
"""

from datetime import timedelta
from typing import Dict, List, Tuple

from data_pipeline.utils import get_env_var, safe_int

# --- Environment ---
RAILRADAR_API_KEY = get_env_var("RAILRADAR_API_KEY", "")
RAILRADAR_API_BASE_URL = get_env_var("RAILRADAR_API_BASE_URL", "https://api.railradar.in/api/v1")
REDIS_URL = get_env_var("REDIS_URL", "")
LOCAL_TIMEZONE = get_env_var("LOCAL_TIMEZONE", "Asia/Kolkata")
LOG_LEVEL = get_env_var("LOG_LEVEL", "INFO")

STATION_CODE = get_env_var("STATION_CODE", "BGM")
GATES_FILE = get_env_var("GATES_FILE", "gates.json")
TIMETABLE_CSV = get_env_var("TIMETABLE_CSV", "")
REFRESH_INTERVAL_SECONDS = safe_int(get_env_var("REFRESH_INTERVAL_SECONDS", "60"), default=60)
DELAY_CACHE_TTL_SECONDS = safe_int(get_env_var("DELAY_CACHE_TTL_SECONDS", str(30 * 60)), default=30 * 60)
DELAY_MISS_CACHE_TTL_SECONDS = safe_int(get_env_var("DELAY_MISS_CACHE_TTL_SECONDS", "120"), default=120)

# --- Data freshness windows ---
GATE_REPORT_WINDOW = timedelta(minutes=10)
TRAIN_DELAY_WINDOW = timedelta(minutes=15)

# --- Consensus ---
CONSENSUS_ACCEPT_CONFIDENCE = 0.7   # strictly greater than
STRONG_AGREEMENT_CONFIDENCE = 0.85

# Base confidence per delay source, decayed linearly over the source window
SOURCE_BASE_CONFIDENCE: Dict[str, float] = {
    "crowdsource": 0.95,
    "railradar": 0.85,
    "schedule": 0.70,
}

# --- Train proximity ---
# Minutes before arrival at which each train class closes the gate.
# Faster trains cannot brake quickly, so the gate closes earlier.
CLOSURE_THRESHOLDS: Dict[str, int] = {
    "RAJ": 15,    # Rajdhani
    "SHT": 15,    # Shatabdi
    "DRNT": 14,   # Duronto
    "SF": 12,     # Superfast express
    "EXP": 10,    # Express
    "MEX": 10,    # Mail express
    "PAS": 6,     # Passenger, stops everywhere
    "MEMU": 5,
    "DMU": 5,
    "UNKNOWN": 8,
}
DEFAULT_CLOSURE_THRESHOLD = CLOSURE_THRESHOLDS["UNKNOWN"]
MIN_CLOSURE_THRESHOLD = 1

# (start minute, end minute, offset); windows are half-open and may wrap midnight
TIME_OF_DAY_OFFSETS: List[Tuple[int, int, int]] = [
    (7 * 60, 10 * 60, +3),    # morning peak
    (17 * 60, 20 * 60, +3),   # evening peak
    (22 * 60, 6 * 60, -2),    # late night
]
WEEKEND_OFFSET = -1

LOOKUP_WINDOW_MINUTES = 20
GRACE_PERIOD_MINUTES = 2
WARNING_BUFFER_MINUTES = 5
BACK_TO_BACK_GAP_MINUTES = 15

AT_STATION_CONFIDENCE = 0.95
CLOSED_CONFIDENCE_LIVE = 0.90
CLOSED_CONFIDENCE = 0.85
WARNING_CONFIDENCE_LIVE = 0.80
WARNING_CONFIDENCE = 0.75
BACK_TO_BACK_CONFIDENCE = 0.80
OPEN_CONFIDENCE_LIVE = 0.75
OPEN_CONFIDENCE = 0.70

# --- Static timetable fallback ---
TIMETABLE_CLOSED_CONFIDENCE = 0.65
TIMETABLE_WARNING_CONFIDENCE = 0.60
TIMETABLE_OPEN_CONFIDENCE = 0.55

# --- Default ---
UNKNOWN_CONFIDENCE = 0.30

# --- Delay aggregation ---
# Only trains arriving in this window (minutes relative to now) get a delay lookup
DELAY_LOOKUP_WINDOW: Tuple[int, int] = (-10, 30)

# --- Prediction log ---
PREDICTION_LOG_MAX_ENTRIES = 500
VERIFICATION_WINDOW = timedelta(minutes=30)
