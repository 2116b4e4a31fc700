"""Internal constants shared across the library."""

BASE_URL = "http://localhost:5182"
USER_AGENT = "airhub/1"
SNAPSHOT_ENDPOINT = "/api/airquality/latest"
HISTORY_ENDPOINT = "/api/airquality/history"

# ------------------------------------------------------------------
# Hub defaults
# ------------------------------------------------------------------

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_ALERT_CAP = 3
DEFAULT_ALERT_THRESHOLDS: tuple[float, float, float] = (50.0, 100.0, 150.0)
DEFAULT_CACHE_MAX_POINTS = 20
DEFAULT_CACHE_EXPIRY = 10 * 60.0

# ------------------------------------------------------------------
# Persisted chart window
# ------------------------------------------------------------------

CHART_DATA_KEY = "airhub_chart_data"
CHART_TIMESTAMP_KEY = "airhub_chart_timestamp"
CHART_SCHEMA_VERSION = 1

# Decimal places kept in a coordinate dedup key (~0.1 m).
COORDINATE_KEY_PRECISION = 6

# ------------------------------------------------------------------
# US EPA PM2.5 breakpoints: (c_low, c_high, aqi_low, aqi_high)
# ------------------------------------------------------------------

PM25_BREAKPOINTS: tuple[tuple[float, float, int, int], ...] = (
    (0.0, 12.0, 0, 50),
    (12.1, 35.4, 51, 100),
    (35.5, 55.4, 101, 150),
    (55.5, 150.4, 151, 200),
    (150.5, 250.4, 201, 300),
    (250.5, 500.4, 301, 500),
)
