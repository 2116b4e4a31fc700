"""airhub - Live air quality data hub: merge, classify, alert and fan out station readings."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("airhub")
except PackageNotFoundError:
    __version__ = "0+local"
from airhub.aqi import AqiBand, aqi_from_pm25, band_for
from airhub.config import HubConfig
from airhub.exceptions import (
    AirHubConfigError,
    AirHubError,
    AirHubNormalizationError,
    AirHubStorageError,
    AirHubTransportError,
)
from airhub.hub import AirQualityHub, HubSnapshot, StationMarker, get_hub, reset_hub
from airhub.ingestion.classify import DEFAULT_RULES, ClassificationRule, SourceClassifier
from airhub.ingestion.snapshot import NormalizationResult, normalize_snapshot
from airhub.models import (
    Alert,
    CachedWindow,
    ChartPoint,
    Coordinate,
    SourceType,
    StationReading,
)
from airhub.state.alerts import AlertEvaluator
from airhub.state.cache import SessionCache
from airhub.state.store import MergeEngine, ReadingChange
from airhub.storage import FileStorage, KeyValueStorage, MemoryStorage

__all__ = [
    "__version__",
    "AirHubConfigError",
    "AirHubError",
    "AirHubNormalizationError",
    "AirHubStorageError",
    "AirHubTransportError",
    "AirQualityHub",
    "Alert",
    "AlertEvaluator",
    "AqiBand",
    "CachedWindow",
    "ChartPoint",
    "ClassificationRule",
    "Coordinate",
    "DEFAULT_RULES",
    "FileStorage",
    "HubConfig",
    "HubSnapshot",
    "KeyValueStorage",
    "MemoryStorage",
    "MergeEngine",
    "NormalizationResult",
    "ReadingChange",
    "SessionCache",
    "SourceClassifier",
    "SourceType",
    "StationMarker",
    "StationReading",
    "aqi_from_pm25",
    "band_for",
    "get_hub",
    "normalize_snapshot",
    "reset_hub",
]
