"""
Emby Analytics Package

A Python package for fetching play state from Emby servers and deriving
viewing statistics from stored history.
"""

from emby_stats.api_client import EmbyApiError, EmbyClient
from emby_stats.data_processing import (
    real_duration,
    real_play_count,
    parse_genres,
    peak_hour,
    build_period_series,
)
from emby_stats.insights import detect_marathons, find_abandoned, predict_viewing
from emby_stats.models import EmbyItem, EmbyUser, ServerConfig

__version__ = "0.1.0"
__all__ = [
    "EmbyClient",
    "EmbyApiError",
    "EmbyItem",
    "EmbyUser",
    "ServerConfig",
    "real_duration",
    "real_play_count",
    "parse_genres",
    "peak_hour",
    "build_period_series",
    "detect_marathons",
    "find_abandoned",
    "predict_viewing",
]
