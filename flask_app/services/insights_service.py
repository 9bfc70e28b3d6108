"""
Service bridging stored history to the viewing-behaviour heuristics in
emby_stats.insights.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from emby_stats.config_loader import AnalyticsSettings
from emby_stats.insights import detect_marathons, find_abandoned, predict_viewing, summarize_marathons, user_peak_patterns
from emby_stats.timezone_utils import utcnow
from flask_app.services.history_query import HistoryFilter, history_with_users
from flask_app.services.utils import isoformat

MARATHON_LIMIT = 50


class InsightsService:
    """Service for marathon, abandonment and prediction analytics."""

    def __init__(self, settings: Optional[AnalyticsSettings] = None):
        self.settings = settings or AnalyticsSettings()

    def get_marathons(self, history_filter: Optional[HistoryFilter] = None,
                      min_episodes: Optional[int] = None,
                      min_hours: Optional[float] = None) -> Dict[str, Any]:
        """
        Binge-watching sessions with summary stats.

        Args:
            history_filter: Optional date/server/user filter
            min_episodes: Override of the configured minimum episode count
            min_hours: Override of the configured minimum hours
        """
        episodes = history_with_users(history_filter or HistoryFilter(), item_types=['Episode'])
        marathons = detect_marathons(
            episodes,
            min_episodes=min_episodes or self.settings.marathon_min_episodes,
            min_hours=min_hours if min_hours is not None else self.settings.marathon_min_hours,
        )
        return {
            'marathons': marathons[:MARATHON_LIMIT],
            'stats': summarize_marathons(marathons),
        }

    def get_abandoned(self, history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """Items dropped early, grouped by item and as a recency feed."""
        query_filter = history_filter or HistoryFilter()
        records = [
            record for record in history_with_users(query_filter)
            if not record.is_completed
        ]
        for record in records:
            # Abandoners are people, so linked accounts share one identity
            record.user_name = record.global_user_name or record.user_name

        result = find_abandoned(records, threshold=self.settings.abandon_threshold)
        for entry in result['recent']:
            entry['played_at'] = isoformat(entry['played_at'])
        for entry in result['by_item']:
            entry['played_at'] = isoformat(entry['played_at'])
        return result

    def get_prediction(self, as_of: Optional[datetime] = None,
                       history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """
        Peak hours, weekly heatmap and the next likely viewing hour.

        The analysed window is the ``prediction_window_days`` preceding
        ``as_of``.
        """
        as_of = as_of or utcnow()
        window_days = self.settings.prediction_window_days
        base = history_filter or HistoryFilter()
        window = base.with_range(as_of - timedelta(days=window_days), as_of)
        records = history_with_users(window)

        result = predict_viewing(
            records,
            as_of=as_of,
            window_days=window_days,
            peak_count=self.settings.peak_hour_count,
        )
        result['user_patterns'] = user_peak_patterns(records)
        result['window_days'] = window_days
        result['total_records'] = len(records)
        return result
