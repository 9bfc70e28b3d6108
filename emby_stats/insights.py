"""
Viewing-behaviour heuristics: marathon clustering, abandonment detection and
peak-hour prediction.

All functions are pure: they take already-loaded history rows (objects with
PlayHistory attribute names) plus explicit parameters, and never touch the
database.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from emby_stats.data_processing import record_real_duration, sunday_weekday
from emby_stats.timezone_utils import to_local
from emby_stats.utils import TICKS_PER_SECOND, format_hour

MARATHON_MAX_GAP_MINUTES = 120
DEFAULT_MIN_EPISODES = 3
DEFAULT_MIN_HOURS = 3.0
ABANDON_THRESHOLD = 0.30

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


@dataclass
class _Cluster:
    user_id: Any
    user_name: str
    series_name: str
    start: datetime
    end: datetime
    episodes: list[tuple[datetime, int]] = field(default_factory=list)

    @property
    def last_start(self) -> datetime:
        return self.episodes[-1][0]

    @property
    def total_hours(self) -> float:
        return sum(ticks for _, ticks in self.episodes) / TICKS_PER_SECOND / 3600


def _gap_minutes(earlier: datetime, later: datetime) -> int:
    # Whole minutes, truncated towards zero.
    return int((later - earlier).total_seconds() / 60)


def _close_cluster(cluster: Optional[_Cluster], min_episodes: int, min_hours: float) -> Optional[dict[str, Any]]:
    if cluster is None or len(cluster.episodes) < min_episodes:
        return None
    total_hours = cluster.total_hours
    if total_hours < min_hours:
        return None

    start_local = to_local(cluster.start)
    end_local = to_local(cluster.end)
    return {
        'date': start_local.strftime('%Y-%m-%d'),
        'start_time': start_local.strftime('%H:%M'),
        'end_time': end_local.strftime('%H:%M'),
        'duration': round(total_hours, 1),
        'episodes': len(cluster.episodes),
        'series_name': cluster.series_name,
        'user_name': cluster.user_name,
        'user_id': cluster.user_id,
    }


def detect_marathons(
    episodes: Iterable[Any],
    min_episodes: int = DEFAULT_MIN_EPISODES,
    min_hours: float = DEFAULT_MIN_HOURS,
    max_gap_minutes: int = MARATHON_MAX_GAP_MINUTES,
) -> list[dict[str, Any]]:
    """
    Find binge-watching sessions.

    Episodes are walked in (user, series, played_at) order. Consecutive
    episodes of the same series by the same user whose start times are at
    most ``max_gap_minutes`` apart form a cluster. A cluster qualifies as a
    marathon when it holds at least ``min_episodes`` episodes and at least
    ``min_hours`` of real watch time.

    Args:
        episodes: Episode history rows; each needs ``server_user_id``,
            ``series_name``, ``played_at``, the real-duration fields and
            optionally ``user_name`` and ``global_user_name``; the global
            name is reported when the account is linked
        min_episodes: Minimum number of episodes in a marathon
        min_hours: Minimum total real watch time in hours
        max_gap_minutes: Largest allowed gap between consecutive starts

    Returns:
        Marathons sorted by descending duration (hours, one decimal)
    """
    ordered = sorted(
        (ep for ep in episodes if ep.series_name),
        key=lambda ep: (str(ep.server_user_id), ep.series_name, ep.played_at),
    )

    marathons = []
    current: Optional[_Cluster] = None

    for ep in ordered:
        ticks = record_real_duration(ep)
        ends_at = ep.played_at + timedelta(seconds=ticks / TICKS_PER_SECOND)

        if (
            current is not None
            and current.user_id == ep.server_user_id
            and current.series_name == ep.series_name
            and _gap_minutes(current.last_start, ep.played_at) <= max_gap_minutes
        ):
            current.episodes.append((ep.played_at, ticks))
            current.end = ends_at
            continue

        marathon = _close_cluster(current, min_episodes, min_hours)
        if marathon:
            marathons.append(marathon)

        current = _Cluster(
            user_id=ep.server_user_id,
            user_name=(getattr(ep, 'global_user_name', None) or getattr(ep, 'user_name', None)
                       or str(ep.server_user_id)),
            series_name=ep.series_name,
            start=ep.played_at,
            end=ends_at,
            episodes=[(ep.played_at, ticks)],
        )

    marathon = _close_cluster(current, min_episodes, min_hours)
    if marathon:
        marathons.append(marathon)

    marathons.sort(key=lambda m: m['duration'], reverse=True)
    return marathons


def summarize_marathons(marathons: list[dict[str, Any]]) -> dict[str, Any]:
    """Count, total hours, average hours and the longest marathon."""
    total = len(marathons)
    total_hours = sum(m['duration'] for m in marathons)
    return {
        'total_marathons': total,
        'total_hours': round(total_hours, 1),
        'avg_duration': round(total_hours / total, 1) if total else 0,
        'longest_marathon': marathons[0] if marathons else None,
    }


def watched_fraction(position: Optional[int], duration: Optional[int]) -> Optional[float]:
    """Fraction of the runtime reached, or None when the runtime is unknown."""
    duration = int(duration or 0)
    if duration <= 0:
        return None
    return int(position or 0) / duration


def is_abandoned(record: Any, threshold: float = ABANDON_THRESHOLD) -> bool:
    """
    Whether a record was started but dropped early.

    A record is abandoned when it is not completed, has some progress, and
    its watched fraction is strictly below ``threshold``.
    """
    if record.is_completed:
        return False
    fraction = watched_fraction(record.playback_position, record.duration)
    if fraction is None:
        return False
    return 0 < fraction < threshold


def find_abandoned(
    records: Iterable[Any],
    threshold: float = ABANDON_THRESHOLD,
    recent_limit: int = 20,
    top_n: int = 50,
) -> dict[str, Any]:
    """
    Detect abandoned items.

    Args:
        records: History rows; ``user_name`` is used for abandoner identity
            when present, otherwise ``server_user_id``
        threshold: Watched fraction below which a record is abandoned
        recent_limit: Size of the recency feed
        top_n: Number of grouped items to return

    Returns:
        Dictionary with ``total``, ``by_item`` (ranked by distinct
        abandoners, then abandon count) and ``recent`` (newest first)
    """
    abandoned = []
    for record in records:
        if not is_abandoned(record, threshold):
            continue
        fraction = watched_fraction(record.playback_position, record.duration)
        abandoned.append({
            'id': record.id,
            'item_id': record.item_id,
            'item_name': record.item_name,
            'item_type': record.item_type,
            'series_name': record.series_name,
            'played_at': record.played_at,
            'progress': round(fraction * 100),
            'duration': int(record.duration or 0),
            'playback_position': int(record.playback_position or 0),
            'user_name': getattr(record, 'user_name', None) or str(record.server_user_id),
            'server_id': record.server_id,
        })

    abandoned.sort(key=lambda a: a['played_at'], reverse=True)

    by_item: dict[str, dict[str, Any]] = {}
    for entry in abandoned:
        group = by_item.get(entry['item_id'])
        if group is None:
            group = {**entry, 'abandon_count': 0, 'users': []}
            by_item[entry['item_id']] = group
        group['abandon_count'] += 1
        if entry['user_name'] not in group['users']:
            group['users'].append(entry['user_name'])

    ranked = sorted(
        by_item.values(),
        key=lambda g: (len(g['users']), g['abandon_count']),
        reverse=True,
    )

    return {
        'total': len(abandoned),
        'by_item': ranked[:top_n],
        'recent': abandoned[:recent_limit],
    }


def build_heatmap(records: Iterable[Any]) -> list[list[int]]:
    """7 x 24 matrix of real duration, day 0 being Sunday."""
    matrix = [[0] * 24 for _ in range(7)]
    for record in records:
        local_dt = to_local(record.played_at)
        matrix[sunday_weekday(local_dt)][local_dt.hour] += record_real_duration(record)
    return matrix


def predict_viewing(
    records: Iterable[Any],
    as_of: datetime,
    window_days: int = 7,
    peak_count: int = 3,
    horizon_hours: int = 24,
) -> dict[str, Any]:
    """
    Predict when viewing is likely to happen next.

    Args:
        records: History rows inside the analysed window
        as_of: Moment the prediction is made for (naive UTC or aware)
        window_days: Length of the analysed window, used to average
            each weekday/hour cell over the number of weeks it covers
        peak_count: Number of peak hours to report
        horizon_hours: How many hours ahead to search for the next slot

    Returns:
        Dictionary with ``heatmap`` cells, ``peak_hours`` and
        ``prediction``
    """
    records = list(records)
    matrix = build_heatmap(records)
    weeks = max(1, -(-window_days // 7))

    hourly_totals = [sum(matrix[day][hour] for day in range(7)) for hour in range(24)]
    ranked_hours = sorted(
        (hour for hour in range(24) if hourly_totals[hour] > 0),
        key=lambda hour: hourly_totals[hour],
        reverse=True,
    )
    peak_hours = [
        {'hour': hour, 'label': format_hour(hour), 'total': hourly_totals[hour]}
        for hour in ranked_hours[:peak_count]
    ]

    max_value = max((value for row in matrix for value in row), default=0) or 1
    heatmap = [
        {
            'day': day,
            'day_name': DAY_NAMES[day],
            'hour': hour,
            'hour_label': format_hour(hour),
            'value': matrix[day][hour],
            'intensity': matrix[day][hour] / max_value,
        }
        for day in range(7)
        for hour in range(24)
    ]

    now_local = to_local(as_of).replace(minute=0, second=0, microsecond=0)
    current_day = sunday_weekday(now_local)

    next_slot = None
    best_average = 0.0
    for offset in range(1, horizon_hours + 1):
        slot = now_local + timedelta(hours=offset)
        day = sunday_weekday(slot)
        average = matrix[day][slot.hour] / weeks
        if average > best_average:
            best_average = average
            next_slot = slot

    prediction = {
        'current_hour': now_local.hour,
        'current_day': current_day,
        'current_day_name': DAY_NAMES[current_day],
        'next_likely_hour': next_slot.hour if next_slot else None,
        'next_likely_day': sunday_weekday(next_slot) if next_slot else None,
        'next_likely_label': format_hour(next_slot.hour) if next_slot else None,
        'next_likely_at': next_slot.isoformat() if next_slot else None,
        'average_intensity': best_average,
    }

    return {
        'heatmap': heatmap,
        'peak_hours': peak_hours,
        'prediction': prediction,
    }


def user_peak_patterns(records: Iterable[Any], limit: int = 10) -> list[dict[str, Any]]:
    """
    Peak viewing hour per account and per linked identity.

    Rows need ``user_name`` and may carry ``global_user_name``.
    """
    accounts: dict[str, list[int]] = {}
    identities: dict[str, list[int]] = {}
    for record in records:
        hour = to_local(record.played_at).hour
        value = record_real_duration(record)
        accounts.setdefault(record.user_name, [0] * 24)[hour] += value
        global_name = getattr(record, 'global_user_name', None)
        if global_name:
            identities.setdefault(global_name, [0] * 24)[hour] += value

    def _summary(name: str, hourly: list[int], is_global: bool) -> dict[str, Any]:
        hour = hourly.index(max(hourly))
        return {'name': name, 'peak_hour': hour, 'peak_hour_label': format_hour(hour), 'is_global': is_global}

    patterns = [_summary(name, hourly, True) for name, hourly in identities.items()]
    patterns.extend(_summary(name, hourly, False) for name, hourly in list(accounts.items())[:limit])
    return patterns
