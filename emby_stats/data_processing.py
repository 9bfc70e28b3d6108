"""
Data processing functions for Emby analytics.

Watch time is always the reconciled real duration: a play count of N means N
full traversals of the item, and any in-progress position is added on top.
"""

import json
from datetime import date
from typing import Any, Iterable, Optional

import pandas as pd

from emby_stats.timezone_utils import to_local

MAX_GENRE_LENGTH = 20

GRANULARITY_FREQ = {
    'day': 'D',
    'week': 'W-SUN',
    'month': 'M',
}


def real_duration(play_count: Optional[int], duration: Optional[int], position: Optional[int]) -> int:
    """
    Reconciled watch time for one history record.

    Args:
        play_count: Number of completed plays
        duration: Nominal item runtime in ticks
        position: Current playback position in ticks

    Returns:
        Watch time in ticks
    """
    play_count = int(play_count or 0)
    total = play_count * int(duration or 0) if play_count > 0 else 0
    return total + int(position or 0)


def real_play_count(play_count: Optional[int], position: Optional[int]) -> int:
    """Number of plays, counting an unfinished watch as one."""
    play_count = int(play_count or 0)
    if play_count > 0:
        return play_count
    return 1 if int(position or 0) > 0 else 0


def record_real_duration(record: Any) -> int:
    """Real duration of a PlayHistory-like object."""
    return real_duration(record.play_count, record.duration, record.playback_position)


def record_real_play_count(record: Any) -> int:
    """Real play count of a PlayHistory-like object."""
    return real_play_count(record.play_count, record.playback_position)


def clean_genre(value: Any) -> Optional[str]:
    """
    Normalise a free-text genre tag.

    Empty, overlong and colon-containing tags (studio/series system tags)
    are rejected.
    """
    if not isinstance(value, str):
        return None
    tag = value.strip()
    if not tag or len(tag) > MAX_GENRE_LENGTH:
        return None
    if ':' in tag or '：' in tag:
        return None
    return tag


def parse_genres(raw: Optional[str]) -> list[str]:
    """
    Parse the serialized genre list of a history record.

    Malformed data yields an empty list.
    """
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(values, list):
        return []
    return [tag for tag in (clean_genre(v) for v in values) if tag]


def peak_hour(hourly: list[float]) -> int:
    """
    Hour holding the greatest mass.

    Ties go to the earliest hour; an all-zero distribution yields 0.
    """
    best_hour = 0
    best_value = 0
    for hour, value in enumerate(hourly):
        if value > best_value:
            best_value = value
            best_hour = hour
    return best_hour


def sunday_weekday(value) -> int:
    """Day of week with Sunday as 0."""
    return (value.weekday() + 1) % 7


def time_distribution(records: Iterable[Any]) -> dict[str, Any]:
    """
    Distribute real duration by hour of day, day of week and both.

    Returns:
        Dictionary with ``hourly`` (24), ``weekly`` (7, Sunday first) and
        ``heatmap`` (7 x 24) lists of tick totals
    """
    hourly = [0] * 24
    weekly = [0] * 7
    heatmap = [[0] * 24 for _ in range(7)]

    for record in records:
        local_dt = to_local(record.played_at)
        value = record_real_duration(record)
        day = sunday_weekday(local_dt)
        hourly[local_dt.hour] += value
        weekly[day] += value
        heatmap[day][local_dt.hour] += value

    return {'hourly': hourly, 'weekly': weekly, 'heatmap': heatmap}


def genre_totals(records: Iterable[Any]) -> dict[str, dict[str, int]]:
    """Sum real duration and record count per cleaned genre tag."""
    totals: dict[str, dict[str, int]] = {}
    for record in records:
        genres = parse_genres(record.genres)
        if not genres:
            continue
        value = record_real_duration(record)
        for genre in genres:
            entry = totals.setdefault(genre, {'duration': 0, 'count': 0})
            entry['duration'] += value
            entry['count'] += 1
    return totals


def top_entries(totals: dict[str, dict[str, Any]], key: str, top_n: int, label: str) -> list[dict[str, Any]]:
    """Sort a totals mapping by one of its fields and keep the first N."""
    ranked = sorted(totals.items(), key=lambda item: item[1][key], reverse=True)
    return [{label: name, **values} for name, values in ranked[:top_n]]


def build_period_series(
    records: Iterable[Any],
    start: date,
    end: date,
    granularity: str = 'day'
) -> pd.DataFrame:
    """
    Bucket real duration and play counts into calendar periods.

    Every period between ``start`` and ``end`` (inclusive, local calendar)
    is present, with zeros where nothing was watched.

    Args:
        records: PlayHistory-like objects
        start: First local date
        end: Last local date
        granularity: ``day``, ``week`` (Monday to Sunday) or ``month``

    Returns:
        DataFrame with ``period``, ``label``, ``duration``, ``count``,
        ``plays`` and ``hours`` columns
    """
    if granularity not in GRANULARITY_FREQ:
        raise ValueError(f"Unknown granularity: {granularity}")
    freq = GRANULARITY_FREQ[granularity]

    rows = [
        {
            'date': to_local(record.played_at).date(),
            'duration': record_real_duration(record),
            'plays': record_real_play_count(record),
        }
        for record in records
    ]
    df = pd.DataFrame(rows, columns=['date', 'duration', 'plays'])

    periods = pd.period_range(start=pd.Timestamp(start), end=pd.Timestamp(end), freq=freq)

    if df.empty:
        grouped = pd.DataFrame(columns=['duration', 'count', 'plays'], dtype='int64')
    else:
        df['period'] = pd.to_datetime(df['date']).dt.to_period(freq)
        grouped = df.groupby('period').agg(
            duration=('duration', 'sum'),
            count=('duration', 'size'),
            plays=('plays', 'sum'),
        )

    series = grouped.reindex(periods, fill_value=0).astype('int64')
    series.index.name = 'period'
    series = series.reset_index()
    series['label'] = series['period'].apply(lambda p: p.start_time.strftime('%Y-%m-%d'))
    series['hours'] = (series['duration'] / 10_000_000 / 3600).round(1)
    return series[['period', 'label', 'duration', 'count', 'plays', 'hours']]
