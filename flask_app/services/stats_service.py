"""
Service for derived statistics: daily report, trends, period comparison,
time distribution, content breakdown, tag cloud, per-user and device stats,
month calendar, dashboard overview and per-item detail.

Every watch-time figure is the reconciled real duration. Every operation
takes an explicit ``as_of`` (naive UTC, defaulting to now) and never writes.
"""
import math
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from emby_stats.data_processing import (
    build_period_series,
    genre_totals,
    parse_genres,
    peak_hour,
    record_real_duration,
    record_real_play_count,
    time_distribution,
    top_entries,
)
from emby_stats.insights import DAY_NAMES
from emby_stats.timezone_utils import (
    local_date,
    local_day_bounds,
    local_range_bounds,
    to_local,
    utcnow,
)
from emby_stats.utils import format_hour, percent_change, ticks_to_hours
from flask_app.models import db, PlayHistory, Server, ServerUser, SessionLog
from flask_app.services.history_query import HistoryFilter, history_with_users
from flask_app.services.utils import isoformat

MAX_TREND_DAYS = 365
TAG_CLOUD_SIZE = 50

# (upper bound in Mbps, label); the last bucket is open-ended
BITRATE_BUCKETS = [
    (2, '<2 Mbps'),
    (5, '2-5 Mbps'),
    (10, '5-10 Mbps'),
    (20, '10-20 Mbps'),
    (None, '>20 Mbps'),
]


def display_name(record) -> str:
    """Item title, prefixed with the series for episodes."""
    if record.series_name:
        return f"{record.series_name} - {record.item_name}"
    return record.item_name


def _sum_real_duration(records) -> int:
    return sum(record_real_duration(r) for r in records)


class StatsService:
    """Service for rollup statistics over the stored history."""

    def get_daily_report(self, day: Optional[date] = None, as_of: Optional[datetime] = None,
                         history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """
        Summarise one local calendar day.

        Args:
            day: Local date to report on (defaults to the day of ``as_of``)
            as_of: Reference moment, naive UTC
            history_filter: Optional server/user filter; its range is ignored

        Returns:
            Summary totals, top users/items/genres/clients, quality counts,
            hourly data and the ten most recent items
        """
        as_of = as_of or utcnow()
        day = day or local_date(as_of)
        base = history_filter or HistoryFilter()

        day_filter = base.with_range(*local_day_bounds(day))
        records = history_with_users(day_filter)
        sessions = day_filter.session_query().order_by(SessionLog.started_at.desc()).all()

        total_duration = 0
        users: Dict[str, Dict[str, Any]] = {}
        items: Dict[str, Dict[str, Any]] = {}
        hourly = [0] * 24
        hdr_count = 0
        count_4k = 0
        count_1080p = 0

        for record in records:
            value = record_real_duration(record)
            total_duration += value

            user_name = record.user_name or 'Unknown'
            user = users.setdefault(user_name, {'name': user_name, 'duration': 0, 'count': 0, 'items': []})
            user['duration'] += value
            user['count'] += 1
            if record.item_name not in user['items']:
                user['items'].append(record.item_name)

            item = items.setdefault(record.item_id, {
                'name': display_name(record),
                'type': record.item_type,
                'duration': 0,
                'count': 0,
            })
            item['duration'] += value
            item['count'] += 1

            hourly[to_local(record.played_at).hour] += value

            if record.is_hdr:
                hdr_count += 1
            resolution = (record.resolution or '').lower()
            if '4k' in resolution or '2160' in resolution:
                count_4k += 1
            elif '1080' in resolution:
                count_1080p += 1

        clients: Dict[str, int] = {}
        for session in sessions:
            client = session.client or 'Unknown'
            clients[client] = clients.get(client, 0) + 1

        yesterday_filter = base.with_range(*local_day_bounds(day - timedelta(days=1)))
        yesterday_duration = _sum_real_duration(yesterday_filter.history_query().all())
        duration_trend = 0.0
        if yesterday_duration > 0:
            duration_trend = round((total_duration - yesterday_duration) / yesterday_duration * 100, 1)

        genres = genre_totals(records)

        return {
            'date': day.isoformat(),
            'summary': {
                'total_duration': total_duration,
                'total_items': len(records),
                'unique_users': len({r.server_user_id for r in records}),
                'total_sessions': len(sessions),
                'peak_hour': format_hour(peak_hour(hourly)),
                'duration_trend': duration_trend,
            },
            'top_users': sorted(users.values(), key=lambda u: u['duration'], reverse=True)[:5],
            'top_items': sorted(items.values(), key=lambda i: i['duration'], reverse=True)[:5],
            'top_genres': top_entries(genres, 'duration', 5, 'genre'),
            'top_clients': [
                {'client': client, 'count': count}
                for client, count in sorted(clients.items(), key=lambda c: c[1], reverse=True)[:5]
            ],
            'quality': {
                'hdr_count': hdr_count,
                'count_4k': count_4k,
                'count_1080p': count_1080p,
                'total': len(records),
            },
            'hourly_data': hourly,
            'recent_items': [
                {
                    'name': display_name(r),
                    'type': r.item_type,
                    'user': r.user_name,
                    'duration': record_real_duration(r),
                    'played_at': isoformat(r.played_at),
                }
                for r in records[:10]
            ],
        }

    def get_trends(self, days: int = 7, granularity: str = 'day', as_of: Optional[datetime] = None,
                   history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """
        Watch time bucketed by day, week or month over the last ``days`` days.

        Raises:
            ValueError: If the granularity is unknown
        """
        as_of = as_of or utcnow()
        days = max(1, min(int(days), MAX_TREND_DAYS))
        last_day = local_date(as_of)
        first_day = last_day - timedelta(days=days - 1)

        base = history_filter or HistoryFilter()
        records = base.with_range(*local_range_bounds(first_day, last_day)).history_query().all()
        series = build_period_series(records, first_day, last_day, granularity)

        trends = [
            {
                'date': row.label,
                'label': row.period.start_time.strftime('%m/%d'),
                'duration': int(row.duration),
                'hours': float(row.hours),
                'count': int(row.count),
                'plays': int(row.plays),
            }
            for row in series.itertuples(index=False)
        ]

        half = len(trends) // 2
        first_total = sum(t['duration'] for t in trends[:half])
        second_total = sum(t['duration'] for t in trends[half:])
        change = round((second_total - first_total) / first_total * 100) if first_total > 0 else 0

        return {
            'granularity': granularity,
            'trends': trends,
            'summary': {
                'total_duration': sum(t['duration'] for t in trends),
                'total_count': sum(t['count'] for t in trends),
                'avg_hours': round(sum(t['hours'] for t in trends) / len(trends), 1) if trends else 0,
                'change_percent': change,
                'change_direction': 'up' if change >= 0 else 'down',
            },
        }

    def _period_totals(self, base: HistoryFilter, first: date, last: date) -> Dict[str, Any]:
        start, end = local_range_bounds(first, last)
        records = base.with_range(start, end).history_query().all()
        return {
            'play_duration': _sum_real_duration(records),
            'play_count': len(records),
            'start_date': first.isoformat(),
            'end_date': last.isoformat(),
        }

    def _compare(self, base: HistoryFilter, current: tuple, previous: tuple) -> Dict[str, Any]:
        cur = self._period_totals(base, *current)
        prev = self._period_totals(base, *previous)
        return {
            'current': cur,
            'previous': prev,
            'change': {
                'duration_percent': percent_change(prev['play_duration'], cur['play_duration']),
                'count_percent': percent_change(prev['play_count'], cur['play_count']),
            },
        }

    def get_comparison(self, as_of: Optional[datetime] = None,
                       history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """Today vs yesterday, this week vs last (Monday start), this month vs last."""
        as_of = as_of or utcnow()
        base = history_filter or HistoryFilter()
        today = local_date(as_of)

        week_start = today - timedelta(days=today.weekday())
        last_week_start = week_start - timedelta(days=7)

        month_start = today.replace(day=1)
        next_month_start = (month_start + timedelta(days=32)).replace(day=1)
        last_month_end = month_start - timedelta(days=1)
        last_month_start = last_month_end.replace(day=1)

        return {
            'today': self._compare(base, (today, today), (today - timedelta(days=1), today - timedelta(days=1))),
            'week': self._compare(base, (week_start, week_start + timedelta(days=6)),
                                  (last_week_start, week_start - timedelta(days=1))),
            'month': self._compare(base, (month_start, next_month_start - timedelta(days=1)),
                                   (last_month_start, last_month_end)),
        }

    def get_time_distribution(self, history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """Hourly, weekday (Sunday first) and weekday x hour distribution."""
        records = (history_filter or HistoryFilter()).history_query().all()
        distribution = time_distribution(records)
        hourly = distribution['hourly']
        weekly = distribution['weekly']

        return {
            'hourly': [{'hour': h, 'label': format_hour(h), 'duration': v} for h, v in enumerate(hourly)],
            'weekly': [{'day': d, 'label': DAY_NAMES[d], 'duration': v} for d, v in enumerate(weekly)],
            'heatmap': [
                {
                    'day': DAY_NAMES[d],
                    'hours': [{'hour': h, 'duration': v} for h, v in enumerate(row)],
                }
                for d, row in enumerate(distribution['heatmap'])
            ],
            'peak_hour': format_hour(peak_hour(hourly)),
            'peak_day': DAY_NAMES[peak_hour(weekly)],
        }

    def get_content_breakdown(self, history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """Watch time by genre, item type, resolution, dynamic range and year."""
        records = (history_filter or HistoryFilter()).history_query().all()

        def _group(key_fn) -> Dict[Any, Dict[str, int]]:
            groups: Dict[Any, Dict[str, int]] = {}
            for record in records:
                key = key_fn(record)
                if key is None:
                    continue
                entry = groups.setdefault(key, {'duration': 0, 'count': 0})
                entry['duration'] += record_real_duration(record)
                entry['count'] += 1
            return groups

        item_types = _group(lambda r: r.item_type)
        resolutions = _group(lambda r: r.resolution)
        hdr = _group(lambda r: 'HDR' if r.is_hdr else 'SDR')
        years = _group(lambda r: r.year)

        return {
            'genres': top_entries(genre_totals(records), 'duration', 15, 'genre'),
            'item_types': [{'type': k, **v} for k, v in item_types.items()],
            'resolutions': [{'resolution': k, **v} for k, v in resolutions.items()],
            'hdr': [{'type': k, **v} for k, v in hdr.items()],
            'years': [{'year': k, **v} for k, v in sorted(years.items(), reverse=True)[:20]],
        }

    def get_tag_cloud(self, history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """Top genres weighted by watch time, with 1-10 display sizes."""
        records = (history_filter or HistoryFilter()).history_query().all()
        totals = genre_totals(records)
        ranked = sorted(totals.items(), key=lambda t: t[1]['duration'], reverse=True)[:TAG_CLOUD_SIZE]

        max_weight = (ranked[0][1]['duration'] if ranked else 0) or 1
        tags = [
            {
                'tag': tag,
                'weight': values['duration'],
                'count': values['count'],
                'size': math.ceil(values['duration'] / max_weight * 9) + 1,
            }
            for tag, values in ranked
        ]
        return {'tags': tags, 'total': len(totals)}

    def get_user_stats(self, server_user_id: int, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Detailed statistics for one server user.

        Raises:
            LookupError: If the server user does not exist
        """
        as_of = as_of or utcnow()
        server_user = db.session.get(ServerUser, server_user_id)
        if server_user is None:
            raise LookupError(f"User {server_user_id} not found")

        history = (
            PlayHistory.query
            .filter_by(server_user_id=server_user.id)
            .order_by(PlayHistory.played_at.desc())
            .all()
        )

        total_duration = _sum_real_duration(history)
        total_items = len(history)
        completed = sum(1 for r in history if r.is_completed)

        hourly = [0] * 24
        types: Dict[str, Dict[str, int]] = {}
        items: Dict[str, Dict[str, Any]] = {}
        for record in history:
            value = record_real_duration(record)
            hourly[to_local(record.played_at).hour] += value

            entry = types.setdefault(record.item_type, {'count': 0, 'duration': 0})
            entry['count'] += 1
            entry['duration'] += value

            item = items.setdefault(record.item_id, {
                'name': record.item_name,
                'type': record.item_type,
                'series_name': record.series_name,
                'duration': 0,
                'count': 0,
            })
            item['duration'] += value
            item['count'] += 1

        today = local_date(as_of)
        trend_start = today - timedelta(days=29)
        daily: Dict[date, int] = {}
        for record in history:
            played_day = local_date(record.played_at)
            if trend_start <= played_day <= today:
                daily[played_day] = daily.get(played_day, 0) + record_real_duration(record)
        daily_trend = [
            {'date': (trend_start + timedelta(days=i)).isoformat(),
             'duration': daily.get(trend_start + timedelta(days=i), 0)}
            for i in range(30)
        ]

        session_filter = (
            (SessionLog.server_id == server_user.server_id)
            & (SessionLog.emby_user_id == server_user.emby_user_id)
        )
        recent_sessions = (
            SessionLog.query.filter(session_filter)
            .order_by(SessionLog.started_at.desc())
            .limit(50)
            .all()
        )
        devices = (
            db.session.query(
                SessionLog.device_name,
                SessionLog.client,
                func.count(SessionLog.id),
                func.max(SessionLog.started_at),
            )
            .filter(session_filter)
            .group_by(SessionLog.device_name, SessionLog.client)
            .order_by(func.max(SessionLog.started_at).desc())
            .all()
        )

        return {
            'user': {
                'id': server_user.id,
                'username': server_user.username,
                'emby_user_id': server_user.emby_user_id,
                'server_id': server_user.server_id,
                'server_name': server_user.server.name,
                'global_user': (
                    {'id': server_user.global_user.id, 'name': server_user.global_user.name}
                    if server_user.global_user else None
                ),
            },
            'summary': {
                'total_duration': total_duration,
                'total_hours': ticks_to_hours(total_duration),
                'session_duration': sum(int(s.real_duration or 0) for s in recent_sessions),
                'total_items': total_items,
                'total_unique_items': len(items),
                'today_play_count': len({r.item_id for r in history if local_date(r.played_at) == today}),
                'completed_items': completed,
                'completion_rate': round(completed / (total_items or 1) * 100),
                'active_days': len(daily),
                'peak_hour': format_hour(peak_hour(hourly)),
            },
            'top_genres': top_entries(genre_totals(history), 'duration', 10, 'genre'),
            'top_items': sorted(items.values(), key=lambda i: i['duration'], reverse=True)[:10],
            'type_distribution': [{'type': k, **v} for k, v in types.items()],
            'hourly_data': hourly,
            'daily_trend': daily_trend,
            'recent_history': [
                {
                    'id': r.id,
                    'item_id': r.item_id,
                    'item_name': r.item_name,
                    'item_type': r.item_type,
                    'series_name': r.series_name,
                    'duration': record_real_duration(r),
                    'played_at': isoformat(r.played_at),
                    'is_completed': r.is_completed,
                    'server_id': r.server_id,
                }
                for r in history[:20]
            ],
            'devices': [
                {'device_name': device, 'client': client, 'count': count, 'last_seen': isoformat(last_seen)}
                for device, client, count, last_seen in devices
            ],
        }

    def get_device_stats(self, history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """Client, device, playback method, codec and bitrate breakdowns from session logs."""
        sessions = (history_filter or HistoryFilter()).session_query().all()

        clients: Dict[str, Dict[str, int]] = {}
        devices: Dict[str, Dict[str, int]] = {}
        codecs: Dict[str, int] = {}
        bitrates = {label: 0 for _, label in BITRATE_BUCKETS}
        transcoding = 0

        for session in sessions:
            real = int(session.real_duration or 0)

            client = clients.setdefault(session.client or 'Unknown',
                                        {'count': 0, 'duration': 0, 'transcode_count': 0})
            client['count'] += 1
            client['duration'] += real
            if session.is_transcoding:
                client['transcode_count'] += 1
                transcoding += 1

            device = devices.setdefault(session.device_name or 'Unknown', {'count': 0, 'duration': 0})
            device['count'] += 1
            device['duration'] += real

            if session.video_codec:
                codecs[session.video_codec] = codecs.get(session.video_codec, 0) + 1

            if session.bitrate:
                mbps = session.bitrate / 1_000_000
                for upper, label in BITRATE_BUCKETS:
                    if upper is None or mbps < upper:
                        bitrates[label] += 1
                        break

        total = len(sessions)
        return {
            'summary': {
                'total_sessions': total,
                'unique_clients': len(clients),
                'unique_devices': len(devices),
                'transcoding_rate': round(transcoding / total * 100) if total else 0,
            },
            'playback_method': {'transcode': transcoding, 'direct_play': total - transcoding},
            'clients': sorted(
                (
                    {'client': name, **stats,
                     'transcode_rate': round(stats['transcode_count'] / stats['count'] * 100)}
                    for name, stats in clients.items()
                ),
                key=lambda c: c['count'],
                reverse=True,
            ),
            'devices': sorted(
                ({'device': name, **stats} for name, stats in devices.items()),
                key=lambda d: d['count'],
                reverse=True,
            )[:20],
            'codecs': [
                {'codec': codec, 'count': count}
                for codec, count in sorted(codecs.items(), key=lambda c: c[1], reverse=True)
            ],
            'bitrate_distribution': [
                {'range': label, 'count': count} for label, count in bitrates.items() if count > 0
            ],
        }

    def get_overview(self) -> List[Dict[str, Any]]:
        """Per-server record counts, for the sync status page."""
        rows = (
            db.session.query(Server.id, Server.name, func.count(PlayHistory.id))
            .outerjoin(PlayHistory, PlayHistory.server_id == Server.id)
            .group_by(Server.id, Server.name)
            .order_by(Server.id)
            .all()
        )
        return [{'server_id': sid, 'server_name': name, 'records': count} for sid, name, count in rows]

    def get_calendar(self, month: Optional[str] = None, as_of: Optional[datetime] = None,
                     history_filter: Optional[HistoryFilter] = None) -> Dict[str, Any]:
        """
        Per-day activity over one local calendar month.

        Args:
            month: ``YYYY-MM`` (defaults to the month of ``as_of``)
            as_of: Reference moment, naive UTC
            history_filter: Optional server/user filter; its range is ignored

        Returns:
            Active days (date ascending) with watch time, play count,
            distinct users and the top items, plus month totals

        Raises:
            ValueError: If ``month`` is not ``YYYY-MM``
        """
        as_of = as_of or utcnow()
        if month:
            first_day = datetime.strptime(month.strip(), '%Y-%m').date()
        else:
            first_day = local_date(as_of).replace(day=1)
        last_day = (first_day + timedelta(days=32)).replace(day=1) - timedelta(days=1)

        base = history_filter or HistoryFilter()
        records = base.with_range(*local_range_bounds(first_day, last_day)).history_query().all()

        days: Dict[date, Dict[str, Any]] = {}
        for record in records:
            day = days.setdefault(local_date(record.played_at),
                                  {'duration': 0, 'count': 0, 'users': set(), 'items': {}})
            value = record_real_duration(record)
            day['duration'] += value
            day['count'] += 1
            day['users'].add(record.server_user_id)
            item = day['items'].setdefault(record.item_id, {
                'item_id': record.item_id,
                'name': display_name(record),
                'type': record.item_type,
                'server_id': record.server_id,
                'duration': 0,
            })
            item['duration'] += value

        total_duration = sum(d['duration'] for d in days.values())
        active_days = len(days)
        return {
            'month': first_day.strftime('%Y-%m'),
            'days': [
                {
                    'date': day.isoformat(),
                    'duration': data['duration'],
                    'hours': round(ticks_to_hours(data['duration']), 1),
                    'count': data['count'],
                    'user_count': len(data['users']),
                    'items': sorted(data['items'].values(), key=lambda i: i['duration'], reverse=True)[:5],
                }
                for day, data in sorted(days.items())
            ],
            'summary': {
                'total_duration': total_duration,
                'total_count': sum(d['count'] for d in days.values()),
                'active_days': active_days,
                'avg_daily_hours': round(ticks_to_hours(total_duration) / active_days, 1) if active_days else 0,
            },
        }

    def get_dashboard(self, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Library-wide overview: totals, server split, 30-day trend, top items,
        recent activity and item type split.
        """
        as_of = as_of or utcnow()
        today = local_date(as_of)
        records = history_with_users(HistoryFilter())
        servers = Server.query.order_by(Server.id).all()
        server_names = {server.id: server.name for server in servers}

        trend_start = today - timedelta(days=29)
        daily = {trend_start + timedelta(days=i): 0 for i in range(30)}
        by_server: Dict[int, Dict[str, int]] = {}
        items: Dict[str, Dict[str, Any]] = {}
        types: Dict[str, Dict[str, int]] = {}
        active_days = set()
        today_items = set()

        for record in records:
            value = record_real_duration(record)
            plays = record_real_play_count(record)
            played_day = local_date(record.played_at)
            active_days.add(played_day)
            if played_day == today:
                today_items.add(record.item_id)
            if played_day in daily:
                daily[played_day] += value

            server = by_server.setdefault(record.server_id, {'duration': 0, 'plays': 0})
            server['duration'] += value
            server['plays'] += plays

            item = items.setdefault(record.item_id, {
                'item_id': record.item_id,
                'item_name': record.item_name,
                'item_type': record.item_type,
                'server_id': record.server_id,
                'duration': 0,
                'plays': 0,
            })
            item['duration'] += value
            item['plays'] += plays

            item_type = types.setdefault(record.item_type, {'duration': 0, 'plays': 0})
            item_type['duration'] += value
            item_type['plays'] += plays

        trend = [{'date': day.isoformat(), 'duration': value} for day, value in daily.items()]
        this_week = sum(t['duration'] for t in trend[-7:])
        last_week = sum(t['duration'] for t in trend[-14:-7])

        return {
            'overview': {
                'total_duration': sum(s['duration'] for s in by_server.values()),
                'total_plays': sum(s['plays'] for s in by_server.values()),
                'total_records': len(records),
                'total_items': len(items),
                'today_items': len(today_items),
                'active_days': len(active_days),
                'server_count': len(servers),
                'week_change': round((this_week - last_week) / last_week * 100) if last_week > 0 else 0,
            },
            'server_distribution': [
                {'server_id': sid, 'server_name': server_names.get(sid, 'Unknown'), **stats}
                for sid, stats in sorted(by_server.items(), key=lambda s: s[1]['duration'], reverse=True)
            ],
            'daily_trend': trend,
            'top_items': sorted(items.values(), key=lambda i: (i['plays'], i['duration']), reverse=True)[:10],
            'recent_activity': [
                {
                    'id': r.id,
                    'item_id': r.item_id,
                    'item_name': r.item_name,
                    'item_type': r.item_type,
                    'series_name': r.series_name,
                    'played_at': isoformat(r.played_at),
                    'duration': record_real_duration(r),
                    'user_name': r.global_user_name or r.user_name,
                    'server_id': r.server_id,
                    'server_name': server_names.get(r.server_id, 'Unknown'),
                }
                for r in records[:10]
            ],
            'item_types': [{'type': k, **v} for k, v in types.items()],
        }

    def get_media_detail(self, item_id: str, server_id: int) -> Dict[str, Any]:
        """
        Watch history of one item on one server.

        Raises:
            LookupError: If the item has no stored history on that server
        """
        records = history_with_users(HistoryFilter(server_ids=[server_id]), item_id=item_id)
        if not records:
            raise LookupError(f"Media {item_id} not found on server {server_id}")

        latest = records[0]
        watchers: Dict[str, Dict[str, Any]] = {}
        hourly = [0] * 24
        daily: Dict[str, int] = {}
        for record in records:
            name = record.global_user_name or record.user_name or 'Unknown'
            watcher = watchers.setdefault(name, {'name': name, 'duration': 0, 'plays': 0,
                                                 'last_played': record.played_at})
            watcher['duration'] += record_real_duration(record)
            watcher['plays'] += record_real_play_count(record)
            watcher['last_played'] = max(watcher['last_played'], record.played_at)

            local_dt = to_local(record.played_at)
            hourly[local_dt.hour] += 1
            day = local_dt.date().isoformat()
            daily[day] = daily.get(day, 0) + 1

        completed = sum(1 for r in records if r.is_completed)
        return {
            'media': {
                'item_id': item_id,
                'server_id': server_id,
                'item_name': latest.item_name,
                'item_type': latest.item_type,
                'series_name': latest.series_name,
                'season_name': latest.season_name,
                'episode_number': latest.episode_number,
                'genres': parse_genres(latest.genres),
                'year': latest.year,
                'duration': latest.duration,
                'video_codec': latest.video_codec,
                'resolution': latest.resolution,
                'is_hdr': latest.is_hdr,
            },
            'summary': {
                'total_duration': _sum_real_duration(records),
                'total_plays': sum(record_real_play_count(r) for r in records),
                'unique_users': len(watchers),
                'completed_plays': completed,
                'completion_rate': round(completed / len(records) * 100),
                'first_watched': isoformat(records[-1].played_at),
                'last_watched': isoformat(latest.played_at),
            },
            'watchers': [
                {**w, 'last_played': isoformat(w['last_played'])}
                for w in sorted(watchers.values(), key=lambda w: w['duration'], reverse=True)
            ],
            'hourly_data': hourly,
            'daily_data': [{'date': day, 'count': count} for day, count in sorted(daily.items())],
            'recent_plays': [
                {
                    'id': r.id,
                    'user_name': r.global_user_name or r.user_name,
                    'duration': record_real_duration(r),
                    'played_at': isoformat(r.played_at),
                    'is_completed': r.is_completed,
                }
                for r in records[:10]
            ],
        }
