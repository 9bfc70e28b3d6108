"""
Leaderboards of users, media items and servers by real watch time.
"""
from typing import Any, Dict, List, Optional

from emby_stats.data_processing import record_real_duration, record_real_play_count
from flask_app.models import db, GlobalUser, PlayHistory, Server, ServerUser

LEADERBOARD_TYPES = ('users', 'media', 'servers')


class LeaderboardService:
    """Service for ranking users, items and servers."""

    def __init__(self, top_users: int = 20, top_media: int = 50):
        self.top_users = top_users
        self.top_media = top_media

    def get_leaderboard(self, board_type: str = 'users', server_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Dispatch to one of the leaderboards.

        Raises:
            ValueError: If ``board_type`` is not users, media or servers
        """
        if board_type == 'users':
            data = self.get_user_leaderboard(server_id)
        elif board_type == 'media':
            data = self.get_media_leaderboard(server_id)
        elif board_type == 'servers':
            data = self.get_server_leaderboard(server_id)
        else:
            raise ValueError(f"Invalid leaderboard type: {board_type}")
        return {'type': board_type, 'data': data}

    def get_user_leaderboard(self, server_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Rank server accounts by real watch time.

        Accounts are never merged across servers, even when linked to the
        same global user. Accounts with no plays are left out.
        """
        users_query = db.session.query(ServerUser, Server.name).join(Server, ServerUser.server_id == Server.id)
        if server_id is not None:
            users_query = users_query.filter(ServerUser.server_id == server_id)
        accounts = users_query.all()
        if not accounts:
            return []

        totals = {su.id: {'duration': 0, 'plays': 0} for su, _ in accounts}
        history = PlayHistory.query.filter(PlayHistory.server_user_id.in_(list(totals))).all()
        for record in history:
            entry = totals[record.server_user_id]
            entry['duration'] += record_real_duration(record)
            entry['plays'] += record_real_play_count(record)

        board = [
            {
                'id': f"server:{su.id}",
                'name': su.username,
                'is_global': False,
                'avatar': None,
                'server_name': server_name,
                'total_duration': totals[su.id]['duration'],
                'total_plays': totals[su.id]['plays'],
            }
            for su, server_name in accounts
            if totals[su.id]['plays'] > 0
        ]
        board.sort(key=lambda u: u['total_duration'], reverse=True)
        return board[:self.top_users]

    def get_media_leaderboard(self, server_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Rank items by real watch time, with the people who watched them."""
        query = (
            db.session.query(PlayHistory, ServerUser.username, GlobalUser.name)
            .join(ServerUser, PlayHistory.server_user_id == ServerUser.id)
            .outerjoin(GlobalUser, ServerUser.global_user_id == GlobalUser.id)
        )
        if server_id is not None:
            query = query.filter(PlayHistory.server_id == server_id)

        items: Dict[str, Dict[str, Any]] = {}
        for record, username, global_name in query.order_by(PlayHistory.id).all():
            entry = items.get(record.item_id)
            if entry is None:
                entry = {
                    'item_id': record.item_id,
                    'item_name': record.item_name,
                    'item_type': record.item_type,
                    'series_name': record.series_name,
                    'server_id': record.server_id,
                    'total_duration': 0,
                    'total_plays': 0,
                    'watched_by': [],
                }
                items[record.item_id] = entry
            entry['total_duration'] += record_real_duration(record)
            entry['total_plays'] += record_real_play_count(record)
            watcher = global_name or username
            if watcher not in entry['watched_by']:
                entry['watched_by'].append(watcher)

        ranked = sorted(items.values(), key=lambda i: i['total_duration'], reverse=True)
        return ranked[:self.top_media]

    def get_server_leaderboard(self, server_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Rank servers by real watch time."""
        query = db.session.query(PlayHistory, Server.name).join(Server, PlayHistory.server_id == Server.id)
        if server_id is not None:
            query = query.filter(PlayHistory.server_id == server_id)

        servers: Dict[int, Dict[str, Any]] = {}
        for record, server_name in query.all():
            entry = servers.setdefault(record.server_id, {
                'server_id': record.server_id,
                'server_name': server_name,
                'total_duration': 0,
                'total_plays': 0,
            })
            entry['total_duration'] += record_real_duration(record)
            entry['total_plays'] += record_real_play_count(record)

        return sorted(servers.values(), key=lambda s: s['total_duration'], reverse=True)
