"""
Read accessors over PlayHistory and SessionLog.

User filters accept ``server:<id>`` (one server account), ``global:<id>``
(every account linked to a global user) or a bare ``<id>``, which is read
as a global user id.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from flask_app.models import db, GlobalUser, PlayHistory, ServerUser, SessionLog
from flask_app.services.utils import to_int

SERVER_PREFIX = 'server:'
GLOBAL_PREFIX = 'global:'


def resolve_server_user_ids(user_id: str) -> List[int]:
    """
    Expand a user filter into the ServerUser ids it covers.

    An unknown or unlinked global user yields an empty list, which callers
    must treat as "match nothing" rather than "no filter".
    """
    user_id = (user_id or '').strip()

    if user_id.startswith(SERVER_PREFIX):
        server_user_id = to_int(user_id[len(SERVER_PREFIX):])
        if server_user_id is None:
            return []
        return [server_user_id]

    if user_id.startswith(GLOBAL_PREFIX):
        user_id = user_id[len(GLOBAL_PREFIX):]

    global_user_id = to_int(user_id)
    if global_user_id is None or db.session.get(GlobalUser, global_user_id) is None:
        return []

    rows = db.session.query(ServerUser.id).filter(ServerUser.global_user_id == global_user_id).all()
    return [row.id for row in rows]


@dataclass
class HistoryFilter:
    """Optional date range, server subset and user filter for read queries."""

    start: Optional[datetime] = None  # inclusive, naive UTC
    end: Optional[datetime] = None  # exclusive, naive UTC
    server_ids: Optional[List[int]] = None
    user_id: Optional[str] = None

    @classmethod
    def from_args(cls, args, start: Optional[datetime] = None, end: Optional[datetime] = None) -> 'HistoryFilter':
        """Build from request query arguments (``serverIds``, ``userId``)."""
        server_ids = None
        raw_servers = args.get('serverIds')
        if raw_servers:
            server_ids = [sid for sid in (to_int(part) for part in raw_servers.split(',')) if sid is not None]
        return cls(start=start, end=end, server_ids=server_ids, user_id=args.get('userId') or None)

    def server_user_ids(self) -> Optional[List[int]]:
        if not self.user_id:
            return None
        return resolve_server_user_ids(self.user_id)

    def history_query(self):
        """PlayHistory query with every filter applied."""
        query = PlayHistory.query
        if self.start is not None:
            query = query.filter(PlayHistory.played_at >= self.start)
        if self.end is not None:
            query = query.filter(PlayHistory.played_at < self.end)
        if self.server_ids:
            query = query.filter(PlayHistory.server_id.in_(self.server_ids))
        user_ids = self.server_user_ids()
        if user_ids is not None:
            query = query.filter(PlayHistory.server_user_id.in_(user_ids))
        return query

    def session_query(self):
        """SessionLog query with every filter applied, by session start."""
        query = SessionLog.query
        if self.start is not None:
            query = query.filter(SessionLog.started_at >= self.start)
        if self.end is not None:
            query = query.filter(SessionLog.started_at < self.end)
        if self.server_ids:
            query = query.filter(SessionLog.server_id.in_(self.server_ids))
        user_ids = self.server_user_ids()
        if user_ids is not None:
            query = query.filter(SessionLog.server_user_id.in_(user_ids))
        return query

    def with_range(self, start: Optional[datetime], end: Optional[datetime]) -> 'HistoryFilter':
        """Copy of this filter over another date range."""
        return HistoryFilter(start=start, end=end, server_ids=self.server_ids, user_id=self.user_id)


def history_with_users(history_filter: HistoryFilter, item_types: Optional[Iterable[str]] = None,
                       item_id: Optional[str] = None):
    """
    History rows annotated with ``user_name`` and ``global_user_name``.

    Returns:
        List of PlayHistory objects carrying the two extra attributes
    """
    query = (
        history_filter.history_query()
        .join(ServerUser, PlayHistory.server_user_id == ServerUser.id)
        .outerjoin(GlobalUser, ServerUser.global_user_id == GlobalUser.id)
        .add_columns(ServerUser.username, GlobalUser.name)
    )
    if item_types:
        query = query.filter(PlayHistory.item_type.in_(list(item_types)))
    if item_id is not None:
        query = query.filter(PlayHistory.item_id == item_id)

    records = []
    for record, username, global_name in query.order_by(PlayHistory.played_at.desc()).all():
        record.user_name = username
        record.global_user_name = global_name
        records.append(record)
    return records
