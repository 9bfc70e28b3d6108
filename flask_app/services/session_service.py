"""
Service for live playback sessions recorded in SessionLog.
"""
import logging
from typing import Any, Dict, List

from emby_stats.api_client import EmbyClient
from emby_stats.timezone_utils import utcnow
from flask_app.models import db, Server, SessionLog
from flask_app.services.utils import isoformat

logger = logging.getLogger(__name__)


class SessionService:
    """Service for listing and controlling playback sessions."""

    def _get_active_session(self, session_log_id: int) -> SessionLog:
        session_log = db.session.get(SessionLog, session_log_id)
        if session_log is None:
            raise LookupError("Session not found")
        if not session_log.is_active:
            raise ValueError("Session is not active")
        return session_log

    def _client_for(self, session_log: SessionLog) -> EmbyClient:
        server = db.session.get(Server, session_log.server_id)
        if server is None:
            raise LookupError("Server not found")
        return EmbyClient(server.to_emby_config())

    def stop_session(self, session_log_id: int) -> None:
        """
        Stop playback on a live session and mark its log row ended.

        Raises:
            LookupError: If the session log or its server does not exist
            ValueError: If the session is no longer active
            EmbyApiError: If the server rejects the command
        """
        session_log = self._get_active_session(session_log_id)
        self._client_for(session_log).stop_session(session_log.session_id)

        session_log.is_active = False
        session_log.ended_at = utcnow()
        db.session.commit()
        logger.info("Stopped session %s on server %s", session_log.session_id, session_log.server_id)

    def send_message(self, session_log_id: int, text: str) -> None:
        """
        Show a message on a live session's client.

        Raises:
            ValueError: If ``text`` is empty or the session is not active
        """
        if not text or not text.strip():
            raise ValueError("Message text is required")
        session_log = self._get_active_session(session_log_id)
        self._client_for(session_log).send_message(session_log.session_id, text.strip())

    def run_command(self, session_log_id: int, command: str, text: str = None) -> None:
        """Run ``stop`` or ``message`` against a session."""
        if command == 'stop':
            self.stop_session(session_log_id)
        elif command == 'message':
            self.send_message(session_log_id, text)
        else:
            raise ValueError("Invalid command")

    def get_active_sessions(self) -> List[Dict[str, Any]]:
        """Sessions currently marked active, newest first."""
        sessions = (
            db.session.query(SessionLog, Server.name)
            .join(Server, SessionLog.server_id == Server.id)
            .filter(SessionLog.is_active.is_(True))
            .order_by(SessionLog.started_at.desc())
            .all()
        )
        return [
            {
                'id': s.id,
                'server_id': s.server_id,
                'server_name': server_name,
                'session_id': s.session_id,
                'user_name': s.user_name,
                'device_name': s.device_name,
                'client': s.client,
                'item_name': s.item_name,
                'item_type': s.item_type,
                'series_name': s.series_name,
                'started_at': isoformat(s.started_at),
                'position_ticks': s.position_ticks,
                'duration': s.duration,
                'is_paused': s.is_paused,
                'is_transcoding': s.is_transcoding,
            }
            for s, server_name in sessions
        ]
