"""
Service for syncing play history from Emby servers to the local database.

Each run is incremental: for every server user the newest stored
``played_at`` is read once as a high-water mark, and the played-items
stream (newest first) is consumed only until it reaches that mark.
Resumable items are always re-read in full since their positions move.
"""
import json
import logging
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from emby_stats.api_client import EmbyClient
from emby_stats.models import EmbyItem
from emby_stats.timezone_utils import utcnow
from flask_app.models import db, PlayHistory, Server, ServerUser, SyncLog
from flask_app.services.config_service import ConfigService
from flask_app.services.sync_lease_service import SyncLeaseService
from flask_app.services.utils import isoformat

logger = logging.getLogger(__name__)

ADDED = 'added'
UPDATED = 'updated'
FAILED = 'failed'


class SyncService:
    """Service for running history sync operations."""

    PAGE_SIZE = 50  # Played items per API request
    RESUME_LIMIT = 100
    HISTORY_TYPES = ('Movie', 'Episode')

    def __init__(self, page_size: Optional[int] = None, resume_limit: Optional[int] = None):
        self.page_size = page_size or self.PAGE_SIZE
        self.resume_limit = resume_limit or self.RESUME_LIMIT

    def run_exclusive(self, server_ids: Optional[Iterable[int]] = None,
                      lease: Optional[SyncLeaseService] = None) -> Optional[list]:
        """
        Run ``sync_servers`` while holding the sync lease.

        The lease is renewed after each server so a long run keeps it.

        Returns:
            Per-server results, or None if another run holds the lease
        """
        lease = lease or SyncLeaseService()
        with lease.hold() as run_id:
            if run_id is None:
                return None
            logger.info("Sync run %s started", run_id)
            results = self.sync_servers(server_ids, on_server_done=lambda _: lease.renew(run_id))
            logger.info("Sync run %s finished", run_id)
            return results

    def sync_servers(self, server_ids: Optional[Iterable[int]] = None,
                     on_server_done: Optional[Callable[[dict], Any]] = None) -> list:
        """
        Sync every active server, or the given subset, one after another.

        Args:
            server_ids: Optional subset of server ids
            on_server_done: Called with each server's result as it completes

        Raises:
            LookupError: If no active server matches
        """
        servers = ConfigService.get_active_servers(server_ids)
        if not servers:
            raise LookupError("No active servers found")

        results = []
        for server in servers:
            result = self.sync_server(server)
            results.append(result)
            if on_server_done is not None:
                on_server_done(result)
        return results

    def sync_server(self, server: Server) -> dict:
        """
        Sync users and history of one server and record a SyncLog.

        Failures are recorded on the result and in the log; they never
        propagate, so one unreachable server does not abort the batch.
        """
        server_id = server.id
        server_name = server.name
        result = {
            'server_id': server_id,
            'server_name': server_name,
            'users_sync': {'added': 0, 'updated': 0},
            'history_sync': {'added': 0, 'skipped': 0},
        }
        logger.info("Syncing server %s", server_name)

        try:
            client = EmbyClient(server.to_emby_config())
            result['users_sync'] = self._sync_users(server_id, client)

            server_users = ServerUser.query.filter_by(server_id=server_id).order_by(ServerUser.id).all()
            for server_user in server_users:
                added, skipped = self._sync_user_history(server_id, server_user.id,
                                                         server_user.emby_user_id, client)
                result['history_sync']['added'] += added
                result['history_sync']['skipped'] += skipped

            message = (
                f"Users: +{result['users_sync']['added']}/~{result['users_sync']['updated']}, "
                f"History: +{result['history_sync']['added']}"
            )
            self._record_log(server_id, 'success', message)
            logger.info("Server %s synced: %s", server_name, message)
        except Exception as e:
            db.session.rollback()
            logger.exception("Sync failed for server %s", server_name)
            result['error'] = str(e)
            self._record_log(server_id, 'failed', str(e))

        return result

    def _sync_users(self, server_id: int, client: EmbyClient) -> dict:
        """Upsert server users; an existing row only gets its username refreshed."""
        added = 0
        updated = 0
        for emby_user in client.get_users():
            existing = ServerUser.query.filter_by(server_id=server_id, emby_user_id=emby_user.id).first()
            if existing:
                existing.username = emby_user.name
                updated += 1
            else:
                db.session.add(ServerUser(
                    server_id=server_id,
                    emby_user_id=emby_user.id,
                    username=emby_user.name
                ))
                added += 1
        db.session.commit()
        return {'added': added, 'updated': updated}

    def _high_water_mark(self, server_user_id: int):
        return (
            db.session.query(func.max(PlayHistory.played_at))
            .filter(PlayHistory.server_user_id == server_user_id)
            .scalar()
        )

    def _sync_user_history(self, server_id: int, server_user_id: int, emby_user_id: str,
                           client: EmbyClient) -> tuple:
        """
        Ingest played and resumable items of one server user.

        Returns:
            Tuple of (added, skipped); updates of existing rows count as skipped
        """
        high_water_mark = self._high_water_mark(server_user_id)
        added = 0
        skipped = 0

        pages = client.iter_played_items(emby_user_id, item_types=self.HISTORY_TYPES,
                                         page_size=self.page_size)
        try:
            reached_known = False
            for page in pages:
                for payload in page:
                    item = self._parse_item(payload)
                    if item is None:
                        skipped += 1
                        continue
                    if not item.user_data.played:
                        logger.debug("Skipping %s: not played", item.name)
                        continue

                    existing = self._latest_record(server_user_id, item.id)
                    played_at = self._resolve_played_at(item, existing)

                    if high_water_mark is not None and played_at <= high_water_mark:
                        logger.debug("Reached stored history for user %s, stopping", emby_user_id)
                        reached_known = True
                        break

                    if self._upsert_item(server_id, server_user_id, item, existing, played_at) == ADDED:
                        added += 1
                    else:
                        skipped += 1
                if reached_known:
                    break
        finally:
            pages.close()

        for payload in client.get_resume_items(emby_user_id, limit=self.resume_limit):
            item = self._parse_item(payload)
            if item is None:
                skipped += 1
                continue
            if item.user_data.playback_position_ticks <= 0:
                logger.debug("Skipping resume item %s: no position", item.name)
                continue

            existing = self._latest_record(server_user_id, item.id)
            played_at = self._resolve_played_at(item, existing)
            if self._upsert_item(server_id, server_user_id, item, existing, played_at) == ADDED:
                added += 1
            else:
                skipped += 1

        return added, skipped

    def _parse_item(self, payload) -> Optional[EmbyItem]:
        try:
            return EmbyItem.from_api(payload)
        except ValueError as e:
            logger.warning("Ignoring malformed item payload: %s", e)
            return None

    def _latest_record(self, server_user_id: int, item_id: str) -> Optional[PlayHistory]:
        return (
            PlayHistory.query
            .filter_by(server_user_id=server_user_id, item_id=item_id)
            .order_by(PlayHistory.played_at.desc())
            .first()
        )

    def _resolve_played_at(self, item: EmbyItem, existing: Optional[PlayHistory]):
        """LastPlayedDate, then LastActivityDate, then the stored date, then now."""
        reliable = item.user_data.reliable_date
        if reliable is not None:
            return reliable
        if existing is not None:
            return existing.played_at
        logger.warning("No played date for %s, using current time", item.name)
        return utcnow()

    def _upsert_item(self, server_id: int, server_user_id: int, item: EmbyItem,
                     existing: Optional[PlayHistory], played_at) -> str:
        """
        Update the most recent row for this item or insert a new one.

        Returns:
            ``added``, ``updated`` or ``failed``
        """
        user_data = item.user_data
        position = user_data.playback_position_ticks
        try:
            if existing is not None:
                existing.play_duration = position or item.run_time_ticks or 0
                existing.play_count = user_data.play_count
                existing.is_completed = user_data.played
                existing.playback_position = position
                if user_data.reliable_date is not None:
                    existing.played_at = played_at
                db.session.commit()
                logger.debug("Updated: %s", item.name)
                return UPDATED

            stream = item.video_stream
            db.session.add(PlayHistory(
                server_id=server_id,
                server_user_id=server_user_id,
                item_id=item.id,
                item_name=item.name,
                item_type=item.type,
                series_name=item.series_name,
                season_name=item.season_name,
                episode_number=item.episode_number,
                genres=json.dumps(list(item.genres), ensure_ascii=False),
                year=item.production_year,
                duration=item.run_time_ticks,
                played_at=played_at,
                play_duration=position or item.run_time_ticks or 0,
                play_count=user_data.play_count,
                is_completed=user_data.played,
                playback_position=position,
                video_codec=stream.codec if stream else None,
                resolution=stream.resolution if stream else None,
                is_hdr=stream.hdr if stream else False
            ))
            db.session.commit()
            logger.debug("Added: %s", item.name)
            return ADDED
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning("Skipping %s: %s", item.name, e)
            return FAILED

    def _record_log(self, server_id: int, status: str, message: str):
        db.session.add(SyncLog(
            server_id=server_id,
            sync_type='full',
            last_sync=utcnow(),
            status=status,
            message=message
        ))
        db.session.commit()

    def get_sync_logs(self, limit: int = 50) -> list:
        """Most recent sync logs with their server, newest first."""
        logs = (
            db.session.query(SyncLog, Server.name)
            .join(Server, SyncLog.server_id == Server.id)
            .order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                'id': log.id,
                'server': {'id': log.server_id, 'name': server_name},
                'sync_type': log.sync_type,
                'status': log.status,
                'message': log.message,
                'last_sync': isoformat(log.last_sync),
                'created_at': isoformat(log.created_at),
            }
            for log, server_name in logs
        ]

    def get_history_stats(self) -> dict:
        """Get statistics about the stored history."""
        count = PlayHistory.query.count()
        if count == 0:
            return {
                'total_records': 0,
                'oldest_date': None,
                'newest_date': None,
                'unique_users': 0
            }

        oldest, newest = db.session.query(func.min(PlayHistory.played_at), func.max(PlayHistory.played_at)).one()
        unique_users = db.session.query(PlayHistory.server_user_id).distinct().count()

        return {
            'total_records': count,
            'oldest_date': isoformat(oldest),
            'newest_date': isoformat(newest),
            'unique_users': unique_users
        }
