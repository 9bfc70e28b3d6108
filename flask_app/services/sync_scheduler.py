"""
Background thread that runs the history sync on a fixed interval.
"""
import logging
import threading

from flask_app.services.config_service import ConfigService
from flask_app.services.sync_lease_service import DEFAULT_TTL_SECONDS, SyncLeaseService
from flask_app.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Daemon thread running ``SyncService.run_exclusive`` every ``interval`` seconds."""

    _scheduler_lock = threading.Lock()
    _instance = None

    def __init__(self, app, interval: int):
        self.app = app
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name='emby-auto-sync', daemon=True)

    @classmethod
    def start(cls, app, interval: int) -> 'SyncScheduler':
        """Start the scheduler once per process and return it."""
        with cls._scheduler_lock:
            if cls._instance is None:
                cls._instance = cls(app, interval)
                cls._instance._thread.start()
                logger.info("Auto-sync every %d seconds", interval)
            return cls._instance

    def stop(self) -> None:
        self._stop.set()

    def run_once(self):
        """One scheduled tick; returns the sync results or None when skipped."""
        with self.app.app_context():
            if not ConfigService.has_valid_config():
                return None
            service = SyncService(
                page_size=self.app.config.get('SYNC_PAGE_SIZE'),
                resume_limit=self.app.config.get('SYNC_RESUME_LIMIT'),
            )
            lease = SyncLeaseService(ttl_seconds=self.app.config.get('SYNC_LEASE_TTL', DEFAULT_TTL_SECONDS))
            results = service.run_exclusive(lease=lease)
            if results is None:
                logger.info("Scheduled sync skipped, another run holds the lease")
            return results

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Scheduled sync failed")
