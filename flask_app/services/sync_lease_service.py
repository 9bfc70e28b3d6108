"""
Stored lease that keeps sync runs from overlapping.

The lease lives in the database so that the web process, the auto-sync
thread and the CLI all see the same holder. Expired leases can be taken
over, so a crashed run never blocks syncing for longer than its TTL.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from emby_stats.timezone_utils import utcnow
from flask_app.models import db, SyncLease

logger = logging.getLogger(__name__)

DEFAULT_LEASE_NAME = 'history-sync'
DEFAULT_TTL_SECONDS = 1800


class SyncLeaseService:
    """Acquire and release named leases."""

    def __init__(self, name: str = DEFAULT_LEASE_NAME, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.name = name
        self.ttl_seconds = ttl_seconds

    def _ensure_row(self):
        if SyncLease.query.filter_by(name=self.name).first() is not None:
            return
        db.session.add(SyncLease(name=self.name))
        try:
            db.session.commit()
        except IntegrityError:
            # Another process created it first
            db.session.rollback()

    def acquire(self) -> Optional[str]:
        """
        Try to take the lease.

        Returns:
            A run id identifying this holder, or None if the lease is held
        """
        self._ensure_row()
        now = utcnow()
        run_id = uuid.uuid4().hex
        result = db.session.execute(
            update(SyncLease)
            .where(SyncLease.name == self.name)
            .where(or_(SyncLease.run_id.is_(None), SyncLease.expires_at < now))
            .values(
                run_id=run_id,
                acquired_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            )
        )
        db.session.commit()

        if result.rowcount != 1:
            logger.info("Lease %s is held by another run", self.name)
            return None
        logger.debug("Lease %s acquired by %s", self.name, run_id)
        return run_id

    def release(self, run_id: str) -> bool:
        """
        Give the lease back. A holder can only release its own lease.

        Returns:
            True if the lease was held by ``run_id`` and is now free
        """
        result = db.session.execute(
            update(SyncLease)
            .where(SyncLease.name == self.name, SyncLease.run_id == run_id)
            .values(run_id=None, acquired_at=None, expires_at=None)
        )
        db.session.commit()
        return result.rowcount == 1

    def renew(self, run_id: str) -> bool:
        """
        Push the expiry of a held lease one TTL past now.

        Returns:
            False if ``run_id`` no longer holds the lease
        """
        result = db.session.execute(
            update(SyncLease)
            .where(SyncLease.name == self.name, SyncLease.run_id == run_id)
            .values(expires_at=utcnow() + timedelta(seconds=self.ttl_seconds))
        )
        db.session.commit()
        if result.rowcount != 1:
            logger.warning("Lease %s was lost by run %s", self.name, run_id)
            return False
        return True

    @contextmanager
    def hold(self) -> Iterator[Optional[str]]:
        """Context manager yielding the run id, or None if not acquired."""
        run_id = self.acquire()
        try:
            yield run_id
        finally:
            if run_id is not None:
                # A failed run may leave the session mid-transaction
                db.session.rollback()
                self.release(run_id)

    def get_status(self) -> dict:
        """Describe the current holder, for polling."""
        lease = SyncLease.query.filter_by(name=self.name).first()
        now = utcnow()
        held = bool(lease and lease.run_id and lease.expires_at and lease.expires_at >= now)
        return {
            'name': self.name,
            'is_running': held,
            'run_id': lease.run_id if held else None,
            'acquired_at': lease.acquired_at if held else None,
            'expires_at': lease.expires_at if held else None,
        }
