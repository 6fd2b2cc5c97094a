"""
Lease Locks

Key-based advisory locks with a TTL, stored in the `cache_locks` table so
every process sharing the database sees the same holder. Acquisition never
waits: a held key is reported as unavailable immediately.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import time
import uuid
import structlog

from .database import Database, get_database

logger = structlog.get_logger()


@dataclass
class Lease:
    """A held lock. Release it, or let it expire."""
    key: str
    owner: str
    expires_at: float
    store: "LeaseLockStore"

    def release(self) -> bool:
        return self.store.release(self.key, self.owner)

    def __enter__(self) -> "Lease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class LeaseLockStore:
    """
    Database-backed lease locks.

    The same table doubles as an idempotency marker store: `mark()` writes a
    key that is never released and simply expires after its window.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.db = db or get_database()
        self._clock = clock or time.time

    def acquire(self, key: str, ttl_seconds: float, owner: Optional[str] = None) -> Optional[Lease]:
        """
        Try to take `key` for `ttl_seconds`.

        Returns the lease, or None when someone else holds an unexpired lease.
        """
        owner = owner or uuid.uuid4().hex
        now = self._clock()
        expires_at = now + ttl_seconds

        with self.db.transaction():
            self.db.execute(
                "DELETE FROM cache_locks WHERE key = ? AND expires_at <= ?",
                (key, now)
            )
            _, rowcount = self.db.execute_write(
                "INSERT OR IGNORE INTO cache_locks (key, owner, expires_at) VALUES (?, ?, ?)",
                (key, owner, expires_at)
            )

        if rowcount == 0:
            logger.debug("lease_unavailable", key=key)
            return None

        return Lease(key=key, owner=owner, expires_at=expires_at, store=self)

    def release(self, key: str, owner: str) -> bool:
        """Release a lease. Only its owner can release it."""
        _, rowcount = self.db.execute_write(
            "DELETE FROM cache_locks WHERE key = ? AND owner = ?",
            (key, owner)
        )
        return rowcount > 0

    def is_held(self, key: str) -> bool:
        """True while an unexpired lease or marker exists for `key`."""
        results = self.db.execute(
            "SELECT 1 FROM cache_locks WHERE key = ? AND expires_at > ?",
            (key, self._clock())
        )
        return bool(results)

    def mark(self, key: str, ttl_seconds: float) -> bool:
        """
        Set an expiring marker.

        Returns False when an unexpired marker already exists.
        """
        return self.acquire(key, ttl_seconds, owner="marker") is not None

    def purge_expired(self) -> int:
        """Delete expired rows."""
        _, rowcount = self.db.execute_write(
            "DELETE FROM cache_locks WHERE expires_at <= ?",
            (self._clock(),)
        )
        return rowcount
