"""Database-backed single-flight guard for settlement cycles."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

from powerpot.errors import SettlementInProgressError

from .store import SettlementStore

logger = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "draw-settlement"


class SettlementLockGuard:
    """Mutual exclusion across threads and processes sharing one database.

    Acquisition is a conditional ``UPDATE`` on the ``settlement_locks`` row,
    so exactly one contender wins even when triggers arrive simultaneously.
    A lock older than ``stale_after`` is considered abandoned (its holder
    crashed) and may be taken over.
    """

    def __init__(
        self,
        store: SettlementStore,
        name: str = DEFAULT_LOCK_NAME,
        *,
        stale_after: Optional[timedelta] = timedelta(hours=1),
    ) -> None:
        self.store = store
        self.name = name
        self.stale_after = stale_after

    def acquire(self) -> str:
        """Take the lock and return the holder token.

        Raises
        ------
        SettlementInProgressError
            If another settlement currently holds the lock.
        """

        self.store.ensure_lock(self.name)
        token = uuid.uuid4().hex
        stale_before = None
        if self.stale_after is not None:
            stale_before = datetime.now(timezone.utc) - self.stale_after
        if not self.store.try_acquire_lock(self.name, token, stale_before=stale_before):
            raise SettlementInProgressError(
                f"Settlement lock '{self.name}' is held by another run"
            )
        logger.debug(f"Acquired settlement lock '{self.name}' ({token})")
        return token

    def release(self, token: str) -> None:
        if not self.store.release_lock(self.name, token):
            logger.warning(
                f"Settlement lock '{self.name}' was no longer held by {token} at release"
            )
        else:
            logger.debug(f"Released settlement lock '{self.name}' ({token})")

    @contextmanager
    def hold(self) -> Iterator[str]:
        token = self.acquire()
        try:
            yield token
        finally:
            self.release(token)


__all__ = ["DEFAULT_LOCK_NAME", "SettlementLockGuard"]
