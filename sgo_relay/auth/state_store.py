"""
OAuth State Store

Short-lived mapping from OAuth state token to the pending authorization
context (PKCE verifier, creation time, originating client-platform user).
Entries are redeemable once and expire after ``ttl_seconds``.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from ..models import PendingAuthorization

logger = logging.getLogger(__name__)


class OAuthStateStore:
    """
    In-memory TTL store of pending authorizations.

    All mutations happen under an asyncio.Lock so that ``take_if_valid``
    is a single atomic lookup-and-delete.
    """

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.time):
        """
        Initialize the store.

        Args:
            ttl_seconds: Maximum age of a pending authorization
            clock: Time source in seconds; injectable for tests
        """
        self._pending: Dict[str, PendingAuthorization] = {}
        self._lock = asyncio.Lock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def __len__(self) -> int:
        return len(self._pending)

    def now(self) -> float:
        return self._clock()

    def _is_expired(self, pending: PendingAuthorization, max_age: float) -> bool:
        return self._clock() - pending.created_at > max_age

    async def put(self, state: str, pending: PendingAuthorization) -> None:
        async with self._lock:
            self._pending[state] = pending

    async def take_if_valid(self, state: str) -> Optional[PendingAuthorization]:
        """
        Atomically remove and return the pending authorization for ``state``.

        Returns None for unknown, already redeemed or expired states. An
        expired entry is removed even though it is not returned.
        """
        async with self._lock:
            pending = self._pending.pop(state, None)

        if pending is None:
            return None
        if self._is_expired(pending, self._ttl_seconds):
            logger.info("Rejected expired OAuth state")
            return None
        return pending

    async def sweep_expired(self, max_age_seconds: Optional[float] = None) -> int:
        """
        Remove all entries older than ``max_age_seconds`` (defaults to the TTL).

        Returns:
            Number of removed entries
        """
        max_age = self._ttl_seconds if max_age_seconds is None else max_age_seconds
        async with self._lock:
            expired = [
                state for state, pending in self._pending.items()
                if self._is_expired(pending, max_age)
            ]
            for state in expired:
                del self._pending[state]

        if expired:
            logger.debug(f"Swept {len(expired)} expired OAuth states")
        return len(expired)
