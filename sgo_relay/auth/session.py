"""
Session Store
=============

Maps opaque session identifiers to the credentials needed to talk to the
upstream systems. Two credential variants exist (see ``sgo_relay.models``):

- ``PasswordCredentials``: school system cookie jar, base URL, access token
- ``FederatedCredentials``: identity provider tokens and normalized profile

Sessions expire after an absolute maximum age or after an idle period,
whichever comes first. Expired sessions are invisible to ``get`` and are
removed by ``sweep_expired``.

Clients present the session identifier as ``Authorization: Bearer <id>``.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request

from ..errors import SessionNotFound, UnsupportedForSessionType
from ..models import FederatedCredentials, SessionCredentials

logger = logging.getLogger(__name__)


# =============================================================================
# Store
# =============================================================================

@dataclass
class _SessionEntry:
    credentials: SessionCredentials
    created_at: float
    last_access: float


class SessionStore:
    """In-memory session store guarded by an asyncio.Lock."""

    def __init__(
        self,
        max_age_seconds: float = 12 * 3600,
        idle_seconds: float = 2 * 3600,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: secrets.token_urlsafe(32),
    ):
        self._sessions: Dict[str, _SessionEntry] = {}
        self._lock = asyncio.Lock()
        self._max_age = max_age_seconds
        self._idle = idle_seconds
        self._clock = clock
        self._id_factory = id_factory

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_expired(self, entry: _SessionEntry, now: float) -> bool:
        return (now - entry.created_at) > self._max_age or (now - entry.last_access) > self._idle

    async def create(self, credentials: SessionCredentials) -> str:
        """
        Store credentials under a fresh session identifier.

        Args:
            credentials: Password or federated credentials

        Returns:
            The new session identifier
        """
        async with self._lock:
            session_id = self._id_factory()
            while session_id in self._sessions:
                session_id = self._id_factory()

            now = self._clock()
            self._sessions[session_id] = _SessionEntry(
                credentials=credentials,
                created_at=now,
                last_access=now,
            )

        logger.info("Created session", extra={"session_kind": credentials.kind})
        return session_id

    async def get(self, session_id: Optional[str]) -> Optional[SessionCredentials]:
        """Return the credentials for a live session and refresh its idle timer."""
        if not session_id:
            return None

        async with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None

            now = self._clock()
            if self._is_expired(entry, now):
                del self._sessions[session_id]
                logger.info("Session expired", extra={"session_kind": entry.credentials.kind})
                return None

            entry.last_access = now
            return entry.credentials

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def update_tokens(
        self,
        session_id: str,
        access_token: str,
        refresh_token: Optional[str],
    ) -> FederatedCredentials:
        """
        Replace the identity provider tokens of a federated session in place.

        Raises:
            SessionNotFound: Session is absent or expired
            UnsupportedForSessionType: Session is a password-session
        """
        async with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None or self._is_expired(entry, self._clock()):
                raise SessionNotFound()

            credentials = entry.credentials
            if not isinstance(credentials, FederatedCredentials):
                raise UnsupportedForSessionType("Token refresh is only available for federated sessions")

            credentials.access_token = access_token
            credentials.refresh_token = refresh_token
            return credentials

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [sid for sid, entry in self._sessions.items() if self._is_expired(entry, now)]
            for sid in expired:
                del self._sessions[sid]

        if expired:
            logger.debug(f"Swept {len(expired)} expired sessions")
        return len(expired)


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def extract_token_from_header(authorization: Optional[str]) -> str:
    """
    Extract the session identifier from an Authorization header.

    Accepts ``Bearer <id>``; anything else is treated as a missing session.

    Raises:
        SessionNotFound: If the header is missing or malformed
    """
    if not authorization:
        raise SessionNotFound("Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise SessionNotFound("Invalid Authorization header format. Expected: 'Bearer <session id>'")

    return parts[1]


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.app_state.session_store


async def get_session_id(request: Request) -> str:
    return extract_token_from_header(request.headers.get("Authorization"))


async def get_current_session(request: Request) -> SessionCredentials:
    """
    FastAPI dependency resolving the bearer session identifier.

    Usage in routes:
        @router.get("/protected")
        async def protected(session = Depends(get_current_session)):
            ...

    Raises:
        SessionNotFound: If the identifier is missing, unknown or expired
    """
    session_id = extract_token_from_header(request.headers.get("Authorization"))
    credentials = await get_session_store(request).get(session_id)
    if credentials is None:
        raise SessionNotFound()
    return credentials


__all__ = [
    "SessionStore",
    "extract_token_from_header",
    "get_session_store",
    "get_session_id",
    "get_current_session",
]
