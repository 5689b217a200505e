"""
Application state and shared FastAPI dependencies.

``AppState`` owns the process-wide stores. It is created by
``create_app`` and attached as ``app.state.app_state``; tests replace it
with a fresh instance (and an ``httpx.MockTransport``) per test.
"""

from typing import AsyncIterator, Optional

import httpx
from fastapi import Request

from .auth.oauth import EsiaOAuthClient
from .auth.session import SessionStore
from .auth.state_store import OAuthStateStore
from .config import Settings
from .errors import ProviderNotConfigured


class AppState:
    """
    Container for shared resources: settings, session store, OAuth state
    store and the optional upstream transport.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_store: Optional[SessionStore] = None,
        state_store: Optional[OAuthStateStore] = None,
    ):
        self.settings = settings
        self.transport = transport
        self.session_store = session_store or SessionStore(
            max_age_seconds=settings.SESSION_MAX_AGE_MINUTES * 60,
            idle_seconds=settings.SESSION_IDLE_MINUTES * 60,
        )
        self.state_store = state_store or OAuthStateStore(ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS)
        self.oauth_client = EsiaOAuthClient(settings, self.state_store)

    def open_client(self) -> httpx.AsyncClient:
        """
        Create a short-lived upstream HTTP client.

        A new client per request keeps upstream cookies from one user out
        of another user's requests.
        """
        return httpx.AsyncClient(
            transport=self.transport,
            timeout=httpx.Timeout(self.settings.UPSTREAM_TIMEOUT_SECONDS),
        )


def get_app_state(request: Request) -> AppState:
    return request.app.state.app_state


async def get_upstream_client(request: Request) -> AsyncIterator[httpx.AsyncClient]:
    """Yield an upstream HTTP client that is closed after the request."""
    async with get_app_state(request).open_client() as client:
        yield client


def get_oauth_client(request: Request) -> EsiaOAuthClient:
    """
    Dependency returning the identity provider client.

    Raises:
        ProviderNotConfigured: If ESIA_CLIENT_ID is not set
    """
    app_state = get_app_state(request)
    if not app_state.settings.esia_configured:
        raise ProviderNotConfigured()
    return app_state.oauth_client
