"""
Authentication routes: school system password login, identity provider
login (initiation + callback), token refresh and logout.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse

from ..dependencies import AppState, get_app_state, get_oauth_client, get_upstream_client
from ..errors import ProviderError, RelayError, SessionNotFound, UnsupportedForSessionType
from ..gateway.client import SchoolClient
from ..models import (
    AuthUrlResponse,
    FederatedCredentials,
    LoginRequest,
    LoginResponse,
    PasswordCredentials,
    RefreshResponse,
    SessionCredentials,
)
from .oauth import EsiaOAuthClient
from .password_login import login_with_password
from .session import extract_token_from_header, get_current_session, get_session_id

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(prefix="/api", tags=["Authentication"])


def _frontend_redirect(frontend_url: str, **params: str) -> RedirectResponse:
    separator = "&" if "?" in frontend_url else "?"
    return RedirectResponse(
        url=f"{frontend_url}{separator}{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


# =============================================================================
# Password Login
# =============================================================================

@auth_router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    app_state: AppState = Depends(get_app_state),
    client: httpx.AsyncClient = Depends(get_upstream_client),
):
    """
    Log in to the school system with username and password.

    Returns:
        The new session identifier and the upstream account info
    """
    settings = app_state.settings
    base_url = settings.resolve_base_url(body.region)

    credentials = await login_with_password(
        client,
        base_url=base_url,
        username=body.username,
        password=body.password,
        user_agent=settings.SGO_USER_AGENT,
    )
    session_id = await app_state.session_store.create(credentials)

    return LoginResponse(sessionId=session_id, user=credentials.profile)


# =============================================================================
# Identity Provider Login
# =============================================================================

@auth_router.get("/auth/esia/login")
async def esia_login(
    tg_user_id: Optional[str] = Query(None, description="Originating client-platform user id"),
    redirect: bool = Query(False, description="Answer with a 302 instead of JSON"),
    oauth: EsiaOAuthClient = Depends(get_oauth_client),
):
    """
    Start an identity provider login.

    The caller sends the end user to ``authUrl``; the provider then comes
    back to ``/api/auth/esia/callback``.
    """
    auth_url = await oauth.start_login(telegram_user_id=tg_user_id)

    if redirect:
        return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)
    return AuthUrlResponse(authUrl=auth_url)


@auth_router.get("/auth/esia/callback")
async def esia_callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="State token issued at initiation"),
    error: Optional[str] = Query(None, description="Error code from the provider"),
    error_description: Optional[str] = Query(None),
    app_state: AppState = Depends(get_app_state),
    client: httpx.AsyncClient = Depends(get_upstream_client),
):
    """
    Handle the identity provider redirect.

    Redirects to FRONTEND_URL with ``?session=<id>`` on success and with
    ``?error=<code>`` on any failure, including a missing provider
    configuration. A provider-reported error is passed on as ``reason``
    (and ``error_description`` when the provider sent one).
    """
    frontend_url = app_state.settings.FRONTEND_URL

    try:
        oauth = get_oauth_client(request)
        credentials = await oauth.complete_login(
            client,
            code=code,
            state=state,
            error=error,
            error_description=error_description,
        )
    except RelayError as e:
        logger.warning(f"OAuth callback failed: {e.error_code}", extra={"error": e.error_code})
        params = {"error": e.error_code}
        if isinstance(e, ProviderError):
            params["reason"] = e.details
            if error_description:
                params["error_description"] = error_description
        return _frontend_redirect(frontend_url, **params)

    session_id = await app_state.session_store.create(credentials)
    return _frontend_redirect(frontend_url, session=session_id)


@auth_router.post("/auth/refresh", response_model=RefreshResponse)
async def refresh_tokens(
    session_id: str = Depends(get_session_id),
    session: SessionCredentials = Depends(get_current_session),
    app_state: AppState = Depends(get_app_state),
    oauth: EsiaOAuthClient = Depends(get_oauth_client),
    client: httpx.AsyncClient = Depends(get_upstream_client),
):
    """
    Refresh the identity provider tokens of a federated session.

    On failure the session is left untouched.
    """
    if not isinstance(session, FederatedCredentials):
        raise UnsupportedForSessionType("Token refresh is only available for federated sessions")

    access_token, refresh_token = await oauth.refresh(client, session)
    await app_state.session_store.update_tokens(session_id, access_token, refresh_token)
    return RefreshResponse()


# =============================================================================
# Logout
# =============================================================================

@auth_router.post("/logout")
async def logout(
    request: Request,
    app_state: AppState = Depends(get_app_state),
    client: httpx.AsyncClient = Depends(get_upstream_client),
):
    """
    End the session.

    Password-sessions are also logged out upstream on a best-effort basis.
    A missing or unknown session is not an error.
    """
    try:
        session_id = extract_token_from_header(request.headers.get("Authorization"))
    except SessionNotFound:
        session_id = None

    session = await app_state.session_store.get(session_id)
    if session is not None:
        if isinstance(session, PasswordCredentials):
            await SchoolClient(client, session).logout()
        await app_state.session_store.delete(session_id)
        logger.info("Session logged out", extra={"session_kind": session.kind})

    return {"success": True}
