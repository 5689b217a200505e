"""
Identity provider login (OAuth2 authorization code + PKCE).

The flow has three steps:

1. Initiation: generate state + PKCE pair, remember the verifier under the
   state token and hand back the provider authorization URL.
2. Callback: redeem the state exactly once, exchange the code for tokens,
   read the subject from the identity token and fetch the subject profile.
3. Refresh: exchange the refresh token for a new token pair.

The provider requires the client secret on the authorization URL as well as
on the token endpoint. That puts a secret into a browser-facing URL; it is
kept only because the provider contract demands it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
import jwt

from ..config import Settings
from ..errors import (
    InvalidOrExpiredState,
    MissingParameters,
    ProviderError,
    UpstreamUnavailable,
)
from ..models import FederatedCredentials, FederatedProfile, PendingAuthorization
from .pkce import generate_pkce, generate_state
from .state_store import OAuthStateStore

logger = logging.getLogger(__name__)


SUBJECT_CLAIMS = ("urn:esia:sbj_id", "sub")

_UNVERIFIED_OPTIONS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
}


# =============================================================================
# Token / Profile Helpers
# =============================================================================

def provider_timestamp(now: Optional[datetime] = None) -> str:
    """Timestamp in the ``yyyy.MM.dd HH:mm:ss Z`` form the provider expects."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y.%m.%d %H:%M:%S %z")


def extract_subject(id_token: Optional[str]) -> Optional[str]:
    """
    Read the subject identifier from an identity token payload.

    The signature is not verified: the token comes straight from the token
    endpoint over TLS and the subject is only used to address the profile
    request, which is itself authorized by the access token.

    Args:
        id_token: Compact JWS (``header.payload.signature``)

    Returns:
        The provider subject claim, falling back to ``sub``; None when the
        token is missing or malformed.
    """
    if not id_token:
        return None

    try:
        claims = jwt.decode(id_token, options=_UNVERIFIED_OPTIONS)
    except jwt.PyJWTError as e:
        logger.warning(f"Unable to decode identity token: {e}")
        return None

    for claim in SUBJECT_CLAIMS:
        value = claims.get(claim)
        if value not in (None, ""):
            return str(value)
    return None


def _contact_value(payload: Dict[str, Any], contact_type: str) -> Optional[str]:
    contacts = payload.get("contacts")
    if not isinstance(contacts, dict):
        return None
    for element in contacts.get("elements") or []:
        if isinstance(element, dict) and element.get("type") == contact_type:
            return element.get("value")
    return None


def normalize_profile(payload: Dict[str, Any]) -> FederatedProfile:
    """Map the provider person payload onto ``FederatedProfile``."""
    return FederatedProfile(
        first_name=payload.get("firstName"),
        last_name=payload.get("lastName"),
        middle_name=payload.get("middleName"),
        birth_date=payload.get("birthDate"),
        snils=payload.get("snils"),
        email=_contact_value(payload, "EML") or payload.get("email"),
        phone=_contact_value(payload, "MBT") or payload.get("mobile"),
    )


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


# =============================================================================
# OAuth Client
# =============================================================================

class EsiaOAuthClient:
    """
    Identity provider OAuth client bound to the relay configuration and
    the pending authorization store.
    """

    def __init__(self, settings: Settings, state_store: OAuthStateStore):
        self.settings = settings
        self.state_store = state_store

    # -------------------------------------------------------------------------
    # Step 1: Initiation
    # -------------------------------------------------------------------------

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self.settings.ESIA_CLIENT_ID,
            # Required by the provider contract; see module docstring
            "client_secret": self.settings.ESIA_CLIENT_SECRET,
            "redirect_uri": self.settings.ESIA_REDIRECT_URI,
            "scope": self.settings.ESIA_SCOPE,
            "response_type": "code",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "timestamp": provider_timestamp(),
            "access_type": "online",
        }
        return f"{self.settings.ESIA_AUTHORIZE_URL}?{urlencode(params)}"

    async def start_login(self, telegram_user_id: Optional[str] = None) -> str:
        """
        Start an authorization: store the pending context and return the
        provider URL the end user must be sent to.
        """
        state = generate_state()
        pkce = generate_pkce()

        await self.state_store.put(
            state,
            PendingAuthorization(
                code_verifier=pkce.verifier,
                created_at=self.state_store.now(),
                telegram_user_id=telegram_user_id,
            ),
        )
        await self.state_store.sweep_expired()

        logger.info("OAuth login initiated", extra={"has_client_user": telegram_user_id is not None})
        return self.build_authorization_url(state, pkce.challenge)

    # -------------------------------------------------------------------------
    # Step 2: Callback
    # -------------------------------------------------------------------------

    async def complete_login(
        self,
        client: httpx.AsyncClient,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> FederatedCredentials:
        """
        Redeem a provider callback and build federated-session credentials.

        Raises:
            ProviderError: The provider returned ``error``
            MissingParameters: ``code`` or ``state`` is missing
            InvalidOrExpiredState: The state is unknown, redeemed or expired
            UpstreamUnavailable: Token exchange or profile fetch failed
        """
        if error:
            raise ProviderError(error_description or error, details=error)

        if not code or not state:
            raise MissingParameters()

        pending = await self.state_store.take_if_valid(state)
        if pending is None:
            logger.warning("OAuth callback with unknown or expired state")
            raise InvalidOrExpiredState()

        tokens = await self.exchange_code(client, code, state, pending.code_verifier)
        access_token = tokens["access_token"]
        subject = extract_subject(tokens.get("id_token"))

        profile_payload = await self.fetch_profile(client, access_token, subject)

        logger.info("OAuth login completed")
        return FederatedCredentials(
            access_token=access_token,
            refresh_token=tokens.get("refresh_token"),
            subject_id=subject,
            profile=normalize_profile(profile_payload),
            telegram_user_id=pending.telegram_user_id,
        )

    async def _post_token(self, client: httpx.AsyncClient, form: Dict[str, Any], action: str) -> Dict[str, Any]:
        try:
            response = await client.post(
                self.settings.ESIA_TOKEN_URL,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.error(f"{action} request failed: {e}")
            raise UpstreamUnavailable(f"{action} failed", details=str(e)) from e

        if not response.is_success:
            logger.error(f"{action} returned {response.status_code}")
            raise UpstreamUnavailable(f"{action} failed", details=_error_payload(response))

        try:
            token_data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"{action} returned malformed JSON", details=response.text) from e

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise UpstreamUnavailable(f"{action} response missing access_token", details=token_data)

        return token_data

    async def exchange_code(
        self,
        client: httpx.AsyncClient,
        code: str,
        state: str,
        code_verifier: str,
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Returns:
            Token response containing at least ``access_token``
        """
        form = {
            "client_id": self.settings.ESIA_CLIENT_ID,
            "client_secret": self.settings.ESIA_CLIENT_SECRET,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.ESIA_REDIRECT_URI,
            "code_verifier": code_verifier,
            "state": state,
            "scope": self.settings.ESIA_SCOPE,
            "timestamp": provider_timestamp(),
            "token_type": "Bearer",
        }
        return await self._post_token(client, form, "Token exchange")

    async def fetch_profile(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        subject: Optional[str],
    ) -> Dict[str, Any]:
        """
        Fetch the subject's person record with the access token as bearer.

        Raises:
            UpstreamUnavailable: No subject, transport error, non-2xx or bad JSON
        """
        if not subject:
            raise UpstreamUnavailable("Identity token carried no subject identifier")

        try:
            response = await client.get(
                f"{self.settings.ESIA_PROFILE_URL}/{subject}",
                params={"embed": "(contacts.elements)"},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Profile request failed: {e}")
            raise UpstreamUnavailable("Profile request failed", details=str(e)) from e

        if not response.is_success:
            logger.error(f"Profile request returned {response.status_code}")
            raise UpstreamUnavailable("Profile request failed", details=_error_payload(response))

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamUnavailable("Profile response is malformed", details=response.text) from e

        if not isinstance(payload, dict):
            raise UpstreamUnavailable("Profile response is malformed", details=payload)
        return payload

    # -------------------------------------------------------------------------
    # Step 3: Refresh
    # -------------------------------------------------------------------------

    async def refresh(self, client: httpx.AsyncClient, credentials: FederatedCredentials) -> Tuple[str, str]:
        """
        Exchange the session refresh token for a new token pair.

        Returns:
            (access_token, refresh_token); the old refresh token is kept when
            the provider does not rotate it.

        Raises:
            UpstreamUnavailable: No refresh token or the provider refused
        """
        if not credentials.refresh_token:
            raise UpstreamUnavailable("Session has no refresh token")

        form = {
            "client_id": self.settings.ESIA_CLIENT_ID,
            "client_secret": self.settings.ESIA_CLIENT_SECRET,
            "grant_type": "refresh_token",
            "refresh_token": credentials.refresh_token,
            "redirect_uri": self.settings.ESIA_REDIRECT_URI,
            "scope": self.settings.ESIA_SCOPE,
            "state": generate_state(),
            "timestamp": provider_timestamp(),
            "token_type": "Bearer",
        }
        token_data = await self._post_token(client, form, "Token refresh")
        return token_data["access_token"], token_data.get("refresh_token") or credentials.refresh_token
