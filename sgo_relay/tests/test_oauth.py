"""
Tests for the identity provider OAuth flow: initiation, callback
redemption, profile normalization and token refresh.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest

from sgo_relay.auth.oauth import EsiaOAuthClient, extract_subject, normalize_profile
from sgo_relay.auth.pkce import compute_challenge
from sgo_relay.auth.state_store import OAuthStateStore
from sgo_relay.errors import (
    InvalidOrExpiredState,
    MissingParameters,
    ProviderError,
    UpstreamUnavailable,
)
from sgo_relay.models import FederatedCredentials

TOKEN_PATH = "/aas/oauth2/v3/te"
PROFILE_PATH = "/rs/prns/1000"
SIGNING_KEY = "test-signing-key-that-is-long-enough-for-hs256"

PERSON_PAYLOAD = {
    "firstName": "Ivan",
    "lastName": "Petrov",
    "middleName": "Sergeevich",
    "birthDate": "01.02.2010",
    "snils": "000-000-000 00",
    "contacts": {
        "elements": [
            {"type": "MBT", "value": "+7(900)0000000"},
            {"type": "EML", "value": "ivan@example.org"},
        ]
    },
}


def _id_token(claims):
    return jwt.encode(claims, SIGNING_KEY, algorithm="HS256")


def _query(url):
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


def _form(request):
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.fixture
def state_store(clock):
    return OAuthStateStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def oauth(settings, state_store):
    return EsiaOAuthClient(settings, state_store)


def _script_provider(upstream, token_body=None):
    upstream.on(
        "POST",
        TOKEN_PATH,
        json_body=token_body or {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "id_token": _id_token({"urn:esia:sbj_id": 1000, "sub": "other"}),
        },
    )
    upstream.on("GET", PROFILE_PATH, json_body=PERSON_PAYLOAD)


# ============================================================================
# Initiation
# ============================================================================

class TestStartLogin:

    @pytest.mark.asyncio
    async def test_authorization_url_parameters(self, oauth, settings):
        url = await oauth.start_login(telegram_user_id="555")

        assert url.startswith(settings.ESIA_AUTHORIZE_URL + "?")
        params = _query(url)
        assert params["client_id"] == "relay-client"
        assert params["client_secret"] == "relay-secret"
        assert params["redirect_uri"] == settings.ESIA_REDIRECT_URI
        assert params["scope"] == settings.ESIA_SCOPE
        assert params["response_type"] == "code"
        assert params["code_challenge_method"] == "S256"
        assert params["access_type"] == "online"
        assert len(params["state"]) == 64
        assert params["timestamp"]

    @pytest.mark.asyncio
    async def test_pending_authorization_is_stored(self, oauth, state_store):
        url = await oauth.start_login(telegram_user_id="555")
        params = _query(url)

        assert len(state_store) == 1
        pending = await state_store.take_if_valid(params["state"])
        assert pending.telegram_user_id == "555"
        assert compute_challenge(pending.code_verifier) == params["code_challenge"]

    @pytest.mark.asyncio
    async def test_each_login_gets_its_own_state(self, oauth, state_store):
        first = _query(await oauth.start_login())
        second = _query(await oauth.start_login())

        assert first["state"] != second["state"]
        assert first["code_challenge"] != second["code_challenge"]
        assert len(state_store) == 2

    @pytest.mark.asyncio
    async def test_initiation_sweeps_stale_states(self, oauth, state_store, clock):
        await oauth.start_login()
        clock.advance(700)

        await oauth.start_login()

        assert len(state_store) == 1


# ============================================================================
# Callback
# ============================================================================

class TestCompleteLogin:

    @pytest.mark.asyncio
    async def test_successful_callback(self, oauth, upstream, upstream_client):
        _script_provider(upstream)
        state = _query(await oauth.start_login(telegram_user_id="555"))["state"]

        credentials = await oauth.complete_login(upstream_client, "auth-code", state)

        assert isinstance(credentials, FederatedCredentials)
        assert credentials.access_token == "access-1"
        assert credentials.refresh_token == "refresh-1"
        assert credentials.subject_id == "1000"
        assert credentials.telegram_user_id == "555"
        assert credentials.profile.first_name == "Ivan"
        assert credentials.profile.email == "ivan@example.org"
        assert credentials.profile.phone == "+7(900)0000000"

    @pytest.mark.asyncio
    async def test_token_exchange_form(self, oauth, state_store, upstream, upstream_client):
        _script_provider(upstream)
        url = await oauth.start_login()
        state = _query(url)["state"]
        challenge = _query(url)["code_challenge"]

        await oauth.complete_login(upstream_client, "auth-code", state)

        [request] = upstream.calls("POST", TOKEN_PATH)
        form = _form(request)
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["client_id"] == "relay-client"
        assert form["client_secret"] == "relay-secret"
        assert form["state"] == state
        assert compute_challenge(form["code_verifier"]) == challenge

    @pytest.mark.asyncio
    async def test_profile_request_uses_access_token(self, oauth, upstream, upstream_client):
        _script_provider(upstream)
        state = _query(await oauth.start_login())["state"]

        await oauth.complete_login(upstream_client, "auth-code", state)

        [request] = upstream.calls("GET", PROFILE_PATH)
        assert request.headers["Authorization"] == "Bearer access-1"
        assert request.url.params["embed"] == "(contacts.elements)"

    @pytest.mark.asyncio
    async def test_state_is_redeemed_once(self, oauth, upstream, upstream_client):
        _script_provider(upstream)
        state = _query(await oauth.start_login())["state"]

        await oauth.complete_login(upstream_client, "auth-code", state)
        with pytest.raises(InvalidOrExpiredState):
            await oauth.complete_login(upstream_client, "auth-code", state)

        assert len(upstream.calls("POST", TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_missing_code(self, oauth, upstream, upstream_client):
        state = _query(await oauth.start_login())["state"]

        with pytest.raises(MissingParameters):
            await oauth.complete_login(upstream_client, None, state)

        assert upstream.calls("POST", TOKEN_PATH) == []

    @pytest.mark.asyncio
    async def test_missing_state(self, oauth, upstream, upstream_client):
        with pytest.raises(MissingParameters):
            await oauth.complete_login(upstream_client, "auth-code", None)

        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_unknown_state(self, oauth, upstream, upstream_client):
        with pytest.raises(InvalidOrExpiredState):
            await oauth.complete_login(upstream_client, "auth-code", "f" * 64)

        assert upstream.calls("POST", TOKEN_PATH) == []

    @pytest.mark.asyncio
    async def test_expired_state(self, oauth, upstream, upstream_client, clock):
        _script_provider(upstream)
        state = _query(await oauth.start_login())["state"]
        clock.advance(601)

        with pytest.raises(InvalidOrExpiredState):
            await oauth.complete_login(upstream_client, "auth-code", state)

        assert upstream.calls("POST", TOKEN_PATH) == []

    @pytest.mark.asyncio
    async def test_provider_error(self, oauth, upstream, upstream_client):
        with pytest.raises(ProviderError) as exc_info:
            await oauth.complete_login(
                upstream_client, None, None,
                error="access_denied", error_description="User cancelled",
            )

        assert exc_info.value.message == "User cancelled"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_token_endpoint_failure(self, oauth, upstream, upstream_client):
        upstream.on("POST", TOKEN_PATH, status_code=400, json_body={"error": "invalid_grant"})
        state = _query(await oauth.start_login())["state"]

        with pytest.raises(UpstreamUnavailable):
            await oauth.complete_login(upstream_client, "auth-code", state)

        assert upstream.calls("GET", PROFILE_PATH) == []

    @pytest.mark.asyncio
    async def test_identity_token_without_subject(self, oauth, upstream, upstream_client):
        _script_provider(upstream, token_body={"access_token": "access-1"})
        state = _query(await oauth.start_login())["state"]

        with pytest.raises(UpstreamUnavailable):
            await oauth.complete_login(upstream_client, "auth-code", state)

    @pytest.mark.asyncio
    async def test_profile_transport_error(self, oauth, upstream, upstream_client):
        _script_provider(upstream)
        upstream.fail("GET", PROFILE_PATH, httpx.ConnectError("unreachable"))
        state = _query(await oauth.start_login())["state"]

        with pytest.raises(UpstreamUnavailable):
            await oauth.complete_login(upstream_client, "auth-code", state)


# ============================================================================
# Refresh
# ============================================================================

class TestRefresh:

    def _credentials(self, refresh_token="refresh-1"):
        return FederatedCredentials(access_token="access-1", refresh_token=refresh_token, subject_id="1000")

    @pytest.mark.asyncio
    async def test_refresh_returns_new_pair(self, oauth, upstream, upstream_client):
        upstream.on("POST", TOKEN_PATH, json_body={"access_token": "access-2", "refresh_token": "refresh-2"})

        tokens = await oauth.refresh(upstream_client, self._credentials())

        assert tokens == ("access-2", "refresh-2")
        form = _form(upstream.calls("POST", TOKEN_PATH)[0])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_keeps_unrotated_refresh_token(self, oauth, upstream, upstream_client):
        upstream.on("POST", TOKEN_PATH, json_body={"access_token": "access-2"})

        tokens = await oauth.refresh(upstream_client, self._credentials())

        assert tokens == ("access-2", "refresh-1")

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, oauth, upstream, upstream_client):
        upstream.on("POST", TOKEN_PATH, status_code=400, json_body={"error": "invalid_grant"})

        with pytest.raises(UpstreamUnavailable):
            await oauth.refresh(upstream_client, self._credentials())

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, oauth, upstream, upstream_client):
        with pytest.raises(UpstreamUnavailable):
            await oauth.refresh(upstream_client, self._credentials(refresh_token=None))

        assert upstream.requests == []


# ============================================================================
# Helpers
# ============================================================================

class TestSubjectAndProfile:

    def test_provider_subject_claim_preferred(self):
        assert extract_subject(_id_token({"urn:esia:sbj_id": 1000, "sub": "other"})) == "1000"

    def test_falls_back_to_sub(self):
        assert extract_subject(_id_token({"sub": "2000"})) == "2000"

    def test_no_subject_claims(self):
        assert extract_subject(_id_token({"aud": "relay-client"})) is None

    def test_expired_token_still_readable(self):
        assert extract_subject(_id_token({"sub": "2000", "exp": 1})) == "2000"

    def test_malformed_token(self):
        assert extract_subject("not-a-jwt") is None

    def test_missing_token(self):
        assert extract_subject(None) is None

    def test_normalize_profile(self):
        profile = normalize_profile(PERSON_PAYLOAD)

        assert profile.first_name == "Ivan"
        assert profile.last_name == "Petrov"
        assert profile.middle_name == "Sergeevich"
        assert profile.birth_date == "01.02.2010"
        assert profile.snils == "000-000-000 00"
        assert profile.email == "ivan@example.org"
        assert profile.phone == "+7(900)0000000"

    def test_normalize_profile_without_contacts(self):
        profile = normalize_profile({"firstName": "Ivan"})

        assert profile.first_name == "Ivan"
        assert profile.email is None
        assert profile.phone is None
