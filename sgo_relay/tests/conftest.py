"""
Shared fixtures: relay settings, a scripted fake upstream served through
``httpx.MockTransport``, and fresh stores/apps per test.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from sgo_relay.config import Settings
from sgo_relay.dependencies import AppState
from sgo_relay.main import create_app


SCHOOL_URL = "https://sgo.rso23.ru"


class FakeClock:
    """Manually advanced time source for store expiry tests"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """
    Scripted upstream keyed by (method, path).

    Every handled request is recorded in ``requests`` so tests can assert
    on what was (or was not) sent upstream.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json_body: Any = None,
        text: Optional[str] = None,
        headers: Optional[List[Tuple[str, str]]] = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json_body is not None:
                return httpx.Response(status_code, json=json_body, headers=headers)
            return httpx.Response(status_code, text=text or "", headers=headers)

        self.routes[(method.upper(), path)] = respond

    def fail(self, method: str, path: str, exc: Exception) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            raise exc

        self.routes[(method.upper(), path)] = respond

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        respond = self.routes.get((request.method, request.url.path))
        if respond is None:
            return httpx.Response(404, json={"error": "not found"})
        return respond(request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request) -> Any:
        return json.loads(request.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SGO_DEFAULT_URL=SCHOOL_URL,
        ESIA_CLIENT_ID="relay-client",
        ESIA_CLIENT_SECRET="relay-secret",
        ESIA_REDIRECT_URI="https://relay.example/api/auth/esia/callback",
        ESIA_AUTHORIZE_URL="https://esia.example/aas/oauth2/v2/ac",
        ESIA_TOKEN_URL="https://esia.example/aas/oauth2/v3/te",
        ESIA_PROFILE_URL="https://esia.example/rs/prns",
        FRONTEND_URL="https://app.example/",
        ALLOWED_ORIGINS="*",
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream_client(upstream):
    """Async httpx client wired to the fake upstream"""
    return httpx.AsyncClient(transport=upstream.transport)


@pytest.fixture
def app_state(settings, upstream) -> AppState:
    return AppState(settings, transport=upstream.transport)


@pytest.fixture
def client(app_state) -> TestClient:
    return TestClient(create_app(app_state=app_state))
