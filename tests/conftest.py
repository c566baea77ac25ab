import sys
from contextlib import asynccontextmanager
from itertools import count
from pathlib import Path
from types import SimpleNamespace
from urllib.parse import urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from proxy_functions import billing  # noqa: E402
from proxy_functions.config import Settings, get_settings, settings  # noqa: E402
from proxy_functions.main import create_app  # noqa: E402

SUPABASE_URL = "https://project.supabase.co"
GOOD_TOKEN = "good-token"
USER_ID = "user-1"


class FakeHTTP:
    """
    Stands in for httpx.AsyncClient. Routes are matched on method and URL suffix;
    every outbound call is recorded so tests can assert on what was (not) sent.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, object]] = []
        self.calls: list[SimpleNamespace] = []

    def add(self, method: str, suffix: str, responder) -> None:
        # later registrations win so tests can override conftest defaults
        self.routes.insert(0, (method, suffix, responder))

    def calls_to(self, suffix: str) -> list[SimpleNamespace]:
        return [call for call in self.calls if call.path.endswith(suffix)]

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, json=None, headers=None):
        return await self.request("POST", url, json=json, headers=headers)

    async def request(self, method, url, params=None, json=None, headers=None):
        path = urlsplit(url).path
        call = SimpleNamespace(
            method=method, url=url, path=path, params=params, json=json, headers=headers or {}
        )
        self.calls.append(call)
        for route_method, suffix, responder in self.routes:
            if route_method == method and path.endswith(suffix):
                if isinstance(responder, Exception):
                    raise responder
                if callable(responder):
                    return responder(call)
                return responder
        raise AssertionError(f"unexpected call {method} {url}")


def supabase_user(call):
    if call.headers.get("Authorization") == f"Bearer {GOOD_TOKEN}":
        return httpx.Response(200, json={"id": USER_ID, "email": "owner@example.com"})
    return httpx.Response(401, json={"msg": "invalid JWT"})


class FakeSessions:
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.created: list[dict] = []
        self.error: Exception | None = None
        self._ids = count(1)

    async def create_async(self, params=None):
        if self.error:
            raise self.error
        self.created.append(params)
        session_id = next(self._ids)
        return SimpleNamespace(id=f"{self.prefix}_{session_id}", url=f"https://stripe.test/{self.prefix}/{session_id}")


class FakeStripe:
    def __init__(self) -> None:
        self.billing_portal = SimpleNamespace(sessions=FakeSessions("bps"))
        self.checkout = SimpleNamespace(sessions=FakeSessions("cs"))
        self.configs: list = []
        self.closed = 0


@pytest.fixture()
def test_settings() -> Settings:
    return settings.model_copy(
        update={
            "openai_api_key": "sk-test",
            "stripe_secret_key": "sk_test_stripe",
            "stripe_price_starter_id": "price_starter",
            "stripe_price_team_id": "price_team",
            "supabase_url": SUPABASE_URL,
            "supabase_anon_key": "anon-key",
            "supabase_service_role_key": "service-key",
        }
    )


@pytest.fixture()
def app(test_settings):
    application = create_app()
    application.dependency_overrides[get_settings] = lambda: test_settings
    return application


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def fake_http(monkeypatch) -> FakeHTTP:
    fake = FakeHTTP()
    fake.add("GET", "/auth/v1/user", supabase_user)
    monkeypatch.setattr(httpx, "AsyncClient", lambda timeout=None: fake)
    return fake


@pytest.fixture()
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()

    @asynccontextmanager
    async def factory(config):
        fake.configs.append(config)
        try:
            yield fake
        finally:
            fake.closed += 1

    monkeypatch.setattr(billing, "stripe_client", factory)
    return fake


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {GOOD_TOKEN}"}
