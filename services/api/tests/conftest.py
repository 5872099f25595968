from typing import Dict

import pytest
from fastapi.testclient import TestClient

from fakes import FakeProvider, Upstream, make_png
from imagecraft.auth import mint_session_token
from imagecraft.deps import get_http_client_factory
from imagecraft.main import app
from imagecraft.provider import get_provider
from imagecraft.security import InMemoryRateLimiter, get_rate_limiter


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def api(provider: FakeProvider, upstream: Upstream):
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_http_client_factory] = lambda: upstream.factory
    app.dependency_overrides[get_rate_limiter] = lambda: InMemoryRateLimiter(10_000, 10)
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {mint_session_token('user_123', email='pat@example.com')}"}


@pytest.fixture
def small_png() -> bytes:
    return make_png()


@pytest.fixture(scope="session")
def large_png() -> bytes:
    # ~2.1 MB of noise: big enough for realistic compression targets, under the 10 MB cap
    return make_png(1000, 700, noise=True)
