import os
import sys
from typing import List

import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()

import httpx  # noqa: E402

from playbridge.domain.entities import BackoffOptions  # noqa: E402
from playbridge.infrastructure.http.circuit_breaker import CircuitBreaker  # noqa: E402
from playbridge.infrastructure.http.transport import ProviderTransport  # noqa: E402


_ENV_PREFIXES = ("PROVIDERS_", "PROVIDER_", "PLAYBRIDGE_")
_TOKEN_SUFFIX = "_ACCESS_TOKEN"


@pytest.fixture(autouse=True)
def _isolate_playbridge_env():
    """Keep provider tokens and playbridge settings from leaking into tests.

    A developer .env may set these variables; clear them before each test and
    restore afterwards so tests that set them explicitly stay deterministic.
    """
    keys = [k for k in os.environ if k.startswith(_ENV_PREFIXES) or k.endswith(_TOKEN_SUFFIX)]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k in [k for k in os.environ if k.startswith(_ENV_PREFIXES) or k.endswith(_TOKEN_SUFFIX)]:
            if k not in backup:
                os.environ.pop(k, None)
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


class RecordingSleep:
    """Async sleep replacement that records requested delays in seconds."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.delays)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_transport(fake_sleep):
    """Factory building a ProviderTransport backed by httpx.MockTransport."""

    def factory(handler, provider="spotify", base_url="https://api.test", **kwargs):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kwargs.setdefault("backoff", BackoffOptions(retries=3, base_delay_ms=100, max_delay_ms=1000, jitter_ms=0))
        kwargs.setdefault("breaker", CircuitBreaker(provider))
        kwargs.setdefault("sleep", fake_sleep)
        return ProviderTransport(provider, "test-token", base_url, http_client=client, **kwargs)

    return factory
