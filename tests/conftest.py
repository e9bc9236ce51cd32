"""Shared fixtures: env for Settings, fake Supabase/Redis, provider HTTP doubles."""

import os
from unittest.mock import MagicMock

# Settings() is built at import time, so the environment must be ready first
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("NANGO_SECRET", "test-nango-secret")
os.environ["ENVIRONMENT"] = "test"
for _name in ("NIGHTFALL_API_KEY", "PII_VAULT_KEY_BASE64", "REDIS_URL", "NANGO_WEBHOOK_SECRET"):
    os.environ.pop(_name, None)

import httpx  # noqa: E402
import pytest  # noqa: E402

from emergent_sync.services.dlp.redaction import RedactionGate  # noqa: E402
from emergent_sync.services.jobs.notifications import BriefingNotifier  # noqa: E402
from tests.fakes.builders import NIGHTFALL_KEY, VAULT_KEY_B64  # noqa: E402
from tests.fakes.fake_redis import FakeRedis  # noqa: E402
from tests.fakes.fake_supabase import FakeSupabase  # noqa: E402
from tests.fakes.provider_api import ProviderApi  # noqa: E402


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def provider_api() -> ProviderApi:
    return ProviderApi()


@pytest.fixture
async def http_client(provider_api):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_api)) as client:
        yield client


@pytest.fixture
def gate(supabase, http_client) -> RedactionGate:
    return RedactionGate(supabase, http_client, api_key=NIGHTFALL_KEY, vault_key_b64=VAULT_KEY_B64)


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=BriefingNotifier)
