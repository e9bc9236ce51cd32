"""Health probe, log sanitizing and observability bootstrap."""

import httpx
import pytest
from fastapi import FastAPI

from emergent_sync.api.v1.routes.health import router as health_router
from emergent_sync.core.errors import ProviderUnavailableError, classify_error
from emergent_sync.core.observability import init_sentry
from emergent_sync.core.security import sanitize_for_logging


@pytest.mark.asyncio
async def test_health_is_degraded_before_clients_are_initialized():
    app = FastAPI()
    app.include_router(health_router)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        body = (await client.get("/health")).json()

    assert body["status"] == "degraded"
    assert body["database"] == "not_initialized"
    assert body["queue"] == "not_configured"


def test_sanitize_masks_every_email_and_truncates():
    assert sanitize_for_logging("dana@example.com") == "d***@example.com"
    assert sanitize_for_logging("from a@x.io to bob@y.io") == "from a***@x.io to b***@y.io"
    assert sanitize_for_logging("x" * 80).endswith("...")
    assert sanitize_for_logging("") == ""


def test_sentry_is_skipped_without_dsn():
    assert init_sentry() is False


@pytest.mark.parametrize("status_code,action", [
    (401, "reconnect"),
    (429, "backoff"),
    (503, "retry"),
    (404, "fail"),
])
def test_classify_error_actions(status_code, action):
    error = ProviderUnavailableError(f"{status_code} from proxy", status_code=status_code)

    assert classify_error(error).action == action
