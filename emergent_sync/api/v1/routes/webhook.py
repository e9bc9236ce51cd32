"""
Webhook Routes
Handles Nango auth webhooks: records the connection and queues the first sync
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from supabase import Client

from emergent_sync.core.dependencies import get_supabase
from emergent_sync.core.errors import PersistenceError
from emergent_sync.core.security import sanitize_for_logging
from emergent_sync.models.schemas.connector import NangoWebhook
from emergent_sync.services.sync.orchestration.connections import handle_auth_webhook, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nango", tags=["webhook"])


@router.post("/webhook")
async def nango_webhook(
    request: Request,
    x_nango_signature: Optional[str] = Header(default=None),
    supabase: Client = Depends(get_supabase)
):
    """
    Handle Nango webhook.

    Webhook types:
    - auth: OAuth completion (success/failure) -> connection saved, connect sync queued
    - anything else: acknowledged and ignored
    """
    body = await request.body()

    if not verify_webhook_signature(body, x_nango_signature):
        logger.warning("⚠️  Rejected Nango webhook with bad signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = NangoWebhook.model_validate(json.loads(body or b"{}"))
    except (ValueError, ValidationError) as e:
        logger.warning(f"⚠️  Malformed Nango webhook: {e}")
        raise HTTPException(status_code=400, detail="Malformed webhook payload")

    email = payload.endUser.email if payload.endUser else None
    logger.info(
        f"[WEBHOOK] type={payload.type} provider={payload.providerConfigKey} "
        f"connection={payload.connectionId} user={sanitize_for_logging(email or payload.end_user_id or '')}"
    )

    try:
        connection = await handle_auth_webhook(supabase, payload)
    except ValueError as e:
        logger.error(f"[WEBHOOK] ❌ {e}")
        return {"status": "error", "message": str(e)}
    except PersistenceError as e:
        logger.error(f"[WEBHOOK] ❌ Failed to save connection: {e}")
        raise HTTPException(status_code=503, detail="Failed to save connection")

    if connection is None:
        return {"status": "ignored"}

    logger.info(f"[WEBHOOK] ✅ {connection.provider.value} connected for user {connection.user_id}")
    return {"status": "ok", "provider": connection.provider.value}
