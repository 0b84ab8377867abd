"""Webhook HTTP handler — ``POST /api/webhooks/fourthwall``.

Each delivery moves through:
1. Content-type check (415)
2. Raw body read once, signature verified over the untouched bytes (401)
3. Strict UTF-8 decode and JSON parse (400), schema validation (400 with field details)
4. Idempotency check — duplicates answer 200 ``alreadyProcessed``
5. Audit row persisted before any side effect
6. Per-type dispatch; handler failures are logged, never returned
7. 200 with ``{success, webhookId, eventType, processedAt}``

Security contract:
- Missing webhook secret fails closed (500), nothing is processed
- Signature failures return 401 before the body is parsed
- Store unavailable -> 503, sender retries; nothing is dispatched
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.config import Settings
from storefront.deps import get_dispatch_context, get_settings, get_webhook_store
from storefront.errors import (
    AuthenticationFailure,
    StorefrontError,
    UnsupportedMediaType,
    ValidationFailure,
)
from storefront.webhooks.dispatcher import DispatchContext, dispatch_event
from storefront.webhooks.schemas import (
    SchemaValidationError,
    event_type_of,
    parse_webhook_payload,
    webhook_id,
)
from storefront.webhooks.store import WebhookEventStore, WebhookRecord
from storefront.webhooks.verification import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

JSON_MEDIA_TYPE = "application/json"


def _log_webhook(event_type: str, webhook_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info(
        "WEBHOOK_AUDIT provider=fourthwall event=%s id=%s status=%s",
        event_type,
        webhook_id,
        status,
    )


def _is_json(content_type: str) -> bool:
    return content_type.split(";", 1)[0].strip().lower() == JSON_MEDIA_TYPE


@router.post("/fourthwall")
async def fourthwall_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: WebhookEventStore = Depends(get_webhook_store),
    ctx: DispatchContext = Depends(get_dispatch_context),
) -> JSONResponse:
    """Receive Fourthwall webhooks (signature-verified, idempotent)."""
    start = time.time()

    # 1. Content type
    if not _is_json(request.headers.get("content-type", "")):
        _log_webhook("unknown", "unknown", "unsupported_media_type")
        raise UnsupportedMediaType("Content-Type must be application/json")

    # 2. Raw body + signature
    body = await request.body()
    signature = request.headers.get(settings.signature_header, "")
    if not signature:
        _log_webhook("unknown", "unknown", "signature_missing")
        raise AuthenticationFailure(
            f"Missing webhook signature ({settings.signature_header} header required)"
        )

    if not settings.webhook_secret:
        logger.error("Webhook secret not configured — rejecting delivery")
        raise StorefrontError("Webhook secret not configured")

    if not verify_signature(body, signature, settings.webhook_secret, settings.signature_encoding):
        _log_webhook("unknown", "unknown", "signature_failed")
        raise AuthenticationFailure("Invalid signature")

    # 3. Decode + parse + validate
    try:
        raw_payload = body.decode("utf-8")
    except UnicodeDecodeError:
        _log_webhook("unknown", "unknown", "invalid_encoding")
        raise ValidationFailure("Payload must be UTF-8 encoded JSON") from None

    try:
        data = json.loads(raw_payload)
    except ValueError:
        _log_webhook("unknown", "unknown", "invalid_json")
        raise ValidationFailure("Invalid JSON payload") from None

    try:
        payload = parse_webhook_payload(data)
    except SchemaValidationError:
        tag = data.get("type") if isinstance(data, dict) else None
        _log_webhook(str(tag or "unknown"), "unknown", "invalid_payload")
        raise

    event_type = event_type_of(payload)
    delivery_id = request.headers.get(settings.delivery_id_header) if settings.delivery_id_header else None
    event_id = webhook_id(payload, delivery_id)

    # 4. Idempotency
    if await run_in_threadpool(store.exists, event_id):
        logger.info("Webhook %s already processed, skipping", event_id)
        _log_webhook(event_type, event_id, "duplicate")
        return _already_processed(event_id)

    # 5. Persist before dispatch
    now = int(time.time())
    record = WebhookRecord(
        id=event_id,
        event_type=event_type.value,
        payload=raw_payload,
        signature=signature,
        processed_at=now,
        created_at=now,
    )
    if not await run_in_threadpool(store.insert, record):
        _log_webhook(event_type, event_id, "duplicate_race")
        return _already_processed(event_id)

    # 6. Dispatch
    dispatched = await run_in_threadpool(dispatch_event, payload, ctx, event_id)
    _log_webhook(event_type, event_id, "dispatched" if dispatched else "dispatch_failed")

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s/%s", elapsed_ms, event_type, event_id)

    return JSONResponse({
        "success": True,
        "webhookId": event_id,
        "eventType": event_type.value,
        "processedAt": datetime.now(timezone.utc).isoformat(),
    })


def _already_processed(event_id: str) -> JSONResponse:
    return JSONResponse({"success": True, "alreadyProcessed": True, "webhookId": event_id})
