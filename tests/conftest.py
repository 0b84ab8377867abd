"""Shared fixtures for the storefront test suite."""

from __future__ import annotations

import copy
import json
import os

os.environ["TESTING"] = "1"
os.environ.setdefault("STOREFRONT_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("STOREFRONT_SCHEDULER_ENABLED", "false")

from typing import Any  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront.config import Settings  # noqa: E402
from storefront.deps import (  # noqa: E402
    get_ecommerce_store,
    get_mailer,
    get_settings,
    get_webhook_store,
)
from storefront.webhooks.store import WebhookRecord  # noqa: E402
from storefront.webhooks.verification import compute_signature  # noqa: E402

WEBHOOK_SECRET = "fw-test-secret"
SIGNATURE_HEADER = "X-Fourthwall-Hmac-SHA256"
TIMESTAMP = "2026-10-01T12:00:00Z"


# ── Store doubles ─────────────────────────────────────────────────────────


class InMemoryWebhookStore:
    """Dict-backed stand-in for WebhookEventStore."""

    def __init__(self):
        self.records: dict[str, WebhookRecord] = {}

    def exists(self, webhook_id: str) -> bool:
        return webhook_id in self.records

    def insert(self, record: WebhookRecord) -> bool:
        if record.id in self.records:
            return False
        self.records[record.id] = record
        return True


class InMemoryEcommerceStore:
    """List-backed stand-in for EcommerceEventStore (insert only)."""

    def __init__(self):
        self.events: list[Any] = []
        self.contexts: list[Any] = []

    def insert(self, event: Any, context: Any = None) -> int:
        self.events.append(event)
        self.contexts.append(context)
        return len(self.events)


# ── Example payloads (one minimal, valid payload per event type) ─────────


def _money(value: float) -> dict[str, Any]:
    return {"value": value, "currency": "USD"}


_ADDRESS = {
    "name": "Ada Fan",
    "address1": "1 Main St",
    "city": "Portland",
    "state": "OR",
    "country": "US",
    "zip": "97201",
}

_ORDER = {
    "id": "order-456",
    "shopId": "shop-1",
    "friendlyId": "ABC123",
    "checkoutId": "chk-1",
    "status": "CONFIRMED",
    "email": "fan@wallbreaker.shop",
    "emailMarketingOptIn": False,
    "amounts": {
        "subtotal": _money(59.98),
        "shipping": _money(0.0),
        "tax": _money(0.0),
        "total": _money(59.98),
    },
    "billing": {"address": _ADDRESS},
    "shipping": {"address": _ADDRESS},
    "offers": [
        {
            "id": "off-1",
            "name": "Tour Shirt",
            "slug": "tour-shirt",
            "variant": {
                "id": "var-1",
                "name": "Black / M",
                "sku": "SHIRT-1",
                "unitPrice": _money(29.99),
                "quantity": 2,
                "price": _money(59.98),
            },
        }
    ],
    "source": {"type": "ORDER"},
    "createdAt": TIMESTAMP,
    "updatedAt": TIMESTAMP,
}

_PRODUCT = {
    "id": "prod-1",
    "name": "Tour Shirt",
    "slug": "tour-shirt",
    "state": {"type": "AVAILABLE"},
    "variants": [
        {
            "id": "var-1",
            "name": "Black / M",
            "sku": "SHIRT-1",
            "unitPrice": _money(29.99),
            "stock": {"type": "UNLIMITED"},
        }
    ],
    "createdAt": TIMESTAMP,
    "updatedAt": TIMESTAMP,
}

_SUBSCRIPTION_VARIANT = {
    "id": "sv-1",
    "tierId": "tier-gold",
    "interval": "MONTHLY",
    "amount": _money(5.0),
}

EXAMPLE_PAYLOADS: dict[str, dict[str, Any]] = {
    "ORDER_PLACED": {"type": "ORDER_PLACED", **_ORDER},
    "ORDER_UPDATED": {"type": "ORDER_UPDATED", "order": _ORDER},
    "GIFT_PURCHASE": {
        "type": "GIFT_PURCHASE",
        "id": "gift-1",
        "shopId": "shop-1",
        "friendlyId": "GFT001",
        "checkoutId": "chk-2",
        "recipient": {"email": "friend@wallbreaker.shop"},
        "sender": {"email": "fan@wallbreaker.shop"},
        "status": "PAID",
        "amounts": {
            "subtotal": _money(25.0),
            "tax": _money(2.0),
            "total": _money(27.0),
        },
        "billing": {"address": _ADDRESS},
        "createdAt": TIMESTAMP,
        "updatedAt": TIMESTAMP,
    },
    "DONATION": {
        "type": "DONATION",
        "id": "don-1",
        "shopId": "shop-1",
        "email": "fan@wallbreaker.shop",
        "amounts": {"total": _money(10.0)},
        "createdAt": TIMESTAMP,
        "updatedAt": TIMESTAMP,
    },
    "PRODUCT_CREATED": {"type": "PRODUCT_CREATED", **_PRODUCT},
    "PRODUCT_UPDATED": {"type": "PRODUCT_UPDATED", "product": _PRODUCT},
    "SUBSCRIPTION_PURCHASED": {
        "type": "SUBSCRIPTION_PURCHASED",
        "id": "sub-1",
        "email": "fan@wallbreaker.shop",
        "subscription": {"type": "ACTIVE", "variant": _SUBSCRIPTION_VARIANT},
    },
    "SUBSCRIPTION_CHANGED": {
        "type": "SUBSCRIPTION_CHANGED",
        "id": "sub-1",
        "email": "fan@wallbreaker.shop",
        "subscription": {"type": "ACTIVE", "variant": _SUBSCRIPTION_VARIANT},
    },
    "SUBSCRIPTION_EXPIRED": {
        "type": "SUBSCRIPTION_EXPIRED",
        "id": "sub-1",
        "email": "fan@wallbreaker.shop",
        "subscription": {"type": "CANCELLED", "variant": _SUBSCRIPTION_VARIANT},
    },
    "THANK_YOU_SENT": {
        "type": "THANK_YOU_SENT",
        "id": "ty-1",
        "mediaUrl": "https://cdn.wallbreaker.shop/thanks.mp4",
        "contribution": {
            "type": "ORDER",
            "id": "order-456",
            "shopId": "shop-1",
            "supporter": {"email": "fan@wallbreaker.shop"},
        },
    },
    "NEWSLETTER_SUBSCRIBED": {
        "type": "NEWSLETTER_SUBSCRIBED",
        "email": "Fan@Wallbreaker.shop",
    },
    "PLATFORM_APP_DISCONNECTED": {
        "type": "PLATFORM_APP_DISCONNECTED",
        "appId": "app-1",
        "shopId": "shop-1",
    },
}


@pytest.fixture()
def payloads() -> dict[str, dict[str, Any]]:
    """Fresh deep copy of every example payload, keyed by event type."""
    return copy.deepcopy(EXAMPLE_PAYLOADS)


# ── App wiring ────────────────────────────────────────────────────────────


@pytest.fixture()
def webhook_settings() -> Settings:
    return Settings(webhook_secret=WEBHOOK_SECRET, _env_file=None)


@pytest.fixture()
def webhook_store() -> InMemoryWebhookStore:
    return InMemoryWebhookStore()


@pytest.fixture()
def ecommerce_store() -> InMemoryEcommerceStore:
    return InMemoryEcommerceStore()


@pytest.fixture()
def app(webhook_settings, webhook_store, ecommerce_store):
    """FastAPI app with TESTING=1 and in-memory stores.

    Skipped: schema bootstrap, retention scheduler, Postgres, SMTP.
    """
    from storefront.app import create_app

    application = create_app()
    application.dependency_overrides[get_settings] = lambda: webhook_settings
    application.dependency_overrides[get_webhook_store] = lambda: webhook_store
    application.dependency_overrides[get_ecommerce_store] = lambda: ecommerce_store
    application.dependency_overrides[get_mailer] = lambda: None
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture()
def sign():
    """Sign a raw body the way the sender does (base64 HMAC-SHA256)."""

    def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
        return compute_signature(body, secret)

    return _sign


@pytest.fixture()
def post_webhook(client, sign):
    """POST a payload to the webhook endpoint with a valid signature."""

    def _post(payload: Any, headers: dict[str, str] | None = None):
        body = payload if isinstance(payload, bytes) else _dumps(payload)
        all_headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(body),
        }
        all_headers.update(headers or {})
        return client.post("/api/webhooks/fourthwall", content=body, headers=all_headers)

    return _post


def _dumps(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")
