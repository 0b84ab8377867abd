"""Webhook event dispatcher — routes validated payloads to per-type handlers.

One handler per event tag, held in a static mapping that is checked against
``WebhookEventType`` at import time: adding a tag without a handler fails
on import, not silently at runtime.

Security contract:
- Dispatch runs only after the webhook row is durably recorded
- Handler failures are logged with a correlation id and swallowed
- Purchase-type payloads become exactly one ``purchase`` ecommerce event
- A failed purchase record never blocks the order email or other side effects
- Customer emails are redacted in logs (domain only)
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from storefront.ecommerce.normalizer import normalize
from storefront.ecommerce.store import EcommerceEventStore
from storefront.notifications import OrderMailer
from storefront.webhooks.schemas import (
    Donation,
    GiftPurchase,
    NewsletterSubscribed,
    OrderPlaced,
    OrderUpdated,
    PlatformAppDisconnected,
    ProductCreated,
    ProductUpdated,
    SubscriptionChanged,
    SubscriptionExpired,
    SubscriptionPurchased,
    ThankYouSent,
    WebhookEventType,
    event_type_of,
)

logger = logging.getLogger(__name__)


@dataclass
class DispatchContext:
    """Collaborators available to handlers."""

    ecommerce: EcommerceEventStore
    mailer: OrderMailer | None = None
    webhook_id: str | None = None


def _redact_email(email: str) -> str:
    if "@" in email:
        return "***@" + email.split("@", 1)[1]
    return "***"


def _track_purchase(payload: Any, ctx: DispatchContext) -> None:
    """Record the purchase event; failures are logged so other side effects still run."""
    try:
        event = normalize(payload)
        if event is None:
            return
        ctx.ecommerce.insert(event)
    except Exception:
        correlation_id = uuid.uuid4().hex[:12]
        logger.exception(
            "[%s] Purchase tracking failed: %s/%s",
            correlation_id,
            payload.type,
            ctx.webhook_id or payload.id,
        )
        return
    logger.info("Purchase event tracked: %s", event.transaction_id)


# ── Handlers ──────────────────────────────────────────────────────────────


def handle_order_placed(payload: OrderPlaced, ctx: DispatchContext) -> None:
    logger.info(
        "Order placed: %s - Total: %s %s",
        payload.friendly_id,
        payload.amounts.total.value,
        payload.amounts.total.currency,
    )
    _track_purchase(payload, ctx)
    if ctx.mailer is not None:
        ctx.mailer.notify_order(payload)


def handle_order_updated(payload: OrderUpdated, ctx: DispatchContext) -> None:
    logger.info("Order updated: %s - Status: %s", payload.order.friendly_id, payload.order.status)


def handle_gift_purchase(payload: GiftPurchase, ctx: DispatchContext) -> None:
    logger.info(
        "Gift purchase: %s - Total: %s %s",
        payload.friendly_id,
        payload.amounts.total.value,
        payload.amounts.total.currency,
    )
    _track_purchase(payload, ctx)


def handle_donation(payload: Donation, ctx: DispatchContext) -> None:
    logger.info("Donation received: %s - Amount: %s", payload.id, payload.amounts.total.value)


def handle_product_created(payload: ProductCreated, ctx: DispatchContext) -> None:
    logger.info("Product created: %s - Slug: %s", payload.name, payload.slug)


def handle_product_updated(payload: ProductUpdated, ctx: DispatchContext) -> None:
    logger.info(
        "Product updated: %s - State: %s",
        payload.product.name,
        payload.product.state.type,
    )


def handle_subscription_purchased(payload: SubscriptionPurchased, ctx: DispatchContext) -> None:
    logger.info(
        "Subscription purchased: %s - Tier: %s",
        payload.id,
        payload.subscription.variant.tier_id,
    )
    _track_purchase(payload, ctx)


def handle_subscription_changed(payload: SubscriptionChanged, ctx: DispatchContext) -> None:
    logger.info(
        "Subscription changed: %s - New tier: %s",
        payload.id,
        payload.subscription.variant.tier_id,
    )


def handle_subscription_expired(payload: SubscriptionExpired, ctx: DispatchContext) -> None:
    logger.info("Subscription expired: %s", payload.id)


def handle_thank_you_sent(payload: ThankYouSent, ctx: DispatchContext) -> None:
    logger.info(
        "Thank you sent: %s - Contribution type: %s",
        payload.id,
        payload.contribution.type,
    )


def handle_newsletter_subscribed(payload: NewsletterSubscribed, ctx: DispatchContext) -> None:
    logger.info("Newsletter subscription: %s", _redact_email(payload.email))


def handle_platform_app_disconnected(payload: PlatformAppDisconnected, ctx: DispatchContext) -> None:
    logger.warning("Platform app disconnected: %s - Shop: %s", payload.app_id, payload.shop_id)


HANDLERS: dict[WebhookEventType, Callable[[Any, DispatchContext], None]] = {
    WebhookEventType.ORDER_PLACED: handle_order_placed,
    WebhookEventType.ORDER_UPDATED: handle_order_updated,
    WebhookEventType.GIFT_PURCHASE: handle_gift_purchase,
    WebhookEventType.DONATION: handle_donation,
    WebhookEventType.PRODUCT_CREATED: handle_product_created,
    WebhookEventType.PRODUCT_UPDATED: handle_product_updated,
    WebhookEventType.SUBSCRIPTION_PURCHASED: handle_subscription_purchased,
    WebhookEventType.SUBSCRIPTION_CHANGED: handle_subscription_changed,
    WebhookEventType.SUBSCRIPTION_EXPIRED: handle_subscription_expired,
    WebhookEventType.THANK_YOU_SENT: handle_thank_you_sent,
    WebhookEventType.NEWSLETTER_SUBSCRIBED: handle_newsletter_subscribed,
    WebhookEventType.PLATFORM_APP_DISCONNECTED: handle_platform_app_disconnected,
}

_missing = set(WebhookEventType) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No webhook handler for: {sorted(_missing)}")


def dispatch_event(payload: Any, ctx: DispatchContext, webhook_id: str) -> bool:
    """Run the handler for *payload*.

    Returns True if the handler completed. Any failure is logged with a
    correlation id and reported as False; it never propagates.
    """
    event_type = event_type_of(payload)
    try:
        HANDLERS[event_type](payload, replace(ctx, webhook_id=webhook_id))
        return True
    except Exception:
        correlation_id = uuid.uuid4().hex[:12]
        logger.exception(
            "[%s] Webhook handler failed: %s/%s",
            correlation_id,
            event_type,
            webhook_id,
        )
        return False
