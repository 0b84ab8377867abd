"""Webhook payload -> normalized ecommerce event.

Only money-bearing purchases become ecommerce events:

- ORDER_PLACED            -> purchase, transaction_id = order id
- GIFT_PURCHASE           -> purchase, transaction_id = gift id
- SUBSCRIPTION_PURCHASED  -> purchase, transaction_id = "SUB_" + subscription id

Amounts are copied verbatim from the upstream payload. ``value`` is the
upstream total, never re-derived from items: promotions and rounding do
not always reconcile.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from storefront.ecommerce.models import Item, Purchase
from storefront.webhooks.schemas import (
    GiftPurchase,
    OrderPlaced,
    SubscriptionPurchased,
    WebhookEventType,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_TRANSACTION_PREFIX = "SUB_"
GIFT_ITEM_ID = "GIFT"


def normalize_order_placed(payload: OrderPlaced) -> Purchase:
    amounts = payload.amounts
    items = [
        Item(
            item_id=offer.variant.sku,
            item_name=offer.name,
            price=offer.variant.unit_price.value,
            quantity=offer.variant.quantity,
            item_category=offer.slug,
            item_variant=offer.variant.name,
            currency=offer.variant.unit_price.currency,
            index=index,
        )
        for index, offer in enumerate(payload.offers)
    ]
    return Purchase(
        event_name="purchase",
        transaction_id=payload.id,
        affiliation="Fourthwall",
        currency=amounts.total.currency,
        value=amounts.total.value,
        tax=amounts.tax.value,
        shipping=amounts.shipping.value,
        coupon=payload.promotion_id,
        items=items,
    )


def normalize_gift_purchase(payload: GiftPurchase) -> Purchase:
    amounts = payload.amounts
    return Purchase(
        event_name="purchase",
        transaction_id=payload.id,
        affiliation="Fourthwall Gift",
        currency=amounts.total.currency,
        value=amounts.total.value,
        tax=amounts.tax.value,
        items=[
            Item(
                item_id=GIFT_ITEM_ID,
                item_name="Gift Purchase",
                price=amounts.subtotal.value,
                quantity=1,
                currency=amounts.subtotal.currency,
                index=0,
            )
        ],
    )


def normalize_subscription_purchased(payload: SubscriptionPurchased) -> Purchase:
    variant = payload.subscription.variant
    return Purchase(
        event_name="purchase",
        transaction_id=f"{SUBSCRIPTION_TRANSACTION_PREFIX}{payload.id}",
        affiliation="Fourthwall Subscription",
        currency=variant.amount.currency,
        value=variant.amount.value,
        items=[
            Item(
                item_id=variant.tier_id,
                item_name=f"Membership - {variant.interval}",
                price=variant.amount.value,
                quantity=1,
                item_category="Subscription",
                item_variant=variant.interval,
                currency=variant.amount.currency,
                index=0,
            )
        ],
    )


NORMALIZERS: dict[WebhookEventType, Callable[[Any], Purchase]] = {
    WebhookEventType.ORDER_PLACED: normalize_order_placed,
    WebhookEventType.GIFT_PURCHASE: normalize_gift_purchase,
    WebhookEventType.SUBSCRIPTION_PURCHASED: normalize_subscription_purchased,
}


def normalize(payload: Any) -> Purchase | None:
    """Return the purchase event for *payload*, or None for non-purchase types."""
    normalizer = NORMALIZERS.get(WebhookEventType(payload.type))
    if normalizer is None:
        return None
    return normalizer(payload)
