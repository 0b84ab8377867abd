"""Fourthwall webhook payload schemas — closed discriminated union.

Twelve payload shapes, selected by the literal ``type`` tag:

- ORDER_PLACED, ORDER_UPDATED
- GIFT_PURCHASE, DONATION
- PRODUCT_CREATED, PRODUCT_UPDATED
- SUBSCRIPTION_PURCHASED, SUBSCRIPTION_CHANGED, SUBSCRIPTION_EXPIRED
- THANK_YOU_SENT, NEWSLETTER_SUBSCRIBED
- PLATFORM_APP_DISCONNECTED

Validation contract:
- Strict types: numbers must be JSON numbers, strings must be strings
- Unknown ``type`` tag -> rejected, never ignored
- Unknown extra fields -> ignored (forward-compatible)
- ORDER_UPDATED / PRODUCT_UPDATED wrap a full order / product without its tag
- Wire names are camelCase; Python attributes are snake_case
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from storefront.errors import ValidationFailure, format_validation_errors

logger = logging.getLogger(__name__)


class WebhookEventType(StrEnum):
    """Every event tag the platform is known to send."""

    ORDER_PLACED = "ORDER_PLACED"
    ORDER_UPDATED = "ORDER_UPDATED"
    GIFT_PURCHASE = "GIFT_PURCHASE"
    DONATION = "DONATION"
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    SUBSCRIPTION_PURCHASED = "SUBSCRIPTION_PURCHASED"
    SUBSCRIPTION_CHANGED = "SUBSCRIPTION_CHANGED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    THANK_YOU_SENT = "THANK_YOU_SENT"
    NEWSLETTER_SUBSCRIBED = "NEWSLETTER_SUBSCRIBED"
    PLATFORM_APP_DISCONNECTED = "PLATFORM_APP_DISCONNECTED"


class _Model(BaseModel):
    model_config = ConfigDict(
        strict=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


Url = Annotated[str, Field(pattern=r"^https?://\S+$")]


# ── Common shapes ─────────────────────────────────────────────────────────


class Money(_Model):
    value: float
    currency: str


class Address(_Model):
    name: str
    address1: str
    address2: str | None = None
    city: str
    state: str
    country: str
    zip: str
    phone: str | None = None


class Image(_Model):
    id: str
    url: Url
    width: float
    height: float


class Color(_Model):
    name: str
    swatch: str


class Size(_Model):
    name: str


class VariantAttributes(_Model):
    description: str | None = None
    color: Color | None = None
    size: Size | None = None


class AddressBlock(_Model):
    address: Address


# ── Orders ────────────────────────────────────────────────────────────────


class OfferVariant(_Model):
    id: str
    name: str
    sku: str
    unit_price: Money
    quantity: int
    price: Money
    attributes: VariantAttributes | None = None


class Offer(_Model):
    id: str
    name: str
    slug: str
    description: str | None = None
    primary_image: Image | None = None
    variant: OfferVariant


class OrderAmounts(_Model):
    subtotal: Money
    shipping: Money
    tax: Money
    donation: Money | None = None
    discount: Money | None = None
    total: Money


class OrderSource(_Model):
    type: Literal["ORDER", "SAMPLES_ORDER", "TWITCH_GIFT_REDEMPTION", "GIVEAWAY_LINKS"]


class Order(_Model):
    """An order as the platform describes it, without the event tag."""

    id: str
    shop_id: str
    friendly_id: str
    checkout_id: str
    promotion_id: str | None = None
    status: str
    email: EmailStr
    email_marketing_opt_in: bool
    username: str | None = None
    message: str | None = None
    amounts: OrderAmounts
    billing: AddressBlock
    shipping: AddressBlock
    offers: list[Offer] = Field(min_length=1)
    source: OrderSource
    created_at: str
    updated_at: str


class OrderPlaced(Order):
    type: Literal["ORDER_PLACED"]


class OrderUpdated(_Model):
    type: Literal["ORDER_UPDATED"]
    order: Order


# ── Gifts & donations ─────────────────────────────────────────────────────


class GiftRecipient(_Model):
    email: EmailStr
    message: str | None = None


class GiftSender(_Model):
    email: EmailStr
    username: str | None = None


class GiftAmounts(_Model):
    subtotal: Money
    tax: Money
    discount: Money | None = None
    total: Money


class GiftPurchase(_Model):
    type: Literal["GIFT_PURCHASE"]
    id: str
    shop_id: str
    friendly_id: str
    checkout_id: str
    recipient: GiftRecipient
    sender: GiftSender
    status: str
    amounts: GiftAmounts
    billing: AddressBlock
    created_at: str
    updated_at: str


class DonationAmounts(_Model):
    total: Money


class Donation(_Model):
    type: Literal["DONATION"]
    id: str
    shop_id: str
    email: EmailStr
    username: str | None = None
    message: str | None = None
    amounts: DonationAmounts
    created_at: str
    updated_at: str


# ── Products ──────────────────────────────────────────────────────────────


class ProductStock(_Model):
    type: Literal["LIMITED", "UNLIMITED", "OUT_OF_STOCK"]
    in_stock: float | None = None


class ProductDimensions(_Model):
    length: float
    width: float
    height: float
    unit: str


class ProductWeight(_Model):
    value: float
    unit: str


class ProductVariant(_Model):
    id: str
    name: str
    sku: str
    unit_price: Money
    attributes: VariantAttributes | None = None
    stock: ProductStock
    weight: ProductWeight | None = None
    dimensions: ProductDimensions | None = None
    images: list[Image] | None = None


class ProductState(_Model):
    type: Literal["AVAILABLE", "UNAVAILABLE", "DRAFT"]


class Product(_Model):
    """A product as the platform describes it, without the event tag."""

    id: str
    name: str
    slug: str
    description: str | None = None
    state: ProductState
    images: list[Image] | None = None
    variants: list[ProductVariant]
    created_at: str
    updated_at: str


class ProductCreated(Product):
    type: Literal["PRODUCT_CREATED"]


class ProductUpdated(_Model):
    type: Literal["PRODUCT_UPDATED"]
    product: Product


# ── Subscriptions ─────────────────────────────────────────────────────────


class SubscriptionVariant(_Model):
    id: str
    tier_id: str
    interval: Literal["MONTHLY", "YEARLY"]
    amount: Money


class ActiveSubscription(_Model):
    type: Literal["ACTIVE"]
    variant: SubscriptionVariant


class CancelledSubscription(_Model):
    type: Literal["CANCELLED"]
    variant: SubscriptionVariant


class SubscriptionPurchased(_Model):
    type: Literal["SUBSCRIPTION_PURCHASED"]
    id: str
    email: EmailStr
    nickname: str | None = None
    subscription: ActiveSubscription


class SubscriptionChanged(_Model):
    type: Literal["SUBSCRIPTION_CHANGED"]
    id: str
    email: EmailStr
    nickname: str | None = None
    subscription: ActiveSubscription


class SubscriptionExpired(_Model):
    type: Literal["SUBSCRIPTION_EXPIRED"]
    id: str
    email: EmailStr
    nickname: str | None = None
    subscription: CancelledSubscription


# ── Community & platform ──────────────────────────────────────────────────


class Supporter(_Model):
    email: EmailStr
    username: str | None = None
    message: str | None = None


class Contribution(_Model):
    type: Literal["ORDER", "DONATION", "GIFT_PURCHASE"]
    id: str
    shop_id: str
    supporter: Supporter


class ThankYouSent(_Model):
    type: Literal["THANK_YOU_SENT"]
    id: str
    media_url: Url
    contribution: Contribution


class NewsletterSubscribed(_Model):
    type: Literal["NEWSLETTER_SUBSCRIBED"]
    email: EmailStr


class PlatformAppDisconnected(_Model):
    type: Literal["PLATFORM_APP_DISCONNECTED"]
    app_id: str
    shop_id: str


# ── Registry ──────────────────────────────────────────────────────────────


WebhookPayload = Annotated[
    Union[
        OrderPlaced,
        OrderUpdated,
        GiftPurchase,
        Donation,
        ProductCreated,
        ProductUpdated,
        SubscriptionPurchased,
        SubscriptionChanged,
        SubscriptionExpired,
        ThankYouSent,
        NewsletterSubscribed,
        PlatformAppDisconnected,
    ],
    Field(discriminator="type"),
]

PAYLOAD_MODELS: dict[WebhookEventType, type[BaseModel]] = {
    WebhookEventType(get_args(model.model_fields["type"].annotation)[0]): model
    for model in get_args(get_args(WebhookPayload)[0])
}

if set(PAYLOAD_MODELS) != set(WebhookEventType):
    raise RuntimeError("Webhook payload union and WebhookEventType are out of sync")

_payload_adapter: TypeAdapter[Any] = TypeAdapter(WebhookPayload)

_TAGS = frozenset(t.value for t in WebhookEventType)


class SchemaValidationError(ValidationFailure):
    """Payload did not match any known webhook shape."""


def parse_webhook_payload(data: Any) -> Any:
    """Validate *data* and narrow it to exactly one payload model.

    Raises:
        SchemaValidationError: with one ``{field, message}`` per failure
    """
    if not isinstance(data, dict):
        raise SchemaValidationError(
            "Invalid payload format",
            [{"field": "(root)", "message": "Payload must be a JSON object"}],
        )
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as exc:
        details = format_validation_errors(exc.errors(), strip_leading=_TAGS)
        raise SchemaValidationError("Invalid payload format", details) from exc


def event_type_of(payload: Any) -> WebhookEventType:
    return WebhookEventType(payload.type)


# ``id`` identifies the event; redeliveries repeat it, distinct events never share it
_NATURAL_ID_PAYLOADS = (OrderPlaced, GiftPurchase, Donation, ProductCreated, ThankYouSent)


def webhook_id(payload: Any, delivery_id: str | None = None) -> str:
    """Derive the idempotency key for a validated payload.

    Payloads whose ``id`` names the event itself (an order, a gift, a
    donation, a created product, a thank-you) use it as-is. Subscription
    payloads carry the subscription id, shared by every lifecycle event of
    that subscription, so they are namespaced per event type. The rest get
    a deterministic key from stable fields so a redelivery maps onto the
    same key; a per-delivery id from the sender, when present, takes
    precedence over any synthesized key.
    """
    if isinstance(payload, _NATURAL_ID_PAYLOADS):
        return payload.id
    if delivery_id:
        return f"delivery:{delivery_id}"
    if isinstance(payload, SubscriptionPurchased):
        return f"subscription_purchased:{payload.id}:{payload.subscription.variant.id}"
    if isinstance(payload, SubscriptionChanged):
        variant = payload.subscription.variant
        return f"subscription_changed:{payload.id}:{variant.id}:{variant.tier_id}:{variant.interval}"
    if isinstance(payload, SubscriptionExpired):
        return f"subscription_expired:{payload.id}"
    if isinstance(payload, OrderUpdated):
        return f"order_updated:{payload.order.id}:{payload.order.updated_at}"
    if isinstance(payload, ProductUpdated):
        return f"product_updated:{payload.product.id}:{payload.product.updated_at}"
    if isinstance(payload, NewsletterSubscribed):
        return f"newsletter:{payload.email.lower()}"
    if isinstance(payload, PlatformAppDisconnected):
        return f"app_disconnected:{payload.app_id}:{payload.shop_id}"
    raise ValueError(f"No idempotency key for {type(payload).__name__}")
