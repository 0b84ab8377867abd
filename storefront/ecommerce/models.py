"""GA4-style ecommerce event vocabulary.

Normalized events share one fixed set of names regardless of where they
came from (a platform webhook or the storefront client). Wire names match
the GA4 ecommerce reference (snake_case), so ``model_dump_json`` is the
exact JSON kept in ``ecommerce_data``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from storefront.errors import ValidationFailure, format_validation_errors


class EcommerceEventName(StrEnum):
    VIEW_ITEM = "view_item"
    VIEW_ITEM_LIST = "view_item_list"
    SELECT_ITEM = "select_item"
    ADD_TO_CART = "add_to_cart"
    REMOVE_FROM_CART = "remove_from_cart"
    VIEW_CART = "view_cart"
    BEGIN_CHECKOUT = "begin_checkout"
    ADD_SHIPPING_INFO = "add_shipping_info"
    ADD_PAYMENT_INFO = "add_payment_info"
    PURCHASE = "purchase"
    REFUND = "refund"


# Fixed funnel order, independent of counts
FUNNEL_STEPS: tuple[EcommerceEventName, ...] = (
    EcommerceEventName.VIEW_ITEM,
    EcommerceEventName.ADD_TO_CART,
    EcommerceEventName.BEGIN_CHECKOUT,
    EcommerceEventName.PURCHASE,
)


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Item(_Model):
    """A line item inside an ecommerce event."""

    item_id: str
    item_name: str
    affiliation: str | None = None
    coupon: str | None = None
    currency: str | None = None
    discount: float | None = None
    index: int | None = None
    item_brand: str | None = None
    item_category: str | None = None
    item_category2: str | None = None
    item_category3: str | None = None
    item_category4: str | None = None
    item_category5: str | None = None
    item_list_id: str | None = None
    item_list_name: str | None = None
    item_variant: str | None = None
    location_id: str | None = None
    price: float
    quantity: int = 1


Items = Annotated[list[Item], Field(min_length=1)]


class ViewItem(_Model):
    event_name: Literal["view_item"]
    currency: str = "USD"
    value: float
    items: Items


class ViewItemList(_Model):
    event_name: Literal["view_item_list"]
    item_list_id: str | None = None
    item_list_name: str | None = None
    items: Items


class SelectItem(_Model):
    event_name: Literal["select_item"]
    item_list_id: str | None = None
    item_list_name: str | None = None
    items: Items


class AddToCart(_Model):
    event_name: Literal["add_to_cart"]
    currency: str = "USD"
    value: float
    items: Items


class RemoveFromCart(_Model):
    event_name: Literal["remove_from_cart"]
    currency: str = "USD"
    value: float
    items: Items


class ViewCart(_Model):
    event_name: Literal["view_cart"]
    currency: str = "USD"
    value: float
    items: Items


class BeginCheckout(_Model):
    event_name: Literal["begin_checkout"]
    currency: str = "USD"
    value: float
    coupon: str | None = None
    items: Items


class AddShippingInfo(_Model):
    event_name: Literal["add_shipping_info"]
    currency: str = "USD"
    value: float
    coupon: str | None = None
    shipping_tier: str | None = None
    items: Items


class AddPaymentInfo(_Model):
    event_name: Literal["add_payment_info"]
    currency: str = "USD"
    value: float
    coupon: str | None = None
    payment_type: str | None = None
    items: Items


class Purchase(_Model):
    event_name: Literal["purchase"]
    transaction_id: str
    affiliation: str | None = None
    currency: str = "USD"
    value: float
    tax: float | None = None
    shipping: float | None = None
    coupon: str | None = None
    items: Items


class Refund(_Model):
    """A refund. No items means the whole order was refunded."""

    event_name: Literal["refund"]
    transaction_id: str
    currency: str = "USD"
    value: float
    affiliation: str | None = None
    coupon: str | None = None
    shipping: float | None = None
    tax: float | None = None
    items: list[Item] | None = None


EcommerceEvent = Annotated[
    Union[
        ViewItem,
        ViewItemList,
        SelectItem,
        AddToCart,
        RemoveFromCart,
        ViewCart,
        BeginCheckout,
        AddShippingInfo,
        AddPaymentInfo,
        Purchase,
        Refund,
    ],
    Field(discriminator="event_name"),
]

_event_adapter: TypeAdapter[Any] = TypeAdapter(EcommerceEvent)

_EVENT_NAMES = frozenset(name.value for name in EcommerceEventName)


def parse_ecommerce_event(data: Any) -> Any:
    """Validate a client-reported event against the GA4 vocabulary."""
    if not isinstance(data, dict):
        raise ValidationFailure(
            "Invalid ecommerce event format",
            [{"field": "(root)", "message": "Event must be a JSON object"}],
        )
    try:
        return _event_adapter.validate_python(data)
    except ValidationError as exc:
        details = format_validation_errors(
            exc.errors(), strip_leading=_EVENT_NAMES, tag_field="event_name"
        )
        raise ValidationFailure("Invalid ecommerce event format", details) from exc


def event_row(event: Any) -> dict[str, Any]:
    """Flatten an event into the queryable columns of ``ecommerce_events``.

    Scalars only appear when the event type carries them.
    """
    return {
        "event_name": event.event_name,
        "currency": getattr(event, "currency", None),
        "value": getattr(event, "value", None),
        "transaction_id": getattr(event, "transaction_id", None),
        "tax": getattr(event, "tax", None),
        "shipping": getattr(event, "shipping", None),
        "coupon": getattr(event, "coupon", None),
        "ecommerce_data": event.model_dump(mode="json", exclude_none=True),
    }
