"""Ecommerce API — client-reported GA4 events and aggregate reads."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_camel

from storefront.config import settings
from storefront.deps import get_ecommerce_store
from storefront.ecommerce.models import parse_ecommerce_event
from storefront.ecommerce.store import DEFAULT_WINDOW_DAYS, EcommerceEventStore, RequestContext
from storefront.middleware import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ecommerce", tags=["ecommerce"])

Days = Annotated[int, Query(ge=1, le=365)]
Limit = Annotated[int, Query(ge=1, le=100)]


def camel_keys(row: dict[str, Any]) -> dict[str, Any]:
    return {to_camel(k): v for k, v in row.items()}


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        path=request.headers.get("referer"),
        locale=request.headers.get("content-language"),
        user_agent=request.headers.get("user-agent"),
        country=request.headers.get("cf-ipcountry"),
    )


@router.post("/events", status_code=201)
@limiter.limit(settings.rate_limit)
def track_event(
    request: Request,
    data: Any = Body(...),
    store: EcommerceEventStore = Depends(get_ecommerce_store),
) -> JSONResponse:
    """Track a GA4 ecommerce event (view_item, add_to_cart, purchase, ...)."""
    event = parse_ecommerce_event(data)
    row_id = store.insert(event, request_context(request))
    logger.debug("Ecommerce event tracked: %s (%d)", event.event_name, row_id)
    return JSONResponse(
        {"success": True, "id": row_id, "eventName": event.event_name},
        status_code=201,
    )


@router.get("/stats")
def stats(days: Days = DEFAULT_WINDOW_DAYS, store: EcommerceEventStore = Depends(get_ecommerce_store)) -> dict:
    return {
        "periodDays": days,
        "revenue": {
            "total": store.total_revenue(days),
            "averageOrderValue": store.average_order_value(days),
            "purchaseCount": store.purchase_count(days),
        },
        "conversion": {
            "funnel": [camel_keys(step) for step in store.conversion_funnel(days)],
            "cartAbandonmentRate": store.cart_abandonment_rate(days),
        },
        "topProducts": [camel_keys(p) for p in store.top_products(10, days)],
    }


@router.get("/revenue")
def revenue(days: Days = DEFAULT_WINDOW_DAYS, store: EcommerceEventStore = Depends(get_ecommerce_store)) -> dict:
    return {
        "periodDays": days,
        "totalRevenue": store.total_revenue(days),
        "totalOrders": store.purchase_count(days),
        "averageOrderValue": store.average_order_value(days),
    }


@router.get("/funnel")
def funnel(days: Days = DEFAULT_WINDOW_DAYS, store: EcommerceEventStore = Depends(get_ecommerce_store)) -> dict:
    return {
        "periodDays": days,
        "funnel": [camel_keys(step) for step in store.conversion_funnel(days)],
    }


@router.get("/products/top")
def top_products(
    days: Days = DEFAULT_WINDOW_DAYS,
    limit: Limit = 10,
    store: EcommerceEventStore = Depends(get_ecommerce_store),
) -> dict:
    return {
        "periodDays": days,
        "products": [camel_keys(p) for p in store.top_products(limit, days)],
    }
