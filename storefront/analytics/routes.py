"""Analytics API — pageview and custom-event tracking plus reads."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from storefront.analytics.store import (
    DEFAULT_WINDOW_DAYS,
    AnalyticsEventIn,
    AnalyticsStore,
    PageviewIn,
)
from storefront.config import settings
from storefront.deps import get_analytics_store
from storefront.ecommerce.routes import camel_keys
from storefront.middleware import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

Days = Annotated[int, Query(ge=1, le=365)]


@router.post("/pageviews", status_code=201)
@limiter.limit(settings.rate_limit)
def track_pageview(
    request: Request,
    pageview: PageviewIn,
    store: AnalyticsStore = Depends(get_analytics_store),
) -> JSONResponse:
    pageview = pageview.model_copy(update={
        "user_agent": request.headers.get("user-agent"),
        "country": request.headers.get("cf-ipcountry"),
    })
    row_id = store.insert_pageview(pageview)
    return JSONResponse({"success": True, "id": row_id}, status_code=201)


@router.post("/events", status_code=201)
@limiter.limit(settings.rate_limit)
def track_event(
    request: Request,
    event: AnalyticsEventIn,
    store: AnalyticsStore = Depends(get_analytics_store),
) -> JSONResponse:
    row_id = store.insert_event(event)
    return JSONResponse({"success": True, "id": row_id}, status_code=201)


@router.get("/stats")
def stats(days: Days = DEFAULT_WINDOW_DAYS, store: AnalyticsStore = Depends(get_analytics_store)) -> dict:
    """Top pages and top events for the window."""
    return {
        "periodDays": days,
        "topPages": store.top_pages(10, days),
        "topEvents": [camel_keys(e) for e in store.top_events(10, days)],
    }


@router.get("/pageviews/{path:path}")
def pageview_count(
    path: str,
    days: Days = DEFAULT_WINDOW_DAYS,
    store: AnalyticsStore = Depends(get_analytics_store),
) -> dict:
    full_path = "/" + path.lstrip("/")
    return {"path": full_path, "views": store.pageview_count(full_path, days), "periodDays": days}


@router.get("/events/{name}")
def event_count(
    name: str,
    days: Days = DEFAULT_WINDOW_DAYS,
    store: AnalyticsStore = Depends(get_analytics_store),
) -> dict:
    return {"eventName": name, "count": store.event_count(name, days), "periodDays": days}
