"""FastAPI dependency providers.

Routes ask for stores and settings through these functions so tests can
swap them via ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from storefront.analytics.store import AnalyticsStore
from storefront.config import Settings, settings
from storefront.db import Database
from storefront.ecommerce.store import EcommerceEventStore
from storefront.notifications import OrderMailer
from storefront.webhooks.dispatcher import DispatchContext
from storefront.webhooks.store import WebhookEventStore


def get_settings() -> Settings:
    return settings


@lru_cache(maxsize=1)
def get_database() -> Database:
    return Database(settings.database_url)


def get_webhook_store() -> WebhookEventStore:
    return WebhookEventStore(get_database())


def get_ecommerce_store() -> EcommerceEventStore:
    return EcommerceEventStore(get_database())


def get_analytics_store() -> AnalyticsStore:
    return AnalyticsStore(get_database())


def get_mailer() -> OrderMailer | None:
    mailer = OrderMailer.from_settings(settings)
    return mailer if mailer.is_configured else None


def get_dispatch_context(
    ecommerce: EcommerceEventStore = Depends(get_ecommerce_store),
    mailer: OrderMailer | None = Depends(get_mailer),
) -> DispatchContext:
    return DispatchContext(ecommerce=ecommerce, mailer=mailer)
