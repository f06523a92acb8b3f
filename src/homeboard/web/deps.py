"""Request-scoped accessors for shared state and services."""

from fastapi import Request

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.notifiers.email import ZeptoMailClient
from homeboard.services.analytics import AnalyticsService
from homeboard.services.digest import DigestService
from homeboard.services.impersonation import ImpersonationService
from homeboard.services.listings import ListingService


def get_storage(request: Request) -> MarketplaceStorage:
    return request.app.state.storage  # type: ignore[no-any-return]


def get_settings(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


def get_mailer(request: Request) -> ZeptoMailClient | None:
    return getattr(request.app.state, "mailer", None)


def listing_service(request: Request) -> ListingService:
    return ListingService(get_storage(request), get_settings(request), get_mailer(request))


def impersonation_service(request: Request) -> ImpersonationService:
    return ImpersonationService(get_storage(request), get_settings(request))


def analytics_service(request: Request) -> AnalyticsService:
    return AnalyticsService(get_storage(request), get_settings(request))


def digest_service(request: Request) -> DigestService:
    return DigestService(get_storage(request), get_settings(request), get_mailer(request))
