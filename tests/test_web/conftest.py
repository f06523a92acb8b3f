"""Fixtures for route tests: an app wired to in-memory storage plus token helpers."""

from collections.abc import Callable

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.errors import MarketplaceError
from homeboard.models import Profile
from homeboard.web.admin_routes import router as admin_router
from homeboard.web.app import marketplace_error_handler
from homeboard.web.auth import create_access_token
from homeboard.web.routes import router
from homeboard.web.tracking_routes import router as tracking_router

AuthHeaders = Callable[..., dict[str, str]]


@pytest.fixture
def app(storage: MarketplaceStorage, settings_obj: Settings) -> FastAPI:
    app = FastAPI()
    app.state.storage = storage
    app.state.settings = settings_obj
    app.state.mailer = None
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.include_router(router)
    app.include_router(tracking_router)
    app.include_router(admin_router)
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
def auth_headers(settings_obj: Settings) -> AuthHeaders:
    """Bearer header for a profile, optionally acting through an impersonation token."""

    def _headers(profile: Profile, *, impersonation_token: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {create_access_token(profile.id, settings_obj)}"}
        if impersonation_token:
            headers["X-Impersonation-Token"] = impersonation_token
        return headers

    return _headers
