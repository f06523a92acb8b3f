"""Tests for the application factory and the maintenance scheduler."""

from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import SecretStr

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.errors import FeatureLimitError, MarketplaceError
from homeboard.scheduler import build_scheduler, run_job
from homeboard.web.app import create_app, marketplace_error_handler


@pytest.fixture
def file_settings(settings_obj: Settings, tmp_path: Path) -> Settings:
    return settings_obj.model_copy(update={"database_path": str(tmp_path / "app.db")})


class TestCreateApp:
    def test_security_headers_and_state(self, file_settings: Settings) -> None:
        app = create_app(file_settings, run_scheduler=False)
        with TestClient(app) as client:
            resp = client.get("/health")
            assert resp.status_code == 200
            assert resp.headers["X-Content-Type-Options"] == "nosniff"
            assert resp.headers["X-Frame-Options"] == "DENY"
            assert resp.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
            assert app.state.mailer is not None

    def test_mailer_absent_without_token(self, file_settings: Settings) -> None:
        app = create_app(
            file_settings.model_copy(update={"zepto_token": SecretStr("")}), run_scheduler=False
        )
        with TestClient(app) as client:
            client.get("/health")
            assert app.state.mailer is None

    def test_error_handler_shape(self, file_settings: Settings) -> None:
        app = create_app(file_settings, run_scheduler=False)

        @app.get("/boom")
        async def boom() -> None:
            raise FeatureLimitError("No more featured slots")

        with TestClient(app) as client:
            resp = client.get("/boom")
        assert resp.status_code == 409
        assert resp.json() == {"error": "No more featured slots"}


async def test_error_handler_direct() -> None:
    app = FastAPI()
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)

    @app.get("/fail")
    async def fail() -> None:
        raise MarketplaceError("Nope")

    resp = TestClient(app).get("/fail")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Nope"}


class TestScheduler:
    async def test_jobs_registered(
        self, storage: MarketplaceStorage, settings_obj: Settings
    ) -> None:
        scheduler = build_scheduler(storage, settings_obj, None)
        assert {job.id for job in scheduler.get_jobs()} == {
            "analytics_rollup",
            "analytics_cleanup",
            "listing_lifecycle",
            "impersonation_cleanup",
            "admin_digest",
        }

    async def test_run_job_returns_result(self) -> None:
        async def job() -> int:
            return 3

        assert await run_job("demo", job) == 3

    async def test_run_job_swallows_failures(self) -> None:
        async def job() -> None:
            raise RuntimeError("boom")

        assert await run_job("demo", job) is None
