"""Shared pytest fixtures."""

import gc
import os
import sys
import threading
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
import structlog
from hypothesis import HealthCheck, settings

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.models import Listing, ListingCreate, ListingType, Profile, UserRole
from homeboard.services.listings import ListingService

# Monday afternoon in New York
NOW = datetime(2025, 3, 3, 18, 0, tzinfo=UTC)


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )


@pytest.fixture(autouse=True)
def _restore_structlog_config() -> Any:
    """Undo structlog configuration made during a test.

    ``configure_logging`` binds the current ``sys.stderr`` (a capture stream
    under ``capsys``) and caches loggers on first use; without this, later
    tests write to a closed stream.
    """
    saved = structlog.get_config()
    yield
    structlog.configure(**saved)
    for module in list(sys.modules.values()):
        if getattr(module, "__name__", "").startswith("homeboard"):
            proxy = getattr(module, "logger", None)
            if isinstance(proxy, structlog._config.BoundLoggerLazyProxy):
                proxy.__dict__.pop("bind", None)


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: detect and stop leaked aiosqlite worker threads.

    aiosqlite creates a non-daemon worker thread per connection. If a test
    leaks a connection the thread prevents clean process exit.
    """
    yield

    from aiosqlite.core import _STOP_RUNNING_SENTINEL, Connection

    leaked = False

    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    for thread in threading.enumerate():
        if "_connection_worker_thread" in (thread.name or "") and thread.is_alive():
            leaked = True
            tx = getattr(thread, "_args", (None,))[0]
            if tx is not None and hasattr(tx, "put_nowait"):
                tx.put_nowait((None, lambda: _STOP_RUNNING_SENTINEL))
                thread.join(timeout=1.0)

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s); add 'await storage.close()' to fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings_obj(tmp_path: Path) -> Settings:
    """Settings pointing at an in-memory database and a temporary media dir."""
    return Settings(
        database_path=":memory:",
        media_dir=str(tmp_path / "media"),
        jwt_secret="test-secret",
        site_url="https://hadirot.test",
        zepto_token="zepto-token",
        zepto_from_address="noreply@hadirot.test",
        enable_scheduler=False,
    )


@pytest_asyncio.fixture
async def storage() -> AsyncGenerator[MarketplaceStorage, None]:
    """Create an in-memory storage instance."""
    s = MarketplaceStorage(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def make_profile() -> Callable[..., Profile]:
    """Factory for Profile instances with auto-incrementing ids."""
    counter = 0

    def _make(**overrides: Any) -> Profile:
        nonlocal counter
        counter += 1
        defaults: dict[str, Any] = {
            "id": f"user-{counter}",
            "full_name": f"Test User {counter}",
            "role": UserRole.LANDLORD,
            "email": f"user{counter}@example.com",
            "created_at": NOW,
            "updated_at": NOW,
        }
        defaults.update(overrides)
        return Profile(**defaults)

    return _make


@pytest.fixture
def add_profile(
    storage: MarketplaceStorage, make_profile: Callable[..., Profile]
) -> Callable[..., Awaitable[Profile]]:
    """Create and persist a profile."""

    async def _add(**overrides: Any) -> Profile:
        return await storage.accounts.upsert_profile(make_profile(**overrides))

    return _add


@pytest_asyncio.fixture
async def owner(add_profile: Callable[..., Awaitable[Profile]]) -> Profile:
    return await add_profile(id="owner-1", full_name="Sarah Levy", email="sarah@example.com")


@pytest_asyncio.fixture
async def admin(add_profile: Callable[..., Awaitable[Profile]]) -> Profile:
    return await add_profile(
        id="admin-1", full_name="Admin", email="admin@hadirot.test", is_admin=True
    )


@pytest.fixture
def make_payload() -> Callable[..., ListingCreate]:
    """Factory for valid ListingCreate payloads."""

    def _make(**overrides: Any) -> ListingCreate:
        defaults: dict[str, Any] = {
            "listing_type": ListingType.RENTAL,
            "title": "Sunny 2 bed",
            "location": "Avenue J & East 15th",
            "neighborhood": "Midwood",
            "bedrooms": 2,
            "bathrooms": 1,
            "price": 2500,
            "contact_name": "sarah levy",
            "contact_phone": "555-0100",
        }
        defaults.update(overrides)
        return ListingCreate(**defaults)

    return _make


@pytest.fixture
def listing_service(storage: MarketplaceStorage, settings_obj: Settings) -> ListingService:
    return ListingService(storage, settings_obj)


@pytest.fixture
def add_listing(
    storage: MarketplaceStorage,
    listing_service: ListingService,
    make_payload: Callable[..., ListingCreate],
) -> Callable[..., Awaitable[Listing]]:
    """Post a listing for ``owner`` and (by default) approve it."""

    async def _add(
        owner: Profile, *, approved: bool = True, now: datetime = NOW, **overrides: Any
    ) -> Listing:
        listing = await listing_service.create_listing(make_payload(**overrides), owner, now=now)
        if approved:
            updated = await storage.listings.update_listing(
                listing.id, {"approved": True}, now=now
            )
            assert updated is not None
            listing = updated
        return listing

    return _add
