"""Tests for bearer-token authentication and impersonation headers."""

from collections.abc import Awaitable, Callable
from datetime import timedelta

import jwt
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from pydantic import SecretStr

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.models import Listing, Profile
from homeboard.services.impersonation import ImpersonationService
from homeboard.web.auth import AuthContext, create_access_token, decode_access_token

AddListing = Callable[..., Awaitable[Listing]]
AddProfile = Callable[..., Awaitable[Profile]]
AuthHeaders = Callable[..., dict[str, str]]


class TestTokens:
    def test_round_trip(self, settings_obj: Settings) -> None:
        token = create_access_token("user-7", settings_obj)
        assert decode_access_token(token, settings_obj)["sub"] == "user-7"

    def test_expired(self, settings_obj: Settings) -> None:
        token = create_access_token("user-7", settings_obj, expires_delta=timedelta(seconds=-5))
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token, settings_obj)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token expired"

    def test_wrong_secret(self, settings_obj: Settings) -> None:
        token = jwt.encode({"sub": "user-7"}, "another-secret", algorithm="HS256")
        with pytest.raises(HTTPException, match="Invalid token"):
            decode_access_token(token, settings_obj)

    def test_missing_subject(self, settings_obj: Settings) -> None:
        token = jwt.encode({"role": "admin"}, "test-secret", algorithm="HS256")
        with pytest.raises(HTTPException, match="Invalid token"):
            decode_access_token(token, settings_obj)

    def test_unconfigured_secret(self, settings_obj: Settings) -> None:
        unconfigured = settings_obj.model_copy(update={"jwt_secret": SecretStr("")})
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token("anything", unconfigured)
        assert exc_info.value.status_code == 401


class TestRequestAuth:
    async def test_garbage_token(self, client: TestClient) -> None:
        resp = client.get("/me/listings", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token"

    async def test_unknown_user(self, client: TestClient, settings_obj: Settings) -> None:
        token = create_access_token("ghost", settings_obj)
        resp = client.get("/me/listings", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Unknown user"

    async def test_banned_user_rejected_even_on_public_routes(
        self, client: TestClient, add_profile: AddProfile, auth_headers: AuthHeaders
    ) -> None:
        banned = await add_profile(is_banned=True)
        resp = client.get("/listings", headers=auth_headers(banned))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Account is banned"

    async def test_admin_required(
        self, client: TestClient, owner: Profile, auth_headers: AuthHeaders
    ) -> None:
        resp = client.get("/admin/settings", headers=auth_headers(owner))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Admin access required"


class TestImpersonationHeader:
    async def test_admin_acts_as_target(
        self,
        client: TestClient,
        settings_obj: Settings,
        storage: MarketplaceStorage,
        admin: Profile,
        owner: Profile,
        add_listing: AddListing,
        auth_headers: AuthHeaders,
    ) -> None:
        listing = await add_listing(owner)
        session, _ = await ImpersonationService(storage, settings_obj).start(admin, owner.id)
        headers = auth_headers(admin, impersonation_token=session.session_token)

        mine = client.get("/me/listings", headers=headers).json()
        assert [m["id"] for m in mine] == [listing.id]
        # admin routes still see the real admin
        assert client.get("/admin/settings", headers=headers).status_code == 200

    async def test_ended_session_rejected(
        self,
        client: TestClient,
        settings_obj: Settings,
        storage: MarketplaceStorage,
        admin: Profile,
        owner: Profile,
        auth_headers: AuthHeaders,
    ) -> None:
        service = ImpersonationService(storage, settings_obj)
        session, _ = await service.start(admin, owner.id)
        await service.end(admin, session.session_token)

        resp = client.get(
            "/me/listings", headers=auth_headers(admin, impersonation_token=session.session_token)
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Impersonation session has expired"

    async def test_header_ignored_for_non_admins(
        self,
        client: TestClient,
        owner: Profile,
        add_profile: AddProfile,
        add_listing: AddListing,
        auth_headers: AuthHeaders,
    ) -> None:
        await add_listing(owner)
        tenant = await add_profile(role="tenant")
        resp = client.get(
            "/me/listings", headers=auth_headers(tenant, impersonation_token="stolen")
        )
        assert resp.status_code == 200
        assert resp.json() == []


async def test_auth_context_impersonator(
    settings_obj: Settings, storage: MarketplaceStorage, admin: Profile, owner: Profile
) -> None:
    session, target = await ImpersonationService(storage, settings_obj).start(admin, owner.id)
    assert AuthContext(user=target, real_user=admin, session=session).impersonator_id == admin.id
    assert AuthContext(user=admin, real_user=admin).impersonator_id is None
