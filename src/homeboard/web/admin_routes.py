"""Admin-only routes: moderation, settings, impersonation, analytics, digests."""

import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from homeboard.analytics.events import client_ip
from homeboard.models import AdminSettings, DigestTemplate, DigestTemplateInput
from homeboard.web.auth import AdminUser
from homeboard.web.deps import (
    analytics_service,
    digest_service,
    get_storage,
    impersonation_service,
    listing_service,
)

router = APIRouter(prefix="/admin")

DaysBack = Annotated[int, Query(ge=1, le=365)]
TopLimit = Annotated[int, Query(ge=1, le=50)]


class AdminSettingsUpdate(BaseModel):
    max_featured_listings: int = Field(ge=0)
    max_featured_per_user: int = Field(ge=0)
    max_featured_boost_positions: int | None = Field(default=None, ge=0)


class ImpersonationStart(BaseModel):
    user_id: str


class ImpersonationToken(BaseModel):
    session_token: str


class ImpersonationAction(ImpersonationToken):
    action_type: str = Field(min_length=1, max_length=100)
    action_details: dict[str, Any] | None = None
    page_path: str | None = None


class RollupRequest(BaseModel):
    date: datetime.date | None = None
    days: int | None = Field(default=None, ge=1, le=365)


class TemplateDigestRequest(BaseModel):
    template_id: int | None = None
    template_config: DigestTemplateInput | None = None
    dry_run: bool = False
    recipient_emails: list[str] = Field(default_factory=list)
    force: bool = False


class AdminDigestRequest(BaseModel):
    force: bool = True


# --- moderation ---


@router.get("/listings")
async def admin_listings(
    request: Request,
    admin: AdminUser,
    approved: bool | None = None,
    sort_field: str = "created_at",
    sort_direction: str = "desc",
) -> JSONResponse:
    cards = await listing_service(request).get_admin_listings(
        admin, approved=approved, sort_field=sort_field, sort_direction=sort_direction
    )
    return JSONResponse(cards)


@router.post("/listings/{listing_id}/approve")
async def approve_listing(request: Request, listing_id: str, admin: AdminUser) -> dict[str, Any]:
    listing = await listing_service(request).approve_listing(listing_id, admin)
    return listing.model_dump(mode="json")


# --- settings ---


@router.get("/settings")
async def get_admin_settings(request: Request, admin: AdminUser) -> AdminSettings:
    return await get_storage(request).accounts.get_admin_settings()


@router.put("/settings")
async def put_admin_settings(
    request: Request, body: AdminSettingsUpdate, admin: AdminUser
) -> AdminSettings:
    return await get_storage(request).accounts.update_admin_settings(
        max_featured_listings=body.max_featured_listings,
        max_featured_per_user=body.max_featured_per_user,
        max_featured_boost_positions=body.max_featured_boost_positions,
    )


# --- impersonation ---


@router.post("/impersonation", status_code=status.HTTP_201_CREATED)
async def start_impersonation(
    request: Request, body: ImpersonationStart, admin: AdminUser
) -> dict[str, Any]:
    peer = request.client.host if request.client else None
    session, target = await impersonation_service(request).start(
        admin,
        body.user_id,
        ip_address=client_ip(request.headers, peer),
        user_agent=request.headers.get("user-agent"),
    )
    return {
        "session_id": session.id,
        "session_token": session.session_token,
        "expires_at": session.expires_at.isoformat(),
        "impersonated_user": {
            "id": target.id,
            "full_name": target.full_name,
            "email": target.email,
            "role": target.role.value,
        },
    }


@router.post("/impersonation/status")
async def impersonation_status(
    request: Request, body: ImpersonationToken, admin: AdminUser
) -> dict[str, Any]:
    return await impersonation_service(request).status(admin, body.session_token)


@router.post("/impersonation/end")
async def end_impersonation(
    request: Request, body: ImpersonationToken, admin: AdminUser
) -> dict[str, Any]:
    await impersonation_service(request).end(admin, body.session_token)
    return {"success": True}


@router.post("/impersonation/log", status_code=status.HTTP_204_NO_CONTENT)
async def log_impersonation_action(
    request: Request, body: ImpersonationAction, admin: AdminUser
) -> Response:
    await impersonation_service(request).log_action(
        admin,
        body.session_token,
        body.action_type,
        action_details=body.action_details,
        page_path=body.page_path,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- analytics ---


@router.get("/analytics/summary")
async def analytics_summary(
    request: Request, admin: AdminUser, days_back: DaysBack = 7
) -> dict[str, Any]:
    return await analytics_service(request).summary(days_back)


@router.get("/analytics/top-listings")
async def analytics_top_listings(
    request: Request, admin: AdminUser, days_back: DaysBack = 7, limit: TopLimit = 10
) -> list[dict[str, Any]]:
    rows = await analytics_service(request).top_listings(days_back, limit)
    return [row.model_dump() for row in rows]


@router.get("/analytics/top-filters")
async def analytics_top_filters(
    request: Request, admin: AdminUser, days_back: DaysBack = 7, limit: TopLimit = 10
) -> list[dict[str, Any]]:
    rows = await analytics_service(request).top_filters(days_back, limit)
    return [row.model_dump() for row in rows]


@router.get("/analytics/listings/{listing_id}")
async def analytics_listing_drilldown(
    request: Request, listing_id: str, admin: AdminUser, days_back: DaysBack = 30
) -> list[dict[str, Any]]:
    return await analytics_service(request).listing_drilldown(listing_id, days_back)


@router.post("/analytics/rollup")
async def run_rollup(request: Request, body: RollupRequest, admin: AdminUser) -> dict[str, Any]:
    """Roll up one day (default yesterday) or backfill the last N days."""
    service = analytics_service(request)
    if body.days:
        days = await service.backfill(body.days)
        return {"dates": [d.isoformat() for d in days]}
    if body.date is not None:
        summary = await service.rollup_day(body.date)
    else:
        summary = await service.rollup_yesterday()
    return summary.model_dump(mode="json")


# --- digests ---


@router.get("/digest/templates")
async def list_digest_templates(request: Request, admin: AdminUser) -> list[DigestTemplate]:
    return await digest_service(request).list_templates()


@router.post("/digest/templates", status_code=status.HTTP_201_CREATED)
async def create_digest_template(
    request: Request, body: DigestTemplateInput, admin: AdminUser
) -> DigestTemplate:
    return await digest_service(request).create_template(body)


@router.patch("/digest/templates/{template_id}")
async def update_digest_template(
    request: Request, template_id: int, body: DigestTemplateInput, admin: AdminUser
) -> DigestTemplate:
    return await digest_service(request).update_template(template_id, body)


@router.delete("/digest/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_digest_template(request: Request, template_id: int, admin: AdminUser) -> Response:
    await digest_service(request).delete_template(template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/digest/templates/{template_id}/default")
async def set_default_digest_template(
    request: Request, template_id: int, admin: AdminUser
) -> DigestTemplate:
    return await digest_service(request).set_default(template_id)


@router.post("/digest/send")
async def send_template_digest(
    request: Request, body: TemplateDigestRequest, admin: AdminUser
) -> dict[str, Any]:
    return await digest_service(request).send_template_digest(
        template_id=body.template_id,
        config=body.template_config,
        dry_run=body.dry_run,
        recipients=body.recipient_emails,
        force=body.force,
    )


@router.post("/digest/admin-daily")
async def send_admin_digest(
    request: Request, body: AdminDigestRequest, admin: AdminUser
) -> dict[str, Any]:
    return await digest_service(request).send_admin_digest(force=body.force)


@router.get("/digest/runs")
async def digest_runs(
    request: Request, admin: AdminUser, limit: Annotated[int, Query(ge=1, le=200)] = 50
) -> JSONResponse:
    runs = await digest_service(request).get_runs(limit)
    return JSONResponse(
        [{**run, "run_at": run["run_at"].isoformat() if run["run_at"] else None} for run in runs]
    )
