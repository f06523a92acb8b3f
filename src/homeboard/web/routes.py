"""Public browse routes and signed-in listing management."""

import math
from typing import Annotated, Any, Final

from fastapi import APIRouter, File, Query, Request, Response, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field

from homeboard.errors import ListingRuleError, NotFoundError
from homeboard.logging import get_logger
from homeboard.models import ListingCreate, ListingType, ListingUpdate, SaleStatus
from homeboard.utils.media import MEDIA_TYPES, resolve_media_path
from homeboard.web.auth import CurrentUser, OptionalUser
from homeboard.web.deps import get_settings, get_storage, listing_service
from homeboard.web.filters import MAX_PER_PAGE, FilterDep, parse_sort

logger = get_logger(__name__)

router = APIRouter()

MAX_UPLOAD_BYTES: Final = 25 * 1024 * 1024


class SaleStatusUpdate(BaseModel):
    sale_status: SaleStatus


class ImageUpdate(BaseModel):
    is_featured: bool | None = None
    sort_order: int | None = Field(default=None, ge=0)


def _listing_type(value: str | None) -> ListingType:
    return ListingType.SALE if value == ListingType.SALE.value else ListingType.RENTAL


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Liveness plus a database round-trip."""
    try:
        await get_storage(request).ping()
    except Exception:
        logger.error("health_check_failed", exc_info=True)
        return JSONResponse({"status": "degraded"}, status_code=503)
    return JSONResponse({"status": "ok"})


# --- browse ---


@router.get("/listings")
async def browse_listings(
    request: Request,
    filters: FilterDep,
    viewer: OptionalUser,
    sort: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> JSONResponse:
    """One page of visible listings; page 1 also carries the featured strip."""
    page = max(1, page)
    per_page = max(1, min(MAX_PER_PAGE, per_page))
    sort = parse_sort(sort)
    storage = get_storage(request)
    viewer_id = viewer.id if viewer else None

    try:
        items, total = await storage.queries.get_listings_paginated(
            filters, sort=sort, page=page, per_page=per_page, viewer_id=viewer_id
        )
        featured: list[Any] = []
        if page == 1:
            admin_settings = await storage.accounts.get_admin_settings()
            featured = await storage.queries.get_featured_for_search(filters, viewer_id=viewer_id)
            featured = featured[: admin_settings.max_featured_boost_positions]
    except Exception:
        logger.error("browse_query_failed", exc_info=True)
        return JSONResponse(
            {"error": "Failed to load listings. Please try again."}, status_code=500
        )

    return JSONResponse(
        {
            "items": items,
            "featured": featured,
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": math.ceil(total / per_page) if total > 0 else 1,
            "sort": sort,
        }
    )


@router.get("/listings/map")
async def map_pins(request: Request, filters: FilterDep) -> JSONResponse:
    try:
        pins = await get_storage(request).queries.get_map_pins(filters)
    except Exception:
        logger.error("map_query_failed", exc_info=True)
        return JSONResponse({"error": "Failed to load map. Please try again."}, status_code=500)
    return JSONResponse({"pins": pins})


@router.get("/listings/bedroom-counts")
async def bedroom_counts(request: Request, filters: FilterDep) -> JSONResponse:
    counts = await get_storage(request).queries.get_available_bedroom_counts(filters)
    return JSONResponse([{"bedrooms": b, "count": n} for b, n in counts])


@router.get("/listings/neighborhoods")
async def neighborhoods(request: Request, listing_type: str | None = None) -> list[str]:
    return await get_storage(request).queries.get_active_neighborhoods(
        _listing_type(listing_type)
    )


@router.get("/listings/agencies")
async def agencies(request: Request, listing_type: str | None = None) -> list[str]:
    return await get_storage(request).queries.get_active_agencies(_listing_type(listing_type))


@router.get("/listings/{listing_id}")
async def listing_detail(request: Request, listing_id: str, viewer: OptionalUser) -> JSONResponse:
    """A single listing; counts a view unless the owner is looking."""
    service = listing_service(request)
    card = await service.get_listing(listing_id, viewer)
    if viewer is None or viewer.id != card["user_id"]:
        await service.record_view(listing_id)
    return JSONResponse(card)


@router.get("/listings/{listing_id}/similar")
async def similar_listings(
    request: Request,
    listing_id: str,
    viewer: OptionalUser,
    limit: Annotated[int, Query(ge=1, le=12)] = 3,
) -> JSONResponse:
    cards = await listing_service(request).get_similar_listings(
        listing_id, viewer=viewer, limit=limit
    )
    return JSONResponse(cards)


# --- listing management ---


@router.post("/listings", status_code=status.HTTP_201_CREATED)
async def create_listing(
    request: Request, payload: ListingCreate, user: CurrentUser
) -> dict[str, Any]:
    listing = await listing_service(request).create_listing(payload, user)
    return listing.model_dump(mode="json")


@router.patch("/listings/{listing_id}")
async def update_listing(
    request: Request, listing_id: str, payload: ListingUpdate, user: CurrentUser
) -> dict[str, Any]:
    listing = await listing_service(request).update_listing(listing_id, payload, user)
    return listing.model_dump(mode="json")


@router.delete("/listings/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(request: Request, listing_id: str, user: CurrentUser) -> Response:
    await listing_service(request).delete_listing(listing_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/listings/{listing_id}/extend")
async def extend_listing(request: Request, listing_id: str, user: CurrentUser) -> dict[str, Any]:
    listing = await listing_service(request).extend_sale_listing(listing_id, user)
    return listing.model_dump(mode="json")


@router.post("/listings/{listing_id}/renew")
async def renew_listing(request: Request, listing_id: str, user: CurrentUser) -> dict[str, Any]:
    listing = await listing_service(request).renew_listing(listing_id, user)
    return listing.model_dump(mode="json")


@router.post("/listings/{listing_id}/sale-status")
async def change_sale_status(
    request: Request, listing_id: str, body: SaleStatusUpdate, user: CurrentUser
) -> dict[str, Any]:
    listing = await listing_service(request).update_sale_status(
        listing_id, body.sale_status, user
    )
    return listing.model_dump(mode="json")


# --- media ---


@router.post("/listings/{listing_id}/images", status_code=status.HTTP_201_CREATED)
async def upload_image(
    request: Request,
    listing_id: str,
    user: CurrentUser,
    file: Annotated[UploadFile, File()],
) -> dict[str, Any]:
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise ListingRuleError("File is too large")
    image = await listing_service(request).add_media(
        listing_id, user, file.filename or "", data
    )
    return image.model_dump()


@router.patch("/listings/{listing_id}/images/{image_id}")
async def update_image(
    request: Request, listing_id: str, image_id: int, body: ImageUpdate, user: CurrentUser
) -> dict[str, Any]:
    image = await listing_service(request).update_media(
        listing_id, image_id, user, is_featured=body.is_featured, sort_order=body.sort_order
    )
    return image.model_dump()


@router.delete(
    "/listings/{listing_id}/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_image(
    request: Request, listing_id: str, image_id: int, user: CurrentUser
) -> Response:
    await listing_service(request).delete_media(listing_id, image_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/media/listings/{listing_id}/{filename}")
async def serve_media(request: Request, listing_id: str, filename: str) -> Response:
    """Serve uploaded listing media with immutable cache headers."""
    path = resolve_media_path(get_settings(request).resolved_media_dir, listing_id, filename)
    if path is None:
        return JSONResponse({"error": "invalid filename"}, status_code=400)
    if not path.is_file():
        return JSONResponse({"error": "not found"}, status_code=404)
    return FileResponse(
        path,
        media_type=MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream"),
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )


# --- the signed-in user's own data ---


@router.get("/me/listings")
async def my_listings(request: Request, user: CurrentUser) -> JSONResponse:
    return JSONResponse(await listing_service(request).get_user_listings(user.id))


@router.get("/me/favorites")
async def my_favorites(request: Request, user: CurrentUser) -> JSONResponse:
    return JSONResponse(await get_storage(request).accounts.get_favorites(user.id))


@router.get("/me/favorite-ids")
async def my_favorite_ids(request: Request, user: CurrentUser) -> list[str]:
    return await get_storage(request).accounts.get_favorite_ids(user.id)


@router.put("/me/favorites/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def add_favorite(request: Request, listing_id: str, user: CurrentUser) -> Response:
    storage = get_storage(request)
    if await storage.listings.get_listing(listing_id) is None:
        raise NotFoundError("Listing not found")
    await storage.accounts.add_favorite(user.id, listing_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/me/favorites/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_favorite(request: Request, listing_id: str, user: CurrentUser) -> Response:
    await get_storage(request).accounts.remove_favorite(user.id, listing_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
