"""Shared row-mapping utilities for database modules."""

from __future__ import annotations

import json
from typing import Any, TypedDict

import aiosqlite

from homeboard.models import (
    AdminSettings,
    DigestTemplate,
    ImpersonationSession,
    Listing,
    ListingImage,
    Profile,
)
from homeboard.utils.dates import from_db

LISTING_BOOL_COLUMNS = (
    "call_for_price",
    "broker_fee",
    "is_featured",
    "is_active",
    "approved",
)
LISTING_TIME_COLUMNS = (
    "featured_started_at",
    "featured_expires_at",
    "expires_at",
    "last_published_at",
    "deactivated_at",
    "approval_email_sent_at",
    "created_at",
    "updated_at",
)


class OwnerSummary(TypedDict):
    """Poster details shown on listing cards."""

    id: str
    full_name: str
    role: str
    agency: str | None


class ListingCard(TypedDict, total=False):
    """Shape of dicts returned by browse and favorites queries.

    All listing columns (JSON-ready) plus joined owner, images and the
    viewer's favorite flag.
    """

    id: str
    user_id: str
    listing_type: str
    title: str
    location: str
    neighborhood: str | None
    bedrooms: int
    bathrooms: float
    price: int | None
    asking_price: int | None
    call_for_price: bool
    is_featured: bool
    featured_expires_at: str | None
    created_at: str
    owner: OwnerSummary | None
    images: list[dict[str, Any]]
    is_favorited: bool


def row_to_profile(row: aiosqlite.Row) -> Profile:
    """Convert a profiles row to a Profile model."""
    return Profile(
        id=row["id"],
        full_name=row["full_name"],
        role=row["role"],
        email=row["email"],
        phone=row["phone"],
        agency=row["agency"],
        is_admin=bool(row["is_admin"]),
        is_banned=bool(row["is_banned"]),
        can_feature_listings=bool(row["can_feature_listings"]),
        max_featured_listings_per_user=row["max_featured_listings_per_user"],
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
    )


def row_to_listing(row: aiosqlite.Row) -> Listing:
    """Convert a listings row to a Listing model."""
    data = {key: row[key] for key in row.keys() if key in Listing.model_fields}
    for column in LISTING_BOOL_COLUMNS:
        data[column] = bool(data.get(column))
    for column in LISTING_TIME_COLUMNS:
        data[column] = from_db(data.get(column))
    if data.get("additional_rooms") is None:
        data["additional_rooms"] = 0
    if data.get("listing_type") is None:
        data["listing_type"] = "rental"
    return Listing.model_validate(data)


def row_to_card(row: aiosqlite.Row) -> ListingCard:
    """Convert a joined listing row into a JSON-ready card dict.

    Expects owner columns aliased ``owner_full_name``, ``owner_role`` and
    ``owner_agency`` and an ``is_favorited`` column.
    """
    listing = row_to_listing(row)
    card: dict[str, Any] = listing.model_dump(mode="json")
    keys = row.keys()
    if "owner_full_name" in keys and row["owner_full_name"] is not None:
        card["owner"] = OwnerSummary(
            id=listing.user_id,
            full_name=row["owner_full_name"],
            role=row["owner_role"],
            agency=row["owner_agency"],
        )
    else:
        card["owner"] = None
    card["is_favorited"] = bool(row["is_favorited"]) if "is_favorited" in keys else False
    card["images"] = []
    return card  # type: ignore[return-value]


def row_to_image(row: aiosqlite.Row) -> ListingImage:
    """Convert a listing_images row to a ListingImage model."""
    return ListingImage(
        id=row["id"],
        listing_id=row["listing_id"],
        image_url=row["image_url"],
        is_featured=bool(row["is_featured"]),
        sort_order=row["sort_order"],
    )


def row_to_admin_settings(row: aiosqlite.Row | None) -> AdminSettings:
    """Convert the admin_settings row, applying defaults for missing values."""
    if row is None:
        return AdminSettings()
    return AdminSettings(
        # 0 / NULL means "never configured", not "no featured slots"
        max_featured_listings=row["max_featured_listings"] or 8,
        max_featured_per_user=row["max_featured_per_user"] or 0,
        max_featured_boost_positions=row["max_featured_boost_positions"] or 4,
        updated_at=from_db(row["updated_at"]),
    )


def row_to_session(row: aiosqlite.Row) -> ImpersonationSession:
    """Convert an impersonation_sessions row."""
    return ImpersonationSession(
        id=row["id"],
        admin_user_id=row["admin_user_id"],
        impersonated_user_id=row["impersonated_user_id"],
        session_token=row["session_token"],
        started_at=from_db(row["started_at"]),
        expires_at=from_db(row["expires_at"]),
        ended_at=from_db(row["ended_at"]),
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
    )


def row_to_template(row: aiosqlite.Row) -> DigestTemplate:
    """Convert a digest_templates row, decoding its JSON columns."""
    return DigestTemplate(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        template_type=row["template_type"],
        filter_config=json.loads(row["filter_config"] or "{}"),
        category_limits=json.loads(row["category_limits"] or "{}"),
        sort_preference=row["sort_preference"],
        allow_resend=bool(row["allow_resend"]),
        resend_after_days=row["resend_after_days"],
        ignore_send_history=bool(row["ignore_send_history"]),
        subject_template=row["subject_template"],
        is_default=bool(row["is_default"]),
        usage_count=row["usage_count"],
        last_used_at=from_db(row["last_used_at"]),
        created_at=from_db(row["created_at"]),
    )


def parse_json_object(raw: str | None) -> dict[str, Any]:
    """Decode a JSON object column, tolerating NULL and non-object values."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    return value if isinstance(value, dict) else {}
