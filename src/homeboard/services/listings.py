"""Listing rules: posting, editing, visibility, expiry, similarity and media."""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Final

from homeboard.config import Settings
from homeboard.db import ListingCard, MarketplaceStorage
from homeboard.errors import (
    EmailDeliveryError,
    ListingRuleError,
    NotFoundError,
    PermissionDeniedError,
)
from homeboard.logging import get_logger
from homeboard.models import (
    Listing,
    ListingCreate,
    ListingImage,
    ListingType,
    ListingUpdate,
    Profile,
    SaleStatus,
)
from homeboard.notifiers.email import ZeptoMailClient, render_email
from homeboard.services.featured import check_feature_admission
from homeboard.utils.dates import utc_now
from homeboard.utils.media import (
    clear_listing_media,
    delete_media_file,
    media_extension,
    save_media_bytes,
)

logger = get_logger(__name__)

BROKER_FEE_MESSAGE: Final = "Broker fees are not permitted"
SIMILAR_PRICE_TOLERANCE: Final = 0.25
_SIMILAR_POOL_FACTOR: Final = 5

# Update fields backed by NOT NULL columns.
_REQUIRED_UPDATE_FIELDS: Final = (
    "title",
    "location",
    "bedrooms",
    "additional_rooms",
    "bathrooms",
    "call_for_price",
    "property_type",
    "parking",
    "heat",
    "broker_fee",
    "contact_name",
    "contact_phone",
    "is_featured",
    "is_active",
    "approved",
)


def get_expiration_date(
    listing_type: ListingType,
    sale_status: SaleStatus | None,
    now: datetime,
    settings: Settings,
) -> datetime:
    """When a freshly published (or renewed) listing should expire."""
    if listing_type == ListingType.SALE:
        if sale_status == SaleStatus.IN_CONTRACT:
            return now + timedelta(days=settings.in_contract_duration_days)
        return now + timedelta(days=settings.sale_duration_days)
    return now + timedelta(days=settings.rental_duration_days)


def days_until(expires_at: datetime, now: datetime) -> int:
    """Whole days until expiry, rounded up."""
    return math.ceil((expires_at - now).total_seconds() / 86400)


def can_extend_listing(
    listing: Listing,
    now: datetime,
    *,
    window_days: int = 7,
) -> tuple[bool, str | None]:
    """Whether a sale listing may be extended now, with the reason if not."""
    if listing.listing_type != ListingType.SALE:
        return False, "Only sale listings can be extended"
    if not listing.is_active:
        return False, "Inactive listings cannot be extended"
    if listing.sale_status == SaleStatus.SOLD:
        return False, "Sold listings cannot be extended"
    if listing.expires_at is None:
        return True, None

    remaining = days_until(listing.expires_at, now)
    if remaining > window_days:
        return False, f"Extension available {remaining - window_days} days before expiration"
    return True, None


def _card_price(card: Mapping[str, Any], listing_type: ListingType) -> int | None:
    key = "asking_price" if listing_type == ListingType.SALE else "price"
    value = card.get(key)
    return int(value) if value is not None else None


def score_similarity(base: Listing, candidate: Mapping[str, Any]) -> int:
    """Relevance of a candidate to ``base``; higher is more similar."""
    score = 0
    if candidate.get("bedrooms") == base.bedrooms:
        score += 10
    base_hood = (base.neighborhood or "").strip().lower()
    if base_hood and (candidate.get("neighborhood") or "").strip().lower() == base_hood:
        score += 8
    if candidate.get("property_type") == base.property_type.value:
        score += 5
    base_price = base.effective_price
    cand_price = _card_price(candidate, base.listing_type)
    if base_price and cand_price is not None:
        if abs(cand_price - base_price) <= base_price * SIMILAR_PRICE_TOLERANCE:
            score += 3
    if candidate.get("is_featured"):
        score += 2
    return score


def rank_similar(
    base: Listing, candidates: list[ListingCard], limit: int
) -> list[ListingCard]:
    """Dedupe, score and order candidates (score desc, then newest)."""
    unique: dict[str, ListingCard] = {}
    for card in candidates:
        unique.setdefault(card["id"], card)
    newest_first = sorted(unique.values(), key=lambda c: c["created_at"], reverse=True)
    ranked = sorted(newest_first, key=lambda c: score_similarity(base, c), reverse=True)
    return ranked[:limit]


def _require_owner_or_admin(listing: Listing, actor: Profile) -> None:
    if actor.is_admin or actor.id == listing.user_id:
        return
    raise PermissionDeniedError("You can only manage your own listings")


class ListingService:
    """Listing operations with marketplace rules applied."""

    def __init__(
        self,
        storage: MarketplaceStorage,
        settings: Settings,
        mailer: ZeptoMailClient | None = None,
    ) -> None:
        self.storage = storage
        self.settings = settings
        self.mailer = mailer

    async def _get_or_404(self, listing_id: str) -> Listing:
        listing = await self.storage.listings.get_listing(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        return listing

    async def _admit_featured(self, actor: Profile, now: datetime) -> tuple[datetime, datetime]:
        admin_settings = await self.storage.accounts.get_admin_settings()
        global_count = await self.storage.listings.count_active_featured(now)
        user_count = await self.storage.listings.count_active_featured(now, user_id=actor.id)
        return check_feature_admission(
            actor,
            admin_settings,
            global_count=global_count,
            user_count=user_count,
            now=now,
            duration=timedelta(days=self.settings.featured_duration_days),
        )

    # --- create / update / delete ---

    async def create_listing(
        self,
        payload: ListingCreate,
        actor: Profile,
        *,
        now: datetime | None = None,
    ) -> Listing:
        """Post a new listing owned by ``actor``.

        Raises:
            ListingRuleError: Broker fee set, or no price without call-for-price.
            FeatureLimitError: Featuring was requested but not admitted.
        """
        now = now or utc_now()
        if payload.broker_fee:
            raise ListingRuleError(BROKER_FEE_MESSAGE)

        values = payload.model_dump(exclude={"is_featured", "approved", "broker_fee"})
        if payload.call_for_price:
            values["price"] = None
            values["asking_price"] = None
        elif payload.listing_type == ListingType.SALE and payload.asking_price is None:
            raise ListingRuleError("Asking price is required unless Call for Price is selected")
        elif payload.listing_type == ListingType.RENTAL and payload.price is None:
            raise ListingRuleError("Price is required unless Call for Price is selected")

        featured_started_at: datetime | None = None
        featured_expires_at: datetime | None = None
        if payload.is_featured:
            featured_started_at, featured_expires_at = await self._admit_featured(actor, now)

        listing = Listing(
            **values,
            id=str(uuid.uuid4()),
            user_id=actor.id,
            approved=payload.approved and actor.is_admin,
            is_featured=payload.is_featured,
            featured_started_at=featured_started_at,
            featured_expires_at=featured_expires_at,
            expires_at=get_expiration_date(
                payload.listing_type, payload.sale_status, now, self.settings
            ),
            last_published_at=now,
            created_at=now,
            updated_at=now,
        )
        await self.storage.listings.insert_listing(listing)
        logger.info(
            "listing_created",
            listing_id=listing.id,
            user_id=actor.id,
            listing_type=listing.listing_type.value,
            featured=listing.is_featured,
        )
        return listing

    async def update_listing(
        self,
        listing_id: str,
        payload: ListingUpdate,
        actor: Profile,
        *,
        now: datetime | None = None,
    ) -> Listing:
        """Apply a partial update with featuring, activation and approval side effects."""
        now = now or utc_now()
        current = await self._get_or_404(listing_id)
        _require_owner_or_admin(current, actor)

        changes = payload.changes()
        if changes.get("broker_fee"):
            raise ListingRuleError(BROKER_FEE_MESSAGE)
        if "approved" in changes and not actor.is_admin:
            raise PermissionDeniedError("Only administrators can approve listings")
        for key in _REQUIRED_UPDATE_FIELDS:
            if key in changes and changes[key] is None:
                raise ListingRuleError(f"{key} cannot be cleared")

        if changes.get("call_for_price"):
            changes["price"] = None
            changes["asking_price"] = None

        lat = changes.get("latitude", current.latitude)
        lon = changes.get("longitude", current.longitude)
        if (lat is None) != (lon is None):
            raise ListingRuleError("Both latitude and longitude must be provided, or neither")

        if "is_featured" in changes:
            if changes["is_featured"] and not current.is_featured_active(now):
                started, expires = await self._admit_featured(actor, now)
                changes["featured_started_at"] = started
                changes["featured_expires_at"] = expires
            elif not changes["is_featured"]:
                changes["featured_expires_at"] = None

        if "is_active" in changes:
            if not changes["is_active"] and current.is_active:
                changes["deactivated_at"] = now
                if current.is_featured:
                    changes["is_featured"] = False
                    changes["featured_expires_at"] = None
            elif changes["is_active"] and not current.is_active:
                changes["deactivated_at"] = None
                changes["last_published_at"] = now
                changes["expires_at"] = get_expiration_date(
                    current.listing_type, current.sale_status, now, self.settings
                )

        updated = await self.storage.listings.update_listing(listing_id, changes, now=now)
        assert updated is not None
        logger.info("listing_updated", listing_id=listing_id, fields=sorted(changes))

        if changes.get("approved") and not current.approved:
            updated = await self._notify_approved(updated, now)
        return updated

    async def approve_listing(
        self, listing_id: str, admin: Profile, *, now: datetime | None = None
    ) -> Listing:
        """Approve and activate a listing (admin only)."""
        if not admin.is_admin:
            raise PermissionDeniedError("Admin access required")
        return await self.update_listing(
            listing_id, ListingUpdate(approved=True, is_active=True), admin, now=now
        )

    async def _notify_approved(self, listing: Listing, now: datetime) -> Listing:
        """Email the owner about approval; failures are logged, never raised."""
        owner = await self.storage.accounts.get_profile(listing.user_id)
        if owner is None or not owner.email:
            logger.warning("approval_email_skipped", listing_id=listing.id, reason="no_email")
            return listing
        if self.mailer is None:
            logger.warning("approval_email_skipped", listing_id=listing.id, reason="no_mailer")
            return listing

        link = f"{self.settings.site_url.rstrip('/')}/listing/{listing.id}"
        html = render_email(
            "approval.html",
            brand=self.settings.site_name,
            title="Your listing is live",
            owner_name=owner.full_name,
            listing_title=listing.title,
            cta_label="View Listing",
            cta_url=link,
        )
        try:
            await self.mailer.send(
                [owner.email],
                f"Your listing has been approved: {listing.title}",
                html,
            )
        except EmailDeliveryError:
            logger.error("approval_email_failed", listing_id=listing.id, exc_info=True)
            return listing

        stamped = await self.storage.listings.update_listing(
            listing.id, {"approval_email_sent_at": now}, now=now
        )
        return stamped or listing

    async def delete_listing(self, listing_id: str, actor: Profile) -> None:
        listing = await self._get_or_404(listing_id)
        _require_owner_or_admin(listing, actor)
        await self.storage.listings.delete_listing(listing_id)
        clear_listing_media(self.settings.resolved_media_dir, listing_id)
        logger.info("listing_deleted", listing_id=listing_id, by=actor.id)

    # --- reads ---

    async def get_listing(self, listing_id: str, viewer: Profile | None) -> ListingCard:
        """Fetch a listing honoring visibility.

        Anonymous viewers see approved, active listings; signed-in users also
        see their own; admins see everything. Hidden listings look missing.
        """
        card = await self.storage.listings.get_listing_card(
            listing_id, viewer_id=viewer.id if viewer else None
        )
        if card is None:
            raise NotFoundError("Listing not found")
        public = bool(card.get("approved")) and bool(card.get("is_active"))
        own = viewer is not None and viewer.id == card["user_id"]
        if public or own or (viewer is not None and viewer.is_admin):
            return card
        raise NotFoundError("Listing not found")

    async def record_view(self, listing_id: str) -> None:
        await self.storage.listings.increment_views(listing_id)

    async def get_similar_listings(
        self,
        listing_id: str,
        *,
        viewer: Profile | None = None,
        limit: int = 3,
    ) -> list[ListingCard]:
        """Similar listings: same bedrooms first, widening to +/-1 when too few."""
        base = await self._get_or_404(listing_id)
        viewer_id = viewer.id if viewer else None
        pool = limit * _SIMILAR_POOL_FACTOR
        candidates = await self.storage.listings.get_similar_candidates(
            base, [base.bedrooms], limit=pool, viewer_id=viewer_id
        )
        if len(candidates) < limit:
            nearby = [b for b in (base.bedrooms - 1, base.bedrooms + 1) if b >= 0]
            candidates += await self.storage.listings.get_similar_candidates(
                base, nearby, limit=pool, viewer_id=viewer_id
            )
        return rank_similar(base, candidates, limit)

    async def get_user_listings(self, user_id: str) -> list[ListingCard]:
        return await self.storage.listings.get_user_listings(user_id)

    async def get_admin_listings(
        self,
        admin: Profile,
        *,
        approved: bool | None = None,
        sort_field: str = "created_at",
        sort_direction: str = "desc",
    ) -> list[ListingCard]:
        if not admin.is_admin:
            raise PermissionDeniedError("Admin access required")
        return await self.storage.listings.get_admin_listings(
            approved=approved, sort_field=sort_field, sort_direction=sort_direction
        )

    # --- expiry ---

    async def extend_sale_listing(
        self, listing_id: str, actor: Profile, *, now: datetime | None = None
    ) -> Listing:
        now = now or utc_now()
        listing = await self._get_or_404(listing_id)
        _require_owner_or_admin(listing, actor)
        allowed, reason = can_extend_listing(
            listing, now, window_days=self.settings.extension_window_days
        )
        if not allowed:
            raise ListingRuleError(reason or "Listing cannot be extended")
        updated = await self.storage.listings.update_listing(
            listing_id,
            {
                "expires_at": get_expiration_date(
                    listing.listing_type, listing.sale_status, now, self.settings
                ),
                "last_published_at": now,
            },
            now=now,
        )
        assert updated is not None
        logger.info("listing_extended", listing_id=listing_id, expires_at=updated.expires_at)
        return updated

    async def renew_listing(
        self, listing_id: str, actor: Profile, *, now: datetime | None = None
    ) -> Listing:
        """Reactivate a listing with a fresh expiry."""
        now = now or utc_now()
        listing = await self._get_or_404(listing_id)
        _require_owner_or_admin(listing, actor)
        updated = await self.storage.listings.update_listing(
            listing_id,
            {
                "is_active": True,
                "last_published_at": now,
                "expires_at": get_expiration_date(
                    listing.listing_type, listing.sale_status, now, self.settings
                ),
                "deactivated_at": None,
            },
            now=now,
        )
        assert updated is not None
        logger.info("listing_renewed", listing_id=listing_id)
        return updated

    async def update_sale_status(
        self,
        listing_id: str,
        status: SaleStatus,
        actor: Profile,
        *,
        now: datetime | None = None,
    ) -> Listing:
        now = now or utc_now()
        listing = await self._get_or_404(listing_id)
        _require_owner_or_admin(listing, actor)
        if listing.listing_type != ListingType.SALE:
            raise ListingRuleError("Only sale listings can have a sale status")
        if not listing.is_active:
            raise ListingRuleError("Cannot change status on inactive listings")
        updated = await self.storage.listings.update_listing(
            listing_id,
            {
                "sale_status": status,
                "expires_at": get_expiration_date(ListingType.SALE, status, now, self.settings),
            },
            now=now,
        )
        assert updated is not None
        return updated

    # --- media ---

    async def add_media(
        self, listing_id: str, actor: Profile, filename: str, data: bytes
    ) -> ListingImage:
        listing = await self._get_or_404(listing_id)
        _require_owner_or_admin(listing, actor)
        extension = media_extension(filename)
        if extension is None:
            raise ListingRuleError("Unsupported file type")
        if not data:
            raise ListingRuleError("Empty upload")
        url = save_media_bytes(self.settings.resolved_media_dir, listing_id, data, extension)
        image = await self.storage.listings.add_image(listing_id, url)
        logger.info("listing_media_added", listing_id=listing_id, image_id=image.id)
        return image

    async def update_media(
        self,
        listing_id: str,
        image_id: int,
        actor: Profile,
        *,
        is_featured: bool | None = None,
        sort_order: int | None = None,
    ) -> ListingImage:
        listing = await self._get_or_404(listing_id)
        _require_owner_or_admin(listing, actor)
        image = await self.storage.listings.update_image(
            listing_id, image_id, is_featured=is_featured, sort_order=sort_order
        )
        if image is None:
            raise NotFoundError("Image not found")
        return image

    async def delete_media(self, listing_id: str, image_id: int, actor: Profile) -> None:
        listing = await self._get_or_404(listing_id)
        _require_owner_or_admin(listing, actor)
        image = await self.storage.listings.get_image(listing_id, image_id)
        if image is None:
            raise NotFoundError("Image not found")
        await self.storage.listings.delete_image(listing_id, image_id)
        if await self.storage.listings.count_image_refs(image.image_url):
            logger.info("listing_media_shared", listing_id=listing_id, url=image.image_url)
            return
        if not delete_media_file(self.settings.resolved_media_dir, image.image_url):
            logger.warning("media_file_missing", listing_id=listing_id, url=image.image_url)
