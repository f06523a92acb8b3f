"""Scheduled listing housekeeping: expiry, deletion and featured sweeps."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.errors import EmailDeliveryError
from homeboard.logging import get_logger
from homeboard.notifiers.email import ZeptoMailClient, render_email
from homeboard.utils.dates import utc_now
from homeboard.utils.media import clear_listing_media

logger = get_logger(__name__)


@dataclass
class LifecycleReport:
    """What one lifecycle pass changed."""

    deactivated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    featured_expired: int = 0
    notices_sent: int = 0


class ListingLifecycle:
    def __init__(
        self,
        storage: MarketplaceStorage,
        settings: Settings,
        mailer: ZeptoMailClient | None = None,
    ) -> None:
        self.storage = storage
        self.settings = settings
        self.mailer = mailer

    async def auto_inactivate(self, now: datetime | None = None) -> list[str]:
        """Deactivate active listings that are past expiry (or stale when unset)."""
        now = now or utc_now()
        stale_before = now - timedelta(days=self.settings.rental_duration_days)
        ids = await self.storage.listings.get_expired_active_ids(now, stale_before)
        if ids:
            await self.storage.listings.deactivate_listings(ids, now)
            logger.info("listings_auto_inactivated", count=len(ids))
        return ids

    async def auto_delete(self, now: datetime | None = None) -> list[str]:
        """Delete listings that have been inactive for too long, with their media."""
        now = now or utc_now()
        cutoff = now - timedelta(days=self.settings.inactive_delete_after_days)
        ids = await self.storage.listings.get_deletable_ids(cutoff)
        if not ids:
            return []
        await self.storage.listings.delete_listings(ids)
        for listing_id in ids:
            clear_listing_media(self.settings.resolved_media_dir, listing_id)
        logger.info("listings_auto_deleted", count=len(ids))
        return ids

    async def expire_featured(self, now: datetime | None = None) -> int:
        count = await self.storage.listings.clear_expired_featured(now or utc_now())
        if count:
            logger.info("featured_listings_expired", count=count)
        return count

    async def send_deactivation_notices(self, listing_ids: list[str]) -> int:
        """Email owners whose listings were just deactivated.

        Owners without an email are skipped. Delivery failures are logged
        per listing and do not stop the remaining notices.
        """
        if not listing_ids or self.mailer is None:
            return 0
        sent = 0
        contacts = await self.storage.digests.get_owner_contacts(listing_ids)
        for contact in contacts:
            if not contact.get("email"):
                continue
            html = render_email(
                "deactivation.html",
                brand=self.settings.site_name,
                title="Your listing has expired",
                owner_name=contact.get("full_name") or "there",
                listing_title=contact["title"],
                delete_after_days=self.settings.inactive_delete_after_days,
                cta_label="Renew Listing",
                cta_url=f"{self.settings.site_url.rstrip('/')}/dashboard",
            )
            try:
                await self.mailer.send(
                    [contact["email"]], f"Your listing has expired: {contact['title']}", html
                )
            except EmailDeliveryError:
                logger.warning(
                    "deactivation_notice_failed", listing_id=contact["listing_id"], exc_info=True
                )
                continue
            sent += 1
        return sent

    async def run_lifecycle(self, now: datetime | None = None) -> LifecycleReport:
        now = now or utc_now()
        report = LifecycleReport()
        report.deactivated = await self.auto_inactivate(now)
        report.deleted = await self.auto_delete(now)
        report.featured_expired = await self.expire_featured(now)
        report.notices_sent = await self.send_deactivation_notices(report.deactivated)
        logger.info(
            "lifecycle_complete",
            deactivated=len(report.deactivated),
            deleted=len(report.deleted),
            featured_expired=report.featured_expired,
            notices_sent=report.notices_sent,
        )
        return report
