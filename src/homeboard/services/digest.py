"""Listing digests emailed to admins: the daily digest and template digests."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Final
from zoneinfo import ZoneInfo

from homeboard.config import Settings
from homeboard.db import ListingCard, MarketplaceStorage
from homeboard.errors import EmailDeliveryError, NotFoundError
from homeboard.logging import get_logger
from homeboard.models import DigestTemplate, DigestTemplateInput, DigestTemplateType
from homeboard.notifiers.email import ZeptoMailClient, render_email
from homeboard.notifiers.formatting import (
    DIGEST_DIVIDER,
    format_digest_date,
    format_listing_block,
    round_down_to_ten,
)
from homeboard.utils.dates import utc_now

logger = get_logger(__name__)

BEDROOM_CATEGORIES: Final = (
    ("studio", "Studio Apartments"),
    ("1bed", "1 Bedroom"),
    ("2bed", "2 Bedrooms"),
    ("3bed", "3 Bedrooms"),
    ("4plus", "4+ Bedrooms"),
)

PRICE_CATEGORIES: Final = (
    ("under_2k", "Under $2,000"),
    ("2k_3k", "$2,000 - $3,000"),
    ("3k_4k", "$3,000 - $4,000"),
    ("over_4k", "Over $4,000"),
    ("call_for_price", "Call for Price"),
)

NO_NEW_LISTINGS: Final = "No new listings to send"
ALL_RECENTLY_SENT: Final = "All listings already sent within 7 days"


@dataclass
class CategoryGroup:
    key: str
    label: str
    listings: list[ListingCard] = field(default_factory=list)


def bedroom_category(bedrooms: int) -> str:
    if bedrooms <= 0:
        return "studio"
    if bedrooms >= 4:
        return "4plus"
    return f"{bedrooms}bed"


def price_category(price: int | None, call_for_price: bool) -> str:
    if call_for_price or price is None:
        return "call_for_price"
    if price < 2000:
        return "under_2k"
    if price < 3000:
        return "2k_3k"
    if price < 4000:
        return "3k_4k"
    return "over_4k"


def _group(
    listings: Sequence[ListingCard],
    categories: Sequence[tuple[str, str]],
    key_of: Any,
    limits: dict[str, int],
) -> list[CategoryGroup]:
    groups = {key: CategoryGroup(key=key, label=label) for key, label in categories}
    for listing in listings:
        groups[key_of(listing)].listings.append(listing)
    for group in groups.values():
        limit = limits.get(group.key)
        if limit:
            del group.listings[limit:]
    return [group for group in groups.values() if group.listings]


def categorize_by_bedrooms(
    listings: Sequence[ListingCard], limits: dict[str, int] | None = None
) -> list[CategoryGroup]:
    """Group by bedroom category in display order, dropping empty groups.

    A limit of 0 (or no limit) keeps every listing in that category.
    """
    return _group(
        listings,
        BEDROOM_CATEGORIES,
        lambda listing: bedroom_category(listing.get("bedrooms") or 0),
        limits or {},
    )


def categorize_by_price(
    listings: Sequence[ListingCard], limits: dict[str, int] | None = None
) -> list[CategoryGroup]:
    return _group(
        listings,
        PRICE_CATEGORIES,
        lambda listing: price_category(listing.get("price"), bool(listing.get("call_for_price"))),
        limits or {},
    )


def render_subject(subject_template: str, *, date_text: str, count: int) -> str:
    return subject_template.replace("{date}", date_text).replace("{count}", str(count))


def _digest_header(site_url: str, total_active: int) -> str:
    return (
        "Here are the latest apartments posted on Hadirot:\n"
        "\n"
        f"To see all {round_down_to_ten(total_active)}+ active apartments:\n"
        f"{site_url.rstrip('/')}/browse\n"
        "\n"
    )


def render_admin_digest_text(
    listings: Sequence[ListingCard], site_url: str, total_active: int
) -> str:
    """Plain-text body of the daily admin digest."""
    blocks = "".join(format_listing_block(listing, site_url) for listing in listings)
    header = _digest_header(site_url, total_active)
    return f"{header}{DIGEST_DIVIDER}\n\n{blocks}{DIGEST_DIVIDER}\n"


def render_category_digest_text(
    groups: Sequence[CategoryGroup], site_url: str, total_active: int
) -> str:
    body = _digest_header(site_url, total_active)
    for group in groups:
        heading = f"{group.label.upper()} ({len(group.listings)})"
        body += f"{DIGEST_DIVIDER}\n{heading}\n{DIGEST_DIVIDER}\n\n"
        body += "".join(format_listing_block(listing, site_url) for listing in group.listings)
    return body + f"{DIGEST_DIVIDER}\n"


class DigestService:
    """Builds and sends digests and manages digest templates."""

    def __init__(
        self,
        storage: MarketplaceStorage,
        settings: Settings,
        mailer: ZeptoMailClient | None = None,
    ) -> None:
        self.storage = storage
        self.settings = settings
        self.mailer = mailer

    def _date_text(self, now: datetime) -> str:
        return format_digest_date(now.astimezone(ZoneInfo(self.settings.analytics_timezone)))

    async def admin_recipients(self) -> list[str]:
        """Admin emails plus configured extras, de-duplicated in order."""
        addresses = await self.storage.accounts.get_admin_emails()
        addresses += self.settings.get_admin_emails_override()
        return list(dict.fromkeys(a.lower() for a in addresses if a))

    async def _deliver(
        self, recipients: list[str], subject: str, html: str, text: str
    ) -> None:
        if self.mailer is None:
            raise EmailDeliveryError("ZeptoMail is not configured")
        await self.mailer.send(recipients, subject, html, text=text)

    # --- daily admin digest ---

    async def send_admin_digest(
        self, *, force: bool = False, now: datetime | None = None
    ) -> dict[str, Any]:
        """Email admins the listings updated in the last day that they have not seen.

        Raises:
            EmailDeliveryError: Sending failed (the failed run is logged first).
        """
        now = now or utc_now()
        if not self.settings.admin_digest_enabled and not force:
            logger.info("admin_digest_skipped", reason="disabled")
            return {"success": True, "skipped": True, "message": "Admin digest is disabled"}

        recipients = await self.admin_recipients()
        if not recipients:
            logger.warning("admin_digest_no_recipients")
            return {
                "success": False,
                "message": "No admin email addresses found",
                "listing_count": 0,
                "admin_count": 0,
            }

        digests = self.storage.digests
        candidates = await digests.get_recently_updated(
            now - timedelta(hours=self.settings.admin_digest_lookback_hours)
        )
        message: str | None = None
        if not candidates:
            message = NO_NEW_LISTINGS
        else:
            already_sent = await digests.get_sent_listing_ids(
                None, since=now - timedelta(days=self.settings.admin_digest_resend_days)
            )
            candidates = [c for c in candidates if c["id"] not in already_sent]
            if not candidates:
                message = ALL_RECENTLY_SENT

        if message is not None:
            await digests.log_run(
                run_at=now,
                template_id=None,
                listings_count=0,
                recipients_count=len(recipients),
                success=True,
                error_message=message,
            )
            logger.info("admin_digest_nothing_to_send", reason=message)
            return {
                "success": True,
                "message": message,
                "listing_count": 0,
                "admin_count": len(recipients),
            }

        total_active = await digests.count_active_listings()
        text = render_admin_digest_text(candidates, self.settings.site_url, total_active)
        date_text = self._date_text(now)
        subject = f"Daily Listing Digest - {date_text}"
        html = render_email(
            "digest.html",
            brand=self.settings.site_name,
            title=subject,
            text_body=text,
        )
        try:
            await self._deliver(recipients, subject, html, text)
        except EmailDeliveryError as e:
            await digests.log_run(
                run_at=now,
                template_id=None,
                listings_count=len(candidates),
                recipients_count=len(recipients),
                success=False,
                error_message=e.message,
            )
            logger.error("admin_digest_failed", error=e.message)
            raise

        await digests.record_sent(None, [c["id"] for c in candidates], now)
        await digests.log_run(
            run_at=now,
            template_id=None,
            listings_count=len(candidates),
            recipients_count=len(recipients),
            success=True,
        )
        logger.info("admin_digest_sent", listings=len(candidates), recipients=len(recipients))
        return {
            "success": True,
            "listing_count": len(candidates),
            "admin_count": len(recipients),
            "subject": subject,
        }

    # --- template digests ---

    async def _resolve_template(
        self, template_id: int | None, config: DigestTemplateInput | None
    ) -> tuple[int | None, DigestTemplateInput]:
        if template_id is not None:
            template = await self.storage.digests.get_template(template_id)
            if template is None:
                raise NotFoundError("Template not found")
            return template.id, template
        if config is not None:
            return None, config
        default = await self.storage.digests.get_default_template()
        if default is None:
            raise NotFoundError("No default template found")
        return default.id, default

    async def select_listings(
        self, template: DigestTemplateInput, now: datetime
    ) -> list[ListingCard]:
        """Listings matching the template filters, minus send-history exclusions."""
        digests = self.storage.digests
        listings = await digests.get_listings_for_config(
            template.filter_config, template.sort_preference, now
        )
        if template.ignore_send_history:
            return listings
        if template.template_type == DigestTemplateType.UNSENT_ONLY:
            sent = await digests.get_sent_listing_ids(None, any_template=True)
        elif template.allow_resend:
            sent = await digests.get_sent_listing_ids(
                None,
                any_template=True,
                since=now - timedelta(days=template.resend_after_days),
            )
        else:
            return listings
        return [listing for listing in listings if listing["id"] not in sent]

    def group_listings(
        self, template: DigestTemplateInput, listings: list[ListingCard]
    ) -> list[CategoryGroup]:
        if template.template_type == DigestTemplateType.RECENT_BY_CATEGORY:
            return categorize_by_bedrooms(listings, template.category_limits)
        if not listings:
            return []
        return [CategoryGroup(key="all", label="New Listings", listings=listings)]

    async def send_template_digest(
        self,
        *,
        template_id: int | None = None,
        config: DigestTemplateInput | None = None,
        dry_run: bool = False,
        recipients: list[str] | None = None,
        force: bool = False,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Build (and unless ``dry_run``, send) a digest from a template.

        Args:
            template_id: Stored template to use.
            config: Ad-hoc template used when no id is given. Its sends are
                logged but not recorded in send history.
            dry_run: Return a preview without sending or recording anything.
            recipients: Override the admin recipient list.
            force: Send even when no listings match.
            now: Reference time.
        """
        now = now or utc_now()
        stored_id, template = await self._resolve_template(template_id, config)
        to = [r for r in (recipients or []) if r] or await self.admin_recipients()

        listings = await self.select_listings(template, now)
        groups = self.group_listings(template, listings)
        count = sum(len(group.listings) for group in groups)
        subject = render_subject(
            template.subject_template, date_text=self._date_text(now), count=count
        )
        total_active = await self.storage.digests.count_active_listings()
        text = render_category_digest_text(groups, self.settings.site_url, total_active)

        result: dict[str, Any] = {
            "success": True,
            "dry_run": dry_run,
            "template_id": stored_id,
            "template_name": template.name,
            "template_type": template.template_type.value,
            "listing_count": count,
            "admin_count": len(to),
            "listings_by_category": {group.key: len(group.listings) for group in groups},
            "subject": subject,
        }
        if dry_run:
            result["preview"] = text
            return result
        if not to:
            result.update(success=False, message="No admin email addresses found")
            return result
        if count == 0 and not force:
            result["message"] = NO_NEW_LISTINGS
            await self.storage.digests.log_run(
                run_at=now,
                template_id=stored_id,
                listings_count=0,
                recipients_count=len(to),
                success=True,
                error_message=NO_NEW_LISTINGS,
            )
            return result

        html = render_email(
            "category_digest.html",
            brand=self.settings.site_name,
            title=subject,
            intro=_digest_header(self.settings.site_url, total_active).strip(),
            groups=[
                {
                    "label": group.label,
                    "listings": group.listings,
                    "blocks": [
                        format_listing_block(listing, self.settings.site_url).strip()
                        for listing in group.listings
                    ],
                }
                for group in groups
            ],
        )
        try:
            await self._deliver(to, subject, html, text)
        except EmailDeliveryError as e:
            await self.storage.digests.log_run(
                run_at=now,
                template_id=stored_id,
                listings_count=count,
                recipients_count=len(to),
                success=False,
                error_message=e.message,
            )
            logger.error("template_digest_failed", template_id=stored_id, error=e.message)
            raise

        if stored_id is not None:
            sent_ids = [listing["id"] for group in groups for listing in group.listings]
            await self.storage.digests.record_sent(stored_id, sent_ids, now)
            await self.storage.digests.mark_used(stored_id, now)
        await self.storage.digests.log_run(
            run_at=now,
            template_id=stored_id,
            listings_count=count,
            recipients_count=len(to),
            success=True,
        )
        logger.info(
            "template_digest_sent", template_id=stored_id, listings=count, recipients=len(to)
        )
        return result

    # --- template management ---

    async def list_templates(self) -> list[DigestTemplate]:
        return await self.storage.digests.list_templates()

    async def create_template(self, data: DigestTemplateInput) -> DigestTemplate:
        template = await self.storage.digests.create_template(data)
        logger.info("digest_template_created", template_id=template.id, name=template.name)
        return template

    async def update_template(self, template_id: int, data: DigestTemplateInput) -> DigestTemplate:
        if await self.storage.digests.get_template(template_id) is None:
            raise NotFoundError("Template not found")
        template = await self.storage.digests.update_template(template_id, data)
        assert template is not None
        return template

    async def delete_template(self, template_id: int) -> None:
        if not await self.storage.digests.delete_template(template_id):
            raise NotFoundError("Template not found")

    async def set_default(self, template_id: int) -> DigestTemplate:
        if await self.storage.digests.get_template(template_id) is None:
            raise NotFoundError("Template not found")
        template = await self.storage.digests.set_default(template_id)
        assert template is not None
        return template

    async def get_runs(self, limit: int = 50) -> list[dict[str, Any]]:
        return await self.storage.digests.get_runs(limit)
