"""Plain-text formatting of listings for digest emails."""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Final

DIGEST_DIVIDER: Final = "─" * 31

_PROPERTY_TYPE_LABELS: Final = {
    "basement": "Basement",
    "full_house": "Full House",
    "duplex": "Duplex",
}


def format_price(listing: Mapping[str, Any]) -> str:
    """Rent as "$2,500", or a placeholder when the price is hidden or missing."""
    if listing.get("call_for_price"):
        return "Call for Price"
    price = listing.get("price")
    if price is None:
        price = listing.get("asking_price")
    if price is not None:
        return f"${price:,.0f}"
    return "Price Not Available"


def format_bedrooms(listing: Mapping[str, Any]) -> str:
    bedrooms = listing.get("bedrooms") or 0
    if bedrooms == 0:
        return "Studio"
    extra = listing.get("additional_rooms") or 0
    if extra > 0:
        return f"{bedrooms}+{extra} bed"
    return f"{bedrooms} bed"


def format_bathrooms(bathrooms: float | int | None) -> str:
    return f"{(bathrooms or 0):g} bath"


def format_specs(listing: Mapping[str, Any]) -> str:
    """One line like "2 bed | 1 bath | Parking | No Fee - Basement, Short Term"."""
    specs = f"{format_bedrooms(listing)} | {format_bathrooms(listing.get('bathrooms'))}"
    if listing.get("parking") in ("yes", "included"):
        specs += " | Parking"
    specs += " | Broker Fee" if listing.get("broker_fee") else " | No Fee"

    extras = [
        label
        for label in (
            _PROPERTY_TYPE_LABELS.get(listing.get("property_type") or "", ""),
            "Short Term" if listing.get("lease_length") == "short_term" else "",
        )
        if label
    ]
    if extras:
        specs += f" - {', '.join(extras)}"
    return specs


def format_location(listing: Mapping[str, Any]) -> str:
    neighborhood = listing.get("neighborhood")
    location = listing.get("location") or ""
    return f"{neighborhood}, {location}" if neighborhood else location


def format_poster(listing: Mapping[str, Any]) -> str:
    """Poster line: the agency for agents that have one, otherwise "Owner"."""
    owner = listing.get("owner") or {}
    display = owner.get("agency") if owner.get("role") == "agent" and owner.get("agency") else None
    line = f"Posted by {display or 'Owner'}"
    if listing.get("is_featured"):
        line += " (FEATURED)"
    return line


def listing_url(site_url: str, listing_id: str) -> str:
    return f"{site_url.rstrip('/')}/listing/{listing_id}"


def format_listing_block(listing: Mapping[str, Any], site_url: str) -> str:
    """Five-line text block for one listing, followed by a blank line."""
    return (
        f"{format_price(listing)}\n"
        f"{format_specs(listing)}\n"
        f"{format_location(listing)}\n"
        f"{format_poster(listing)}\n"
        f"{listing_url(site_url, listing['id'])}\n"
        "\n"
    )


def round_down_to_ten(count: int) -> int:
    return (count // 10) * 10


def format_digest_date(when: datetime) -> str:
    """E.g. "Monday, March 3, 2025"."""
    return f"{when:%A}, {when:%B} {when.day}, {when.year}"
