"""Browse queries: filtered, sorted, paginated listing reads for the public site."""

from __future__ import annotations

from collections.abc import Callable, Coroutine, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final

import aiosqlite

from homeboard.db.row_mappers import ListingCard, row_to_card
from homeboard.logging import get_logger
from homeboard.models import ListingType
from homeboard.utils.dates import to_db, utc_now

if TYPE_CHECKING:
    from homeboard.web.filters import ListingFilter, MapBounds

logger = get_logger(__name__)

DEFAULT_SORT: Final = "newest"

CARD_SELECT: Final = """
    SELECT l.*,
           p.full_name AS owner_full_name,
           p.role AS owner_role,
           p.agency AS owner_agency,
           EXISTS (
               SELECT 1 FROM favorites f
               WHERE f.listing_id = l.id AND f.user_id = ?
           ) AS is_favorited
    FROM listings l
    LEFT JOIN profiles p ON p.id = l.user_id
"""


def _price_column(listing_type: ListingType) -> str:
    return "l.asking_price" if listing_type == ListingType.SALE else "l.price"


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def build_filter_clauses(
    filters: ListingFilter,
    *,
    now: datetime | None = None,
) -> tuple[str, list[Any]]:
    """Build WHERE clause and params for listing search.

    Active and approved are always required; rentals also match rows with
    no listing_type (legacy rows posted before sales existed).

    Args:
        filters: Validated search parameters.
        now: Reference time for the featured window.

    Returns:
        Tuple of (where_sql, params).
    """
    now = now or utc_now()
    where_clauses: list[str] = ["l.is_active = 1", "l.approved = 1"]
    params: list[Any] = []

    if filters.listing_type == ListingType.SALE:
        where_clauses.append("l.listing_type = 'sale'")
    else:
        where_clauses.append("(l.listing_type = 'rental' OR l.listing_type IS NULL)")

    if filters.bedrooms:
        where_clauses.append(f"l.bedrooms IN ({_placeholders(filters.bedrooms)})")
        params.extend(filters.bedrooms)
    if filters.min_bathrooms is not None:
        where_clauses.append("l.bathrooms >= ?")
        params.append(filters.min_bathrooms)
    if filters.property_types:
        where_clauses.append(f"l.property_type IN ({_placeholders(filters.property_types)})")
        params.extend(filters.property_types)
    elif filters.property_type:
        where_clauses.append("l.property_type = ?")
        params.append(filters.property_type)

    price_col = _price_column(filters.listing_type)
    if filters.min_price is not None:
        where_clauses.append(f"{price_col} >= ?")
        params.append(filters.min_price)
    if filters.max_price is not None:
        where_clauses.append(f"{price_col} <= ?")
        params.append(filters.max_price)

    if filters.parking_included:
        where_clauses.append("l.parking IN ('yes', 'included')")
    if filters.neighborhoods:
        where_clauses.append(f"l.neighborhood IN ({_placeholders(filters.neighborhoods)})")
        params.extend(filters.neighborhoods)
    if filters.no_fee_only:
        where_clauses.append("l.broker_fee = 0")

    if filters.bounds is not None:
        where_clauses.append("l.latitude BETWEEN ? AND ?")
        where_clauses.append("l.longitude BETWEEN ? AND ?")
        params.extend(
            [filters.bounds.south, filters.bounds.north, filters.bounds.west, filters.bounds.east]
        )

    if filters.featured_only:
        where_clauses.append("l.is_featured = 1 AND l.featured_expires_at > ?")
        params.append(to_db(now))

    if filters.poster_type == "owner":
        where_clauses.append("p.role IN ('landlord', 'tenant')")
    elif filters.poster_type == "agent":
        where_clauses.append("p.role = 'agent'")
        if filters.agency_name:
            where_clauses.append("p.agency = ?")
            params.append(filters.agency_name)

    return " AND ".join(where_clauses), params


def build_order_clause(sort: str, listing_type: ListingType) -> str:
    """Map a sort key to ORDER BY; unknown keys sort newest first."""
    price_col = _price_column(listing_type)
    order_map = {
        "newest": "l.created_at DESC",
        "oldest": "l.created_at ASC",
        "price_asc": f"{price_col} IS NULL, {price_col} ASC, l.created_at DESC",
        "price_desc": f"{price_col} IS NULL, {price_col} DESC, l.created_at DESC",
        "bedrooms_asc": "l.bedrooms ASC, l.created_at DESC",
        "bedrooms_desc": "l.bedrooms DESC, l.created_at DESC",
        "bathrooms_asc": "l.bathrooms ASC, l.created_at DESC",
        "bathrooms_desc": "l.bathrooms DESC, l.created_at DESC",
    }
    return order_map.get(sort, order_map[DEFAULT_SORT])


async def attach_images(conn: aiosqlite.Connection, cards: list[ListingCard]) -> None:
    """Load images for a page of cards in one query (mutates in place)."""
    if not cards:
        return
    ids = [card["id"] for card in cards]
    cursor = await conn.execute(
        f"""
        SELECT id, listing_id, image_url, is_featured, sort_order
        FROM listing_images
        WHERE listing_id IN ({_placeholders(ids)})
        ORDER BY sort_order, id
        """,
        ids,
    )
    by_listing: dict[str, list[dict[str, Any]]] = {}
    for row in await cursor.fetchall():
        by_listing.setdefault(row["listing_id"], []).append(
            {
                "id": row["id"],
                "image_url": row["image_url"],
                "is_featured": bool(row["is_featured"]),
                "sort_order": row["sort_order"],
            }
        )
    for card in cards:
        card["images"] = by_listing.get(card["id"], [])


async def fetch_cards(
    conn: aiosqlite.Connection,
    tail_sql: str,
    params: Sequence[Any],
    *,
    viewer_id: str | None,
) -> list[ListingCard]:
    """Run CARD_SELECT with a WHERE/ORDER/LIMIT tail and attach images."""
    cursor = await conn.execute(f"{CARD_SELECT} {tail_sql}", [viewer_id or "", *params])
    cards = [row_to_card(row) for row in await cursor.fetchall()]
    await attach_images(conn, cards)
    return cards


class ListingQueryService:
    """Read-only listing queries for browse pages and the map."""

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    async def get_listings_paginated(
        self,
        filters: ListingFilter,
        *,
        sort: str = DEFAULT_SORT,
        page: int = 1,
        per_page: int = 20,
        viewer_id: str | None = None,
        now: datetime | None = None,
    ) -> tuple[list[ListingCard], int]:
        """Get one page of listings matching filters.

        Args:
            filters: Validated search parameters.
            sort: Sort order key.
            page: Page number (1-indexed).
            per_page: Items per page.
            viewer_id: Profile id used for the ``is_favorited`` flag.
            now: Reference time for the featured window.

        Returns:
            Tuple of (listing cards, total count).
        """
        conn = await self._get_connection()
        where_sql, params = build_filter_clauses(filters, now=now)
        order_sql = build_order_clause(sort, filters.listing_type)

        count_cursor = await conn.execute(
            f"""
            SELECT COUNT(*) FROM listings l
            LEFT JOIN profiles p ON p.id = l.user_id
            WHERE {where_sql}
            """,
            params,
        )
        count_row = await count_cursor.fetchone()
        total = count_row[0] if count_row else 0

        offset = (page - 1) * per_page
        cards = await fetch_cards(
            conn,
            f"WHERE {where_sql} ORDER BY {order_sql} LIMIT ? OFFSET ?",
            [*params, per_page, offset],
            viewer_id=viewer_id,
        )
        return cards, total

    async def get_featured_for_search(
        self,
        filters: ListingFilter,
        *,
        viewer_id: str | None = None,
        now: datetime | None = None,
    ) -> list[ListingCard]:
        """Featured, unexpired listings that also match the current search.

        Ordered by when they were featured so earlier boosts keep their slot.
        """
        conn = await self._get_connection()
        featured = filters.model_copy(update={"featured_only": True})
        where_sql, params = build_filter_clauses(featured, now=now)
        return await fetch_cards(
            conn,
            f"WHERE {where_sql} ORDER BY l.featured_started_at ASC, l.created_at DESC",
            params,
            viewer_id=viewer_id,
        )

    async def get_map_pins(
        self,
        filters: ListingFilter,
        *,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Lightweight pin data for matching listings that have coordinates."""
        conn = await self._get_connection()
        where_sql, params = build_filter_clauses(filters, now=now)
        price_col = _price_column(filters.listing_type)
        cursor = await conn.execute(
            f"""
            SELECT l.id, l.latitude, l.longitude, {price_col} AS price,
                   l.call_for_price, l.bedrooms, l.title, l.is_featured
            FROM listings l
            LEFT JOIN profiles p ON p.id = l.user_id
            WHERE {where_sql}
              AND l.latitude IS NOT NULL AND l.longitude IS NOT NULL
            """,
            params,
        )
        rows = await cursor.fetchall()
        return [
            {
                "id": row["id"],
                "lat": row["latitude"],
                "lon": row["longitude"],
                "price": None if row["call_for_price"] else row["price"],
                "bedrooms": row["bedrooms"],
                "title": row["title"],
                "is_featured": bool(row["is_featured"]),
                "url": f"/listings/{row['id']}",
            }
            for row in rows
        ]

    async def get_available_bedroom_counts(
        self,
        filters: ListingFilter,
        *,
        now: datetime | None = None,
    ) -> list[tuple[int, int]]:
        """Bedroom values (and how many listings have each) under the other filters."""
        conn = await self._get_connection()
        unfiltered = filters.model_copy(update={"bedrooms": []})
        where_sql, params = build_filter_clauses(unfiltered, now=now)
        cursor = await conn.execute(
            f"""
            SELECT l.bedrooms, COUNT(*) AS n
            FROM listings l
            LEFT JOIN profiles p ON p.id = l.user_id
            WHERE {where_sql}
            GROUP BY l.bedrooms
            ORDER BY l.bedrooms
            """,
            params,
        )
        return [(row["bedrooms"], row["n"]) for row in await cursor.fetchall()]

    async def get_active_neighborhoods(self, listing_type: ListingType) -> list[str]:
        """Distinct neighborhoods of visible listings, sorted."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT DISTINCT neighborhood FROM listings
            WHERE is_active = 1 AND approved = 1
              AND COALESCE(listing_type, 'rental') = ?
              AND neighborhood IS NOT NULL AND TRIM(neighborhood) != ''
            ORDER BY neighborhood
            """,
            (listing_type.value,),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def get_active_agencies(self, listing_type: ListingType) -> list[str]:
        """Distinct agencies of agents with visible listings, sorted."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT DISTINCT p.agency FROM listings l
            JOIN profiles p ON p.id = l.user_id
            WHERE l.is_active = 1 AND l.approved = 1
              AND COALESCE(l.listing_type, 'rental') = ?
              AND p.role = 'agent'
              AND p.agency IS NOT NULL AND TRIM(p.agency) != ''
            ORDER BY p.agency
            """,
            (listing_type.value,),
        )
        return [row[0] for row in await cursor.fetchall()]
