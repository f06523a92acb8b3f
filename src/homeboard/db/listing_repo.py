"""Listing and listing-image persistence."""

from __future__ import annotations

from collections.abc import Callable, Coroutine, Iterable
from datetime import datetime
from typing import Any, Final

import aiosqlite

from homeboard.db.listing_queries import fetch_cards
from homeboard.db.row_mappers import (
    LISTING_BOOL_COLUMNS,
    LISTING_TIME_COLUMNS,
    ListingCard,
    row_to_image,
    row_to_listing,
)
from homeboard.logging import get_logger
from homeboard.models import Listing, ListingImage
from homeboard.utils.dates import to_db, utc_now

logger = get_logger(__name__)

ADMIN_SORT_FIELDS: Final = {
    "created_at": "l.created_at",
    "updated_at": "l.updated_at",
    "title": "l.title",
    "price": "l.price",
    "bedrooms": "l.bedrooms",
    "views": "l.views",
    "owner": "p.full_name",
}


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    """Convert model values into SQLite column values."""
    out: dict[str, Any] = {}
    for key, value in values.items():
        if key in LISTING_TIME_COLUMNS:
            out[key] = to_db(value)
        elif key in LISTING_BOOL_COLUMNS:
            out[key] = 1 if value else 0
        elif hasattr(value, "value"):
            out[key] = value.value
        else:
            out[key] = value
    return out


class ListingRepository:
    """Writes and single-record reads for listings and their images."""

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    async def insert_listing(self, listing: Listing) -> Listing:
        """Insert a fully-populated listing."""
        conn = await self._get_connection()
        columns = _to_columns(listing.model_dump())
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        await conn.execute(
            f"INSERT INTO listings ({names}) VALUES ({placeholders})",
            list(columns.values()),
        )
        await conn.commit()
        logger.debug("listing_inserted", listing_id=listing.id)
        return listing

    async def get_listing(self, listing_id: str) -> Listing | None:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,))
        row = await cursor.fetchone()
        return row_to_listing(row) if row else None

    async def update_listing(
        self,
        listing_id: str,
        fields: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> Listing | None:
        """Apply a column update and return the fresh row."""
        conn = await self._get_connection()
        columns = _to_columns({**fields, "updated_at": now or utc_now()})
        assignments = ", ".join(f"{name} = ?" for name in columns)
        await conn.execute(
            f"UPDATE listings SET {assignments} WHERE id = ?",
            [*columns.values(), listing_id],
        )
        await conn.commit()
        return await self.get_listing(listing_id)

    async def delete_listing(self, listing_id: str) -> bool:
        """Delete a listing; images and favorites cascade."""
        conn = await self._get_connection()
        cursor = await conn.execute("DELETE FROM listings WHERE id = ?", (listing_id,))
        await conn.commit()
        return cursor.rowcount > 0

    async def delete_listings(self, listing_ids: Iterable[str]) -> int:
        ids = list(listing_ids)
        if not ids:
            return 0
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"DELETE FROM listings WHERE id IN ({', '.join('?' for _ in ids)})", ids
        )
        await conn.commit()
        return cursor.rowcount

    async def increment_views(self, listing_id: str) -> None:
        conn = await self._get_connection()
        await conn.execute("UPDATE listings SET views = views + 1 WHERE id = ?", (listing_id,))
        await conn.commit()

    async def count_active_featured(self, now: datetime, *, user_id: str | None = None) -> int:
        """Count featured listings whose window has not ended.

        Args:
            now: Reference time.
            user_id: Restrict to one owner when given.
        """
        conn = await self._get_connection()
        sql = "SELECT COUNT(*) FROM listings WHERE is_featured = 1 AND featured_expires_at > ?"
        params: list[Any] = [to_db(now)]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        cursor = await conn.execute(sql, params)
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_listing_card(
        self, listing_id: str, *, viewer_id: str | None = None
    ) -> ListingCard | None:
        """Single listing with owner, images and favorite flag (no visibility check)."""
        conn = await self._get_connection()
        cards = await fetch_cards(conn, "WHERE l.id = ?", [listing_id], viewer_id=viewer_id)
        return cards[0] if cards else None

    async def get_similar_candidates(
        self,
        listing: Listing,
        bedrooms: list[int],
        *,
        limit: int,
        viewer_id: str | None = None,
    ) -> list[ListingCard]:
        """Visible listings of the same type with one of the given bedroom counts."""
        conn = await self._get_connection()
        placeholders = ", ".join("?" for _ in bedrooms)
        return await fetch_cards(
            conn,
            f"""
            WHERE l.is_active = 1 AND l.approved = 1 AND l.id != ?
              AND COALESCE(l.listing_type, 'rental') = ?
              AND l.bedrooms IN ({placeholders})
            ORDER BY l.created_at DESC
            LIMIT ?
            """,
            [listing.id, listing.listing_type.value, *bedrooms, limit],
            viewer_id=viewer_id,
        )

    async def get_user_listings(self, user_id: str) -> list[ListingCard]:
        """Every listing a user owns, newest first, regardless of status."""
        conn = await self._get_connection()
        return await fetch_cards(
            conn,
            "WHERE l.user_id = ? ORDER BY l.created_at DESC",
            [user_id],
            viewer_id=user_id,
        )

    async def get_admin_listings(
        self,
        *,
        approved: bool | None = None,
        sort_field: str = "created_at",
        sort_direction: str = "desc",
    ) -> list[ListingCard]:
        """All listings for moderation, optionally filtered by approval."""
        conn = await self._get_connection()
        column = ADMIN_SORT_FIELDS.get(sort_field, ADMIN_SORT_FIELDS["created_at"])
        direction = "ASC" if sort_direction.lower() == "asc" else "DESC"
        where = "WHERE 1=1"
        params: list[Any] = []
        if approved is not None:
            where += " AND l.approved = ?"
            params.append(1 if approved else 0)
        return await fetch_cards(
            conn,
            f"{where} ORDER BY {column} {direction}, l.created_at DESC",
            params,
            viewer_id=None,
        )

    # --- lifecycle ---

    async def get_expired_active_ids(self, now: datetime, published_before: datetime) -> list[str]:
        """Active listings past expires_at, or stale by last_published_at when unset."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT id FROM listings
            WHERE is_active = 1
              AND (
                (expires_at IS NOT NULL AND expires_at <= ?)
                OR (expires_at IS NULL AND last_published_at IS NOT NULL
                    AND last_published_at <= ?)
              )
            """,
            (to_db(now), to_db(published_before)),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def deactivate_listings(self, listing_ids: list[str], now: datetime) -> int:
        if not listing_ids:
            return 0
        conn = await self._get_connection()
        placeholders = ", ".join("?" for _ in listing_ids)
        cursor = await conn.execute(
            f"""
            UPDATE listings
            SET is_active = 0, deactivated_at = ?, updated_at = ?,
                is_featured = 0, featured_expires_at = NULL
            WHERE id IN ({placeholders})
            """,
            [to_db(now), to_db(now), *listing_ids],
        )
        await conn.commit()
        return cursor.rowcount

    async def get_deletable_ids(self, deactivated_before: datetime) -> list[str]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT id FROM listings
            WHERE is_active = 0 AND deactivated_at IS NOT NULL AND deactivated_at <= ?
            """,
            (to_db(deactivated_before),),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def clear_expired_featured(self, now: datetime) -> int:
        """Unset is_featured on listings whose featured window has ended."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            UPDATE listings SET is_featured = 0, updated_at = ?
            WHERE is_featured = 1
              AND (featured_expires_at IS NULL OR featured_expires_at <= ?)
            """,
            (to_db(now), to_db(now)),
        )
        await conn.commit()
        return cursor.rowcount

    # --- images ---

    async def get_images(self, listing_id: str) -> list[ListingImage]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM listing_images WHERE listing_id = ? ORDER BY sort_order, id",
            (listing_id,),
        )
        return [row_to_image(row) for row in await cursor.fetchall()]

    async def get_image(self, listing_id: str, image_id: int) -> ListingImage | None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM listing_images WHERE id = ? AND listing_id = ?",
            (image_id, listing_id),
        )
        row = await cursor.fetchone()
        return row_to_image(row) if row else None

    async def add_image(self, listing_id: str, image_url: str) -> ListingImage:
        """Append an image; the first image on a listing becomes featured."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*), COALESCE(MAX(sort_order), -1) FROM listing_images"
            " WHERE listing_id = ?",
            (listing_id,),
        )
        row = await cursor.fetchone()
        count, max_order = (row[0], row[1]) if row else (0, -1)
        cursor = await conn.execute(
            """
            INSERT INTO listing_images (listing_id, image_url, is_featured, sort_order)
            VALUES (?, ?, ?, ?)
            """,
            (listing_id, image_url, 1 if count == 0 else 0, max_order + 1),
        )
        await conn.commit()
        image_id = cursor.lastrowid
        assert image_id is not None
        return ListingImage(
            id=image_id,
            listing_id=listing_id,
            image_url=image_url,
            is_featured=count == 0,
            sort_order=max_order + 1,
        )

    async def update_image(
        self,
        listing_id: str,
        image_id: int,
        *,
        is_featured: bool | None = None,
        sort_order: int | None = None,
    ) -> ListingImage | None:
        """Update an image; featuring one image un-features the others."""
        conn = await self._get_connection()
        if await self.get_image(listing_id, image_id) is None:
            return None
        if is_featured:
            await conn.execute(
                "UPDATE listing_images SET is_featured = 0 WHERE listing_id = ?",
                (listing_id,),
            )
        if is_featured is not None:
            await conn.execute(
                "UPDATE listing_images SET is_featured = ? WHERE id = ? AND listing_id = ?",
                (1 if is_featured else 0, image_id, listing_id),
            )
        if sort_order is not None:
            await conn.execute(
                "UPDATE listing_images SET sort_order = ? WHERE id = ? AND listing_id = ?",
                (sort_order, image_id, listing_id),
            )
        await conn.commit()
        return await self.get_image(listing_id, image_id)

    async def count_image_refs(self, image_url: str) -> int:
        """Number of image rows pointing at a stored media URL."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM listing_images WHERE image_url = ?", (image_url,)
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def delete_image(self, listing_id: str, image_id: int) -> bool:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "DELETE FROM listing_images WHERE id = ? AND listing_id = ?",
            (image_id, listing_id),
        )
        await conn.commit()
        return cursor.rowcount > 0
