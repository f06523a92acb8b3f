"""Profiles, favorites and the admin settings singleton."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from datetime import datetime
from typing import Any

import aiosqlite

from homeboard.db.listing_queries import fetch_cards
from homeboard.db.row_mappers import ListingCard, row_to_admin_settings, row_to_profile
from homeboard.logging import get_logger
from homeboard.models import AdminSettings, Profile
from homeboard.utils.dates import to_db, utc_now

logger = get_logger(__name__)


class AccountRepository:
    """Profile, favorite and admin-settings persistence."""

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    # --- profiles ---

    async def upsert_profile(self, profile: Profile) -> Profile:
        """Insert or replace a profile (profiles are owned by the identity provider)."""
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO profiles (
                id, full_name, role, email, phone, agency, is_admin, is_banned,
                can_feature_listings, max_featured_listings_per_user, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                full_name = excluded.full_name,
                role = excluded.role,
                email = excluded.email,
                phone = excluded.phone,
                agency = excluded.agency,
                is_admin = excluded.is_admin,
                is_banned = excluded.is_banned,
                can_feature_listings = excluded.can_feature_listings,
                max_featured_listings_per_user = excluded.max_featured_listings_per_user,
                updated_at = excluded.updated_at
            """,
            (
                profile.id,
                profile.full_name,
                profile.role.value,
                profile.email,
                profile.phone,
                profile.agency,
                int(profile.is_admin),
                int(profile.is_banned),
                int(profile.can_feature_listings),
                profile.max_featured_listings_per_user,
                to_db(profile.created_at),
                to_db(profile.updated_at),
            ),
        )
        await conn.commit()
        return profile

    async def get_profile(self, profile_id: str) -> Profile | None:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM profiles WHERE id = ?", (profile_id,))
        row = await cursor.fetchone()
        return row_to_profile(row) if row else None

    async def get_admin_emails(self) -> list[str]:
        """Email addresses of every admin that has one."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT email FROM profiles
            WHERE is_admin = 1 AND email IS NOT NULL AND TRIM(email) != ''
            ORDER BY email
            """
        )
        return [row[0] for row in await cursor.fetchall()]

    # --- favorites ---

    async def add_favorite(self, user_id: str, listing_id: str) -> None:
        """Favorite a listing; favoriting twice is a no-op."""
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO favorites (user_id, listing_id, created_at) VALUES (?, ?, ?)
            ON CONFLICT(user_id, listing_id) DO NOTHING
            """,
            (user_id, listing_id, to_db(utc_now())),
        )
        await conn.commit()

    async def remove_favorite(self, user_id: str, listing_id: str) -> bool:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "DELETE FROM favorites WHERE user_id = ? AND listing_id = ?",
            (user_id, listing_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def get_favorite_ids(self, user_id: str) -> list[str]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT listing_id FROM favorites WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def get_favorites(self, user_id: str) -> list[ListingCard]:
        """Favorited listings that are still active, most recently favorited first."""
        conn = await self._get_connection()
        return await fetch_cards(
            conn,
            """
            JOIN favorites fav ON fav.listing_id = l.id AND fav.user_id = ?
            WHERE l.is_active = 1
            ORDER BY fav.created_at DESC
            """,
            [user_id],
            viewer_id=user_id,
        )

    # --- admin settings ---

    async def get_admin_settings(self) -> AdminSettings:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM admin_settings WHERE id = 1")
        return row_to_admin_settings(await cursor.fetchone())

    async def update_admin_settings(
        self,
        *,
        max_featured_listings: int,
        max_featured_per_user: int,
        max_featured_boost_positions: int | None = None,
        now: datetime | None = None,
    ) -> AdminSettings:
        """Upsert the singleton settings row."""
        if max_featured_listings < 0 or max_featured_per_user < 0:
            raise ValueError("Featured limits must be >= 0")
        current = await self.get_admin_settings()
        boost = (
            current.max_featured_boost_positions
            if max_featured_boost_positions is None
            else max_featured_boost_positions
        )
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO admin_settings (
                id, max_featured_listings, max_featured_per_user,
                max_featured_boost_positions, updated_at
            ) VALUES (1, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                max_featured_listings = excluded.max_featured_listings,
                max_featured_per_user = excluded.max_featured_per_user,
                max_featured_boost_positions = excluded.max_featured_boost_positions,
                updated_at = excluded.updated_at
            """,
            (max_featured_listings, max_featured_per_user, boost, to_db(now or utc_now())),
        )
        await conn.commit()
        logger.info(
            "admin_settings_updated",
            max_featured_listings=max_featured_listings,
            max_featured_per_user=max_featured_per_user,
        )
        return await self.get_admin_settings()
