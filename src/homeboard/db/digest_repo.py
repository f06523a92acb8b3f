"""Digest templates, send history and run log."""

from __future__ import annotations

import json
from collections.abc import Callable, Coroutine, Iterable
from datetime import datetime, timedelta
from typing import Any, Final

import aiosqlite

from homeboard.db.listing_queries import fetch_cards
from homeboard.db.row_mappers import ListingCard, row_to_template
from homeboard.logging import get_logger
from homeboard.models import DigestFilterConfig, DigestSort, DigestTemplate, DigestTemplateInput
from homeboard.utils.dates import from_db, to_db, utc_now

logger = get_logger(__name__)

DIGEST_ORDER: Final = {
    DigestSort.NEWEST_FIRST: "l.created_at DESC",
    DigestSort.PRICE_ASC: "l.price IS NULL, l.price ASC, l.created_at DESC",
    DigestSort.PRICE_DESC: "l.price IS NULL, l.price DESC, l.created_at DESC",
    DigestSort.FEATURED_FIRST: "l.is_featured DESC, l.created_at DESC",
}


def build_digest_clauses(config: DigestFilterConfig, now: datetime) -> tuple[str, list[Any]]:
    """WHERE clause for a template's filter config over visible rentals."""
    where_clauses = [
        "l.is_active = 1",
        "l.approved = 1",
        "(l.listing_type = 'rental' OR l.listing_type IS NULL)",
    ]
    params: list[Any] = []

    def _in(column: str, values: Iterable[Any]) -> None:
        items = [getattr(v, "value", v) for v in values]
        where_clauses.append(f"{column} IN ({', '.join('?' for _ in items)})")
        params.extend(items)

    if config.bedrooms:
        _in("l.bedrooms", config.bedrooms)
    if config.price_min is not None:
        where_clauses.append("l.price >= ?")
        params.append(config.price_min)
    if config.price_max is not None:
        where_clauses.append("l.price <= ?")
        params.append(config.price_max)
    if config.locations:
        location_clauses = []
        for loc in config.locations:
            location_clauses.append("(l.neighborhood LIKE ? OR l.location LIKE ?)")
            params.extend([f"%{loc}%", f"%{loc}%"])
        where_clauses.append(f"({' OR '.join(location_clauses)})")
    if config.property_types:
        _in("l.property_type", config.property_types)
    if config.broker_fee is not None:
        where_clauses.append("l.broker_fee = ?")
        params.append(1 if config.broker_fee else 0)
    if config.parking:
        _in("l.parking", config.parking)
    if config.lease_length:
        _in("l.lease_length", config.lease_length)
    if config.date_range_days:
        where_clauses.append("l.updated_at >= ?")
        params.append(to_db(now - timedelta(days=config.date_range_days)))

    return " AND ".join(where_clauses), params


class DigestRepository:
    """Persistence for digest templates and what has been sent."""

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    # --- templates ---

    async def list_templates(self) -> list[DigestTemplate]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM digest_templates ORDER BY is_default DESC, name"
        )
        return [row_to_template(row) for row in await cursor.fetchall()]

    async def get_template(self, template_id: int) -> DigestTemplate | None:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM digest_templates WHERE id = ?", (template_id,))
        row = await cursor.fetchone()
        return row_to_template(row) if row else None

    async def get_default_template(self) -> DigestTemplate | None:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM digest_templates WHERE is_default = 1 LIMIT 1")
        row = await cursor.fetchone()
        return row_to_template(row) if row else None

    @staticmethod
    def _template_columns(data: DigestTemplateInput) -> dict[str, Any]:
        return {
            "name": data.name,
            "description": data.description,
            "template_type": data.template_type.value,
            "filter_config": data.filter_config.model_dump_json(),
            "category_limits": json.dumps(data.category_limits),
            "sort_preference": data.sort_preference.value,
            "allow_resend": int(data.allow_resend),
            "resend_after_days": data.resend_after_days,
            "ignore_send_history": int(data.ignore_send_history),
            "subject_template": data.subject_template,
            "is_default": int(data.is_default),
        }

    async def create_template(self, data: DigestTemplateInput) -> DigestTemplate:
        conn = await self._get_connection()
        if data.is_default:
            await conn.execute("UPDATE digest_templates SET is_default = 0")
        columns = {**self._template_columns(data), "created_at": to_db(utc_now())}
        cursor = await conn.execute(
            f"""
            INSERT INTO digest_templates ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            """,
            list(columns.values()),
        )
        await conn.commit()
        template_id = cursor.lastrowid
        assert template_id is not None
        template = await self.get_template(template_id)
        assert template is not None
        return template

    async def update_template(
        self, template_id: int, data: DigestTemplateInput
    ) -> DigestTemplate | None:
        """Overwrite a template's fields.

        An update can make a template the default but never clears the flag, so
        a default always remains until another template takes it over.
        """
        conn = await self._get_connection()
        columns = self._template_columns(data)
        if data.is_default:
            await conn.execute(
                "UPDATE digest_templates SET is_default = 0 WHERE id != ?", (template_id,)
            )
        else:
            del columns["is_default"]
        assignments = ", ".join(f"{name} = ?" for name in columns)
        await conn.execute(
            f"UPDATE digest_templates SET {assignments} WHERE id = ?",
            [*columns.values(), template_id],
        )
        await conn.commit()
        return await self.get_template(template_id)

    async def delete_template(self, template_id: int) -> bool:
        conn = await self._get_connection()
        cursor = await conn.execute("DELETE FROM digest_templates WHERE id = ?", (template_id,))
        await conn.commit()
        return cursor.rowcount > 0

    async def set_default(self, template_id: int) -> DigestTemplate | None:
        """Make one template the default and clear the flag on all others."""
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE digest_templates SET is_default = CASE WHEN id = ? THEN 1 ELSE 0 END",
            (template_id,),
        )
        await conn.commit()
        return await self.get_template(template_id)

    async def mark_used(self, template_id: int, used_at: datetime) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            UPDATE digest_templates
            SET usage_count = usage_count + 1, last_used_at = ?
            WHERE id = ?
            """,
            (to_db(used_at), template_id),
        )
        await conn.commit()

    # --- send history ---

    async def get_sent_listing_ids(
        self,
        template_id: int | None,
        *,
        since: datetime | None = None,
        any_template: bool = False,
    ) -> set[str]:
        """Listing ids already sent by a template (``None`` = the admin digest).

        With ``any_template`` the sends of every template digest count.
        """
        conn = await self._get_connection()
        if any_template:
            sql = (
                "SELECT DISTINCT listing_id FROM digest_sent_listings"
                " WHERE template_id IS NOT NULL"
            )
            params: list[Any] = []
        else:
            sql = "SELECT DISTINCT listing_id FROM digest_sent_listings WHERE template_id IS ?"
            params = [template_id]
        if since is not None:
            sql += " AND sent_at >= ?"
            params.append(to_db(since))
        cursor = await conn.execute(sql, params)
        return {row[0] for row in await cursor.fetchall()}

    async def record_sent(
        self,
        template_id: int | None,
        listing_ids: Iterable[str],
        sent_at: datetime,
    ) -> None:
        conn = await self._get_connection()
        await conn.executemany(
            "INSERT INTO digest_sent_listings (template_id, listing_id, sent_at) VALUES (?, ?, ?)",
            [(template_id, listing_id, to_db(sent_at)) for listing_id in listing_ids],
        )
        await conn.commit()

    async def log_run(
        self,
        *,
        run_at: datetime,
        template_id: int | None,
        listings_count: int,
        recipients_count: int,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO digest_runs (
                run_at, template_id, listings_count, recipients_count, success, error_message
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                to_db(run_at),
                template_id,
                listings_count,
                recipients_count,
                int(success),
                error_message,
            ),
        )
        await conn.commit()

    async def get_runs(self, limit: int = 50) -> list[dict[str, Any]]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM digest_runs ORDER BY run_at DESC, id DESC LIMIT ?", (limit,)
        )
        return [
            {
                "id": row["id"],
                "run_at": from_db(row["run_at"]),
                "template_id": row["template_id"],
                "listings_count": row["listings_count"],
                "recipients_count": row["recipients_count"],
                "success": bool(row["success"]),
                "error_message": row["error_message"],
            }
            for row in await cursor.fetchall()
        ]

    # --- candidate listings ---

    async def get_recently_updated(self, updated_since: datetime) -> list[ListingCard]:
        """Visible listings updated since a cutoff, newest first."""
        conn = await self._get_connection()
        return await fetch_cards(
            conn,
            """
            WHERE l.is_active = 1 AND l.approved = 1 AND l.updated_at >= ?
            ORDER BY l.created_at DESC
            """,
            [to_db(updated_since)],
            viewer_id=None,
        )

    async def get_listings_for_config(
        self,
        config: DigestFilterConfig,
        sort: DigestSort,
        now: datetime,
    ) -> list[ListingCard]:
        conn = await self._get_connection()
        where_sql, params = build_digest_clauses(config, now)
        return await fetch_cards(
            conn,
            f"WHERE {where_sql} ORDER BY {DIGEST_ORDER[sort]}",
            params,
            viewer_id=None,
        )

    async def count_active_listings(self) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM listings WHERE is_active = 1 AND approved = 1"
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_owner_contacts(self, listing_ids: list[str]) -> list[dict[str, Any]]:
        """Owner name/email per listing for notices (owners without email omitted)."""
        if not listing_ids:
            return []
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            SELECT l.id AS listing_id, l.title, p.full_name, p.email
            FROM listings l JOIN profiles p ON p.id = l.user_id
            WHERE l.id IN ({", ".join("?" for _ in listing_ids)})
              AND p.email IS NOT NULL AND TRIM(p.email) != ''
            """,
            listing_ids,
        )
        return [dict(row) for row in await cursor.fetchall()]
