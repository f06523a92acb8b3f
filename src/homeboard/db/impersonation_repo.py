"""Impersonation sessions and their audit log."""

from __future__ import annotations

import json
from collections.abc import Callable, Coroutine
from datetime import datetime
from typing import Any

import aiosqlite

from homeboard.db.row_mappers import parse_json_object, row_to_session
from homeboard.models import ImpersonationSession
from homeboard.utils.dates import from_db, to_db


class ImpersonationRepository:
    """Persistence for admin impersonation sessions."""

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    async def create_session(
        self,
        *,
        admin_user_id: str,
        impersonated_user_id: str,
        session_token: str,
        started_at: datetime,
        expires_at: datetime,
        ip_address: str | None,
        user_agent: str | None,
    ) -> ImpersonationSession:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO impersonation_sessions (
                admin_user_id, impersonated_user_id, session_token,
                started_at, expires_at, ip_address, user_agent
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                admin_user_id,
                impersonated_user_id,
                session_token,
                to_db(started_at),
                to_db(expires_at),
                ip_address,
                user_agent,
            ),
        )
        await conn.commit()
        session_id = cursor.lastrowid
        assert session_id is not None
        return ImpersonationSession(
            id=session_id,
            admin_user_id=admin_user_id,
            impersonated_user_id=impersonated_user_id,
            session_token=session_token,
            started_at=started_at,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def get_by_token(self, session_token: str) -> ImpersonationSession | None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM impersonation_sessions WHERE session_token = ?",
            (session_token,),
        )
        row = await cursor.fetchone()
        return row_to_session(row) if row else None

    async def get_open_sessions(self, admin_user_id: str) -> list[ImpersonationSession]:
        """Sessions of an admin that have not been ended (they may have timed out)."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM impersonation_sessions
            WHERE admin_user_id = ? AND ended_at IS NULL
            ORDER BY started_at
            """,
            (admin_user_id,),
        )
        return [row_to_session(row) for row in await cursor.fetchall()]

    async def get_expired_open_sessions(self, now: datetime) -> list[ImpersonationSession]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM impersonation_sessions
            WHERE ended_at IS NULL AND expires_at <= ?
            """,
            (to_db(now),),
        )
        return [row_to_session(row) for row in await cursor.fetchall()]

    async def end_session(self, session_id: int, ended_at: datetime) -> bool:
        """Mark a session ended; returns False if it had already ended."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            UPDATE impersonation_sessions SET ended_at = ?
            WHERE id = ? AND ended_at IS NULL
            """,
            (to_db(ended_at), session_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def log_action(
        self,
        session: ImpersonationSession,
        action_type: str,
        *,
        action_details: dict[str, Any] | None = None,
        page_path: str | None = None,
        timestamp: datetime,
    ) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO impersonation_audit_log (
                session_id, admin_user_id, impersonated_user_id,
                action_type, action_details, page_path, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.id,
                session.admin_user_id,
                session.impersonated_user_id,
                action_type,
                json.dumps(action_details or {}),
                page_path,
                to_db(timestamp),
            ),
        )
        await conn.commit()

    async def get_audit_log(self, session_id: int) -> list[dict[str, Any]]:
        """Audit entries for one session, oldest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT action_type, action_details, page_path, timestamp
            FROM impersonation_audit_log
            WHERE session_id = ?
            ORDER BY id
            """,
            (session_id,),
        )
        return [
            {
                "action_type": row["action_type"],
                "action_details": parse_json_object(row["action_details"]),
                "page_path": row["page_path"],
                "timestamp": from_db(row["timestamp"]),
            }
            for row in await cursor.fetchall()
        ]
