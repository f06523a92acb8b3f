"""Time-boxed admin impersonation with an audit trail."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.errors import ImpersonationError, NotFoundError, PermissionDeniedError
from homeboard.logging import get_logger
from homeboard.models import ImpersonationSession, Profile
from homeboard.utils.dates import utc_now

logger = get_logger(__name__)


def _require_admin(admin: Profile) -> None:
    if not admin.is_admin:
        raise PermissionDeniedError("Only administrators can use impersonation")


class ImpersonationService:
    """Start, check, end and audit impersonation sessions."""

    def __init__(self, storage: MarketplaceStorage, settings: Settings) -> None:
        self.storage = storage
        self.duration = timedelta(minutes=settings.impersonation_minutes)

    async def _own_session(self, admin: Profile, token: str) -> ImpersonationSession:
        session = await self.storage.impersonation.get_by_token(token)
        if session is None or session.admin_user_id != admin.id:
            raise NotFoundError("Impersonation session not found")
        return session

    async def start(
        self,
        admin: Profile,
        target_user_id: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> tuple[ImpersonationSession, Profile]:
        """Open a new session, ending any the admin still has open.

        Returns:
            The new session and the impersonated profile.
        """
        _require_admin(admin)
        now = now or utc_now()
        target = await self.storage.accounts.get_profile(target_user_id)
        if target is None:
            raise NotFoundError("User not found")
        if target.is_admin:
            raise PermissionDeniedError("Cannot impersonate another administrator")

        repo = self.storage.impersonation
        for previous in await repo.get_open_sessions(admin.id):
            await repo.end_session(previous.id, now)
            await repo.log_action(
                previous, "session_end", action_details={"reason": "replaced"}, timestamp=now
            )

        session = await repo.create_session(
            admin_user_id=admin.id,
            impersonated_user_id=target.id,
            session_token=secrets.token_urlsafe(32),
            started_at=now,
            expires_at=now + self.duration,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await repo.log_action(
            session,
            "session_start",
            action_details={"ip_address": ip_address, "user_agent": user_agent},
            timestamp=now,
        )
        logger.info(
            "impersonation_started",
            session_id=session.id,
            admin_user_id=admin.id,
            impersonated_user_id=target.id,
        )
        return session, target

    async def status(
        self, admin: Profile, token: str, *, now: datetime | None = None
    ) -> dict[str, Any]:
        _require_admin(admin)
        now = now or utc_now()
        session = await self._own_session(admin, token)
        if session.ended_at is not None:
            return {"valid": False, "expired": True, "reason": "ended"}
        if session.expires_at <= now:
            return {"valid": False, "expired": True, "reason": "timeout"}
        return {
            "valid": True,
            "session_id": session.id,
            "impersonated_user_id": session.impersonated_user_id,
            "expires_at": session.expires_at.isoformat(),
            "time_remaining_seconds": int((session.expires_at - now).total_seconds()),
        }

    async def end(self, admin: Profile, token: str, *, now: datetime | None = None) -> None:
        _require_admin(admin)
        now = now or utc_now()
        session = await self.storage.impersonation.get_by_token(token)
        if session is None or session.admin_user_id != admin.id or session.ended_at is not None:
            raise NotFoundError("No active session found")
        await self.storage.impersonation.end_session(session.id, now)
        await self.storage.impersonation.log_action(
            session, "session_end", action_details={"reason": "manual"}, timestamp=now
        )
        logger.info("impersonation_ended", session_id=session.id, reason="manual")

    async def log_action(
        self,
        admin: Profile,
        token: str,
        action_type: str,
        *,
        action_details: dict[str, Any] | None = None,
        page_path: str | None = None,
        now: datetime | None = None,
    ) -> None:
        _require_admin(admin)
        session = await self._own_session(admin, token)
        await self.storage.impersonation.log_action(
            session,
            action_type,
            action_details=action_details,
            page_path=page_path,
            timestamp=now or utc_now(),
        )

    async def resolve(
        self, admin: Profile, token: str, *, now: datetime | None = None
    ) -> tuple[ImpersonationSession, Profile]:
        """Session and impersonated profile for a token the admin holds.

        Raises:
            ImpersonationError: Unknown, foreign, ended or expired session.
        """
        if not admin.is_admin:
            raise ImpersonationError("Only administrators can use impersonation")
        now = now or utc_now()
        session = await self.storage.impersonation.get_by_token(token)
        if session is None or session.admin_user_id != admin.id:
            raise ImpersonationError("Invalid impersonation session")
        if not session.is_open(now):
            raise ImpersonationError("Impersonation session has expired")
        target = await self.storage.accounts.get_profile(session.impersonated_user_id)
        if target is None:
            raise ImpersonationError("Impersonated user no longer exists")
        return session, target

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """End every open session past its expiry."""
        now = now or utc_now()
        repo = self.storage.impersonation
        count = 0
        for session in await repo.get_expired_open_sessions(now):
            if await repo.end_session(session.id, now):
                await repo.log_action(
                    session, "session_end", action_details={"reason": "timeout"}, timestamp=now
                )
                count += 1
        if count:
            logger.info("impersonation_sessions_expired", count=count)
        return count
