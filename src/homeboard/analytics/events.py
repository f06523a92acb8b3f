"""Normalization of client analytics payloads posted to ``/track``."""

from __future__ import annotations

import hashlib
import re
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Final

from homeboard.errors import MarketplaceError
from homeboard.models import AnalyticsEvent

MAX_BATCH_SIZE: Final = 50

UUID_RE: Final = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_ID_NAMESPACE: Final = uuid.UUID(int=0)

# First header with a value wins; only the first address of a list is used.
CLIENT_IP_HEADERS: Final = (
    "x-forwarded-for",
    "x-real-ip",
    "cf-connecting-ip",
    "x-client-ip",
    "x-forwarded",
    "forwarded-for",
    "forwarded",
)


class InvalidEventError(MarketplaceError):
    """A tracking payload was empty, too large or malformed."""


def normalize_id(value: str) -> str:
    """Keep UUIDs as-is; map anything else to a stable uuid5."""
    if UUID_RE.match(value):
        return value
    return str(uuid.uuid5(_ID_NAMESPACE, value))


def coerce_events(payload: Any) -> list[Any]:
    """Accept a list, ``{"events": [...]}``, or one bare event."""
    if not payload:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        events = payload.get("events")
        if isinstance(events, list):
            return events
        return [payload]
    return []


def parse_occurred_at(value: Any, fallback: datetime) -> datetime:
    if not isinstance(value, str) or not value:
        return fallback
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def client_ip(headers: Mapping[str, str], peer: str | None) -> str | None:
    for name in CLIENT_IP_HEADERS:
        value = headers.get(name)
        if value:
            ip = value.split(",")[0].strip()
            if ip:
                return ip
    return peer or None


def hash_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    return hashlib.sha256(ip.encode()).hexdigest()


def normalize_events(
    payload: Any,
    *,
    user_agent: str | None,
    ip_hash: str | None,
    viewer_id: str | None = None,
    now: datetime,
) -> list[AnalyticsEvent]:
    """Validate and normalize a tracking request body.

    Args:
        payload: Decoded JSON body.
        user_agent: Request User-Agent, stored verbatim.
        ip_hash: SHA-256 hex of the client address.
        viewer_id: Authenticated user, used when an event carries no user_id.
        now: Server time used for missing or unparseable ``occurred_at``.

    Raises:
        InvalidEventError: Empty batch, more than ``MAX_BATCH_SIZE`` events, or
            an event without ``session_id``, ``anon_id`` or ``event_name``.
    """
    raw_events = coerce_events(payload)
    if not raw_events:
        raise InvalidEventError("No events provided")
    if len(raw_events) > MAX_BATCH_SIZE:
        raise InvalidEventError(f"Too many events (max {MAX_BATCH_SIZE})")

    events: list[AnalyticsEvent] = []
    for raw in raw_events:
        if not isinstance(raw, dict):
            raise InvalidEventError("Event missing required fields")
        session_id = raw.get("session_id")
        anon_id = raw.get("anon_id")
        event_name = raw.get("event_name")
        if not (
            isinstance(session_id, str) and session_id
            and isinstance(anon_id, str) and anon_id
            and isinstance(event_name, str) and event_name
        ):
            raise InvalidEventError("Event missing required fields")

        props = raw.get("event_props", raw.get("props"))
        user_id = raw.get("user_id")
        events.append(
            AnalyticsEvent(
                session_id=normalize_id(session_id),
                anon_id=normalize_id(anon_id),
                user_id=user_id if isinstance(user_id, str) and user_id else viewer_id,
                event_name=event_name,
                props=props if isinstance(props, dict) else {},
                occurred_at=parse_occurred_at(raw.get("occurred_at"), now),
                ua=user_agent,
                ip_hash=ip_hash,
            )
        )
    return events
