"""Client analytics ingestion endpoint."""

import json

from fastapi import APIRouter, Request

from homeboard.analytics.events import (
    InvalidEventError,
    client_ip,
    hash_ip,
    normalize_events,
)
from homeboard.logging import get_logger
from homeboard.utils.dates import utc_now
from homeboard.web.deps import get_storage

logger = get_logger(__name__)

router = APIRouter()


@router.post("/track")
async def track(request: Request) -> dict[str, object]:
    """Store a batch of client events.

    The body may be sent as ``text/plain`` (as ``navigator.sendBeacon`` does),
    so it is decoded by hand rather than through a pydantic body model.
    """
    raw = await request.body()
    if not raw.strip():
        raise InvalidEventError("No events provided")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise InvalidEventError("Invalid JSON body") from None

    peer = request.client.host if request.client else None
    events = normalize_events(
        payload,
        user_agent=request.headers.get("user-agent"),
        ip_hash=hash_ip(client_ip(request.headers, peer)),
        now=utc_now(),
    )
    stored = await get_storage(request).analytics.insert_events(events)
    logger.debug("events_tracked", count=stored)
    return {"success": True, "count": stored}
