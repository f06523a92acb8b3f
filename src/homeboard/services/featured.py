"""Featured-listing admission rules."""

from datetime import datetime, timedelta
from typing import Final

from homeboard.errors import FeatureLimitError
from homeboard.models import AdminSettings, Profile

FEATURED_DURATION: Final = timedelta(days=7)

NO_PERMISSION_MESSAGE: Final = (
    "You do not have permission to feature listings. "
    "Please contact support to upgrade your account."
)
SITEWIDE_LIMIT_MESSAGE: Final = (
    "The sitewide maximum for featured listings has been reached. "
    "Please check back later or contact support."
)


def effective_user_limit(profile: Profile, settings: AdminSettings) -> int:
    """Per-user featured limit: profile override, else the sitewide default."""
    if profile.max_featured_listings_per_user is not None:
        return profile.max_featured_listings_per_user
    return settings.max_featured_per_user


def check_feature_admission(
    profile: Profile,
    settings: AdminSettings,
    *,
    global_count: int,
    user_count: int,
    now: datetime,
    duration: timedelta = FEATURED_DURATION,
) -> tuple[datetime, datetime]:
    """Decide whether ``profile`` may feature one more listing.

    Checks run in order: permission, per-user limit configured, global
    capacity (admins included), then the per-user count.

    Args:
        profile: The listing owner (or acting admin).
        settings: Current admin settings.
        global_count: Active featured listings sitewide.
        user_count: Active featured listings owned by ``profile``.
        now: Reference time.
        duration: Length of the featured window.

    Returns:
        ``(featured_started_at, featured_expires_at)``.

    Raises:
        FeatureLimitError: If any check fails.
    """
    if not profile.is_admin and not profile.can_feature_listings:
        raise FeatureLimitError(NO_PERMISSION_MESSAGE)

    limit = effective_user_limit(profile, settings)
    if not profile.is_admin and limit <= 0:
        raise FeatureLimitError(NO_PERMISSION_MESSAGE)

    if global_count >= settings.max_featured_listings:
        raise FeatureLimitError(SITEWIDE_LIMIT_MESSAGE)

    if not profile.is_admin and user_count >= limit:
        noun = "listing" if limit == 1 else "listings"
        raise FeatureLimitError(f"You can only feature up to {limit} {noun} at a time.")

    return now, now + duration
