"""Tests for featured-listing admission."""

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from homeboard.errors import FeatureLimitError
from homeboard.models import AdminSettings, Profile
from homeboard.services.featured import (
    NO_PERMISSION_MESSAGE,
    SITEWIDE_LIMIT_MESSAGE,
    check_feature_admission,
    effective_user_limit,
)

MakeProfile = Callable[..., Profile]


class TestEffectiveUserLimit:
    def test_profile_override_wins(self, make_profile: MakeProfile) -> None:
        profile = make_profile(max_featured_listings_per_user=5)
        assert effective_user_limit(profile, AdminSettings(max_featured_per_user=1)) == 5

    def test_falls_back_to_sitewide(self, make_profile: MakeProfile) -> None:
        assert effective_user_limit(make_profile(), AdminSettings(max_featured_per_user=2)) == 2


class TestAdmission:
    def test_no_permission(self, make_profile: MakeProfile, now: datetime) -> None:
        with pytest.raises(FeatureLimitError, match="do not have permission"):
            check_feature_admission(
                make_profile(),
                AdminSettings(max_featured_per_user=3),
                global_count=0,
                user_count=0,
                now=now,
            )

    def test_zero_limit_is_no_permission(self, make_profile: MakeProfile, now: datetime) -> None:
        with pytest.raises(FeatureLimitError) as exc_info:
            check_feature_admission(
                make_profile(can_feature_listings=True),
                AdminSettings(max_featured_per_user=0),
                global_count=0,
                user_count=0,
                now=now,
            )
        assert exc_info.value.message == NO_PERMISSION_MESSAGE

    def test_sitewide_cap_applies_to_admins(
        self, make_profile: MakeProfile, now: datetime
    ) -> None:
        with pytest.raises(FeatureLimitError) as exc_info:
            check_feature_admission(
                make_profile(is_admin=True),
                AdminSettings(max_featured_listings=2),
                global_count=2,
                user_count=0,
                now=now,
            )
        assert exc_info.value.message == SITEWIDE_LIMIT_MESSAGE
        assert exc_info.value.status_code == 409

    def test_user_cap_singular(self, make_profile: MakeProfile, now: datetime) -> None:
        with pytest.raises(FeatureLimitError, match="up to 1 listing at a time"):
            check_feature_admission(
                make_profile(can_feature_listings=True, max_featured_listings_per_user=1),
                AdminSettings(),
                global_count=1,
                user_count=1,
                now=now,
            )

    def test_user_cap_plural(self, make_profile: MakeProfile, now: datetime) -> None:
        with pytest.raises(FeatureLimitError, match="up to 2 listings at a time"):
            check_feature_admission(
                make_profile(can_feature_listings=True),
                AdminSettings(max_featured_per_user=2),
                global_count=2,
                user_count=2,
                now=now,
            )

    def test_admitted_window(self, make_profile: MakeProfile, now: datetime) -> None:
        started, expires = check_feature_admission(
            make_profile(can_feature_listings=True),
            AdminSettings(max_featured_per_user=2),
            global_count=3,
            user_count=1,
            now=now,
        )
        assert started == now
        assert expires == now + timedelta(days=7)

    def test_admin_ignores_user_limit(self, make_profile: MakeProfile, now: datetime) -> None:
        _, expires = check_feature_admission(
            make_profile(is_admin=True),
            AdminSettings(max_featured_per_user=0),
            global_count=0,
            user_count=10,
            now=now,
            duration=timedelta(days=3),
        )
        assert expires == now + timedelta(days=3)
