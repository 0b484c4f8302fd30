"""Tests for the quota enforcer.

Window boundaries are computed in the configured quota time zone; counts
are live counts of usage log rows.
"""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from app.models.usage import UsageLog
from app.services.quota_enforcer import (
    DAILY_LIMIT_MESSAGE,
    MONTHLY_LIMIT_MESSAGE,
    QuotaEnforcer,
)
from tests.conftest import TEST_TENANT_ID, TEST_USER_ID, make_feature, make_provider

_NEW_YORK = ZoneInfo("America/New_York")


async def _feature_with_attempts(db, timestamps: list[datetime]):
    provider = await make_provider(db)
    feature = await make_feature(db, provider)
    for created_at in timestamps:
        db.add(
            UsageLog(
                tenant_id=TEST_TENANT_ID,
                user_id=TEST_USER_ID,
                feature_id=feature.id,
                success=True,
                created_at=created_at,
            )
        )
    await db.commit()
    return feature


# =============================================================================
# Window boundaries
# =============================================================================


class TestWindows:
    """Start of day and month as UTC instants."""

    def test_utc_day_start(self, db_session) -> None:
        quota = QuotaEnforcer(db_session, zone=ZoneInfo("UTC"))
        now = datetime(2025, 3, 12, 15, 30, tzinfo=UTC)

        assert quota.day_start(now) == datetime(2025, 3, 12, tzinfo=UTC)
        assert quota.month_start(now) == datetime(2025, 3, 1, tzinfo=UTC)

    def test_local_day_start(self, db_session) -> None:
        """03:00 UTC on the 12th is still the 11th in New York."""
        quota = QuotaEnforcer(db_session, zone=_NEW_YORK)
        now = datetime(2025, 3, 12, 3, 0, tzinfo=UTC)

        # Midnight EDT (UTC-4) on March 11
        assert quota.day_start(now) == datetime(2025, 3, 11, 4, 0, tzinfo=UTC)

    def test_local_month_start(self, db_session) -> None:
        quota = QuotaEnforcer(db_session, zone=_NEW_YORK)
        now = datetime(2025, 7, 1, 2, 0, tzinfo=UTC)

        # Still June locally; midnight EDT (UTC-4) on June 1
        assert quota.month_start(now) == datetime(2025, 6, 1, 4, 0, tzinfo=UTC)


# =============================================================================
# Counting and checks
# =============================================================================


class TestCheck:
    """Cap checks against live usage counts."""

    async def test_count_usage_since_window(self, db_session) -> None:
        now = datetime(2025, 3, 12, 12, 0, tzinfo=UTC)
        feature = await _feature_with_attempts(
            db_session,
            [now, now - timedelta(hours=11), now - timedelta(hours=13)],
        )
        quota = QuotaEnforcer(db_session, zone=ZoneInfo("UTC"))

        count = await quota.count_usage(TEST_USER_ID, feature.id, quota.day_start(now))

        assert count == 2

    async def test_under_caps(self, db_session) -> None:
        now = datetime(2025, 3, 12, 12, 0, tzinfo=UTC)
        feature = await _feature_with_attempts(db_session, [now])
        quota = QuotaEnforcer(db_session, zone=ZoneInfo("UTC"))

        message = await quota.check(
            user_id=TEST_USER_ID,
            feature_id=feature.id,
            max_per_day=2,
            max_per_month=2,
            now=now,
        )

        assert message is None

    async def test_daily_cap_met(self, db_session) -> None:
        now = datetime(2025, 3, 12, 12, 0, tzinfo=UTC)
        feature = await _feature_with_attempts(db_session, [now, now])
        quota = QuotaEnforcer(db_session, zone=ZoneInfo("UTC"))

        message = await quota.check(
            user_id=TEST_USER_ID,
            feature_id=feature.id,
            max_per_day=2,
            max_per_month=None,
            now=now,
        )

        assert message == DAILY_LIMIT_MESSAGE

    async def test_daily_cap_resets_next_day(self, db_session) -> None:
        """The same attempts stop counting once the day rolls over."""
        now = datetime(2025, 3, 12, 23, 59, tzinfo=UTC)
        feature = await _feature_with_attempts(db_session, [now, now])
        quota = QuotaEnforcer(db_session, zone=ZoneInfo("UTC"))

        kwargs = {
            "user_id": TEST_USER_ID,
            "feature_id": feature.id,
            "max_per_day": 2,
            "max_per_month": None,
        }
        assert await quota.check(now=now, **kwargs) == DAILY_LIMIT_MESSAGE
        assert await quota.check(now=now + timedelta(minutes=2), **kwargs) is None

    async def test_monthly_cap_met(self, db_session) -> None:
        now = datetime(2025, 3, 12, 12, 0, tzinfo=UTC)
        feature = await _feature_with_attempts(
            db_session,
            [now - timedelta(days=3), now - timedelta(days=2), now - timedelta(days=20)],
        )
        quota = QuotaEnforcer(db_session, zone=ZoneInfo("UTC"))

        message = await quota.check(
            user_id=TEST_USER_ID,
            feature_id=feature.id,
            max_per_day=5,
            max_per_month=2,
            now=now,
        )

        assert message == MONTHLY_LIMIT_MESSAGE
