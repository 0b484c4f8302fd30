"""Quota enforcer: per-user daily and monthly invocation caps.

Counts are live counts of usage log rows (every attempt) since the start of
the current day or month in the configured quota time zone.
"""

import uuid
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.repositories.usage_repository import UsageRepository

DAILY_LIMIT_MESSAGE = "Daily usage limit reached"
MONTHLY_LIMIT_MESSAGE = "Monthly usage limit reached"


class QuotaEnforcer:
    """Computes quota windows and usage counts.

    Args:
        db: Async database session.
        zone: Time zone for window boundaries (defaults to QUOTA_TIMEZONE).
    """

    def __init__(self, db: AsyncSession, *, zone: ZoneInfo | None = None) -> None:
        self._db = db
        self._zone = zone or settings.quota_zone

    def day_start(self, now: datetime) -> datetime:
        """Start of the local day containing now, as a UTC instant."""
        local = now.astimezone(self._zone)
        start = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return start.astimezone(UTC)

    def month_start(self, now: datetime) -> datetime:
        """Start of the local month containing now, as a UTC instant."""
        local = now.astimezone(self._zone)
        start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return start.astimezone(UTC)

    async def count_usage(
        self,
        user_id: str,
        feature_id: uuid.UUID,
        window_start: datetime,
    ) -> int:
        """Number of the user's attempts at the feature since window_start."""
        return await UsageRepository.count_since(
            self._db,
            user_id=user_id,
            feature_id=feature_id,
            since=window_start,
        )

    async def check(
        self,
        *,
        user_id: str,
        feature_id: uuid.UUID,
        max_per_day: int | None,
        max_per_month: int | None,
        now: datetime,
    ) -> str | None:
        """Check both caps.

        Returns:
            A denial message when a cap is reached, None otherwise.
        """
        if max_per_day is not None:
            daily = await self.count_usage(user_id, feature_id, self.day_start(now))
            if daily >= max_per_day:
                return DAILY_LIMIT_MESSAGE
        if max_per_month is not None:
            monthly = await self.count_usage(user_id, feature_id, self.month_start(now))
            if monthly >= max_per_month:
                return MONTHLY_LIMIT_MESSAGE
        return None
