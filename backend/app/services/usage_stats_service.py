"""Usage statistics for the admin catalog: per-feature and per-provider.

Reads over the usage log for a trailing window (STATS_WINDOW_DAYS) ending
now. Every logged attempt counts toward request totals; only successful
ones carry credits.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models.base import utc_now
from app.models.catalog import Feature, Provider
from app.repositories.feature_repository import FeatureRepository
from app.repositories.provider_repository import ProviderRepository
from app.repositories.subscription_repository import SubscriptionRepository
from app.repositories.usage_repository import TenantUsage, UsageRepository, UsageTotals

STATS_WINDOW_DAYS = 30
TOP_TENANTS_LIMIT = 5


@dataclass(frozen=True)
class FeatureStats:
    """Usage of one feature over the stats window."""

    feature: Feature
    usage: UsageTotals
    active_subscriptions: int
    top_tenants: list[TenantUsage]
    period_start: datetime
    period_end: datetime


@dataclass(frozen=True)
class ProviderStats:
    """Usage routed through one provider over the stats window."""

    provider: Provider
    usage: UsageTotals
    feature_count: int
    period_start: datetime
    period_end: datetime


class UsageStatsService:
    """Builds admin usage statistics.

    Args:
        db: Async database session.
        now: Clock returning aware UTC datetimes.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._now = now

    def _window(self) -> tuple[datetime, datetime]:
        period_end = self._now()
        return period_end - timedelta(days=STATS_WINDOW_DAYS), period_end

    async def feature_stats(self, feature_id: uuid.UUID) -> FeatureStats:
        """Totals, active subscriptions and top tenants for a feature.

        Raises:
            NotFoundError: If the feature does not exist.
        """
        feature = await FeatureRepository.get_by_id(self._db, feature_id)
        if feature is None:
            raise NotFoundError("Feature", str(feature_id))

        period_start, period_end = self._window()
        usage = await UsageRepository.get_totals(
            self._db,
            period_start=period_start,
            feature_id=feature_id,
        )
        top_tenants = await UsageRepository.top_tenants(
            self._db,
            feature_id=feature_id,
            period_start=period_start,
            limit=TOP_TENANTS_LIMIT,
        )
        return FeatureStats(
            feature=feature,
            usage=usage,
            active_subscriptions=await SubscriptionRepository.count_enabled_for_feature(
                self._db, feature_id
            ),
            top_tenants=top_tenants,
            period_start=period_start,
            period_end=period_end,
        )

    async def provider_stats(self, provider_id: uuid.UUID) -> ProviderStats:
        """Totals and feature count for a provider.

        Raises:
            NotFoundError: If the provider does not exist.
        """
        provider = await ProviderRepository.get_by_id(self._db, provider_id)
        if provider is None:
            raise NotFoundError("Provider", str(provider_id))

        period_start, period_end = self._window()
        usage = await UsageRepository.get_totals(
            self._db,
            period_start=period_start,
            provider_id=provider_id,
        )
        return ProviderStats(
            provider=provider,
            usage=usage,
            feature_count=await ProviderRepository.count_features(self._db, provider_id),
            period_start=period_start,
            period_end=period_end,
        )
