"""Repository for tenant subscriptions and per-user access overrides.

Provides database access for the tenant_feature_subscriptions and
user_feature_access tables.
"""

import uuid
from typing import Any, cast

from sqlalchemy import delete, func, select
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.catalog import Feature
from app.models.entitlement import Subscription, UserAccess


class SubscriptionRepository:
    """Stateless repository for Subscription and UserAccess operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    # =========================================================================
    # Subscriptions
    # =========================================================================

    @staticmethod
    async def get(
        db: AsyncSession,
        *,
        tenant_id: str,
        feature_id: uuid.UUID,
    ) -> Subscription | None:
        """Fetch the tenant's subscription to a feature."""
        stmt = select(Subscription).where(
            Subscription.tenant_id == tenant_id,
            Subscription.feature_id == feature_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_with_features(
        db: AsyncSession,
        tenant_id: str,
    ) -> list[tuple[Subscription, Feature]]:
        """All of a tenant's subscriptions joined with their features.

        Returns:
            List of (subscription, feature) pairs ordered by feature key.
        """
        stmt = (
            select(Subscription, Feature)
            .join(Feature, Feature.id == Subscription.feature_id)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Feature.feature_key)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    @staticmethod
    async def upsert(
        db: AsyncSession,
        *,
        tenant_id: str,
        feature_id: uuid.UUID,
        **fields: Any,
    ) -> Subscription:
        """Create or replace the tenant's subscription to a feature.

        Args:
            db: Async database session.
            tenant_id: Subscribing tenant.
            feature_id: Feature subscribed to.
            **fields: is_enabled, expires_at, custom_credits_per_use,
                max_usage_per_day, max_usage_per_month.

        Returns:
            The created or updated Subscription.
        """
        subscription = await SubscriptionRepository.get(
            db, tenant_id=tenant_id, feature_id=feature_id
        )
        if subscription is None:
            subscription = Subscription(tenant_id=tenant_id, feature_id=feature_id, **fields)
            db.add(subscription)
        else:
            for field, value in fields.items():
                setattr(subscription, field, value)
        await db.flush()
        await db.refresh(subscription)
        return subscription

    @staticmethod
    async def delete_for_tenants(
        db: AsyncSession,
        *,
        feature_id: uuid.UUID,
        tenant_ids: list[str],
    ) -> int:
        """Delete a feature's subscriptions for the given tenants.

        Returns:
            Number of subscriptions removed.
        """
        stmt = delete(Subscription).where(
            Subscription.feature_id == feature_id,
            Subscription.tenant_id.in_(tenant_ids),
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        return result.rowcount

    @staticmethod
    async def count_for_feature(db: AsyncSession, feature_id: uuid.UUID) -> int:
        """Number of tenants subscribed to a feature."""
        stmt = (
            select(func.count())
            .select_from(Subscription)
            .where(Subscription.feature_id == feature_id)
        )
        return (await db.execute(stmt)).scalar_one()

    @staticmethod
    async def count_enabled_for_feature(db: AsyncSession, feature_id: uuid.UUID) -> int:
        """Number of tenants with an enabled subscription to a feature."""
        stmt = (
            select(func.count())
            .select_from(Subscription)
            .where(
                Subscription.feature_id == feature_id,
                Subscription.is_enabled.is_(True),
            )
        )
        return (await db.execute(stmt)).scalar_one()

    # =========================================================================
    # User access overrides
    # =========================================================================

    @staticmethod
    async def get_user_access(
        db: AsyncSession,
        *,
        user_id: str,
        feature_id: uuid.UUID,
    ) -> UserAccess | None:
        """Fetch a user's access override for a feature."""
        stmt = select(UserAccess).where(
            UserAccess.user_id == user_id,
            UserAccess.feature_id == feature_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert_user_access(
        db: AsyncSession,
        *,
        user_id: str,
        tenant_id: str,
        feature_id: uuid.UUID,
        is_enabled: bool,
        max_usage_per_day: int | None,
        max_usage_per_month: int | None,
    ) -> UserAccess:
        """Create or replace a user's access override for a feature."""
        access = await SubscriptionRepository.get_user_access(
            db, user_id=user_id, feature_id=feature_id
        )
        if access is None:
            access = UserAccess(user_id=user_id, feature_id=feature_id)
            db.add(access)
        access.tenant_id = tenant_id
        access.is_enabled = is_enabled
        access.max_usage_per_day = max_usage_per_day
        access.max_usage_per_month = max_usage_per_month
        await db.flush()
        await db.refresh(access)
        return access

    @staticmethod
    async def delete_user_access(
        db: AsyncSession,
        *,
        user_id: str,
        feature_id: uuid.UUID,
    ) -> bool:
        """Remove a user's access override.

        Returns:
            True if an override existed and was removed.
        """
        stmt = delete(UserAccess).where(
            UserAccess.user_id == user_id,
            UserAccess.feature_id == feature_id,
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        return result.rowcount > 0
