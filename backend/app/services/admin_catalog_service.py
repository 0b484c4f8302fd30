"""Admin catalog service: providers, features and tenant entitlements.

Business logic for the admin write side of the feature catalog: provider
CRUD and connectivity tests, the feature lifecycle
(draft → published → deprecated → archived), tenant assignment and
per-user access overrides.

Credit administration lives in CreditLedger; alert administration in
AlertService.
"""

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import unit_of_work
from app.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.models.base import utc_now
from app.models.catalog import Feature, FeatureStatus, Provider, ProviderStatus
from app.models.entitlement import Subscription, UserAccess
from app.providers.registry import AdapterRegistry
from app.repositories.feature_repository import FeatureRepository
from app.repositories.provider_repository import ProviderRepository
from app.repositories.subscription_repository import SubscriptionRepository
from app.repositories.usage_repository import UsageRepository
from app.services.entitlement_resolver import connection_for

logger = logging.getLogger(__name__)

FEATURE_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")


@dataclass(frozen=True)
class ConnectionTestResult:
    """Outcome of POST /admin/providers/{id}/test."""

    success: bool
    message: str
    latency_ms: int
    tested_at: datetime


class AdminCatalogService:
    """Admin operations on the feature catalog.

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

    # -----------------------------------------------------------------------
    # Providers
    # -----------------------------------------------------------------------

    async def list_providers(
        self,
        *,
        status: str | None = None,
        provider_type: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Provider], int]:
        """List providers with optional filters.

        Returns:
            Tuple of (providers, total count).
        """
        return await ProviderRepository.list_providers(
            self._db,
            status=status,
            provider_type=provider_type,
            offset=offset,
            limit=limit,
        )

    async def get_provider(self, provider_id: uuid.UUID) -> Provider:
        """Fetch a provider.

        Raises:
            NotFoundError: If the provider does not exist.
        """
        provider = await ProviderRepository.get_by_id(self._db, provider_id)
        if provider is None:
            raise NotFoundError("Provider", str(provider_id))
        return provider

    async def create_provider(self, *, provider_name: str, **fields: Any) -> Provider:
        """Register a provider. New providers start inactive.

        Args:
            provider_name: Unique slug.
            **fields: Remaining Provider columns (display_name, provider_type,
                api_key, api_endpoint, ...).

        Returns:
            Created Provider.

        Raises:
            ConflictError: DUPLICATE_PROVIDER if the name is taken.
        """
        if await ProviderRepository.get_by_name(self._db, provider_name) is not None:
            raise ConflictError(
                code="DUPLICATE_PROVIDER",
                message=f"Provider '{provider_name}' already exists",
            )
        fields.pop("status", None)
        provider = await ProviderRepository.create(
            self._db,
            provider_name=provider_name,
            status=ProviderStatus.INACTIVE.value,
            **fields,
        )
        logger.info("Created provider %s (%s)", provider.provider_name, provider.provider_type)
        return provider

    async def update_provider(self, provider_id: uuid.UUID, **fields: Any) -> Provider:
        """Update provider settings, including status.

        Raises:
            NotFoundError: If the provider does not exist.
        """
        provider = await self.get_provider(provider_id)
        return await ProviderRepository.update(self._db, provider, **fields)

    async def delete_provider(self, provider_id: uuid.UUID) -> bool:
        """Delete a provider, or deactivate it while features reference it.

        Returns:
            True if the row was deleted, False if it was only deactivated.

        Raises:
            NotFoundError: If the provider does not exist.
        """
        provider = await self.get_provider(provider_id)
        if await ProviderRepository.count_features(self._db, provider_id) > 0:
            await ProviderRepository.update(
                self._db, provider, status=ProviderStatus.INACTIVE.value
            )
            logger.info(
                "Deactivated provider %s instead of deleting (has features)",
                provider.provider_name,
            )
            return False

        await ProviderRepository.delete(self._db, provider)
        logger.info("Deleted provider %s", provider.provider_name)
        return True

    # -----------------------------------------------------------------------
    # Features
    # -----------------------------------------------------------------------

    async def list_features(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
        provider_id: uuid.UUID | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Feature], int]:
        """List features with optional filters.

        Returns:
            Tuple of (features, total count).
        """
        return await FeatureRepository.list_features(
            self._db,
            status=status,
            category=category,
            provider_id=provider_id,
            offset=offset,
            limit=limit,
        )

    async def get_feature(self, feature_id: uuid.UUID) -> Feature:
        """Fetch a feature with its provider.

        Raises:
            NotFoundError: If the feature does not exist.
        """
        feature = await FeatureRepository.get_by_id(self._db, feature_id)
        if feature is None:
            raise NotFoundError("Feature", str(feature_id))
        return feature

    async def create_feature(
        self,
        *,
        feature_key: str,
        provider_id: uuid.UUID,
        **fields: Any,
    ) -> Feature:
        """Create a feature in draft status.

        Raises:
            ValidationError: If the key is not lowercase [a-z0-9_].
            NotFoundError: If the provider does not exist.
            ConflictError: DUPLICATE_FEATURE if the key is taken.
        """
        if not FEATURE_KEY_PATTERN.match(feature_key):
            raise ValidationError(
                "feature_key may only contain lowercase letters, digits and underscores"
            )
        await self.get_provider(provider_id)
        if await FeatureRepository.get_by_key(self._db, feature_key) is not None:
            raise ConflictError(
                code="DUPLICATE_FEATURE",
                message=f"Feature '{feature_key}' already exists",
            )

        fields.pop("status", None)
        feature = await FeatureRepository.create(
            self._db,
            feature_key=feature_key,
            provider_id=provider_id,
            status=FeatureStatus.DRAFT.value,
            **fields,
        )
        logger.info("Created feature %s", feature.feature_key)
        return feature

    async def update_feature(self, feature_id: uuid.UUID, **fields: Any) -> Feature:
        """Update feature settings.

        Moving a feature to published goes through the same checks as
        publish_feature().

        Raises:
            NotFoundError: If the feature or a new provider does not exist.
            InvalidStateError: If publishing is not allowed.
        """
        feature = await self.get_feature(feature_id)
        if fields.get("provider_id") is not None:
            await self.get_provider(fields["provider_id"])

        new_status = fields.pop("status", None)
        if fields:
            feature = await FeatureRepository.update(self._db, feature, **fields)
        if new_status == FeatureStatus.PUBLISHED.value:
            return await self.publish_feature(feature_id)
        if new_status == FeatureStatus.DEPRECATED.value:
            return await self.deprecate_feature(feature_id)
        if new_status is not None and new_status != feature.status:
            feature = await FeatureRepository.update(self._db, feature, status=new_status)
        return feature

    async def delete_feature(self, feature_id: uuid.UUID) -> bool:
        """Delete a feature, or archive it once it has been used or assigned.

        Returns:
            True if the row was deleted, False if it was archived.

        Raises:
            NotFoundError: If the feature does not exist.
        """
        feature = await self.get_feature(feature_id)
        in_use = (
            await SubscriptionRepository.count_for_feature(self._db, feature_id) > 0
            or await UsageRepository.exists_for_feature(self._db, feature_id)
        )
        if in_use:
            await FeatureRepository.update(
                self._db, feature, status=FeatureStatus.ARCHIVED.value
            )
            logger.info("Archived feature %s instead of deleting", feature.feature_key)
            return False

        await FeatureRepository.delete(self._db, feature)
        logger.info("Deleted feature %s", feature.feature_key)
        return True

    async def publish_feature(self, feature_id: uuid.UUID) -> Feature:
        """Make a feature invokable.

        Raises:
            NotFoundError: If the feature does not exist.
            InvalidStateError: If the feature is archived or its provider is
                not active.
        """
        feature = await self.get_feature(feature_id)
        if feature.status == FeatureStatus.ARCHIVED.value:
            raise InvalidStateError("Archived features cannot be published")
        if feature.provider.status != ProviderStatus.ACTIVE.value:
            raise InvalidStateError("Provider must be active to publish this feature")
        if feature.status == FeatureStatus.PUBLISHED.value:
            return feature

        feature = await FeatureRepository.update(
            self._db,
            feature,
            status=FeatureStatus.PUBLISHED.value,
            published_at=self._now(),
        )
        logger.info("Published feature %s", feature.feature_key)
        return feature

    async def deprecate_feature(self, feature_id: uuid.UUID) -> Feature:
        """Withdraw a published feature.

        Raises:
            NotFoundError: If the feature does not exist.
            InvalidStateError: If the feature is not published.
        """
        feature = await self.get_feature(feature_id)
        if feature.status == FeatureStatus.DEPRECATED.value:
            return feature
        if feature.status != FeatureStatus.PUBLISHED.value:
            raise InvalidStateError("Only published features can be deprecated")

        feature = await FeatureRepository.update(
            self._db,
            feature,
            status=FeatureStatus.DEPRECATED.value,
            deprecated_at=self._now(),
        )
        logger.info("Deprecated feature %s", feature.feature_key)
        return feature

    # -----------------------------------------------------------------------
    # Tenant assignment
    # -----------------------------------------------------------------------

    async def assign_feature(
        self,
        feature_id: uuid.UUID,
        tenant_ids: list[str],
        **subscription_fields: Any,
    ) -> list[Subscription]:
        """Subscribe tenants to a published feature (create or replace).

        Args:
            feature_id: Feature to assign.
            tenant_ids: Tenants to subscribe.
            **subscription_fields: is_enabled, expires_at,
                custom_credits_per_use, max_usage_per_day, max_usage_per_month.

        Raises:
            NotFoundError: If the feature does not exist.
            InvalidStateError: If the feature is not published.
        """
        feature = await self.get_feature(feature_id)
        if feature.status != FeatureStatus.PUBLISHED.value:
            raise InvalidStateError("Only published features can be assigned to tenants")

        subscriptions = [
            await SubscriptionRepository.upsert(
                self._db,
                tenant_id=tenant_id,
                feature_id=feature_id,
                **subscription_fields,
            )
            for tenant_id in dict.fromkeys(tenant_ids)
        ]
        logger.info(
            "Assigned feature %s to %d tenant(s)", feature.feature_key, len(subscriptions)
        )
        return subscriptions

    async def unassign_feature(self, feature_id: uuid.UUID, tenant_ids: list[str]) -> int:
        """Remove tenants' subscriptions to a feature.

        Returns:
            Number of subscriptions removed.

        Raises:
            NotFoundError: If the feature does not exist.
        """
        feature = await self.get_feature(feature_id)
        removed = await SubscriptionRepository.delete_for_tenants(
            self._db, feature_id=feature_id, tenant_ids=tenant_ids
        )
        logger.info("Unassigned feature %s from %d tenant(s)", feature.feature_key, removed)
        return removed

    # -----------------------------------------------------------------------
    # Per-user access overrides
    # -----------------------------------------------------------------------

    async def set_user_access(
        self,
        feature_id: uuid.UUID,
        user_id: str,
        *,
        tenant_id: str,
        is_enabled: bool = True,
        max_usage_per_day: int | None = None,
        max_usage_per_month: int | None = None,
    ) -> UserAccess:
        """Create or replace a user's override for a feature.

        Raises:
            NotFoundError: If the feature does not exist.
        """
        await self.get_feature(feature_id)
        return await SubscriptionRepository.upsert_user_access(
            self._db,
            user_id=user_id,
            tenant_id=tenant_id,
            feature_id=feature_id,
            is_enabled=is_enabled,
            max_usage_per_day=max_usage_per_day,
            max_usage_per_month=max_usage_per_month,
        )

    async def remove_user_access(self, feature_id: uuid.UUID, user_id: str) -> None:
        """Drop a user's override so they inherit the tenant entitlement.

        Raises:
            NotFoundError: If no override exists.
        """
        removed = await SubscriptionRepository.delete_user_access(
            self._db, user_id=user_id, feature_id=feature_id
        )
        if not removed:
            raise NotFoundError("User access")


class ProviderConnectionTester:
    """Runs a provider connectivity test with no transaction open during the call.

    The provider is read in one unit of work and its health fields are
    written in a second one; the vendor call runs in between. A passing
    test marks the provider active and clears the error counter; a failing
    one marks it error and increments the counter.

    Args:
        session_factory: Factory for short-lived sessions.
        registry: Provider adapter registry.
        now: Clock returning aware UTC datetimes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: AdapterRegistry,
        *,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._now = now

    async def run(self, provider_id: uuid.UUID) -> ConnectionTestResult:
        """Test a provider's connection and record its health.

        Raises:
            NotFoundError: If the provider does not exist.
        """
        async with unit_of_work(self._session_factory) as db:
            provider = await AdminCatalogService(db, now=self._now).get_provider(provider_id)
            provider_type = provider.provider_type
            connection = connection_for(provider)

        probe = await self._registry.get(provider_type).probe(connection)
        tested_at = self._now()

        async with unit_of_work(self._session_factory) as db:
            provider = await AdminCatalogService(db, now=self._now).get_provider(provider_id)
            await ProviderRepository.update(
                db,
                provider,
                status=(
                    ProviderStatus.ACTIVE.value if probe.success else ProviderStatus.ERROR.value
                ),
                last_health_check=tested_at,
                last_error=None if probe.success else probe.message,
                error_count=0 if probe.success else provider.error_count + 1,
            )
            logger.info(
                "Connection test for provider %s: %s",
                provider.provider_name,
                "passed" if probe.success else "failed",
            )

        return ConnectionTestResult(
            success=probe.success,
            message=probe.message,
            latency_ms=probe.latency_ms,
            tested_at=tested_at,
        )
