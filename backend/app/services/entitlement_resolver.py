"""Entitlement resolver: may this tenant user invoke this feature now?

Checks run in a fixed order and stop at the first failure:
1. Feature published and its provider active.
2. Tenant subscription present, enabled and not expired.
3. User access override not disabled.
4. User daily/monthly caps not reached.
5. Price: subscription override, else feature default, else 1.
6. Balance covers the price (advisory; settlement re-checks atomically).

The only side effect is a credits_depleted alert when step 6 fails.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import EntitlementDeniedError
from app.models.alert import AlertSeverity, AlertType
from app.models.base import utc_now
from app.models.catalog import Feature, FeatureStatus, Provider, ProviderStatus
from app.models.entitlement import Subscription
from app.providers.base import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TEMPERATURE,
    PromptConfig,
    ProviderConnection,
)
from app.repositories.credit_repository import CreditRepository
from app.repositories.feature_repository import FeatureRepository
from app.repositories.subscription_repository import SubscriptionRepository
from app.services.alert_service import AlertService
from app.services.quota_enforcer import QuotaEnforcer

logger = logging.getLogger(__name__)

DEFAULT_CREDITS_PER_USE = 1


class DenialCode(str, Enum):
    """Reasons an invocation is refused, in check order."""

    FEATURE_UNAVAILABLE = "FEATURE_UNAVAILABLE"
    SUBSCRIPTION_MISSING = "SUBSCRIPTION_MISSING"
    SUBSCRIPTION_DISABLED = "SUBSCRIPTION_DISABLED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    USER_ACCESS_DENIED = "USER_ACCESS_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"


# =============================================================================
# Resolution results
# =============================================================================


@dataclass(frozen=True)
class ResolvedFeature:
    """Feature fields needed after resolution."""

    id: uuid.UUID
    feature_key: str
    display_name: str
    description: str | None
    category: str
    provider_id: uuid.UUID
    provider_display_name: str


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Subscription fields at resolution time."""

    id: uuid.UUID
    is_enabled: bool
    expires_at: datetime | None
    custom_credits_per_use: int | None
    max_usage_per_day: int | None
    max_usage_per_month: int | None


@dataclass(frozen=True)
class Allowed:
    """Invocation may proceed with these fully-resolved snapshots."""

    feature: ResolvedFeature
    connection: ProviderConnection
    prompt: PromptConfig
    subscription: SubscriptionSnapshot
    balance: int
    credits_required: int


@dataclass(frozen=True)
class Denied:
    """Invocation refused."""

    code: DenialCode
    message: str
    details: list[dict[str, Any]] | None = None

    def to_error(self) -> EntitlementDeniedError:
        """Convert to the API error carrying the same code."""
        return EntitlementDeniedError(
            code=self.code.value,
            message=self.message,
            details=self.details,
        )


Resolution = Allowed | Denied


@dataclass(frozen=True)
class AvailableFeature:
    """Entitled feature with its effective price for the tenant."""

    feature: ResolvedFeature
    credits_per_use: int


def credits_required_for(feature: Feature, subscription: Subscription) -> int:
    """Subscription override, else feature default, else 1."""
    if subscription.custom_credits_per_use is not None:
        return subscription.custom_credits_per_use
    if feature.credits_per_use is not None:
        return feature.credits_per_use
    return DEFAULT_CREDITS_PER_USE


def _snapshot_feature(feature: Feature) -> ResolvedFeature:
    return ResolvedFeature(
        id=feature.id,
        feature_key=feature.feature_key,
        display_name=feature.display_name,
        description=feature.description,
        category=feature.category,
        provider_id=feature.provider_id,
        provider_display_name=feature.provider.display_name,
    )


def _snapshot_prompt(feature: Feature) -> PromptConfig:
    return PromptConfig(
        model_name=feature.model_name,
        system_prompt=feature.system_prompt,
        user_prompt_template=feature.user_prompt_template,
        max_output_tokens=(
            feature.max_output_tokens
            if feature.max_output_tokens is not None
            else DEFAULT_MAX_OUTPUT_TOKENS
        ),
        temperature=(
            feature.temperature if feature.temperature is not None else DEFAULT_TEMPERATURE
        ),
    )


def connection_for(provider: Provider) -> ProviderConnection:
    """Connection settings of a provider row."""
    return ProviderConnection(
        provider_type=provider.provider_type,
        api_key=provider.api_key,
        api_endpoint=provider.api_endpoint,
        api_version=provider.api_version,
        organization_id=provider.organization_id,
        default_model=provider.default_model,
        supports_vision=provider.supports_vision,
    )


def _snapshot_subscription(subscription: Subscription) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(
        id=subscription.id,
        is_enabled=subscription.is_enabled,
        expires_at=subscription.expires_at,
        custom_credits_per_use=subscription.custom_credits_per_use,
        max_usage_per_day=subscription.max_usage_per_day,
        max_usage_per_month=subscription.max_usage_per_month,
    )


class EntitlementResolver:
    """Decides whether an invocation is allowed.

    Args:
        db: Async database session.
        now: Clock returning aware UTC datetimes.
        quota: Quota enforcer (defaults to one on the same session).
        alerts: Alert service (defaults to one on the same session).
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        now: Callable[[], datetime] = utc_now,
        quota: QuotaEnforcer | None = None,
        alerts: AlertService | None = None,
    ) -> None:
        self._db = db
        self._now = now
        self._quota = quota or QuotaEnforcer(db)
        self._alerts = alerts or AlertService(db, now=now)

    async def resolve(
        self,
        tenant_id: str,
        user_id: str,
        feature_id: uuid.UUID,
    ) -> Resolution:
        """Run every entitlement check for one invocation.

        Args:
            tenant_id: Calling tenant.
            user_id: Calling user.
            feature_id: Feature requested.

        Returns:
            Allowed with resolved snapshots, or Denied with the first
            failing check.
        """
        now = self._now()

        feature = await FeatureRepository.get_by_id(self._db, feature_id)
        if (
            feature is None
            or feature.status != FeatureStatus.PUBLISHED.value
            or feature.provider.status != ProviderStatus.ACTIVE.value
        ):
            return Denied(DenialCode.FEATURE_UNAVAILABLE, "Feature not available")

        subscription = await SubscriptionRepository.get(
            self._db, tenant_id=tenant_id, feature_id=feature_id
        )
        if subscription is None:
            return Denied(
                DenialCode.SUBSCRIPTION_MISSING,
                "Tenant does not have access to this feature",
            )
        if not subscription.is_enabled:
            return Denied(
                DenialCode.SUBSCRIPTION_DISABLED,
                "Tenant access to this feature is disabled",
            )
        if subscription.expires_at is not None and subscription.expires_at <= now:
            return Denied(
                DenialCode.SUBSCRIPTION_EXPIRED,
                "Feature subscription has expired",
            )

        access = await SubscriptionRepository.get_user_access(
            self._db, user_id=user_id, feature_id=feature_id
        )
        if access is not None:
            if not access.is_enabled:
                return Denied(
                    DenialCode.USER_ACCESS_DENIED,
                    "User does not have access to this feature",
                )
            if access.max_usage_per_day is not None or access.max_usage_per_month is not None:
                quota_message = await self._quota.check(
                    user_id=user_id,
                    feature_id=feature_id,
                    max_per_day=access.max_usage_per_day,
                    max_per_month=access.max_usage_per_month,
                    now=now,
                )
                if quota_message is not None:
                    return Denied(DenialCode.QUOTA_EXCEEDED, quota_message)

        credits_required = credits_required_for(feature, subscription)
        balance = await CreditRepository.get_balance(self._db, tenant_id)
        if balance < credits_required:
            await self._alerts.raise_if_needed(
                tenant_id=tenant_id,
                alert_type=AlertType.CREDITS_DEPLETED,
                severity=AlertSeverity.HIGH,
                message=(
                    "Tenant credits depleted. Cannot use feature: "
                    f"{feature.display_name}"
                ),
                details={
                    "feature_id": str(feature.id),
                    "feature_name": feature.display_name,
                    "credits_required": credits_required,
                    "credits_available": balance,
                },
            )
            logger.info(
                "Denied feature %s for tenant %s: %d credits required, %d available",
                feature.feature_key,
                tenant_id,
                credits_required,
                balance,
            )
            return Denied(
                DenialCode.INSUFFICIENT_CREDITS,
                "Insufficient credits. Please contact your administrator.",
                details=[
                    {"credits_required": credits_required, "credits_available": balance}
                ],
            )

        return Allowed(
            feature=_snapshot_feature(feature),
            connection=connection_for(feature.provider),
            prompt=_snapshot_prompt(feature),
            subscription=_snapshot_subscription(subscription),
            balance=balance,
            credits_required=credits_required,
        )

    async def list_available(self, tenant_id: str) -> list[AvailableFeature]:
        """Features the tenant can currently invoke, ignoring user caps and credits.

        A feature is listed when its subscription is enabled and unexpired,
        the feature is published and its provider is active.
        """
        now = self._now()
        pairs = await SubscriptionRepository.list_with_features(self._db, tenant_id)
        return [
            AvailableFeature(
                feature=_snapshot_feature(feature),
                credits_per_use=credits_required_for(feature, subscription),
            )
            for subscription, feature in pairs
            if subscription.is_enabled
            and (subscription.expires_at is None or subscription.expires_at > now)
            and feature.status == FeatureStatus.PUBLISHED.value
            and feature.provider.status == ProviderStatus.ACTIVE.value
        ]
