"""Admin API request/response schemas.

Pydantic models for the admin endpoints: providers, features, tenant
assignment, per-user access overrides, credits and alerts.

All request schemas use ConfigDict(extra="forbid") to reject unexpected
fields. Provider credentials never appear in responses; only a masked
suffix is returned.
"""

import re
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.catalog import (
    FeatureCategory,
    FeatureStatus,
    ProviderStatus,
    ProviderType,
)
from app.models.ledger import TransactionType

_PROVIDER_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
_FEATURE_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")

_VALID_PROVIDER_TYPES = frozenset(t.value for t in ProviderType)
_VALID_PROVIDER_STATUSES = frozenset(s.value for s in ProviderStatus)
_VALID_FEATURE_STATUSES = frozenset(s.value for s in FeatureStatus)
_VALID_CATEGORIES = frozenset(c.value for c in FeatureCategory)
_VALID_TOP_UP_TYPES = frozenset(
    {
        TransactionType.PURCHASE.value,
        TransactionType.BONUS.value,
        TransactionType.REFUND.value,
    }
)

# Tenant and user ids come from the upstream identity layer
_MAX_ID_LEN = 100


def _one_of(value: str, allowed: frozenset[str], field_name: str) -> str:
    """Validate value is in the allowed set."""
    if value not in allowed:
        msg = f"{field_name} must be one of: {', '.join(sorted(allowed))}"
        raise ValueError(msg)
    return value


def _check_tenant_ids(value: list[str]) -> list[str]:
    """Validate a non-empty list of tenant ids."""
    if not value:
        msg = "tenant_ids must not be empty"
        raise ValueError(msg)
    for tenant_id in value:
        if not tenant_id or len(tenant_id) > _MAX_ID_LEN:
            msg = f"tenant ids must be 1-{_MAX_ID_LEN} characters"
            raise ValueError(msg)
    return value


def mask_api_key(api_key: str | None) -> str | None:
    """Show only the last four characters of a credential."""
    if not api_key:
        return None
    if len(api_key) <= 4:
        return "***"
    return f"***{api_key[-4:]}"


# =============================================================================
# Providers
# =============================================================================


class ProviderCreate(BaseModel):
    """Request schema for POST /admin/providers.

    New providers always start inactive; test the connection to activate.
    """

    model_config = ConfigDict(extra="forbid")

    provider_name: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    provider_type: str
    api_key: str | None = Field(default=None, max_length=500)
    api_endpoint: str | None = Field(default=None, max_length=500)
    api_version: str | None = Field(default=None, max_length=50)
    organization_id: str | None = Field(default=None, max_length=255)
    default_model: str | None = Field(default=None, max_length=100)
    supports_vision: bool = False

    @field_validator("provider_name")
    @classmethod
    def check_provider_name(cls, v: str) -> str:
        if not _PROVIDER_NAME_PATTERN.match(v):
            msg = "provider_name may only contain lowercase letters, digits, '-' and '_'"
            raise ValueError(msg)
        return v

    @field_validator("provider_type")
    @classmethod
    def check_provider_type(cls, v: str) -> str:
        return _one_of(v, _VALID_PROVIDER_TYPES, "provider_type")


class ProviderUpdate(BaseModel):
    """Request schema for PATCH /admin/providers/{id}.

    Only fields present in the body are changed.
    """

    model_config = ConfigDict(extra="forbid")

    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    provider_type: str | None = None
    api_key: str | None = Field(default=None, max_length=500)
    api_endpoint: str | None = Field(default=None, max_length=500)
    api_version: str | None = Field(default=None, max_length=50)
    organization_id: str | None = Field(default=None, max_length=255)
    default_model: str | None = Field(default=None, max_length=100)
    supports_vision: bool | None = None
    status: str | None = None

    @field_validator("provider_type")
    @classmethod
    def check_provider_type(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _one_of(v, _VALID_PROVIDER_TYPES, "provider_type")

    @field_validator("status")
    @classmethod
    def check_status(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _one_of(v, _VALID_PROVIDER_STATUSES, "status")


class ProviderResponse(BaseModel):
    """Provider as returned by the admin API (credential masked)."""

    id: str
    provider_name: str
    display_name: str
    description: str | None
    provider_type: str
    api_key_masked: str | None
    api_endpoint: str | None
    api_version: str | None
    organization_id: str | None
    default_model: str | None
    supports_vision: bool
    status: str
    last_health_check: datetime | None
    last_error: str | None
    error_count: int
    created_at: datetime
    updated_at: datetime


class ConnectionTestResponse(BaseModel):
    """Response for POST /admin/providers/{id}/test."""

    success: bool
    message: str
    latency_ms: int
    tested_at: datetime


class DeleteResultResponse(BaseModel):
    """Outcome of a delete that may fall back to a soft state change.

    Attributes:
        deleted: True if the row was removed.
        status: Resulting status when the row was kept instead.
    """

    deleted: bool
    status: str | None = None


# =============================================================================
# Features
# =============================================================================


class FeatureCreate(BaseModel):
    """Request schema for POST /admin/features. Features start as draft."""

    model_config = ConfigDict(extra="forbid")

    feature_key: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: str = FeatureCategory.CUSTOM.value
    credits_per_use: int | None = Field(default=None, ge=0)
    provider_id: uuid.UUID
    model_name: str | None = Field(default=None, max_length=100)
    system_prompt: str | None = None
    user_prompt_template: str | None = None
    max_output_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0, le=2)

    @field_validator("feature_key")
    @classmethod
    def check_feature_key(cls, v: str) -> str:
        if not _FEATURE_KEY_PATTERN.match(v):
            msg = "feature_key may only contain lowercase letters, digits and underscores"
            raise ValueError(msg)
        return v

    @field_validator("category")
    @classmethod
    def check_category(cls, v: str) -> str:
        return _one_of(v, _VALID_CATEGORIES, "category")


class FeatureUpdate(BaseModel):
    """Request schema for PATCH /admin/features/{id}.

    feature_key is immutable. Only fields present in the body are changed.
    """

    model_config = ConfigDict(extra="forbid")

    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = None
    status: str | None = None
    credits_per_use: int | None = Field(default=None, ge=0)
    provider_id: uuid.UUID | None = None
    model_name: str | None = Field(default=None, max_length=100)
    system_prompt: str | None = None
    user_prompt_template: str | None = None
    max_output_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0, le=2)

    @field_validator("category")
    @classmethod
    def check_category(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _one_of(v, _VALID_CATEGORIES, "category")

    @field_validator("status")
    @classmethod
    def check_status(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _one_of(v, _VALID_FEATURE_STATUSES, "status")


class FeatureResponse(BaseModel):
    """Feature as returned by the admin API."""

    id: str
    feature_key: str
    display_name: str
    description: str | None
    category: str
    status: str
    credits_per_use: int | None
    provider_id: str
    provider_name: str
    model_name: str | None
    system_prompt: str | None
    user_prompt_template: str | None
    max_output_tokens: int | None
    temperature: float | None
    published_at: datetime | None
    deprecated_at: datetime | None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Usage statistics
# =============================================================================


class UsageTotalsResponse(BaseModel):
    """Usage log totals over the stats window."""

    total_requests: int
    successful_requests: int
    total_credits_used: int
    total_input_tokens: int
    total_output_tokens: int
    avg_processing_time_ms: int


class TopTenantResponse(BaseModel):
    """One tenant's share of a feature's usage."""

    tenant_id: str
    request_count: int
    credits_used: int


class FeatureStatsResponse(BaseModel):
    """Response for GET /admin/features/{id}/stats."""

    feature_id: str
    feature_key: str
    display_name: str
    status: str
    category: str
    usage: UsageTotalsResponse
    active_subscriptions: int
    top_tenants: list[TopTenantResponse]
    period_start: datetime
    period_end: datetime


class ProviderStatsResponse(BaseModel):
    """Response for GET /admin/providers/{id}/stats."""

    provider_id: str
    provider_name: str
    display_name: str
    status: str
    error_count: int
    usage: UsageTotalsResponse
    feature_count: int
    period_start: datetime
    period_end: datetime


# =============================================================================
# Tenant assignment and user access
# =============================================================================


class FeatureAssign(BaseModel):
    """Request schema for POST /admin/features/{id}/assign."""

    model_config = ConfigDict(extra="forbid")

    tenant_ids: list[str] = Field(max_length=1000)
    is_enabled: bool = True
    expires_at: datetime | None = None
    custom_credits_per_use: int | None = Field(default=None, ge=0)
    max_usage_per_day: int | None = Field(default=None, ge=1)
    max_usage_per_month: int | None = Field(default=None, ge=1)

    @field_validator("tenant_ids")
    @classmethod
    def check_tenant_ids(cls, v: list[str]) -> list[str]:
        return _check_tenant_ids(v)

    @field_validator("expires_at")
    @classmethod
    def check_expires_at_aware(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            msg = "expires_at must include a timezone"
            raise ValueError(msg)
        return v


class FeatureUnassign(BaseModel):
    """Request schema for POST /admin/features/{id}/unassign."""

    model_config = ConfigDict(extra="forbid")

    tenant_ids: list[str] = Field(max_length=1000)

    @field_validator("tenant_ids")
    @classmethod
    def check_tenant_ids(cls, v: list[str]) -> list[str]:
        return _check_tenant_ids(v)


class SubscriptionResponse(BaseModel):
    """A tenant's subscription to a feature."""

    id: str
    tenant_id: str
    feature_id: str
    is_enabled: bool
    expires_at: datetime | None
    custom_credits_per_use: int | None
    max_usage_per_day: int | None
    max_usage_per_month: int | None


class UnassignResponse(BaseModel):
    """Response for POST /admin/features/{id}/unassign."""

    removed: int


class UserAccessUpsert(BaseModel):
    """Request schema for PUT /admin/features/{id}/users/{user_id}."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: str = Field(min_length=1, max_length=_MAX_ID_LEN)
    is_enabled: bool = True
    max_usage_per_day: int | None = Field(default=None, ge=1)
    max_usage_per_month: int | None = Field(default=None, ge=1)


class UserAccessResponse(BaseModel):
    """A user's access override for a feature."""

    id: str
    user_id: str
    tenant_id: str
    feature_id: str
    is_enabled: bool
    max_usage_per_day: int | None
    max_usage_per_month: int | None


# =============================================================================
# Credits
# =============================================================================


class CreditBalanceResponse(BaseModel):
    """Response for GET /admin/tenants/{tenant_id}/credits."""

    tenant_id: str
    balance: int
    total_purchased: int
    total_used: int
    low_balance_threshold: int
    is_low_balance: bool
    last_used_at: datetime | None
    last_purchase_at: datetime | None


class CreditsAdd(BaseModel):
    """Request schema for POST /admin/tenants/{tenant_id}/credits/add."""

    model_config = ConfigDict(extra="forbid")

    credits: int = Field(ge=1)
    transaction_type: str = TransactionType.PURCHASE.value
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("transaction_type")
    @classmethod
    def check_transaction_type(cls, v: str) -> str:
        return _one_of(v, _VALID_TOP_UP_TYPES, "transaction_type")


class CreditsDeduct(BaseModel):
    """Request schema for POST /admin/tenants/{tenant_id}/credits/deduct."""

    model_config = ConfigDict(extra="forbid")

    credits: int = Field(ge=1)
    reason: str | None = Field(default=None, max_length=1000)


class CreditSettingsUpdate(BaseModel):
    """Request schema for PATCH /admin/tenants/{tenant_id}/credits/settings."""

    model_config = ConfigDict(extra="forbid")

    low_balance_threshold: int = Field(ge=0)


class CreditTransactionResponse(BaseModel):
    """One credit ledger entry."""

    id: str
    tenant_id: str
    amount: int
    transaction_type: str
    balance_after: int
    feature_id: str | None
    usage_log_id: str | None
    notes: str | None
    created_at: datetime


class CreditSummaryResponse(BaseModel):
    """Response for GET /admin/credits/summary.

    Attributes:
        low_balance_tenants: Tenants at or below their own alert threshold.
        unresolved_alerts: Open admin alerts of any type.
        top_consumers: Tenants with the highest lifetime usage.
        recent_transactions: Latest ledger entries across all tenants.
    """

    tenants_with_credits: int
    total_balance: int
    total_purchased: int
    total_used: int
    low_balance_tenants: int
    unresolved_alerts: int
    top_consumers: list[CreditBalanceResponse]
    recent_transactions: list[CreditTransactionResponse]


# =============================================================================
# Alerts
# =============================================================================


class AlertResponse(BaseModel):
    """Admin alert as returned by the admin API."""

    id: str
    alert_type: str
    severity: str
    tenant_id: str | None
    message: str
    details: dict | None
    is_resolved: bool
    resolved_at: datetime | None
    resolved_by: str | None
    resolution_notes: str | None
    created_at: datetime


class AlertResolve(BaseModel):
    """Request schema for POST /admin/alerts/{id}/resolve."""

    model_config = ConfigDict(extra="forbid")

    notes: str | None = Field(default=None, max_length=1000)
    resolved_by: str | None = Field(default=None, max_length=100)

