"""Admin API router.

CRUD endpoints for AI providers and features, tenant assignment, per-user
access overrides, tenant credit administration, and admin alerts. Read-only
reporting covers 30-day feature and provider usage and platform-wide
credit balances.

All endpoints require the AdminAccess dependency (X-Admin-Token).
Provider credentials are masked in every response.
"""

import uuid
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Path, Query, Response, status
from pydantic import BaseModel

from app.api.deps import AdminAccess, ConnectionTester, DbSession
from app.core.pagination import PaginationParams, pagination_params
from app.core.responses import DataResponse, ListResponse, PaginationMeta
from app.models.alert import AdminAlert
from app.models.catalog import Feature, FeatureStatus, Provider, ProviderStatus
from app.models.entitlement import Subscription, UserAccess
from app.models.ledger import CreditTransaction, TransactionType
from app.schemas.admin import (
    AlertResolve,
    AlertResponse,
    ConnectionTestResponse,
    CreditBalanceResponse,
    CreditSettingsUpdate,
    CreditsAdd,
    CreditsDeduct,
    CreditSummaryResponse,
    CreditTransactionResponse,
    DeleteResultResponse,
    FeatureAssign,
    FeatureCreate,
    FeatureResponse,
    FeatureStatsResponse,
    FeatureUnassign,
    FeatureUpdate,
    ProviderCreate,
    ProviderResponse,
    ProviderStatsResponse,
    ProviderUpdate,
    SubscriptionResponse,
    TopTenantResponse,
    UnassignResponse,
    UsageTotalsResponse,
    UserAccessResponse,
    UserAccessUpsert,
    mask_api_key,
)
from app.services.admin_catalog_service import AdminCatalogService
from app.services.alert_service import AlertService
from app.services.credit_ledger import BalanceSnapshot, CreditLedger
from app.services.usage_stats_service import UsageStatsService

router = APIRouter()

# =============================================================================
# Shared types and helpers
# =============================================================================

Pagination = Annotated[PaginationParams, Depends(pagination_params)]

ProviderStatusFilter = Annotated[
    Literal["active", "inactive", "testing", "error"] | None,
    Query(alias="status", description="Filter by provider status"),
]
ProviderTypeFilter = Annotated[
    Literal["chat_completions", "messages", "generate_content", "custom"] | None,
    Query(description="Filter by provider type"),
]
FeatureStatusFilter = Annotated[
    Literal["draft", "testing", "published", "deprecated", "archived"] | None,
    Query(alias="status", description="Filter by feature status"),
]
CategoryFilter = Annotated[
    Literal[
        "ocr",
        "document_processing",
        "data_transformation",
        "analytics",
        "translation",
        "summarization",
        "custom",
    ]
    | None,
    Query(description="Filter by feature category"),
]
ProviderIdFilter = Annotated[
    uuid.UUID | None,
    Query(description="Filter by provider"),
]
TransactionTypeFilter = Annotated[
    Literal["usage", "purchase", "bonus", "adjustment", "refund"] | None,
    Query(description="Filter by transaction type"),
]
TenantFilter = Annotated[
    str | None,
    Query(max_length=100, description="Filter by tenant"),
]
IsResolvedFilter = Annotated[
    bool | None,
    Query(description="Filter by resolution state"),
]
AlertTypeFilter = Annotated[
    Literal["low_balance", "credits_depleted"] | None,
    Query(description="Filter by alert type"),
]
SeverityFilter = Annotated[
    Literal["low", "medium", "high", "critical"] | None,
    Query(description="Filter by severity"),
]
TenantId = Annotated[
    str,
    Path(min_length=1, max_length=100, description="Tenant identifier"),
]
UserId = Annotated[
    str,
    Path(min_length=1, max_length=100, description="User identifier"),
]
LowBalanceFilter = Annotated[
    bool,
    Query(alias="low_balance", description="Only tenants at or below their threshold"),
]

# Columns that may be cleared with an explicit null in a PATCH body
_NULLABLE_PROVIDER_FIELDS = frozenset(
    {"description", "api_key", "api_endpoint", "api_version", "organization_id", "default_model"}
)
_NULLABLE_FEATURE_FIELDS = frozenset(
    {
        "description",
        "credits_per_use",
        "model_name",
        "system_prompt",
        "user_prompt_template",
        "max_output_tokens",
        "temperature",
    }
)

_DEFAULT_RESOLVER = "admin"


def _changes(body: BaseModel, nullable: frozenset[str]) -> dict[str, Any]:
    """Fields set in a PATCH body, ignoring nulls for required columns."""
    return {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key in nullable
    }


def _meta(total: int, pagination: PaginationParams) -> PaginationMeta:
    return PaginationMeta(total=total, page=pagination.page, per_page=pagination.per_page)


def _provider_response(row: Provider) -> ProviderResponse:
    """Build ProviderResponse from ORM row with the credential masked."""
    return ProviderResponse(
        id=str(row.id),
        provider_name=row.provider_name,
        display_name=row.display_name,
        description=row.description,
        provider_type=row.provider_type,
        api_key_masked=mask_api_key(row.api_key),
        api_endpoint=row.api_endpoint,
        api_version=row.api_version,
        organization_id=row.organization_id,
        default_model=row.default_model,
        supports_vision=row.supports_vision,
        status=row.status,
        last_health_check=row.last_health_check,
        last_error=row.last_error,
        error_count=row.error_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _feature_response(row: Feature) -> FeatureResponse:
    """Build FeatureResponse from ORM row (provider loaded)."""
    return FeatureResponse(
        id=str(row.id),
        feature_key=row.feature_key,
        display_name=row.display_name,
        description=row.description,
        category=row.category,
        status=row.status,
        credits_per_use=row.credits_per_use,
        provider_id=str(row.provider_id),
        provider_name=row.provider.provider_name,
        model_name=row.model_name,
        system_prompt=row.system_prompt,
        user_prompt_template=row.user_prompt_template,
        max_output_tokens=row.max_output_tokens,
        temperature=row.temperature,
        published_at=row.published_at,
        deprecated_at=row.deprecated_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _subscription_response(row: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=str(row.id),
        tenant_id=row.tenant_id,
        feature_id=str(row.feature_id),
        is_enabled=row.is_enabled,
        expires_at=row.expires_at,
        custom_credits_per_use=row.custom_credits_per_use,
        max_usage_per_day=row.max_usage_per_day,
        max_usage_per_month=row.max_usage_per_month,
    )


def _user_access_response(row: UserAccess) -> UserAccessResponse:
    return UserAccessResponse(
        id=str(row.id),
        user_id=row.user_id,
        tenant_id=row.tenant_id,
        feature_id=str(row.feature_id),
        is_enabled=row.is_enabled,
        max_usage_per_day=row.max_usage_per_day,
        max_usage_per_month=row.max_usage_per_month,
    )


def _balance_response(snapshot: BalanceSnapshot) -> CreditBalanceResponse:
    return CreditBalanceResponse(
        tenant_id=snapshot.tenant_id,
        balance=snapshot.balance,
        total_purchased=snapshot.total_purchased,
        total_used=snapshot.total_used,
        low_balance_threshold=snapshot.low_balance_threshold,
        is_low_balance=snapshot.is_low_balance,
        last_used_at=snapshot.last_used_at,
        last_purchase_at=snapshot.last_purchase_at,
    )


def _transaction_response(row: CreditTransaction) -> CreditTransactionResponse:
    return CreditTransactionResponse(
        id=str(row.id),
        tenant_id=row.tenant_id,
        amount=row.amount,
        transaction_type=row.transaction_type,
        balance_after=row.balance_after,
        feature_id=str(row.feature_id) if row.feature_id else None,
        usage_log_id=str(row.usage_log_id) if row.usage_log_id else None,
        notes=row.notes,
        created_at=row.created_at,
    )


def _alert_response(row: AdminAlert) -> AlertResponse:
    return AlertResponse(
        id=str(row.id),
        alert_type=row.alert_type,
        severity=row.severity,
        tenant_id=row.tenant_id,
        message=row.message,
        details=row.details,
        is_resolved=row.is_resolved,
        resolved_at=row.resolved_at,
        resolved_by=row.resolved_by,
        resolution_notes=row.resolution_notes,
        created_at=row.created_at,
    )


# =============================================================================
# Providers
# =============================================================================


@router.get("/providers")
async def list_providers(
    _admin: AdminAccess,
    db: DbSession,
    pagination: Pagination,
    provider_status: ProviderStatusFilter = None,
    provider_type: ProviderTypeFilter = None,
) -> ListResponse[ProviderResponse]:
    """List providers with optional status and type filters."""
    rows, total = await AdminCatalogService(db).list_providers(
        status=provider_status,
        provider_type=provider_type,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse(
        data=[_provider_response(row) for row in rows],
        meta=_meta(total, pagination),
    )


@router.post("/providers", status_code=status.HTTP_201_CREATED)
async def create_provider(
    _admin: AdminAccess,
    db: DbSession,
    body: ProviderCreate,
) -> DataResponse[ProviderResponse]:
    """Register a provider (starts inactive)."""
    row = await AdminCatalogService(db).create_provider(**body.model_dump())
    await db.commit()
    return DataResponse(data=_provider_response(row))


@router.get("/providers/{provider_id}")
async def get_provider(
    _admin: AdminAccess,
    db: DbSession,
    provider_id: uuid.UUID,
) -> DataResponse[ProviderResponse]:
    """Get one provider."""
    row = await AdminCatalogService(db).get_provider(provider_id)
    return DataResponse(data=_provider_response(row))


@router.patch("/providers/{provider_id}")
async def update_provider(
    _admin: AdminAccess,
    db: DbSession,
    provider_id: uuid.UUID,
    body: ProviderUpdate,
) -> DataResponse[ProviderResponse]:
    """Update provider settings, including status."""
    row = await AdminCatalogService(db).update_provider(
        provider_id, **_changes(body, _NULLABLE_PROVIDER_FIELDS)
    )
    await db.commit()
    return DataResponse(data=_provider_response(row))


@router.delete("/providers/{provider_id}")
async def delete_provider(
    _admin: AdminAccess,
    db: DbSession,
    provider_id: uuid.UUID,
) -> DataResponse[DeleteResultResponse]:
    """Delete a provider, or deactivate it while features reference it."""
    deleted = await AdminCatalogService(db).delete_provider(provider_id)
    await db.commit()
    return DataResponse(
        data=DeleteResultResponse(
            deleted=deleted,
            status=None if deleted else ProviderStatus.INACTIVE.value,
        )
    )


@router.post("/providers/{provider_id}/test")
async def test_provider(
    _admin: AdminAccess,
    tester: ConnectionTester,
    provider_id: uuid.UUID,
) -> DataResponse[ConnectionTestResponse]:
    """Probe the provider and record its health.

    Always 200 when the provider exists; the outcome is in the body. The
    tester manages its own units of work around the vendor call.
    """
    result = await tester.run(provider_id)
    return DataResponse(
        data=ConnectionTestResponse(
            success=result.success,
            message=result.message,
            latency_ms=result.latency_ms,
            tested_at=result.tested_at,
        )
    )


@router.get("/providers/{provider_id}/stats")
async def get_provider_stats(
    _admin: AdminAccess,
    db: DbSession,
    provider_id: uuid.UUID,
) -> DataResponse[ProviderStatsResponse]:
    """Usage routed through a provider over the last 30 days."""
    stats = await UsageStatsService(db).provider_stats(provider_id)
    return DataResponse(
        data=ProviderStatsResponse(
            provider_id=str(stats.provider.id),
            provider_name=stats.provider.provider_name,
            display_name=stats.provider.display_name,
            status=stats.provider.status,
            error_count=stats.provider.error_count,
            usage=UsageTotalsResponse.model_validate(stats.usage),
            feature_count=stats.feature_count,
            period_start=stats.period_start,
            period_end=stats.period_end,
        )
    )


# =============================================================================
# Features
# =============================================================================


@router.get("/features")
async def list_features(
    _admin: AdminAccess,
    db: DbSession,
    pagination: Pagination,
    feature_status: FeatureStatusFilter = None,
    category: CategoryFilter = None,
    provider_id: ProviderIdFilter = None,
) -> ListResponse[FeatureResponse]:
    """List features with optional status, category and provider filters."""
    rows, total = await AdminCatalogService(db).list_features(
        status=feature_status,
        category=category,
        provider_id=provider_id,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse(
        data=[_feature_response(row) for row in rows],
        meta=_meta(total, pagination),
    )


@router.post("/features", status_code=status.HTTP_201_CREATED)
async def create_feature(
    _admin: AdminAccess,
    db: DbSession,
    body: FeatureCreate,
) -> DataResponse[FeatureResponse]:
    """Create a feature in draft status."""
    row = await AdminCatalogService(db).create_feature(**body.model_dump())
    await db.commit()
    return DataResponse(data=_feature_response(row))


@router.get("/features/{feature_id}")
async def get_feature(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
) -> DataResponse[FeatureResponse]:
    """Get one feature."""
    row = await AdminCatalogService(db).get_feature(feature_id)
    return DataResponse(data=_feature_response(row))


@router.get("/features/{feature_id}/stats")
async def get_feature_stats(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
) -> DataResponse[FeatureStatsResponse]:
    """Usage, active subscriptions and top tenants over the last 30 days."""
    stats = await UsageStatsService(db).feature_stats(feature_id)
    return DataResponse(
        data=FeatureStatsResponse(
            feature_id=str(stats.feature.id),
            feature_key=stats.feature.feature_key,
            display_name=stats.feature.display_name,
            status=stats.feature.status,
            category=stats.feature.category,
            usage=UsageTotalsResponse.model_validate(stats.usage),
            active_subscriptions=stats.active_subscriptions,
            top_tenants=[TopTenantResponse.model_validate(t) for t in stats.top_tenants],
            period_start=stats.period_start,
            period_end=stats.period_end,
        )
    )


@router.patch("/features/{feature_id}")
async def update_feature(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
    body: FeatureUpdate,
) -> DataResponse[FeatureResponse]:
    """Update feature settings."""
    row = await AdminCatalogService(db).update_feature(
        feature_id, **_changes(body, _NULLABLE_FEATURE_FIELDS)
    )
    await db.commit()
    return DataResponse(data=_feature_response(row))


@router.delete("/features/{feature_id}")
async def delete_feature(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
) -> DataResponse[DeleteResultResponse]:
    """Delete a feature, or archive it once assigned or used."""
    deleted = await AdminCatalogService(db).delete_feature(feature_id)
    await db.commit()
    return DataResponse(
        data=DeleteResultResponse(
            deleted=deleted,
            status=None if deleted else FeatureStatus.ARCHIVED.value,
        )
    )


@router.post("/features/{feature_id}/publish")
async def publish_feature(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
) -> DataResponse[FeatureResponse]:
    """Publish a feature. Its provider must be active."""
    row = await AdminCatalogService(db).publish_feature(feature_id)
    await db.commit()
    return DataResponse(data=_feature_response(row))


@router.post("/features/{feature_id}/deprecate")
async def deprecate_feature(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
) -> DataResponse[FeatureResponse]:
    """Deprecate a published feature."""
    row = await AdminCatalogService(db).deprecate_feature(feature_id)
    await db.commit()
    return DataResponse(data=_feature_response(row))


# =============================================================================
# Tenant assignment and user access
# =============================================================================


@router.post("/features/{feature_id}/assign")
async def assign_feature(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
    body: FeatureAssign,
) -> DataResponse[list[SubscriptionResponse]]:
    """Subscribe tenants to a published feature (create or replace)."""
    fields = body.model_dump(exclude={"tenant_ids"})
    rows = await AdminCatalogService(db).assign_feature(
        feature_id, body.tenant_ids, **fields
    )
    await db.commit()
    return DataResponse(data=[_subscription_response(row) for row in rows])


@router.post("/features/{feature_id}/unassign")
async def unassign_feature(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
    body: FeatureUnassign,
) -> DataResponse[UnassignResponse]:
    """Remove tenants' subscriptions to a feature."""
    removed = await AdminCatalogService(db).unassign_feature(feature_id, body.tenant_ids)
    await db.commit()
    return DataResponse(data=UnassignResponse(removed=removed))


@router.put("/features/{feature_id}/users/{user_id}")
async def set_user_access(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
    user_id: UserId,
    body: UserAccessUpsert,
) -> DataResponse[UserAccessResponse]:
    """Create or replace a user's access override for a feature."""
    row = await AdminCatalogService(db).set_user_access(
        feature_id,
        user_id,
        tenant_id=body.tenant_id,
        is_enabled=body.is_enabled,
        max_usage_per_day=body.max_usage_per_day,
        max_usage_per_month=body.max_usage_per_month,
    )
    await db.commit()
    return DataResponse(data=_user_access_response(row))


@router.delete(
    "/features/{feature_id}/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_user_access(
    _admin: AdminAccess,
    db: DbSession,
    feature_id: uuid.UUID,
    user_id: UserId,
) -> Response:
    """Remove a user's override so the tenant entitlement applies."""
    await AdminCatalogService(db).remove_user_access(feature_id, user_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Credits
# =============================================================================


@router.get("/credits/tenants")
async def list_credit_balances(
    _admin: AdminAccess,
    db: DbSession,
    pagination: Pagination,
    low_balance_only: LowBalanceFilter = False,
) -> ListResponse[CreditBalanceResponse]:
    """List tenant balances, lowest first."""
    snapshots, total = await CreditLedger(db).list_balances(
        low_balance_only=low_balance_only,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse(
        data=[_balance_response(snapshot) for snapshot in snapshots],
        meta=_meta(total, pagination),
    )


@router.get("/credits/summary")
async def get_credit_summary(
    _admin: AdminAccess,
    db: DbSession,
) -> DataResponse[CreditSummaryResponse]:
    """Platform-wide credit totals, open alerts and recent activity."""
    summary = await CreditLedger(db).get_summary()
    return DataResponse(
        data=CreditSummaryResponse(
            tenants_with_credits=summary.tenants_with_credits,
            total_balance=summary.total_balance,
            total_purchased=summary.total_purchased,
            total_used=summary.total_used,
            low_balance_tenants=summary.low_balance_tenants,
            unresolved_alerts=summary.unresolved_alerts,
            top_consumers=[_balance_response(s) for s in summary.top_consumers],
            recent_transactions=[
                _transaction_response(row) for row in summary.recent_transactions
            ],
        )
    )


@router.get("/tenants/{tenant_id}/credits")
async def get_tenant_credits(
    _admin: AdminAccess,
    db: DbSession,
    tenant_id: TenantId,
) -> DataResponse[CreditBalanceResponse]:
    """Return a tenant's balance (zero if never topped up)."""
    snapshot = await CreditLedger(db).get_snapshot(tenant_id)
    return DataResponse(data=_balance_response(snapshot))


@router.post("/tenants/{tenant_id}/credits/add", status_code=status.HTTP_201_CREATED)
async def add_tenant_credits(
    _admin: AdminAccess,
    db: DbSession,
    tenant_id: TenantId,
    body: CreditsAdd,
) -> DataResponse[CreditTransactionResponse]:
    """Top up a tenant's balance."""
    txn = await CreditLedger(db).add_credits(
        tenant_id,
        body.credits,
        transaction_type=TransactionType(body.transaction_type),
        notes=body.notes,
    )
    await db.commit()
    return DataResponse(data=_transaction_response(txn))


@router.post("/tenants/{tenant_id}/credits/deduct", status_code=status.HTTP_201_CREATED)
async def deduct_tenant_credits(
    _admin: AdminAccess,
    db: DbSession,
    tenant_id: TenantId,
    body: CreditsDeduct,
) -> DataResponse[CreditTransactionResponse]:
    """Remove credits from a tenant as a manual adjustment."""
    txn = await CreditLedger(db).deduct_credits(tenant_id, body.credits, reason=body.reason)
    await db.commit()
    return DataResponse(data=_transaction_response(txn))


@router.patch("/tenants/{tenant_id}/credits/settings")
async def update_tenant_credit_settings(
    _admin: AdminAccess,
    db: DbSession,
    tenant_id: TenantId,
    body: CreditSettingsUpdate,
) -> DataResponse[CreditBalanceResponse]:
    """Change a tenant's low-balance threshold."""
    snapshot = await CreditLedger(db).update_settings(
        tenant_id, low_balance_threshold=body.low_balance_threshold
    )
    await db.commit()
    return DataResponse(data=_balance_response(snapshot))


@router.get("/tenants/{tenant_id}/credits/transactions")
async def list_tenant_transactions(
    _admin: AdminAccess,
    db: DbSession,
    tenant_id: TenantId,
    pagination: Pagination,
    transaction_type: TransactionTypeFilter = None,
) -> ListResponse[CreditTransactionResponse]:
    """List a tenant's credit transactions, newest first."""
    rows, total = await CreditLedger(db).list_transactions(
        tenant_id,
        offset=pagination.offset,
        limit=pagination.limit,
        transaction_type=transaction_type,
    )
    return ListResponse(
        data=[_transaction_response(row) for row in rows],
        meta=_meta(total, pagination),
    )


# =============================================================================
# Alerts
# =============================================================================


@router.get("/alerts")
async def list_alerts(
    _admin: AdminAccess,
    db: DbSession,
    pagination: Pagination,
    tenant_id: TenantFilter = None,
    is_resolved: IsResolvedFilter = None,
    alert_type: AlertTypeFilter = None,
    severity: SeverityFilter = None,
) -> ListResponse[AlertResponse]:
    """List admin alerts, newest first."""
    rows, total = await AlertService(db).list_alerts(
        tenant_id=tenant_id,
        is_resolved=is_resolved,
        alert_type=alert_type,
        severity=severity,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse(
        data=[_alert_response(row) for row in rows],
        meta=_meta(total, pagination),
    )


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(
    _admin: AdminAccess,
    db: DbSession,
    alert_id: uuid.UUID,
    body: AlertResolve,
) -> DataResponse[AlertResponse]:
    """Mark an alert resolved."""
    row = await AlertService(db).resolve(
        alert_id,
        notes=body.notes,
        resolved_by=body.resolved_by or _DEFAULT_RESOLVER,
    )
    await db.commit()
    return DataResponse(data=_alert_response(row))
