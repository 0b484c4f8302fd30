"""Tenant-facing feature API router.

Endpoints for invoking features, listing the features a tenant is
entitled to, feature detail, and the caller's own usage history.

All endpoints require the upstream identity headers (X-Tenant-ID,
X-User-ID). Invocation is rate limited per tenant user.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.api.deps import CurrentTenant, DbSession, Gateway
from app.core.config import settings
from app.core.pagination import PaginationParams, pagination_params
from app.core.rate_limiting import limiter
from app.core.responses import DataResponse, ListResponse, PaginationMeta
from app.providers.base import FileAttachment
from app.repositories.usage_repository import UsageRepository
from app.schemas.features import (
    AvailableFeaturesResponse,
    CreditSummary,
    FeatureDetailResponse,
    FeatureSummary,
    InvokeRequest,
    InvokeResponse,
    TokensUsed,
    UsageHistoryItem,
)
from app.services.credit_ledger import CreditLedger
from app.services.entitlement_resolver import Denied, EntitlementResolver
from app.services.invocation_gateway import InvocationRequest

router = APIRouter()

Pagination = Annotated[PaginationParams, Depends(pagination_params)]


# =============================================================================
# GET /available
# =============================================================================


@router.get("/available")
async def list_available_features(
    tenant: CurrentTenant,
    db: DbSession,
) -> DataResponse[AvailableFeaturesResponse]:
    """List the features the caller's tenant can use, with its balance.

    Per-user caps and the balance are not applied here; invoking a listed
    feature can still be refused for those reasons.
    """
    available = await EntitlementResolver(db).list_available(tenant.tenant_id)
    snapshot = await CreditLedger(db).get_snapshot(tenant.tenant_id)

    return DataResponse(
        data=AvailableFeaturesResponse(
            features=[
                FeatureSummary(
                    id=str(item.feature.id),
                    feature_key=item.feature.feature_key,
                    display_name=item.feature.display_name,
                    description=item.feature.description,
                    category=item.feature.category,
                    provider_name=item.feature.provider_display_name,
                    credits_per_use=item.credits_per_use,
                )
                for item in available
            ],
            credits=CreditSummary(
                balance=snapshot.balance,
                low_balance_threshold=snapshot.low_balance_threshold,
                is_low=snapshot.balance <= snapshot.low_balance_threshold,
            ),
        )
    )


# =============================================================================
# GET /usage/history
# =============================================================================


@router.get("/usage/history")
async def get_usage_history(
    tenant: CurrentTenant,
    db: DbSession,
    pagination: Pagination,
) -> ListResponse[UsageHistoryItem]:
    """Return the caller's own invocation attempts, newest first."""
    records, total = await UsageRepository.list_by_user(
        db,
        tenant_id=tenant.tenant_id,
        user_id=tenant.user_id,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    return ListResponse(
        data=[
            UsageHistoryItem(
                id=str(r.id),
                feature_id=str(r.feature_id),
                input_tokens=r.input_tokens,
                output_tokens=r.output_tokens,
                processing_time_ms=r.processing_time_ms,
                credits_used=r.credits_used,
                success=r.success,
                error_message=r.error_message,
                created_at=r.created_at,
            )
            for r in records
        ],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


# =============================================================================
# GET /{feature_id}
# =============================================================================


@router.get("/{feature_id}")
async def get_feature(
    tenant: CurrentTenant,
    db: DbSession,
    feature_id: uuid.UUID,
) -> DataResponse[FeatureDetailResponse]:
    """Return a feature the caller is currently entitled to.

    Runs the full entitlement check; a refusal is returned as the same
    error an invocation would get.
    """
    resolution = await EntitlementResolver(db).resolve(
        tenant.tenant_id, tenant.user_id, feature_id
    )
    if isinstance(resolution, Denied):
        # Keep the credits_depleted alert the resolver may have raised
        await db.commit()
        raise resolution.to_error()

    feature = resolution.feature
    subscription = resolution.subscription
    return DataResponse(
        data=FeatureDetailResponse(
            id=str(feature.id),
            feature_key=feature.feature_key,
            display_name=feature.display_name,
            description=feature.description,
            category=feature.category,
            provider_name=feature.provider_display_name,
            credits_per_use=resolution.credits_required,
            credits_available=resolution.balance,
            expires_at=subscription.expires_at,
            max_usage_per_day=subscription.max_usage_per_day,
            max_usage_per_month=subscription.max_usage_per_month,
        )
    )


# =============================================================================
# POST /{feature_id}/invoke
# =============================================================================


@router.post("/{feature_id}/invoke")
@limiter.limit(settings.rate_limit_invoke)
async def invoke_feature(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    tenant: CurrentTenant,
    gateway: Gateway,
    feature_id: uuid.UUID,
    body: InvokeRequest,
) -> DataResponse[InvokeResponse]:
    """Invoke a feature and charge the tenant on success.

    Failed provider calls are recorded but not charged.
    """
    file = (
        FileAttachment(data_base64=body.file, media_type=body.file_media_type)
        if body.file is not None
        else None
    )
    result = await gateway.invoke(
        InvocationRequest(
            tenant_id=tenant.tenant_id,
            user_id=tenant.user_id,
            feature_id=feature_id,
            input_text=body.input,
            file=file,
            options=body.options,
        )
    )
    return DataResponse(
        data=InvokeResponse(
            output=result.output,
            tokens_used=TokensUsed(input=result.tokens_in, output=result.tokens_out),
            processing_time_ms=result.processing_time_ms,
            credits_used=result.credits_used,
            credits_remaining=result.credits_remaining,
        )
    )
