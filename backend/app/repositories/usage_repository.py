"""Repository for usage log operations.

Provides database access for the append-only usage_logs table: inserts,
quota window counts, paginated history for the usage API and the
aggregates behind the admin usage statistics.
"""

import uuid
from datetime import datetime
from typing import TypedDict

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.usage import UsageLog

# =============================================================================
# Return types
# =============================================================================


class UsageTotals(TypedDict):
    """Typed return value for UsageRepository.get_totals()."""

    total_requests: int
    successful_requests: int
    total_credits_used: int
    total_input_tokens: int
    total_output_tokens: int
    avg_processing_time_ms: int


class TenantUsage(TypedDict):
    """One row of UsageRepository.top_tenants()."""

    tenant_id: str
    request_count: int
    credits_used: int


_LABEL_REQUEST_COUNT = "request_count"
_LABEL_CREDITS_USED = "credits_used"



class UsageRepository:
    """Stateless repository for UsageLog table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        feature_id: uuid.UUID,
        provider_id: uuid.UUID | None,
        input_text: str | None,
        output_text: str | None,
        input_tokens: int,
        output_tokens: int,
        processing_time_ms: int,
        credits_used: int,
        success: bool,
        error_message: str | None,
        created_at: datetime,
    ) -> UsageLog:
        """Insert one usage log entry.

        Returns:
            Created UsageLog.
        """
        record = UsageLog(
            tenant_id=tenant_id,
            user_id=user_id,
            feature_id=feature_id,
            provider_id=provider_id,
            input_text=input_text,
            output_text=output_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            processing_time_ms=processing_time_ms,
            credits_used=credits_used,
            success=success,
            error_message=error_message,
            created_at=created_at,
        )
        db.add(record)
        await db.flush()
        await db.refresh(record)
        return record

    @staticmethod
    async def count_since(
        db: AsyncSession,
        *,
        user_id: str,
        feature_id: uuid.UUID,
        since: datetime,
    ) -> int:
        """Count a user's invocation attempts of a feature since an instant.

        Every attempt counts, successful or not.

        Args:
            db: Async database session.
            user_id: User to count for.
            feature_id: Feature to count for.
            since: Inclusive window start (aware UTC).

        Returns:
            Number of usage log rows in the window.
        """
        stmt = (
            select(func.count())
            .select_from(UsageLog)
            .where(
                UsageLog.user_id == user_id,
                UsageLog.feature_id == feature_id,
                UsageLog.created_at >= since,
            )
        )
        result = await db.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[UsageLog], int]:
        """List a user's usage log entries with pagination.

        Args:
            db: Async database session.
            tenant_id: Tenant the user belongs to.
            user_id: User to query records for.
            offset: Number of records to skip.
            limit: Maximum records to return.

        Returns:
            Tuple of (records list newest first, total count).
        """
        conditions = [UsageLog.tenant_id == tenant_id, UsageLog.user_id == user_id]

        count_stmt = select(func.count()).select_from(UsageLog).where(*conditions)
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(UsageLog)
            .where(*conditions)
            .order_by(UsageLog.created_at.desc(), UsageLog.id)
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        records = list(result.scalars().all())

        return records, total

    @staticmethod
    async def exists_for_feature(db: AsyncSession, feature_id: uuid.UUID) -> bool:
        """Whether any usage has been recorded against a feature."""
        stmt = select(UsageLog.id).where(UsageLog.feature_id == feature_id).limit(1)
        result = await db.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def get_totals(
        db: AsyncSession,
        *,
        period_start: datetime,
        period_end: datetime | None = None,
        feature_id: uuid.UUID | None = None,
        provider_id: uuid.UUID | None = None,
    ) -> UsageTotals:
        """Aggregate usage for a time period, optionally for one feature or provider.

        Period range is [period_start, period_end), start inclusive, end
        exclusive; no period_end means up to the latest row.

        Args:
            db: Async database session.
            period_start: Start of period (inclusive).
            period_end: End of period (exclusive), or None.
            feature_id: Restrict to one feature.
            provider_id: Restrict to one provider.

        Returns:
            Dict with request counts, credit and token sums and the average
            processing time (0 when there is no usage).
        """
        conditions = [UsageLog.created_at >= period_start]
        if period_end is not None:
            conditions.append(UsageLog.created_at < period_end)
        if feature_id is not None:
            conditions.append(UsageLog.feature_id == feature_id)
        if provider_id is not None:
            conditions.append(UsageLog.provider_id == provider_id)

        stmt = select(
            func.count().label("total_requests"),
            func.coalesce(func.sum(case((UsageLog.success.is_(True), 1), else_=0)), 0).label(
                "successful_requests"
            ),
            func.coalesce(func.sum(UsageLog.credits_used), 0).label("total_credits_used"),
            func.coalesce(func.sum(UsageLog.input_tokens), 0).label("total_input_tokens"),
            func.coalesce(func.sum(UsageLog.output_tokens), 0).label("total_output_tokens"),
            func.avg(UsageLog.processing_time_ms).label("avg_processing_time_ms"),
        ).where(*conditions)
        row = (await db.execute(stmt)).one()

        return {
            "total_requests": row.total_requests,
            "successful_requests": int(row.successful_requests),
            "total_credits_used": int(row.total_credits_used),
            "total_input_tokens": int(row.total_input_tokens),
            "total_output_tokens": int(row.total_output_tokens),
            "avg_processing_time_ms": round(float(row.avg_processing_time_ms or 0)),
        }

    @staticmethod
    async def top_tenants(
        db: AsyncSession,
        *,
        feature_id: uuid.UUID,
        period_start: datetime,
        period_end: datetime | None = None,
        limit: int = 5,
    ) -> list[TenantUsage]:
        """Tenants with the most requests of a feature since period_start.

        Returns:
            Rows ordered by request count (desc), then tenant_id.
        """
        conditions = [UsageLog.feature_id == feature_id, UsageLog.created_at >= period_start]
        if period_end is not None:
            conditions.append(UsageLog.created_at < period_end)

        request_count = func.count().label(_LABEL_REQUEST_COUNT)
        stmt = (
            select(
                UsageLog.tenant_id,
                request_count,
                func.coalesce(func.sum(UsageLog.credits_used), 0).label(_LABEL_CREDITS_USED),
            )
            .where(*conditions)
            .group_by(UsageLog.tenant_id)
            .order_by(request_count.desc(), UsageLog.tenant_id)
            .limit(limit)
        )
        result = await db.execute(stmt)
        return [
            TenantUsage(
                tenant_id=row.tenant_id,
                request_count=row.request_count,
                credits_used=int(row.credits_used),
            )
            for row in result.all()
        ]
