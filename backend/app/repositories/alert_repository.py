"""Repository for admin alert operations.

Provides database access for the admin_alerts table.
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.alert import AdminAlert


class AlertRepository:
    """Stateless repository for AdminAlert table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        tenant_id: str,
        alert_type: str,
        severity: str,
        message: str,
        details: dict[str, Any] | None,
        created_at: datetime,
    ) -> AdminAlert:
        """Insert a new unresolved alert.

        Returns:
            Created AdminAlert.
        """
        alert = AdminAlert(
            tenant_id=tenant_id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            details=details,
            is_resolved=False,
            created_at=created_at,
        )
        db.add(alert)
        await db.flush()
        await db.refresh(alert)
        return alert

    @staticmethod
    async def get_by_id(db: AsyncSession, alert_id: uuid.UUID) -> AdminAlert | None:
        """Fetch one alert by id."""
        return await db.get(AdminAlert, alert_id)

    @staticmethod
    async def find_open(
        db: AsyncSession,
        *,
        tenant_id: str,
        alert_type: str,
    ) -> AdminAlert | None:
        """Find an unresolved alert of a type for a tenant.

        Args:
            db: Async database session.
            tenant_id: Tenant to check.
            alert_type: Alert type to check.

        Returns:
            The oldest unresolved matching alert, or None.
        """
        stmt = (
            select(AdminAlert)
            .where(
                AdminAlert.tenant_id == tenant_id,
                AdminAlert.alert_type == alert_type,
                AdminAlert.is_resolved.is_(False),
            )
            .order_by(AdminAlert.created_at)
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_alerts(
        db: AsyncSession,
        *,
        tenant_id: str | None = None,
        is_resolved: bool | None = None,
        alert_type: str | None = None,
        severity: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[AdminAlert], int]:
        """List alerts with optional filters and pagination.

        Returns:
            Tuple of (alerts newest first, total count).
        """
        conditions = []
        if tenant_id is not None:
            conditions.append(AdminAlert.tenant_id == tenant_id)
        if is_resolved is not None:
            conditions.append(AdminAlert.is_resolved.is_(is_resolved))
        if alert_type is not None:
            conditions.append(AdminAlert.alert_type == alert_type)
        if severity is not None:
            conditions.append(AdminAlert.severity == severity)

        count_stmt = select(func.count()).select_from(AdminAlert).where(*conditions)
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(AdminAlert)
            .where(*conditions)
            .order_by(AdminAlert.created_at.desc(), AdminAlert.id)
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def count_open(db: AsyncSession) -> int:
        """Number of unresolved alerts across all tenants."""
        stmt = (
            select(func.count())
            .select_from(AdminAlert)
            .where(AdminAlert.is_resolved.is_(False))
        )
        return (await db.execute(stmt)).scalar_one()

    @staticmethod
    async def resolve_open(
        db: AsyncSession,
        *,
        tenant_id: str,
        alert_type: str,
        resolved_by: str,
        notes: str | None,
        now: datetime,
    ) -> int:
        """Resolve every unresolved alert of a type for a tenant.

        Returns:
            Number of alerts resolved.
        """
        stmt = (
            update(AdminAlert)
            .where(
                AdminAlert.tenant_id == tenant_id,
                AdminAlert.alert_type == alert_type,
                AdminAlert.is_resolved.is_(False),
            )
            .values(
                is_resolved=True,
                resolved_at=now,
                resolved_by=resolved_by,
                resolution_notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        return result.rowcount
