"""Admin alerting service.

Raises operator alerts about tenant credit conditions and lets operators
list and resolve them. low_balance alerts are de-duplicated against
unresolved alerts of the same type; credits_depleted alerts are inserted on
every occurrence.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidStateError, NotFoundError
from app.models.alert import AdminAlert, AlertSeverity, AlertType
from app.models.base import utc_now
from app.repositories.alert_repository import AlertRepository

logger = logging.getLogger(__name__)

# Alert types that never stack: one unresolved alert per tenant at a time
_DEDUPLICATED_TYPES = frozenset({AlertType.LOW_BALANCE})

SYSTEM_RESOLVER = "system"


class AlertService:
    """Raises, lists and resolves admin alerts.

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

    async def raise_if_needed(
        self,
        *,
        tenant_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> AdminAlert | None:
        """Insert an alert unless an equivalent one is still open.

        Args:
            tenant_id: Tenant the alert concerns.
            alert_type: Alert type.
            severity: Alert severity.
            message: Human-readable summary.
            details: Structured context.

        Returns:
            The new alert, or None when an unresolved alert of a
            de-duplicated type already exists.
        """
        if alert_type in _DEDUPLICATED_TYPES:
            existing = await AlertRepository.find_open(
                self._db, tenant_id=tenant_id, alert_type=alert_type.value
            )
            if existing is not None:
                return None

        alert = await AlertRepository.create(
            self._db,
            tenant_id=tenant_id,
            alert_type=alert_type.value,
            severity=severity.value,
            message=message,
            details=details,
            created_at=self._now(),
        )
        logger.info(
            "Raised %s alert for tenant %s (severity %s)",
            alert_type.value,
            tenant_id,
            severity.value,
        )
        return alert

    async def list_alerts(
        self,
        *,
        tenant_id: str | None = None,
        is_resolved: bool | None = None,
        alert_type: str | None = None,
        severity: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[AdminAlert], int]:
        """List alerts newest first with optional filters."""
        return await AlertRepository.list_alerts(
            self._db,
            tenant_id=tenant_id,
            is_resolved=is_resolved,
            alert_type=alert_type,
            severity=severity,
            offset=offset,
            limit=limit,
        )

    async def count_open(self) -> int:
        """Unresolved alerts across all tenants."""
        return await AlertRepository.count_open(self._db)

    async def resolve(
        self,
        alert_id: uuid.UUID,
        *,
        notes: str | None = None,
        resolved_by: str | None = None,
    ) -> AdminAlert:
        """Mark one alert resolved.

        Raises:
            NotFoundError: If the alert does not exist.
            InvalidStateError: If the alert is already resolved.
        """
        alert = await AlertRepository.get_by_id(self._db, alert_id)
        if alert is None:
            raise NotFoundError("Alert", str(alert_id))
        if alert.is_resolved:
            raise InvalidStateError("Alert is already resolved")

        alert.is_resolved = True
        alert.resolved_at = self._now()
        alert.resolved_by = resolved_by
        alert.resolution_notes = notes
        await self._db.flush()
        await self._db.refresh(alert)
        return alert

    async def resolve_open(
        self,
        tenant_id: str,
        alert_type: AlertType,
        *,
        notes: str | None = None,
        resolved_by: str = SYSTEM_RESOLVER,
    ) -> int:
        """Resolve every open alert of a type for a tenant.

        Returns:
            Number of alerts resolved.
        """
        resolved = await AlertRepository.resolve_open(
            self._db,
            tenant_id=tenant_id,
            alert_type=alert_type.value,
            resolved_by=resolved_by,
            notes=notes,
            now=self._now(),
        )
        if resolved:
            logger.info(
                "Resolved %d %s alert(s) for tenant %s",
                resolved,
                alert_type.value,
                tenant_id,
            )
        return resolved
