"""Admin alert ORM model.

Alerts notify platform operators about tenant credit conditions.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, utc_now


class AlertType(str, Enum):
    LOW_BALANCE = "low_balance"
    CREDITS_DEPLETED = "credits_depleted"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AdminAlert(Base):
    """Operator-facing alert about a tenant.

    Attributes:
        alert_type: AlertType value.
        severity: AlertSeverity value.
        tenant_id: Tenant the alert concerns.
        message: Human-readable summary.
        details: Structured context (balances, thresholds, feature).
        is_resolved: Set once by an operator or by a credit top-up.
        resolved_at: When the alert was resolved.
        resolved_by: Who resolved it ("system" for automatic resolution).
        resolution_notes: Free-form notes supplied on resolution.
    """

    __tablename__ = "admin_alerts"
    __table_args__ = (
        CheckConstraint(
            "alert_type IN ('low_balance', 'credits_depleted')",
            name="ck_admin_alerts_type_valid",
        ),
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_admin_alerts_severity_valid",
        ),
        Index("ix_admin_alerts_tenant_type_resolved", "tenant_id", "alert_type", "is_resolved"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    alert_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    severity: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    tenant_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    details: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    is_resolved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    resolved_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    resolution_notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now,
        nullable=False,
    )
