"""Entitlement ORM models.

Subscription grants a tenant access to a feature (absence means not
entitled). UserAccess optionally narrows that grant for one user.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class Subscription(Base, TimestampMixin):
    """Tenant entitlement to one feature.

    Attributes:
        tenant_id: Opaque tenant identifier from the identity layer.
        is_enabled: Disabled subscriptions deny every invocation.
        expires_at: Subscription is expired once now >= expires_at.
        custom_credits_per_use: Per-tenant price override.
        max_usage_per_day: Stored for reporting; per-user caps are enforced
            from UserAccess.
        max_usage_per_month: Stored for reporting, see max_usage_per_day.
    """

    __tablename__ = "tenant_feature_subscriptions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "feature_id", name="uq_subscription_tenant_feature"),
        CheckConstraint(
            "custom_credits_per_use IS NULL OR custom_credits_per_use >= 0",
            name="ck_subscription_credits_nonneg",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    feature_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("ai_features.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    custom_credits_per_use: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    max_usage_per_day: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    max_usage_per_month: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )


class UserAccess(Base, TimestampMixin):
    """Per-user override of a tenant's feature entitlement.

    Absence means the user inherits the tenant subscription with no caps.
    """

    __tablename__ = "user_feature_access"
    __table_args__ = (
        UniqueConstraint("user_id", "feature_id", name="uq_user_access_user_feature"),
        CheckConstraint(
            "max_usage_per_day IS NULL OR max_usage_per_day > 0",
            name="ck_user_access_daily_positive",
        ),
        CheckConstraint(
            "max_usage_per_month IS NULL OR max_usage_per_month > 0",
            name="ck_user_access_monthly_positive",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    tenant_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    feature_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("ai_features.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    max_usage_per_day: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    max_usage_per_month: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
