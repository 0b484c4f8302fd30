"""Usage log ORM model: append-only, no TimestampMixin.

One row per invocation attempt, successful or not. Rows are never updated
or deleted; quota windows count them directly.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, utc_now


class UsageLog(Base):
    """Audit entry for one feature invocation attempt.

    Attributes:
        tenant_id: Calling tenant.
        user_id: Calling user.
        feature_id: Feature invoked.
        provider_id: Provider that served (or failed) the call.
        input_text: Caller input, truncated.
        output_text: Provider output, truncated (None on failure).
        input_tokens: Prompt tokens reported by the vendor.
        output_tokens: Completion tokens reported by the vendor.
        processing_time_ms: Wall-clock duration of the provider call.
        credits_used: Credits debited (0 on failure).
        success: Whether the provider call succeeded.
        error_message: Vendor or transport error text on failure.
        created_at: When the attempt was recorded.
    """

    __tablename__ = "usage_logs"
    __table_args__ = (
        CheckConstraint("input_tokens >= 0", name="ck_usage_logs_input_tokens_nonneg"),
        CheckConstraint("output_tokens >= 0", name="ck_usage_logs_output_tokens_nonneg"),
        CheckConstraint("credits_used >= 0", name="ck_usage_logs_credits_nonneg"),
        CheckConstraint(
            "processing_time_ms >= 0",
            name="ck_usage_logs_processing_time_nonneg",
        ),
        Index("ix_usage_logs_user_feature_created", "user_id", "feature_id", "created_at"),
        Index("ix_usage_logs_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    feature_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("ai_features.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("ai_providers.id", ondelete="SET NULL"),
        nullable=True,
    )
    input_text: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    output_text: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    input_tokens: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    output_tokens: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    processing_time_ms: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    credits_used: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    success: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now,
        nullable=False,
    )
