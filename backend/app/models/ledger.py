"""Credit ledger ORM models.

CreditBalance is the single mutable balance row per tenant.
CreditTransaction is an append-only record of every balance change;
rows are never updated or deleted.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, utc_now


class TransactionType(str, Enum):
    USAGE = "usage"
    PURCHASE = "purchase"
    BONUS = "bonus"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"


class CreditBalance(Base, TimestampMixin):
    """Prepaid credit balance for one tenant.

    Invariant: balance == total_purchased - total_used, and balance >= 0.
    All mutations go through the credit ledger.

    Attributes:
        tenant_id: Opaque tenant identifier (primary key).
        balance: Credits currently available.
        total_purchased: Lifetime credits added.
        total_used: Lifetime credits debited.
        low_balance_threshold: At or below this balance a low_balance alert
            is raised.
    """

    __tablename__ = "tenant_credit_balances"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_balance_nonneg"),
        CheckConstraint("total_purchased >= 0", name="ck_credit_purchased_nonneg"),
        CheckConstraint("total_used >= 0", name="ck_credit_used_nonneg"),
        CheckConstraint(
            "low_balance_threshold >= 0",
            name="ck_credit_threshold_nonneg",
        ),
    )

    tenant_id: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
    )
    balance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    total_purchased: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    total_used: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    low_balance_threshold: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
        server_default=text("100"),
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    last_purchase_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )


class CreditTransaction(Base):
    """Append-only ledger of all balance changes.

    Positive amounts = credits (purchase, bonus, refund, positive adjustment).
    Negative amounts = debits (usage, negative adjustment).

    Attributes:
        amount: Signed credit amount.
        transaction_type: TransactionType value.
        balance_after: Balance immediately after this change.
        feature_id: Feature charged, for usage debits.
        usage_log_id: Usage log entry the debit settles.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('usage', 'purchase', 'bonus', 'adjustment', 'refund')",
            name="ck_credit_txn_type_valid",
        ),
        CheckConstraint("amount <> 0", name="ck_credit_txn_amount_nonzero"),
        CheckConstraint("balance_after >= 0", name="ck_credit_txn_balance_nonneg"),
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
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    transaction_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    balance_after: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    feature_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("ai_features.id", ondelete="SET NULL"),
        nullable=True,
    )
    usage_log_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("usage_logs.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utc_now,
        nullable=False,
    )
