"""Credit ledger: every tenant balance mutation goes through here.

Debits use a single conditional UPDATE (balance >= amount), so concurrent
debits can never drive a balance negative; each successful mutation appends
a CreditTransaction recording the balance after the change.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InsufficientCreditsError, NotFoundError, ValidationError
from app.models.alert import AlertSeverity, AlertType
from app.models.base import utc_now
from app.models.ledger import CreditBalance, CreditTransaction, TransactionType
from app.repositories.credit_repository import CreditRepository
from app.services.alert_service import AlertService

logger = logging.getLogger(__name__)

# Transaction types an operator may use to add credits
TOP_UP_TYPES = frozenset(
    {
        TransactionType.PURCHASE,
        TransactionType.BONUS,
        TransactionType.ADJUSTMENT,
        TransactionType.REFUND,
    }
)


@dataclass(frozen=True)
class BalanceSnapshot:
    """Point-in-time view of a tenant's balance row.

    Tenants without a row are reported with zero balances and the default
    threshold.
    """

    tenant_id: str
    balance: int
    total_purchased: int
    total_used: int
    low_balance_threshold: int
    last_used_at: datetime | None = None
    last_purchase_at: datetime | None = None

    @property
    def is_low_balance(self) -> bool:
        return self.balance <= self.low_balance_threshold

    @classmethod
    def from_row(cls, row: CreditBalance) -> "BalanceSnapshot":
        return cls(
            tenant_id=row.tenant_id,
            balance=row.balance,
            total_purchased=row.total_purchased,
            total_used=row.total_used,
            low_balance_threshold=row.low_balance_threshold,
            last_used_at=row.last_used_at,
            last_purchase_at=row.last_purchase_at,
        )


@dataclass(frozen=True)
class CreditSummary:
    """Platform-wide credit overview for the admin dashboard.

    Low-balance tenants are those at or below their own alert threshold.
    """

    tenants_with_credits: int
    total_balance: int
    total_purchased: int
    total_used: int
    low_balance_tenants: int
    unresolved_alerts: int
    top_consumers: list[BalanceSnapshot]
    recent_transactions: list[CreditTransaction]


class CreditLedger:
    """Reads and mutates tenant credit balances.

    Args:
        db: Async database session (the caller owns the transaction).
        now: Clock returning aware UTC datetimes.
        alerts: Alert service used for low-balance alerts.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        now: Callable[[], datetime] = utc_now,
        alerts: AlertService | None = None,
    ) -> None:
        self._db = db
        self._now = now
        self._alerts = alerts or AlertService(db, now=now)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_balance(self, tenant_id: str) -> int:
        """Current balance (0 when the tenant has no balance row)."""
        return await CreditRepository.get_balance(self._db, tenant_id)

    async def get_snapshot(self, tenant_id: str) -> BalanceSnapshot:
        """Full balance view for a tenant."""
        row = await CreditRepository.get_balance_row(self._db, tenant_id)
        if row is None:
            return BalanceSnapshot(
                tenant_id=tenant_id,
                balance=0,
                total_purchased=0,
                total_used=0,
                low_balance_threshold=settings.default_low_balance_threshold,
            )
        return BalanceSnapshot.from_row(row)

    async def list_balances(
        self,
        *,
        low_balance_only: bool = False,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[BalanceSnapshot], int]:
        """Tenant balances, lowest first; optionally only low-balance tenants."""
        rows, total = await CreditRepository.list_balances(
            self._db,
            low_balance_only=low_balance_only,
            offset=offset,
            limit=limit,
        )
        return [BalanceSnapshot.from_row(row) for row in rows], total

    async def get_summary(self) -> CreditSummary:
        """Aggregate balances, open alerts and recent activity across tenants."""
        overview = await CreditRepository.get_overview(self._db)
        top_consumers = await CreditRepository.top_consumers(self._db)
        recent = await CreditRepository.recent_transactions(self._db)
        return CreditSummary(
            tenants_with_credits=overview["tenants_with_credits"],
            total_balance=overview["total_balance"],
            total_purchased=overview["total_purchased"],
            total_used=overview["total_used"],
            low_balance_tenants=overview["low_balance_tenants"],
            unresolved_alerts=await self._alerts.count_open(),
            top_consumers=[BalanceSnapshot.from_row(row) for row in top_consumers],
            recent_transactions=recent,
        )

    async def list_transactions(
        self,
        tenant_id: str,
        *,
        offset: int = 0,
        limit: int = 20,
        transaction_type: str | None = None,
    ) -> tuple[list[CreditTransaction], int]:
        """Tenant transactions, newest first."""
        return await CreditRepository.list_transactions(
            self._db,
            tenant_id,
            offset=offset,
            limit=limit,
            transaction_type=transaction_type,
        )

    # -------------------------------------------------------------------------
    # Debits
    # -------------------------------------------------------------------------

    async def _debit(
        self,
        tenant_id: str,
        credits: int,
        *,
        transaction_type: TransactionType,
        feature_id: uuid.UUID | None = None,
        usage_log_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> CreditTransaction:
        now = self._now()
        debited = await CreditRepository.atomic_debit(
            self._db, tenant_id=tenant_id, amount=credits, now=now
        )
        if not debited:
            available = await CreditRepository.get_balance(self._db, tenant_id)
            logger.warning(
                "Insufficient balance for tenant %s (debit: %d, available: %d)",
                tenant_id,
                credits,
                available,
            )
            raise InsufficientCreditsError(tenant_id, credits, available)

        balance_after = await CreditRepository.get_balance(self._db, tenant_id)
        return await CreditRepository.create_transaction(
            self._db,
            tenant_id=tenant_id,
            amount=-credits,
            transaction_type=transaction_type.value,
            balance_after=balance_after,
            feature_id=feature_id,
            usage_log_id=usage_log_id,
            notes=notes,
            created_at=now,
        )

    async def debit_usage(
        self,
        tenant_id: str,
        credits: int,
        *,
        feature_id: uuid.UUID,
        usage_log_id: uuid.UUID,
        notes: str | None = None,
    ) -> CreditTransaction:
        """Charge a successful invocation.

        Args:
            tenant_id: Tenant to charge.
            credits: Credits to debit (positive).
            feature_id: Feature invoked.
            usage_log_id: Usage log entry being settled.
            notes: Optional description.

        Returns:
            The appended usage transaction.

        Raises:
            InsufficientCreditsError: Balance lower than credits at settlement.
        """
        return await self._debit(
            tenant_id,
            credits,
            transaction_type=TransactionType.USAGE,
            feature_id=feature_id,
            usage_log_id=usage_log_id,
            notes=notes,
        )

    async def deduct_credits(
        self,
        tenant_id: str,
        credits: int,
        *,
        reason: str | None = None,
    ) -> CreditTransaction:
        """Manually remove credits from a tenant as an adjustment.

        Raises:
            ValidationError: If credits is not positive.
            NotFoundError: If the tenant has no balance row.
            InsufficientCreditsError: If the balance is lower than credits.
        """
        if credits <= 0:
            raise ValidationError("Credits to deduct must be positive")
        if await CreditRepository.get_balance_row(self._db, tenant_id) is None:
            raise NotFoundError("Credit balance", tenant_id)

        txn = await self._debit(
            tenant_id,
            credits,
            transaction_type=TransactionType.ADJUSTMENT,
            notes=reason,
        )
        await self.check_low_balance(tenant_id)
        return txn

    # -------------------------------------------------------------------------
    # Credits
    # -------------------------------------------------------------------------

    async def add_credits(
        self,
        tenant_id: str,
        credits: int,
        *,
        transaction_type: TransactionType = TransactionType.PURCHASE,
        notes: str | None = None,
    ) -> CreditTransaction:
        """Top up a tenant balance, creating the balance row if needed.

        Open low_balance alerts for the tenant are resolved.

        Raises:
            ValidationError: If credits is not positive or the transaction
                type is not a top-up type.
        """
        if credits <= 0:
            raise ValidationError("Credits to add must be positive")
        if transaction_type not in TOP_UP_TYPES:
            raise ValidationError(
                f"Transaction type '{transaction_type.value}' cannot be used to add credits"
            )

        now = self._now()
        await CreditRepository.ensure_row(
            self._db,
            tenant_id,
            low_balance_threshold=settings.default_low_balance_threshold,
        )
        balance_after = await CreditRepository.atomic_credit(
            self._db, tenant_id=tenant_id, amount=credits, now=now
        )
        txn = await CreditRepository.create_transaction(
            self._db,
            tenant_id=tenant_id,
            amount=credits,
            transaction_type=transaction_type.value,
            balance_after=balance_after,
            notes=notes,
            created_at=now,
        )
        await self._alerts.resolve_open(
            tenant_id,
            AlertType.LOW_BALANCE,
            notes=f"Credits added: {credits}",
        )
        logger.info(
            "Added %d credits to tenant %s (%s), balance now %d",
            credits,
            tenant_id,
            transaction_type.value,
            balance_after,
        )
        return txn

    # -------------------------------------------------------------------------
    # Settings and alerts
    # -------------------------------------------------------------------------

    async def update_settings(
        self,
        tenant_id: str,
        *,
        low_balance_threshold: int,
    ) -> BalanceSnapshot:
        """Change the tenant's low-balance threshold.

        Raises:
            ValidationError: If the threshold is negative.
        """
        if low_balance_threshold < 0:
            raise ValidationError("Low balance threshold cannot be negative")
        await CreditRepository.ensure_row(
            self._db,
            tenant_id,
            low_balance_threshold=low_balance_threshold,
        )
        await CreditRepository.update_threshold(
            self._db,
            tenant_id=tenant_id,
            low_balance_threshold=low_balance_threshold,
            now=self._now(),
        )
        return await self.get_snapshot(tenant_id)

    async def check_low_balance(self, tenant_id: str) -> None:
        """Raise a low_balance alert if the balance is at or below threshold."""
        row = await CreditRepository.get_balance_row(self._db, tenant_id)
        if row is None or row.balance > row.low_balance_threshold:
            return
        await self._alerts.raise_if_needed(
            tenant_id=tenant_id,
            alert_type=AlertType.LOW_BALANCE,
            severity=AlertSeverity.MEDIUM,
            message=(
                f"Tenant credit balance is low: {row.balance} credits remaining "
                f"(threshold {row.low_balance_threshold})"
            ),
            details={
                "balance": row.balance,
                "threshold": row.low_balance_threshold,
            },
        )
