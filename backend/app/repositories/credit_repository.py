"""Repository for tenant credit balances and the credit transaction ledger.

Provides database access for the tenant_credit_balances and
credit_transactions tables. Balance mutations are single conditional
UPDATE statements so that concurrent callers can never overdraw a tenant.
"""

from datetime import datetime
from typing import Any, TypedDict, cast

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ledger import CreditBalance, CreditTransaction

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class CreditOverview(TypedDict):
    """Typed return value for CreditRepository.get_overview()."""

    tenants_with_credits: int
    total_balance: int
    total_purchased: int
    total_used: int
    low_balance_tenants: int


# A tenant is low on credits at or below its own alert threshold
_IS_LOW_BALANCE = CreditBalance.balance <= CreditBalance.low_balance_threshold


class CreditRepository:
    """Stateless repository for CreditBalance and CreditTransaction.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    # =========================================================================
    # Balance rows
    # =========================================================================

    @staticmethod
    async def get_balance_row(
        db: AsyncSession, tenant_id: str
    ) -> CreditBalance | None:
        """Read the tenant's balance row, bypassing the identity map.

        Args:
            db: Async database session.
            tenant_id: Tenant to query.

        Returns:
            Fresh CreditBalance if the tenant has one, None otherwise.
        """
        stmt = (
            select(CreditBalance)
            .where(CreditBalance.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_balance(db: AsyncSession, tenant_id: str) -> int:
        """Read the tenant's current balance.

        A tenant without a balance row has a balance of 0.

        Args:
            db: Async database session.
            tenant_id: Tenant to query.

        Returns:
            Current balance in credits.
        """
        stmt = select(CreditBalance.balance).where(CreditBalance.tenant_id == tenant_id)
        result = await db.execute(stmt)
        balance = result.scalar_one_or_none()
        return balance if balance is not None else 0

    @staticmethod
    async def ensure_row(
        db: AsyncSession,
        tenant_id: str,
        *,
        low_balance_threshold: int,
    ) -> None:
        """Create an empty balance row for the tenant if none exists.

        Uses INSERT ... ON CONFLICT DO NOTHING so concurrent first top-ups
        for the same tenant do not collide.

        Args:
            db: Async database session.
            tenant_id: Tenant to initialise.
            low_balance_threshold: Threshold for a newly created row.
        """
        insert = _INSERT_BY_DIALECT[db.get_bind().dialect.name]
        stmt = (
            insert(CreditBalance)
            .values(
                tenant_id=tenant_id,
                balance=0,
                total_purchased=0,
                total_used=0,
                low_balance_threshold=low_balance_threshold,
            )
            .on_conflict_do_nothing(index_elements=["tenant_id"])
        )
        await db.execute(stmt)

    @staticmethod
    async def atomic_debit(
        db: AsyncSession,
        *,
        tenant_id: str,
        amount: int,
        now: datetime,
    ) -> bool:
        """Atomically debit a tenant's balance.

        Uses WHERE balance >= amount to prevent overdraft. The check and the
        decrement are one statement, so no other debit can interleave.

        Args:
            db: Async database session.
            tenant_id: Tenant to debit.
            amount: Credits to debit (positive value).
            now: Timestamp recorded as last_used_at.

        Returns:
            True if debit succeeded, False if the balance was insufficient
            (or the tenant has no balance row).

        Raises:
            ValueError: If amount is not positive.
        """
        if amount <= 0:
            raise ValueError("atomic_debit amount must be positive")
        stmt = (
            update(CreditBalance)
            .where(
                CreditBalance.tenant_id == tenant_id,
                CreditBalance.balance >= amount,
            )
            .values(
                balance=CreditBalance.balance - amount,
                total_used=CreditBalance.total_used + amount,
                last_used_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        rows_updated: int = result.rowcount
        return rows_updated > 0

    @staticmethod
    async def atomic_credit(
        db: AsyncSession,
        *,
        tenant_id: str,
        amount: int,
        now: datetime,
    ) -> int:
        """Atomically credit a tenant's balance.

        The balance row must already exist (see ensure_row).

        Args:
            db: Async database session.
            tenant_id: Tenant to credit.
            amount: Credits to add (positive value).
            now: Timestamp recorded as last_purchase_at.

        Returns:
            New balance after crediting.

        Raises:
            ValueError: If amount is not positive.
        """
        if amount <= 0:
            raise ValueError("atomic_credit amount must be positive")
        stmt = (
            update(CreditBalance)
            .where(CreditBalance.tenant_id == tenant_id)
            .values(
                balance=CreditBalance.balance + amount,
                total_purchased=CreditBalance.total_purchased + amount,
                last_purchase_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        return await CreditRepository.get_balance(db, tenant_id)

    @staticmethod
    async def update_threshold(
        db: AsyncSession,
        *,
        tenant_id: str,
        low_balance_threshold: int,
        now: datetime,
    ) -> None:
        """Set the low-balance alert threshold for a tenant.

        Args:
            db: Async database session.
            tenant_id: Tenant to update (row must exist).
            low_balance_threshold: New threshold in credits.
            now: Timestamp recorded as updated_at.
        """
        stmt = (
            update(CreditBalance)
            .where(CreditBalance.tenant_id == tenant_id)
            .values(low_balance_threshold=low_balance_threshold, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)

    # =========================================================================
    # Platform-wide reads
    # =========================================================================

    @staticmethod
    async def list_balances(
        db: AsyncSession,
        *,
        low_balance_only: bool = False,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[CreditBalance], int]:
        """List tenant balance rows, lowest balance first.

        Args:
            db: Async database session.
            low_balance_only: Only tenants at or below their alert threshold.
            offset: Number of records to skip.
            limit: Maximum records to return.

        Returns:
            Tuple of (balance rows, total count).
        """
        conditions = [_IS_LOW_BALANCE] if low_balance_only else []

        count_stmt = select(func.count()).select_from(CreditBalance).where(*conditions)
        total = (await db.execute(count_stmt)).scalar_one()

        data_stmt = (
            select(CreditBalance)
            .where(*conditions)
            .order_by(CreditBalance.balance, CreditBalance.tenant_id)
            .offset(offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(data_stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def get_overview(db: AsyncSession) -> CreditOverview:
        """Aggregate balances across every tenant.

        Returns:
            Dict with the number of tenants holding credits, balance,
            purchased and used sums, and the number of low-balance tenants.
        """
        stmt = select(
            func.coalesce(func.sum(case((CreditBalance.balance > 0, 1), else_=0)), 0).label(
                "tenants_with_credits"
            ),
            func.coalesce(func.sum(CreditBalance.balance), 0).label("total_balance"),
            func.coalesce(func.sum(CreditBalance.total_purchased), 0).label("total_purchased"),
            func.coalesce(func.sum(CreditBalance.total_used), 0).label("total_used"),
            func.coalesce(func.sum(case((_IS_LOW_BALANCE, 1), else_=0)), 0).label(
                "low_balance_tenants"
            ),
        )
        row = (await db.execute(stmt)).one()
        return {
            "tenants_with_credits": int(row.tenants_with_credits),
            "total_balance": int(row.total_balance),
            "total_purchased": int(row.total_purchased),
            "total_used": int(row.total_used),
            "low_balance_tenants": int(row.low_balance_tenants),
        }

    @staticmethod
    async def top_consumers(db: AsyncSession, *, limit: int = 5) -> list[CreditBalance]:
        """Balance rows with the highest lifetime usage."""
        stmt = (
            select(CreditBalance)
            .where(CreditBalance.total_used > 0)
            .order_by(CreditBalance.total_used.desc(), CreditBalance.tenant_id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def recent_transactions(
        db: AsyncSession, *, limit: int = 10
    ) -> list[CreditTransaction]:
        """Latest transactions across all tenants, newest first."""
        stmt = (
            select(CreditTransaction)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # =========================================================================
    # Transactions (append-only)
    # =========================================================================

    @staticmethod
    async def create_transaction(
        db: AsyncSession,
        *,
        tenant_id: str,
        amount: int,
        transaction_type: str,
        balance_after: int,
        created_at: datetime,
        feature_id: Any = None,
        usage_log_id: Any = None,
        notes: str | None = None,
    ) -> CreditTransaction:
        """Append a credit transaction.

        Args:
            db: Async database session.
            tenant_id: Tenant whose balance changed.
            amount: Signed amount (+credit, -debit).
            transaction_type: One of usage, purchase, bonus, adjustment, refund.
            balance_after: Balance immediately after the change.
            created_at: Transaction timestamp.
            feature_id: Feature charged (usage debits).
            usage_log_id: Usage log entry settled by this debit.
            notes: Human-readable description.

        Returns:
            Created CreditTransaction.
        """
        txn = CreditTransaction(
            tenant_id=tenant_id,
            amount=amount,
            transaction_type=transaction_type,
            balance_after=balance_after,
            feature_id=feature_id,
            usage_log_id=usage_log_id,
            notes=notes,
            created_at=created_at,
        )
        db.add(txn)
        await db.flush()
        await db.refresh(txn)
        return txn

    @staticmethod
    async def list_transactions(
        db: AsyncSession,
        tenant_id: str,
        *,
        offset: int = 0,
        limit: int = 50,
        transaction_type: str | None = None,
    ) -> tuple[list[CreditTransaction], int]:
        """List credit transactions for a tenant with pagination.

        Args:
            db: Async database session.
            tenant_id: Tenant to query transactions for.
            offset: Number of records to skip.
            limit: Maximum records to return.
            transaction_type: Optional filter (usage, purchase, etc.).

        Returns:
            Tuple of (transactions list newest first, total count).
        """
        conditions = [CreditTransaction.tenant_id == tenant_id]
        if transaction_type is not None:
            conditions.append(CreditTransaction.transaction_type == transaction_type)

        count_stmt = (
            select(func.count()).select_from(CreditTransaction).where(*conditions)
        )
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(CreditTransaction)
            .where(*conditions)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        txns = list(result.scalars().all())

        return txns, total
