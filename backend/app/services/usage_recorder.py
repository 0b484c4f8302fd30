"""Usage recorder: audit entry and settlement for one invocation.

Runs inside a single unit of work:
1. Always insert a UsageLog (success=false with the error on failure).
2. On success with a non-zero price, debit the tenant through the credit
   ledger and link the usage transaction to the log entry.
3. Re-read the balance and raise a low_balance alert if needed.

If the settlement debit loses a race, InsufficientCreditsError propagates
and the caller's unit of work rolls everything back.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.base import utc_now
from app.models.usage import UsageLog
from app.repositories.credit_repository import CreditRepository
from app.repositories.usage_repository import UsageRepository
from app.services.credit_ledger import CreditLedger


def truncate_text(value: str | None, max_chars: int) -> str | None:
    """Cut text to at most max_chars characters."""
    if value is None:
        return None
    return value[:max_chars]


@dataclass(frozen=True)
class InvocationOutcome:
    """What happened when the provider was called.

    Attributes:
        success: Whether the provider returned a usable answer.
        output: Provider output text (successful calls).
        tokens_in: Prompt tokens reported by the vendor.
        tokens_out: Completion tokens reported by the vendor.
        processing_time_ms: Duration of the provider call.
        error_message: Vendor or transport error text (failed calls).
    """

    success: bool
    output: str | None = None
    tokens_in: int = 0
    tokens_out: int = 0
    processing_time_ms: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class RecordedInvocation:
    """Result of recording one invocation."""

    usage_log: UsageLog
    credits_used: int
    balance_after: int


class UsageRecorder:
    """Persists invocation attempts and settles their credit cost.

    Args:
        db: Async database session (one unit of work per invocation).
        now: Clock returning aware UTC datetimes.
        ledger: Credit ledger for debits and low-balance alerts.
        max_text_chars: Truncation limit for stored input/output text.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        now: Callable[[], datetime] = utc_now,
        ledger: CreditLedger | None = None,
        max_text_chars: int | None = None,
    ) -> None:
        self._db = db
        self._now = now
        self._ledger = ledger or CreditLedger(db, now=now)
        self._max_text_chars = (
            max_text_chars
            if max_text_chars is not None
            else settings.usage_text_max_chars
        )

    async def record_invocation(
        self,
        *,
        tenant_id: str,
        user_id: str,
        feature_id: uuid.UUID,
        provider_id: uuid.UUID | None,
        input_text: str,
        outcome: InvocationOutcome,
        credits_required: int,
    ) -> RecordedInvocation:
        """Record one attempt and, on success, charge for it.

        Args:
            tenant_id: Calling tenant.
            user_id: Calling user.
            feature_id: Feature invoked.
            provider_id: Provider that served the call.
            input_text: Caller input (stored truncated).
            outcome: Provider call result.
            credits_required: Price of a successful call.

        Returns:
            RecordedInvocation with the log entry and the balance afterwards.

        Raises:
            InsufficientCreditsError: Settlement debit found too few credits.
        """
        charge = credits_required if outcome.success and credits_required > 0 else 0
        usage_log = await UsageRepository.create(
            self._db,
            tenant_id=tenant_id,
            user_id=user_id,
            feature_id=feature_id,
            provider_id=provider_id,
            input_text=truncate_text(input_text, self._max_text_chars),
            output_text=truncate_text(outcome.output, self._max_text_chars),
            input_tokens=outcome.tokens_in,
            output_tokens=outcome.tokens_out,
            processing_time_ms=outcome.processing_time_ms,
            credits_used=charge,
            success=outcome.success,
            error_message=None if outcome.success else outcome.error_message,
            created_at=self._now(),
        )

        if charge:
            await self._ledger.debit_usage(
                tenant_id,
                charge,
                feature_id=feature_id,
                usage_log_id=usage_log.id,
            )
            await self._ledger.check_low_balance(tenant_id)

        balance_after = await CreditRepository.get_balance(self._db, tenant_id)
        return RecordedInvocation(
            usage_log=usage_log,
            credits_used=charge,
            balance_after=balance_after,
        )
