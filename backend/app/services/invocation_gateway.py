"""Invocation gateway: resolve, execute, record.

Control flow for one feature invocation:
1. Resolve entitlement in its own unit of work, committed before anything
   else happens (so a credits_depleted alert survives the denial).
2. Call the provider outside any database transaction, bounded by
   PROVIDER_TIMEOUT_SECONDS.
3. Record the attempt (and settle its cost) in a second unit of work.

Steps 2 and 3 are shielded from caller cancellation: a client that goes
away does not abort a provider call that may already be billable, nor
its audit entry.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import unit_of_work
from app.core.errors import InsufficientCreditsError
from app.models.base import utc_now
from app.providers.base import ExecutionResult, FileAttachment
from app.providers.errors import ProviderError, TransportError
from app.providers.registry import AdapterRegistry
from app.services.entitlement_resolver import Allowed, Denied, EntitlementResolver
from app.services.usage_recorder import InvocationOutcome, UsageRecorder

logger = logging.getLogger(__name__)

GENERIC_PROVIDER_ERROR_MESSAGE = "The AI provider could not process this request"
UNEXPECTED_FAILURE_MESSAGE = "Unexpected error during provider call"
SETTLEMENT_FAILURE_MESSAGE = "Insufficient credits at settlement"

# Strong references to in-flight invocations; the event loop only keeps weak ones
_inflight: set[asyncio.Task[Any]] = set()


def _finish_inflight(task: asyncio.Task[Any]) -> None:
    """Drop the reference and retrieve the outcome of a finished invocation.

    When the caller was cancelled nobody awaits the task, so its exception
    is read here. Failures were already logged and recorded by the task.
    """
    _inflight.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Invocation task finished with %s", type(task.exception()).__name__)


@dataclass(frozen=True)
class InvocationRequest:
    """One caller request to invoke a feature."""

    tenant_id: str
    user_id: str
    feature_id: uuid.UUID
    input_text: str
    file: FileAttachment | None = None
    options: dict[str, Any] | None = None


@dataclass(frozen=True)
class InvocationResult:
    """Successful invocation as returned to the caller."""

    output: str
    tokens_in: int
    tokens_out: int
    processing_time_ms: int
    credits_used: int
    credits_remaining: int
    usage_log_id: uuid.UUID


class InvocationGateway:
    """Orchestrates resolver, provider adapter and usage recorder.

    Args:
        session_factory: Factory for short-lived sessions (one per unit of work).
        registry: Provider adapter registry.
        now: Clock returning aware UTC datetimes.
        timeout_seconds: Upper bound for one provider call.
        expose_provider_errors: Pass vendor error text through to callers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: AdapterRegistry,
        *,
        now: Callable[[], datetime] = utc_now,
        timeout_seconds: float | None = None,
        expose_provider_errors: bool | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._now = now
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.provider_timeout_seconds
        )
        self._expose_provider_errors = (
            expose_provider_errors
            if expose_provider_errors is not None
            else settings.expose_provider_errors
        )

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        """Invoke a feature on behalf of a tenant user.

        Args:
            request: Caller identity, feature and input.

        Returns:
            InvocationResult with output, token usage and credits.

        Raises:
            EntitlementDeniedError: Resolver refused the call (including
                INSUFFICIENT_CREDITS when settlement loses a race).
            ProviderError: Provider configuration, execution or transport
                failure (recorded, not charged).
        """
        async with unit_of_work(self._session_factory) as db:
            resolution = await EntitlementResolver(db, now=self._now).resolve(
                request.tenant_id, request.user_id, request.feature_id
            )

        if isinstance(resolution, Denied):
            raise resolution.to_error()

        task = asyncio.create_task(self._execute_and_record(request, resolution))
        _inflight.add(task)
        task.add_done_callback(_finish_inflight)
        return await asyncio.shield(task)

    async def _execute_and_record(
        self,
        request: InvocationRequest,
        allowed: Allowed,
    ) -> InvocationResult:
        adapter = self._registry.get(allowed.connection.provider_type)
        result: ExecutionResult | None = None
        failure: ProviderError | None = None
        unexpected: Exception | None = None

        start_time = time.monotonic()
        try:
            result = await asyncio.wait_for(
                adapter.execute(
                    allowed.prompt,
                    allowed.connection,
                    request.input_text,
                    request.file,
                    request.options,
                ),
                timeout=self._timeout,
            )
        except TimeoutError:
            failure = TransportError(f"Provider call timed out after {self._timeout:g}s")
        except ProviderError as e:
            failure = e
        except Exception as e:
            unexpected = e
        processing_time_ms = int((time.monotonic() - start_time) * 1000)

        if result is not None:
            outcome = InvocationOutcome(
                success=True,
                output=result.output,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                processing_time_ms=processing_time_ms,
            )
        else:
            outcome = InvocationOutcome(
                success=False,
                processing_time_ms=processing_time_ms,
                error_message=(
                    failure.message if failure is not None else UNEXPECTED_FAILURE_MESSAGE
                ),
            )

        try:
            async with unit_of_work(self._session_factory) as db:
                recorded = await UsageRecorder(db, now=self._now).record_invocation(
                    tenant_id=request.tenant_id,
                    user_id=request.user_id,
                    feature_id=allowed.feature.id,
                    provider_id=allowed.feature.provider_id,
                    input_text=request.input_text,
                    outcome=outcome,
                    credits_required=allowed.credits_required,
                )
        except InsufficientCreditsError:
            await self._record_settlement_failure(request, allowed, outcome)
            raise

        if unexpected is not None:
            logger.error(
                "Provider call for feature %s failed unexpectedly",
                allowed.feature.feature_key,
            )
            raise unexpected
        if failure is not None:
            logger.warning(
                "Provider call for feature %s failed: %s",
                allowed.feature.feature_key,
                failure.code,
            )
            raise self._caller_error(failure)

        return InvocationResult(
            output=result.output,
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
            processing_time_ms=processing_time_ms,
            credits_used=recorded.credits_used,
            credits_remaining=recorded.balance_after,
            usage_log_id=recorded.usage_log.id,
        )

    async def _record_settlement_failure(
        self,
        request: InvocationRequest,
        allowed: Allowed,
        outcome: InvocationOutcome,
    ) -> None:
        """Record a successful provider call that could not be paid for."""
        logger.warning(
            "Settlement debit lost for tenant %s on feature %s",
            request.tenant_id,
            allowed.feature.feature_key,
        )
        async with unit_of_work(self._session_factory) as db:
            await UsageRecorder(db, now=self._now).record_invocation(
                tenant_id=request.tenant_id,
                user_id=request.user_id,
                feature_id=allowed.feature.id,
                provider_id=allowed.feature.provider_id,
                input_text=request.input_text,
                outcome=InvocationOutcome(
                    success=False,
                    tokens_in=outcome.tokens_in,
                    tokens_out=outcome.tokens_out,
                    processing_time_ms=outcome.processing_time_ms,
                    error_message=SETTLEMENT_FAILURE_MESSAGE,
                ),
                credits_required=allowed.credits_required,
            )

    def _caller_error(self, failure: ProviderError) -> ProviderError:
        """Error surfaced to the caller; vendor text hidden when configured."""
        if self._expose_provider_errors:
            return failure
        return type(failure)(GENERIC_PROVIDER_ERROR_MESSAGE)
