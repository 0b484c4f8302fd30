"""Tests for the invocation gateway.

End-to-end through resolver, provider adapter (against the vendor stub)
and usage recorder: charging, audit rows for failures, timeouts,
settlement races and caller cancellation.
"""

import asyncio
import gc

import httpx
import pytest
from sqlalchemy import select

from app.core.database import unit_of_work
from app.core.errors import EntitlementDeniedError, InsufficientCreditsError
from app.models.alert import AdminAlert
from app.models.ledger import CreditTransaction
from app.models.usage import UsageLog
from app.providers.errors import (
    ProviderConfigurationError,
    ProviderExecutionError,
    TransportError,
)
from app.providers.registry import AdapterRegistry
from app.repositories.credit_repository import CreditRepository
from app.services.credit_ledger import CreditLedger
from app.services.invocation_gateway import (
    GENERIC_PROVIDER_ERROR_MESSAGE,
    SETTLEMENT_FAILURE_MESSAGE,
    UNEXPECTED_FAILURE_MESSAGE,
    InvocationGateway,
    InvocationRequest,
)
from tests.conftest import (
    CHAT_COMPLETION_BODY,
    TEST_TENANT_ID,
    TEST_USER_ID,
    VendorStub,
    fund,
    make_feature,
    make_provider,
    subscribe,
)

# =============================================================================
# Helpers
# =============================================================================


async def _entitled_feature(db, *, balance: int | None = 1000, credits_per_use=10, **provider_fields):
    provider = await make_provider(db, **provider_fields)
    feature = await make_feature(db, provider, credits_per_use=credits_per_use)
    await subscribe(db, feature)
    if balance is not None:
        await fund(db, balance=balance, low_balance_threshold=0)
    return feature


def _request(feature, input_text: str = "Some long document") -> InvocationRequest:
    return InvocationRequest(
        tenant_id=TEST_TENANT_ID,
        user_id=TEST_USER_ID,
        feature_id=feature.id,
        input_text=input_text,
    )


def _gateway(session_factory, registry, clock, **kwargs) -> InvocationGateway:
    kwargs.setdefault("timeout_seconds", 5.0)
    kwargs.setdefault("expose_provider_errors", True)
    return InvocationGateway(session_factory, registry, now=clock, **kwargs)


async def _logs(db) -> list[UsageLog]:
    return list((await db.execute(select(UsageLog).order_by(UsageLog.created_at))).scalars().all())


async def _transactions(db) -> list[CreditTransaction]:
    return list((await db.execute(select(CreditTransaction))).scalars().all())


async def _balance(db) -> int:
    return await CreditRepository.get_balance(db, TEST_TENANT_ID)


# =============================================================================
# Success
# =============================================================================


class TestSuccessfulInvocation:
    """Charged invocations."""

    async def test_returns_output_and_charges(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        feature = await _entitled_feature(db_session)

        result = await _gateway(session_factory, registry, clock).invoke(_request(feature))

        assert result.output == "Hello!"
        assert (result.tokens_in, result.tokens_out) == (12, 5)
        assert result.credits_used == 10
        assert result.credits_remaining == 990
        assert result.processing_time_ms >= 0
        assert len(vendor.requests) == 1

    async def test_one_log_linked_to_one_debit(
        self, db_session, session_factory, registry, clock
    ) -> None:
        feature = await _entitled_feature(db_session)

        result = await _gateway(session_factory, registry, clock).invoke(_request(feature))

        (log,) = await _logs(db_session)
        (txn,) = await _transactions(db_session)
        assert log.id == result.usage_log_id
        assert log.success is True
        assert log.credits_used == 10
        assert log.provider_id == feature.provider_id
        assert txn.usage_log_id == log.id
        assert txn.amount == -10

    async def test_credits_run_out_after_two_calls(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        """Price 2, balance 5: two calls succeed, the third is refused."""
        feature = await _entitled_feature(db_session, balance=5, credits_per_use=2)
        gateway = _gateway(session_factory, registry, clock)

        first = await gateway.invoke(_request(feature))
        second = await gateway.invoke(_request(feature))
        with pytest.raises(EntitlementDeniedError) as exc_info:
            await gateway.invoke(_request(feature))

        assert first.credits_remaining == 3
        assert second.credits_remaining == 1
        assert exc_info.value.code == "INSUFFICIENT_CREDITS"
        assert await _balance(db_session) == 1
        assert len(vendor.requests) == 2
        assert len(await _logs(db_session)) == 2

    async def test_free_feature_without_balance(
        self, db_session, session_factory, registry, clock
    ) -> None:
        feature = await _entitled_feature(db_session, balance=None, credits_per_use=0)

        result = await _gateway(session_factory, registry, clock).invoke(_request(feature))

        assert result.credits_used == 0
        assert result.credits_remaining == 0
        assert await _transactions(db_session) == []


# =============================================================================
# Denials
# =============================================================================


class TestDenied:
    """Refused invocations never reach the vendor and write no usage row."""

    async def test_missing_subscription(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)
        await fund(db_session)

        with pytest.raises(EntitlementDeniedError) as exc_info:
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        assert exc_info.value.code == "SUBSCRIPTION_MISSING"
        assert exc_info.value.status_code == 403
        assert vendor.requests == []
        assert await _logs(db_session) == []

    async def test_depleted_alert_survives_denial(
        self, db_session, session_factory, registry, clock
    ) -> None:
        """The resolver's alert is committed even though the call is refused."""
        feature = await _entitled_feature(db_session, balance=0)

        with pytest.raises(EntitlementDeniedError):
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        alerts = (await db_session.execute(select(AdminAlert))).scalars().all()
        assert [a.alert_type for a in alerts] == ["credits_depleted"]


# =============================================================================
# Provider failures
# =============================================================================


class TestProviderFailure:
    """Failed provider calls are logged and never charged."""

    async def test_vendor_error_logged_not_charged(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        vendor.respond({"error": {"message": "rate limited"}}, status_code=429)
        feature = await _entitled_feature(db_session, balance=100)

        with pytest.raises(ProviderExecutionError) as exc_info:
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        assert exc_info.value.message == "rate limited"
        (log,) = await _logs(db_session)
        assert log.success is False
        assert log.error_message == "rate limited"
        assert log.credits_used == 0
        assert await _balance(db_session) == 100
        assert await _transactions(db_session) == []

    async def test_vendor_text_hidden_when_configured(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        """Callers get a generic message; the audit row keeps the vendor text."""
        vendor.respond({"error": {"message": "Invalid key sk-live-abc"}}, status_code=401)
        feature = await _entitled_feature(db_session)
        gateway = _gateway(session_factory, registry, clock, expose_provider_errors=False)

        with pytest.raises(ProviderExecutionError) as exc_info:
            await gateway.invoke(_request(feature))

        assert exc_info.value.message == GENERIC_PROVIDER_ERROR_MESSAGE
        (log,) = await _logs(db_session)
        assert log.error_message == "Invalid key sk-live-abc"

    async def test_malformed_vendor_body_logged_not_charged(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        """A 2xx body of the wrong shape fails as a provider error, not a crash."""
        vendor.respond({"choices": [{"message": "hi"}]})
        feature = await _entitled_feature(db_session, balance=100)

        with pytest.raises(ProviderExecutionError) as exc_info:
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        assert exc_info.value.message == "OpenAI returned an unexpected response shape"
        (log,) = await _logs(db_session)
        assert log.success is False
        assert log.error_message == "OpenAI returned an unexpected response shape"
        assert await _balance(db_session) == 100

    async def test_missing_credential(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        feature = await _entitled_feature(db_session, api_key=None)

        with pytest.raises(ProviderConfigurationError) as exc_info:
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        assert exc_info.value.status_code == 503
        assert vendor.requests == []
        (log,) = await _logs(db_session)
        assert log.success is False
        assert await _balance(db_session) == 1000

    async def test_transport_failure(
        self, db_session, session_factory, registry, vendor, clock
    ) -> None:
        vendor.fail_with(httpx.ConnectError("connection refused"))
        feature = await _entitled_feature(db_session)

        with pytest.raises(TransportError):
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        (log,) = await _logs(db_session)
        assert log.success is False
        assert "connection refused" in log.error_message

    async def test_timeout(self, db_session, session_factory, clock) -> None:
        """The gateway's own bound applies regardless of the HTTP client timeout."""

        async def slow_vendor(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(2)
            return httpx.Response(200, json=CHAT_COMPLETION_BODY)

        registry = AdapterRegistry(transport=httpx.MockTransport(slow_vendor), timeout=30)
        feature = await _entitled_feature(db_session)
        gateway = _gateway(session_factory, registry, clock, timeout_seconds=0.05)

        with pytest.raises(TransportError, match="timed out after 0.05s"):
            await gateway.invoke(_request(feature))

        (log,) = await _logs(db_session)
        assert log.success is False
        assert log.credits_used == 0
        assert await _balance(db_session) == 1000

    async def test_unexpected_error_logged_and_reraised(
        self, db_session, session_factory, registry, clock, monkeypatch
    ) -> None:
        async def broken_execute(*args, **kwargs):
            raise RuntimeError("adapter bug")

        monkeypatch.setattr(registry.get("chat_completions"), "execute", broken_execute)
        feature = await _entitled_feature(db_session)

        with pytest.raises(RuntimeError, match="adapter bug"):
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        (log,) = await _logs(db_session)
        assert log.error_message == UNEXPECTED_FAILURE_MESSAGE


# =============================================================================
# Settlement race and cancellation
# =============================================================================


class TestSettlement:
    """Debit at settlement is re-checked atomically."""

    async def test_balance_drained_during_provider_call(
        self, db_session, session_factory, clock
    ) -> None:
        """A concurrent debit wins; the call is logged as failed and not charged."""

        async def draining_vendor(request: httpx.Request) -> httpx.Response:
            async with unit_of_work(session_factory) as db:
                await CreditLedger(db).deduct_credits(TEST_TENANT_ID, 5, reason="concurrent")
            return httpx.Response(200, json=CHAT_COMPLETION_BODY)

        registry = AdapterRegistry(transport=httpx.MockTransport(draining_vendor))
        feature = await _entitled_feature(db_session, balance=12, credits_per_use=10)

        with pytest.raises(InsufficientCreditsError):
            await _gateway(session_factory, registry, clock).invoke(_request(feature))

        (log,) = await _logs(db_session)
        assert log.success is False
        assert log.error_message == SETTLEMENT_FAILURE_MESSAGE
        assert (log.input_tokens, log.output_tokens) == (12, 5)
        assert log.credits_used == 0
        assert await _balance(db_session) == 7
        assert [t.transaction_type for t in await _transactions(db_session)] == ["adjustment"]


class TestCancellation:
    """A caller going away does not abort the provider call or its record."""

    async def test_cancelled_caller_still_recorded(
        self, db_session, session_factory, clock
    ) -> None:
        async def slow_vendor(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.1)
            return httpx.Response(200, json=CHAT_COMPLETION_BODY)

        registry = AdapterRegistry(transport=httpx.MockTransport(slow_vendor))
        feature = await _entitled_feature(db_session)
        gateway = _gateway(session_factory, registry, clock)

        task = asyncio.create_task(gateway.invoke(_request(feature)))
        await asyncio.sleep(0.03)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # Let the shielded call and its recording finish
        await asyncio.sleep(0.5)

        (log,) = await _logs(db_session)
        assert log.success is True
        assert await _balance(db_session) == 990

    async def test_failure_after_cancellation_is_retrieved(
        self, db_session, session_factory, clock
    ) -> None:
        """A provider error nobody awaits is not reported as unretrieved."""

        async def failing_vendor(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.1)
            return httpx.Response(500, json={"error": {"message": "upstream down"}})

        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            registry = AdapterRegistry(transport=httpx.MockTransport(failing_vendor))
            feature = await _entitled_feature(db_session)
            gateway = _gateway(session_factory, registry, clock)

            task = asyncio.create_task(gateway.invoke(_request(feature)))
            await asyncio.sleep(0.03)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            del task

            await asyncio.sleep(0.5)
            gc.collect()
        finally:
            loop.set_exception_handler(previous_handler)

        assert [c for c in reported if "never retrieved" in c.get("message", "")] == []
        (log,) = await _logs(db_session)
        assert log.success is False
        assert log.error_message == "upstream down"


# =============================================================================
# Caller input
# =============================================================================


class TestInputHandling:
    """Input reaches the vendor and is stored truncated."""

    async def test_template_applied_and_input_truncated(
        self, db_session, session_factory, registry, vendor: VendorStub, clock
    ) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(
            db_session, provider, user_prompt_template="Summarize:\n{{input}}"
        )
        await subscribe(db_session, feature)
        await fund(db_session)
        long_input = "word " * 400

        await _gateway(session_factory, registry, clock).invoke(_request(feature, long_input))

        assert vendor.last_json["messages"][-1]["content"] == f"Summarize:\n{long_input}"
        (log,) = await _logs(db_session)
        assert len(log.input_text) == 1000
