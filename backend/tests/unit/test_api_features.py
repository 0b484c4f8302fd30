"""Tests for the tenant-facing feature endpoints.

HTTP-level tests for /api/v1/features: identity headers, the available
feature list, feature detail, invocation (success, denials, provider
failures, request validation) and the caller's usage history.
"""

import base64
import uuid

from httpx import AsyncClient

from app.core.config import settings
from tests.conftest import (
    TEST_TENANT_ID,
    TEST_USER_ID,
    VendorStub,
    fund,
    grant_user_access,
    make_feature,
    make_provider,
    subscribe,
)

_PREFIX = "/api/v1/features"


async def _entitled_feature(db, *, balance: int = 1000, **feature_fields):
    provider = await make_provider(db)
    feature = await make_feature(db, provider, **feature_fields)
    await subscribe(db, feature)
    await fund(db, balance=balance)
    return feature


# =============================================================================
# Identity
# =============================================================================


class TestIdentityHeaders:
    """Endpoints require the upstream identity headers."""

    async def test_missing_headers(self, anonymous_client: AsyncClient) -> None:
        response = await anonymous_client.get(f"{_PREFIX}/available")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    async def test_missing_user_header(self, anonymous_client: AsyncClient) -> None:
        response = await anonymous_client.get(
            f"{_PREFIX}/available", headers={settings.tenant_header: TEST_TENANT_ID}
        )

        assert response.status_code == 401

    async def test_oversized_header(self, anonymous_client: AsyncClient) -> None:
        response = await anonymous_client.get(
            f"{_PREFIX}/available",
            headers={settings.tenant_header: "t" * 101, settings.user_header: TEST_USER_ID},
        )

        assert response.status_code == 401


# =============================================================================
# GET /available
# =============================================================================


class TestAvailableFeatures:
    """Entitled features plus the tenant's credit summary."""

    async def test_lists_entitled_features(self, client: AsyncClient, db_session) -> None:
        feature = await _entitled_feature(db_session, credits_per_use=4)
        other_provider = await make_provider(db_session)
        await make_feature(db_session, other_provider)  # not subscribed

        response = await client.get(f"{_PREFIX}/available")

        assert response.status_code == 200
        data = response.json()["data"]
        assert [f["id"] for f in data["features"]] == [str(feature.id)]
        summary = data["features"][0]
        assert summary["feature_key"] == feature.feature_key
        assert summary["provider_name"] == "Test Provider"
        assert summary["credits_per_use"] == 4
        assert data["credits"] == {"balance": 1000, "low_balance_threshold": 100, "is_low": False}

    async def test_low_balance_flag(self, client: AsyncClient, db_session) -> None:
        await fund(db_session, balance=100, low_balance_threshold=100)

        response = await client.get(f"{_PREFIX}/available")

        data = response.json()["data"]
        assert data["features"] == []
        assert data["credits"]["is_low"] is True


# =============================================================================
# GET /{feature_id}
# =============================================================================


class TestFeatureDetail:
    """Detail runs the full entitlement check."""

    async def test_detail(self, client: AsyncClient, db_session) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider, credits_per_use=10)
        await subscribe(db_session, feature, custom_credits_per_use=6, max_usage_per_day=50)
        await fund(db_session, balance=80)

        response = await client.get(f"{_PREFIX}/{feature.id}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["credits_per_use"] == 6
        assert data["credits_available"] == 80
        assert data["max_usage_per_day"] == 50
        assert data["max_usage_per_month"] is None
        assert data["expires_at"] is None

    async def test_not_subscribed(self, client: AsyncClient, db_session) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)

        response = await client.get(f"{_PREFIX}/{feature.id}")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "SUBSCRIPTION_MISSING"

    async def test_insufficient_credits(self, client: AsyncClient, db_session) -> None:
        feature = await _entitled_feature(db_session, balance=3)

        response = await client.get(f"{_PREFIX}/{feature.id}")

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "INSUFFICIENT_CREDITS"
        assert error["details"] == [{"credits_required": 10, "credits_available": 3}]

    async def test_malformed_id(self, client: AsyncClient) -> None:
        response = await client.get(f"{_PREFIX}/not-a-uuid")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# =============================================================================
# POST /{feature_id}/invoke
# =============================================================================


class TestInvoke:
    """Invocation through the gateway."""

    async def test_success(self, client: AsyncClient, db_session) -> None:
        feature = await _entitled_feature(db_session)

        response = await client.post(
            f"{_PREFIX}/{feature.id}/invoke", json={"input": "Long report text"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["output"] == "Hello!"
        assert data["tokens_used"] == {"input": 12, "output": 5}
        assert data["credits_used"] == 10
        assert data["credits_remaining"] == 990
        assert data["processing_time_ms"] >= 0

    async def test_image_forwarded(
        self, client: AsyncClient, db_session, vendor: VendorStub
    ) -> None:
        provider = await make_provider(db_session, supports_vision=True)
        feature = await make_feature(db_session, provider)
        await subscribe(db_session, feature)
        await fund(db_session)
        image = base64.b64encode(b"\x89PNG fake").decode()

        response = await client.post(
            f"{_PREFIX}/{feature.id}/invoke",
            json={"input": "What is this?", "file": image, "file_media_type": "image/png"},
        )

        assert response.status_code == 200
        content = vendor.last_json["messages"][-1]["content"]
        assert content[1]["image_url"]["url"] == f"data:image/png;base64,{image}"

    async def test_unknown_feature(self, client: AsyncClient, vendor: VendorStub) -> None:
        response = await client.post(
            f"{_PREFIX}/{uuid.uuid4()}/invoke", json={"input": "hello"}
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FEATURE_UNAVAILABLE"
        assert vendor.requests == []

    async def test_daily_quota(self, client: AsyncClient, db_session) -> None:
        feature = await _entitled_feature(db_session)
        await grant_user_access(db_session, feature, max_usage_per_day=1)

        first = await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "one"})
        second = await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "two"})

        assert first.status_code == 200
        assert second.status_code == 429
        error = second.json()["error"]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["message"] == "Daily usage limit reached"

    async def test_credits_exhausted(self, client: AsyncClient, db_session) -> None:
        feature = await _entitled_feature(db_session, balance=15)

        first = await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "one"})
        second = await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "two"})

        assert first.json()["data"]["credits_remaining"] == 5
        assert second.status_code == 402

    async def test_provider_error(
        self, client: AsyncClient, db_session, vendor: VendorStub
    ) -> None:
        """Vendor failures map to 502 and leave the balance untouched."""
        vendor.respond({"error": {"message": "rate limited"}}, status_code=429)
        feature = await _entitled_feature(db_session)

        response = await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "x"})

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == "PROVIDER_EXECUTION_ERROR"
        assert error["message"] == "rate limited"

        available = await client.get(f"{_PREFIX}/available")
        assert available.json()["data"]["credits"]["balance"] == 1000

    async def test_provider_not_configured(self, client: AsyncClient, db_session) -> None:
        provider = await make_provider(db_session, api_key=None)
        feature = await make_feature(db_session, provider)
        await subscribe(db_session, feature)
        await fund(db_session)

        response = await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "x"})

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "PROVIDER_CONFIGURATION_ERROR"


class TestInvokeValidation:
    """Request body validation happens before any entitlement check."""

    async def test_empty_input(self, client: AsyncClient) -> None:
        response = await client.post(f"{_PREFIX}/{uuid.uuid4()}/invoke", json={"input": ""})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_unknown_field(self, client: AsyncClient) -> None:
        response = await client.post(
            f"{_PREFIX}/{uuid.uuid4()}/invoke", json={"input": "x", "model": "gpt-4o"}
        )

        assert response.status_code == 400

    async def test_file_not_base64(self, client: AsyncClient) -> None:
        response = await client.post(
            f"{_PREFIX}/{uuid.uuid4()}/invoke", json={"input": "x", "file": "not base64!"}
        )

        assert response.status_code == 400

    async def test_file_not_image(self, client: AsyncClient) -> None:
        response = await client.post(
            f"{_PREFIX}/{uuid.uuid4()}/invoke",
            json={"input": "x", "file": "aGVsbG8=", "file_media_type": "application/pdf"},
        )

        assert response.status_code == 400


# =============================================================================
# GET /usage/history
# =============================================================================


class TestUsageHistory:
    """The caller sees only their own attempts."""

    async def test_own_history(
        self, client: AsyncClient, db_session, vendor: VendorStub
    ) -> None:
        feature = await _entitled_feature(db_session)
        await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "one"})
        vendor.respond({"error": {"message": "overloaded"}}, status_code=529)
        await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": "two"})
        await client.post(
            f"{_PREFIX}/{feature.id}/invoke",
            json={"input": "three"},
            headers={settings.user_header: "someone-else"},
        )

        response = await client.get(f"{_PREFIX}/usage/history")

        assert response.status_code == 200
        body = response.json()
        assert body["meta"]["total"] == 2
        assert {item["success"] for item in body["data"]} == {True, False}
        assert all(item["feature_id"] == str(feature.id) for item in body["data"])
        failed = next(item for item in body["data"] if not item["success"])
        assert failed["credits_used"] == 0
        assert failed["error_message"] == "overloaded"

    async def test_pagination(self, client: AsyncClient, db_session) -> None:
        feature = await _entitled_feature(db_session)
        for text in ("a", "b", "c"):
            await client.post(f"{_PREFIX}/{feature.id}/invoke", json={"input": text})

        response = await client.get(f"{_PREFIX}/usage/history", params={"per_page": 2})

        body = response.json()
        assert len(body["data"]) == 2
        assert body["meta"] == {"total": 3, "page": 1, "per_page": 2, "total_pages": 2}
