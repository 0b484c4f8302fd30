"""Tests for the admin catalog service.

Provider CRUD and connectivity tests, the feature lifecycle, tenant
assignment and per-user access overrides.
"""

import uuid

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.models.catalog import Feature, Provider
from app.models.entitlement import Subscription
from app.providers.registry import AdapterRegistry
from app.services.admin_catalog_service import AdminCatalogService, ProviderConnectionTester
from tests.conftest import (
    CHAT_COMPLETION_BODY,
    FIXED_NOW,
    TEST_TENANT_ID,
    TEST_USER_ID,
    VendorStub,
    make_feature,
    make_provider,
    subscribe,
)


def _service(db, clock) -> AdminCatalogService:
    return AdminCatalogService(db, now=clock)


async def _fresh(db, model, row_id):
    stmt = select(model).where(model.id == row_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


# =============================================================================
# Providers
# =============================================================================


class TestCreateProvider:
    """Provider registration."""

    async def test_starts_inactive(self, db_session, clock) -> None:
        """Requested status is ignored; a connection test activates it."""
        provider = await _service(db_session, clock).create_provider(
            provider_name="openai-main",
            display_name="OpenAI",
            provider_type="chat_completions",
            api_key="sk-secret",
            status="active",
        )

        assert provider.status == "inactive"
        assert provider.error_count == 0
        assert provider.api_key == "sk-secret"

    async def test_duplicate_name(self, db_session, clock) -> None:
        existing = await make_provider(db_session)

        with pytest.raises(ConflictError) as exc_info:
            await _service(db_session, clock).create_provider(
                provider_name=existing.provider_name,
                display_name="Again",
                provider_type="custom",
            )

        assert exc_info.value.code == "DUPLICATE_PROVIDER"


class TestListProviders:
    async def test_filters(self, db_session, clock) -> None:
        await make_provider(db_session, provider_type="messages")
        await make_provider(db_session, status="error")
        await make_provider(db_session)

        providers, total = await _service(db_session, clock).list_providers()
        errored, errored_total = await _service(db_session, clock).list_providers(status="error")
        messages, _ = await _service(db_session, clock).list_providers(provider_type="messages")

        assert total == 3
        assert len(providers) == 3
        assert errored_total == 1
        assert errored[0].status == "error"
        assert [p.provider_type for p in messages] == ["messages"]


class TestUpdateProvider:
    async def test_updates_fields(self, db_session, clock) -> None:
        provider = await make_provider(db_session)

        updated = await _service(db_session, clock).update_provider(
            provider.id, default_model="gpt-4o-mini", status="inactive"
        )

        assert updated.default_model == "gpt-4o-mini"
        assert updated.status == "inactive"

    async def test_unknown(self, db_session, clock) -> None:
        with pytest.raises(NotFoundError):
            await _service(db_session, clock).update_provider(uuid.uuid4(), display_name="x")


class TestDeleteProvider:
    """Hard delete only when no feature references the provider."""

    async def test_deletes_unused(self, db_session, clock) -> None:
        provider = await make_provider(db_session)

        deleted = await _service(db_session, clock).delete_provider(provider.id)

        assert deleted is True
        assert await _fresh(db_session, Provider, provider.id) is None

    async def test_deactivates_when_referenced(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        await make_feature(db_session, provider)

        deleted = await _service(db_session, clock).delete_provider(provider.id)

        assert deleted is False
        row = await _fresh(db_session, Provider, provider.id)
        assert row.status == "inactive"


class TestProviderConnectionTest:
    """Connection test results are written back to the provider row."""

    @staticmethod
    def _tester(session_factory, registry, clock) -> ProviderConnectionTester:
        return ProviderConnectionTester(session_factory, registry, now=clock)

    async def test_success_activates(self, db_session, clock, registry, session_factory) -> None:
        provider = await make_provider(db_session, status="error", error_count=3)

        result = await self._tester(session_factory, registry, clock).run(provider.id)

        assert result.success is True
        assert result.message == "OpenAI connection successful"
        assert result.tested_at == FIXED_NOW
        row = await _fresh(db_session, Provider, provider.id)
        assert row.status == "active"
        assert row.error_count == 0
        assert row.last_error is None
        assert row.last_health_check == FIXED_NOW

    async def test_failure_marks_error(
        self, db_session, clock, registry, session_factory, vendor: VendorStub
    ) -> None:
        vendor.respond({"error": {"message": "Incorrect API key"}}, status_code=401)
        provider = await make_provider(db_session, error_count=1)

        result = await self._tester(session_factory, registry, clock).run(provider.id)

        assert result.success is False
        assert result.message == "Incorrect API key"
        row = await _fresh(db_session, Provider, provider.id)
        assert row.status == "error"
        assert row.error_count == 2
        assert row.last_error == "Incorrect API key"

    async def test_missing_key_fails_without_request(
        self, db_session, clock, registry, session_factory, vendor: VendorStub
    ) -> None:
        provider = await make_provider(db_session, api_key=None)

        result = await self._tester(session_factory, registry, clock).run(provider.id)

        assert result.success is False
        assert result.message == "OpenAI API key not configured"
        assert vendor.requests == []

    async def test_no_transaction_open_during_vendor_call(
        self, db_session, clock, session_factory
    ) -> None:
        """The read is committed before the vendor call; the write follows it."""
        opened: list[AsyncSession] = []
        in_transaction_during_call: list[bool] = []

        def tracking_factory() -> AsyncSession:
            session = session_factory()
            opened.append(session)
            return session

        def vendor_handler(request: httpx.Request) -> httpx.Response:
            in_transaction_during_call.extend(s.in_transaction() for s in opened)
            return httpx.Response(200, json=CHAT_COMPLETION_BODY)

        registry = AdapterRegistry(transport=httpx.MockTransport(vendor_handler))
        provider = await make_provider(db_session)

        result = await ProviderConnectionTester(tracking_factory, registry, now=clock).run(
            provider.id
        )

        assert result.success is True
        assert in_transaction_during_call == [False]
        assert len(opened) == 2

    async def test_unknown_provider(self, clock, registry, session_factory) -> None:
        with pytest.raises(NotFoundError):
            await self._tester(session_factory, registry, clock).run(uuid.uuid4())


# =============================================================================
# Features
# =============================================================================


class TestCreateFeature:
    """Features start as drafts."""

    async def test_created_as_draft(self, db_session, clock) -> None:
        provider = await make_provider(db_session)

        feature = await _service(db_session, clock).create_feature(
            feature_key="document_summary",
            provider_id=provider.id,
            display_name="Document summary",
            category="summarization",
            credits_per_use=3,
            status="published",
        )

        assert feature.status == "draft"
        assert feature.published_at is None
        assert feature.credits_per_use == 3

    @pytest.mark.parametrize("key", ["Document-Summary", "has space", ""])
    async def test_rejects_bad_key(self, db_session, clock, key) -> None:
        provider = await make_provider(db_session)

        with pytest.raises(ValidationError):
            await _service(db_session, clock).create_feature(
                feature_key=key,
                provider_id=provider.id,
                display_name="x",
                category="custom",
            )

    async def test_duplicate_key(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        existing = await make_feature(db_session, provider)

        with pytest.raises(ConflictError) as exc_info:
            await _service(db_session, clock).create_feature(
                feature_key=existing.feature_key,
                provider_id=provider.id,
                display_name="x",
                category="custom",
            )

        assert exc_info.value.code == "DUPLICATE_FEATURE"

    async def test_unknown_provider(self, db_session, clock) -> None:
        with pytest.raises(NotFoundError):
            await _service(db_session, clock).create_feature(
                feature_key="orphan",
                provider_id=uuid.uuid4(),
                display_name="x",
                category="custom",
            )


class TestPublishFeature:
    """draft -> published requires an active provider."""

    async def test_publishes(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider, status="draft")

        published = await _service(db_session, clock).publish_feature(feature.id)

        assert published.status == "published"
        assert published.published_at == FIXED_NOW

    async def test_idempotent(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider, status="draft")
        service = _service(db_session, clock)
        await service.publish_feature(feature.id)
        clock.advance(days=1)

        again = await service.publish_feature(feature.id)

        assert again.published_at == FIXED_NOW

    async def test_requires_active_provider(self, db_session, clock) -> None:
        provider = await make_provider(db_session, status="inactive")
        feature = await make_feature(db_session, provider, status="draft")

        with pytest.raises(InvalidStateError, match="Provider must be active"):
            await _service(db_session, clock).publish_feature(feature.id)

    async def test_archived_cannot_be_published(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider, status="archived")

        with pytest.raises(InvalidStateError, match="Archived features"):
            await _service(db_session, clock).publish_feature(feature.id)

    async def test_via_update(self, db_session, clock) -> None:
        """Setting status through update runs the same checks."""
        provider = await make_provider(db_session, status="inactive")
        feature = await make_feature(db_session, provider, status="draft")

        with pytest.raises(InvalidStateError):
            await _service(db_session, clock).update_feature(feature.id, status="published")


class TestDeprecateFeature:
    async def test_deprecates_published(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)

        deprecated = await _service(db_session, clock).deprecate_feature(feature.id)

        assert deprecated.status == "deprecated"
        assert deprecated.deprecated_at == FIXED_NOW

    async def test_draft_cannot_be_deprecated(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider, status="draft")

        with pytest.raises(InvalidStateError, match="Only published features"):
            await _service(db_session, clock).deprecate_feature(feature.id)


class TestUpdateFeature:
    async def test_updates_fields(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        other = await make_provider(db_session, provider_type="messages")
        feature = await make_feature(db_session, provider)

        updated = await _service(db_session, clock).update_feature(
            feature.id, credits_per_use=25, provider_id=other.id
        )

        assert updated.credits_per_use == 25
        assert updated.provider.id == other.id

    async def test_unknown_new_provider(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)

        with pytest.raises(NotFoundError):
            await _service(db_session, clock).update_feature(
                feature.id, provider_id=uuid.uuid4()
            )


class TestDeleteFeature:
    """Features that were ever assigned are archived, not deleted."""

    async def test_deletes_unused(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider, status="draft")

        assert await _service(db_session, clock).delete_feature(feature.id) is True
        assert await _fresh(db_session, Feature, feature.id) is None

    async def test_archives_when_subscribed(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)
        await subscribe(db_session, feature)

        assert await _service(db_session, clock).delete_feature(feature.id) is False
        row = await _fresh(db_session, Feature, feature.id)
        assert row.status == "archived"


class TestListFeatures:
    async def test_filters(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        other = await make_provider(db_session)
        await make_feature(db_session, provider, status="draft")
        await make_feature(db_session, provider, category="translation")
        await make_feature(db_session, other)

        _, total = await _service(db_session, clock).list_features()
        drafts, _ = await _service(db_session, clock).list_features(status="draft")
        translation, _ = await _service(db_session, clock).list_features(category="translation")
        by_provider, by_provider_total = await _service(db_session, clock).list_features(
            provider_id=other.id
        )

        assert total == 3
        assert [f.status for f in drafts] == ["draft"]
        assert [f.category for f in translation] == ["translation"]
        assert by_provider_total == 1
        assert by_provider[0].provider_id == other.id


# =============================================================================
# Tenant assignment and user access
# =============================================================================


class TestAssignFeature:
    """Subscriptions are created or replaced per tenant."""

    async def test_assigns_tenants(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)

        subscriptions = await _service(db_session, clock).assign_feature(
            feature.id, ["tenant-a", "tenant-b", "tenant-a"], max_usage_per_day=5
        )

        assert [s.tenant_id for s in subscriptions] == ["tenant-a", "tenant-b"]
        assert all(s.max_usage_per_day == 5 for s in subscriptions)
        assert all(s.is_enabled for s in subscriptions)

    async def test_reassigning_replaces_terms(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)
        await subscribe(db_session, feature, custom_credits_per_use=7)

        (subscription,) = await _service(db_session, clock).assign_feature(
            feature.id, [TEST_TENANT_ID], custom_credits_per_use=2
        )

        assert subscription.custom_credits_per_use == 2
        rows = (await db_session.execute(select(Subscription))).scalars().all()
        assert len(rows) == 1

    async def test_requires_published(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider, status="draft")

        with pytest.raises(InvalidStateError, match="Only published features"):
            await _service(db_session, clock).assign_feature(feature.id, [TEST_TENANT_ID])

    async def test_unassign(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)
        await subscribe(db_session, feature, tenant_id="tenant-a")
        await subscribe(db_session, feature, tenant_id="tenant-b")

        removed = await _service(db_session, clock).unassign_feature(
            feature.id, ["tenant-a", "tenant-z"]
        )

        assert removed == 1


class TestUserAccess:
    """Per-user overrides."""

    async def test_set_and_replace(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)
        service = _service(db_session, clock)

        await service.set_user_access(
            feature.id, TEST_USER_ID, tenant_id=TEST_TENANT_ID, max_usage_per_day=3
        )
        access = await service.set_user_access(
            feature.id, TEST_USER_ID, tenant_id=TEST_TENANT_ID, is_enabled=False
        )

        assert access.is_enabled is False
        assert access.max_usage_per_day is None

    async def test_remove(self, db_session, clock) -> None:
        provider = await make_provider(db_session)
        feature = await make_feature(db_session, provider)
        service = _service(db_session, clock)
        await service.set_user_access(feature.id, TEST_USER_ID, tenant_id=TEST_TENANT_ID)

        await service.remove_user_access(feature.id, TEST_USER_ID)

        with pytest.raises(NotFoundError):
            await service.remove_user_access(feature.id, TEST_USER_ID)

    async def test_unknown_feature(self, db_session, clock) -> None:
        with pytest.raises(NotFoundError):
            await _service(db_session, clock).set_user_access(
                uuid.uuid4(), TEST_USER_ID, tenant_id=TEST_TENANT_ID
            )
