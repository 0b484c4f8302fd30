"""Repository for AI provider operations.

Provides database access for the ai_providers table.
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.catalog import Feature, Provider

# Fields that can be updated via ProviderRepository.update()
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "display_name",
        "description",
        "provider_type",
        "api_key",
        "api_endpoint",
        "api_version",
        "organization_id",
        "default_model",
        "supports_vision",
        "status",
        "last_health_check",
        "last_error",
        "error_count",
    }
)


class ProviderRepository:
    """Stateless repository for Provider table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, provider_id: uuid.UUID) -> Provider | None:
        """Fetch a provider by id."""
        return await db.get(Provider, provider_id)

    @staticmethod
    async def get_by_name(db: AsyncSession, provider_name: str) -> Provider | None:
        """Fetch a provider by its unique slug."""
        stmt = select(Provider).where(Provider.provider_name == provider_name)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_providers(
        db: AsyncSession,
        *,
        status: str | None = None,
        provider_type: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Provider], int]:
        """List providers with optional filters and pagination.

        Returns:
            Tuple of (providers ordered by name, total count).
        """
        conditions = []
        if status is not None:
            conditions.append(Provider.status == status)
        if provider_type is not None:
            conditions.append(Provider.provider_type == provider_type)

        count_stmt = select(func.count()).select_from(Provider).where(*conditions)
        total = (await db.execute(count_stmt)).scalar_one()

        data_stmt = (
            select(Provider)
            .where(*conditions)
            .order_by(Provider.provider_name)
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def create(db: AsyncSession, **fields: object) -> Provider:
        """Insert a provider.

        Returns:
            Created Provider.
        """
        provider = Provider(**fields)
        db.add(provider)
        await db.flush()
        await db.refresh(provider)
        return provider

    @staticmethod
    async def update(
        db: AsyncSession,
        provider: Provider,
        **kwargs: object,
    ) -> Provider:
        """Update provider fields.

        Raises:
            ValueError: If an unknown field name is passed.
        """
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        for field, value in kwargs.items():
            setattr(provider, field, value)

        await db.flush()
        await db.refresh(provider)
        return provider

    @staticmethod
    async def delete(db: AsyncSession, provider: Provider) -> None:
        """Hard delete a provider."""
        await db.delete(provider)
        await db.flush()

    @staticmethod
    async def count_features(db: AsyncSession, provider_id: uuid.UUID) -> int:
        """Number of features referencing the provider."""
        stmt = (
            select(func.count())
            .select_from(Feature)
            .where(Feature.provider_id == provider_id)
        )
        return (await db.execute(stmt)).scalar_one()
