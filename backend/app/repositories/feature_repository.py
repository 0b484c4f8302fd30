"""Repository for AI feature operations.

Provides database access for the ai_features table. Features are always
loaded together with their provider.
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.catalog import Feature

# Fields that can be updated via FeatureRepository.update()
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "display_name",
        "description",
        "category",
        "status",
        "credits_per_use",
        "provider_id",
        "model_name",
        "system_prompt",
        "user_prompt_template",
        "max_output_tokens",
        "temperature",
        "published_at",
        "deprecated_at",
    }
)


class FeatureRepository:
    """Stateless repository for Feature table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, feature_id: uuid.UUID) -> Feature | None:
        """Fetch a feature (with its provider) by id.

        Always reloads from the database so the provider state is current.
        """
        stmt = (
            select(Feature)
            .where(Feature.id == feature_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_key(db: AsyncSession, feature_key: str) -> Feature | None:
        """Fetch a feature by its unique key."""
        stmt = select(Feature).where(Feature.feature_key == feature_key)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_features(
        db: AsyncSession,
        *,
        status: str | None = None,
        category: str | None = None,
        provider_id: uuid.UUID | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Feature], int]:
        """List features with optional filters and pagination.

        Returns:
            Tuple of (features ordered by key, total count).
        """
        conditions = []
        if status is not None:
            conditions.append(Feature.status == status)
        if category is not None:
            conditions.append(Feature.category == category)
        if provider_id is not None:
            conditions.append(Feature.provider_id == provider_id)

        count_stmt = select(func.count()).select_from(Feature).where(*conditions)
        total = (await db.execute(count_stmt)).scalar_one()

        data_stmt = (
            select(Feature)
            .where(*conditions)
            .order_by(Feature.feature_key)
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def create(db: AsyncSession, **fields: object) -> Feature:
        """Insert a feature.

        Returns:
            Created Feature with its provider loaded.
        """
        feature = Feature(**fields)
        db.add(feature)
        await db.flush()
        await db.refresh(feature)
        return feature

    @staticmethod
    async def update(
        db: AsyncSession,
        feature: Feature,
        **kwargs: object,
    ) -> Feature:
        """Update feature fields.

        Raises:
            ValueError: If an unknown field name is passed.
        """
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        for field, value in kwargs.items():
            setattr(feature, field, value)

        await db.flush()
        await db.refresh(feature)
        if "provider_id" in kwargs:
            await db.refresh(feature, ["provider"])
        return feature

    @staticmethod
    async def delete(db: AsyncSession, feature: Feature) -> None:
        """Hard delete a feature."""
        await db.delete(feature)
        await db.flush()
