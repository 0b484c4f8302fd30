"""Feature catalog ORM models.

Provider (Tier 0) holds vendor connection settings and health state.
Feature (Tier 1) maps an internal feature key onto a provider together with
the prompt configuration used to call it.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class ProviderType(str, Enum):
    """Vendor API family an adapter speaks."""

    CHAT_COMPLETIONS = "chat_completions"
    MESSAGES = "messages"
    GENERATE_CONTENT = "generate_content"
    CUSTOM = "custom"


class ProviderStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TESTING = "testing"
    ERROR = "error"


class FeatureStatus(str, Enum):
    DRAFT = "draft"
    TESTING = "testing"
    PUBLISHED = "published"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


class FeatureCategory(str, Enum):
    OCR = "ocr"
    DOCUMENT_PROCESSING = "document_processing"
    DATA_TRANSFORMATION = "data_transformation"
    ANALYTICS = "analytics"
    TRANSLATION = "translation"
    SUMMARIZATION = "summarization"
    CUSTOM = "custom"


def _in_clause(column: str, enum_cls: type[Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class Provider(Base, TimestampMixin):
    """External AI vendor connection.

    New providers start inactive; only active providers can back an
    invocation. The API key is stored as given and masked in every
    API response.

    Attributes:
        provider_name: Unique slug (e.g. "openai-prod").
        provider_type: ProviderType value selecting the adapter.
        api_key: Vendor credential (nullable until configured).
        api_endpoint: Override for the vendor's default endpoint.
        status: ProviderStatus value.
        last_health_check: When the last connectivity test ran.
        last_error: Message from the last failed connectivity test.
        error_count: Consecutive failed connectivity tests.
    """

    __tablename__ = "ai_providers"
    __table_args__ = (
        CheckConstraint(
            _in_clause("provider_type", ProviderType),
            name="ck_ai_providers_type_valid",
        ),
        CheckConstraint(
            _in_clause("status", ProviderStatus),
            name="ck_ai_providers_status_valid",
        ),
        CheckConstraint("error_count >= 0", name="ck_ai_providers_error_count_nonneg"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    provider_name: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )
    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    provider_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    api_key: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    api_endpoint: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    api_version: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    organization_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    default_model: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    supports_vision: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProviderStatus.INACTIVE.value,
        server_default=text("'inactive'"),
    )
    last_health_check: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    error_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )


class Feature(Base, TimestampMixin):
    """Internal AI capability exposed to tenants by feature id.

    Only published features whose provider is active can be invoked.

    Attributes:
        feature_key: Unique lowercase key ([a-z0-9_]).
        credits_per_use: Default debit per successful call (None means 1).
        user_prompt_template: Template with "{{input}}" placeholders.
        published_at: Set when the feature is published.
        deprecated_at: Set when the feature is deprecated.
    """

    __tablename__ = "ai_features"
    __table_args__ = (
        CheckConstraint(
            _in_clause("category", FeatureCategory),
            name="ck_ai_features_category_valid",
        ),
        CheckConstraint(
            _in_clause("status", FeatureStatus),
            name="ck_ai_features_status_valid",
        ),
        CheckConstraint(
            "credits_per_use IS NULL OR credits_per_use >= 0",
            name="ck_ai_features_credits_nonneg",
        ),
        CheckConstraint(
            "max_output_tokens IS NULL OR max_output_tokens > 0",
            name="ck_ai_features_max_tokens_positive",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    feature_key: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )
    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    category: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FeatureStatus.DRAFT.value,
        server_default=text("'draft'"),
    )
    credits_per_use: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("ai_providers.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Prompt configuration
    model_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    system_prompt: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    user_prompt_template: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    max_output_tokens: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    temperature: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    published_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    deprecated_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    provider: Mapped[Provider] = relationship(
        lazy="joined",
    )
