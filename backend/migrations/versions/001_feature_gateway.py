"""Create feature gateway tables.

Revision ID: 001_feature_gateway
Revises:
Create Date: 2026-10-17

Creates the feature catalog (ai_providers, ai_features), tenant
entitlements (tenant_feature_subscriptions, user_feature_access), the
credit ledger (tenant_credit_balances, credit_transactions), the usage
audit log (usage_logs) and admin_alerts.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_feature_gateway"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# ---------------------------------------------------------------------------
# Shared column types
# ---------------------------------------------------------------------------
_PG_UUID = postgresql.UUID(as_uuid=True)
_UUID_DEFAULT = sa.text("gen_random_uuid()")
_TIMESTAMP = sa.DateTime(timezone=True)
_NOW = sa.func.now()
_ID_LEN = 100


def _id_column() -> sa.Column:
    return sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True)


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", _TIMESTAMP, server_default=_NOW, nullable=False),
        sa.Column("updated_at", _TIMESTAMP, server_default=_NOW, nullable=False),
    ]


def upgrade() -> None:
    """Create all feature gateway tables."""
    # 1. Providers (Tier 0)
    op.create_table(
        "ai_providers",
        _id_column(),
        sa.Column("provider_name", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("provider_type", sa.String(30), nullable=False),
        sa.Column("api_key", sa.Text, nullable=True),
        sa.Column("api_endpoint", sa.String(500), nullable=True),
        sa.Column("api_version", sa.String(50), nullable=True),
        sa.Column("organization_id", sa.String(255), nullable=True),
        sa.Column("default_model", sa.String(100), nullable=True),
        sa.Column("supports_vision", sa.Boolean, server_default="false", nullable=False),
        sa.Column("status", sa.String(20), server_default="inactive", nullable=False),
        sa.Column("last_health_check", _TIMESTAMP, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("error_count", sa.Integer, server_default="0", nullable=False),
        *_timestamp_columns(),
        sa.UniqueConstraint("provider_name", name="uq_ai_providers_provider_name"),
        sa.CheckConstraint(
            "provider_type IN ('chat_completions', 'messages', 'generate_content', 'custom')",
            name="ck_ai_providers_type_valid",
        ),
        sa.CheckConstraint(
            "status IN ('active', 'inactive', 'testing', 'error')",
            name="ck_ai_providers_status_valid",
        ),
        sa.CheckConstraint("error_count >= 0", name="ck_ai_providers_error_count_nonneg"),
    )

    # 2. Features (Tier 1)
    op.create_table(
        "ai_features",
        _id_column(),
        sa.Column("feature_key", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("status", sa.String(20), server_default="draft", nullable=False),
        sa.Column("credits_per_use", sa.Integer, nullable=True),
        sa.Column(
            "provider_id",
            _PG_UUID,
            sa.ForeignKey("ai_providers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("model_name", sa.String(100), nullable=True),
        sa.Column("system_prompt", sa.Text, nullable=True),
        sa.Column("user_prompt_template", sa.Text, nullable=True),
        sa.Column("max_output_tokens", sa.Integer, nullable=True),
        sa.Column("temperature", sa.Float, nullable=True),
        sa.Column("published_at", _TIMESTAMP, nullable=True),
        sa.Column("deprecated_at", _TIMESTAMP, nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("feature_key", name="uq_ai_features_feature_key"),
        sa.CheckConstraint(
            "category IN ('ocr', 'document_processing', 'data_transformation', "
            "'analytics', 'translation', 'summarization', 'custom')",
            name="ck_ai_features_category_valid",
        ),
        sa.CheckConstraint(
            "status IN ('draft', 'testing', 'published', 'deprecated', 'archived')",
            name="ck_ai_features_status_valid",
        ),
        sa.CheckConstraint(
            "credits_per_use IS NULL OR credits_per_use >= 0",
            name="ck_ai_features_credits_nonneg",
        ),
        sa.CheckConstraint(
            "max_output_tokens IS NULL OR max_output_tokens > 0",
            name="ck_ai_features_max_tokens_positive",
        ),
    )
    op.create_index("ix_ai_features_provider_id", "ai_features", ["provider_id"])

    # 3. Tenant subscriptions (Tier 2)
    op.create_table(
        "tenant_feature_subscriptions",
        _id_column(),
        sa.Column("tenant_id", sa.String(_ID_LEN), nullable=False),
        sa.Column(
            "feature_id",
            _PG_UUID,
            sa.ForeignKey("ai_features.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_enabled", sa.Boolean, server_default="true", nullable=False),
        sa.Column("expires_at", _TIMESTAMP, nullable=True),
        sa.Column("custom_credits_per_use", sa.Integer, nullable=True),
        sa.Column("max_usage_per_day", sa.Integer, nullable=True),
        sa.Column("max_usage_per_month", sa.Integer, nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("tenant_id", "feature_id", name="uq_subscription_tenant_feature"),
        sa.CheckConstraint(
            "custom_credits_per_use IS NULL OR custom_credits_per_use >= 0",
            name="ck_subscription_credits_nonneg",
        ),
    )
    op.create_index(
        "ix_tenant_feature_subscriptions_tenant_id",
        "tenant_feature_subscriptions",
        ["tenant_id"],
    )

    # 4. Per-user access overrides (Tier 2)
    op.create_table(
        "user_feature_access",
        _id_column(),
        sa.Column("user_id", sa.String(_ID_LEN), nullable=False),
        sa.Column("tenant_id", sa.String(_ID_LEN), nullable=False),
        sa.Column(
            "feature_id",
            _PG_UUID,
            sa.ForeignKey("ai_features.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_enabled", sa.Boolean, server_default="true", nullable=False),
        sa.Column("max_usage_per_day", sa.Integer, nullable=True),
        sa.Column("max_usage_per_month", sa.Integer, nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("user_id", "feature_id", name="uq_user_access_user_feature"),
        sa.CheckConstraint(
            "max_usage_per_day IS NULL OR max_usage_per_day > 0",
            name="ck_user_access_daily_positive",
        ),
        sa.CheckConstraint(
            "max_usage_per_month IS NULL OR max_usage_per_month > 0",
            name="ck_user_access_monthly_positive",
        ),
    )
    op.create_index("ix_user_feature_access_tenant_id", "user_feature_access", ["tenant_id"])

    # 5. Credit balances (one row per tenant)
    op.create_table(
        "tenant_credit_balances",
        sa.Column("tenant_id", sa.String(_ID_LEN), primary_key=True),
        sa.Column("balance", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_purchased", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_used", sa.Integer, server_default="0", nullable=False),
        sa.Column("low_balance_threshold", sa.Integer, server_default="100", nullable=False),
        sa.Column("last_used_at", _TIMESTAMP, nullable=True),
        sa.Column("last_purchase_at", _TIMESTAMP, nullable=True),
        *_timestamp_columns(),
        sa.CheckConstraint("balance >= 0", name="ck_credit_balance_nonneg"),
        sa.CheckConstraint("total_purchased >= 0", name="ck_credit_purchased_nonneg"),
        sa.CheckConstraint("total_used >= 0", name="ck_credit_used_nonneg"),
        sa.CheckConstraint("low_balance_threshold >= 0", name="ck_credit_threshold_nonneg"),
    )

    # 6. Usage logs (append-only)
    op.create_table(
        "usage_logs",
        _id_column(),
        sa.Column("tenant_id", sa.String(_ID_LEN), nullable=False),
        sa.Column("user_id", sa.String(_ID_LEN), nullable=False),
        sa.Column(
            "feature_id",
            _PG_UUID,
            sa.ForeignKey("ai_features.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "provider_id",
            _PG_UUID,
            sa.ForeignKey("ai_providers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("input_text", sa.Text, nullable=True),
        sa.Column("output_text", sa.Text, nullable=True),
        sa.Column("input_tokens", sa.Integer, server_default="0", nullable=False),
        sa.Column("output_tokens", sa.Integer, server_default="0", nullable=False),
        sa.Column("processing_time_ms", sa.Integer, server_default="0", nullable=False),
        sa.Column("credits_used", sa.Integer, server_default="0", nullable=False),
        sa.Column("success", sa.Boolean, nullable=False),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", _TIMESTAMP, server_default=_NOW, nullable=False),
        sa.CheckConstraint("input_tokens >= 0", name="ck_usage_logs_input_tokens_nonneg"),
        sa.CheckConstraint("output_tokens >= 0", name="ck_usage_logs_output_tokens_nonneg"),
        sa.CheckConstraint("credits_used >= 0", name="ck_usage_logs_credits_nonneg"),
        sa.CheckConstraint(
            "processing_time_ms >= 0",
            name="ck_usage_logs_processing_time_nonneg",
        ),
    )
    op.create_index(
        "ix_usage_logs_user_feature_created",
        "usage_logs",
        ["user_id", "feature_id", "created_at"],
    )
    op.create_index("ix_usage_logs_tenant_created", "usage_logs", ["tenant_id", "created_at"])

    # 7. Credit transactions (append-only; references usage_logs)
    op.create_table(
        "credit_transactions",
        _id_column(),
        sa.Column("tenant_id", sa.String(_ID_LEN), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column(
            "feature_id",
            _PG_UUID,
            sa.ForeignKey("ai_features.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "usage_log_id",
            _PG_UUID,
            sa.ForeignKey("usage_logs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", _TIMESTAMP, server_default=_NOW, nullable=False),
        sa.CheckConstraint(
            "transaction_type IN ('usage', 'purchase', 'bonus', 'adjustment', 'refund')",
            name="ck_credit_txn_type_valid",
        ),
        sa.CheckConstraint("amount <> 0", name="ck_credit_txn_amount_nonzero"),
        sa.CheckConstraint("balance_after >= 0", name="ck_credit_txn_balance_nonneg"),
    )
    op.create_index("ix_credit_transactions_tenant_id", "credit_transactions", ["tenant_id"])

    # 8. Admin alerts
    op.create_table(
        "admin_alerts",
        _id_column(),
        sa.Column("alert_type", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("tenant_id", sa.String(_ID_LEN), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("details", postgresql.JSONB, nullable=True),
        sa.Column("is_resolved", sa.Boolean, server_default="false", nullable=False),
        sa.Column("resolved_at", _TIMESTAMP, nullable=True),
        sa.Column("resolved_by", sa.String(100), nullable=True),
        sa.Column("resolution_notes", sa.Text, nullable=True),
        sa.Column("created_at", _TIMESTAMP, server_default=_NOW, nullable=False),
        sa.CheckConstraint(
            "alert_type IN ('low_balance', 'credits_depleted')",
            name="ck_admin_alerts_type_valid",
        ),
        sa.CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_admin_alerts_severity_valid",
        ),
    )
    op.create_index(
        "ix_admin_alerts_tenant_type_resolved",
        "admin_alerts",
        ["tenant_id", "alert_type", "is_resolved"],
    )


def downgrade() -> None:
    """Drop all feature gateway tables."""
    op.drop_index("ix_admin_alerts_tenant_type_resolved", table_name="admin_alerts")
    op.drop_index("ix_credit_transactions_tenant_id", table_name="credit_transactions")
    op.drop_index("ix_usage_logs_tenant_created", table_name="usage_logs")
    op.drop_index("ix_usage_logs_user_feature_created", table_name="usage_logs")
    op.drop_index("ix_user_feature_access_tenant_id", table_name="user_feature_access")
    op.drop_index(
        "ix_tenant_feature_subscriptions_tenant_id",
        table_name="tenant_feature_subscriptions",
    )
    op.drop_index("ix_ai_features_provider_id", table_name="ai_features")

    # Drop tables (reverse order of creation)
    op.drop_table("admin_alerts")
    op.drop_table("credit_transactions")
    op.drop_table("usage_logs")
    op.drop_table("tenant_credit_balances")
    op.drop_table("user_feature_access")
    op.drop_table("tenant_feature_subscriptions")
    op.drop_table("ai_features")
    op.drop_table("ai_providers")
