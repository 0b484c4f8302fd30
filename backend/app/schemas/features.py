"""Tenant-facing feature API schemas.

Request and response models for the feature endpoints: invoke, available
features, feature detail and the caller's usage history.
"""

import base64
import binascii
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Inline attachments are base64 strings; cap the encoded size
_MAX_FILE_CHARS = 20 * 1024 * 1024
_MAX_INPUT_CHARS = 100_000


# =============================================================================
# Invoke
# =============================================================================


class InvokeRequest(BaseModel):
    """Request schema for POST /features/{feature_id}/invoke.

    Attributes:
        input: Text substituted into the feature's prompt template.
        file: Optional base64-encoded image, forwarded to vision providers.
        file_media_type: MIME type of file.
        options: Free-form options passed to custom providers.
    """

    model_config = ConfigDict(extra="forbid")

    input: str = Field(min_length=1, max_length=_MAX_INPUT_CHARS)
    file: str | None = Field(default=None, max_length=_MAX_FILE_CHARS)
    file_media_type: str = Field(default="image/png", max_length=100)
    options: dict[str, Any] | None = None

    @field_validator("file")
    @classmethod
    def check_base64(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            msg = "file must be base64-encoded"
            raise ValueError(msg) from None
        return v

    @field_validator("file_media_type")
    @classmethod
    def check_media_type(cls, v: str) -> str:
        if not v.startswith("image/"):
            msg = "file_media_type must be an image type"
            raise ValueError(msg)
        return v


class TokensUsed(BaseModel):
    """Vendor-reported token counts."""

    input: int
    output: int


class InvokeResponse(BaseModel):
    """Response for POST /features/{feature_id}/invoke.

    Attributes:
        output: Provider output text.
        tokens_used: Input and output token counts.
        processing_time_ms: Provider call duration.
        credits_used: Credits debited for this call.
        credits_remaining: Tenant balance after the debit.
    """

    output: str
    tokens_used: TokensUsed
    processing_time_ms: int
    credits_used: int
    credits_remaining: int


# =============================================================================
# Catalog views
# =============================================================================


class FeatureSummary(BaseModel):
    """One entitled feature as seen by a tenant user."""

    id: str
    feature_key: str
    display_name: str
    description: str | None
    category: str
    provider_name: str
    credits_per_use: int


class CreditSummary(BaseModel):
    """Tenant balance shown next to the available features."""

    balance: int
    low_balance_threshold: int
    is_low: bool


class AvailableFeaturesResponse(BaseModel):
    """Response for GET /features/available."""

    features: list[FeatureSummary]
    credits: CreditSummary


class FeatureDetailResponse(BaseModel):
    """Response for GET /features/{feature_id}.

    Only returned while the caller is entitled to the feature.
    """

    id: str
    feature_key: str
    display_name: str
    description: str | None
    category: str
    provider_name: str
    credits_per_use: int
    credits_available: int
    expires_at: datetime | None
    max_usage_per_day: int | None
    max_usage_per_month: int | None


# =============================================================================
# Usage history
# =============================================================================


class UsageHistoryItem(BaseModel):
    """One of the caller's own invocation attempts."""

    id: str
    feature_id: str
    input_tokens: int
    output_tokens: int
    processing_time_ms: int
    credits_used: int
    success: bool
    error_message: str | None
    created_at: datetime
