"""Abstract base class and types for provider adapters.

A ProviderAdapter turns a resolved prompt configuration plus caller input
into one vendor HTTP call and normalizes the answer into ExecutionResult.
Concrete adapters only describe the vendor's request and response shapes;
sending, error mapping and logging live here.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx
import structlog

from app.models.catalog import ProviderType
from app.providers.errors import (
    ProviderConfigurationError,
    ProviderError,
    ProviderExecutionError,
    TransportError,
)

logger = structlog.get_logger()

INPUT_PLACEHOLDER = "{{input}}"
DEFAULT_MAX_OUTPUT_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_SECONDS = 60.0

# Connectivity test payload
PROBE_PROMPT = "Hi"
PROBE_MAX_TOKENS = 10


# =============================================================================
# Resolved configuration snapshots
# =============================================================================


@dataclass(frozen=True)
class PromptConfig:
    """Prompt settings for one feature, with defaults already applied.

    Attributes:
        model_name: Feature-level model override (None uses provider default).
        system_prompt: Optional system instruction.
        user_prompt_template: Template with "{{input}}" placeholders; None
            sends the raw input.
        max_output_tokens: Completion token limit.
        temperature: Sampling temperature.
    """

    model_name: str | None = None
    system_prompt: str | None = None
    user_prompt_template: str | None = None
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    temperature: float = DEFAULT_TEMPERATURE

    def render_user_prompt(self, input_text: str) -> str:
        """Substitute every "{{input}}" occurrence in the template."""
        if not self.user_prompt_template:
            return input_text
        return self.user_prompt_template.replace(INPUT_PLACEHOLDER, input_text)


@dataclass(frozen=True)
class ProviderConnection:
    """Connection settings for one provider.

    The api_key is excluded from repr so it cannot leak into logs.
    """

    provider_type: str
    api_key: str | None = field(default=None, repr=False)
    api_endpoint: str | None = None
    api_version: str | None = None
    organization_id: str | None = None
    default_model: str | None = None
    supports_vision: bool = False


@dataclass(frozen=True)
class FileAttachment:
    """Base64-encoded file sent alongside the input (images only)."""

    data_base64: str = field(repr=False)
    media_type: str = "image/png"


@dataclass(frozen=True)
class ExecutionResult:
    """Normalized vendor answer."""

    output: str
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a provider connectivity test."""

    success: bool
    message: str
    latency_ms: int = 0


@dataclass(frozen=True)
class PreparedRequest:
    """HTTP request an adapter wants sent."""

    method: str
    url: str
    headers: dict[str, str]
    json: dict[str, Any] | None = None


# =============================================================================
# Helpers
# =============================================================================


def extract_error_message(response: httpx.Response, vendor_name: str) -> str:
    """Pull the vendor's error text out of a failed response.

    Understands {"error": {"message": ...}} and {"error": "..."} bodies;
    anything else yields a generic message with the HTTP status.
    """
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
        if isinstance(error, str) and error:
            return error
    return f"{vendor_name} API error (HTTP {response.status_code})"


def as_token_count(value: Any) -> int:
    """Coerce a vendor-reported token count to a non-negative int."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return max(int(value), 0)


def usage_section(value: Any) -> dict[str, Any]:
    """Token usage block of a vendor body; anything but a dict counts as absent."""
    return value if isinstance(value, dict) else {}


# =============================================================================
# Adapter base class
# =============================================================================


class ProviderAdapter(ABC):
    """Strategy for one vendor API family.

    Subclasses set the class attributes and implement build_request,
    build_probe_request and parse_response.

    Args:
        transport: Optional httpx transport (tests inject MockTransport).
        timeout: Total seconds allowed for one vendor call.
    """

    provider_type: ClassVar[ProviderType]
    vendor_name: ClassVar[str]
    default_model: ClassVar[str | None] = None
    requires_api_key: ClassVar[bool] = True
    requires_endpoint: ClassVar[bool] = False

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._transport = transport
        self._timeout = timeout

    # -------------------------------------------------------------------------
    # Vendor-specific hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def build_request(
        self,
        prompt: PromptConfig,
        connection: ProviderConnection,
        input_text: str,
        file: FileAttachment | None,
        options: dict[str, Any] | None,
    ) -> PreparedRequest:
        """Build the vendor request for one invocation."""

    @abstractmethod
    def build_probe_request(self, connection: ProviderConnection) -> PreparedRequest:
        """Build the minimal request used to test connectivity."""

    @abstractmethod
    def parse_response(self, body: Any) -> ExecutionResult:
        """Normalize a successful vendor response body.

        Raises:
            ProviderExecutionError: The body lacks the expected output structure.
        """

    # -------------------------------------------------------------------------
    # Shared behaviour
    # -------------------------------------------------------------------------

    def shape_error(self) -> ProviderExecutionError:
        """Error for a 2xx body that lacks the expected output structure."""
        return ProviderExecutionError(
            f"{self.vendor_name} returned an unexpected response shape"
        )

    def resolve_model(self, prompt: PromptConfig, connection: ProviderConnection) -> str | None:
        """Feature model, else provider default, else the family default."""
        return prompt.model_name or connection.default_model or self.default_model

    def check_configuration(self, connection: ProviderConnection) -> None:
        """Fail fast when the connection cannot possibly work.

        Raises:
            ProviderConfigurationError: Credential or endpoint missing.
        """
        if self.requires_api_key and not connection.api_key:
            raise ProviderConfigurationError(f"{self.vendor_name} API key not configured")
        if self.requires_endpoint and not connection.api_endpoint:
            raise ProviderConfigurationError(
                f"{self.vendor_name} API endpoint not configured"
            )

    async def execute(
        self,
        prompt: PromptConfig,
        connection: ProviderConnection,
        input_text: str,
        file: FileAttachment | None = None,
        options: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """Run one invocation against the vendor.

        Args:
            prompt: Resolved prompt configuration.
            connection: Resolved provider connection.
            input_text: Caller input substituted into the template.
            file: Optional image; attached only when the provider supports vision.
            options: Caller options (forwarded by adapters that accept them).

        Returns:
            ExecutionResult with output text and token counts.

        Raises:
            ProviderConfigurationError: Missing credential or endpoint.
            ProviderExecutionError: Vendor returned an error.
            TransportError: Network failure or timeout.
        """
        self.check_configuration(connection)
        if file is not None and not connection.supports_vision:
            file = None
        request = self.build_request(prompt, connection, input_text, file, options)
        model = self.resolve_model(prompt, connection)

        logger.info(
            "provider_request_start",
            provider_type=self.provider_type.value,
            model=model,
            has_file=file is not None,
        )
        start_time = time.monotonic()
        try:
            body = await self._send(request)
        except ProviderError as e:
            logger.error(
                "provider_request_failed",
                provider_type=self.provider_type.value,
                model=model,
                error=e.message,
                error_type=type(e).__name__,
            )
            raise

        result = self.parse_response(body)
        logger.info(
            "provider_request_complete",
            provider_type=self.provider_type.value,
            model=model,
            input_tokens=result.tokens_in,
            output_tokens=result.tokens_out,
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )
        return result

    async def probe(self, connection: ProviderConnection) -> ProbeResult:
        """Test connectivity with a minimal real call.

        Never raises provider errors; failures become an unsuccessful
        ProbeResult.
        """
        try:
            self.check_configuration(connection)
        except ProviderConfigurationError as e:
            return ProbeResult(success=False, message=e.message, latency_ms=0)

        request = self.build_probe_request(connection)
        start_time = time.monotonic()
        try:
            await self._send(request, expect_json=False)
        except ProviderError as e:
            latency_ms = int((time.monotonic() - start_time) * 1000)
            logger.warning(
                "provider_probe_failed",
                provider_type=self.provider_type.value,
                error=e.message,
            )
            return ProbeResult(success=False, message=e.message, latency_ms=latency_ms)

        latency_ms = int((time.monotonic() - start_time) * 1000)
        return ProbeResult(
            success=True,
            message=f"{self.vendor_name} connection successful",
            latency_ms=latency_ms,
        )

    async def _send(self, request: PreparedRequest, *, expect_json: bool = True) -> Any:
        """Send a prepared request and return the decoded JSON body.

        Raises:
            TransportError: Connection failure or timeout.
            ProviderExecutionError: Non-2xx status or undecodable body.
        """
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self._timeout,
        ) as client:
            try:
                response = await client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    json=request.json,
                )
            except httpx.TimeoutException as e:
                raise TransportError(f"{self.vendor_name} request timed out") from e
            except httpx.HTTPError as e:
                raise TransportError(f"{self.vendor_name} request failed: {e}") from e

        if response.is_error:
            raise ProviderExecutionError(
                extract_error_message(response, self.vendor_name),
                http_status=response.status_code,
            )
        if not expect_json:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ProviderExecutionError(
                f"{self.vendor_name} returned a response that is not valid JSON",
                http_status=response.status_code,
            ) from e
