"""Provider error taxonomy.

Error classes for the provider adapter layer. Every error carries a stable
machine-readable code and the HTTP status the API surfaces it with.

WHY SEPARATE ERROR CLASSES:
- Configuration problems are the operator's to fix, not the vendor's
- Transport failures never reached the vendor; execution errors did
- Provider-agnostic handling (adapters map vendor responses to these)
"""

__all__ = [
    "ProviderError",
    "ProviderConfigurationError",
    "ProviderExecutionError",
    "TransportError",
]


class ProviderError(Exception):
    """Base class for all provider errors.

    Attributes:
        message: Human-readable description (vendor text where available).
        code: Machine-readable error code.
        status_code: HTTP status the API responds with.
    """

    code = "PROVIDER_EXECUTION_ERROR"
    status_code = 502

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProviderConfigurationError(ProviderError):
    """Provider is missing a credential or endpoint.

    Raised before any network call is attempted.
    """

    code = "PROVIDER_CONFIGURATION_ERROR"
    status_code = 503


class ProviderExecutionError(ProviderError):
    """Vendor answered with a non-success status or an unusable body."""

    def __init__(self, message: str, http_status: int | None = None) -> None:
        """Initialize ProviderExecutionError.

        Args:
            message: Vendor error message or a generic description.
            http_status: Status code returned by the vendor, if any.
        """
        super().__init__(message)
        self.http_status = http_status


class TransportError(ProviderError):
    """Network failure or timeout before a vendor response was received."""

    code = "TRANSPORT_ERROR"
