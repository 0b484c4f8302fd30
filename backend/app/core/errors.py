"""API error classes.

Every error surfaced to a caller carries a stable machine-readable code,
a human-readable message and an HTTP status. Entitlement denials reuse the
codes produced by the entitlement resolver.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class AuthenticationRequiredError(APIError):
    """Caller identity missing (401).

    Raised when the upstream identity headers are absent or malformed.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="AUTHENTICATION_REQUIRED",
            message=message,
            status_code=401,
        )


class AdminRequiredError(APIError):
    """Admin access required (403)."""

    def __init__(self) -> None:
        super().__init__(
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class InvalidStateError(APIError):
    """Business rule violation (422).

    E.g., publishing a feature whose provider is not active.
    """

    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_STATE_TRANSITION",
            message=message,
            status_code=422,
        )


# Entitlement denial codes that are not plain 403s
_DENIAL_STATUS = {
    "QUOTA_EXCEEDED": 429,
    "INSUFFICIENT_CREDITS": 402,
}


class EntitlementDeniedError(APIError):
    """Invocation refused by the entitlement resolver.

    403 for access denials, 429 for quota, 402 for insufficient credits.

    Args:
        code: Denial code (e.g., "SUBSCRIPTION_EXPIRED").
        message: Human-readable reason.
        details: Optional structured context (e.g., credits required).
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=_DENIAL_STATUS.get(code, 403),
            details=details,
        )


class InsufficientCreditsError(EntitlementDeniedError):
    """Balance too low for the requested debit (402).

    Raised by the credit ledger when the atomic conditional decrement
    affects no row.

    Args:
        tenant_id: Tenant whose balance was checked.
        required: Credits the operation needed.
        available: Balance observed at the time of the failure.
    """

    def __init__(self, tenant_id: str, required: int, available: int) -> None:
        self.tenant_id = tenant_id
        self.required = required
        self.available = available
        super().__init__(
            code="INSUFFICIENT_CREDITS",
            message="Insufficient credits. Please contact your administrator.",
            details=[{"credits_required": required, "credits_available": available}],
        )

