"""Rate limiting configuration using slowapi.

Security: Limits how fast a single tenant user can invoke metered
features, independently of credits and quotas.

Requests are keyed on the trusted identity headers (tenant + user). Requests
without identity fall back to IP-based keying; they are rejected by the
identity dependency anyway.

Usage in routers:
    from app.core.rate_limiting import limiter

    @router.post("/{feature_id}/invoke")
    @limiter.limit(settings.rate_limit_invoke)
    async def invoke_feature(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from app.core.config import settings

# Upper bound on identity length used in a key
_MAX_KEY_PART = 100


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Identity headers present: "tenant:{tenant_id}:user:{user_id}"
    - Otherwise: "anon:{ip}"

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    tenant_id = request.headers.get(settings.tenant_header, "").strip()
    user_id = request.headers.get(settings.user_header, "").strip()
    if (
        tenant_id
        and user_id
        and len(tenant_id) <= _MAX_KEY_PART
        and len(user_id) <= _MAX_KEY_PART
    ):
        return f"tenant:{tenant_id}:user:{user_id}"
    return f"anon:{get_remote_address(request)}"


# In-memory storage (single instance). For multi-instance deployments,
# configure Redis storage via RATELIMIT_STORAGE_URL.
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 with the standard error envelope and a Retry-After header.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Detail looks like "30 per 1 minute"; fall back to 60 seconds
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
