"""Shared dependencies for API endpoints.

Identity: the gateway does not authenticate users itself. An upstream
identity layer sets X-Tenant-ID and X-User-ID; these are trusted as-is.
Admin endpoints require X-Admin-Token matching ADMIN_API_TOKEN.

WHY DEPENDENCY INJECTION:
- Consistent identity handling across all endpoints
- Easy to swap the adapter registry or session factory in tests
- Testable with mocked dependencies
"""

import secrets
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import get_db, get_session_factory
from app.core.errors import AdminRequiredError, AuthenticationRequiredError
from app.providers.registry import AdapterRegistry, get_adapter_registry
from app.services.admin_catalog_service import ProviderConnectionTester
from app.services.invocation_gateway import InvocationGateway

# Matches the column width of tenant_id / user_id
_MAX_IDENTITY_LENGTH = 100


@dataclass(frozen=True)
class TenantContext:
    """Caller identity taken from the upstream identity headers."""

    tenant_id: str
    user_id: str


def _read_identity_header(request: Request, name: str) -> str:
    value = request.headers.get(name, "").strip()
    if not value or len(value) > _MAX_IDENTITY_LENGTH:
        # Security: same message whether the header is missing or malformed
        raise AuthenticationRequiredError()
    return value


def get_tenant_context(request: Request) -> TenantContext:
    """Resolve the calling tenant and user.

    Args:
        request: HTTP request (injected by FastAPI).

    Returns:
        TenantContext with tenant and user ids.

    Raises:
        AuthenticationRequiredError: 401 if either header is missing.
    """
    return TenantContext(
        tenant_id=_read_identity_header(request, settings.tenant_header),
        user_id=_read_identity_header(request, settings.user_header),
    )


def require_admin(request: Request) -> None:
    """Check the admin token header.

    Raises:
        AuthenticationRequiredError: 401 if the header is missing.
        AdminRequiredError: 403 if the token does not match, or no admin
            token is configured.
    """
    supplied = request.headers.get(settings.admin_token_header)
    if not supplied:
        raise AuthenticationRequiredError()

    expected = settings.admin_api_token.get_secret_value()
    if not expected or not secrets.compare_digest(
        supplied.encode("utf-8"), expected.encode("utf-8")
    ):
        raise AdminRequiredError()


def get_gateway(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory)
    ],
    registry: Annotated[AdapterRegistry, Depends(get_adapter_registry)],
) -> InvocationGateway:
    """Build the invocation gateway for one request.

    The gateway opens its own short-lived sessions so the provider call
    never runs inside a database transaction.
    """
    return InvocationGateway(session_factory, registry)


def get_connection_tester(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_session_factory)
    ],
    registry: Annotated[AdapterRegistry, Depends(get_adapter_registry)],
) -> ProviderConnectionTester:
    """Build the provider connectivity tester for one request."""
    return ProviderConnectionTester(session_factory, registry)


# Type aliases for cleaner endpoint signatures
CurrentTenant = Annotated[TenantContext, Depends(get_tenant_context)]
AdminAccess = Annotated[None, Depends(require_admin)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Gateway = Annotated[InvocationGateway, Depends(get_gateway)]
ConnectionTester = Annotated[ProviderConnectionTester, Depends(get_connection_tester)]
