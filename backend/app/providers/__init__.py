"""Provider adapter layer.

Exports:
    Error classes for provider error handling
    Resolved configuration and result types
    The adapter registry
"""

from app.providers.base import (
    ExecutionResult,
    FileAttachment,
    ProbeResult,
    PromptConfig,
    ProviderAdapter,
    ProviderConnection,
)
from app.providers.errors import (
    ProviderConfigurationError,
    ProviderError,
    ProviderExecutionError,
    TransportError,
)
from app.providers.registry import AdapterRegistry, get_adapter_registry

__all__ = [
    # Types
    "ExecutionResult",
    "FileAttachment",
    "ProbeResult",
    "PromptConfig",
    "ProviderAdapter",
    "ProviderConnection",
    # Errors
    "ProviderError",
    "ProviderConfigurationError",
    "ProviderExecutionError",
    "TransportError",
    # Registry
    "AdapterRegistry",
    "get_adapter_registry",
]
