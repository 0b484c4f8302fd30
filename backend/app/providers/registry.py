"""Provider adapter registry.

Maps provider types to adapter strategies. One adapter instance per type is
shared by every request; adapters hold no per-call state.
"""

import httpx
import structlog

from app.core.config import settings
from app.models.catalog import ProviderType
from app.providers.base import ProviderAdapter
from app.providers.chat_completions_adapter import ChatCompletionsAdapter
from app.providers.custom_adapter import CustomAdapter
from app.providers.generate_content_adapter import GenerateContentAdapter
from app.providers.messages_adapter import MessagesAdapter

logger = structlog.get_logger()

# WHY: Closed mapping from the provider_type column to adapter classes.
# Types without an entry fall back to the custom HTTP adapter.
_ADAPTER_REGISTRY: dict[ProviderType, type[ProviderAdapter]] = {
    ProviderType.CHAT_COMPLETIONS: ChatCompletionsAdapter,
    ProviderType.MESSAGES: MessagesAdapter,
    ProviderType.GENERATE_CONTENT: GenerateContentAdapter,
    ProviderType.CUSTOM: CustomAdapter,
}


class AdapterRegistry:
    """Holds one adapter per provider type.

    Args:
        transport: Optional httpx transport shared by all adapters.
        timeout: Total seconds allowed for one vendor call.
    """

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        effective_timeout = (
            timeout if timeout is not None else settings.provider_timeout_seconds
        )
        self._adapters: dict[ProviderType, ProviderAdapter] = {
            provider_type: adapter_class(transport=transport, timeout=effective_timeout)
            for provider_type, adapter_class in _ADAPTER_REGISTRY.items()
        }

    def get(self, provider_type: str) -> ProviderAdapter:
        """Get the adapter for a provider type.

        Args:
            provider_type: Value of Provider.provider_type.

        Returns:
            The matching adapter, or the custom adapter for unknown types.
        """
        try:
            key = ProviderType(provider_type)
        except ValueError:
            logger.warning("provider_type_unknown", provider_type=provider_type)
            key = ProviderType.CUSTOM
        return self._adapters[key]


_registry: AdapterRegistry | None = None


def get_adapter_registry() -> AdapterRegistry:
    """Get or create the process-wide adapter registry.

    Also used as a FastAPI dependency so tests can override it.
    """
    global _registry
    if _registry is None:
        _registry = AdapterRegistry()
    return _registry
