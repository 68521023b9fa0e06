"""Provider construction and lookup.

There is no process-wide instance: build a :class:`ProviderRegistry`
at startup and pass it to whoever needs providers.
"""

import logging

from mcpbridge.errors import LLMError
from mcpbridge.provider import ClaudeProvider, ModelProvider, OpenAIProvider, ProviderConfig

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Maps provider type names to provider classes."""

    def __init__(self) -> None:
        self._classes: dict[str, type[ModelProvider]] = {
            "claude": ClaudeProvider,
            "openai": OpenAIProvider,
        }

    def register(self, provider_type: str, provider_cls: type[ModelProvider]) -> None:
        self._classes[provider_type] = provider_cls

    def supported(self) -> list[str]:
        return list(self._classes)

    def create(self, provider_type: str, config: ProviderConfig) -> ModelProvider:
        provider_cls = self._classes.get(provider_type)
        if provider_cls is None:
            raise LLMError(
                f"Unknown provider type: {provider_type}",
                code="UNKNOWN_PROVIDER", provider=provider_type,
            )
        try:
            return provider_cls(config)
        except Exception as e:
            raise LLMError(
                f"Failed to create provider {provider_type}: {e}",
                code="PROVIDER_CREATION_FAILED", provider=provider_type, details=e,
            ) from e


class ProviderRegistry:
    """Named provider instances with a default.

    The first provider added becomes the default.

    Args:
        factory: Factory used by :meth:`add`; a fresh one by default.
    """

    def __init__(self, factory: ProviderFactory | None = None):
        self.factory = factory or ProviderFactory()
        self._providers: dict[str, ModelProvider] = {}
        self._default: str | None = None

    @property
    def default(self) -> str | None:
        return self._default

    def add(self, name: str, provider_type: str, config: ProviderConfig) -> ModelProvider:
        provider = self.factory.create(provider_type, config)
        if not provider.validate_config():
            raise LLMError(
                f"Provider configuration validation failed for {name}",
                code="INVALID_CONFIG", provider=provider_type,
            )
        return self.add_instance(name, provider)

    def add_instance(self, name: str, provider: ModelProvider) -> ModelProvider:
        self._providers[name] = provider
        if self._default is None:
            self._default = name
        logger.info(f"Registered provider {name} ({provider.name})")
        return provider

    def remove(self, name: str) -> None:
        self._providers.pop(name, None)
        if self._default == name:
            self._default = next(iter(self._providers), None)

    def get(self, name: str | None = None) -> ModelProvider:
        provider_name = name or self._default
        if not provider_name:
            raise LLMError(
                "No provider specified and no default provider set",
                code="NO_PROVIDER", provider="none",
            )
        provider = self._providers.get(provider_name)
        if provider is None:
            raise LLMError(
                f"Provider not found: {provider_name}",
                code="PROVIDER_NOT_FOUND", provider=provider_name,
            )
        return provider

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def set_default(self, name: str) -> None:
        if name not in self._providers:
            raise LLMError(
                f"Cannot set default provider: {name} not found",
                code="PROVIDER_NOT_FOUND", provider=name,
            )
        self._default = name

    def list_providers(self) -> list[dict]:
        return [
            {"name": name, "type": provider.name, "is_default": name == self._default}
            for name, provider in self._providers.items()
        ]

    async def check_health(self) -> dict[str, bool]:
        results = {}
        for name, provider in self._providers.items():
            try:
                results[name] = await provider.health_check()
            except Exception as e:
                logger.warning(f"Health check for {name} raised: {e}")
                results[name] = False
        return results

    def select_best(
        self,
        needs_streaming: bool = False,
        needs_tools: bool = False,
        max_tokens: int | None = None,
    ) -> str | None:
        """Return the first provider meeting the requirements, if any."""
        for name, provider in self._providers.items():
            caps = provider.capabilities
            if needs_streaming and not caps.streaming:
                continue
            if needs_tools and not caps.tools:
                continue
            if max_tokens and caps.max_context_tokens < max_tokens:
                continue
            return name
        return None
