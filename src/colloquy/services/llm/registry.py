"""Registry mapping provider kinds to provider classes."""

import logging
from typing import Dict, List, Optional, Type

from .base import LLMProvider, ProviderCredentials
from .anthropic_service import AnthropicService
from .ollama_service import OllamaService
from .openai_service import OpenAIService
from ...errors import ConfigurationError
from ...models.speaker import SpeakerDefinition

logger = logging.getLogger(__name__)

BUILTIN_PROVIDERS: Dict[str, Type[LLMProvider]] = {
    OpenAIService.kind: OpenAIService,
    AnthropicService.kind: AnthropicService,
    OllamaService.kind: OllamaService,
}


class ProviderRegistry:
    """Creates providers for speakers by provider kind.

    The set of kinds is open: ``register`` adds new kinds at runtime, which
    is also how the fallback strategy finds its substitute.
    """

    def __init__(
        self,
        credentials: Optional[ProviderCredentials] = None,
        providers: Optional[Dict[str, Type[LLMProvider]]] = None
    ):
        self.credentials = credentials or ProviderCredentials()
        self._providers: Dict[str, Type[LLMProvider]] = {}
        for kind, provider_cls in (BUILTIN_PROVIDERS if providers is None else providers).items():
            self.register(kind, provider_cls)

    def register(self, kind: str, provider_cls: Type[LLMProvider]) -> None:
        """Register a provider class under ``kind``, replacing any existing one."""
        key = kind.strip().lower()
        if key in self._providers:
            logger.info(f"Replacing provider for kind {key}")
        self._providers[key] = provider_cls

    def is_supported(self, kind: str) -> bool:
        return kind.strip().lower() in self._providers

    def supported_kinds(self) -> List[str]:
        return sorted(self._providers)

    def provider_class(self, kind: str) -> Optional[Type[LLMProvider]]:
        return self._providers.get(kind.strip().lower())

    def create(self, speaker: SpeakerDefinition) -> LLMProvider:
        """Build the provider for a speaker.

        Raises ConfigurationError for unknown kinds or missing credentials.
        """
        kind = speaker.provider_kind.lower()
        provider_cls = self._providers.get(kind)
        if provider_cls is None:
            raise ConfigurationError(
                f"Provider {kind} is not supported (available: {', '.join(self.supported_kinds())})"
            )

        provider = provider_cls.from_credentials(speaker.model, self.credentials)
        provider.kind = kind
        logger.debug(f"Created {kind} provider for speaker {speaker.id} ({speaker.model})")
        return provider
