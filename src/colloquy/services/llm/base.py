from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging
from enum import Enum

from pydantic import BaseModel, Field, SecretStr

from ...models.speaker import CharacterDefinition, GenerationParams

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class LLMProviderKind(str, Enum):
    """Provider kinds that ship with colloquy."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class ProviderCredentials(BaseModel):
    """Credentials and endpoints handed to providers at construction."""

    api_keys: Dict[str, SecretStr] = Field(default_factory=dict)
    base_urls: Dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    def api_key_for(self, kind: str) -> Optional[str]:
        key = self.api_keys.get(kind.lower())
        return key.get_secret_value() if key else None

    def base_url_for(self, kind: str) -> Optional[str]:
        return self.base_urls.get(kind.lower())


class LLMProvider(ABC):
    """Base class for text-generation backends."""

    kind: str = ""
    requires_api_key: bool = True

    def __init__(self, model: str, timeout: float = DEFAULT_TIMEOUT):
        self.model = model
        self.timeout = timeout

    @classmethod
    @abstractmethod
    def from_credentials(cls, model: str, credentials: ProviderCredentials) -> "LLMProvider":
        """Build a provider, raising ConfigurationError if credentials are missing."""
        pass

    @abstractmethod
    async def generate_response(
        self,
        prompt: str,
        params: GenerationParams,
        system_prompt: Optional[str] = None
    ) -> str:
        """Generate text for a single prompt."""
        pass

    @abstractmethod
    def map_character_params(self, character: CharacterDefinition) -> GenerationParams:
        """Translate character parameters into this provider's parameter set."""
        pass

    async def close(self) -> None:
        """Release any network resources held by the provider."""
        pass

    def provider_name(self) -> str:
        return self.kind or self.__class__.__name__.replace('Service', '').lower()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model!r})"


def or_default(value, default):
    """Return ``default`` when ``value`` is None; explicit zeros are kept."""
    return default if value is None else value
