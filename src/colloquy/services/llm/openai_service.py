import logging
from typing import Any, Dict, List, Optional
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError

from .base import DEFAULT_TIMEOUT, LLMProvider, ProviderCredentials, or_default
from ...errors import BadStatusError, ConfigurationError, EmptyContentError, NetworkError
from ...models.speaker import CharacterDefinition, GenerationParams

logger = logging.getLogger(__name__)

class OpenAIService(LLMProvider):
    """Chat-completion provider using the OpenAI API.

    Works against any OpenAI-compatible endpoint when ``base_url`` is set.
    """

    kind = "openai"

    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_MAX_TOKENS = 500
    DEFAULT_TOP_P = 1.0
    DEFAULT_PENALTY = 0.0

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4",
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        if not api_key:
            raise ConfigurationError("OpenAI API key required (set OPENAI_API_KEY)")
        super().__init__(model, timeout)
        # Retries belong to the error policy, not the SDK
        self._client_options = {
            "api_key": api_key,
            "base_url": base_url,
            "timeout": timeout,
            "max_retries": 0,
        }
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        """The SDK client, created on first use."""
        if self._client is None:
            self._client = AsyncOpenAI(**self._client_options)
        return self._client

    @client.setter
    def client(self, value: AsyncOpenAI) -> None:
        self._client = value

    @classmethod
    def from_credentials(cls, model: str, credentials: ProviderCredentials) -> "OpenAIService":
        return cls(
            api_key=credentials.api_key_for(cls.kind),
            model=model,
            base_url=credentials.base_url_for(cls.kind),
            timeout=credentials.timeout
        )

    def map_character_params(self, character: CharacterDefinition) -> GenerationParams:
        params = character.generation_params
        return GenerationParams(
            temperature=or_default(params.temperature, self.DEFAULT_TEMPERATURE),
            max_tokens=or_default(params.max_tokens, self.DEFAULT_MAX_TOKENS),
            top_p=or_default(params.top_p, self.DEFAULT_TOP_P),
            frequency_penalty=or_default(params.frequency_penalty, self.DEFAULT_PENALTY),
            presence_penalty=or_default(params.presence_penalty, self.DEFAULT_PENALTY)
        )

    def _build_messages(self, prompt: str, system_prompt: Optional[str]) -> List[Dict[str, str]]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    def build_request(
        self,
        prompt: str,
        params: GenerationParams,
        system_prompt: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build the chat-completion request body."""
        return {
            "model": self.model,
            "messages": self._build_messages(prompt, system_prompt),
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "top_p": params.top_p,
            "frequency_penalty": or_default(params.frequency_penalty, self.DEFAULT_PENALTY),
            "presence_penalty": or_default(params.presence_penalty, self.DEFAULT_PENALTY),
        }

    async def generate_response(
        self,
        prompt: str,
        params: GenerationParams,
        system_prompt: Optional[str] = None
    ) -> str:
        request = self.build_request(prompt, params, system_prompt)
        logger.debug(f"Sending chat completion to {self.model} (prompt length: {len(prompt)})")

        try:
            response = await self.client.chat.completions.create(**request)
        except APIStatusError as e:
            logger.error(f"OpenAI API returned status {e.status_code}")
            body = e.body if e.body is not None else e.message
            raise BadStatusError(e.status_code, body, provider=self.kind, model=self.model) from e
        except APIConnectionError as e:
            logger.error(f"OpenAI API request failed: {e}")
            raise NetworkError(f"OpenAI API request error: {e}", self.kind, self.model) from e
        except APIError as e:
            logger.error(f"OpenAI API returned an unusable response: {e}")
            raise EmptyContentError(f"OpenAI API returned an unusable response: {e}", self.kind, self.model) from e

        if not response.choices:
            raise EmptyContentError("OpenAI API returned no choices", self.kind, self.model)

        message = response.choices[0].message
        content = message.content if message is not None else None
        if not isinstance(content, str) or not content.strip():
            raise EmptyContentError("OpenAI API returned empty content", self.kind, self.model)

        return content.strip()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
