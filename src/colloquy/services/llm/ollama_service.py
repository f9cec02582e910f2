import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .base import DEFAULT_TIMEOUT, LLMProvider, ProviderCredentials, or_default
from .session_manager import SessionManager
from ...errors import BadStatusError, EmptyContentError, NetworkError
from ...models.speaker import CharacterDefinition, GenerationParams

logger = logging.getLogger(__name__)

class OllamaService(LLMProvider):
    """Chat provider using a local Ollama server."""

    kind = "ollama"
    requires_api_key = False

    DEFAULT_HOST = "http://localhost:11434"
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_MAX_TOKENS = 500
    DEFAULT_TOP_P = 1.0
    DEFAULT_PENALTY = 0.0

    def __init__(
        self,
        model_name: str = "mistral:latest",
        host: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        super().__init__(model_name, timeout)
        self.host = (host or self.DEFAULT_HOST).rstrip('/')
        self.api_base = f"{self.host}/api"
        self.session_manager = SessionManager(timeout=timeout)

    @classmethod
    def from_credentials(cls, model: str, credentials: ProviderCredentials) -> "OllamaService":
        # Local server, no API key needed
        return cls(
            model_name=model,
            host=credentials.base_url_for(cls.kind),
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

    def build_request(
        self,
        prompt: str,
        params: GenerationParams,
        system_prompt: Optional[str] = None
    ) -> Dict[str, Any]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        options = {
            "temperature": params.temperature,
            "num_predict": params.max_tokens,
            "top_p": params.top_p,
        }
        if params.frequency_penalty is not None:
            options["frequency_penalty"] = params.frequency_penalty
        if params.presence_penalty is not None:
            options["presence_penalty"] = params.presence_penalty

        return {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": options
        }

    async def generate_response(
        self,
        prompt: str,
        params: GenerationParams,
        system_prompt: Optional[str] = None
    ) -> str:
        data = self.build_request(prompt, params, system_prompt)
        logger.debug(f"Sending request to Ollama {self.model} (prompt length: {len(prompt)})")

        try:
            status, result = await self.session_manager.post_json(f"{self.api_base}/chat", data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Ollama request failed: {e}")
            raise NetworkError(f"Ollama request error: {e}", self.kind, self.model) from e
        except ValueError as e:
            logger.error(f"Ollama returned an unreadable body: {e}")
            raise EmptyContentError(f"Ollama returned invalid JSON: {e}", self.kind, self.model) from e

        if status != 200:
            logger.error(f"Ollama API error (status {status}): {result}")
            raise BadStatusError(status, result, provider=self.kind, model=self.model)

        if not isinstance(result, dict):
            raise EmptyContentError("Ollama returned a non-object body", self.kind, self.model)
        if 'error' in result:
            raise EmptyContentError(f"Ollama API error: {result['error']}", self.kind, self.model)

        message = result.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        response_text = content.strip() if isinstance(content, str) else ""
        if not response_text:
            raise EmptyContentError("Empty response from Ollama", self.kind, self.model)

        logger.debug(f"Received response of length {len(response_text)}")
        return response_text

    async def close(self) -> None:
        await self.session_manager.close()
