import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .base import DEFAULT_TIMEOUT, LLMProvider, ProviderCredentials, or_default
from .session_manager import SessionManager
from ...errors import BadStatusError, ConfigurationError, EmptyContentError, NetworkError
from ...models.speaker import CharacterDefinition, GenerationParams

logger = logging.getLogger(__name__)

class AnthropicService(LLMProvider):
    """Message-block provider using the Anthropic Messages API."""

    kind = "anthropic"

    API_VERSION = "2023-06-01"
    DEFAULT_BASE_URL = "https://api.anthropic.com"
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_MAX_TOKENS = 500
    DEFAULT_TOP_P = 1.0

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "claude-3-5-sonnet-latest",
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        if not api_key:
            raise ConfigurationError("Anthropic API key required (set ANTHROPIC_API_KEY)")
        super().__init__(model, timeout)
        self.api_url = f"{(base_url or self.DEFAULT_BASE_URL).rstrip('/')}/v1/messages"
        self.session_manager = SessionManager(
            headers={
                "x-api-key": api_key,
                "anthropic-version": self.API_VERSION,
                "content-type": "application/json"
            },
            timeout=timeout
        )

    @classmethod
    def from_credentials(cls, model: str, credentials: ProviderCredentials) -> "AnthropicService":
        return cls(
            api_key=credentials.api_key_for(cls.kind),
            model=model,
            base_url=credentials.base_url_for(cls.kind),
            timeout=credentials.timeout
        )

    def map_character_params(self, character: CharacterDefinition) -> GenerationParams:
        # No frequency/presence penalties on this API
        params = character.generation_params
        return GenerationParams(
            temperature=or_default(params.temperature, self.DEFAULT_TEMPERATURE),
            max_tokens=or_default(params.max_tokens, self.DEFAULT_MAX_TOKENS),
            top_p=or_default(params.top_p, self.DEFAULT_TOP_P)
        )

    def build_request(
        self,
        prompt: str,
        params: GenerationParams,
        system_prompt: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build the message-block request body.

        The system prompt travels as a top-level field, and penalty
        parameters are dropped even when present.
        """
        data = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "top_p": params.top_p,
        }
        if system_prompt:
            data["system"] = system_prompt
        return data

    async def generate_response(
        self,
        prompt: str,
        params: GenerationParams,
        system_prompt: Optional[str] = None
    ) -> str:
        data = self.build_request(prompt, params, system_prompt)
        logger.debug(f"Sending message request to {self.model} (prompt length: {len(prompt)})")

        try:
            status, result = await self.session_manager.post_json(self.api_url, data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Anthropic API request failed: {e}")
            raise NetworkError(f"Anthropic API request error: {e}", self.kind, self.model) from e
        except ValueError as e:
            logger.error(f"Anthropic API returned an unreadable body: {e}")
            raise EmptyContentError(f"Anthropic API returned invalid JSON: {e}", self.kind, self.model) from e

        if status != 200:
            logger.error(f"Anthropic API error (status {status}): {result}")
            raise BadStatusError(status, result, provider=self.kind, model=self.model)

        content = result.get("content") if isinstance(result, dict) else None
        if not isinstance(content, list) or not content:
            raise EmptyContentError("Anthropic API returned no content", self.kind, self.model)

        block = content[0]
        text = block.get("text") if isinstance(block, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise EmptyContentError("Anthropic API returned an empty content block", self.kind, self.model)
        return text.strip()

    async def close(self) -> None:
        await self.session_manager.close()
