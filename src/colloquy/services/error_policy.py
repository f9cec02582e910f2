"""Resilience strategies wrapped around every provider invocation."""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..errors import (
    ConfigurationError,
    FallbackFailedError,
    ProviderError,
    RetriesExhaustedError
)
from ..models.conversation_config import ErrorPolicyConfig, ErrorStrategy
from ..models.speaker import SpeakerDefinition
from .cancellation import CancellationToken
from .llm.base import LLMProvider
from .llm.registry import ProviderRegistry

logger = logging.getLogger(__name__)

Operation = Callable[[LLMProvider], Awaitable[str]]
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ProviderCall:
    """One provider invocation: what to run, against what, for whom.

    ``operation`` takes the provider so the fallback strategy can run the
    same call against a substitute.
    """
    speaker: SpeakerDefinition
    provider: LLMProvider
    operation: Operation
    operation_name: str = "generate_response"


class ErrorPolicy:
    """Runs provider calls under the configured error strategy."""

    def __init__(
        self,
        config: ErrorPolicyConfig,
        registry: Optional[ProviderRegistry] = None,
        sleep: Optional[SleepFunc] = None,
        cancellation: Optional[CancellationToken] = None
    ):
        self.config = config
        self.registry = registry
        self.cancellation = cancellation or CancellationToken()
        self._sleep = sleep or self.cancellation.sleep

    @property
    def strategy(self) -> ErrorStrategy:
        return self.config.strategy

    async def execute(self, call: ProviderCall) -> Optional[str]:
        """Run ``call``; returns None only under the continue strategy."""
        try:
            return await call.operation(call.provider)
        except ProviderError as error:
            self._log_error(error, call)
            return await self._handle(error, call)

    async def _handle(self, error: ProviderError, call: ProviderCall) -> Optional[str]:
        if self.strategy == ErrorStrategy.RETRY:
            return await self._retry_with_backoff(call)
        if self.strategy == ErrorStrategy.FALLBACK:
            return await self._switch_provider(call)
        if self.strategy == ErrorStrategy.CONTINUE:
            logger.warning(f"Continuing despite error from {call.speaker.id}: {error}")
            return None
        raise error

    async def _retry_with_backoff(self, call: ProviderCall) -> str:
        max_retries = self.config.max_retries
        last_error: Optional[ProviderError] = None

        for attempt in range(max_retries):
            delay_ms = self.config.initial_delay_ms * (2 ** attempt)
            logger.info(f"Retrying after {delay_ms}ms (attempt {attempt + 1}/{max_retries})...")
            await self._sleep(delay_ms / 1000)
            try:
                return await call.operation(call.provider)
            except ProviderError as e:
                logger.warning(f"Retry attempt {attempt + 1} failed: {e}")
                last_error = e

        raise RetriesExhaustedError(max_retries, last_error) from last_error

    async def _switch_provider(self, call: ProviderCall) -> str:
        fallback_kind = self.config.fallback_provider_kind
        if not fallback_kind:
            raise ConfigurationError("No fallback provider configured")
        if self.registry is None:
            raise ConfigurationError("Fallback strategy requires a provider registry")

        fallback_speaker = call.speaker.model_copy(update={"provider_kind": fallback_kind.lower()})
        fallback_provider = self.registry.create(fallback_speaker)
        logger.info(
            f"Switching from {call.provider.provider_name()} to fallback provider {fallback_kind} "
            f"for speaker {call.speaker.id}"
        )

        try:
            return await call.operation(fallback_provider)
        except ProviderError as e:
            logger.error(f"Fallback provider {fallback_kind} failed: {e}")
            raise FallbackFailedError(fallback_kind, e) from e
        finally:
            await fallback_provider.close()

    def _log_error(self, error: ProviderError, call: ProviderCall) -> None:
        context = {
            "provider": call.provider.provider_name(),
            "model": call.provider.model,
            "speaker": call.speaker.id,
            "operation": call.operation_name,
            "strategy": self.strategy.value,
        }
        logger.error(f"Error occurred: {error}", extra={"context": context})
