"""Core services for conversation orchestration."""

from typing import Optional

from ..models.conversation_config import ConversationConfig
from .cancellation import CancellationToken
from .conversation import (
    ERROR_PLACEHOLDER,
    ConversationOrchestrator,
    ConversationState,
    TurnCallback,
    speaker_for_turn
)
from .error_policy import ErrorPolicy, ProviderCall
from .export import TranscriptExporter

from .llm import (
    LLMProvider,
    LLMProviderKind,
    ProviderCredentials,
    ProviderRegistry,
    PromptBuilder,
    OpenAIService,
    AnthropicService,
    OllamaService,
    create_registry
)

def create_orchestrator(
    config: ConversationConfig,
    credentials: Optional[ProviderCredentials] = None,
    registry: Optional[ProviderRegistry] = None,
    on_turn: Optional[TurnCallback] = None
) -> ConversationOrchestrator:
    """Wire an orchestrator and its error policy from a validated configuration.

    The orchestrator and the policy share one cancellation token, so
    cancelling also interrupts a pending retry backoff.
    """
    registry = registry or create_registry(credentials)
    cancellation = CancellationToken()
    error_policy = ErrorPolicy(
        config.error_handling,
        registry=registry,
        cancellation=cancellation
    )
    return ConversationOrchestrator(
        speakers=config.speakers,
        settings=config.conversation,
        registry=registry,
        error_policy=error_policy,
        on_turn=on_turn,
        cancellation=cancellation
    )

__all__ = [
    "CancellationToken",
    "ConversationOrchestrator",
    "ConversationState",
    "ERROR_PLACEHOLDER",
    "speaker_for_turn",
    "ErrorPolicy",
    "ProviderCall",
    "TranscriptExporter",
    "create_orchestrator",

    # Providers
    "LLMProvider",
    "LLMProviderKind",
    "ProviderCredentials",
    "ProviderRegistry",
    "PromptBuilder",
    "OpenAIService",
    "AnthropicService",
    "OllamaService",
    "create_registry"
]
