from typing import Optional
from .base import LLMProvider, LLMProviderKind, ProviderCredentials, DEFAULT_TIMEOUT
from .openai_service import OpenAIService
from .anthropic_service import AnthropicService
from .ollama_service import OllamaService
from .registry import ProviderRegistry, BUILTIN_PROVIDERS
from .prompts import PromptBuilder

def create_registry(credentials: Optional[ProviderCredentials] = None) -> ProviderRegistry:
    """Create a provider registry with the built-in provider kinds."""
    return ProviderRegistry(credentials=credentials)

__all__ = [
    'LLMProvider',
    'LLMProviderKind',
    'ProviderCredentials',
    'DEFAULT_TIMEOUT',
    'OpenAIService',
    'AnthropicService',
    'OllamaService',
    'ProviderRegistry',
    'BUILTIN_PROVIDERS',
    'create_registry',
    'PromptBuilder'
]
