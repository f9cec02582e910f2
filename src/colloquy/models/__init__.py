from .dialogue import Turn
from .speaker import (
    CharacterDefinition,
    CharacterParams,
    GenerationParams,
    SpeakerDefinition
)
from .conversation_config import (
    ConversationConfig,
    ConversationSettings,
    ErrorPolicyConfig,
    ErrorStrategy,
    ExportFormat,
    OutputConfig
)

__all__ = [
    "Turn",
    "CharacterDefinition",
    "CharacterParams",
    "GenerationParams",
    "SpeakerDefinition",
    "ConversationConfig",
    "ConversationSettings",
    "ErrorPolicyConfig",
    "ErrorStrategy",
    "ExportFormat",
    "OutputConfig"
]
