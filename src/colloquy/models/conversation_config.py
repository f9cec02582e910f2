from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .speaker import SpeakerDefinition


class ErrorStrategy(str, Enum):
    """How a failed backend call is handled."""
    RETRY = "retry"
    FALLBACK = "fallback"
    ABORT = "abort"
    CONTINUE = "continue"


class ExportFormat(str, Enum):
    JSON = "json"
    TEXT = "text"
    MARKDOWN = "markdown"
    HTML = "html"


class ConversationSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    topic: str = Field(..., min_length=1)
    num_turns: int = Field(..., ge=1, alias="numTurns")
    delay_between_turns_ms: int = Field(default=0, ge=0, alias="delayBetweenTurns")
    first_speaker: Optional[str] = Field(default=None, alias="firstSpeaker")


class ErrorPolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    strategy: ErrorStrategy = ErrorStrategy.RETRY
    max_retries: int = Field(default=3, ge=1, alias="maxRetries")
    initial_delay_ms: int = Field(default=1000, ge=0, alias="initialDelay")
    fallback_provider_kind: Optional[str] = Field(default=None, alias="fallbackProvider")


class OutputConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    save_to_store: bool = Field(default=True, alias="saveToStore")
    display_in_console: bool = Field(default=True, alias="displayInConsole")
    export_format: Optional[ExportFormat] = Field(default=None, alias="exportFormat")
    export_dir: Optional[Path] = Field(default=None, alias="exportDir")


class ConversationConfig(BaseModel):
    """A complete, validated conversation configuration."""
    model_config = ConfigDict(populate_by_name=True)

    speakers: List[SpeakerDefinition] = Field(..., alias="llmProviders")
    conversation: ConversationSettings
    error_handling: ErrorPolicyConfig = Field(default_factory=ErrorPolicyConfig, alias="errorHandling")
    output: OutputConfig = Field(default_factory=OutputConfig)

    @model_validator(mode="after")
    def check_speakers(self) -> "ConversationConfig":
        if len(self.speakers) < 2:
            raise ValueError("Configuration must include at least two speakers")

        ids = [speaker.id for speaker in self.speakers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Speaker ids must be unique: {ids}")

        first = self.conversation.first_speaker
        if first is None:
            # Default to the first declared speaker
            self.conversation = self.conversation.model_copy(update={"first_speaker": ids[0]})
        elif first not in ids:
            raise ValueError(f"First speaker {first} not found in speakers")

        if (
            self.error_handling.strategy == ErrorStrategy.FALLBACK
            and not self.error_handling.fallback_provider_kind
        ):
            raise ValueError("The fallback strategy requires a fallback provider")
        return self

    @property
    def speaker_ids(self) -> List[str]:
        return [speaker.id for speaker in self.speakers]
