from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class CharacterParams(BaseModel):
    """Generation parameters as written in a character file.

    Every field is optional; providers fill in their own defaults.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1, alias="maxTokens")
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0, alias="topP")
    frequency_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0, alias="frequencyPenalty")
    presence_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0, alias="presencePenalty")


class GenerationParams(BaseModel):
    """Concrete parameters a provider sends to its backend."""
    model_config = ConfigDict(frozen=True)

    temperature: float
    max_tokens: int
    top_p: float
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None


class CharacterDefinition(BaseModel):
    """The persona a speaker plays."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    display_name: Optional[str] = Field(default=None, alias="name")
    system_prompt: str = Field(default="", alias="systemPrompt")
    generation_params: CharacterParams = Field(default_factory=CharacterParams, alias="parameters")


class SpeakerDefinition(BaseModel):
    """A configured identity bound to a provider, a model and a character."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    provider_kind: str = Field(..., min_length=1, alias="provider")
    model: str = Field(..., min_length=1)
    character: CharacterDefinition = Field(default_factory=CharacterDefinition)

    @field_validator("provider_kind")
    @classmethod
    def normalize_kind(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def display_name(self) -> str:
        return self.character.display_name or self.id
