import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Turn(BaseModel):
    """Represents a single turn in the conversation."""
    model_config = ConfigDict(frozen=True)

    turn_number: int = Field(..., ge=1)
    speaker_id: str
    prompt: str
    response: str
    timestamp: datetime.datetime = Field(default_factory=_utcnow)
    elapsed_ms: Optional[float] = None
