import enum
from typing import Any, Dict, List, Optional
import datetime

from ...models.dialogue import Turn

class ConversationStatus(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"
    CANCELLED = "cancelled"

class StoredConversation:
    """A conversation run as recorded in the store."""
    def __init__(
        self,
        id: int,
        topic: str,
        participants: List[str],
        turns: List[Turn],
        created_date: datetime.datetime,
        status: ConversationStatus,
        error: Optional[str],
        metadata: Dict[str, Any]
    ):
        self.id = id
        self.topic = topic
        self.participants = participants
        self.turns = turns
        self.created_date = created_date
        self.status = status
        self.error = error
        self.metadata = metadata

    @property
    def num_turns(self) -> int:
        return len(self.turns)

    def matches(self, query: str) -> bool:
        """Case-insensitive match against topic, participants and id."""
        needle = query.lower()
        return (
            needle in self.topic.lower()
            or any(needle in p.lower() for p in self.participants)
            or needle in str(self.id)
        )
