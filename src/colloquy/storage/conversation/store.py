import sqlite3
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import datetime

from ...models.dialogue import Turn
from .models import ConversationStatus, StoredConversation

logger = logging.getLogger(__name__)

class ConversationStore:
    """Index of past conversation runs, backed by SQLite."""

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize or migrate the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            c = conn.cursor()

            c.execute("""
                SELECT name FROM sqlite_master
                WHERE type='table' AND name='schema_version'
            """)

            if not c.fetchone():
                self._create_schema(c)
                c.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (self.SCHEMA_VERSION,)
                )
            else:
                c.execute("SELECT version FROM schema_version")
                current_version = c.fetchone()[0]
                if current_version > self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"Database schema version {current_version} is newer than supported "
                        f"version {self.SCHEMA_VERSION}"
                    )

            conn.commit()

    def _create_schema(self, cursor):
        """Create fresh database schema."""
        cursor.execute("""
            CREATE TABLE schema_version (
                version INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE conversations (
                id INTEGER PRIMARY KEY,
                topic TEXT NOT NULL,
                participants TEXT NOT NULL,
                turns TEXT NOT NULL,
                created_date TIMESTAMP NOT NULL,
                status TEXT NOT NULL,
                error TEXT,
                metadata TEXT
            )
        """)

    @staticmethod
    def _dump_turns(turns: Sequence[Turn]) -> str:
        return json.dumps([turn.model_dump(mode="json") for turn in turns])

    @staticmethod
    def _from_row(row: sqlite3.Row) -> StoredConversation:
        return StoredConversation(
            id=row['id'],
            topic=row['topic'],
            participants=json.loads(row['participants']),
            turns=[Turn.model_validate(t) for t in json.loads(row['turns'])],
            created_date=datetime.datetime.fromisoformat(row['created_date']),
            status=ConversationStatus(row['status']),
            error=row['error'],
            metadata=json.loads(row['metadata'] or '{}')
        )

    def create_pending(
        self,
        topic: str,
        participants: Sequence[str],
        metadata: Optional[Dict[str, Any]] = None
    ) -> StoredConversation:
        """Record a conversation that is about to run."""
        with sqlite3.connect(self.db_path) as conn:
            c = conn.cursor()

            now = datetime.datetime.now()
            c.execute("""
                INSERT INTO conversations
                (topic, participants, turns, created_date, status, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                topic,
                json.dumps(list(participants)),
                "[]",
                now.isoformat(),
                ConversationStatus.RUNNING.value,
                json.dumps(metadata or {})
            ))

            conv_id = c.lastrowid
            conn.commit()

        logger.debug(f"Created conversation record {conv_id} for topic {topic!r}")
        return StoredConversation(
            id=conv_id,
            topic=topic,
            participants=list(participants),
            turns=[],
            created_date=now,
            status=ConversationStatus.RUNNING,
            error=None,
            metadata=metadata or {}
        )

    def save_turns(self, conv_id: int, turns: Sequence[Turn]) -> None:
        """Replace the stored turns of a conversation."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "UPDATE conversations SET turns = ? WHERE id = ?",
                (self._dump_turns(turns), conv_id)
            )
            conn.commit()

    def mark_completed(self, conv_id: int, turns: Sequence[Turn]) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "UPDATE conversations SET status = ?, turns = ?, error = NULL WHERE id = ?",
                (ConversationStatus.COMPLETED.value, self._dump_turns(turns), conv_id)
            )
            conn.commit()

    def mark_failed(
        self,
        conv_id: int,
        error: str,
        turns: Sequence[Turn] = (),
        status: ConversationStatus = ConversationStatus.FAILED
    ) -> None:
        """Mark a conversation as ended early, keeping its partial transcript."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "UPDATE conversations SET status = ?, error = ?, turns = ? WHERE id = ?",
                (status.value, error, self._dump_turns(turns), conv_id)
            )
            conn.commit()

    def get(self, conv_id: int) -> Optional[StoredConversation]:
        """Get a conversation by ID."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            c = conn.cursor()
            c.execute("SELECT * FROM conversations WHERE id = ?", (conv_id,))
            row = c.fetchone()
            if row:
                return self._from_row(row)
        return None

    def list_all(self) -> List[StoredConversation]:
        """List all conversations, most recent first."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            c = conn.cursor()
            c.execute("SELECT * FROM conversations ORDER BY created_date DESC, id DESC")
            return [self._from_row(row) for row in c.fetchall()]

    def recent(self, limit: int = 10) -> List[StoredConversation]:
        return self.list_all()[:limit]

    def search(self, query: str) -> List[StoredConversation]:
        """Find conversations by topic, participant or id."""
        conversations = self.list_all()
        if not query:
            return conversations
        return [conv for conv in conversations if conv.matches(query)]

    def remove(self, conv_id: int) -> bool:
        """Remove a conversation."""
        with sqlite3.connect(self.db_path) as conn:
            c = conn.cursor()
            c.execute("DELETE FROM conversations WHERE id = ?", (conv_id,))
            conn.commit()
            return c.rowcount > 0
