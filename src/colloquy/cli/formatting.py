"""CLI output formatting utilities."""

import datetime
from typing import Mapping, Optional, Sequence, Union

from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..models.dialogue import Turn
from ..storage.conversation import ConversationStatus, StoredConversation

STATUS_STYLES = {
    ConversationStatus.RUNNING: "yellow",
    ConversationStatus.COMPLETED: "green",
    ConversationStatus.ABORTED: "red",
    ConversationStatus.FAILED: "red",
    ConversationStatus.CANCELLED: "magenta",
}

def format_timestamp(timestamp: Union[datetime.datetime, str]) -> str:
    """Format timestamp to a human-readable string."""
    if isinstance(timestamp, str):
        try:
            timestamp = datetime.datetime.fromisoformat(timestamp)
        except ValueError:
            return timestamp
    return timestamp.strftime("%Y-%m-%d %H:%M:%S")

def format_elapsed(elapsed_ms: Optional[float]) -> str:
    if elapsed_ms is None:
        return "-"
    if elapsed_ms >= 1000:
        return f"{elapsed_ms / 1000:.1f}s"
    return f"{elapsed_ms:.0f}ms"

def conversations_table(conversations: Sequence[StoredConversation], title: str = "Conversations") -> Table:
    """Create a table listing stored conversations."""
    table = Table(title=title)
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Topic")
    table.add_column("Speakers")
    table.add_column("Turns", justify="right")
    table.add_column("Status")
    table.add_column("Created")

    for conv in conversations:
        style = STATUS_STYLES.get(conv.status, "white")
        table.add_row(
            str(conv.id),
            escape(conv.topic),
            ", ".join(conv.participants),
            str(conv.num_turns),
            f"[{style}]{conv.status.value}[/{style}]",
            format_timestamp(conv.created_date)
        )
    return table

def turn_panel(turn: Turn, display_names: Optional[Mapping[str, str]] = None) -> Panel:
    """Render one turn as a panel, response shown as markdown."""
    name = (display_names or {}).get(turn.speaker_id) or turn.speaker_id
    return Panel(
        Markdown(turn.response),
        title=f"[bold]Turn {turn.turn_number}: {escape(name)}[/bold]",
        subtitle=format_elapsed(turn.elapsed_ms),
        title_align="left",
        subtitle_align="right"
    )

def conversation_header(conv: StoredConversation) -> Panel:
    style = STATUS_STYLES.get(conv.status, "white")
    lines = [
        f"[bold]Topic:[/bold] {escape(conv.topic)}",
        f"[bold]Speakers:[/bold] {', '.join(conv.participants)}",
        f"[bold]Status:[/bold] [{style}]{conv.status.value}[/{style}]",
        f"[bold]Created:[/bold] {format_timestamp(conv.created_date)}",
    ]
    if conv.error:
        lines.append(f"[bold]Error:[/bold] [red]{escape(conv.error)}[/red]")
    return Panel("\n".join(lines), title=f"Conversation {conv.id}", title_align="left")
