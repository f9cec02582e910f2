"""Main CLI application entry point."""

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set, Tuple

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from ..config import settings, load_conversation_config
from ..errors import (
    AbortedConversationError,
    ColloquyError,
    ConfigurationError,
    ConversationCancelledError,
    FallbackFailedError,
    RetriesExhaustedError
)
from ..models.conversation_config import ConversationConfig, ErrorStrategy, ExportFormat
from ..models.dialogue import Turn
from ..services import TranscriptExporter, create_orchestrator
from ..services.llm import ProviderRegistry, create_registry
from ..storage.conversation import ConversationStatus, ConversationStore
from .formatting import conversation_header, conversations_table, turn_panel

# Create Typer app
app = typer.Typer(help="Run and manage conversations between LLM characters.")
console = Console()

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of one conversation run."""
    conversation_id: Optional[int]
    turns: Tuple[Turn, ...]
    status: ConversationStatus
    error: Optional[str] = None


def get_store() -> ConversationStore:
    return ConversationStore(settings.paths.get_db_path("conversations"))


def apply_overrides(
    config: ConversationConfig,
    turns: Optional[int] = None,
    topic: Optional[str] = None,
    first_speaker: Optional[str] = None,
    strategy: Optional[ErrorStrategy] = None
) -> ConversationConfig:
    """Apply command-line overrides and re-validate the configuration."""
    data = config.model_dump()
    if turns is not None:
        data["conversation"]["num_turns"] = turns
    if topic is not None:
        data["conversation"]["topic"] = topic
    if first_speaker is not None:
        data["conversation"]["first_speaker"] = first_speaker
    if strategy is not None:
        data["error_handling"]["strategy"] = strategy

    try:
        return ConversationConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid override: {e}") from e


def required_kinds(config: ConversationConfig) -> Set[str]:
    """Provider kinds whose credentials this conversation needs."""
    kinds = {speaker.provider_kind for speaker in config.speakers}
    if config.error_handling.strategy == ErrorStrategy.FALLBACK:
        kinds.add(config.error_handling.fallback_provider_kind.lower())
    return kinds


async def run_conversation(
    config: ConversationConfig,
    registry: ProviderRegistry,
    store: Optional[ConversationStore] = None,
    show_turns: bool = True
) -> RunResult:
    """Run one conversation, printing and storing turns as they arrive."""
    display_names = {s.id: s.display_name for s in config.speakers}

    def on_turn(turn: Turn) -> None:
        if show_turns:
            console.print(turn_panel(turn, display_names))
        if record is not None:
            store.save_turns(record.id, orchestrator.history)

    orchestrator = create_orchestrator(config, registry=registry, on_turn=on_turn)

    record = None
    if store is not None:
        record = store.create_pending(
            config.conversation.topic,
            config.speaker_ids,
            metadata={
                "display_names": display_names,
                "strategy": config.error_handling.strategy.value,
                "first_speaker": orchestrator.first_speaker,
            }
        )

    loop = asyncio.get_running_loop()
    handles_sigint = False
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        handles_sigint = True
    except (NotImplementedError, RuntimeError, ValueError) as e:
        logger.debug(f"Ctrl-C cancellation unavailable: {e}")

    status = ConversationStatus.COMPLETED
    error = None
    try:
        turns = await orchestrator.run()
    except ConversationCancelledError as e:
        status, error, turns = ConversationStatus.CANCELLED, str(e), e.history
    except AbortedConversationError as e:
        status, error, turns = ConversationStatus.ABORTED, str(e), e.history
    except (RetriesExhaustedError, FallbackFailedError, ConfigurationError) as e:
        status, error, turns = ConversationStatus.FAILED, str(e), orchestrator.history
    except Exception as e:
        if record is not None:
            store.mark_failed(record.id, f"Unexpected error: {e}", orchestrator.history)
        raise
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)
        await orchestrator.close()

    if record is not None:
        if status == ConversationStatus.COMPLETED:
            store.mark_completed(record.id, turns)
        else:
            store.mark_failed(record.id, error, turns, status=status)

    return RunResult(
        conversation_id=record.id if record else None,
        turns=tuple(turns),
        status=status,
        error=error
    )


def _export_path(fmt: ExportFormat, conversation_id: Optional[int], export_dir: Optional[Path] = None) -> Path:
    suffix = TranscriptExporter.file_extension(fmt)
    prefix = f"conversation_{conversation_id}" if conversation_id else "conversation"
    path = settings.paths.get_unique_output_path(prefix, suffix)
    if export_dir:
        return Path(export_dir) / path.name
    return path


@app.command()
def run(
    config_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Conversation configuration file"),
    turns: Optional[int] = typer.Option(None, "--turns", min=1, help="Number of turns (overrides config)"),
    topic: Optional[str] = typer.Option(None, help="Conversation topic (overrides config)"),
    first_speaker: Optional[str] = typer.Option(None, "--first-speaker", help="Speaker id for turn 1"),
    strategy: Optional[ErrorStrategy] = typer.Option(None, help="Error handling strategy"),
    export: Optional[ExportFormat] = typer.Option(None, "--export", help="Export the transcript when done"),
    no_save: bool = typer.Option(False, "--no-save", help="Do not store the conversation"),
    debug: bool = typer.Option(False, help="Enable debug logging")
):
    """Run a conversation from a configuration file."""
    settings.setup_logging("DEBUG" if debug else None)

    try:
        config = apply_overrides(
            load_conversation_config(config_path),
            turns=turns,
            topic=topic,
            first_speaker=first_speaker,
            strategy=strategy
        )
        registry = create_registry(settings.provider_credentials(sorted(required_kinds(config))))
        store = None if no_save or not config.output.save_to_store else get_store()

        console.print(f"[bold]Topic:[/bold] {escape(config.conversation.topic)}")
        console.print(
            f"[dim]{config.conversation.num_turns} turns, "
            f"speakers: {', '.join(config.speaker_ids)}, "
            f"strategy: {config.error_handling.strategy.value}[/dim]\n"
        )

        result = asyncio.run(
            run_conversation(config, registry, store, show_turns=config.output.display_in_console)
        )
    except ColloquyError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        if debug:
            console.print_exception()
        raise typer.Exit(1)

    if result.status == ConversationStatus.COMPLETED:
        console.print(f"[green]Conversation completed with {len(result.turns)} turns[/green]")
    else:
        console.print(
            f"[red]Conversation {result.status.value} after {len(result.turns)} turns: "
            f"{escape(result.error or '')}[/red]"
        )
    if result.conversation_id is not None:
        console.print(f"Saved as conversation {result.conversation_id}")

    export_format = export or config.output.export_format
    if export_format and result.turns:
        exporter = TranscriptExporter({s.id: s.display_name for s in config.speakers})
        path = exporter.export(
            result.turns,
            export_format,
            _export_path(export_format, result.conversation_id, config.output.export_dir),
            title=config.conversation.topic
        )
        console.print(f"Exported transcript to {path}")

    if result.status != ConversationStatus.COMPLETED:
        raise typer.Exit(1)


@app.command("list")
def list_conversations(
    limit: int = typer.Option(10, "--limit", min=1, help="Maximum number of conversations"),
    search: Optional[str] = typer.Option(None, "--search", help="Filter by topic, speaker or id")
):
    """List stored conversations."""
    store = get_store()
    conversations = store.search(search)[:limit] if search else store.recent(limit)
    if not conversations:
        console.print("[yellow]No conversations found[/yellow]")
        return
    console.print(conversations_table(conversations))


@app.command()
def show(conversation_id: int = typer.Argument(..., help="Conversation id")):
    """Show a stored transcript."""
    conv = get_store().get(conversation_id)
    if not conv:
        console.print(f"[red]Conversation {conversation_id} not found[/red]")
        raise typer.Exit(1)

    console.print(conversation_header(conv))
    display_names = conv.metadata.get("display_names", {})
    for turn in conv.turns:
        console.print(turn_panel(turn, display_names))


@app.command("export")
def export_conversation(
    conversation_id: int = typer.Argument(..., help="Conversation id"),
    fmt: ExportFormat = typer.Option(ExportFormat.MARKDOWN, "--format", "-f", help="Export format"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file")
):
    """Export a stored transcript."""
    conv = get_store().get(conversation_id)
    if not conv:
        console.print(f"[red]Conversation {conversation_id} not found[/red]")
        raise typer.Exit(1)

    exporter = TranscriptExporter(conv.metadata.get("display_names", {}))
    path = exporter.export(
        conv.turns,
        fmt,
        output or _export_path(fmt, conv.id),
        title=conv.topic
    )
    console.print(f"Exported conversation {conv.id} to {path}")


@app.command()
def remove(
    conversation_id: int = typer.Argument(..., help="Conversation id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")
):
    """Remove a stored conversation."""
    store = get_store()
    if not store.get(conversation_id):
        console.print(f"[red]Conversation {conversation_id} not found[/red]")
        raise typer.Exit(1)

    if not yes and not Confirm.ask(f"Remove conversation {conversation_id}?"):
        console.print("Cancelled")
        return

    store.remove(conversation_id)
    console.print(f"[green]Removed conversation {conversation_id}[/green]")


@app.command()
def providers():
    """List the registered provider kinds."""
    credentials = settings.provider_credentials()
    registry = create_registry(credentials)

    table = Table(title="Providers")
    table.add_column("Kind", style="cyan")
    table.add_column("Class")
    table.add_column("Credentials")
    table.add_column("Endpoint")

    for kind in registry.supported_kinds():
        provider_cls = registry.provider_class(kind)
        if not provider_cls.requires_api_key:
            key_status = "[dim]not required[/dim]"
        elif credentials.api_key_for(kind):
            key_status = "[green]configured[/green]"
        else:
            key_status = "[red]missing[/red]"
        table.add_row(kind, provider_cls.__name__, key_status, credentials.base_url_for(kind) or "default")

    console.print(table)
