"""Typer-based CLI host for the marination engine."""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import MarinateConfig
from .engine import CompositeListener, EngineListener, MarinationEngine
from .generation import get_text_generator_factory
from .generation.request import ErrorResult
from .journal import JournalListener, JournalWriter, read_journal_tail
from .matcher import apply_suggestion, locate_suggestion
from .models.state import MarinationState
from .models.suggestion import TEXT_EDIT_TYPES, Suggestion
from .store import SqliteMarinationStore

app = typer.Typer(
    name="marinate",
    help="marinate - background marination of notes into suggestions",
    add_completion=False,
)

console = Console()


@app.callback()
def _main(
    ctx: typer.Context,
    data_dir: str = typer.Option(
        None,
        "--data-dir",
        "-d",
        help="Path to data directory (default: MARINATE_DATA_DIR env or ./.marinate)",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Configure logging and remember global options."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=debug)],
        force=True,
    )
    ctx.obj = {"data_dir": data_dir}


def _load_config(ctx: typer.Context) -> MarinateConfig:
    try:
        return MarinateConfig.from_env(cli_data_dir=(ctx.obj or {}).get("data_dir"))
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


def _open_store(config: MarinateConfig) -> SqliteMarinationStore:
    if not config.db_path.exists():
        console.print(f"[red]Error: No marinate data at {config.data_dir}[/red]")
        console.print("[yellow]Run 'marinate init' first[/yellow]")
        raise typer.Exit(code=1)
    return SqliteMarinationStore(config.db_path)


class _ConsoleListener(EngineListener):
    """Prints engine notifications for interactive commands."""

    def __init__(self) -> None:
        self.errors: list[ErrorResult] = []

    def on_cycle_started(self, note_id, phase):
        console.print(f"[cyan]Marinating[/cyan] {note_id} [dim]({phase.value})[/dim]")

    def on_cycle_completed(self, note_id, added, expired):
        console.print(f"[green]✓[/green] {note_id}: {added} new suggestion(s), {expired} expired")

    def on_status_changed(self, note_id, status):
        console.print(f"[dim]{note_id} is now {status.value}[/dim]")

    def on_phase_changed(self, note_id, phase):
        console.print(f"[magenta]{note_id} advanced to {phase.value}[/magenta]")

    def on_error(self, note_id, error):
        self.errors.append(error)
        console.print(f"[red]✗ {note_id}: {error.message}[/red] [dim]({error.kind.value})[/dim]")

    def on_engine_disabled(self, message):
        console.print(f"[red]Marination disabled: {message}[/red]")


def _build_engine(
    config: MarinateConfig,
    store: SqliteMarinationStore,
    listener: Optional[EngineListener] = None,
) -> MarinationEngine:
    listeners: list[EngineListener] = [listener] if listener is not None else []
    if config.journal_enabled:
        listeners.append(JournalListener(JournalWriter(config.journal_path)))
    try:
        factory = get_text_generator_factory(config.generator.engine, config.generator.model)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    return MarinationEngine(
        store=store,
        notes=store,
        generator_factory=factory,
        config=config.engine,
        listener=CompositeListener(*listeners),
    )


def _require_note(store: SqliteMarinationStore, note_id: str) -> str:
    text = store.load_note_text(note_id)
    if text is None:
        console.print(f"[red]Error: Note not found: {note_id}[/red]")
        raise typer.Exit(code=1)
    return text


def _resolve_suggestion_id(state: Optional[MarinationState], ref: str) -> str:
    """Expand a suggestion ID prefix to the full ID."""
    candidates = [s.id for s in (state.suggestions if state else []) if s.id.startswith(ref)]
    if len(candidates) != 1:
        reason = "not found" if not candidates else "ambiguous"
        console.print(f"[red]Error: Suggestion {ref} {reason}[/red]")
        raise typer.Exit(code=1)
    return candidates[0]


def _summarize(suggestion: Suggestion) -> str:
    content = suggestion.content
    for field in ("replacement", "text", "critique_text", "title"):
        value = getattr(content, field, None)
        if value:
            return value
    if content.type == "advancePhase":
        return f"→ {content.next_phase.value}"
    return suggestion.reasoning


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Rewrite config.toml even if it exists"),
):
    """Initialize the data directory, database and config file.

    This command is idempotent - it will not overwrite existing data.
    """
    config = _load_config(ctx)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    SqliteMarinationStore(config.db_path)

    config_file = config.data_dir / "config.toml"
    if not config_file.exists() or force:
        config_file.write_text(config.to_toml_str(), encoding="utf-8")
        console.print(f"[green]✓[/green] Wrote {config_file}")

    console.print(f"[bold green]marinate ready at:[/bold green] {config.data_dir}")


@app.command("add-note")
def add_note(
    ctx: typer.Context,
    text: str = typer.Argument(None, help="Note text"),
    file: Optional[Path] = typer.Option(None, "--file", help="Read note text from a file"),
    note_id: Optional[str] = typer.Option(None, "--id", help="Note ID (default: random)"),
):
    """Add a note."""
    if file is not None:
        if not file.exists():
            console.print(f"[red]Error: File not found: {file}[/red]")
            raise typer.Exit(code=1)
        text = file.read_text(encoding="utf-8")
    if not text:
        console.print("[red]Error: Provide note text or --file[/red]")
        raise typer.Exit(code=1)

    config = _load_config(ctx)
    store = _open_store(config)
    note_id = note_id or uuid.uuid4().hex[:8]
    if store.load_note_text(note_id) is not None:
        console.print(f"[red]Error: Note already exists: {note_id}[/red]")
        raise typer.Exit(code=1)

    store.save_note_text(note_id, text)
    _build_engine(config, store).note_did_edit(note_id)
    console.print(f"[green]✓[/green] Added note {note_id} ({len(text)} chars)")


@app.command("edit-note")
def edit_note(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
    text: str = typer.Argument(..., help="New note text"),
):
    """Replace a note's text and record the edit."""
    config = _load_config(ctx)
    store = _open_store(config)
    _require_note(store, note_id)
    store.save_note_text(note_id, text)
    _build_engine(config, store).note_did_edit(note_id)
    console.print(f"[green]✓[/green] Updated note {note_id}")


@app.command("delete-note")
def delete_note(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
):
    """Delete a note and its marination state."""
    config = _load_config(ctx)
    store = _open_store(config)
    _require_note(store, note_id)
    store.delete_note(note_id)
    _build_engine(config, store).note_deleted(note_id)
    console.print(f"[green]✓[/green] Deleted note {note_id}")


@app.command()
def activate(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
):
    """Mark a note for marination."""
    config = _load_config(ctx)
    store = _open_store(config)
    _require_note(store, note_id)
    _build_engine(config, store).activate_note(note_id)
    console.print(f"[green]✓[/green] {note_id} is active")


@app.command()
def deactivate(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
):
    """Stop marinating a note (its suggestions are kept)."""
    config = _load_config(ctx)
    store = _open_store(config)
    _require_note(store, note_id)
    _build_engine(config, store).deactivate_note(note_id)
    console.print(f"[green]✓[/green] {note_id} is idle")


async def _tick_once(engine: MarinationEngine) -> Optional[str]:
    note_id = engine.tick()
    while engine.processing_note_id is not None:
        await asyncio.sleep(0.05)
    return note_id


@app.command()
def tick(ctx: typer.Context):
    """Run one scheduling tick and wait for its request to finish."""
    config = _load_config(ctx)
    store = _open_store(config)
    listener = _ConsoleListener()
    engine = _build_engine(config, store, listener)

    note_id = asyncio.run(_tick_once(engine))
    if note_id is None:
        console.print("[dim]Nothing to marinate[/dim]")
        return
    if listener.errors:
        raise typer.Exit(code=1)


async def _run_engine(engine: MarinationEngine, duration: float) -> None:
    engine.start()
    engine.tick()
    try:
        if duration > 0:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        engine.stop()


@app.command()
def run(
    ctx: typer.Context,
    duration: float = typer.Option(0, "--duration", help="Seconds to run (0 = until interrupted)"),
):
    """Run the engine, ticking every poll interval."""
    config = _load_config(ctx)
    store = _open_store(config)
    engine = _build_engine(config, store, _ConsoleListener())

    console.print(
        f"[bold]Marinating every {config.engine.poll_interval_seconds:g}s "
        f"(generator: {config.generator.engine})[/bold] [dim]Ctrl+C to stop[/dim]"
    )
    try:
        asyncio.run(_run_engine(engine, duration))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


@app.command()
def status(ctx: typer.Context):
    """Show every note with its marination status and phase."""
    config = _load_config(ctx)
    store = _open_store(config)
    notes = store.list_activatable_notes()

    if not notes:
        console.print("[dim]No notes[/dim]")
        return

    table = Table(title=f"{len(notes)} Note(s)")
    table.add_column("Note", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Phase")
    table.add_column("Round", justify="right")
    table.add_column("Count", justify="right")
    table.add_column("Pending", justify="right", style="yellow")
    table.add_column("Last marinated (UTC)", style="dim")

    for note in notes:
        state = store.load_state(note.id) or MarinationState(note_id=note.id)
        last = state.last_marinated_at.strftime("%Y-%m-%d %H:%M:%S") if state.last_marinated_at else "-"
        table.add_row(
            note.id,
            note.status.value,
            state.phase.value,
            str(state.phase_round_count),
            str(state.marination_count),
            str(len(state.pending_suggestions)),
            last,
        )

    console.print(table)


@app.command()
def suggestions(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
    show_all: bool = typer.Option(False, "--all", help="Include resolved suggestions"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """List a note's suggestions."""
    config = _load_config(ctx)
    store = _open_store(config)
    _require_note(store, note_id)
    state = store.load_state(note_id) or MarinationState(note_id=note_id)
    items = state.suggestions if show_all else state.pending_suggestions

    if as_json:
        console.print_json(json.dumps([s.to_wire() for s in items]))
        return
    if not items:
        console.print("[dim]No suggestions[/dim]")
        return

    table = Table(title=f"Suggestions for {note_id} ({state.phase.value})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("State")
    table.add_column("Suggestion")

    for s in items:
        summary = _summarize(s)
        if len(summary) > 70:
            summary = summary[:67] + "..."
        table.add_row(s.id[:8], s.type.value, s.state.value, summary)

    console.print(table)


@app.command()
def accept(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
    suggestion_ref: str = typer.Argument(..., help="Suggestion ID or unique prefix"),
    apply: bool = typer.Option(True, "--apply/--no-apply", help="Apply text edits to the note"),
):
    """Accept a suggestion; text edits are applied to the note."""
    config = _load_config(ctx)
    store = _open_store(config)
    text = _require_note(store, note_id)
    suggestion_id = _resolve_suggestion_id(store.load_state(note_id), suggestion_ref)

    engine = _build_engine(config, store, _ConsoleListener())
    resolved = engine.accept_suggestion(suggestion_id, note_id)
    if resolved is None:
        console.print(f"[yellow]Suggestion {suggestion_ref} is not pending[/yellow]")
        raise typer.Exit(code=1)

    if apply:
        edited = apply_suggestion(resolved, text)
        if edited is not None:
            store.save_note_text(note_id, edited)
            engine.note_did_edit(note_id)
            console.print("[green]✓[/green] Applied edit to note")
        elif resolved.type in TEXT_EDIT_TYPES:
            console.print("[yellow]Anchor text no longer present; note unchanged[/yellow]")

    console.print(f"[green]✓[/green] Accepted {resolved.type.value} {resolved.id[:8]}")


@app.command()
def reject(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
    suggestion_ref: str = typer.Argument(..., help="Suggestion ID or unique prefix"),
):
    """Reject a suggestion."""
    config = _load_config(ctx)
    store = _open_store(config)
    _require_note(store, note_id)
    suggestion_id = _resolve_suggestion_id(store.load_state(note_id), suggestion_ref)

    resolved = _build_engine(config, store).reject_suggestion(suggestion_id, note_id)
    if resolved is None:
        console.print(f"[yellow]Suggestion {suggestion_ref} is not pending[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Rejected {resolved.type.value} {resolved.id[:8]}")


@app.command()
def locate(
    ctx: typer.Context,
    note_id: str = typer.Argument(..., help="Note ID"),
    suggestion_ref: str = typer.Argument(..., help="Suggestion ID or unique prefix"),
):
    """Show where a suggestion anchors in the current note text."""
    config = _load_config(ctx)
    store = _open_store(config)
    text = _require_note(store, note_id)
    state = store.load_state(note_id)
    suggestion = state.find_suggestion(_resolve_suggestion_id(state, suggestion_ref))

    span = locate_suggestion(suggestion, text)
    if span is None:
        console.print(f"[yellow]{suggestion.type.value} has no anchor in the note[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[cyan]Offset {span.start}-{span.end}[/cyan] ({span.length} chars)")
    before = text[max(0, span.start - 30):span.start]
    console.print(f"[dim]{before}[/dim][bold yellow]{text[span.start:span.end]}[/bold yellow]"
                  f"[dim]{text[span.end:span.end + 30]}[/dim]", markup=True, highlight=False)


journal_app = typer.Typer(help="Journal commands")
app.add_typer(journal_app, name="journal")


@journal_app.command("tail")
def journal_tail(
    ctx: typer.Context,
    n: int = typer.Option(20, "--n", help="Number of recent events to display"),
):
    """Display the last N events from the journal."""
    config = _load_config(ctx)
    events = read_journal_tail(config.journal_path, n=n)

    if not events:
        console.print("[dim]No events in journal[/dim]")
        return

    table = Table(title=f"Last {len(events)} Journal Event(s)")
    table.add_column("Timestamp (UTC)", style="cyan", no_wrap=True)
    table.add_column("Event Type", style="magenta")
    table.add_column("Note", style="yellow")
    table.add_column("Payload", style="dim")

    for event in events:
        payload_str = json.dumps(event.payload)
        if len(payload_str) > 60:
            payload_str = payload_str[:57] + "..."
        table.add_row(event.ts.strftime("%Y-%m-%d %H:%M:%S"), event.event_type, event.note_id or "-", payload_str)

    console.print(table)


@app.command()
def version():
    """Show marinate version."""
    from . import __version__
    console.print(f"marinate v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
