"""
Pivot Coach - Main Entry Point

Live sales-call coaching from the terminal.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .ai.coach import SuggestionEngine
from .ai.context_store import ContextStore
from .ai.embeddings import EmbeddingEngine
from .ai.llm_client import OllamaClient
from .api.hubspot import HubSpotClient
from .audio.capture import AudioSource, FileAudioSource, SoundDeviceSource, list_input_devices
from .audio.whisper import create_recognizer
from .config.settings import Settings
from .errors import CoachError, EmbeddingUnavailable
from .models.schemas import Speaker, TranscriptSegment
from .services.orchestrator import CoachOrchestrator, build_lanes

logger = logging.getLogger(__name__)
console = Console()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


class CoachApp:
    """
    Main application class.

    Builds every component from Settings and prints session state.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        settings.ensure_directories()

        self.embeddings = EmbeddingEngine.from_settings(settings.embedding)
        self.llm = OllamaClient.from_settings(settings.ollama)

    def open_store(self) -> ContextStore:
        return ContextStore(self.settings.database_path, self.embeddings)

    def build_sources(self, source: str, replay: Optional[Path]) -> list[AudioSource]:
        audio = self.settings.audio
        if replay is not None:
            return [FileAudioSource(replay, name="replay", speaker=Speaker.OTHER, sample_rate=audio.sample_rate)]

        sources: list[AudioSource] = []
        if source in ("mic", "both"):
            sources.append(SoundDeviceSource(
                "mic",
                device_name=audio.mic_device,
                speaker=Speaker.SELF,
                sample_rate=audio.sample_rate,
                queue_size=audio.queue_size,
                block_seconds=audio.block_seconds,
                channels=audio.channels,
            ))
        if source in ("system", "both"):
            sources.append(SoundDeviceSource(
                "system",
                device_name=audio.system_device,
                speaker=Speaker.OTHER,
                sample_rate=audio.sample_rate,
                queue_size=audio.queue_size,
                block_seconds=audio.block_seconds,
                channels=audio.channels,
            ))
        return sources

    def build_orchestrator(self, sources: list[AudioSource]) -> CoachOrchestrator:
        recognizer = create_recognizer(self.settings.whisper)
        lanes = build_lanes(sources, recognizer, self.settings.audio, self.settings.whisper)
        suggestions = SuggestionEngine(self.llm, rag_limit=self.settings.coach.rag_limit)
        return CoachOrchestrator(lanes, suggestions, self.open_store, self.settings.coach)

    def attach_console(self, orchestrator: CoachOrchestrator) -> None:
        """Print transcript lines, intents and finished suggestions."""
        state = orchestrator.state

        def on_log(segments: list[TranscriptSegment]) -> None:
            if segments:
                style = "dim" if segments[-1].speaker == Speaker.SELF else "bold"
                console.print(f"[{style}]{segments[-1].format_line()}[/{style}]")

        def on_generating(generating: bool) -> None:
            if generating:
                return
            intent = state.intent.value.value if state.intent.value else "-"
            console.print(
                f"[cyan]Intent:[/cyan] {intent} · {state.emotion.value.value} · "
                f"closing {state.closing_probability.value}%"
            )
            console.print(f"[green]Suggestion:[/green] {state.suggestion.value}\n")

        state.transcript_log.subscribe(on_log)
        state.is_generating.subscribe(on_generating)
        state.status_message.subscribe(lambda message: console.print(f"[yellow]{message}[/yellow]"))

    async def listen(
        self,
        source: str,
        replay: Optional[Path],
        contact_id: Optional[str],
        notes: str,
    ) -> None:
        orchestrator = self.build_orchestrator(self.build_sources(source, replay))
        self.attach_console(orchestrator)

        if not await orchestrator.initialize():
            console.print(f"[red]Initialization failed:[/red] {orchestrator.state.last_error.value}")
            return

        if contact_id:
            contact = orchestrator.store.get_contact(contact_id)
            if contact is None:
                console.print(f"[yellow]Unknown contact: {contact_id}[/yellow]")
            orchestrator.select_contact(contact)
        orchestrator.set_session_notes(notes)

        if not await orchestrator.start_listening():
            console.print(f"[red]Could not start listening:[/red] {orchestrator.state.last_error.value}")
            return

        console.print("[bold]Listening.[/bold] Press Ctrl+C to stop.")
        try:
            if replay is not None:
                await orchestrator.drain()
            else:
                while True:
                    await asyncio.sleep(1.0)
        except asyncio.CancelledError:
            pass
        finally:
            await orchestrator.stop_listening()
            orchestrator.store.close()


@click.group()
@click.option("--log-level", default=None, help="Override PIVOT_LOG_LEVEL")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]):
    """Pivot Coach - real-time sales call coaching."""
    settings = Settings()
    if log_level:
        settings.log_level = log_level
    setup_logging(settings.log_level)
    ctx.obj = settings


@cli.command()
@click.option("--source", type=click.Choice(["mic", "system", "both"]), default="both", help="Audio to capture")
@click.option("--replay", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Replay a WAV file instead of live audio")
@click.option("--contact", "contact_id", default=None, help="Contact id to ground suggestions on")
@click.option("--notes", default="", help="Extra context for this call")
@click.pass_obj
def listen(settings: Settings, source: str, replay: Optional[Path], contact_id: Optional[str], notes: str):
    """Start a live coaching session."""
    app = CoachApp(settings)
    try:
        asyncio.run(app.listen(source, replay, contact_id, notes))
    except KeyboardInterrupt:
        console.print("\n[green]Stopped.[/green]")


@cli.command()
def devices():
    """List audio input devices."""
    table = Table(title="Audio input devices")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Channels", justify="right")
    table.add_column("Rate", justify="right")

    for device in list_input_devices():
        table.add_row(str(device["id"]), device["name"], str(device["input_channels"]), f"{device['sample_rate']:.0f}")

    console.print(table)


@cli.command()
@click.pass_obj
def health(settings: Settings):
    """Check system health."""
    app = CoachApp(settings)

    async def check() -> tuple[bool, list[str]]:
        return await app.llm.is_available(), await app.llm.list_models()

    available, models = asyncio.run(check())

    console.print("\n[bold]System Health Check[/bold]\n")
    console.print(f"[cyan]database:[/cyan] {settings.database_path}")
    console.print(f"[cyan]embeddings:[/cyan] {app.embeddings.dimensions if app.embeddings.is_available else 'unavailable'}")
    console.print(f"[cyan]ollama:[/cyan] {'OK' if available else 'not reachable'} ({settings.ollama.url})")
    if models:
        marker = "OK" if settings.ollama.model in models else "not pulled"
        console.print(f"[cyan]model:[/cyan] {settings.ollama.model} ({marker})")
    console.print(f"[cyan]speech:[/cyan] {settings.whisper.backend} ({settings.whisper.model_size})")
    console.print(f"[cyan]audio_devices:[/cyan] {len(list_input_devices())}")


@cli.command()
@click.argument("docs_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--owner", default=None, help="Contact id owning the documents")
@click.option("--kind", default="note", help="Document kind")
@click.pass_obj
def ingest(settings: Settings, docs_dir: Path, owner: Optional[str], kind: str):
    """Load .txt/.md files into the context store."""
    app = CoachApp(settings)
    store = app.open_store()
    try:
        stored = store.ingest_directory(docs_dir, owner_id=owner, kind=kind)
    except EmbeddingUnavailable as e:
        raise click.ClickException(f"{e} (set EMBEDDING_PRIMARY_PATH)")
    finally:
        store.close()
    console.print(f"[green]Stored {stored} documents.[/green]")


@cli.command()
@click.argument("query")
@click.option("--owner", default=None, help="Restrict to one contact id")
@click.option("--limit", default=5, help="Max results")
@click.pass_obj
def search(settings: Settings, query: str, owner: Optional[str], limit: int):
    """Search the context store."""
    app = CoachApp(settings)
    store = app.open_store()
    try:
        results = store.search(query, owner_id=owner, limit=limit)
    finally:
        store.close()

    if not results:
        console.print("No results.")
        return

    for content, score in results:
        console.print(f"[cyan]{score:.3f}[/cyan] {content[:200]}")


@cli.command()
@click.pass_obj
def contacts(settings: Settings):
    """List stored contacts."""
    app = CoachApp(settings)
    store = app.open_store()
    try:
        rows = store.list_contacts()
    finally:
        store.close()

    table = Table(title="Contacts")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Company")
    table.add_column("Stage")
    for contact in rows:
        table.add_row(contact.id, contact.display_name, contact.company, contact.deal_stage or "")
    console.print(table)


@cli.command(name="sync-contacts")
@click.pass_obj
def sync_contacts(settings: Settings):
    """Import contacts from HubSpot."""
    app = CoachApp(settings)

    async def fetch():
        async with HubSpotClient.from_settings(settings.hubspot) as client:
            return await client.fetch_contacts()

    try:
        fetched = asyncio.run(fetch())
    except CoachError as e:
        raise click.ClickException(str(e))

    store = app.open_store()
    try:
        for contact in fetched:
            store.upsert_contact(contact)
    finally:
        store.close()
    console.print(f"[green]Synced {len(fetched)} contacts.[/green]")


def main():
    cli()


if __name__ == "__main__":
    main()
