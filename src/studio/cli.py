"""CLI Application for the content studio."""

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import NoReturn

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .images import ImageRepository
from .lyrics import LyricsRepository, submit_prompt
from .models import (
    ChatConfig,
    ImageGenerationConfig,
    Message,
    Script,
    StorageConfig,
    TemplateCategory,
    ToolCall,
    ToolCallConfig,
)
from .repository import Repository
from .scripts import ScriptRepository, script_to_yaml
from .service import GeminiService
from .storage import DiskStore, KeyValueStore
from .tools import TOOL_NAMES
from .tree import get_ancestors, is_checkpoint
from .usage import find_placeholders, format_template_usage

# Setup Typer and Console
app = typer.Typer(help="Studio CLI - lyrics, image and video script workbench")
lyrics_app = typer.Typer(help="Branching lyrics conversations")
songs_app = typer.Typer(help="Songs generated from lyrics")
script_app = typer.Typer(help="Video scripts and their shots")
templates_app = typer.Typer(help="Template variables for shot prompts")
images_app = typer.Typer(help="Image sessions and generated items")
data_app = typer.Typer(help="Export, import and reset stored data")
app.add_typer(lyrics_app, name="lyrics")
app.add_typer(songs_app, name="songs")
app.add_typer(script_app, name="script")
app.add_typer(templates_app, name="templates")
app.add_typer(images_app, name="images")
app.add_typer(data_app, name="data")

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_STORAGE = StorageConfig()


class Vertical(str, Enum):
    LYRICS = "lyrics"
    IMAGES = "images"
    VIDEO = "video"


@dataclass
class Studio:
    """Repositories sharing one store for the duration of a command."""

    store: KeyValueStore
    prefix: str

    @property
    def lyrics(self) -> LyricsRepository:
        return LyricsRepository(self.store, self.prefix)

    @property
    def images(self) -> ImageRepository:
        return ImageRepository(self.store, self.prefix)

    @property
    def scripts(self) -> ScriptRepository:
        return ScriptRepository(self.store, self.prefix)

    def repository(self, vertical: Vertical) -> Repository:
        return {
            Vertical.LYRICS: self.lyrics,
            Vertical.IMAGES: self.images,
            Vertical.VIDEO: self.scripts,
        }[vertical]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _warn_quota(key: str) -> None:
    console.print(
        f"[yellow]Warning: storage is full, the change to {escape(key)} was not saved.[/yellow]",
    )


def _get_service(api_key: str | None = None) -> GeminiService:
    """Get the Gemini service."""
    load_dotenv()
    if not api_key:
        api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        console.print(
            "[bold red]Error:[/bold red] GEMINI_API_KEY not found in env or arguments.",
        )
        raise typer.Exit(code=1)
    return GeminiService(api_key)


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Path = typer.Option(
        DEFAULT_STORAGE.data_dir,
        envvar="STUDIO_DATA_DIR",
        help="Directory holding the studio's data",
    ),
    capacity_bytes: int = typer.Option(
        DEFAULT_STORAGE.capacity_bytes,
        envvar="STUDIO_CAPACITY_BYTES",
        help="Storage budget in bytes",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Open the store shared by every command."""
    _configure_logging(verbose)
    config = StorageConfig(data_dir=data_dir, capacity_bytes=capacity_bytes)
    store = DiskStore(config.data_dir, capacity_bytes=config.capacity_bytes)
    logger.debug("Using data directory %s", config.data_dir)
    store.events.subscribe(_warn_quota)
    ctx.call_on_close(store.close)
    ctx.obj = Studio(store=store, prefix=config.key_prefix)


def _studio(ctx: typer.Context) -> Studio:
    return ctx.obj


# ─── Lyrics ──────────────────────────────────────────────────────────────────


def _print_message(message: Message, checkpoint: bool = False) -> None:
    if message.lyrics_body:
        body = (
            f"[bold]Title:[/bold] {escape(message.title or '')}\n"
            f"[bold]Style:[/bold] {escape(message.style or '')}\n\n"
            f"{escape(message.lyrics_body)}"
        )
        if message.commentary:
            body += f"\n\n[dim]{escape(message.commentary)}[/dim]"
    else:
        body = escape(message.content)
    title = f"{message.role.value} · {message.id}"
    if checkpoint:
        title += " · checkpoint"
    console.print(
        Panel(
            body,
            title=title,
            border_style="green" if message.role.value == "assistant" else "blue",
        ),
    )


def _chat(
    ctx: typer.Context,
    content: str,
    parent_id: str | None,
    api_key: str | None,
    model: str,
    temperature: float,
) -> None:
    repo = _studio(ctx).lyrics
    service = _get_service(api_key)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Writing lyrics...", total=None)
            reply = submit_prompt(
                repo,
                service,
                content,
                parent_id=parent_id,
                config=ChatConfig(model=model, temperature=temperature),
            )
    except Exception as e:
        console.print(f"[bold red]Fatal Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    if reply is None:
        _fail(f"Message {parent_id} not found.")
    _print_message(reply)


@lyrics_app.command("new")
def lyrics_new(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="What the song should be about"),
    api_key: str | None = typer.Option(
        None,
        envvar="GEMINI_API_KEY",
        help="Google Gemini API Key",
    ),
    model: str = typer.Option(ChatConfig().model, help="Gemini model for lyrics"),
    temperature: float = typer.Option(ChatConfig().temperature, help="Sampling temperature"),
) -> None:
    """Start a new conversation."""
    _chat(ctx, prompt, None, api_key, model, temperature)


@lyrics_app.command("reply")
def lyrics_reply(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message to continue from"),
    prompt: str = typer.Argument(..., help="Your next instruction"),
    api_key: str | None = typer.Option(
        None,
        envvar="GEMINI_API_KEY",
        help="Google Gemini API Key",
    ),
    model: str = typer.Option(ChatConfig().model, help="Gemini model for lyrics"),
    temperature: float = typer.Option(ChatConfig().temperature, help="Sampling temperature"),
) -> None:
    """Continue (or branch) a conversation from any message."""
    _chat(ctx, prompt, message_id, api_key, model, temperature)


@lyrics_app.command("show")
def lyrics_show(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message to show with its history"),
) -> None:
    """Show the path from the root to a message."""
    index = _studio(ctx).lyrics.index()
    path = get_ancestors(index, message_id)
    if not path:
        _fail(f"Message {message_id} not found.")
    for message in path:
        _print_message(message, checkpoint=is_checkpoint(index, message.id))
    children = index.children_of(message_id)
    if children:
        console.print(f"{len(children)} branch(es) continue from here.")


@lyrics_app.command("list")
def lyrics_list(ctx: typer.Context) -> None:
    """List conversations by their root message."""
    repo = _studio(ctx).lyrics
    table = Table(title="Conversations")
    table.add_column("ID")
    table.add_column("Started")
    table.add_column("Prompt")
    table.add_column("Latest")
    for message in repo.list_messages():
        if message.parent_id is not None:
            continue
        leaf = repo.get_latest_leaf(message.id)
        table.add_row(
            message.id,
            message.created_at,
            escape(message.content[:60]),
            leaf.id if leaf else "",
        )
    console.print(table)


@lyrics_app.command("latest")
def lyrics_latest(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message to start from"),
) -> None:
    """Jump to the most recent leaf below a message."""
    leaf = _studio(ctx).lyrics.get_latest_leaf(message_id)
    if leaf is None:
        _fail(f"Message {message_id} not found.")
    _print_message(leaf)


@lyrics_app.command("edit")
def lyrics_edit(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message to edit"),
    title: str | None = typer.Option(None, help="New song title"),
    style: str | None = typer.Option(None, help="New style line"),
    commentary: str | None = typer.Option(None, help="New commentary"),
    body: str | None = typer.Option(None, help="New lyrics body"),
) -> None:
    """Edit the lyrics fields of a message."""
    changes = {
        key: value
        for key, value in (
            ("title", title),
            ("style", style),
            ("commentary", commentary),
            ("lyrics_body", body),
        )
        if value is not None
    }
    updated = _studio(ctx).lyrics.update_message(message_id, **changes)
    if updated is None:
        _fail(f"Message {message_id} not found.")
    _print_message(updated)


@lyrics_app.command("delete")
def lyrics_delete(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message to hide"),
) -> None:
    """Hide a message from list views; branches below it are kept."""
    if not _studio(ctx).lyrics.delete_message(message_id):
        _fail(f"Message {message_id} not found.")
    console.print(f"Deleted {message_id}.")


# ─── Songs ───────────────────────────────────────────────────────────────────


@songs_app.command("add")
def songs_add(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Assistant message the song was made from"),
    audio_url: str = typer.Argument(..., help="Where the audio lives"),
    title: str = typer.Option("", help="Song title"),
) -> None:
    """Attach a generated song to a lyrics message."""
    repo = _studio(ctx).lyrics
    if repo.get_message(message_id) is None:
        _fail(f"Message {message_id} not found.")
    song = repo.create_song(message_id, audio_url, title=title)
    console.print(f"Added song {song.id}.")


@songs_app.command("pin")
def songs_pin(
    ctx: typer.Context,
    song_id: str = typer.Argument(..., help="Song to pin"),
    pinned: bool = typer.Option(True, "--pin/--unpin", help="Pin or unpin"),
) -> None:
    """Pin or unpin a song."""
    if not _studio(ctx).lyrics.pin_song(song_id, pinned):
        _fail(f"Song {song_id} not found.")
    console.print(f"{'Pinned' if pinned else 'Unpinned'} {song_id}.")


@songs_app.command("list")
def songs_list(
    ctx: typer.Context,
    pinned: bool = typer.Option(False, "--pinned", help="Only pinned songs"),
) -> None:
    """List songs."""
    repo = _studio(ctx).lyrics
    songs = repo.list_pinned_songs() if pinned else repo.list_songs()
    table = Table(title="Songs")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Message")
    table.add_column("Audio")
    table.add_column("Pinned")
    for song in songs:
        table.add_row(
            song.id,
            escape(song.title),
            song.message_id,
            song.audio_url,
            "yes" if song.pinned else "",
        )
    console.print(table)


# ─── Scripts ─────────────────────────────────────────────────────────────────


def _require_script(repo: ScriptRepository, script_id: str) -> Script:
    script = repo.get_script(script_id)
    if script is None:
        _fail(f"Script {script_id} not found.")
    return script


@script_app.command("new")
def script_new(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Script title"),
) -> None:
    """Create an empty script."""
    script = _studio(ctx).scripts.create_script(title)
    console.print(f"Created script {script.id}.")


@script_app.command("list")
def script_list(ctx: typer.Context) -> None:
    """List scripts, most recently updated first."""
    table = Table(title="Scripts")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Shots")
    table.add_column("Updated")
    for script in _studio(ctx).scripts.list_scripts():
        table.add_row(script.id, escape(script.title), str(len(script.shots)), script.updated_at)
    console.print(table)


@script_app.command("show")
def script_show(
    ctx: typer.Context,
    script_id: str = typer.Argument(..., help="Script to show"),
) -> None:
    """Show a script's settings and shots."""
    script = _require_script(_studio(ctx).scripts, script_id)
    settings = script.settings
    console.print(
        Panel(
            f"[bold]Subtitles:[/bold] {settings.subtitles}\n"
            f"[bold]Narration:[/bold] {settings.narration_enabled} ({settings.default_audio})\n"
            f"[bold]Global prompt:[/bold] {escape(settings.global_prompt)}",
            title=escape(script.title),
            border_style="cyan",
        ),
    )
    table = Table()
    table.add_column("#")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Prompt")
    table.add_column("Templates")
    for i, shot in enumerate(script.shots, start=1):
        table.add_row(
            str(i),
            shot.id,
            escape(shot.title),
            escape(shot.prompt),
            ", ".join(find_placeholders(shot.prompt)),
        )
    console.print(table)


@script_app.command("edit")
def script_edit(
    ctx: typer.Context,
    script_id: str = typer.Argument(..., help="Script to edit"),
    tool_name: str = typer.Argument(..., help=f"One of: {', '.join(TOOL_NAMES)}"),
    args: str = typer.Option("{}", "--args", help="Tool arguments as a JSON object"),
) -> None:
    """Apply a single tool call to a script."""
    repo = _studio(ctx).scripts
    script = _require_script(repo, script_id)
    try:
        parsed = json.loads(args)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] --args is not valid JSON: {e}")
        raise typer.Exit(code=1) from e
    if not isinstance(parsed, dict):
        _fail("--args must be a JSON object.")
    result = repo.apply_tool_calls(script_id, [ToolCall(name=tool_name, args=parsed)])
    if result is None or result.updated_at == script.updated_at:
        console.print("[yellow]No change: the call was invalid or had nothing to do.[/yellow]")
        return
    console.print(f"Applied {tool_name}.")


@script_app.command("apply")
def script_apply(
    ctx: typer.Context,
    script_id: str = typer.Argument(..., help="Script to edit"),
    instruction: str = typer.Argument(..., help="What to change, in plain words"),
    api_key: str | None = typer.Option(
        None,
        envvar="GEMINI_API_KEY",
        help="Google Gemini API Key",
    ),
    model: str = typer.Option(ToolCallConfig().model, help="Gemini model for script edits"),
) -> None:
    """Let the model edit a script through tool calls."""
    repo = _studio(ctx).scripts
    script = _require_script(repo, script_id)
    service = _get_service(api_key)
    try:
        calls = service.propose_tool_calls(script, instruction, config=ToolCallConfig(model=model))
    except Exception as e:
        console.print(f"[bold red]Fatal Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    for call in calls:
        console.print(f"• {call.name} {escape(json.dumps(call.args, ensure_ascii=False))}")
    result = repo.apply_tool_calls(script_id, calls)
    if result is None or result.updated_at == script.updated_at:
        console.print("[yellow]No change.[/yellow]")
        return
    console.print(f"Script updated ({len(result.shots)} shots).")


@script_app.command("export")
def script_export(
    ctx: typer.Context,
    script_id: str = typer.Argument(..., help="Script to export"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write YAML to this file"),
) -> None:
    """Export a script as YAML."""
    script = _require_script(_studio(ctx).scripts, script_id)
    text = script_to_yaml(script)
    if output is None:
        console.print(text, markup=False, highlight=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    console.print(f"Saved to [underline]{output}[/underline]")


# ─── Templates ───────────────────────────────────────────────────────────────


@templates_app.command("add")
def templates_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Variable name used as {{name}}"),
    value: str = typer.Argument(..., help="Text substituted for the variable"),
    category: TemplateCategory = typer.Option(
        TemplateCategory.CHARACTER,
        help="Global template category",
    ),
    script_id: str | None = typer.Option(None, "--script", help="Add to this script only"),
) -> None:
    """Add or replace a template variable."""
    repo = _studio(ctx).scripts
    if script_id is not None:
        if repo.set_local_template(script_id, name, value) is None:
            _fail(f"Script {script_id} not found.")
        console.print(f"Saved {{{{{name}}}}} in script {script_id}.")
        return
    try:
        repo.create_global_template(name, value, category)
    except ValidationError as e:
        console.print(f"[bold red]Error:[/bold red] Invalid template name: {escape(name)}")
        raise typer.Exit(code=1) from e
    console.print(f"Saved global {{{{{name}}}}}.")


@templates_app.command("list")
def templates_list(ctx: typer.Context) -> None:
    """List global templates."""
    table = Table(title="Global templates")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Value")
    for template in _studio(ctx).scripts.list_global_templates():
        table.add_row(template.name, template.category.value, escape(template.value))
    console.print(table)


@templates_app.command("usage")
def templates_usage(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Variable name"),
) -> None:
    """Show which scripts and shots reference a template."""
    usage = _studio(ctx).scripts.template_usage(name)
    for line in format_template_usage(usage):
        console.print(escape(line))


@templates_app.command("delete")
def templates_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Variable name"),
    script_id: str | None = typer.Option(None, "--script", help="Delete from this script only"),
) -> None:
    """Delete a template variable."""
    repo = _studio(ctx).scripts
    if script_id is not None:
        deleted = repo.delete_local_template(script_id, name) is not None
    else:
        deleted = repo.delete_global_template(name)
    if not deleted:
        _fail(f"Template {name} not found.")
    console.print(f"Deleted {{{{{name}}}}}.")


# ─── Images ──────────────────────────────────────────────────────────────────


@images_app.command("new")
def images_new(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Image prompt"),
    session_id: str | None = typer.Option(None, "--session", help="Continue this session"),
    count: int | None = typer.Option(None, help="Images to generate (defaults to settings)"),
    output_dir: Path = typer.Option(Path("./output/images"), help="Directory for PNG files"),
    api_key: str | None = typer.Option(
        None,
        envvar="GEMINI_API_KEY",
        help="Google Gemini API Key",
    ),
    image_model: str = typer.Option(
        ImageGenerationConfig().model,
        "--image-model",
        help="Model for image generation",
    ),
    retries: int = typer.Option(2, help="Number of retries for image generation"),
) -> None:
    """Generate images as a new step of a session."""
    repo = _studio(ctx).images
    if session_id is None:
        session_id = repo.create_session(prompt).id
    generation = repo.create_generation(session_id, prompt)
    if generation is None:
        _fail(f"Session {session_id} not found.")
    if count is None:
        settings = repo.get_settings()
        count = settings.num_images if settings else 3

    service = _get_service(api_key)
    config = ImageGenerationConfig(model=image_model, retries=retries)
    saved = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Generating images...", total=count)
        for i in range(count):
            img_path = output_dir / session_id / f"step_{generation.step_id:03d}_{i:02d}.png"
            try:
                path = service.generate_image(prompt, output_path=img_path, config=config)
                repo.create_item(generation.id, path, model=config.model)
                saved += 1
            except Exception as e:  # noqa: BLE001
                console.print(f"[yellow]Warning: Failed to generate image {i}: {e}[/yellow]")
            progress.advance(task)

    console.print(
        f"Session {session_id}, step {generation.step_id}: {saved}/{count} images saved.",
    )


@images_app.command("list")
def images_list(
    ctx: typer.Context,
    session_id: str | None = typer.Option(None, "--session", help="List this session's items"),
) -> None:
    """List sessions, or the items of one session."""
    repo = _studio(ctx).images
    if session_id is None:
        table = Table(title="Image sessions")
        table.add_column("ID")
        table.add_column("Title")
        table.add_column("Created")
        for session in repo.list_sessions():
            table.add_row(session.id, escape(session.title), session.created_at)
        console.print(table)
        return
    table = Table(title=f"Session {session_id}")
    table.add_column("ID")
    table.add_column("URL")
    table.add_column("Pinned")
    for item in repo.list_items_by_session(session_id):
        if not item.deleted:
            table.add_row(item.id, item.url, "yes" if item.pinned else "")
    console.print(table)


@images_app.command("pin")
def images_pin(
    ctx: typer.Context,
    item_id: str = typer.Argument(..., help="Image to pin"),
    pinned: bool = typer.Option(True, "--pin/--unpin", help="Pin or unpin"),
) -> None:
    """Pin or unpin a generated image."""
    if not _studio(ctx).images.pin_item(item_id, pinned):
        _fail(f"Image {item_id} not found.")
    console.print(f"{'Pinned' if pinned else 'Unpinned'} {item_id}.")


# ─── Data ────────────────────────────────────────────────────────────────────


@data_app.command("export")
def data_export(
    ctx: typer.Context,
    vertical: Vertical = typer.Argument(..., help="Which vertical to export"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSON to this file"),
) -> None:
    """Export a vertical as a JSON document."""
    document = _studio(ctx).repository(vertical).export_data()
    text = json.dumps(document, indent=2, ensure_ascii=False)
    if output is None:
        console.print(text, markup=False, highlight=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    console.print(f"Saved to [underline]{output}[/underline]")


@data_app.command("import")
def data_import(
    ctx: typer.Context,
    vertical: Vertical = typer.Argument(..., help="Which vertical to import into"),
    input_file: Path = typer.Argument(..., help="JSON document to import"),
) -> None:
    """Import a previously exported document."""
    if not input_file.exists():
        _fail(f"File {input_file} not found.")
    try:
        data = json.loads(input_file.read_text(encoding="utf-8"))
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {input_file} is not valid JSON: {e}")
        raise typer.Exit(code=1) from e
    if not isinstance(data, dict):
        _fail(f"{input_file} does not hold a JSON object.")
    imported = _studio(ctx).repository(vertical).import_data(data)
    console.print(f"Imported: {', '.join(imported) or 'nothing'}")


@data_app.command("reset")
def data_reset(
    ctx: typer.Context,
    vertical: Vertical = typer.Argument(..., help="Which vertical to erase"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Erase every stored record of a vertical."""
    if not yes:
        typer.confirm(f"Erase all {vertical.value} data?", abort=True)
    _studio(ctx).repository(vertical).reset()
    console.print(f"Reset {vertical.value}.")


if __name__ == "__main__":
    app()
