"""CLI runner for the storyboard generator.

Usage:
    storyboard blueprint "a robot explores an abandoned city" --duration 16
    storyboard scenes
    storyboard references
    storyboard images [--missing]
    storyboard videos
    storyboard sketches
    storyboard status
    storyboard keys set google <API_KEY>
    storyboard run-all "a robot explores an abandoned city"
    storyboard export out/
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Iterator

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from storyboard.errors import InvalidInputError

console = Console()

# Default paths
_DEFAULT_CONFIG = "config.yaml"
_DEFAULT_PROJECT = "storyboard.json"
_DEFAULT_CREDENTIALS = ".storyboard-credentials.yaml"


def _setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet down httpx unless debugging
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _print_error(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")


def _print_notice(message: str) -> None:
    console.print(f"[yellow]{message}[/yellow]")


def _config_path(config: dict, key_path: str, default: str, config_path: str) -> Path:
    from storyboard.config import get_project_root, resolve_path

    section, key = key_path.split(".")
    if (config.get(section) or {}).get(key):
        return resolve_path(config, key_path, config_path)
    return get_project_root(config_path) / default


def _credential_store(config_path: str):
    from storyboard.config import CredentialStore, load_config

    config = load_config(config_path)
    return CredentialStore(_config_path(config, "credentials.store", _DEFAULT_CREDENTIALS, config_path))


@contextmanager
def _batch_progress(reporter) -> Iterator[None]:
    """Render the reporter's batch progress as a rich progress bar."""
    from storyboard.progress import format_duration

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("ETA {task.fields[eta]}"),
        console=console,
    )
    task_id = None

    def on_change(state) -> None:
        nonlocal task_id
        if state is None:
            if task_id is not None:
                progress.remove_task(task_id)
                task_id = None
            return
        if task_id is None:
            task_id = progress.add_task(f"Đang tạo {state.task}...", total=state.total, eta="--:--")
        progress.update(task_id, completed=state.completed, eta=format_duration(state.eta))

    unsubscribe = reporter.subscribe(on_change)
    try:
        with progress:
            yield
    finally:
        unsubscribe()


@asynccontextmanager
async def _open_board(config_path: str) -> AsyncIterator:
    """Load config, credentials and the saved project; save it again on exit."""
    from storyboard.config import (
        ApiConfig,
        CredentialStore,
        load_config,
        parse_image_provider,
        settings_from_config,
    )
    from storyboard.orchestrator import Storyboard
    from storyboard.project import load_project, save_project
    from storyboard.providers import ProviderName, build_registry, close_registry
    from storyboard.store import EntityStore

    config = load_config(config_path)
    settings = settings_from_config(config, config_path)
    project_file = _config_path(config, "project.file", _DEFAULT_PROJECT, config_path)
    credentials = CredentialStore(_config_path(config, "credentials.store", _DEFAULT_CREDENTIALS, config_path))

    api_config = ApiConfig.load(credentials, settings)
    generation = config.get("generation") or {}
    if generation.get("service"):
        api_config.service = ProviderName(generation["service"])
    if generation.get("image_provider"):
        api_config.image_provider = parse_image_provider(generation["image_provider"])
    if "use_openai_for_prompt" in generation:
        api_config.use_openai_for_prompt = bool(generation["use_openai_for_prompt"])

    registry = build_registry(api_config, settings)
    board = Storyboard(
        EntityStore(),
        api_config,
        registry,
        settings,
        on_error=_print_error,
        notify=_print_notice,
    )
    if load_project(project_file, board):
        logging.getLogger(__name__).debug("Resumed project %s", project_file)

    try:
        with _batch_progress(board.reporter):
            yield board
    finally:
        save_project(project_file, board)
        await close_registry(registry)


def _run(config_path: str, action: Callable[..., Awaitable[None]]) -> None:
    """Run ``action(board)`` inside an opened board with the shared error handling."""

    async def main() -> None:
        async with _open_board(config_path) as board:
            await action(board)

    try:
        asyncio.run(main())
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except InvalidInputError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Progress has been saved to the project file.[/yellow]")
        sys.exit(130)


def _print_summary(board) -> None:
    from storyboard.models import VideoStatus

    scenes = board.store.scenes
    with_image = sum(1 for s in scenes if s.main_image is not None)
    with_video = sum(1 for s in scenes if s.video_status is VideoStatus.DONE)
    refs = [*board.store.characters, *board.store.locations]
    console.print("[bold]Summary:[/bold]")
    console.print(f"  References: {sum(1 for r in refs if r.image is not None)}/{len(refs)} with images")
    console.print(f"  Scenes: {with_image}/{len(scenes)} with images, {with_video}/{len(scenes)} with videos")


@click.group()
@click.option("--config", "-c", default=_DEFAULT_CONFIG, help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool) -> None:
    """Text-to-storyboard generator: blueprint, scenes, images and videos."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    _setup_logging(verbose)


@cli.command("blueprint")
@click.argument("idea")
@click.option("--duration", "-d", type=int, default=None, help="Total video length in seconds")
@click.option(
    "--style", "-s", default=None,
    type=click.Choice(["cinematic", "hyper-realistic-3d", "3d-pixar"]),
    help="Visual style",
)
@click.pass_context
def cmd_blueprint(ctx: click.Context, idea: str, duration: int | None, style: str | None) -> None:
    """Generate characters, locations and an outline from an idea."""

    async def action(board) -> None:
        if duration:
            board.set_video_duration(duration)
        if style:
            board.set_style(style)
        console.print(f"[bold]Generating blueprint ({board.num_scenes} scenes)...[/bold]")
        blueprint = await board.generate_blueprint(idea)
        if blueprint is not None:
            console.print(
                f"[green]Blueprint: {len(blueprint.characters)} characters, "
                f"{len(blueprint.locations)} locations, {len(blueprint.story_outline)} outline points[/green]"
            )

    _run(ctx.obj["config"], action)


@cli.command("scenes")
@click.pass_context
def cmd_scenes(ctx: click.Context) -> None:
    """Generate scenes from the current blueprint."""

    async def action(board) -> None:
        console.print("[bold]Generating scenes...[/bold]")
        scenes = await board.generate_scenes_from_blueprint()
        if scenes is None and not board.store.characters and not board.store.locations:
            console.print("[yellow]No blueprint yet. Run 'blueprint' first.[/yellow]")
        elif scenes:
            console.print(f"[green]Generated {len(scenes)} scenes[/green]")

    _run(ctx.obj["config"], action)


@cli.command("references")
@click.pass_context
def cmd_references(ctx: click.Context) -> None:
    """Generate reference images for characters and locations without one."""

    async def action(board) -> None:
        console.print("[bold]Generating reference images...[/bold]")
        await board.generate_all_reference_images()
        _print_summary(board)

    _run(ctx.obj["config"], action)


@cli.command("images")
@click.option("--missing", is_flag=True, help="Only scenes without an image")
@click.pass_context
def cmd_images(ctx: click.Context, missing: bool) -> None:
    """Generate scene images."""

    async def action(board) -> None:
        console.print("[bold]Generating scene images...[/bold]")
        if missing:
            await board.regenerate_missing_images()
        else:
            await board.regenerate_all_images()
        _print_summary(board)

    _run(ctx.obj["config"], action)


@cli.command("videos")
@click.pass_context
def cmd_videos(ctx: click.Context) -> None:
    """Generate videos for idle or failed scenes."""

    async def action(board) -> None:
        console.print("[bold]Generating scene videos...[/bold]")
        await board.generate_all_scene_videos()
        _print_summary(board)

    _run(ctx.obj["config"], action)


@cli.command("sketches")
@click.pass_context
def cmd_sketches(ctx: click.Context) -> None:
    """Generate storyboard sketches for scenes without one."""

    async def action(board) -> None:
        console.print("[bold]Generating sketches...[/bold]")
        await board.generate_all_sketches()

    _run(ctx.obj["config"], action)


@cli.command("status")
@click.pass_context
def cmd_status(ctx: click.Context) -> None:
    """Show characters, locations and scenes of the current project."""

    async def action(board) -> None:
        store = board.store
        if not (store.characters or store.locations or store.scenes):
            console.print("[yellow]No project yet. Run 'blueprint' first.[/yellow]")
            return

        if board.idea:
            console.print(f"[bold]Idea:[/bold] {board.idea}")
        for i, point in enumerate(store.story_outline, start=1):
            console.print(f"  {i}. {point}")
        console.print()

        for title, entities in (("Characters", store.characters), ("Locations", store.locations)):
            if not entities:
                continue
            table = Table(title=title, show_lines=True)
            table.add_column("Name", style="cyan")
            table.add_column("Description", max_width=60)
            table.add_column("Status", justify="center")
            for entity in entities:
                status_str = (
                    "[green]IMAGE[/green]" if entity.image is not None
                    else f"[dim]{entity.status.value.upper()}[/dim]"
                )
                table.add_row(entity.name, entity.description, status_str)
            console.print(table)
            console.print()

        if store.scenes:
            table = Table(title="Scenes", show_lines=True)
            table.add_column("#", justify="right")
            table.add_column("Title", style="cyan")
            table.add_column("Image", justify="center")
            table.add_column("Video", justify="center")
            table.add_column("Message / URL", max_width=50)
            for i, scene in enumerate(store.scenes, start=1):
                video = scene.video_status.value
                if video == "done":
                    video_str = "[green]DONE[/green]"
                elif video == "error":
                    video_str = "[red]ERROR[/red]"
                else:
                    video_str = f"[dim]{video.upper()}[/dim]"
                image_str = f"{len(scene.image_options)}" if scene.main_image is not None else "[dim]-[/dim]"
                table.add_row(str(i), scene.title, image_str, video_str, scene.video_url or scene.video_status_message or "")
            console.print(table)
            console.print()

        _print_summary(board)

    _run(ctx.obj["config"], action)


@cli.group("keys")
def cmd_keys() -> None:
    """Manage provider credentials."""


@cmd_keys.command("set")
@click.argument("provider", type=click.Choice(["google", "openai", "aivideoauto"]))
@click.argument("key")
@click.pass_context
def cmd_keys_set(ctx: click.Context, provider: str, key: str) -> None:
    """Validate and store a provider key (an empty KEY clears it)."""
    from storyboard.providers import ProviderName

    async def action(board) -> None:
        name = ProviderName(provider)
        ok = await board.api_config.save_key(name, key, board.providers.get(name))
        creds = board.api_config[name]
        if ok:
            console.print(f"[green]{provider} key is valid and saved[/green]")
        elif key:
            console.print(f"[red]{provider} key rejected: {creds.error}[/red]")
            sys.exit(1)
        else:
            console.print(f"[yellow]{provider} key cleared[/yellow]")

    _run(ctx.obj["config"], action)


@cmd_keys.command("show")
@click.pass_context
def cmd_keys_show(ctx: click.Context) -> None:
    """Show provider readiness and selected models."""
    from storyboard.config import ApiConfig
    from storyboard.providers import DISPLAY_NAMES, ProviderName

    try:
        api_config = ApiConfig.load(_credential_store(ctx.obj["config"]))
    except FileNotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    table = Table(title="Providers", show_lines=True)
    table.add_column("Provider", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Key", max_width=16)
    table.add_column("Models", max_width=50)
    for name in ProviderName:
        creds = api_config[name]
        status_str = "[green]READY[/green]" if creds.ready else f"[dim]{creds.status.value.upper()}[/dim]"
        masked = f"{creds.key[:4]}…{creds.key[-4:]}" if len(creds.key) > 8 else ("set" if creds.key else "")
        models = ", ".join(m for m in (creds.image_model, creds.video_model, creds.text_model) if m)
        table.add_row(DISPLAY_NAMES[name], status_str, masked, models)
    console.print(table)
    console.print(f"Service: [bold]{api_config.service.value}[/bold]")


@cli.command("run-all")
@click.argument("idea")
@click.option("--duration", "-d", type=int, default=None, help="Total video length in seconds")
@click.pass_context
def cmd_run_all(ctx: click.Context, idea: str, duration: int | None) -> None:
    """Run the full flow: blueprint -> references -> scenes -> images -> videos."""

    async def action(board) -> None:
        if duration:
            board.set_video_duration(duration)

        # Step 1: Blueprint
        console.rule("[bold blue]Step 1: Blueprint[/bold blue]")
        if await board.generate_blueprint(idea) is None:
            return

        # Step 2: Reference images
        console.rule("[bold blue]Step 2: Reference Images[/bold blue]")
        await board.generate_all_reference_images()

        # Step 3: Scenes
        console.rule("[bold blue]Step 3: Scenes[/bold blue]")
        if not await board.generate_scenes_from_blueprint():
            return

        # Step 4: Scene images
        console.rule("[bold blue]Step 4: Scene Images[/bold blue]")
        await board.regenerate_missing_images()

        # Step 5: Videos
        console.rule("[bold blue]Step 5: Scene Videos[/bold blue]")
        await board.generate_all_scene_videos()

        console.rule("[bold green]Storyboard Complete[/bold green]")
        _print_summary(board)

    _run(ctx.obj["config"], action)


@cli.command("export")
@click.argument("out_dir", required=False)
@click.pass_context
def cmd_export(ctx: click.Context, out_dir: str | None) -> None:
    """Write scene and reference images to OUT_DIR (default: project.images_dir)."""
    from storyboard.config import load_config
    from storyboard.project import export_images

    config_path = ctx.obj["config"]
    if out_dir is None:
        try:
            target = _config_path(load_config(config_path), "project.images_dir", "export", config_path)
        except FileNotFoundError as exc:
            console.print(f"[red]Error: {exc}[/red]")
            sys.exit(1)
    else:
        target = Path(out_dir)

    async def action(board) -> None:
        written = export_images(board.store, target)
        console.print(f"[green]Exported {len(written)} images to {target}[/green]")

    _run(ctx.obj["config"], action)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
