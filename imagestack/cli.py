"""Thin CLI wrapper for imagestack.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from imagestack import __version__
from imagestack.config import Settings, get_settings, print_settings_json
from imagestack.errors import (
    ImagestackError,
    SchedulingError,
    StorageError,
    VolumeError,
)
from imagestack.images.layout import OciTagStore

app = typer.Typer(
    name="imagestack",
    help="imagestack - build layered root filesystem images from recipes",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"imagestack version {__version__}")
        raise typer.Exit()


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        console.print("[red]Invalid configuration:[/red]")
        console.print(str(e))
        raise typer.Exit(code=1) from None


def _report(error: ImagestackError) -> None:
    console.print(f"[red]Error ({error.code}):[/red] {escape(str(error))}")


def configure_logging(level: str) -> None:
    """Route log records through rich to stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log at DEBUG level"),
    ] = False,
) -> None:
    """imagestack - build layered root filesystem images from recipes."""
    settings = _load_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)


@app.command()
def build(
    recipe: Annotated[
        Path,
        typer.Argument(help="Recipe YAML file"),
    ],
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Print the build order without building"),
    ] = False,
) -> None:
    """Build every target of a recipe.

    Targets are built one at a time in dependency order. Use --dry-run to
    validate the recipe and show the order without touching storage.
    """
    from imagestack.builds import BuildScheduler, ChrootExecutor, plan_build
    from imagestack.recipes import load_recipe
    from imagestack.storage import get_backend

    settings = _load_settings()
    tag_store = OciTagStore(settings.layout_dir)

    try:
        graph = load_recipe(recipe)
        if dry_run:
            order = plan_build(graph, tag_store)
            console.print(f"[bold]Build order ({len(order)} target(s)):[/bold]")
            for position, name in enumerate(order, start=1):
                target = graph.get(name)
                console.print(f"  {position}. [green]{name}[/green] (from {target.base})")
            return

        backend = get_backend(settings, tag_store)
        executor = ChrootExecutor.from_settings(settings, recipe.resolve().parent)
        log = BuildScheduler(tag_store, backend, executor).run(graph)
    except SchedulingError as e:
        _report(e)
        if e.built:
            console.print(f"  Built before stopping: {escape(', '.join(e.built))}")
        console.print(f"  Not built: {escape(', '.join(e.remaining))}")
        raise typer.Exit(code=1) from None
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None

    console.print(f"[bold]Built {len(log)} target(s):[/bold]")
    for entry in log.entries:
        console.print(f"  [green]{entry.target}[/green] {entry.digest or '(no layers)'}")


@app.command()
def checkout(
    tag: Annotated[str, typer.Argument(help="Tag to check out, or 'empty'")],
) -> None:
    """Check out a tag as the working copy."""
    from imagestack.builds import CheckoutSession
    from imagestack.storage import get_backend

    settings = _load_settings()
    try:
        session = CheckoutSession(get_backend(settings))
        path = session.checkout(tag)
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None
    console.print(f"[green]Checked out {tag}[/green] into {path}")


@app.command()
def checkin(
    new_tag: Annotated[str, typer.Argument(help="Tag to create")],
    entrypoint: Annotated[
        str | None,
        typer.Option("--entrypoint", "-e", help="Entrypoint for the new image"),
    ] = None,
) -> None:
    """Commit the working copy as a new tag."""
    from imagestack.builds import CheckoutSession
    from imagestack.storage import get_backend

    settings = _load_settings()
    try:
        session = CheckoutSession(get_backend(settings))
        if entrypoint:
            session.set_entrypoint(entrypoint)
        digest = session.commit(new_tag)
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None
    console.print(f"[green]Committed {new_tag}[/green] {digest or '(no layers)'}")


@app.command()
def abort(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Discard the working copy."""
    from imagestack.builds import CheckoutSession
    from imagestack.storage import get_backend, prompt_confirmation
    from imagestack.types import AbortOutcome

    settings = _load_settings()
    try:
        session = CheckoutSession(get_backend(settings))
        outcome = session.abort(force=force, confirm=prompt_confirmation)
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None

    if outcome == AbortOutcome.DECLINED:
        console.print("[yellow]Abort declined, working copy kept[/yellow]")
        raise typer.Exit(code=0)
    console.print("[green]Working copy discarded[/green]")


@app.command("ls")
def list_tags(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List image tags."""
    settings = _load_settings()
    try:
        tags = OciTagStore(settings.layout_dir).list_tags()
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(json.dumps(tags, indent=2))
        return
    if not tags:
        console.print("[yellow]No tags found[/yellow]")
        return
    for tag in tags:
        console.print(tag)


@app.command()
def status(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the checkout state and any inconsistencies."""
    from imagestack.storage import get_backend

    settings = _load_settings()
    try:
        info = get_backend(settings).status()
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None

    if json_output:
        output = {
            "state": info.state.value,
            "tag": info.tag,
            "digest": info.digest,
            "working_copy": str(info.working_copy),
            "issues": info.issues,
        }
        console.print(json.dumps(output, indent=2))
        return

    console.print(f"[bold]State:[/bold]        {info.state.value}")
    if info.tag is not None:
        console.print(f"  Tag:          {info.tag}")
        console.print(f"  Digest:       {info.digest or '(no layers)'}")
    console.print(f"  Working copy: {info.working_copy}")
    for issue in info.issues:
        console.print(f"[yellow]! {issue}[/yellow]")


@app.command("import")
def import_tag(
    tag: Annotated[str, typer.Argument(help="Tag whose layers to materialize")],
) -> None:
    """Materialize a tag's layer chain as btrfs subvolumes."""
    from imagestack.storage import BtrfsBackend, get_backend

    settings = _load_settings()
    try:
        backend = get_backend(settings)
        if not isinstance(backend, BtrfsBackend):
            raise StorageError(
                f"import needs the btrfs storage driver, not {settings.storage_driver}"
            )
        created = backend.import_tag(tag)
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None

    if not created:
        console.print(f"[yellow]All layers of {tag} already imported[/yellow]")
        return
    console.print(f"[green]Imported {len(created)} layer(s) of {tag}[/green]")
    for digest in created:
        console.print(f"  {digest}")


volume_app = typer.Typer(help="Manage the btrfs loopback volume")
app.add_typer(volume_app, name="volume")


def _loopback_file(settings: Settings) -> Path:
    if settings.loopback_file is None:
        _report(VolumeError("No loopback file configured (IMAGESTACK_LOOPBACK_FILE)"))
        raise typer.Exit(code=1)
    return settings.loopback_file


@volume_app.command("setup")
def volume_setup() -> None:
    """Create and mount the loopback volume (no-op if already present)."""
    from imagestack.storage.volume import provision_volume

    settings = _load_settings()
    backing_file = _loopback_file(settings)
    try:
        provision_volume(
            settings.volume_size,
            backing_file,
            settings.snapshot_mount,
            timeout=settings.tool_timeout,
        )
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None
    console.print(f"[green]Volume mounted on {settings.snapshot_mount}[/green]")


@volume_app.command("teardown")
def volume_teardown(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Unmount the loopback volume and delete its backing file."""
    from imagestack.storage.volume import deprovision_volume

    settings = _load_settings()
    backing_file = _loopback_file(settings)

    if not force:
        console.print(
            f"[bold red]WARNING:[/bold red] This will DELETE {backing_file} "
            "and every layer stored on it"
        )
        confirm = typer.confirm("Are you sure you want to continue?", default=False)
        if not confirm:
            console.print("[yellow]Aborted[/yellow]")
            raise typer.Exit(code=0)

    try:
        deprovision_volume(backing_file, settings.snapshot_mount, timeout=settings.tool_timeout)
    except ImagestackError as e:
        _report(e)
        raise typer.Exit(code=1) from None
    console.print("[green]Volume removed[/green]")


config_app = typer.Typer(help="Inspect configuration")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    from imagestack.storage.volume import get_volume_status

    settings = _load_settings()
    volume = get_volume_status(settings.loopback_file, settings.snapshot_mount)

    if json_output:
        output = json.loads(print_settings_json(settings))
        output["volume"] = {
            "backing_file_exists": volume.backing_file_exists,
            "mounted": volume.mounted,
        }
        console.print(json.dumps(output, indent=2))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Base directory:      {settings.base_dir}")
    console.print(f"  OCI layout:          {settings.layout_dir}")
    console.print(f"  Working copy:        {settings.unpack_dir}")
    console.print()
    console.print("[bold]Storage:[/bold]")
    console.print(f"  Driver:              {settings.storage_driver}")
    console.print(f"  btrfs mount:         {settings.snapshot_mount}")
    console.print(f"  Mounted:             {volume.mounted}")
    console.print(f"  Loopback file:       {settings.loopback_file or '(none)'}")
    if settings.loopback_file is not None:
        console.print(f"  Loopback exists:     {volume.backing_file_exists}")
        console.print(f"  Volume size:         {settings.volume_size}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    timeout_display = settings.tool_timeout or "(none)"
    console.print(f"  Tool timeout:        {timeout_display}")


if __name__ == "__main__":
    app()
