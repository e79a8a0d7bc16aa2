"""
Command-line interface for pattern-sync.

This module implements the CLI using Click, exposing the track library of
the remote store as `psync` subcommands. rich-click is used for the help
and output colors.

Commands:
    psync login                         Store session tokens
    psync logout                        Forget the session
    psync ls                            Show the library as a tree
    psync new <name>                    Create a track
    psync mkdir <path>                  Create a folder
    psync mv <track> <folder>           Move a track (--folder: move a folder)
    psync rename <track> <name>         Rename a track (--folder: a folder)
    psync rm <track>                    Delete a track
    psync rmdir <folder>                Delete a folder and its contents
    psync wipe                          Delete every track and folder
    psync push <directory>              Import pattern files as tracks
    psync pull <directory>              Write every track to a local file
    psync edit <track> <file>           Edit a track through a local file (--step)

Options:
    --config <path>                     Path to config.yaml

References:
    Tracks are addressed by id or by navigable path, with or without the
    route prefix: "live/drums/drum-loop", "/repl/drum-loop". Folders are
    addressed by id or by path ("live/drums"); "/" or "root" is the root.

Usage:
    # Sign in with tokens from the web editor
    psync login --access-token ... --refresh-token ...

    # Organize the library
    psync mkdir -p live/drums
    psync new "Drum Loop" --folder live/drums --file loop.js
    psync mv live/drums/drum-loop live

    # Edit in a local file; saves are debounced and sent automatically
    psync edit live/drum-loop drum-loop.js

Exit Codes:
    1   configuration error or unexpected failure
    2   not signed in, or the session could not be refreshed
    3   invalid input (name, path, folder)
    4   the remote store failed or the item does not exist
    130 interrupted
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import rich_click as click
from tqdm import tqdm

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.COMMAND_GROUPS = {
    "cli": [
        {
            "name": "Session",
            "commands": ["login", "logout"],
        },
        {
            "name": "Library",
            "commands": ["ls", "new", "mkdir", "mv", "rename", "rm", "rmdir", "wipe"],
        },
        {
            "name": "Editing",
            "commands": ["push", "pull", "edit"],
        },
    ],
}

from pattern_sync import __version__
from pattern_sync.autosave import FileEditor
from pattern_sync.core import (
    AuthenticationError,
    Config,
    ConfigError,
    Events,
    NotFoundError,
    PatternSyncError,
    RemoteError,
    ValidationError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from pattern_sync.core.logger import format_failed_message, format_saved_message
from pattern_sync.library import (
    Folder,
    Track,
    flat_to_tree,
    generate_unique_track_name,
    resolve_folder_path,
)
from pattern_sync.library.export import plan_export, write_export_file, write_metadata
from pattern_sync.library.tree import ROOT_ID, iter_tree
from pattern_sync.routing import resolve_active_track
from pattern_sync.sync import folder_path_for
from pattern_sync.workspace import Workspace

logger = get_logger(__name__)

Operation = Callable[[Workspace], Awaitable[Any]]

# File suffixes picked up by `psync push` unless --glob is given
PATTERN_SUFFIXES = (".js", ".strudel", ".txt")


@click.group(invoke_without_command=True)
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit."
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], version: bool) -> None:
    """
    psync: Keep a live-coding pattern library in sync with its server.

    \b
    BASIC USAGE:
        psync login                               # Store session tokens
        psync ls                                  # Show the library
        psync edit live/drum-loop loop.js         # Edit with autosave

    \b
    ORGANIZING:
        psync mkdir -p live/drums                 # Create nested folders
        psync new "Drum Loop" --folder live/drums # Create a track
        psync mv live/drums/drum-loop live        # Move a track
        psync rmdir live/drums                    # Delete folder and contents
    """
    if version:
        click.echo(f"pattern-sync {__version__}")
        ctx.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# =============================================================================
# SESSION
# =============================================================================

@cli.command()
@click.option(
    "--access-token",
    prompt=True,
    hide_input=True,
    envvar="PATTERN_SYNC_ACCESS_TOKEN",
    help="Access token from the web editor"
)
@click.option(
    "--refresh-token",
    prompt=True,
    hide_input=True,
    envvar="PATTERN_SYNC_REFRESH_TOKEN",
    help="Refresh token from the web editor"
)
@click.option(
    "--expires-in",
    type=click.IntRange(min=1),
    default=None,
    metavar="<seconds>",
    help="Lifetime of the access token"
)
@click.option(
    "--user-id",
    default=None,
    help="Id of the signed-in user"
)
@click.pass_context
def login(
    ctx: click.Context,
    access_token: str,
    refresh_token: str,
    expires_in: Optional[int],
    user_id: Optional[str]
) -> None:
    """Store session tokens obtained from the web editor."""
    async def operation(workspace: Workspace) -> None:
        user = {"id": user_id} if user_id else None
        workspace.session.sign_in(access_token, refresh_token, expires_in=expires_in, user=user)
        if not await workspace.session.ensure_valid_session():
            raise AuthenticationError("The server rejected the tokens")
        logger.info(f"Signed in to {workspace.config.remote.base_url}")

    _run(ctx, operation, load_library=False)


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Forget the session and delete the token file."""
    async def operation(workspace: Workspace) -> None:
        workspace.sign_out()

    _run(ctx, operation, load_library=False)


# =============================================================================
# LIBRARY
# =============================================================================

@cli.command(name="ls")
@click.option("--ids", is_flag=True, help="Show item ids")
@click.pass_context
def list_library(ctx: click.Context, ids: bool) -> None:
    """Show the library as a tree."""
    async def operation(workspace: Workspace) -> None:
        store = workspace.store
        if not store.has_data():
            click.echo("Library is empty")
            return

        tree = flat_to_tree(store.tracks.values(), store.folders.values())
        for depth, item in iter_tree(tree):
            indent = "  " * depth
            suffix = click.style(f"  [{item['id']}]", fg="cyan") if ids else ""
            if item["type"] == "folder":
                click.echo(f"{indent}{click.style(item['name'] + '/', bold=True)}{suffix}")
            else:
                steps = len(item.get("steps") or ())
                marker = f" ({steps} steps)" if item.get("isMultitrack") else ""
                click.echo(f"{indent}{item['name']}{marker}{suffix}")

        click.echo(f"\n{len(store.tracks)} tracks, {len(store.folders)} folders")

    _run(ctx, operation)


@cli.command()
@click.argument("name")
@click.option("--folder", default=None, metavar="<path>", help="Target folder")
@click.option(
    "--file", "source",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<file>",
    help="Initial code read from a file"
)
@click.option("--multitrack", is_flag=True, help="Create a multitrack track")
@click.pass_context
def new(
    ctx: click.Context,
    name: str,
    folder: Optional[str],
    source: Optional[Path],
    multitrack: bool
) -> None:
    """Create a track."""
    code = source.read_text(encoding="utf-8") if source else ""

    async def operation(workspace: Workspace) -> None:
        track = await workspace.orchestrator.create_track(
            name, code=code, folder=_folder_path(folder), is_multitrack=multitrack
        )
        click.echo(f"Created {workspace.path_for(track)}")

    _run(ctx, operation)


@cli.command()
@click.argument("path")
@click.option("-p", "--parents", is_flag=True, help="Create missing parent folders")
@click.pass_context
def mkdir(ctx: click.Context, path: str, parents: bool) -> None:
    """Create a folder, e.g. live/drums."""
    segments = [segment.strip() for segment in path.strip("/").split("/") if segment.strip()]
    if not segments:
        raise click.UsageError("Folder path cannot be empty")

    async def operation(workspace: Workspace) -> None:
        store = workspace.store
        parent: Folder | None = None
        for index, name in enumerate(segments):
            target = folder_path_for(name, parent)
            existing = store.find_folder_by_path(target)
            is_last = index == len(segments) - 1

            if existing is not None and not is_last:
                parent = existing
                continue
            if existing is None and not is_last and not parents:
                raise ValidationError(
                    f"Parent folder '{target}' does not exist (use -p to create it)",
                    details={"path": target}
                )
            if existing is not None and parents:
                parent = existing
                continue

            parent = await workspace.orchestrator.create_folder(
                name, target, parent.id if parent else None
            )
            click.echo(f"Created {parent.path}/")

    _run(ctx, operation)


@cli.command()
@click.argument("source")
@click.argument("target")
@click.option("--folder", "is_folder", is_flag=True, help="SOURCE is a folder")
@click.pass_context
def mv(ctx: click.Context, source: str, target: str, is_folder: bool) -> None:
    """Move a track (or with --folder, a folder) into TARGET folder."""
    async def operation(workspace: Workspace) -> None:
        if is_folder:
            folder = _find_folder(workspace, source)
            parent = _find_folder(workspace, target) if _folder_path(target) else None
            moved = await workspace.orchestrator.move_folder(folder.id, parent.id if parent else None)
            click.echo(f"Moved to {moved.path}/")
        else:
            track = _find_track(workspace, source)
            moved = await workspace.orchestrator.move_track(track.id, _folder_path(target))
            click.echo(f"Moved to {workspace.path_for(moved)}")

    _run(ctx, operation)


@cli.command()
@click.argument("source")
@click.argument("name")
@click.option("--folder", "is_folder", is_flag=True, help="SOURCE is a folder")
@click.pass_context
def rename(ctx: click.Context, source: str, name: str, is_folder: bool) -> None:
    """Rename a track (or with --folder, a folder)."""
    async def operation(workspace: Workspace) -> None:
        if is_folder:
            folder = _find_folder(workspace, source)
            renamed = await workspace.orchestrator.rename_folder(folder.id, name)
            click.echo(f"Renamed to {renamed.path}/")
        else:
            track = _find_track(workspace, source)
            renamed = await workspace.orchestrator.rename_track(track.id, name)
            click.echo(f"Renamed to {workspace.path_for(renamed)}")

    _run(ctx, operation)


@cli.command()
@click.argument("track_ref", metavar="TRACK")
@click.pass_context
def rm(ctx: click.Context, track_ref: str) -> None:
    """Delete a track."""
    async def operation(workspace: Workspace) -> None:
        track = _find_track(workspace, track_ref)
        await workspace.orchestrator.delete_track(track.id)
        click.echo(f"Deleted '{track.name}'")

    _run(ctx, operation)


@cli.command()
@click.argument("folder_ref", metavar="FOLDER")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def rmdir(ctx: click.Context, folder_ref: str, yes: bool) -> None:
    """Delete a folder with every track and sub-folder inside it."""
    async def operation(workspace: Workspace) -> None:
        folder = _find_folder(workspace, folder_ref)
        if not yes and not click.confirm(f"Delete '{folder.path}' and everything inside it?"):
            raise click.Abort()
        await workspace.orchestrator.delete_folder(folder.id)
        click.echo(f"Deleted {folder.path}/")

    _run(ctx, operation)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def wipe(ctx: click.Context, yes: bool) -> None:
    """Delete every track and folder of the library."""
    if not yes:
        click.confirm("Delete ALL tracks and folders? This cannot be undone", abort=True)

    async def operation(workspace: Workspace) -> None:
        await workspace.orchestrator.delete_all_tracks()
        click.echo("Library deleted")

    _run(ctx, operation)


# =============================================================================
# EDITING
# =============================================================================

@cli.command()
@click.argument(
    "directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.option("--folder", default=None, metavar="<path>", help="Target folder")
@click.option(
    "--glob", "pattern",
    default=None,
    metavar="<pattern>",
    help=f"Files to import (default: {', '.join('*' + s for s in PATTERN_SUFFIXES)})"
)
@click.pass_context
def push(ctx: click.Context, directory: Path, folder: Optional[str], pattern: Optional[str]) -> None:
    """Import every pattern file of DIRECTORY as a new track."""
    if pattern:
        files = sorted(path for path in directory.glob(pattern) if path.is_file())
    else:
        files = sorted(
            path for path in directory.iterdir()
            if path.is_file() and path.suffix in PATTERN_SUFFIXES
        )

    async def operation(workspace: Workspace) -> None:
        if not files:
            logger.warning(f"No pattern files found in {directory}")
            return

        folder_path = _folder_path(folder)
        created = 0
        failed: list[tuple[Path, str]] = []

        for path in tqdm(files, desc="Pushing", unit="track"):
            name = generate_unique_track_name(
                path.stem, workspace.store.tracks.values(), folder_path
            )
            try:
                await workspace.orchestrator.create_track(
                    name, code=path.read_text(encoding="utf-8"), folder=folder_path
                )
                created += 1
            except (ValidationError, RemoteError) as e:
                failed.append((path, e.message))
                logger.error(format_failed_message(f"Push of {path.name}", e.message))

        logger.info("=" * 60)
        logger.info(f"Created:  {created}")
        logger.info(f"Failed:   {len(failed)}")
        logger.info("=" * 60)

    _run(ctx, operation)


@cli.command()
@click.argument(
    "directory",
    type=click.Path(file_okay=False, path_type=Path)
)
@click.option(
    "--suffix",
    default=PATTERN_SUFFIXES[0],
    show_default=True,
    metavar="<ext>",
    help="Extension of the written files"
)
@click.option("--force", is_flag=True, help="Overwrite files that already exist")
@click.pass_context
def pull(ctx: click.Context, directory: Path, suffix: str, force: bool) -> None:
    """
    Write every track of the library to DIRECTORY.

    Folders become sub-directories and multitrack tracks a directory with
    one file per step. A library.json with every track and folder is
    written alongside.
    """
    async def operation(workspace: Workspace) -> None:
        tracks = list(workspace.store.tracks.values())
        if not tracks:
            logger.warning("The library is empty, nothing to pull")
            return

        entries = plan_export(tracks, workspace.store.folders, suffix)
        written = 0
        skipped = 0
        failed: list[tuple[str, str]] = []

        for entry in tqdm(entries, desc="Pulling", unit="file"):
            try:
                if write_export_file(directory, entry, overwrite=force):
                    written += 1
                else:
                    skipped += 1
                    logger.debug(f"Skipping existing {entry.relative_path}")
            except OSError as e:
                failed.append((str(entry.relative_path), str(e)))
                logger.error(format_failed_message(f"Pull of {entry.relative_path}", str(e)))

        write_metadata(directory, tracks, workspace.store.folders)

        logger.info("=" * 60)
        logger.info(f"Written:  {written}")
        logger.info(f"Skipped:  {skipped} (already exist, use --force)")
        logger.info(f"Failed:   {len(failed)}")
        logger.info("=" * 60)

    _run(ctx, operation)


@cli.command()
@click.argument("track_ref", metavar="TRACK")
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--duration",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    metavar="<seconds>",
    help="Stop after this many seconds (default: until Ctrl+C)"
)
@click.option("--step", default=None, metavar="<name>", help="Step of a multitrack track")
@click.pass_context
def edit(
    ctx: click.Context,
    track_ref: str,
    file: Path,
    duration: Optional[float],
    step: Optional[str]
) -> None:
    """
    Edit a track through a local file.

    The track's code is written to FILE, which can be opened in any text
    editor. Changes are polled and saved after the autosave interval; a
    final save runs on exit. --step switches a multitrack track to that
    step first.
    """
    async def operation(workspace: Workspace) -> None:
        track = _find_track(workspace, track_ref)
        workspace.scheduler.attach_editor(FileEditor(file))
        await workspace.open_track(track.id, step_name=step)
        _report_saves(workspace)

        workspace.change_detector.start()
        logger.info(f"Editing '{track.name}' in {file}, press Ctrl+C to stop")
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            await workspace.change_detector.stop()
            await workspace.scheduler.save_current_track()

    _run(ctx, operation)


# =============================================================================
# HELPERS
# =============================================================================

def _run(ctx: click.Context, operation: Operation, load_library: bool = True) -> None:
    """
    Run one command against a freshly opened Workspace.

    This is the shared frame of every subcommand:
    1. Loads configuration
    2. Sets up logging
    3. Opens the workspace (loading the library unless disabled)
    4. Runs the operation
    5. Maps errors to exit codes

    Raises:
        SystemExit: On fatal errors (with appropriate exit code).
    """
    try:
        config = load_config(ctx.obj.get("config_path"))
        setup_logging(config.logging.directory, config.logging.level)
        logger.debug(f"pattern-sync {__version__} starting")

        asyncio.run(_with_workspace(config, operation, load_library))

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except AuthenticationError as e:
        click.echo(f"Authentication error: {e.message}", err=True)
        click.echo("Run `psync login` to sign in again", err=True)
        sys.exit(2)

    except ValidationError as e:
        click.echo(f"Invalid input: {e.message}", err=True)
        sys.exit(3)

    except NotFoundError as e:
        click.echo(f"Not found: {e.message}", err=True)
        sys.exit(4)

    except RemoteError as e:
        click.echo(f"Remote error: {e.message}", err=True)
        if e.is_network_error:
            click.echo("Check remote.base_url in config.yaml and your connection", err=True)
        sys.exit(4)

    except PatternSyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(4)

    except click.exceptions.Abort:
        click.echo("Aborted", err=True)
        sys.exit(1)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        shutdown_logging()


async def _with_workspace(config: Config, operation: Operation, load_library: bool) -> None:
    async with Workspace(config) as workspace:
        if load_library:
            if not await workspace.session.ensure_valid_session():
                raise AuthenticationError("You are not signed in")
            if not await workspace.open():
                raise RemoteError(
                    f"Could not load the library: {workspace.store.state.error}",
                    details={"base_url": config.remote.base_url}
                )
        await operation(workspace)


def _report_saves(workspace: Workspace) -> None:
    """Echo save results of an editing session to the console."""
    def on_saved(track_id: str, unchanged: bool = False, **_: Any) -> None:
        track = workspace.store.get_track(track_id)
        if not unchanged and track is not None:
            logger.info(format_saved_message(track.name, track_id))

    def on_failed(message: str, **_: Any) -> None:
        logger.warning(format_failed_message("Save", message))

    def on_auth_required(**_: Any) -> None:
        logger.error("Session expired, run `psync login` in another terminal")

    workspace.events.on(Events.TRACK_SAVED, on_saved)
    workspace.events.on(Events.SAVE_FAILED, on_failed)
    workspace.events.on(Events.AUTH_REQUIRED, on_auth_required)


def _folder_path(ref: Optional[str]) -> Optional[str]:
    """Normalize a folder argument; "/", "" and "root" mean the root folder."""
    if ref is None:
        return None
    ref = ref.strip().strip("/")
    if not ref or ref == ROOT_ID:
        return None
    return ref


def _find_track(workspace: Workspace, ref: str) -> Track:
    """Look a track up by id, then by navigable path."""
    store = workspace.store
    track = store.get_track(ref)
    if track is not None:
        return track

    active = resolve_active_track(ref, store.tracks, store.folders, workspace.config.routing.prefix)
    track = store.get_track(active.track_id) if active else None
    if track is None:
        raise NotFoundError(f"No track matches '{ref}'", details={"ref": ref})
    return track


def _find_folder(workspace: Workspace, ref: str) -> Folder:
    """Look a folder up by id, then by path."""
    store = workspace.store
    folder = store.get_folder(ref) or store.find_folder_by_path(
        resolve_folder_path(_folder_path(ref), store.folders)
    )
    if folder is None:
        raise NotFoundError(f"No folder matches '{ref}'", details={"ref": ref})
    return folder


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `psync` from the command line.
    It invokes the Click CLI group.
    """
    cli()


if __name__ == "__main__":
    main()
