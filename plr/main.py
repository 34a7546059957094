"""
Main CLI interface for plr

This module provides the command-line interface for git-like version
control of playlists. It is the primary entry point for user interactions
and a thin layer over the PlaylistSynchronizer.

The CLI is built using the Click framework and provides commands for:
- Tracking (init, list)
- Staging (add, remove, move, reset, status, diff)
- History (commit, log, revert, apply)
- Remote synchronization (push, pull)
- Catalog helpers (find, search, url)
- Configuration (config show)

Positions on the command line are 0-based, the same positions shown by
``status`` and ``diff``.
"""

import sys
import click
import functools

from . import __version__
from .config.settings import get_settings, reload_settings
from .exceptions import PlrError, ProviderError
from .provider.models import DiffPatch, ProviderKind, TrackMoved
from .sync.synchronizer import CollectionState, get_synchronizer, reset_synchronizer
from .utils.helpers import format_duration, format_timestamp, truncate_string
from .utils.logger import configure_from_settings, get_logger


logger = get_logger(__name__)

PROVIDER_CHOICES = [kind.value for kind in ProviderKind]


def handle_error(func):
    """
    Decorator to handle common CLI errors gracefully

    Wraps CLI command functions so every plr failure ends with a short red
    message and exit code 1, and Ctrl-C with exit code 130.

    Args:
        func: The CLI command function to wrap

    Returns:
        Wrapped function with error handling
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo(click.style("\n\nOperation cancelled by user", fg='yellow'))
            sys.exit(130)  # Standard exit code for SIGINT
        except PlrError as e:
            logger.error(f"Command failed: {e!r} {e.details}")
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            if isinstance(e, ProviderError) and e.phases_completed:
                click.echo(click.style("Remote playlist may be partially updated", fg='yellow'), err=True)
            sys.exit(1)
        except Exception as e:
            logger.error(f"Command failed: {e}", exc_info=True)
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            sys.exit(1)
    return wrapper


def playlist_option(func):
    """Shared -p/--playlist option, defaulting to the only tracked playlist"""
    return click.option(
        '--playlist', '-p',
        help='Playlist URL or id (defaults to the only tracked playlist)'
    )(func)


def echo_patch(patch: DiffPatch, indent: str = "  ") -> None:
    """Print a patch one change per line"""
    for change in patch:
        if isinstance(change, TrackMoved):
            click.echo(click.style(
                f"{indent}~ {change.track.display_name} (from {change.from_index} to {change.to_index})",
                fg='yellow'
            ))
        elif change.kind.value == 'added':
            click.echo(click.style(f"{indent}+ [{change.index}] {change.track.display_name}", fg='green'))
        else:
            click.echo(click.style(f"{indent}- [{change.index}] {change.track.display_name}", fg='red'))


# Main CLI group - root command that all subcommands attach to
@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', type=click.Path(), help='Path to config file')
@click.pass_context
def cli(ctx, version, verbose, config):
    """
    plr - Git-like version control for your playlists

    Track a Spotify or YouTube Music playlist locally, stage and commit
    changes, push them to the remote and revert to any earlier state.
    """
    ctx.ensure_object(dict)

    if version:
        click.echo(f"plr v{__version__}")
        return

    if config:
        try:
            reload_settings(config)
        except PlrError as e:
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            sys.exit(1)
        reset_synchronizer()

    configure_from_settings()

    if verbose:
        ctx.obj['verbose'] = True
        logger.info("Verbose mode enabled")

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument('url_or_id')
@click.option('--provider', type=click.Choice(PROVIDER_CHOICES), help='Provider of the playlist')
@handle_error
def init(url_or_id, provider):
    """Start tracking a playlist"""
    result = get_synchronizer().init(url_or_id, provider)
    click.echo(click.style(f"Tracking '{result.message}' ({result.collection_id})", fg='green'))
    click.echo(f"   {result.added} tracks, snapshot {result.content_hash}")


@cli.command()
@click.argument('track')
@playlist_option
@click.option('--index', '-i', type=int, help='Position to insert at (default: end)')
@handle_error
def add(track, playlist, index):
    """
    Stage adding a track

    TRACK is a track URL or id on the playlist's provider.
    """
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    resolved = synchronizer.resolve_track(collection_id, track)
    result = synchronizer.stage_add(collection_id, resolved, index)
    click.echo(f"Staged: + {resolved.display_name} ({result.message})")


@cli.command()
@click.argument('track_id')
@playlist_option
@handle_error
def remove(track_id, playlist):
    """Stage removing a track"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    result = synchronizer.stage_remove(collection_id, track_id)
    click.echo(f"Staged: - {track_id} ({result.message})")


@cli.command()
@click.argument('track_id')
@click.argument('to', type=int)
@playlist_option
@handle_error
def move(track_id, to, playlist):
    """Stage moving a track to position TO"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    result = synchronizer.stage_move(collection_id, track_id, to)
    click.echo(f"Staged: ~ {track_id} -> {to} ({result.message})")


@cli.command()
@playlist_option
@click.option('--remote', is_flag=True, help='Also compare with the remote playlist')
@handle_error
def status(playlist, remote):
    """Show staged changes and, optionally, the remote difference"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    collection = synchronizer.status(collection_id, remote=remote)

    if collection.state is CollectionState.UNTRACKED:
        click.echo(f"Playlist {collection_id} is not tracked, run 'plr init' first")
        return

    snapshot = collection.snapshot
    click.echo(f"{snapshot.name} ({snapshot.provider.value}:{collection_id})")
    click.echo(f"   Snapshot: {collection.content_hash}")
    click.echo(f"   Tracks: {len(snapshot)} ({format_duration(snapshot.total_duration_ms / 1000)})")

    click.echo("\n[Staged Changes]")
    if collection.state is CollectionState.CLEAN:
        click.echo("  No staged changes")
    else:
        echo_patch(collection.staged)
        click.echo(f"\n  Summary: {collection.staged.summary}")
        click.echo("\nUse 'plr commit -m \"message\"' to commit these changes")
        click.echo("Use 'plr reset' to discard staged changes")

    if collection.remote_patch is not None:
        click.echo("\n[Local vs Remote]")
        if collection.remote_patch.is_empty:
            click.echo("  Local and remote are in sync")
        else:
            click.echo(f"  Remote differs: {collection.remote_patch.summary}")
            click.echo("  Use 'plr push' to publish local state or 'plr pull' to take the remote")


@cli.command()
@playlist_option
@click.option('--remote', is_flag=True, help='Show what a pull would change instead of staged changes')
@handle_error
def diff(playlist, remote):
    """Show staged changes, or the difference to the remote"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    patch = synchronizer.diff_remote(collection_id) if remote else synchronizer.diff_staged(collection_id)

    if patch.is_empty:
        click.echo("No differences" if remote else "No staged changes")
        return
    echo_patch(patch, indent="")
    click.echo(f"\n{patch.summary}")


@cli.command()
@click.option('--message', '-m', required=True, help='Commit message')
@playlist_option
@handle_error
def commit(message, playlist):
    """Commit staged changes as a new snapshot"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    result = synchronizer.commit(collection_id, message)
    click.echo(click.style(f"[{result.content_hash}] {message}", fg='green'))
    click.echo(f"   +{result.added} -{result.removed} ~{result.moved}")


@cli.command()
@playlist_option
@handle_error
def reset(playlist):
    """Discard staged changes"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    result = synchronizer.reset(collection_id)
    if result.changed:
        click.echo(f"Discarded staged changes (+{result.added} -{result.removed} ~{result.moved})")
    else:
        click.echo(result.message)


@cli.command()
@playlist_option
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@handle_error
def push(playlist, yes):
    """Publish the current snapshot to the remote playlist"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)

    if not yes:
        patch = synchronizer.diff_remote(collection_id)
        if patch.is_empty:
            click.echo("Already up to date")
            return
        click.echo(f"The remote playlist differs from local state ({patch.summary} on remote).")
        if not click.confirm("Overwrite the remote playlist with the local state?"):
            click.echo("Push cancelled")
            return

    result = synchronizer.push(collection_id)
    click.echo(click.style(result.summary, fg='green' if result.changed else None))


@cli.command()
@playlist_option
@handle_error
def pull(playlist):
    """Replace local state with the remote playlist"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    result = synchronizer.pull(collection_id)
    click.echo(click.style(result.summary, fg='green' if result.changed else None))


@cli.command()
@click.argument('content_hash', required=False)
@playlist_option
@handle_error
def revert(content_hash, playlist):
    """
    Revert to a previous snapshot

    Without HASH, reverts to the state before the last operation.
    """
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    result = synchronizer.revert(collection_id, content_hash)
    click.echo(click.style(f"{result.message} ({result.summary})", fg='green'))


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@playlist_option
@handle_error
def apply(file, playlist):
    """Make a snapshot file the current state"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist) if playlist else None
    result = synchronizer.apply_file(file, collection_id)
    click.echo(click.style(result.summary, fg='green'))


@cli.command()
@playlist_option
@click.option('--limit', '-n', type=int, help='Show only the N most recent entries')
@handle_error
def log(playlist, limit):
    """Show the operation history"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    entries = synchronizer.log(collection_id, limit)

    if not entries:
        click.echo("No history")
        return

    for entry in entries:
        line = (
            f"{click.style(entry.snapshot_hash, fg='yellow')} "
            f"{format_timestamp(entry.timestamp)} "
            f"{entry.operation.value:<6} {entry.counts_str}"
        )
        if entry.message:
            line += f"  {entry.message}"
        click.echo(line)


@cli.command(name='list')
@handle_error
def list_playlists():
    """List tracked playlists"""
    collections = get_synchronizer().tracked_collections()
    if not collections:
        click.echo("No playlists tracked")
        return

    click.echo(f"Tracking {len(collections)} playlist(s):\n")
    for collection in collections:
        snapshot = collection.snapshot
        click.echo(f" {snapshot.name}")
        click.echo(f"   {snapshot.provider.value}:{collection.collection_id}")
        click.echo(f"   {collection.summary}")
        click.echo()


@cli.command()
@click.argument('query')
@playlist_option
@handle_error
def find(query, playlist):
    """Find tracks in the playlist by title or artist"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    matches = synchronizer.find(collection_id, query)

    if not matches:
        click.echo(f"No tracks matching '{query}'")
        return
    for position, track in matches:
        click.echo(f"  [{position}] {truncate_string(track.display_name, 60)}  {track.duration_str}  {track.id}")


@cli.command()
@click.argument('query')
@click.option('--provider', type=click.Choice(PROVIDER_CHOICES), help='Provider to search')
@click.option('--limit', type=int, help='Maximum number of results')
@handle_error
def search(query, provider, limit):
    """Search a provider's catalog"""
    tracks = get_synchronizer().search(query, provider, limit)
    if not tracks:
        click.echo(f"No results for '{query}'")
        return
    for track in tracks:
        click.echo(f"  {truncate_string(track.display_name, 60)}  {track.duration_str}  {track.id}")


@cli.command()
@click.argument('track_id')
@playlist_option
@handle_error
def url(track_id, playlist):
    """Print the player URL of a track"""
    synchronizer = get_synchronizer()
    collection_id = synchronizer.resolve_collection(playlist)
    click.echo(synchronizer.playable_url(collection_id, track_id))


# Configuration commands group
@cli.group()
def config():
    """Configuration management"""
    pass


@config.command()
@handle_error
def show():
    """Show current configuration"""
    settings = get_settings()
    click.echo("Current Configuration:\n")
    if settings.loaded_from:
        click.echo(f"Loaded from: {settings.loaded_from}\n")
    for section, values in settings.to_dict().items():
        click.echo(f"{section.capitalize()}:")
        for key, value in values.items():
            click.echo(f"   {key}: {value}")
        click.echo()


if __name__ == '__main__':
    cli()
