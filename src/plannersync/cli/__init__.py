"""plannersync CLI - inspect and manage the local sync state.

Command groups are organized into separate modules:
- session.py: init, status
- config.py: config set, get, show
- cache.py: cache list, get, clear
- queue.py: queue list
- common.py: shared utilities

The CLI works on the local store only; no remote credentials are needed.
"""
from pathlib import Path

import click

from .. import __version__
from .common import (
    VERBOSITY_NORMAL,
    VERBOSITY_QUIET,
    VERBOSITY_VERBOSE,
    configure_logging,
    get_base_path,
)
from .session import session_group
from .config import config_group
from .cache import cache_group
from .queue import queue_group


@click.group()
@click.version_option(version=__version__, prog_name="plannersync")
@click.option('--data-dir', type=click.Path(), default=None, envvar='PLANNERSYNC_BASE_PATH',
              help='Base directory for plannersync data (default: ~/.plannersync)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output and debug logging')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """plannersync - offline-first sync for shared planner workspaces

    \b
    Key Commands:
        init              Create the data directory, config and local store
        status            Show local store health and sizes
        config            Configuration management
        cache             Inspect or clear the local cache
        queue             Inspect mutations waiting to sync

    \b
    Examples:
        plannersync init
        plannersync config set remote.url https://planner.example.com
        plannersync cache list
        plannersync queue list --all
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL
    configure_logging(ctx.obj['verbosity'])

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None


cli.add_command(session_group.commands['init'])
cli.add_command(session_group.commands['status'])
cli.add_command(config_group, name='config')
cli.add_command(cache_group, name='cache')
cli.add_command(queue_group, name='queue')


def main():
    """Entry point for the CLI."""
    cli()


__all__ = [
    'cli',
    'main',
    'get_base_path',
]
