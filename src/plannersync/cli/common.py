"""Shared utilities for plannersync CLI commands."""
import asyncio
import logging
import sys
from typing import Any, Awaitable, Optional

import click

from ..config import SyncConfig, get_base_path, load_config
from ..errors import ConfigError
from ..storage import LocalStore

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2


def should_print(verbosity: int, message_level: int) -> bool:
    """Determine if a message should be printed based on verbosity settings."""
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message)


def echo_quiet(message: Any, verbosity: int) -> None:
    """Print a message that is shown even in quiet mode."""
    click.echo(message)


def fail(message: str, verbosity: int) -> None:
    """Print an error and exit with status 1."""
    echo_quiet(click.style(f"Error: {message}", fg="red"), verbosity)
    sys.exit(1)


def configure_logging(verbosity: int) -> None:
    if verbosity >= VERBOSITY_VERBOSE:
        level = logging.DEBUG
    elif verbosity <= VERBOSITY_QUIET:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def context_config(ctx: click.Context, require_init: bool = True) -> SyncConfig:
    """Load the config for the --data-dir of this invocation.

    Exits with an error if plannersync is not initialized there or the
    config file is invalid.
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path = get_base_path(ctx.obj.get('data_dir'))
    if require_init and not (base_path / "config.yaml").exists():
        fail("plannersync not initialized. Run 'plannersync init' first.", verbosity)
    try:
        return load_config(base_path)
    except ConfigError as e:
        fail(str(e), verbosity)


def run(coro: Awaitable[Any]) -> Any:
    """Run a coroutine to completion from a synchronous click command."""
    return asyncio.run(coro)


async def with_store(config: SyncConfig, operation):
    """Open the local store, await operation(store), and close the store."""
    store = LocalStore(config.db_path)
    try:
        return await operation(store)
    finally:
        await store.close()


def format_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.0f}m"
    if seconds < 86400:
        return f"{seconds / 3600:.1f}h"
    return f"{seconds / 86400:.1f}d"


__all__ = [
    'VERBOSITY_QUIET',
    'VERBOSITY_NORMAL',
    'VERBOSITY_VERBOSE',
    'echo_verbose',
    'echo_normal',
    'echo_quiet',
    'fail',
    'configure_logging',
    'context_config',
    'run',
    'with_store',
    'format_age',
    'get_base_path',
]
