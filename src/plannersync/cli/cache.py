"""Local cache inspection commands for plannersync CLI."""
import json
import time

import click

from ..storage import CacheStore
from .common import (
    VERBOSITY_NORMAL,
    context_config,
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    format_age,
    run,
    with_store,
)


@click.group()
def cache_group():
    """Local cache commands."""
    pass


@cache_group.command('list')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def list_cache(ctx, json_output: bool) -> None:
    """List cached entries with their age and validity.

    Examples:
        plannersync cache list
        plannersync cache list --json-output
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = context_config(ctx)

    async def entries(store):
        return await CacheStore(store).entries()

    items = run(with_store(config, entries))
    now = time.time()

    if json_output:
        click.echo(json.dumps([
            {
                "key": e.key,
                "stored_at": e.stored_at,
                "ttl": e.ttl,
                "valid": e.is_valid(now),
            }
            for e in items
        ], indent=2))
        return

    if not items:
        echo_normal(click.style("Cache is empty.", fg="yellow"), verbosity)
        return

    echo_normal(click.style(f"{len(items)} cache entries", fg="cyan", bold=True), verbosity)
    for entry in items:
        valid = entry.is_valid(now)
        state = click.style("valid", fg="green") if valid else click.style("expired", fg="red")
        echo_quiet(
            f"  {entry.key:40} age {format_age(entry.age(now)):>6}  "
            f"ttl {format_age(entry.ttl):>6}  {state}",
            verbosity,
        )


@cache_group.command('get')
@click.argument('key')
@click.pass_context
def get_cache(ctx, key: str) -> None:
    """Print the cached value for KEY as JSON (expired entries included).

    Examples:
        plannersync cache get notes_ws1
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = context_config(ctx)

    async def lookup(store):
        return await CacheStore(store).get_entry(key)

    entry = run(with_store(config, lookup))
    if entry is None:
        fail(f"No cache entry for '{key}'", verbosity)

    now = time.time()
    if not entry.is_valid(now):
        echo_normal(click.style(f"⚠ Entry expired {format_age(entry.age(now) - entry.ttl)} ago", fg="yellow"), verbosity)
    echo_verbose(f"Stored {format_age(entry.age(now))} ago, ttl {format_age(entry.ttl)}", verbosity)
    echo_quiet(json.dumps(entry.data, indent=2), verbosity)


@cache_group.command('clear')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def clear_cache(ctx, yes: bool) -> None:
    """Delete every cached entry. The sync queue is not touched."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = context_config(ctx)

    if not yes:
        click.confirm("Clear the local cache?", abort=True)

    async def clear(store):
        return await CacheStore(store).clear()

    if not run(with_store(config, clear)):
        fail(f"local store unavailable at {config.db_path}", verbosity)
    echo_normal(click.style("✓ Cache cleared", fg="green"), verbosity)
