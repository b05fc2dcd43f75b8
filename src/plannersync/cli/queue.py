"""Offline sync queue commands for plannersync CLI."""
import json
from datetime import datetime

import click

from ..errors import StoreUnavailableError
from ..storage import MutationQueue
from .common import (
    VERBOSITY_NORMAL,
    context_config,
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    run,
    with_store,
)


@click.group()
def queue_group():
    """Offline sync queue commands."""
    pass


@queue_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include mutations that already synced')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def list_queue(ctx, show_all: bool, json_output: bool) -> None:
    """List mutations recorded while offline.

    Examples:
        plannersync queue list
        plannersync queue list --all --json-output
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = context_config(ctx)

    async def load(store):
        queue = MutationQueue(store)
        return await (queue.all() if show_all else queue.pending())

    try:
        mutations = run(with_store(config, load))
    except StoreUnavailableError as e:
        fail(str(e), verbosity)

    if json_output:
        click.echo(json.dumps([m.to_dict() for m in mutations], indent=2))
        return

    if not mutations:
        echo_normal(click.style("No pending mutations.", fg="green"), verbosity)
        return

    echo_normal(click.style(f"{len(mutations)} queued mutations", fg="cyan", bold=True), verbosity)
    for m in mutations:
        state = click.style("synced", fg="green") if m.synced else click.style("pending", fg="yellow")
        queued_at = datetime.fromtimestamp(m.enqueued_at).strftime("%Y-%m-%d %H:%M:%S")
        echo_quiet(
            f"  #{m.id:<5} {m.operation.value:7} {m.resource_kind:14} {m.resource_id}  {state}",
            verbosity,
        )
        echo_verbose(f"         queued {queued_at}, attempts {m.attempts}", verbosity)
        if m.last_error:
            echo_normal(click.style(f"         last error: {m.last_error}", fg="red"), verbosity)
