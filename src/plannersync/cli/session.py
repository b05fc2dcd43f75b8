"""Setup and status commands for plannersync CLI."""
import click

from ..config import CONFIG_TEMPLATE, load_config
from ..storage import MutationQueue, SCHEMA_VERSION
from .common import (
    VERBOSITY_NORMAL,
    context_config,
    echo_normal,
    echo_quiet,
    echo_verbose,
    fail,
    get_base_path,
    run,
    with_store,
)


@click.group()
def session_group():
    """Setup and status commands."""
    pass


@session_group.command("init")
@click.pass_context
def init(ctx) -> None:
    """Initialize the local plannersync data directory.

    Creates the following:
    - the data directory (default ~/.plannersync)
    - config.yaml with default settings
    - the local SQLite store holding the cache and the offline sync queue
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    base_path = get_base_path(ctx.obj.get('data_dir'))

    echo_normal(click.style("Initializing plannersync...", fg="cyan", bold=True), verbosity)

    base_path.mkdir(parents=True, exist_ok=True)
    echo_normal(f" ✓ Created directory: {base_path}", verbosity)

    config_path = base_path / "config.yaml"
    if not config_path.exists():
        config_path.write_text(CONFIG_TEMPLATE)
        echo_normal(f" ✓ Created config: {config_path}", verbosity)
    else:
        echo_normal(f" ⚠ Config exists: {config_path}", verbosity)

    config = load_config(base_path)

    async def open_store(store):
        return await store.open()

    if run(with_store(config, open_store)):
        echo_normal(f" ✓ Initialized local store: {config.db_path} (schema v{SCHEMA_VERSION})", verbosity)
    else:
        fail(f"could not open local store at {config.db_path}", verbosity)

    echo_normal(click.style("\nplannersync initialized.", fg="green", bold=True), verbosity)


@session_group.command("status")
@click.pass_context
def status(ctx) -> None:
    """Show local store health and sizes."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = context_config(ctx)

    async def collect(store):
        if not await store.open():
            return None
        return {
            "schema": await store.schema_version(),
            "sizes": await store.collection_sizes(),
            "pending": await MutationQueue(store).pending_count(),
        }

    info = run(with_store(config, collect))
    if info is None:
        fail(f"local store unavailable at {config.db_path}", verbosity)

    echo_normal(click.style("plannersync Status", fg="cyan", bold=True), verbosity)
    echo_normal("=" * 50, verbosity)
    echo_normal(f"Base Path:   {config.base_path}", verbosity)
    echo_normal(f"Local store: {config.db_path} (schema v{info['schema']})", verbosity)
    echo_normal(f"Remote:      {config.remote.url}", verbosity)
    echo_quiet(f"Cache entries:     {info['sizes'].get('cache', 0)}", verbosity)
    echo_quiet(f"Pending mutations: {info['pending']}", verbosity)
    echo_verbose(f"Queue entries (incl. synced): {info['sizes'].get('sync_queue', 0)}", verbosity)
