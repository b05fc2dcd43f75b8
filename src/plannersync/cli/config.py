"""Configuration management commands for plannersync CLI."""
import click
import yaml

from ..config import SyncConfig
from ..errors import ConfigError
from .common import (
    VERBOSITY_NORMAL,
    context_config,
    echo_normal,
    echo_quiet,
    fail,
)


@click.group()
def config_group():
    """Configuration management commands."""
    pass


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    VALUE is parsed as YAML, so numbers and booleans keep their type.

    Examples:
        plannersync config set remote.url https://planner.example.com
        plannersync config set cache.collection_ttl 600
        plannersync config set approvals.reject_stale false
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = context_config(ctx)

    try:
        data = yaml.safe_load(config.config_path.read_text()) or {}
        parsed = yaml.safe_load(value)

        # Parse nested keys (e.g., 'cache.default_ttl')
        keys = key.split('.')
        current = data
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]
        current[keys[-1]] = parsed

        SyncConfig.from_dict(data, config.base_path)
    except (ConfigError, yaml.YAMLError) as e:
        fail(f"Failed to set config: {e}", verbosity)

    config.config_path.write_text(yaml.dump(data, default_flow_style=False))
    echo_normal(click.style(f"✓ Set {key} = {parsed}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get an effective configuration value (defaults included).

    Examples:
        plannersync config get cache.default_ttl
        plannersync config get changefeed.reconnect_delay
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    current = context_config(ctx).to_dict()

    for k in key.split('.'):
        if not isinstance(current, dict) or k not in current:
            echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
            ctx.exit(1)
        current = current[k]

    echo_quiet(current, verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display the effective configuration."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = context_config(ctx)

    data = config.to_dict()
    if data["remote"].get("api_key"):
        data["remote"]["api_key"] = "********"

    echo_normal(click.style("Current configuration:", fg="cyan", bold=True), verbosity)
    echo_normal(f"# {config.config_path}", verbosity)
    echo_quiet(yaml.dump(data, default_flow_style=False).rstrip(), verbosity)
