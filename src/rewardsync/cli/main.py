# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
RewardSync CLI

Commands:
- queue list: Show rewards waiting in the offline queue
- ledger show / ledger failed: Inspect terminal settlement records
- classify: Classify an error message with the settlement error policy
- config show: Print the effective settlement configuration
"""

import json
import logging
from typing import Optional

import click
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from rewardsync import __version__
from rewardsync.classifier import classify as classify_error
from rewardsync.classifier import notification_level
from rewardsync.cli.settlement_cli import ledger, queue
from rewardsync.config import SettlementConfig

console = Console()


def load_config(path: Optional[str]) -> SettlementConfig:
    """Load configuration from *path*, or the defaults when no path is given."""
    if path is None:
        return SettlementConfig()
    return SettlementConfig.from_yaml(path)


@click.group()
@click.version_option(version=__version__, prog_name="rewardsync")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a settlement configuration YAML file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def app(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """RewardSync - offline-tolerant token reward settlement.

    Inspect the offline queue and the reward ledger, and check how
    settlement errors are classified.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config_path)


@app.command()
@click.argument("message")
@click.option("--retry-count", type=int, default=0, show_default=True, help="Attempts already made.")
@click.option(
    "--format", "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
def classify(message: str, retry_count: int, fmt: str):
    """Classify an error MESSAGE the way the dispatcher would."""
    error = classify_error(message, retry_count=retry_count)
    data = {
        "kind": error.kind.value,
        "retryable": error.retryable,
        "suggested_delay": error.suggested_delay,
        "severity": error.severity.value,
        "notification": notification_level(error),
        "user_message": error.user_message,
        "actionable": error.actionable,
    }
    if fmt == "json":
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="bold cyan", no_wrap=True)
    table.add_column("Value")
    retry_label = "[green]yes[/green]" if error.retryable else "[red]no[/red]"
    table.add_row("Kind", error.kind.value)
    table.add_row("Retryable", retry_label)
    table.add_row("Suggested delay", f"{error.suggested_delay:.0f}s")
    table.add_row("Severity", error.severity.value)
    table.add_row("Message", error.user_message)
    table.add_row("Action", error.actionable or "-")
    console.print(table)


@app.group()
def config():
    """Inspect settlement configuration."""
    pass


@config.command("show")
@click.option(
    "--format", "fmt",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format.",
)
@click.pass_context
def show_config(ctx: click.Context, fmt: str):
    """Print the effective configuration."""
    data = ctx.obj["config"].model_dump(mode="json")
    if fmt == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))


app.add_command(queue)
app.add_command(ledger)


def main():
    """Console script entry point."""
    app(obj={})


if __name__ == "__main__":
    main()
