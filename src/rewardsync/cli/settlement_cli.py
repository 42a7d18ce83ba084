# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Settlement inspection commands.

- queue list: Rewards waiting in the offline queue, in drain order
- ledger show: The terminal record of one reward key
- ledger failed: Rewards left in FAILED_TERMINAL for manual intervention
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from rich import box
from rich.console import Console
from rich.table import Table

from rewardsync.config import SettlementConfig
from rewardsync.ledger import RewardLedger
from rewardsync.models import DistributionRecord, RewardStatus, RewardType
from rewardsync.queue import OfflineQueue
from rewardsync.storage import AbstractStorageProvider, create_storage_provider

console = Console()

T = TypeVar("T")


def _format_datetime(dt: Optional[datetime]) -> str:
    """Format a datetime for display, handling None."""
    if dt is None:
        return "N/A"
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _status_style(status: RewardStatus) -> str:
    styles = {
        RewardStatus.DISTRIBUTED: "green",
        RewardStatus.QUEUED: "yellow",
        RewardStatus.PENDING: "white",
        RewardStatus.FAILED_TERMINAL: "bold red",
    }
    return styles.get(status, "white")


def _output_json(data: object) -> None:
    """Print data as JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str))


def _settings(ctx: click.Context) -> SettlementConfig:
    obj = ctx.find_root().obj or {}
    return obj.get("config") or SettlementConfig()


def _with_storage(config: SettlementConfig, action: Callable[[AbstractStorageProvider], Awaitable[T]]) -> T:
    async def run() -> T:
        storage = create_storage_provider(config.storage)
        await storage.connect()
        try:
            return await action(storage)
        finally:
            await storage.disconnect()

    return asyncio.run(run())


def _record_dict(record: DistributionRecord) -> dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True)


@click.group()
def queue():
    """Inspect the offline reward queue."""
    pass


@queue.command("list")
@click.option("--recipient", default=None, help="Only show rewards for this recipient.")
@click.option(
    "--format", "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def list_queue(ctx: click.Context, recipient: Optional[str], fmt: str):
    """List queued rewards in drain order."""
    config = _settings(ctx)

    async def fetch(storage: AbstractStorageProvider):
        return await OfflineQueue(storage, config.storage.key_prefix).list_events(recipient)

    events = _with_storage(config, fetch)

    if fmt == "json":
        _output_json([e.model_dump(mode="json", by_alias=True) for e in events])
        return

    table = Table(title="Offline Queue", box=box.ROUNDED)
    table.add_column("Event ID", style="cyan", no_wrap=True)
    table.add_column("Recipient")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Last Error")
    table.add_column("Last Attempt", style="dim")

    for event in events:
        table.add_row(
            event.id,
            event.recipient,
            event.reward_type.value,
            str(event.amount),
            str(event.retry_count),
            event.last_error or "-",
            _format_datetime(event.last_attempt_at),
        )

    console.print(table)
    console.print(f"\n  Queued rewards: {len(events)}\n")


@click.group()
def ledger():
    """Inspect terminal reward settlement records."""
    pass


@ledger.command("show")
@click.argument("source_id")
@click.option(
    "--type", "reward_type",
    type=click.Choice([t.value for t in RewardType]),
    default=RewardType.ACTIVITY_REWARD.value,
    help="Reward type of the key.",
)
@click.option(
    "--format", "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def show_record(ctx: click.Context, source_id: str, reward_type: str, fmt: str):
    """Show the ledger record for SOURCE_ID."""
    config = _settings(ctx)

    async def fetch(storage: AbstractStorageProvider):
        return await RewardLedger(storage, config.storage.key_prefix).record(
            source_id, RewardType(reward_type)
        )

    record = _with_storage(config, fetch)
    if record is None:
        click.echo(f"Error: No ledger record for {reward_type}/{source_id}.", err=True)
        raise SystemExit(1)

    if fmt == "json":
        _output_json(_record_dict(record))
        return

    style = _status_style(record.status)
    detail = Table(box=box.SIMPLE, show_header=False)
    detail.add_column("Field", style="bold cyan", no_wrap=True)
    detail.add_column("Value")
    detail.add_row("Source ID", record.source_id)
    detail.add_row("Type", record.reward_type.value)
    detail.add_row("Status", f"[{style}]{record.status.value}[/{style}]")
    detail.add_row("Recipient", record.recipient)
    detail.add_row("Amount", str(record.amount))
    detail.add_row("Settlement Hash", record.settlement_hash or "-")
    if record.error_kind:
        detail.add_row("Error", record.error_kind)
        detail.add_row("Message", record.user_message or "-")
        detail.add_row("Action", record.actionable or "-")
    detail.add_row("Committed At", _format_datetime(record.committed_at))
    console.print(detail)


@ledger.command("failed")
@click.option(
    "--format", "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def failed_records(ctx: click.Context, fmt: str):
    """List rewards that failed terminally."""
    config = _settings(ctx)

    async def fetch(storage: AbstractStorageProvider):
        return await RewardLedger(storage, config.storage.key_prefix).failed_records()

    records = _with_storage(config, fetch)

    if fmt == "json":
        _output_json([_record_dict(r) for r in records])
        return

    table = Table(title="Failed Rewards", box=box.ROUNDED)
    table.add_column("Source ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Recipient")
    table.add_column("Amount", justify="right")
    table.add_column("Error", style="red")
    table.add_column("Action")

    for record in records:
        table.add_row(
            record.source_id,
            record.reward_type.value,
            record.recipient,
            str(record.amount),
            record.error_kind or "-",
            record.actionable or "-",
        )

    console.print(table)
    console.print(f"\n  Failed rewards: {len(records)}\n")
