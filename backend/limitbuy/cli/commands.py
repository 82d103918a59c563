"""Click CLI commands for limitbuy.

Every command except `run` opens the local database, does one thing and
exits. A `run` process on the same database picks up order and settings
edits on its next tick. Offline commands only log warnings, to stderr.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from decimal import Decimal
from pathlib import Path
from typing import TypeVar

import click

from limitbuy.config import AppConfig
from limitbuy.driver.http.driver import HttpDriver
from limitbuy.errors import InvalidStateError, LimitBuyError
from limitbuy.monitor.supervisor import MonitorStatus
from limitbuy.orders.types import Order
from limitbuy.persistence.sqlite import open_sqlite_store
from limitbuy.runtime import Components, build_components, run_monitor
from limitbuy.utils.logging import setup_logging
from limitbuy.utils.time import utc_now

T = TypeVar("T")


def _call(fn: Callable[[Components], Awaitable[T]]) -> T:
    """Run fn against freshly loaded components, mapping core errors."""
    config = AppConfig()

    async def _inner() -> T:
        store, engine = await open_sqlite_store(config.db_path)
        try:
            # Offline commands never reach the venue; the driver stays closed
            components = await build_components(config, store, HttpDriver(config.driver))
            return await fn(components)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_inner())
    except LimitBuyError as e:
        raise click.ClickException(str(e)) from e


def _format_order(order: Order) -> str:
    line = (
        f"{order.id}  {order.status.value:8}  "
        f"target ${order.target_price:<10}  amount ${order.amount}"
    )
    if order.is_executed:
        line += f"  filled ${order.executed_price}"
        if order.filled_at is not None:
            line += f" at {order.filled_at:%Y-%m-%d %H:%M:%S}"
        if order.external_reference is not None:
            line += f"  venue #{order.external_reference.order_id}"
    return line


@click.group()
def cli() -> None:
    """limitbuy: budget-capped limit purchases on a web trading venue."""
    setup_logging(level="WARNING", log_format="console")


@cli.command()
@click.option("--target", "target_price", required=True, help="Buy at or below this price.")
@click.option("--amount", required=True, help="Amount to spend (minimum 25).")
def add(target_price: str, amount: str) -> None:
    """Add a pending limit order."""

    async def _add(c: Components) -> Order:
        return await c.supervisor.place_order(
            target_price, amount, restart_if_running=False
        )

    order = _call(_add)
    click.echo(f"Order {order.id} added: ${order.amount} at ${order.target_price}")


@cli.command()
@click.argument("order_id")
def remove(order_id: str) -> None:
    """Remove a pending order."""

    async def _remove(c: Components) -> bool:
        if order_id in c.controller.order_ids_in_flight:
            raise InvalidStateError(
                f"Order {order_id} is being purchased and cannot be removed"
            )
        return await c.supervisor.remove_order(order_id)

    if _call(_remove):
        click.echo(f"Order {order_id} removed.")
    else:
        click.echo(f"No pending order {order_id}.")
        sys.exit(1)


@cli.command()
@click.option(
    "--status",
    "status_filter",
    type=click.Choice(["all", "pending", "executed"]),
    default="all",
    help="Which orders to list (default: all).",
)
def orders(status_filter: str) -> None:
    """List orders."""

    async def _list(c: Components) -> list[Order]:
        if status_filter == "pending":
            return list(c.orders.pending_orders())
        if status_filter == "executed":
            return list(c.orders.executed_orders())
        return list(c.orders.all_orders())

    listed = _call(_list)
    if not listed:
        click.echo("No orders.")
        return
    for order in listed:
        click.echo(_format_order(order))


@cli.command()
@click.option("--max-budget", type=str, default=None, help="Total spending cap (0 disables).")
@click.option("--refresh-interval", type=int, default=None, help="Minutes between checks.")
def settings(max_budget: str | None, refresh_interval: int | None) -> None:
    """Show or change the budget and refresh interval."""

    async def _settings(c: Components) -> tuple[Decimal, int]:
        current = c.orders.settings
        if max_budget is not None or refresh_interval is not None:
            current = await c.supervisor.update_settings(
                max_budget=max_budget if max_budget is not None else current.max_budget,
                refresh_interval_minutes=(
                    refresh_interval
                    if refresh_interval is not None
                    else current.refresh_interval_minutes
                ),
            )
        return current.max_budget, current.refresh_interval_minutes

    budget, interval = _call(_settings)
    click.echo(f"Max Budget:        {'$' + str(budget) if budget > 0 else 'Not Set'}")
    click.echo(f"Refresh Interval:  {interval}m")


@cli.command()
def status() -> None:
    """Show monitoring status and spending."""

    async def _status(c: Components) -> MonitorStatus:
        return await c.supervisor.status()

    st = _call(_status)
    click.echo(f"Running:        {st.is_running}")
    price = st.current_price
    if price is not None:
        click.echo(f"Last Price:     ${price.price} ({price.sampled_at:%Y-%m-%d %H:%M:%S})")
    else:
        click.echo("Last Price:     unknown")
    budget = st.settings.max_budget
    click.echo(f"Max Budget:     {'$' + str(budget) if budget > 0 else 'Not Set'}")
    click.echo(f"Total Spent:    ${st.total_spent}")
    click.echo(f"Remaining:      ${st.remaining_budget}")
    click.echo(f"Pending:        {st.pending_count}")
    click.echo(f"Executed:       {st.executed_count}")


@cli.command()
@click.option("--clear", is_flag=True, help="Delete all activity log entries.")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the log to a file instead of the terminal.",
)
def logs(clear: bool, output: Path | None) -> None:
    """Show, save or clear the activity log."""

    async def _logs(c: Components) -> str:
        if clear:
            await c.activity.clear()
        return c.activity.export_text()

    text = _call(_logs)
    if output is not None:
        output.write_text(text + "\n", encoding="utf-8")
        click.echo(f"Saved activity log to {output}")
    elif text:
        click.echo(text)
    else:
        click.echo("Activity log is empty.")


@cli.command()
def run() -> None:
    """Start monitoring and keep running until interrupted."""
    config = AppConfig()
    setup_logging(level=config.log_level, log_format=config.log_format)
    click.echo(f"Monitoring {config.driver.base_url} (started {utc_now():%H:%M:%S} UTC)")

    try:
        started = asyncio.run(run_monitor(config))
    except LimitBuyError as e:
        raise click.ClickException(str(e)) from e

    if not started:
        click.echo("Monitoring not started: set a max budget and add orders first.")
        sys.exit(1)
    click.echo("Monitor stopped.")


@cli.command()
def config() -> None:
    """Show current configuration."""
    cfg = AppConfig()

    click.echo("=== limitbuy Configuration ===\n")

    click.echo(f"Log Level:    {cfg.log_level}")
    click.echo(f"Log Format:   {cfg.log_format}")
    click.echo(f"DB Path:      {cfg.db_path}")
    click.echo("")

    click.echo("[Driver]")
    click.echo(f"  Base URL:         {cfg.driver.base_url}")
    click.echo(f"  Request Timeout:  {cfg.driver.request_timeout_seconds}s")
    click.echo("")

    click.echo("[Execution]")
    click.echo(f"  Settle Delay:     {cfg.execution.settle_delay_seconds}s")
    click.echo(f"  Stage Timeout:    {cfg.execution.stage_timeout_seconds}s")
    click.echo("")

    click.echo("[Monitor]")
    click.echo(f"  Default Interval: {cfg.monitor.default_refresh_interval_minutes}m")
    click.echo(f"  Activity Log Max: {cfg.monitor.activity_log_max_entries}")
