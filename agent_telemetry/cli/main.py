"""
CLI interface for agent telemetry.

Provides command-line access to reports and budget administration.
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from agent_telemetry.config.loader import TelemetryConfig, load_telemetry_config
from agent_telemetry.observability.logger import setup_logging
from agent_telemetry.service import AgentTelemetryService
from agent_telemetry.storage.models import BudgetStatus, CostBudget, TimeWindow, utc_now

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

_STATUS_STYLE = {
    BudgetStatus.OK: "green",
    BudgetStatus.WARNING: "yellow",
    BudgetStatus.EXCEEDED: "red",
}

SinceDays = typer.Option(
    None,
    "--since-days",
    "-s",
    min=1,
    help="Only include operations from the last N days",
)
Limit = typer.Option(10, "--limit", "-n", min=1, help="Number of rows to show")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None, "--db", help="Database file (overrides the config file)"
    ),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML telemetry configuration"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """Agent telemetry CLI."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    ctx.obj = {"db": db, "config": config}
    if ctx.invoked_subcommand is None:
        console.print("Agent Telemetry - Use --help to see available commands")


def _get_service(ctx: typer.Context) -> AgentTelemetryService:
    """Build the service from the global --db/--config options."""
    options = ctx.obj or {}
    settings = (
        load_telemetry_config(options["config"])
        if options.get("config")
        else TelemetryConfig()
    )
    return AgentTelemetryService(settings, db_path=options.get("db"))


def _window(since_days: Optional[int]) -> Optional[TimeWindow]:
    if since_days is None:
        return None
    return TimeWindow(
        start=utc_now() - timedelta(days=since_days),
        end=datetime.max.replace(tzinfo=timezone.utc),
    )


def _format_currency(amount: float) -> str:
    """Format USD amounts; sub-cent spend keeps four decimals."""
    if 0 < abs(amount) < 0.01:
        return f"${amount:,.4f}"
    return f"${amount:,.2f}"


def _local_time(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def init(ctx: typer.Context):
    """Initialize the telemetry database."""
    try:
        service = _get_service(ctx)
    except Exception as e:
        _fail(f"initializing database: {e}")
    console.print(f"[green]✓[/] Database initialized at {service.db_path}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def stats(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent to report on"),
    since_days: Optional[int] = SinceDays,
):
    """Show performance and cost statistics for one agent."""
    try:
        result = _get_service(ctx).stats_for_agent(agent_id, _window(since_days))
    except Exception as e:
        _fail(str(e))

    style = _STATUS_STYLE[result.budget_status]
    console.print(f"\n[bold]Agent:[/bold] {result.agent_id}")
    console.print("-" * 40)
    console.print(f"Operations: {result.total_operations:,}")
    console.print(f"Success rate: {result.success_rate * 100:.1f}%")
    console.print(f"Avg duration: {result.avg_duration_ms:,.0f} ms")
    console.print(f"Total cost: {_format_currency(result.total_cost_usd)}")
    console.print(f"Total tokens: {result.total_tokens_used:,}")
    console.print(f"Budget status: [{style}]{result.budget_status.value}[/]")
    sys.exit(EXIT_CODE_OK)


@app.command()
def top(
    ctx: typer.Context,
    limit: int = Limit,
    since_days: Optional[int] = SinceDays,
):
    """List the most expensive agents."""
    try:
        agents = _get_service(ctx).top_expensive_agents(limit, _window(since_days))
    except Exception as e:
        _fail(str(e))

    if not agents:
        console.print("\n[bold yellow]No operations recorded yet[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title="Top Expensive Agents")
    table.add_column("Agent")
    table.add_column("Total cost", justify="right")
    table.add_column("Operations", justify="right")
    for agent in agents:
        table.add_row(
            agent.agent_id,
            _format_currency(agent.total_cost_usd),
            f"{agent.operation_count:,}",
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def slowest(
    ctx: typer.Context,
    limit: int = Limit,
    since_days: Optional[int] = SinceDays,
):
    """List the slowest operations."""
    try:
        operations = _get_service(ctx).slowest_operations(limit, _window(since_days))
    except Exception as e:
        _fail(str(e))

    if not operations:
        console.print("\n[bold yellow]No operations recorded yet[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title="Slowest Operations")
    table.add_column("Agent")
    table.add_column("Operation")
    table.add_column("Duration", justify="right")
    table.add_column("Result")
    table.add_column("When")
    for op in operations:
        table.add_row(
            op.agent_id,
            op.operation,
            f"{op.duration_ms:,} ms",
            "ok" if op.success else f"[red]{op.error_type}[/]",
            _local_time(op.timestamp),
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def errors(ctx: typer.Context, since_days: Optional[int] = SinceDays):
    """Group failed operations by error type."""
    try:
        groups = _get_service(ctx).error_stats(_window(since_days))
    except Exception as e:
        _fail(str(e))

    if not groups:
        console.print("\n[green]No failed operations[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title="Errors")
    table.add_column("Error type")
    table.add_column("Count", justify="right")
    table.add_column("Agents")
    for group in groups:
        table.add_row(group.error_type, f"{group.count:,}", ", ".join(group.agent_ids))
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def summary(ctx: typer.Context, since_days: Optional[int] = SinceDays):
    """Show total spend across all agents."""
    try:
        result = _get_service(ctx).cost_summary(_window(since_days))
    except Exception as e:
        _fail(str(e))

    console.print("\n[bold]Cost Summary[/bold]")
    console.print("-" * 40)
    console.print(f"Total cost: {_format_currency(result.total_cost_usd)}")
    console.print(f"Operations: {result.total_operations:,}")
    console.print(f"Avg cost/operation: {_format_currency(result.avg_cost_per_operation)}")
    sys.exit(EXIT_CODE_OK)


def _print_budget(budget: CostBudget) -> None:
    console.print(f"\n[bold]Budget:[/bold] {budget.agent_id}")
    console.print("-" * 40)
    console.print(
        f"Today: {_format_currency(budget.today_spent_usd)} / "
        f"{_format_currency(budget.daily_budget_usd)}"
    )
    console.print(
        f"Month: {_format_currency(budget.month_spent_usd)} / "
        f"{_format_currency(budget.monthly_budget_usd)}"
    )
    console.print(f"Alert threshold: {budget.alert_threshold * 100:.0f}%")
    console.print(f"Daily period since: {_local_time(budget.last_daily_reset)}")
    console.print(f"Monthly period since: {_local_time(budget.last_monthly_reset)}")
    if budget.budget_exceeded:
        console.print("[bold red]Budget exceeded[/]")


@app.command()
def budget(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent whose budget to show"),
):
    """Show an agent's budget and current spend."""
    try:
        found = _get_service(ctx).get_budget(agent_id)
    except Exception as e:
        _fail(str(e))

    if found is None:
        _fail(f"no budget for agent '{agent_id}'")
    _print_budget(found)
    sys.exit(EXIT_CODE_OK)


@app.command()
def alerts(ctx: typer.Context):
    """List agents whose budget is exceeded."""
    try:
        exceeded = _get_service(ctx).list_budget_alerts()
    except Exception as e:
        _fail(str(e))

    if not exceeded:
        console.print("\n[green]No agents over budget[/]")
        sys.exit(EXIT_CODE_OK)

    table = Table(title="Budget Alerts")
    table.add_column("Agent")
    table.add_column("Today", justify="right")
    table.add_column("Daily budget", justify="right")
    table.add_column("Month", justify="right")
    table.add_column("Monthly budget", justify="right")
    for item in exceeded:
        table.add_row(
            item.agent_id,
            _format_currency(item.today_spent_usd),
            _format_currency(item.daily_budget_usd),
            _format_currency(item.month_spent_usd),
            _format_currency(item.monthly_budget_usd),
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def reset(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent whose budget to reset"),
):
    """Zero an agent's spend counters and clear its exceeded flag."""
    try:
        updated = _get_service(ctx).reset_budget(agent_id)
    except Exception as e:
        _fail(str(e))

    if updated is None:
        _fail(f"no budget for agent '{agent_id}'")
    console.print(f"[green]✓[/] Budget reset for {agent_id}")
    sys.exit(EXIT_CODE_OK)


if __name__ == "__main__":
    app()
