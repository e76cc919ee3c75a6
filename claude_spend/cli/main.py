"""
CLI interface for claude-spend.

Provides command-line access to the usage analysis.
"""

import dataclasses
import json
import logging
import sys
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from claude_spend.config.loader import load_config
from claude_spend.core.analysis import DashboardData
from claude_spend.core.billing import PLAN_NAMES, parse_billing_context
from claude_spend.core.insights import InsightSeverity
from claude_spend.core.pricing import fmt_cost, fmt_tokens
from claude_spend.core.service import SessionNotFoundError, UsageService
from claude_spend.storage.repository import LocalSessionRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_NOT_FOUND = 2

_SEVERITY_STYLE = {
    InsightSeverity.WARNING: "yellow",
    InsightSeverity.INFO: "cyan",
    InsightSeverity.NEUTRAL: "white",
}

DataDirOption = typer.Option(None, "--data-dir", "-d", help="Session data directory (default: ~/.claude)")
BillingOption = typer.Option(None, "--billing", "-b", help="Override billing context: api, pro, max_5x, max_20x")
ConfigOption = typer.Option(None, "--config", "-c", help="Path to a YAML config file")
JsonOption = typer.Option(False, "--json", help="Print machine-readable JSON")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """claude-spend: see where your tokens go."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print("claude-spend - Use --help to see available commands")


def _build_service(data_dir: Optional[str], billing: Optional[str], config_path: Optional[str]) -> UsageService:
    """Create a service from CLI options, exiting on invalid settings."""
    try:
        if billing is not None:
            parse_billing_context(billing)
        config = load_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    repository = LocalSessionRepository(data_dir or config.data_dir)
    return UsageService(repository=repository, config=config, billing_override=billing)


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def _print_json(value: Any) -> None:
    payload = dataclasses.asdict(value) if dataclasses.is_dataclass(value) else value
    print(json.dumps(payload, default=_json_default, indent=2))


def _billing_note(data: DashboardData) -> str:
    plan = PLAN_NAMES[data.billing_context]
    if data.is_equivalent_cost:
        return f"[dim]{plan} plan: figures are equivalent API cost, not your bill[/]"
    return f"[dim]{plan} billing[/]"


@app.command()
def summary(
    data_dir: Optional[str] = DataDirOption,
    billing: Optional[str] = BillingOption,
    config_path: Optional[str] = ConfigOption,
    as_json: bool = JsonOption,
):
    """Show totals, projects, models and insights."""
    data = _build_service(data_dir, billing, config_path).get_dashboard()

    if as_json:
        _print_json(data)
        sys.exit(EXIT_CODE_PASS)

    if not data.sessions:
        console.print("\n[bold yellow]No session data found[/]\n")
        sys.exit(EXIT_CODE_PASS)

    _display_totals(data)
    _display_projects(data)
    _display_models(data)
    _display_insights(data)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def session(
    session_id: str = typer.Argument(..., help="Session id (the log file name without .jsonl)"),
    data_dir: Optional[str] = DataDirOption,
    billing: Optional[str] = BillingOption,
    config_path: Optional[str] = ConfigOption,
    as_json: bool = JsonOption,
):
    """Show one session with its per-message cost curve."""
    service = _build_service(data_dir, billing, config_path)
    try:
        lookup = service.get_session(session_id)
    except SessionNotFoundError as e:
        console.print(f"[red]{str(e)}[/]")
        sys.exit(EXIT_CODE_NOT_FOUND)

    if as_json:
        _print_json(lookup)
        sys.exit(EXIT_CODE_PASS)

    s = lookup.session
    console.print(f"\n[bold]Session {s.session_id}[/bold] ({s.project}, {s.date or 'unknown date'})")
    console.print(f"First prompt: {s.first_prompt}")
    console.print(
        f"Model: {s.model}  Messages: {s.query_count}  Tokens: {fmt_tokens(s.total_tokens)}  "
        f"Cost: {fmt_cost(s.cost_usd)}  Subagents: {fmt_cost(s.subagent_cost)}  "
        f"Cache hit: {s.cache_efficiency * 100:.0f}%"
    )

    table = Table(title="Messages")
    table.add_column("#", justify="right")
    table.add_column("Prompt")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Cumulative", justify="right")
    for index, q in enumerate(s.queries):
        table.add_row(
            str(index),
            (q.user_prompt or "[dim](continuation)[/]")[:60],
            q.model,
            fmt_tokens(q.total_tokens),
            fmt_cost(q.cost_usd),
            fmt_cost(q.cumulative_cost),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def prompts(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of prompts to show"),
    data_dir: Optional[str] = DataDirOption,
    billing: Optional[str] = BillingOption,
    config_path: Optional[str] = ConfigOption,
    as_json: bool = JsonOption,
):
    """Show the most expensive prompts."""
    data = _build_service(data_dir, billing, config_path).get_dashboard()
    top = data.top_prompts[:limit]

    if as_json:
        _print_json([dataclasses.asdict(p) for p in top])
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Most expensive prompts")
    table.add_column("Prompt")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Steps", justify="right")
    table.add_column("Session")
    for p in top:
        table.add_row(
            p.prompt[:80],
            fmt_tokens(p.total_tokens),
            fmt_cost(p.cost_usd),
            str(p.continuations + 1),
            p.session_id[:8],
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def insights(
    data_dir: Optional[str] = DataDirOption,
    billing: Optional[str] = BillingOption,
    config_path: Optional[str] = ConfigOption,
    as_json: bool = JsonOption,
):
    """Show detected usage patterns and suggestions."""
    data = _build_service(data_dir, billing, config_path).get_dashboard()

    if as_json:
        _print_json([dataclasses.asdict(i) for i in data.insights])
        sys.exit(EXIT_CODE_PASS)

    _display_insights(data)
    sys.exit(EXIT_CODE_PASS)


def _display_totals(data: DashboardData) -> None:
    totals = data.totals
    console.print("\n[bold]Usage Summary[/bold]")
    console.print("-" * 40)
    console.print(_billing_note(data))
    if totals.date_range:
        console.print(f"Period: {totals.date_range.start} to {totals.date_range.end}")
    console.print(f"Sessions: {totals.total_sessions}  Messages: {totals.total_queries}")
    if totals.subagent_queries:
        console.print(
            f"Subagent messages: {totals.subagent_queries}  "
            f"Subagent tokens: {fmt_tokens(totals.billed_tokens - totals.total_tokens)}"
        )
    console.print(f"Tokens: {fmt_tokens(totals.total_tokens)}  Cost: {fmt_cost(totals.total_cost_usd)}")
    console.print(f"Cache savings: {fmt_cost(totals.total_cache_savings)}")
    console.print(
        f"Avg per session: {fmt_cost(totals.avg_cost_per_session)}  "
        f"Avg per message: {fmt_cost(totals.avg_cost_per_query)}"
    )


def _display_projects(data: DashboardData) -> None:
    table = Table(title="Projects")
    table.add_column("Project")
    table.add_column("Sessions", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for p in data.project_breakdown:
        table.add_row(p.project, str(p.session_count), fmt_tokens(p.total_tokens), fmt_cost(p.cost_usd))
    console.print(table)


def _display_models(data: DashboardData) -> None:
    table = Table(title="Models")
    table.add_column("Model")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for m in data.model_breakdown:
        table.add_row(m.model, str(m.query_count), fmt_tokens(m.total_tokens), fmt_cost(m.cost_usd))
    console.print(table)


def _display_insights(data: DashboardData) -> None:
    if not data.insights:
        console.print("\n[dim]No insights for this period.[/]")
        return

    console.print("\n[bold]Insights[/bold]")
    for insight in data.insights:
        style = _SEVERITY_STYLE[insight.severity]
        console.print(f"\n[bold {style}]{insight.title}[/]")
        console.print(insight.description)
        if insight.action:
            console.print(f"[green]Try:[/] {insight.action}")


if __name__ == "__main__":
    app()
