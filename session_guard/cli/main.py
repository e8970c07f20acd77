"""
CLI interface for Session Guard.

Provides command-line access to ceiling estimation, live session status
and the estimator accuracy report.
"""

import logging
import sys
import time
from datetime import datetime, timezone, tzinfo
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import typer
import yaml
from rich.console import Console
from rich.table import Table
from rich.text import Text

from session_guard.config.loader import DEFAULT_TIMEZONE, MonitorConfig, load_or_default
from session_guard.core.accuracy import (
    analyze_per_item_variance,
    build_accuracy_report,
    per_item_estimate,
)
from session_guard.core.burn_rate import BurnRateCalculator
from session_guard.core.estimator import CeilingEstimator, accuracy_warning
from session_guard.core.session import SessionAnalyzer, SessionSnapshot, SessionStatus
from session_guard.storage.models import UsageInterval
from session_guard.storage.repository import DataSourceUnavailable, get_repository

app = typer.Typer()
console = Console()
logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

PROGRESS_BAR_WIDTH = 50
TOKEN_COLOR_LOW = 60.0
TOKEN_COLOR_MEDIUM = 80.0

_STATUS_STYLES = {
    SessionStatus.OK: "green",
    SessionStatus.WARNING: "yellow",
    SessionStatus.LIMIT_EXCEEDED: "red",
}

PLAN_OPTION = typer.Option(None, "--plan", "-p", help="Plan tier: auto, pro, max5, max20")
FILE_OPTION = typer.Option(None, "--file", "-f", help="Read saved 'ccusage blocks --json' output")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to YAML configuration")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Session Guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print("Session Guard - Use --help to see available commands")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_config(config_path: Optional[str]) -> MonitorConfig:
    try:
        return load_or_default(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _fetch_intervals(file: Optional[str]) -> Tuple[List[UsageInterval], Optional[float]]:
    """Fetch intervals and today's cost; raises DataSourceUnavailable."""
    repository = get_repository(file)
    intervals = repository.get_intervals()
    daily_cost = repository.get_daily_cost(_now().astimezone().date())
    return intervals, daily_cost


def _resolve_zone(name: str) -> tzinfo:
    """Display timezone, falling back to UTC when tz data is unavailable."""
    for candidate in (name, DEFAULT_TIMEZONE):
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r", candidate)
    return timezone.utc


def _build_analyzer(config: MonitorConfig) -> SessionAnalyzer:
    return SessionAnalyzer(CeilingEstimator(config.tiers), BurnRateCalculator())


def _format_number(n: int) -> str:
    """Format an integer with thousands separators."""
    return f"{n:,}"


def _format_minutes(minutes: float) -> str:
    """Format minutes as 45m, 2h or 2h15m."""
    minutes = max(0.0, minutes)
    if minutes < 60:
        return f"{int(minutes)}m"
    hours = int(minutes // 60)
    mins = int(minutes) % 60
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h{mins}m"


def _token_style(percentage: float) -> str:
    if percentage < TOKEN_COLOR_LOW:
        return "green"
    if percentage < TOKEN_COLOR_MEDIUM:
        return "yellow"
    return "red"


def _progress_bar(percentage: float, style: str) -> Text:
    """Render a fixed-width bar filled to ``percentage``."""
    percentage = min(100.0, max(0.0, percentage))
    filled = int(PROGRESS_BAR_WIDTH * percentage / 100)
    bar = Text("[")
    bar.append("|" * filled, style=style)
    bar.append(" " * (PROGRESS_BAR_WIDTH - filled))
    bar.append("]")
    return bar


def _render_snapshot(
    snapshot: SessionSnapshot,
    config: MonitorConfig,
    plan: str,
    zone: tzinfo,
) -> None:
    """Print one status screen for the active session."""
    now = _now().astimezone(zone)
    header = f"Session Guard - {now:%H:%M:%S}"
    if snapshot.daily_cost is not None:
        header += f"  cost: ${snapshot.daily_cost:.2f}"
    header = Text(header + f"  burn rate: {snapshot.burn_rate:.2f} tokens/min  ")
    # Anything other than Opus is highlighted
    model_style = None if "opus" in snapshot.primary_model.lower() else "bright_red"
    header.append(f"model: {snapshot.primary_model}", style=model_style)
    console.print(header)
    console.print()

    token_line = Text("Tokens ")
    token_line.append_text(_progress_bar(snapshot.percent_used, _token_style(snapshot.percent_used)))
    token_line.append(f" {snapshot.percent_used:.1f}%")
    console.print(token_line)

    time_line = Text("Time   ")
    time_line.append_text(_progress_bar(snapshot.progress_percent, "blue"))
    time_line.append(f" {_format_minutes(snapshot.remaining_minutes)} left")
    console.print(time_line)
    console.print()

    status_line = Text(
        f"Tokens: {_format_number(snapshot.consumed_so_far)}/{_format_number(snapshot.ceiling)}  "
        f"Estimate: {snapshot.projected_depletion_time.astimezone(zone):%H:%M}  "
        f"Reset: {snapshot.session_end_time.astimezone(zone):%H:%M}  "
    )
    status_line.append(f"Status: {snapshot.status.value}", style=_STATUS_STYLES[snapshot.status])
    console.print(status_line)

    auto_switch = config.thresholds.auto_switch_tokens
    if plan == "pro" and snapshot.consumed_so_far > auto_switch and snapshot.ceiling > auto_switch:
        console.print(
            f"[bright_black]Note: Auto-switched to auto plan "
            f"({_format_number(snapshot.ceiling)} tokens)[/]"
        )

    warning = accuracy_warning(
        snapshot.consumed_so_far,
        snapshot.ceiling,
        config.thresholds.accuracy_warning_percent,
    )
    if warning:
        console.print(f"[yellow]{warning}[/]")


def _show_status_once(
    analyzer: SessionAnalyzer,
    config: MonitorConfig,
    plan: str,
    file: Optional[str],
    zone: tzinfo,
) -> bool:
    """Run one analysis pass and print it.

    Returns:
        True when a snapshot was shown, False for the transient states
    """
    try:
        intervals, daily_cost = _fetch_intervals(file)
    except DataSourceUnavailable as e:
        console.print(f"[red]Failed to get usage data:[/] {str(e)}")
        return False
    return _render_pass(analyzer, config, plan, intervals, daily_cost, zone)


def _render_pass(
    analyzer: SessionAnalyzer,
    config: MonitorConfig,
    plan: str,
    intervals: List[UsageInterval],
    daily_cost: Optional[float],
    zone: tzinfo,
) -> bool:
    snapshot = analyzer.snapshot(plan, intervals, _now(), daily_cost)
    if snapshot is None:
        console.print("[dim]No active session found[/]")
        return False

    _render_snapshot(snapshot, config, plan, zone)
    return True


@app.command()
def estimate(
    plan: Optional[str] = PLAN_OPTION,
    file: Optional[str] = FILE_OPTION,
    config_path: Optional[str] = CONFIG_OPTION,
):
    """Estimate the token ceiling for the current session."""
    config = _load_config(config_path)
    plan = (plan or config.validated_plan()).lower()

    try:
        intervals = get_repository(file).get_intervals()
    except DataSourceUnavailable as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    result = CeilingEstimator(config.tiers).estimate_detailed(plan, intervals)

    console.print("\n[bold]Token Ceiling Estimate[/bold]")
    console.print("-" * 40)
    console.print(f"Plan: {result.source_category}" + (" (auto-detected)" if plan == "auto" else ""))
    console.print(f"Ceiling: {_format_number(result.value)} tokens")
    console.print(f"Based on: {result.basis_session_count} completed sessions")
    console.print(f"Tokens per message: {_format_number(result.per_item_rate)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(
    plan: Optional[str] = PLAN_OPTION,
    file: Optional[str] = FILE_OPTION,
    config_path: Optional[str] = CONFIG_OPTION,
):
    """Show token usage, burn rate and status for the active session."""
    config = _load_config(config_path)
    plan = (plan or config.validated_plan()).lower()
    zone = _resolve_zone(config.timezone)

    try:
        intervals, daily_cost = _fetch_intervals(file)
    except DataSourceUnavailable as e:
        console.print(f"[red]Failed to get usage data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _render_pass(_build_analyzer(config), config, plan, intervals, daily_cost, zone)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def watch(
    plan: Optional[str] = PLAN_OPTION,
    file: Optional[str] = FILE_OPTION,
    config_path: Optional[str] = CONFIG_OPTION,
):
    """Refresh the session status until interrupted with Ctrl-C."""
    config = _load_config(config_path)
    plan = (plan or config.validated_plan()).lower()
    zone = _resolve_zone(config.timezone)
    analyzer = _build_analyzer(config)

    try:
        while True:
            console.clear()
            _show_status_once(analyzer, config, plan, file, zone)
            time.sleep(config.refresh_seconds)
    except KeyboardInterrupt:
        console.print("\nStopped.")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def analyze(
    file: Optional[str] = FILE_OPTION,
    config_path: Optional[str] = CONFIG_OPTION,
    method: str = typer.Option(
        "median",
        "--method",
        "-m",
        help="Per-message estimate: median, mode, avg, pNN or trimNN",
    ),
):
    """Report how well the estimator matches completed sessions."""
    config = _load_config(config_path)

    try:
        intervals = get_repository(file).get_intervals()
    except DataSourceUnavailable as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    estimator = CeilingEstimator(config.tiers)
    table = Table(title="Token Limit Estimation Accuracy")
    table.add_column("Plan")
    table.add_column("Sessions", justify="right")
    table.add_column("Actual P95", justify="right")
    table.add_column("Estimated", justify="right")
    table.add_column("Accuracy", justify="right")
    table.add_column("Tokens/Msg", justify="right")
    table.add_column("Std Dev", justify="right")

    for row in build_accuracy_report(intervals, estimator):
        table.add_row(
            row.category,
            str(row.sample_size),
            _format_number(row.actual_max),
            _format_number(row.estimated_ceiling),
            f"{row.accuracy_percent:.1f}%",
            str(row.average_per_item),
            f"{row.std_deviation:.0f}",
        )
    console.print(table)

    variance = analyze_per_item_variance(intervals)
    if variance is None:
        console.print("\n[dim]No data available for per-message analysis.[/]")
        sys.exit(EXIT_CODE_PASS)

    value, description = per_item_estimate(intervals, method)
    console.print("\n[bold]Token Per Message Variance[/bold] (per-session averages)")
    console.print(f"Minimum: {variance.minimum:.1f} tokens/msg")
    console.print(f"Maximum: {variance.maximum:.1f} tokens/msg")
    console.print(f"Average: {variance.average:.1f} tokens/msg")
    console.print(f"Variance range: {variance.spread:.1f}x")
    console.print(f"Estimate ({description}): {value} tokens/msg")
    if variance.high_variance:
        console.print("[yellow]High variance (>3x) in tokens per message; static estimates are less reliable.[/]")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
