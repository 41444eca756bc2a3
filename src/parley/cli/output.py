"""Rich terminal output and log configuration for the CLI.

Human output goes to stdout as rich tables; progress and logs go to
stderr so ``--json`` output stays machine-readable.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
import typer
from rich import box
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from parley.evaluation.aggregation import RunSummary
    from parley.models.result import TestResult
    from parley.storage.json_store import RunRecord


_OUTCOME_STYLES: dict[str, str] = {
    "success": "green",
    "failure": "red",
    "unknown": "yellow",
}


def configure_structlog(log_format: str, verbose: bool = False) -> None:
    """Configure structlog for the requested format, writing to stderr.

    Raises:
        typer.Exit: With code 2 for an unknown format.
    """
    if log_format == "console":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    elif log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        typer.echo(f"Invalid log format: {log_format!r}. Must be 'console' or 'json'.", err=True)
        raise typer.Exit(code=2)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def _criteria_cell(result: TestResult) -> str:
    if not result.evaluation_results:
        return "-"
    parts = []
    for cid, evaluation in result.evaluation_results.items():
        style = _OUTCOME_STYLES.get(evaluation.result.value, "white")
        parts.append(f"[{style}]{cid}[/{style}]")
    return " ".join(parts)


def render_results_table(results: list[TestResult], console: Console) -> None:
    """Render one row per test: status, provider, criteria and timing."""
    table = Table(box=box.SIMPLE_HEAD, show_lines=False)
    table.add_column("Test", style="bold", overflow="fold")
    table.add_column("Status")
    table.add_column("Provider")
    table.add_column("Criteria")
    table.add_column("Time", justify="right")
    table.add_column("Cost", justify="right")

    for result in results:
        if result.success:
            status = "[bold green]✓ PASS[/bold green]"
        elif result.error is not None:
            status = f"[bold bright_red]! ERROR[/bold bright_red] [dim]{result.error_kind}[/dim]"
        else:
            status = "[bold red]✗ FAIL[/bold red]"
        cost = f"${result.provider_cost:.4f}" if result.provider_cost is not None else "-"
        table.add_row(
            result.test_name,
            status,
            result.provider,
            _criteria_cell(result),
            f"{result.execution_time_ms / 1000:.1f}s",
            cost,
        )

    console.print()
    console.print(table)


def render_summary(summary: RunSummary, console: Console) -> None:
    """Render the run headline plus the most frequently unmet criteria."""
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")

    style = "bold green" if summary.all_passed else "bold red"
    table.add_row(
        "Tests",
        f"[{style}]{summary.passed}/{summary.total} passed[/{style}] ({summary.pass_rate:.0%})",
    )
    if summary.errored:
        kinds = ", ".join(f"{kind}={count}" for kind, count in sorted(summary.error_kinds.items()))
        table.add_row("Errors", f"{summary.errored} ({kinds})")
    if summary.unknown_criteria:
        table.add_row("Unknown criteria", str(summary.unknown_criteria))
    if summary.latency_p50_ms is not None and summary.latency_p95_ms is not None:
        table.add_row(
            "Time",
            f"p50={summary.latency_p50_ms / 1000:.1f}s p95={summary.latency_p95_ms / 1000:.1f}s",
        )
    if summary.cost_total is not None:
        table.add_row("Cost", f"total=${summary.cost_total:.4f}")

    console.print(table)

    if summary.criterion_failures:
        console.print("[bold]Top unmet criteria[/bold]")
        for i, failure in enumerate(summary.criterion_failures[:5], 1):
            console.print(
                f"  {i}. {failure.criteria_id} -- failed {failure.fail_count}/"
                f"{failure.occurrences} ({failure.fail_rate:.0%}), unknown {failure.unknown_count}"
            )
            for rationale in failure.sample_rationales[:1]:
                truncated = rationale[:200] + "..." if len(rationale) > 200 else rationale
                console.print(f"     [dim]{truncated}[/dim]")
        console.print()


def render_providers(infos: list[dict[str, Any]], console: Console) -> None:
    """Render the provider list with configuration status."""
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Provider", style="bold")
    table.add_column("Version")
    table.add_column("Configured")
    table.add_column("Capabilities", overflow="fold")
    for info in infos:
        configured = "[green]yes[/green]" if info["configured"] else "[red]no[/red]"
        table.add_row(info["name"], info["version"], configured, ", ".join(info["capabilities"]))
    console.print(table)


def output_json(record: RunRecord) -> None:
    """Write the run record as pure JSON to stdout."""
    sys.stdout.write(record.model_dump_json(indent=2))
    sys.stdout.write("\n")
