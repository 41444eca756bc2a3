"""parley run -- execute scenario files against their providers.

Loads every scenario from the given files and directories, groups the
tests by provider (``--provider``, else the scenario's own ``provider``,
else TEST_PROVIDER or the project default), checks each provider's
configuration once, runs the batches, renders the results, persists the
run, and exits 0 when every test passed, 1 otherwise, 2 when the run
could not start.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Optional

import structlog
import typer
from pydantic import ValidationError
from rich.console import Console

from parley.cli.output import (
    configure_structlog,
    output_json,
    render_results_table,
    render_summary,
)
from parley.errors import ConfigurationError, QueueShutdownError
from parley.evaluation.aggregation import ResultAggregator
from parley.loader import ScenarioLoadError, load_test_dir, load_test_file
from parley.models.config import find_project_root, load_project_config
from parley.models.definition import TestDefinition
from parley.models.result import TestResult
from parley.providers.base import BaseProvider
from parley.providers.registry import determine_provider, get_provider
from parley.providers.vapi_provider import VapiEvalsProvider
from parley.storage.json_store import ResultStore, RunRecord, write_results_json

console = Console(stderr=True)
log = structlog.get_logger(__name__)

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


def run(
    paths: Optional[list[Path]] = typer.Argument(
        None, help="Scenario files or directories (default: the project's scenarios_dir)"
    ),
    provider: Optional[str] = typer.Option(
        None, "--provider", "-p", help="elevenlabs, vapi or viernes (default: TEST_PROVIDER)"
    ),
    format_json: bool = typer.Option(False, "--json", help="Output pure JSON to stdout"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Also write results JSON here"),
    log_format: str = typer.Option("console", "--log-format", help="Log format: 'console' or 'json'"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable debug logs"),
    no_save: bool = typer.Option(False, "--no-save", help="Do not persist the run under .parley/results"),
) -> None:
    """Run scenario tests against a provider and display results."""
    configure_structlog(log_format, verbose)
    exit_code = asyncio.run(
        _run_async(
            paths,
            provider_name=provider,
            format_json=format_json,
            output=output,
            save=not no_save,
        )
    )
    if exit_code != EXIT_PASSED:
        raise typer.Exit(code=exit_code)


def default_scenario_paths() -> list[Path]:
    """Return the project's scenarios directory, used when no paths are given.

    Raises:
        ValidationError: If parley.yaml is invalid.
    """
    project_root = find_project_root()
    return [project_root / load_project_config(project_root).scenarios_dir]


def load_tests(paths: list[Path]) -> list[TestDefinition]:
    """Load scenarios from files and directories, preserving argument order.

    Raises:
        ScenarioLoadError: If any scenario is invalid.
        FileNotFoundError: If a path does not exist.
    """
    tests: list[TestDefinition] = []
    for path in paths:
        if path.is_dir():
            tests.extend(load_test_dir(path))
        elif path.exists():
            tests.append(load_test_file(path))
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return tests


def assign_providers(
    tests: list[TestDefinition], provider_flag: str | None, default: str
) -> dict[str, list[TestDefinition]]:
    """Group tests by the provider that runs them, in first-seen order.

    ``--provider`` sends every test to one provider. Otherwise a test's own
    ``provider`` field wins over TEST_PROVIDER and the project default.
    """
    groups: dict[str, list[TestDefinition]] = {}
    for test in tests:
        name = determine_provider(provider_flag or test.provider, default=default)
        groups.setdefault(name, []).append(test)
    return groups


async def execute_tests(provider: BaseProvider, tests: list[TestDefinition]) -> list[TestResult]:
    """Run the batch; Vapi tests asking for several attempts run them in sequence."""
    multi_attempt = isinstance(provider, VapiEvalsProvider) and any(
        t.vapi is not None and t.vapi.attempts > 1 for t in tests
    )
    if not multi_attempt:
        return await provider.execute_batch(tests)

    results: list[TestResult] = []
    for test in tests:
        try:
            results.extend(await provider.execute_with_attempts(test))
        except ConfigurationError as exc:
            results.append(
                TestResult.failed(test, provider.name, exc.message, error_kind=exc.kind)
            )
    return results


async def execute_groups(
    providers: dict[str, BaseProvider], groups: dict[str, list[TestDefinition]]
) -> list[TestResult]:
    """Run every provider's batch concurrently; results follow group order."""
    batches = await asyncio.gather(
        *(execute_tests(providers[name], group) for name, group in groups.items())
    )
    return [result for batch in batches for result in batch]


def _install_signal_handlers(
    providers: list[BaseProvider], task: asyncio.Future
) -> list[signal.Signals]:
    """Shut every provider down and cancel the run on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    def on_signal(sig: signal.Signals) -> None:
        rejected = sum(p.shutdown(f"Received {sig.name} - queue shutdown") for p in providers)
        log.warning("run.interrupted", signal=sig.name, rejected=rejected)
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            continue
        installed.append(sig)
    return installed


async def _close_all(providers: dict[str, BaseProvider]) -> None:
    for provider in providers.values():
        await provider.aclose()


async def _run_async(
    paths: list[Path] | None,
    *,
    provider_name: str | None,
    format_json: bool,
    output: Path | None,
    save: bool,
) -> int:
    """Async implementation of the run command. Returns the exit code."""
    # 1. Load scenarios
    try:
        paths = paths or default_scenario_paths()
        tests = load_tests(paths)
    except ScenarioLoadError as exc:
        console.print("[bold red]Scenario validation errors:[/bold red]")
        for issue in exc.issues:
            console.print(f"  {issue.format(exc.path)}", markup=False, soft_wrap=True)
        return EXIT_CONFIG_ERROR
    except FileNotFoundError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        return EXIT_CONFIG_ERROR
    except ValidationError as exc:
        console.print(f"[bold red]Invalid parley.yaml:[/bold red] {exc}")
        return EXIT_CONFIG_ERROR
    if not tests:
        console.print("[bold red]Error:[/bold red] no scenario files found")
        return EXIT_CONFIG_ERROR

    # 2. Resolve providers
    project_root = find_project_root(paths[0])
    try:
        project_config = load_project_config(project_root)
    except ValidationError as exc:
        console.print(f"[bold red]Invalid parley.yaml:[/bold red] {exc}")
        return EXIT_CONFIG_ERROR

    groups = assign_providers(tests, provider_name, project_config.default_provider)
    providers: dict[str, BaseProvider] = {}
    for name in groups:
        try:
            providers[name] = get_provider(name)
        except (ValueError, ConfigurationError) as exc:
            console.print(f"[bold red]Provider error:[/bold red] {exc}")
            await _close_all(providers)
            return EXIT_CONFIG_ERROR

    # 3. Systemic misconfiguration is reported once per provider, before any test runs
    unconfigured = [name for name, provider in providers.items() if not provider.is_configured()]
    if unconfigured:
        for name in unconfigured:
            console.print(
                f"[bold red]Provider '{name}' is not configured.[/bold red] "
                "Check its API key and identifiers (see `parley providers`)."
            )
        await _close_all(providers)
        return EXIT_CONFIG_ERROR

    label = ", ".join(groups)
    log.info("run.started", provider=label, tests=len(tests))

    # 4. Execute with signal handling
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(execute_groups(providers, groups))
    installed = _install_signal_handlers(list(providers.values()), task)
    try:
        if not format_json and console.is_terminal:
            with console.status(f"Running {len(tests)} test(s) on {label}..."):
                results = await task
        else:
            results = await task
    except (asyncio.CancelledError, QueueShutdownError):
        console.print("[bold yellow]Run interrupted; no results saved.[/bold yellow]")
        return EXIT_FAILED
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await _close_all(providers)

    # 5. Aggregate and persist
    aggregator = ResultAggregator()
    aggregator.extend(results)
    summary = aggregator.summary()
    record = RunRecord(
        provider=label,
        sources=[str(p) for p in paths],
        summary=summary,
        results=results,
    )
    if save:
        store = ResultStore(project_root, project_config.results_dir)
        store.save_run(record)
    if output is not None:
        write_results_json(output, record)

    log.info(
        "run.finished",
        provider=label,
        passed=summary.passed,
        total=summary.total,
        run_id=record.run_id,
    )

    # 6. Render
    if format_json:
        output_json(record)
    else:
        output_console = Console()
        render_results_table(results, output_console)
        render_summary(summary, output_console)
        if save:
            output_console.print(f"[dim]Run saved: {record.run_id}[/dim]")

    return EXIT_PASSED if summary.all_passed else EXIT_FAILED
