"""parley validate -- check scenario files without running them.

Reports every problem in every file at once, one
``file:line:col -- field: message`` line per problem.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from parley.cli.run_cmd import default_scenario_paths
from parley.loader import ScenarioLoadError, load_test_file, scenario_files


def validate(
    paths: Optional[list[Path]] = typer.Argument(
        None, help="Scenario files or directories to validate (default: the project's scenarios_dir)"
    ),
) -> None:
    """Validate scenario YAML files against the test schema.

    Exits with code 0 if all are valid, 1 if any has errors.
    """
    if not paths:
        try:
            paths = [p for p in default_scenario_paths() if p.is_dir()]
        except ValidationError as exc:
            typer.echo(f"Error: invalid parley.yaml: {exc}", err=True)
            raise typer.Exit(code=1)

    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(scenario_files(path))
        elif path.exists():
            files.append(path)
        else:
            typer.echo(f"Error: File not found: {path}", err=True)
            raise typer.Exit(code=1)

    if not files:
        typer.echo("No scenario files found.", err=True)
        raise typer.Exit(code=1)

    valid_count = 0
    for filepath in files:
        try:
            load_test_file(filepath)
        except ScenarioLoadError as exc:
            for issue in exc.issues:
                typer.echo(issue.format(str(filepath)), err=True)
            continue
        valid_count += 1
        typer.echo(f"  {filepath} ... valid")

    typer.echo(f"\n{valid_count}/{len(files)} scenarios valid")
    if valid_count != len(files):
        raise typer.Exit(code=1)
