"""JSON file storage for completed test runs.

Each ``parley run`` can persist its results and summary as one JSON
file under ``.parley/results/`` with a ``latest`` pointer file. Run ids
start with a UTC timestamp so they sort chronologically.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from parley.evaluation.aggregation import RunSummary
from parley.models.result import TestResult


def new_run_id(now: datetime | None = None) -> str:
    """Return a chronologically sortable run id."""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%dT%H%M%S}-{uuid.uuid4().hex[:8]}"


class RunRecord(BaseModel):
    """Everything persisted for one run."""

    model_config = {"extra": "forbid"}

    run_id: str = Field(default_factory=new_run_id)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    provider: str | None = None
    sources: list[str] = Field(default_factory=list)
    summary: RunSummary
    results: list[TestResult]


class ResultStore:
    """Persist and query RunRecord objects as JSON files.

    File layout:
        {results_dir}/
            {run-id}.json    # One run
            .latest          # Id of the most recent run

    Writes are atomic (write to .tmp, then rename) to prevent partial files.
    """

    def __init__(self, project_root: Path, results_dir: str = ".parley/results") -> None:
        self.results_dir = project_root / results_dir
        self.latest_path = self.results_dir / ".latest"

    def ensure_dirs(self) -> None:
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def save_run(self, record: RunRecord) -> Path:
        """Write ``record`` and point ``.latest`` at it.

        Returns:
            Path of the written run file.
        """
        self.ensure_dirs()
        run_file = self.results_dir / f"{record.run_id}.json"
        tmp_file = self.results_dir / f"{record.run_id}.json.tmp"
        tmp_file.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        tmp_file.rename(run_file)

        tmp_latest = self.results_dir / ".latest.tmp"
        tmp_latest.write_text(record.run_id, encoding="utf-8")
        tmp_latest.rename(self.latest_path)
        return run_file

    def load_run(self, run_id: str) -> RunRecord:
        """Load one run.

        Raises:
            FileNotFoundError: If no run with that id exists.
        """
        run_file = self.results_dir / f"{run_id}.json"
        return RunRecord.model_validate_json(run_file.read_text(encoding="utf-8"))

    def load_latest(self) -> RunRecord | None:
        if not self.latest_path.exists():
            return None
        run_id = self.latest_path.read_text(encoding="utf-8").strip()
        try:
            return self.load_run(run_id)
        except FileNotFoundError:
            return None

    def list_runs(self) -> list[str]:
        """Return all run ids, oldest first."""
        if not self.results_dir.exists():
            return []
        return sorted(f.stem for f in self.results_dir.glob("*.json"))


def write_results_json(path: Path, record: RunRecord) -> None:
    """Write a run to an explicit path (``parley run --output``), atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    data = record.model_dump(mode="json")
    tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp_path.rename(path)
