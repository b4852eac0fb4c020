"""onboarding_etl.shared

Shared utilities used across the reconciliation pipeline.
Includes the error hierarchy, RejectWriter, RunCounters, header
normalization, and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from onboarding_etl.normalize import strip_bom


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MalformedRowError(ValueError):
    """Raised by the CSV parser for a single row that cannot be read."""


class MissingRequiredDatasetError(Exception):
    """Raised when one of the thirteen snapshot datasets is absent."""

    def __init__(self, dataset: str, path: Path | str | None = None, detail: str | None = None) -> None:
        self.dataset = dataset
        self.path = path
        msg = f"missing required dataset: {dataset}"
        if path is not None:
            msg += f" ({path})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class DatasetSchemaError(MissingRequiredDatasetError):
    """Raised when a dataset file exists but lacks its required key columns."""


class PersistenceConflictError(Exception):
    """Raised when the writer's upsert fails; the run's transaction is rolled back."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows.

    With path=None rejects are dropped; callers still count them.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._path is None:
            return
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(
                self._fh,
                fieldnames=["_dataset", "_line", "_reject_reason", "_raw"],
                extrasaction="ignore",
            )
            self._writer.writeheader()
        out = {
            "_dataset": row.get("_dataset", ""),
            "_line": row.get("_line", ""),
            "_reject_reason": reason,
            "_raw": json.dumps(
                {k: v for k, v in row.items() if not k.startswith("_")},
                ensure_ascii=False,
                sort_keys=True,
            ),
        }
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    # Loader
    datasets_loaded: int = 0
    rows_read: int = 0
    rows_rejected: int = 0
    # Index builder
    fact_rows_indexed: int = 0
    blank_foreign_keys: int = 0
    unresolved_foreign_keys: dict[str, int] = field(default_factory=dict)
    # Identity resolver
    accounts_seen: int = 0
    accounts_excluded_admin: int = 0
    unknown_roles: int = 0
    orphan_roles: int = 0
    duplicate_profile_links: int = 0
    # Scoring
    onboarding_records: int = 0
    commercial_records: int = 0
    status_counts: dict[str, int] = field(default_factory=dict)
    tier_counts: dict[str, int] = field(default_factory=dict)
    # Writer
    portal_users_upserted: int = 0
    onboarding_upserted: int = 0
    commercial_upserted: int = 0
    warnings: list[str] = field(default_factory=list)

    def bump(self, bucket: dict[str, int], key: str) -> None:
        bucket[key] = bucket.get(key, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["unresolved_foreign_keys"] = dict(sorted(self.unresolved_foreign_keys.items()))
        d["status_counts"] = dict(sorted(self.status_counts.items()))
        d["tier_counts"] = dict(sorted(self.tier_counts.items()))
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Header normalization
# ---------------------------------------------------------------------------

def normalize_header(raw: str | None) -> str:
    """Strip a leading BOM and surrounding whitespace from one header."""
    return strip_bom(raw or "").strip()


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": "reconcile_snapshot",
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
