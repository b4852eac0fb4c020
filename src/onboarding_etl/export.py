"""onboarding_etl.export

Boundary helpers for consumers of the onboarding table.

  split_missing_fields     → (must, nice) lists with the prefix stripped
  normalize_missing_fields → accepts a list, a JSON string or None
  presence_row             → one Filled/Missing column per known field
  write_presence_export    → CSV of presence rows
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterable

from onboarding_etl.completion import CompletionStatus, MissingField, missing_field_order
from onboarding_etl.reconcile import OnboardingRecord

FILLED = "Filled"
MISSING = "Missing"

_KNOWN_LABELS = frozenset(m.value for m in MissingField)

_BASE_COLUMNS = ["account_id", "profile_kind", "completion_status", "completion_score"]


def normalize_missing_fields(value: Any) -> list[str]:
    """Coerce a stored missing_fields value to a list of labels.

    Unparseable strings and unsupported types yield [].
    """
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return []
        try:
            parsed = json.loads(s)
        except json.JSONDecodeError:
            return []
        if isinstance(parsed, list):
            return [str(v) for v in parsed if v]
    return []


def split_missing_fields(value: Any) -> tuple[list[str], list[str]]:
    must: list[str] = []
    nice: list[str] = []
    for label in normalize_missing_fields(value):
        if label.startswith("must:"):
            must.append(label[len("must:"):])
        elif label.startswith("nice:"):
            nice.append(label[len("nice:"):])
    return must, nice


def presence_columns() -> list[str]:
    """Field columns across both rubrics, athlete order first, no repeats."""
    seen: dict[str, None] = {}
    for kind in ("athlete", "partner"):
        for label in missing_field_order(kind):
            seen.setdefault(label.field_name, None)
    return list(seen)


def presence_row(record: OnboardingRecord) -> dict[str, str]:
    """Flatten one record into Filled/Missing columns.

    Fields outside the record's rubric are left blank.  A stalled record
    has no computed missing set, so every applicable field is Missing.
    """
    row: dict[str, str] = {
        "account_id": record.account_id,
        "profile_kind": record.profile_kind,
        "completion_status": record.completion_status,
        "completion_score": str(record.completion_score),
    }
    applicable = {label.field_name for label in missing_field_order(record.profile_kind)}
    stalled = record.completion_status == CompletionStatus.STALLED.value
    missing = {
        MissingField(label).field_name
        for label in record.missing_fields
        if label in _KNOWN_LABELS
    }
    for column in presence_columns():
        if column not in applicable:
            row[column] = ""
        elif stalled or column in missing:
            row[column] = MISSING
        else:
            row[column] = FILLED
    return row


def write_presence_export(path: Path, records: Iterable[OnboardingRecord]) -> int:
    """Write the presence export CSV; returns the number of data rows."""
    path.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=_BASE_COLUMNS + presence_columns())
        writer.writeheader()
        for record in records:
            writer.writerow(presence_row(record))
            n += 1
    return n
