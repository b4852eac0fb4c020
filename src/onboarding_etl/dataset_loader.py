"""onboarding_etl.dataset_loader

Snapshot loader for the thirteen portal CSV extracts.

Processing:
  1. Pre-scan: every dataset file must exist before anything is parsed;
     an absent file raises MissingRequiredDatasetError.
  2. Parse: each file is parsed independently (optionally in a thread
     pool).  Headers are BOM-stripped and trimmed, values trimmed, and
     ``null`` tokens blanked.  A missing cell becomes ``""``.
  3. Header contract: each dataset must carry its key columns, otherwise
     DatasetSchemaError.
  4. Malformed rows (csv errors, more cells than headers, invalid UTF-8)
     are logged, written to the RejectWriter and skipped.  The run
     continues.

Rejects and counters are recorded on the calling thread, in dataset
order, so a run over the same files always yields the same report.
"""

from __future__ import annotations

import codecs
import csv
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from onboarding_etl.normalize import clean_cell
from onboarding_etl.shared import (
    DatasetSchemaError,
    MalformedRowError,
    MissingRequiredDatasetError,
    RejectWriter,
    RunCounters,
    normalize_header,
)

log = logging.getLogger(__name__)

Row = dict[str, str]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FACT_TABLES = (
    "achievements",
    "activations",
    "causes",
    "education",
    "media",
    "partnerships",
    "ranking",
    "results",
    "social_actions",
)

DATASET_NAMES = (
    "accounts",
    "account_roles",
    "athlete_profiles",
    "partner_profiles",
    *FACT_TABLES,
)

# Required key columns per dataset
REQUIRED_HEADERS: dict[str, set[str]] = {
    "accounts":         {"id"},
    "account_roles":    {"user_id", "role"},
    "athlete_profiles": {"id", "user_id"},
    "partner_profiles": {"user_id"},
    **{name: {"athlete_id"} for name in FACT_TABLES},
}


def dataset_file_name(name: str) -> str:
    return f"{name}.csv"


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass
class Snapshot:
    """All thirteen datasets of one run, fully loaded in memory."""

    accounts: list[Row] = field(default_factory=list)
    account_roles: list[Row] = field(default_factory=list)
    athlete_profiles: list[Row] = field(default_factory=list)
    partner_profiles: list[Row] = field(default_factory=list)
    achievements: list[Row] = field(default_factory=list)
    activations: list[Row] = field(default_factory=list)
    causes: list[Row] = field(default_factory=list)
    education: list[Row] = field(default_factory=list)
    media: list[Row] = field(default_factory=list)
    partnerships: list[Row] = field(default_factory=list)
    ranking: list[Row] = field(default_factory=list)
    results: list[Row] = field(default_factory=list)
    social_actions: list[Row] = field(default_factory=list)

    def fact_tables(self) -> dict[str, list[Row]]:
        return {name: getattr(self, name) for name in FACT_TABLES}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

@dataclass
class ParsedDataset:
    name: str
    headers: list[str]
    rows: list[Row] = field(default_factory=list)
    rejects: list[tuple[Row, str]] = field(default_factory=list)
    rows_read: int = 0


def _undecodable(value: str) -> bool:
    return any("\udc80" <= ch <= "\udcff" for ch in value)


def _printable(value: str) -> str:
    return value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def _row_from_fields(headers: list[str], values: list[str], line: int) -> Row:
    if any(_undecodable(v) for v in values):
        raise MalformedRowError("invalid utf-8")
    if len(values) > len(headers):
        raise MalformedRowError(
            f"line {line}: {len(values)} cells for {len(headers)} headers"
        )
    row = {h: "" for h in headers}
    for h, v in zip(headers, values):
        row[h] = clean_cell(v)
    return row


def parse_dataset_text(text: str, name: str = "dataset") -> ParsedDataset:
    """Parse CSV text with a header row into trimmed row records.

    Never raises for bad rows; they come back in ``rejects`` with the
    reason ``malformed_row: <detail>``.
    """
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    headers: list[str] = []
    parsed = ParsedDataset(name=name, headers=headers)

    while True:
        try:
            values = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            line = reader.line_num
            if not headers:
                # No header: validate_headers reports the dataset as unusable.
                log.warning("%s: unreadable header row (%s)", name, exc)
                break
            parsed.rows_read += 1
            log.warning("%s: skipping malformed row at line %s: %s", name, line, exc)
            parsed.rejects.append(
                ({"_dataset": name, "_line": str(line)}, f"malformed_row: {exc}")
            )
            continue

        if not values or (len(values) == 1 and not values[0].strip()):
            continue

        if not headers:
            headers.extend(normalize_header(_printable(h)) for h in values)
            continue

        parsed.rows_read += 1
        line = reader.line_num
        try:
            parsed.rows.append(_row_from_fields(headers, values, line))
        except MalformedRowError as exc:
            log.warning("%s: skipping malformed row: %s", name, exc)
            raw = {f"col_{i}": _printable(v) for i, v in enumerate(values)}
            raw.update({"_dataset": name, "_line": str(line)})
            parsed.rejects.append((raw, f"malformed_row: {exc}"))

    return parsed


def validate_headers(parsed: ParsedDataset, path: Path | None = None) -> None:
    """Raise DatasetSchemaError if a dataset lacks its required key columns."""
    required = REQUIRED_HEADERS.get(parsed.name, set())
    missing = required - set(parsed.headers)
    if missing:
        raise DatasetSchemaError(
            parsed.name, path, f"missing required headers {sorted(missing)}"
        )


# ---------------------------------------------------------------------------
# Snapshot loading
# ---------------------------------------------------------------------------

def _parse_file(name: str, path: Path) -> ParsedDataset:
    # Undecodable bytes survive as surrogates and reject only their own row.
    data = path.read_bytes()
    if data.startswith(codecs.BOM_UTF8):
        data = data[len(codecs.BOM_UTF8):]
    text = data.decode("utf-8", errors="surrogateescape")
    return parse_dataset_text(text, name)


def dataset_paths(data_dir: Path) -> dict[str, Path]:
    return {name: data_dir / dataset_file_name(name) for name in DATASET_NAMES}


def load_snapshot(
    data_dir: Path,
    counters: RunCounters,
    rejects: RejectWriter,
    max_workers: int = 1,
) -> Snapshot:
    """Load all datasets under data_dir into a Snapshot.

    Raises:
        MissingRequiredDatasetError: a dataset file is absent.
        DatasetSchemaError: a dataset lacks its key columns.
    """
    paths = dataset_paths(data_dir)

    # Pre-scan: verify every file exists before parsing any of them
    for name, path in paths.items():
        if not path.is_file():
            raise MissingRequiredDatasetError(name, path)

    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {name: pool.submit(_parse_file, name, path) for name, path in paths.items()}
            parsed_by_name = {name: fut.result() for name, fut in futures.items()}
    else:
        parsed_by_name = {name: _parse_file(name, path) for name, path in paths.items()}

    loaded: dict[str, list[Row]] = {}
    for name in DATASET_NAMES:
        parsed = parsed_by_name[name]
        validate_headers(parsed, paths[name])
        counters.datasets_loaded += 1
        counters.rows_read += parsed.rows_read
        for row, reason in parsed.rejects:
            rejects.write(row, reason)
            counters.rows_rejected += 1
        if parsed.rejects:
            counters.warnings.append(
                f"{name}: {len(parsed.rejects)} malformed row(s) skipped"
            )
        log.info("%s: %d rows loaded, %d rejected", name, len(parsed.rows), len(parsed.rejects))
        loaded[name] = parsed.rows

    return Snapshot(**loaded)
