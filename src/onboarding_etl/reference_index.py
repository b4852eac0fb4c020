"""onboarding_etl.reference_index

Cross-reference indices over the athlete fact tables.

Two index kinds, both keyed by the ``athlete_id`` foreign key:
  - count index:   rows per athlete for each fact table
  - tag-set index: activation_type identifiers per athlete (activations only)

Blank keys are ignored.  Keys that do not match a known athlete profile id
are excluded and counted as unresolved; they never inflate a count.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from onboarding_etl.dataset_loader import FACT_TABLES, Row, Snapshot
from onboarding_etl.normalize import pick
from onboarding_etl.profile_fields import (
    ACTIVATION_TYPE_ALIASES,
    ATHLETE_FIELDS,
    FACT_FOREIGN_KEY,
    resolve_field,
)
from onboarding_etl.shared import RunCounters


@dataclass
class ReferenceIndex:
    """Per-athlete fact counts and activation tag sets for one snapshot."""

    counts: dict[str, dict[str, int]] = field(default_factory=dict)
    tag_sets: dict[str, frozenset[str]] = field(default_factory=dict)

    def count(self, table: str, athlete_key: str | None) -> int:
        if not athlete_key:
            return 0
        return self.counts.get(table, {}).get(athlete_key, 0)

    def has(self, table: str, athlete_key: str | None) -> bool:
        return self.count(table, athlete_key) > 0

    def tags(self, athlete_key: str | None) -> frozenset[str]:
        if not athlete_key:
            return frozenset()
        return self.tag_sets.get(athlete_key, frozenset())


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def fact_key(row: Row) -> str:
    return pick(row, FACT_FOREIGN_KEY)


def count_by_key(
    rows: Iterable[Row],
    known_keys: set[str] | None = None,
    table: str = "",
    counters: RunCounters | None = None,
) -> dict[str, int]:
    """Count rows per athlete foreign key.

    known_keys=None accepts any non-blank key.
    """
    out: dict[str, int] = defaultdict(int)
    for row in rows:
        key = fact_key(row)
        if not key:
            if counters is not None:
                counters.blank_foreign_keys += 1
            continue
        if known_keys is not None and key not in known_keys:
            if counters is not None:
                counters.bump(counters.unresolved_foreign_keys, table)
            continue
        out[key] += 1
        if counters is not None:
            counters.fact_rows_indexed += 1
    return dict(out)


def activation_type(row: Row) -> str:
    """First non-empty activation type alias for an activation row."""
    return pick(row, ACTIVATION_TYPE_ALIASES)


def build_tag_sets(
    rows: Iterable[Row],
    known_keys: set[str] | None = None,
) -> dict[str, frozenset[str]]:
    """Map athlete key → set of activation type identifiers."""
    out: dict[str, set[str]] = defaultdict(set)
    for row in rows:
        key = fact_key(row)
        if not key or (known_keys is not None and key not in known_keys):
            continue
        tag = activation_type(row)
        if not tag:
            continue
        out[key].add(tag)
    return {k: frozenset(v) for k, v in out.items()}


def known_athlete_keys(athlete_rows: Iterable[Row]) -> set[str]:
    keys = set()
    for row in athlete_rows:
        key = resolve_field(row, ATHLETE_FIELDS, "profile_id")
        if key:
            keys.add(key)
    return keys


def build_reference_index(
    snapshot: Snapshot,
    counters: RunCounters | None = None,
) -> ReferenceIndex:
    """Build both index kinds from the snapshot's fact tables."""
    known = known_athlete_keys(snapshot.athlete_profiles)
    fact_tables: Mapping[str, list[Row]] = snapshot.fact_tables()
    counts = {
        table: count_by_key(fact_tables[table], known, table, counters)
        for table in FACT_TABLES
    }
    return ReferenceIndex(
        counts=counts,
        tag_sets=build_tag_sets(snapshot.activations, known),
    )
