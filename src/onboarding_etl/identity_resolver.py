"""onboarding_etl.identity_resolver

Links each account to its role and role-specific profile row, and decides
which scoring track applies.

States:
    NO_PROFILE     -- stalled record, score 0, no missing-field computation
    ATHLETE_TRACK  -- athlete rubric + commercial score
    PARTNER_TRACK  -- partner rubric
    EXCLUDED       -- no onboarding record at all

Transitions (first matching predicate wins):

    role         linked profile           state           profile_kind
    ----------   ----------------------   -------------   ------------
    admin        any                      EXCLUDED        -
    none         any                      NO_PROFILE      account
    athlete      no athlete profile       NO_PROFILE      athlete
    athlete      athlete profile          ATHLETE_TRACK   athlete
    partner      no partner profile       NO_PROFILE      partner
    partner      partner profile          PARTNER_TRACK   partner

Roles come from the account_roles table (last row per account wins).
``company`` is accepted as the partner role; ``account`` and blank mean no
role; anything else is treated as no role and counted in unknown_roles.
Role rows naming an account that is not in the accounts table are
rejected as ``orphan_role``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

from onboarding_etl.dataset_loader import Row, Snapshot
from onboarding_etl.profile_fields import (
    ACCOUNT_FIELDS,
    ATHLETE_FIELDS,
    PARTNER_FIELDS,
    ROLE_FIELDS,
    resolve_field,
)
from onboarding_etl.shared import RejectWriter, RunCounters

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROLE_ATHLETE = "athlete"
ROLE_PARTNER = "partner"
ROLE_ADMIN = "admin"
ROLE_NONE = "none"

_ROLE_ALIASES: dict[str, str] = {
    "athlete": ROLE_ATHLETE,
    "partner": ROLE_PARTNER,
    "company": ROLE_PARTNER,
    "admin":   ROLE_ADMIN,
    "account": ROLE_NONE,
    "none":    ROLE_NONE,
    "":        ROLE_NONE,
}

PROFILE_KIND_ACCOUNT = "account"
PROFILE_KIND_ATHLETE = "athlete"
PROFILE_KIND_PARTNER = "partner"


class TrackState(str, Enum):
    NO_PROFILE = "no_profile"
    ATHLETE_TRACK = "athlete_track"
    PARTNER_TRACK = "partner_track"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class Resolution:
    account_id: str
    role: str
    state: TrackState
    profile_kind: str | None
    profile: Row | None = None

    @property
    def athlete_profile_id(self) -> str:
        if self.state is not TrackState.ATHLETE_TRACK:
            return ""
        return resolve_field(self.profile, ATHLETE_FIELDS, "profile_id")


# ---------------------------------------------------------------------------
# Role + profile indices
# ---------------------------------------------------------------------------

def normalize_role(raw: str | None, counters: RunCounters | None = None) -> str:
    v = (raw or "").strip().lower()
    role = _ROLE_ALIASES.get(v)
    if role is None:
        if counters is not None:
            counters.unknown_roles += 1
        log.warning("unknown role %r treated as no role", raw)
        return ROLE_NONE
    return role


def build_role_index(
    role_rows: Iterable[Row],
    counters: RunCounters | None = None,
) -> dict[str, str]:
    """Map account_id → normalized role; later rows override earlier ones."""
    roles: dict[str, str] = {}
    for row in role_rows:
        account_id = resolve_field(row, ROLE_FIELDS, "account_id")
        raw_role = resolve_field(row, ROLE_FIELDS, "role")
        if not account_id or not raw_role:
            continue
        roles[account_id] = normalize_role(raw_role, counters)
    return roles


def index_profiles_by_account(
    rows: Iterable[Row],
    table: Mapping[str, tuple[str, ...]],
    label: str,
    counters: RunCounters | None = None,
) -> dict[str, Row]:
    """Map account_id → profile row.  Duplicate links: the last row wins."""
    out: dict[str, Row] = {}
    for row in rows:
        account_id = resolve_field(row, table, "account_id")
        if not account_id:
            continue
        if account_id in out:
            log.warning("%s: duplicate profile rows for account %s; keeping the last", label, account_id)
            if counters is not None:
                counters.duplicate_profile_links += 1
                counters.warnings.append(f"{label}: duplicate profile for account {account_id}")
        out[account_id] = row
    return out


def reject_orphan_roles(
    role_rows: Iterable[Row],
    account_ids: set[str],
    counters: RunCounters,
    rejects: RejectWriter | None = None,
) -> int:
    """Reject role rows whose account id matches no account.  Returns the count."""
    n = 0
    for idx, row in enumerate(role_rows):
        account_id = resolve_field(row, ROLE_FIELDS, "account_id")
        if not account_id or account_id in account_ids:
            continue
        log.warning("account_roles: role for unknown account %s", account_id)
        if rejects is not None:
            rejects.write({**row, "_dataset": "account_roles", "_line": str(idx + 2)}, "orphan_role")
        n += 1
    counters.orphan_roles += n
    counters.rows_rejected += n
    return n


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

def resolve_account(
    account_id: str,
    role: str,
    athlete_profile: Row | None,
    partner_profile: Row | None,
) -> Resolution:
    """Apply the transition table in the module docstring to one account."""
    if role == ROLE_ADMIN:
        return Resolution(account_id, role, TrackState.EXCLUDED, None)
    if role == ROLE_ATHLETE:
        if athlete_profile is None:
            return Resolution(account_id, role, TrackState.NO_PROFILE, PROFILE_KIND_ATHLETE)
        return Resolution(account_id, role, TrackState.ATHLETE_TRACK, PROFILE_KIND_ATHLETE, athlete_profile)
    if role == ROLE_PARTNER:
        if partner_profile is None:
            return Resolution(account_id, role, TrackState.NO_PROFILE, PROFILE_KIND_PARTNER)
        return Resolution(account_id, role, TrackState.PARTNER_TRACK, PROFILE_KIND_PARTNER, partner_profile)
    return Resolution(account_id, ROLE_NONE, TrackState.NO_PROFILE, PROFILE_KIND_ACCOUNT)


def resolve_identities(
    snapshot: Snapshot,
    counters: RunCounters,
    rejects: RejectWriter | None = None,
) -> list[Resolution]:
    """Resolve every account in the snapshot, in input order."""
    roles = build_role_index(snapshot.account_roles, counters)
    athletes = index_profiles_by_account(snapshot.athlete_profiles, ATHLETE_FIELDS, "athlete_profiles", counters)
    partners = index_profiles_by_account(snapshot.partner_profiles, PARTNER_FIELDS, "partner_profiles", counters)

    resolutions: list[Resolution] = []
    seen: set[str] = set()
    for idx, row in enumerate(snapshot.accounts):
        account_id = resolve_field(row, ACCOUNT_FIELDS, "account_id")
        if not account_id:
            if rejects is not None:
                rejects.write({**row, "_dataset": "accounts", "_line": str(idx + 2)}, "blank_account_id")
            counters.rows_rejected += 1
            continue
        if account_id in seen:
            counters.warnings.append(f"accounts: duplicate account {account_id} ignored")
            continue
        seen.add(account_id)
        counters.accounts_seen += 1

        resolution = resolve_account(
            account_id,
            roles.get(account_id, ROLE_NONE),
            athletes.get(account_id),
            partners.get(account_id),
        )
        if resolution.state is TrackState.EXCLUDED:
            counters.accounts_excluded_admin += 1
        resolutions.append(resolution)

    reject_orphan_roles(snapshot.account_roles, seen, counters, rejects)
    return resolutions
