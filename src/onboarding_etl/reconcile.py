"""onboarding_etl.reconcile

One pure reconciliation pass over a loaded Snapshot.

    Snapshot
      → build_reference_index      (count + tag-set indices)
      → resolve_identities         (track per account)
      → completion rubric          (per track)
      → commercial score           (AthleteTrack with a profile id only)
      → ReconciliationResult

No I/O happens here; the writer persists the result.  Every output list is
sorted by its conflict key so two passes over the same snapshot produce
identical results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from onboarding_etl.activation_tags import ActivationTagConfig
from onboarding_etl.commercial import score_commercial
from onboarding_etl.completion import (
    CompletionResult,
    partner_entity_kind,
    score_athlete_completion,
    score_partner_completion,
    stalled_result,
)
from onboarding_etl.dataset_loader import Snapshot
from onboarding_etl.identity_resolver import (
    Resolution,
    TrackState,
    resolve_identities,
)
from onboarding_etl.profile_fields import ACCOUNT_FIELDS, resolve_field
from onboarding_etl.reference_index import ReferenceIndex, build_reference_index
from onboarding_etl.shared import RejectWriter, RunCounters

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Output records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PortalUser:
    account_id: str
    email: str | None
    full_name: str | None
    created_at_portal: str | None
    updated_at_portal: str | None


@dataclass(frozen=True)
class OnboardingRecord:
    account_id: str
    profile_kind: str
    entity_kind: str | None
    completion_status: str
    completion_score: int
    missing_fields: tuple[str, ...] = ()

    @property
    def key(self) -> tuple[str, str]:
        return (self.account_id, self.profile_kind)


@dataclass(frozen=True)
class CommercialScoreRecord:
    athlete_profile_id: str
    account_id: str
    p1_performance: int
    p2_narrative: int
    p3_maturity: int
    p4_activation: int
    p5_fit: int
    total_score: int
    tier: str
    # reserved for manual adjustments; never set by the pipeline
    notes: str | None = None
    updated_by: str | None = None


@dataclass
class ReconciliationResult:
    portal_users: list[PortalUser] = field(default_factory=list)
    onboarding_records: list[OnboardingRecord] = field(default_factory=list)
    commercial_records: list[CommercialScoreRecord] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _or_none(value: str) -> str | None:
    return value or None


def build_portal_users(snapshot: Snapshot) -> list[PortalUser]:
    """Sidecar copy of the accounts table; first row per account id wins."""
    users: dict[str, PortalUser] = {}
    for row in snapshot.accounts:
        account_id = resolve_field(row, ACCOUNT_FIELDS, "account_id")
        if not account_id or account_id in users:
            continue
        users[account_id] = PortalUser(
            account_id=account_id,
            email=_or_none(resolve_field(row, ACCOUNT_FIELDS, "email")),
            full_name=_or_none(resolve_field(row, ACCOUNT_FIELDS, "full_name")),
            created_at_portal=_or_none(resolve_field(row, ACCOUNT_FIELDS, "created_at")),
            updated_at_portal=_or_none(resolve_field(row, ACCOUNT_FIELDS, "updated_at")),
        )
    return [users[k] for k in sorted(users)]


def _onboarding_record(
    resolution: Resolution,
    completion: CompletionResult,
    entity_kind: str | None = None,
) -> OnboardingRecord:
    return OnboardingRecord(
        account_id=resolution.account_id,
        profile_kind=resolution.profile_kind or "",
        entity_kind=entity_kind,
        completion_status=completion.status.value,
        completion_score=completion.score,
        missing_fields=tuple(completion.missing_labels),
    )


def reconcile_account(
    resolution: Resolution,
    index: ReferenceIndex,
    tag_config: ActivationTagConfig,
) -> tuple[OnboardingRecord | None, CommercialScoreRecord | None]:
    """Score one resolved account.  Excluded accounts yield (None, None)."""
    if resolution.state is TrackState.EXCLUDED:
        return None, None

    if resolution.state is TrackState.NO_PROFILE:
        return _onboarding_record(resolution, stalled_result()), None

    if resolution.state is TrackState.PARTNER_TRACK:
        completion = score_partner_completion(resolution.profile)
        entity_kind = partner_entity_kind(resolution.profile) or None
        return _onboarding_record(resolution, completion, entity_kind), None

    completion = score_athlete_completion(resolution.profile, index, tag_config)
    onboarding = _onboarding_record(resolution, completion)

    profile_id = resolution.athlete_profile_id
    if not profile_id:
        log.warning("account %s: athlete profile without id; no commercial score", resolution.account_id)
        return onboarding, None

    score = score_commercial(resolution.profile, completion.status, index, tag_config)
    commercial = CommercialScoreRecord(
        athlete_profile_id=profile_id,
        account_id=resolution.account_id,
        p1_performance=score.p1_performance,
        p2_narrative=score.p2_narrative,
        p3_maturity=score.p3_maturity,
        p4_activation=score.p4_activation,
        p5_fit=score.p5_fit,
        total_score=score.total_score,
        tier=score.tier.value,
    )
    return onboarding, commercial


def reconcile(
    snapshot: Snapshot,
    tag_config: ActivationTagConfig,
    counters: RunCounters | None = None,
    rejects: RejectWriter | None = None,
) -> ReconciliationResult:
    """Derive all output records for one snapshot."""
    if counters is None:
        counters = RunCounters()

    index = build_reference_index(snapshot, counters)
    resolutions = resolve_identities(snapshot, counters, rejects)

    onboarding: dict[tuple[str, str], OnboardingRecord] = {}
    commercial: dict[str, CommercialScoreRecord] = {}
    for resolution in resolutions:
        record, score = reconcile_account(resolution, index, tag_config)
        if record is not None:
            onboarding[record.key] = record
        if score is not None:
            if score.athlete_profile_id in commercial:
                counters.warnings.append(
                    f"athlete profile {score.athlete_profile_id} linked to more than one account"
                )
            commercial[score.athlete_profile_id] = score

    result = ReconciliationResult(
        portal_users=build_portal_users(snapshot),
        onboarding_records=[onboarding[k] for k in sorted(onboarding)],
        commercial_records=[commercial[k] for k in sorted(commercial)],
    )

    counters.onboarding_records = len(result.onboarding_records)
    counters.commercial_records = len(result.commercial_records)
    for record in result.onboarding_records:
        counters.bump(counters.status_counts, record.completion_status)
    for score in result.commercial_records:
        counters.bump(counters.tier_counts, score.tier)
    return result
