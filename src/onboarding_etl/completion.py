"""onboarding_etl.completion

Onboarding-completion rubrics.

Athlete rubric: three ordered check groups.
    must-base   8 profile-field presence checks
    must-cards  6 fact-table presence checks (count > 0)
    nice        7 checks (3 fact tables, talk/mentorship tag, 3 socials)

    status, first match wins:
        must 14/14 and nice 7/7  → complete
        must 14/14               → acceptable
        must/14 >= 0.8           → almost
        otherwise                → incomplete
    score = round(100 * (must + nice) / 21)

Partner rubric: 10 equally-weighted checks.
    score = round(100 * points / 10)
    status: complete (100) / almost (>= 80) / incomplete

Every failing check appends its MissingField label; labels keep generation
order (must-base, must-cards, nice) whatever the status.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from onboarding_etl.activation_tags import TALK_MENTORSHIP, ActivationTagConfig
from onboarding_etl.dataset_loader import Row
from onboarding_etl.normalize import is_filled
from onboarding_etl.profile_fields import (
    ATHLETE_FIELDS,
    PARTNER_FIELDS,
    field_present,
    list_field_present,
    resolve_field,
)
from onboarding_etl.reference_index import ReferenceIndex


class CompletionStatus(str, Enum):
    STALLED = "stalled"
    INCOMPLETE = "incomplete"
    ALMOST = "almost"
    ACCEPTABLE = "acceptable"
    COMPLETE = "complete"


class MissingField(str, Enum):
    """Closed set of checklist labels; the prefix marks must vs nice."""

    # athlete must-base
    PHOTO = "must:photo"
    BIO = "must:bio"
    MODALITY = "must:modality"
    LEVEL = "must:level"
    STATE = "must:state"
    CITY = "must:city"
    PHONE = "must:phone"
    INSTAGRAM = "must:instagram"
    # athlete must-cards
    ACHIEVEMENTS = "must:achievements"
    ACTIVATIONS = "must:activations"
    CAUSES = "must:causes"
    EDUCATION = "must:education"
    MEDIA = "must:media"
    RESULTS = "must:results"
    # athlete nice
    RANKING = "nice:ranking"
    PARTNERSHIPS = "nice:partnerships"
    SOCIAL_ACTIONS = "nice:social_actions"
    TALKS_MENTORSHIP = "nice:talks_mentorship"
    YOUTUBE = "nice:youtube"
    TIKTOK = "nice:tiktok"
    LINKEDIN = "nice:linkedin"
    # partner (city/state shared with the athlete labels above)
    LOGO = "must:logo"
    DESCRIPTION = "must:description"
    CONTACT = "must:contact"
    LINKS = "must:links"
    DISPLAY_NAME = "must:display_name"
    USERNAME = "must:username"
    IDENTITY = "must:identity"
    ENTITY_KIND = "must:entity_kind"

    @property
    def field_name(self) -> str:
        return self.value.split(":", 1)[1]


Check = tuple[bool, MissingField]


@dataclass
class GroupResult:
    points: int
    total: int
    missing: list[MissingField] = field(default_factory=list)


@dataclass
class CompletionResult:
    score: int
    status: CompletionStatus
    missing: list[MissingField] = field(default_factory=list)
    must_points: int = 0
    must_total: int = 0
    nice_points: int = 0
    nice_total: int = 0

    @property
    def missing_labels(self) -> list[str]:
        return [m.value for m in self.missing]


def stalled_result() -> CompletionResult:
    """Result for an account with no scorable profile row."""
    return CompletionResult(score=0, status=CompletionStatus.STALLED)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def evaluate(checks: list[Check]) -> GroupResult:
    """Count passing checks; collect labels of failing ones in order."""
    result = GroupResult(points=0, total=len(checks))
    for ok, label in checks:
        if ok:
            result.points += 1
        else:
            result.missing.append(label)
    return result


# ---------------------------------------------------------------------------
# Athlete rubric
# ---------------------------------------------------------------------------

_MUST_BASE_FIELDS: tuple[tuple[str, MissingField], ...] = (
    ("photo", MissingField.PHOTO),
    ("bio", MissingField.BIO),
    ("modality", MissingField.MODALITY),
    ("level", MissingField.LEVEL),
    ("state", MissingField.STATE),
    ("city", MissingField.CITY),
    ("phone", MissingField.PHONE),
    ("instagram", MissingField.INSTAGRAM),
)

_LIST_FIELDS = frozenset({"modality"})

_MUST_CARD_TABLES: tuple[tuple[str, MissingField], ...] = (
    ("achievements", MissingField.ACHIEVEMENTS),
    ("activations", MissingField.ACTIVATIONS),
    ("causes", MissingField.CAUSES),
    ("education", MissingField.EDUCATION),
    ("media", MissingField.MEDIA),
    ("results", MissingField.RESULTS),
)

_NICE_TABLES: tuple[tuple[str, MissingField], ...] = (
    ("ranking", MissingField.RANKING),
    ("partnerships", MissingField.PARTNERSHIPS),
    ("social_actions", MissingField.SOCIAL_ACTIONS),
)

_NICE_FIELDS: tuple[tuple[str, MissingField], ...] = (
    ("youtube", MissingField.YOUTUBE),
    ("tiktok", MissingField.TIKTOK),
    ("linkedin", MissingField.LINKEDIN),
)


def athlete_must_base(athlete: Row) -> GroupResult:
    checks: list[Check] = []
    for logical, label in _MUST_BASE_FIELDS:
        if logical in _LIST_FIELDS:
            ok = list_field_present(athlete, ATHLETE_FIELDS, logical)
        else:
            ok = field_present(athlete, ATHLETE_FIELDS, logical)
        checks.append((ok, label))
    return evaluate(checks)


def athlete_must_cards(athlete_key: str | None, index: ReferenceIndex) -> GroupResult:
    return evaluate([
        (bool(athlete_key) and index.has(table, athlete_key), label)
        for table, label in _MUST_CARD_TABLES
    ])


def athlete_nice(
    athlete: Row,
    athlete_key: str | None,
    index: ReferenceIndex,
    tag_config: ActivationTagConfig,
) -> GroupResult:
    checks: list[Check] = [
        (bool(athlete_key) and index.has(table, athlete_key), label)
        for table, label in _NICE_TABLES
    ]
    has_talk = bool(athlete_key) and tag_config.has_category(index.tags(athlete_key), TALK_MENTORSHIP)
    checks.append((has_talk, MissingField.TALKS_MENTORSHIP))
    checks.extend(
        (field_present(athlete, ATHLETE_FIELDS, logical), label)
        for logical, label in _NICE_FIELDS
    )
    return evaluate(checks)


def athlete_status(must_points: int, must_total: int, nice_points: int, nice_total: int) -> CompletionStatus:
    must_ratio = 0.0 if must_total == 0 else must_points / must_total
    if must_points == must_total and nice_points == nice_total:
        return CompletionStatus.COMPLETE
    if must_points == must_total:
        return CompletionStatus.ACCEPTABLE
    if must_ratio >= 0.8:
        return CompletionStatus.ALMOST
    return CompletionStatus.INCOMPLETE


def score_athlete_completion(
    athlete: Row,
    index: ReferenceIndex,
    tag_config: ActivationTagConfig,
) -> CompletionResult:
    athlete_key = resolve_field(athlete, ATHLETE_FIELDS, "profile_id") or None
    base = athlete_must_base(athlete)
    cards = athlete_must_cards(athlete_key, index)
    nice = athlete_nice(athlete, athlete_key, index, tag_config)

    must_points = base.points + cards.points
    must_total = base.total + cards.total
    full_total = must_total + nice.total
    score = 0 if full_total == 0 else round_half_up(100 * (must_points + nice.points) / full_total)

    return CompletionResult(
        score=score,
        status=athlete_status(must_points, must_total, nice.points, nice.total),
        missing=[*base.missing, *cards.missing, *nice.missing],
        must_points=must_points,
        must_total=must_total,
        nice_points=nice.points,
        nice_total=nice.total,
    )


# ---------------------------------------------------------------------------
# Partner rubric
# ---------------------------------------------------------------------------

def partner_entity_kind(partner: Row | None) -> str:
    return resolve_field(partner, PARTNER_FIELDS, "entity_kind").lower()


def _partner_identity_ok(partner: Row, kind: str) -> bool:
    if kind == "pj":
        return field_present(partner, PARTNER_FIELDS, "tax_id") or field_present(partner, PARTNER_FIELDS, "legal_name")
    if kind == "pf":
        return field_present(partner, PARTNER_FIELDS, "personal_id")
    return False


_PARTNER_CHECKS: tuple[tuple[Callable[[Row, str], bool], MissingField], ...] = (
    (lambda p, _: field_present(p, PARTNER_FIELDS, "logo"), MissingField.LOGO),
    (lambda p, _: field_present(p, PARTNER_FIELDS, "description"), MissingField.DESCRIPTION),
    (lambda p, _: field_present(p, PARTNER_FIELDS, "city"), MissingField.CITY),
    (lambda p, _: field_present(p, PARTNER_FIELDS, "state"), MissingField.STATE),
    (lambda p, _: list_field_present(p, PARTNER_FIELDS, "contact"), MissingField.CONTACT),
    (
        lambda p, _: any(field_present(p, PARTNER_FIELDS, f) for f in ("website", "linkedin", "instagram")),
        MissingField.LINKS,
    ),
    (lambda p, _: field_present(p, PARTNER_FIELDS, "display_name"), MissingField.DISPLAY_NAME),
    (lambda p, _: field_present(p, PARTNER_FIELDS, "username"), MissingField.USERNAME),
    (_partner_identity_ok, MissingField.IDENTITY),
    (lambda _, kind: is_filled(kind), MissingField.ENTITY_KIND),
)


def partner_status(score: int) -> CompletionStatus:
    if score == 100:
        return CompletionStatus.COMPLETE
    if score >= 80:
        return CompletionStatus.ALMOST
    return CompletionStatus.INCOMPLETE


def score_partner_completion(partner: Row) -> CompletionResult:
    kind = partner_entity_kind(partner)
    group = evaluate([(check(partner, kind), label) for check, label in _PARTNER_CHECKS])
    score = round_half_up(100 * group.points / group.total)
    return CompletionResult(
        score=score,
        status=partner_status(score),
        missing=group.missing,
        must_points=group.points,
        must_total=group.total,
    )


def missing_field_order(profile_kind: str) -> list[MissingField]:
    """All labels a rubric can emit, in generation order."""
    if profile_kind == "athlete":
        return [
            *(label for _, label in _MUST_BASE_FIELDS),
            *(label for _, label in _MUST_CARD_TABLES),
            *(label for _, label in _NICE_TABLES),
            MissingField.TALKS_MENTORSHIP,
            *(label for _, label in _NICE_FIELDS),
        ]
    if profile_kind == "partner":
        return [label for _, label in _PARTNER_CHECKS]
    return []

