"""onboarding_etl.commercial

Five-factor commercial score for athlete accounts with a resolved profile.

    P1 performance  0–25   ranking / results / achievements presence
    P2 narrative    0–20   cause count band + values-description bonus
    P3 maturity     0–20   gated on completion acceptable|complete
    P4 activation   0–20   manual (0) + tag bonus capped at 8
    P5 fit          0–15   manual (0) + city/state base

total = clamp(p1 + ... + p5, 0, 100), mapped to a Tier.
Manual components are fixed at 0; notes/updated_by are always None.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from onboarding_etl.activation_tags import (
    BRAND_PRESENCE,
    TALK_MENTORSHIP,
    ActivationTagConfig,
)
from onboarding_etl.completion import CompletionStatus
from onboarding_etl.dataset_loader import Row
from onboarding_etl.profile_fields import ATHLETE_FIELDS, field_present, resolve_field
from onboarding_etl.reference_index import ReferenceIndex

P1_MAX = 25
P2_MAX = 20
P3_MAX = 20
P4_MAX = 20
P4_BONUS_MAX = 8
P5_MAX = 15
TOTAL_MAX = 100

# present-count → P1 points
_P1_POINTS = {0: 0, 1: 10, 2: 18, 3: 25}

NARRATIVE_DESCRIPTION_MIN_LEN = 80


class Tier(str, Enum):
    ANCHOR = "Anchor Athlete"
    STRONG = "Strong Commercial Athlete"
    POTENTIAL = "Potential Commercial Athlete"
    NOT_YET = "Not Yet Commercializable"


# (minimum total, tier), checked top-down
TIER_THRESHOLDS: tuple[tuple[int, Tier], ...] = (
    (90, Tier.ANCHOR),
    (75, Tier.STRONG),
    (60, Tier.POTENTIAL),
)


@dataclass(frozen=True)
class CommercialScore:
    p1_performance: int
    p2_narrative: int
    p3_maturity: int
    p4_activation: int
    p5_fit: int
    total_score: int
    tier: Tier


def clamp(n: int, low: int, high: int) -> int:
    return max(low, min(high, n))


def tier_from_total(total: int) -> Tier:
    for minimum, tier in TIER_THRESHOLDS:
        if total >= minimum:
            return tier
    return Tier.NOT_YET


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------

def p1_performance(athlete_key: str | None, index: ReferenceIndex) -> int:
    if not athlete_key:
        return 0
    present = sum(
        1 for table in ("ranking", "results", "achievements")
        if index.has(table, athlete_key)
    )
    return _P1_POINTS[present]


def p2_narrative(athlete: Row, athlete_key: str | None, index: ReferenceIndex) -> int:
    if not athlete_key:
        return 0
    count = clamp(index.count("causes", athlete_key), 0, 10)
    if count == 0:
        return 0
    if count <= 2:
        base = 8
    elif count <= 5:
        base = 12
    else:
        base = 15
    description = resolve_field(athlete, ATHLETE_FIELDS, "values_description")
    bonus = 5 if len(description) >= NARRATIVE_DESCRIPTION_MIN_LEN else 0
    return clamp(base + bonus, 0, P2_MAX)


def p3_maturity(
    completion_status: CompletionStatus | None,
    athlete_key: str | None,
    index: ReferenceIndex,
) -> int:
    if not athlete_key:
        return 0
    if completion_status not in (CompletionStatus.ACCEPTABLE, CompletionStatus.COMPLETE):
        return 0
    points = 10
    if index.has("education", athlete_key):
        points += 5
    if index.has("partnerships", athlete_key):
        points += 5
    return clamp(points, 0, P3_MAX)


def p4_activation(
    athlete_key: str | None,
    index: ReferenceIndex,
    tag_config: ActivationTagConfig,
) -> int:
    manual = 0
    if not athlete_key:
        return 0
    tags = index.tags(athlete_key)
    bonus = 0
    if tag_config.has_category(tags, TALK_MENTORSHIP):
        bonus += 5
    if tag_config.has_category(tags, BRAND_PRESENCE):
        bonus += 2
    bonus = clamp(bonus, 0, P4_BONUS_MAX)
    return clamp(manual + bonus, 0, P4_MAX)


def p5_fit(athlete: Row) -> int:
    manual = 0
    has_city = field_present(athlete, ATHLETE_FIELDS, "city")
    has_state = field_present(athlete, ATHLETE_FIELDS, "state")
    auto_base = 3 if has_city and has_state else 0
    return clamp(manual + auto_base, 0, P5_MAX)


def score_commercial(
    athlete: Row,
    completion_status: CompletionStatus | None,
    index: ReferenceIndex,
    tag_config: ActivationTagConfig,
) -> CommercialScore:
    athlete_key = resolve_field(athlete, ATHLETE_FIELDS, "profile_id") or None
    p1 = p1_performance(athlete_key, index)
    p2 = p2_narrative(athlete, athlete_key, index)
    p3 = p3_maturity(completion_status, athlete_key, index)
    p4 = p4_activation(athlete_key, index, tag_config)
    p5 = p5_fit(athlete)
    total = clamp(p1 + p2 + p3 + p4 + p5, 0, TOTAL_MAX)
    return CommercialScore(
        p1_performance=p1,
        p2_narrative=p2,
        p3_maturity=p3,
        p4_activation=p4,
        p5_fit=p5,
        total_score=total,
        tier=tier_from_total(total),
    )
