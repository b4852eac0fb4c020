"""onboarding_etl.writer

Persists a ReconciliationResult.

All four statements run inside one ``conn.transaction()`` block:

    portal_user               upsert  ON CONFLICT (account_id)
    onboarding                upsert  ON CONFLICT (account_id, profile_kind)
    athlete_commercial_score  upsert  ON CONFLICT (athlete_profile_id)
    reconciliation_run        insert

Either everything is applied or nothing is.  A database failure is
re-raised as PersistenceConflictError after the rollback; there is no
retry.  With dry_run=True the statements execute and are then rolled back.
"""

from __future__ import annotations

import json
import logging
from typing import Sequence

import psycopg

from onboarding_etl.activation_tags import ActivationTagConfig
from onboarding_etl.reconcile import (
    CommercialScoreRecord,
    OnboardingRecord,
    PortalUser,
    ReconciliationResult,
)
from onboarding_etl.shared import PersistenceConflictError, RunCounters

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_UPSERT_PORTAL_USER = """
    INSERT INTO portal_user
        (account_id, email, full_name, created_at_portal, updated_at_portal,
         last_run_id, updated_at)
    VALUES (%s, %s, %s, %s, %s, %s, now())
    ON CONFLICT (account_id) DO UPDATE SET
        email             = EXCLUDED.email,
        full_name         = EXCLUDED.full_name,
        created_at_portal = EXCLUDED.created_at_portal,
        updated_at_portal = EXCLUDED.updated_at_portal,
        last_run_id       = EXCLUDED.last_run_id,
        updated_at        = now()
"""

_UPSERT_ONBOARDING = """
    INSERT INTO onboarding
        (account_id, profile_kind, entity_kind, completion_status,
         completion_score, missing_fields, last_run_id, updated_at)
    VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, now())
    ON CONFLICT (account_id, profile_kind) DO UPDATE SET
        entity_kind       = EXCLUDED.entity_kind,
        completion_status = EXCLUDED.completion_status,
        completion_score  = EXCLUDED.completion_score,
        missing_fields    = EXCLUDED.missing_fields,
        last_run_id       = EXCLUDED.last_run_id,
        updated_at        = now()
"""

_UPSERT_COMMERCIAL = """
    INSERT INTO athlete_commercial_score
        (athlete_profile_id, account_id, p1_performance, p2_narrative,
         p3_maturity, p4_activation, p5_fit, total_score, tier,
         notes, updated_by, last_run_id, updated_at)
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now())
    ON CONFLICT (athlete_profile_id) DO UPDATE SET
        account_id     = EXCLUDED.account_id,
        p1_performance = EXCLUDED.p1_performance,
        p2_narrative   = EXCLUDED.p2_narrative,
        p3_maturity    = EXCLUDED.p3_maturity,
        p4_activation  = EXCLUDED.p4_activation,
        p5_fit         = EXCLUDED.p5_fit,
        total_score    = EXCLUDED.total_score,
        tier           = EXCLUDED.tier,
        notes          = EXCLUDED.notes,
        updated_by     = EXCLUDED.updated_by,
        last_run_id    = EXCLUDED.last_run_id,
        updated_at     = now()
"""

_INSERT_RUN = """
    INSERT INTO reconciliation_run
        (run_id, started_at, finished_at, tag_config_version, tag_config_hash, counters)
    VALUES (%s, %s::timestamptz, now(), %s, %s, %s::jsonb)
"""


# ---------------------------------------------------------------------------
# Table writers (caller owns the transaction)
# ---------------------------------------------------------------------------

def upsert_portal_users(
    conn: psycopg.Connection,
    users: Sequence[PortalUser],
    run_id: str,
) -> int:
    if not users:
        return 0
    with conn.cursor() as cur:
        cur.executemany(
            _UPSERT_PORTAL_USER,
            [
                (u.account_id, u.email, u.full_name,
                 u.created_at_portal, u.updated_at_portal, run_id)
                for u in users
            ],
        )
    return len(users)


def upsert_onboarding(
    conn: psycopg.Connection,
    records: Sequence[OnboardingRecord],
    run_id: str,
) -> int:
    if not records:
        return 0
    with conn.cursor() as cur:
        cur.executemany(
            _UPSERT_ONBOARDING,
            [
                (r.account_id, r.profile_kind, r.entity_kind, r.completion_status,
                 r.completion_score, json.dumps(list(r.missing_fields)), run_id)
                for r in records
            ],
        )
    return len(records)


def upsert_commercial_scores(
    conn: psycopg.Connection,
    records: Sequence[CommercialScoreRecord],
    run_id: str,
) -> int:
    if not records:
        return 0
    with conn.cursor() as cur:
        cur.executemany(
            _UPSERT_COMMERCIAL,
            [
                (r.athlete_profile_id, r.account_id,
                 r.p1_performance, r.p2_narrative, r.p3_maturity,
                 r.p4_activation, r.p5_fit, r.total_score, r.tier,
                 r.notes, r.updated_by, run_id)
                for r in records
            ],
        )
    return len(records)


def insert_run(
    conn: psycopg.Connection,
    run_id: str,
    started_at: str,
    tag_config: ActivationTagConfig,
    counters: RunCounters,
) -> None:
    conn.execute(
        _INSERT_RUN,
        (
            run_id, started_at, tag_config.version, tag_config.yaml_hash,
            json.dumps(counters.to_dict(), default=str),
        ),
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def write_reconciliation(
    conn: psycopg.Connection,
    result: ReconciliationResult,
    run_id: str,
    started_at: str,
    tag_config: ActivationTagConfig,
    counters: RunCounters,
    dry_run: bool = False,
) -> None:
    """Apply one run's output atomically.

    Raises:
        PersistenceConflictError: any statement failed; nothing was applied.
    """
    try:
        with conn.transaction():
            counters.portal_users_upserted = upsert_portal_users(conn, result.portal_users, run_id)
            counters.onboarding_upserted = upsert_onboarding(conn, result.onboarding_records, run_id)
            counters.commercial_upserted = upsert_commercial_scores(conn, result.commercial_records, run_id)
            insert_run(conn, run_id, started_at, tag_config, counters)
            if dry_run:
                raise psycopg.Rollback()
    except psycopg.Error as exc:
        counters.portal_users_upserted = 0
        counters.onboarding_upserted = 0
        counters.commercial_upserted = 0
        log.error("run %s: write failed, transaction rolled back: %s", run_id, exc)
        raise PersistenceConflictError(f"run {run_id}: {exc}") from exc

    log.info(
        "run %s: portal_user=%d onboarding=%d commercial=%d%s",
        run_id,
        counters.portal_users_upserted,
        counters.onboarding_upserted,
        counters.commercial_upserted,
        " (rolled back)" if dry_run else "",
    )
