"""Integration tests for onboarding_etl.writer.

Run against a real PostgreSQL instance provided by pytest-postgresql, with
the schema applied via the db_conn fixture in conftest.py.
"""

from __future__ import annotations

import dataclasses

import pytest

from onboarding_etl.activation_tags import DEFAULT_TAG_CONFIG_PATH, load_tag_config
from onboarding_etl.dataset_loader import load_snapshot
from onboarding_etl.reconcile import reconcile
from onboarding_etl.shared import PersistenceConflictError, RejectWriter, RunCounters
from onboarding_etl.writer import write_reconciliation


@pytest.fixture
def tag_config():
    return load_tag_config(DEFAULT_TAG_CONFIG_PATH)


def _reconcile(data_dir, tag_config):
    counters = RunCounters()
    snapshot = load_snapshot(data_dir, counters, RejectWriter(None))
    return reconcile(snapshot, tag_config, counters), counters


def _count(conn, table: str) -> int:
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------

class TestWriteReconciliation:
    def test_writes_all_tables(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)

        assert _count(conn, "portal_user") == 4
        assert _count(conn, "onboarding") == 3
        assert _count(conn, "athlete_commercial_score") == 1
        assert _count(conn, "reconciliation_run") == 1
        assert counters.onboarding_upserted == 3

    def test_athlete_row_values(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)

        status, score, missing = conn.execute(
            "SELECT completion_status, completion_score, missing_fields "
            "FROM onboarding WHERE account_id = 'u-ath' AND profile_kind = 'athlete'"
        ).fetchone()
        assert status == "acceptable"
        assert score == 76
        assert missing == [
            "nice:partnerships", "nice:social_actions",
            "nice:youtube", "nice:tiktok", "nice:linkedin",
        ]

        row = conn.execute(
            "SELECT p1_performance, p2_narrative, p3_maturity, p4_activation, p5_fit, "
            "total_score, tier, notes, updated_by "
            "FROM athlete_commercial_score WHERE athlete_profile_id = 'ath1'"
        ).fetchone()
        assert row == (25, 12, 15, 5, 3, 60, "Potential Commercial Athlete", None, None)

    def test_admin_not_written(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)
        n = conn.execute("SELECT count(*) FROM onboarding WHERE account_id = 'u-admin'").fetchone()[0]
        assert n == 0

    def test_second_run_replaces_values(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)

        # athlete loses the bio; scores must drop and replace, not duplicate
        (snapshot_dir / "athlete_profiles.csv").write_text(
            (snapshot_dir / "athlete_profiles.csv").read_text(encoding="utf-8").replace("Surfer", ""),
            encoding="utf-8",
        )
        result2, counters2 = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result2, "run-2", "2024-01-02T00:00:00", tag_config, counters2)

        assert _count(conn, "onboarding") == 3
        status, missing, run_id = conn.execute(
            "SELECT completion_status, missing_fields, last_run_id FROM onboarding "
            "WHERE account_id = 'u-ath'"
        ).fetchone()
        assert status == "almost"
        assert missing[0] == "must:bio"
        assert run_id == "run-2"
        # P3 is gated on acceptable/complete
        p3 = conn.execute(
            "SELECT p3_maturity FROM athlete_commercial_score WHERE athlete_profile_id = 'ath1'"
        ).fetchone()[0]
        assert p3 == 0

    def test_idempotent_rerun(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn

        def snapshot_rows():
            return (
                conn.execute("SELECT account_id, profile_kind, completion_status, completion_score, "
                             "missing_fields FROM onboarding ORDER BY 1, 2").fetchall(),
                conn.execute("SELECT athlete_profile_id, total_score, tier "
                             "FROM athlete_commercial_score ORDER BY 1").fetchall(),
            )

        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)
        first = snapshot_rows()
        conn.commit()

        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-2", "2024-01-01T00:00:00", tag_config, counters)
        assert snapshot_rows() == first

    def test_run_row_records_config_hash(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)
        version, yaml_hash, ctrs = conn.execute(
            "SELECT tag_config_version, tag_config_hash, counters FROM reconciliation_run"
        ).fetchone()
        assert version == "v1"
        assert yaml_hash == tag_config.yaml_hash
        assert ctrs["commercial_records"] == 1


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------

class TestRollback:
    def test_dry_run_rolls_back(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(
            conn, result, "run-dry", "2024-01-01T00:00:00", tag_config, counters, dry_run=True,
        )
        for table in ("portal_user", "onboarding", "athlete_commercial_score", "reconciliation_run"):
            assert _count(conn, table) == 0, f"{table} not rolled back"

    def test_failure_in_one_table_applies_nothing(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        # out-of-range sub-score violates the CHECK constraint
        bad = dataclasses.replace(result.commercial_records[0], p1_performance=99)
        result.commercial_records[0] = bad

        with pytest.raises(PersistenceConflictError):
            write_reconciliation(conn, result, "run-bad", "2024-01-01T00:00:00", tag_config, counters)

        for table in ("portal_user", "onboarding", "athlete_commercial_score", "reconciliation_run"):
            assert _count(conn, table) == 0, f"{table} has rows after failed write"
        assert counters.onboarding_upserted == 0

    def test_duplicate_run_id_is_conflict(self, db_conn, snapshot_dir, tag_config):
        conn, _ = db_conn
        result, counters = _reconcile(snapshot_dir, tag_config)
        write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)
        conn.commit()
        with pytest.raises(PersistenceConflictError):
            write_reconciliation(conn, result, "run-1", "2024-01-01T00:00:00", tag_config, counters)
        # the first run's rows survive
        assert _count(conn, "onboarding") == 3
        assert _count(conn, "reconciliation_run") == 1
