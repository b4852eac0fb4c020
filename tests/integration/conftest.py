"""Integration test fixtures.

Applies the onboarding migrations against an ephemeral PostgreSQL database
provided by pytest-postgresql before each integration test runs.
"""

from __future__ import annotations

import csv
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from onboarding_etl.dataset_loader import DATASET_NAMES, FACT_TABLES

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = sorted((PROJECT_ROOT / "migrations").glob("*.sql"))

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture: applies all migrations for every test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (connection, dsn) with the schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            sql = migration.read_text(encoding="utf-8")
            conn.execute(sql)
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Snapshot directory fixture
# ---------------------------------------------------------------------------

SNAPSHOT_HEADERS: dict[str, list[str]] = {
    "accounts": ["id", "email", "full_name", "created_at", "updated_at"],
    "account_roles": ["user_id", "role"],
    "athlete_profiles": [
        "id", "user_id", "foto_url", "bio", "modalidade", "nivel", "estado",
        "cidade", "telefone", "instagram", "youtube", "tiktok", "linkedin",
        "valores_descricao",
    ],
    "partner_profiles": [
        "user_id", "logo_url", "descricao", "cidade", "estado", "contato",
        "website", "nome_fantasia", "username", "tipo_entidade", "cnpj", "cpf",
    ],
    **{name: ["id", "athlete_id"] for name in FACT_TABLES},
    "activations": ["id", "athlete_id", "activation_type_id"],
}

TALK_ID = "ed814423-9e20-4184-880c-f45be1383c40"


def write_snapshot(data_dir: Path, tables: dict[str, list[list[str]]]) -> Path:
    data_dir.mkdir(parents=True, exist_ok=True)
    for name in DATASET_NAMES:
        with open(data_dir / f"{name}.csv", "w", newline="", encoding="utf-8") as fh:
            w = csv.writer(fh)
            w.writerow(SNAPSHOT_HEADERS[name])
            w.writerows(tables.get(name, []))
    return data_dir


@pytest.fixture
def snapshot_dir(tmp_path) -> Path:
    """A small snapshot: one admin, one athlete, one partner, one bare account."""
    return write_snapshot(tmp_path / "snapshot", {
        "accounts": [
            ["u-admin", "root@x.com", "Root", "2024-01-01", "2024-01-02"],
            ["u-ath", "ana@x.com", "Ana", "2024-01-01", "2024-01-02"],
            ["u-partner", "acme@x.com", "Acme", "2024-01-01", "2024-01-02"],
            ["u-none", "nobody@x.com", "", "2024-01-01", "2024-01-02"],
        ],
        "account_roles": [
            ["u-admin", "admin"],
            ["u-ath", "athlete"],
            ["u-partner", "partner"],
        ],
        "athlete_profiles": [
            ["ath1", "u-ath", "a.png", "Surfer", '["surf"]', "pro", "SP", "Santos",
             "+55 11 9", "@ana", "", "", "", "short"],
        ],
        "partner_profiles": [
            ["u-partner", "l.png", "Brand", "Rio", "RJ", '["c@acme.com"]',
             "https://acme.com", "Acme", "acme", "pj", "00.000", ""],
        ],
        "achievements": [["f1", "ath1"]],
        "activations": [["f2", "ath1", TALK_ID]],
        "causes": [["f3", "ath1"], ["f4", "ath1"], ["f5", "ath1"]],
        "education": [["f6", "ath1"]],
        "media": [["f7", "ath1"]],
        "results": [["f8", "ath1"]],
        "ranking": [["f9", "ath1"]],
    })


@pytest.fixture
def snapshot_writer():
    return write_snapshot
