"""Unit tests for onboarding_etl.dataset_loader."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest

from onboarding_etl.dataset_loader import (
    DATASET_NAMES,
    FACT_TABLES,
    Snapshot,
    load_snapshot,
    parse_dataset_text,
    validate_headers,
)
from onboarding_etl.shared import (
    DatasetSchemaError,
    MissingRequiredDatasetError,
    RejectWriter,
    RunCounters,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

HEADERS: dict[str, list[str]] = {
    "accounts": ["id", "email", "full_name", "created_at", "updated_at"],
    "account_roles": ["user_id", "role"],
    "athlete_profiles": ["id", "user_id", "bio"],
    "partner_profiles": ["user_id", "logo_url"],
    **{name: ["id", "athlete_id"] for name in FACT_TABLES},
}
HEADERS["activations"] = ["id", "athlete_id", "activation_type_id"]


def _write_csv(path: Path, headers: list[str], rows: list[list[str]]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as fh:
        w = csv.writer(fh)
        w.writerow(headers)
        w.writerows(rows)


def _write_snapshot(tmp_path: Path, skip: str | None = None, **rows) -> Path:
    for name in DATASET_NAMES:
        if name == skip:
            continue
        _write_csv(tmp_path / f"{name}.csv", HEADERS[name], rows.get(name, []))
    return tmp_path


# ---------------------------------------------------------------------------
# parse_dataset_text
# ---------------------------------------------------------------------------

class TestParseDatasetText:
    def test_basic_rows(self):
        parsed = parse_dataset_text("id,name\n1,Ana\n2,Bia\n", "accounts")
        assert parsed.headers == ["id", "name"]
        assert parsed.rows == [{"id": "1", "name": "Ana"}, {"id": "2", "name": "Bia"}]
        assert parsed.rows_read == 2

    def test_bom_and_whitespace_stripped_from_headers(self):
        parsed = parse_dataset_text("\ufeff id , name \n1,Ana\n")
        assert parsed.headers == ["id", "name"]

    def test_values_trimmed(self):
        parsed = parse_dataset_text("id,name\n 1 ,  Ana  \n")
        assert parsed.rows[0] == {"id": "1", "name": "Ana"}

    def test_missing_cell_becomes_empty_string(self):
        parsed = parse_dataset_text("id,name,bio\n1,Ana\n")
        assert parsed.rows[0] == {"id": "1", "name": "Ana", "bio": ""}

    def test_null_token_blanked(self):
        parsed = parse_dataset_text("id,bio\n1,NULL\n")
        assert parsed.rows[0]["bio"] == ""

    def test_blank_lines_skipped(self):
        parsed = parse_dataset_text("id,name\n\n1,Ana\n\n\n2,Bia\n")
        assert [r["id"] for r in parsed.rows] == ["1", "2"]
        assert parsed.rows_read == 2

    def test_quoted_cell_with_comma(self):
        parsed = parse_dataset_text('id,bio\n1,"surf, skate"\n')
        assert parsed.rows[0]["bio"] == "surf, skate"

    def test_extra_cells_rejected_and_parsing_continues(self):
        parsed = parse_dataset_text("id,name\n1,Ana,extra\n2,Bia\n", "accounts")
        assert [r["id"] for r in parsed.rows] == ["2"]
        assert len(parsed.rejects) == 1
        raw, reason = parsed.rejects[0]
        assert reason.startswith("malformed_row")
        assert raw["_dataset"] == "accounts"
        assert parsed.rows_read == 2

    def test_csv_error_rejected(self):
        parsed = parse_dataset_text('id,name\n1,Ana\n2,"Bia"x\n', "accounts")
        assert parsed.rows[0] == {"id": "1", "name": "Ana"}
        assert len(parsed.rejects) == 1
        assert parsed.rejects[0][1].startswith("malformed_row")

    def test_empty_text(self):
        parsed = parse_dataset_text("")
        assert parsed.headers == []
        assert parsed.rows == []


# ---------------------------------------------------------------------------
# validate_headers
# ---------------------------------------------------------------------------

class TestValidateHeaders:
    def test_required_headers_present(self):
        validate_headers(parse_dataset_text("user_id,role\n", "account_roles"))

    def test_missing_required_header_raises(self):
        parsed = parse_dataset_text("user_id\n", "account_roles")
        with pytest.raises(DatasetSchemaError) as exc_info:
            validate_headers(parsed)
        assert exc_info.value.dataset == "account_roles"

    def test_schema_error_is_missing_dataset_error(self):
        parsed = parse_dataset_text("id\n", "causes")
        with pytest.raises(MissingRequiredDatasetError):
            validate_headers(parsed)


# ---------------------------------------------------------------------------
# load_snapshot
# ---------------------------------------------------------------------------

class TestLoadSnapshot:
    def test_loads_all_datasets(self, tmp_path):
        _write_snapshot(
            tmp_path,
            accounts=[["u1", "a@x.com", "Ana", "", ""]],
            causes=[["c1", "ath1"], ["c2", "ath1"]],
        )
        counters = RunCounters()
        snap = load_snapshot(tmp_path, counters, RejectWriter(None))
        assert isinstance(snap, Snapshot)
        assert counters.datasets_loaded == len(DATASET_NAMES)
        assert snap.accounts[0]["email"] == "a@x.com"
        assert len(snap.causes) == 2
        assert counters.rows_read == 3

    def test_missing_file_raises_before_parsing(self, tmp_path):
        _write_snapshot(tmp_path, skip="media")
        counters = RunCounters()
        with pytest.raises(MissingRequiredDatasetError) as exc_info:
            load_snapshot(tmp_path, counters, RejectWriter(None))
        assert exc_info.value.dataset == "media"
        assert counters.datasets_loaded == 0

    def test_missing_key_column_raises(self, tmp_path):
        _write_snapshot(tmp_path)
        _write_csv(tmp_path / "results.csv", ["id", "athlete"], [])
        with pytest.raises(DatasetSchemaError):
            load_snapshot(tmp_path, RunCounters(), RejectWriter(None))

    def test_malformed_rows_written_to_rejects(self, tmp_path):
        _write_snapshot(tmp_path)
        (tmp_path / "accounts.csv").write_text("id,email\nu1,a@x.com\nu2,b@x.com,extra\n", encoding="utf-8")
        counters = RunCounters()
        rejects_path = tmp_path / "out" / "rejects.csv"
        rejects = RejectWriter(rejects_path)
        snap = load_snapshot(tmp_path, counters, rejects)
        rejects.close()

        assert [r["id"] for r in snap.accounts] == ["u1"]
        assert counters.rows_rejected == 1
        with open(rejects_path, newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert rows[0]["_dataset"] == "accounts"
        assert rows[0]["_reject_reason"].startswith("malformed_row")

    def test_thread_pool_matches_serial(self, tmp_path):
        _write_snapshot(
            tmp_path,
            accounts=[["u1", "", "", "", ""], ["u2", "", "", "", ""]],
            activations=[["a1", "ath1", "t1"]],
            ranking=[["r1", "ath1"]],
        )
        serial = load_snapshot(tmp_path, RunCounters(), RejectWriter(None))
        pooled = load_snapshot(tmp_path, RunCounters(), RejectWriter(None), max_workers=4)
        assert serial == pooled

    def test_utf8_bom_file(self, tmp_path):
        _write_snapshot(tmp_path)
        (tmp_path / "accounts.csv").write_bytes("\ufeffid,email\nu1,a@x.com\n".encode("utf-8"))
        snap = load_snapshot(tmp_path, RunCounters(), RejectWriter(None))
        assert snap.accounts == [{"id": "u1", "email": "a@x.com"}]


    def test_invalid_utf8_row_rejected_and_loading_continues(self, tmp_path):
        _write_snapshot(tmp_path)
        (tmp_path / "causes.csv").write_bytes(b"athlete_id,extra\na1,ok\na2,\xff\xfebad\na3,ok\n")
        counters = RunCounters()
        rejects_path = tmp_path / "out" / "rejects.csv"
        rejects = RejectWriter(rejects_path)
        snap = load_snapshot(tmp_path, counters, rejects)
        rejects.close()

        assert [r["athlete_id"] for r in snap.causes] == ["a1", "a3"]
        assert counters.rows_rejected == 1
        with open(rejects_path, newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert rows[0]["_dataset"] == "causes"
        assert rows[0]["_reject_reason"] == "malformed_row: invalid utf-8"

    def test_invalid_utf8_in_multiline_cell_rejects_one_row(self, tmp_path):
        _write_snapshot(tmp_path)
        (tmp_path / "athlete_profiles.csv").write_bytes(
            b'id,user_id,bio\nath1,u1,"line one\nline \xff two"\nath2,u2,fine\n'
        )
        counters = RunCounters()
        snap = load_snapshot(tmp_path, counters, RejectWriter(None))
        assert [r["id"] for r in snap.athlete_profiles] == ["ath2"]
        assert counters.rows_rejected == 1
