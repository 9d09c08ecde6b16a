"""
Entity mapper: field flattening, coercion, and skipping unmappable records
"""
import logging

import pytest

from hbsync.services.sync.mapping import dig, map_record, map_records, to_bool, to_date, to_float, to_int


def test_project_record_flattens_nested_fields():
    record = {
        "id": 42,
        "name": "Tower",
        "project_number": "P-42",
        "company": {"id": "5280"},
        "address": "1 Main St",
        "state_code": "FL",
        "start_date": "2025-01-02T00:00:00Z",
        "total_value": "1,250,000.50",
        "active": "true",
    }

    row = map_record(record, "projects")

    assert row["project_id"] == 42
    assert row["number"] == "P-42"
    assert row["company_id"] == 5280
    assert row["street_address"] == "1 Main St"
    assert row["start_date"] == "2025-01-02"
    assert row["contract_value"] == 1250000.5
    assert row["active"] is True
    assert row["city"] is None


def test_commitment_vendor_and_defaults():
    row = map_record({"id": "7", "vendor": {"name": "Acme Steel"}, "grand_total": 10}, "commitments")
    assert row["id"] == 7
    assert row["vendor"] == "Acme Steel"
    assert row["original_contract_amount"] == 10.0
    assert row["executed"] is False


def test_budget_line_item_reads_cost_code():
    row = map_record({"id": 3, "cost_code": {"id": 11, "name": "Concrete"}, "amount": "500"}, "budgets")
    assert row["cost_code_id"] == 11
    assert row["description"] == "Concrete"
    assert row["original_budget_amount"] == 500.0


@pytest.mark.parametrize("record", [{"name": "no id"}, {"id": None}, {"id": "abc"}, "not-an-object", None])
def test_records_without_natural_key_map_to_none(record):
    assert map_record(record, "users") is None


def test_unknown_kind_raises():
    with pytest.raises(ValueError):
        map_record({"id": 1}, "invoices")


def test_map_records_skips_and_warns(caplog):
    records = [{"id": 1}, {"email": "x@hb.test"}, {"id": 2}, "junk", {"id": 3}]

    with caplog.at_level(logging.WARNING, logger="hbsync.services.sync.mapping"):
        rows = map_records(records, "users", context={"company_id": 5280})

    assert [r["id"] for r in rows] == [1, 2, 3]
    assert all(r["company_id"] == 5280 for r in rows)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 2
    assert "record #1" in warnings[0].getMessage()
    assert "missing required field(s) id" in warnings[0].getMessage()


def test_project_without_name_is_skipped(caplog):
    records = [{"id": 10, "name": "Tower"}, {"id": 12}, {"id": 13, "display_name": "Annex"}]

    with caplog.at_level(logging.WARNING, logger="hbsync.services.sync.mapping"):
        rows = map_records(records, "projects")

    assert [(r["project_id"], r["name"]) for r in rows] == [(10, "Tower"), (13, "Annex")]
    [warning] = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert "record #1" in warning.getMessage()
    assert "name" in warning.getMessage()
    assert map_record({"id": 12}, "projects") is None


def test_coercers_are_lenient():
    assert to_int("12") == 12
    assert to_int("12.0") == 12
    assert to_int("12.5") is None
    assert to_int(True) is None
    assert to_float("n/a") is None
    assert to_bool("No") is False
    assert to_bool("maybe") is None
    assert to_date("2025-13-01") is None
    assert dig({"a": {"b": 1}}, "a.b") == 1
    assert dig({"a": 1}, "a.b") is None
