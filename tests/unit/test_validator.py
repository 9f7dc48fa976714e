"""
Unit tests -- descriptor validation against the CRM schema allow-list.
"""
import pytest

from crm_assistant.assistant.descriptor import QueryDescriptor
from crm_assistant.schema.loader import CrmSchema, load_crm_schema
from crm_assistant.schema.validator import validate_descriptor


@pytest.fixture(scope="module")
def crm() -> CrmSchema:
    return load_crm_schema()


# ── Helper: build a valid descriptor ─────────────────────

def _descriptor(**overrides) -> QueryDescriptor:
    base = {
        "table": "leads",
        "select": "count(*)",
        "filters": [{"column": "booked_at", "operator": "neq", "value": None}],
    }
    base.update(overrides)
    return QueryDescriptor(**base)


# ── Valid descriptors ────────────────────────────────────

def test_valid_descriptor_no_errors(crm):
    assert validate_descriptor(_descriptor(), crm) == []


def test_valid_projection_with_order(crm):
    d = _descriptor(select="id, name, booked_at", order={"column": "booked_at", "ascending": False})
    assert validate_descriptor(d, crm) == []


def test_valid_aggregate(crm):
    assert validate_descriptor(_descriptor(table="sales", select="avg(amount)", filters=[]), crm) == []


def test_valid_lookup(crm):
    d = _descriptor(filters=[{"column": "booker_id", "operator": "eq", "value": "lookup:booker:Chicko"}])
    assert validate_descriptor(d, crm) == []


def test_defaults_to_bundled_schema():
    assert validate_descriptor(_descriptor()) == []


# ── Table ────────────────────────────────────────────────

def test_unknown_table(crm):
    errors = validate_descriptor(_descriptor(table="payments"), crm)
    assert len(errors) == 1
    assert "Unknown table 'payments'" in errors[0]


# ── Columns ──────────────────────────────────────────────

def test_unknown_select_column(crm):
    errors = validate_descriptor(_descriptor(select="id, favourite_colour"), crm)
    assert any("favourite_colour" in e and "select" in e for e in errors)


def test_blocked_select_column(crm):
    errors = validate_descriptor(_descriptor(table="users", select="name, password_hash", filters=[]), crm)
    assert any("Blocked column 'password_hash'" in e for e in errors)


def test_blocked_filter_column(crm):
    d = _descriptor(table="users", filters=[
        {"column": "password_hash", "operator": "like", "value": "%a%"}])
    assert any("Blocked" in e for e in validate_descriptor(d, crm))


def test_unknown_filter_column(crm):
    d = _descriptor(filters=[{"column": "nope", "operator": "eq", "value": 1}])
    assert any("Unknown column 'nope'" in e for e in validate_descriptor(d, crm))


def test_unknown_order_column(crm):
    d = _descriptor(select="id", order={"column": "nope"})
    assert any("order" in e for e in validate_descriptor(d, crm))


# ── Aggregates ───────────────────────────────────────────

def test_aggregate_on_text_column(crm):
    errors = validate_descriptor(_descriptor(select="sum(name)", filters=[]), crm)
    assert any("numeric" in e for e in errors)


def test_aggregate_on_unknown_column(crm):
    errors = validate_descriptor(_descriptor(table="sales", select="max(tip)", filters=[]), crm)
    assert any("Unknown column 'tip'" in e for e in errors)


# ── Filters ──────────────────────────────────────────────

def test_in_requires_list(crm):
    d = _descriptor(filters=[{"column": "status", "operator": "in", "value": "Booked"}])
    assert any("not a list" in e for e in validate_descriptor(d, crm))


def test_unknown_lookup_kind(crm):
    d = _descriptor(filters=[{"column": "booker_id", "operator": "eq", "value": "lookup:closer:Carl"}])
    assert any("Unknown lookup kind 'closer'" in e for e in validate_descriptor(d, crm))


def test_multiple_errors_reported(crm):
    d = _descriptor(select="bogus", filters=[
        {"column": "also_bogus", "operator": "eq", "value": 1},
        {"column": "status", "operator": "in", "value": "x"},
    ])
    assert len(validate_descriptor(d, crm)) == 3
