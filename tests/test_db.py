"""Tests for the attribution record store."""

import tempfile
import pytest
from datetime import datetime
from pathlib import Path

from db import Database
from exceptions import DatabaseError
from models import Attribution, AttributionModel, DEFAULT_SETTINGS


COMPUTED_AT = datetime(2025, 4, 1, 12, 30, 0)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        db = Database(str(db_path))
        db.init_db()
        yield db


def make_record(partner_id, model=AttributionModel.EQUAL_SPLIT, deal_id="D1", amount=5000.0, org="ORG1"):
    return Attribution(
        organization_id=org,
        deal_id=deal_id,
        partner_id=partner_id,
        model=model,
        percentage=50.0,
        attributed_amount=amount,
        commission_amount=amount / 10,
        computed_at=COMPUTED_AT,
        applied_rule_name="Default",
    )


def test_database_initialization(temp_db):
    """Default settings are seeded on init."""
    settings = temp_db.get_settings()
    assert settings == DEFAULT_SETTINGS

    # Re-running init keeps existing values
    temp_db.set_setting("scoring_weight_revenue", "0.5")
    temp_db.init_db()
    assert temp_db.get_setting("scoring_weight_revenue", "0.35") == "0.5"


def test_get_set_setting(temp_db):
    """Test setting get/set operations."""
    temp_db.set_setting("test_key", "test_value")
    value = temp_db.get_setting("test_key", "default")
    assert value == "test_value"

    # Test default value when key doesn't exist
    value = temp_db.get_setting("nonexistent", "default")
    assert value == "default"


def test_replace_attributions_replaces_whole_set(temp_db):
    temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [make_record("P1"), make_record("P2")])
    inserted = temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [make_record("P3", amount=10000.0)])

    df = temp_db.list_attributions(deal_id="D1")

    assert inserted == 1
    assert list(df["partner_id"]) == ["P3"]
    assert df.loc[0, "attributed_amount"] == 10000.0
    assert df.loc[0, "model"] == "equal_split"


def test_replace_leaves_other_models_alone(temp_db):
    temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [make_record("P1")])
    temp_db.replace_attributions("D1", AttributionModel.FIRST_TOUCH, [make_record("P2", model=AttributionModel.FIRST_TOUCH)])

    temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [])

    df = temp_db.list_attributions(deal_id="D1")
    assert list(df["model"]) == ["first_touch"]


def test_replace_rejects_mismatched_records(temp_db):
    temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [make_record("P1")])

    with pytest.raises(DatabaseError):
        temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [make_record("P2", deal_id="D2")])

    # Nothing was touched
    assert list(temp_db.list_attributions(deal_id="D1")["partner_id"]) == ["P1"]


def test_list_attributions_filters(temp_db):
    temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [make_record("P1"), make_record("P2")])
    temp_db.replace_attributions(
        "D2", AttributionModel.ROLE_BASED,
        [make_record("P1", model=AttributionModel.ROLE_BASED, deal_id="D2")]
    )

    assert len(temp_db.list_attributions()) == 3
    assert len(temp_db.list_attributions(partner_id="P1")) == 2
    assert len(temp_db.list_attributions(model="role_based")) == 1
    assert temp_db.list_attributions(deal_id="D3").empty


def test_load_attributions_round_trips_records(temp_db):
    records = [make_record("P1"), make_record("P2")]
    temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, records)
    temp_db.replace_attributions(
        "D9", AttributionModel.EQUAL_SPLIT,
        [make_record("P9", deal_id="D9", org="ORG2")]
    )

    loaded = temp_db.load_attributions("ORG1")

    assert loaded == records
    assert loaded[0].computed_at == COMPUTED_AT


def test_has_attributions(temp_db):
    assert temp_db.has_attributions("D1") is False
    temp_db.replace_attributions("D1", AttributionModel.EQUAL_SPLIT, [make_record("P1")])
    assert temp_db.has_attributions("D1") is True


def test_bad_query_raises_database_error(temp_db):
    with pytest.raises(DatabaseError) as exc:
        temp_db.read_sql("SELECT * FROM no_such_table;")
    assert exc.value.operation == "read_sql"
