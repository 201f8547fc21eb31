"""Tests for numeric and formatting helpers."""

import logging
import pytest
from datetime import datetime, timedelta

from models import AttributionModel, PayoutCandidate
from utils import (
    clamp,
    days_between,
    decay_weight,
    format_currency,
    format_percent,
    normalize_weights,
    records_to_frame,
    round_half_up,
    setup_logging,
)


def test_round_half_up():
    assert round_half_up(2.675) == 2.68
    assert round_half_up(0.125) == 0.13
    assert round_half_up(67.5, 0) == 68.0
    assert round_half_up(-1.005) == -1.01


def test_clamp():
    assert clamp(120) == 100
    assert clamp(-3) == 0
    assert clamp(42.5) == 42.5


def test_days_between():
    start = datetime(2025, 1, 1)
    assert days_between(start, start + timedelta(days=2, hours=12)) == 2.5
    assert days_between(start + timedelta(days=1), start) == -1.0


def test_decay_weight():
    assert decay_weight(0, 14) == 1.0
    assert decay_weight(14, 14) == 0.5
    assert decay_weight(28, 14) == 0.25
    assert decay_weight(-5, 14) == 1.0
    with pytest.raises(ValueError):
        decay_weight(1, 0)


def test_normalize_weights():
    assert normalize_weights({"a": 3, "b": 1}) == {"a": 0.75, "b": 0.25}
    assert normalize_weights({"a": -1, "b": 2}) == {"a": 0.0, "b": 1.0}
    assert normalize_weights({"a": 0, "b": 0}) == {"a": 0.5, "b": 0.5}
    assert normalize_weights({}) == {}


def test_formatting():
    assert format_currency(1234567.891) == "$1,234,567.89"
    assert format_percent(33.333) == "33.33%"


def test_records_to_frame_flattens_enums():
    candidates = [
        PayoutCandidate("ORG1", "D1", "P1", 100.0, AttributionModel.ROLE_BASED, "Default"),
        PayoutCandidate("ORG1", "D1", "P2", 50.0, AttributionModel.ROLE_BASED, "Gold"),
    ]

    df = records_to_frame(candidates)

    assert list(df["partner_id"]) == ["P1", "P2"]
    assert list(df["model"]) == ["role_based", "role_based"]
    assert df["amount"].sum() == 150.0


def test_records_to_frame_empty_with_columns():
    df = records_to_frame([], columns=["partner_id", "amount"])
    assert df.empty
    assert list(df.columns) == ["partner_id", "amount"]


def test_setup_logging_writes_to_file(tmp_path):
    log_file = tmp_path / "engine.log"
    root = logging.getLogger()
    handlers_before = list(root.handlers)
    level_before = root.level

    try:
        setup_logging("DEBUG", str(log_file))
        logging.getLogger("attribution").debug("recompute started")
        for handler in root.handlers:
            handler.flush()
        assert "recompute started" in log_file.read_text()
    finally:
        for handler in root.handlers[:]:
            if handler not in handlers_before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level_before)
