"""Numeric helpers, formatting and logging setup shared by the engine."""

import logging
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Sequence

import pandas as pd

from config import LOG_FILE, LOG_LEVEL

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
SECONDS_PER_DAY = 86400.0


def to_decimal(value) -> Decimal:
    """Convert a float/int/str to Decimal via its shortest repr."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value, places: int = 2) -> float:
    """Round to `places` decimals using round-half-up (not banker's rounding)."""
    quantum = Decimal(1).scaleb(-places)
    return float(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def round_currency(value) -> float:
    return round_half_up(value, 2)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end (negative if end precedes start)."""
    return (end - start).total_seconds() / SECONDS_PER_DAY


def decay_weight(age_days: float, half_life_days: float) -> float:
    """
    Half-life decay: 1.0 at age 0, 0.5 at one half-life, 0.25 at two.

    Negative ages (events after the reference time) count as age 0.
    """
    if half_life_days <= 0:
        raise ValueError("half_life_days must be positive")
    return 2 ** (-max(age_days, 0.0) / half_life_days)


def normalize_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """
    Scale non-negative weights so they sum to 1.0.

    Negative entries are treated as 0. If nothing positive remains, every
    key gets an equal share.
    """
    cleaned = {k: max(float(v), 0.0) for k, v in weights.items()}
    total = sum(cleaned.values())
    if total <= 0:
        if not cleaned:
            return {}
        equal = 1.0 / len(cleaned)
        return {k: equal for k in cleaned}
    return {k: v / total for k, v in cleaned.items()}


def format_currency(amount: float) -> str:
    """Format a currency amount."""
    return f"${amount:,.2f}"


def format_percent(pct: float) -> str:
    """Format a 0-100 percentage."""
    return f"{pct:.2f}%"


def records_to_frame(records: Sequence, columns: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Convert a list of engine dataclasses into a DataFrame for list/filter views.

    Enum values are flattened to their string values.
    """
    rows = []
    for record in records:
        row = asdict(record)
        rows.append({k: (v.value if isinstance(v, Enum) else v) for k, v in row.items()})

    df = pd.DataFrame(rows, columns=columns)
    logger.debug(f"Built frame with {len(df)} rows")
    return df


def setup_logging(log_level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR); defaults to LOG_LEVEL
        log_file: Optional log file path; defaults to LOG_FILE
    """
    log_level = log_level or LOG_LEVEL
    log_file = log_file or LOG_FILE
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (optional)
    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logger.info(f"Logging to file: {log_file}")
        except OSError as e:
            logger.error(f"Failed to setup file logging: {e}")

    logger.info(f"Logging configured at level {log_level}")
