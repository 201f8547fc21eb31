"""
Attribution Calculation Engine
==============================

Splits credit for a deal's revenue across the partners that touched it:
1. Order touchpoints by (timestamp, insertion sequence)
2. Calculate raw per-partner shares using model-specific logic
3. Convert shares to percentages rounded to 2 decimals, with the largest
   share absorbing the rounding residual so the total is exactly 100.00
4. Derive the attributed amount from each emitted percentage

All calculation methods return AttributionRow objects but DON'T write to the
database. That's the caller's responsibility.
"""

import logging
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Any, Optional, Mapping, Union

from config import TIME_DECAY_HALF_LIFE_DAYS
from exceptions import ConfigurationError, InvalidDealError, UnknownModelError
from models import (
    AttributionModel,
    AttributionRow,
    Deal,
    Touchpoint,
    DEFAULT_ROLE_WEIGHTS,
    DEFAULT_UNKNOWN_TYPE_WEIGHT,
    validate_role_weights,
)
from utils import CENT, days_between, decay_weight, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
PERCENT_QUANTUM = Decimal("0.01")

MODEL_DESCRIPTIONS = {
    AttributionModel.EQUAL_SPLIT: "Each partner gets an equal share of credit",
    AttributionModel.FIRST_TOUCH: "100% credit to the first partner who touched the deal",
    AttributionModel.LAST_TOUCH: "100% credit to the last partner who touched the deal",
    AttributionModel.TIME_DECAY: "More recent touchpoints get exponentially higher weight",
    AttributionModel.ROLE_BASED: "Touchpoint types carry different weights based on their role",
}


def parse_model(model: Union[str, AttributionModel]) -> AttributionModel:
    """Resolve a model name, raising UnknownModelError for unsupported names."""
    if isinstance(model, AttributionModel):
        return model
    try:
        return AttributionModel(model)
    except ValueError:
        raise UnknownModelError(str(model))


def order_touchpoints(touchpoints: List[Touchpoint]) -> List[Touchpoint]:
    """
    Sort touchpoints by timestamp, then store sequence, then list position.

    A touchpoint without a sequence uses its position in the supplied list.
    """
    indexed = list(enumerate(touchpoints))
    indexed.sort(key=lambda item: (
        item[1].created_at,
        item[1].sequence if item[1].sequence is not None else item[0],
        item[0],
    ))
    return [tp for _, tp in indexed]


class AttributionEngine:
    """
    Calculate attribution splits for a deal.

    This engine is stateless - it takes inputs (deal, touchpoints, model)
    and returns outputs (attribution rows). No database dependencies.
    """

    def __init__(
        self,
        half_life_days: float = TIME_DECAY_HALF_LIFE_DAYS,
        role_weights: Optional[Mapping[str, float]] = None
    ):
        if not math.isfinite(half_life_days) or half_life_days <= 0:
            raise ConfigurationError("'half_life_days' must be a positive finite number", setting_key="time_decay_half_life_days")

        weights = dict(DEFAULT_ROLE_WEIGHTS)
        if role_weights:
            weights.update({getattr(k, "value", k): v for k, v in role_weights.items()})
        is_valid, error = validate_role_weights(weights)
        if not is_valid:
            raise ConfigurationError(error, setting_key="role_weights")

        self.half_life_days = half_life_days
        self.role_weights = weights

    def calculate(
        self,
        deal: Deal,
        touchpoints: List[Touchpoint],
        model: Union[str, AttributionModel]
    ) -> List[AttributionRow]:
        """
        Main entry point: calculate attribution for a deal under one model.

        Args:
            deal: The deal whose amount is being split
            touchpoints: Partner interactions (may be empty)
            model: Attribution model name

        Returns:
            One AttributionRow per partner getting credit, ordered by each
            partner's first touchpoint. Empty if there are no touchpoints.
        """
        model = parse_model(model)

        if deal.amount is None or deal.amount <= 0:
            raise InvalidDealError(
                f"Deal amount must be positive (got {deal.amount})",
                deal_id=deal.id, field="amount", value=deal.amount
            )

        if not touchpoints:
            logger.debug(f"Deal {deal.id} has no touchpoints; no attribution for {model.value}")
            return []

        ordered = order_touchpoints(touchpoints)
        shares = self._calculate_shares(deal, ordered, model)
        percentages = allocate_percentages(shares)
        amount = to_decimal(deal.amount)

        rows = []
        for partner_id, pct in percentages.items():
            attributed = (pct * amount / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
            rows.append(AttributionRow(
                partner_id=partner_id,
                percentage=float(pct),
                attributed_amount=float(attributed),
                explanation=self._explain_calculation(partner_id, pct, model, ordered),
            ))

        logger.debug(f"Deal {deal.id} {model.value}: {len(rows)} partners credited")
        return rows

    def calculate_all_models(self, deal: Deal, touchpoints: List[Touchpoint]) -> Dict[AttributionModel, List[AttributionRow]]:
        """Run every supported model for a deal."""
        return {model: self.calculate(deal, touchpoints, model) for model in AttributionModel}

    def _calculate_shares(
        self,
        deal: Deal,
        touchpoints: List[Touchpoint],
        model: AttributionModel
    ) -> Dict[str, float]:
        """
        Calculate raw (unnormalized) shares per partner.

        Returns: {partner_id: raw_weight}, in first-appearance order
        """
        if model == AttributionModel.EQUAL_SPLIT:
            return self._equal_split(touchpoints)

        elif model == AttributionModel.FIRST_TOUCH:
            return {touchpoints[0].partner_id: 1.0}

        elif model == AttributionModel.LAST_TOUCH:
            return {touchpoints[-1].partner_id: 1.0}

        elif model == AttributionModel.TIME_DECAY:
            return self._time_decay(deal, touchpoints)

        elif model == AttributionModel.ROLE_BASED:
            return self._role_based(touchpoints)

        raise UnknownModelError(model.value)

    # ========================================================================
    # Calculation Methods (one per attribution model)
    # ========================================================================

    def _equal_split(self, touchpoints: List[Touchpoint]) -> Dict[str, float]:
        """
        Divide credit evenly among distinct partners.

        Example: touchpoints from A, A, B → A and B get 50% each
        """
        shares = {}
        for tp in touchpoints:
            shares.setdefault(tp.partner_id, 1.0)
        return shares

    def _time_decay(self, deal: Deal, touchpoints: List[Touchpoint]) -> Dict[str, float]:
        """
        More recent touchpoints get more credit.

        Formula: weight = 2 ^ (-age_days / half_life_days), with age measured
        back from the deal's close time (or the latest touchpoint if the deal
        has no close time).
        """
        reference = deal.close_reference or touchpoints[-1].created_at

        weights: Dict[str, float] = {}
        for tp in touchpoints:
            age_days = days_between(tp.created_at, reference)
            weights[tp.partner_id] = weights.get(tp.partner_id, 0.0) + decay_weight(age_days, self.half_life_days)

        return self._or_equal_split(weights, touchpoints)

    def _role_based(self, touchpoints: List[Touchpoint]) -> Dict[str, float]:
        """
        Weight by touchpoint type.

        Raw weight = canonical type weight x explicit touchpoint weight (if set).
        """
        weights: Dict[str, float] = {}
        for tp in touchpoints:
            canonical = self.role_weights.get(tp.type_value, DEFAULT_UNKNOWN_TYPE_WEIGHT)
            override = 1.0 if tp.weight is None else tp.weight
            if override < 0:
                logger.warning(f"Touchpoint {tp.id} has negative weight {override}; counting it as 0")
                override = 0.0
            weights[tp.partner_id] = weights.get(tp.partner_id, 0.0) + canonical * override

        return self._or_equal_split(weights, touchpoints)

    def _or_equal_split(self, weights: Dict[str, float], touchpoints: List[Touchpoint]) -> Dict[str, float]:
        if sum(weights.values()) <= 0:
            # All weights zero - fall back to equal split
            logger.debug("All raw weights are zero; falling back to equal split")
            return self._equal_split(touchpoints)
        return weights

    def _explain_calculation(
        self,
        partner_id: str,
        pct: Decimal,
        model: AttributionModel,
        touchpoints: List[Touchpoint]
    ) -> str:
        """Generate human-readable explanation of how this split was calculated."""
        partner_tps = [tp for tp in touchpoints if tp.partner_id == partner_id]

        if model == AttributionModel.EQUAL_SPLIT:
            partner_count = len({tp.partner_id for tp in touchpoints})
            return f"Equal split among {partner_count} partners → {pct}%"

        elif model == AttributionModel.FIRST_TOUCH:
            return "First touch (earliest partner) → 100%"

        elif model == AttributionModel.LAST_TOUCH:
            return "Last touch (most recent partner) → 100%"

        elif model == AttributionModel.TIME_DECAY:
            return f"Time-decay ({self.half_life_days:g}d half-life), {len(partner_tps)} touchpoints → {pct}%"

        types = ", ".join(tp.type_value for tp in partner_tps)
        return f"Role-based: {types} → {pct}%"


# ============================================================================
# Utility Functions
# ============================================================================

def allocate_percentages(shares: Dict[str, float]) -> Dict[str, Decimal]:
    """
    Turn raw shares into 2-decimal percentages summing to exactly 100.00.

    Percentages are computed at full precision and rounded half-up; the
    largest rounded share (first one on ties) absorbs the residual.
    """
    total = sum(shares.values())
    if not shares or total <= 0:
        return {}

    rounded = {
        pid: to_decimal(100.0 * share / total).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)
        for pid, share in shares.items()
    }

    residual = HUNDRED - sum(rounded.values())
    if residual != 0:
        largest = max(rounded, key=lambda pid: rounded[pid])
        rounded[largest] += residual

    return rounded


def get_model_description(model: Union[str, AttributionModel]) -> str:
    """Human-readable description of an attribution model."""
    return MODEL_DESCRIPTIONS[parse_model(model)]


def list_models() -> List[Dict[str, Any]]:
    """List all available attribution models with their descriptions."""
    return [
        {"model": model.value, "description": MODEL_DESCRIPTIONS[model]}
        for model in AttributionModel
    ]


def get_partner_attribution_summary(rows: List[AttributionRow]) -> Dict[str, Dict[str, Any]]:
    """
    Summarize attribution rows by partner.

    Returns:
        {
            "partner_123": {
                "attributed_amount": 50000.0,
                "percentage_total": 50.0,
                "row_count": 1
            },
            ...
        }
    """
    summary: Dict[str, Dict[str, Any]] = {}

    for row in rows:
        entry = summary.setdefault(row.partner_id, {
            "attributed_amount": Decimal("0"),
            "percentage_total": Decimal("0"),
            "row_count": 0,
        })
        entry["attributed_amount"] += to_decimal(row.attributed_amount)
        entry["percentage_total"] += to_decimal(row.percentage)
        entry["row_count"] += 1

    for entry in summary.values():
        entry["attributed_amount"] = float(entry["attributed_amount"])
        entry["percentage_total"] = float(entry["percentage_total"])

    return summary
