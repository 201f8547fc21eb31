"""
Public engine operations.

Each operation is pure and returns an EngineResult: either a complete,
invariant-satisfying value or a typed failure. Engine errors never escape
as exceptions into caller business logic; an empty touchpoint list or an
empty peer population is a successful empty result, not a failure.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from attribution_engine import AttributionEngine
from commissions import CommissionCalculator
from exceptions import AttributionError
from models import (
    Attribution,
    AttributionModel,
    CommissionRule,
    Deal,
    EngineResult,
    Partner,
    ScoringConfig,
    Touchpoint,
)
from rules import CommissionRuleResolver
from scoring import PartnerScorecardEngine

logger = logging.getLogger(__name__)


def _run(operation: str, fn: Callable, *args, **kwargs) -> EngineResult:
    try:
        return EngineResult.success(fn(*args, **kwargs))
    except AttributionError as e:
        logger.warning(f"{operation} failed ({e.code}): {e.message}")
        return EngineResult.failure(e)


def compute_attribution(
    deal: Deal,
    touchpoints: List[Touchpoint],
    model: Union[str, AttributionModel],
    half_life_days: Optional[float] = None,
    role_weights: Optional[Mapping[str, float]] = None
) -> EngineResult:
    """Attribution rows for one model; percentages sum to exactly 100.00."""
    def run():
        options = {"role_weights": role_weights}
        if half_life_days is not None:
            options["half_life_days"] = half_life_days
        return AttributionEngine(**options).calculate(deal, touchpoints, model)

    return _run("compute_attribution", run)


def resolve_rule(
    partner: Optional[Partner],
    deal_amount: float,
    rules: List[CommissionRule],
    product_line: Optional[str] = None
) -> EngineResult:
    """The matched rule (or the partner default) and its effective rate."""
    return _run("resolve_rule", CommissionRuleResolver().resolve, partner, deal_amount, rules, product_line)


def compute_commissions(
    deal: Deal,
    touchpoints: List[Touchpoint],
    rules: List[CommissionRule],
    partners: Union[Mapping[str, Partner], Sequence[Partner]],
    model: Union[str, AttributionModel],
    attribution_engine: Optional[AttributionEngine] = None
) -> EngineResult:
    """Per-partner commission rows for a won deal."""
    def run():
        calculator = CommissionCalculator(attribution_engine=attribution_engine)
        return calculator.calculate(deal, touchpoints, rules, partners, model)

    return _run("compute_commissions", run)


def score(
    partner: Partner,
    deals: List[Deal],
    touchpoints: List[Touchpoint],
    attributions: List[Attribution],
    config: Optional[ScoringConfig] = None,
    peers: Optional[List[Partner]] = None,
    prior_score: Optional[float] = None,
    as_of: Optional[datetime] = None
) -> EngineResult:
    """One partner's scorecard, scaled against `peers`."""
    def run():
        return PartnerScorecardEngine(config).score(
            partner, deals, touchpoints, attributions,
            peers=peers, prior_score=prior_score, as_of=as_of
        )

    return _run("score", run)


def score_all(
    partners: List[Partner],
    deals: List[Deal],
    touchpoints: List[Touchpoint],
    attributions: List[Attribution],
    config: Optional[ScoringConfig] = None,
    prior_scores: Optional[Dict[str, float]] = None,
    as_of: Optional[datetime] = None
) -> EngineResult:
    """Ranked scorecards for the whole peer population."""
    def run():
        return PartnerScorecardEngine(config).score_all(
            partners, deals, touchpoints, attributions,
            prior_scores=prior_scores, as_of=as_of
        )

    return _run("score_all", run)
