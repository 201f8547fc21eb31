"""
Partner Scorecard Engine
========================

Composite partner scores used by the tier-review workflow.

Four dimensions, each 0-100 relative to the scored peer population:
- Revenue Impact - attributed revenue from won deals (vs. top peer)
- Pipeline Contribution - value of open deals the partner is on (vs. top peer)
- Engagement - touchpoint frequency and recency, half-life decayed (vs. top peer)
- Deal Velocity - average days to close, fastest peer = 100, slowest = 0

The weighted composite maps onto tier thresholds to recommend an
upgrade, downgrade or no change.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Dict, Optional, Set

from models import (
    Attribution,
    Deal,
    DealStatus,
    Partner,
    PartnerScore,
    PartnerStatus,
    PartnerTier,
    ScoreDimension,
    ScoringConfig,
    TierChange,
    Touchpoint,
    Trend,
    DIMENSION_LABELS,
    SCORE_DIMENSIONS,
    TIER_ORDER,
)
from utils import (
    clamp,
    days_between,
    decay_weight,
    format_currency,
    normalize_weights,
    round_currency,
    round_half_up,
)

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_DAYS = 30
HIGH_PIPELINE_VALUE = 100000
TOP_PERFORMER_SCORE = 80


class PartnerScorecardEngine:
    """Score partners against each other. Pure: no I/O, no wall-clock reads."""

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()
        self.config.validate()

    def score_all(
        self,
        partners: List[Partner],
        deals: List[Deal],
        touchpoints: List[Touchpoint],
        attributions: List[Attribution],
        prior_scores: Optional[Dict[str, float]] = None,
        as_of: Optional[datetime] = None
    ) -> List[PartnerScore]:
        """
        Score every non-inactive partner, ranked by overall score.

        Scaling denominators are computed once over the whole population so
        every partner is measured against the same peers.
        """
        population = [p for p in partners if p.status != PartnerStatus.INACTIVE]
        return self._score_population(population, deals, touchpoints, attributions, prior_scores, as_of)

    def score(
        self,
        partner: Partner,
        deals: List[Deal],
        touchpoints: List[Touchpoint],
        attributions: List[Attribution],
        peers: Optional[List[Partner]] = None,
        prior_score: Optional[float] = None,
        as_of: Optional[datetime] = None
    ) -> PartnerScore:
        """Score one partner within its peer set (the partner alone if no peers are given)."""
        population = [p for p in (peers or []) if p.status != PartnerStatus.INACTIVE and p.id != partner.id]
        population.append(partner)

        prior_scores = {partner.id: prior_score} if prior_score is not None else None
        scores = self._score_population(population, deals, touchpoints, attributions, prior_scores, as_of)
        return next(s for s in scores if s.partner_id == partner.id)

    # ========================================================================
    # Population scoring
    # ========================================================================

    def _score_population(
        self,
        population: List[Partner],
        deals: List[Deal],
        touchpoints: List[Touchpoint],
        attributions: List[Attribution],
        prior_scores: Optional[Dict[str, float]],
        as_of: Optional[datetime]
    ) -> List[PartnerScore]:
        if not population:
            return []

        prior_scores = prior_scores or {}
        as_of = as_of or _latest_timestamp(deals, touchpoints, attributions)
        weights = normalize_weights(self.config.weights)
        partner_ids = [p.id for p in population]

        deal_ids_by_partner = _deal_ids_by_partner(deals, touchpoints)
        revenue = _revenue_by_partner(deals, attributions, self.config)
        pipeline = {pid: _pipeline_value(pid, deals, deal_ids_by_partner) for pid in partner_ids}
        engagement = {pid: _engagement_value(pid, touchpoints, as_of, self.config) for pid in partner_ids}
        velocity = {pid: _average_days_to_close(pid, deals, deal_ids_by_partner) for pid in partner_ids}

        max_revenue = max((revenue.get(pid, 0.0) for pid in partner_ids), default=0.0)
        max_pipeline = max(pipeline.values(), default=0.0)
        max_engagement = max(engagement.values(), default=0.0)
        closers = [v for v in velocity.values() if v is not None]
        fastest = min(closers) if closers else None
        slowest = max(closers) if closers else None

        scores = []
        for partner in population:
            pid = partner.id
            partner_revenue = revenue.get(pid, 0.0)
            partner_deal_ids = deal_ids_by_partner.get(pid, set())
            partner_tps = [tp for tp in touchpoints if tp.partner_id == pid]

            raw = {
                "revenue": _scale_to_max(partner_revenue, max_revenue),
                "pipeline": _scale_to_max(pipeline[pid], max_pipeline),
                "engagement": _scale_to_max(engagement[pid], max_engagement),
                "velocity": _scale_velocity(velocity[pid], fastest, slowest),
            }

            won_count = sum(1 for d in deals if d.id in partner_deal_ids and d.status == DealStatus.WON)
            open_count = sum(1 for d in deals if d.id in partner_deal_ids and d.status == DealStatus.OPEN)
            recent_count = _recent_touchpoint_count(partner_tps, as_of)

            details = {
                "revenue": f"{format_currency(partner_revenue)} attributed revenue ({won_count} won deals)",
                "pipeline": f"{format_currency(pipeline[pid])} in {open_count} open deals",
                "engagement": f"{recent_count} touchpoints (last {RECENT_ACTIVITY_DAYS}d), {len(partner_tps)} total",
                "velocity": (
                    f"{round(velocity[pid])} avg days to close"
                    if velocity[pid] is not None else "No closed deals yet"
                ),
            }

            dimensions = {
                dim: ScoreDimension(
                    score=round_half_up(raw[dim], 1),
                    weight=weights[dim],
                    label=DIMENSION_LABELS[dim],
                    detail=details[dim],
                )
                for dim in SCORE_DIMENSIONS
            }

            composite = sum(raw[dim] * weights[dim] for dim in SCORE_DIMENSIONS)
            overall = int(round_half_up(clamp(composite), 0))

            current_tier = partner.effective_tier
            recommended_tier = self.recommend_tier(overall)
            tier_change = classify_tier_change(current_tier, recommended_tier)
            trend = self.determine_trend(overall, prior_scores.get(pid))

            scores.append(PartnerScore(
                partner_id=pid,
                partner_name=partner.name,
                current_tier=current_tier,
                overall_score=overall,
                dimensions=dimensions,
                recommended_tier=recommended_tier,
                tier_change=tier_change,
                trend=trend,
                highlights=generate_highlights(
                    partner, overall, recommended_tier, recent_count,
                    len(partner_tps), pipeline[pid], partner_revenue
                ),
                total_attributed_revenue=partner_revenue,
            ))

        # Sort by overall score, then revenue, then id; assign ranks
        scores.sort(key=lambda s: (-s.overall_score, -s.total_attributed_revenue, s.partner_id))
        for i, s in enumerate(scores):
            s.rank = i + 1

        logger.debug(f"Scored {len(scores)} partners as of {as_of}")
        return scores

    def recommend_tier(self, overall_score: float) -> PartnerTier:
        thresholds = self.config.tier_thresholds
        if overall_score >= thresholds["platinum"]:
            return PartnerTier.PLATINUM
        elif overall_score >= thresholds["gold"]:
            return PartnerTier.GOLD
        elif overall_score >= thresholds["silver"]:
            return PartnerTier.SILVER
        return PartnerTier.BRONZE

    def determine_trend(self, current: float, prior: Optional[float]) -> Trend:
        """Compare against the prior-period score; stable when there is none."""
        if prior is None:
            return Trend.STABLE
        if current > prior + self.config.trend_tolerance:
            return Trend.UP
        if current < prior - self.config.trend_tolerance:
            return Trend.DOWN
        return Trend.STABLE


# ============================================================================
# Dimension helpers
# ============================================================================

def classify_tier_change(current: PartnerTier, recommended: PartnerTier) -> TierChange:
    current_idx = TIER_ORDER.index(PartnerTier(current))
    recommended_idx = TIER_ORDER.index(PartnerTier(recommended))
    if recommended_idx > current_idx:
        return TierChange.UPGRADE
    if recommended_idx < current_idx:
        return TierChange.DOWNGRADE
    return TierChange.MAINTAIN


def _scale_to_max(value: float, max_value: float) -> float:
    if max_value <= 0:
        return 0.0
    return clamp(100.0 * value / max_value)


def _scale_velocity(avg_days: Optional[float], fastest: Optional[float], slowest: Optional[float]) -> float:
    """Fastest closer scores 100, slowest 0; no closed deals scores 0."""
    if avg_days is None:
        return 0.0
    if slowest == fastest:
        return 100.0
    return clamp(100.0 * (slowest - avg_days) / (slowest - fastest))


def _latest_timestamp(
    deals: List[Deal],
    touchpoints: List[Touchpoint],
    attributions: List[Attribution]
) -> Optional[datetime]:
    stamps = [tp.created_at for tp in touchpoints]
    stamps.extend(d.created_at for d in deals)
    stamps.extend(d.closed_at for d in deals if d.closed_at)
    stamps.extend(a.computed_at for a in attributions)
    return max(stamps) if stamps else None


def _deal_ids_by_partner(deals: List[Deal], touchpoints: List[Touchpoint]) -> Dict[str, Set[str]]:
    """A partner is on a deal if it touched it or registered it."""
    linked: Dict[str, Set[str]] = {}
    for tp in touchpoints:
        linked.setdefault(tp.partner_id, set()).add(tp.deal_id)
    for deal in deals:
        if deal.registered_by:
            linked.setdefault(deal.registered_by, set()).add(deal.id)
    return linked


def _revenue_by_partner(
    deals: List[Deal],
    attributions: List[Attribution],
    config: ScoringConfig
) -> Dict[str, float]:
    """
    Attributed revenue under the configured model, from won deals only.

    Rows for deals missing from ``deals`` are skipped.
    """
    status_by_deal = {d.id: d.status for d in deals}
    revenue: Dict[str, float] = {}
    for a in attributions:
        if a.model != config.revenue_model:
            continue
        status = status_by_deal.get(a.deal_id)
        if status != DealStatus.WON:
            continue
        revenue[a.partner_id] = revenue.get(a.partner_id, 0.0) + a.attributed_amount
    return {pid: round_currency(total) for pid, total in revenue.items()}


def _pipeline_value(partner_id: str, deals: List[Deal], deal_ids_by_partner: Dict[str, Set[str]]) -> float:
    deal_ids = deal_ids_by_partner.get(partner_id, set())
    return sum(d.amount for d in deals if d.id in deal_ids and d.status == DealStatus.OPEN)


def _engagement_value(
    partner_id: str,
    touchpoints: List[Touchpoint],
    as_of: Optional[datetime],
    config: ScoringConfig
) -> float:
    """Each touchpoint counts 1.0 when fresh, halving every half-life."""
    if as_of is None:
        return 0.0
    return sum(
        decay_weight(days_between(tp.created_at, as_of), config.engagement_half_life_days)
        for tp in touchpoints
        if tp.partner_id == partner_id
    )


def _average_days_to_close(
    partner_id: str,
    deals: List[Deal],
    deal_ids_by_partner: Dict[str, Set[str]]
) -> Optional[float]:
    deal_ids = deal_ids_by_partner.get(partner_id, set())
    durations = [
        max(days_between(d.created_at, d.close_reference), 0.0)
        for d in deals
        if d.id in deal_ids and d.status == DealStatus.WON and d.close_reference
    ]
    if not durations:
        return None
    return sum(durations) / len(durations)


def _recent_touchpoint_count(touchpoints: List[Touchpoint], as_of: Optional[datetime]) -> int:
    if as_of is None:
        return 0
    cutoff = as_of - timedelta(days=RECENT_ACTIVITY_DAYS)
    return sum(1 for tp in touchpoints if tp.created_at >= cutoff)


def generate_highlights(
    partner: Partner,
    score: int,
    recommended_tier: PartnerTier,
    recent_count: int,
    total_count: int,
    pipeline_value: float,
    total_revenue: float
) -> List[str]:
    """Actionable insights for the tier-review screen."""
    highlights = []
    current = partner.effective_tier

    change = classify_tier_change(current, recommended_tier)
    if change == TierChange.UPGRADE:
        highlights.append(f"Ready for tier upgrade: {current.value} → {recommended_tier.value}")
    elif change == TierChange.DOWNGRADE:
        highlights.append(f"Tier at risk: {current.value} → {recommended_tier.value}")

    if recent_count == 0 and total_count > 0:
        highlights.append(f"No activity in last {RECENT_ACTIVITY_DAYS} days; needs re-engagement")

    if pipeline_value > HIGH_PIPELINE_VALUE:
        highlights.append(f"High pipeline value ({format_currency(pipeline_value)}); prioritize support")

    if score >= TOP_PERFORMER_SCORE:
        highlights.append("Top performer: consider for co-marketing or advisory board")

    if total_revenue == 0 and partner.status == PartnerStatus.ACTIVE:
        highlights.append("Active but no attributed revenue yet; review enablement needs")

    if partner.status == PartnerStatus.PENDING:
        highlights.append("Onboarding in progress; ensure enablement materials sent")

    return highlights
