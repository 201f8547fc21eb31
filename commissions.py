"""
Commission Calculator
=====================

Composes attribution with rule resolution: each partner credited on a won
deal earns attributed_amount x resolved_rate, rounded to cents half-up.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP
from typing import List, Mapping, Optional, Sequence, Union

from attribution_engine import AttributionEngine, parse_model
from exceptions import InvalidDealError
from models import (
    Attribution,
    AttributionModel,
    CommissionRow,
    CommissionRule,
    Deal,
    DealStatus,
    Partner,
    PayoutCandidate,
    Touchpoint,
)
from rules import CommissionRuleResolver, lookup_partner
from utils import CENT, to_decimal

logger = logging.getLogger(__name__)


def index_partners(partners: Union[Mapping[str, Partner], Sequence[Partner]]) -> Mapping[str, Partner]:
    """Accept either a {partner_id: Partner} mapping or a list of partners."""
    if isinstance(partners, Mapping):
        return partners
    return {p.id: p for p in partners}


class CommissionCalculator:
    """Per-partner commission amounts for a won deal."""

    def __init__(
        self,
        attribution_engine: Optional[AttributionEngine] = None,
        resolver: Optional[CommissionRuleResolver] = None
    ):
        self.attribution_engine = attribution_engine or AttributionEngine()
        self.resolver = resolver or CommissionRuleResolver()

    def calculate(
        self,
        deal: Deal,
        touchpoints: List[Touchpoint],
        rules: List[CommissionRule],
        partners: Union[Mapping[str, Partner], Sequence[Partner]],
        model: Union[str, AttributionModel]
    ) -> List[CommissionRow]:
        """
        Compute commission rows for a deal under one attribution model.

        Precondition: deal.status is won. Commissions on open or lost deals
        are meaningless, so this raises InvalidDealError rather than guess.
        Every credited partner must be present in `partners`; nothing is
        returned unless every row can be computed.
        """
        model = parse_model(model)

        if deal.status != DealStatus.WON:
            raise InvalidDealError(
                f"Commissions can only be computed for won deals (deal {deal.id} is {getattr(deal.status, 'value', deal.status)})",
                deal_id=deal.id, field="status", value=getattr(deal.status, "value", deal.status)
            )

        partners_by_id = index_partners(partners)
        attribution_rows = self.attribution_engine.calculate(deal, touchpoints, model)

        # Resolve every partner before producing any output
        matches = {}
        for row in attribution_rows:
            partner = lookup_partner(row.partner_id, partners_by_id)
            matches[row.partner_id] = self.resolver.resolve(partner, deal.amount, rules, deal.product_line)

        commission_rows = []
        for row in attribution_rows:
            match = matches[row.partner_id]
            commission = (to_decimal(row.attributed_amount) * to_decimal(match.effective_rate)).quantize(
                CENT, rounding=ROUND_HALF_UP
            )
            commission_rows.append(CommissionRow(
                partner_id=row.partner_id,
                percentage=row.percentage,
                attributed_amount=row.attributed_amount,
                commission_amount=float(commission),
                applied_rule_name=match.rule_name,
                rate=match.effective_rate,
                rule_id=match.rule.id,
            ))

        logger.debug(f"Deal {deal.id} {model.value}: commissions for {len(commission_rows)} partners")
        return commission_rows


def to_attribution_records(
    deal: Deal,
    rows: List[CommissionRow],
    model: Union[str, AttributionModel],
    computed_at: datetime
) -> List[Attribution]:
    """Persistable attribution records for one (deal, model) pair."""
    model = parse_model(model)
    return [
        Attribution(
            organization_id=deal.organization_id,
            deal_id=deal.id,
            partner_id=row.partner_id,
            model=model,
            percentage=row.percentage,
            attributed_amount=row.attributed_amount,
            commission_amount=row.commission_amount,
            computed_at=computed_at,
            applied_rule_name=row.applied_rule_name,
        )
        for row in rows
    ]


def build_payout_candidates(
    deal: Deal,
    rows: List[CommissionRow],
    model: Union[str, AttributionModel]
) -> List[PayoutCandidate]:
    """Pending payouts for every row that earned a positive commission."""
    model = parse_model(model)
    return [
        PayoutCandidate(
            organization_id=deal.organization_id,
            deal_id=deal.id,
            partner_id=row.partner_id,
            amount=row.commission_amount,
            model=model,
            rule_name=row.applied_rule_name,
        )
        for row in rows
        if row.commission_amount > 0
    ]
