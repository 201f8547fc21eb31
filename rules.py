"""Commission rule resolution: first matching rule by priority, else the partner default."""

import json
import hashlib
import logging
from typing import Optional, List, Mapping

from exceptions import InvalidDealError, PartnerNotFoundError, ValidationError
from models import (
    CommissionRule,
    Partner,
    RuleMatch,
    DEFAULT_RULE_NAME,
    DEFAULT_RULE_PRIORITY,
)

logger = logging.getLogger(__name__)


def sort_rules(rules: List[CommissionRule]) -> List[CommissionRule]:
    """Order rules by priority, then insertion sequence (a stable total order)."""
    return sorted(rules, key=lambda r: r.sort_key)


def lookup_partner(partner_id: str, partners_by_id: Mapping[str, Partner]) -> Partner:
    partner = partners_by_id.get(partner_id)
    if partner is None:
        raise PartnerNotFoundError(partner_id)
    return partner


def default_rule_for(partner: Partner) -> CommissionRule:
    """Synthetic rule carrying the partner's own base rate."""
    return CommissionRule(
        id=None,
        organization_id=partner.organization_id,
        name=DEFAULT_RULE_NAME,
        rate=partner.commission_rate,
        priority=DEFAULT_RULE_PRIORITY,
    )


class CommissionRuleResolver:
    """
    Resolve which commission rule applies to a partner/deal pair.

    First-match, not best-match: rule authors give specific rules lower
    priority numbers. Resolution is a pure function of its inputs.
    """

    def resolve(
        self,
        partner: Optional[Partner],
        deal_amount: float,
        rules: List[CommissionRule],
        product_line: Optional[str] = None
    ) -> RuleMatch:
        """
        Return the first matching rule in (priority, sequence) order.

        If no rule matches, the synthetic default rule with the partner's
        base commission rate is returned. Every rule is checked with
        ``validate_rule`` first; an invalid one raises ValidationError.
        """
        if partner is None:
            raise PartnerNotFoundError("<missing>")

        if deal_amount is None or deal_amount < 0:
            raise InvalidDealError(
                f"Deal amount cannot be negative (got {deal_amount})",
                field="amount", value=deal_amount
            )

        for rule in rules:
            is_valid, error = validate_rule(rule)
            if not is_valid:
                raise ValidationError(f"Invalid commission rule '{rule.name}': {error}", field="rule", value=rule.id)

        for rule in sort_rules(rules):
            if rule.organization_id != partner.organization_id:
                logger.debug(f"Skipping rule {rule.name}: belongs to organization {rule.organization_id}")
                continue

            if rule.matches(partner, deal_amount, product_line):
                logger.debug(f"Rule {rule.name} (priority {rule.priority}) matched partner {partner.id}")
                return RuleMatch(rule=rule, effective_rate=rule.rate)

        logger.debug(f"No matching rule for partner {partner.id}; partner default applied")
        default = default_rule_for(partner)
        return RuleMatch(rule=default, effective_rate=default.rate)

    def resolve_by_id(
        self,
        partner_id: str,
        partners_by_id: Mapping[str, Partner],
        deal_amount: float,
        rules: List[CommissionRule],
        product_line: Optional[str] = None
    ) -> RuleMatch:
        return self.resolve(lookup_partner(partner_id, partners_by_id), deal_amount, rules, product_line)


def validate_rule(rule: CommissionRule) -> tuple[bool, Optional[str]]:
    """
    Validate a commission rule.

    Returns: (is_valid, error_message)
    """
    if not rule.name or not rule.name.strip():
        return False, "Rule name is required"
    if not isinstance(rule.rate, (int, float)):
        return False, "'rate' must be numeric"
    if not 0 <= rule.rate <= 1:
        return False, f"'rate' must be between 0 and 1 (got {rule.rate})"
    if isinstance(rule.priority, bool) or not isinstance(rule.priority, int):
        return False, "'priority' must be an integer"
    if rule.min_deal_size is not None and not rule.min_deal_size >= 0:
        return False, "'min_deal_size' cannot be negative"
    return True, None


def rule_set_version(rules: List[CommissionRule]) -> str:
    """Short digest of the ordered rule set, recorded alongside computed commissions."""
    payload = [
        {
            "id": r.id,
            "priority": r.priority,
            "sequence": r.sequence,
            "rate": r.rate,
            "partner_type": getattr(r.partner_type, "value", r.partner_type),
            "partner_tier": getattr(r.partner_tier, "value", r.partner_tier),
            "product_line": r.product_line,
            "min_deal_size": r.min_deal_size,
        }
        for r in sort_rules(rules)
    ]
    raw = json.dumps(payload, sort_keys=True)
    return hashlib.md5(raw.encode()).hexdigest()[:8]
