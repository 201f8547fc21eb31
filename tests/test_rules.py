"""Tests for commission rule resolution."""

import pytest

from exceptions import InvalidDealError, PartnerNotFoundError, ValidationError
from models import CommissionRule, Partner, PartnerTier, PartnerType, DEFAULT_RULE_PRIORITY
from rules import CommissionRuleResolver, rule_set_version, sort_rules, validate_rule


def make_partner(partner_id="P1", tier=PartnerTier.GOLD, partner_type=PartnerType.RESELLER, rate=0.10, org="ORG1"):
    return Partner(
        id=partner_id,
        organization_id=org,
        name=f"Partner {partner_id}",
        type=partner_type,
        commission_rate=rate,
        tier=tier,
    )


def make_rule(rule_id, priority, rate, sequence=0, org="ORG1", **filters):
    return CommissionRule(
        id=rule_id,
        organization_id=org,
        name=f"Rule {rule_id}",
        rate=rate,
        priority=priority,
        sequence=sequence,
        **filters
    )


@pytest.fixture
def resolver():
    return CommissionRuleResolver()


@pytest.fixture
def tiered_rules():
    return [
        make_rule("catch-all", 2, 0.05, sequence=1),
        make_rule("gold", 1, 0.20, sequence=2, partner_tier=PartnerTier.GOLD),
    ]


def test_gold_partner_gets_priority_one_rule(resolver, tiered_rules):
    match = resolver.resolve(make_partner(tier=PartnerTier.GOLD), 50000, tiered_rules)

    assert match.rule.id == "gold"
    assert match.effective_rate == 0.20
    assert match.is_default is False


def test_silver_partner_falls_through_to_catch_all(resolver, tiered_rules):
    match = resolver.resolve(make_partner(tier=PartnerTier.SILVER), 50000, tiered_rules)

    assert match.rule.id == "catch-all"
    assert match.effective_rate == 0.05


def test_empty_rule_set_returns_partner_default(resolver):
    partner = make_partner(rate=0.12)

    match = resolver.resolve(partner, 50000, [])

    assert match.is_default is True
    assert match.rule_name == "Default"
    assert match.rule.priority == DEFAULT_RULE_PRIORITY
    assert match.effective_rate == 0.12


def test_no_matching_rule_returns_partner_default(resolver):
    rules = [make_rule("integration-only", 1, 0.3, partner_type=PartnerType.INTEGRATION)]

    match = resolver.resolve(make_partner(rate=0.08), 50000, rules)

    assert match.is_default is True
    assert match.effective_rate == 0.08


def test_min_deal_size_is_inclusive(resolver):
    rules = [make_rule("enterprise", 1, 0.25, min_deal_size=100000)]
    partner = make_partner()

    assert resolver.resolve(partner, 100000, rules).rule.id == "enterprise"
    assert resolver.resolve(partner, 99999.99, rules).is_default is True


def test_product_line_filter(resolver):
    rules = [make_rule("analytics", 1, 0.3, product_line="analytics")]
    partner = make_partner()

    assert resolver.resolve(partner, 1000, rules, product_line="analytics").rule.id == "analytics"
    assert resolver.resolve(partner, 1000, rules, product_line="storage").is_default is True
    assert resolver.resolve(partner, 1000, rules).is_default is True


def test_all_filters_must_match(resolver):
    rules = [
        make_rule(
            "specific", 1, 0.4,
            partner_type=PartnerType.RESELLER,
            partner_tier=PartnerTier.GOLD,
            product_line="analytics",
            min_deal_size=10000,
        ),
    ]

    assert resolver.resolve(make_partner(), 20000, rules, "analytics").rule.id == "specific"
    assert resolver.resolve(make_partner(partner_type=PartnerType.AFFILIATE), 20000, rules, "analytics").is_default


def test_same_priority_resolves_by_insertion_order(resolver):
    rules = [
        make_rule("second", 1, 0.15, sequence=2),
        make_rule("first", 1, 0.10, sequence=1),
    ]

    assert resolver.resolve(make_partner(), 1000, rules).rule.id == "first"
    assert [r.id for r in sort_rules(rules)] == ["first", "second"]


def test_missing_tier_matches_bronze_rules(resolver):
    rules = [make_rule("bronze", 1, 0.07, partner_tier=PartnerTier.BRONZE)]

    assert resolver.resolve(make_partner(tier=None), 1000, rules).rule.id == "bronze"


def test_rules_from_other_organizations_are_ignored(resolver):
    rules = [make_rule("foreign", 1, 0.5, org="ORG2")]

    assert resolver.resolve(make_partner(org="ORG1"), 1000, rules).is_default is True


def test_resolution_is_repeatable(resolver, tiered_rules):
    partner = make_partner()
    first = resolver.resolve(partner, 5000, tiered_rules)
    second = resolver.resolve(partner, 5000, tiered_rules)
    assert first == second


def test_negative_amount_raises(resolver):
    with pytest.raises(InvalidDealError):
        resolver.resolve(make_partner(), -1, [])


def test_missing_partner_raises(resolver):
    with pytest.raises(PartnerNotFoundError):
        resolver.resolve(None, 1000, [])

    with pytest.raises(PartnerNotFoundError) as exc:
        resolver.resolve_by_id("P404", {"P1": make_partner()}, 1000, [])
    assert exc.value.partner_id == "P404"


def test_resolve_by_id(resolver, tiered_rules):
    partners = {"P1": make_partner()}
    assert resolver.resolve_by_id("P1", partners, 1000, tiered_rules).rule.id == "gold"


def test_validate_rule():
    assert validate_rule(make_rule("ok", 1, 0.2)) == (True, None)

    is_valid, error = validate_rule(make_rule("too-high", 1, 1.5))
    assert is_valid is False
    assert "between 0 and 1" in error

    assert validate_rule(make_rule("neg-min", 1, 0.1, min_deal_size=-5))[0] is False
    assert validate_rule(make_rule("float-priority", 1.5, 0.1))[0] is False
    assert validate_rule(make_rule("nan-rate", 1, float("nan")))[0] is False

    unnamed = make_rule("x", 1, 0.1)
    unnamed.name = "  "
    assert validate_rule(unnamed)[0] is False


def test_invalid_rule_is_rejected_before_matching(resolver, tiered_rules):
    rules = tiered_rules + [make_rule("oversized", 3, 5.0)]

    with pytest.raises(ValidationError) as exc:
        resolver.resolve(make_partner(), 1000, rules)
    assert exc.value.details == {"field": "rule", "value": "oversized"}
    assert "between 0 and 1" in exc.value.message


def test_rule_set_version(tiered_rules):
    version = rule_set_version(tiered_rules)

    assert len(version) == 8
    assert rule_set_version(list(reversed(tiered_rules))) == version

    changed = [make_rule("catch-all", 2, 0.06, sequence=1), tiered_rules[1]]
    assert rule_set_version(changed) != version
