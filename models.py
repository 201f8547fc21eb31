"""
Engine Data Models
==================

Typed records for everything the attribution, commission and scoring
engine reads or produces.

Inputs (fetched by the caller from the record store):
1. Deal - the revenue being attributed
2. Touchpoint - an append-only log entry of partner involvement in a deal
3. Partner - the partner snapshot used for rule matching and scoring
4. CommissionRule - organization-scoped, priority-ordered rate rule

Outputs (derived, regenerable):
- AttributionRow / CommissionRow - per-partner calculation results
- Attribution - the persisted row for one (deal, partner, model)
- PayoutCandidate - commission owed, handed to the payout workflow
- PartnerScore - ephemeral composite scorecard
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, Any, Mapping
from enum import Enum

from config import TIME_DECAY_HALF_LIFE_DAYS, ENGAGEMENT_HALF_LIFE_DAYS
from exceptions import AttributionError, ConfigurationError


# ============================================================================
# Enums and Constants
# ============================================================================

class DealStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class TouchpointType(str, Enum):
    """Kind of partner interaction recorded against a deal"""
    REGISTRATION = "registration"                  # Partner registered the deal
    REFERRAL = "referral"                          # Partner sourced the lead
    CO_SELL = "co_sell"                            # Joint selling motion
    INTRODUCTION = "introduction"                  # Warm intro
    DEMO = "demo"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    TECHNICAL_ENABLEMENT = "technical_enablement"
    CONTENT_SHARE = "content_share"                # Passive awareness
    SUPPORT = "support"                            # Passive assist


class AttributionModel(str, Enum):
    """Attribution calculation methodologies"""
    EQUAL_SPLIT = "equal_split"      # Divide evenly among distinct partners
    FIRST_TOUCH = "first_touch"      # 100% to earliest touchpoint's partner
    LAST_TOUCH = "last_touch"        # 100% to latest touchpoint's partner
    TIME_DECAY = "time_decay"        # Recent touchpoints weigh more (half-life)
    ROLE_BASED = "role_based"        # Weighted by touchpoint type


class PartnerType(str, Enum):
    AFFILIATE = "affiliate"
    REFERRAL = "referral"
    RESELLER = "reseller"
    INTEGRATION = "integration"


class PartnerTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class PartnerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class TierChange(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    MAINTAIN = "maintain"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


TIER_ORDER = [PartnerTier.BRONZE, PartnerTier.SILVER, PartnerTier.GOLD, PartnerTier.PLATINUM]

# Canonical weight per touchpoint type for role_based attribution
# (registration > co-sell > intro > passive)
DEFAULT_ROLE_WEIGHTS: Dict[str, float] = {
    TouchpointType.REGISTRATION.value: 2.0,
    TouchpointType.REFERRAL.value: 1.75,
    TouchpointType.CO_SELL.value: 1.0,
    TouchpointType.PROPOSAL.value: 1.0,
    TouchpointType.NEGOTIATION.value: 0.8,
    TouchpointType.TECHNICAL_ENABLEMENT.value: 0.8,
    TouchpointType.INTRODUCTION.value: 0.75,
    TouchpointType.DEMO.value: 0.75,
    TouchpointType.CONTENT_SHARE.value: 0.5,
    TouchpointType.SUPPORT.value: 0.5,
}
DEFAULT_UNKNOWN_TYPE_WEIGHT = 0.5

DEFAULT_RULE_NAME = "Default"
DEFAULT_RULE_PRIORITY = 999  # Sentinel: no rule matched, partner default applied

DEFAULT_SCORING_WEIGHTS: Dict[str, float] = {
    "revenue": 0.35,
    "pipeline": 0.25,
    "engagement": 0.25,
    "velocity": 0.15,
}

DEFAULT_TIER_THRESHOLDS: Dict[str, float] = {
    "platinum": 85,
    "gold": 65,
    "silver": 40,
    # below silver = bronze
}

SCORE_DIMENSIONS = ["revenue", "pipeline", "engagement", "velocity"]

DIMENSION_LABELS = {
    "revenue": "Revenue Impact",
    "pipeline": "Pipeline Contribution",
    "engagement": "Engagement",
    "velocity": "Deal Velocity",
}

# Default settings (string-valued, as stored in the settings table)
DEFAULT_SETTINGS = {
    "scoring_weight_revenue": "0.35",
    "scoring_weight_pipeline": "0.25",
    "scoring_weight_engagement": "0.25",
    "scoring_weight_velocity": "0.15",
    "tier_threshold_platinum": "85",
    "tier_threshold_gold": "65",
    "tier_threshold_silver": "40",
    "engagement_half_life_days": str(ENGAGEMENT_HALF_LIFE_DAYS),
    "time_decay_half_life_days": str(TIME_DECAY_HALF_LIFE_DAYS),
    "scoring_revenue_model": AttributionModel.ROLE_BASED.value,
    "scoring_trend_tolerance": "2",
}


# ============================================================================
# Inputs
# ============================================================================

@dataclass
class Deal:
    """
    A sales opportunity. The engine only reads amount and status for
    attribution; the timestamps feed time decay and velocity scoring.
    """
    id: str
    organization_id: str
    name: str
    amount: float
    status: DealStatus
    created_at: datetime
    registered_by: Optional[str] = None          # Partner id that registered the deal
    expected_close_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    product_line: Optional[str] = None

    @property
    def close_reference(self) -> Optional[datetime]:
        """Actual close time, falling back to the expected close time."""
        return self.closed_at or self.expected_close_at


@dataclass
class Touchpoint:
    """
    One partner interaction against a deal.

    Touchpoints are append-only. `sequence` is the store-assigned insertion
    index and breaks ties between identical timestamps.
    """
    id: str
    deal_id: str
    partner_id: str
    type: str
    created_at: datetime
    weight: Optional[float] = None               # Explicit override multiplier
    sequence: Optional[int] = None

    @property
    def type_value(self) -> str:
        return self.type.value if isinstance(self.type, Enum) else str(self.type)


@dataclass
class Partner:
    id: str
    organization_id: str
    name: str
    type: PartnerType
    commission_rate: float                       # Base rate, fraction 0-1
    tier: Optional[PartnerTier] = None
    status: PartnerStatus = PartnerStatus.ACTIVE

    @property
    def effective_tier(self) -> PartnerTier:
        """Partners without an explicit tier are treated as bronze."""
        return self.tier or PartnerTier.BRONZE


@dataclass
class CommissionRule:
    """
    Organization-defined rate rule. Unspecified filters are wildcards.

    Rules are evaluated in (priority, sequence) order; lower priority
    numbers go first and sequence is the insertion order within a priority.
    """
    id: Optional[str]
    organization_id: str
    name: str
    rate: float                                  # Fraction 0-1
    priority: int
    partner_type: Optional[PartnerType] = None
    partner_tier: Optional[PartnerTier] = None
    product_line: Optional[str] = None
    min_deal_size: Optional[float] = None
    sequence: int = 0

    @property
    def sort_key(self):
        return (self.priority, self.sequence)

    @property
    def is_default(self) -> bool:
        return self.id is None and self.priority == DEFAULT_RULE_PRIORITY

    def matches(self, partner: Partner, deal_amount: float, product_line: Optional[str] = None) -> bool:
        """Check every specified filter against the partner/deal inputs."""
        if self.partner_type is not None and self.partner_type != partner.type:
            return False

        if self.partner_tier is not None and self.partner_tier != partner.effective_tier:
            return False

        if self.product_line is not None and self.product_line != product_line:
            return False

        if self.min_deal_size is not None and deal_amount < self.min_deal_size:
            return False

        return True


# ============================================================================
# Outputs
# ============================================================================

@dataclass
class AttributionRow:
    partner_id: str
    percentage: float                            # 0-100, two decimals
    attributed_amount: float
    explanation: str = ""


@dataclass
class RuleMatch:
    """Outcome of rule resolution: the matched rule or the synthetic default."""
    rule: CommissionRule
    effective_rate: float

    @property
    def is_default(self) -> bool:
        return self.rule.is_default

    @property
    def rule_name(self) -> str:
        return self.rule.name


@dataclass
class CommissionRow:
    partner_id: str
    percentage: float
    attributed_amount: float
    commission_amount: float
    applied_rule_name: str
    rate: float
    rule_id: Optional[str] = None


@dataclass
class Attribution:
    """
    Persisted attribution row for one (deal, partner, model).

    Rows for a (deal, model) pair are always replaced as a unit, never edited.
    """
    organization_id: str
    deal_id: str
    partner_id: str
    model: AttributionModel
    percentage: float
    attributed_amount: float
    commission_amount: float
    computed_at: datetime
    applied_rule_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "deal_id": self.deal_id,
            "partner_id": self.partner_id,
            "model": self.model.value,
            "percentage": self.percentage,
            "attributed_amount": self.attributed_amount,
            "commission_amount": self.commission_amount,
            "computed_at": self.computed_at.isoformat(),
            "applied_rule_name": self.applied_rule_name,
        }


@dataclass
class PayoutCandidate:
    """Commission owed to a partner for a won deal, awaiting approval."""
    organization_id: str
    deal_id: str
    partner_id: str
    amount: float
    model: AttributionModel
    rule_name: str
    status: str = "pending"


@dataclass
class RecomputeResult:
    """Result from recomputing one deal's attribution and commissions."""
    deal_id: str
    rows_by_model: Dict[AttributionModel, List[CommissionRow]] = field(default_factory=dict)
    rows_written: int = 0
    payout_candidates: List[PayoutCandidate] = field(default_factory=list)
    rule_set_version: Optional[str] = None


@dataclass
class BackfillResult:
    """Result from backfilling won deals that have no attribution rows."""
    deals_processed: int = 0
    rows_written: int = 0
    skipped: int = 0
    failed: List[str] = field(default_factory=list)


@dataclass
class ScoreDimension:
    score: float                                 # 0-100
    weight: float                                # normalized, weights sum to 1.0
    label: str
    detail: str                                  # human-readable explanation


@dataclass
class PartnerScore:
    partner_id: str
    partner_name: str
    current_tier: PartnerTier
    overall_score: int                           # 0-100 weighted composite
    dimensions: Dict[str, ScoreDimension]
    recommended_tier: PartnerTier
    tier_change: TierChange
    trend: Trend
    rank: int = 0                                # set after sorting
    highlights: List[str] = field(default_factory=list)
    total_attributed_revenue: float = 0.0


@dataclass
class ScoringConfig:
    """
    Weight vector and tier thresholds for the scorecard engine.

    Weights are re-normalized to sum to 1.0 before use, so any non-negative
    input vector keeps the overall score inside [0, 100].
    """
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SCORING_WEIGHTS))
    tier_thresholds: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_THRESHOLDS))
    engagement_half_life_days: float = ENGAGEMENT_HALF_LIFE_DAYS
    revenue_model: AttributionModel = AttributionModel.ROLE_BASED
    trend_tolerance: float = 2.0

    @classmethod
    def from_settings(cls, settings: Mapping[str, str]) -> "ScoringConfig":
        """Build a config from string-valued settings, filling gaps with defaults."""
        merged = dict(DEFAULT_SETTINGS)
        merged.update({k: v for k, v in settings.items() if v is not None})

        def number(key: str) -> float:
            try:
                value = float(merged[key])
            except (TypeError, ValueError):
                raise ConfigurationError(f"Setting '{key}' must be numeric", setting_key=key)
            if not math.isfinite(value):
                raise ConfigurationError(f"Setting '{key}' must be a finite number", setting_key=key)
            return value

        try:
            revenue_model = AttributionModel(merged["scoring_revenue_model"])
        except ValueError:
            raise ConfigurationError(
                f"Unknown revenue model: {merged['scoring_revenue_model']}",
                setting_key="scoring_revenue_model"
            )

        config = cls(
            weights={dim: number(f"scoring_weight_{dim}") for dim in SCORE_DIMENSIONS},
            tier_thresholds={tier: number(f"tier_threshold_{tier}") for tier in ("platinum", "gold", "silver")},
            engagement_half_life_days=number("engagement_half_life_days"),
            revenue_model=revenue_model,
            trend_tolerance=number("scoring_trend_tolerance"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        is_valid, error = validate_scoring_config(self)
        if not is_valid:
            raise ConfigurationError(error)


@dataclass
class EngineResult:
    """
    Explicit success/failure value returned by the public engine operations.

    A failure never carries a partial value.
    """
    ok: bool
    value: Any = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value: Any) -> "EngineResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: AttributionError) -> "EngineResult":
        return cls(ok=False, error_code=error.code, message=error.message, details=dict(error.details))


# ============================================================================
# Validation Functions
# ============================================================================

def validate_scoring_config(config: ScoringConfig) -> tuple[bool, Optional[str]]:
    """
    Validate a scoring configuration.

    Returns: (is_valid, error_message)
    """
    for dim in SCORE_DIMENSIONS:
        if dim not in config.weights:
            return False, f"Missing weight for '{dim}'"
        weight = config.weights[dim]
        if not isinstance(weight, (int, float)) or not math.isfinite(weight):
            return False, f"Weight for '{dim}' must be a finite number"
        if weight < 0:
            return False, f"Weight for '{dim}' cannot be negative"

    for tier in ("platinum", "gold", "silver"):
        if tier not in config.tier_thresholds:
            return False, f"Missing tier threshold for '{tier}'"
        threshold = config.tier_thresholds[tier]
        if not isinstance(threshold, (int, float)) or not math.isfinite(threshold):
            return False, f"Tier threshold for '{tier}' must be a finite number"

    thresholds = config.tier_thresholds
    if not (thresholds["platinum"] >= thresholds["gold"] >= thresholds["silver"]):
        return False, "Tier thresholds must satisfy platinum >= gold >= silver"

    if not math.isfinite(config.engagement_half_life_days) or config.engagement_half_life_days <= 0:
        return False, "'engagement_half_life_days' must be a positive finite number"

    if not math.isfinite(config.trend_tolerance) or config.trend_tolerance < 0:
        return False, "'trend_tolerance' must be a non-negative finite number"

    return True, None


def validate_role_weights(role_weights: Mapping[str, float]) -> tuple[bool, Optional[str]]:
    """Role weights must be numeric and non-negative."""
    for role, weight in role_weights.items():
        if not isinstance(weight, (int, float)) or not math.isfinite(weight):
            return False, f"Weight for '{role}' must be a finite number"
        if weight < 0:
            return False, f"Weight for '{role}' cannot be negative"
    return True, None
