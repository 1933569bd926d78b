"""
Ajustements intégrés (activés via `PricingConfig.enable_builtin_adjustments`).

Ils complètent les règles stockées quand aucune règle du même type ne s'est
appliquée :
- early bird par paliers (90 / 60 / 30 jours avant le voyage),
- remise groupe par paliers (20 / 10 / 6 voyageurs),
- remise fidélité (bronze, silver, gold, platinum),
- ajustement selon le tier de demande (bloqué par une règle promotionnelle ou de demande).

Chaque ajustement est exprimé comme une `PricingRule` à id négatif, pour passer
par le même fold que les règles stockées.
"""

from typing import Iterable, List, Optional

from .demand_scorer import DemandTier
from .models.pricing import AppliedRule, PricingContext
from .models.rules import AdjustmentType, PricingRule, RuleType

EARLY_BIRD_RULE_ID = -1
GROUP_RULE_ID = -2
LOYALTY_RULE_ID = -3
DEMAND_RULE_ID = -4

# (jours minimum avant le voyage, remise %)
EARLY_BIRD_TIERS = [(90, 15.0), (60, 10.0), (30, 5.0)]

# (voyageurs minimum, remise %)
GROUP_DISCOUNT_TIERS = [(20, 15.0), (10, 10.0), (6, 5.0)]

LOYALTY_DISCOUNTS = {
    "bronze": 2.0,
    "silver": 5.0,
    "gold": 8.0,
    "platinum": 12.0,
}

DEMAND_ADJUSTMENTS = {
    DemandTier.VERY_LOW: -10.0,
    DemandTier.LOW: -5.0,
    DemandTier.NORMAL: 0.0,
    DemandTier.HIGH: 5.0,
    DemandTier.VERY_HIGH: 15.0,
}


def _percentage_rule(rule_id: int, name: str, rule_type: RuleType, value: float) -> PricingRule:
    return PricingRule(
        id=rule_id,
        name=name,
        rule_type=rule_type,
        adjustment_type=AdjustmentType.PERCENTAGE,
        adjustment_value=value,
        priority=1000,
    )


def early_bird_rule(days_ahead: int) -> Optional[PricingRule]:
    for min_days, discount in EARLY_BIRD_TIERS:
        if days_ahead >= min_days:
            return _percentage_rule(
                EARLY_BIRD_RULE_ID, f"Early Bird ({min_days}+ days)", RuleType.EARLY_BIRD, -discount
            )
    return None


def group_rule(pax_count: int) -> Optional[PricingRule]:
    for min_pax, discount in GROUP_DISCOUNT_TIERS:
        if pax_count >= min_pax:
            return _percentage_rule(
                GROUP_RULE_ID, f"Group Discount ({min_pax}+ pax)", RuleType.GROUP, -discount
            )
    return None


def loyalty_rule(loyalty_tier: Optional[str]) -> Optional[PricingRule]:
    if not loyalty_tier:
        return None
    discount = LOYALTY_DISCOUNTS.get(loyalty_tier.strip().lower())
    if not discount:
        return None
    return _percentage_rule(
        LOYALTY_RULE_ID, f"{loyalty_tier} Member Discount", RuleType.LOYALTY, -discount
    )


def demand_rule(tier: DemandTier) -> Optional[PricingRule]:
    adjustment = DEMAND_ADJUSTMENTS[tier]
    if adjustment == 0:
        return None
    return _percentage_rule(DEMAND_RULE_ID, "Demand-Based Pricing", RuleType.DEMAND, adjustment)


def build_builtin_rules(
    context: PricingContext,
    demand_tier: DemandTier,
    applied: Iterable[AppliedRule],
) -> List[PricingRule]:
    """
    Retourne les ajustements intégrés à appliquer, dans l'ordre early bird,
    groupe, fidélité, demande.
    """
    applied_types = {entry.rule_type for entry in applied}
    rules: List[Optional[PricingRule]] = []

    if RuleType.EARLY_BIRD.value not in applied_types:
        rules.append(early_bird_rule(context.days_before_travel))
    if RuleType.GROUP.value not in applied_types and context.pax_count > 1:
        rules.append(group_rule(context.pax_count))
    if RuleType.LOYALTY.value not in applied_types:
        rules.append(loyalty_rule(context.loyalty_tier))
    if not applied_types & {RuleType.PROMOTIONAL.value, RuleType.DEMAND.value}:
        rules.append(demand_rule(demand_tier))

    return [rule for rule in rules if rule is not None]
