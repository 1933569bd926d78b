"""
Sous-package `models` du moteur de pricing dynamique.

Types de données manipulés par le moteur :
- règles de pricing et leurs conditions typées, saisons,
- contexte, trace et résultat d'un calcul de prix,
- métriques de demande, journal d'audit et historique de prix.
"""

from .rules import (
    AdjustmentType,
    BookingWindowCondition,
    DemandCondition,
    GroupCondition,
    LoyaltyCondition,
    NoCondition,
    PricingRule,
    RuleType,
    RuleValidationError,
    Season,
    parse_conditions,
)
from .pricing import AppliedRule, PricingContext, PricingInputError, PricingResult
from .metrics import DemandMetric, PriceAdjustment, PriceHistory, TriggerSource

__all__ = [
    "AdjustmentType",
    "AppliedRule",
    "BookingWindowCondition",
    "DemandCondition",
    "DemandMetric",
    "GroupCondition",
    "LoyaltyCondition",
    "NoCondition",
    "PriceAdjustment",
    "PriceHistory",
    "PricingContext",
    "PricingInputError",
    "PricingResult",
    "PricingRule",
    "RuleType",
    "RuleValidationError",
    "Season",
    "TriggerSource",
    "parse_conditions",
]
