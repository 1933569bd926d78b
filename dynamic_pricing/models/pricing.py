"""
Contexte de pricing, trace des règles appliquées et résultat d'un calcul.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Mapping, Optional, Tuple

from .fields import pick, to_date, to_float, to_optional_int


class PricingInputError(ValueError):
    """Requête de pricing invalide (champ requis manquant, prix ou date invalide)."""


@dataclass(frozen=True)
class PricingContext:
    """
    Contexte d'un calcul de prix pour un service.

    `travel_date` peut être absent pour une simulation sur une plage de dates ;
    le simulateur fixe la date jour par jour via `with_travel_date`.
    """

    service_type: str
    service_id: int
    base_price: float
    travel_date: Optional[date] = None
    service_name: Optional[str] = None
    booking_date: date = field(default_factory=date.today)
    currency: Optional[str] = None
    destination_id: Optional[int] = None
    supplier_id: Optional[int] = None
    pax_count: int = 1
    loyalty_tier: Optional[str] = None
    agency_id: Optional[int] = None

    @property
    def days_before_travel(self) -> int:
        if self.travel_date is None:
            raise PricingInputError("travelDate is required")
        return (self.travel_date - self.booking_date).days

    def with_travel_date(self, travel_date: date) -> "PricingContext":
        return replace(self, travel_date=travel_date)

    @classmethod
    def from_request(cls, data: Mapping[str, Any]) -> "PricingContext":
        """
        Construit un contexte depuis une requête JSON (quote builder, simulation admin).

        Lève PricingInputError avant tout calcul si la requête est invalide.
        """
        service_type = pick(data, "service_type", "serviceType")
        service_id = pick(data, "service_id", "serviceId")
        base_price = pick(data, "base_price", "basePrice")

        missing = [
            name
            for name, value in (("serviceType", service_type), ("serviceId", service_id), ("basePrice", base_price))
            if value in (None, "")
        ]
        if missing:
            raise PricingInputError(f"Missing required field(s): {', '.join(missing)}")

        try:
            parsed_service_id = to_optional_int(service_id)
            parsed_base_price = to_float(base_price)
            travel_date = to_date(pick(data, "travel_date", "travelDate"))
            booking_date = to_date(pick(data, "booking_date", "bookingDate")) or date.today()
            destination_id = to_optional_int(pick(data, "destination_id", "destinationId"))
            supplier_id = to_optional_int(pick(data, "supplier_id", "supplierId"))
            agency_id = to_optional_int(pick(data, "agency_id", "agencyId"))
            pax_count = to_optional_int(pick(data, "pax_count", "paxCount"))
        except ValueError as e:
            raise PricingInputError(str(e)) from e

        if parsed_base_price <= 0:
            raise PricingInputError(f"basePrice must be positive (got {parsed_base_price})")
        if pax_count is not None and pax_count < 1:
            raise PricingInputError(f"paxCount must be at least 1 (got {pax_count})")

        return cls(
            service_type=str(service_type),
            service_id=parsed_service_id,
            service_name=pick(data, "service_name", "serviceName"),
            base_price=parsed_base_price,
            travel_date=travel_date,
            booking_date=booking_date,
            currency=pick(data, "currency"),
            destination_id=destination_id,
            supplier_id=supplier_id,
            pax_count=pax_count or 1,
            loyalty_tier=pick(data, "loyalty_tier", "loyaltyTier"),
            agency_id=agency_id,
        )


@dataclass(frozen=True)
class AppliedRule:
    """Entrée de trace : une règle appliquée et le prix obtenu après elle."""

    rule_id: int
    rule_name: str
    rule_type: str
    adjustment_type: str
    adjustment_value: float
    price_before_rule: float
    price_after_rule: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "ruleType": self.rule_type,
            "adjustmentType": self.adjustment_type,
            "adjustmentValue": self.adjustment_value,
            "priceBeforeRule": self.price_before_rule,
            "priceAfterRule": self.price_after_rule,
        }


@dataclass(frozen=True)
class PricingResult:
    original_price: float
    final_price: float
    currency: str
    savings: float
    savings_percent: float
    demand_score: float
    demand_tier: str
    applied_rules: Tuple[AppliedRule, ...] = ()
    season_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalPrice": self.original_price,
            "finalPrice": self.final_price,
            "currency": self.currency,
            "savings": self.savings,
            "savingsPercent": self.savings_percent,
            "demandScore": self.demand_score,
            "demandTier": self.demand_tier,
            "seasonName": self.season_name,
            "appliedRules": [r.to_dict() for r in self.applied_rules],
        }
