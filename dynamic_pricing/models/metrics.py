"""
Enregistrements de demande et d'historique de prix.

- `DemandMetric` : compteurs de funnel et d'inventaire par (date, destination, type de service),
- `PriceAdjustment` : ligne du journal d'audit (une par règle appliquée, jamais modifiée),
- `PriceHistory` : snapshot quotidien du prix d'un service.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .fields import (
    date_to_iso,
    pick,
    safe_float,
    safe_int,
    to_date,
    to_optional_float,
    to_optional_int,
)


class TriggerSource(Enum):
    CRON = "cron"
    ADMIN = "admin"
    QUOTE_BUILDER = "quote_builder"


def _rounded_ratio(numerator: float, denominator: float, scale: float = 1.0) -> Optional[float]:
    if denominator <= 0:
        return None
    return round(numerator / denominator * scale, 2)


@dataclass(frozen=True)
class DemandMetric:
    """Métriques de demande pour une date et des dimensions optionnelles."""

    metric_date: date
    destination_id: Optional[int] = None
    service_type: Optional[str] = None
    search_count: int = 0
    inquiry_count: int = 0
    quote_request_count: int = 0
    quotes_generated: int = 0
    bookings_confirmed: int = 0
    total_revenue: float = 0.0
    average_order_value: Optional[float] = None
    available_inventory: Optional[int] = None
    booked_inventory: Optional[int] = None
    occupancy_rate: Optional[float] = None
    conversion_rate: Optional[float] = None
    demand_score: Optional[float] = None

    # Signaux bruts utilisés par le scorer de demande

    @property
    def inquiry_volume(self) -> float:
        return float(self.inquiry_count + self.quote_request_count)

    @property
    def occupancy_ratio(self) -> Optional[float]:
        if not self.available_inventory:
            return None
        return (self.booked_inventory or 0) / self.available_inventory

    @property
    def conversion_ratio(self) -> Optional[float]:
        if self.quotes_generated <= 0:
            return None
        return self.bookings_confirmed / self.quotes_generated

    @property
    def has_signal(self) -> bool:
        return bool(
            self.search_count
            or self.inquiry_volume
            or self.quotes_generated
            or self.bookings_confirmed
            or self.available_inventory
        )

    def with_derived_rates(self) -> "DemandMetric":
        """Recalcule taux de conversion, panier moyen et taux d'occupation depuis les compteurs."""
        return replace(
            self,
            conversion_rate=_rounded_ratio(self.bookings_confirmed, self.quotes_generated, 100.0),
            average_order_value=_rounded_ratio(self.total_revenue, self.bookings_confirmed),
            occupancy_rate=_rounded_ratio(
                self.booked_inventory or 0, self.available_inventory or 0, 100.0
            ),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DemandMetric":
        metric_date = to_date(pick(row, "metric_date", "metricDate"))
        if metric_date is None:
            raise ValueError("metric_date is required")
        return cls(
            metric_date=metric_date,
            destination_id=to_optional_int(pick(row, "destination_id", "destinationId")),
            service_type=pick(row, "service_type", "serviceType"),
            search_count=safe_int(pick(row, "search_count", "searchCount")),
            inquiry_count=safe_int(pick(row, "inquiry_count", "inquiryCount")),
            quote_request_count=safe_int(pick(row, "quote_request_count", "quoteRequestCount")),
            quotes_generated=safe_int(pick(row, "quotes_generated", "quotesGenerated")),
            bookings_confirmed=safe_int(pick(row, "bookings_confirmed", "bookingsConfirmed")),
            total_revenue=safe_float(pick(row, "total_revenue", "totalRevenue")),
            average_order_value=to_optional_float(pick(row, "average_order_value", "averageOrderValue")),
            available_inventory=to_optional_int(pick(row, "available_inventory", "availableInventory")),
            booked_inventory=to_optional_int(pick(row, "booked_inventory", "bookedInventory")),
            occupancy_rate=to_optional_float(pick(row, "occupancy_rate", "occupancyRate")),
            conversion_rate=to_optional_float(pick(row, "conversion_rate", "conversionRate")),
            demand_score=to_optional_float(pick(row, "demand_score", "demandScore")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "metric_date": self.metric_date.isoformat(),
            "destination_id": self.destination_id,
            "service_type": self.service_type,
            "search_count": self.search_count,
            "inquiry_count": self.inquiry_count,
            "quote_request_count": self.quote_request_count,
            "quotes_generated": self.quotes_generated,
            "bookings_confirmed": self.bookings_confirmed,
            "total_revenue": round(self.total_revenue, 2),
            "average_order_value": self.average_order_value,
            "available_inventory": self.available_inventory,
            "booked_inventory": self.booked_inventory,
            "occupancy_rate": self.occupancy_rate,
            "conversion_rate": self.conversion_rate,
            "demand_score": self.demand_score,
        }


@dataclass(frozen=True)
class PriceAdjustment:
    """
    Ligne du journal d'audit `price_adjustments`.

    Une ligne par application de règle ; la chaîne complète d'une décision se
    retrouve en filtrant sur (service_id, adjustment_date) trié par id.
    """

    service_type: str
    service_id: int
    rule_id: Optional[int]
    rule_name: Optional[str]
    adjustment_type: str
    adjustment_value: float
    original_price: float
    adjusted_price: float
    adjustment_date: date
    triggered_by: TriggerSource
    service_name: Optional[str] = None
    currency: str = "USD"
    travel_date: Optional[date] = None
    reason: Optional[str] = None
    quote_id: Optional[int] = None
    booking_id: Optional[int] = None
    agency_id: Optional[int] = None
    approved_by: Optional[str] = None

    @property
    def dedupe_key(self) -> Tuple[int, str, Optional[int], Optional[int]]:
        return (self.service_id, self.adjustment_date.isoformat(), self.rule_id, self.quote_id)

    def to_record(self) -> Dict[str, Any]:
        return {
            "service_type": self.service_type,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "adjustment_type": self.adjustment_type,
            "adjustment_value": self.adjustment_value,
            "original_price": self.original_price,
            "adjusted_price": self.adjusted_price,
            "currency": self.currency,
            "adjustment_date": self.adjustment_date.isoformat(),
            "travel_date": date_to_iso(self.travel_date),
            "reason": self.reason,
            "triggered_by": self.triggered_by.value,
            "approved_by": self.approved_by,
            "quote_id": self.quote_id,
            "booking_id": self.booking_id,
            "agency_id": self.agency_id,
        }


def adjustment_key_from_row(row: Mapping[str, Any]) -> Tuple[int, str, Optional[int], Optional[int]]:
    """Clé de déduplication d'une ligne `price_adjustments` déjà en base."""
    adjustment_date = to_date(pick(row, "adjustment_date", "adjustmentDate"))
    return (
        to_optional_int(pick(row, "service_id", "serviceId")),
        adjustment_date.isoformat() if adjustment_date else None,
        to_optional_int(pick(row, "rule_id", "ruleId")),
        to_optional_int(pick(row, "quote_id", "quoteId")),
    )


@dataclass(frozen=True)
class PriceHistory:
    """Snapshot quotidien (un par service et par jour)."""

    service_type: str
    service_id: int
    record_date: date
    base_price: float
    adjusted_price: float
    service_name: Optional[str] = None
    currency: str = "USD"
    demand_score: Optional[float] = None
    applied_rules: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PriceHistory":
        record_date = to_date(pick(row, "record_date", "recordDate"))
        if record_date is None:
            raise ValueError("record_date is required")
        return cls(
            service_type=str(pick(row, "service_type", "serviceType", default="")),
            service_id=to_optional_int(pick(row, "service_id", "serviceId")) or 0,
            service_name=pick(row, "service_name", "serviceName"),
            record_date=record_date,
            base_price=safe_float(pick(row, "base_price", "basePrice")),
            adjusted_price=safe_float(pick(row, "adjusted_price", "adjustedPrice")),
            currency=pick(row, "currency", default="USD"),
            demand_score=to_optional_float(pick(row, "demand_score", "demandScore")),
            applied_rules=list(pick(row, "applied_rules", "appliedRules", default=[]) or []),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "service_type": self.service_type,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "record_date": self.record_date.isoformat(),
            "base_price": self.base_price,
            "adjusted_price": self.adjusted_price,
            "currency": self.currency,
            "demand_score": self.demand_score,
            "applied_rules": self.applied_rules,
        }
