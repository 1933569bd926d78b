"""
Règles de pricing et saisons.

Une règle (`PricingRule`) décrit un ajustement de prix (pourcentage ou montant
fixe), son périmètre (type de service, destination, fournisseur, service,
agence), sa validité (dates, jours de la semaine) et ses conditions.

Les conditions sont typées par type de règle (`DemandCondition`,
`GroupCondition`, `LoyaltyCondition`, `BookingWindowCondition`) et validées
au chargement ou à l'enregistrement de la règle : une règle invalide lève
`RuleValidationError`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from .fields import (
    date_to_iso,
    pick,
    to_date,
    to_float,
    to_optional_float,
    to_optional_int,
)


class RuleValidationError(ValueError):
    """Règle de pricing invalide (type inconnu, valeur non numérique, conditions mal formées...)."""


class RuleType(Enum):
    SEASONAL = "seasonal"
    DEMAND = "demand"
    EARLY_BIRD = "early_bird"
    LAST_MINUTE = "last_minute"
    GROUP = "group"
    LOYALTY = "loyalty"
    PROMOTIONAL = "promotional"
    WEEKEND = "weekend"
    PEAK_DAY = "peak_day"


class AdjustmentType(Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


# ============================================
# CONDITIONS
# ============================================


@dataclass(frozen=True)
class NoCondition:
    """Règle sans condition spécifique à son type."""

    def is_met(self, context: Any, demand_score: float) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class DemandCondition:
    """La règle ne s'applique que si le score de demande est dans [min_score, max_score]."""

    min_score: Optional[float] = None
    max_score: Optional[float] = None

    def is_met(self, context: Any, demand_score: float) -> bool:
        if self.min_score is not None and demand_score < self.min_score:
            return False
        if self.max_score is not None and demand_score > self.max_score:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.min_score is not None:
            data["minDemandScore"] = self.min_score
        if self.max_score is not None:
            data["maxDemandScore"] = self.max_score
        return data


@dataclass(frozen=True)
class GroupCondition:
    """La règle ne s'applique que si la taille du groupe est dans [min_size, max_size]."""

    min_size: Optional[int] = None
    max_size: Optional[int] = None

    def is_met(self, context: Any, demand_score: float) -> bool:
        pax_count = context.pax_count
        if self.min_size is not None and pax_count < self.min_size:
            return False
        if self.max_size is not None and pax_count > self.max_size:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.min_size is not None:
            data["minGroupSize"] = self.min_size
        if self.max_size is not None:
            data["maxGroupSize"] = self.max_size
        return data


@dataclass(frozen=True)
class LoyaltyCondition:
    """La règle ne s'applique qu'aux tiers de fidélité éligibles (comparaison insensible à la casse)."""

    tiers: FrozenSet[str] = frozenset()

    def is_met(self, context: Any, demand_score: float) -> bool:
        if not context.loyalty_tier:
            return False
        return context.loyalty_tier.strip().lower() in self.tiers

    def to_dict(self) -> Dict[str, Any]:
        return {"eligibleTiers": sorted(self.tiers)}


@dataclass(frozen=True)
class BookingWindowCondition:
    """
    Fenêtre de réservation en jours avant le voyage.

    - early bird : réservation au moins `days_before_travel` jours avant,
    - last minute (`latest=True`) : réservation au plus `days_before_travel` jours avant.
    """

    days_before_travel: int
    latest: bool = False

    def is_met(self, context: Any, demand_score: float) -> bool:
        days_ahead = context.days_before_travel
        if self.latest:
            return 0 <= days_ahead <= self.days_before_travel
        return days_ahead >= self.days_before_travel

    def to_dict(self) -> Dict[str, Any]:
        return {"daysBeforeTravel": self.days_before_travel}


RuleCondition = Union[NoCondition, DemandCondition, GroupCondition, LoyaltyCondition, BookingWindowCondition]


def _optional_number(raw: Mapping[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        if key in raw and raw[key] is not None:
            try:
                return to_float(raw[key])
            except ValueError as e:
                raise RuleValidationError(f"Condition '{key}' must be numeric (got {raw[key]!r})") from e
    return None


def _optional_count(raw: Mapping[str, Any], *keys: str) -> Optional[int]:
    for key in keys:
        if key in raw and raw[key] is not None:
            try:
                value = to_optional_int(raw[key])
            except ValueError as e:
                raise RuleValidationError(f"Condition '{key}' must be an integer (got {raw[key]!r})") from e
            if value is not None and value < 0:
                raise RuleValidationError(f"Condition '{key}' must be positive (got {value})")
            return value
    return None


def parse_conditions(rule_type: RuleType, raw: Any) -> RuleCondition:
    """
    Construit la condition typée correspondant au type de règle.

    `raw` est le JSON stocké en base (dict, chaîne JSON ou None).
    Les alias historiques (`minPax`, `loyaltyTier`, `daysInAdvance`) sont acceptés.
    """
    if raw is None or raw == "":
        raw = {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RuleValidationError(f"Conditions are not valid JSON: {e}") from e
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise RuleValidationError(f"Conditions must be an object (got {type(raw).__name__})")

    if rule_type == RuleType.DEMAND:
        min_score = _optional_number(raw, "minDemandScore", "min_demand_score")
        max_score = _optional_number(raw, "maxDemandScore", "max_demand_score")
        if min_score is not None and max_score is not None and min_score > max_score:
            raise RuleValidationError(f"minDemandScore ({min_score}) > maxDemandScore ({max_score})")
        return DemandCondition(min_score=min_score, max_score=max_score)

    if rule_type == RuleType.GROUP:
        min_size = _optional_count(raw, "minGroupSize", "min_group_size", "minPax")
        max_size = _optional_count(raw, "maxGroupSize", "max_group_size", "maxPax")
        if min_size is not None and max_size is not None and min_size > max_size:
            raise RuleValidationError(f"minGroupSize ({min_size}) > maxGroupSize ({max_size})")
        return GroupCondition(min_size=min_size, max_size=max_size)

    if rule_type == RuleType.LOYALTY:
        tiers = raw.get("eligibleTiers", raw.get("eligible_tiers"))
        if tiers is None and raw.get("loyaltyTier"):
            tiers = [raw["loyaltyTier"]]
        if tiers is None:
            raise RuleValidationError("Loyalty rules require 'eligibleTiers'")
        if isinstance(tiers, str):
            tiers = [tiers]
        if not isinstance(tiers, (list, tuple, set, frozenset)) or not all(isinstance(t, str) for t in tiers):
            raise RuleValidationError(f"'eligibleTiers' must be a list of strings (got {tiers!r})")
        normalized = frozenset(t.strip().lower() for t in tiers if t.strip())
        if not normalized:
            raise RuleValidationError("'eligibleTiers' must not be empty")
        return LoyaltyCondition(tiers=normalized)

    if rule_type in (RuleType.EARLY_BIRD, RuleType.LAST_MINUTE):
        days = _optional_count(raw, "daysBeforeTravel", "days_before_travel", "daysInAdvance")
        if days is None:
            return NoCondition()
        return BookingWindowCondition(days_before_travel=days, latest=rule_type == RuleType.LAST_MINUTE)

    return NoCondition()


# ============================================
# RÈGLE
# ============================================


def _parse_enum(enum_cls, value: Any, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise RuleValidationError(f"Invalid {label} {value!r} (expected one of: {allowed})") from e


def _parse_days_of_week(value: Any) -> Optional[FrozenSet[int]]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise RuleValidationError(f"daysOfWeek is not valid JSON: {e}") from e
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise RuleValidationError(f"daysOfWeek must be a list (got {value!r})")
    days = set()
    for day in value:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise RuleValidationError(f"daysOfWeek values must be integers 0-6 (got {day!r})")
        days.add(day)
    return frozenset(days)


@dataclass(frozen=True)
class PricingRule:
    """
    Règle d'ajustement de prix, telle que chargée depuis `pricing_rules`.
    """

    id: int
    name: str
    rule_type: RuleType
    adjustment_type: AdjustmentType
    adjustment_value: float
    description: Optional[str] = None
    service_type: Optional[str] = None
    destination_id: Optional[int] = None
    supplier_id: Optional[int] = None
    service_id: Optional[int] = None
    agency_id: Optional[int] = None
    conditions: RuleCondition = field(default_factory=NoCondition)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    days_of_week: Optional[FrozenSet[int]] = None
    priority: int = 0
    is_active: bool = True
    is_auto_apply: bool = True

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.priority, self.id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PricingRule":
        """
        Construit une règle depuis une ligne `pricing_rules` (ou un payload admin en camelCase).

        Lève RuleValidationError si la ligne est invalide.
        """
        try:
            rule_type = _parse_enum(RuleType, pick(row, "rule_type", "ruleType"), "ruleType")
            adjustment_type = _parse_enum(
                AdjustmentType, pick(row, "adjustment_type", "adjustmentType"), "adjustmentType"
            )
            raw_value = pick(row, "adjustment_value", "adjustmentValue")
            if raw_value is None:
                raise RuleValidationError("adjustmentValue is required")
            adjustment_value = to_float(raw_value)

            name = pick(row, "name", default="")
            if not str(name).strip():
                raise RuleValidationError("name is required")

            min_price = to_optional_float(pick(row, "min_price", "minPrice"))
            max_price = to_optional_float(pick(row, "max_price", "maxPrice"))
            if min_price is not None and max_price is not None and min_price > max_price:
                raise RuleValidationError(f"minPrice ({min_price}) > maxPrice ({max_price})")

            valid_from = to_date(pick(row, "valid_from", "validFrom"))
            valid_to = to_date(pick(row, "valid_to", "validTo"))
            if valid_from is not None and valid_to is not None and valid_from > valid_to:
                raise RuleValidationError(f"validFrom ({valid_from}) > validTo ({valid_to})")

            return cls(
                id=to_optional_int(pick(row, "id")) or 0,
                name=str(name),
                description=pick(row, "description"),
                rule_type=rule_type,
                adjustment_type=adjustment_type,
                adjustment_value=adjustment_value,
                service_type=pick(row, "service_type", "serviceType"),
                destination_id=to_optional_int(pick(row, "destination_id", "destinationId")),
                supplier_id=to_optional_int(pick(row, "supplier_id", "supplierId")),
                service_id=to_optional_int(pick(row, "service_id", "serviceId")),
                agency_id=to_optional_int(pick(row, "agency_id", "agencyId")),
                conditions=parse_conditions(rule_type, pick(row, "conditions")),
                min_price=min_price,
                max_price=max_price,
                valid_from=valid_from,
                valid_to=valid_to,
                days_of_week=_parse_days_of_week(pick(row, "days_of_week", "daysOfWeek")),
                priority=to_optional_int(pick(row, "priority")) or 0,
                is_active=bool(pick(row, "is_active", "isActive", default=True)),
                is_auto_apply=bool(pick(row, "is_auto_apply", "isAutoApply", default=True)),
            )
        except RuleValidationError:
            raise
        except ValueError as e:
            raise RuleValidationError(str(e)) from e

    def to_record(self) -> Dict[str, Any]:
        """Sérialise la règle au format de la table `pricing_rules` (sans l'id)."""
        return {
            "name": self.name,
            "description": self.description,
            "rule_type": self.rule_type.value,
            "service_type": self.service_type,
            "destination_id": self.destination_id,
            "supplier_id": self.supplier_id,
            "service_id": self.service_id,
            "agency_id": self.agency_id,
            "conditions": self.conditions.to_dict() or None,
            "adjustment_type": self.adjustment_type.value,
            "adjustment_value": self.adjustment_value,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "valid_from": date_to_iso(self.valid_from),
            "valid_to": date_to_iso(self.valid_to),
            "days_of_week": sorted(self.days_of_week) if self.days_of_week is not None else None,
            "priority": self.priority,
            "is_active": self.is_active,
            "is_auto_apply": self.is_auto_apply,
        }


# ============================================
# SAISONS
# ============================================


@dataclass(frozen=True)
class Season:
    """Saison tarifaire (mois de début / fin inclus, éventuellement par pays)."""

    name: str
    start_month: int
    end_month: int
    price_multiplier: float = 1.0
    country: Optional[str] = None

    def covers(self, on_date: date) -> bool:
        month = on_date.month
        if self.start_month <= self.end_month:
            return self.start_month <= month <= self.end_month
        # Saison à cheval sur deux années (ex: décembre -> février)
        return month >= self.start_month or month <= self.end_month

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Season":
        return cls(
            name=str(pick(row, "name", default="")),
            start_month=to_optional_int(pick(row, "start_month", "startMonth")) or 1,
            end_month=to_optional_int(pick(row, "end_month", "endMonth")) or 12,
            price_multiplier=to_optional_float(pick(row, "price_multiplier", "priceMultiplier")) or 1.0,
            country=pick(row, "country"),
        )
