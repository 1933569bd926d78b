"""
Simulation d'une courbe de prix sur une plage de dates.

Un seul snapshot de règles, de métriques de demande et de saisons est chargé
pour toute la plage ; chaque jour passe ensuite par le même calcul que le
pricing unitaire (`calculator.price_for_date`). À snapshots identiques, la
simulation est donc déterministe et une plage [d, d] donne exactement le
résultat du calcul pour la date d.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .calculator import load_seasons, price_for_date
from .config import PricingConfig, get_pricing_config_for_service
from .demand_scorer import load_metric_snapshot, score_demand
from .models.metrics import DemandMetric
from .models.pricing import PricingContext, PricingInputError, PricingResult
from .models.rules import PricingRule, Season
from .rule_store import load_rule_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailyPrice:
    day: date
    result: PricingResult

    def to_dict(self) -> Dict[str, Any]:
        base = self.result.original_price
        final = self.result.final_price
        return {
            "date": self.day.isoformat(),
            "basePrice": base,
            "finalPrice": final,
            "discount": round(base - final, 2) if base > final else 0,
            "premium": round(final - base, 2) if final > base else 0,
            "demandScore": self.result.demand_score,
            "rulesApplied": len(self.result.applied_rules),
        }


def _date_range(start_date: date, end_date: date) -> List[date]:
    return [start_date + timedelta(days=offset) for offset in range((end_date - start_date).days + 1)]


def simulate_pricing(
    context: PricingContext,
    start_date: date,
    end_date: date,
    rules: Optional[Sequence[PricingRule]] = None,
    metrics: Optional[Sequence[DemandMetric]] = None,
    seasons: Optional[Sequence[Season]] = None,
    config: Optional[PricingConfig] = None,
) -> List[DailyPrice]:
    """
    Calcule le prix de chaque jour de [start_date, end_date] (bornes incluses).

    Lève PricingInputError si la plage est inversée ou dépasse `max_simulation_days`.
    """
    config = config or get_pricing_config_for_service(context.service_type)

    if start_date > end_date:
        raise PricingInputError(f"startDate ({start_date}) must not be after endDate ({end_date})")
    days = _date_range(start_date, end_date)
    if len(days) > config.max_simulation_days:
        raise PricingInputError(
            f"Simulation range of {len(days)} days exceeds the maximum of {config.max_simulation_days}"
        )

    if rules is None:
        try:
            rules = load_rule_snapshot(context)
        except Exception as e:
            logger.error(f"Pricing rule lookup failed for {context.service_type} #{context.service_id}: {e}")
            rules = []

    if metrics is None:
        try:
            metrics = load_metric_snapshot(
                start_date, end_date, context.destination_id, context.service_type, config
            )
        except Exception as e:
            logger.warning(f"Demand metric lookup failed for {start_date}..{end_date}: {e}")
            metrics = []

    if seasons is None:
        seasons = load_seasons(context)

    daily: List[DailyPrice] = []
    for day in days:
        demand = score_demand(day, context.destination_id, context.service_type, metrics, config)
        daily.append(DailyPrice(day=day, result=price_for_date(context, day, rules, demand, seasons, config)))

    logger.info(
        f"Simulated {len(daily)} days for {context.service_type} #{context.service_id} "
        f"({start_date} -> {end_date})"
    )
    return daily


def summarize_pricing_curve(daily: Sequence[DailyPrice], base_price: float) -> Dict[str, Any]:
    """
    Statistiques de la courbe : min / max / moyenne / amplitude, arrondies au centime.
    """
    if not daily:
        return {
            "basePrice": base_price,
            "minPrice": None,
            "maxPrice": None,
            "avgPrice": None,
            "priceRange": None,
            "datesCount": 0,
        }

    prices = pd.Series([d.result.final_price for d in daily], dtype="float64")
    min_price = float(prices.min())
    max_price = float(prices.max())
    return {
        "basePrice": base_price,
        "minPrice": round(min_price, 2),
        "maxPrice": round(max_price, 2),
        "avgPrice": round(float(prices.mean()), 2),
        "priceRange": round(max_price - min_price, 2),
        "datesCount": int(prices.size),
    }


def simulate_pricing_range(
    context: PricingContext,
    start_date: date,
    end_date: date,
    rules: Optional[Sequence[PricingRule]] = None,
    metrics: Optional[Sequence[DemandMetric]] = None,
    seasons: Optional[Sequence[Season]] = None,
    config: Optional[PricingConfig] = None,
) -> Dict[str, Any]:
    """
    Réponse complète d'une simulation : `{summary, dailyPricing}`.
    """
    daily = simulate_pricing(context, start_date, end_date, rules, metrics, seasons, config)
    return {
        "summary": summarize_pricing_curve(daily, context.base_price),
        "dailyPricing": [d.to_dict() for d in daily],
    }
