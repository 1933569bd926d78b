"""
Analytics de pricing sur une période.

- ajustements : volume, ajustement moyen, impact par règle, par type et par déclencheur,
- historique de prix : tendance quotidienne et volatilité par type de service,
- demande : tendance quotidienne du score, des recherches et des réservations.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .interfaces.data_access import (
    fetch_demand_metrics_between,
    fetch_price_adjustments,
    fetch_price_history,
)

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30


def _frame(rows: Iterable[Mapping[str, Any]], numeric: List[str]) -> pd.DataFrame:
    df = pd.DataFrame(list(rows))
    for column in numeric:
        if column in df.columns:
            df[column] = pd.to_numeric(df[column], errors="coerce")
    return df


def _money(value: Any) -> float:
    if value is None or pd.isna(value):
        return 0.0
    return round(float(value), 2)


def summarize_adjustments(rows: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Résumé des lignes `price_adjustments`.

    L'impact d'une ligne est `adjusted_price - original_price`.
    """
    df = _frame(rows, ["adjustment_value", "original_price", "adjusted_price"])
    if df.empty:
        return {
            "totalAdjustments": 0,
            "averageAdjustment": 0.0,
            "ruleBreakdown": {},
            "rulePerformance": [],
            "byAdjustmentType": {},
            "byTrigger": {},
        }

    df["impact"] = df["adjusted_price"] - df["original_price"]
    label = df["rule_name"] if "rule_name" in df.columns else pd.Series(index=df.index, dtype=object)
    df["rule_label"] = label.fillna(df["adjustment_type"])

    breakdown = df.groupby("rule_label")["impact"].agg(["count", "sum"])
    rule_breakdown = {
        str(name): {"count": int(stats["count"]), "totalImpact": _money(stats["sum"])}
        for name, stats in breakdown.iterrows()
    }

    if "rule_id" not in df.columns:
        df["rule_id"] = None
    performance = (
        df.groupby(["rule_id", "rule_label", "adjustment_type"], dropna=False)["impact"]
        .agg(["count", "sum", "mean"])
        .sort_values("count", ascending=False)
        .head(10)
    )
    rule_performance = [
        {
            "ruleId": None if pd.isna(rule_id) else int(rule_id),
            "ruleName": str(rule_label),
            "adjustmentType": adjustment_type,
            "usageCount": int(stats["count"]),
            "totalImpact": _money(stats["sum"]),
            "avgImpact": _money(stats["mean"]),
        }
        for (rule_id, rule_label, adjustment_type), stats in performance.iterrows()
    ]

    by_trigger: Dict[str, int] = {}
    if "triggered_by" in df.columns:
        by_trigger = {str(k): int(v) for k, v in df["triggered_by"].value_counts().items()}

    return {
        "totalAdjustments": int(len(df)),
        "averageAdjustment": _money(df["adjustment_value"].mean()),
        "ruleBreakdown": rule_breakdown,
        "rulePerformance": rule_performance,
        "byAdjustmentType": {str(k): int(v) for k, v in df["adjustment_type"].value_counts().items()},
        "byTrigger": by_trigger,
    }


def summarize_price_history(rows: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Tendance quotidienne (prix moyen, nombre de snapshots) et volatilité par type de service.
    """
    df = _frame(rows, ["adjusted_price"])
    if df.empty:
        return {"dailyTrends": [], "priceVolatility": []}

    daily = df.groupby("record_date")["adjusted_price"].agg(["mean", "count"]).sort_index()
    daily_trends = [
        {"date": str(day), "avgPrice": _money(stats["mean"]), "adjustmentCount": int(stats["count"])}
        for day, stats in daily.iterrows()
    ]

    volatility = df.groupby("service_type")["adjusted_price"].agg(["mean", "min", "max", "std"])
    price_volatility = [
        {
            "serviceType": service_type,
            "avgPrice": _money(stats["mean"]),
            "minPrice": _money(stats["min"]),
            "maxPrice": _money(stats["max"]),
            "priceRange": _money(stats["max"] - stats["min"]),
            # écart-type d'échantillon, 0 pour un seul snapshot
            "volatility": _money(stats["std"]),
        }
        for service_type, stats in volatility.iterrows()
    ]

    return {"dailyTrends": daily_trends, "priceVolatility": price_volatility}


def summarize_demand_trends(rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    df = _frame(rows, ["demand_score", "search_count", "bookings_confirmed"])
    if df.empty:
        return []

    grouped = df.groupby("metric_date").agg(
        demand_score=("demand_score", "mean"),
        searches=("search_count", "sum"),
        bookings=("bookings_confirmed", "sum"),
    ).sort_index()
    return [
        {
            "date": str(day),
            "demandScore": round(float(stats["demand_score"]), 1) if not pd.isna(stats["demand_score"]) else None,
            "searches": int(stats["searches"]),
            "bookings": int(stats["bookings"]),
        }
        for day, stats in grouped.iterrows()
    ]


def get_pricing_analytics(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    service_type: Optional[str] = None,
    destination_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Analytics complètes sur une période (30 derniers jours par défaut).
    """
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=DEFAULT_PERIOD_DAYS)

    adjustments = summarize_adjustments(fetch_price_adjustments(start_date, end_date, service_type))
    history = summarize_price_history(fetch_price_history(start_date, end_date, service_type))
    demand = summarize_demand_trends(fetch_demand_metrics_between(start_date, end_date, destination_id))

    logger.info(
        f"Pricing analytics {start_date} -> {end_date}: {adjustments['totalAdjustments']} adjustments"
    )
    return {
        "period": {"start": start_date.isoformat(), "end": end_date.isoformat()},
        **adjustments,
        **history,
        "demandTrends": demand,
    }
