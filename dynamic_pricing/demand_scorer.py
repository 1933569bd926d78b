"""
Score de demande (0-100) pour une date, une destination et un type de service.

Étapes :
1. Résolution de la ligne `demand_metrics` avec repli :
   exacte -> destination seule -> type de service seul -> globale -> défaut (50).
2. Normalisation de chaque signal contre la moyenne glissante des jours précédents
   (baseline) : `clip(valeur / (2 * baseline), 0, 1)`, une valeur égale à sa
   baseline vaut donc 0.5. Sans baseline exploitable, la valeur absolue est utilisée.
3. Combinaison pondérée `0.35*demandes + 0.35*occupation + 0.30*conversion`,
   ramenée à 0-100 et bornée.

Le scorer ne lève jamais : l'absence de données donne (50, NORMAL).
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import PricingConfig, get_default_pricing_config
from .interfaces.data_access import fetch_demand_metric_rows
from .models.metrics import DemandMetric

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = "default"


class DemandTier(Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


@dataclass(frozen=True)
class DemandBaseline:
    """Moyennes glissantes des signaux bruts (None si aucune donnée)."""

    inquiry: Optional[float] = None
    occupancy: Optional[float] = None
    conversion: Optional[float] = None


@dataclass(frozen=True)
class DemandAssessment:
    score: float
    tier: DemandTier
    level: str = DEFAULT_LEVEL

    def to_dict(self) -> Dict[str, Any]:
        return {"demandScore": self.score, "tier": self.tier.value, "level": self.level}


def classify_demand(score: float, config: Optional[PricingConfig] = None) -> DemandTier:
    config = config or get_default_pricing_config()
    thresholds = config.tier_thresholds
    if score >= thresholds["VERY_HIGH"]:
        return DemandTier.VERY_HIGH
    if score >= thresholds["HIGH"]:
        return DemandTier.HIGH
    if score >= thresholds["NORMAL"]:
        return DemandTier.NORMAL
    if score >= thresholds["LOW"]:
        return DemandTier.LOW
    return DemandTier.VERY_LOW


def default_assessment(config: Optional[PricingConfig] = None) -> DemandAssessment:
    config = config or get_default_pricing_config()
    score = config.default_demand_score
    return DemandAssessment(score=score, tier=classify_demand(score, config), level=DEFAULT_LEVEL)


# ============================================
# RÉSOLUTION DE LA MÉTRIQUE
# ============================================


def _fallback_chain(destination_id: Optional[int], service_type: Optional[str]) -> List[Tuple[str, Optional[int], Optional[str]]]:
    candidates = [
        ("exact", destination_id, service_type),
        ("destination", destination_id, None),
        ("service_type", None, service_type),
        ("global", None, None),
    ]
    chain: List[Tuple[str, Optional[int], Optional[str]]] = []
    seen = set()
    for level, dest, stype in candidates:
        if (dest, stype) in seen:
            continue
        # Un niveau "exact" ou partiel n'a de sens que si la dimension est connue
        if level == "destination" and destination_id is None:
            continue
        if level == "service_type" and service_type is None:
            continue
        seen.add((dest, stype))
        chain.append((level, dest, stype))
    return chain


def resolve_demand_metric(
    metrics: Iterable[DemandMetric],
    on_date: date,
    destination_id: Optional[int] = None,
    service_type: Optional[str] = None,
) -> Tuple[Optional[DemandMetric], str]:
    """
    Retourne la métrique la plus précise disponible pour la date, et son niveau de repli.
    """
    by_key = {
        (m.destination_id, m.service_type): m
        for m in metrics
        if m.metric_date == on_date
    }
    for level, dest, stype in _fallback_chain(destination_id, service_type):
        metric = by_key.get((dest, stype))
        if metric is not None:
            return metric, level
    return None, DEFAULT_LEVEL


# ============================================
# CALCUL DU SCORE
# ============================================


def compute_baseline(metrics: Sequence[DemandMetric]) -> DemandBaseline:
    """
    Moyenne de chaque signal sur la fenêtre glissante (les valeurs manquantes sont ignorées).
    """
    if not metrics:
        return DemandBaseline()

    df = pd.DataFrame(
        {
            "inquiry": [m.inquiry_volume for m in metrics],
            "occupancy": [m.occupancy_ratio for m in metrics],
            "conversion": [m.conversion_ratio for m in metrics],
        },
        dtype="float64",
    )
    means = df.mean(skipna=True)

    def _value(column: str) -> Optional[float]:
        value = means[column]
        return None if pd.isna(value) else float(value)

    return DemandBaseline(
        inquiry=_value("inquiry"),
        occupancy=_value("occupancy"),
        conversion=_value("conversion"),
    )


def _normalize(value: float, baseline: Optional[float], absolute_scale: float = 1.0) -> float:
    if baseline is not None and baseline > 0:
        return float(np.clip(value / (2.0 * baseline), 0.0, 1.0))
    return float(np.clip(value / absolute_scale, 0.0, 1.0))


def compute_demand_score(
    metric: Optional[DemandMetric],
    baseline: Optional[DemandBaseline] = None,
    config: Optional[PricingConfig] = None,
) -> float:
    """
    Score 0-100 d'une métrique.

    Les signaux absents (pas d'inventaire, aucun devis) sont retirés et les
    poids restants renormalisés. Une métrique sans aucun signal vaut le score par défaut.
    """
    config = config or get_default_pricing_config()
    if metric is None or not metric.has_signal:
        return config.default_demand_score

    baseline = baseline or DemandBaseline()
    signals: List[float] = []
    weights: List[float] = []

    signals.append(_normalize(metric.inquiry_volume, baseline.inquiry, config.inquiry_saturation))
    weights.append(config.inquiry_weight)

    occupancy = metric.occupancy_ratio
    if occupancy is not None:
        signals.append(_normalize(occupancy, baseline.occupancy))
        weights.append(config.occupancy_weight)

    conversion = metric.conversion_ratio
    if conversion is not None:
        signals.append(_normalize(conversion, baseline.conversion))
        weights.append(config.conversion_weight)

    weight_array = np.array(weights, dtype=float)
    if weight_array.sum() <= 0:
        return config.default_demand_score

    raw = float(np.dot(np.array(signals, dtype=float), weight_array) / weight_array.sum())
    return round(float(np.clip(raw * 100.0, 0.0, 100.0)), 2)


def _trailing_window(
    metrics: Iterable[DemandMetric],
    on_date: date,
    destination_id: Optional[int],
    service_type: Optional[str],
    days: int,
) -> List[DemandMetric]:
    start = on_date - timedelta(days=days)
    return [
        m
        for m in metrics
        if start <= m.metric_date < on_date
        and m.destination_id == destination_id
        and m.service_type == service_type
    ]


def score_demand(
    on_date: date,
    destination_id: Optional[int],
    service_type: Optional[str],
    metrics: Sequence[DemandMetric],
    config: Optional[PricingConfig] = None,
) -> DemandAssessment:
    """
    Évalue la demande à partir d'un snapshot de métriques déjà chargé.

    Un score déjà calculé par le job d'agrégation est réutilisé tel quel ;
    sinon le score est calculé depuis les compteurs et la baseline.
    """
    config = config or get_default_pricing_config()
    metric, level = resolve_demand_metric(metrics, on_date, destination_id, service_type)
    if metric is None:
        return default_assessment(config)

    if metric.demand_score is not None and np.isfinite(metric.demand_score):
        score = round(float(np.clip(metric.demand_score, 0.0, 100.0)), 2)
    else:
        window = _trailing_window(
            metrics, on_date, metric.destination_id, metric.service_type, config.demand_baseline_days
        )
        score = compute_demand_score(metric, compute_baseline(window), config)

    return DemandAssessment(score=score, tier=classify_demand(score, config), level=level)


# ============================================
# ACCÈS BASE
# ============================================


def parse_metric_rows(rows: Iterable[Mapping[str, Any]]) -> List[DemandMetric]:
    metrics: List[DemandMetric] = []
    for row in rows:
        try:
            metrics.append(DemandMetric.from_row(row))
        except ValueError as e:
            logger.warning(f"Skipping malformed demand metric row {row.get('id')!r}: {e}")
    return metrics


def load_metric_snapshot(
    start_date: date,
    end_date: date,
    destination_id: Optional[int],
    service_type: Optional[str],
    config: Optional[PricingConfig] = None,
) -> List[DemandMetric]:
    """
    Charge les métriques couvrant [start_date - baseline, end_date] pour un contexte.
    """
    config = config or get_default_pricing_config()
    rows = fetch_demand_metric_rows(
        start_date - timedelta(days=config.demand_baseline_days),
        end_date,
        destination_id=destination_id,
        service_type=service_type,
    )
    return parse_metric_rows(rows)


def get_demand_assessment(
    on_date: date,
    destination_id: Optional[int] = None,
    service_type: Optional[str] = None,
    config: Optional[PricingConfig] = None,
) -> DemandAssessment:
    """
    Point d'entrée avec lecture en base. Une erreur de lecture donne le score par défaut.
    """
    config = config or get_default_pricing_config()
    try:
        metrics = load_metric_snapshot(on_date, on_date, destination_id, service_type, config)
    except Exception as e:
        logger.warning(f"Demand metric lookup failed for {on_date} ({destination_id}, {service_type}): {e}")
        return default_assessment(config)
    return score_demand(on_date, destination_id, service_type, metrics, config)
