"""
Job quotidien d'agrégation de la demande.

Pour la veille (timezone configurée), calcule les compteurs de funnel depuis
les devis et réservations, puis écrit une ligne `demand_metrics` par élément :
1. global (toutes destinations, tous services),
2. chaque destination active (devis dont le texte `destination` contient la ville, ou le pays),
3. chaque type de service configuré (devis contenant au moins un élément de ce type).

Les réservations sont rattachées à une destination ou un type de service via
leur devis. Chaque élément est traité isolément : une erreur est ajoutée au
rapport et le job passe à l'élément suivant.

Les compteurs calculés ici (devis, réservations, revenu) sont écrasés, ce qui
rend le job rejouable ; les compteurs alimentés par `record_demand_signal`
(recherches, demandes, inventaire) sont conservés.
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd
import pytz

from dynamic_pricing.config import PricingConfig, get_default_pricing_config
from dynamic_pricing.demand_scorer import compute_baseline, compute_demand_score, parse_metric_rows
from dynamic_pricing.interfaces.data_access import (
    fetch_active_destinations,
    fetch_bookings_created_on,
    fetch_demand_metric,
    fetch_demand_metric_rows,
    fetch_quote_items_for_quotes,
    fetch_quotes_by_ids,
    fetch_quotes_created_on,
    save_demand_metric,
)
from dynamic_pricing.models.metrics import DemandMetric

from ..config.settings import Settings
from ..utils.monitoring import JobStatus, log_job_end, log_job_start, status_from_counts
from ..utils.validators import validate_signal_counters

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

JOB_NAME = "aggregate_demand"

SCOPE_GLOBAL = "global"
SCOPE_DESTINATIONS = "destinations"
SCOPE_SERVICE_TYPES = "service_types"
ALL_SCOPES = (SCOPE_GLOBAL, SCOPE_DESTINATIONS, SCOPE_SERVICE_TYPES)


@dataclass(frozen=True)
class AggregationItem:
    """Élément du batch : une ligne `demand_metrics` à recalculer."""

    label: str
    destination_id: Optional[int] = None
    service_type: Optional[str] = None
    search_term: Optional[str] = None


@dataclass
class DemandSources:
    """
    Données brutes de la journée, chargées une seule fois pour tout le batch.

    - `quotes` : devis créés ce jour-là,
    - `quote_lookup` : ces devis plus ceux référencés par les réservations du jour,
    - `quote_items` : éléments (type de service) des devis de `quote_lookup`,
    - `bookings` : réservations créées ce jour-là.
    """

    quotes: pd.DataFrame
    quote_lookup: pd.DataFrame
    quote_items: pd.DataFrame
    bookings: pd.DataFrame

    @classmethod
    def from_rows(
        cls,
        quotes: List[Dict[str, Any]],
        booking_quotes: List[Dict[str, Any]],
        quote_items: List[Dict[str, Any]],
        bookings: List[Dict[str, Any]],
    ) -> "DemandSources":
        quotes_df = pd.DataFrame(quotes, columns=["id", "destination", "created_at"])
        lookup_df = (
            pd.concat([quotes_df, pd.DataFrame(booking_quotes, columns=["id", "destination", "created_at"])])
            .drop_duplicates(subset="id")
            .reset_index(drop=True)
        )
        bookings_df = pd.DataFrame(bookings, columns=["id", "quote_id", "total_amount", "created_at"])
        bookings_df["total_amount"] = pd.to_numeric(bookings_df["total_amount"], errors="coerce").fillna(0.0)
        return cls(
            quotes=quotes_df,
            quote_lookup=lookup_df,
            quote_items=pd.DataFrame(quote_items, columns=["quote_id", "service_type"]),
            bookings=bookings_df,
        )


def default_target_date(timezone: str = "UTC") -> date:
    """La veille, dans la timezone configurée."""
    return datetime.now(pytz.timezone(timezone)).date() - timedelta(days=1)


def load_demand_sources(target_date: date, timezone: str = "UTC") -> DemandSources:
    """Devis et réservations créés pendant la journée locale `target_date` (timezone configurée)."""
    quotes = fetch_quotes_created_on(target_date, timezone)
    bookings = fetch_bookings_created_on(target_date, timezone)

    known_ids = {q.get("id") for q in quotes}
    missing_ids = sorted(
        {b.get("quote_id") for b in bookings if b.get("quote_id") is not None} - known_ids
    )
    booking_quotes = fetch_quotes_by_ids(missing_ids)

    all_ids = sorted(known_ids | {q.get("id") for q in booking_quotes})
    quote_items = fetch_quote_items_for_quotes(all_ids)

    return DemandSources.from_rows(quotes, booking_quotes, quote_items, bookings)


def build_items(
    destinations: Iterable[Dict[str, Any]],
    service_types: Iterable[str],
    scopes: Iterable[str] = ALL_SCOPES,
) -> List[AggregationItem]:
    scopes = set(scopes)
    items: List[AggregationItem] = []

    if SCOPE_GLOBAL in scopes:
        items.append(AggregationItem(label="global"))

    if SCOPE_DESTINATIONS in scopes:
        for destination in destinations:
            term = destination.get("city") or destination.get("country")
            if not term:
                continue
            items.append(
                AggregationItem(
                    label=f"destination {term}",
                    destination_id=destination.get("id"),
                    search_term=term,
                )
            )

    if SCOPE_SERVICE_TYPES in scopes:
        for service_type in service_types:
            items.append(AggregationItem(label=f"service type {service_type}", service_type=service_type))

    return items


def _matching_quote_ids(sources: DemandSources, item: AggregationItem) -> Optional[Set[Any]]:
    """Ids des devis rattachés à l'élément (None = tous)."""
    if item.search_term is not None:
        lookup = sources.quote_lookup
        mask = lookup["destination"].astype("string").str.contains(
            item.search_term, case=False, regex=False, na=False
        )
        return set(lookup.loc[mask, "id"])

    if item.service_type is not None:
        items = sources.quote_items
        return set(items.loc[items["service_type"] == item.service_type, "quote_id"])

    return None


def compute_item_counters(sources: DemandSources, item: AggregationItem) -> Dict[str, Any]:
    """
    Compteurs de la journée pour un élément : devis créés, réservations et revenu.
    """
    quote_ids = _matching_quote_ids(sources, item)
    quotes = sources.quotes
    bookings = sources.bookings
    if quote_ids is not None:
        quotes = quotes[quotes["id"].isin(quote_ids)]
        bookings = bookings[bookings["quote_id"].isin(quote_ids)]

    return {
        "quotes_generated": int(len(quotes)),
        "bookings_confirmed": int(len(bookings)),
        "total_revenue": round(float(bookings["total_amount"].sum()), 2),
    }


def score_and_save_metric(
    metric: DemandMetric,
    existing_id: Optional[int],
    config: Optional[PricingConfig] = None,
) -> DemandMetric:
    """
    Recalcule les taux dérivés et le score (contre la baseline des jours précédents), puis écrit la ligne.
    """
    config = config or get_default_pricing_config()
    metric = metric.with_derived_rates()

    history_rows = fetch_demand_metric_rows(
        metric.metric_date - timedelta(days=config.demand_baseline_days),
        metric.metric_date - timedelta(days=1),
        destination_id=metric.destination_id,
        service_type=metric.service_type,
    )
    window = [
        m
        for m in parse_metric_rows(history_rows)
        if m.destination_id == metric.destination_id and m.service_type == metric.service_type
    ]
    metric = replace(metric, demand_score=compute_demand_score(metric, compute_baseline(window), config))

    save_demand_metric(metric.to_record(), existing_id=existing_id)
    return metric


def _existing_metric(
    metric_date: date,
    destination_id: Optional[int],
    service_type: Optional[str],
) -> Tuple[Optional[DemandMetric], Optional[int]]:
    row = fetch_demand_metric(metric_date, destination_id, service_type)
    if row is None:
        return None, None
    return DemandMetric.from_row(row), row.get("id")


def aggregate_item(
    sources: DemandSources,
    item: AggregationItem,
    target_date: date,
    config: Optional[PricingConfig] = None,
) -> DemandMetric:
    """Traitement complet (synchrone) d'un élément du batch."""
    counters = compute_item_counters(sources, item)
    existing, existing_id = _existing_metric(target_date, item.destination_id, item.service_type)
    base = existing or DemandMetric(
        metric_date=target_date,
        destination_id=item.destination_id,
        service_type=item.service_type,
    )
    return score_and_save_metric(replace(base, **counters), existing_id, config)


def record_demand_signal(
    metric_date: date,
    destination_id: Optional[int] = None,
    service_type: Optional[str] = None,
    counters: Optional[Dict[str, int]] = None,
    revenue: float = 0.0,
    config: Optional[PricingConfig] = None,
) -> DemandMetric:
    """
    Ajoute des compteurs (saisie manuelle, événements de tracking) à la ligne du jour.

    Contrairement au job, les valeurs s'additionnent à l'existant.

    Raises:
        ValueError: compteur inconnu ou négatif, revenu négatif
    """
    increments = validate_signal_counters(counters or {})
    if revenue < 0:
        raise ValueError(f"revenue must not be negative (got {revenue})")

    existing, existing_id = _existing_metric(metric_date, destination_id, service_type)
    base = existing or DemandMetric(
        metric_date=metric_date,
        destination_id=destination_id,
        service_type=service_type,
    )
    updates: Dict[str, Any] = {
        name: (getattr(base, name) or 0) + value for name, value in increments.items()
    }
    updates["total_revenue"] = base.total_revenue + revenue

    metric = score_and_save_metric(replace(base, **updates), existing_id, config)
    logger.info(
        f"Recorded demand signal for {metric_date} "
        f"(destination={destination_id}, service_type={service_type}): {increments}"
    )
    return metric


async def aggregate_demand(
    target_date: Optional[date] = None,
    settings: Optional[Settings] = None,
    config: Optional[PricingConfig] = None,
    scopes: Iterable[str] = ALL_SCOPES,
) -> Dict[str, Any]:
    """
    Agrège la demande d'une journée (la veille par défaut).

    Returns:
        Rapport {metricsUpdated, errors, skipped, status, success, duration_seconds}
    """
    settings = settings or Settings.from_env()
    config = config or get_default_pricing_config()
    target_date = target_date or default_target_date(settings.default_timezone)
    scopes = tuple(scopes)
    loop = asyncio.get_running_loop()

    await log_job_start(JOB_NAME, params={"target_date": target_date.isoformat(), "scopes": list(scopes)})

    report: Dict[str, Any] = {
        "target_date": target_date.isoformat(),
        "start_time": datetime.now(),
        "metricsUpdated": 0,
        "errors": [],
        "skipped": 0,
    }
    started = time.monotonic()

    try:
        sources = await loop.run_in_executor(
            None, load_demand_sources, target_date, settings.default_timezone
        )
        destinations = (
            await loop.run_in_executor(None, fetch_active_destinations)
            if SCOPE_DESTINATIONS in scopes
            else []
        )
    except Exception as e:
        error_msg = f"Failed to load demand sources for {target_date}: {e}"
        logger.error(error_msg, exc_info=True)
        report["errors"].append(error_msg)
        return await _finish(report)

    items = build_items(destinations, settings.service_types, scopes)
    logger.info(f"Aggregating demand for {target_date}: {len(items)} items")

    for index, item in enumerate(items):
        if time.monotonic() - started > settings.job_time_budget_seconds:
            remaining = len(items) - index
            report["skipped"] = remaining
            report["errors"].append(
                f"Time budget of {settings.job_time_budget_seconds}s exceeded: "
                f"{remaining} items deferred to next run"
            )
            logger.warning(report["errors"][-1])
            break

        try:
            metric = await loop.run_in_executor(None, aggregate_item, sources, item, target_date, config)
            report["metricsUpdated"] += 1
            logger.debug(f"Updated demand metric for {item.label}: score {metric.demand_score}")
        except Exception as e:
            error_msg = f"Failed to analyze demand for {item.label}: {e}"
            logger.error(error_msg, exc_info=True)
            report["errors"].append(error_msg)

    return await _finish(report)


async def _finish(report: Dict[str, Any]) -> Dict[str, Any]:
    report["end_time"] = datetime.now()
    report["duration_seconds"] = (report["end_time"] - report["start_time"]).total_seconds()

    status = status_from_counts(report["metricsUpdated"], len(report["errors"]))
    report["status"] = status.value
    report["success"] = status != JobStatus.FAILED

    await log_job_end(
        JOB_NAME,
        status,
        stats={
            "records_success": report["metricsUpdated"],
            "records_failed": len(report["errors"]),
            "skipped": report["skipped"],
            "duration_seconds": report["duration_seconds"],
        },
        errors=report["errors"] or None,
    )

    logger.info(
        f"Demand analysis completed: {report['metricsUpdated']} metrics updated, "
        f"{len(report['errors'])} errors in {report['duration_seconds']:.2f}s"
    )
    return report


def main():
    """Point d'entrée CLI."""
    parser = argparse.ArgumentParser(description="Aggregate daily demand metrics")
    parser.add_argument("--date", help="Target date (YYYY-MM-DD, default: yesterday)")
    parser.add_argument(
        "--scope",
        nargs="+",
        choices=ALL_SCOPES,
        default=list(ALL_SCOPES),
        help="Item families to aggregate (default: all)",
    )
    parser.add_argument("--json", action="store_true", help="Output report as JSON")
    args = parser.parse_args()

    exit_code = 0
    try:
        settings = Settings.from_env()
        settings.apply_log_level()
        target_date = date.fromisoformat(args.date) if args.date else None
        report = asyncio.run(aggregate_demand(target_date=target_date, settings=settings, scopes=args.scope))

        if args.json:
            print(json.dumps(report, indent=2, default=str))
        else:
            print(f"Status: {report['status']}")
            print(f"Metrics updated: {report['metricsUpdated']}")
            print(f"Skipped: {report['skipped']}")
            print(f"Duration: {report['duration_seconds']:.2f}s")
            for error in report["errors"][:10]:
                print(f"  - {error}")

        if report["status"] == JobStatus.FAILED.value:
            exit_code = 1

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        if args.json:
            print(json.dumps({"status": "error", "error": str(e)}))
        else:
            print(f"\nFatal error: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
