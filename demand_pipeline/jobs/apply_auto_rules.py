"""
Job quotidien d'application des règles auto-apply.

1. Charge les règles actives, auto-apply et valides aujourd'hui.
2. Signale les situations de forte / faible demande (métriques du jour).
3. Recalcule le prix de chaque service suivi (dernier snapshot `price_history`
   sur la fenêtre configurée) avec ces règles.
4. Écrit la trace dans le journal d'audit (`triggered_by = cron`, dédupliquée)
   et le snapshot `price_history` du jour.

Chaque service est traité isolément, comme dans le job d'agrégation.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd
import pytz

from dynamic_pricing.audit_logger import log_price_adjustments, record_price_history
from dynamic_pricing.calculator import calculate_dynamic_price
from dynamic_pricing.config import PricingConfig, get_default_pricing_config
from dynamic_pricing.demand_scorer import load_metric_snapshot, parse_metric_rows
from dynamic_pricing.interfaces.data_access import (
    fetch_auto_apply_rules,
    fetch_demand_metrics_for_date,
    fetch_price_history,
    fetch_seasons,
)
from dynamic_pricing.models.metrics import DemandMetric, TriggerSource
from dynamic_pricing.models.pricing import PricingContext
from dynamic_pricing.models.rules import PricingRule, Season
from dynamic_pricing.rule_store import parse_rules

from ..config.settings import Settings
from ..utils.monitoring import (
    AlertLevel,
    JobStatus,
    get_pipeline_monitor,
    log_job_end,
    log_job_start,
    status_from_counts,
)
from ..utils.validators import validate_data

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

JOB_NAME = "apply_auto_rules"

# Colonnes minimales d'un snapshot `price_history` pour le recalcul
TRACKED_SERVICE_SCHEMA = {
    "service_type": str,
    "service_id": int,
    "record_date": str,
    "base_price": (int, float, str),
}


def demand_alerts(metrics: List[DemandMetric], config: PricingConfig) -> Dict[str, List[str]]:
    """
    Alertes de forte demande (score >= seuil VERY_HIGH) et de faible demande (score < seuil LOW).
    """
    high: List[str] = []
    low: List[str] = []
    for metric in sorted(metrics, key=lambda m: -(m.demand_score or 0)):
        if metric.demand_score is None:
            continue
        if metric.destination_id is not None:
            target = f"destination #{metric.destination_id}"
        else:
            target = metric.service_type or "global"
        if metric.demand_score >= config.tier_thresholds["VERY_HIGH"]:
            high.append(f"High demand ({metric.demand_score:.0f}) for {target}")
        elif metric.demand_score < config.tier_thresholds["LOW"]:
            low.append(f"Low demand ({metric.demand_score:.0f}) for {target}")
    return {"high": high, "low": low}


def tracked_services(history_rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Dernier snapshot de chaque service (service_type, service_id) de l'historique.

    Les lignes incomplètes sont ignorées (WARNING via `validate_data`).
    """
    valid_rows = [
        row
        for row in history_rows
        if validate_data(row, TRACKED_SERVICE_SCHEMA)
        and all(row[field_name] is not None for field_name in TRACKED_SERVICE_SCHEMA)
    ]
    if not valid_rows:
        return []
    df = pd.DataFrame(valid_rows)
    latest = (
        df.sort_values("record_date")
        .drop_duplicates(subset=["service_type", "service_id"], keep="last")
        .sort_values(["service_type", "service_id"])
    )
    # NaN pandas -> None pour les colonnes optionnelles (service_name, currency)
    latest = latest.astype(object).where(pd.notna(latest), None)
    return latest.to_dict("records")


def reprice_service(
    snapshot: Dict[str, Any],
    run_date: date,
    rules: List[PricingRule],
    metrics: List[DemandMetric],
    seasons: List[Season],
    config: PricingConfig,
) -> Dict[str, Any]:
    """
    Recalcule le prix d'un service suivi et écrit audit + historique.

    Lève RuntimeError si l'audit ou l'historique n'a pas pu être écrit, pour
    que l'échec apparaisse dans le rapport du job.
    """
    context = PricingContext(
        service_type=snapshot["service_type"],
        service_id=int(snapshot["service_id"]),
        service_name=snapshot.get("service_name"),
        base_price=float(snapshot["base_price"]),
        currency=snapshot.get("currency"),
        travel_date=run_date,
        booking_date=run_date,
    )
    result = calculate_dynamic_price(context, rules=rules, metrics=metrics, seasons=seasons, config=config)

    audit = log_price_adjustments(
        context,
        result,
        triggered_by=TriggerSource.CRON,
        adjustment_date=run_date,
        reason="Auto-applied by cron",
        dedupe=True,
    )
    history = record_price_history(context, result, record_date=run_date)
    if not audit.ok or not history.ok:
        raise RuntimeError(audit.error or history.error)

    return {"adjustments": audit.records_written, "final_price": result.final_price}


async def apply_auto_rules(
    run_date: Optional[date] = None,
    settings: Optional[Settings] = None,
    config: Optional[PricingConfig] = None,
) -> Dict[str, Any]:
    """
    Applique les règles auto-apply du jour à tous les services suivis.

    Returns:
        Rapport {rulesEvaluated, servicesRepriced, adjustmentsLogged,
        highDemandAlerts, lowDemandAlerts, errors, status, success}
    """
    settings = settings or Settings.from_env()
    config = config or get_default_pricing_config()
    run_date = run_date or datetime.now(pytz.timezone(settings.default_timezone)).date()
    loop = asyncio.get_running_loop()

    await log_job_start(JOB_NAME, params={"run_date": run_date.isoformat()})

    report: Dict[str, Any] = {
        "run_date": run_date.isoformat(),
        "start_time": datetime.now(),
        "rulesEvaluated": 0,
        "servicesRepriced": 0,
        "adjustmentsLogged": 0,
        "highDemandAlerts": [],
        "lowDemandAlerts": [],
        "errors": [],
    }

    try:
        rules = parse_rules(await loop.run_in_executor(None, fetch_auto_apply_rules, run_date))
        today_metrics = parse_metric_rows(
            await loop.run_in_executor(None, fetch_demand_metrics_for_date, run_date)
        )
        history_rows = await loop.run_in_executor(
            None,
            fetch_price_history,
            run_date - timedelta(days=settings.tracked_service_lookback_days),
            run_date,
        )
        seasons = [Season.from_row(row) for row in await loop.run_in_executor(None, fetch_seasons)]
    except Exception as e:
        error_msg = f"Failed to load auto-apply inputs for {run_date}: {e}"
        logger.error(error_msg, exc_info=True)
        report["errors"].append(error_msg)
        return await _finish(report)

    report["rulesEvaluated"] = len(rules)

    alerts = demand_alerts(today_metrics, config)
    report["highDemandAlerts"] = alerts["high"]
    report["lowDemandAlerts"] = alerts["low"]
    if alerts["high"] or alerts["low"]:
        await get_pipeline_monitor().send_alert(
            f"Demand alerts for {run_date}: {len(alerts['high'])} high, {len(alerts['low'])} low",
            AlertLevel.WARNING,
            {"high": alerts["high"][:5], "low": alerts["low"][:5]},
        )

    services = tracked_services(history_rows)
    metrics_by_type: Dict[str, List[DemandMetric]] = {}

    for snapshot in services:
        label = f"{snapshot.get('service_type')} #{snapshot.get('service_id')}"
        try:
            service_type = snapshot["service_type"]
            if service_type not in metrics_by_type:
                metrics_by_type[service_type] = await loop.run_in_executor(
                    None, load_metric_snapshot, run_date, run_date, None, service_type, config
                )
            outcome = await loop.run_in_executor(
                None,
                reprice_service,
                snapshot,
                run_date,
                rules,
                metrics_by_type[service_type],
                seasons,
                config,
            )
            report["servicesRepriced"] += 1
            report["adjustmentsLogged"] += outcome["adjustments"]
        except Exception as e:
            error_msg = f"Failed to apply auto rules to {label}: {e}"
            logger.error(error_msg, exc_info=True)
            report["errors"].append(error_msg)

    return await _finish(report)


async def _finish(report: Dict[str, Any]) -> Dict[str, Any]:
    report["end_time"] = datetime.now()
    report["duration_seconds"] = (report["end_time"] - report["start_time"]).total_seconds()

    status = status_from_counts(report["servicesRepriced"], len(report["errors"]))
    report["status"] = status.value
    report["success"] = status != JobStatus.FAILED

    await log_job_end(
        JOB_NAME,
        status,
        stats={
            "records_success": report["servicesRepriced"],
            "records_failed": len(report["errors"]),
            "rules_evaluated": report["rulesEvaluated"],
            "adjustments_logged": report["adjustmentsLogged"],
        },
        errors=report["errors"] or None,
    )

    logger.info(
        f"Price optimization completed: {report['rulesEvaluated']} rules evaluated, "
        f"{report['servicesRepriced']} services repriced, {report['adjustmentsLogged']} adjustments logged"
    )
    return report


def main():
    """Point d'entrée CLI."""
    parser = argparse.ArgumentParser(description="Apply auto-apply pricing rules to tracked services")
    parser.add_argument("--date", help="Run date (YYYY-MM-DD, default: today)")
    parser.add_argument("--json", action="store_true", help="Output report as JSON")
    args = parser.parse_args()

    exit_code = 0
    try:
        settings = Settings.from_env()
        settings.apply_log_level()
        run_date = date.fromisoformat(args.date) if args.date else None
        report = asyncio.run(apply_auto_rules(run_date=run_date, settings=settings))

        if args.json:
            print(json.dumps(report, indent=2, default=str))
        else:
            print(f"Status: {report['status']}")
            print(f"Rules evaluated: {report['rulesEvaluated']}")
            print(f"Services repriced: {report['servicesRepriced']}")
            print(f"Adjustments logged: {report['adjustmentsLogged']}")
            print(f"High demand alerts: {len(report['highDemandAlerts'])}")
            print(f"Low demand alerts: {len(report['lowDemandAlerts'])}")
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
