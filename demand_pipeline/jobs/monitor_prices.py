"""
Job quotidien de surveillance des tarifs hôteliers.

Compare le coût (chambre double) de chaque tarif actif à une estimation du
marché par catégorie d'hôtel, ajustée par la saison du mois de référence,
et crée des alertes `price_alerts` :

- negotiation_opportunity : coût > 120% du marché,
- price_increase : marge de vente entre 0 et 30%,
- seasonal_trend : basse saison (multiplicateur < 0.9), renégocier,
- price_drop : coût < 70% du marché, tarif à verrouiller.

Une alerte identique (même service, même type) n'est pas recréée dans les
24 heures. Chaque hôtel est traité isolément, comme dans les autres jobs.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytz

from dynamic_pricing.interfaces.data_access import (
    fetch_active_hotel_rates,
    fetch_active_hotels,
    insert_price_alert,
    price_alert_exists_since,
)
from dynamic_pricing.models.fields import safe_float

from ..config.settings import Settings
from ..utils.monitoring import (
    AlertLevel,
    JobStatus,
    get_pipeline_monitor,
    log_job_end,
    log_job_start,
    status_from_counts,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

JOB_NAME = "monitor_prices"

ALERT_DEDUPE_HOURS = 24

# Estimations du marché par catégorie (USD par nuit, chambre double)
MARKET_RATE_ESTIMATES: Dict[str, Dict[str, float]] = {
    "luxury": {"low": 100, "mid": 150, "high": 250},
    "business": {"low": 50, "mid": 80, "high": 120},
    "boutique": {"low": 60, "mid": 90, "high": 150},
    "mountain_lodge": {"low": 25, "mid": 40, "high": 70},
    "safari_lodge": {"low": 80, "mid": 120, "high": 200},
    "heritage": {"low": 35, "mid": 55, "high": 90},
    "budget": {"low": 15, "mid": 25, "high": 40},
}
DEFAULT_CATEGORY = "business"

OVERPRICED_RATIO = 1.2
UNDERPRICED_RATIO = 0.7
MIN_MARGIN_PERCENT = 30.0
LOW_SEASON_MULTIPLIER = 0.9


def season_multiplier(month: int) -> Tuple[float, str]:
    """Multiplicateur de saison (Himalaya) pour un mois 1-12."""
    if month in (10, 11):
        return 1.3, "peak (Oct-Nov)"
    if 3 <= month <= 5:
        return 1.2, "spring (Mar-May)"
    if 6 <= month <= 8:
        return 0.7, "monsoon (Jun-Aug)"
    if month in (12, 1, 2):
        return 0.9, "winter (Dec-Feb)"
    return 1.0, "shoulder"


def market_mid_rate(category: Optional[str], multiplier: float) -> float:
    estimate = MARKET_RATE_ESTIMATES.get(category or DEFAULT_CATEGORY, MARKET_RATE_ESTIMATES[DEFAULT_CATEGORY])
    return estimate["mid"] * multiplier


def rate_alerts(
    hotel: Dict[str, Any],
    rate: Dict[str, Any],
    multiplier: float,
    season: str,
) -> List[Dict[str, Any]]:
    """
    Alertes d'un tarif (enregistrements `price_alerts` prêts à insérer).

    Un tarif sans coût (nul ou absent) n'est pas analysé.
    """
    cost = safe_float(rate.get("cost_double"))
    sell = safe_float(rate.get("sell_double"))
    if cost <= 0:
        return []

    market_mid = market_mid_rate(hotel.get("category"), multiplier)
    base = {
        "service_type": "hotel",
        "service_name": f"{hotel.get('name')} ({rate.get('room_type')} / {rate.get('meal_plan')})",
        "hotel_id": hotel.get("id"),
        "status": "new",
    }
    alerts: List[Dict[str, Any]] = []

    if cost > market_mid * OVERPRICED_RATIO:
        overpay = round((cost - market_mid) / market_mid * 100)
        alerts.append({
            **base,
            "alert_type": "negotiation_opportunity",
            "current_price": cost,
            "market_average": round(market_mid, 2),
            "change_percent": overpay,
            "priority": "high" if overpay > 40 else "medium",
            "recommendation": (
                f"Cost {cost:.2f}/night is {overpay}% above estimated market rate of {market_mid:.0f}/night. "
                f"Negotiate for a {min(overpay, 30)}% reduction during {season}."
            ),
        })

    margin = (sell - cost) / cost * 100 if sell > 0 else 0.0
    if 0 < margin < MIN_MARGIN_PERCENT:
        alerts.append({
            **base,
            "alert_type": "price_increase",
            "current_price": sell,
            "previous_price": cost,
            "change_percent": round(margin),
            "priority": "high" if margin < 20 else "medium",
            "recommendation": (
                f"Current margin is only {margin:.1f}% (sell {sell:.2f} vs cost {cost:.2f}). "
                f"Consider increasing sell price to {cost * 1.5:.0f} for standard 50% margin."
            ),
        })

    if multiplier < LOW_SEASON_MULTIPLIER:
        suggested = cost * multiplier
        discount = round((1 - multiplier) * 100)
        alerts.append({
            **base,
            "alert_type": "seasonal_trend",
            "current_price": cost,
            "market_average": round(suggested, 2),
            "change_percent": discount,
            "priority": "low",
            "recommendation": (
                f"Low season ({season}): negotiate temporary rate reduction to ~{suggested:.0f}/night "
                f"({discount}% off)."
            ),
        })

    if cost < market_mid * UNDERPRICED_RATIO:
        below = round((market_mid - cost) / market_mid * 100)
        alerts.append({
            **base,
            "alert_type": "price_drop",
            "current_price": cost,
            "market_average": round(market_mid, 2),
            "change_percent": below,
            "priority": "medium",
            "recommendation": (
                f"Excellent rate: {cost:.2f}/night is {below}% below market average ({market_mid:.0f}). "
                "Consider locking in this rate with a longer-term contract."
            ),
        })

    return alerts


def create_price_alert(alert: Dict[str, Any], since: datetime) -> bool:
    """Insère l'alerte sauf si une alerte identique existe depuis `since`. Retourne True si créée."""
    if price_alert_exists_since(alert["service_name"], alert["alert_type"], since):
        logger.debug(f"Alert {alert['alert_type']} already raised for {alert['service_name']}")
        return False
    insert_price_alert(alert)
    return True


def rates_by_hotel(rates: List[Dict[str, Any]]) -> Dict[int, List[Dict[str, Any]]]:
    grouped: Dict[int, List[Dict[str, Any]]] = {}
    for rate in rates:
        grouped.setdefault(rate.get("hotel_id"), []).append(rate)
    return grouped


async def monitor_prices(
    run_date: Optional[date] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Analyse les tarifs actifs de tous les hôtels actifs.

    Returns:
        Rapport {hotelsAnalyzed, alertsGenerated, alertsSkipped, highPriorityAlerts,
        season, errors, status, success}
    """
    settings = settings or Settings.from_env()
    run_date = run_date or datetime.now(pytz.timezone(settings.default_timezone)).date()
    multiplier, season = season_multiplier(run_date.month)
    loop = asyncio.get_running_loop()

    await log_job_start(JOB_NAME, params={"run_date": run_date.isoformat(), "season": season})

    report: Dict[str, Any] = {
        "run_date": run_date.isoformat(),
        "start_time": datetime.now(),
        "season": season,
        "hotelsAnalyzed": 0,
        "alertsGenerated": 0,
        "alertsSkipped": 0,
        "highPriorityAlerts": [],
        "errors": [],
    }

    try:
        hotels = await loop.run_in_executor(None, fetch_active_hotels)
        rates = await loop.run_in_executor(
            None, fetch_active_hotel_rates, [h["id"] for h in hotels if h.get("id") is not None]
        )
    except Exception as e:
        error_msg = f"Failed to load hotel rates: {e}"
        logger.error(error_msg, exc_info=True)
        report["errors"].append(error_msg)
        return await _finish(report)

    grouped = rates_by_hotel(rates)
    since = datetime.now(pytz.utc) - timedelta(hours=ALERT_DEDUPE_HOURS)

    for hotel in hotels:
        try:
            for rate in grouped.get(hotel.get("id"), []):
                for alert in rate_alerts(hotel, rate, multiplier, season):
                    created = await loop.run_in_executor(None, create_price_alert, alert, since)
                    if not created:
                        report["alertsSkipped"] += 1
                        continue
                    report["alertsGenerated"] += 1
                    if alert["priority"] == "high":
                        report["highPriorityAlerts"].append(f"{alert['alert_type']}: {alert['service_name']}")
            report["hotelsAnalyzed"] += 1
        except Exception as e:
            error_msg = f"Error analyzing {hotel.get('name')}: {e}"
            logger.error(error_msg, exc_info=True)
            report["errors"].append(error_msg)

    if report["highPriorityAlerts"]:
        await get_pipeline_monitor().send_alert(
            f"Price monitoring for {run_date}: {len(report['highPriorityAlerts'])} high priority alerts",
            AlertLevel.WARNING,
            {"alerts": report["highPriorityAlerts"][:5]},
        )

    return await _finish(report)


async def _finish(report: Dict[str, Any]) -> Dict[str, Any]:
    report["end_time"] = datetime.now()
    report["duration_seconds"] = (report["end_time"] - report["start_time"]).total_seconds()

    status = status_from_counts(report["hotelsAnalyzed"], len(report["errors"]))
    report["status"] = status.value
    report["success"] = status != JobStatus.FAILED

    await log_job_end(
        JOB_NAME,
        status,
        stats={
            "records_success": report["hotelsAnalyzed"],
            "records_failed": len(report["errors"]),
            "alerts_generated": report["alertsGenerated"],
            "alerts_skipped": report["alertsSkipped"],
        },
        errors=report["errors"] or None,
    )

    logger.info(
        f"Price monitoring completed: {report['hotelsAnalyzed']} hotels analyzed, "
        f"{report['alertsGenerated']} alerts generated"
    )
    return report


def main():
    """Point d'entrée CLI."""
    parser = argparse.ArgumentParser(description="Compare hotel rates with market estimates and raise price alerts")
    parser.add_argument("--date", help="Reference date for the season (YYYY-MM-DD, default: today)")
    parser.add_argument("--json", action="store_true", help="Output report as JSON")
    args = parser.parse_args()

    exit_code = 0
    try:
        settings = Settings.from_env()
        settings.apply_log_level()
        run_date = date.fromisoformat(args.date) if args.date else None
        report = asyncio.run(monitor_prices(run_date=run_date, settings=settings))

        if args.json:
            print(json.dumps(report, indent=2, default=str))
        else:
            print(f"Status: {report['status']}")
            print(f"Season: {report['season']}")
            print(f"Hotels analyzed: {report['hotelsAnalyzed']}")
            print(f"Alerts generated: {report['alertsGenerated']}")
            print(f"Duplicate alerts skipped: {report['alertsSkipped']}")
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
