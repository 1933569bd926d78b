"""
Alertes de prix (`price_alerts`) : consultation et suivi côté admin.

Les alertes sont créées par le job `demand_pipeline.jobs.monitor_prices` ;
ce module sert la liste filtrée avec ses compteurs et les changements de
statut (acquittement, rejet, traitement).
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz

from .interfaces.data_access import fetch_price_alert_statuses, fetch_price_alerts, update_price_alerts
from .models.pricing import PricingInputError

logger = logging.getLogger(__name__)

ALERT_TYPES = ("negotiation_opportunity", "price_increase", "seasonal_trend", "price_drop")
ALERT_STATUSES = ("new", "acknowledged", "dismissed", "actioned")
PRIORITY_RANK = {"high": 1, "medium": 2, "low": 3}

# Horodatage posé avec le statut correspondant
STATUS_TIMESTAMPS = {"acknowledged": "acknowledged_at", "dismissed": "dismissed_at"}


def alert_stats(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    """Compteurs de l'admin : total, nouvelles, nouvelles prioritaires, acquittées."""
    return {
        "total": len(rows),
        "newCount": sum(1 for r in rows if r.get("status") == "new"),
        "highPriority": sum(1 for r in rows if r.get("status") == "new" and r.get("priority") == "high"),
        "acknowledgedCount": sum(1 for r in rows if r.get("status") == "acknowledged"),
    }


def list_price_alerts(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    alert_type: Optional[str] = None,
    limit: int = 50,
) -> Dict[str, Any]:
    """
    Alertes filtrées, les plus prioritaires d'abord puis les plus récentes.

    Returns:
        {"alerts": [...], "stats": {...}} ; les compteurs portent sur toutes les alertes.
    """
    if limit <= 0:
        raise PricingInputError("limit must be a positive integer")

    rows = fetch_price_alerts(status=status, priority=priority, alert_type=alert_type)
    # tri stable : l'ordre created_at desc de la requête est conservé à priorité égale
    rows = sorted(rows, key=lambda r: PRIORITY_RANK.get(r.get("priority"), len(PRIORITY_RANK) + 1))

    return {"alerts": rows[:limit], "stats": alert_stats(fetch_price_alert_statuses())}


def update_alert_status(alert_ids: List[int], status: str) -> List[Dict[str, Any]]:
    """
    Change le statut d'une ou plusieurs alertes.

    Lève PricingInputError si le statut est inconnu ou si aucune alerte ne correspond.
    """
    if status not in ALERT_STATUSES:
        raise PricingInputError(f"Invalid alert status {status!r} (expected one of: {', '.join(ALERT_STATUSES)})")
    if not alert_ids:
        raise PricingInputError("alertId or bulkIds is required")

    record: Dict[str, Any] = {"status": status}
    if status in STATUS_TIMESTAMPS:
        record[STATUS_TIMESTAMPS[status]] = datetime.now(pytz.utc).isoformat()

    updated = update_price_alerts(alert_ids, record)
    if not updated:
        raise PricingInputError(f"Price alert not found: {', '.join(str(i) for i in alert_ids)}")

    logger.info(f"{len(updated)} price alert(s) marked {status}")
    return updated
