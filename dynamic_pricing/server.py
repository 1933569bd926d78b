"""
Serveur Python persistant pour le moteur de pricing dynamique.

Le process attend les requêtes via stdin. Si une requête plante, le serveur
renvoie une réponse d'erreur et continue.

Communication :
- Entrée : JSON ligne par ligne sur stdin
- Sortie : JSON ligne par ligne sur stdout
- Logs : stderr

Actions (`action`, "price" par défaut) :
- price    : prix pour une date (`travelDate`), audit optionnel (`audit`),
- simulate : courbe de prix sur [`startDate`, `endDate`],
- analytics: analytics sur une période,
- price_alerts        : alertes de prix filtrées et compteurs,
- update_price_alerts : changement de statut (`alertId` ou `bulkIds`).
"""

import json
import logging
import os
import sys
from typing import Any, Callable, Dict, Mapping, Optional

from .analytics import get_pricing_analytics
from .audit_logger import log_price_adjustments
from .calculator import calculate_dynamic_price
from .models.fields import pick, to_date, to_optional_int
from .models.metrics import TriggerSource
from .models.pricing import PricingContext, PricingInputError
from .price_alerts import list_price_alerts, update_alert_status
from .simulator import simulate_pricing_range

logger = logging.getLogger(__name__)


def _parse_trigger(value: Optional[str]) -> TriggerSource:
    if value is None:
        return TriggerSource.QUOTE_BUILDER
    try:
        return TriggerSource(value)
    except ValueError as e:
        raise PricingInputError(f"Invalid triggeredBy {value!r}") from e


def handle_price(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Format attendu :
    {
        "serviceType": "hotel", "serviceId": 12, "basePrice": 1000,
        "travelDate": "2025-10-01", "paxCount": 2, ...,
        "audit": {"quoteId": 5, "bookingId": null, "triggeredBy": "quote_builder"}  # optionnel
    }
    """
    context = PricingContext.from_request(data)
    if context.travel_date is None:
        raise PricingInputError("travelDate is required")

    result = calculate_dynamic_price(context)
    response: Dict[str, Any] = {"status": "success", **result.to_dict()}

    audit = data.get("audit")
    if audit:
        try:
            quote_id = to_optional_int(pick(audit, "quote_id", "quoteId"))
            booking_id = to_optional_int(pick(audit, "booking_id", "bookingId"))
        except ValueError as e:
            raise PricingInputError(str(e)) from e
        report = log_price_adjustments(
            context,
            result,
            triggered_by=_parse_trigger(pick(audit, "triggered_by", "triggeredBy")),
            quote_id=quote_id,
            booking_id=booking_id,
            approved_by=pick(audit, "approved_by", "approvedBy"),
            reason=pick(audit, "reason"),
            dedupe=bool(audit.get("dedupe", False)),
        )
        response["audit"] = report.to_dict()

    return response


def handle_simulate(data: Mapping[str, Any]) -> Dict[str, Any]:
    context = PricingContext.from_request(data)
    try:
        start_date = to_date(pick(data, "start_date", "startDate"))
        end_date = to_date(pick(data, "end_date", "endDate"))
    except ValueError as e:
        raise PricingInputError(str(e)) from e
    if start_date is None or end_date is None:
        raise PricingInputError("startDate and endDate are required")

    return {"status": "success", **simulate_pricing_range(context, start_date, end_date)}


def handle_analytics(data: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        start_date = to_date(pick(data, "start_date", "startDate"))
        end_date = to_date(pick(data, "end_date", "endDate"))
        destination_id = to_optional_int(pick(data, "destination_id", "destinationId"))
    except ValueError as e:
        raise PricingInputError(str(e)) from e

    return {
        "status": "success",
        **get_pricing_analytics(
            start_date=start_date,
            end_date=end_date,
            service_type=pick(data, "service_type", "serviceType"),
            destination_id=destination_id,
        ),
    }


def handle_price_alerts(data: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        limit = to_optional_int(pick(data, "limit"))
    except ValueError as e:
        raise PricingInputError(str(e)) from e

    return {
        "status": "success",
        **list_price_alerts(
            status=pick(data, "alert_status", "alertStatus"),
            priority=pick(data, "priority"),
            alert_type=pick(data, "alert_type", "alertType"),
            limit=50 if limit is None else limit,
        ),
    }


def handle_update_price_alerts(data: Mapping[str, Any]) -> Dict[str, Any]:
    bulk_ids = pick(data, "bulk_ids", "bulkIds")
    try:
        if bulk_ids is not None:
            if not isinstance(bulk_ids, list):
                raise PricingInputError("bulkIds must be a list")
            alert_ids = [to_optional_int(i) for i in bulk_ids]
        else:
            alert_ids = [to_optional_int(pick(data, "alert_id", "alertId"))]
    except ValueError as e:
        raise PricingInputError(str(e)) from e

    updated = update_alert_status([i for i in alert_ids if i is not None], pick(data, "alert_status", "alertStatus"))
    return {"status": "success", "updated": len(updated), "alerts": updated}


HANDLERS: Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
    "price": handle_price,
    "simulate": handle_simulate,
    "analytics": handle_analytics,
    "price_alerts": handle_price_alerts,
    "update_price_alerts": handle_update_price_alerts,
}


def process_request(data: Any) -> Dict[str, Any]:
    """Traite une requête JSON unique."""
    if not isinstance(data, dict):
        raise PricingInputError("Request must be a JSON object")

    action = data.get("action", "price")
    handler = HANDLERS.get(action)
    if handler is None:
        raise PricingInputError(f"Unknown action {action!r} (expected one of: {', '.join(HANDLERS)})")
    return handler(data)


def error_response(error: Exception) -> Dict[str, Any]:
    return {"error": str(error), "status": "error", "type": type(error).__name__}


def main():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    logger.info(f"Dynamic pricing server started (PID: {os.getpid()})")

    # Boucle de lecture sur stdin
    while True:
        try:
            line = sys.stdin.readline()
            if not line:
                break  # Fin du flux (le process appelant a fermé stdin)

            line = line.strip()
            if not line:
                continue

            try:
                response_data = process_request(json.loads(line))
            except Exception as e:
                # Réponse d'erreur pour que l'appelant puisse rejeter proprement
                response_data = error_response(e)
                logger.error(f"Request failed: {e}", exc_info=not isinstance(e, ValueError))

            sys.stdout.write(json.dumps(response_data) + "\n")
            sys.stdout.flush()

        except KeyboardInterrupt:
            break


if __name__ == "__main__":
    main()
