"""
Script pour calculer le prix dynamique d'un service, pour une date ou une plage de dates.

Usage:
    python -m scripts.simulate_pricing --service-type hotel --service-id 12 --base-price 1000 --date 2025-10-01
    python -m scripts.simulate_pricing --service-type hotel --service-id 12 --base-price 1000 \
        --start-date 2025-10-01 --end-date 2025-10-31 --pax-count 4 --loyalty-tier gold

Le résultat est affiché en JSON sur stdout (même format que le serveur).
"""

import argparse
import json
import sys

from dynamic_pricing.models.pricing import PricingInputError
from dynamic_pricing.server import handle_price, handle_simulate


def build_request(args: argparse.Namespace) -> dict:
    request = {
        "serviceType": args.service_type,
        "serviceId": args.service_id,
        "basePrice": args.base_price,
        "destinationId": args.destination_id,
        "supplierId": args.supplier_id,
        "agencyId": args.agency_id,
        "paxCount": args.pax_count,
        "loyaltyTier": args.loyalty_tier,
        "bookingDate": args.booking_date,
        "currency": args.currency,
    }
    if args.date:
        request["travelDate"] = args.date
    else:
        request["startDate"] = args.start_date
        request["endDate"] = args.end_date
    return {key: value for key, value in request.items() if value is not None}


def main() -> None:
    parser = argparse.ArgumentParser(description="Calcule le prix dynamique d'un service.")
    parser.add_argument("--service-type", required=True, help="Type de service (hotel, guide, ...).")
    parser.add_argument("--service-id", required=True, type=int, help="ID du service.")
    parser.add_argument("--base-price", required=True, type=float, help="Prix de base.")
    parser.add_argument("--date", help="Date de voyage (YYYY-MM-DD).")
    parser.add_argument("--start-date", help="Début de la plage de simulation (YYYY-MM-DD).")
    parser.add_argument("--end-date", help="Fin de la plage de simulation (YYYY-MM-DD).")
    parser.add_argument("--booking-date", help="Date de réservation (défaut: aujourd'hui).")
    parser.add_argument("--destination-id", type=int, help="ID de la destination.")
    parser.add_argument("--supplier-id", type=int, help="ID du fournisseur.")
    parser.add_argument("--agency-id", type=int, help="ID de l'agence.")
    parser.add_argument("--pax-count", type=int, help="Nombre de voyageurs.")
    parser.add_argument("--loyalty-tier", help="Tier de fidélité du client.")
    parser.add_argument("--currency", help="Devise.")

    args = parser.parse_args()

    if not args.date and not (args.start_date and args.end_date):
        print("❌ Erreur: --date ou --start-date/--end-date requis", file=sys.stderr)
        sys.exit(1)

    request = build_request(args)
    try:
        response = handle_price(request) if args.date else handle_simulate(request)
    except PricingInputError as e:
        print(f"❌ Erreur: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"❌ Erreur lors du calcul: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(response, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
