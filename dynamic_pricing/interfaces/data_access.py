"""
Accès aux données du moteur de pricing dynamique.

Ce module fournit une couche d'abstraction entre le moteur et la base
(Supabase/PostgreSQL). Toutes les requêtes passent par ici, ce qui permet
de les mocker simplement dans les tests.

Tables utilisées :
- `pricing_rules`, `seasons` (lecture ; écriture via l'admin des règles),
- `demand_metrics` (lecture par le scorer, écriture par le job d'agrégation),
- `price_adjustments` (journal d'audit, insertion seule),
- `price_history` (snapshot quotidien par service),
- `destinations`, `quotes`, `quote_items`, `bookings` (lecture seule, sources du job de demande),
- `hotels`, `hotel_room_rates` (lecture seule) et `price_alerts` (job de surveillance des tarifs).

IMPORTANT :
- On réutilise la configuration de `demand_pipeline`
  (variables d'environnement `SUPABASE_URL` et `SUPABASE_SERVICE_ROLE_KEY`).
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

import pytz
from supabase import Client, create_client  # type: ignore

from demand_pipeline.config.settings import Settings


_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Retourne un client Supabase initialisé (créé une seule fois par process).
    """
    global _supabase_client

    if _supabase_client is not None:
        return _supabase_client

    settings = Settings.from_env()
    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError(
            "Les variables d'environnement SUPABASE_URL et SUPABASE_SERVICE_ROLE_KEY/SUPABASE_KEY "
            "doivent être configurées pour utiliser le moteur de pricing."
        )

    _supabase_client = create_client(settings.supabase_url, settings.supabase_key)
    return _supabase_client


def _data(response: Any) -> List[Dict[str, Any]]:
    # Vérifier si response.data existe (compatible avec différentes versions de Supabase)
    if not hasattr(response, "data"):
        raise RuntimeError("Réponse Supabase invalide: pas d'attribut 'data'")
    return response.data or []


def _first(response: Any) -> Optional[Dict[str, Any]]:
    rows = _data(response)
    return rows[0] if rows else None


def _eq_or_null(query: Any, column: str, value: Any) -> Any:
    if value is None:
        return query.is_(column, "null")
    return query.eq(column, value)


def _quoted(value: Any) -> str:
    """Valeur entre guillemets pour un filtre PostgREST `or` (virgules, parenthèses)."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def day_bounds_utc(day: date, timezone: str = "UTC") -> tuple:
    """
    Bornes [début, fin[ d'une journée locale, converties en UTC (ISO avec offset).

    `created_at` est un timestamptz : des bornes naïves seraient lues comme UTC.
    """
    tz = pytz.timezone(timezone)
    start = tz.localize(datetime.combine(day, time.min))
    end = tz.localize(datetime.combine(day + timedelta(days=1), time.min))
    return start.astimezone(pytz.utc).isoformat(), end.astimezone(pytz.utc).isoformat()


# ============================================
# RÈGLES & SAISONS
# ============================================


def fetch_active_pricing_rules(
    service_type: str,
    auto_apply_only: bool = False,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    """
    Récupère les règles actives dont le type de service est vide ou égal à `service_type`.

    Le filtrage fin (destination, fournisseur, service, dates, jours) est fait
    par le rule matcher, pour que le même snapshot serve à plusieurs dates.
    """
    client = client or get_supabase_client()

    query = (
        client.table("pricing_rules")
        .select("*")
        .eq("is_active", True)
        .or_(f"service_type.is.null,service_type.eq.{_quoted(service_type)}")
    )
    if auto_apply_only:
        query = query.eq("is_auto_apply", True)

    response = query.order("priority", desc=False).order("id", desc=False).execute()
    return _data(response)


def fetch_auto_apply_rules(run_date: date, client: Optional[Client] = None) -> List[Dict[str, Any]]:
    """Règles actives et auto-apply valides à `run_date` (tous types de service)."""
    client = client or get_supabase_client()
    day = run_date.isoformat()

    response = (
        client.table("pricing_rules")
        .select("*")
        .eq("is_active", True)
        .eq("is_auto_apply", True)
        .or_(f"valid_from.is.null,valid_from.lte.{day}")
        .or_(f"valid_to.is.null,valid_to.gte.{day}")
        .order("priority", desc=False)
        .order("id", desc=False)
        .execute()
    )
    return _data(response)


def fetch_pricing_rule(rule_id: int, client: Optional[Client] = None) -> Optional[Dict[str, Any]]:
    client = client or get_supabase_client()
    response = client.table("pricing_rules").select("*").eq("id", rule_id).limit(1).execute()
    return _first(response)


def insert_pricing_rule(record: Dict[str, Any], client: Optional[Client] = None) -> Dict[str, Any]:
    client = client or get_supabase_client()
    response = client.table("pricing_rules").insert(record).execute()
    row = _first(response)
    if row is None:
        raise RuntimeError("Insertion de la règle de pricing sans retour de Supabase")
    return row


def update_pricing_rule_record(
    rule_id: int,
    updates: Dict[str, Any],
    client: Optional[Client] = None,
) -> Optional[Dict[str, Any]]:
    client = client or get_supabase_client()
    payload = dict(updates)
    payload["updated_at"] = datetime.now().isoformat()
    response = client.table("pricing_rules").update(payload).eq("id", rule_id).execute()
    return _first(response)


def fetch_seasons(client: Optional[Client] = None) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    response = client.table("seasons").select("*").execute()
    return _data(response)


def fetch_destination_country(destination_id: int, client: Optional[Client] = None) -> Optional[str]:
    client = client or get_supabase_client()
    response = (
        client.table("destinations").select("country").eq("id", destination_id).limit(1).execute()
    )
    row = _first(response)
    return row.get("country") if row else None


# ============================================
# MÉTRIQUES DE DEMANDE
# ============================================


def fetch_demand_metric_rows(
    start_date: date,
    end_date: date,
    destination_id: Optional[int] = None,
    service_type: Optional[str] = None,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    """
    Récupère les lignes `demand_metrics` d'une plage de dates utiles à un contexte :
    la ligne exacte et les lignes plus larges (dimension absente) pour le fallback.
    """
    client = client or get_supabase_client()

    query = (
        client.table("demand_metrics")
        .select("*")
        .gte("metric_date", start_date.isoformat())
        .lte("metric_date", end_date.isoformat())
    )
    if destination_id is not None:
        query = query.or_(f"destination_id.is.null,destination_id.eq.{int(destination_id)}")
    else:
        query = query.is_("destination_id", "null")
    if service_type is not None:
        query = query.or_(f"service_type.is.null,service_type.eq.{_quoted(service_type)}")
    else:
        query = query.is_("service_type", "null")

    response = query.order("metric_date", desc=False).execute()
    return _data(response)


def fetch_demand_metrics_for_date(metric_date: date, client: Optional[Client] = None) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    response = (
        client.table("demand_metrics")
        .select("*")
        .eq("metric_date", metric_date.isoformat())
        .order("demand_score", desc=True)
        .execute()
    )
    return _data(response)


def fetch_demand_metrics_between(
    start_date: date,
    end_date: date,
    destination_id: Optional[int] = None,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    """Toutes les lignes `demand_metrics` d'une période (toutes dimensions), pour l'analytics."""
    client = client or get_supabase_client()
    query = (
        client.table("demand_metrics")
        .select("*")
        .gte("metric_date", start_date.isoformat())
        .lte("metric_date", end_date.isoformat())
    )
    if destination_id is not None:
        query = query.eq("destination_id", destination_id)
    response = query.order("metric_date", desc=False).execute()
    return _data(response)


def fetch_demand_metric(
    metric_date: date,
    destination_id: Optional[int] = None,
    service_type: Optional[str] = None,
    client: Optional[Client] = None,
) -> Optional[Dict[str, Any]]:
    """Ligne exacte pour (date, destination, type de service), dimensions NULL comprises."""
    client = client or get_supabase_client()

    query = client.table("demand_metrics").select("*").eq("metric_date", metric_date.isoformat())
    query = _eq_or_null(query, "destination_id", destination_id)
    query = _eq_or_null(query, "service_type", service_type)

    response = query.limit(1).execute()
    return _first(response)


def save_demand_metric(
    record: Dict[str, Any],
    existing_id: Optional[int] = None,
    client: Optional[Client] = None,
) -> None:
    """
    Écrit une ligne `demand_metrics` (update si elle existe déjà, insert sinon).

    On ne s'appuie pas sur un upsert `on_conflict` car les dimensions NULL
    ne sont pas considérées égales par la contrainte d'unicité.
    """
    client = client or get_supabase_client()

    payload = dict(record)
    payload["updated_at"] = datetime.now().isoformat()
    if existing_id is not None:
        client.table("demand_metrics").update(payload).eq("id", existing_id).execute()
    else:
        client.table("demand_metrics").insert(payload).execute()


# ============================================
# JOURNAL D'AUDIT & HISTORIQUE
# ============================================


def insert_price_adjustments(
    records: List[Dict[str, Any]],
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    if not records:
        return []
    response = client.table("price_adjustments").insert(records).execute()
    return _data(response)


def fetch_adjustment_chain(
    service_id: int,
    adjustment_date: date,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    response = (
        client.table("price_adjustments")
        .select("*")
        .eq("service_id", service_id)
        .eq("adjustment_date", adjustment_date.isoformat())
        .order("id", desc=False)
        .execute()
    )
    return _data(response)


def fetch_price_adjustments(
    start_date: date,
    end_date: date,
    service_type: Optional[str] = None,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    query = (
        client.table("price_adjustments")
        .select("*")
        .gte("adjustment_date", start_date.isoformat())
        .lte("adjustment_date", end_date.isoformat())
    )
    if service_type:
        query = query.eq("service_type", service_type)
    response = query.order("id", desc=False).execute()
    return _data(response)


def upsert_price_history(record: Dict[str, Any], client: Optional[Client] = None) -> None:
    client = client or get_supabase_client()
    client.table("price_history").upsert(
        record,
        on_conflict="service_type,service_id,record_date",
    ).execute()


def fetch_price_history(
    start_date: date,
    end_date: date,
    service_type: Optional[str] = None,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    query = (
        client.table("price_history")
        .select("*")
        .gte("record_date", start_date.isoformat())
        .lte("record_date", end_date.isoformat())
    )
    if service_type:
        query = query.eq("service_type", service_type)
    response = query.order("record_date", desc=False).execute()
    return _data(response)


# ============================================
# SOURCES DU JOB DE DEMANDE
# ============================================


def fetch_active_destinations(client: Optional[Client] = None) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    response = (
        client.table("destinations")
        .select("id, city, country")
        .eq("is_active", True)
        .order("id", desc=False)
        .execute()
    )
    return _data(response)


def fetch_quotes_created_on(
    day: date, timezone: str = "UTC", client: Optional[Client] = None
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    start, end = day_bounds_utc(day, timezone)
    response = (
        client.table("quotes")
        .select("id, destination, created_at")
        .gte("created_at", start)
        .lt("created_at", end)
        .execute()
    )
    return _data(response)


def fetch_quotes_by_ids(quote_ids: List[int], client: Optional[Client] = None) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    if not quote_ids:
        return []
    response = (
        client.table("quotes")
        .select("id, destination, created_at")
        .in_("id", quote_ids)
        .execute()
    )
    return _data(response)


def fetch_quote_items_for_quotes(quote_ids: List[int], client: Optional[Client] = None) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    if not quote_ids:
        return []
    response = (
        client.table("quote_items")
        .select("quote_id, service_type")
        .in_("quote_id", quote_ids)
        .execute()
    )
    return _data(response)


def fetch_bookings_created_on(
    day: date, timezone: str = "UTC", client: Optional[Client] = None
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    start, end = day_bounds_utc(day, timezone)
    response = (
        client.table("bookings")
        .select("id, quote_id, total_amount, created_at")
        .gte("created_at", start)
        .lt("created_at", end)
        .execute()
    )
    return _data(response)


# ============================================
# SURVEILLANCE DES TARIFS HÔTELIERS
# ============================================


def fetch_active_hotels(client: Optional[Client] = None) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    response = (
        client.table("hotels")
        .select("id, name, category, star_rating, destination_id")
        .eq("is_active", True)
        .order("id", desc=False)
        .execute()
    )
    return _data(response)


def fetch_active_hotel_rates(hotel_ids: List[int], client: Optional[Client] = None) -> List[Dict[str, Any]]:
    """Tarifs actifs (coût / vente en chambre double) des hôtels donnés."""
    client = client or get_supabase_client()
    if not hotel_ids:
        return []
    response = (
        client.table("hotel_room_rates")
        .select("id, hotel_id, room_type, meal_plan, cost_double, sell_double")
        .in_("hotel_id", hotel_ids)
        .eq("is_active", True)
        .execute()
    )
    return _data(response)


def price_alert_exists_since(
    service_name: str,
    alert_type: str,
    since: datetime,
    client: Optional[Client] = None,
) -> bool:
    """True si une alerte du même type existe déjà pour ce service depuis `since`."""
    client = client or get_supabase_client()
    response = (
        client.table("price_alerts")
        .select("id")
        .eq("service_name", service_name)
        .eq("alert_type", alert_type)
        .gt("created_at", since.isoformat())
        .limit(1)
        .execute()
    )
    return bool(_data(response))


def insert_price_alert(record: Dict[str, Any], client: Optional[Client] = None) -> None:
    client = client or get_supabase_client()
    client.table("price_alerts").insert(record).execute()


def fetch_price_alerts(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    alert_type: Optional[str] = None,
    client: Optional[Client] = None,
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    query = client.table("price_alerts").select("*")
    if status:
        query = query.eq("status", status)
    if priority:
        query = query.eq("priority", priority)
    if alert_type:
        query = query.eq("alert_type", alert_type)
    response = query.order("created_at", desc=True).execute()
    return _data(response)


def fetch_price_alert_statuses(client: Optional[Client] = None) -> List[Dict[str, Any]]:
    """Statut et priorité de toutes les alertes (pour les compteurs de l'admin)."""
    client = client or get_supabase_client()
    response = client.table("price_alerts").select("status, priority").execute()
    return _data(response)


def update_price_alerts(
    alert_ids: List[int], record: Dict[str, Any], client: Optional[Client] = None
) -> List[Dict[str, Any]]:
    client = client or get_supabase_client()
    if not alert_ids:
        return []
    response = client.table("price_alerts").update(record).in_("id", alert_ids).execute()
    return _data(response)
