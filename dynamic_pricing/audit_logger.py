"""
Journal d'audit des ajustements de prix.

Chaque calcul de prix peut être tracé dans `price_adjustments` : une ligne par
règle appliquée, toutes avec la même `adjustment_date` et les mêmes
`quote_id` / `booking_id`. Le journal est en insertion seule ; une relance
après un échec partiel peut créer des doublons, d'où la déduplication
optionnelle sur (service_id, adjustment_date, rule_id, quote_id).

Un échec d'écriture n'est jamais propagé au calcul de prix : il est loggé en
ERROR, alerté et renvoyé dans le rapport.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from demand_pipeline.utils.monitoring import AlertLevel, get_pipeline_monitor

from .interfaces.data_access import (
    fetch_adjustment_chain,
    insert_price_adjustments,
    upsert_price_history,
)
from .models.metrics import PriceAdjustment, PriceHistory, TriggerSource, adjustment_key_from_row
from .models.pricing import PricingContext, PricingResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditWriteReport:
    records_written: int = 0
    records_skipped: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recordsWritten": self.records_written,
            "recordsSkipped": self.records_skipped,
            "error": self.error,
        }


def build_adjustment_records(
    context: PricingContext,
    result: PricingResult,
    triggered_by: TriggerSource,
    adjustment_date: Optional[date] = None,
    quote_id: Optional[int] = None,
    booking_id: Optional[int] = None,
    approved_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> List[PriceAdjustment]:
    """
    Une ligne `PriceAdjustment` par entrée de la trace, dans l'ordre d'application.
    """
    adjustment_date = adjustment_date or date.today()
    return [
        PriceAdjustment(
            service_type=context.service_type,
            service_id=context.service_id,
            service_name=context.service_name,
            rule_id=entry.rule_id,
            rule_name=entry.rule_name,
            adjustment_type=entry.adjustment_type,
            adjustment_value=entry.adjustment_value,
            original_price=entry.price_before_rule,
            adjusted_price=entry.price_after_rule,
            currency=result.currency,
            adjustment_date=adjustment_date,
            travel_date=context.travel_date,
            reason=reason,
            triggered_by=triggered_by,
            approved_by=approved_by,
            quote_id=quote_id,
            booking_id=booking_id,
            agency_id=context.agency_id,
        )
        for entry in result.applied_rules
    ]


def dedupe_adjustments(
    records: Iterable[PriceAdjustment],
    existing_rows: Iterable[Dict[str, Any]],
) -> List[PriceAdjustment]:
    """Retire les lignes dont la clé de déduplication est déjà en base (ou répétée)."""
    seen = {adjustment_key_from_row(row) for row in existing_rows}
    unique: List[PriceAdjustment] = []
    for record in records:
        if record.dedupe_key in seen:
            continue
        seen.add(record.dedupe_key)
        unique.append(record)
    return unique


def _report_failure(message: str, details: Dict[str, Any]) -> None:
    logger.error(message, exc_info=True)
    try:
        get_pipeline_monitor().notify(message, AlertLevel.ERROR, details)
    except Exception as e:
        logger.error(f"Could not send audit failure alert: {e}")


def log_price_adjustments(
    context: PricingContext,
    result: PricingResult,
    triggered_by: TriggerSource = TriggerSource.QUOTE_BUILDER,
    adjustment_date: Optional[date] = None,
    quote_id: Optional[int] = None,
    booking_id: Optional[int] = None,
    approved_by: Optional[str] = None,
    reason: Optional[str] = None,
    dedupe: bool = False,
) -> AuditWriteReport:
    """
    Écrit la trace d'un calcul dans le journal d'audit.

    Ne lève jamais : le prix déjà calculé reste valable même si l'audit échoue.
    """
    records = build_adjustment_records(
        context, result, triggered_by, adjustment_date, quote_id, booking_id, approved_by, reason
    )
    if not records:
        return AuditWriteReport()

    try:
        to_write = records
        if dedupe:
            existing = fetch_adjustment_chain(context.service_id, records[0].adjustment_date)
            to_write = dedupe_adjustments(records, existing)

        insert_price_adjustments([r.to_record() for r in to_write])
    except Exception as e:
        _report_failure(
            f"Audit write failed for {context.service_type} #{context.service_id}: {e}",
            {"service_id": context.service_id, "quote_id": quote_id, "rules": len(records)},
        )
        return AuditWriteReport(records_written=0, records_skipped=0, error=str(e))

    skipped = len(records) - len(to_write)
    logger.info(
        f"Logged {len(to_write)} price adjustments for {context.service_type} #{context.service_id}"
        + (f" ({skipped} duplicates skipped)" if skipped else "")
    )
    return AuditWriteReport(records_written=len(to_write), records_skipped=skipped)


def get_adjustment_chain(service_id: int, adjustment_date: date) -> List[Dict[str, Any]]:
    """Chaîne complète des ajustements d'un service pour une date, dans l'ordre d'écriture."""
    return fetch_adjustment_chain(service_id, adjustment_date)


def record_price_history(
    context: PricingContext,
    result: PricingResult,
    record_date: Optional[date] = None,
) -> AuditWriteReport:
    """
    Snapshot quotidien du prix d'un service (upsert sur service + date).
    """
    history = PriceHistory(
        service_type=context.service_type,
        service_id=context.service_id,
        service_name=context.service_name,
        record_date=record_date or date.today(),
        base_price=result.original_price,
        adjusted_price=result.final_price,
        currency=result.currency,
        demand_score=result.demand_score,
        applied_rules=[entry.to_dict() for entry in result.applied_rules],
    )
    try:
        upsert_price_history(history.to_record())
    except Exception as e:
        _report_failure(
            f"Price history write failed for {context.service_type} #{context.service_id}: {e}",
            {"service_id": context.service_id, "record_date": history.record_date.isoformat()},
        )
        return AuditWriteReport(error=str(e))
    return AuditWriteReport(records_written=1)
