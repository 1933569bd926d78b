"""
Sélection des règles applicables à un contexte de pricing.

Fonctions pures : aucune lecture en base. Une règle correspond si :
- elle est active (et auto-apply si demandé),
- chaque champ de périmètre (type de service, destination, fournisseur,
  service) est vide ou égal à celui du contexte,
- l'agence de la règle est vide ou égale à celle du contexte,
- la date est dans [valid_from, valid_to] (bornes incluses),
- le jour de la semaine (0 = dimanche) fait partie de `days_of_week` si défini.

Le résultat est trié par (priority, id) croissants.
"""

from datetime import date
from typing import Iterable, List, Optional

from .models.fields import js_weekday
from .models.pricing import PricingContext, PricingInputError
from .models.rules import PricingRule


def sort_rules(rules: Iterable[PricingRule]) -> List[PricingRule]:
    return sorted(rules, key=lambda rule: rule.sort_key)


def _scope_matches(rule_value, context_value) -> bool:
    return rule_value is None or rule_value == context_value


def rule_matches(
    rule: PricingRule,
    context: PricingContext,
    on_date: date,
    auto_apply_only: bool = False,
) -> bool:
    if not rule.is_active:
        return False
    if auto_apply_only and not rule.is_auto_apply:
        return False

    if not _scope_matches(rule.service_type, context.service_type):
        return False
    if not _scope_matches(rule.destination_id, context.destination_id):
        return False
    if not _scope_matches(rule.supplier_id, context.supplier_id):
        return False
    if not _scope_matches(rule.service_id, context.service_id):
        return False
    if not _scope_matches(rule.agency_id, context.agency_id):
        return False

    if rule.valid_from is not None and on_date < rule.valid_from:
        return False
    if rule.valid_to is not None and on_date > rule.valid_to:
        return False

    if rule.days_of_week is not None and js_weekday(on_date) not in rule.days_of_week:
        return False

    return True


def match_rules(
    rules: Iterable[PricingRule],
    context: PricingContext,
    on_date: Optional[date] = None,
    auto_apply_only: bool = False,
) -> List[PricingRule]:
    """
    Filtre un snapshot de règles pour un contexte et une date.

    `on_date` vaut par défaut la date de voyage du contexte.
    """
    target_date = on_date or context.travel_date
    if target_date is None:
        raise PricingInputError("travelDate is required to match pricing rules")

    return sort_rules(
        rule for rule in rules if rule_matches(rule, context, target_date, auto_apply_only=auto_apply_only)
    )
