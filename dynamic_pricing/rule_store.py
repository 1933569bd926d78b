"""
Stockage des règles de pricing.

Responsabilités :
- charger un snapshot des règles actives pour un contexte (une lecture par appel),
- parser et valider les lignes `pricing_rules` (une ligne invalide est ignorée et loggée),
- créer / modifier / désactiver une règle (validation à l'enregistrement).

Les règles ne sont jamais supprimées : `deactivate_pricing_rule` passe `is_active` à false.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping

from .interfaces.data_access import (
    fetch_active_pricing_rules,
    fetch_pricing_rule,
    insert_pricing_rule,
    update_pricing_rule_record,
)
from .models.pricing import PricingContext
from .models.rules import PricingRule, RuleValidationError

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_keys(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {_CAMEL_BOUNDARY.sub("_", key).lower(): value for key, value in payload.items()}


def parse_rules(rows: Iterable[Mapping[str, Any]]) -> List[PricingRule]:
    """
    Parse des lignes `pricing_rules`.

    Les lignes invalides sont ignorées (WARNING) : une règle mal saisie ne doit
    pas bloquer le calcul de prix des autres.
    """
    rules: List[PricingRule] = []
    for row in rows:
        try:
            rules.append(PricingRule.from_row(row))
        except RuleValidationError as e:
            logger.warning(f"Skipping invalid pricing rule {row.get('id')!r}: {e}")
    return rules


def load_rule_snapshot(context: PricingContext, auto_apply_only: bool = False) -> List[PricingRule]:
    """
    Charge les règles candidates pour un contexte.

    Aucun filtrage par date ici : le snapshot est réutilisé par le simulateur
    pour toute la plage de dates.
    """
    rows = fetch_active_pricing_rules(context.service_type, auto_apply_only=auto_apply_only)
    rules = parse_rules(rows)
    logger.debug(f"Loaded {len(rules)} pricing rules for {context.service_type} #{context.service_id}")
    return rules


def create_pricing_rule(payload: Mapping[str, Any]) -> PricingRule:
    """
    Valide puis enregistre une nouvelle règle.

    Lève RuleValidationError si le payload est invalide (rien n'est écrit).
    """
    rule = PricingRule.from_row(payload)
    row = insert_pricing_rule(rule.to_record())
    created = PricingRule.from_row(row)
    logger.info(f"Created pricing rule #{created.id} '{created.name}' ({created.rule_type.value})")
    return created


def update_pricing_rule(rule_id: int, updates: Mapping[str, Any]) -> PricingRule:
    """
    Applique des modifications partielles à une règle existante.

    La règle fusionnée est revalidée avant écriture.
    """
    current = fetch_pricing_rule(rule_id)
    if current is None:
        raise RuleValidationError(f"Pricing rule #{rule_id} not found")

    merged: Dict[str, Any] = PricingRule.from_row(current).to_record()
    # Les mises à jour peuvent arriver en camelCase (payload admin)
    merged.update(_snake_keys(updates))
    merged["id"] = rule_id
    candidate = PricingRule.from_row(merged)

    row = update_pricing_rule_record(rule_id, candidate.to_record())
    updated = PricingRule.from_row(row) if row else candidate
    logger.info(f"Updated pricing rule #{rule_id}")
    return updated


def deactivate_pricing_rule(rule_id: int) -> None:
    if fetch_pricing_rule(rule_id) is None:
        raise RuleValidationError(f"Pricing rule #{rule_id} not found")
    update_pricing_rule_record(rule_id, {"is_active": False})
    logger.info(f"Deactivated pricing rule #{rule_id}")
