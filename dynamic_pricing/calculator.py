"""
Calcul du prix dynamique d'un service.

Le prix final est obtenu par un fold séquentiel sur les règles triées par
(priority, id) : chaque règle part du prix laissé par la précédente, les
ajustements se composent donc (+10% puis +10% sur 100 donnent 121).

Pour chaque règle :
1. vérifier sa condition typée (score de demande, taille du groupe, tier de
   fidélité, fenêtre de réservation) ; la règle est ignorée si elle n'est pas remplie,
2. calculer le delta (pourcentage du prix courant ou montant fixe),
3. borner le résultat à [min_price, max_price] de la règle,
4. arrondir au centime et ajouter une entrée à la trace.

Une règle qui lève une erreur est ignorée (WARNING) et n'interrompt jamais le calcul.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date
from functools import reduce
from typing import Iterable, List, Optional, Sequence, Tuple

from .builtin_rules import build_builtin_rules
from .config import PricingConfig, get_pricing_config_for_service
from .demand_scorer import DemandAssessment, get_demand_assessment, score_demand
from .interfaces.data_access import fetch_destination_country, fetch_seasons
from .models.metrics import DemandMetric
from .models.pricing import AppliedRule, PricingContext, PricingInputError, PricingResult
from .models.rules import AdjustmentType, PricingRule, RuleType, Season
from .rule_matcher import match_rules, sort_rules
from .rule_store import load_rule_snapshot

logger = logging.getLogger(__name__)

SEASON_RULE_ID = 0


@dataclass(frozen=True)
class _FoldState:
    price: float
    trace: Tuple[AppliedRule, ...] = ()


def _rule_delta(rule: PricingRule, price: float) -> float:
    if rule.adjustment_type == AdjustmentType.PERCENTAGE:
        return price * rule.adjustment_value / 100.0
    return rule.adjustment_value


def _clamp(price: float, rule: PricingRule) -> float:
    if rule.min_price is not None and price < rule.min_price:
        price = rule.min_price
    if rule.max_price is not None and price > rule.max_price:
        price = rule.max_price
    return price


def _apply_rule(
    state: _FoldState,
    rule: PricingRule,
    context: PricingContext,
    demand_score: float,
    decimals: int,
) -> _FoldState:
    try:
        if not rule.conditions.is_met(context, demand_score):
            return state

        new_price = round(_clamp(state.price + _rule_delta(rule, state.price), rule), decimals)
        if not math.isfinite(new_price):
            raise ArithmeticError(f"non-finite price {new_price}")
        entry = AppliedRule(
            rule_id=rule.id,
            rule_name=rule.name,
            rule_type=rule.rule_type.value,
            adjustment_type=rule.adjustment_type.value,
            adjustment_value=rule.adjustment_value,
            price_before_rule=state.price,
            price_after_rule=new_price,
        )
    except (ValueError, TypeError, ArithmeticError) as e:
        logger.warning(f"Skipping pricing rule #{rule.id} '{rule.name}': {e}")
        return state

    return _FoldState(price=new_price, trace=state.trace + (entry,))


def fold_rules(
    price: float,
    rules: Iterable[PricingRule],
    context: PricingContext,
    demand_score: float,
    config: PricingConfig,
    trace: Tuple[AppliedRule, ...] = (),
) -> Tuple[float, Tuple[AppliedRule, ...]]:
    """
    Applique des règles dans l'ordre donné (sans tri) à partir d'un prix et d'une trace.
    """
    final = reduce(
        lambda state, rule: _apply_rule(state, rule, context, demand_score, config.price_decimals),
        rules,
        _FoldState(price=price, trace=trace),
    )
    return final.price, final.trace


def apply_pricing_rules(
    base_price: float,
    rules: Iterable[PricingRule],
    context: PricingContext,
    demand_score: float,
    config: Optional[PricingConfig] = None,
) -> Tuple[float, Tuple[AppliedRule, ...]]:
    """
    Fold des règles triées par (priority, id) à partir du prix de base.

    Retourne (prix final, trace des règles appliquées).
    """
    config = config or get_pricing_config_for_service(context.service_type)
    return fold_rules(round(base_price, config.price_decimals), sort_rules(rules), context, demand_score, config)


# ============================================
# SAISONS
# ============================================


def find_season(seasons: Sequence[Season], on_date: date, country: Optional[str] = None) -> Optional[Season]:
    """Première saison couvrant la date, pour le pays de la destination ou sans pays."""
    for season in seasons:
        if country is not None and season.country is not None and season.country != country:
            continue
        if season.covers(on_date):
            return season
    return None


def _season_rule(season: Season) -> Optional[PricingRule]:
    if season.price_multiplier == 1.0:
        return None
    return PricingRule(
        id=SEASON_RULE_ID,
        name=f"{season.name} Season",
        rule_type=RuleType.SEASONAL,
        adjustment_type=AdjustmentType.PERCENTAGE,
        adjustment_value=round((season.price_multiplier - 1.0) * 100.0, 4),
    )


def load_seasons(context: PricingContext) -> List[Season]:
    """
    Charge les saisons applicables à la destination du contexte.

    Une erreur de lecture est loggée et donne une liste vide (pas de saison).
    """
    try:
        country = fetch_destination_country(context.destination_id) if context.destination_id else None
        seasons = [Season.from_row(row) for row in fetch_seasons()]
    except Exception as e:
        logger.warning(f"Season lookup failed for destination {context.destination_id}: {e}")
        return []
    return [s for s in seasons if s.country is None or s.country == country]


# ============================================
# CALCUL COMPLET
# ============================================


def price_for_date(
    context: PricingContext,
    on_date: date,
    rules: Sequence[PricingRule],
    demand: DemandAssessment,
    seasons: Sequence[Season] = (),
    config: Optional[PricingConfig] = None,
) -> PricingResult:
    """
    Calcul pour une date à partir de snapshots déjà chargés (règles, demande, saisons).

    Utilisé tel quel par le calcul unitaire et par le simulateur.
    """
    config = config or get_pricing_config_for_service(context.service_type)
    dated = context.with_travel_date(on_date)
    base_price = round(dated.base_price, config.price_decimals)

    price: float = base_price
    trace: Tuple[AppliedRule, ...] = ()

    season = find_season(seasons, on_date)
    if season is not None and config.apply_season_multiplier:
        season_rule = _season_rule(season)
        if season_rule is not None:
            price, trace = fold_rules(price, [season_rule], dated, demand.score, config, trace)

    matched = match_rules(rules, dated, on_date)
    price, trace = fold_rules(price, matched, dated, demand.score, config, trace)

    if config.enable_builtin_adjustments:
        builtins = build_builtin_rules(dated, demand.tier, trace)
        price, trace = fold_rules(price, builtins, dated, demand.score, config, trace)

    savings = round(base_price - price, config.price_decimals)
    savings_percent = round(savings / base_price * 100.0, 1) if base_price > 0 else 0.0

    return PricingResult(
        original_price=base_price,
        final_price=price,
        currency=context.currency or config.default_currency,
        savings=savings,
        savings_percent=savings_percent,
        demand_score=demand.score,
        demand_tier=demand.tier.value,
        applied_rules=trace,
        season_name=season.name if season is not None else None,
    )


def calculate_dynamic_price(
    context: PricingContext,
    rules: Optional[Sequence[PricingRule]] = None,
    metrics: Optional[Sequence[DemandMetric]] = None,
    seasons: Optional[Sequence[Season]] = None,
    config: Optional[PricingConfig] = None,
) -> PricingResult:
    """
    Point d'entrée du calcul de prix pour une date de voyage.

    Les snapshots non fournis sont chargés depuis Supabase. Si le chargement des
    règles échoue, le prix de base est retourné sans règle appliquée.
    """
    if context.travel_date is None:
        raise PricingInputError("travelDate is required")
    config = config or get_pricing_config_for_service(context.service_type)

    if rules is None:
        try:
            rules = load_rule_snapshot(context)
        except Exception as e:
            logger.error(f"Pricing rule lookup failed for {context.service_type} #{context.service_id}: {e}")
            rules = []

    if metrics is None:
        demand = get_demand_assessment(
            context.travel_date, context.destination_id, context.service_type, config
        )
    else:
        demand = score_demand(
            context.travel_date, context.destination_id, context.service_type, metrics, config
        )

    if seasons is None:
        seasons = load_seasons(context)

    result = price_for_date(context, context.travel_date, rules, demand, seasons, config)
    logger.info(
        f"Priced {context.service_type} #{context.service_id} for {context.travel_date}: "
        f"{result.original_price} -> {result.final_price} ({len(result.applied_rules)} rules, "
        f"demand {result.demand_score})"
    )
    return result
