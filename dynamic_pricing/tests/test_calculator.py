"""
Tests unitaires pour calculator.py
"""

from dataclasses import replace
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from dynamic_pricing.calculator import apply_pricing_rules, calculate_dynamic_price, find_season
from dynamic_pricing.config import PricingConfig
from dynamic_pricing.demand_scorer import default_assessment
from dynamic_pricing.models.metrics import DemandMetric
from dynamic_pricing.models.rules import Season


class TestApplyPricingRules:
    """Tests du fold séquentiel des règles."""

    def test_sequential_composition(self, make_rule, hotel_context):
        """+15% puis -5% sur 1000 : 1150 puis 1092.5."""
        rules = [
            make_rule(rule_id=1, adjustment_value=15, priority=1),
            make_rule(rule_id=2, adjustment_value=-5, priority=2),
        ]

        price, trace = apply_pricing_rules(1000.0, rules, hotel_context, 50.0)

        assert price == 1092.5
        assert [(e.price_before_rule, e.price_after_rule) for e in trace] == [(1000.0, 1150.0), (1150.0, 1092.5)]

    def test_percentages_compound(self, make_rule, hotel_context):
        """+10% puis +10% sur 100 donnent 121 (et non 120)."""
        rules = [make_rule(rule_id=1), make_rule(rule_id=2)]

        price, _ = apply_pricing_rules(100.0, rules, hotel_context, 50.0)

        assert price == 121.0

    def test_order_does_not_depend_on_input(self, make_rule, hotel_context):
        rules = [
            make_rule(rule_id=3, adjustment_type="fixed_amount", adjustment_value=-100, priority=2),
            make_rule(rule_id=1, adjustment_value=20, priority=1),
        ]

        forward, _ = apply_pricing_rules(1000.0, rules, hotel_context, 50.0)
        backward, trace = apply_pricing_rules(1000.0, list(reversed(rules)), hotel_context, 50.0)

        assert forward == backward == 1100.0
        assert [e.rule_id for e in trace] == [1, 3]

    def test_unmet_condition_is_skipped(self, make_rule, hotel_context):
        """Score 40 sous le minimum de la règle de demande : pas d'ajustement."""
        rule = make_rule(rule_type="demand", adjustment_value=20, conditions={"minDemandScore": 70})

        price, trace = apply_pricing_rules(1000.0, [rule], hotel_context, 40.0)

        assert price == 1000.0
        assert trace == ()

    def test_clamped_to_rule_bounds(self, make_rule, hotel_context):
        capped = make_rule(rule_id=1, adjustment_value=50, max_price=1200)
        floored = make_rule(rule_id=2, adjustment_value=-90, min_price=500, priority=1)

        price, trace = apply_pricing_rules(1000.0, [capped, floored], hotel_context, 50.0)

        assert trace[0].price_after_rule == 1200.0
        assert price == 500.0

    def test_prices_rounded_to_cents(self, make_rule, hotel_context):
        price, _ = apply_pricing_rules(99.99, [make_rule(adjustment_value=3.333)], hotel_context, 50.0)

        assert price == 103.32

    def test_failing_rule_is_skipped(self, make_rule, hotel_context):
        """Une règle qui lève une erreur est ignorée, les suivantes s'appliquent."""
        broken_conditions = MagicMock()
        broken_conditions.is_met.side_effect = TypeError("bad condition")
        broken = replace(make_rule(rule_id=1), conditions=broken_conditions)

        price, trace = apply_pricing_rules(1000.0, [broken, make_rule(rule_id=2)], hotel_context, 50.0)

        assert price == 1100.0
        assert [e.rule_id for e in trace] == [2]

    def test_non_finite_adjustment_is_skipped(self, make_rule, hotel_context):
        """Une valeur NaN construite hors parsing ne doit jamais produire un prix NaN."""
        nan_rule = replace(make_rule(rule_id=1), adjustment_value=float("nan"))

        price, trace = apply_pricing_rules(1000.0, [nan_rule, make_rule(rule_id=2)], hotel_context, 50.0)

        assert price == 1100.0
        assert [e.rule_id for e in trace] == [2]

    def test_no_rules_returns_base_price(self, hotel_context):
        price, trace = apply_pricing_rules(1000.0, [], hotel_context, 50.0)

        assert price == 1000.0
        assert trace == ()


class TestCalculateDynamicPrice:
    """Tests du calcul complet (snapshots fournis, aucune lecture en base)."""

    def test_result_fields(self, make_rule, hotel_context):
        rules = [
            make_rule(rule_id=1, adjustment_value=15, priority=1),
            make_rule(rule_id=2, adjustment_value=-5, priority=2),
        ]

        result = calculate_dynamic_price(hotel_context, rules=rules, metrics=[], seasons=[])

        assert result.original_price == 1000.0
        assert result.final_price == 1092.5
        assert result.savings == -92.5
        assert result.savings_percent == pytest.approx(-9.2, abs=0.11)
        assert result.demand_score == 50.0
        assert result.demand_tier == "NORMAL"
        assert result.currency == "USD"
        assert len(result.applied_rules) == 2

    @pytest.fixture
    def seasonal_and_demand_rules(self, make_rule):
        """Saisonnière +15% (priorité 1) puis demande -5% à partir d'un score de 70."""
        return [
            make_rule(rule_id=1, rule_type="seasonal", adjustment_value=15, priority=1),
            make_rule(
                rule_id=2,
                rule_type="demand",
                adjustment_value=-5,
                priority=2,
                conditions={"minDemandScore": 70},
            ),
        ]

    def test_high_demand_applies_both_rules(self, seasonal_and_demand_rules, hotel_context):
        metrics = [DemandMetric(metric_date=hotel_context.travel_date, destination_id=3, service_type="hotel", demand_score=80)]

        result = calculate_dynamic_price(hotel_context, rules=seasonal_and_demand_rules, metrics=metrics, seasons=[])

        assert [e.price_after_rule for e in result.applied_rules] == [1150.0, 1092.5]
        assert result.final_price == 1092.5
        assert result.savings == -92.5
        assert result.demand_score == 80.0

    def test_low_demand_skips_demand_rule(self, seasonal_and_demand_rules, hotel_context):
        metrics = [DemandMetric(metric_date=hotel_context.travel_date, destination_id=3, service_type="hotel", demand_score=40)]

        result = calculate_dynamic_price(hotel_context, rules=seasonal_and_demand_rules, metrics=metrics, seasons=[])

        assert result.final_price == 1150.0
        assert len(result.applied_rules) == 1
        assert result.applied_rules[0].rule_id == 1

    def test_default_currency_from_environment(self, hotel_context, monkeypatch):
        monkeypatch.setenv("BASE_CURRENCY", "NPR")

        result = calculate_dynamic_price(replace(hotel_context, currency=None), rules=[], metrics=[], seasons=[])

        assert result.currency == "NPR"

    def test_discount_savings(self, make_rule, hotel_context):
        result = calculate_dynamic_price(
            hotel_context, rules=[make_rule(adjustment_value=-20)], metrics=[], seasons=[]
        )

        assert result.final_price == 800.0
        assert result.savings == 200.0
        assert result.savings_percent == 20.0

    def test_demand_from_metrics_drives_conditions(self, make_rule, hotel_context):
        surge = make_rule(rule_type="demand", adjustment_value=20, conditions={"minDemandScore": 70})
        metrics = [DemandMetric(metric_date=hotel_context.travel_date, destination_id=3, demand_score=85)]

        result = calculate_dynamic_price(hotel_context, rules=[surge], metrics=metrics, seasons=[])

        assert result.final_price == 1200.0
        assert result.demand_tier == "VERY_HIGH"

    def test_only_matching_rules_apply(self, make_rule, hotel_context):
        rules = [make_rule(rule_id=1, service_type="flight"), make_rule(rule_id=2, valid_to="2025-01-01")]

        result = calculate_dynamic_price(hotel_context, rules=rules, metrics=[], seasons=[])

        assert result.final_price == 1000.0
        assert result.applied_rules == ()

    @patch("dynamic_pricing.calculator.get_demand_assessment")
    @patch("dynamic_pricing.calculator.load_seasons")
    @patch("dynamic_pricing.calculator.load_rule_snapshot")
    def test_rule_lookup_failure_returns_base_price(
        self, mock_load_rules, mock_load_seasons, mock_assessment, hotel_context
    ):
        mock_load_rules.side_effect = RuntimeError("database unavailable")
        mock_load_seasons.return_value = []
        mock_assessment.return_value = default_assessment()

        result = calculate_dynamic_price(hotel_context)

        assert result.final_price == 1000.0
        assert result.applied_rules == ()

    def test_season_multiplier_when_enabled(self, make_rule, hotel_context):
        seasons = [Season(name="Autumn Peak", start_month=9, end_month=11, price_multiplier=1.2)]
        config = PricingConfig(apply_season_multiplier=True)

        result = calculate_dynamic_price(
            hotel_context, rules=[make_rule(rule_id=4)], metrics=[], seasons=seasons, config=config
        )

        assert result.season_name == "Autumn Peak"
        assert [e.rule_id for e in result.applied_rules] == [0, 4]
        assert result.final_price == 1320.0

    def test_season_reported_but_not_applied_by_default(self, hotel_context):
        seasons = [Season(name="Autumn Peak", start_month=9, end_month=11, price_multiplier=1.2)]

        result = calculate_dynamic_price(hotel_context, rules=[], metrics=[], seasons=seasons)

        assert result.season_name == "Autumn Peak"
        assert result.final_price == 1000.0

    def test_builtin_adjustments_when_enabled(self, hotel_context):
        """30 jours avant le voyage : early bird 5% ; demande NORMAL : pas d'ajustement."""
        config = PricingConfig(enable_builtin_adjustments=True)

        result = calculate_dynamic_price(hotel_context, rules=[], metrics=[], seasons=[], config=config)

        assert result.final_price == 950.0
        assert [e.rule_id for e in result.applied_rules] == [-1]

    def test_builtin_skipped_when_stored_rule_of_same_type_applied(self, make_rule, hotel_context):
        config = PricingConfig(enable_builtin_adjustments=True)
        early_bird = make_rule(rule_type="early_bird", adjustment_value=-8, conditions={"daysBeforeTravel": 14})

        result = calculate_dynamic_price(hotel_context, rules=[early_bird], metrics=[], seasons=[], config=config)

        assert result.final_price == 920.0
        assert [e.rule_id for e in result.applied_rules] == [1]

    def test_travel_date_required(self, hotel_context):
        with pytest.raises(ValueError, match="travelDate"):
            calculate_dynamic_price(replace(hotel_context, travel_date=None), rules=[], metrics=[], seasons=[])


class TestFindSeason:
    """Tests pour find_season."""

    def test_country_filter(self):
        seasons = [
            Season(name="Bhutan Festival", start_month=10, end_month=10, country="Bhutan"),
            Season(name="Autumn", start_month=9, end_month=11),
        ]

        assert find_season(seasons, date(2025, 10, 5), country="Nepal").name == "Autumn"
        assert find_season(seasons, date(2025, 10, 5), country="Bhutan").name == "Bhutan Festival"
        assert find_season(seasons, date(2025, 6, 1)) is None
