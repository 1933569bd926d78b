"""
Tests unitaires pour les modèles (règles, contexte, métriques).
"""

from dataclasses import replace
from datetime import date

import pytest

from dynamic_pricing.models.fields import js_weekday, pick, to_date
from dynamic_pricing.models.metrics import DemandMetric
from dynamic_pricing.models.pricing import PricingContext, PricingInputError
from dynamic_pricing.models.rules import (
    AdjustmentType,
    BookingWindowCondition,
    DemandCondition,
    GroupCondition,
    LoyaltyCondition,
    NoCondition,
    PricingRule,
    RuleType,
    RuleValidationError,
    Season,
)


class TestPricingRuleParsing:
    """Tests pour PricingRule.from_row."""

    def test_parse_snake_case_row(self):
        """Une ligne Supabase complète est parsée avec ses conditions typées."""
        rule = PricingRule.from_row({
            "id": 7,
            "name": "Peak demand",
            "rule_type": "demand",
            "adjustment_type": "percentage",
            "adjustment_value": "15.00",  # numeric PostgREST -> str
            "conditions": {"minDemandScore": 70},
            "valid_from": "2025-01-01",
            "days_of_week": [0, 6],
            "priority": 5,
        })

        assert rule.id == 7
        assert rule.rule_type == RuleType.DEMAND
        assert rule.adjustment_type == AdjustmentType.PERCENTAGE
        assert rule.adjustment_value == 15.0
        assert rule.conditions == DemandCondition(min_score=70.0)
        assert rule.valid_from == date(2025, 1, 1)
        assert rule.days_of_week == frozenset({0, 6})
        assert rule.is_active and rule.is_auto_apply

    def test_parse_camel_case_payload(self):
        """Un payload admin en camelCase est accepté."""
        rule = PricingRule.from_row({
            "name": "Group 10+",
            "ruleType": "group",
            "adjustmentType": "fixed_amount",
            "adjustmentValue": -50,
            "conditions": '{"minGroupSize": 10}',
            "isAutoApply": False,
        })

        assert rule.rule_type == RuleType.GROUP
        assert rule.adjustment_type == AdjustmentType.FIXED_AMOUNT
        assert rule.conditions == GroupCondition(min_size=10)
        assert rule.is_auto_apply is False

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"rule_type": "surge"}, "ruleType"),
            ({"adjustment_type": "multiplier"}, "adjustmentType"),
            ({"adjustment_value": "abc"}, "Invalid number"),
            ({"adjustment_value": "NaN"}, "Invalid number"),
            ({"max_price": "Infinity"}, "Invalid number"),
            ({"adjustment_value": None}, "adjustmentValue"),
            ({"name": "  "}, "name"),
            ({"min_price": 500, "max_price": 100}, "minPrice"),
            ({"valid_from": "2025-12-31", "valid_to": "2025-01-01"}, "validFrom"),
            ({"days_of_week": [1, 7]}, "daysOfWeek"),
        ],
    )
    def test_invalid_rows_raise(self, overrides, message):
        """Les lignes invalides lèvent RuleValidationError."""
        row = {
            "id": 1,
            "name": "Bad rule",
            "rule_type": "promotional",
            "adjustment_type": "percentage",
            "adjustment_value": 10,
        }
        row.update(overrides)

        with pytest.raises(RuleValidationError, match=message):
            PricingRule.from_row(row)

    def test_to_record_keeps_conditions_and_days(self, make_rule):
        """to_record sérialise au format de la table."""
        rule = make_rule(
            rule_type="loyalty",
            conditions={"eligibleTiers": ["Gold", "platinum"]},
            days_of_week=[5, 1],
        )

        record = rule.to_record()

        assert record["rule_type"] == "loyalty"
        assert record["conditions"] == {"eligibleTiers": ["gold", "platinum"]}
        assert record["days_of_week"] == [1, 5]
        assert "id" not in record


class TestConditions:
    """Tests des conditions typées."""

    def test_demand_condition_bounds(self, hotel_context):
        condition = DemandCondition(min_score=60, max_score=90)

        assert not condition.is_met(hotel_context, 59.9)
        assert condition.is_met(hotel_context, 60)
        assert condition.is_met(hotel_context, 90)
        assert not condition.is_met(hotel_context, 90.1)

    def test_group_condition_uses_pax_count(self, hotel_context):
        condition = GroupCondition(min_size=6)

        assert not condition.is_met(hotel_context, 50)
        assert condition.is_met(replace(hotel_context, pax_count=6), 50)

    def test_loyalty_condition_is_case_insensitive(self, hotel_context):
        condition = LoyaltyCondition(tiers=frozenset({"gold"}))
        gold = replace(hotel_context, loyalty_tier=" GOLD ")

        assert condition.is_met(gold, 50)
        assert not condition.is_met(hotel_context, 50)

    def test_booking_window_early_bird_and_last_minute(self, hotel_context):
        """30 jours avant le voyage : early bird 30 oui, 60 non ; last minute 30 oui, 7 non."""
        assert hotel_context.days_before_travel == 30

        assert BookingWindowCondition(days_before_travel=30).is_met(hotel_context, 50)
        assert not BookingWindowCondition(days_before_travel=60).is_met(hotel_context, 50)
        assert BookingWindowCondition(days_before_travel=30, latest=True).is_met(hotel_context, 50)
        assert not BookingWindowCondition(days_before_travel=7, latest=True).is_met(hotel_context, 50)

    def test_loyalty_rule_requires_tiers(self, make_rule):
        with pytest.raises(RuleValidationError, match="eligibleTiers"):
            make_rule(rule_type="loyalty", conditions={})

    def test_promotional_rule_has_no_condition(self, make_rule):
        assert make_rule(conditions={"whatever": 1}).conditions == NoCondition()


class TestPricingContext:
    """Tests pour PricingContext.from_request."""

    def test_from_request(self):
        context = PricingContext.from_request({
            "serviceType": "guide",
            "serviceId": "4",
            "basePrice": "250.5",
            "travelDate": "2025-11-02",
            "bookingDate": "2025-10-01",
            "paxCount": 3,
            "loyaltyTier": "silver",
        })

        assert context.service_id == 4
        assert context.base_price == 250.5
        assert context.travel_date == date(2025, 11, 2)
        assert context.days_before_travel == 32
        assert context.pax_count == 3

    @pytest.mark.parametrize(
        "payload, message",
        [
            ({"serviceId": 1, "basePrice": 10}, "serviceType"),
            ({"serviceType": "hotel", "serviceId": 1, "basePrice": 0}, "positive"),
            ({"serviceType": "hotel", "serviceId": 1, "basePrice": "x"}, "Invalid number"),
            ({"serviceType": "hotel", "serviceId": 1, "basePrice": float("nan")}, "Invalid number"),
            ({"serviceType": "hotel", "serviceId": 1, "basePrice": "Infinity"}, "Invalid number"),
            ({"serviceType": "hotel", "serviceId": 1, "basePrice": 10, "travelDate": "not-a-date"}, "Invalid date"),
            ({"serviceType": "hotel", "serviceId": 1, "basePrice": 10, "paxCount": 0}, "paxCount"),
        ],
    )
    def test_invalid_requests(self, payload, message):
        with pytest.raises(PricingInputError, match=message):
            PricingContext.from_request(payload)


class TestFieldsAndSeasons:
    """Tests des conversions de champs et des saisons."""

    def test_js_weekday_sunday_is_zero(self):
        assert js_weekday(date(2025, 10, 5)) == 0  # dimanche
        assert js_weekday(date(2025, 10, 6)) == 1  # lundi
        assert js_weekday(date(2025, 10, 11)) == 6  # samedi

    def test_pick_prefers_snake_case(self):
        assert pick({"base_price": 1, "basePrice": 2}, "base_price", "basePrice") == 1
        assert pick({"basePrice": 2}, "base_price", "basePrice") == 2
        assert pick({}, "base_price", "basePrice", default=3) == 3

    def test_to_date_accepts_timestamps(self):
        assert to_date("2025-10-01T12:30:00+00:00") == date(2025, 10, 1)

    def test_season_wrapping_year(self):
        winter = Season(name="Winter", start_month=12, end_month=2, price_multiplier=0.9)

        assert winter.covers(date(2025, 12, 15))
        assert winter.covers(date(2026, 1, 10))
        assert not winter.covers(date(2026, 3, 1))


class TestDemandMetric:
    """Tests pour DemandMetric."""

    def test_derived_rates(self):
        metric = DemandMetric(
            metric_date=date(2025, 10, 1),
            quotes_generated=8,
            bookings_confirmed=2,
            total_revenue=5000.0,
            available_inventory=40,
            booked_inventory=30,
        ).with_derived_rates()

        assert metric.conversion_rate == 25.0
        assert metric.average_order_value == 2500.0
        assert metric.occupancy_rate == 75.0

    def test_derived_rates_without_denominator(self):
        metric = DemandMetric(metric_date=date(2025, 10, 1)).with_derived_rates()

        assert metric.conversion_rate is None
        assert metric.average_order_value is None
        assert metric.occupancy_rate is None
        assert not metric.has_signal
