"""
Tests unitaires pour rule_matcher.py
"""

from dataclasses import replace
from datetime import date

import pytest

from dynamic_pricing.models.pricing import PricingInputError
from dynamic_pricing.rule_matcher import match_rules, rule_matches, sort_rules


class TestRuleMatches:
    """Tests pour rule_matches."""

    def test_unscoped_rule_matches(self, make_rule, hotel_context):
        assert rule_matches(make_rule(), hotel_context, hotel_context.travel_date)

    def test_inactive_rule_never_matches(self, make_rule, hotel_context):
        assert not rule_matches(make_rule(is_active=False), hotel_context, hotel_context.travel_date)

    def test_auto_apply_filter(self, make_rule, hotel_context):
        manual = make_rule(is_auto_apply=False)

        assert rule_matches(manual, hotel_context, hotel_context.travel_date)
        assert not rule_matches(manual, hotel_context, hotel_context.travel_date, auto_apply_only=True)

    @pytest.mark.parametrize(
        "scope, matching, other",
        [
            ("service_type", "hotel", "guide"),
            ("destination_id", 3, 4),
            ("service_id", 12, 13),
        ],
    )
    def test_scope_fields(self, make_rule, hotel_context, scope, matching, other):
        """Un champ de périmètre renseigné doit être égal à celui du contexte."""
        assert rule_matches(make_rule(**{scope: matching}), hotel_context, hotel_context.travel_date)
        assert not rule_matches(make_rule(**{scope: other}), hotel_context, hotel_context.travel_date)

    def test_supplier_and_agency_scope(self, make_rule, hotel_context):
        """Une règle fournisseur / agence ne s'applique pas à un contexte sans fournisseur / agence."""
        assert not rule_matches(make_rule(supplier_id=9), hotel_context, hotel_context.travel_date)
        assert not rule_matches(make_rule(agency_id=2), hotel_context, hotel_context.travel_date)

        scoped = replace(hotel_context, supplier_id=9, agency_id=2)
        assert rule_matches(make_rule(supplier_id=9, agency_id=2), scoped, scoped.travel_date)

    def test_validity_bounds_are_inclusive(self, make_rule, hotel_context):
        rule = make_rule(valid_from="2025-10-01", valid_to="2025-10-31")

        assert rule_matches(rule, hotel_context, date(2025, 10, 1))
        assert rule_matches(rule, hotel_context, date(2025, 10, 31))
        assert not rule_matches(rule, hotel_context, date(2025, 9, 30))
        assert not rule_matches(rule, hotel_context, date(2025, 11, 1))

    def test_days_of_week_sunday_is_zero(self, make_rule, hotel_context):
        """Règle week-end [0, 6] : dimanche et samedi uniquement."""
        weekend = make_rule(rule_type="weekend", days_of_week=[0, 6])

        assert rule_matches(weekend, hotel_context, date(2025, 10, 4))  # samedi
        assert rule_matches(weekend, hotel_context, date(2025, 10, 5))  # dimanche
        assert not rule_matches(weekend, hotel_context, date(2025, 10, 6))  # lundi


class TestMatchRules:
    """Tests pour match_rules et sort_rules."""

    def test_sorted_by_priority_then_id(self, make_rule, hotel_context):
        rules = [
            make_rule(rule_id=5, priority=1),
            make_rule(rule_id=2, priority=1),
            make_rule(rule_id=9, priority=0),
        ]

        matched = match_rules(rules, hotel_context)

        assert [r.id for r in matched] == [9, 2, 5]

    def test_filters_non_matching(self, make_rule, hotel_context):
        rules = [make_rule(rule_id=1), make_rule(rule_id=2, service_type="flight")]

        assert [r.id for r in match_rules(rules, hotel_context)] == [1]

    def test_explicit_date_overrides_travel_date(self, make_rule, hotel_context):
        rule = make_rule(valid_from="2025-12-01")

        assert match_rules([rule], hotel_context) == []
        assert match_rules([rule], hotel_context, on_date=date(2025, 12, 24)) == [rule]

    def test_requires_a_date(self, make_rule, hotel_context):
        with pytest.raises(PricingInputError):
            match_rules([make_rule()], replace(hotel_context, travel_date=None))

    def test_sort_rules_is_stable_input_independent(self, make_rule):
        rules = [make_rule(rule_id=i, priority=i % 3) for i in range(1, 8)]

        assert [r.id for r in sort_rules(rules)] == [r.id for r in sort_rules(reversed(rules))]
