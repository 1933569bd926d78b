"""
Tests unitaires pour analytics.py
"""

from datetime import date, timedelta
from unittest.mock import patch

import pytest

from dynamic_pricing.analytics import (
    get_pricing_analytics,
    summarize_adjustments,
    summarize_demand_trends,
    summarize_price_history,
)


@pytest.fixture
def adjustment_rows():
    return [
        {
            "rule_id": 1, "rule_name": "Peak", "adjustment_type": "percentage", "adjustment_value": 15,
            "original_price": 1000, "adjusted_price": 1150, "triggered_by": "quote_builder",
        },
        {
            "rule_id": 1, "rule_name": "Peak", "adjustment_type": "percentage", "adjustment_value": "15",
            "original_price": "2000", "adjusted_price": "2300", "triggered_by": "cron",
        },
        {
            "rule_id": 2, "rule_name": "Group", "adjustment_type": "fixed_amount", "adjustment_value": -50,
            "original_price": 500, "adjusted_price": 450, "triggered_by": "cron",
        },
    ]


class TestSummarizeAdjustments:
    """Tests pour summarize_adjustments."""

    def test_summary(self, adjustment_rows):
        summary = summarize_adjustments(adjustment_rows)

        assert summary["totalAdjustments"] == 3
        assert summary["averageAdjustment"] == pytest.approx(-6.67)
        assert summary["ruleBreakdown"] == {
            "Peak": {"count": 2, "totalImpact": 450.0},
            "Group": {"count": 1, "totalImpact": -50.0},
        }
        assert summary["byAdjustmentType"] == {"percentage": 2, "fixed_amount": 1}
        assert summary["byTrigger"] == {"cron": 2, "quote_builder": 1}

    def test_rule_performance_sorted_by_usage(self, adjustment_rows):
        performance = summarize_adjustments(adjustment_rows)["rulePerformance"]

        assert performance[0] == {
            "ruleId": 1,
            "ruleName": "Peak",
            "adjustmentType": "percentage",
            "usageCount": 2,
            "totalImpact": 450.0,
            "avgImpact": 225.0,
        }
        assert performance[1]["ruleId"] == 2

    def test_empty(self):
        summary = summarize_adjustments([])

        assert summary["totalAdjustments"] == 0
        assert summary["rulePerformance"] == []


class TestSummarizePriceHistory:
    """Tests pour summarize_price_history."""

    def test_trends_and_volatility(self):
        rows = [
            {"record_date": "2025-10-01", "service_type": "hotel", "adjusted_price": 1000},
            {"record_date": "2025-10-01", "service_type": "hotel", "adjusted_price": 1200},
            {"record_date": "2025-10-02", "service_type": "hotel", "adjusted_price": 1100},
            {"record_date": "2025-10-01", "service_type": "guide", "adjusted_price": 300},
        ]

        summary = summarize_price_history(rows)

        assert summary["dailyTrends"] == [
            {"date": "2025-10-01", "avgPrice": 833.33, "adjustmentCount": 3},
            {"date": "2025-10-02", "avgPrice": 1100.0, "adjustmentCount": 1},
        ]
        by_type = {v["serviceType"]: v for v in summary["priceVolatility"]}
        assert by_type["hotel"]["priceRange"] == 200.0
        assert by_type["hotel"]["volatility"] == pytest.approx(100.0)
        assert by_type["guide"]["volatility"] == 0.0

    def test_empty(self):
        assert summarize_price_history([]) == {"dailyTrends": [], "priceVolatility": []}


class TestDemandTrends:
    """Tests pour summarize_demand_trends."""

    def test_daily_aggregation(self):
        rows = [
            {"metric_date": "2025-10-01", "demand_score": 60, "search_count": 10, "bookings_confirmed": 1},
            {"metric_date": "2025-10-01", "demand_score": 80, "search_count": 5, "bookings_confirmed": 2},
            {"metric_date": "2025-10-02", "demand_score": None, "search_count": 0, "bookings_confirmed": 0},
        ]

        trends = summarize_demand_trends(rows)

        assert trends == [
            {"date": "2025-10-01", "demandScore": 70.0, "searches": 15, "bookings": 3},
            {"date": "2025-10-02", "demandScore": None, "searches": 0, "bookings": 0},
        ]


class TestGetPricingAnalytics:
    """Tests pour get_pricing_analytics."""

    @patch("dynamic_pricing.analytics.fetch_demand_metrics_between")
    @patch("dynamic_pricing.analytics.fetch_price_history")
    @patch("dynamic_pricing.analytics.fetch_price_adjustments")
    def test_default_period(self, mock_adjustments, mock_history, mock_demand, adjustment_rows):
        mock_adjustments.return_value = adjustment_rows
        mock_history.return_value = []
        mock_demand.return_value = []

        analytics = get_pricing_analytics(service_type="hotel")

        today = date.today()
        assert analytics["period"] == {
            "start": (today - timedelta(days=30)).isoformat(),
            "end": today.isoformat(),
        }
        assert analytics["totalAdjustments"] == 3
        assert analytics["dailyTrends"] == []
        assert analytics["demandTrends"] == []
        mock_adjustments.assert_called_once_with(today - timedelta(days=30), today, "hotel")
