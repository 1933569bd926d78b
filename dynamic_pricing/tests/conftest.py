"""
Fixtures partagées pour les tests du moteur de pricing.
"""

from datetime import date
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

from dynamic_pricing.config import PricingConfig
from dynamic_pricing.models.pricing import PricingContext
from dynamic_pricing.models.rules import PricingRule

TRAVEL_DATE = date(2025, 10, 1)  # mercredi
BOOKING_DATE = date(2025, 9, 1)


@pytest.fixture
def make_rule():
    """Fabrique de règles à partir d'une ligne `pricing_rules` minimale."""

    def _make(rule_id: int = 1, **overrides: Any) -> PricingRule:
        row: Dict[str, Any] = {
            "id": rule_id,
            "name": f"Rule {rule_id}",
            "rule_type": "promotional",
            "adjustment_type": "percentage",
            "adjustment_value": 10,
            "priority": 0,
            "is_active": True,
            "is_auto_apply": True,
        }
        row.update(overrides)
        return PricingRule.from_row(row)

    return _make


@pytest.fixture
def hotel_context() -> PricingContext:
    """Contexte de pricing pour un hôtel à 1000."""
    return PricingContext(
        service_type="hotel",
        service_id=12,
        service_name="Yak & Yeti",
        base_price=1000.0,
        travel_date=TRAVEL_DATE,
        booking_date=BOOKING_DATE,
        currency="USD",
        destination_id=3,
    )


@pytest.fixture
def pricing_config() -> PricingConfig:
    """Configuration par défaut (saisons et ajustements intégrés désactivés)."""
    return PricingConfig()


@pytest.fixture
def mock_supabase_client():
    """Mock du client Supabase (chaîne de requêtes fluide)."""
    client = MagicMock()
    query = MagicMock()
    for method in ("select", "eq", "is_", "or_", "gt", "gte", "lte", "lt", "in_", "order", "limit", "insert", "update", "upsert"):
        getattr(query, method).return_value = query
    query.execute.return_value.data = []
    client.table.return_value = query
    return client
