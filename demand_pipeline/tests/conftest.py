"""
Fixtures partagées pour les tests des jobs.
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from demand_pipeline.config.settings import Settings


@pytest.fixture
def test_settings():
    """Settings sans base configurée (aucun appel réseau)."""
    return Settings(
        supabase_url="",
        supabase_key="",
        default_timezone="Asia/Kathmandu",
        service_types=["hotel", "guide"],
        job_time_budget_seconds=300,
        tracked_service_lookback_days=30,
    )


@pytest.fixture
def target_date():
    return date(2025, 10, 1)


@pytest.fixture
def sample_destinations():
    """Cinq destinations actives."""
    return [
        {"id": 1, "city": "Kathmandu", "country": "Nepal"},
        {"id": 2, "city": "Pokhara", "country": "Nepal"},
        {"id": 3, "city": "Paro", "country": "Bhutan"},
        {"id": 4, "city": "Lhasa", "country": "Tibet"},
        {"id": 5, "city": None, "country": "Sikkim"},
    ]


@pytest.fixture
def sample_quotes():
    return [
        {"id": 1, "destination": "Kathmandu, Nepal", "created_at": "2025-10-01T08:00:00"},
        {"id": 2, "destination": "Paro, Bhutan", "created_at": "2025-10-01T09:30:00"},
        {"id": 3, "destination": "POKHARA", "created_at": "2025-10-01T17:45:00"},
    ]


@pytest.fixture
def sample_bookings():
    """Deux réservations, dont une sur un devis d'un jour précédent (id 99)."""
    return [
        {"id": 10, "quote_id": 1, "total_amount": "5000.00", "created_at": "2025-10-01T12:00:00"},
        {"id": 11, "quote_id": 99, "total_amount": 2000, "created_at": "2025-10-01T15:00:00"},
    ]


@pytest.fixture
def sample_booking_quotes():
    return [{"id": 99, "destination": "Kathmandu valley", "created_at": "2025-09-20T10:00:00"}]


@pytest.fixture
def sample_quote_items():
    return [
        {"quote_id": 1, "service_type": "hotel"},
        {"quote_id": 1, "service_type": "guide"},
        {"quote_id": 2, "service_type": "hotel"},
        {"quote_id": 99, "service_type": "hotel"},
    ]


@pytest.fixture
def mock_job_logging():
    """Remplace log_job_start / log_job_end (AsyncMock) pour les trois jobs."""
    with patch("demand_pipeline.jobs.aggregate_demand.log_job_start", new_callable=AsyncMock) as agg_start, \
         patch("demand_pipeline.jobs.aggregate_demand.log_job_end", new_callable=AsyncMock) as agg_end, \
         patch("demand_pipeline.jobs.apply_auto_rules.log_job_start", new_callable=AsyncMock) as auto_start, \
         patch("demand_pipeline.jobs.apply_auto_rules.log_job_end", new_callable=AsyncMock) as auto_end, \
         patch("demand_pipeline.jobs.monitor_prices.log_job_start", new_callable=AsyncMock) as monitor_start, \
         patch("demand_pipeline.jobs.monitor_prices.log_job_end", new_callable=AsyncMock) as monitor_end:
        mocks = MagicMock()
        mocks.aggregate_start = agg_start
        mocks.aggregate_end = agg_end
        mocks.auto_start = auto_start
        mocks.auto_end = auto_end
        mocks.monitor_start = monitor_start
        mocks.monitor_end = monitor_end
        yield mocks
