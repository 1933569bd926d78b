"""
Tests unitaires pour le job d'agrégation de la demande.
"""

from unittest.mock import MagicMock, patch

import pytest

from demand_pipeline.jobs.aggregate_demand import (
    AggregationItem,
    DemandSources,
    aggregate_demand,
    aggregate_item,
    build_items,
    compute_item_counters,
    load_demand_sources,
    record_demand_signal,
)
from demand_pipeline.utils.monitoring import JobStatus
from dynamic_pricing.models.metrics import DemandMetric


@pytest.fixture
def sources(sample_quotes, sample_booking_quotes, sample_quote_items, sample_bookings):
    return DemandSources.from_rows(sample_quotes, sample_booking_quotes, sample_quote_items, sample_bookings)


class TestComputeItemCounters:
    """Tests des compteurs par élément."""

    def test_global(self, sources):
        counters = compute_item_counters(sources, AggregationItem(label="global"))

        assert counters == {"quotes_generated": 3, "bookings_confirmed": 2, "total_revenue": 7000.0}

    def test_destination_matches_text_case_insensitive(self, sources):
        kathmandu = AggregationItem(label="destination Kathmandu", destination_id=1, search_term="Kathmandu")
        pokhara = AggregationItem(label="destination Pokhara", destination_id=2, search_term="pokhara")

        assert compute_item_counters(sources, kathmandu) == {
            "quotes_generated": 1,
            "bookings_confirmed": 2,  # dont la réservation sur le devis #99 d'un jour précédent
            "total_revenue": 7000.0,
        }
        assert compute_item_counters(sources, pokhara) == {
            "quotes_generated": 1,
            "bookings_confirmed": 0,
            "total_revenue": 0.0,
        }

    def test_service_type_through_quote_items(self, sources):
        hotel = compute_item_counters(sources, AggregationItem(label="hotel", service_type="hotel"))
        guide = compute_item_counters(sources, AggregationItem(label="guide", service_type="guide"))

        assert hotel == {"quotes_generated": 2, "bookings_confirmed": 2, "total_revenue": 7000.0}
        assert guide == {"quotes_generated": 1, "bookings_confirmed": 1, "total_revenue": 5000.0}

    def test_empty_day(self):
        empty = DemandSources.from_rows([], [], [], [])

        assert compute_item_counters(empty, AggregationItem(label="global")) == {
            "quotes_generated": 0,
            "bookings_confirmed": 0,
            "total_revenue": 0.0,
        }


class TestBuildItems:
    """Tests pour build_items."""

    def test_all_scopes(self, sample_destinations):
        items = build_items(sample_destinations, ["hotel", "guide"])

        assert items[0] == AggregationItem(label="global")
        assert len(items) == 1 + 5 + 2
        assert items[5].search_term == "Sikkim"  # pas de ville : repli sur le pays

    def test_destinations_only(self, sample_destinations):
        items = build_items(sample_destinations + [{"id": 6}], ["hotel"], scopes=("destinations",))

        assert [i.destination_id for i in items] == [1, 2, 3, 4, 5]


class TestLoadDemandSources:
    """Tests pour load_demand_sources."""

    @patch("demand_pipeline.jobs.aggregate_demand.fetch_quote_items_for_quotes")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_quotes_by_ids")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_bookings_created_on")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_quotes_created_on")
    def test_day_is_read_in_timezone(
        self, mock_quotes, mock_bookings, mock_by_ids, mock_items,
        sample_quotes, sample_bookings, sample_booking_quotes, sample_quote_items, target_date,
    ):
        mock_quotes.return_value = sample_quotes
        mock_bookings.return_value = sample_bookings
        mock_by_ids.return_value = sample_booking_quotes
        mock_items.return_value = sample_quote_items

        sources = load_demand_sources(target_date, "Asia/Kathmandu")

        mock_quotes.assert_called_once_with(target_date, "Asia/Kathmandu")
        mock_bookings.assert_called_once_with(target_date, "Asia/Kathmandu")
        mock_by_ids.assert_called_once_with([99])
        assert len(sources.quote_lookup) == 4


class TestAggregateItem:
    """Tests pour aggregate_item."""

    @patch("demand_pipeline.jobs.aggregate_demand.save_demand_metric")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_demand_metric_rows")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_demand_metric")
    def test_recomputed_counters_overwrite_and_signals_are_kept(
        self, mock_existing, mock_history, mock_save, sources, target_date
    ):
        """Rejouable : devis / réservations écrasés, recherches et inventaire conservés."""
        mock_existing.return_value = {
            "id": 77,
            "metric_date": "2025-10-01",
            "search_count": 40,
            "quotes_generated": 99,
            "available_inventory": 20,
            "booked_inventory": 15,
        }
        mock_history.return_value = []

        metric = aggregate_item(sources, AggregationItem(label="global"), target_date)

        assert metric.quotes_generated == 3
        assert metric.bookings_confirmed == 2
        assert metric.search_count == 40
        assert metric.conversion_rate == pytest.approx(66.67)
        assert metric.occupancy_rate == 75.0
        assert metric.average_order_value == 3500.0
        assert 0 <= metric.demand_score <= 100

        record = mock_save.call_args[0][0]
        assert mock_save.call_args.kwargs["existing_id"] == 77
        assert record["quotes_generated"] == 3
        assert record["search_count"] == 40

    @patch("demand_pipeline.jobs.aggregate_demand.save_demand_metric")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_demand_metric_rows")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_demand_metric")
    def test_new_row_is_inserted(self, mock_existing, mock_history, mock_save, sources, target_date):
        mock_existing.return_value = None
        mock_history.return_value = []

        item = AggregationItem(label="destination Paro", destination_id=3, search_term="Paro")
        metric = aggregate_item(sources, item, target_date)

        assert metric.destination_id == 3
        assert metric.quotes_generated == 1
        assert mock_save.call_args.kwargs["existing_id"] is None


class TestRecordDemandSignal:
    """Tests pour record_demand_signal."""

    @patch("demand_pipeline.jobs.aggregate_demand.save_demand_metric")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_demand_metric_rows")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_demand_metric")
    def test_counters_accumulate(self, mock_existing, mock_history, mock_save, target_date):
        mock_existing.return_value = {
            "id": 5,
            "metric_date": "2025-10-01",
            "destination_id": 1,
            "search_count": 5,
            "inquiry_count": 2,
            "total_revenue": 100,
        }
        mock_history.return_value = []

        metric = record_demand_signal(
            target_date, destination_id=1, counters={"search_count": 3, "inquiry_count": 1}, revenue=50.0
        )

        assert metric.search_count == 8
        assert metric.inquiry_count == 3
        assert metric.total_revenue == 150.0
        assert mock_save.call_args.kwargs["existing_id"] == 5

    @pytest.mark.parametrize(
        "counters, revenue",
        [
            ({"page_views": 1}, 0.0),
            ({"search_count": -1}, 0.0),
            ({"search_count": 1.5}, 0.0),
            ({"search_count": 1}, -10.0),
        ],
    )
    @patch("demand_pipeline.jobs.aggregate_demand.save_demand_metric")
    def test_invalid_signal_rejected(self, mock_save, counters, revenue, target_date):
        with pytest.raises(ValueError):
            record_demand_signal(target_date, counters=counters, revenue=revenue)
        mock_save.assert_not_called()


class TestAggregateDemandJob:
    """Tests du job complet (async)."""

    @pytest.mark.asyncio
    @patch("demand_pipeline.jobs.aggregate_demand.aggregate_item")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_active_destinations")
    @patch("demand_pipeline.jobs.aggregate_demand.load_demand_sources")
    async def test_one_failing_destination_does_not_stop_the_batch(
        self,
        mock_sources,
        mock_destinations,
        mock_aggregate_item,
        mock_job_logging,
        test_settings,
        sample_destinations,
        target_date,
    ):
        """5 destinations, la 3e lève une erreur : 4 métriques écrites, 1 erreur, statut partial."""
        mock_sources.return_value = DemandSources.from_rows([], [], [], [])
        mock_destinations.return_value = sample_destinations

        def _aggregate(sources, item, day, config):
            if item.destination_id == 3:
                raise RuntimeError("write timeout")
            return DemandMetric(metric_date=day, destination_id=item.destination_id, demand_score=50.0)

        mock_aggregate_item.side_effect = _aggregate

        report = await aggregate_demand(target_date, settings=test_settings, scopes=("destinations",))

        assert report["metricsUpdated"] == 4
        assert len(report["errors"]) == 1
        assert "destination Paro" in report["errors"][0]
        assert report["status"] == JobStatus.PARTIAL.value
        assert report["success"] is True
        assert mock_aggregate_item.call_count == 5

        mock_job_logging.aggregate_start.assert_awaited_once()
        status = mock_job_logging.aggregate_end.call_args[0][1]
        assert status == JobStatus.PARTIAL

    @pytest.mark.asyncio
    @patch("demand_pipeline.jobs.aggregate_demand.aggregate_item")
    @patch("demand_pipeline.jobs.aggregate_demand.fetch_active_destinations")
    @patch("demand_pipeline.jobs.aggregate_demand.load_demand_sources")
    async def test_all_scopes_success(
        self, mock_sources, mock_destinations, mock_aggregate_item, mock_job_logging, test_settings, sample_destinations, target_date
    ):
        mock_sources.return_value = DemandSources.from_rows([], [], [], [])
        mock_destinations.return_value = sample_destinations
        mock_aggregate_item.return_value = DemandMetric(metric_date=target_date)

        report = await aggregate_demand(target_date, settings=test_settings)

        assert report["metricsUpdated"] == 1 + 5 + 2
        assert report["errors"] == []
        assert report["status"] == "success"
        # la journée est lue dans la timezone configurée
        mock_sources.assert_called_once_with(target_date, "Asia/Kathmandu")

    @pytest.mark.asyncio
    @patch("demand_pipeline.jobs.aggregate_demand.aggregate_item")
    @patch("demand_pipeline.jobs.aggregate_demand.load_demand_sources")
    async def test_source_failure_fails_the_job(
        self, mock_sources, mock_aggregate_item, mock_job_logging, test_settings, target_date
    ):
        mock_sources.side_effect = RuntimeError("quotes table unavailable")

        report = await aggregate_demand(target_date, settings=test_settings, scopes=("global",))

        assert report["status"] == "failed"
        assert report["success"] is False
        assert "quotes table unavailable" in report["errors"][0]
        mock_aggregate_item.assert_not_called()

    @pytest.mark.asyncio
    @patch("demand_pipeline.jobs.aggregate_demand.aggregate_item")
    @patch("demand_pipeline.jobs.aggregate_demand.load_demand_sources")
    async def test_time_budget_defers_remaining_items(
        self, mock_sources, mock_aggregate_item, mock_job_logging, test_settings, target_date
    ):
        mock_sources.return_value = DemandSources.from_rows([], [], [], [])
        test_settings.job_time_budget_seconds = -1

        report = await aggregate_demand(target_date, settings=test_settings, scopes=("global", "service_types"))

        assert report["skipped"] == 3
        assert "deferred to next run" in report["errors"][0]
        mock_aggregate_item.assert_not_called()
