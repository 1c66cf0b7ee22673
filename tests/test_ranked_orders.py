"""Tests for the ranked order contract and in-memory ranking."""

from datetime import date, datetime, timezone

import pytest

from retention_audit.foundation.cohorts import calculate_nth_order_cohort
from retention_audit.foundation.errors import UpstreamDataError
from retention_audit.foundation.ranked_orders import (
    RankedOrder,
    RankedOrderContract,
    RankingScope,
    parse_order_timestamp,
    rank_order_events,
)


class TestRankedOrderContract:
    def test_validates_and_parses_records(self):
        contract = RankedOrderContract()
        orders = contract.validate_records(
            [
                {"customer_id": 42, "ordered_at": "2025-01-05T10:00:00Z", "order_rank": "1"},
                {"customer_id": "C2", "ordered_at": date(2025, 2, 1), "order_rank": 2.0},
            ]
        )

        assert orders[0] == RankedOrder(
            "42", datetime(2025, 1, 5, 10, tzinfo=timezone.utc), 1
        )
        assert orders[0].order_date == date(2025, 1, 5)
        assert orders[1].order_rank == 2
        assert orders[1].order_date == date(2025, 2, 1)

    def test_ranked_orders_pass_through(self):
        order = RankedOrder("C1", date(2025, 1, 1), 1)
        assert RankedOrderContract().validate_records([order]) == [order]

    def test_missing_fields(self):
        with pytest.raises(UpstreamDataError, match="missing required fields") as exc:
            RankedOrderContract().validate_records(
                [{"customer_id": "C1", "ordered_at": "", "order_rank": 1}]
            )
        assert exc.value.record_index == 0
        assert exc.value.customer_id == "C1"

    def test_non_mapping_record(self):
        with pytest.raises(UpstreamDataError, match="must be a mapping"):
            RankedOrderContract().validate_records([("C1", "2025-01-01", 1)])

    @pytest.mark.parametrize("rank", [0, -1, 1.5, True, "first"])
    def test_invalid_rank(self, rank):
        with pytest.raises(UpstreamDataError) as exc:
            RankedOrderContract().validate_records(
                [
                    {"customer_id": "C1", "ordered_at": "2025-01-01", "order_rank": 1},
                    {"customer_id": "C1", "ordered_at": "2025-01-02", "order_rank": rank},
                ]
            )
        assert exc.value.record_index == 1

    def test_ranked_order_rejects_non_positive_rank(self):
        with pytest.raises(UpstreamDataError, match=">= 1"):
            RankedOrder("C1", date(2025, 1, 1), 0)

    def test_to_serialisable(self):
        payload = RankedOrderContract().to_serialisable(
            [RankedOrder("C1", datetime(2025, 1, 5, 10, 0), 1)]
        )
        assert payload == [
            {"customer_id": "C1", "ordered_at": "2025-01-05T10:00:00", "order_rank": 1}
        ]


class TestParseOrderTimestamp:
    def test_keeps_encoded_offset(self):
        parsed = parse_order_timestamp("2025-01-31T23:30:00-05:00")
        assert parsed.date() == date(2025, 1, 31)

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_order_timestamp("31/01/2025")

    def test_rejects_other_types(self):
        with pytest.raises(TypeError):
            parse_order_timestamp(20250131)


class TestRankOrderEvents:
    """In-memory ROW_NUMBER ranking."""

    @pytest.fixture
    def events(self):
        return [
            {"order_id": "3", "customer_id": "B", "ordered_at": "2024-03-01", "product_group": "bath"},
            {"order_id": "1", "customer_id": "A", "ordered_at": "2024-01-05", "product_group": "sleep"},
            {"order_id": "2", "customer_id": "B", "ordered_at": "2023-12-20", "product_group": "sleep"},
            {"order_id": "4", "customer_id": "A", "ordered_at": "2025-02-01", "product_group": "bath"},
            {"order_id": "5", "customer_id": "C", "ordered_at": "2024-06-10", "product_group": "bath"},
        ]

    def test_ranks_chronologically(self, events):
        ranked = rank_order_events(events)

        assert [(o.customer_id, o.order_rank, o.order_date) for o in ranked] == [
            ("A", 1, date(2024, 1, 5)),
            ("A", 2, date(2025, 2, 1)),
            ("B", 1, date(2023, 12, 20)),
            ("B", 2, date(2024, 3, 1)),
            ("C", 1, date(2024, 6, 10)),
        ]

    def test_ties_broken_by_order_id(self):
        ranked = rank_order_events(
            [
                {"order_id": "1002", "customer_id": "A", "ordered_at": "2024-01-05T10:00:00"},
                {"order_id": "1001", "customer_id": "A", "ordered_at": "2024-01-05T10:00:00"},
            ]
        )
        assert [o.order_rank for o in ranked] == [1, 2]

    def test_ties_without_order_id_keep_input_order(self):
        events = [
            {"customer_id": "A", "ordered_at": "2024-01-05"},
            {"customer_id": "A", "ordered_at": "2024-01-05"},
            {"customer_id": "A", "ordered_at": "2024-01-01"},
        ]
        ranked = rank_order_events(events)
        assert [o.order_rank for o in ranked] == [1, 2, 3]
        assert ranked[0].order_date == date(2024, 1, 1)

    def test_year_scope_uses_first_order(self, events):
        ranked = rank_order_events(events, RankingScope(year=2024))

        assert sorted({o.customer_id for o in ranked}) == ["A", "C"]
        # Ranks still count the full history, including later years
        assert [o.order_rank for o in ranked if o.customer_id == "A"] == [1, 2]

    def test_product_scope_uses_first_order(self, events):
        ranked = rank_order_events(events, RankingScope(product="sleep"))
        assert sorted({o.customer_id for o in ranked}) == ["A", "B"]

    def test_all_products_disables_filter(self, events):
        assert rank_order_events(events, RankingScope(product="ALL")) == rank_order_events(
            events
        )

    def test_missing_customer_id(self):
        with pytest.raises(UpstreamDataError, match="missing customer_id") as exc:
            rank_order_events([{"customer_id": None, "ordered_at": "2024-01-01"}])
        assert exc.value.record_index == 0

    def test_unparseable_timestamp(self):
        with pytest.raises(UpstreamDataError, match="failed to parse"):
            rank_order_events([{"customer_id": "A", "ordered_at": "yesterday"}])

    def test_mixed_timezone_awareness(self):
        with pytest.raises(UpstreamDataError, match="timezone-aware and naive"):
            rank_order_events(
                [
                    {"customer_id": "A", "ordered_at": "2024-01-01T10:00:00Z"},
                    {"customer_id": "A", "ordered_at": "2024-01-02T10:00:00"},
                ]
            )


class TestRankedOrder:
    def test_string_timestamp_parsed_on_construction(self):
        order = RankedOrder("A", "2025-01-05", 1)

        assert isinstance(order.ordered_at, datetime)
        assert order.order_date == date(2025, 1, 5)
        assert order == RankedOrder("A", datetime(2025, 1, 5), 1)

    def test_string_built_orders_feed_cohorts(self):
        orders = [
            RankedOrder("A", "2025-01-05T10:00:00Z", 1),
            RankedOrder("A", "2025-01-20T10:00:00Z", 2),
        ]

        (january,) = calculate_nth_order_cohort(orders, 2)
        assert january.cohort_month == "2025-01"
        assert january.retention["m0"] == 1

    @pytest.mark.parametrize("ordered_at", [None, "garbage", 20250105])
    def test_unusable_timestamp_rejected(self, ordered_at):
        with pytest.raises(UpstreamDataError, match="failed to parse ordered_at") as exc:
            RankedOrder("A", ordered_at, 1)
        assert exc.value.customer_id == "A"


class TestRankingScope:
    def test_invalid_year(self):
        with pytest.raises(ValueError, match="year"):
            RankingScope(year=0)

    def test_product_filter(self):
        assert RankingScope().product_filter is None
        assert RankingScope(product="ALL").product_filter is None
        assert RankingScope(product="sleep").product_filter == "sleep"
