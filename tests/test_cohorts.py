"""Unit tests for nth-order cohort retention."""

import random
from datetime import date, datetime, timedelta, timezone

import numpy as np
import pytest

from retention_audit.foundation.cohorts import (
    RETENTION_BUCKETS,
    CohortData,
    bucket_for_month_diff,
    calculate_nth_order_cohort,
    calendar_month_diff,
    cohort_month_of,
    month_offset_for_bucket,
    parse_order_index,
    validate_order_index,
)
from retention_audit.foundation.errors import InvalidArgumentError, UpstreamDataError
from retention_audit.foundation.ranked_orders import RankedOrder


def zeros():
    return {bucket: 0 for bucket in RETENTION_BUCKETS}


@pytest.fixture
def three_customers():
    """A: two orders in Jan; B: Jan then Mar; C: single order in Feb."""
    return [
        RankedOrder("A", date(2025, 1, 5), 1),
        RankedOrder("A", date(2025, 1, 20), 2),
        RankedOrder("B", date(2025, 1, 10), 1),
        RankedOrder("B", date(2025, 3, 1), 2),
        RankedOrder("C", date(2025, 2, 1), 1),
    ]


def history(customer_id, *dates):
    return [
        RankedOrder(customer_id, order_date, rank)
        for rank, order_date in enumerate(dates, start=1)
    ]


class TestWorkedExamples:
    """The documented n=2 and n=3 examples."""

    def test_second_order_retention(self, three_customers):
        cohorts = calculate_nth_order_cohort(three_customers, 2)

        assert [c.cohort_month for c in cohorts] == ["2025-01", "2025-02"]

        january = cohorts[0]
        assert january.total_customers == 2
        expected = zeros()
        expected.update({"m0": 1, "m2": 1})
        assert dict(january.retention) == expected
        assert january.retention_percentage["m0"] == pytest.approx(50.0)
        assert january.retention_percentage["m2"] == pytest.approx(50.0)
        assert january.retention_percentage["m1"] == 0
        assert january.total_retention == 2

        february = cohorts[1]
        assert february.total_customers == 1
        assert dict(february.retention) == zeros()
        assert all(pct == 0 for pct in february.retention_percentage.values())

    def test_third_order_excludes_single_order_customers(self, three_customers):
        cohorts = calculate_nth_order_cohort(three_customers, 3)

        assert len(cohorts) == 1
        assert cohorts[0].cohort_month == "2025-01"
        assert cohorts[0].total_customers == 2
        assert dict(cohorts[0].retention) == zeros()
        assert all(pct == 0 for pct in cohorts[0].retention_percentage.values())


class TestCohortInclusion:
    """Customers need at least n-1 orders to join a cohort."""

    def test_customer_with_n_minus_two_orders_is_excluded(self):
        orders = history("C1", date(2024, 1, 1), date(2024, 2, 1))
        assert calculate_nth_order_cohort(orders, 4) == []

    def test_customer_with_n_minus_one_orders_counts_without_retention(self):
        orders = history("C1", date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1))
        cohorts = calculate_nth_order_cohort(orders, 4)

        assert len(cohorts) == 1
        assert cohorts[0].cohort_month == "2024-01"
        assert cohorts[0].total_customers == 1
        assert cohorts[0].total_retention == 0

    def test_cohort_month_comes_from_first_order(self):
        orders = history("C1", date(2024, 1, 31), date(2024, 2, 2), date(2024, 5, 9))
        cohorts = calculate_nth_order_cohort(orders, 3)

        assert cohorts[0].cohort_month == "2024-01"
        # Gap measured between 2nd (Feb) and 3rd (May) order
        assert cohorts[0].retention["m3"] == 1

    def test_empty_input_yields_empty_table(self):
        assert calculate_nth_order_cohort([], 2) == []


class TestMonthBuckets:
    """Calendar-month bucketing of the (n-1)th to nth order gap."""

    def test_day_of_month_is_ignored(self):
        orders = history("C1", date(2025, 1, 31), date(2025, 2, 1))
        cohorts = calculate_nth_order_cohort(orders, 2)
        assert cohorts[0].retention["m1"] == 1

    def test_eleven_months_stays_in_m11(self):
        orders = history("C1", date(2024, 1, 1), date(2024, 12, 31))
        cohorts = calculate_nth_order_cohort(orders, 2)
        assert cohorts[0].retention["m11"] == 1

    def test_twelve_or_more_months_goes_to_m12_plus(self):
        orders = history("C1", date(2024, 1, 31), date(2025, 1, 1)) + history(
            "C2", date(2024, 1, 15), date(2027, 6, 1)
        )
        cohorts = calculate_nth_order_cohort(orders, 2)
        assert cohorts[0].retention["m12_plus"] == 2
        assert cohorts[0].retention_percentage["m12_plus"] == pytest.approx(100.0)

    def test_timestamps_use_encoded_calendar_date(self):
        late_evening = datetime(2025, 1, 31, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        orders = [
            RankedOrder("C1", late_evening, 1),
            RankedOrder("C1", datetime(2025, 2, 1, 0, 15, tzinfo=timezone.utc), 2),
        ]
        cohorts = calculate_nth_order_cohort(orders, 2)
        assert cohorts[0].cohort_month == "2025-01"
        assert cohorts[0].retention["m1"] == 1

    def test_iso_strings_are_accepted(self):
        orders = [
            {"customer_id": "C1", "ordered_at": "2025-03-10T08:00:00Z", "order_rank": 1},
            {"customer_id": "C1", "ordered_at": "2025-05-02", "order_rank": 2},
        ]
        cohorts = calculate_nth_order_cohort(orders, 2)
        assert cohorts[0].cohort_month == "2025-03"
        assert cohorts[0].retention["m2"] == 1


class TestOrdering:
    """Output order and input-order independence."""

    def test_cohorts_sorted_by_month(self):
        orders = (
            history("C1", date(2025, 3, 1))
            + history("C2", date(2023, 11, 5))
            + history("C3", date(2024, 2, 9))
        )
        months = [c.cohort_month for c in calculate_nth_order_cohort(orders, 2)]
        assert months == sorted(months) == ["2023-11", "2024-02", "2025-03"]

    def test_input_order_does_not_matter(self, three_customers):
        shuffled = list(reversed(three_customers))
        assert calculate_nth_order_cohort(shuffled, 2) == calculate_nth_order_cohort(
            three_customers, 2
        )

    def test_ranks_are_resorted_per_customer(self):
        orders = [
            RankedOrder("C1", date(2025, 4, 1), 3),
            RankedOrder("C1", date(2025, 1, 1), 1),
            RankedOrder("C1", date(2025, 2, 1), 2),
        ]
        cohorts = calculate_nth_order_cohort(orders, 3)
        assert cohorts[0].cohort_month == "2025-01"
        assert cohorts[0].retention["m2"] == 1

    def test_input_is_not_mutated(self, three_customers):
        snapshot = list(three_customers)
        calculate_nth_order_cohort(three_customers, 2)
        assert three_customers == snapshot


class TestRandomisedInvariants:
    """Bucket-sum bound and percentage consistency on generated data."""

    @pytest.fixture
    def generated_orders(self):
        rng = random.Random(42)
        orders = []
        for idx in range(300):
            current = date(2023, 1, 1) + timedelta(days=rng.randint(0, 700))
            for rank in range(1, rng.randint(1, 6) + 1):
                orders.append(RankedOrder(f"C{idx}", current, rank))
                current += timedelta(days=rng.randint(0, 500))
        rng.shuffle(orders)
        return orders

    @pytest.mark.parametrize("n", [2, 3, 4, 5])
    def test_invariants_hold(self, generated_orders, n):
        cohorts = calculate_nth_order_cohort(generated_orders, n)
        assert cohorts

        for cohort in cohorts:
            assert sum(cohort.retention.values()) <= cohort.total_customers
            for bucket in RETENTION_BUCKETS:
                expected = cohort.retention[bucket] / cohort.total_customers * 100
                assert cohort.retention_percentage[bucket] == pytest.approx(expected)

        months = [c.cohort_month for c in cohorts]
        assert months == sorted(months)


class TestValidation:
    """Invalid n and malformed upstream data."""

    @pytest.mark.parametrize("n", [1, 0, -3, 1.5, 2.0, True, "2", None])
    def test_invalid_n_raises(self, three_customers, n):
        with pytest.raises(InvalidArgumentError):
            calculate_nth_order_cohort(three_customers, n)

    def test_invalid_n_checked_before_input(self):
        with pytest.raises(InvalidArgumentError):
            calculate_nth_order_cohort([{"unexpected": "row"}], 1)

    def test_invalid_argument_is_value_error(self):
        with pytest.raises(ValueError):
            validate_order_index(1)

    def test_numpy_integer_n_accepted(self, three_customers):
        assert validate_order_index(np.int64(3)) == 3
        assert type(validate_order_index(np.int64(3))) is int

        cohorts = calculate_nth_order_cohort(three_customers, np.int64(2))
        assert [c.total_customers for c in cohorts] == [2, 1]

    def test_numpy_integer_below_minimum(self):
        with pytest.raises(InvalidArgumentError, match="at least 2"):
            validate_order_index(np.int32(1))

    def test_missing_fields_raise_upstream_error(self):
        rows = [{"customer_id": "C1", "order_rank": 1}]
        with pytest.raises(UpstreamDataError, match="missing required fields") as exc:
            calculate_nth_order_cohort(rows, 2)
        assert exc.value.record_index == 0

    def test_unparseable_date_raises_upstream_error(self):
        rows = [
            {"customer_id": "C1", "ordered_at": "2025-01-01", "order_rank": 1},
            {"customer_id": "C2", "ordered_at": "not-a-date", "order_rank": 1},
        ]
        with pytest.raises(UpstreamDataError, match="failed to parse") as exc:
            calculate_nth_order_cohort(rows, 2)
        assert exc.value.record_index == 1
        assert exc.value.customer_id == "C2"

    def test_duplicate_rank_raises(self):
        orders = [
            RankedOrder("C1", date(2025, 1, 1), 1),
            RankedOrder("C1", date(2025, 2, 1), 1),
        ]
        with pytest.raises(UpstreamDataError, match="non-contiguous"):
            calculate_nth_order_cohort(orders, 2)

    def test_rank_gap_raises(self):
        orders = [
            RankedOrder("C1", date(2025, 1, 1), 1),
            RankedOrder("C1", date(2025, 2, 1), 3),
        ]
        with pytest.raises(UpstreamDataError, match="non-contiguous") as exc:
            calculate_nth_order_cohort(orders, 2)
        assert exc.value.customer_id == "C1"

    def test_nth_order_before_previous_order_raises(self):
        orders = [
            RankedOrder("C1", date(2025, 3, 1), 1),
            RankedOrder("C1", date(2025, 1, 1), 2),
        ]
        with pytest.raises(UpstreamDataError, match="precedes"):
            calculate_nth_order_cohort(orders, 2)


class TestCohortData:
    """CohortData validation and serialisation."""

    def test_bucket_sum_cannot_exceed_total(self):
        retention = zeros()
        retention["m0"] = 3
        with pytest.raises(ValueError, match="exceeds total_customers"):
            CohortData("2025-01", 2, retention, {b: 0.0 for b in RETENTION_BUCKETS})

    def test_missing_bucket_rejected(self):
        retention = zeros()
        del retention["m12_plus"]
        with pytest.raises(ValueError, match="must have buckets"):
            CohortData("2025-01", 2, retention, {b: 0.0 for b in RETENTION_BUCKETS})

    def test_as_dict(self, three_customers):
        payload = calculate_nth_order_cohort(three_customers, 2)[0].as_dict()
        assert payload["cohort_month"] == "2025-01"
        assert payload["total_customers"] == 2
        assert payload["total_retention"] == 2
        assert list(payload["retention"]) == list(RETENTION_BUCKETS)
        assert payload["retention_percentage"]["m2"] == pytest.approx(50.0)


class TestHelpers:
    def test_parse_order_index(self):
        assert parse_order_index("3") == 3
        assert parse_order_index(" 4 ") == 4
        assert parse_order_index(None) == 2
        assert parse_order_index("") == 2

    @pytest.mark.parametrize("raw", ["abc", "1", "0", "2.5", "-2"])
    def test_parse_order_index_rejects(self, raw):
        with pytest.raises(InvalidArgumentError):
            parse_order_index(raw)

    def test_calendar_month_diff(self):
        assert calendar_month_diff(date(2025, 2, 1), date(2025, 1, 31)) == 1
        assert calendar_month_diff(date(2025, 1, 31), date(2025, 1, 1)) == 0
        assert calendar_month_diff(date(2026, 3, 1), date(2025, 1, 1)) == 14
        assert calendar_month_diff(date(2025, 1, 1), date(2025, 3, 1)) == -2

    def test_bucket_for_month_diff(self):
        assert bucket_for_month_diff(0) == "m0"
        assert bucket_for_month_diff(11) == "m11"
        assert bucket_for_month_diff(12) == "m12_plus"
        assert bucket_for_month_diff(40) == "m12_plus"
        with pytest.raises(ValueError):
            bucket_for_month_diff(-1)

    def test_month_offset_for_bucket(self):
        assert month_offset_for_bucket("m0") == 0
        assert month_offset_for_bucket("m11") == 11
        assert month_offset_for_bucket("m12_plus") == 12
        with pytest.raises(InvalidArgumentError):
            month_offset_for_bucket("m13")

    def test_cohort_month_of(self):
        assert cohort_month_of(date(987, 3, 4)) == "0987-03"
        assert cohort_month_of(date(2025, 12, 1)) == "2025-12"
