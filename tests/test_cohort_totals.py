"""Tests for grand-total and weight views of cohort tables."""

from datetime import date

import pytest

from retention_audit.analyses.cohort_totals import (
    GRAND_TOTAL_LABEL,
    cohort_weight_percentages,
    summarize_cohorts,
)
from retention_audit.foundation.cohorts import RETENTION_BUCKETS, calculate_nth_order_cohort
from retention_audit.foundation.ranked_orders import RankedOrder


@pytest.fixture
def cohorts():
    orders = [
        RankedOrder("A", date(2025, 1, 5), 1),
        RankedOrder("A", date(2025, 1, 20), 2),
        RankedOrder("B", date(2025, 1, 10), 1),
        RankedOrder("B", date(2025, 3, 1), 2),
        RankedOrder("C", date(2025, 2, 1), 1),
        RankedOrder("D", date(2025, 2, 14), 1),
        RankedOrder("D", date(2025, 2, 28), 2),
    ]
    return calculate_nth_order_cohort(orders, 2)


class TestSummarizeCohorts:
    def test_sums_across_cohorts(self, cohorts):
        total = summarize_cohorts(cohorts)

        assert total.total_customers == 4
        assert total.total_nth_orders == 3
        assert total.retention["m0"] == 2
        assert total.retention["m2"] == 1
        assert total.retention_rate == pytest.approx(75.0)

    def test_percentages(self, cohorts):
        total = summarize_cohorts(cohorts)

        assert total.retention_percentage["m0"] == pytest.approx(50.0)
        assert total.retention_percentage["m2"] == pytest.approx(25.0)
        assert total.weight_percentage["m0"] == pytest.approx(200 / 3)
        assert total.weight_percentage["m2"] == pytest.approx(100 / 3)
        assert sum(total.weight_percentage.values()) == pytest.approx(100.0)

    def test_empty_table(self):
        total = summarize_cohorts([])

        assert total.total_customers == 0
        assert total.total_nth_orders == 0
        assert total.retention_rate == 0.0
        assert all(v == 0 for v in total.retention.values())
        assert all(v == 0.0 for v in total.weight_percentage.values())

    def test_as_dict(self, cohorts):
        payload = summarize_cohorts(cohorts).as_dict()

        assert payload["cohort_month"] == GRAND_TOTAL_LABEL
        assert payload["total_retention"] == 3
        assert list(payload["weight_percentage"]) == list(RETENTION_BUCKETS)


class TestCohortWeightPercentages:
    def test_cells_relative_to_all_nth_orders(self, cohorts):
        weights = cohort_weight_percentages(cohorts)

        assert list(weights) == ["2025-01", "2025-02"]
        assert weights["2025-01"]["m0"] == pytest.approx(100 / 3)
        assert weights["2025-01"]["m2"] == pytest.approx(100 / 3)
        assert weights["2025-02"]["m0"] == pytest.approx(100 / 3)
        total = sum(sum(row.values()) for row in weights.values())
        assert total == pytest.approx(100.0)

    def test_no_nth_orders(self):
        orders = [RankedOrder("A", date(2025, 1, 5), 1)]
        weights = cohort_weight_percentages(calculate_nth_order_cohort(orders, 2))
        assert all(v == 0.0 for v in weights["2025-01"].values())
