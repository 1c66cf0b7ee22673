"""Grand-total and weight views over nth-order cohort tables.

These are pure reductions over :class:`CohortData`; raw orders are never
re-read. Two percentages are derived per bucket:

- ``retention_percentage``: bucket count over the grand total of customers.
- ``weight_percentage``: bucket count over the grand total of nth orders,
  i.e. the share of all nth orders that happened at that month offset.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from retention_audit.foundation.cohorts import (
    RETENTION_BUCKETS,
    CohortData,
    empty_retention,
    retention_percentages,
)

GRAND_TOTAL_LABEL = "Grand Total"


def _share(value: float, total: float) -> float:
    return value / total * 100 if total > 0 else 0.0


@dataclass(frozen=True)
class CohortGrandTotal:
    """Totals across every cohort of an nth-order retention table.

    Attributes
    ----------
    total_customers:
        Sum of ``total_customers`` across cohorts.
    total_nth_orders:
        Sum of every retention bucket across cohorts.
    retention:
        Per-bucket counts summed across cohorts.
    retention_percentage:
        Per-bucket counts over ``total_customers``.
    weight_percentage:
        Per-bucket counts over ``total_nth_orders``.
    """

    total_customers: int
    total_nth_orders: int
    retention: Mapping[str, int]
    retention_percentage: Mapping[str, float]
    weight_percentage: Mapping[str, float]

    @property
    def retention_rate(self) -> float:
        """Share of all base-cohort customers that reached the nth order."""
        return _share(self.total_nth_orders, self.total_customers)

    def as_dict(self) -> dict[str, Any]:
        return {
            "cohort_month": GRAND_TOTAL_LABEL,
            "total_customers": self.total_customers,
            "total_retention": self.total_nth_orders,
            "retention_rate": self.retention_rate,
            "retention": dict(self.retention),
            "retention_percentage": dict(self.retention_percentage),
            "weight_percentage": dict(self.weight_percentage),
        }


def summarize_cohorts(cohorts: Sequence[CohortData]) -> CohortGrandTotal:
    """Reduce a cohort table to its grand-total row.

    An empty table yields a row of zeros.
    """
    retention = empty_retention()
    total_customers = 0
    for cohort in cohorts:
        total_customers += cohort.total_customers
        for bucket in RETENTION_BUCKETS:
            retention[bucket] += cohort.retention[bucket]

    total_nth_orders = sum(retention.values())
    return CohortGrandTotal(
        total_customers=total_customers,
        total_nth_orders=total_nth_orders,
        retention=retention,
        retention_percentage=retention_percentages(retention, total_customers),
        weight_percentage={
            bucket: _share(retention[bucket], total_nth_orders)
            for bucket in RETENTION_BUCKETS
        },
    )


def cohort_weight_percentages(
    cohorts: Sequence[CohortData],
) -> dict[str, dict[str, float]]:
    """Weight of every cell relative to the grand total of nth orders.

    Returns
    -------
    dict[str, dict[str, float]]
        ``{cohort_month: {bucket: cell / total_nth_orders * 100}}``. All
        weights are 0 when no customer reached the nth order.
    """
    total_nth_orders = sum(cohort.total_retention for cohort in cohorts)
    return {
        cohort.cohort_month: {
            bucket: _share(cohort.retention[bucket], total_nth_orders)
            for bucket in RETENTION_BUCKETS
        }
        for cohort in cohorts
    }
