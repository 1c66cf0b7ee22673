"""Nth-order cohort retention for customer segmentation.

This module groups customers into monthly cohorts by the month of their
first purchase and measures, for a target order index ``n``, how quickly
customers who placed their (n-1)th order went on to place their nth order.
The gap is measured in calendar months and bucketed into ``m0`` .. ``m11``
plus an open-ended ``m12_plus`` bucket.

Quick Start
-----------
>>> from datetime import date
>>> from retention_audit.foundation.ranked_orders import RankedOrder
>>> from retention_audit.foundation.cohorts import calculate_nth_order_cohort
>>>
>>> orders = [
...     RankedOrder("A", date(2025, 1, 5), 1),
...     RankedOrder("A", date(2025, 1, 20), 2),
...     RankedOrder("B", date(2025, 1, 10), 1),
... ]
>>> cohorts = calculate_nth_order_cohort(orders, n=2)
>>> cohorts[0].cohort_month, cohorts[0].total_customers, cohorts[0].retention["m0"]
('2025-01', 2, 1)

Notes
-----
- Customers with fewer than ``n - 1`` orders are excluded entirely. Customers
  with exactly ``n - 1`` orders count towards ``total_customers`` but add
  nothing to any retention bucket. No right-censoring is applied to recent
  cohorts; that is left to the caller.
- Month differences ignore the day of month: an (n-1)th order on 31 January
  and an nth order on 1 February fall in ``m1``.
- The computation is pure. It never logs and never mutates its input.
"""

from __future__ import annotations

import operator
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping

from retention_audit.foundation.errors import InvalidArgumentError, UpstreamDataError
from retention_audit.foundation.ranked_orders import RankedOrder, RankedOrderContract

#: Largest month offset with its own bucket; larger offsets go to ``m12_plus``.
MAX_MONTH_BUCKET = 11

OPEN_ENDED_BUCKET = "m12_plus"

#: Retention bucket keys in display order.
RETENTION_BUCKETS: tuple[str, ...] = tuple(
    f"m{offset}" for offset in range(MAX_MONTH_BUCKET + 1)
) + (OPEN_ENDED_BUCKET,)

MIN_ORDER_INDEX = 2


def validate_order_index(n: Any) -> int:
    """Validate the target order index ``n``.

    Raises
    ------
    InvalidArgumentError
        If ``n`` is not an integer (floats and bools are rejected) or is
        smaller than 2. Integer-like values such as numpy integers are
        accepted and returned as a plain ``int``.
    """
    if isinstance(n, bool):
        raise InvalidArgumentError(f"n must be an integer >= 2, got {n!r}")
    try:
        value = operator.index(n)
    except TypeError as e:
        raise InvalidArgumentError(f"n must be an integer >= 2, got {n!r}") from e
    if value < MIN_ORDER_INDEX:
        raise InvalidArgumentError(f"n must be at least {MIN_ORDER_INDEX}, got {value}")
    return value


def parse_order_index(raw: str | None, default: int = MIN_ORDER_INDEX) -> int:
    """Parse a raw request value (e.g. a query parameter) into ``n``.

    ``None`` and empty strings yield ``default``.

    >>> parse_order_index("3")
    3
    >>> parse_order_index(None)
    2
    """
    if raw is None or not raw.strip():
        return validate_order_index(default)
    try:
        value = int(raw.strip())
    except ValueError as e:
        raise InvalidArgumentError(
            f'Invalid "n" parameter {raw!r}. It must be an integer >= 2.'
        ) from e
    return validate_order_index(value)


def cohort_month_of(order_date: date) -> str:
    """Format a calendar date as its ``YYYY-MM`` cohort month."""
    return f"{order_date.year:04d}-{order_date.month:02d}"


def calendar_month_diff(later: date, earlier: date) -> int:
    """Number of calendar month boundaries between two dates.

    >>> calendar_month_diff(date(2025, 2, 1), date(2025, 1, 31))
    1
    >>> calendar_month_diff(date(2026, 1, 15), date(2025, 1, 15))
    12
    """
    return (later.year * 12 + later.month) - (earlier.year * 12 + earlier.month)


def bucket_for_month_diff(month_diff: int) -> str:
    """Return the retention bucket key for a non-negative month difference."""
    if month_diff < 0:
        raise ValueError(f"month_diff must be >= 0, got {month_diff}")
    if month_diff <= MAX_MONTH_BUCKET:
        return f"m{month_diff}"
    return OPEN_ENDED_BUCKET


def month_offset_for_bucket(bucket: str) -> int:
    """Inverse of :func:`bucket_for_month_diff`; ``m12_plus`` maps to 12."""
    if bucket not in RETENTION_BUCKETS:
        raise InvalidArgumentError(f"Unknown retention bucket {bucket!r}")
    if bucket == OPEN_ENDED_BUCKET:
        return MAX_MONTH_BUCKET + 1
    return int(bucket[1:])


@dataclass(frozen=True)
class ProcessedOrder:
    """An order reduced to its rank and calendar date."""

    rank: int
    date: date


@dataclass(frozen=True)
class CohortMembership:
    """Base-cohort membership of a customer with at least ``n - 1`` orders."""

    cohort_month: str
    previous_order_date: date


@dataclass(frozen=True)
class NthOrderEvent:
    """The (n-1)th to nth order transition of a customer."""

    previous_order_date: date
    nth_order_date: date

    @property
    def month_diff(self) -> int:
        return calendar_month_diff(self.nth_order_date, self.previous_order_date)


@dataclass(frozen=True)
class CohortData:
    """Nth-order retention results for one first-purchase cohort.

    Attributes
    ----------
    cohort_month:
        Calendar month of the cohort members' first order (``YYYY-MM``).
    total_customers:
        Customers in the cohort with at least ``n - 1`` orders.
    retention:
        Count of customers per month-offset bucket (``m0`` .. ``m12_plus``)
        between their (n-1)th and nth order.
    retention_percentage:
        ``retention[bucket] / total_customers * 100`` per bucket, unrounded.
    """

    cohort_month: str
    total_customers: int
    retention: Mapping[str, int]
    retention_percentage: Mapping[str, float]

    def __post_init__(self) -> None:
        """Validate cohort data constraints."""
        if self.total_customers < 0:
            raise ValueError(
                f"total_customers must be >= 0, got {self.total_customers}"
            )
        for name, values in (
            ("retention", self.retention),
            ("retention_percentage", self.retention_percentage),
        ):
            if tuple(values) != RETENTION_BUCKETS:
                raise ValueError(
                    f"{name} must have buckets {RETENTION_BUCKETS}, got {tuple(values)}"
                )
        if any(count < 0 for count in self.retention.values()):
            raise ValueError(f"retention counts must be >= 0: {dict(self.retention)}")
        if self.total_retention > self.total_customers:
            raise ValueError(
                f"Sum of retention buckets ({self.total_retention}) exceeds "
                f"total_customers ({self.total_customers}) for cohort {self.cohort_month}"
            )

    @property
    def total_retention(self) -> int:
        """Customers in the cohort who reached the nth order."""
        return sum(self.retention.values())

    def as_dict(self) -> dict[str, Any]:
        """Return JSON-serialisable representation of the cohort."""
        return {
            "cohort_month": self.cohort_month,
            "total_customers": self.total_customers,
            "total_retention": self.total_retention,
            "retention": dict(self.retention),
            "retention_percentage": dict(self.retention_percentage),
        }


def empty_retention() -> dict[str, int]:
    return {bucket: 0 for bucket in RETENTION_BUCKETS}


def retention_percentages(
    retention: Mapping[str, int], total_customers: int
) -> dict[str, float]:
    """Express bucket counts as percentages of ``total_customers``.

    Returns 0.0 for every bucket when ``total_customers`` is 0.
    """
    if total_customers <= 0:
        return {bucket: 0.0 for bucket in RETENTION_BUCKETS}
    return {
        bucket: retention[bucket] / total_customers * 100
        for bucket in RETENTION_BUCKETS
    }


def group_orders_by_customer(
    ranked_orders: Iterable[RankedOrder | Mapping[str, Any]],
) -> dict[str, list[ProcessedOrder]]:
    """Group ranked orders per customer, sorted ascending by rank.

    Input order is not trusted: each customer's orders are re-sorted by
    rank and the ranks are checked to form the dense sequence 1..K.

    Raises
    ------
    UpstreamDataError
        If a record is malformed or a customer's ranks are duplicated or
        have gaps.
    """
    orders = RankedOrderContract().validate_records(ranked_orders)

    grouped: dict[str, list[ProcessedOrder]] = defaultdict(list)
    for order in orders:
        grouped[order.customer_id].append(ProcessedOrder(order.order_rank, order.order_date))

    for customer_id, history in grouped.items():
        history.sort(key=lambda processed: processed.rank)
        for expected, processed in enumerate(history, start=1):
            if processed.rank != expected:
                raise UpstreamDataError(
                    f"Customer {customer_id} has non-contiguous order ranks "
                    f"{[p.rank for p in history]}; expected 1..{len(history)}",
                    customer_id=customer_id,
                )
    return dict(grouped)


def build_cohort_memberships(
    customer_orders: Mapping[str, list[ProcessedOrder]], n: int
) -> tuple[dict[str, CohortMembership], dict[str, NthOrderEvent]]:
    """Split customers into base-cohort members and nth-order reachers.

    Parameters
    ----------
    customer_orders:
        Output of :func:`group_orders_by_customer`.
    n:
        Target order index (>= 2).

    Returns
    -------
    tuple[dict[str, CohortMembership], dict[str, NthOrderEvent]]
        Memberships for customers with at least ``n - 1`` orders, and the
        (n-1)th to nth transition for those with at least ``n`` orders.
    """
    n = validate_order_index(n)

    memberships: dict[str, CohortMembership] = {}
    nth_orders: dict[str, NthOrderEvent] = {}
    for customer_id, history in customer_orders.items():
        if len(history) < n - 1:
            continue
        previous_order_date = history[n - 2].date
        memberships[customer_id] = CohortMembership(
            cohort_month=cohort_month_of(history[0].date),
            previous_order_date=previous_order_date,
        )
        if len(history) >= n:
            nth_orders[customer_id] = NthOrderEvent(
                previous_order_date=previous_order_date,
                nth_order_date=history[n - 1].date,
            )
    return memberships, nth_orders


def calculate_nth_order_cohort(
    ranked_orders: Iterable[RankedOrder | Mapping[str, Any]], n: int
) -> list[CohortData]:
    """Compute the nth-order retention table per first-purchase cohort.

    Parameters
    ----------
    ranked_orders:
        Ranked orders for every customer in scope, as :class:`RankedOrder`
        instances or raw mappings with ``customer_id``, ``ordered_at`` and
        ``order_rank``. Order of the records does not matter.
    n:
        Target order index. ``n=2`` measures time from first to second
        order, ``n=3`` from second to third, and so on.

    Returns
    -------
    list[CohortData]
        One entry per cohort month present in the base cohort, sorted
        ascending by ``cohort_month``. Empty input yields an empty list.

    Raises
    ------
    InvalidArgumentError
        If ``n`` is not an integer >= 2. Raised before any input is read.
    UpstreamDataError
        If the input violates the ranked-order contract, including an nth
        order dated in an earlier month than the (n-1)th order. The whole
        computation fails; no partial table is returned.

    Examples
    --------
    >>> from datetime import date
    >>> orders = [
    ...     RankedOrder("B", date(2025, 3, 1), 2),
    ...     RankedOrder("B", date(2025, 1, 10), 1),
    ... ]
    >>> cohort = calculate_nth_order_cohort(orders, 2)[0]
    >>> cohort.retention["m2"], cohort.retention_percentage["m2"]
    (1, 100.0)
    """
    n = validate_order_index(n)

    customer_orders = group_orders_by_customer(ranked_orders)
    memberships, nth_orders = build_cohort_memberships(customer_orders, n)

    cohort_groups: dict[str, list[str]] = defaultdict(list)
    for customer_id, membership in memberships.items():
        cohort_groups[membership.cohort_month].append(customer_id)

    cohorts: list[CohortData] = []
    for cohort_month in sorted(cohort_groups):
        customer_ids = cohort_groups[cohort_month]
        retention = empty_retention()
        for customer_id in customer_ids:
            event = nth_orders.get(customer_id)
            if event is None:
                continue
            month_diff = event.month_diff
            if month_diff < 0:
                raise UpstreamDataError(
                    f"Customer {customer_id}: order {n} on {event.nth_order_date} "
                    f"precedes order {n - 1} on {event.previous_order_date}",
                    customer_id=customer_id,
                )
            retention[bucket_for_month_diff(month_diff)] += 1

        total_customers = len(customer_ids)
        cohorts.append(
            CohortData(
                cohort_month=cohort_month,
                total_customers=total_customers,
                retention=retention,
                retention_percentage=retention_percentages(retention, total_customers),
            )
        )

    return cohorts
