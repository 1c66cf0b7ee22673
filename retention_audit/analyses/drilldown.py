"""Drilldown from a cohort retention cell to the customers behind it.

Quick Start
-----------
>>> from datetime import date
>>> from retention_audit.foundation.ranked_orders import RankedOrder
>>> from retention_audit.analyses.drilldown import get_drilldown_list
>>> orders = [
...     RankedOrder("A", date(2025, 1, 5), 1),
...     RankedOrder("A", date(2025, 1, 20), 2),
... ]
>>> get_drilldown_list(orders, "2025-01", n=2, month_offset=0)
['A']
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from retention_audit.foundation.cohorts import (
    MAX_MONTH_BUCKET,
    bucket_for_month_diff,
    build_cohort_memberships,
    group_orders_by_customer,
    month_offset_for_bucket,
    validate_order_index,
)
from retention_audit.foundation.errors import InvalidArgumentError
from retention_audit.foundation.ranked_orders import RankedOrder

_COHORT_MONTH = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

#: Offset used to address the open-ended ``m12_plus`` bucket.
OPEN_ENDED_OFFSET = MAX_MONTH_BUCKET + 1


def get_drilldown_list(
    ranked_orders: Iterable[RankedOrder | Mapping[str, Any]],
    cohort_month: str,
    n: int,
    month_offset: int,
) -> list[str]:
    """Return the customers counted in one cell of the retention table.

    Parameters
    ----------
    ranked_orders:
        The same ranked orders the table was computed from.
    cohort_month:
        Cohort row, as ``YYYY-MM``.
    n:
        Target order index used for the table.
    month_offset:
        Column of the table: 0..11 for ``m0``..``m11``, 12 for ``m12_plus``
        (which matches every gap of 12 months or more).

    Returns
    -------
    list[str]
        Sorted customer ids whose (n-1)th to nth order gap falls in the cell.

    Raises
    ------
    InvalidArgumentError
        If ``n``, ``cohort_month`` or ``month_offset`` is invalid.
    """
    n = validate_order_index(n)
    _validate_cohort_month(cohort_month)
    if (
        isinstance(month_offset, bool)
        or not isinstance(month_offset, int)
        or not 0 <= month_offset <= OPEN_ENDED_OFFSET
    ):
        raise InvalidArgumentError(
            f"month_offset must be an integer between 0 and {OPEN_ENDED_OFFSET}, "
            f"got {month_offset!r}"
        )

    memberships, nth_orders = build_cohort_memberships(
        group_orders_by_customer(ranked_orders), n
    )

    matches = []
    for customer_id, event in nth_orders.items():
        if memberships[customer_id].cohort_month != cohort_month:
            continue
        month_diff = event.month_diff
        if month_diff < 0:
            continue
        if month_offset_for_bucket(bucket_for_month_diff(month_diff)) == month_offset:
            matches.append(customer_id)
    return sorted(matches)


def get_opportunity_list(
    ranked_orders: Iterable[RankedOrder | Mapping[str, Any]],
    cohort_month: str,
    n: int,
) -> list[str]:
    """Return the cohort customers who placed order n-1 but never order n.

    These customers make up the difference between ``total_customers`` and
    the sum of the retention buckets for the cohort row, and are the
    audience for win-back campaigns.

    Parameters
    ----------
    ranked_orders:
        The same ranked orders the table was computed from.
    cohort_month:
        Cohort row, as ``YYYY-MM``.
    n:
        Target order index used for the table.

    Returns
    -------
    list[str]
        Sorted customer ids with exactly ``n - 1`` orders in the cohort.

    Raises
    ------
    InvalidArgumentError
        If ``n`` or ``cohort_month`` is invalid.
    """
    n = validate_order_index(n)
    _validate_cohort_month(cohort_month)

    memberships, nth_orders = build_cohort_memberships(
        group_orders_by_customer(ranked_orders), n
    )
    return sorted(
        customer_id
        for customer_id, membership in memberships.items()
        if membership.cohort_month == cohort_month and customer_id not in nth_orders
    )


def _validate_cohort_month(cohort_month: Any) -> None:
    if not isinstance(cohort_month, str) or not _COHORT_MONTH.match(cohort_month):
        raise InvalidArgumentError(
            f"cohort_month must be formatted YYYY-MM, got {cohort_month!r}"
        )
