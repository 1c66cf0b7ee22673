"""Ranked order contract definitions and validation utilities.

Every cohort-retention analysis consumes the same minimal record: which
customer placed an order, when it was placed, and where that order sits in
the customer's purchase history (1st, 2nd, 3rd, ...). The contract below
converts loosely-typed upstream rows (database results, JSON payloads) into
strict :class:`RankedOrder` records and fails loudly on anything that would
otherwise leak ``None`` or unparseable dates into the aggregation.

Quick Start
-----------
>>> from retention_audit.foundation.ranked_orders import RankedOrderContract
>>> contract = RankedOrderContract()
>>> orders = contract.validate_records([
...     {"customer_id": "C1", "ordered_at": "2025-01-05T10:00:00Z", "order_rank": 1},
... ])
>>> orders[0].order_date
datetime.date(2025, 1, 5)
"""

from __future__ import annotations

import operator
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Iterable, Mapping

from retention_audit.foundation.errors import UpstreamDataError

#: Sentinel product filter meaning "do not filter by product".
ALL_PRODUCTS = "ALL"


def parse_order_timestamp(value: Any) -> datetime | date:
    """Parse an order timestamp into a ``datetime`` or ``date``.

    Strings must be ISO 8601. A trailing ``Z`` is accepted as UTC. The
    value is kept exactly as encoded; no timezone conversion is applied.

    Raises
    ------
    ValueError
        If the string cannot be parsed.
    TypeError
        If the value is neither a string nor a date/datetime.
    """
    if isinstance(value, (datetime, date)):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    raise TypeError(
        f"ordered_at must be a datetime, date or ISO 8601 string, "
        f"got {type(value).__name__}"
    )


def calendar_date(value: datetime | date) -> date:
    """Return the calendar date a timestamp encodes (no timezone shift)."""
    if isinstance(value, datetime):
        return value.date()
    return value


def _coerce_rank(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("order_rank must be an integer, got bool")
    if isinstance(value, str):
        return int(value.strip())
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"order_rank must be a whole number, got {value}")
        return int(value)
    return operator.index(value)


@dataclass(frozen=True)
class RankedOrder:
    """A single order tagged with its chronological rank for the customer.

    Attributes
    ----------
    customer_id:
        Identifier of the customer who placed the order.
    ordered_at:
        When the order was placed, as a datetime, date or ISO 8601 string
        (strings are parsed on construction). Only the calendar date is used
        by the cohort computation.
    order_rank:
        1-based position of the order in the customer's history.
    """

    customer_id: str
    ordered_at: datetime | date
    order_rank: int

    def __post_init__(self) -> None:
        try:
            ordered_at = parse_order_timestamp(self.ordered_at)
        except (TypeError, ValueError) as e:
            raise UpstreamDataError(
                f"Customer {self.customer_id}: failed to parse ordered_at {self.ordered_at!r}",
                customer_id=self.customer_id,
            ) from e
        object.__setattr__(self, "ordered_at", ordered_at)

        if isinstance(self.order_rank, bool) or not isinstance(self.order_rank, int):
            raise UpstreamDataError(
                f"order_rank must be an integer, got {self.order_rank!r}",
                customer_id=self.customer_id,
            )
        if self.order_rank < 1:
            raise UpstreamDataError(
                f"order_rank must be >= 1, got {self.order_rank}",
                customer_id=self.customer_id,
            )

    @property
    def order_date(self) -> date:
        return calendar_date(self.ordered_at)


@dataclass(frozen=True)
class RankingScope:
    """Filters applied when ranking orders for an analysis.

    Attributes
    ----------
    year:
        Keep only customers whose first order falls in this calendar year.
    product:
        Keep only customers whose first order belongs to this product
        group. ``None`` or ``"ALL"`` disables the filter.
    """

    year: int | None = None
    product: str | None = None

    def __post_init__(self) -> None:
        if self.year is not None and not 1 <= self.year <= 9999:
            raise ValueError(f"year must be between 1 and 9999, got {self.year}")

    @property
    def product_filter(self) -> str | None:
        if not self.product or self.product == ALL_PRODUCTS:
            return None
        return self.product

    def includes(self, first_order_date: date, first_product: str | None) -> bool:
        """Return True if a customer with this first order is in scope."""
        if self.year is not None and first_order_date.year != self.year:
            return False
        product = self.product_filter
        if product is not None and first_product != product:
            return False
        return True


class RankedOrderContract:
    """Validate raw ranked-order rows and convert them to :class:`RankedOrder`."""

    #: Fields that must be populated for a row to be considered valid.
    REQUIRED_FIELDS = ("customer_id", "ordered_at", "order_rank")

    def validate_records(
        self, records: Iterable[Mapping[str, Any]]
    ) -> list[RankedOrder]:
        """Validate raw rows and return canonical ranked orders.

        Parameters
        ----------
        records:
            Iterable of mappings as produced by an upstream ranker. Records
            that are already :class:`RankedOrder` instances pass through.

        Raises
        ------
        UpstreamDataError
            If a record is missing a required field, has an unparseable
            timestamp, or carries a non-integer or non-positive rank.
        """

        canonical: list[RankedOrder] = []
        for idx, record in enumerate(records):
            if isinstance(record, RankedOrder):
                canonical.append(record)
                continue
            if not isinstance(record, Mapping):
                raise UpstreamDataError(
                    f"Record {idx} must be a mapping, got {type(record).__name__}",
                    record_index=idx,
                )

            missing = [
                name for name in self.REQUIRED_FIELDS if record.get(name) in (None, "")
            ]
            if missing:
                raise UpstreamDataError(
                    f"Record {idx} missing required fields: {missing}",
                    record_index=idx,
                    customer_id=_optional_str(record.get("customer_id")),
                )

            customer_id = str(record["customer_id"])
            try:
                ordered_at = parse_order_timestamp(record["ordered_at"])
            except (TypeError, ValueError) as e:
                raise UpstreamDataError(
                    f"Record {idx} (customer {customer_id}): "
                    f"failed to parse ordered_at {record['ordered_at']!r}",
                    record_index=idx,
                    customer_id=customer_id,
                ) from e

            try:
                order_rank = _coerce_rank(record["order_rank"])
            except (TypeError, ValueError) as e:
                raise UpstreamDataError(
                    f"Record {idx} (customer {customer_id}): "
                    f"invalid order_rank {record['order_rank']!r}",
                    record_index=idx,
                    customer_id=customer_id,
                ) from e

            try:
                canonical.append(RankedOrder(customer_id, ordered_at, order_rank))
            except UpstreamDataError as e:
                raise UpstreamDataError(
                    f"Record {idx}: {e}", record_index=idx, customer_id=customer_id
                ) from e
        return canonical

    def to_serialisable(self, orders: Iterable[RankedOrder]) -> list[dict[str, Any]]:
        """Convert ranked orders into JSON-serialisable dictionaries."""

        return [
            {
                "customer_id": order.customer_id,
                "ordered_at": order.ordered_at.isoformat(),
                "order_rank": order.order_rank,
            }
            for order in orders
        ]


def _optional_str(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


def _sort_instant(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def rank_order_events(
    events: Iterable[Mapping[str, Any]],
    scope: RankingScope | None = None,
) -> list[RankedOrder]:
    """Rank raw order events per customer in chronological order.

    This is the in-memory equivalent of a ``ROW_NUMBER() OVER (PARTITION BY
    customer_id ORDER BY ordered_at, order_id)`` query. Ties on
    ``ordered_at`` are broken by ``order_id`` and then by input position,
    so ranks are always dense and stable.

    Parameters
    ----------
    events:
        Mappings with ``customer_id`` and ``ordered_at``, and optionally
        ``order_id`` and ``product_group``.
    scope:
        Optional year/product filter applied to each customer's first order.
        Ranks are always computed over the full order history.

    Returns
    -------
    list[RankedOrder]
        Ranked orders sorted by ``customer_id`` then ``order_rank``.

    Raises
    ------
    UpstreamDataError
        If an event is missing ``customer_id``/``ordered_at`` or has an
        unparseable timestamp, or if a customer mixes timezone-aware and
        naive timestamps.
    """
    scope = scope or RankingScope()
    by_customer: dict[str, list[tuple[datetime | date, str, int, str | None]]] = (
        defaultdict(list)
    )

    for idx, event in enumerate(events):
        customer_id = _optional_str(event.get("customer_id"))
        if customer_id is None or event.get("ordered_at") in (None, ""):
            raise UpstreamDataError(
                f"Order event {idx} missing customer_id or ordered_at",
                record_index=idx,
                customer_id=customer_id,
            )
        try:
            ordered_at = parse_order_timestamp(event["ordered_at"])
        except (TypeError, ValueError) as e:
            raise UpstreamDataError(
                f"Order event {idx} (customer {customer_id}): "
                f"failed to parse ordered_at {event['ordered_at']!r}",
                record_index=idx,
                customer_id=customer_id,
            ) from e
        order_id = str(event.get("order_id") or "")
        by_customer[customer_id].append(
            (ordered_at, order_id, idx, _optional_str(event.get("product_group")))
        )

    ranked: list[RankedOrder] = []
    for customer_id in sorted(by_customer):
        history = by_customer[customer_id]
        try:
            history.sort(key=lambda item: (_sort_instant(item[0]), item[1], item[2]))
        except TypeError as e:
            raise UpstreamDataError(
                f"Customer {customer_id} mixes timezone-aware and naive timestamps",
                customer_id=customer_id,
            ) from e

        first_ordered_at, _, _, first_product = history[0]
        if not scope.includes(calendar_date(first_ordered_at), first_product):
            continue

        for rank, (ordered_at, _, _, _) in enumerate(history, start=1):
            ranked.append(RankedOrder(customer_id, ordered_at, rank))

    return ranked
