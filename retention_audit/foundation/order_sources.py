"""Ranked-order sources backed by files and databases.

A source is any object with ``fetch_ranked_rows(scope)`` and
``fetch_customer_details(customer_ids)``. Sources are constructed by the
caller and passed in explicitly; nothing in this module holds a global
client. :func:`fetch_ranked_orders` retries transient failures and
validates the raw rows into :class:`RankedOrder` records.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from retention_audit.foundation.errors import UpstreamDataError
from retention_audit.foundation.ranked_orders import (
    RankedOrder,
    RankedOrderContract,
    RankingScope,
    rank_order_events,
)

logger = logging.getLogger(__name__)

MAX_INPUT_BYTES = 25 * 1024 * 1024  # 25 MiB cap to avoid accidental OOM

#: Exceptions treated as transient and retried by :func:`fetch_ranked_orders`.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (ConnectionError, TimeoutError)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass(frozen=True)
class CustomerDetail:
    """Contact and value details for a drilldown customer."""

    customer_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    total_spent: float = 0.0
    initial_product_group: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "total_spent": self.total_spent,
            "initial_product_group": self.initial_product_group,
        }


class RankedOrderSource(Protocol):
    """Interface every ranked-order source implements."""

    def fetch_ranked_rows(
        self, scope: RankingScope
    ) -> Iterable[Mapping[str, Any]]: ...

    def fetch_customer_details(
        self, customer_ids: Sequence[str]
    ) -> Iterable[Mapping[str, Any]]: ...


def load_json_payload(path: Path) -> Any:
    """Load a JSON file, refusing files larger than :data:`MAX_INPUT_BYTES`."""
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )
    with resolved.open("r", encoding="utf-8") as fh:
        return json.load(fh)


class JsonOrderEventSource:
    """Raw order events stored as JSON, ranked in memory.

    The file holds either a list of order events, or an object with an
    ``orders`` list and an optional ``customers`` list::

        {
          "orders": [{"order_id": "1001", "customer_id": "C1",
                      "ordered_at": "2025-01-05T10:00:00Z",
                      "product_group": "sleep"}],
          "customers": [{"customer_id": "C1", "email": "c1@example.com"}]
        }
    """

    def __init__(
        self,
        orders: Sequence[Mapping[str, Any]],
        customers: Sequence[Mapping[str, Any]] = (),
    ) -> None:
        self.orders = list(orders)
        self.customers = list(customers)

    @classmethod
    def from_path(cls, path: Path) -> "JsonOrderEventSource":
        payload = load_json_payload(path)
        if isinstance(payload, list):
            return cls(payload)
        if isinstance(payload, dict) and isinstance(payload.get("orders"), list):
            return cls(payload["orders"], payload.get("customers") or [])
        raise UpstreamDataError(
            f"Expected a list of order events or an object with an 'orders' list in {path}"
        )

    def fetch_ranked_rows(self, scope: RankingScope) -> list[dict[str, Any]]:
        ranked = rank_order_events(self.orders, scope)
        return RankedOrderContract().to_serialisable(ranked)

    def fetch_customer_details(self, customer_ids: Sequence[str]) -> list[dict[str, Any]]:
        wanted = set(customer_ids)
        return [
            dict(customer)
            for customer in self.customers
            if str(customer.get("customer_id")) in wanted
        ]


class DuckDBOrderSource:
    """Rank orders with a SQL window query against a DuckDB database.

    Expected tables::

        orders(order_id, customer_id, ordered_at TIMESTAMP, product_group)
        customers(customer_id, email, first_name, last_name,
                  total_spent, initial_product_group)

    Parameters
    ----------
    connection:
        An open ``duckdb.DuckDBPyConnection``. The source does not own it
        unless created through :meth:`from_path`.
    """

    RANKED_ORDERS_SQL = """
        WITH ranked AS (
            SELECT
                customer_id,
                ordered_at,
                product_group,
                ROW_NUMBER() OVER (
                    PARTITION BY customer_id ORDER BY ordered_at, order_id
                ) AS order_rank
            FROM {orders_table}
        ),
        first_orders AS (
            SELECT
                customer_id,
                ordered_at AS first_ordered_at,
                product_group AS first_product
            FROM ranked
            WHERE order_rank = 1
        )
        SELECT r.customer_id, r.ordered_at, r.order_rank
        FROM ranked r
        JOIN first_orders f ON f.customer_id = r.customer_id
        {where_clause}
        ORDER BY r.customer_id, r.order_rank
    """

    CUSTOMER_DETAILS_SQL = """
        SELECT customer_id, email, first_name, last_name,
               total_spent, initial_product_group
        FROM {customers_table}
        WHERE customer_id IN ({placeholders})
        ORDER BY customer_id
    """

    def __init__(
        self,
        connection: Any,
        orders_table: str = "orders",
        customers_table: str = "customers",
    ) -> None:
        for name in (orders_table, customers_table):
            if not _IDENTIFIER.match(name):
                raise ValueError(f"Invalid table name: {name!r}")
        self.connection = connection
        self.orders_table = orders_table
        self.customers_table = customers_table
        self._owns_connection = False

    @classmethod
    def from_path(cls, path: Path, **kwargs: Any) -> "DuckDBOrderSource":
        import duckdb

        source = cls(duckdb.connect(str(path), read_only=True), **kwargs)
        source._owns_connection = True
        return source

    def close(self) -> None:
        if self._owns_connection:
            self.connection.close()

    def _query(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        cursor = self.connection.execute(sql, params)
        columns = [column[0] for column in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def fetch_ranked_rows(self, scope: RankingScope) -> list[dict[str, Any]]:
        conditions: list[str] = []
        params: list[Any] = []
        if scope.year is not None:
            conditions.append("year(f.first_ordered_at) = ?")
            params.append(scope.year)
        if scope.product_filter is not None:
            conditions.append("f.first_product = ?")
            params.append(scope.product_filter)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        sql = self.RANKED_ORDERS_SQL.format(
            orders_table=self.orders_table, where_clause=where_clause
        )
        return self._query(sql, params)

    def fetch_customer_details(self, customer_ids: Sequence[str]) -> list[dict[str, Any]]:
        if not customer_ids:
            return []
        sql = self.CUSTOMER_DETAILS_SQL.format(
            customers_table=self.customers_table,
            placeholders=", ".join("?" for _ in customer_ids),
        )
        return self._query(sql, list(customer_ids))


def fetch_ranked_orders(
    source: RankedOrderSource,
    scope: RankingScope | None = None,
    *,
    max_attempts: int = 3,
    wait: wait_base | None = None,
) -> list[RankedOrder]:
    """Fetch ranked orders from ``source`` and validate them.

    Transient failures (:data:`TRANSIENT_ERRORS`) are retried with
    exponential backoff; any other exception propagates immediately. An
    empty result is valid.

    Raises
    ------
    UpstreamDataError
        If the source returns rows that violate the ranked-order contract.
    """
    scope = scope or RankingScope()
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait or wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    rows = list(retrying(source.fetch_ranked_rows, scope))
    orders = RankedOrderContract().validate_records(rows)
    logger.info(
        f"Fetched {len(orders)} ranked orders "
        f"(year={scope.year}, product={scope.product_filter})"
    )
    return orders


def fetch_customer_details(
    source: RankedOrderSource, customer_ids: Sequence[str]
) -> list[CustomerDetail]:
    """Fetch contact details for the given customers.

    Customers unknown to the source are omitted from the result.
    """
    if not customer_ids:
        return []

    details: list[CustomerDetail] = []
    for idx, row in enumerate(source.fetch_customer_details(list(customer_ids))):
        if row.get("customer_id") in (None, ""):
            raise UpstreamDataError(
                f"Customer detail row {idx} missing customer_id", record_index=idx
            )
        try:
            total_spent = float(row.get("total_spent") or 0)
        except (TypeError, ValueError) as e:
            raise UpstreamDataError(
                f"Customer detail row {idx}: invalid total_spent {row.get('total_spent')!r}",
                record_index=idx,
                customer_id=str(row["customer_id"]),
            ) from e
        details.append(
            CustomerDetail(
                customer_id=str(row["customer_id"]),
                email=row.get("email"),
                first_name=row.get("first_name"),
                last_name=row.get("last_name"),
                total_spent=total_spent,
                initial_product_group=row.get("initial_product_group"),
            )
        )
    return details
