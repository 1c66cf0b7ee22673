"""Foundational building blocks for nth-order retention analysis.

This package exposes the ranked-order contract, the sources that supply
ranked orders, and the cohort retention computation itself.
"""

from .cohorts import (
    RETENTION_BUCKETS,
    CohortData,
    calculate_nth_order_cohort,
    parse_order_index,
    validate_order_index,
)
from .errors import InvalidArgumentError, RetentionAuditError, UpstreamDataError
from .order_sources import (
    CustomerDetail,
    DuckDBOrderSource,
    JsonOrderEventSource,
    fetch_customer_details,
    fetch_ranked_orders,
)
from .ranked_orders import (
    RankedOrder,
    RankedOrderContract,
    RankingScope,
    rank_order_events,
)

__all__ = [
    "RETENTION_BUCKETS",
    "CohortData",
    "CustomerDetail",
    "DuckDBOrderSource",
    "InvalidArgumentError",
    "JsonOrderEventSource",
    "RankedOrder",
    "RankedOrderContract",
    "RankingScope",
    "RetentionAuditError",
    "UpstreamDataError",
    "calculate_nth_order_cohort",
    "fetch_customer_details",
    "fetch_ranked_orders",
    "parse_order_index",
    "rank_order_events",
    "validate_order_index",
]
