"""Ranked order loading tool for MCP server."""

import os
from collections import Counter
from pathlib import Path
from typing import Literal

import structlog
from fastmcp import Context
from fastmcp.exceptions import ToolError
from opentelemetry import trace
from pybreaker import CircuitBreakerError
from pydantic import BaseModel, Field
from retention_audit.foundation.errors import UpstreamDataError
from retention_audit.foundation.order_sources import (
    DuckDBOrderSource,
    JsonOrderEventSource,
    fetch_ranked_orders,
    load_json_payload,
)
from retention_audit.foundation.ranked_orders import (
    RankedOrder,
    RankedOrderContract,
    RankingScope,
)

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.observability import track_tool_call
from analytics.services.mcp_server.resilience import get_circuit_breaker
from analytics.services.mcp_server.state import get_shared_state

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

# Allowed base directory for order data files.
# Defaults to the current working directory; override with RETENTION_DATA_DIR.
ALLOWED_BASE_DIR = Path(os.environ.get("RETENTION_DATA_DIR", os.getcwd())).resolve()

ranked_order_source_breaker = get_circuit_breaker(
    "ranked_order_source",
    fail_max=5,
    timeout_duration=60,
    exclude=[UpstreamDataError],
)


class LoadRankedOrdersRequest(BaseModel):
    """Request to load ranked orders into shared state."""

    path: str = Field(
        description="Path to a JSON file or DuckDB database (relative to the data directory)"
    )
    source_type: Literal["events_json", "ranked_json", "duckdb"] = Field(
        default="events_json",
        description="events_json: raw order events ranked in memory; "
        "ranked_json: pre-ranked orders; duckdb: database with orders/customers tables",
    )
    year: int | None = Field(
        default=None,
        ge=1,
        le=9999,
        description="Only customers whose first order is in this year",
    )
    product: str | None = Field(
        default=None,
        description='Only customers whose first order is in this product group ("ALL" = no filter)',
    )


class LoadRankedOrdersResponse(BaseModel):
    """Summary of the loaded ranked orders."""

    ranked_order_count: int
    customer_count: int
    source_type: str
    path: str
    date_range: tuple[str, str] | None = None
    order_count_distribution: dict[int, int] = Field(
        default_factory=dict,
        description="Number of customers by how many orders they placed",
    )


def _resolve_path(path: str) -> Path:
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = ALLOWED_BASE_DIR / candidate
    resolved = candidate.resolve()
    try:
        resolved.relative_to(ALLOWED_BASE_DIR)
    except ValueError as e:
        raise ToolError(
            f"Path {resolved} is outside allowed directory {ALLOWED_BASE_DIR}. "
            f"Only files within the allowed directory can be loaded."
        ) from e
    if not resolved.exists():
        raise ToolError(f"Order data file not found: {resolved}")
    return resolved


def _load(request: LoadRankedOrdersRequest, path: Path) -> list[RankedOrder]:
    scope = RankingScope(year=request.year, product=request.product)

    if request.source_type == "ranked_json":
        if scope.year is not None or scope.product_filter is not None:
            raise ToolError("year/product filters require events_json or duckdb sources")
        payload = load_json_payload(path)
        if not isinstance(payload, list):
            raise UpstreamDataError("Expected a list of ranked orders in the input file")
        orders = RankedOrderContract().validate_records(payload)
        _replace_source(None)
        return orders

    if request.source_type == "duckdb":
        source = DuckDBOrderSource.from_path(path)
    else:
        source = JsonOrderEventSource.from_path(path)

    try:
        orders = ranked_order_source_breaker.call(fetch_ranked_orders, source, scope)
    except Exception:
        if isinstance(source, DuckDBOrderSource):
            source.close()
        raise

    _replace_source(source)
    return orders


def _replace_source(source) -> None:
    shared_state = get_shared_state()
    previous = shared_state.pop("order_source")
    if isinstance(previous, DuckDBOrderSource):
        previous.close()
    if source is not None:
        shared_state.set("order_source", source)


async def _load_ranked_orders_impl(
    request: LoadRankedOrdersRequest, ctx: Context
) -> LoadRankedOrdersResponse:
    """Implementation of ranked order loading."""
    path = _resolve_path(request.path)
    await ctx.info(f"Loading ranked orders from {path.name} ({request.source_type})")

    try:
        with tracer.start_as_current_span("load_ranked_orders") as span:
            span.set_attribute("retention.source_type", request.source_type)
            orders = _load(request, path)
            span.set_attribute("retention.ranked_order_count", len(orders))
    except UpstreamDataError as e:
        logger.error("ranked_orders_invalid", path=str(path), error=str(e))
        raise ToolError(f"Invalid order data: {e}") from e
    except ValueError as e:
        logger.error("ranked_orders_unreadable", path=str(path), error=str(e))
        raise ToolError(f"Could not read {path.name}: {e}") from e
    except CircuitBreakerError as e:
        logger.error("ranked_order_source_circuit_open", path=str(path))
        raise ToolError(
            "Ranked order source is failing repeatedly; try again later"
        ) from e

    shared_state = get_shared_state()
    shared_state.set("ranked_orders", orders)

    orders_per_customer = Counter(order.customer_id for order in orders)
    distribution = dict(sorted(Counter(orders_per_customer.values()).items()))

    date_range = None
    if orders:
        dates = [order.order_date for order in orders]
        date_range = (min(dates).isoformat(), max(dates).isoformat())

    metadata = {
        "ranked_order_count": len(orders),
        "customer_count": len(orders_per_customer),
        "source_type": request.source_type,
        "path": str(path),
        "date_range": date_range,
    }
    shared_state.set("ranked_orders_metadata", metadata)

    logger.info(
        "ranked_orders_loaded",
        ranked_order_count=len(orders),
        customer_count=len(orders_per_customer),
        source_type=request.source_type,
    )
    await ctx.info(
        f"Loaded {len(orders)} ranked orders for {len(orders_per_customer)} customers"
    )

    return LoadRankedOrdersResponse(
        **metadata, order_count_distribution=distribution
    )


@mcp.tool()
async def load_ranked_orders(
    request: LoadRankedOrdersRequest, ctx: Context
) -> LoadRankedOrdersResponse:
    """Load ranked customer orders for cohort retention analysis.

    Reads raw order events (ranked in memory), pre-ranked orders, or a DuckDB
    database, optionally restricted to customers whose first order falls in a
    given year or product group. Required before calculate_nth_order_retention,
    get_cohort_drilldown and get_cohort_opportunity.

    Args:
        request: Source location, type and scope filters

    Returns:
        Summary of the loaded orders
    """
    with track_tool_call("load_ranked_orders"):
        return await _load_ranked_orders_impl(request, ctx)
