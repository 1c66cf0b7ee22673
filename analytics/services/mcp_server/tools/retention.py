"""Nth-Order Retention MCP Tool"""

from typing import Any

import structlog
from fastmcp import Context
from fastmcp.exceptions import ToolError
from opentelemetry import trace
from pydantic import BaseModel, Field
from retention_audit.analyses.cohort_totals import (
    cohort_weight_percentages,
    summarize_cohorts,
)
from retention_audit.foundation.cohorts import (
    RETENTION_BUCKETS,
    calculate_nth_order_cohort,
)
from retention_audit.foundation.errors import InvalidArgumentError, UpstreamDataError

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.observability import track_tool_call
from analytics.services.mcp_server.state import get_shared_state

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class NthOrderRetentionRequest(BaseModel):
    """Request to compute an nth-order cohort retention table."""

    n: int = Field(
        default=2,
        description="Target order index (>= 2). 2 = first to second order, "
        "3 = second to third order, and so on.",
    )
    include_grand_total: bool = Field(
        default=True, description="Include the grand-total row"
    )
    include_weights: bool = Field(
        default=False,
        description="Include per-cell weight percentages (cell / all nth orders)",
    )


class NthOrderRetentionResponse(BaseModel):
    """Nth-order cohort retention table."""

    n: int
    cohort_count: int
    ranked_order_count: int
    buckets: list[str]
    cohorts: list[dict[str, Any]]
    grand_total: dict[str, Any] | None = None
    weight_percentage: dict[str, dict[str, float]] | None = None


async def _calculate_nth_order_retention_impl(
    request: NthOrderRetentionRequest, ctx: Context
) -> NthOrderRetentionResponse:
    """Implementation of the nth-order retention calculation."""
    ranked_orders = get_shared_state().get("ranked_orders")
    if ranked_orders is None:
        raise ToolError("Ranked orders not found. Run load_ranked_orders first.")

    await ctx.info(f"Calculating n={request.n} retention for {len(ranked_orders)} orders")

    with tracer.start_as_current_span("nth_order_retention") as span:
        span.set_attribute("retention.n", request.n)
        span.set_attribute("retention.ranked_order_count", len(ranked_orders))
        try:
            cohorts = calculate_nth_order_cohort(ranked_orders, request.n)
        except InvalidArgumentError as e:
            logger.warning("nth_order_retention_invalid_n", n=request.n, error=str(e))
            raise ToolError(str(e)) from e
        except UpstreamDataError as e:
            logger.error(
                "nth_order_retention_invalid_data",
                error=str(e),
                customer_id=e.customer_id,
            )
            raise ToolError(f"Invalid order data: {e}") from e
        span.set_attribute("retention.cohort_count", len(cohorts))

    grand_total = None
    if request.include_grand_total:
        grand_total = summarize_cohorts(cohorts).as_dict()

    weights = None
    if request.include_weights:
        weights = cohort_weight_percentages(cohorts)

    logger.info(
        "nth_order_retention_calculated",
        n=request.n,
        cohort_count=len(cohorts),
    )

    return NthOrderRetentionResponse(
        n=request.n,
        cohort_count=len(cohorts),
        ranked_order_count=len(ranked_orders),
        buckets=list(RETENTION_BUCKETS),
        cohorts=[cohort.as_dict() for cohort in cohorts],
        grand_total=grand_total,
        weight_percentage=weights,
    )


@mcp.tool()
async def calculate_nth_order_retention(
    request: NthOrderRetentionRequest, ctx: Context
) -> NthOrderRetentionResponse:
    """
    Compute nth-order cohort retention from the loaded ranked orders.

    Customers are grouped by the month of their first order. For each cohort
    the table counts customers with at least n-1 orders and buckets those
    who reached order n by the calendar-month gap between order n-1 and
    order n (m0..m11, m12_plus). Percentages are relative to the cohort size.

    Args:
        request: Target order index and optional derived views

    Returns:
        Cohort rows sorted by cohort month, plus optional grand total
    """
    with track_tool_call("calculate_nth_order_retention"):
        return await _calculate_nth_order_retention_impl(request, ctx)
