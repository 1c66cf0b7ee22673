"""Cohort Drilldown MCP Tool"""

from typing import Any

import structlog
from fastmcp import Context
from fastmcp.exceptions import ToolError
from pydantic import BaseModel, Field
from retention_audit.analyses.drilldown import (
    OPEN_ENDED_OFFSET,
    get_drilldown_list,
    get_opportunity_list,
)
from retention_audit.foundation.errors import InvalidArgumentError, UpstreamDataError
from retention_audit.foundation.order_sources import fetch_customer_details

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.observability import track_tool_call
from analytics.services.mcp_server.state import get_shared_state

logger = structlog.get_logger(__name__)


class CohortDrilldownRequest(BaseModel):
    """Request for the customers behind one retention cell."""

    cohort_month: str = Field(description="Cohort row, formatted YYYY-MM")
    n: int = Field(default=2, description="Target order index (>= 2)")
    month_offset: int = Field(
        default=0,
        description=f"Cell column: 0..11, or {OPEN_ENDED_OFFSET} for m12_plus",
    )
    include_details: bool = Field(
        default=False,
        description="Fetch contact details from the loaded order source",
    )
    max_details: int = Field(
        default=100, ge=1, le=1000, description="Maximum customers to fetch details for"
    )


class CohortOpportunityRequest(BaseModel):
    """Request for cohort customers who stopped before the nth order."""

    cohort_month: str = Field(description="Cohort row, formatted YYYY-MM")
    n: int = Field(default=2, description="Target order index (>= 2)")
    include_details: bool = Field(
        default=False,
        description="Fetch contact details from the loaded order source",
    )
    max_details: int = Field(
        default=100, ge=1, le=1000, description="Maximum customers to fetch details for"
    )


class CohortDrilldownResponse(BaseModel):
    """Customers in one retention cell."""

    cohort_month: str
    n: int
    month_offset: int
    customer_count: int
    customer_ids: list[str]
    customers: list[dict[str, Any]] | None = None


class CohortOpportunityResponse(BaseModel):
    """Cohort customers without an nth order."""

    cohort_month: str
    n: int
    customer_count: int
    customer_ids: list[str]
    customers: list[dict[str, Any]] | None = None


def _loaded_orders() -> list:
    ranked_orders = get_shared_state().get("ranked_orders")
    if ranked_orders is None:
        raise ToolError("Ranked orders not found. Run load_ranked_orders first.")
    return ranked_orders


def _customer_details(customer_ids: list[str]) -> list[dict[str, Any]]:
    source = get_shared_state().get("order_source")
    if source is None:
        raise ToolError(
            "Customer details need an events_json or duckdb source. "
            "Reload with load_ranked_orders."
        )
    try:
        details = fetch_customer_details(source, customer_ids)
    except UpstreamDataError as e:
        raise ToolError(f"Invalid customer data: {e}") from e
    return [detail.as_dict() for detail in details]


async def _get_cohort_drilldown_impl(
    request: CohortDrilldownRequest, ctx: Context
) -> CohortDrilldownResponse:
    """Implementation of the cohort drilldown."""
    ranked_orders = _loaded_orders()

    try:
        customer_ids = get_drilldown_list(
            ranked_orders, request.cohort_month, request.n, request.month_offset
        )
    except InvalidArgumentError as e:
        raise ToolError(str(e)) from e
    except UpstreamDataError as e:
        raise ToolError(f"Invalid order data: {e}") from e

    await ctx.info(
        f"Found {len(customer_ids)} customers in {request.cohort_month} "
        f"m{request.month_offset} (n={request.n})"
    )

    customers = None
    if request.include_details:
        customers = _customer_details(customer_ids[: request.max_details])

    logger.info(
        "cohort_drilldown_complete",
        cohort_month=request.cohort_month,
        n=request.n,
        month_offset=request.month_offset,
        customer_count=len(customer_ids),
    )

    return CohortDrilldownResponse(
        cohort_month=request.cohort_month,
        n=request.n,
        month_offset=request.month_offset,
        customer_count=len(customer_ids),
        customer_ids=customer_ids,
        customers=customers,
    )


@mcp.tool()
async def get_cohort_drilldown(
    request: CohortDrilldownRequest, ctx: Context
) -> CohortDrilldownResponse:
    """
    List the customers counted in one cell of the nth-order retention table.

    Use the same n as the table. month_offset 12 selects the m12_plus column.

    Args:
        request: Cohort month, n, month offset and detail options

    Returns:
        Customer ids in the cell, optionally with contact details
    """
    with track_tool_call("get_cohort_drilldown"):
        return await _get_cohort_drilldown_impl(request, ctx)


async def _get_cohort_opportunity_impl(
    request: CohortOpportunityRequest, ctx: Context
) -> CohortOpportunityResponse:
    """Implementation of the cohort opportunity list."""
    ranked_orders = _loaded_orders()

    try:
        customer_ids = get_opportunity_list(
            ranked_orders, request.cohort_month, request.n
        )
    except InvalidArgumentError as e:
        raise ToolError(str(e)) from e
    except UpstreamDataError as e:
        raise ToolError(f"Invalid order data: {e}") from e

    await ctx.info(
        f"Found {len(customer_ids)} customers in {request.cohort_month} "
        f"without order {request.n}"
    )

    customers = None
    if request.include_details:
        customers = _customer_details(customer_ids[: request.max_details])

    logger.info(
        "cohort_opportunity_complete",
        cohort_month=request.cohort_month,
        n=request.n,
        customer_count=len(customer_ids),
    )

    return CohortOpportunityResponse(
        cohort_month=request.cohort_month,
        n=request.n,
        customer_count=len(customer_ids),
        customer_ids=customer_ids,
        customers=customers,
    )


@mcp.tool()
async def get_cohort_opportunity(
    request: CohortOpportunityRequest, ctx: Context
) -> CohortOpportunityResponse:
    """
    List cohort customers who placed order n-1 but never placed order n.

    These are the customers counted in the cohort size but in no retention
    column, i.e. the win-back audience for the cohort.

    Args:
        request: Cohort month, n and detail options

    Returns:
        Customer ids, optionally with contact details
    """
    with track_tool_call("get_cohort_opportunity"):
        return await _get_cohort_opportunity_impl(request, ctx)
