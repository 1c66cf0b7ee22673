"""Health Check MCP Tool

Reports the state of the MCP server and its dependencies:
1. MCP server status and uptime
2. Shared state availability
3. Loaded ranked order data
4. Circuit breaker states
"""

import time
from datetime import datetime
from typing import Any

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from analytics.services.mcp_server.instance import VERSION, mcp
from analytics.services.mcp_server.observability import track_tool_call
from analytics.services.mcp_server.resilience import get_circuit_breaker_status
from analytics.services.mcp_server.state import get_shared_state

logger = structlog.get_logger(__name__)


class HealthCheckResponse(BaseModel):
    """Health check response with system status."""

    status: str = Field(
        description="Overall health status: 'healthy', 'degraded', or 'unhealthy'"
    )
    version: str
    timestamp: str = Field(description="ISO timestamp of health check")
    checks: dict[str, str] = Field(description="Individual component health checks")
    uptime_seconds: float
    data_status: dict[str, bool] = Field(description="Ranked order data availability")
    data_summary: dict[str, Any] | None = None
    circuit_breakers: dict[str, dict[str, Any]] = Field(default_factory=dict)


_SERVER_START_TIME = time.time()


async def _health_check_impl(ctx: Context) -> HealthCheckResponse:
    logger.info("health_check_starting")

    checks: dict[str, str] = {"mcp_server": "healthy"}
    status = "healthy"

    shared_state = get_shared_state()
    data_status = {
        "ranked_orders": shared_state.has("ranked_orders"),
        "order_source": shared_state.has("order_source"),
    }
    if data_status["ranked_orders"]:
        checks["ranked_orders"] = "available"
    else:
        checks["ranked_orders"] = "no data loaded (use load_ranked_orders)"

    breakers = get_circuit_breaker_status()
    open_breakers = [name for name, info in breakers.items() if info["state"] == "open"]
    if open_breakers:
        status = "degraded"
        checks["circuit_breakers"] = f"open: {', '.join(sorted(open_breakers))}"
    else:
        checks["circuit_breakers"] = "healthy"

    uptime_seconds = time.time() - _SERVER_START_TIME

    logger.info("health_check_complete", status=status, checks=checks)

    return HealthCheckResponse(
        status=status,
        version=VERSION,
        timestamp=datetime.now().isoformat(),
        checks=checks,
        uptime_seconds=uptime_seconds,
        data_status=data_status,
        data_summary=shared_state.get("ranked_orders_metadata"),
        circuit_breakers=breakers,
    )


@mcp.tool()
async def health_check(ctx: Context) -> HealthCheckResponse:
    """
    Check health of the MCP server and its dependencies.

    Returns:
        HealthCheckResponse with component checks, loaded-data status and
        circuit breaker states
    """
    with track_tool_call("health_check"):
        return await _health_check_impl(ctx)
