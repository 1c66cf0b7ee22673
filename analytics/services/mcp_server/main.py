"""
Nth-Order Retention Analytics MCP Server

This module configures logging, registers the retention tools and runs the
MCP server. Observability is set up by the server lifespan in instance.py.
"""

import logging
import sys

import structlog

# Configure structlog to write to stderr, not stdout (to avoid interfering with MCP JSON protocol)
logging.basicConfig(
    format="%(message)s",
    stream=sys.stderr,
    level=logging.INFO,
)

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

logger = structlog.get_logger(__name__)

from analytics.services.mcp_server.instance import mcp  # noqa: E402

# Each module registers its tools using the @mcp.tool() decorator.
# These imports MUST happen before mcp.run() is called.
import analytics.services.mcp_server.tools  # noqa: E402, F401

logger.info(
    "mcp_server_initialized",
    tools=[
        "load_ranked_orders",
        "calculate_nth_order_retention",
        "get_cohort_drilldown",
        "get_cohort_opportunity",
        "health_check",
    ],
)


def run() -> None:
    mcp.run()


if __name__ == "__main__":
    run()
