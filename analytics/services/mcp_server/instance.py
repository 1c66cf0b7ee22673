"""
MCP Server Instance

This module provides the global FastMCP instance that all tools register with.
It must be imported before tools are loaded to avoid circular imports.

Architecture:
- instance.py: Creates the mcp object and its lifespan (imported by main.py and all tool modules)
- main.py: Configures logging, registers tools and runs the server
- tools/*.py: Import mcp from this module and register tools with @mcp.tool()
"""

import os
from contextlib import asynccontextmanager

import structlog
from fastmcp import FastMCP

VERSION = "1.0.0"

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def app_lifespan(app):
    """Initialize and cleanup MCP server resources."""
    logger.info("mcp_server_starting", version=VERSION)

    from analytics.services.mcp_server.observability import configure_observability

    otlp_endpoint = os.getenv("OTLP_ENDPOINT")
    environment = os.getenv("ENVIRONMENT", "development")
    sampling_rate = float(os.getenv("SAMPLING_RATE", "1.0"))

    configure_observability(
        service_name="mcp-nth-order-retention",
        environment=environment,
        otlp_endpoint=otlp_endpoint,
        sampling_rate=sampling_rate,
    )

    logger.info(
        "observability_initialized",
        otlp_enabled=otlp_endpoint is not None,
        environment=environment,
        sampling_rate=sampling_rate,
    )

    yield

    from analytics.services.mcp_server.state import get_shared_state

    source = get_shared_state().get("order_source")
    close = getattr(source, "close", None)
    if close is not None:
        close()
    logger.info("mcp_server_stopping")


mcp = FastMCP(name="Nth-Order Retention Analytics", version=VERSION, lifespan=app_lifespan)
