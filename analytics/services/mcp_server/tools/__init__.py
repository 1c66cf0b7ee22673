"""MCP Tools for Nth-Order Retention Analytics.

This module exports all MCP tools for data loading, retention analysis
and observability.
"""

from .data_loader import load_ranked_orders
from .drilldown import get_cohort_drilldown, get_cohort_opportunity
from .health_check import health_check
from .retention import calculate_nth_order_retention

__all__ = [
    "calculate_nth_order_retention",
    "get_cohort_drilldown",
    "get_cohort_opportunity",
    "health_check",
    "load_ranked_orders",
]
