"""Derived views over nth-order cohort retention tables."""

from .cohort_totals import (
    GRAND_TOTAL_LABEL,
    CohortGrandTotal,
    cohort_weight_percentages,
    summarize_cohorts,
)
from .drilldown import get_drilldown_list, get_opportunity_list

__all__ = [
    "GRAND_TOTAL_LABEL",
    "CohortGrandTotal",
    "cohort_weight_percentages",
    "get_drilldown_list",
    "get_opportunity_list",
    "summarize_cohorts",
]
