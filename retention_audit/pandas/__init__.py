"""Pandas DataFrame adapters for retention audit components."""

from .cohorts import (
    calculate_nth_order_cohort_df,
    cohorts_to_dataframe,
    dataframe_to_ranked_orders,
)

__all__ = [
    "calculate_nth_order_cohort_df",
    "cohorts_to_dataframe",
    "dataframe_to_ranked_orders",
]
