"""Pandas DataFrame adapters for nth-order cohort retention."""

from typing import List, Sequence

import pandas as pd  # type: ignore

from retention_audit.analyses.cohort_totals import GRAND_TOTAL_LABEL, summarize_cohorts
from retention_audit.foundation.cohorts import (
    RETENTION_BUCKETS,
    CohortData,
    calculate_nth_order_cohort,
)
from retention_audit.foundation.ranked_orders import RankedOrder

RANKED_ORDER_COLUMNS = ["customer_id", "ordered_at", "order_rank"]


def _cohort_columns() -> list[str]:
    return (
        ["cohort_month", "total_customers", "total_retention"]
        + list(RETENTION_BUCKETS)
        + [f"{bucket}_pct" for bucket in RETENTION_BUCKETS]
    )


def cohorts_to_dataframe(
    cohorts: Sequence[CohortData], include_grand_total: bool = False
) -> pd.DataFrame:
    """Convert a cohort table to a wide DataFrame.

    Args:
        cohorts: Output of ``calculate_nth_order_cohort``
        include_grand_total: Append a "Grand Total" row computed with
            ``summarize_cohorts``

    Returns:
        DataFrame with one row per cohort and columns: cohort_month,
        total_customers, total_retention, m0..m12_plus (counts) and
        m0_pct..m12_plus_pct (retention percentages)

    Example:
        >>> cohorts = calculate_nth_order_cohort(orders, n=2)
        >>> df = cohorts_to_dataframe(cohorts, include_grand_total=True)
        >>> df.to_csv("second_order_retention.csv", index=False)
    """
    rows = []
    for cohort in cohorts:
        row = {
            "cohort_month": cohort.cohort_month,
            "total_customers": cohort.total_customers,
            "total_retention": cohort.total_retention,
        }
        row.update(cohort.retention)
        row.update(
            {f"{bucket}_pct": pct for bucket, pct in cohort.retention_percentage.items()}
        )
        rows.append(row)

    if include_grand_total and cohorts:
        total = summarize_cohorts(cohorts)
        row = {
            "cohort_month": GRAND_TOTAL_LABEL,
            "total_customers": total.total_customers,
            "total_retention": total.total_nth_orders,
        }
        row.update(total.retention)
        row.update(
            {f"{bucket}_pct": pct for bucket, pct in total.retention_percentage.items()}
        )
        rows.append(row)

    return pd.DataFrame(rows, columns=_cohort_columns())


def dataframe_to_ranked_orders(orders_df: pd.DataFrame) -> List[RankedOrder]:
    """Convert a DataFrame of ranked orders to ``RankedOrder`` records.

    Args:
        orders_df: DataFrame with columns customer_id, ordered_at and
            order_rank. ``ordered_at`` may hold strings or datetimes.

    Returns:
        List of validated RankedOrder objects

    Raises:
        ValueError: If required columns are missing or contain nulls
    """
    missing_cols = set(RANKED_ORDER_COLUMNS) - set(orders_df.columns)
    if missing_cols:
        raise ValueError(f"DataFrame missing required columns: {missing_cols}")

    if orders_df.empty:
        return []

    null_cols = orders_df[RANKED_ORDER_COLUMNS].isnull().any()
    if null_cols.any():
        null_col_names = null_cols[null_cols].index.tolist()
        raise ValueError(
            f"Null/NaN values found in columns: {null_col_names}. "
            "Cohort calculations require complete data."
        )

    return [
        RankedOrder(
            customer_id=str(record["customer_id"]),
            ordered_at=pd.Timestamp(record["ordered_at"]).to_pydatetime(),
            order_rank=int(record["order_rank"]),
        )
        for record in orders_df[RANKED_ORDER_COLUMNS].to_dict("records")
    ]


def calculate_nth_order_cohort_df(orders_df: pd.DataFrame, n: int) -> pd.DataFrame:
    """Compute the nth-order retention table from a ranked-orders DataFrame.

    Convenience function combining conversion and analysis.

    Example:
        >>> table = calculate_nth_order_cohort_df(ranked_df, n=3)
        >>> table[["cohort_month", "total_customers", "m0_pct"]]
    """
    cohorts = calculate_nth_order_cohort(dataframe_to_ranked_orders(orders_df), n)
    return cohorts_to_dataframe(cohorts)
