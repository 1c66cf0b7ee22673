"""Command line entry points for the retention audit toolkit."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from retention_audit.analyses.cohort_totals import summarize_cohorts
from retention_audit.analyses.drilldown import (
    OPEN_ENDED_OFFSET,
    get_drilldown_list,
    get_opportunity_list,
)
from retention_audit.foundation.cohorts import (
    calculate_nth_order_cohort,
    parse_order_index,
)
from retention_audit.foundation.errors import InvalidArgumentError, UpstreamDataError
from retention_audit.foundation.order_sources import (
    DuckDBOrderSource,
    JsonOrderEventSource,
    RankedOrderSource,
    fetch_customer_details,
    fetch_ranked_orders,
    load_json_payload,
)
from retention_audit.foundation.ranked_orders import (
    RankedOrder,
    RankedOrderContract,
    RankingScope,
)
from retention_audit.pandas.cohorts import cohorts_to_dataframe

logger = logging.getLogger(__name__)

SOURCE_KINDS = ("events", "ranked", "duckdb")


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "input",
        type=Path,
        help="Path to a JSON file of order events or ranked orders, or a DuckDB database",
    )
    parser.add_argument(
        "--source",
        choices=SOURCE_KINDS,
        default="events",
        help="How to read the input: raw order events (default), "
        "pre-ranked orders, or a DuckDB database with an orders table.",
    )
    parser.add_argument(
        "--n",
        dest="n",
        default=None,
        help="Target order index, an integer >= 2 (default: 2).",
    )
    parser.add_argument(
        "--year",
        type=int,
        help="Only include customers whose first order falls in this year.",
    )
    parser.add_argument(
        "--product",
        help='Only include customers whose first order is in this product group ("ALL" for no filter).',
    )


def _open_source(args: argparse.Namespace) -> RankedOrderSource:
    if args.source == "duckdb":
        if not args.input.exists():
            raise FileNotFoundError(f"DuckDB database not found: {args.input}")
        return DuckDBOrderSource.from_path(args.input)
    return JsonOrderEventSource.from_path(args.input)


def _load_ranked_orders(
    args: argparse.Namespace, parser: argparse.ArgumentParser
) -> list[RankedOrder]:
    scope = RankingScope(year=args.year, product=args.product)

    if args.source == "ranked":
        if scope.year is not None or scope.product_filter is not None:
            parser.error("--year and --product require --source events or duckdb")
        payload = load_json_payload(args.input)
        if not isinstance(payload, list):
            raise UpstreamDataError("Expected a list of ranked orders in the input file")
        return RankedOrderContract().validate_records(payload)

    source = _open_source(args)
    try:
        return fetch_ranked_orders(source, scope)
    finally:
        if isinstance(source, DuckDBOrderSource):
            source.close()


def _resolve_output(path: Path) -> Path:
    output_path = path.resolve()
    cwd = Path.cwd().resolve()
    try:
        output_path.relative_to(cwd)
    except ValueError:
        raise ValueError(
            f"Output path {output_path} must reside within the current working directory"
        )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def _write_json(payload: Any, output: Path | None) -> None:
    if output:
        with _resolve_output(output).open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, sort_keys=True)
    else:  # stdout fallback enables piping in shell usage.
        json.dump(payload, fp=sys.stdout, indent=2, sort_keys=True)
        print()


def nth_order_cohort_cli(argv: list[str] | None = None) -> int:
    """Compute an nth-order cohort retention table.

    Reads order data, ranks each customer's orders, groups customers into
    monthly cohorts by first purchase and reports, for each cohort, how many
    customers placed their nth order 0..11 or 12+ calendar months after
    their (n-1)th order.

    Args:
        argv: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, 1 for upstream data errors)
    """
    parser = argparse.ArgumentParser(
        description="Compute an nth-order cohort retention table"
    )
    _add_source_arguments(parser)
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=["json", "csv"],
        default="json",
        help="Output format (default: json).",
    )
    parser.add_argument(
        "--grand-total",
        action="store_true",
        help="Append the grand-total row to the output.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Optional output path (must be inside the working directory).",
    )

    args = parser.parse_args(argv)
    try:
        n = parse_order_index(args.n)
    except InvalidArgumentError as e:
        parser.error(str(e))

    try:
        ranked_orders = _load_ranked_orders(args, parser)
        logger.info(f"Computing n={n} cohort table from {len(ranked_orders)} ranked orders")
        cohorts = calculate_nth_order_cohort(ranked_orders, n)
    except (UpstreamDataError, ValueError, OSError) as e:
        logger.error(f"Could not read order data from {args.input}: {e}")
        return 1

    logger.info(f"Computed {len(cohorts)} cohorts")

    if args.output_format == "csv":
        df = cohorts_to_dataframe(cohorts, include_grand_total=args.grand_total)
        if args.output:
            df.to_csv(_resolve_output(args.output), index=False)
        else:
            df.to_csv(sys.stdout, index=False)
        return 0

    payload: dict[str, Any] = {
        "n": n,
        "cohorts": [cohort.as_dict() for cohort in cohorts],
    }
    if args.grand_total:
        payload["grand_total"] = summarize_cohorts(cohorts).as_dict()
    _write_json(payload, args.output)
    return 0


def cohort_drilldown_cli(argv: list[str] | None = None) -> int:
    """List the customers behind one cell of an nth-order retention table."""

    parser = argparse.ArgumentParser(
        description="List customers in one cohort retention cell"
    )
    _add_source_arguments(parser)
    parser.add_argument(
        "--cohort-month", required=True, help="Cohort row, formatted YYYY-MM."
    )
    parser.add_argument(
        "--month-offset",
        type=int,
        default=0,
        help=f"Cell column: 0..11, or {OPEN_ENDED_OFFSET} for 12+ months (default: 0).",
    )
    parser.add_argument(
        "--opportunity",
        action="store_true",
        help="List cohort customers who placed order n-1 but never order n "
        "(ignores --month-offset).",
    )
    parser.add_argument(
        "--with-details",
        action="store_true",
        help="Include customer contact details from the source.",
    )
    parser.add_argument("--output", type=Path, help="Optional output path for JSON.")

    args = parser.parse_args(argv)
    try:
        n = parse_order_index(args.n)
    except InvalidArgumentError as e:
        parser.error(str(e))
    if args.with_details and args.source == "ranked":
        parser.error("--with-details requires --source events or duckdb")

    try:
        ranked_orders = _load_ranked_orders(args, parser)
        if args.opportunity:
            customer_ids = get_opportunity_list(ranked_orders, args.cohort_month, n)
        else:
            customer_ids = get_drilldown_list(
                ranked_orders, args.cohort_month, n, args.month_offset
            )
    except InvalidArgumentError as e:
        parser.error(str(e))
    except (UpstreamDataError, ValueError, OSError) as e:
        logger.error(f"Could not read order data from {args.input}: {e}")
        return 1

    cell = "opportunity" if args.opportunity else f"m{args.month_offset}"
    logger.info(
        f"Found {len(customer_ids)} customers in {args.cohort_month} {cell} (n={n})"
    )

    payload: dict[str, Any] = {"cohort_month": args.cohort_month, "n": n}
    if args.opportunity:
        payload["opportunity"] = True
    else:
        payload["month_offset"] = args.month_offset
    payload["customer_ids"] = customer_ids
    if args.with_details:
        source = _open_source(args)
        try:
            details = fetch_customer_details(source, customer_ids)
        finally:
            if isinstance(source, DuckDBOrderSource):
                source.close()
        payload["customers"] = [detail.as_dict() for detail in details]

    _write_json(payload, args.output)
    return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    raise SystemExit(nth_order_cohort_cli())


def drilldown_main() -> None:
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    raise SystemExit(cohort_drilldown_cli())


if __name__ == "__main__":  # pragma: no cover
    main()
