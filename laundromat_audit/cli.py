"""Command line entry point for the laundromat audit pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from laundromat_audit.analyses.profiles import CustomerDirectoryEntry
from laundromat_audit.foundation.config import AnalyticsConfig, ConfigurationError
from laundromat_audit.foundation.records import normalise_customer_key
from laundromat_audit.pipeline import MissingInputError, run_pipeline_from_raw

logger = logging.getLogger(__name__)


MAX_INPUT_BYTES = 25 * 1024 * 1024  # 25 MiB cap to avoid accidental OOM

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_CONFIGURATION_ERROR = 2


def _load_json(path: Path) -> Any:
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _load_directory(rows: list[dict[str, Any]]) -> dict[str, CustomerDirectoryEntry]:
    directory: dict[str, CustomerDirectoryEntry] = {}
    for row in rows:
        key = normalise_customer_key(row.get("customer_key", row.get("customer")))
        if not key:
            continue
        directory[key] = CustomerDirectoryEntry(
            customer_key=key,
            phone=row.get("phone") or None,
            gender=row.get("gender") or None,
        )
    return directory


def _resolve_output_path(path: Path) -> Path:
    output_path = path.resolve()
    cwd = Path.cwd().resolve()
    try:
        output_path.relative_to(cwd)
    except ValueError:
        raise ValueError(
            f"Output path {output_path} must reside within the current working directory"
        )
    return output_path


def analyze_cli(argv: list[str] | None = None) -> int:
    """Run the audit pipeline over a JSON export of sales and service orders.

    The input file holds an object with ``transactions`` and ``orders``
    lists and, optionally, a ``customer_directory`` list.
    """

    parser = argparse.ArgumentParser(description=analyze_cli.__doc__)
    parser.add_argument(
        "input", type=Path, help="Path to JSON file with transactions and orders"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Optional JSON file overriding analytics constants.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Optional path for writing the results as JSON.",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Build visits and the saturation grid concurrently.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = (
            AnalyticsConfig.from_mapping(_load_json(args.config))
            if args.config
            else AnalyticsConfig()
        )
    except ConfigurationError as exc:
        logger.error(f"Invalid configuration: {exc}")
        return EXIT_CONFIGURATION_ERROR

    logger.info(f"Loading records from {args.input}")
    payload = _load_json(args.input)
    if not isinstance(payload, dict):
        logger.error("Expected a JSON object with 'transactions' and 'orders'")
        return EXIT_INPUT_ERROR

    try:
        result = run_pipeline_from_raw(
            payload.get("transactions"),
            payload.get("orders"),
            config=config,
            customer_directory=_load_directory(payload.get("customer_directory") or []),
            parallel=args.parallel,
        )
    except MissingInputError as exc:
        logger.error(str(exc))
        return EXIT_INPUT_ERROR

    logger.info(
        f"Profiled {len(result.profiles)} customers; "
        f"{len(result.flexible_customers)} flexible; "
        f"{result.skipped_count} records skipped"
    )

    if args.output:
        output_path = _resolve_output_path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as fh:
            json.dump(result.as_dict(), fh, indent=2, sort_keys=True)
        logger.info(f"Results written to {output_path}")
    else:  # stdout fallback enables piping in shell usage.
        json.dump(result.as_dict(), fp=sys.stdout, indent=2, sort_keys=True)
        print()

    return EXIT_OK


def main() -> None:
    raise SystemExit(analyze_cli())


if __name__ == "__main__":  # pragma: no cover
    main()
