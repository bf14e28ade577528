"""Quick probe: fetch and parse a CSV source without writing anything."""

from __future__ import annotations

import argparse
import logging

from scratchers.importer.csv_parser import describe_headers, parse_csv
from scratchers.importer.errors import ImportPipelineError
from scratchers.importer.fetcher import fetch_csv_text
from scratchers.importer.storage import get_storage


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Probe a CSV source and print its header mapping and row counts.",
    )
    parser.add_argument(
        "--csv-url",
        type=str,
        required=True,
        help="CSV URL, own-storage public URL, or storage://bucket/path.",
    )
    parser.add_argument(
        "--sample",
        type=int,
        default=3,
        help="Number of parsed rows to print (default: 3).",
    )
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = _parse_args()

    try:
        csv_text = fetch_csv_text(args.csv_url, get_storage())
        rows = parse_csv(csv_text)
    except ImportPipelineError as exc:
        logging.error("Probe failed: %s", exc)
        raise SystemExit(1) from exc

    delimiter, mapping = describe_headers(csv_text)
    logging.info("Delimiter: %r", delimiter)
    for header, field_name in mapping:
        logging.info("  %-32s -> %s", header, field_name or "(ignored)")

    data_lines = sum(1 for line in csv_text.strip().split("\n")[1:] if line.strip())
    logging.info("Admitted %s of %s data lines", len(rows), data_lines)
    for row in rows[: max(args.sample, 0)]:
        logging.info("  line %s: %s", row.line_number, row.model_dump(exclude={"line_number"}))


if __name__ == "__main__":
    main()
