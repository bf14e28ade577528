"""CLI entrypoint for manual and scheduled CSV imports."""

from __future__ import annotations

import argparse
import json
import logging

from scratchers.db import Base, SessionLocal, engine
from scratchers.importer.errors import ImportPipelineError
from scratchers.importer.pipeline import run_csv_import
from scratchers.importer.ranking import recompute_game_ranks
from scratchers.importer.schedule import run_scheduled_import
from scratchers.importer.storage import get_storage
from scratchers.settings import decrypt_secret, get_or_create_settings, snapshot_settings


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import scratch-off games from a CSV file or URL.",
    )

    source_group = parser.add_mutually_exclusive_group(required=True)
    source_group.add_argument(
        "--csv-url",
        type=str,
        help="CSV URL, own-storage public URL, or storage://bucket/path.",
    )
    source_group.add_argument(
        "--scheduled",
        action="store_true",
        help="Run the enabled import schedule in chunks.",
    )

    parser.add_argument("--offset", type=int, default=0, help="First admitted row to import.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum rows to import.")
    parser.add_argument(
        "--no-rank",
        action="store_true",
        help="Skip the rank recompute after the import.",
    )
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    args = _parse_args()
    Base.metadata.create_all(bind=engine)

    if args.scheduled:
        outcome = run_scheduled_import()
        logging.info("Scheduled import: %s", json.dumps(outcome))
        if outcome.get("status") == "failed":
            raise SystemExit(1)
        return

    if args.offset < 0:
        raise SystemExit("--offset must be >= 0")
    if args.limit is not None and args.limit < 1:
        raise SystemExit("--limit must be >= 1")

    with SessionLocal() as db:
        settings = snapshot_settings(get_or_create_settings(db))
        try:
            result = run_csv_import(
                db,
                args.csv_url,
                storage=get_storage(),
                offset=args.offset,
                limit=args.limit,
                batch_size=settings.import_batch_size,
                auth_token=decrypt_secret(settings.source_auth_token_enc),
                recompute=None if args.no_rank else recompute_game_ranks,
            )
        except ImportPipelineError as exc:
            logging.error("Import failed: %s", exc)
            raise SystemExit(1) from exc

    logging.info(
        "Done: status=%s processed=%s inserted=%s updated=%s failed=%s has_more=%s next_offset=%s",
        result.status,
        result.records_processed,
        result.records_inserted,
        result.records_updated,
        result.records_failed,
        result.has_more,
        result.next_offset,
    )
    for failure in result.details.failed:
        logging.warning("Row %s failed: %s", failure.row, failure.error)


if __name__ == "__main__":
    main()
