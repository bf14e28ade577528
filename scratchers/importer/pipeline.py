"""Run one CSV import: fetch -> parse -> reconcile -> audit log -> rank recompute."""

from __future__ import annotations

import json
import logging
from typing import Callable

from sqlalchemy.orm import Session

from scratchers.importer.csv_parser import parse_csv
from scratchers.importer.errors import DownstreamTriggerError
from scratchers.importer.fetcher import fetch_csv_text
from scratchers.importer.ranking import recompute_game_ranks
from scratchers.importer.reconciler import DEFAULT_BATCH_SIZE, reconcile_rows
from scratchers.importer.schema import ImportResult
from scratchers.importer.storage import LocalObjectStorage
from scratchers.models import ImportLog

logger = logging.getLogger(__name__)

RankTrigger = Callable[[Session], object]


def _window(total: int, offset: int, limit: int | None) -> tuple[int, int]:
    start = min(max(offset, 0), total)
    end = total if limit is None else min(start + limit, total)
    return start, end


def write_import_log(db: Session, csv_url: str, result: ImportResult) -> None:
    """Append the audit row. Failures are logged, never raised."""

    details = result.to_dict()["details"]
    entry = ImportLog(
        source_url=csv_url,
        status=result.status,
        records_processed=result.records_processed,
        records_inserted=result.records_inserted,
        records_updated=result.records_updated,
        records_failed=result.records_failed,
        error_message=result.error_message,
        details_json=json.dumps(details, ensure_ascii=False),
    )
    try:
        db.add(entry)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to write import log for url=%s", csv_url)


def trigger_rank_recompute(db: Session, recompute: RankTrigger) -> None:
    try:
        recompute(db)
    except Exception as exc:
        db.rollback()
        raise DownstreamTriggerError(f"Rank recompute failed: {exc}") from exc


def run_csv_import(
    db: Session,
    csv_url: str,
    *,
    storage: LocalObjectStorage,
    offset: int = 0,
    limit: int | None = None,
    column_mapping: dict[str, str] | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    auth_token: str | None = None,
    recompute: RankTrigger | None = recompute_game_ranks,
) -> ImportResult:
    """Import one CSV source and return the finalized result.

    Fetch and parse failures propagate as ImportPipelineError with no result
    and no audit row. Row failures are counted inside the returned result.
    """

    logger.info("Starting CSV import url=%s offset=%s limit=%s", csv_url, offset, limit)
    csv_text = fetch_csv_text(csv_url, storage, auth_token=auth_token)
    rows = parse_csv(csv_text, column_mapping=column_mapping)

    start, end = _window(len(rows), offset, limit)
    result = ImportResult(
        total_rows=len(rows),
        processed_up_to=end,
        has_more=end < len(rows),
        next_offset=end if end < len(rows) else None,
    )
    reconcile_rows(db, rows[start:end], batch_size=batch_size, result=result)
    result.finalize()

    write_import_log(db, csv_url, result)

    if result.has_writes and recompute is not None:
        logger.info("Triggering ranking update")
        try:
            trigger_rank_recompute(db, recompute)
        except DownstreamTriggerError:
            logger.exception("Failed to update rankings")
        else:
            logger.info("Rankings updated successfully")

    logger.info(
        "Import complete: status=%s processed=%s inserted=%s updated=%s failed=%s",
        result.status,
        result.records_processed,
        result.records_inserted,
        result.records_updated,
        result.records_failed,
    )
    return result
