"""Upsert parsed CSV rows into the games table."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scratchers.importer.errors import RowWriteError
from scratchers.importer.schema import ImportResult, ParsedRow, RowOutcome
from scratchers.models import ScratchGame

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def find_existing_game(db: Session, row: ParsedRow) -> ScratchGame | None:
    """Look up by natural key. Only the first match is used."""

    return (
        db.query(ScratchGame)
        .filter(
            ScratchGame.game_number == row.game_number,
            ScratchGame.state == row.state,
            ScratchGame.top_prize == row.top_prize,
        )
        .order_by(ScratchGame.id.asc())
        .first()
    )


def _insert_game(db: Session, row: ParsedRow) -> ScratchGame:
    game = ScratchGame(
        game_number=row.game_number,
        game_name=row.game_name,
        state=row.state,
        price=row.price,
        top_prize=row.top_prize,
        top_prizes_remaining=row.top_prizes_remaining,
        total_top_prizes=row.total_top_prizes,
        overall_odds=row.overall_odds,
        start_date=row.start_date,
        end_date=row.end_date,
        image_url=row.image_url,
        source=row.source,
        source_url=row.source_url,
        image_converted=False,
        rank=0,
    )
    db.add(game)
    return game


def _update_game(game: ScratchGame, row: ParsedRow, now: datetime) -> None:
    game.top_prizes_remaining = row.top_prizes_remaining
    game.total_top_prizes = row.total_top_prizes
    game.end_date = row.end_date
    game.updated_at = now

    # Converted images live in our storage; never point them back at the source.
    if not game.image_converted and row.image_url:
        game.image_url = row.image_url

    # Fill-if-blank: curated source info is never overwritten.
    if _is_blank(game.source) and row.source:
        game.source = row.source
    if _is_blank(game.source_url) and row.source_url:
        game.source_url = row.source_url


def reconcile_row(db: Session, row: ParsedRow) -> RowOutcome:
    """Insert or update one row and commit it on its own.

    Never raises: any failure is rolled back and returned as a failed outcome.
    """

    try:
        try:
            existing = find_existing_game(db, row)
        except SQLAlchemyError as exc:
            raise RowWriteError(row.line_number, f"lookup failed: {exc}") from exc

        if existing is not None:
            try:
                _update_game(existing, row, datetime.now(timezone.utc))
                db.commit()
            except SQLAlchemyError as exc:
                raise RowWriteError(row.line_number, f"update failed: {exc}") from exc
            return RowOutcome(action="updated", row=row.line_number, label=row.game_name)

        try:
            _insert_game(db, row)
            db.commit()
        except SQLAlchemyError as exc:
            raise RowWriteError(row.line_number, f"insert failed: {exc}") from exc
        return RowOutcome(action="inserted", row=row.line_number, label=row.label)
    except Exception as exc:
        db.rollback()
        logger.exception("Failed importing line=%s game_number=%s", row.line_number, row.game_number)
        return RowOutcome(action="failed", row=row.line_number, label=row.label, error=str(exc))


def _batches(rows: Sequence[ParsedRow], batch_size: int):
    for start in range(0, len(rows), batch_size):
        yield start, rows[start:start + batch_size]


def reconcile_rows(
    db: Session,
    rows: Sequence[ParsedRow],
    batch_size: int = DEFAULT_BATCH_SIZE,
    result: ImportResult | None = None,
) -> ImportResult:
    """Reconcile rows sequentially in batches; failures are isolated per row."""

    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    result = result or ImportResult()
    result.records_processed += len(rows)

    logger.info("Processing %s rows in batches of %s", len(rows), batch_size)
    for start, batch in _batches(rows, batch_size):
        batch_number = start // batch_size + 1
        logger.info(
            "Processing batch %s (rows %s-%s)",
            batch_number,
            start + 1,
            start + len(batch),
        )
        for row in batch:
            result.record(reconcile_row(db, row))
        logger.info("Batch %s complete", batch_number)

    return result
