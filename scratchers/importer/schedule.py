"""Scheduled, chunked CSV imports driven by the import_schedule row."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import or_, update
from sqlalchemy.orm import Session, sessionmaker

from scratchers.db import SessionLocal
from scratchers.importer.errors import ImportPipelineError
from scratchers.importer.pipeline import run_csv_import
from scratchers.importer.storage import LocalObjectStorage, get_storage
from scratchers.models import ImportSchedule
from scratchers.settings import decrypt_secret, get_or_create_settings, snapshot_settings

logger = logging.getLogger(__name__)

MAX_IMPORT_CHUNKS = 100
CHUNK_DELAY_SECONDS = 2
ACTIVE_STATUSES = ("running", "importing")
# A claim untouched for this long belongs to a crashed run and may be taken over.
STALE_CLAIM_MINUTES = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_scheduled_time(raw: str) -> tuple[int, int]:
    try:
        hour_text, minute_text = raw.strip().split(":")
        hour, minute = int(hour_text), int(minute_text)
    except (AttributeError, ValueError) as exc:
        raise ValueError("scheduled_time must be HH:MM") from exc
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError("scheduled_time must be HH:MM")
    return hour, minute


def next_run_time(scheduled_time: str, now: datetime) -> datetime:
    """Next daily occurrence of scheduled_time (UTC) strictly after *now*."""

    hour, minute = parse_scheduled_time(scheduled_time)
    now_utc = _ensure_utc(now)
    candidate = now_utc.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now_utc:
        candidate += timedelta(days=1)
    return candidate


def _stale_cutoff(now: datetime) -> datetime:
    return _ensure_utc(now) - timedelta(minutes=STALE_CLAIM_MINUTES)


def is_claim_stale(schedule: ImportSchedule, now: datetime) -> bool:
    if schedule.status not in ACTIVE_STATUSES:
        return False
    if schedule.updated_at is None:
        return True
    return _ensure_utc(schedule.updated_at) < _stale_cutoff(now)


def is_schedule_due(schedule: ImportSchedule, now: datetime) -> bool:
    if not schedule.enabled or not schedule.csv_url:
        return False
    if schedule.status in ACTIVE_STATUSES and not is_claim_stale(schedule, now):
        return False
    if schedule.next_run_at is None:
        return True
    return _ensure_utc(schedule.next_run_at) <= _ensure_utc(now)


def get_enabled_schedule(db: Session) -> ImportSchedule | None:
    return (
        db.query(ImportSchedule)
        .filter(ImportSchedule.enabled.is_(True))
        .order_by(ImportSchedule.id.asc())
        .first()
    )


def _claim_schedule(db: Session, schedule_id: int, now: datetime) -> bool:
    """Flip the schedule to running unless a live run already holds it."""

    claimed = db.execute(
        update(ImportSchedule)
        .where(
            ImportSchedule.id == schedule_id,
            or_(
                ImportSchedule.status.notin_(ACTIVE_STATUSES),
                ImportSchedule.updated_at.is_(None),
                ImportSchedule.updated_at < _stale_cutoff(now),
            ),
        )
        .values(status="running", last_run_at=now, error_message=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return claimed.rowcount == 1


def _mark(db: Session, schedule: ImportSchedule, **values: Any) -> None:
    for key, value in values.items():
        setattr(schedule, key, value)
    schedule.updated_at = _utcnow()
    db.commit()


def _fail(db: Session, schedule: ImportSchedule, message: str, started: datetime) -> None:
    """Mark the run failed and push the next attempt to the following daily slot."""

    _mark(
        db,
        schedule,
        status="failed",
        error_message=message,
        current_offset=0,
        next_run_at=next_run_time(schedule.scheduled_time, started),
    )


def run_scheduled_import(
    session_factory: sessionmaker = SessionLocal,
    storage: LocalObjectStorage | None = None,
    now: datetime | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """Run the enabled schedule end to end, chunk by chunk."""

    storage = storage or get_storage()
    started = now or _utcnow()

    with session_factory() as db:
        schedule = get_enabled_schedule(db)
        if schedule is None:
            logger.info("No enabled import schedule found")
            return {"message": "No enabled schedules"}

        if is_claim_stale(schedule, started):
            logger.warning(
                "Taking over stale %s claim for schedule=%s (last update %s)",
                schedule.status,
                schedule.id,
                schedule.updated_at,
            )
        if not _claim_schedule(db, schedule.id, started):
            logger.warning("Import already running for schedule=%s, skipping", schedule.id)
            return {"message": "Import already in progress"}
        db.refresh(schedule)

        settings = snapshot_settings(get_or_create_settings(db))
        auth_token = decrypt_secret(settings.source_auth_token_enc)
        offset = schedule.current_offset or 0
        total_inserted = 0
        total_updated = 0
        total_failed = 0
        chunks = 0
        complete = False

        while not complete and chunks < MAX_IMPORT_CHUNKS:
            chunks += 1
            logger.info("Import chunk=%s offset=%s schedule=%s", chunks, offset, schedule.id)
            _mark(db, schedule, status="importing", current_offset=offset)
            try:
                result = run_csv_import(
                    db,
                    schedule.csv_url,
                    storage=storage,
                    offset=offset,
                    limit=settings.import_chunk_size,
                    batch_size=settings.import_batch_size,
                    auth_token=auth_token,
                )
            except ImportPipelineError as exc:
                logger.error("Scheduled import chunk=%s failed: %s", chunks, exc)
                db.rollback()
                _fail(db, schedule, f"Import failed at chunk {chunks}: {exc}", started)
                return {"status": "failed", "error": str(exc), "chunks_processed": chunks}
            except Exception as exc:
                db.rollback()
                _fail(db, schedule, f"Unexpected error at chunk {chunks}: {exc}", started)
                raise

            total_inserted += result.records_inserted
            total_updated += result.records_updated
            total_failed += result.records_failed

            if result.has_more and result.next_offset is not None:
                offset = result.next_offset
                _mark(db, schedule, current_offset=offset, total_rows=result.total_rows)
                sleep(CHUNK_DELAY_SECONDS)
            else:
                complete = True

        if not complete:
            logger.error("Reached maximum import chunks (%s), stopping", MAX_IMPORT_CHUNKS)
            _fail(
                db,
                schedule,
                f"Import stopped after {MAX_IMPORT_CHUNKS} chunks (safety limit)",
                started,
            )
            return {
                "status": "failed",
                "error": "chunk safety limit reached",
                "chunks_processed": chunks,
            }

        next_run = next_run_time(schedule.scheduled_time, started)
        _mark(db, schedule, status="completed", current_offset=0, next_run_at=next_run)
        logger.info(
            "Scheduled import complete: chunks=%s inserted=%s updated=%s failed=%s",
            chunks,
            total_inserted,
            total_updated,
            total_failed,
        )
        return {
            "status": "success",
            "import": {
                "chunks_processed": chunks,
                "records_inserted": total_inserted,
                "records_updated": total_updated,
                "records_failed": total_failed,
            },
            "next_run": next_run.isoformat(),
        }


def run_if_due(
    session_factory: sessionmaker = SessionLocal,
    storage: LocalObjectStorage | None = None,
) -> dict[str, Any] | None:
    now = _utcnow()
    with session_factory() as db:
        schedule = get_enabled_schedule(db)
        if schedule is None or not is_schedule_due(schedule, now):
            return None
    return run_scheduled_import(session_factory, storage=storage, now=now)
