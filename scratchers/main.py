from __future__ import annotations

from datetime import datetime, timezone
import asyncio
import json
import logging
import os
import time

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import desc
from sqlalchemy.orm import Session, sessionmaker

from scratchers.db import Base, SessionLocal, engine, get_db
from scratchers.importer.csv_parser import normalize_column_mapping
from scratchers.importer.errors import ImportPipelineError
from scratchers.importer.fetcher import fetch_url_text
from scratchers.importer.pipeline import run_csv_import
from scratchers.importer.ranking import recompute_game_ranks
from scratchers.importer.schedule import (
    get_enabled_schedule,
    next_run_time,
    parse_scheduled_time,
    run_if_due,
    run_scheduled_import,
)
from scratchers.importer.storage import (
    CSV_BUCKET,
    LocalObjectStorage,
    csv_import_path,
    get_storage,
)
from scratchers.log_buffer import get_buffer_handler, install_buffer_handler
from scratchers.models import ImportLog, ImportSchedule, ScratchGame
from scratchers.schemas import GameOut, ImportLogOut, ImportScheduleOut, SettingsOut
from scratchers.settings import (
    apply_settings_update,
    decrypt_secret,
    get_or_create_settings,
    snapshot_settings,
)

app = FastAPI(title="Scratch-off Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
logger = logging.getLogger(__name__)
_auto_import_task: asyncio.Task | None = None
_auto_import_stop: asyncio.Event | None = None


def get_session_factory() -> sessionmaker:
    return SessionLocal


async def _auto_import_loop(interval_minutes: int) -> None:
    if interval_minutes < 1:
        logger.error("Auto-import poll interval must be >= 1 minute.")
        return

    logger.info("Auto-import enabled: poll interval=%s minutes", interval_minutes)
    while _auto_import_stop and not _auto_import_stop.is_set():
        try:
            outcome = await asyncio.to_thread(run_if_due)
            if outcome is not None:
                logger.info("Auto-import run finished: %s", outcome)
        except Exception:
            logger.exception("Auto-import failed.")
        try:
            await asyncio.wait_for(
                _auto_import_stop.wait(),
                timeout=interval_minutes * 60,
            )
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def start_auto_import() -> None:
    global _auto_import_task, _auto_import_stop
    install_buffer_handler()
    Base.metadata.create_all(bind=engine)
    if os.getenv("AUTO_IMPORT_ENABLED", "false").strip().lower() not in {"1", "true", "yes"}:
        logger.info("App starting up (auto-import disabled)")
        return
    interval_minutes = int(os.getenv("AUTO_IMPORT_POLL_MINUTES", "15"))
    _auto_import_stop = asyncio.Event()
    _auto_import_task = asyncio.create_task(_auto_import_loop(interval_minutes))


@app.on_event("shutdown")
async def stop_auto_import() -> None:
    global _auto_import_task, _auto_import_stop
    if _auto_import_stop:
        _auto_import_stop.set()
    if _auto_import_task:
        await _auto_import_task
    _auto_import_task = None
    _auto_import_stop = None


def _failure(status_code: int, message: str) -> JSONResponse:
    if status_code >= 500:
        return JSONResponse(status_code=status_code, content={"status": "failed", "error": message})
    return JSONResponse(status_code=status_code, content={"error": message})


def _optional_int(value, name: str, minimum: int) -> int | None:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if number < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return number


@app.post("/functions/import-csv-data")
def import_csv_data(
    payload: dict,
    db: Session = Depends(get_db),
    storage: LocalObjectStorage = Depends(get_storage),
):
    csv_url = str(payload.get("csvUrl") or "").strip()
    if not csv_url:
        return _failure(400, "csvUrl is required")

    raw_mapping = payload.get("columnMapping")
    try:
        offset = _optional_int(payload.get("offset"), "offset", 0) or 0
        limit = _optional_int(payload.get("limit"), "limit", 1)
        if raw_mapping is not None and not isinstance(raw_mapping, dict):
            raise ValueError("columnMapping must be an object")
        column_mapping = normalize_column_mapping(raw_mapping)
    except ValueError as exc:
        return _failure(400, str(exc))

    settings = snapshot_settings(get_or_create_settings(db))
    try:
        result = run_csv_import(
            db,
            csv_url,
            storage=storage,
            offset=offset,
            limit=limit,
            column_mapping=column_mapping,
            batch_size=settings.import_batch_size,
            auth_token=decrypt_secret(settings.source_auth_token_enc),
        )
    except ImportPipelineError as exc:
        logger.error("CSV import failed url=%s error=%s", csv_url, exc)
        return _failure(500, str(exc))
    except Exception as exc:
        logger.exception("Unexpected error in CSV import url=%s", csv_url)
        return _failure(500, str(exc) or "Unknown error occurred")

    return result.to_dict()


@app.post("/functions/download-csv")
def download_csv(
    payload: dict,
    db: Session = Depends(get_db),
    storage: LocalObjectStorage = Depends(get_storage),
):
    csv_url = str(payload.get("csvUrl") or "").strip()
    if not csv_url:
        return _failure(400, "csvUrl is required")

    settings = snapshot_settings(get_or_create_settings(db))
    try:
        text = fetch_url_text(csv_url, auth_token=decrypt_secret(settings.source_auth_token_enc))
        content = text.encode("utf-8")
        path = csv_import_path(csv_url, int(time.time() * 1000))
        storage.upload(CSV_BUCKET, path, content, upsert=False)
    except ImportPipelineError as exc:
        logger.error("CSV download failed url=%s error=%s", csv_url, exc)
        return _failure(500, str(exc))
    except OSError as exc:
        logger.exception("Storage upload failed url=%s", csv_url)
        return _failure(500, f"Storage upload failed: {exc}")

    return {
        "success": True,
        "url": storage.get_public_url(CSV_BUCKET, path),
        "path": path,
        "size": len(content),
    }


@app.get("/api/games", response_model=list[GameOut])
def list_games(
    state: str | None = None,
    price: float | None = None,
    include_expired: bool = False,
    limit: int = 200,
    db: Session = Depends(get_db),
):
    query = db.query(ScratchGame)
    if state:
        query = query.filter(ScratchGame.state == state.strip().upper())
    if price is not None:
        query = query.filter(ScratchGame.price == price)
    if not include_expired:
        query = query.filter(ScratchGame.rank > 0)
    games = (
        query.order_by(desc(ScratchGame.rank), ScratchGame.game_name.asc())
        .limit(max(1, min(limit, 1000)))
        .all()
    )
    return [GameOut.model_validate(game) for game in games]


@app.post("/api/games/recompute-ranks")
def api_recompute_ranks(db: Session = Depends(get_db)):
    ranked = recompute_game_ranks(db)
    return {"ok": True, "ranked": ranked}


@app.get("/api/import-logs", response_model=list[ImportLogOut])
def list_import_logs(limit: int = 10, db: Session = Depends(get_db)):
    logs = (
        db.query(ImportLog)
        .order_by(desc(ImportLog.import_date), desc(ImportLog.id))
        .limit(max(1, min(limit, 100)))
        .all()
    )
    return [
        ImportLogOut(
            id=log.id,
            source_url=log.source_url,
            import_date=log.import_date,
            status=log.status,
            records_processed=log.records_processed,
            records_inserted=log.records_inserted,
            records_updated=log.records_updated,
            records_failed=log.records_failed,
            error_message=log.error_message,
            details=json.loads(log.details_json or "{}"),
        )
        for log in logs
    ]


@app.get("/api/import-schedule")
def get_import_schedule(db: Session = Depends(get_db)):
    schedule = db.query(ImportSchedule).order_by(ImportSchedule.id.asc()).first()
    if schedule is None:
        return {"schedule": None}
    return {"schedule": ImportScheduleOut.model_validate(schedule)}


@app.put("/api/import-schedule")
def save_import_schedule(payload: dict, db: Session = Depends(get_db)):
    schedule = db.query(ImportSchedule).order_by(ImportSchedule.id.asc()).first()
    if schedule is None:
        schedule = ImportSchedule(enabled=False, csv_url="", scheduled_time="06:00", status="idle")
        db.add(schedule)

    if "scheduled_time" in payload:
        try:
            parse_scheduled_time(str(payload["scheduled_time"]))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        schedule.scheduled_time = str(payload["scheduled_time"]).strip()
    if "csv_url" in payload:
        schedule.csv_url = str(payload["csv_url"] or "").strip()
    if "enabled" in payload:
        schedule.enabled = bool(payload["enabled"])
    if schedule.enabled and not schedule.csv_url:
        raise HTTPException(status_code=400, detail="csv_url is required to enable the schedule")

    now = datetime.now(timezone.utc)
    schedule.next_run_at = next_run_time(schedule.scheduled_time, now) if schedule.enabled else None
    schedule.updated_at = now
    db.commit()
    db.refresh(schedule)
    return {"schedule": ImportScheduleOut.model_validate(schedule)}


@app.post("/api/import-schedule/run")
def run_import_schedule(
    session_factory: sessionmaker = Depends(get_session_factory),
    storage: LocalObjectStorage = Depends(get_storage),
):
    with session_factory() as db:
        if get_enabled_schedule(db) is None:
            raise HTTPException(status_code=404, detail="No enabled import schedule")
    outcome = run_scheduled_import(session_factory, storage=storage)
    if outcome.get("status") == "failed":
        return JSONResponse(status_code=500, content=outcome)
    return outcome


def _settings_out(settings) -> SettingsOut:
    return SettingsOut(
        import_batch_size=settings.import_batch_size,
        import_chunk_size=settings.import_chunk_size,
        has_source_auth_token=bool(settings.source_auth_token_enc),
    )


@app.get("/api/settings", response_model=SettingsOut)
def get_settings(db: Session = Depends(get_db)):
    return _settings_out(get_or_create_settings(db))


@app.put("/api/settings", response_model=SettingsOut)
def save_settings(payload: dict, db: Session = Depends(get_db)):
    settings = get_or_create_settings(db)
    try:
        apply_settings_update(settings, payload)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return _settings_out(settings)


@app.get("/api/logs")
def api_logs(limit: int = 100, level: str | None = None):
    handler = get_buffer_handler()
    return {"entries": handler.entries(limit=limit, level=level)}
