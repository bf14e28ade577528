from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scratchers.db import Base
from scratchers.importer.schedule import is_schedule_due, next_run_time, run_scheduled_import
from scratchers.importer.storage import LocalObjectStorage
from scratchers.models import AppSettings, ImportLog, ImportSchedule, ScratchGame

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def _csv(count: int) -> bytes:
    lines = ["game_number,game_name,state,price"]
    lines += [f"{number},Game {number},GA,5" for number in range(1, count + 1)]
    return "\n".join(lines).encode("utf-8")


class NextRunTimeTests(unittest.TestCase):
    def test_later_today(self) -> None:
        self.assertEqual(
            datetime(2026, 10, 1, 18, 30, tzinfo=timezone.utc),
            next_run_time("18:30", NOW),
        )

    def test_rolls_to_tomorrow(self) -> None:
        self.assertEqual(
            datetime(2026, 10, 2, 6, 0, tzinfo=timezone.utc),
            next_run_time("06:00", NOW),
        )
        self.assertEqual(
            datetime(2026, 10, 2, 12, 0, tzinfo=timezone.utc),
            next_run_time("12:00", NOW),
        )

    def test_invalid_time(self) -> None:
        with self.assertRaises(ValueError):
            next_run_time("25:00", NOW)
        with self.assertRaises(ValueError):
            next_run_time("noon", NOW)


class IsScheduleDueTests(unittest.TestCase):
    def test_due_rules(self) -> None:
        schedule = ImportSchedule(enabled=True, csv_url="storage://b/a.csv", status="idle")
        self.assertTrue(is_schedule_due(schedule, NOW))

        schedule.next_run_at = datetime(2026, 10, 1, 13, 0)
        self.assertFalse(is_schedule_due(schedule, NOW))

        schedule.next_run_at = datetime(2026, 10, 1, 11, 0, tzinfo=timezone.utc)
        self.assertTrue(is_schedule_due(schedule, NOW))

        schedule.status = "importing"
        schedule.updated_at = NOW - timedelta(minutes=5)
        self.assertFalse(is_schedule_due(schedule, NOW))

        schedule.updated_at = NOW - timedelta(hours=2)
        self.assertTrue(is_schedule_due(schedule, NOW))

        schedule.status = "completed"
        schedule.enabled = False
        self.assertFalse(is_schedule_due(schedule, NOW))


class RunScheduledImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.storage = LocalObjectStorage(self._tmp.name, "http://files.test")
        self.storage.upload("game-images", "games.csv", _csv(5))
        self.factory = _session_factory()
        with self.factory() as db:
            db.add(AppSettings(id=1, import_batch_size=2, import_chunk_size=2))
            db.add(
                ImportSchedule(
                    enabled=True,
                    csv_url="storage://game-images/games.csv",
                    scheduled_time="06:00",
                    status="idle",
                    current_offset=0,
                )
            )
            db.commit()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _schedule(self) -> ImportSchedule:
        with self.factory() as db:
            schedule = db.query(ImportSchedule).one()
            db.expunge(schedule)
            return schedule

    def test_imports_in_chunks_and_completes(self) -> None:
        sleep = MagicMock()

        outcome = run_scheduled_import(self.factory, storage=self.storage, now=NOW, sleep=sleep)

        self.assertEqual("success", outcome["status"])
        self.assertEqual(3, outcome["import"]["chunks_processed"])
        self.assertEqual(5, outcome["import"]["records_inserted"])
        self.assertEqual(2, sleep.call_count)
        schedule = self._schedule()
        self.assertEqual("completed", schedule.status)
        self.assertEqual(0, schedule.current_offset)
        self.assertEqual(5, schedule.total_rows)
        self.assertIsNotNone(schedule.next_run_at)
        with self.factory() as db:
            self.assertEqual(5, db.query(ScratchGame).count())
            self.assertEqual(3, db.query(ImportLog).count())

    def test_skips_when_already_running(self) -> None:
        with self.factory() as db:
            db.query(ImportSchedule).update(
                {"status": "importing", "updated_at": NOW - timedelta(minutes=5)}
            )
            db.commit()

        outcome = run_scheduled_import(self.factory, storage=self.storage, now=NOW, sleep=MagicMock())

        self.assertEqual({"message": "Import already in progress"}, outcome)
        with self.factory() as db:
            self.assertEqual(0, db.query(ScratchGame).count())

    def test_no_enabled_schedule(self) -> None:
        with self.factory() as db:
            db.query(ImportSchedule).update({"enabled": False})
            db.commit()

        outcome = run_scheduled_import(self.factory, storage=self.storage, now=NOW)

        self.assertEqual({"message": "No enabled schedules"}, outcome)

    def test_structural_failure_marks_schedule_failed(self) -> None:
        with self.factory() as db:
            db.query(ImportSchedule).update({"csv_url": "storage://game-images/missing.csv"})
            db.commit()

        outcome = run_scheduled_import(self.factory, storage=self.storage, now=NOW, sleep=MagicMock())

        self.assertEqual("failed", outcome["status"])
        self.assertEqual(1, outcome["chunks_processed"])
        schedule = self._schedule()
        self.assertEqual("failed", schedule.status)
        self.assertIn("Import failed at chunk 1", schedule.error_message)
        self.assertEqual(0, schedule.current_offset)

    def test_failed_run_waits_for_next_daily_slot(self) -> None:
        with self.factory() as db:
            db.query(ImportSchedule).update(
                {
                    "csv_url": "storage://game-images/missing.csv",
                    "next_run_at": NOW - timedelta(minutes=1),
                }
            )
            db.commit()

        run_scheduled_import(self.factory, storage=self.storage, now=NOW, sleep=MagicMock())

        schedule = self._schedule()
        self.assertEqual("failed", schedule.status)
        self.assertEqual(
            datetime(2026, 10, 2, 6, 0),
            schedule.next_run_at.replace(tzinfo=None),
        )
        self.assertFalse(is_schedule_due(schedule, NOW + timedelta(minutes=15)))
        self.assertTrue(is_schedule_due(schedule, datetime(2026, 10, 2, 6, 0, tzinfo=timezone.utc)))

    def test_stale_claim_is_taken_over(self) -> None:
        with self.factory() as db:
            db.query(ImportSchedule).update(
                {"status": "importing", "current_offset": 2, "updated_at": NOW - timedelta(hours=2)}
            )
            db.commit()

        with self.assertLogs("scratchers.importer.schedule", level="WARNING") as logs:
            outcome = run_scheduled_import(
                self.factory, storage=self.storage, now=NOW, sleep=MagicMock()
            )

        self.assertEqual("success", outcome["status"])
        self.assertEqual(3, outcome["import"]["records_inserted"])
        self.assertTrue(any("stale importing claim" in line for line in logs.output))
        self.assertEqual("completed", self._schedule().status)


if __name__ == "__main__":
    unittest.main()
