from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scratchers.db import Base
from scratchers.importer import reconciler
from scratchers.importer.reconciler import reconcile_rows
from scratchers.importer.schema import ImportResult, ParsedRow
from scratchers.models import ScratchGame


def _session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def _row(number: str = "100", line: int = 2, **overrides) -> ParsedRow:
    values = {
        "game_number": number,
        "game_name": f"Game {number}",
        "state": "GA",
        "price": 5.0,
        "top_prize": 50000.0,
        "top_prizes_remaining": 4,
        "total_top_prizes": 5,
        "line_number": line,
    }
    values.update(overrides)
    return ParsedRow(**values)


class ReconcilerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _session_factory()()

    def tearDown(self) -> None:
        self.db.close()

    def test_insert_writes_all_fields_with_sentinel_rank(self) -> None:
        row = _row(overall_odds="1 in 4.2", image_url="https://img.test/1.png", source="lottery")

        result = reconcile_rows(self.db, [row])

        game = self.db.query(ScratchGame).one()
        self.assertEqual(1, result.records_inserted)
        self.assertEqual(["Game 100 (100)"], result.details.inserted)
        self.assertEqual(0, game.rank)
        self.assertFalse(game.image_converted)
        self.assertEqual("1 in 4.2", game.overall_odds)
        self.assertEqual("https://img.test/1.png", game.image_url)
        self.assertEqual("lottery", game.source)

    def test_duplicate_natural_key_in_one_run_inserts_then_updates(self) -> None:
        rows = [
            _row(top_prizes_remaining=4, line=2),
            _row(top_prizes_remaining=2, line=3),
        ]

        result = reconcile_rows(self.db, rows)

        self.assertEqual(1, result.records_inserted)
        self.assertEqual(1, result.records_updated)
        self.assertEqual(2, self.db.query(ScratchGame).one().top_prizes_remaining)

    def test_different_top_prize_is_a_different_record(self) -> None:
        reconcile_rows(self.db, [_row(top_prize=50000.0), _row(top_prize=1000.0)])

        self.assertEqual(2, self.db.query(ScratchGame).count())

    def test_second_run_is_idempotent(self) -> None:
        rows = [_row(str(number), line=number) for number in range(2, 8)]

        first = reconcile_rows(self.db, rows)
        second = reconcile_rows(self.db, rows)

        self.assertEqual(6, first.records_inserted)
        self.assertEqual(0, second.records_inserted)
        self.assertEqual(6, second.records_updated)
        self.assertEqual(6, self.db.query(ScratchGame).count())

    def test_update_refreshes_counts_and_end_date(self) -> None:
        reconcile_rows(self.db, [_row(end_date="2026-01-31", game_name="Original", price=5.0)])

        reconcile_rows(
            self.db,
            [_row(top_prizes_remaining=1, total_top_prizes=6, game_name="Renamed", price=10.0)],
        )

        game = self.db.query(ScratchGame).one()
        self.assertEqual(1, game.top_prizes_remaining)
        self.assertEqual(6, game.total_top_prizes)
        self.assertIsNone(game.end_date)
        self.assertEqual("Original", game.game_name)
        self.assertEqual(5.0, game.price)
        self.assertIsNotNone(game.updated_at)

    def test_source_fields_are_fill_if_blank(self) -> None:
        reconcile_rows(self.db, [_row(source="curated", source_url=None)])

        reconcile_rows(self.db, [_row(source="feed", source_url="https://feed.test")])
        reconcile_rows(self.db, [_row(source="other", source_url="https://other.test")])

        game = self.db.query(ScratchGame).one()
        self.assertEqual("curated", game.source)
        self.assertEqual("https://feed.test", game.source_url)

    def test_blank_whitespace_source_is_filled(self) -> None:
        reconcile_rows(self.db, [_row()])
        self.db.query(ScratchGame).update({"source": "   "})
        self.db.commit()

        reconcile_rows(self.db, [_row(source="feed")])

        self.assertEqual("feed", self.db.query(ScratchGame).one().source)

    def test_converted_image_is_never_replaced(self) -> None:
        reconcile_rows(self.db, [_row(image_url="https://ext.test/a.png")])
        game = self.db.query(ScratchGame).one()
        game.image_converted = True
        game.image_url = "https://files.test/game-images/a.webp"
        self.db.commit()

        reconcile_rows(self.db, [_row(image_url="https://ext.test/b.png")])

        self.assertEqual("https://files.test/game-images/a.webp", self.db.query(ScratchGame).one().image_url)

    def test_unconverted_image_is_refreshed(self) -> None:
        reconcile_rows(self.db, [_row(image_url="https://ext.test/a.png")])

        reconcile_rows(self.db, [_row(image_url="https://ext.test/b.png")])
        reconcile_rows(self.db, [_row(image_url=None)])

        self.assertEqual("https://ext.test/b.png", self.db.query(ScratchGame).one().image_url)

    def test_multiple_matches_update_only_the_first(self) -> None:
        self.db.add_all(
            [
                ScratchGame(game_number="100", game_name="A", state="GA", top_prize=50000.0),
                ScratchGame(game_number="100", game_name="B", state="GA", top_prize=50000.0),
            ]
        )
        self.db.commit()

        reconcile_rows(self.db, [_row(top_prizes_remaining=3)])

        games = self.db.query(ScratchGame).order_by(ScratchGame.id).all()
        self.assertEqual([3, 0], [game.top_prizes_remaining for game in games])

    def test_write_failure_is_isolated_to_its_row(self) -> None:
        rows = [_row(str(number), line=number + 1) for number in range(1, 11)]
        real_insert = reconciler._insert_game

        def _flaky_insert(db, row):
            if row.game_number == "4":
                raise OperationalError("INSERT INTO games", {}, Exception("disk I/O error"))
            return real_insert(db, row)

        with patch("scratchers.importer.reconciler._insert_game", side_effect=_flaky_insert):
            result = reconcile_rows(self.db, rows, batch_size=3)
        result.finalize()

        self.assertEqual(10, result.records_processed)
        self.assertEqual(9, result.records_inserted + result.records_updated)
        self.assertEqual(1, result.records_failed)
        self.assertEqual("partial", result.status)
        self.assertEqual(5, result.details.failed[0].row)
        self.assertIn("insert failed", result.details.failed[0].error)
        self.assertEqual(9, self.db.query(ScratchGame).count())
        self.assertLessEqual(
            result.records_failed + result.records_inserted + result.records_updated,
            result.records_processed,
        )

    def test_unexpected_exception_is_recorded(self) -> None:
        with patch(
            "scratchers.importer.reconciler.find_existing_game",
            side_effect=ValueError("boom"),
        ):
            result = reconcile_rows(self.db, [_row()])
        result.finalize()

        self.assertEqual(1, result.records_failed)
        self.assertEqual("failed", result.status)
        self.assertEqual("boom", result.details.failed[0].error)

    def test_invalid_batch_size(self) -> None:
        with self.assertRaises(ValueError):
            reconcile_rows(self.db, [_row()], batch_size=0)


class ImportResultTests(unittest.TestCase):
    def test_finalize_statuses(self) -> None:
        result = ImportResult(records_processed=3, records_inserted=3)
        result.finalize()
        self.assertEqual("success", result.status)
        self.assertIsNone(result.error_message)

        result = ImportResult(records_processed=3, records_failed=3)
        result.finalize()
        self.assertEqual("failed", result.status)

        result = ImportResult()
        result.finalize()
        self.assertEqual("failed", result.status)
        self.assertEqual("No valid rows to import", result.error_message)


if __name__ == "__main__":
    unittest.main()
