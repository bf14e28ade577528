from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scratchers.db import Base
from scratchers.importer.ranking import (
    parse_end_date,
    parse_odds,
    price_group,
    recompute_game_ranks,
)
from scratchers.models import ScratchGame

TODAY = date(2026, 10, 1)


def _session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def _game(number: str, state: str = "GA", price: float = 5.0, **overrides) -> ScratchGame:
    values = {
        "game_number": number,
        "game_name": f"Game {number}",
        "state": state,
        "price": price,
        "top_prize": 10000.0,
        "top_prizes_remaining": 1,
        "total_top_prizes": 4,
        "overall_odds": "1 in 4.00",
        "end_date": None,
        "rank": 0,
    }
    values.update(overrides)
    return ScratchGame(**values)


class RankingHelpersTests(unittest.TestCase):
    def test_parse_odds(self) -> None:
        self.assertEqual(3.45, parse_odds("1 in 3.45"))
        self.assertEqual(4.0, parse_odds("1:4"))
        self.assertIsNone(parse_odds("n/a"))
        self.assertIsNone(parse_odds(None))

    def test_parse_end_date(self) -> None:
        self.assertEqual(date(2026, 1, 31), parse_end_date("2026-01-31"))
        self.assertEqual(date(2026, 1, 31), parse_end_date("01/31/2026"))
        self.assertEqual(date(2026, 1, 31), parse_end_date("2026-01-31T00:00:00Z"))
        self.assertIsNone(parse_end_date("soon"))

    def test_price_group(self) -> None:
        self.assertEqual("$1-$5", price_group(5))
        self.assertEqual("$6-$10", price_group(10))
        self.assertEqual("$21-$50", price_group(30))
        self.assertEqual("other", price_group(100))
        self.assertEqual("other", price_group(0))


class RecomputeRanksTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _session_factory()()

    def tearDown(self) -> None:
        self.db.close()

    def _ranks(self) -> dict[str, int]:
        return {game.game_number: game.rank for game in self.db.query(ScratchGame).all()}

    def test_expired_games_rank_zero(self) -> None:
        self.db.add_all(
            [
                _game("1", end_date="2026-09-30", top_prizes_remaining=4),
                _game("2", end_date="2026-10-01"),
                _game("3", end_date="2027-03-01"),
            ]
        )
        self.db.commit()

        recompute_game_ranks(self.db, today=TODAY)

        ranks = self._ranks()
        self.assertEqual(0, ranks["1"])
        self.assertEqual(0, ranks["2"])
        self.assertEqual(100, ranks["3"])

    def test_one_top_rank_per_state_and_price_group_ordering(self) -> None:
        self.db.add_all(
            [
                _game("10", price=5, top_prizes_remaining=4),
                _game("11", price=5, top_prizes_remaining=3),
                _game("12", price=5, top_prizes_remaining=1),
                _game("13", price=20, top_prizes_remaining=2),
                _game("20", state="TX", price=10, top_prizes_remaining=0),
            ]
        )
        self.db.commit()

        ranked = recompute_game_ranks(self.db, today=TODAY)

        ranks = self._ranks()
        self.assertEqual(5, ranked)
        self.assertEqual(100, ranks["10"])
        self.assertEqual(99, ranks["11"])
        self.assertEqual(98, ranks["12"])
        self.assertEqual(99, ranks["13"])
        self.assertEqual(100, ranks["20"])
        self.assertEqual(1, sum(1 for number in ("10", "11", "12", "13") if ranks[number] == 100))


if __name__ == "__main__":
    unittest.main()
