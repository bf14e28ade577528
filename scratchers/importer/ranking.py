"""Rank recompute for scratch-off games.

Scores are computed per state on a 0-100 scale from prize availability
(50%), odds (25%), value (15%) and time remaining (10%). The best game of a
state gets rank 100; every other live game is ranked inside its price group
(99, 98, ... down to 1). Expired games get rank 0.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import date, datetime
from typing import Iterable

from sqlalchemy.orm import Session

from scratchers.models import ScratchGame

logger = logging.getLogger(__name__)

TOP_RANK = 100
MIN_RANK = 1
HORIZON_DAYS = 365

PRICE_GROUPS: list[tuple[str, float, float]] = [
    ("$1-$5", 1, 5),
    ("$6-$10", 6, 10),
    ("$11-$20", 11, 20),
    ("$21-$50", 21, 50),
]
OTHER_GROUP = "other"

WEIGHT_AVAILABILITY = 50.0
WEIGHT_ODDS = 25.0
WEIGHT_VALUE = 15.0
WEIGHT_TIME = 10.0

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")
_ODDS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*$")


def parse_end_date(value: str | None) -> date | None:
    if not value:
        return None
    cleaned = value.strip()
    if re.match(r"\d{4}-\d{2}-\d{2}", cleaned):
        cleaned = cleaned[:10]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def parse_odds(value: str | None) -> float | None:
    """'1 in 3.45' or '1:3.45' -> 3.45."""
    if not value:
        return None
    match = _ODDS_RE.search(value.replace(",", ""))
    if not match:
        return None
    odds = float(match.group(1))
    return odds if odds > 0 else None


def price_group(price: float) -> str:
    for name, low, high in PRICE_GROUPS:
        if low <= price <= high:
            return name
    return OTHER_GROUP


def is_expired(game: ScratchGame, today: date) -> bool:
    end = parse_end_date(game.end_date)
    return end is not None and end <= today


def _availability(game: ScratchGame) -> float:
    if not game.total_top_prizes:
        return 0.0
    return min(1.0, max(0.0, game.top_prizes_remaining / game.total_top_prizes))


def _time_remaining(game: ScratchGame, today: date) -> float:
    end = parse_end_date(game.end_date)
    if end is None:
        return 1.0
    return min(HORIZON_DAYS, max(0, (end - today).days)) / HORIZON_DAYS


def score_games(games: list[ScratchGame], today: date) -> dict[int, float]:
    """Score live games of one state relative to each other."""

    odds = {game.id: parse_odds(game.overall_odds) for game in games}
    known_odds = [value for value in odds.values() if value]
    best_odds = min(known_odds) if known_odds else None

    values = {
        game.id: (game.top_prize / game.price) if game.price else 0.0 for game in games
    }
    best_value = max(values.values(), default=0.0)

    scores: dict[int, float] = {}
    for game in games:
        odds_score = best_odds / odds[game.id] if best_odds and odds[game.id] else 0.0
        value_score = values[game.id] / best_value if best_value else 0.0
        scores[game.id] = (
            WEIGHT_AVAILABILITY * _availability(game)
            + WEIGHT_ODDS * odds_score
            + WEIGHT_VALUE * value_score
            + WEIGHT_TIME * _time_remaining(game, today)
        )
    return scores


def assign_state_ranks(games: list[ScratchGame], today: date) -> None:
    live = []
    for game in games:
        if is_expired(game, today):
            game.rank = 0
        else:
            live.append(game)
    if not live:
        return

    scores = score_games(live, today)

    def order(game: ScratchGame):
        return (-scores[game.id], game.game_number, game.id)

    best = min(live, key=order)
    best.rank = TOP_RANK

    groups: dict[str, list[ScratchGame]] = defaultdict(list)
    for game in live:
        if game is not best:
            groups[price_group(game.price)].append(game)
    for members in groups.values():
        for position, game in enumerate(sorted(members, key=order)):
            game.rank = max(MIN_RANK, TOP_RANK - 1 - position)


def _by_state(games: Iterable[ScratchGame]) -> dict[str, list[ScratchGame]]:
    grouped: dict[str, list[ScratchGame]] = defaultdict(list)
    for game in games:
        grouped[game.state].append(game)
    return grouped


def recompute_game_ranks(db: Session, today: date | None = None) -> int:
    """Recompute and commit ranks for all games. Returns the number of games ranked."""

    today = today or date.today()
    games = db.query(ScratchGame).all()
    for state, members in _by_state(games).items():
        assign_state_ranks(members, today)
        logger.debug("Ranked %s games for state=%s", len(members), state)
    db.commit()
    logger.info("Rank recompute done: games=%s", len(games))
    return len(games)
