"""Recycle Rush: sort waste items into the right bin before time runs out.

The countdown runs on the server clock from the moment a game starts.
Games are stored as rows so a replayed session cookie only ever points
back at the same game, and its token payout is marked once per row.
"""

import random
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

import models
import ledger
from database import atomic
from errors import GameError

START, PLAYING, GAMEOVER = "start", "playing", "gameover"
CATEGORIES = ("recycle", "trash", "compost")

MAX_LEVEL = 5
START_TIME = 60
FIRST_WAVE = 5
ENDLESS_WAVE = 8
LEVEL_BONUS_SECONDS = 10
ENDLESS_BONUS_SECONDS = 15
WRONG_POINTS = 5
WRONG_SECONDS = 2
POINTS_PER_TOKEN = 10

HIGH_SCORE_KEY = "recycleRushHighScore"


@dataclass
class WasteItem:
    id: int
    name: str
    type: str
    emoji: str


WASTE_ITEMS = [
    WasteItem(1, "Plastic Bottle", "recycle", "\U0001f9f4"),
    WasteItem(2, "Banana Peel", "compost", "\U0001f34c"),
    WasteItem(3, "Soda Can", "recycle", "\U0001f964"),
    WasteItem(4, "Apple Core", "compost", "\U0001f34e"),
    WasteItem(5, "Crisp Packet", "trash", "\U0001f961"),
    WasteItem(6, "Paper", "recycle", "\U0001f4c4"),
    WasteItem(7, "Glass Jar", "recycle", "\U0001fad9"),
    WasteItem(8, "Pizza Box (Greasy)", "compost", "\U0001f355"),
    WasteItem(9, "Styrofoam", "trash", "\U0001f961"),
    WasteItem(10, "Egg Shells", "compost", "\U0001f95a"),
    WasteItem(11, "Cardboard", "recycle", "\U0001f4e6"),
    WasteItem(12, "Plastic Bag", "trash", "\U0001f6cd\ufe0f"),
]


@dataclass
class SortResult:
    correct: bool
    points: int
    level_up: bool = False
    game_over: bool = False


def points_for(level: int) -> int:
    return 10 + level * 2



def _now() -> float:
    return time.time()


class RecycleRush:
    def __init__(self, rng: Optional[random.Random] = None, clock=None):
        self.rng = rng or random.Random()
        self.clock = clock or _now
        self.state = START
        self.score = 0
        self.level = 1
        self.items: List[WasteItem] = []
        self.started_at = None
        # level bonuses minus wrong-sort penalties
        self.extra_seconds = 0
        self._next_id = 1

    def start(self):
        self.state = PLAYING
        self.score = 0
        self.level = 1
        self.started_at = self.clock()
        self.extra_seconds = 0
        self.spawn(FIRST_WAVE)

    @property
    def time_left(self) -> int:
        if self.state == START:
            return START_TIME
        if self.state == GAMEOVER:
            return 0
        elapsed = int(self.clock() - self.started_at)
        return max(0, START_TIME + self.extra_seconds - elapsed)

    def spawn(self, count: int):
        self.items = []
        for _ in range(count):
            template = self.rng.choice(WASTE_ITEMS)
            self.items.append(WasteItem(self._next_id, template.name, template.type, template.emoji))
            self._next_id += 1

    def _require_playing(self):
        if self.state != PLAYING:
            raise GameError("The game is not running")

    def _end(self) -> bool:
        if self.state == GAMEOVER:
            return False
        self.state = GAMEOVER
        return True

    def sort(self, item_id: int, bin: str) -> SortResult:
        """Drop an item in a bin. A sort that arrives after the clock ran out only ends the game."""
        if self.tick():
            return SortResult(False, 0, game_over=True)
        if bin not in CATEGORIES:
            raise GameError(f"Unknown bin '{bin}'")
        item = next((i for i in self.items if i.id == item_id), None)
        if item is None:
            raise GameError(f"No item {item_id} on the board")

        if item.type != bin:
            self.score = max(0, self.score - WRONG_POINTS)
            self.extra_seconds -= min(WRONG_SECONDS, self.time_left)
            game_over = self.time_left == 0 and self._end()
            return SortResult(False, -WRONG_POINTS, game_over=game_over)

        earned = points_for(self.level)
        self.score += earned
        self.items = [i for i in self.items if i.id != item_id]
        if self.items:
            return SortResult(True, earned)

        if self.level < MAX_LEVEL:
            self.spawn(FIRST_WAVE + self.level)
            self.level += 1
            self.extra_seconds += LEVEL_BONUS_SECONDS
            return SortResult(True, earned, level_up=True)

        self.spawn(ENDLESS_WAVE)
        self.extra_seconds += ENDLESS_BONUS_SECONDS
        return SortResult(True, earned)

    def tick(self) -> bool:
        """Check the clock. True only on the call that ends the game."""
        self._require_playing()
        if self.time_left == 0:
            return self._end()
        return False

    @property
    def tokens_earned(self) -> int:
        return self.score // POINTS_PER_TOKEN

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "score": self.score,
            "time_left": self.time_left,
            "level": self.level,
            "items": [asdict(i) for i in self.items],
            "started_at": self.started_at,
            "extra_seconds": self.extra_seconds,
            "next_id": self._next_id,
        }

    @classmethod
    def from_dict(cls, data, rng: Optional[random.Random] = None, clock=None):
        game = cls(rng, clock)
        if data:
            game.state = data["state"]
            game.score = data["score"]
            game.level = data["level"]
            game.items = [WasteItem(**i) for i in data["items"]]
            game.started_at = data["started_at"]
            game.extra_seconds = data["extra_seconds"]
            game._next_id = data["next_id"]
        return game


# ── Stored games ──

def new_game(db: Session, user_id: int = None, rng: Optional[random.Random] = None):
    game = RecycleRush(rng)
    game.start()
    record = models.GameRecord(user_id=user_id, state=game.to_dict())
    with atomic(db):
        db.add(record)
    db.refresh(record)
    return record, game


def _find_game(db: Session, game_id, user_id, lock=False) -> models.GameRecord:
    query = db.query(models.GameRecord).filter(models.GameRecord.id == game_id)
    if lock:
        query = query.with_for_update().populate_existing()
    record = query.first()
    if record is None or record.user_id != user_id:
        raise GameError("No game found; start a new one")
    return record


def load_game(db: Session, game_id, user_id) -> RecycleRush:
    return RecycleRush.from_dict(_find_game(db, game_id, user_id).state)


def play(db: Session, game_id, user_id, item_id: int = None, bin: str = None):
    """Sync the clock and apply an optional sort under the game's row lock.

    Returns (game, sort result or None, ended); ended is True only for the
    request that moved the stored game to gameover.
    """
    with atomic(db):
        record = _find_game(db, game_id, user_id, lock=True)
        game = RecycleRush.from_dict(record.state)
        result = None
        if item_id is None:
            ended = game.tick()
        else:
            result = game.sort(item_id, bin)
            ended = result.game_over
        record.state = game.to_dict()
    return game, result, ended


def pay_out(db: Session, game_id, user_id: int, score: int) -> int:
    """Credit floor(score / 10) tokens for a finished game, at most once per game."""
    tokens = score // POINTS_PER_TOKEN
    if tokens <= 0:
        return 0
    with atomic(db):
        marked = (
            db.query(models.GameRecord)
            .filter(models.GameRecord.id == game_id, models.GameRecord.paid_at.is_(None))
            .update({models.GameRecord.paid_at: datetime.utcnow()}, synchronize_session=False)
        )
        if marked != 1:
            return 0
        ledger.apply_earn(db, user_id, tokens, f"Earned from Recycle Rush (Score: {score})")
    return tokens


# ── High score ──

def get_high_score(store) -> int:
    try:
        return int(store.get(HIGH_SCORE_KEY, 0))
    except (TypeError, ValueError):
        return 0


def record_high_score(store, score: int) -> bool:
    """Keep the best score under one fixed key. True if it was beaten."""
    if score > get_high_score(store):
        store[HIGH_SCORE_KEY] = score
        return True
    return False
