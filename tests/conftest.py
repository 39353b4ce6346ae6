import random
import pytest
from pathlib import Path
from typing import Callable, Generator, List
from datetime import datetime, timedelta, timezone
from uuid import UUID

from studyless.models import (
    AlgorithmParameters,
    CardState,
    LearningState,
    Rating,
    ReviewLogEntry,
)
from studyless.db import ReviewDatabase
from studyless.scheduler import retrievability, schedule

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


# each test runs on cwd to its temp dir
@pytest.fixture(autouse=True)
def go_to_tmpdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("STUDYLESS_DB", raising=False)
    monkeypatch.delenv("STUDYLESS_USER", raising=False)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def params() -> AlgorithmParameters:
    """Default algorithm parameters."""
    return AlgorithmParameters()


@pytest.fixture
def new_card() -> CardState:
    return CardState.new(
        card_id=UUID("11111111-1111-1111-1111-111111111111"), now=T0
    )


@pytest.fixture
def review_card() -> CardState:
    """
    A graduated card last reviewed at T0 with ten days of stability,
    due on T0 + 9 days.
    """
    return CardState(
        card_id=UUID("22222222-2222-2222-2222-222222222222"),
        stability=10.0,
        difficulty=5.0,
        due_at=T0 + timedelta(days=9),
        last_reviewed_at=T0,
        learning_state=LearningState.Review,
        lapses=0,
        reps=3,
    )


# --- Database Fixtures ---
@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "test_studyless.db"


@pytest.fixture(params=["memory", "file"])
def db_manager(request, db_path_file: Path) -> Generator[ReviewDatabase, None, None]:
    """
    A ReviewDatabase, in-memory or file-backed, with its schema initialized.
    The connection is closed on teardown.
    """
    if request.param == "memory":
        db = ReviewDatabase(":memory:")
    else:
        db = ReviewDatabase(db_path_file)
    db.initialize_schema()
    try:
        yield db
    finally:
        db.close_connection()


@pytest.fixture
def memory_db() -> Generator[ReviewDatabase, None, None]:
    db = ReviewDatabase(":memory:")
    db.initialize_schema()
    try:
        yield db
    finally:
        db.close_connection()


def simulate_history(
    card_count: int,
    reviews_per_card: int,
    params: AlgorithmParameters,
    seed: int = 7,
    fast_fraction: float = 0.0,
) -> List[ReviewLogEntry]:
    """
    Drive cards through the real scheduler. Each review happens around its
    due date and passes with the probability the model predicts.
    """
    rng = random.Random(seed)
    history: List[ReviewLogEntry] = []
    for i in range(card_count):
        card = CardState.new(card_id=UUID(int=i + 1), now=T0)
        now = T0 + timedelta(minutes=i)
        for _ in range(reviews_per_card):
            if card.last_reviewed_at is not None:
                delay = timedelta(days=rng.uniform(0.0, 2.0))
                now = max(card.due_at, card.last_reviewed_at) + delay
                elapsed = (now - card.last_reviewed_at).total_seconds() / 86400
                recall = retrievability(card.stability, elapsed)
            else:
                recall = 0.8
            if rng.random() > recall:
                rating = Rating.Again
            else:
                rating = rng.choice([Rating.Hard, Rating.Good, Rating.Good, Rating.Easy])
            card, entry = schedule(card, rating, now, params)
            time_ms = 400 if rng.random() < fast_fraction else rng.randint(1500, 9000)
            history.append(entry.model_copy(update={"review_time_ms": time_ms}))
    return history


@pytest.fixture
def history_builder(params: AlgorithmParameters) -> Callable[..., List[ReviewLogEntry]]:
    def build(card_count: int, reviews_per_card: int, **kwargs) -> List[ReviewLogEntry]:
        return simulate_history(card_count, reviews_per_card, params, **kwargs)

    return build
