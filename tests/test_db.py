"""
Test suite for studyless.db (ReviewDatabase), covering connection, schema,
card state storage, the review log transaction, parameters and marshalling.
"""

import pytest

import uuid
from datetime import timedelta
from pathlib import Path

from studyless.constants import DEFAULT_PARAMETERS
from studyless.db import ReviewDatabase
from studyless.db.db_utils import (
    backup_database,
    db_row_to_card_state,
    to_db_timestamp,
)
from studyless.exceptions import (
    DatabaseConnectionError,
    DegenerateParametersError,
    MarshallingError,
    ReviewOperationError,
)
from studyless.models import AlgorithmParameters, CardState, LearningState, Rating
from studyless.scheduler import schedule


# --- Connection & schema ---


def test_memory_path_is_recognized():
    db = ReviewDatabase(":memory:")
    assert str(db.db_path_resolved) == ":memory:"
    assert db.read_only is False


def test_context_manager_initializes_new_file(db_path_file: Path):
    with ReviewDatabase(db_path_file) as db:
        assert db.get_all_card_states() == []
    assert db_path_file.exists()


def test_force_recreate_drops_data(db_manager, new_card):
    db_manager.upsert_card_states([new_card])
    db_manager.initialize_schema(force_recreate_tables=True)
    assert db_manager.get_all_card_states() == []


def test_read_only_rejects_writes(db_path_file: Path, new_card):
    with ReviewDatabase(db_path_file) as db:
        db.upsert_card_states([new_card])

    with ReviewDatabase(db_path_file, read_only=True) as db:
        assert db.get_card_state(new_card.card_id) == new_card
        with pytest.raises(DatabaseConnectionError, match="read-only"):
            db.upsert_card_states([new_card])
        with pytest.raises(DatabaseConnectionError, match="read-only"):
            db.save_parameters("default", AlgorithmParameters())
        with pytest.raises(DatabaseConnectionError):
            db.initialize_schema(force_recreate_tables=True)


# --- Card states ---


def test_upsert_and_get_card_state(db_manager, review_card):
    assert db_manager.upsert_card_states([review_card]) == 1
    stored = db_manager.get_card_state(review_card.card_id)
    assert stored == review_card
    assert stored.due_at.tzinfo is not None


def test_upsert_empty_is_noop(db_manager):
    assert db_manager.upsert_card_states([]) == 0


def test_upsert_replaces_existing(db_manager, review_card):
    db_manager.upsert_card_states([review_card])
    suspended = review_card.model_copy(update={"is_suspended": True})
    db_manager.upsert_card_states([suspended])
    assert db_manager.get_card_state(review_card.card_id).is_suspended is True
    assert len(db_manager.get_all_card_states()) == 1


def test_get_missing_card_returns_none(db_manager):
    assert db_manager.get_card_state(uuid.uuid4()) is None


def test_get_all_card_states_ordered_and_filtered(db_manager, new_card, review_card):
    suspended = CardState.new(card_id=uuid.UUID(int=99), now=new_card.due_at).model_copy(
        update={"is_suspended": True}
    )
    db_manager.upsert_card_states([review_card, new_card, suspended])

    all_cards = db_manager.get_all_card_states()
    assert len(all_cards) == 3
    assert [c.due_at for c in all_cards] == sorted(c.due_at for c in all_cards)

    active = db_manager.get_all_card_states(include_suspended=False)
    assert {c.card_id for c in active} == {new_card.card_id, review_card.card_id}


# --- Reviews ---


def test_add_review_and_update_card(db_manager, new_card, params, t0):
    db_manager.upsert_card_states([new_card])
    updated, entry = schedule(new_card, Rating.Good, t0, params)
    entry = entry.model_copy(update={"review_time_ms": 3200})

    stored = db_manager.add_review_and_update_card(entry, updated)

    assert stored == updated
    history = db_manager.get_review_history(new_card.card_id)
    assert history == [entry]
    assert history[0].review_time_ms == 3200


def test_review_history_is_chronological(db_manager, new_card, params, t0):
    card = new_card
    db_manager.upsert_card_states([card])
    for day, rating in enumerate((Rating.Good, Rating.Hard, Rating.Again, Rating.Good)):
        card, entry = schedule(card, rating, t0 + timedelta(days=day * 3), params)
        db_manager.add_review_and_update_card(entry, card)

    history = db_manager.get_review_history()
    assert [e.rating for e in history] == [Rating.Good, Rating.Hard, Rating.Again, Rating.Good]
    assert [e.reviewed_at for e in history] == sorted(e.reviewed_at for e in history)
    assert db_manager.get_card_state(card.card_id) == card


def test_out_of_order_review_rejected_atomically(db_manager, review_card, params, t0):
    db_manager.upsert_card_states([review_card])
    later_card, later_entry = schedule(review_card, Rating.Good, t0 + timedelta(days=5), params)
    db_manager.add_review_and_update_card(later_entry, later_card)

    earlier_card, earlier_entry = schedule(review_card, Rating.Again, t0 + timedelta(days=2), params)
    with pytest.raises(ReviewOperationError, match="precedes"):
        db_manager.add_review_and_update_card(earlier_entry, earlier_card)

    assert db_manager.get_review_history(review_card.card_id) == [later_entry]
    assert db_manager.get_card_state(review_card.card_id) == later_card


def test_review_for_other_card_rejected(db_manager, new_card, review_card, params, t0):
    db_manager.upsert_card_states([new_card, review_card])
    _, entry = schedule(new_card, Rating.Good, t0, params)
    with pytest.raises(ReviewOperationError, match="cannot update card"):
        db_manager.add_review_and_update_card(entry, review_card)
    assert db_manager.get_review_history() == []


def test_review_histories_are_keyed_by_card(db_manager, new_card, review_card, params, t0):
    db_manager.upsert_card_states([new_card, review_card])
    a, a_entry = schedule(new_card, Rating.Good, t0, params)
    b, b_entry = schedule(review_card, Rating.Hard, t0 + timedelta(days=1), params)
    db_manager.add_review_and_update_card(a_entry, a)
    db_manager.add_review_and_update_card(b_entry, b)

    assert db_manager.get_review_history(new_card.card_id) == [a_entry]
    assert db_manager.get_review_history(review_card.card_id) == [b_entry]
    assert len(db_manager.get_review_history()) == 2


def test_users_keep_separate_cards_and_histories(db_manager, new_card, params, t0):
    db_manager.upsert_card_states([new_card], user_id="alice")
    db_manager.upsert_card_states([new_card], user_id="bob")

    alice_card, alice_entry = schedule(new_card, Rating.Good, t0, params)
    bob_card, bob_entry = schedule(new_card, Rating.Again, t0 + timedelta(hours=1), params)
    db_manager.add_review_and_update_card(alice_entry, alice_card, user_id="alice")
    db_manager.add_review_and_update_card(bob_entry, bob_card, user_id="bob")

    assert db_manager.get_review_history(user_id="alice") == [alice_entry]
    assert db_manager.get_review_history(new_card.card_id, user_id="bob") == [bob_entry]
    assert db_manager.get_review_history() == []
    assert db_manager.get_card_state(new_card.card_id, user_id="alice") == alice_card
    assert db_manager.get_card_state(new_card.card_id, user_id="bob") == bob_card
    assert db_manager.get_card_state(new_card.card_id) is None
    assert db_manager.get_all_card_states(user_id="carol") == []


def test_review_order_is_checked_per_user(db_manager, review_card, params, t0):
    db_manager.upsert_card_states([review_card], user_id="alice")
    db_manager.upsert_card_states([review_card], user_id="bob")
    later_card, later_entry = schedule(review_card, Rating.Good, t0 + timedelta(days=5), params)
    db_manager.add_review_and_update_card(later_entry, later_card, user_id="alice")

    earlier_card, earlier_entry = schedule(review_card, Rating.Good, t0 + timedelta(days=2), params)
    stored = db_manager.add_review_and_update_card(earlier_entry, earlier_card, user_id="bob")
    assert stored == earlier_card


# --- Parameters ---


def test_parameters_missing_returns_none(db_manager):
    assert db_manager.get_parameters("nobody") is None


def test_save_and_get_parameters(db_manager):
    params = AlgorithmParameters(
        requested_retention=0.87,
        leech_threshold=3,
        auto_suspend_leeches=True,
        learning_steps=(timedelta(minutes=2), timedelta(minutes=20)),
    ).with_weights([w * 1.1 for w in DEFAULT_PARAMETERS])

    db_manager.save_parameters("alice", params)
    assert db_manager.get_parameters("alice") == params
    assert db_manager.get_parameters("bob") is None


def test_save_parameters_overwrites(db_manager):
    db_manager.save_parameters("alice", AlgorithmParameters())
    db_manager.save_parameters("alice", AlgorithmParameters(requested_retention=0.8))
    assert db_manager.get_parameters("alice").requested_retention == 0.8


def test_degenerate_weights_never_stored(db_manager):
    good = AlgorithmParameters()
    db_manager.save_parameters("alice", good)

    # model_construct skips validation, standing in for a corrupted vector
    bad = AlgorithmParameters.model_construct(
        **{**good.model_dump(), "weights": (float("nan"),) * 19}
    )
    with pytest.raises(DegenerateParametersError):
        db_manager.save_parameters("alice", bad)
    assert db_manager.get_parameters("alice") == good


# --- Marshalling & utilities ---


def test_db_row_with_unknown_state_raises(review_card):
    row = review_card.model_dump()
    row["learning_state"] = "Graduated"
    with pytest.raises(MarshallingError):
        db_row_to_card_state(row)


def test_to_db_timestamp_is_naive_utc(t0):
    assert to_db_timestamp(t0).tzinfo is None
    assert to_db_timestamp(t0) == t0.replace(tzinfo=None)
    assert to_db_timestamp(None) is None


def test_backup_database(db_path_file: Path, new_card):
    with ReviewDatabase(db_path_file) as db:
        db.upsert_card_states([new_card])

    backup_path = backup_database(db_path_file)
    assert backup_path.exists()
    assert backup_path.parent.name == "backups"
    assert backup_path != db_path_file


def test_backup_missing_database_is_noop(tmp_path: Path):
    missing = tmp_path / "none.db"
    assert backup_database(missing) == missing
