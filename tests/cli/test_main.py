# Standard library imports
import re
from pathlib import Path

# Third-party imports
import pytest
from typer.testing import CliRunner

# Local application imports
from studyless.cli.main import app
from studyless.db.database import ReviewDatabase
from studyless.models import LearningState


runner = CliRunner()

UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
)


def strip_ansi(text: str) -> str:
    ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
    return ansi_escape.sub("", text)


def normalize_output(text: str) -> str:
    """Remove ANSI codes and collapse whitespace so wrapped lines compare cleanly."""
    return re.sub(r"\s+", " ", strip_ansi(text)).strip()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "cli.db"
    result = runner.invoke(app, ["init", "--db", str(path)])
    assert result.exit_code == 0, result.output
    return path


def _add_cards(db_path: Path, count: int, user: str = "default"):
    result = runner.invoke(
        app, ["add-card", "--db", str(db_path), "--count", str(count), "--user", user]
    )
    assert result.exit_code == 0, result.output
    return UUID_RE.findall(strip_ansi(result.output))


def test_missing_db_option_exits():
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 1
    assert "--db is required" in normalize_output(result.output)


def test_db_path_from_envvar(tmp_path: Path, monkeypatch):
    path = tmp_path / "env.db"
    monkeypatch.setenv("STUDYLESS_DB", str(path))
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    assert path.exists()


def test_init_stores_default_parameters(db_path: Path):
    with ReviewDatabase(db_path) as db:
        params = db.get_parameters("default")
    assert params is not None
    assert params.requested_retention == 0.9


def test_init_with_params_file(tmp_path: Path):
    settings = tmp_path / "settings.yaml"
    settings.write_text("requested_retention: 0.85\nleech_threshold: 3\n")
    path = tmp_path / "custom.db"

    result = runner.invoke(
        app, ["init", "--db", str(path), "--user", "alice", "--params-file", str(settings)]
    )

    assert result.exit_code == 0, result.output
    with ReviewDatabase(path) as db:
        params = db.get_parameters("alice")
    assert params.requested_retention == 0.85
    assert params.leech_threshold == 3


def test_init_with_invalid_params_file(tmp_path: Path):
    settings = tmp_path / "settings.yaml"
    settings.write_text("requested_retention: 1.5\n")
    result = runner.invoke(
        app, ["init", "--db", str(tmp_path / "x.db"), "--params-file", str(settings)]
    )
    assert result.exit_code == 1
    assert "Invalid settings" in normalize_output(result.output)


def test_add_card_creates_new_cards(db_path: Path):
    card_ids = _add_cards(db_path, 3)
    assert len(card_ids) == 3
    with ReviewDatabase(db_path) as db:
        cards = db.get_all_card_states()
    assert {str(c.card_id) for c in cards} == set(card_ids)
    assert all(c.learning_state == LearningState.New for c in cards)


def test_review_updates_card(db_path: Path):
    (card_id,) = _add_cards(db_path, 1)

    result = runner.invoke(
        app, ["review", card_id, "3", "--db", str(db_path), "--time-ms", "2400"]
    )

    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "Rated Good" in output
    assert "State: Review" in output
    with ReviewDatabase(db_path) as db:
        history = db.get_review_history()
    assert len(history) == 1
    assert history[0].review_time_ms == 2400


def test_review_invalid_rating(db_path: Path):
    (card_id,) = _add_cards(db_path, 1)
    result = runner.invoke(app, ["review", card_id, "5", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Invalid rating: 5" in normalize_output(result.output)


def test_review_unknown_card(db_path: Path):
    result = runner.invoke(
        app,
        ["review", "00000000-0000-0000-0000-000000000042", "3", "--db", str(db_path)],
    )
    assert result.exit_code == 1
    assert "not found" in normalize_output(result.output)


def test_cards_are_scoped_to_user(db_path: Path):
    (card_id,) = _add_cards(db_path, 1, user="alice")

    result = runner.invoke(app, ["due", "--db", str(db_path)])
    assert "No cards are due" in normalize_output(result.output)

    result = runner.invoke(app, ["review", card_id, "3", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "not found" in normalize_output(result.output)

    result = runner.invoke(
        app, ["review", card_id, "3", "--db", str(db_path), "--user", "alice"]
    )
    assert result.exit_code == 0, result.output
    with ReviewDatabase(db_path) as db:
        assert len(db.get_review_history(user_id="alice")) == 1
        assert db.get_review_history() == []


def test_stats_only_reads_selected_user(db_path: Path):
    (card_id,) = _add_cards(db_path, 1, user="alice")
    runner.invoke(app, ["review", card_id, "3", "--db", str(db_path), "--user", "alice"])

    result = runner.invoke(app, ["stats", "--db", str(db_path), "--user", "bob"])
    assert result.exit_code == 0
    assert "No reviews found for user 'bob'" in normalize_output(result.output)

    result = runner.invoke(app, ["stats", "--db", str(db_path), "--user", "alice"])
    assert "Review Stats" in normalize_output(result.output)


def test_review_malformed_card_id(db_path: Path):
    result = runner.invoke(app, ["review", "not-a-uuid", "3", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "not a valid card id" in normalize_output(result.output)


def test_due_lists_new_cards(db_path: Path):
    _add_cards(db_path, 2)
    result = runner.invoke(app, ["due", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "Due Cards (2)" in normalize_output(result.output)


def test_due_on_test_day_is_locked_out(db_path: Path):
    _add_cards(db_path, 2)
    result = runner.invoke(app, ["due", "--db", str(db_path), "--test-day"])
    assert result.exit_code == 0, result.output
    assert "locked out" in normalize_output(result.output)


def test_due_with_nothing_due(db_path: Path):
    result = runner.invoke(app, ["due", "--db", str(db_path)])
    assert result.exit_code == 0
    assert "No cards are due" in normalize_output(result.output)


def test_stats_empty(db_path: Path):
    result = runner.invoke(app, ["stats", "--db", str(db_path)])
    assert result.exit_code == 0
    assert "No reviews found" in normalize_output(result.output)


def test_stats_after_reviews(db_path: Path):
    card_ids = _add_cards(db_path, 2)
    for card_id in card_ids:
        runner.invoke(app, ["review", card_id, "3", "--db", str(db_path), "--time-ms", "300"])

    result = runner.invoke(app, ["stats", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "Review Stats" in output
    assert "Cheating risk: high" in output
    assert "Trend: stable" in output


def test_optimize_with_too_few_reviews(db_path: Path):
    (card_id,) = _add_cards(db_path, 1)
    runner.invoke(app, ["review", card_id, "3", "--db", str(db_path)])

    result = runner.invoke(app, ["optimize", "--db", str(db_path), "--apply"])

    assert result.exit_code == 0, result.output
    output = normalize_output(result.output)
    assert "Need 399 more reviews for optimization." in output
    assert "Nothing to apply" in output


def test_optimize_counts_only_selected_user(db_path: Path):
    (card_id,) = _add_cards(db_path, 1, user="alice")
    runner.invoke(app, ["review", card_id, "3", "--db", str(db_path), "--user", "alice"])

    result = runner.invoke(app, ["optimize", "--db", str(db_path), "--user", "bob"])
    assert result.exit_code == 0, result.output
    assert "Need 400 more reviews for optimization." in normalize_output(result.output)

    result = runner.invoke(app, ["retention", "--db", str(db_path), "--user", "alice"])
    assert "Optimal retention from 1 reviews" in normalize_output(result.output)


def test_retention_goal():
    result = runner.invoke(app, ["retention", "--goal", "mastery"])
    assert result.exit_code == 0, result.output
    assert "0.95" in normalize_output(result.output)


def test_retention_from_small_history(db_path: Path):
    result = runner.invoke(app, ["retention", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "Optimal retention from 0 reviews: 0.90" in normalize_output(result.output)
