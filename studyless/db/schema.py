"""
Defines the database schema for studyless using a SQL string constant.
This keeps the schema definition separate from the database connection and
operation logic.

Timestamps are stored as naive UTC TIMESTAMP values. Card states and review
logs carry the owning user_id, as do the algorithm parameters.
"""

DB_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS card_states (
        user_id VARCHAR NOT NULL,
        card_id UUID NOT NULL,
        stability DOUBLE NOT NULL,
        difficulty DOUBLE NOT NULL,
        due_at TIMESTAMP NOT NULL,
        last_reviewed_at TIMESTAMP,
        learning_state VARCHAR NOT NULL,
        lapses INTEGER NOT NULL DEFAULT 0,
        reps INTEGER NOT NULL DEFAULT 0,
        is_suspended BOOLEAN NOT NULL DEFAULT FALSE,
        modified_at TIMESTAMP NOT NULL,
        PRIMARY KEY (user_id, card_id)
    );

    CREATE SEQUENCE IF NOT EXISTS review_log_seq;

    CREATE TABLE IF NOT EXISTS review_logs (
        review_id INTEGER PRIMARY KEY DEFAULT nextval('review_log_seq'),
        user_id VARCHAR NOT NULL,
        card_id UUID NOT NULL,
        rating INTEGER NOT NULL CHECK (rating >= 1 AND rating <= 4),
        reviewed_at TIMESTAMP NOT NULL,
        elapsed_days DOUBLE NOT NULL,
        scheduled_days DOUBLE NOT NULL,
        review_time_ms INTEGER NOT NULL,
        stability_before DOUBLE NOT NULL,
        difficulty_before DOUBLE NOT NULL,
        state_before VARCHAR NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_review_logs_user_card ON review_logs (user_id, card_id);

    CREATE TABLE IF NOT EXISTS algorithm_parameters (
        user_id VARCHAR PRIMARY KEY,
        weights DOUBLE[] NOT NULL,
        requested_retention DOUBLE NOT NULL,
        leech_threshold INTEGER NOT NULL,
        auto_suspend_leeches BOOLEAN NOT NULL,
        test_day_lockout_enabled BOOLEAN NOT NULL,
        maximum_interval INTEGER NOT NULL,
        learning_steps_s DOUBLE[] NOT NULL,
        relearning_steps_s DOUBLE[] NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );
"""
