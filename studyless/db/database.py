"""
DuckDB persistence boundary for studyless.

Stores one CardState per flashcard, the append-only review log keyed by
card, and one AlgorithmParameters record per user. Every table is scoped by
user_id, so one database can hold several accounts. A card's updated state
and its new log entry are always written in a single transaction so the
history never silently drifts from the card states.
"""

import duckdb
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from . import db_utils
from .connection import ConnectionHandler
from .schema_manager import SchemaManager
from ..constants import DEFAULT_USER_ID
from ..exceptions import (
    CardOperationError,
    DatabaseConnectionError,
    DatabaseError,
    MarshallingError,
    ParameterOperationError,
    ReviewOperationError,
)
from ..models import AlgorithmParameters, CardState, ReviewLogEntry

logger = logging.getLogger(__name__)


def _rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


class ReviewDatabase:
    """
    Acts as a Facade for the database subsystem, providing a simple, high-level
    interface for card state, review log and parameter storage.

    It coordinates the ConnectionHandler, SchemaManager, and data marshalling
    utilities. Intended for use as a context manager.
    """

    _UPSERT_CARD_SQL = """
        INSERT INTO card_states (user_id, card_id, stability, difficulty, due_at, last_reviewed_at,
                                 learning_state, lapses, reps, is_suspended, modified_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
        ON CONFLICT (user_id, card_id) DO UPDATE SET
            stability = EXCLUDED.stability,
            difficulty = EXCLUDED.difficulty,
            due_at = EXCLUDED.due_at,
            last_reviewed_at = EXCLUDED.last_reviewed_at,
            learning_state = EXCLUDED.learning_state,
            lapses = EXCLUDED.lapses,
            reps = EXCLUDED.reps,
            is_suspended = EXCLUDED.is_suspended,
            modified_at = EXCLUDED.modified_at;
        """

    _INSERT_REVIEW_SQL = """
        INSERT INTO review_logs (user_id, card_id, rating, reviewed_at, elapsed_days, scheduled_days,
                                 review_time_ms, stability_before, difficulty_before, state_before)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
        RETURNING review_id;
        """

    _UPSERT_PARAMETERS_SQL = """
        INSERT INTO algorithm_parameters (user_id, weights, requested_retention, leech_threshold,
                                          auto_suspend_leeches, test_day_lockout_enabled,
                                          maximum_interval, learning_steps_s, relearning_steps_s,
                                          updated_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
        ON CONFLICT (user_id) DO UPDATE SET
            weights = EXCLUDED.weights,
            requested_retention = EXCLUDED.requested_retention,
            leech_threshold = EXCLUDED.leech_threshold,
            auto_suspend_leeches = EXCLUDED.auto_suspend_leeches,
            test_day_lockout_enabled = EXCLUDED.test_day_lockout_enabled,
            maximum_interval = EXCLUDED.maximum_interval,
            learning_steps_s = EXCLUDED.learning_steps_s,
            relearning_steps_s = EXCLUDED.relearning_steps_s,
            updated_at = EXCLUDED.updated_at;
        """

    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        """
        Create a ReviewDatabase backed by the given DuckDB path.

        Args:
            db_path (str | Path): Path to the database file. Use ':memory:' for an in-memory database.
            read_only (bool): If True, open the database in read-only mode.
        """
        self._handler = ConnectionHandler(db_path=db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._handler)

    @property
    def db_path_resolved(self) -> Path:
        return self._handler.db_path_resolved

    @property
    def read_only(self) -> bool:
        return self._handler.read_only

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._handler.get_connection()

    def close_connection(self) -> None:
        self._handler.close_connection()

    def __enter__(self) -> "ReviewDatabase":
        """
        Open the database connection and initialize the schema if a new writable database was created.
        """
        self.get_connection()
        if self._handler.is_new_db and not self._handler.read_only:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Ensures the connection is closed on exiting the context."""
        self.close_connection()

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        self._schema_manager.initialize_schema(
            force_recreate_tables=force_recreate_tables
        )

    def _require_writable(self, operation: str) -> None:
        if self.read_only:
            raise DatabaseConnectionError(
                f"Cannot {operation} in read-only mode."
            )

    @staticmethod
    def _rollback(conn: duckdb.DuckDBPyConnection, context: str) -> None:
        try:
            conn.rollback()
            logger.info(f"Transaction rolled back due to {context} error.")
        except duckdb.Error as rb_err:
            # Keep the original, more informative error.
            logger.error(f"Failed to rollback transaction: {rb_err}")

    # --- Card State Operations ---

    def upsert_card_states(
        self, cards: Sequence[CardState], user_id: str = DEFAULT_USER_ID
    ) -> int:
        """
        Insert or replace one user's card states in a single transactional batch.

        Returns:
            int: Number of cards processed; an empty sequence is a no-op.

        Raises:
            CardOperationError: If the database operation fails.
        """
        if not cards:
            return 0
        self._require_writable("upsert card states")

        params = [db_utils.card_state_to_db_params(user_id, card) for card in cards]
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                cursor.executemany(self._UPSERT_CARD_SQL, params)
                cursor.commit()
        except duckdb.Error as e:
            logger.error(f"Error during batch card state upsert: {e}")
            self._rollback(conn, "card state upsert")
            raise CardOperationError(
                f"Batch card state upsert failed: {e}", original_exception=e
            ) from e
        logger.info(f"Successfully upserted {len(params)} card states for user {user_id}.")
        return len(params)

    def get_card_state(
        self, card_id: uuid.UUID, user_id: str = DEFAULT_USER_ID
    ) -> Optional[CardState]:
        """
        Fetches a user's card state by its id.

        Returns:
            CardState | None: The stored state, or `None` if the user has no such card.

        Raises:
            CardOperationError: If a database error occurs or the row cannot be parsed.
        """
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                "SELECT * FROM card_states WHERE user_id = $1 AND card_id = $2;",
                (user_id, card_id),
            )
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching card state {card_id}: {e}")
            raise CardOperationError(
                f"Failed to fetch card state: {e}", original_exception=e
            ) from e
        if not rows:
            return None
        try:
            return db_utils.db_row_to_card_state(rows[0])
        except MarshallingError as e:
            raise CardOperationError(
                f"Failed to parse card state {card_id} from database.",
                original_exception=e,
            ) from e

    def get_all_card_states(
        self, include_suspended: bool = True, user_id: str = DEFAULT_USER_ID
    ) -> List[CardState]:
        """
        Retrieve all of a user's card states ordered by due time.

        Raises:
            CardOperationError: If the query fails or rows cannot be parsed.
        """
        conn = self.get_connection()
        sql = "SELECT * FROM card_states WHERE user_id = $1"
        if not include_suspended:
            sql += " AND NOT is_suspended"
        sql += " ORDER BY due_at, card_id;"
        try:
            rows = _rows_to_dicts(conn.execute(sql, (user_id,)))
        except duckdb.Error as e:
            logger.error(f"Error fetching all card states: {e}")
            raise CardOperationError(
                f"Failed to get all card states: {e}", original_exception=e
            ) from e
        try:
            return [db_utils.db_row_to_card_state(row) for row in rows]
        except MarshallingError as e:
            raise CardOperationError(
                "Failed to parse card states from database.",
                original_exception=e,
            ) from e

    # --- Review Operations ---

    def _latest_review_ts(self, cursor, user_id: str, card_id: uuid.UUID):
        result = cursor.execute(
            "SELECT max(reviewed_at) FROM review_logs WHERE user_id = $1 AND card_id = $2;",
            (user_id, card_id),
        ).fetchone()
        return result[0] if result else None

    def _execute_review_transaction(
        self, user_id: str, entry: ReviewLogEntry, card: CardState
    ) -> int:
        """
        Atomically append a review log entry and store the card's new state.

        Raises:
            ReviewOperationError: If the entry would break chronological order
                or the transaction fails.
        """
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                latest = self._latest_review_ts(cursor, user_id, entry.card_id)
                new_ts = db_utils.to_db_timestamp(entry.reviewed_at)
                if latest is not None and new_ts < latest:
                    raise ReviewOperationError(
                        f"Review at {entry.reviewed_at.isoformat()} precedes the latest "
                        f"logged review of card {entry.card_id}."
                    )
                cursor.execute(
                    self._INSERT_REVIEW_SQL,
                    db_utils.review_log_to_db_params(user_id, entry),
                )
                result = cursor.fetchone()
                if not result:
                    raise ReviewOperationError(
                        "Failed to retrieve review_id after insertion."
                    )
                cursor.execute(
                    self._UPSERT_CARD_SQL,
                    db_utils.card_state_to_db_params(user_id, card),
                )
                cursor.commit()
                return result[0]
        except Exception as e:
            logger.error(f"Error during review and card update transaction: {e}")
            self._rollback(conn, "review/update")
            if isinstance(e, DatabaseError):
                raise
            raise ReviewOperationError(
                f"Failed to add review and update card: {e}",
                original_exception=e,
            ) from e

    def add_review_and_update_card(
        self,
        entry: ReviewLogEntry,
        card: CardState,
        user_id: str = DEFAULT_USER_ID,
    ) -> CardState:
        """
        Append a review log entry and persist the card's updated state atomically.

        Returns:
            CardState: The card state as stored after the transaction.

        Raises:
            DatabaseConnectionError: If the database is opened in read-only mode.
            ReviewOperationError: If the entry and card disagree, the write fails,
                or the card cannot be read back.
        """
        self._require_writable("add review")
        if entry.card_id != card.card_id:
            raise ReviewOperationError(
                f"Review for card {entry.card_id} cannot update card {card.card_id}."
            )

        review_id = self._execute_review_transaction(user_id, entry, card)
        logger.debug(f"Stored review {review_id} for card {card.card_id} (user {user_id})")

        updated = self.get_card_state(card.card_id, user_id=user_id)
        if updated is None:
            raise ReviewOperationError(
                f"Failed to retrieve card '{card.card_id}' after a successful review update. "
                "This indicates a critical data consistency issue."
            )
        return updated

    def get_review_history(
        self,
        card_id: Optional[uuid.UUID] = None,
        user_id: str = DEFAULT_USER_ID,
    ) -> List[ReviewLogEntry]:
        """
        Retrieve a user's review log entries in chronological order, for one
        card or all of them.

        Raises:
            ReviewOperationError: If the query fails or rows cannot be parsed.
        """
        conn = self.get_connection()
        sql = "SELECT * FROM review_logs WHERE user_id = $1"
        params: Tuple = (user_id,)
        if card_id is not None:
            sql += " AND card_id = $2"
            params = (user_id, card_id)
        sql += " ORDER BY reviewed_at ASC, review_id ASC;"
        try:
            rows = _rows_to_dicts(conn.execute(sql, params))
        except duckdb.Error as e:
            logger.error(f"Error fetching review history (card: {card_id}): {e}")
            raise ReviewOperationError(
                f"Failed to get review history: {e}", original_exception=e
            ) from e
        try:
            return [db_utils.db_row_to_review_log(row) for row in rows]
        except MarshallingError as e:
            raise ReviewOperationError(
                "Failed to parse review history from database.",
                original_exception=e,
            ) from e

    # --- Parameter Operations ---

    def get_parameters(self, user_id: str) -> Optional[AlgorithmParameters]:
        """
        Fetch a user's algorithm parameters, or `None` if none were saved.

        Raises:
            ParameterOperationError: If the query fails or the row is invalid.
        """
        conn = self.get_connection()
        try:
            rows = _rows_to_dicts(
                conn.execute(
                    "SELECT * FROM algorithm_parameters WHERE user_id = $1;",
                    (user_id,),
                )
            )
        except duckdb.Error as e:
            logger.error(f"Error fetching parameters for user {user_id}: {e}")
            raise ParameterOperationError(
                f"Failed to get parameters: {e}", original_exception=e
            ) from e
        if not rows:
            return None
        try:
            return db_utils.db_row_to_parameters(rows[0])
        except MarshallingError as e:
            raise ParameterOperationError(
                f"Failed to parse parameters for user {user_id}.",
                original_exception=e,
            ) from e

    def save_parameters(self, user_id: str, params: AlgorithmParameters) -> None:
        """
        Store a user's algorithm parameters, replacing any previous record.

        Raises:
            DegenerateParametersError: If the weight vector is unusable; the
                previously stored vector is kept.
            ParameterOperationError: If the write fails.
        """
        self._require_writable("save parameters")
        row = db_utils.parameters_to_db_params(user_id, params)
        conn = self.get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.begin()
                cursor.execute(self._UPSERT_PARAMETERS_SQL, row)
                cursor.commit()
        except duckdb.Error as e:
            logger.error(f"Error saving parameters for user {user_id}: {e}")
            self._rollback(conn, "parameter save")
            raise ParameterOperationError(
                f"Failed to save parameters: {e}", original_exception=e
            ) from e
        logger.info(f"Saved algorithm parameters for user {user_id}.")
