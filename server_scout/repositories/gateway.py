"""
Persistence gateway.

The only object the services talk to for storage. Every public method opens
its own session, commits or rolls back, and is retried with exponential
backoff on database errors. When the retries run out the call raises
``PersistenceError``; callers decide whether that is fatal.

Return values are plain Python values and dicts, never ORM instances, so
nothing detached leaks out of a closed session.

Usage:
    gateway = PersistenceGateway(Database(settings.DATABASE_URL))
    server_id = gateway.upsert_server({"ip": "1.2.3.4", "port": 27015, "name": "x"})
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from server_scout.core.database import Database
from server_scout.core.errors import PersistenceError
from server_scout.core.logging import get_logger
from server_scout.repositories.player_repository import PlayerRepository
from server_scout.repositories.prediction_repository import PredictionRepository
from server_scout.repositories.server_repository import ServerRepository

logger = get_logger(__name__)

R = TypeVar("R")


class PersistenceGateway:
    """
    Retrying, session-per-call facade over the repositories.

    Args:
        database: Database owning the engine and session factory
        retry_attempts: Retries after the first failed attempt
        retry_base_delay: Base of the exponential backoff in seconds
            (1.0 gives waits of 1 s, 2 s, 4 s)
    """

    def __init__(
        self,
        database: Database,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self.database = database
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.retry_attempts + 1),
            wait=wait_exponential(multiplier=self.retry_base_delay, max=30),
            retry=retry_if_exception_type(SQLAlchemyError),
            reraise=False,
        )

    def _execute(self, operation: str, work: Callable[[Session], R]) -> R:
        """Run ``work`` in a fresh transaction with retries."""
        try:
            for attempt in self._retrying():
                with attempt:
                    with self.database.session_scope() as session:
                        return work(session)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(
                f"{operation} failed after {self.retry_attempts + 1} attempts: {cause}"
            )
            raise PersistenceError(f"{operation} failed: {cause}") from cause
        raise PersistenceError(f"{operation} did not run")

    # ─────────────────────────────────────────────────────────────────────
    # Servers and snapshots
    # ─────────────────────────────────────────────────────────────────────

    def upsert_server(self, record: Dict[str, Any]) -> int:
        """
        Insert or update a server by (ip, port).

        Returns:
            The server's id
        """
        return self._execute(
            "upsert_server",
            lambda db: ServerRepository(db).upsert(record).id,
        )

    def get_server_id(self, ip: str, port: int) -> Optional[int]:
        def work(db: Session) -> Optional[int]:
            server = ServerRepository(db).find_by_address(ip, port)
            return server.id if server else None

        return self._execute("get_server_id", work)

    def mark_server_seen(self, ip: str, port: int, offline_after: int = 3) -> bool:
        """Record a failed probe; False if the server was never stored."""
        return self._execute(
            "mark_server_seen",
            lambda db: ServerRepository(db).mark_seen(ip, port, offline_after),
        )

    def insert_snapshot(self, server_id: int, snapshot: Dict[str, Any]) -> int:
        return self._execute(
            "insert_snapshot",
            lambda db: ServerRepository(db).add_snapshot(server_id, snapshot).id,
        )

    def purge_snapshots(self, before: datetime) -> int:
        """Delete snapshots older than ``before``; returns the row count."""
        return self._execute(
            "purge_snapshots",
            lambda db: ServerRepository(db).purge_snapshots(before),
        )

    def server_texts(self, limit: Optional[int] = None) -> List[tuple]:
        return self._execute(
            "server_texts",
            lambda db: ServerRepository(db).texts(limit),
        )

    def regional_addresses(self) -> List[str]:
        return self._execute(
            "regional_addresses",
            lambda db: ServerRepository(db).regional_addresses(),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Players
    # ─────────────────────────────────────────────────────────────────────

    def upsert_player(self, profile: Dict[str, Any]) -> int:
        return self._execute(
            "upsert_player",
            lambda db: PlayerRepository(db).upsert(profile).id,
        )

    def player_last_updated(self, steam_id: str) -> Optional[datetime]:
        return self._execute(
            "player_last_updated",
            lambda db: PlayerRepository(db).last_updated(steam_id),
        )

    def find_stale_players(self, before: datetime, limit: int = 1000) -> List[str]:
        return self._execute(
            "find_stale_players",
            lambda db: PlayerRepository(db).find_stale(before, limit),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Predictions and feedback
    # ─────────────────────────────────────────────────────────────────────

    def upsert_prediction(self, server_id: int, kind: str, values: Dict[str, Any]) -> int:
        return self._execute(
            "upsert_prediction",
            lambda db: PredictionRepository(db).upsert(server_id, kind, values).id,
        )

    def predictions_needing_review(
        self,
        kind: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        return self._execute(
            "predictions_needing_review",
            lambda db: PredictionRepository(db).find_needing_review(kind, limit),
        )

    def submit_feedback(
        self,
        prediction_id: int,
        verdict: str,
        reason: Optional[str] = None
    ) -> bool:
        """
        Attach feedback to a prediction exactly once.

        Returns:
            False when the prediction is unknown or already has feedback
        """
        return self._execute(
            "submit_feedback",
            lambda db: PredictionRepository(db).submit_feedback(prediction_id, verdict, reason),
        )

    def feedback_training_set(self, kind: str) -> List[Dict[str, Any]]:
        return self._execute(
            "feedback_training_set",
            lambda db: PredictionRepository(db).training_set(kind),
        )

    def record_training_run(self, run: Dict[str, Any]) -> int:
        return self._execute(
            "record_training_run",
            lambda db: PredictionRepository(db).record_training_run(run).id,
        )
