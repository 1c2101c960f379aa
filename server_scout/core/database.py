"""
Database engine and session management.

One ``Database`` instance is created by the process entry point and handed to
the persistence gateway; nothing here is a module-level global.
"""
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from server_scout.core.errors import PersistenceError
from server_scout.core.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Owns the SQLAlchemy engine and session factory.

    The pool is capped at ``pool_size`` connections with no overflow and no
    waiting: asking for an eleventh concurrent connection raises instead of
    queueing.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        engine: Optional[Engine] = None,
    ):
        self.url = url
        if engine is None:
            engine = self._create_engine(url, pool_size)
        self.engine = engine

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @staticmethod
    def _create_engine(url: str, pool_size: int) -> Engine:
        echo = os.getenv("SQL_ECHO", "false").lower() == "true"

        if url.startswith("sqlite"):
            # Make sure the data directory exists for file databases
            path = url.split("///", 1)[-1]
            if path and path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            return create_engine(
                url,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=0,
                connect_args={"check_same_thread": False},
                echo=echo,
            )

        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=0,  # pool exhaustion is an error, not a wait
            pool_pre_ping=True,
            echo=echo,
        )

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope: commit on success, rollback on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_db(self) -> None:
        """
        Create missing tables.

        Raises:
            PersistenceError: if the database is unreachable; callers at
                process startup treat this as fatal.
        """
        from server_scout.models import Base

        try:
            Base.metadata.create_all(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            logger.error(f"Database initialization failed: {e}")
            raise PersistenceError(f"Database initialization failed: {e}") from e
        logger.info("Database tables ready")

    def dispose(self) -> None:
        self.engine.dispose()
