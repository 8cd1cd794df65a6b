# app/core/db.py - SQLAlchemy engine and sessions for the pupil snapshot store
from sqlalchemy import create_engine, text, event, inspect
from sqlalchemy.orm import sessionmaker
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool, QueuePool
from typing import Optional
import logging
import time
import threading

from app.core.config import settings

logger = logging.getLogger(__name__)

SLOW_QUERY_SECONDS = 0.1


class DatabaseManager:
    """Lazily built engine + session factory shared by the snapshot repository"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def initialize(self):
        # Double-checked so concurrent first requests build a single engine
        if self.engine is not None:
            return

        with self._lock:
            if self.engine is not None:
                return

            try:
                engine = self._create_engine()
            except Exception as e:
                logger.error(f"Failed to create engine for snapshot store: {e}")
                raise

            self._watch_queries(engine)
            self.SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
            self.engine = engine
            logger.info(f"Snapshot store ready ({'sqlite' if self.is_sqlite else 'postgresql'})")

    def _create_engine(self) -> Engine:
        if self.is_sqlite:
            # One shared connection, so in-memory databases survive across sessions
            return create_engine(
                self.database_url,
                echo=settings.DATABASE_ECHO,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False, "timeout": 30},
            )

        return create_engine(
            self.database_url,
            echo=settings.DATABASE_ECHO,
            poolclass=QueuePool,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            pool_recycle=settings.DATABASE_POOL_RECYCLE,
            pool_pre_ping=True,
            connect_args={"application_name": f"school_fee_engine_{settings.ENV}"},
        )

    def _watch_queries(self, engine: Engine):
        if self.is_sqlite:
            @event.listens_for(engine, "connect")
            def enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        if not settings.is_development:
            return

        @event.listens_for(engine, "before_cursor_execute")
        def start_timer(conn, cursor, statement, parameters, context, executemany):
            context._query_start_time = time.perf_counter()

        @event.listens_for(engine, "after_cursor_execute")
        def log_slow_query(conn, cursor, statement, parameters, context, executemany):
            elapsed = time.perf_counter() - context._query_start_time
            if elapsed > SLOW_QUERY_SECONDS:
                logger.warning(f"Slow snapshot query ({elapsed:.3f}s): {statement[:100]}...")

    def health_check(self) -> dict:
        try:
            self.initialize()
            started = time.perf_counter()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Snapshot store health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}

        return {
            "status": "healthy",
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "database": self.database_url.rsplit("@", 1)[-1] if "@" in self.database_url else "local",
        }

    def has_table(self, table_name: str) -> bool:
        self.initialize()
        return inspect(self.engine).has_table(table_name)

    def close(self):
        if self.engine is None:
            return
        self.engine.dispose()
        logger.info("Snapshot store connections closed")


db_manager = DatabaseManager()


def get_engine() -> Engine:
    db_manager.initialize()
    return db_manager.engine


def get_session_maker() -> sessionmaker:
    """Session factory handed to PupilSnapshotRepository"""
    db_manager.initialize()
    return db_manager.SessionLocal


def health_check() -> dict:
    return db_manager.health_check()


__all__ = [
    "DatabaseManager",
    "db_manager",
    "get_engine",
    "get_session_maker",
    "health_check",
]
