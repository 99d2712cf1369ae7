"""
Database setup and session management.

This module handles:
- SQLAlchemy engine creation
- Session factory and transactional scope
- Table creation in dependency order
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, inspect, pool, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.config import Settings
from storage.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns one engine and one session factory.

    Usage:
        db = DatabaseManager(settings)
        db.create_tables()
        with db.session_scope() as session:
            # Do database operations, committed on exit
            pass
    """

    # Table creation order (dependencies first)
    TABLE_CREATION_ORDER = [
        "groups",
        "roles",
        "capabilities",
        "users",
        "role_capabilities",
        "user_roles",
        "documents",
        "workflow_transitions",
        "navigation_resources",
    ]

    def __init__(self, settings: Optional[Settings] = None, url: Optional[str] = None):
        settings = settings or Settings()
        self.url = url or settings.database_url
        self.engine = self._create_engine(self.url, settings)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            expire_on_commit=False
        )
        logger.info(f"Database configured: {self.engine.dialect.name}")

    @staticmethod
    def _create_engine(url: str, settings: Settings):
        if url.startswith("sqlite"):
            kwargs = {
                "echo": settings.db_echo,
                "connect_args": {"check_same_thread": False},
            }
            # An in-memory database only lives as long as its single connection
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                kwargs["poolclass"] = pool.StaticPool
            return create_engine(url, **kwargs)

        return create_engine(
            url,
            poolclass=pool.QueuePool,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_recycle=3600,
            pool_timeout=30,
            echo=settings.db_echo,
        )

    def create_tables(self):
        """Create all missing tables (idempotent)"""
        inspector = inspect(self.engine)
        existing_tables = set(inspector.get_table_names())

        for table_name in self.TABLE_CREATION_ORDER:
            table = Base.metadata.tables[table_name]
            if table_name not in existing_tables:
                table.create(self.engine, checkfirst=True)
                existing_tables.add(table_name)
                logger.info(f"Created table: {table_name}")
            else:
                logger.debug(f"Table already exists: {table_name}")

    def drop_tables(self):
        """Drop all tables. USE WITH CAUTION (for testing only)."""
        logger.warning("DROPPING ALL TABLES - THIS IS DESTRUCTIVE")
        Base.metadata.drop_all(bind=self.engine)

    def new_session(self) -> Session:
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Transactional scope: commit on success, roll back on any error.
        Partial writes never survive an exception raised inside the block.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session(self) -> Generator[Session, None, None]:
        """
        FastAPI dependency for getting a database session.

        Yields:
            SQLAlchemy Session
        """
        session = self.SessionLocal()
        try:
            yield session
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Commit failed: {e}")
                raise
        except Exception as e:
            session.rollback()
            logger.debug(f"Session rolled back: {type(e).__name__}")
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        """Check if database is reachable"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def dispose(self):
        self.engine.dispose()
