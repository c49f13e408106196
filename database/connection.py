"""
Database connection and session management.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from contextlib import contextmanager
from typing import Generator

from database.models import Base
from core.logger import logger


class Database:
    """Database connection manager."""

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 10,
        statement_timeout_ms: int = 0
    ):
        """
        Initialize database connection.

        Args:
            database_url: PostgreSQL connection URL (sqlite:// accepted for local runs and tests)
            pool_size: Number of connections to maintain
            max_overflow: Maximum overflow connections
            pool_timeout: Seconds to wait for a pooled connection before failing
            statement_timeout_ms: PostgreSQL statement_timeout per connection (0 = none)
        """
        self.database_url = database_url
        if database_url.startswith("sqlite"):
            self.connect_args = {"check_same_thread": False}
            # One shared connection so in-memory databases survive across sessions
            self.engine = create_engine(
                database_url,
                connect_args=self.connect_args,
                poolclass=StaticPool,
                echo=False
            )
        else:
            self.connect_args = {}
            if statement_timeout_ms > 0:
                # Enforced server side on every pooled connection
                self.connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"
            self.engine = create_engine(
                database_url,
                connect_args=self.connect_args,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,  # Verify connections before using
                echo=False  # Set to True for SQL query logging
            )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info(f"Database engine initialized: {database_url.split('@')[1] if '@' in database_url else 'local'}")

    def create_tables(self):
        """Create all database tables."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def drop_tables(self):
        """Drop all database tables (use with caution!)."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("All database tables dropped")

    def dispose(self):
        """Release pooled connections on shutdown."""
        self.engine.dispose()
        logger.info("Database engine disposed")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get database session context manager.

        Usage:
            with db.get_session() as session:
                # Use session
                pass
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
