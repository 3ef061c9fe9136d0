"""
Database engine and unit-of-work scopes.

Every ``Database.session()`` block is one atomic step: it commits when the
block exits cleanly and rolls back when it raises. Multi-step workflows call
several blocks in sequence, so a failure in a later step leaves earlier
steps committed.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from freightcore.core.config import get_config
from freightcore.data.models import Base

logger = structlog.get_logger(__name__)


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


class Database:
    """SQLAlchemy engine plus a session factory."""

    def __init__(self, url: Optional[str] = None, echo: bool = False) -> None:
        """
        Initialize the database.

        Args:
            url: SQLAlchemy URL. Defaults to DATABASE_URL from the environment.
            echo: Log emitted SQL
        """
        self.url = url or get_config().env.database_url

        if _is_memory_sqlite(self.url):
            # One shared connection, otherwise each session sees an empty database
            self.engine: Engine = create_engine(
                self.url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(self.url, echo=echo, pool_pre_ping=True)

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("database_schema_created", url=self.engine.url.render_as_string())

    def drop_all(self) -> None:
        """Drop all tables."""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Open one atomic unit of work.

        Yields:
            Session that is committed on success and rolled back on error
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
