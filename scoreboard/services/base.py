"""
Base service class for the scoreboard engine.

Provides async database session management and translates driver failures
into StorageError at the session boundary.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Callable, Optional

import pytz
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.utils.leaderboard_exceptions import StorageError

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


class BaseService:
    """Base class for all services with async database session management."""

    def __init__(self, session_factory, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize base service with session factory.

        Args:
            session_factory: Async session factory from Database class
            clock: Callable returning the current aware datetime
        """
        self.session_factory = session_factory
        self.clock = clock or utc_now

    @asynccontextmanager
    async def get_session(self, operation: str = "database operation") -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async database operations."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(operation, str(e)) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    def _dialect_insert(self, session: AsyncSession, model):
        """Dialect INSERT construct, which is what exposes ON CONFLICT for conditional upserts."""
        dialect = session.bind.dialect.name

        if dialect == 'postgresql':
            return postgresql.insert(model)
        elif dialect == 'sqlite':
            return sqlite.insert(model)

        raise StorageError("conditional upsert", f"dialect '{dialect}' is not supported")
