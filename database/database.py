"""Engine and session lifecycle for the ledger database."""
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
import logging

logger = logging.getLogger(__name__)

# Seconds a writer waits on a locked SQLite file before giving up
SQLITE_BUSY_TIMEOUT = 30


class Base(DeclarativeBase):
    """Base class for all ledger models."""
    pass


def _enable_sqlite_constraints(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the async engine shared by every ledger transaction."""

    def __init__(self, database_url: str, echo: bool = False):
        """Initialize database connection.

        SQLite files are opened with foreign keys enforced and a busy timeout,
        so payout runs from separate processes queue on the file lock instead
        of failing immediately.

        Args:
            database_url (str): Async SQLAlchemy URL, e.g. sqlite+aiosqlite:///pot.db
            echo (bool): Log every statement
        """
        self.url = database_url
        self.is_sqlite = make_url(database_url).get_backend_name() == "sqlite"

        connect_args = {"timeout": SQLITE_BUSY_TIMEOUT} if self.is_sqlite else {}
        self.engine = create_async_engine(database_url, echo=echo, connect_args=connect_args)
        if self.is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_constraints)

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self.logger = logging.getLogger(__name__)

    @property
    def session(self):
        """Session factory; each ledger transaction opens its own session."""
        return self.async_session

    async def create_all(self):
        """Create the ledger tables and indexes if they do not exist."""
        try:
            from .models import (  # noqa: F401
                Cycle,
                CycleCondition,
                Participant,
                PayoutOutcome,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self.logger.info("Ledger tables ready")
        except Exception as e:
            self.logger.error(f"Error creating ledger tables: {e}")
            raise

    async def close(self):
        """Dispose of the connection pool."""
        await self.engine.dispose()
