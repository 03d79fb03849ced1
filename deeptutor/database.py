"""
Durable storage for the workspace store snapshot.
Handles the SQLAlchemy engine, the key/value table and the storage port.
"""
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import DateTime, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
import logging

from deeptutor.config import settings

logger = logging.getLogger(__name__)


# Base class for ORM models
class Base(DeclarativeBase):
    pass


class StorageEntry(Base):
    """One persisted snapshot, addressed by storage key."""

    __tablename__ = "storage_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class StoragePort(Protocol):
    """Read-at-startup / write-after-mutation contract used by the store."""

    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, value: str) -> None: ...


class InMemoryStorage:
    """Dict-backed storage for tests and ephemeral runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.entries: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def read(self, key: str) -> Optional[str]:
        return self.entries.get(key)

    def write(self, key: str, value: str) -> None:
        self.entries[key] = value
        self.writes += 1


class SQLAlchemyStorage:
    """
    Storage port backed by a relational table.

    Writes are synchronous so that a snapshot is committed before the
    mutation that produced it returns.
    """

    def __init__(self, url: str = settings.STORAGE_URL) -> None:
        self.url = url
        self.engine = create_engine(
            url,
            echo=False,  # Set to True for SQL query logging
            future=True,
            pool_pre_ping=True,
        )
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def init(self) -> None:
        """Create the storage table if it does not exist."""
        Base.metadata.create_all(self.engine)
        logger.info("Storage table created/verified (%s)", self.engine.url.render_as_string())

    def read(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            entry = session.get(StorageEntry, key)
            return entry.value if entry else None

    def write(self, key: str, value: str) -> None:
        with self._session_factory() as session:
            try:
                entry = session.get(StorageEntry, key)
                if entry is None:
                    session.add(StorageEntry(key=key, value=value))
                else:
                    entry.value = value
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(f"Storage write error: {e}")
                raise

    def ping(self) -> bool:
        """Return True when the storage backend answers a trivial read."""
        try:
            self.read("__ping__")
            return True
        except Exception as exc:
            logger.error("Storage ping failed: %s", exc)
            return False

    def close(self) -> None:
        """Close database connections gracefully."""
        self.engine.dispose()
        logger.info("Storage connections closed")
