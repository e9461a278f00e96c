"""Persistence collaborators.

The engine only needs a key/record store with three operations per named
collection. Backends raise on failure; the Entity Store decides what a
failure means (best-effort vs strict).

Backends:
- InMemoryStorage: dict-backed, for tests and throwaway runs
- JSONFileStorage: one <collection>.json file per collection
- SQLStorage: SQLAlchemy table holding one JSON payload per collection
- RetryingStorage: tenacity retry wrapper around any backend
"""
import json
import logging
import os
import tempfile
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Type

from sqlalchemy import JSON, Column, DateTime, String, create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

CLIENTS = "clients"
TIME_SLOTS = "time_slots"
APPOINTMENTS = "appointments"
BUSINESS_INFO = "business_info"

COLLECTIONS = (CLIENTS, TIME_SLOTS, APPOINTMENTS, BUSINESS_INFO)

Records = List[Dict[str, Any]]


class StorageBackend(Protocol):
    """Abstract key/record store."""

    def load_collection(self, name: str) -> Optional[Records]:
        """Return the stored records, or None when the collection is absent."""
        ...

    def save_collection(self, name: str, records: Records) -> None:
        """Replace the whole collection. Raises on failure."""
        ...

    def delete_collection(self, name: str) -> None:
        """Drop the collection. Missing collections are not an error."""
        ...


class InMemoryStorage:
    """Dict-backed storage. Records are deep-copied through JSON."""

    def __init__(self, initial: Optional[Dict[str, Records]] = None):
        self.collections: Dict[str, str] = {}
        for name, records in (initial or {}).items():
            self.save_collection(name, records)

    def load_collection(self, name: str) -> Optional[Records]:
        if name not in self.collections:
            return None
        return json.loads(self.collections[name])

    def save_collection(self, name: str, records: Records) -> None:
        self.collections[name] = json.dumps(records)

    def delete_collection(self, name: str) -> None:
        self.collections.pop(name, None)


class JSONFileStorage:
    """Stores each collection as a JSON array in its own file."""

    def __init__(self, data_dir: str):
        """
        Initialize file storage.

        Args:
            data_dir: Directory for collection files (created if missing)
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, name: str) -> Path:
        # Sanitize name to prevent path traversal
        safe_name = name.replace("/", "_").replace("\\", "_").replace("..", "_")
        return self.data_dir / f"{safe_name}.json"

    def load_collection(self, name: str) -> Optional[Records]:
        path = self._get_path(name)

        if not path.exists():
            return None

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, list):
            raise ValueError(f"Collection file {path} does not hold a JSON array")
        return data

    def save_collection(self, name: str, records: Records) -> None:
        path = self._get_path(name)

        # Write to a sibling temp file then swap, so readers never see half a file
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.stem}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete_collection(self, name: str) -> None:
        path = self._get_path(name)
        if path.exists():
            path.unlink()


Base = declarative_base()


def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class StoredCollection(Base):
    """One row per collection, records kept as a JSON array."""
    __tablename__ = "booking_collections"

    name = Column(String(64), primary_key=True)
    payload = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self):
        return f"<StoredCollection(name={self.name}, records={len(self.payload or [])})>"


class SQLStorage:
    """
    SQLAlchemy-backed storage.

    Pattern: Thin wrapper around a session factory, one commit per write.
    Works with any SQLAlchemy URL (sqlite:///booking.db, postgresql://...).
    """

    def __init__(self, database_url: str):
        """Initialize with database connection and create the table."""
        self.engine = create_engine(database_url, pool_pre_ping=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def load_collection(self, name: str) -> Optional[Records]:
        with self.SessionLocal() as db:
            row = db.get(StoredCollection, name)
            if row is None:
                return None
            return list(row.payload or [])

    def save_collection(self, name: str, records: Records) -> None:
        with self.SessionLocal() as db:
            row = db.get(StoredCollection, name)
            if row is None:
                db.add(StoredCollection(name=name, payload=records, updated_at=utc_now()))
            else:
                row.payload = records
                row.updated_at = utc_now()
            db.commit()

    def delete_collection(self, name: str) -> None:
        with self.SessionLocal() as db:
            row = db.get(StoredCollection, name)
            if row is not None:
                db.delete(row)
                db.commit()


TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (OSError, OperationalError)


class RetryingStorage:
    """
    Retries writes on transient errors with exponential backoff.

    Loads are not retried: a failed load already degrades to an empty
    collection in the Entity Store.
    """

    def __init__(
        self,
        backend: StorageBackend,
        max_attempts: int = 3,
        wait=None,
        retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    ):
        self.backend = backend
        self.max_attempts = max_attempts
        self.wait = wait if wait is not None else wait_exponential(multiplier=0.2, min=0.2, max=2)
        self.retry_on = retry_on

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def load_collection(self, name: str) -> Optional[Records]:
        return self.backend.load_collection(name)

    def save_collection(self, name: str, records: Records) -> None:
        for attempt in self._retrying():
            with attempt:
                self.backend.save_collection(name, records)

    def delete_collection(self, name: str) -> None:
        for attempt in self._retrying():
            with attempt:
                self.backend.delete_collection(name)


def storage_from_url(url: str) -> StorageBackend:
    """
    Build a storage backend from a URL.

    Examples:
        memory://                 -> InMemoryStorage
        json://data               -> JSONFileStorage("data")
        sqlite:///booking.db      -> SQLStorage (wrapped in RetryingStorage)

    Args:
        url: Storage URL

    Returns:
        StorageBackend instance
    """
    if url.startswith("memory://"):
        return InMemoryStorage()
    if url.startswith("json://"):
        return RetryingStorage(JSONFileStorage(url[len("json://"):] or "data"))
    return RetryingStorage(SQLStorage(url))
