"""Entity Store: in-memory snapshot of every collection, written through to storage.

Collections are tuples of frozen records, so a snapshot handed to a caller can
never be mutated behind the store's back. Every write goes through commit():

    validate (caller) -> apply in memory -> durable write      (best-effort)
    validate (caller) -> durable write -> apply in memory      (strict)

Best-effort mode keeps the in-memory change when storage fails and reports it
on the WriteResult. Strict mode leaves memory untouched and raises
PersistenceFailure.
"""
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Type

from pydantic import ValidationError

from booking_engine.errors import PersistenceFailure
from booking_engine.logging_config import get_logger
from booking_engine.models import Appointment, BusinessInfo, Client, Record, TimeSlot
from booking_engine.storage import (
    APPOINTMENTS,
    BUSINESS_INFO,
    CLIENTS,
    COLLECTIONS,
    TIME_SLOTS,
    StorageBackend,
)

logger = get_logger(__name__)

RECORD_TYPES: Dict[str, Type[Record]] = {
    CLIENTS: Client,
    TIME_SLOTS: TimeSlot,
    APPOINTMENTS: Appointment,
    BUSINESS_INFO: BusinessInfo,
}

Snapshot = Dict[str, Tuple[Record, ...]]


class WriteStatus(str, Enum):
    """Outcome of an applied write."""
    DURABLE = "durable"          # applied and acknowledged by storage
    NOT_DURABLE = "not_durable"  # applied in memory, storage write failed


@dataclass(frozen=True)
class WriteResult:
    """What a mutation produced: the new snapshot plus durability outcome."""
    status: WriteStatus
    snapshot: Snapshot
    value: Any = None
    failures: Tuple[PersistenceFailure, ...] = field(default_factory=tuple)

    @property
    def durable(self) -> bool:
        return self.status == WriteStatus.DURABLE


class EntityStore:
    """
    Holds clients, time slots, appointments and the business profile.

    Pure data: no scheduling rules live here. The RLock is shared with the
    components that implement check-then-write sequences.
    """

    def __init__(self, storage: StorageBackend, strict: bool = False):
        """
        Initialize an empty store.

        Args:
            storage: Persistence collaborator
            strict: Reject (and roll back) writes storage did not acknowledge
        """
        self.storage = storage
        self.strict = strict
        self.lock = threading.RLock()
        self._collections: Snapshot = {name: () for name in COLLECTIONS}

    # ------------------------------------------------------------------ loading

    def initialize(self) -> Snapshot:
        """
        Load every collection from storage.

        Missing collections and load errors both yield an empty collection.
        Records that no longer validate are skipped.

        Returns:
            The loaded snapshot
        """
        loaded: Snapshot = {}
        for name in COLLECTIONS:
            try:
                raw = self.storage.load_collection(name)
            except Exception as e:
                logger.warning("collection_load_failed", collection=name, error=str(e))
                raw = None
            loaded[name] = self._parse(name, raw or [])

        with self.lock:
            self._collections = loaded

        logger.info(
            "store_initialized",
            **{name: len(records) for name, records in loaded.items()}
        )
        return self.snapshot()

    @staticmethod
    def _parse(name: str, raw: Iterable[Dict[str, Any]]) -> Tuple[Record, ...]:
        record_type = RECORD_TYPES[name]
        records = []
        for item in raw:
            try:
                records.append(record_type.model_validate(item))
            except ValidationError as e:
                logger.warning("record_skipped", collection=name, error=str(e))
        return tuple(records)

    # -------------------------------------------------------------------- reads

    def snapshot(self) -> Snapshot:
        with self.lock:
            return dict(self._collections)

    def all(self, name: str) -> Tuple[Record, ...]:
        return self._collections[name]

    def get(self, name: str, record_id: str) -> Optional[Record]:
        return next((r for r in self._collections[name] if r.id == record_id), None)

    @property
    def clients(self) -> Tuple[Client, ...]:
        return self._collections[CLIENTS]

    @property
    def time_slots(self) -> Tuple[TimeSlot, ...]:
        return self._collections[TIME_SLOTS]

    @property
    def appointments(self) -> Tuple[Appointment, ...]:
        return self._collections[APPOINTMENTS]

    @property
    def business_info(self) -> Optional[BusinessInfo]:
        records = self._collections[BUSINESS_INFO]
        return records[0] if records else None

    # ------------------------------------------------------------------- writes

    def insert(self, name: str, record: Record) -> WriteResult:
        with self.lock:
            if self.get(name, record.id) is not None:
                raise ValueError(f"{name} already holds a record with id '{record.id}'")
            return self.commit({name: self._collections[name] + (record,)}, value=record)

    def update(self, name: str, record: Record) -> WriteResult:
        """Replace the record sharing record.id. Raises KeyError if absent."""
        with self.lock:
            current = self._collections[name]
            if not any(r.id == record.id for r in current):
                raise KeyError(record.id)
            updated = tuple(record if r.id == record.id else r for r in current)
            return self.commit({name: updated}, value=record)

    def remove(self, name: str, record_id: str) -> WriteResult:
        """Drop the record with record_id. Raises KeyError if absent."""
        with self.lock:
            removed = self.get(name, record_id)
            if removed is None:
                raise KeyError(record_id)
            remaining = tuple(r for r in self._collections[name] if r.id != record_id)
            return self.commit({name: remaining}, value=removed)

    def replace_business_info(self, info: BusinessInfo) -> WriteResult:
        return self.commit({BUSINESS_INFO: (info,)}, value=info)

    def commit(self, changes: Mapping[str, Tuple[Record, ...]], value: Any = None) -> WriteResult:
        """
        Apply new collection contents as one unit.

        Args:
            changes: {collection name: full new tuple of records}
            value: Record(s) the caller wants echoed on the result

        Returns:
            WriteResult with the post-write snapshot

        Raises:
            PersistenceFailure: strict mode only, memory left unchanged
        """
        with self.lock:
            if self.strict:
                self._persist_strict(changes)
                self._collections.update(changes)
                return WriteResult(WriteStatus.DURABLE, self.snapshot(), value)

            self._collections.update(changes)
            failures = self._persist_best_effort(changes)
            status = WriteStatus.NOT_DURABLE if failures else WriteStatus.DURABLE
            return WriteResult(status, self.snapshot(), value, failures)

    def reset(self) -> WriteResult:
        """
        Delete every collection from storage and empty the store.

        Raises:
            PersistenceFailure: strict mode only; collections already deleted
                are saved back and memory is left unchanged
        """
        with self.lock:
            failures = []
            deleted = []
            for name in COLLECTIONS:
                try:
                    self.storage.delete_collection(name)
                except Exception as e:
                    failure = PersistenceFailure(name, str(e), e)
                    if self.strict:
                        logger.error("strict_reset_rejected", collection=name, error=str(e))
                        self._restore(deleted)
                        raise failure from e
                    logger.warning("collection_delete_failed", collection=name, error=str(e))
                    failures.append(failure)
                    continue
                deleted.append(name)
            self._collections = {name: () for name in COLLECTIONS}
            status = WriteStatus.NOT_DURABLE if failures else WriteStatus.DURABLE
            return WriteResult(status, self.snapshot(), None, tuple(failures))

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def _dump(records: Tuple[Record, ...]):
        return [r.to_record() for r in records]

    def _persist_strict(self, changes: Mapping[str, Tuple[Record, ...]]):
        written = []
        for name, records in changes.items():
            try:
                self.storage.save_collection(name, self._dump(records))
            except Exception as e:
                logger.error("strict_write_rejected", collection=name, error=str(e))
                self._restore(written)
                raise PersistenceFailure(name, str(e), e) from e
            written.append(name)

    def _restore(self, names):
        """Put already-written collections back to the in-memory (old) contents."""
        for name in names:
            try:
                self.storage.save_collection(name, self._dump(self._collections[name]))
            except Exception as e:
                logger.error("rollback_write_failed", collection=name, error=str(e))

    def _persist_best_effort(self, changes) -> Tuple[PersistenceFailure, ...]:
        failures = []
        for name, records in changes.items():
            try:
                self.storage.save_collection(name, self._dump(records))
            except Exception as e:
                logger.warning("durable_write_failed", collection=name, error=str(e))
                failures.append(PersistenceFailure(name, str(e), e))
        return tuple(failures)
