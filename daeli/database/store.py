"""Document store contract used by the planner core.

Records are plain JSON-compatible dicts keyed by ``(kind, id)``. Each kind
also has an ordered id index kept separately from the records; creating a
record appends its id, deleting it removes the id.
"""
import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from daeli.models.records import RecordKind

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Mutator = Callable[[Record], Optional[Record]]


class Store:
    """Persistence collaborator for ideas, suggestions and events"""

    def get(self, kind: RecordKind, record_id: str) -> Optional[Record]:
        raise NotImplementedError

    def put(self, kind: RecordKind, record_id: str, record: Record) -> None:
        """Full overwrite of the record"""
        raise NotImplementedError

    def create(self, kind: RecordKind, record_id: str, record: Record) -> bool:
        """Write the record only if no record has this id; True if it was written"""
        raise NotImplementedError

    def delete(self, kind: RecordKind, record_id: str) -> bool:
        raise NotImplementedError

    def update(self, kind: RecordKind, record_id: str, mutate: Mutator) -> Optional[Record]:
        """Atomically read, mutate and write back a single record.

        ``mutate`` receives a private copy of the current record and returns
        the replacement, or ``None`` to leave the record untouched. Exceptions
        raised by ``mutate`` abort the update and propagate. Returns the
        record as stored after the call, or ``None`` if it does not exist.
        """
        raise NotImplementedError

    def list_ids(self, kind: RecordKind) -> List[str]:
        raise NotImplementedError

    def append_id(self, kind: RecordKind, record_id: str) -> None:
        """Add an id to the end of the kind's index; no-op if already present"""
        raise NotImplementedError

    def remove_id(self, kind: RecordKind, record_id: str) -> None:
        raise NotImplementedError

    def list_records(self, kind: RecordKind) -> List[Record]:
        """Records in index order, skipping ids whose record has gone"""
        records = []
        for record_id in self.list_ids(kind):
            record = self.get(kind, record_id)
            if record is None:
                logger.warning(f"Index entry {kind.value}:{record_id} has no record")
                continue
            records.append(record)
        return records

    def close(self) -> None:
        pass


class MemoryStore(Store):
    """In-process store guarded by a single lock"""

    def __init__(self):
        self._records: Dict[RecordKind, Dict[str, Record]] = {kind: {} for kind in RecordKind}
        self._index: Dict[RecordKind, List[str]] = {kind: [] for kind in RecordKind}
        self._lock = threading.RLock()

    def get(self, kind: RecordKind, record_id: str) -> Optional[Record]:
        with self._lock:
            record = self._records[kind].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def put(self, kind: RecordKind, record_id: str, record: Record) -> None:
        with self._lock:
            self._records[kind][record_id] = copy.deepcopy(record)

    def create(self, kind: RecordKind, record_id: str, record: Record) -> bool:
        with self._lock:
            if record_id in self._records[kind]:
                return False
            self._records[kind][record_id] = copy.deepcopy(record)
            return True

    def delete(self, kind: RecordKind, record_id: str) -> bool:
        with self._lock:
            return self._records[kind].pop(record_id, None) is not None

    def update(self, kind: RecordKind, record_id: str, mutate: Mutator) -> Optional[Record]:
        with self._lock:
            current = self._records[kind].get(record_id)
            if current is None:
                return None
            replacement = mutate(copy.deepcopy(current))
            if replacement is not None:
                self._records[kind][record_id] = copy.deepcopy(replacement)
            return copy.deepcopy(self._records[kind][record_id])

    def list_ids(self, kind: RecordKind) -> List[str]:
        with self._lock:
            return list(self._index[kind])

    def append_id(self, kind: RecordKind, record_id: str) -> None:
        with self._lock:
            if record_id not in self._index[kind]:
                self._index[kind].append(record_id)

    def remove_id(self, kind: RecordKind, record_id: str) -> None:
        with self._lock:
            self._index[kind] = [i for i in self._index[kind] if i != record_id]
