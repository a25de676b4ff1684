import copy
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from daeli.database.connection import DatabaseManager
from daeli.database.models import RecordIndexEntry, StoredRecord
from daeli.database.store import Mutator, Record, Store
from daeli.errors import StoreFailure
from daeli.models.records import RecordKind

logger = logging.getLogger(__name__)

MAX_UPDATE_ATTEMPTS = 5


class SqlAlchemyStore(Store):
    """Store backed by the ``records`` and ``record_index`` tables.

    Writes within a process are serialized by a lock; writes from other
    processes are caught by the optimistic ``version`` check in ``update``.
    """

    def __init__(self, database_manager: DatabaseManager):
        self.database_manager = database_manager
        self._write_lock = threading.RLock()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.database_manager.get_session()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Store operation failed: {str(e)}")
            raise StoreFailure("Could not reach the database", details=str(e)) from e
        finally:
            session.close()

    def get(self, kind: RecordKind, record_id: str) -> Optional[Record]:
        with self._session() as session:
            row = session.get(StoredRecord, (kind.value, record_id))
            return copy.deepcopy(row.payload) if row is not None else None

    def put(self, kind: RecordKind, record_id: str, record: Record) -> None:
        with self._write_lock, self._session() as session:
            row = session.get(StoredRecord, (kind.value, record_id))
            if row is None:
                session.add(StoredRecord(kind=kind.value, id=record_id, payload=copy.deepcopy(record), version=1))
            else:
                row.payload = copy.deepcopy(record)
                row.version = row.version + 1
            session.commit()

    def create(self, kind: RecordKind, record_id: str, record: Record) -> bool:
        with self._write_lock, self._session() as session:
            if session.get(StoredRecord, (kind.value, record_id)) is not None:
                return False
            session.add(StoredRecord(kind=kind.value, id=record_id, payload=copy.deepcopy(record), version=1))
            try:
                session.commit()
            except IntegrityError:
                # Another process created it first
                session.rollback()
                return False
            return True

    def delete(self, kind: RecordKind, record_id: str) -> bool:
        with self._write_lock, self._session() as session:
            result = session.execute(
                delete(StoredRecord).where(StoredRecord.kind == kind.value, StoredRecord.id == record_id)
            )
            session.commit()
            return result.rowcount > 0

    def update(self, kind: RecordKind, record_id: str, mutate: Mutator) -> Optional[Record]:
        with self._write_lock:
            for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
                with self._session() as session:
                    row = session.get(StoredRecord, (kind.value, record_id))
                    if row is None:
                        return None
                    current = copy.deepcopy(row.payload)
                    version = row.version
                    session.rollback()

                    replacement = mutate(copy.deepcopy(current))
                    if replacement is None:
                        return current

                    result = session.execute(
                        update(StoredRecord)
                        .where(
                            StoredRecord.kind == kind.value,
                            StoredRecord.id == record_id,
                            StoredRecord.version == version,
                        )
                        .values(payload=replacement, version=version + 1, updated_at=func.now())
                    )
                    session.commit()
                    if result.rowcount == 1:
                        return copy.deepcopy(replacement)

                logger.warning(f"Concurrent write on {kind.value}:{record_id}, retrying (attempt {attempt})")

        raise StoreFailure(f"Could not update {kind.value} {record_id}: too many concurrent writes")

    def list_ids(self, kind: RecordKind) -> List[str]:
        with self._session() as session:
            rows = session.execute(
                select(RecordIndexEntry.record_id)
                .where(RecordIndexEntry.kind == kind.value)
                .order_by(RecordIndexEntry.seq)
            )
            return [row[0] for row in rows]

    def append_id(self, kind: RecordKind, record_id: str) -> None:
        with self._write_lock, self._session() as session:
            exists = session.execute(
                select(RecordIndexEntry.seq).where(
                    RecordIndexEntry.kind == kind.value, RecordIndexEntry.record_id == record_id
                )
            ).first()
            if exists:
                return
            session.add(RecordIndexEntry(kind=kind.value, record_id=record_id))
            try:
                session.commit()
            except IntegrityError:
                # Another process appended the same id first
                session.rollback()

    def remove_id(self, kind: RecordKind, record_id: str) -> None:
        with self._write_lock, self._session() as session:
            session.execute(
                delete(RecordIndexEntry).where(
                    RecordIndexEntry.kind == kind.value, RecordIndexEntry.record_id == record_id
                )
            )
            session.commit()

    def close(self) -> None:
        self.database_manager.dispose()
