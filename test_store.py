import threading

import pytest
from sqlalchemy import text

from daeli.database.models import StoredRecord
from daeli.database.store import MemoryStore
from daeli.errors import ConflictError, StoreFailure
from daeli.models.records import RecordKind


def test_put_get_delete(store):
    store.put(RecordKind.IDEA, 'i1', {'id': 'i1', 'title': 'Picnic'})
    assert store.get(RecordKind.IDEA, 'i1') == {'id': 'i1', 'title': 'Picnic'}
    assert store.get(RecordKind.SUGGESTION, 'i1') is None

    store.put(RecordKind.IDEA, 'i1', {'id': 'i1', 'title': 'Beach'})
    assert store.get(RecordKind.IDEA, 'i1')['title'] == 'Beach'

    assert store.delete(RecordKind.IDEA, 'i1') is True
    assert store.get(RecordKind.IDEA, 'i1') is None
    assert store.delete(RecordKind.IDEA, 'i1') is False


def test_returned_records_are_copies(store):
    store.put(RecordKind.SUGGESTION, 's1', {'id': 's1', 'votes': {}})
    record = store.get(RecordKind.SUGGESTION, 's1')
    record['votes']['A'] = 'up'
    assert store.get(RecordKind.SUGGESTION, 's1')['votes'] == {}


def test_index_keeps_insertion_order(store):
    for record_id in ['c', 'a', 'b']:
        store.append_id(RecordKind.IDEA, record_id)
    store.append_id(RecordKind.IDEA, 'a')
    assert store.list_ids(RecordKind.IDEA) == ['c', 'a', 'b']
    assert store.list_ids(RecordKind.EVENT) == []

    store.remove_id(RecordKind.IDEA, 'a')
    assert store.list_ids(RecordKind.IDEA) == ['c', 'b']


def test_list_records_skips_missing(store):
    store.put(RecordKind.IDEA, 'a', {'id': 'a'})
    store.append_id(RecordKind.IDEA, 'a')
    store.append_id(RecordKind.IDEA, 'ghost')
    assert store.list_records(RecordKind.IDEA) == [{'id': 'a'}]


def test_update_applies_mutation(store):
    store.put(RecordKind.SUGGESTION, 's1', {'id': 's1', 'status': 'pending'})

    def flip(record):
        record['status'] = 'accepted'
        return record

    assert store.update(RecordKind.SUGGESTION, 's1', flip)['status'] == 'accepted'
    assert store.get(RecordKind.SUGGESTION, 's1')['status'] == 'accepted'


def test_update_returning_none_leaves_record(store):
    store.put(RecordKind.SUGGESTION, 's1', {'id': 's1', 'status': 'accepted'})
    assert store.update(RecordKind.SUGGESTION, 's1', lambda r: None) == {'id': 's1', 'status': 'accepted'}


def test_update_missing_record(store):
    assert store.update(RecordKind.SUGGESTION, 'nope', lambda r: r) is None


def test_update_aborts_when_mutator_raises(store):
    store.put(RecordKind.SUGGESTION, 's1', {'id': 's1', 'status': 'cancelled'})

    def refuse(record):
        record['status'] = 'accepted'
        raise ConflictError("cancelled")

    with pytest.raises(ConflictError):
        store.update(RecordKind.SUGGESTION, 's1', refuse)
    assert store.get(RecordKind.SUGGESTION, 's1')['status'] == 'cancelled'


def test_concurrent_merges_keep_every_key(store):
    store.put(RecordKind.SUGGESTION, 's1', {'id': 's1', 'votes': {}})
    partners = [f'P{i}' for i in range(8)]
    barrier = threading.Barrier(len(partners))

    def vote(partner):
        barrier.wait()

        def merge(record):
            record['votes'][partner] = 'up'
            return record

        store.update(RecordKind.SUGGESTION, 's1', merge)

    threads = [threading.Thread(target=vote, args=(p,)) for p in partners]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(store.get(RecordKind.SUGGESTION, 's1')['votes']) == partners


def test_sql_store_persists_across_managers(db_path):
    from daeli.database.connection import DatabaseManager
    from daeli.database.sql_store import SqlAlchemyStore

    first = SqlAlchemyStore(DatabaseManager(f'sqlite:///{db_path}'))
    first.put(RecordKind.EVENT, 'e1', {'id': 'e1', 'suggestionId': 's1'})
    first.append_id(RecordKind.EVENT, 'e1')
    first.close()

    second = SqlAlchemyStore(DatabaseManager(f'sqlite:///{db_path}'))
    try:
        assert second.get(RecordKind.EVENT, 'e1') == {'id': 'e1', 'suggestionId': 's1'}
        assert second.list_ids(RecordKind.EVENT) == ['e1']
    finally:
        second.close()


def test_memory_store_is_isolated():
    a, b = MemoryStore(), MemoryStore()
    a.put(RecordKind.IDEA, 'x', {'id': 'x'})
    assert b.get(RecordKind.IDEA, 'x') is None


def test_create_only_writes_new_records(store):
    assert store.create(RecordKind.EVENT, 'e1', {'id': 'e1', 'tags': ['a']}) is True
    assert store.create(RecordKind.EVENT, 'e1', {'id': 'e1', 'tags': ['b']}) is False
    assert store.get(RecordKind.EVENT, 'e1')['tags'] == ['a']
    # Same id under another kind is a different record
    assert store.create(RecordKind.IDEA, 'e1', {'id': 'e1'}) is True


def test_concurrent_creates_write_once(store):
    barrier = threading.Barrier(4)
    results = []

    def create(n):
        barrier.wait()
        results.append(store.create(RecordKind.EVENT, 'e1', {'id': 'e1', 'writer': n}))

    threads = [threading.Thread(target=create, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert store.get(RecordKind.EVENT, 'e1')['writer'] in range(4)


def test_sql_errors_surface_as_store_failure(sql_store):
    sql_store.put(RecordKind.IDEA, 'i1', {'id': 'i1'})
    with sql_store.database_manager.engine.begin() as conn:
        conn.execute(text('DROP TABLE records'))
        conn.execute(text('DROP TABLE record_index'))

    with pytest.raises(StoreFailure) as exc_info:
        sql_store.get(RecordKind.IDEA, 'i1')
    assert exc_info.value.status_code == 503
    assert exc_info.value.to_dict()['error'] == 'store_failure'
    with pytest.raises(StoreFailure):
        sql_store.put(RecordKind.IDEA, 'i2', {'id': 'i2'})
    with pytest.raises(StoreFailure):
        sql_store.list_ids(RecordKind.IDEA)


def test_sql_update_retries_after_a_concurrent_write(sql_store):
    sql_store.put(RecordKind.SUGGESTION, 's1', {'id': 's1', 'votes': {}})
    calls = []

    def add_vote(record):
        calls.append(dict(record['votes']))
        if len(calls) == 1:
            # Another writer lands between our read and our write
            with sql_store.database_manager.get_session() as session:
                row = session.get(StoredRecord, ('suggestion', 's1'))
                row.payload = {**row.payload, 'votes': {'A': 'up'}}
                row.version = row.version + 1
                session.commit()
        record['votes']['B'] = 'down'
        return record

    updated = sql_store.update(RecordKind.SUGGESTION, 's1', add_vote)
    assert calls == [{}, {'A': 'up'}]
    assert updated['votes'] == {'A': 'up', 'B': 'down'}
    assert sql_store.get(RecordKind.SUGGESTION, 's1')['votes'] == {'A': 'up', 'B': 'down'}
