import os
import tempfile

import pytest

from daeli.database.connection import DatabaseManager
from daeli.database.sql_store import SqlAlchemyStore
from daeli.database.store import MemoryStore
from daeli.services.planner import PlannerService


@pytest.fixture
def db_path():
    """Temporary SQLite file, removed after the test"""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as tmp:
        path = tmp.name
    try:
        yield path
    finally:
        os.unlink(path)


@pytest.fixture
def sql_store(db_path):
    store = SqlAlchemyStore(DatabaseManager(f'sqlite:///{db_path}'))
    try:
        yield store
    finally:
        store.close()


@pytest.fixture(params=['memory', 'sql'])
def store(request):
    """Every store-level test runs against both backends"""
    if request.param == 'memory':
        return MemoryStore()
    return request.getfixturevalue('sql_store')


@pytest.fixture
def planner(store):
    return PlannerService(store)
