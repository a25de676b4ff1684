import logging
import os
import threading
from typing import Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from daeli.database.base import Base
from daeli.database.models import RecordIndexEntry, StoredRecord  # noqa: F401 registers tables
from daeli.database.store import MemoryStore, Store

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///' + os.path.expanduser('~/.daeli/daeli.db')


class DatabaseManager:
    def __init__(self, database_url: Optional[str] = None):
        if database_url is None:
            database_url = DEFAULT_DATABASE_URL

        self.database_url = database_url
        self.engine = self._create_engine(database_url)

        # Create all tables
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created successfully")

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

    @staticmethod
    def _create_engine(database_url: str):
        if not database_url.startswith('sqlite'):
            return create_engine(database_url, pool_pre_ping=True)

        # Requests are served from a thread pool
        connect_args = {'check_same_thread': False}
        if database_url in ('sqlite://', 'sqlite:///:memory:'):
            return create_engine(database_url, poolclass=StaticPool, connect_args=connect_args)

        db_path = database_url.replace('sqlite:///', '', 1)
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        return create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=1800,
            connect_args={**connect_args, 'timeout': 15}
        )

    def init_database(self):
        """Initialize database tables and report what exists"""
        try:
            Base.metadata.create_all(bind=self.engine)
            inspector = inspect(self.engine)
            tables = inspector.get_table_names()
            logger.info(f"Tables in database: {tables}")
            return tables
        except Exception as e:
            logger.error(f"Error initializing database: {str(e)}")
            raise

    def get_session(self):
        return self.SessionLocal()

    def dispose(self):
        self.engine.dispose()


_store: Optional[Store] = None
_store_lock = threading.Lock()


def build_store(config_manager) -> Store:
    """Create the store selected by ``app.store_backend``"""
    backend = config_manager.get('app.store_backend', 'sql')
    if backend == 'memory':
        logger.info("Using in-memory store")
        return MemoryStore()
    if backend != 'sql':
        raise ValueError(f"Unknown store backend: {backend}")

    # Imported here to keep the SQL layer optional for in-memory runs
    from daeli.database.sql_store import SqlAlchemyStore

    database_url = config_manager.get('app.database_url', DEFAULT_DATABASE_URL)
    logger.info(f"Using SQL store at {database_url.split('@')[-1]}")
    return SqlAlchemyStore(DatabaseManager(database_url))


def get_store() -> Store:
    """Process-wide store, created on first use"""
    global _store
    with _store_lock:
        if _store is None:
            from daeli.config.manager import ConfigManager
            _store = build_store(ConfigManager())
        return _store


def close_store() -> None:
    """Tear down the process-wide store, if one was created"""
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
            _store = None
            logger.info("Store closed")
