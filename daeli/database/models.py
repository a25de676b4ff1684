from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from .base import Base


class StoredRecord(Base):
    """One idea, suggestion or event document"""
    __tablename__ = 'records'

    kind = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    payload = Column(JSON, nullable=False)
    # Bumped on every write; updates only land when the version still matches
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class RecordIndexEntry(Base):
    """Insertion-ordered listing index, kept apart from the records"""
    __tablename__ = 'record_index'
    __table_args__ = (UniqueConstraint('kind', 'record_id', name='uq_record_index_kind_id'),)

    seq = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String, nullable=False, index=True)
    record_id = Column(String, nullable=False)
