"""
Database Models
===============
SQLAlchemy ORM models for the document storage layer.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, JSON, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRow(Base):
    """
    One JSON document in a named collection.

    ``version`` starts at 1 and is bumped on every write; conditional
    updates match on it.
    """
    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    key = Column(String(128), primary_key=True)
    version = Column(Integer, nullable=False, default=1)

    body = Column(JSON, nullable=False)

    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<DocumentRow(collection={self.collection}, key={self.key}, version={self.version})>"
