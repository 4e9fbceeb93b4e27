"""
Document Store
==============
Versioned JSON documents grouped in collections.

Every write bumps the document version. ``upsert`` takes the version the
caller read and refuses the write when the stored version has moved on,
which is the primitive all read-modify-write cycles are built on:

- ``expected_version=None`` writes unconditionally
- ``expected_version=0`` only inserts, failing if the key exists
- ``expected_version=n`` only updates a document currently at version n
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.exceptions import (
    StorageReadError,
    StorageTimeoutError,
    StorageWriteError,
    VersionConflictError,
)
from ..core.logging_config import get_logger

from .database import DatabaseManager
from .models import DocumentRow

logger = get_logger(__name__)

Predicate = Callable[[Dict[str, Any]], bool]


@dataclass
class StoredDocument:
    """A document body together with the version it was read at."""

    key: str
    version: int
    body: Dict[str, Any]


class DocumentStore(ABC):
    """
    Abstract document store interface.
    """

    storage_type = "documents"

    def __init__(self, timeout: float = 10.0):
        """
        Initialize the store.

        Args:
            timeout: Seconds allowed for any single operation
        """
        self.timeout = timeout

    async def _with_timeout(self, operation: str, awaitable: Awaitable) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise StorageTimeoutError(
                f"Document {operation} timed out after {self.timeout}s",
                storage_type=self.storage_type,
                operation=operation,
                timeout_seconds=self.timeout,
            )

    async def connect(self) -> None:
        """Prepare the backend for use."""

    async def disconnect(self) -> None:
        """Release backend resources."""

    async def get(self, collection: str, key: str) -> Optional[StoredDocument]:
        """
        Read a document.

        Returns:
            Optional[StoredDocument]: The document, or None if absent
        """
        return await self._with_timeout("read", self._get(collection, key))

    async def upsert(
        self,
        collection: str,
        key: str,
        body: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> int:
        """
        Write a document, optionally conditioned on its current version.

        Returns:
            int: The version of the document after the write

        Raises:
            VersionConflictError: If the stored version differs from
                ``expected_version``
        """
        return await self._with_timeout(
            "write", self._upsert(collection, key, body, expected_version)
        )

    async def delete(self, collection: str, key: str) -> bool:
        """
        Remove a document unconditionally.

        Returns:
            bool: True if a document was removed
        """
        return await self._with_timeout("write", self._delete(collection, key))

    async def query(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
    ) -> AsyncIterator[StoredDocument]:
        """Iterate over the documents of a collection matching ``predicate``."""
        documents = await self._with_timeout("read", self._scan(collection))
        for document in documents:
            if predicate is None or predicate(document.body):
                yield document

    @abstractmethod
    async def _get(self, collection: str, key: str) -> Optional[StoredDocument]:
        pass

    @abstractmethod
    async def _upsert(
        self,
        collection: str,
        key: str,
        body: Dict[str, Any],
        expected_version: Optional[int],
    ) -> int:
        pass

    @abstractmethod
    async def _delete(self, collection: str, key: str) -> bool:
        pass

    @abstractmethod
    async def _scan(self, collection: str) -> list:
        pass


class SQLDocumentStore(DocumentStore):
    """
    Document store backed by a single SQL table.

    Uses SQLAlchemy async sessions (asyncpg for PostgreSQL, aiosqlite for
    SQLite).
    """

    def __init__(self, db: DatabaseManager, timeout: float = 10.0):
        super().__init__(timeout)
        self.db = db

    async def connect(self) -> None:
        await self.db.connect()
        await self.db.create_tables()

    async def disconnect(self) -> None:
        await self.db.disconnect()

    async def _get(self, collection: str, key: str) -> Optional[StoredDocument]:
        try:
            async with self.db.session() as session:
                row = await session.get(DocumentRow, (collection, key))
                if row is None:
                    return None
                return StoredDocument(key=row.key, version=row.version, body=row.body)
        except SQLAlchemyError as e:
            raise StorageReadError(
                f"Failed to read {collection}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{collection}/{key}",
                cause=e,
            )

    async def _upsert(
        self,
        collection: str,
        key: str,
        body: Dict[str, Any],
        expected_version: Optional[int],
    ) -> int:
        try:
            async with self.db.session() as session:
                if expected_version == 0:
                    session.add(DocumentRow(collection=collection, key=key, version=1, body=body))
                    new_version = 1

                elif expected_version is None:
                    row = await session.get(DocumentRow, (collection, key))
                    if row is None:
                        session.add(DocumentRow(collection=collection, key=key, version=1, body=body))
                        new_version = 1
                    else:
                        row.version = row.version + 1
                        row.body = body
                        new_version = row.version

                else:
                    result = await session.execute(
                        update(DocumentRow)
                        .where(
                            DocumentRow.collection == collection,
                            DocumentRow.key == key,
                            DocumentRow.version == expected_version,
                        )
                        .values(version=expected_version + 1, body=body)
                    )
                    if result.rowcount != 1:
                        raise VersionConflictError(collection, key, expected_version)
                    new_version = expected_version + 1

            return new_version

        except IntegrityError:
            # Insert raced with another writer of the same key
            raise VersionConflictError(collection, key, expected_version)
        except SQLAlchemyError as e:
            raise StorageWriteError(
                f"Failed to write {collection}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{collection}/{key}",
                cause=e,
            )

    async def _delete(self, collection: str, key: str) -> bool:
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    delete(DocumentRow).where(
                        DocumentRow.collection == collection,
                        DocumentRow.key == key,
                    )
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StorageWriteError(
                f"Failed to delete {collection}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{collection}/{key}",
                cause=e,
            )

    async def _scan(self, collection: str) -> list:
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(DocumentRow)
                    .where(DocumentRow.collection == collection)
                    .order_by(DocumentRow.key)
                )
                return [
                    StoredDocument(key=row.key, version=row.version, body=row.body)
                    for row in result.scalars()
                ]
        except SQLAlchemyError as e:
            raise StorageReadError(
                f"Failed to scan {collection}: {e}",
                storage_type=self.storage_type,
                cause=e,
            )


class InMemoryDocumentStore(DocumentStore):
    """
    In-memory document store for testing.

    Reads hand out deep copies and yield to the event loop once, so
    concurrent read-modify-write cycles interleave the way they do against
    a real database.
    """

    def __init__(self, timeout: float = 10.0):
        super().__init__(timeout)
        self._documents: Dict[Tuple[str, str], Tuple[int, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def _get(self, collection: str, key: str) -> Optional[StoredDocument]:
        entry = self._documents.get((collection, key))
        snapshot = None
        if entry is not None:
            version, body = entry
            snapshot = StoredDocument(key=key, version=version, body=copy.deepcopy(body))
        await asyncio.sleep(0)
        return snapshot

    async def _upsert(
        self,
        collection: str,
        key: str,
        body: Dict[str, Any],
        expected_version: Optional[int],
    ) -> int:
        async with self._lock:
            entry = self._documents.get((collection, key))
            current = entry[0] if entry else 0

            if expected_version is not None and expected_version != current:
                raise VersionConflictError(collection, key, expected_version, current)

            new_version = current + 1
            self._documents[(collection, key)] = (new_version, copy.deepcopy(body))
            return new_version

    async def _delete(self, collection: str, key: str) -> bool:
        async with self._lock:
            return self._documents.pop((collection, key), None) is not None

    async def _scan(self, collection: str) -> list:
        return [
            StoredDocument(key=key, version=version, body=copy.deepcopy(body))
            for (coll, key), (version, body) in sorted(self._documents.items())
            if coll == collection
        ]
