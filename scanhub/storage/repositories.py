"""
Repositories
============
Typed access to the ``files`` and ``users`` collections.

All modifications go through ``mutate``: read the document, apply a change
function, write back conditioned on the version that was read. A version
conflict means another request got there first, so the cycle starts over
from a fresh read after a short jittered pause.
"""

import asyncio
import random
from typing import Any, AsyncIterator, Callable, Generic, Optional, Type, TypeVar

from ..core.exceptions import (
    ConcurrencyConflictError,
    NotFoundException,
    VersionConflictError,
)
from ..core.logging_config import get_logger
from ..domain.entities import FileRecord, UserRecord, canonical_username

from .documents import DocumentStore

logger = get_logger(__name__)

T = TypeVar("T")

# Change functions return False to signal "nothing to write"
Mutator = Callable[[Any], Optional[bool]]

MAX_BACKOFF = 0.5  # seconds


class DocumentRepository(Generic[T]):
    """
    Repository over one collection of a DocumentStore.

    Subclasses set ``collection``, ``resource`` and ``entity``.
    """

    collection: str = ""
    resource: str = ""
    entity: Type = dict

    def __init__(
        self,
        store: DocumentStore,
        max_retries: int = 10,
        backoff_base: float = 0.01,
    ):
        """
        Initialize the repository.

        Args:
            store: Backing document store
            max_retries: Attempts per mutate before giving up
            backoff_base: Base delay between attempts in seconds
        """
        self.store = store
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    def key_for(self, key: str) -> str:
        return key

    async def get(self, key: str) -> Optional[T]:
        document = await self.store.get(self.collection, self.key_for(key))
        if document is None:
            return None
        return self.entity.from_dict(document.body)

    async def require(self, key: str) -> T:
        """
        Read an entity that must exist.

        Raises:
            NotFoundException: If there is no document under ``key``
        """
        entity = await self.get(key)
        if entity is None:
            raise NotFoundException(self.resource, key)
        return entity

    async def exists(self, key: str) -> bool:
        return await self.store.get(self.collection, self.key_for(key)) is not None

    async def delete(self, key: str) -> bool:
        """Remove the entity under ``key``. Returns False if there was none."""
        return await self.store.delete(self.collection, self.key_for(key))

    async def create(self, key: str, entity: T) -> T:
        """
        Insert a new entity.

        Raises:
            VersionConflictError: If a document already exists under ``key``
        """
        await self.store.upsert(
            self.collection, self.key_for(key), entity.to_dict(), expected_version=0
        )
        return entity

    async def mutate(self, key: str, fn: Mutator) -> T:
        """
        Apply ``fn`` to the entity under ``key`` and persist the result.

        ``fn`` receives a fresh copy on every attempt and may run more than
        once. It returns False when it made no change; the write is then
        skipped.

        Returns:
            The entity as written (or as read when nothing changed)

        Raises:
            NotFoundException: If there is no document under ``key``
            ConcurrencyConflictError: If every attempt hit a version conflict
        """
        doc_key = self.key_for(key)
        last_conflict: Optional[VersionConflictError] = None

        for attempt in range(self.max_retries):
            document = await self.store.get(self.collection, doc_key)
            if document is None:
                raise NotFoundException(self.resource, key)

            entity = self.entity.from_dict(document.body)
            if fn(entity) is False:
                return entity

            try:
                await self.store.upsert(
                    self.collection,
                    doc_key,
                    entity.to_dict(),
                    expected_version=document.version,
                )
                return entity
            except VersionConflictError as e:
                last_conflict = e
                delay = min(self.backoff_base * (2 ** attempt), MAX_BACKOFF)
                logger.debug(
                    f"Version conflict on {self.collection}/{doc_key}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
                await asyncio.sleep(delay * random.uniform(0.5, 1.5))

        logger.warning(f"Giving up on {self.collection}/{doc_key} after {self.max_retries} attempts")
        raise ConcurrencyConflictError(
            self.collection, doc_key, self.max_retries, cause=last_conflict
        )

    async def find(self, predicate: Callable[[dict], bool]) -> Optional[T]:
        """Return the first entity whose stored body matches ``predicate``."""
        async for document in self.store.query(self.collection, predicate):
            return self.entity.from_dict(document.body)
        return None

    async def iter_all(self) -> AsyncIterator[T]:
        async for document in self.store.query(self.collection):
            yield self.entity.from_dict(document.body)


class FileRepository(DocumentRepository[FileRecord]):
    """FileRecords keyed by lower-case SHA-256."""

    collection = "files"
    resource = "file"
    entity = FileRecord


class UserRepository(DocumentRepository[UserRecord]):
    """UserRecords keyed by lower-case username."""

    collection = "users"
    resource = "user"
    entity = UserRecord

    def key_for(self, key: str) -> str:
        return canonical_username(key)

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        email = email.strip().lower()
        return await self.find(lambda body: body.get("email") == email)
