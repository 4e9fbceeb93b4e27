# tests/test_documents.py
import asyncio

import pytest

from scanhub.core.config import StorageConfig
from scanhub.core.exceptions import ConcurrencyConflictError, VersionConflictError
from scanhub.storage.database import DatabaseManager, async_database_url
from scanhub.storage.documents import InMemoryDocumentStore, SQLDocumentStore
from scanhub.storage.repositories import DocumentRepository


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    if request.param == "memory":
        store = InMemoryDocumentStore()
    else:
        config = StorageConfig(database_url=f"sqlite:///{tmp_path}/docs.db")
        store = SQLDocumentStore(DatabaseManager(config))
    await store.connect()
    yield store
    await store.disconnect()


def test_async_database_url():
    assert async_database_url("postgresql://db/x") == "postgresql+asyncpg://db/x"
    assert async_database_url("sqlite:///tmp/x.db") == "sqlite+aiosqlite:///tmp/x.db"
    assert async_database_url("postgresql+asyncpg://db/x") == "postgresql+asyncpg://db/x"


async def test_missing_document(store):
    assert await store.get("things", "nope") is None


async def test_insert_only(store):
    assert await store.upsert("things", "a", {"n": 1}, expected_version=0) == 1

    with pytest.raises(VersionConflictError):
        await store.upsert("things", "a", {"n": 2}, expected_version=0)

    doc = await store.get("things", "a")
    assert doc.version == 1
    assert doc.body == {"n": 1}


async def test_conditional_update(store):
    await store.upsert("things", "a", {"n": 1}, expected_version=0)

    assert await store.upsert("things", "a", {"n": 2}, expected_version=1) == 2
    with pytest.raises(VersionConflictError):
        await store.upsert("things", "a", {"n": 3}, expected_version=1)

    assert (await store.get("things", "a")).body == {"n": 2}


async def test_unconditional_write(store):
    assert await store.upsert("things", "b", {"n": 1}) == 1
    assert await store.upsert("things", "b", {"n": 5}) == 2
    assert (await store.get("things", "b")).body == {"n": 5}


async def test_collections_are_separate(store):
    await store.upsert("left", "k", {"side": "left"}, expected_version=0)
    await store.upsert("right", "k", {"side": "right"}, expected_version=0)

    assert (await store.get("left", "k")).body == {"side": "left"}
    assert (await store.get("right", "k")).body == {"side": "right"}


async def test_delete(store):
    await store.upsert("things", "a", {"n": 1}, expected_version=0)
    await store.upsert("others", "a", {"n": 1}, expected_version=0)

    assert await store.delete("things", "a") is True
    assert await store.get("things", "a") is None
    assert await store.get("others", "a") is not None
    assert await store.delete("things", "a") is False

    assert await store.upsert("things", "a", {"n": 2}, expected_version=0) == 1


async def test_query(store):
    for i in range(4):
        await store.upsert("things", f"k{i}", {"even": i % 2 == 0}, expected_version=0)

    all_keys = [doc.key async for doc in store.query("things")]
    even_keys = [doc.key async for doc in store.query("things", lambda body: body["even"])]

    assert all_keys == ["k0", "k1", "k2", "k3"]
    assert even_keys == ["k0", "k2"]


class Counter:
    def __init__(self, value=0):
        self.value = value

    def to_dict(self):
        return {"value": self.value}

    @classmethod
    def from_dict(cls, data):
        return cls(data["value"])


class CounterRepository(DocumentRepository[Counter]):
    collection = "counters"
    resource = "counter"
    entity = Counter


async def test_concurrent_mutations_are_not_lost():
    repo = CounterRepository(InMemoryDocumentStore(), max_retries=100, backoff_base=0.0001)
    await repo.create("c", Counter())

    def bump(counter):
        counter.value += 1

    await asyncio.gather(*[repo.mutate("c", bump) for _ in range(20)])

    assert (await repo.require("c")).value == 20


async def test_mutation_returning_false_skips_write():
    store = InMemoryDocumentStore()
    repo = CounterRepository(store)
    await repo.create("c", Counter(3))

    result = await repo.mutate("c", lambda counter: False)

    assert result.value == 3
    assert (await store.get("counters", "c")).version == 1


async def test_retries_are_bounded():
    store = InMemoryDocumentStore()
    repo = CounterRepository(store, max_retries=3, backoff_base=0.0001)
    await repo.create("c", Counter())

    async def always_conflict(collection, key, body, expected_version):
        raise VersionConflictError(collection, key, expected_version)

    store._upsert = always_conflict

    with pytest.raises(ConcurrencyConflictError) as excinfo:
        await repo.mutate("c", lambda counter: None)
    assert excinfo.value.details["attempts"] == 3
