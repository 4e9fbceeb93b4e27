# tests/conftest.py
import hashlib

import pytest

from scanhub.core.config import (
    APIConfig,
    Config,
    MessagingConfig,
    SMTPConfig,
    SocialConfig,
    StorageConfig,
)
from scanhub.domain.entities import UserRecord, utcnow
from scanhub.messaging.broker import InMemoryBroker
from scanhub.services.container import ServiceContainer
from scanhub.services.notifications import InMemoryEmailNotifier
from scanhub.storage.blobs import InMemoryBlobStore
from scanhub.storage.documents import InMemoryDocumentStore

SCAN_TOPIC = "scan"


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def make_config(**social) -> Config:
    return Config(
        environment="test",
        messaging=MessagingConfig(broker_type="memory", scan_topic=SCAN_TOPIC, publish_timeout=1.0),
        storage=StorageConfig(
            document_backend="memory",
            blob_backend="memory",
            occ_max_retries=50,
            occ_backoff_base=0.001,
            max_file_size=1024,
            max_avatar_size=64,
        ),
        api=APIConfig(jwt_secret="test-secret", ui_address="http://ui.test"),
        smtp=SMTPConfig(enabled=False, sender_identity="ScanHub"),
        social=SocialConfig(**social),
    )


async def build_services(config: Config) -> ServiceContainer:
    container = ServiceContainer(
        config=config,
        documents=InMemoryDocumentStore(timeout=config.storage.document_timeout),
        blobs=InMemoryBlobStore(timeout=config.storage.blob_timeout),
        broker=InMemoryBroker(config.messaging),
        notifier=InMemoryEmailNotifier(config.smtp),
    )
    await container.connect()
    return container


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
async def services(config):
    container = await build_services(config)
    yield container
    await container.close()


@pytest.fixture
def make_user(services):
    """Insert a confirmed user directly, skipping password hashing."""

    async def _make(username: str, admin: bool = False) -> UserRecord:
        now = utcnow()
        user = UserRecord(
            username=username,
            password="not-a-hash",
            email=f"{username.lower()}@example.com",
            confirmed=True,
            admin=admin,
            member_since=now,
            last_seen=now,
        )
        return await services.users.create(username, user)

    return _make


@pytest.fixture
def published(services):
    """Scan requests published so far, as a list of hashes."""

    def _published():
        return [m.sha256 for m in services.broker.published(SCAN_TOPIC)]

    return _published
