"""
Service Container
=================
Builds and wires every backend and service from configuration, and owns
their connect/close lifecycle.
"""

from typing import Optional

from ..core.config import get_config, Config
from ..core.logging_config import get_logger
from ..messaging.broker import MessageBroker, create_message_broker
from ..messaging.dispatcher import ScanDispatcher
from ..storage.blobs import BlobStore, get_blob_store
from ..storage.database import DatabaseManager
from ..storage.documents import DocumentStore, InMemoryDocumentStore, SQLDocumentStore
from ..storage.repositories import FileRepository, UserRepository

from .accounts import AccountService
from .activity import ActivityFanout
from .comments import CommentSubsystem
from .content_store import ContentAddressStore
from .ledger import SubmissionLedger
from .notifications import BackgroundTaskRunner, EmailNotifier, get_email_notifier
from .pipeline import SubmissionPipeline
from .profiles import ProfileReader
from .social import SocialGraphMutator
from .workflow import StatusWorkflow

logger = get_logger(__name__)


def create_document_store(config: Config) -> DocumentStore:
    storage = config.storage
    if storage.document_backend == "sql":
        return SQLDocumentStore(
            DatabaseManager(storage, echo=config.debug),
            timeout=storage.document_timeout,
        )
    elif storage.document_backend == "memory":
        return InMemoryDocumentStore(timeout=storage.document_timeout)
    else:
        raise ValueError(f"Unknown document backend: {storage.document_backend}")


class ServiceContainer:
    """Holds the shared clients and the services built on them."""

    def __init__(
        self,
        config: Config,
        documents: DocumentStore,
        blobs: BlobStore,
        broker: MessageBroker,
        notifier: EmailNotifier,
    ):
        self.config = config
        self.documents = documents
        self.blobs = blobs
        self.broker = broker
        self.notifier = notifier
        self.tasks = BackgroundTaskRunner()

        storage = config.storage
        self.files = FileRepository(documents, storage.occ_max_retries, storage.occ_backoff_base)
        self.users = UserRepository(documents, storage.occ_max_retries, storage.occ_backoff_base)

        self.dispatcher = ScanDispatcher(broker, config=config.messaging)
        self.activity = ActivityFanout(self.users)
        self.ledger = SubmissionLedger(self.files, self.users)
        self.content_store = ContentAddressStore(self.files, blobs, self.ledger, storage)
        self.workflow = StatusWorkflow(self.files, self.dispatcher)
        self.social = SocialGraphMutator(self.users, self.files, self.activity, self.workflow)
        self.comments = CommentSubsystem(self.files, self.users, config.social)
        self.accounts = AccountService(
            self.users, blobs, notifier, self.tasks, config.api, storage
        )
        self.profiles = ProfileReader(self.users, self.files)
        self.pipeline = SubmissionPipeline(
            self.content_store, self.ledger, self.dispatcher, self.workflow, self.activity
        )

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "ServiceContainer":
        config = config or get_config()
        return cls(
            config=config,
            documents=create_document_store(config),
            blobs=get_blob_store(config.storage),
            broker=create_message_broker(config=config.messaging),
            notifier=get_email_notifier(config.smtp),
        )

    async def connect(self) -> None:
        """Connect every backend and bootstrap the admin account."""
        await self.documents.connect()
        await self.blobs.connect([self.config.storage.files_bucket, self.config.storage.avatars_bucket])
        await self.broker.connect()
        await self.dispatcher.setup()
        await self.accounts.ensure_admin()
        logger.info("Services connected")

    async def close(self) -> None:
        await self.tasks.drain()
        await self.broker.disconnect()
        await self.blobs.disconnect()
        await self.documents.disconnect()
        logger.info("Services closed")
