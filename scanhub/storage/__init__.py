"""
Storage Module
==============
Document database, blob storage and repositories.
"""

from .database import DatabaseManager
from .models import Base, DocumentRow
from .documents import DocumentStore, SQLDocumentStore, InMemoryDocumentStore, StoredDocument
from .blobs import (
    BlobStore,
    FilesystemBlobStore,
    S3BlobStore,
    InMemoryBlobStore,
    get_blob_store,
)
from .repositories import DocumentRepository, FileRepository, UserRepository

__all__ = [
    "DatabaseManager",
    "Base",
    "DocumentRow",
    "DocumentStore",
    "SQLDocumentStore",
    "InMemoryDocumentStore",
    "StoredDocument",
    "BlobStore",
    "FilesystemBlobStore",
    "S3BlobStore",
    "InMemoryBlobStore",
    "get_blob_store",
    "DocumentRepository",
    "FileRepository",
    "UserRepository",
]
