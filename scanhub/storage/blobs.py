"""
Blob Storage
============
Bucket/key object storage for uploaded samples and avatars.

This module provides:
- Abstract blob store interface
- Local filesystem implementation
- S3 / MinIO implementation (aioboto3)
- In-memory implementation for tests
"""

import asyncio
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Dict, Iterable, Optional, Tuple

from ..core.config import get_config, StorageConfig
from ..core.exceptions import (
    NotFoundException,
    StorageConnectionError,
    StorageReadError,
    StorageTimeoutError,
    StorageWriteError,
)
from ..core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class BlobStore(ABC):
    """
    Abstract blob store interface.

    Keys are opaque strings; writing an existing key replaces its content.
    """

    storage_type = "blobs"

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def _with_timeout(self, operation: str, awaitable: Awaitable) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise StorageTimeoutError(
                f"Blob {operation} timed out after {self.timeout}s",
                storage_type=self.storage_type,
                operation=operation,
                timeout_seconds=self.timeout,
            )

    async def connect(self, buckets: Iterable[str] = ()) -> None:
        """Prepare the backend and make sure ``buckets`` exist."""

    async def disconnect(self) -> None:
        """Release backend resources."""

    async def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> None:
        await self._with_timeout("write", self._put(bucket, key, data, content_type))

    async def get(self, bucket: str, key: str) -> bytes:
        """
        Read an object.

        Raises:
            NotFoundException: If the object does not exist
        """
        return await self._with_timeout("read", self._get(bucket, key))

    async def exists(self, bucket: str, key: str) -> bool:
        return await self._with_timeout("read", self._exists(bucket, key))

    async def delete(self, bucket: str, key: str) -> None:
        """Remove an object. Deleting a missing object is a no-op."""
        await self._with_timeout("delete", self._delete(bucket, key))

    @abstractmethod
    async def _put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        pass

    @abstractmethod
    async def _get(self, bucket: str, key: str) -> bytes:
        pass

    @abstractmethod
    async def _exists(self, bucket: str, key: str) -> bool:
        pass

    @abstractmethod
    async def _delete(self, bucket: str, key: str) -> None:
        pass


class FilesystemBlobStore(BlobStore):
    """
    Blob store writing one file per object under ``root/bucket/key``.

    File I/O runs in worker threads; writes go to a temporary file first
    and are renamed into place.
    """

    def __init__(self, root: str, timeout: float = 30.0):
        super().__init__(timeout)
        self.root = Path(root)

    def _path(self, bucket: str, key: str) -> Path:
        if "/" in key or key in ("", ".", ".."):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root / bucket / key

    async def connect(self, buckets: Iterable[str] = ()) -> None:
        for bucket in buckets:
            await asyncio.to_thread((self.root / bucket).mkdir, parents=True, exist_ok=True)
        logger.info(f"Filesystem blob store ready at {self.root}")

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Concurrent writers of one key each get their own temporary file
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        with open(tmp_path, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)

    async def _put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        path = self._path(bucket, key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise StorageWriteError(
                f"Failed to write blob {bucket}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{bucket}/{key}",
                cause=e,
            )

    async def _get(self, bucket: str, key: str) -> bytes:
        path = self._path(bucket, key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundException("blob", f"{bucket}/{key}")
        except OSError as e:
            raise StorageReadError(
                f"Failed to read blob {bucket}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{bucket}/{key}",
                cause=e,
            )

    async def _exists(self, bucket: str, key: str) -> bool:
        return await asyncio.to_thread(self._path(bucket, key).is_file)

    async def _delete(self, bucket: str, key: str) -> None:
        path = self._path(bucket, key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise StorageWriteError(
                f"Failed to delete blob {bucket}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{bucket}/{key}",
                cause=e,
            )


class S3BlobStore(BlobStore):
    """
    Blob store backed by S3 or an S3 compatible service such as MinIO.

    Uses aioboto3 for async S3 communication.
    """

    def __init__(self, config: StorageConfig, timeout: float = 30.0):
        super().__init__(timeout)
        self.config = config
        self._client_ctx = None
        self._client = None

    async def connect(self, buckets: Iterable[str] = ()) -> None:
        """Open the S3 client and create missing buckets."""
        if self._client is not None:
            return

        try:
            import aioboto3
            from botocore.exceptions import ClientError

            session = aioboto3.Session()
            self._client_ctx = session.client(
                "s3",
                endpoint_url=self.config.s3_endpoint,
                region_name=self.config.s3_region,
                aws_access_key_id=self.config.s3_access_key,
                aws_secret_access_key=self.config.s3_secret_key,
            )
            self._client = await self._client_ctx.__aenter__()

            for bucket in buckets:
                try:
                    await self._client.head_bucket(Bucket=bucket)
                except ClientError:
                    await self._client.create_bucket(Bucket=bucket)
                    logger.info(f"Created bucket: {bucket}")

            logger.info("Connected to S3")

        except ImportError:
            raise StorageConnectionError(
                "aioboto3 is required for S3 support",
                storage_type=self.storage_type,
            )
        except Exception as e:
            raise StorageConnectionError(
                f"Failed to connect to S3: {e}",
                storage_type=self.storage_type,
                cause=e,
            )

    async def disconnect(self) -> None:
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client_ctx = None
            self._client = None
            logger.info("Disconnected from S3")

    async def _put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        try:
            await self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            raise StorageWriteError(
                f"Failed to upload {bucket}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{bucket}/{key}",
                cause=e,
            )

    async def _get(self, bucket: str, key: str) -> bytes:
        from botocore.exceptions import ClientError

        try:
            response = await self._client.get_object(Bucket=bucket, Key=key)
            async with response["Body"] as stream:
                return await stream.read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFoundException("blob", f"{bucket}/{key}")
            raise StorageReadError(
                f"Failed to download {bucket}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{bucket}/{key}",
                cause=e,
            )

    async def _exists(self, bucket: str, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            await self._client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404", "NotFound"):
                return False
            raise StorageReadError(
                f"Failed to stat {bucket}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{bucket}/{key}",
                cause=e,
            )

    async def _delete(self, bucket: str, key: str) -> None:
        try:
            await self._client.delete_object(Bucket=bucket, Key=key)
        except Exception as e:
            raise StorageWriteError(
                f"Failed to delete {bucket}/{key}: {e}",
                storage_type=self.storage_type,
                key=f"{bucket}/{key}",
                cause=e,
            )


class InMemoryBlobStore(BlobStore):
    """
    In-memory blob store for testing.

    Counts writes per object so tests can assert an upload happened once.
    """

    def __init__(self, timeout: float = 30.0):
        super().__init__(timeout)
        self._objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.put_count: Dict[Tuple[str, str], int] = {}

    async def _put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        self._objects[(bucket, key)] = (bytes(data), content_type)
        self.put_count[(bucket, key)] = self.put_count.get((bucket, key), 0) + 1

    async def _get(self, bucket: str, key: str) -> bytes:
        try:
            return self._objects[(bucket, key)][0]
        except KeyError:
            raise NotFoundException("blob", f"{bucket}/{key}")

    async def _exists(self, bucket: str, key: str) -> bool:
        return (bucket, key) in self._objects

    def content_type(self, bucket: str, key: str) -> Optional[str]:
        entry = self._objects.get((bucket, key))
        return entry[1] if entry else None

    async def _delete(self, bucket: str, key: str) -> None:
        self._objects.pop((bucket, key), None)


def get_blob_store(config: Optional[StorageConfig] = None) -> BlobStore:
    """
    Create the blob store selected by configuration.

    Args:
        config: Storage configuration

    Returns:
        BlobStore: Blob store instance
    """
    config = config or get_config().storage

    if config.blob_backend == "filesystem":
        return FilesystemBlobStore(config.blob_path, timeout=config.blob_timeout)
    elif config.blob_backend == "s3":
        return S3BlobStore(config, timeout=config.blob_timeout)
    elif config.blob_backend == "memory":
        return InMemoryBlobStore(timeout=config.blob_timeout)
    else:
        raise ValueError(f"Unknown blob backend: {config.blob_backend}")
