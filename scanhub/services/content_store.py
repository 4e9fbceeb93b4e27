"""
Content Address Store
=====================
Deduplicating file storage keyed by SHA-256.

The bytes of a file are uploaded once, under their content hash. Presenting
the same bytes again only appends a Submission to the existing FileRecord.
Dispatching scans is left to the caller.
"""

import asyncio
import hashlib
import io
from dataclasses import dataclass
from typing import Optional

import pyzipper

from ..core.config import get_config, StorageConfig
from ..core.exceptions import (
    FileTooLargeError,
    NotFoundException,
    ValidationException,
    VersionConflictError,
)
from ..core.logging_config import get_component_logger
from ..domain.entities import FileRecord, Submission, SubmissionSource, normalize_sha256
from ..storage.blobs import BlobStore, DEFAULT_CONTENT_TYPE
from ..storage.repositories import FileRepository

from .ledger import SubmissionLedger

logger = get_component_logger("content_store")


def compute_sha256(data: bytes) -> str:
    """Lower-case hex SHA-256 of ``data``."""
    return hashlib.sha256(data).hexdigest()


def encrypt_archive(name: str, data: bytes, password: str) -> bytes:
    """
    Pack ``data`` as the single member ``name`` of an AES encrypted zip.
    """
    buffer = io.BytesIO()
    with pyzipper.AESZipFile(
        buffer,
        "w",
        compression=pyzipper.ZIP_DEFLATED,
        encryption=pyzipper.WZ_AES,
    ) as archive:
        archive.setpassword(password.encode("utf-8"))
        archive.writestr(name, data)
    return buffer.getvalue()


@dataclass
class SubmitResult:
    file: FileRecord
    is_new: bool

    @property
    def sha256(self) -> str:
        return self.file.sha256


class ContentAddressStore:
    """
    Stores uploaded bytes and their FileRecords.

    A record without its blob (or a blob without its record) can be left
    behind by a failed request. The next submission of the same bytes
    repairs either case.
    """

    def __init__(
        self,
        files: FileRepository,
        blobs: BlobStore,
        ledger: SubmissionLedger,
        config: Optional[StorageConfig] = None,
    ):
        """
        Initialize the store.

        Args:
            files: FileRecord repository
            blobs: Blob store holding file contents
            ledger: Submission ledger
            config: Storage configuration (bucket name, size limit)
        """
        self.files = files
        self.blobs = blobs
        self.ledger = ledger
        self.config = config or get_config().storage

    @property
    def bucket(self) -> str:
        return self.config.files_bucket

    async def submit(
        self,
        data: bytes,
        filename: str,
        source: str = SubmissionSource.WEB.value,
        country: str = "",
    ) -> SubmitResult:
        """
        Store a file, or record one more submission of a known file.

        Args:
            data: File contents
            filename: Name the file was uploaded under
            source: web or api
            country: ISO country code of the submitter, may be empty

        Returns:
            SubmitResult: The FileRecord and whether this was its first sighting

        Raises:
            FileTooLargeError: If the file exceeds the configured maximum
            ValidationException: If the source is unknown
        """
        if len(data) > self.config.max_file_size:
            raise FileTooLargeError(len(data), self.config.max_file_size, filename)

        submission = self.ledger.new_submission(filename, source, country)
        sha256 = compute_sha256(data)

        uploaded = False
        if not await self.files.exists(sha256):
            await self.blobs.put(self.bucket, sha256, data, DEFAULT_CONTENT_TYPE)
            uploaded = True

            record = FileRecord.create(sha256, len(data), submission)
            try:
                await self.files.create(sha256, record)
                logger.info(
                    "New file stored",
                    data={"sha256": sha256, "size": len(data), "source": submission.source},
                )
                return SubmitResult(file=record, is_new=True)
            except VersionConflictError:
                logger.info("File created concurrently, recording as resubmission",
                            data={"sha256": sha256})

        return await self._resubmit(sha256, data, submission, uploaded)

    async def _resubmit(
        self,
        sha256: str,
        data: bytes,
        submission: Submission,
        uploaded: bool,
    ) -> SubmitResult:
        if not uploaded and not await self.blobs.exists(self.bucket, sha256):
            logger.warning("Blob missing for known file, uploading again",
                           data={"sha256": sha256})
            await self.blobs.put(self.bucket, sha256, data, DEFAULT_CONTENT_TYPE)

        def add_submission(file: FileRecord) -> None:
            self.ledger.append(file, submission)
            if not file.size:
                file.size = len(data)

        file = await self.files.mutate(sha256, add_submission)
        logger.info(
            "Known file resubmitted",
            data={"sha256": sha256, "submissions": len(file.submissions)},
        )
        return SubmitResult(file=file, is_new=False)

    async def ingest_from_storage(self, sha256: str, country: str = "") -> SubmitResult:
        """
        Register a file whose bytes were pushed straight to blob storage.

        Raises:
            InvalidHashError: If ``sha256`` is not a SHA-256 digest
            NotFoundException: If no blob exists under the hash
            ValidationException: If the stored bytes do not hash to ``sha256``
        """
        sha256 = normalize_sha256(sha256)
        data = await self.blobs.get(self.bucket, sha256)

        if compute_sha256(data) != sha256:
            raise ValidationException(
                "Stored object does not match its content hash",
                field="sha256",
                value=sha256,
                code="HASH_MISMATCH",
            )

        submission = self.ledger.new_submission(sha256, SubmissionSource.API.value, country)

        if not await self.files.exists(sha256):
            record = FileRecord.create(sha256, len(data), submission)
            try:
                await self.files.create(sha256, record)
                logger.info("File ingested from storage", data={"sha256": sha256})
                return SubmitResult(file=record, is_new=True)
            except VersionConflictError:
                pass

        return await self._resubmit(sha256, data, submission, uploaded=True)

    async def download(self, sha256: str) -> bytes:
        """
        Return the stored bytes of a file.

        Raises:
            NotFoundException: If the blob does not exist
        """
        sha256 = normalize_sha256(sha256)
        try:
            return await self.blobs.get(self.bucket, sha256)
        except NotFoundException:
            raise NotFoundException("file", sha256)

    async def get(self, sha256: str) -> FileRecord:
        """
        Read a FileRecord.

        Raises:
            InvalidHashError: If ``sha256`` is not a SHA-256 digest
            NotFoundException: If the file is unknown
        """
        return await self.files.require(normalize_sha256(sha256))

    async def download_archive(self, sha256: str) -> bytes:
        """
        Return the stored bytes of a file inside a password protected zip.

        Raises:
            NotFoundException: If the blob does not exist
        """
        sha256 = normalize_sha256(sha256)
        data = await self.download(sha256)
        return await asyncio.to_thread(
            encrypt_archive, sha256, data, self.config.archive_password
        )

    async def delete_file(self, sha256: str) -> None:
        """
        Remove a FileRecord and its bytes.

        Likes, user submissions and comment copies pointing at the file are
        left in place; read paths skip them.

        Raises:
            NotFoundException: If the file is unknown
        """
        sha256 = normalize_sha256(sha256)
        if not await self.files.delete(sha256):
            raise NotFoundException("file", sha256)
        await self.blobs.delete(self.bucket, sha256)
        logger.info("File deleted", data={"sha256": sha256})

    async def delete_all_files(self) -> int:
        """Remove every FileRecord and its bytes. Returns the count removed."""
        deleted = 0
        async for file in self.files.iter_all():
            if await self.files.delete(file.sha256):
                await self.blobs.delete(self.bucket, file.sha256)
                deleted += 1
        logger.info("All files deleted", data={"count": deleted})
        return deleted
