"""
Status Workflow
===============
Read side of the file analysis lifecycle, and rescans.

Status moves QUEUED -> PROCESSING -> FINISHED as the scan workers report
back. This service writes nothing but the initial QUEUED value (at file
creation) and never resets status on rescan.
"""

from ..core.logging_config import get_component_logger
from ..domain.entities import FileRecord, FileStatus, normalize_sha256
from ..messaging.dispatcher import ScanDispatcher
from ..messaging.message import ScanRequest
from ..storage.repositories import FileRepository

logger = get_component_logger("workflow")


class StatusWorkflow:
    def __init__(self, files: FileRepository, dispatcher: ScanDispatcher):
        self.files = files
        self.dispatcher = dispatcher

    async def status(self, sha256: str) -> FileStatus:
        """
        Raises:
            NotFoundException: If the file is unknown
        """
        file = await self.files.require(normalize_sha256(sha256))
        return file.status

    async def rescan(self, sha256: str) -> ScanRequest:
        """
        Queue one more scan of a known file, whatever its status.

        Raises:
            NotFoundException: If the file is unknown
            MessageDeliveryError: If the scan request could not be published
        """
        sha256 = normalize_sha256(sha256)
        file = await self.files.require(sha256)

        request = await self.dispatcher.dispatch(sha256)
        logger.info("Rescan queued", data={"sha256": sha256, "status": file.status.name})

        if file.dispatch_pending:
            await self.clear_dispatch_pending(sha256)
        return request

    async def mark_dispatch_pending(self, sha256: str) -> FileRecord:
        """Flag a file whose scan request could not be published."""

        def flag(file: FileRecord) -> bool:
            if file.dispatch_pending:
                return False
            file.dispatch_pending = True
            return True

        return await self.files.mutate(sha256, flag)

    async def clear_dispatch_pending(self, sha256: str) -> FileRecord:
        def clear(file: FileRecord) -> bool:
            if not file.dispatch_pending:
                return False
            file.dispatch_pending = False
            return True

        return await self.files.mutate(sha256, clear)
