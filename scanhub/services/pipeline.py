"""
Submission Pipeline
===================
Orchestrates a file submission end to end:

1. store bytes / record the submission (ContentAddressStore)
2. link the hash to the submitting user (SubmissionLedger)
3. publish a scan request, for new and repeat submissions alike
4. record a ``submit`` activity on first sighting
"""

from dataclasses import dataclass
from typing import Optional

from ..core.exceptions import MessageException, ScanDispatchError, ScanHubException
from ..core.logging_config import get_component_logger
from ..domain.entities import ActivityType, FileRecord, SubmissionSource
from ..messaging.dispatcher import ScanDispatcher
from ..messaging.message import ScanRequest

from .activity import ActivityFanout
from .content_store import ContentAddressStore, SubmitResult
from .ledger import SubmissionLedger
from .workflow import StatusWorkflow

logger = get_component_logger("pipeline")


@dataclass
class SubmissionOutcome:
    file: FileRecord
    is_new: bool
    request: ScanRequest

    @property
    def sha256(self) -> str:
        return self.file.sha256


class SubmissionPipeline:
    def __init__(
        self,
        content_store: ContentAddressStore,
        ledger: SubmissionLedger,
        dispatcher: ScanDispatcher,
        workflow: StatusWorkflow,
        activity: ActivityFanout,
    ):
        self.content_store = content_store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.workflow = workflow
        self.activity = activity

    async def submit(
        self,
        data: bytes,
        filename: str,
        username: str,
        source: str = SubmissionSource.WEB.value,
        country: str = "",
    ) -> SubmissionOutcome:
        """
        Submit a file on behalf of ``username``.

        Raises:
            FileTooLargeError: If the file exceeds the configured maximum
            ScanDispatchError: If the file was stored but no scan could be
                queued; the record is flagged dispatch pending
        """
        result = await self.content_store.submit(data, filename, source, country)
        sha256 = result.sha256

        try:
            await self.ledger.attach_to_user(username, sha256)
        except ScanHubException as e:
            logger.error(
                f"Failed to attach submission to user: {e.message}",
                data={"username": username, "sha256": sha256},
            )

        request = await self._dispatch(result)

        if result.is_new:
            try:
                await self.activity.record(username, ActivityType.SUBMIT, {"sha256": sha256})
            except ScanHubException as e:
                logger.error(
                    f"Failed to record submit activity: {e.message}",
                    data={"username": username, "sha256": sha256},
                )

        return SubmissionOutcome(file=result.file, is_new=result.is_new, request=request)

    async def ingest(self, sha256: str, country: str = "") -> SubmissionOutcome:
        """
        Register and queue a file already present in blob storage.

        Raises:
            NotFoundException: If no blob exists under ``sha256``
            ScanDispatchError: If no scan could be queued
        """
        result = await self.content_store.ingest_from_storage(sha256, country)
        request = await self._dispatch(result)
        return SubmissionOutcome(file=result.file, is_new=result.is_new, request=request)

    async def _dispatch(self, result: SubmitResult) -> ScanRequest:
        sha256 = result.sha256
        try:
            request = await self.dispatcher.dispatch(sha256)
        except MessageException as e:
            logger.error("Scan dispatch failed, flagging file", data={"sha256": sha256})
            try:
                result.file = await self.workflow.mark_dispatch_pending(sha256)
            except ScanHubException as flag_error:
                logger.error(
                    f"Failed to flag dispatch pending: {flag_error.message}",
                    data={"sha256": sha256},
                )
            raise ScanDispatchError(sha256, cause=e)

        if result.file.dispatch_pending:
            result.file = await self.workflow.clear_dispatch_pending(sha256)
        return request
