"""
Services Module
===============
Submission pipeline, status workflow, social graph and accounts.
"""

from .activity import ActivityFanout
from .ledger import SubmissionLedger
from .content_store import ContentAddressStore, SubmitResult, compute_sha256
from .workflow import StatusWorkflow
from .social import SocialGraphMutator
from .comments import CommentSubsystem
from .accounts import AccountService
from .notifications import (
    BackgroundTaskRunner,
    EmailNotifier,
    InMemoryEmailNotifier,
    SMTPEmailNotifier,
)
from .pipeline import SubmissionPipeline, SubmissionOutcome
from .profiles import ProfileReader
from .container import ServiceContainer

__all__ = [
    "ActivityFanout",
    "SubmissionLedger",
    "ContentAddressStore",
    "SubmitResult",
    "compute_sha256",
    "StatusWorkflow",
    "SocialGraphMutator",
    "CommentSubsystem",
    "AccountService",
    "BackgroundTaskRunner",
    "EmailNotifier",
    "InMemoryEmailNotifier",
    "SMTPEmailNotifier",
    "SubmissionPipeline",
    "SubmissionOutcome",
    "ProfileReader",
    "ServiceContainer",
]
