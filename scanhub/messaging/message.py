"""
Scan Request Message
====================
The unit of work handed to the analysis workers.

The wire body is the content hash as ASCII bytes and nothing else, so any
worker able to read a queue can consume it. Message id and timestamp travel
out of band as broker properties and headers.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional


@dataclass
class ScanMetadata:
    """
    Transport metadata for tracking a scan request.

    Never part of the message body.
    """

    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_headers(self) -> Dict[str, str]:
        return {
            "message_id": self.message_id,
            "timestamp": self.timestamp,
        }


@dataclass
class ScanRequest:
    """
    Request to analyse the file stored under ``sha256``.

    Publishing the same hash twice yields two independent requests; the
    queue performs no deduplication.
    """

    sha256: str
    metadata: ScanMetadata = field(default_factory=ScanMetadata)

    @classmethod
    def create(cls, sha256: str) -> "ScanRequest":
        """
        Create a new scan request with fresh metadata.

        Args:
            sha256: Content hash of the file to scan

        Returns:
            ScanRequest: New request instance
        """
        return cls(sha256=sha256)

    def to_bytes(self) -> bytes:
        """
        Serialize the request body for transport.

        Returns:
            bytes: ASCII encoded content hash
        """
        return self.sha256.encode("ascii")

    @classmethod
    def from_bytes(cls, data: bytes, headers: Optional[Dict[str, Any]] = None) -> "ScanRequest":
        """
        Parse a request from a message body and optional headers.

        Args:
            data: Message body
            headers: Broker headers carrying the metadata

        Returns:
            ScanRequest: Parsed request
        """
        headers = headers or {}
        metadata = ScanMetadata()
        if headers.get("message_id"):
            metadata.message_id = str(headers["message_id"])
        if headers.get("timestamp"):
            metadata.timestamp = str(headers["timestamp"])
        return cls(sha256=data.decode("ascii"), metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sha256": self.sha256,
            "message_id": self.metadata.message_id,
            "timestamp": self.metadata.timestamp,
        }

    def __repr__(self) -> str:
        return (
            f"ScanRequest(sha256={self.sha256[:12]}..., "
            f"id={self.metadata.message_id[:8]}...)"
        )
