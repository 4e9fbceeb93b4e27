"""
Custom Exceptions Module
========================
Centralized exception definitions for ScanHub.

This module defines a hierarchy of exceptions for:
- Validation errors (malformed or oversize input)
- Missing aggregates
- Conflicts (duplicates, optimistic concurrency exhaustion)
- Authentication and ownership violations
- Transient infrastructure failures (storage, messaging)
"""

from typing import Optional, Dict, Any


class ScanHubException(Exception):
    """
    Base exception for all ScanHub errors.

    Provides structured error information including:
    - Error code for programmatic handling
    - Additional context data
    - Cause tracking for exception chaining
    """

    # Transient infrastructure failures may be retried by the caller
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str = "SCANHUB_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code
            details: Additional context data
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict[str, Any]: Exception data as dictionary
        """
        result = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationException(ScanHubException):
    """Exception raised during data validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        expected: Optional[str] = None,
        code: str = "VALIDATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize validation exception.

        Args:
            message: Human-readable error message
            field: Name of the field that failed validation
            value: The invalid value (may be redacted for security)
            expected: Description of expected value/format
            code: Machine-readable error code
            details: Additional context data
            cause: Original exception that caused this error
        """
        super().__init__(message, code, details, cause)
        self.field = field
        self.value = value
        self.expected = expected

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.expected:
            result["expected"] = self.expected
        return result


class SchemaValidationError(ValidationException):
    """Exception raised when a request payload fails its JSON schema."""

    def __init__(
        self,
        message: str,
        schema_name: str,
        errors: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        details["schema_name"] = schema_name
        if errors:
            details["validation_errors"] = errors
        super().__init__(
            message,
            code="SCHEMA_VALIDATION_ERROR",
            details=details,
            cause=cause,
        )


class InvalidHashError(ValidationException):
    """Exception raised when a content hash is not a SHA-256 hex digest."""

    def __init__(self, value: str):
        super().__init__(
            f"Invalid sha256: {value}",
            field="sha256",
            value=value,
            expected="64 lower-case hexadecimal characters",
            code="INVALID_HASH",
        )


class FileTooLargeError(ValidationException):
    """Exception raised when an upload exceeds the configured maximum size."""

    def __init__(self, size: int, limit: int, filename: Optional[str] = None):
        details = {"size": size, "limit": limit}
        if filename:
            details["filename"] = filename
        super().__init__(
            f"File too large: {size} bytes, the maximum allowed is {limit} bytes",
            field="file",
            code="FILE_TOO_LARGE",
            details=details,
        )
        self.size = size
        self.limit = limit


class SelfActionError(ValidationException):
    """Exception raised when a user targets themselves with a social action."""

    def __init__(self, username: str, action: str):
        super().__init__(
            f"Not allowed to {action} yourself",
            field="username",
            value=username,
            code="SELF_ACTION_NOT_ALLOWED",
            details={"action": action},
        )


class NotFoundException(ScanHubException):
    """Exception raised when a referenced aggregate does not exist."""

    def __init__(
        self,
        resource: str,
        key: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        details.update({"resource": resource, "key": key})
        super().__init__(
            message or f"{resource.capitalize()} not found: {key}",
            "NOT_FOUND",
            details,
            cause,
        )
        self.resource = resource
        self.key = key


class ConflictException(ScanHubException):
    """Exception raised when a write conflicts with existing state."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, code, details, cause)


class DuplicateUserError(ConflictException):
    """Exception raised when a username or email is already registered."""

    def __init__(self, field: str, value: str):
        super().__init__(
            f"{field.capitalize()} already exists",
            code="DUPLICATE_USER",
            details={"field": field, "value": value},
        )
        self.field = field


class VersionConflictError(ConflictException):
    """
    Exception raised by a document store when a conditional write finds a
    different version than the one the caller read.
    """

    def __init__(
        self,
        collection: str,
        key: str,
        expected_version: Optional[int],
        actual_version: Optional[int] = None,
    ):
        super().__init__(
            f"Version conflict on {collection}/{key}",
            code="VERSION_CONFLICT",
            details={
                "collection": collection,
                "key": key,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.collection = collection
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class ConcurrencyConflictError(ConflictException):
    """Exception raised when optimistic concurrency retries are exhausted."""

    def __init__(
        self,
        collection: str,
        key: str,
        attempts: int,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            f"Gave up updating {collection}/{key} after {attempts} attempts",
            code="CONCURRENT_MODIFICATION",
            details={"collection": collection, "key": key, "attempts": attempts},
            cause=cause,
        )


class AuthenticationError(ScanHubException):
    """Exception raised when credentials or tokens are rejected."""

    def __init__(
        self,
        message: str = "Could not validate credentials",
        code: str = "AUTHENTICATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, code, details, cause)


class PermissionDeniedError(ScanHubException):
    """Exception raised when an authenticated user may not perform an action."""

    def __init__(
        self,
        message: str = "Not allowed",
        code: str = "PERMISSION_DENIED",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, code, details, cause)


class NotCommentAuthorError(PermissionDeniedError):
    """Exception raised when someone other than the author deletes a comment."""

    def __init__(self, comment_id: str, username: str):
        super().__init__(
            "Not allowed to delete someone else comment",
            code="NOT_COMMENT_AUTHOR",
            details={"comment_id": comment_id, "username": username},
        )


class StorageException(ScanHubException):
    """Exception raised during storage operations."""

    retryable = True

    def __init__(
        self,
        message: str,
        storage_type: str,
        operation: str,
        code: str = "STORAGE_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize storage exception.

        Args:
            message: Human-readable error message
            storage_type: Type of storage involved (documents, blobs)
            operation: Operation that failed (read, write, connect)
            code: Machine-readable error code
            details: Additional context data
            cause: Original exception that caused this error
        """
        super().__init__(message, code, details, cause)
        self.storage_type = storage_type
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["storage_type"] = self.storage_type
        result["operation"] = self.operation
        return result


class StorageConnectionError(StorageException):
    """Exception raised when storage connection fails."""

    def __init__(
        self,
        message: str,
        storage_type: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message, storage_type, "connect", "STORAGE_CONNECTION_ERROR", details, cause
        )


class StorageReadError(StorageException):
    """Exception raised when storage read fails."""

    def __init__(
        self,
        message: str,
        storage_type: str,
        key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        if key:
            details["key"] = key
        super().__init__(
            message, storage_type, "read", "STORAGE_READ_ERROR", details, cause
        )


class StorageWriteError(StorageException):
    """Exception raised when storage write fails."""

    def __init__(
        self,
        message: str,
        storage_type: str,
        key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        if key:
            details["key"] = key
        super().__init__(
            message, storage_type, "write", "STORAGE_WRITE_ERROR", details, cause
        )


class StorageTimeoutError(StorageException):
    """Exception raised when a storage call exceeds its deadline."""

    def __init__(
        self,
        message: str,
        storage_type: str,
        operation: str,
        timeout_seconds: float,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message, storage_type, operation, "STORAGE_TIMEOUT_ERROR", details
        )


class MessageException(ScanHubException):
    """Exception raised during message publishing."""

    retryable = True

    def __init__(
        self,
        message: str,
        message_id: Optional[str] = None,
        queue: Optional[str] = None,
        code: str = "MESSAGE_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize message exception.

        Args:
            message: Human-readable error message
            message_id: ID of the message that caused the error
            queue: Name of the queue involved
            code: Machine-readable error code
            details: Additional context data
            cause: Original exception that caused this error
        """
        super().__init__(message, code, details, cause)
        self.message_id = message_id
        self.queue = queue

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.message_id:
            result["message_id"] = self.message_id
        if self.queue:
            result["queue"] = self.queue
        return result


class MessageDeliveryError(MessageException):
    """Exception raised when message delivery fails."""

    def __init__(
        self,
        message: str,
        message_id: Optional[str] = None,
        queue: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message, message_id, queue, "MESSAGE_DELIVERY_ERROR", details, cause
        )


class ScanDispatchError(ScanHubException):
    """
    Exception raised when a file was stored but its scan job could not be
    published. The file record is flagged as dispatch pending.
    """

    retryable = True

    def __init__(self, sha256: str, cause: Optional[Exception] = None):
        super().__init__(
            "File stored but the scan request could not be published",
            "SCAN_DISPATCH_ERROR",
            {"sha256": sha256, "dispatch_pending": True},
            cause,
        )
        self.sha256 = sha256


class NotificationError(ScanHubException):
    """Exception raised when an email notification cannot be sent."""

    def __init__(
        self,
        message: str,
        recipient: Optional[str] = None,
        template: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        details = {}
        if recipient:
            details["recipient"] = recipient
        if template:
            details["template"] = template
        super().__init__(message, "NOTIFICATION_ERROR", details, cause)
