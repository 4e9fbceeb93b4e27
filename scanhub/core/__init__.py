"""
ScanHub Core Module
===================
Core infrastructure components for the ScanHub submission service.

This module provides:
- Configuration management
- Logging infrastructure
- Exception hierarchy
- Security helpers and identifier generation
"""

from .config import Config, get_config, reload_config
from .logging_config import setup_logging, get_logger, get_component_logger
from .exceptions import (
    ScanHubException,
    ValidationException,
    NotFoundException,
    ConflictException,
    AuthenticationError,
    PermissionDeniedError,
    StorageException,
    MessageException,
)

__all__ = [
    "Config",
    "get_config",
    "reload_config",
    "setup_logging",
    "get_logger",
    "get_component_logger",
    "ScanHubException",
    "ValidationException",
    "NotFoundException",
    "ConflictException",
    "AuthenticationError",
    "PermissionDeniedError",
    "StorageException",
    "MessageException",
]
