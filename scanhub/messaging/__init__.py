"""
Messaging Module
================
Message broker abstraction layer supporting RabbitMQ and Kafka.

This module provides:
- Unified publishing interface
- Scan request serialization
- Scan dispatcher
"""

from .broker import (
    MessageBroker,
    QueueConfig,
    RabbitMQBroker,
    KafkaBroker,
    InMemoryBroker,
    create_message_broker,
    get_message_broker,
)
from .message import ScanRequest, ScanMetadata
from .dispatcher import ScanDispatcher

__all__ = [
    "MessageBroker",
    "QueueConfig",
    "RabbitMQBroker",
    "KafkaBroker",
    "InMemoryBroker",
    "create_message_broker",
    "get_message_broker",
    "ScanRequest",
    "ScanMetadata",
    "ScanDispatcher",
]
