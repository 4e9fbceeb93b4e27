"""
Message Broker Module
=====================
Abstract broker interface with RabbitMQ and Kafka implementations.

This module provides:
- Abstract broker interface
- RabbitMQ implementation
- Kafka implementation
- In-memory implementation for tests and development
- Automatic broker selection
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass

from ..core.config import get_config, MessagingConfig
from ..core.logging_config import get_logger
from ..core.exceptions import MessageException, MessageDeliveryError

from .message import ScanRequest

logger = get_logger(__name__)


@dataclass
class QueueConfig:
    """Configuration for a message queue."""

    name: str
    routing_key: Optional[str] = None
    durable: bool = True
    exclusive: bool = False
    auto_delete: bool = False
    message_ttl: Optional[int] = None  # milliseconds


class MessageBroker(ABC):
    """
    Abstract message broker interface.

    Provides a unified publishing API for different message broker
    implementations. Consuming is left to the analysis workers.
    """

    def __init__(self, config: MessagingConfig):
        """
        Initialize the broker.

        Args:
            config: Messaging configuration
        """
        self.config = config
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if broker is connected."""
        return self._connected

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the broker.

        Raises:
            MessageException: If connection fails
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """
        Close connection to the broker.
        """
        pass

    @abstractmethod
    async def declare_queue(self, config: QueueConfig) -> None:
        """
        Declare a queue so published requests are retained until consumed.

        Args:
            config: Queue configuration
        """
        pass

    @abstractmethod
    async def publish(
        self,
        message: ScanRequest,
        routing_key: str,
    ) -> None:
        """
        Publish a message.

        Args:
            message: Message to publish
            routing_key: Routing key / topic

        Raises:
            MessageDeliveryError: If the broker did not accept the message
        """
        pass


class RabbitMQBroker(MessageBroker):
    """
    RabbitMQ message broker implementation.

    Uses aio-pika for async RabbitMQ communication.
    """

    def __init__(self, config: MessagingConfig):
        """
        Initialize RabbitMQ broker.

        Args:
            config: Messaging configuration
        """
        super().__init__(config)
        self._connection = None
        self._channel = None
        self._exchange = None
        self._queues: Dict[str, Any] = {}

    async def connect(self) -> None:
        """Establish connection to RabbitMQ."""
        try:
            import aio_pika

            url = (
                f"amqp://{self.config.username}:{self.config.password}@"
                f"{self.config.host}:{self.config.port}{self.config.virtual_host}"
            )

            self._connection = await aio_pika.connect_robust(
                url,
                timeout=self.config.connection_timeout,
            )

            self._channel = await self._connection.channel(publisher_confirms=True)

            self._exchange = await self._channel.declare_exchange(
                self.config.exchange_name,
                aio_pika.ExchangeType.TOPIC,
                durable=True,
            )

            self._connected = True
            logger.info("Connected to RabbitMQ")

        except ImportError:
            raise MessageException(
                "aio-pika is required for RabbitMQ support",
                code="MISSING_DEPENDENCY",
            )
        except Exception as e:
            raise MessageException(
                f"Failed to connect to RabbitMQ: {str(e)}",
                code="CONNECTION_ERROR",
                cause=e,
            )

    async def disconnect(self) -> None:
        """Close RabbitMQ connection."""
        try:
            if self._channel and not self._channel.is_closed:
                await self._channel.close()

            if self._connection and not self._connection.is_closed:
                await self._connection.close()

            self._connected = False
            logger.info("Disconnected from RabbitMQ")

        except Exception as e:
            logger.error(f"Error disconnecting from RabbitMQ: {e}")

    async def declare_queue(self, config: QueueConfig) -> None:
        """Declare a durable queue and bind it to the exchange."""
        arguments = {}
        if config.message_ttl:
            arguments["x-message-ttl"] = config.message_ttl

        queue = await self._channel.declare_queue(
            config.name,
            durable=config.durable,
            exclusive=config.exclusive,
            auto_delete=config.auto_delete,
            arguments=arguments if arguments else None,
        )
        await queue.bind(self._exchange, config.routing_key or config.name)

        self._queues[config.name] = queue
        logger.debug(f"Declared queue: {config.name}")

    async def publish(
        self,
        message: ScanRequest,
        routing_key: str,
    ) -> None:
        """Publish message to RabbitMQ."""
        import aio_pika

        if not self._exchange:
            raise MessageDeliveryError(
                f"Exchange not declared: {self.config.exchange_name}",
                message_id=message.metadata.message_id,
                queue=routing_key,
            )

        try:
            amqp_message = aio_pika.Message(
                body=message.to_bytes(),
                message_id=message.metadata.message_id,
                timestamp=datetime.fromisoformat(message.metadata.timestamp),
                headers=message.metadata.to_headers(),
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                content_type="text/plain",
            )

            await self._exchange.publish(amqp_message, routing_key)
            logger.debug(f"Published message {message.metadata.message_id} to {routing_key}")

        except Exception as e:
            raise MessageDeliveryError(
                f"Failed to publish message: {str(e)}",
                message_id=message.metadata.message_id,
                queue=routing_key,
                cause=e,
            )


class KafkaBroker(MessageBroker):
    """
    Kafka message broker implementation.

    Uses aiokafka for async Kafka communication.
    """

    def __init__(self, config: MessagingConfig):
        """
        Initialize Kafka broker.

        Args:
            config: Messaging configuration
        """
        super().__init__(config)
        self._producer = None

    async def connect(self) -> None:
        """Establish connection to Kafka."""
        try:
            from aiokafka import AIOKafkaProducer

            self._producer = AIOKafkaProducer(
                bootstrap_servers=self.config.kafka_bootstrap_servers,
                value_serializer=lambda v: v,
            )

            await self._producer.start()
            self._connected = True
            logger.info("Connected to Kafka")

        except ImportError:
            raise MessageException(
                "aiokafka is required for Kafka support",
                code="MISSING_DEPENDENCY",
            )
        except Exception as e:
            raise MessageException(
                f"Failed to connect to Kafka: {str(e)}",
                code="CONNECTION_ERROR",
                cause=e,
            )

    async def disconnect(self) -> None:
        """Close Kafka connections."""
        try:
            if self._producer:
                await self._producer.stop()

            self._connected = False
            logger.info("Disconnected from Kafka")

        except Exception as e:
            logger.error(f"Error disconnecting from Kafka: {e}")

    async def declare_queue(self, config: QueueConfig) -> None:
        """Create Kafka topic (queues are topics in Kafka)."""
        # Kafka topics are auto-created by default
        # For production, use kafka-admin-client to create topics
        logger.debug(f"Kafka topic will be auto-created: {config.name}")

    async def publish(
        self,
        message: ScanRequest,
        routing_key: str,
    ) -> None:
        """Publish message to Kafka topic."""
        if not self._producer:
            raise MessageDeliveryError(
                "Producer not initialized",
                message_id=message.metadata.message_id,
                queue=routing_key,
            )

        try:
            await self._producer.send_and_wait(
                routing_key,
                message.to_bytes(),
                key=message.sha256.encode("ascii"),
                headers=[
                    (name, value.encode("utf-8"))
                    for name, value in message.metadata.to_headers().items()
                ],
            )
            logger.debug(f"Published message {message.metadata.message_id} to {routing_key}")

        except Exception as e:
            raise MessageDeliveryError(
                f"Failed to publish message: {str(e)}",
                message_id=message.metadata.message_id,
                queue=routing_key,
                cause=e,
            )


class InMemoryBroker(MessageBroker):
    """
    In-memory message broker for testing.

    Provides a simple queue implementation without external dependencies.
    Every published message is also kept in a per-topic history so tests
    can count dispatches without draining the queue.
    """

    def __init__(self, config: MessagingConfig):
        """
        Initialize in-memory broker.

        Args:
            config: Messaging configuration
        """
        super().__init__(config)
        self._queues: Dict[str, asyncio.Queue] = {}
        self._history: Dict[str, List[ScanRequest]] = {}

    async def connect(self) -> None:
        """No-op for in-memory broker."""
        self._connected = True
        logger.info("In-memory broker connected")

    async def disconnect(self) -> None:
        """Clean up in-memory broker."""
        self._queues.clear()
        self._connected = False
        logger.info("In-memory broker disconnected")

    async def declare_queue(self, config: QueueConfig) -> None:
        """Create in-memory queue."""
        name = config.routing_key or config.name
        if name not in self._queues:
            self._queues[name] = asyncio.Queue()
            logger.debug(f"Created in-memory queue: {name}")

    async def publish(
        self,
        message: ScanRequest,
        routing_key: str,
    ) -> None:
        """Publish to in-memory queue."""
        if routing_key not in self._queues:
            self._queues[routing_key] = asyncio.Queue()

        await self._queues[routing_key].put(message)
        self._history.setdefault(routing_key, []).append(message)
        logger.debug(f"Published message {message.metadata.message_id} to {routing_key}")

    def get_queue(self, routing_key: str) -> asyncio.Queue:
        """Return the queue behind a topic, creating it if needed."""
        return self._queues.setdefault(routing_key, asyncio.Queue())

    def published(self, routing_key: str) -> List[ScanRequest]:
        """All messages ever published to a topic, in publish order."""
        return list(self._history.get(routing_key, []))


def create_message_broker(
    broker_type: Optional[str] = None,
    config: Optional[MessagingConfig] = None,
) -> MessageBroker:
    """
    Create a new message broker instance.

    Args:
        broker_type: Broker type (rabbitmq, kafka, memory)
        config: Messaging configuration

    Returns:
        MessageBroker: Broker instance
    """
    config = config or get_config().messaging
    broker_type = broker_type or config.broker_type

    if broker_type == "rabbitmq":
        return RabbitMQBroker(config)
    elif broker_type == "kafka":
        return KafkaBroker(config)
    elif broker_type == "memory":
        return InMemoryBroker(config)
    else:
        raise ValueError(f"Unknown broker type: {broker_type}")


# Broker factory
_broker_instance: Optional[MessageBroker] = None


def get_message_broker(
    broker_type: Optional[str] = None,
    config: Optional[MessagingConfig] = None,
) -> MessageBroker:
    """
    Get or create the process-wide message broker instance.

    Args:
        broker_type: Broker type (rabbitmq, kafka, memory)
        config: Messaging configuration

    Returns:
        MessageBroker: Broker instance
    """
    global _broker_instance

    if _broker_instance is None:
        _broker_instance = create_message_broker(broker_type, config)

    return _broker_instance
