"""
Scan Dispatcher
===============
Publishes scan requests for content hashes to the analysis queue.
"""

import asyncio
from typing import Optional

from ..core.config import get_config, MessagingConfig
from ..core.logging_config import get_component_logger
from ..core.exceptions import MessageException, MessageDeliveryError

from .broker import MessageBroker, QueueConfig, get_message_broker
from .message import ScanRequest

logger = get_component_logger("dispatcher")


class ScanDispatcher:
    """
    Publishes one scan request per call.

    There is no deduplication and no retry here: dispatching the same hash
    twice queues two scans, and a failed publish is reported to the caller.
    """

    def __init__(
        self,
        broker: Optional[MessageBroker] = None,
        topic: Optional[str] = None,
        publish_timeout: Optional[float] = None,
        config: Optional[MessagingConfig] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            broker: Message broker instance
            topic: Topic / routing key scan requests are published under
            publish_timeout: Seconds to wait for the broker to accept a message
            config: Messaging configuration
        """
        config = config or get_config().messaging
        self.broker = broker or get_message_broker(config=config)
        self.topic = topic or config.scan_topic
        self.publish_timeout = publish_timeout or config.publish_timeout

    async def setup(self) -> None:
        """Declare the scan queue so requests survive until a worker attaches."""
        await self.broker.declare_queue(QueueConfig(name=self.topic, routing_key=self.topic))

    async def dispatch(self, sha256: str) -> ScanRequest:
        """
        Publish a scan request for ``sha256``.

        Args:
            sha256: Content hash of the file to scan

        Returns:
            ScanRequest: The published request

        Raises:
            MessageDeliveryError: If the broker rejects the message or does
                not answer within the publish timeout
        """
        request = ScanRequest.create(sha256)

        try:
            await asyncio.wait_for(
                self.broker.publish(request, self.topic),
                timeout=self.publish_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Scan request publish timed out", data={"sha256": sha256})
            raise MessageDeliveryError(
                f"Publish timed out after {self.publish_timeout}s",
                message_id=request.metadata.message_id,
                queue=self.topic,
                cause=e,
            )
        except MessageException:
            logger.error("Scan request publish failed", data={"sha256": sha256})
            raise
        except Exception as e:
            logger.error(f"Scan request publish failed: {e}", data={"sha256": sha256})
            raise MessageDeliveryError(
                f"Failed to publish message: {str(e)}",
                message_id=request.metadata.message_id,
                queue=self.topic,
                cause=e,
            )

        logger.info(
            "Scan request published",
            data={"sha256": sha256, "message_id": request.metadata.message_id},
        )
        return request
