"""Queue consumer for RabbitMQ message processing."""

from typing import Optional

import aio_pika
from aio_pika.abc import AbstractConnection, AbstractQueue

from rag_pipeline.config import RabbitMQSettings, get_settings
from rag_pipeline.utils.errors import PipelineException
from rag_pipeline.utils.logging import get_logger
from rag_pipeline.workers.ingestion_worker import IngestionWorker

logger = get_logger("queue_consumer")


class QueueConsumer:
    """
    RabbitMQ queue consumer for ingestion jobs.

    Handles:
    - Consuming messages from the ingestion queue with bounded prefetch
    - Processing messages via IngestionWorker
    - Keeping the consumer alive when a single job fails (the worker has
      already rejected it to the dead-letter queue)
    """

    def __init__(
        self,
        connection: AbstractConnection,
        worker: Optional[IngestionWorker] = None,
        settings: Optional[RabbitMQSettings] = None,
    ):
        self.connection = connection
        self.worker = worker or IngestionWorker()
        self._settings = settings or get_settings().rabbitmq
        self.channel: Optional[aio_pika.abc.AbstractChannel] = None
        self.queue: Optional[AbstractQueue] = None
        self._consumer_tag: Optional[str] = None
        self._running = False

    async def start(self) -> None:
        """Start consuming messages from the queue."""
        if self._running:
            logger.warning("Queue consumer is already running")
            return

        try:
            self.channel = await self.connection.channel()
            await self.channel.set_qos(prefetch_count=self._settings.prefetch_count)

            self.queue = await self.channel.declare_queue(name=self._settings.queue_name, passive=True)
            self._running = True
            self._consumer_tag = await self.queue.consume(self._on_message)
            logger.info(
                f"Consuming from queue: {self._settings.queue_name} "
                f"(prefetch_count={self._settings.prefetch_count})"
            )
        except Exception as e:
            logger.error(f"Failed to start queue consumer: {e}", exc_info=True)
            self._running = False
            raise

    async def stop(self) -> None:
        """Stop consuming messages."""
        if not self._running:
            return

        logger.info("Stopping queue consumer...")
        self._running = False

        if self.queue and self._consumer_tag:
            try:
                await self.queue.cancel(self._consumer_tag)
            except Exception as e:
                logger.error(f"Error cancelling queue consumer: {e}", exc_info=True)
            finally:
                self._consumer_tag = None

        if self.channel and not self.channel.is_closed:
            try:
                await self.channel.close()
                logger.info("Closed consumer channel")
            except Exception as e:
                logger.error(f"Error closing consumer channel: {e}", exc_info=True)

    async def _on_message(self, message: aio_pika.abc.AbstractIncomingMessage) -> None:
        try:
            await self.worker.handle_message(message)
        except PipelineException as e:
            logger.warning(f"Message dead-lettered: {e.code} (status_code={e.status_code})")

    @property
    def is_running(self) -> bool:
        """Check if consumer is running."""
        return self._running
