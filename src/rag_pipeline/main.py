"""Ingestion worker process entry point.

Connects to RabbitMQ (with bounded retries), declares the queues, consumes
ingestion jobs until SIGINT/SIGTERM, then shuts down the consumer and the
service clients.
"""

import asyncio
import signal
from typing import Optional

import aio_pika
from aio_pika.abc import AbstractRobustConnection

from rag_pipeline.config import Settings, get_settings
from rag_pipeline.services.ingestion_service import IngestionOrchestrator
from rag_pipeline.services.queue_setup import setup_queues
from rag_pipeline.utils.logging import get_logger, setup_logging
from rag_pipeline.workers.ingestion_worker import IngestionWorker
from rag_pipeline.workers.queue_consumer import QueueConsumer

logger = get_logger("main")


async def connect_rabbitmq(settings: Settings) -> AbstractRobustConnection:
    """Open a robust RabbitMQ connection, retrying ``connect_retries`` times."""
    cfg = settings.rabbitmq
    last_error: Optional[Exception] = None
    for attempt in range(1, cfg.connect_retries + 1):
        try:
            connection = await aio_pika.connect_robust(cfg.url)
            logger.info(f"RabbitMQ connection successful on attempt {attempt}")
            return connection
        except Exception as e:
            last_error = e
            if attempt < cfg.connect_retries:
                logger.warning(
                    f"RabbitMQ connection attempt {attempt}/{cfg.connect_retries} failed: {e}. "
                    f"Retrying in {cfg.connect_retry_delay} seconds..."
                )
                await asyncio.sleep(cfg.connect_retry_delay)
    logger.error(f"All RabbitMQ connection attempts failed. Last error: {last_error}")
    raise ConnectionError(f"Could not connect to RabbitMQ: {last_error}") from last_error


async def run(settings: Optional[Settings] = None) -> None:
    """Run the ingestion worker until a termination signal arrives."""
    settings = settings or get_settings()
    logger.info(f"Starting {settings.app_name} worker (environment={settings.environment.value})")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops
            pass

    orchestrator = IngestionOrchestrator(settings=settings)
    connection = await connect_rabbitmq(settings)
    consumer: Optional[QueueConsumer] = None
    try:
        await setup_queues(connection, settings.rabbitmq)
        consumer = QueueConsumer(connection, IngestionWorker(orchestrator), settings.rabbitmq)
        await consumer.start()

        if not await orchestrator.vector_store.health_check():
            logger.warning(f"Qdrant is not reachable at {settings.qdrant.url}; jobs will fail until it is")

        await stop_event.wait()
        logger.info("Termination signal received")
    finally:
        if consumer is not None:
            await consumer.stop()
        await connection.close()
        await orchestrator.storage.close()
        await orchestrator.embedder.close()
        await orchestrator.vector_store.close()
        logger.info("Ingestion worker shut down")


def main() -> None:
    setup_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
