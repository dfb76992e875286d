"""RabbitMQ ingestion workers."""

from rag_pipeline.workers.ingestion_worker import IngestionWorker, InvalidMessageError
from rag_pipeline.workers.queue_consumer import QueueConsumer

__all__ = ["IngestionWorker", "InvalidMessageError", "QueueConsumer"]
