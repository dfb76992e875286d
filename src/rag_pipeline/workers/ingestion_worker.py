"""Ingestion worker: turns queue messages into ingestion runs."""

import json
from typing import Optional

from aio_pika.abc import AbstractIncomingMessage
from pydantic import ValidationError

from rag_pipeline.models.ingestion import IngestionMessage, IngestionSummary
from rag_pipeline.services.ingestion_service import IngestionOrchestrator
from rag_pipeline.utils.errors import INVALID_REQUEST, PipelineException
from rag_pipeline.utils.logging import get_logger, log_error

logger = get_logger("ingestion_worker")


class InvalidMessageError(PipelineException):
    """Queue message body is not a valid ingestion request."""

    reason_category = INVALID_REQUEST

    def __init__(self, message: str):
        super().__init__(message=message, status_code=400, code="INVALID_MESSAGE")


class IngestionWorker:
    """
    Process ingestion jobs received from RabbitMQ.

    A message is acknowledged once its document is ingested. Malformed
    messages and failed runs are rejected without requeue, so the broker
    routes them to the dead-letter queue.
    """

    def __init__(self, orchestrator: Optional[IngestionOrchestrator] = None):
        self.orchestrator = orchestrator or IngestionOrchestrator()

    @staticmethod
    def parse_message(body: bytes) -> IngestionMessage:
        """Decode a JSON message body."""
        try:
            return IngestionMessage(**json.loads(body.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError, ValidationError) as e:
            raise InvalidMessageError(f"Invalid message format: {e}") from e

    async def process_message(self, message: IngestionMessage) -> IngestionSummary:
        """
        Ingest the document named by a message.

        Raises:
            PipelineException: If ingestion fails
        """
        logger.info(f"Processing ingestion job: document_key={message.document_key}")
        summary = await self.orchestrator.ingest(message.document_key)
        logger.info(
            f"Ingestion job finished: document_key={summary.document_key}, "
            f"vectors={summary.vectors_uploaded}"
        )
        return summary

    async def handle_message(self, incoming_message: AbstractIncomingMessage) -> None:
        """
        Handle one incoming RabbitMQ message.

        Raises:
            PipelineException: If the message is invalid or its ingestion fails
                (the message is rejected before the exception propagates)
        """
        async with incoming_message.process(requeue=False):
            try:
                message = self.parse_message(incoming_message.body)
                await self.process_message(message)
            except PipelineException as e:
                logger.error(
                    f"Rejecting message {incoming_message.message_id}: {e.message} "
                    f"(code={e.code}, reason={e.reason_category})"
                )
                raise
            except Exception as e:
                log_error(e, context={"message_id": incoming_message.message_id})
                raise PipelineException(f"Unexpected error handling message: {e}") from e
