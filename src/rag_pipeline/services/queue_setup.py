"""RabbitMQ queue setup for ingestion jobs.

Declares the direct exchange, the durable job queue and its dead-letter
exchange and queue, where rejected jobs end up.
"""

from typing import Optional

import aio_pika
from aio_pika import ExchangeType

from rag_pipeline.config import RabbitMQSettings, get_settings
from rag_pipeline.utils.logging import get_logger

logger = get_logger("queue_setup")


def dead_letter_exchange_name(settings: RabbitMQSettings) -> str:
    return f"{settings.exchange_name}-dlx"


async def setup_queues(
    connection: aio_pika.abc.AbstractConnection,
    settings: Optional[RabbitMQSettings] = None,
) -> None:
    """
    Set up the ingestion exchange, queue and dead-letter queue.

    Creates:
    1. Dead-letter exchange (direct): ``<exchange_name>-dlx``
    2. Dead-letter queue bound to it
    3. Main exchange (direct)
    4. Main queue (dead-lettering to the DLX, optional TTL) bound to it

    Args:
        connection: RabbitMQ connection instance
        settings: RabbitMQ settings (defaults to the global settings)
    """
    cfg = settings or get_settings().rabbitmq
    dlx_name = dead_letter_exchange_name(cfg)
    try:
        channel = await connection.channel()

        dlx = await channel.declare_exchange(name=dlx_name, type=ExchangeType.DIRECT, durable=True)
        dlq = await channel.declare_queue(name=cfg.dead_letter_queue_name, durable=cfg.queue_durable)
        await dlq.bind(dlx, routing_key=cfg.routing_key)
        logger.info(f"Declared dead-letter queue: {cfg.dead_letter_queue_name} (exchange={dlx_name})")

        exchange = await channel.declare_exchange(
            name=cfg.exchange_name, type=ExchangeType.DIRECT, durable=True
        )

        queue_arguments = {
            "x-dead-letter-exchange": dlx_name,
            "x-dead-letter-routing-key": cfg.routing_key,
        }
        if cfg.message_ttl:
            queue_arguments["x-message-ttl"] = cfg.message_ttl
            logger.info(f"Configured message TTL: {cfg.message_ttl}ms")

        queue = await channel.declare_queue(
            name=cfg.queue_name,
            durable=cfg.queue_durable,
            arguments=queue_arguments,
        )
        await queue.bind(exchange, routing_key=cfg.routing_key)
        logger.info(
            f"Declared ingestion queue: {cfg.queue_name} "
            f"(exchange={cfg.exchange_name}, routing_key={cfg.routing_key}, durable={cfg.queue_durable})"
        )

        await channel.close()
    except Exception as e:
        logger.error(f"Failed to set up RabbitMQ queues: {e}", exc_info=True)
        raise
