import json
import logging
import os

import pika

logger = logging.getLogger(__name__)

# Unset disables publishing (local development and tests).
RABBITMQ_URL = os.getenv("RABBITMQ_URL")
EVENTS_QUEUE = os.getenv("EVENTS_QUEUE", "events")


def publish_event(event_type: str, data: dict) -> bool:
    """Publish a domain event to the shared ``events`` queue.

    Best-effort: the triggering state change has already committed, so a
    broker failure is logged and reported as ``False``.
    """
    if not RABBITMQ_URL:
        return False
    try:
        params = pika.URLParameters(RABBITMQ_URL)
        connection = pika.BlockingConnection(params)
        try:
            channel = connection.channel()
            channel.queue_declare(queue=EVENTS_QUEUE, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=EVENTS_QUEUE,
                body=json.dumps({"type": event_type, "data": data}),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
        return True
    except Exception as exc:
        logger.warning("Failed to publish event %s: %s", event_type, exc)
        return False
