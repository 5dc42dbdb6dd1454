import json
import logging
import threading
import time

import pika

from . import config
from .cache import CACHE_INVALIDATE_EVENT, ReadCache

logger = logging.getLogger(__name__)


class CacheInvalidationConsumer:
    """Applies 'cache.invalidate' events from other instances to the local read cache."""

    def __init__(self, cache: ReadCache, host=None, exchange_name=None):
        self.cache = cache
        self.host = host or config.RABBITMQ_HOST
        self.exchange_name = exchange_name or config.EVENTS_EXCHANGE
        self.connection = None
        self.channel = None
        self.queue_name = None

    def connect(self):
        """Connects to RabbitMQ, retrying until it is ready."""
        while True:
            try:
                self.connection = pika.BlockingConnection(
                    pika.ConnectionParameters(host=self.host, heartbeat=600, blocked_connection_timeout=300))
                self.channel = self.connection.channel()
                self.channel.exchange_declare(exchange=self.exchange_name, exchange_type='topic', durable=True)

                # Exclusive queue: every instance receives every invalidation.
                result = self.channel.queue_declare(queue='', exclusive=True)
                self.queue_name = result.method.queue
                self.channel.queue_bind(exchange=self.exchange_name, queue=self.queue_name,
                                        routing_key=CACHE_INVALIDATE_EVENT)
                logger.info("Cache invalidation consumer connected to RabbitMQ")
                break
            except pika.exceptions.AMQPConnectionError as e:
                logger.warning("RabbitMQ not ready, retrying in 5s: %s", e)
                time.sleep(5)

    def callback(self, ch, method, properties, body):
        try:
            event = json.loads(body)
        except ValueError:
            logger.error("Dropping malformed invalidation event: %r", body)
            return
        resource = event.get("resource")
        scope = event.get("scope")
        if not resource or not scope:
            logger.warning("Invalidation event without resource or scope: %s", event)
            return
        self.cache.invalidate(resource, scope, event.get("id"))

    def start_listening(self):
        if not self.connection:
            self.connect()
        self.channel.basic_consume(queue=self.queue_name, on_message_callback=self.callback, auto_ack=True)
        logger.info("Waiting for cache invalidation events...")
        self.channel.start_consuming()


def start_consumer_thread(cache: ReadCache) -> threading.Thread:
    """Helper to run the consumer in a background thread."""
    consumer = CacheInvalidationConsumer(cache)
    thread = threading.Thread(target=consumer.start_listening, daemon=True)
    thread.start()
    return thread
