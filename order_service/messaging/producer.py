import json
import logging
import threading
import time

import pika

from .. import config

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """
    Publishes JSON events to a topic exchange.

    Retries the connection while RabbitMQ is not ready (common in Docker
    Compose). One connection is shared, so publishing is serialized.
    """

    def __init__(self, host=None, exchange_name=None, exchange_type="topic",
                 max_retries=None, retry_delay=5):
        self.host = host or config.RABBITMQ_HOST
        self.exchange_name = exchange_name or config.EVENTS_EXCHANGE
        self.exchange_type = exchange_type
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None
        self._lock = threading.Lock()

    def connect(self):
        """Establishes a connection to RabbitMQ with retry logic."""
        attempt = 0
        while True:
            try:
                parameters = pika.ConnectionParameters(
                    host=self.host, heartbeat=600, blocked_connection_timeout=300
                )
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()
                # Declare the exchange (durable ensures it survives restarts)
                self.channel.exchange_declare(
                    exchange=self.exchange_name,
                    exchange_type=self.exchange_type,
                    durable=True
                )
                logger.info("Connected to RabbitMQ exchange %s", self.exchange_name)
                return
            except pika.exceptions.AMQPConnectionError:
                attempt += 1
                if self.max_retries is not None and attempt > self.max_retries:
                    raise
                logger.warning("RabbitMQ not ready yet, retrying in %s seconds...", self.retry_delay)
                time.sleep(self.retry_delay)

    def publish(self, routing_key: str, message: dict):
        """
        Publishes a message to the exchange with a specific routing key.

        Args:
            routing_key (str): The topic key (e.g. 'order.saved', 'cache.invalidate').
            message (dict): The data payload to send.
        """
        with self._lock:
            # Reconnect if the connection was lost
            if not self.connection or self.connection.is_closed:
                self.connect()
            try:
                self.channel.basic_publish(
                    exchange=self.exchange_name,
                    routing_key=routing_key,
                    body=json.dumps(message, default=str),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # Make message persistent
                        content_type="application/json"
                    )
                )
            except pika.exceptions.AMQPError:
                logger.exception("Failed to publish %s", routing_key)
                raise
        logger.debug("Sent event %s: %s", routing_key, message)

    def close(self):
        """Closes the connection cleanly."""
        with self._lock:
            if self.connection and not self.connection.is_closed:
                self.connection.close()
