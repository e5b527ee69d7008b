from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

import pika
import pika.exceptions

rabbit_logger = logging.getLogger("RabbitMQ")


class DeliveryMode(Enum):
    """AMQP delivery modes, selected by name from config."""
    DIRECT = 1
    PERSISTENT = 2

    @classmethod
    def parse(cls, name: str) -> "DeliveryMode":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown delivery mode '{name}'. Choose one of {[m.name for m in cls]}")


@dataclass(frozen=True)
class ConnectionConfig:
    host: str = "localhost"
    port: int = 5672
    virtual_host: str = "/"
    username: str = "guest"
    password: str = "guest"
    heartbeat: int = 500
    connection_attempts: int = 5
    retry_delay: float = 5.0

    def parameters(self) -> pika.ConnectionParameters:
        return pika.ConnectionParameters(
            host=self.host,
            port=self.port,
            virtual_host=self.virtual_host,
            credentials=pika.PlainCredentials(self.username, self.password),
            heartbeat=self.heartbeat,
        )


@dataclass(frozen=True)
class ConsumedMessage:
    body: bytes
    correlation_id: Optional[str]
    delivery_tag: int


class RabbitMQBase:
    """Base class handling RabbitMQ connection and channel setup with retries."""
    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._connection = None
        self._channel = None
        self._connect_with_retry()

    def _connect_with_retry(self):
        """Establishes connection with RabbitMQ using retries."""
        max_retries = max(self.config.connection_attempts, 1)
        retries = 0
        while retries < max_retries:
            try:
                if self._channel and self._channel.is_open:
                    self._channel.close()
                if self._connection and self._connection.is_open:
                    self._connection.close()

                self._connection = pika.BlockingConnection(self.config.parameters())
                self._channel = self._open_channel()
                rabbit_logger.info(f"action: connect | result: success | host: {self.config.host}:{self.config.port}")
                return
            except pika.exceptions.AMQPConnectionError as e:
                retries += 1
                rabbit_logger.warning(f"Connection attempt {retries}/{max_retries} failed: {e}. Retrying in {self.config.retry_delay}s...")
                if retries >= max_retries:
                    rabbit_logger.error("Max connection retries reached. Could not connect to RabbitMQ.")
                    raise
                time.sleep(self.config.retry_delay)

    def _open_channel(self):
        return self._connection.channel()

    @property
    def channel(self):
        """Ensures channel is active, reconnects if necessary."""
        if not self._connection or self._connection.is_closed:
            rabbit_logger.warning("Connection is closed. Attempting to reconnect...")
            self._connect_with_retry()
        elif not self._channel or self._channel.is_closed:
            rabbit_logger.warning("Channel is closed, but connection seems open. Recreating channel...")
            try:
                self._channel = self._open_channel()
                rabbit_logger.info("Channel successfully recreated.")
            except pika.exceptions.AMQPError as e:
                rabbit_logger.error(f"Failed to recreate channel: {e}. Attempting full reconnect...")
                self._connect_with_retry()

        return self._channel

    def stop(self):
        """Closes the channel and connection gracefully."""
        try:
            if self._channel and self._channel.is_open:
                self._channel.close()
                rabbit_logger.info("RabbitMQ channel closed.")
            if self._connection and self._connection.is_open:
                self._connection.close()
                rabbit_logger.info("RabbitMQ connection closed.")
        except pika.exceptions.AMQPError as e:
            rabbit_logger.error(f"Error closing RabbitMQ resources: {e}", exc_info=True)
        finally:
            self._channel = None
            self._connection = None


class RabbitMQProducer(RabbitMQBase):
    """Publishes straight to named queues through the default exchange.

    Publisher confirms are enabled on every channel, and messages are sent
    with ``mandatory=True``: a nack or a missing queue raises instead of
    dropping the message silently.
    """
    def __init__(self, config: ConnectionConfig, delivery_mode: DeliveryMode = DeliveryMode.PERSISTENT):
        self.delivery_mode = delivery_mode
        super().__init__(config)

    def _open_channel(self):
        channel = self._connection.channel()
        channel.confirm_delivery()
        return channel

    def publish(self, message: bytes, queue: str, correlation_id: Optional[str] = None, ttl_ms: int = 0):
        properties = pika.BasicProperties(
            delivery_mode=self.delivery_mode.value,
            correlation_id=correlation_id,
            expiration=str(ttl_ms) if ttl_ms > 0 else None,
        )
        try:
            self.channel.basic_publish(
                exchange="",
                routing_key=queue,
                body=message,
                properties=properties,
                mandatory=True,
            )
            rabbit_logger.debug(f"Published message to queue '{queue}' with correlation_id '{correlation_id}'")
        except (pika.exceptions.UnroutableError, pika.exceptions.NackError) as e:
            rabbit_logger.error(f"Broker refused message for queue '{queue}': {e}")
            raise
        except pika.exceptions.AMQPError as e:
            rabbit_logger.error(f"Failed to publish message to queue '{queue}': {e}", exc_info=True)
            raise


class RabbitMQConsumer(RabbitMQBase):
    """Pulls a bounded number of messages from an existing queue."""
    def __init__(self, config: ConnectionConfig, queue_name: str, prefetch_count: int = 0):
        self.queue_name = queue_name
        self.prefetch_count = prefetch_count
        super().__init__(config)

    def drain(self, max_count: int = 0, inactivity_timeout: float = 10.0, browse: bool = False) -> Iterator[ConsumedMessage]:
        """Yield messages until *max_count* is reached (0 = no limit) or the
        queue stays silent for *inactivity_timeout* seconds.

        In browse mode nothing is acked, so the broker puts every message
        back on the queue once the channel closes.
        """
        ch = self.channel
        if self.prefetch_count:
            ch.basic_qos(prefetch_count=self.prefetch_count)

        received = 0
        try:
            for method, properties, body in ch.consume(self.queue_name, inactivity_timeout=inactivity_timeout):
                if method is None:
                    rabbit_logger.info(f"No message on '{self.queue_name}' for {inactivity_timeout}s, stopping")
                    break

                received += 1
                yield ConsumedMessage(
                    body=body,
                    correlation_id=getattr(properties, "correlation_id", None),
                    delivery_tag=method.delivery_tag,
                )
                if not browse:
                    ch.basic_ack(delivery_tag=method.delivery_tag)

                if max_count and received >= max_count:
                    break
        finally:
            if ch.is_open:
                ch.cancel()
            rabbit_logger.info(f"action: drain | result: success | queue: {self.queue_name} | received: {received}")
