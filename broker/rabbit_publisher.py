from __future__ import annotations

"""RabbitMQ-backed implementation of the *Publisher* abstraction."""

from typing import Optional

import pika.exceptions

from broker.rabbit_wrapper import RabbitMQProducer
from recovery.errors import PublishError
from recovery.publisher import Publisher


class RabbitPublisher(Publisher):
    """Forwards ``publish`` calls to a RabbitMQ producer.

    When ``second_queue`` is set every message is also sent there, and the
    publish only counts as successful if both sends are confirmed.
    """

    def __init__(self, producer: RabbitMQProducer, *, second_queue: Optional[str] = None, ttl_ms: int = 0) -> None:
        self._producer = producer
        self._second_queue = second_queue
        self._ttl_ms = ttl_ms

    def publish(self, data: bytes, queue: str, *, correlation_id: Optional[str] = None) -> None:
        targets = [queue] if not self._second_queue else [queue, self._second_queue]
        for target in targets:
            try:
                self._producer.publish(data, target, correlation_id=correlation_id, ttl_ms=self._ttl_ms)
            except pika.exceptions.AMQPError as e:
                raise PublishError(target, str(e) or type(e).__name__) from e

    def close(self) -> None:
        self._producer.stop()
