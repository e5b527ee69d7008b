from __future__ import annotations

"""Domain-level abstraction for sending a message to a named queue.

The recovery code depends on this interface rather than on the RabbitMQ
client, so retry passes can run against any transport (or an in-memory fake).
"""

from abc import ABC, abstractmethod
from typing import Optional


class Publisher(ABC):
    """Minimal interface required by the retry and publish use-cases."""

    @abstractmethod
    def publish(self, data: bytes, queue: str, *, correlation_id: Optional[str] = None) -> None:
        """Send *data* to *queue*.

        Implementations raise ``recovery.errors.PublishError`` when the broker
        does not accept the message.
        """

    def close(self) -> None:
        pass
