"""Shared pytest fixtures."""

from __future__ import annotations

from typing import List, Optional, Set, Tuple

import pytest

from recovery.errors import PublishError
from recovery.publisher import Publisher


class InMemoryPublisher(Publisher):
    """Collects published messages per queue; can be told to refuse some."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, Optional[str], bytes]] = []
        self.unreachable_queues: Set[str] = set()
        self.refused_correlation_ids: Set[str] = set()
        self.closed = False

    def publish(self, data: bytes, queue: str, *, correlation_id: Optional[str] = None) -> None:
        if queue in self.unreachable_queues:
            raise PublishError(queue, "connection timeout")
        if correlation_id in self.refused_correlation_ids:
            raise PublishError(queue, "message rejected")
        self.sent.append((queue, correlation_id, data))

    def messages_on(self, queue: str) -> List[Tuple[Optional[str], bytes]]:
        return [(cid, body) for q, cid, body in self.sent if q == queue]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def broker() -> InMemoryPublisher:
    return InMemoryPublisher()
