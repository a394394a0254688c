"""Per-destination store of signaling messages that could not be pushed."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, List

from .models import PendingMessage, SignalingEnvelope
from .network import canonical_address


logger = logging.getLogger(__name__)


class PendingQueue:
    """FIFO per address, drained destructively on the first poll.

    There is no acknowledgement: a second poller, or a poll that arrives
    before the UI is ready, gets nothing.
    """

    def __init__(self, max_per_address: int = 100) -> None:
        self.max_per_address = max_per_address
        self._queues: Dict[str, Deque[PendingMessage]] = {}

    def put(self, address: str, envelope: SignalingEnvelope) -> PendingMessage:
        key = canonical_address(address)
        queue = self._queues.setdefault(key, deque(maxlen=self.max_per_address))
        if len(queue) == queue.maxlen:
            dropped = queue[0]
            logger.warning(
                "Pending queue for %s full, dropping oldest %s", key, dropped.type.value
            )
        message = PendingMessage(**envelope.model_dump())
        queue.append(message)
        logger.info("Stored %s for %s (available via polling)", envelope.type.value, key)
        return message

    def drain(self, address: str) -> List[PendingMessage]:
        messages = list(self._queues.pop(canonical_address(address), ()))
        if messages:
            logger.info("Returning %d pending message(s) for %s", len(messages), address)
        return messages

    def count(self, address: str) -> int:
        return len(self._queues.get(canonical_address(address), ()))

    def __len__(self) -> int:
        return sum(len(queue) for queue in self._queues.values())
