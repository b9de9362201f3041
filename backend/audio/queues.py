# backend/audio/queues.py
"""
Pending provider-message queue.

Holds fully encoded protocol messages (audio-append events and raw control
text) while the provider session is still connecting.

Requirements:
- Strict FIFO; flush order == arrival order
- Queueing happens at the protocol-message level, never raw audio
- Optional bound with explicit, counted drop behavior
- Deterministic, synchronous behavior
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque


@dataclass
class DropCounters:
    """
    Drop counters for observability.
    """
    overflow: int = 0


class PendingMessageQueue:
    """
    FIFO queue of provider-bound message strings.

    Drop rules:
    - max_messages == 0: unbounded, never drops
    - else: drop the NEW message if enqueue would exceed max_messages
      (keeps the already-queued prefix intact and in order)
    """

    def __init__(self, *, max_messages: int = 0) -> None:
        if max_messages < 0:
            raise ValueError("max_messages must be >= 0")

        self._max_messages: int = max_messages
        self._messages: Deque[str] = deque()
        self._queued_chars: int = 0
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, message: str) -> bool:
        """
        Enqueue a provider-bound message.

        Returns:
            True if enqueued
            False if dropped
        """
        if self._max_messages and len(self._messages) >= self._max_messages:
            self.drops.overflow += 1
            return False

        self._messages.append(message)
        self._queued_chars += len(message)
        return True

    def drain(self) -> tuple[str, ...]:
        """
        Atomically remove and return all queued messages in FIFO order.

        After this call, the queue is empty.
        """
        if not self._messages:
            return ()
        out = tuple(self._messages)
        self._messages.clear()
        self._queued_chars = 0
        return out

    def clear(self) -> None:
        """
        Drop all queued messages without counting them as drops.

        Used on teardown.
        """
        self._messages.clear()
        self._queued_chars = 0

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._messages)

    def snapshot(self) -> dict[str, int]:
        """
        Lightweight snapshot for logging.
        """
        return {
            "messages": len(self._messages),
            "queued_chars": self._queued_chars,
            "max_messages": self._max_messages,
            "dropped_overflow": self.drops.overflow,
        }
