"""Bounded per-connection outbound buffer.

Producers never wait on it: ``put`` is synchronous. Only ``log`` frames are
ever given up to overflow; control frames (acks, status changes, errors)
stay queued in order. When the buffer is full the overflow policy decides
what happens to log lines:

- ``drop_oldest``: the oldest buffered log line is discarded and counted
  against its deployment. The reader receives one truncation marker per
  affected deployment ahead of the surviving frames.
- ``reject``: ``put`` raises ``DeliveryOverflow`` and the line is lost.

Control frames have their own allowance of ``capacity`` frames; beyond that
the oldest control frame is discarded without a marker.
"""

import asyncio
from collections import OrderedDict, deque
from typing import Literal, get_args

from app.core.exceptions import DeliveryOverflow
from app.models.messages import LogMessage, ServerMessage

OverflowPolicy = Literal["drop_oldest", "reject"]

OVERFLOW_POLICIES: frozenset[str] = frozenset(get_args(OverflowPolicy))


def validate_policy(policy: str) -> OverflowPolicy:
    if policy not in OVERFLOW_POLICIES:
        raise ValueError(
            f"overflow policy must be one of {sorted(OVERFLOW_POLICIES)}, got {policy!r}"
        )
    return policy  # type: ignore[return-value]


class OutboundBuffer:
    """FIFO of server frames waiting to be written to one connection."""

    def __init__(
        self,
        owner: str,
        capacity: int = 100,
        policy: OverflowPolicy = "drop_oldest",
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.owner = owner
        self.capacity = capacity
        self.policy = validate_policy(policy)

        self._items: deque[ServerMessage] = deque()
        # deployment id -> lines dropped since the last marker was read
        self._dropped: OrderedDict[str, int] = OrderedDict()
        self._ready = asyncio.Event()
        self._lines = 0
        self._closed = False
        self.dropped_total = 0
        self.dropped_control = 0

    def __len__(self) -> int:
        return len(self._items)

    def put(self, item: ServerMessage) -> bool:
        """Enqueue a frame.

        Returns:
            True if an older log line was dropped to make room.

        Raises:
            DeliveryOverflow: ``item`` is a log line, the line allowance is
                used up and the policy is ``reject``.
        """
        if self._closed:
            return False

        if isinstance(item, LogMessage):
            dropped = self._make_room_for_line()
            self._lines += 1
        else:
            dropped = None
            if len(self._items) - self._lines >= self.capacity:
                self._evict_oldest_control()

        self._items.append(item)
        self._ready.set()
        return dropped is not None

    def _make_room_for_line(self) -> LogMessage | None:
        """Free a line slot. Returns the line given up, if any."""
        if self._lines < self.capacity:
            return None
        if self.policy == "reject":
            raise DeliveryOverflow(self.owner, self.capacity)

        for index, frame in enumerate(self._items):
            if isinstance(frame, LogMessage):
                del self._items[index]
                self._lines -= 1
                self._count_drop(frame)
                return frame
        return None

    def _evict_oldest_control(self) -> None:
        for index, frame in enumerate(self._items):
            if not isinstance(frame, LogMessage):
                del self._items[index]
                self.dropped_control += 1
                return

    def _count_drop(self, line: LogMessage) -> None:
        self._dropped[line.deployment_id] = self._dropped.get(line.deployment_id, 0) + 1
        self.dropped_total += 1

    def get_nowait(self) -> ServerMessage | None:
        """Pop the next frame, or None when nothing is buffered."""
        if self._dropped:
            deployment_id, count = self._dropped.popitem(last=False)
            return LogMessage.truncation_marker(deployment_id, count)
        if self._items:
            item = self._items.popleft()
            if isinstance(item, LogMessage):
                self._lines -= 1
            return item
        return None

    async def get(self) -> ServerMessage | None:
        """Wait for the next frame. Returns None once closed and drained."""
        while True:
            item = self.get_nowait()
            if item is not None:
                return item
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()

    def drain(self) -> list[ServerMessage]:
        """Pop everything currently buffered, markers included."""
        items = []
        while (item := self.get_nowait()) is not None:
            items.append(item)
        return items

    def close(self) -> None:
        """Stop accepting frames and wake any waiting reader."""
        self._closed = True
        self._ready.set()
