"""Subscription routing table for the log streaming channel."""

import asyncio
import zlib
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from app.core.exceptions import ChannelConnectionError

if TYPE_CHECKING:
    from app.core.channel import Connection


def shard_index(deployment_id: str, shard_count: int) -> int:
    """Stable shard for a deployment id (independent of PYTHONHASHSEED)."""
    return zlib.crc32(deployment_id.encode("utf-8")) % shard_count


@dataclass
class _Shard:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    subscribers: dict[str, set["Connection"]] = field(default_factory=dict)


class RoutingTable:
    """Maps deployment ids to subscribed connections.

    The table is split into shards by deployment id. Every read or write of a
    deployment's subscriber set happens under that shard's lock, so a
    ``publish`` never interleaves with a ``subscribe``, ``unsubscribe`` or
    ``remove_connection`` touching the same deployment.
    """

    def __init__(self, shard_count: int = 16):
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        self._shards = [_Shard() for _ in range(shard_count)]

    @property
    def shard_count(self) -> int:
        return len(self._shards)

    def _shard(self, deployment_id: str) -> _Shard:
        return self._shards[shard_index(deployment_id, len(self._shards))]

    async def add(self, connection: "Connection", deployment_id: str) -> bool:
        """Subscribe a connection. Returns False if it already was."""
        shard = self._shard(deployment_id)
        async with shard.lock:
            if connection.closed:
                raise ChannelConnectionError(
                    f"Connection {connection.id} is closed",
                    {"connection_id": connection.id},
                )
            subscribers = shard.subscribers.setdefault(deployment_id, set())
            if connection in subscribers:
                return False
            subscribers.add(connection)
            connection.subscriptions.add(deployment_id)
            return True

    async def discard(self, connection: "Connection", deployment_id: str) -> bool:
        """Unsubscribe a connection. Returns False if it was not subscribed."""
        shard = self._shard(deployment_id)
        async with shard.lock:
            return self._discard_locked(shard, connection, deployment_id)

    async def remove_connection(self, connection: "Connection") -> set[str]:
        """Drop every subscription of a connection in one step.

        Shard locks are taken in index order to avoid lock-order deadlocks
        with other multi-shard removals.
        """
        deployment_ids = set(connection.subscriptions)
        indexes = sorted(
            {shard_index(d, len(self._shards)) for d in deployment_ids}
        )
        async with AsyncExitStack() as stack:
            for index in indexes:
                await stack.enter_async_context(self._shards[index].lock)
            removed = set()
            for deployment_id in deployment_ids:
                if self._discard_locked(
                    self._shard(deployment_id), connection, deployment_id
                ):
                    removed.add(deployment_id)
        return removed

    def _discard_locked(
        self, shard: _Shard, connection: "Connection", deployment_id: str
    ) -> bool:
        connection.subscriptions.discard(deployment_id)
        subscribers = shard.subscribers.get(deployment_id)
        if not subscribers or connection not in subscribers:
            return False
        subscribers.discard(connection)
        if not subscribers:
            del shard.subscribers[deployment_id]
        return True

    def lock_for(self, deployment_id: str) -> asyncio.Lock:
        """The lock guarding a deployment's subscriber set."""
        return self._shard(deployment_id).lock

    def subscribers(self, deployment_id: str) -> tuple["Connection", ...]:
        """Snapshot of a deployment's subscribers."""
        return tuple(self._shard(deployment_id).subscribers.get(deployment_id, ()))

    def deployment_count(self) -> int:
        return sum(len(shard.subscribers) for shard in self._shards)

    def subscription_count(self) -> int:
        return sum(
            len(conns)
            for shard in self._shards
            for conns in shard.subscribers.values()
        )
