"""Log streaming channel.

Fans build log lines out to every connection subscribed to a deployment.
Connections are transport-agnostic: a WebSocket or SSE handler owns the
socket and pumps ``Connection.outbound`` onto the wire, while producers only
ever enqueue into that buffer.
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.config import Settings, settings as default_settings
from app.core.exceptions import (
    ChannelConnectionError,
    DeliveryOverflow,
    ProtocolError,
)
from app.core.outbound import OutboundBuffer, validate_policy
from app.core.routing import RoutingTable
from app.models.messages import (
    AckMessage,
    ErrorMessage,
    LogMessage,
    ServerMessage,
    StatusMessage,
    SubscribeMessage,
    UnsubscribeMessage,
    parse_client_message,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

_connection_ids = itertools.count(1)


@dataclass(eq=False)
class Connection:
    """One observer's persistent connection."""

    outbound: OutboundBuffer
    id: str = field(default_factory=lambda: f"conn-{next(_connection_ids)}")
    transport: str = "websocket"
    peer: str | None = None
    opened_at: datetime = field(default_factory=datetime.utcnow)
    subscriptions: set[str] = field(default_factory=set)
    closed: bool = False
    delivered: int = 0

    def age_seconds(self) -> float:
        return (datetime.utcnow() - self.opened_at).total_seconds()

    def send(self, message: ServerMessage) -> bool:
        """Queue a frame for this connection. Returns True if a frame was dropped."""
        return self.outbound.put(message)


class LogStreamChannel:
    """Per-deployment pub/sub over persistent connections.

    Ordering: lines published for one deployment reach every subscribed
    connection in publish order. Nothing is guaranteed across deployments.
    """

    def __init__(
        self,
        outbound_queue_size: int = 100,
        overflow_policy: str = "drop_oldest",
        shard_count: int = 16,
        max_connections: int = 10_000,
    ):
        if outbound_queue_size < 1:
            raise ValueError("outbound_queue_size must be at least 1")
        self.outbound_queue_size = outbound_queue_size
        self.overflow_policy = validate_policy(overflow_policy)
        self.max_connections = max_connections

        self._routes = RoutingTable(shard_count)
        self._connections: dict[str, Connection] = {}
        self._accepting = True
        self._published = 0
        self._overflows = 0

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "LogStreamChannel":
        config = config or default_settings
        return cls(
            outbound_queue_size=config.stream_outbound_queue_size,
            overflow_policy=config.stream_overflow_policy,
            shard_count=config.stream_shard_count,
            max_connections=config.stream_max_connections,
        )

    # Connection lifecycle

    def open_connection(
        self, transport: str = "websocket", peer: str | None = None
    ) -> Connection:
        """Register a new observer connection.

        Raises:
            ChannelConnectionError: The channel is shutting down or full.
        """
        if not self._accepting:
            raise ChannelConnectionError("Log channel is shutting down")
        if len(self._connections) >= self.max_connections:
            raise ChannelConnectionError(
                "Too many open connections",
                {"max_connections": self.max_connections},
            )

        connection = Connection(
            outbound=OutboundBuffer(
                owner="pending",
                capacity=self.outbound_queue_size,
                policy=self.overflow_policy,
            ),
            transport=transport,
            peer=peer,
        )
        connection.outbound.owner = connection.id
        self._connections[connection.id] = connection

        logger.info(
            "channel.connection.opened",
            connection_id=connection.id,
            transport=transport,
            peer=peer,
            open_connections=len(self._connections),
        )
        return connection

    async def close_connection(self, connection: Connection) -> None:
        """Tear down a connection and all of its subscriptions. Idempotent."""
        if connection.closed:
            return
        connection.closed = True
        removed = await self._routes.remove_connection(connection)
        connection.outbound.close()
        self._connections.pop(connection.id, None)

        logger.info(
            "channel.connection.closed",
            connection_id=connection.id,
            released_subscriptions=sorted(removed),
            delivered=connection.delivered,
            dropped=connection.outbound.dropped_total,
            duration_s=round(connection.age_seconds(), 3),
            open_connections=len(self._connections),
        )

    async def shutdown(self) -> None:
        """Stop accepting connections and close every open one."""
        self._accepting = False
        for connection in list(self._connections.values()):
            await self.close_connection(connection)

    # Subscriptions

    async def subscribe(self, connection: Connection, deployment_id: str) -> bool:
        """Register interest in a deployment's log lines.

        Subscribing twice is harmless; the second call returns False.

        Raises:
            ProtocolError: Empty deployment id.
            ChannelConnectionError: The connection is closed.
        """
        deployment_id = self._require_id(deployment_id)
        added = await self._routes.add(connection, deployment_id)
        logger.debug(
            "channel.subscribed",
            connection_id=connection.id,
            deployment_id=deployment_id,
            duplicate=not added,
        )
        return added

    async def unsubscribe(self, connection: Connection, deployment_id: str) -> bool:
        """Remove interest in a deployment. No-op if not subscribed."""
        deployment_id = self._require_id(deployment_id)
        removed = await self._routes.discard(connection, deployment_id)
        if removed:
            logger.debug(
                "channel.unsubscribed",
                connection_id=connection.id,
                deployment_id=deployment_id,
            )
        return removed

    # Producer side

    async def publish(self, deployment_id: str, line: str) -> int:
        """Deliver one log line to every connection subscribed to a deployment.

        Never waits on a consumer. Returns the number of connections the line
        was queued for.
        """
        self._published += 1
        return await self._fan_out(
            deployment_id, LogMessage(deployment_id=deployment_id, message=line)
        )

    async def publish_status(self, deployment_id: str, status: str) -> int:
        """Relay a deployment status change to its subscribers."""
        return await self._fan_out(
            deployment_id, StatusMessage(deployment_id=deployment_id, status=status)
        )

    async def _fan_out(self, deployment_id: str, message: ServerMessage) -> int:
        delivered = 0
        async with self._routes.lock_for(deployment_id):
            for connection in self._routes.subscribers(deployment_id):
                if connection.closed:
                    continue
                try:
                    if connection.send(message):
                        self._overflows += 1
                        logger.debug(
                            "channel.overflow",
                            connection_id=connection.id,
                            deployment_id=deployment_id,
                            dropped_total=connection.outbound.dropped_total,
                        )
                except DeliveryOverflow as e:
                    self._overflows += 1
                    logger.warning(
                        "channel.overflow.rejected",
                        connection_id=connection.id,
                        deployment_id=deployment_id,
                        capacity=e.capacity,
                    )
                    continue
                connection.delivered += 1
                delivered += 1
        return delivered

    # Client frames

    async def handle_message(
        self, connection: Connection, raw: str | bytes | dict[str, Any]
    ) -> SubscribeMessage | UnsubscribeMessage:
        """Parse and apply one client frame, acknowledging it on the connection.

        Raises:
            ProtocolError: Malformed frame. The connection stays open.
        """
        message = parse_client_message(raw)
        if isinstance(message, SubscribeMessage):
            await self.subscribe(connection, message.deployment_id)
            connection.send(
                AckMessage(type="subscribed", deployment_id=message.deployment_id)
            )
        else:
            await self.unsubscribe(connection, message.deployment_id)
            connection.send(
                AckMessage(type="unsubscribed", deployment_id=message.deployment_id)
            )
        return message

    def report_error(self, connection: Connection, error: ProtocolError) -> None:
        """Tell the observer its frame was rejected."""
        logger.info(
            "channel.protocol_error",
            connection_id=connection.id,
            error=error.message,
        )
        connection.send(ErrorMessage(message=error.message))

    # Introspection

    def get_connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def subscribers(self, deployment_id: str) -> tuple[Connection, ...]:
        return self._routes.subscribers(deployment_id)

    def stats(self) -> dict[str, int]:
        """Connection health counters."""
        now = datetime.utcnow()
        oldest = min(
            (c.opened_at for c in self._connections.values()), default=now
        )
        return {
            "open_connections": len(self._connections),
            "subscriptions": self._routes.subscription_count(),
            "watched_deployments": self._routes.deployment_count(),
            "lines_published": self._published,
            "overflows": self._overflows,
            "oldest_connection_age_seconds": int((now - oldest).total_seconds()),
        }

    @staticmethod
    def _require_id(deployment_id: str) -> str:
        if deployment_id is None or not str(deployment_id).strip():
            raise ProtocolError("deploymentId is required")
        return str(deployment_id)


# Singleton instance
_channel: LogStreamChannel | None = None


def get_log_channel() -> LogStreamChannel:
    """Get the log channel singleton."""
    global _channel
    if _channel is None:
        _channel = LogStreamChannel.from_settings()
    return _channel
