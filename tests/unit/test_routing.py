"""Unit tests for the subscription routing table."""

import pytest

from app.core.channel import Connection
from app.core.exceptions import ChannelConnectionError
from app.core.outbound import OutboundBuffer
from app.core.routing import RoutingTable, shard_index


def make_connection() -> Connection:
    return Connection(outbound=OutboundBuffer("test"))


class TestRoutingTable:
    """Tests for RoutingTable."""

    def test_shard_index_is_stable(self):
        assert shard_index("42", 16) == shard_index("42", 16)
        assert 0 <= shard_index("deployment-xyz", 16) < 16

    def test_invalid_shard_count(self):
        with pytest.raises(ValueError):
            RoutingTable(0)

    @pytest.mark.asyncio
    async def test_add_is_idempotent(self):
        table = RoutingTable(4)
        conn = make_connection()

        assert await table.add(conn, "42") is True
        assert await table.add(conn, "42") is False
        assert table.subscribers("42") == (conn,)
        assert conn.subscriptions == {"42"}
        assert table.subscription_count() == 1

    @pytest.mark.asyncio
    async def test_discard(self):
        table = RoutingTable(4)
        conn = make_connection()
        await table.add(conn, "42")

        assert await table.discard(conn, "42") is True
        assert await table.discard(conn, "42") is False
        assert table.subscribers("42") == ()
        assert table.deployment_count() == 0

    @pytest.mark.asyncio
    async def test_remove_connection_releases_everything(self):
        table = RoutingTable(4)
        conn = make_connection()
        other = make_connection()
        for deployment_id in ("1", "2", "3"):
            await table.add(conn, deployment_id)
        await table.add(other, "2")

        removed = await table.remove_connection(conn)

        assert removed == {"1", "2", "3"}
        assert conn.subscriptions == set()
        assert table.subscribers("1") == ()
        assert table.subscribers("2") == (other,)
        assert table.subscription_count() == 1

    @pytest.mark.asyncio
    async def test_closed_connection_cannot_subscribe(self):
        table = RoutingTable(4)
        conn = make_connection()
        conn.closed = True

        with pytest.raises(ChannelConnectionError):
            await table.add(conn, "42")
        assert table.subscribers("42") == ()
