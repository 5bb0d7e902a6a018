"""Live build log transports.

``/ws`` is the full-duplex channel: clients send ``subscribe`` and
``unsubscribe`` frames and receive ``log`` frames for every deployment they
watch. Each socket gets a reader task (client frames) and a writer task
(outbound buffer onto the wire); whichever finishes first ends the session.
"""

import asyncio
from contextlib import suppress
from typing import AsyncIterator

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from app.api.deps import ChannelDep
from app.config import settings
from app.core.channel import Connection, LogStreamChannel
from app.core.exceptions import ChannelConnectionError, ProtocolError
from app.models.messages import PingMessage, ServerMessage
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def iter_frames(
    connection: Connection, heartbeat_interval: float | None = None
) -> AsyncIterator[ServerMessage]:
    """Yield outbound frames until the connection closes.

    A ``ping`` frame is produced whenever nothing was queued for
    ``heartbeat_interval`` seconds, so half-open peers surface as send
    failures.
    """
    interval = heartbeat_interval or settings.stream_heartbeat_interval
    while True:
        try:
            frame = await asyncio.wait_for(connection.outbound.get(), timeout=interval)
        except asyncio.TimeoutError:
            yield PingMessage()
            continue
        if frame is None:
            return
        yield frame


async def open_websocket(websocket: WebSocket, channel: LogStreamChannel) -> Connection:
    """Complete the upgrade handshake and register the connection.

    Raises:
        ChannelConnectionError: The channel refused the connection or the
            handshake did not complete.
    """
    peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else None
    try:
        connection = channel.open_connection(transport="websocket", peer=peer)
    except ChannelConnectionError:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        raise

    try:
        await websocket.accept()
    except Exception as e:
        await channel.close_connection(connection)
        raise ChannelConnectionError(
            "WebSocket handshake failed",
            {"peer": peer, "error": str(e)},
        ) from e
    return connection


async def _read_frames(
    websocket: WebSocket, connection: Connection, channel: LogStreamChannel
) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

        raw = message.get("text")
        if raw is None:
            raw = message.get("bytes") or b""
        try:
            await channel.handle_message(connection, raw)
        except ProtocolError as e:
            channel.report_error(connection, e)


async def _write_frames(websocket: WebSocket, connection: Connection) -> None:
    async for frame in iter_frames(connection):
        try:
            await asyncio.wait_for(
                websocket.send_json(frame.to_wire()),
                timeout=settings.stream_send_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ChannelConnectionError(
                "Send timed out",
                {"connection_id": connection.id, "timeout": settings.stream_send_timeout},
            ) from e


@router.websocket("/ws")
async def log_stream(websocket: WebSocket, channel: ChannelDep) -> None:
    """Stream build logs for the deployments a client subscribes to."""
    try:
        connection = await open_websocket(websocket, channel)
    except ChannelConnectionError as e:
        logger.warning("channel.connection.rejected", error=e.message, details=e.details)
        return

    reader = asyncio.create_task(_read_frames(websocket, connection, channel))
    writer = asyncio.create_task(_write_frames(websocket, connection))
    try:
        done, pending = await asyncio.wait(
            {reader, writer}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(
                    "channel.connection.failed",
                    connection_id=connection.id,
                    error=str(error),
                    error_type=type(error).__name__,
                )
    finally:
        for task in (reader, writer):
            task.cancel()
        await channel.close_connection(connection)
        if (
            websocket.client_state != WebSocketState.DISCONNECTED
            and websocket.application_state != WebSocketState.DISCONNECTED
        ):
            with suppress(RuntimeError, OSError, WebSocketDisconnect):
                await websocket.close()
