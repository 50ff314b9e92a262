from __future__ import annotations

import asyncio
import logging
import re

from fastapi import APIRouter, WebSocket
from fastapi.encoders import jsonable_encoder

from geopresence.core import settings
from geopresence.runtime.presence import Connection, DuplicateConnectionError, room_registry
from geopresence.services.position_resolver import resolve


router = APIRouter(tags=["rooms-ws"])

logger = logging.getLogger(__name__)

_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


async def _pump_events(websocket: WebSocket, conn: Connection) -> None:
    """Write the connection's outbox to the socket until the room closes it."""
    async for event in conn.events():
        await websocket.send_json(jsonable_encoder(event))


async def _drain_incoming(websocket: WebSocket) -> None:
    """
    Presence is server-to-client only; incoming frames are read and dropped.
    Returns when the client goes away.
    """
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _serve_presence(websocket: WebSocket, room_name: str) -> None:
    await websocket.accept()

    client_id = websocket.query_params.get("id")
    if client_id is not None and not _CLIENT_ID_RE.match(client_id):
        await websocket.close(code=1008, reason="invalid connection id")
        return

    position = resolve(websocket.headers)
    conn = Connection(position=position) if client_id is None else Connection(position=position, id=client_id)

    try:
        room, _snapshot = await room_registry.join(room_name, conn)
    except DuplicateConnectionError:
        await websocket.close(code=1008, reason="connection id already present")
        return

    sender = asyncio.create_task(_pump_events(websocket, conn))
    receiver = asyncio.create_task(_drain_incoming(websocket))
    try:
        done, _pending = await asyncio.wait(
            [sender, receiver],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.info("Connection %s in room %r ended: %r", conn.id, room_name, task.exception())
    finally:
        # Every exit path, clean or not, goes through leave.
        await room.leave(conn.id)
        for task in (sender, receiver):
            if not task.done():
                task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)


@router.websocket("/rooms/{room_name}/ws")
async def room_ws(room_name: str, websocket: WebSocket):
    await _serve_presence(websocket, room_name)


@router.websocket("/ws")
async def default_room_ws(websocket: WebSocket):
    await _serve_presence(websocket, settings.DEFAULT_ROOM)
