from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Tuple, Union

from geopresence.core import settings
from geopresence.schemas.ws import AddMarkerOut, MarkerPositionOut, RemoveMarkerOut

logger = logging.getLogger(__name__)

PresenceEvent = Union[AddMarkerOut, RemoveMarkerOut]

# Marks the end of a connection's outbox.
_CLOSED = object()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PresenceError(Exception):
    pass


class DuplicateConnectionError(PresenceError):
    """Join for a connection id that is already a member of the room."""


class RoomClosedError(PresenceError):
    """Join on a room the registry has already torn down."""


class ConnectionClosedError(PresenceError):
    """Delivery to a connection whose outbox has been closed."""


class OutboxFullError(PresenceError):
    """Delivery to a connection that has stopped draining its outbox."""


@dataclass(eq=False)
class Connection:
    """
    One live client inside one room.

    id: opaque, stable for the connection's lifetime
    position: (lat, lng), resolved once at connect time
    outbox: FIFO of events waiting to be written to the transport
    max_pending: live events allowed to wait in the outbox (None: no cap)
    """
    position: Tuple[float, float]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    max_pending: int | None = field(default_factory=lambda: settings.OUTBOX_MAX_PENDING, repr=False)
    closed: bool = field(default=False, init=False)
    _streaming: bool = field(default=False, init=False, repr=False)

    def marker(self) -> MarkerPositionOut:
        lat, lng = self.position
        return MarkerPositionOut(id=self.id, lat=lat, lng=lng)

    def deliver(self, event: PresenceEvent) -> None:
        if self.closed:
            raise ConnectionClosedError(f"connection {self.id} is closed")
        if self.max_pending is not None and self.outbox.qsize() >= self.max_pending:
            raise OutboxFullError(f"connection {self.id} has {self.outbox.qsize()} unsent events")
        self.outbox.put_nowait(event)

    def preload(self, events: List[PresenceEvent]) -> None:
        """Queue the join snapshot. Not subject to max_pending."""
        for event in events:
            self.outbox.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.outbox.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[PresenceEvent]:
        """
        Lazy stream of everything delivered to this connection, in delivery order.
        Ends after close(). Can only be consumed once.
        """
        if self._streaming:
            raise RuntimeError(f"event stream for connection {self.id} already consumed")
        self._streaming = True

        while True:
            item = await self.outbox.get()
            if item is _CLOSED:
                return
            yield item


class Room:
    """
    Presence membership for one named room.

    All membership mutation (join, leave, teardown) runs under one lock, so
    every member observes arrivals and departures in a single sequence.
    Fanout only enqueues into member outboxes; it never awaits the network.
    """

    def __init__(self, name: str):
        self.name = name
        self.members: Dict[str, Connection] = {}
        self.closed = False
        self.last_activity_time: datetime = _utc_now()
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def participant_count(self) -> int:
        return len(self.members)

    def member_ids(self) -> List[str]:
        return list(self.members)

    async def join(self, connection: Connection) -> List[MarkerPositionOut]:
        """
        Add a connection and announce it to everyone else.

        Returns the snapshot of members present before the insert. The same
        records are queued on the joiner's outbox ahead of any live event.
        """
        async with self._lock:
            if self.closed:
                raise RoomClosedError(f"room {self.name!r} is closed")
            if connection.id in self.members:
                self.logger.warning("Duplicate join for %s in room %r", connection.id, self.name)
                raise DuplicateConnectionError(f"connection {connection.id} already in room {self.name!r}")

            # Fanout first: members evicted by it must not appear in the snapshot.
            self._fanout(AddMarkerOut(position=connection.marker()))

            snapshot = [member.marker() for member in self.members.values()]
            connection.preload([AddMarkerOut(position=record) for record in snapshot])
            self.members[connection.id] = connection
            self.last_activity_time = _utc_now()

            self.logger.info(
                "Joined %s to room %r at %s (%d members)",
                connection.id, self.name, connection.position, len(self.members),
            )
            return snapshot

    async def leave(self, connection_id: str) -> bool:
        """Remove a member and announce its departure. Unknown ids are a no-op."""
        async with self._lock:
            connection = self.members.pop(connection_id, None)
            if connection is None:
                return False

            connection.close()
            self._fanout(RemoveMarkerOut(id=connection_id))
            self.last_activity_time = _utc_now()

            self.logger.info(
                "Removed %s from room %r (%d members)", connection_id, self.name, len(self.members),
            )
            return True

    async def close_if_idle(self, now: datetime, idle_seconds: float) -> bool:
        """Close the room when it has been empty for at least idle_seconds."""
        async with self._lock:
            if self.closed:
                return True
            if self.members:
                return False
            if (now - self.last_activity_time).total_seconds() < idle_seconds:
                return False
            self.closed = True
            return True

    def _fanout(self, event: PresenceEvent) -> None:
        # Caller holds the lock. The triggering connection is never in members here.
        stalled: List[Connection] = []
        for member in list(self.members.values()):
            try:
                member.deliver(event)
            except OutboxFullError:
                stalled.append(member)
            except Exception as e:
                self.logger.warning(
                    "Dropping %s for %s in room %r: %s", event.type, member.id, self.name, e,
                )

        for member in stalled:
            self._evict(member)

    def _evict(self, member: Connection) -> None:
        # Same effect as leave(), for a member that stopped reading. Caller holds the lock.
        if self.members.pop(member.id, None) is None:
            return
        self.logger.warning(
            "Evicting %s from room %r: %d unsent events", member.id, self.name, member.outbox.qsize(),
        )
        member.close()
        self._fanout(RemoveMarkerOut(id=member.id))


class RoomRegistry:
    """Explicit keyed store: room name -> Room, created on first use."""

    def __init__(self):
        self._rooms: Dict[str, Room] = {}

    def get(self, name: str) -> Room | None:
        return self._rooms.get(name)

    def get_or_create(self, name: str) -> Room:
        room = self._rooms.get(name)
        if room is None or room.closed:
            room = Room(name)
            self._rooms[name] = room
            logger.info("Created room %r", name)
        return room

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def clear(self) -> None:
        self._rooms.clear()

    async def join(self, name: str, connection: Connection) -> Tuple[Room, List[MarkerPositionOut]]:
        """Join the named room, retrying on a fresh room if it was torn down mid-join."""
        while True:
            room = self.get_or_create(name)
            try:
                snapshot = await room.join(connection)
            except RoomClosedError:
                continue
            return room, snapshot

    async def sweep(self, now: datetime | None = None, *, idle_seconds: float) -> List[str]:
        """Tear down rooms that have stayed empty for idle_seconds. Returns dropped names."""
        now = now or _utc_now()
        dropped: List[str] = []

        for name, room in list(self._rooms.items()):
            if not await room.close_if_idle(now, idle_seconds):
                continue
            # Another sweep may have dropped it, or a joiner replaced it.
            if self._rooms.get(name) is not room:
                continue
            self._rooms.pop(name)
            dropped.append(name)
            logger.info("Dropped idle room %r", name)

        return dropped


async def sweep_idle_rooms(registry: RoomRegistry, *, idle_seconds: float, interval: float) -> None:
    """
    Background task: periodically drop rooms with no members for idle_seconds.
    Runs until cancelled.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await registry.sweep(idle_seconds=idle_seconds)
        except Exception:
            logger.exception("Idle room sweep failed")


# Process-wide registry used by the API
room_registry = RoomRegistry()
