from __future__ import annotations

from fastapi import APIRouter, HTTPException

from geopresence.runtime.presence import Room, room_registry
from geopresence.schemas.room import RoomListOut, RoomOut

router = APIRouter()


def _build_room_out(room: Room) -> RoomOut:
    return RoomOut(name=room.name, participant_count=room.participant_count)


@router.get("", response_model=RoomListOut)
async def list_rooms() -> RoomListOut:
    rooms = [room for room in room_registry.rooms() if not room.closed]
    return RoomListOut(rooms=[_build_room_out(room) for room in rooms])


@router.get("/{room_name}", response_model=RoomOut)
async def get_room(room_name: str) -> RoomOut:
    room = room_registry.get(room_name)
    if room is None or room.closed:
        raise HTTPException(status_code=404, detail="room not found")
    return _build_room_out(room)
