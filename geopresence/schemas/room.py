from __future__ import annotations

from pydantic import BaseModel
from typing import List


class RoomOut(BaseModel):
    name: str
    participant_count: int = 0


class RoomListOut(BaseModel):
    rooms: List[RoomOut]
