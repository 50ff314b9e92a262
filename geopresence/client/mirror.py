from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from geopresence.schemas.ws import AddMarkerOut, RemoveMarkerOut, parse_server_message

OWN_MARKER_SIZE = 0.1
PEER_MARKER_SIZE = 0.05


@dataclass(frozen=True)
class Marker:
    lat: float
    lng: float
    size: float


class MarkerMirror:
    """
    Receiving-side copy of a room's presence: id -> Marker.

    Feed it every frame from the presence socket; a globe renderer reads
    render_markers() on each animation tick.
    """

    def __init__(self, own_id: str | None = None):
        self.own_id = own_id
        self.markers: Dict[str, Marker] = {}

    @property
    def count(self) -> int:
        return len(self.markers)

    def apply(self, raw: str | bytes | dict[str, Any]) -> AddMarkerOut | RemoveMarkerOut:
        msg = parse_server_message(raw)
        if isinstance(msg, AddMarkerOut):
            pos = msg.position
            size = OWN_MARKER_SIZE if pos.id == self.own_id else PEER_MARKER_SIZE
            self.markers[pos.id] = Marker(lat=pos.lat, lng=pos.lng, size=size)
        else:
            self.markers.pop(msg.id, None)
        return msg

    def render_markers(self) -> List[dict[str, Any]]:
        return [
            {"location": [m.lat, m.lng], "size": m.size}
            for m in self.markers.values()
        ]
