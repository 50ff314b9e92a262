from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


# ---- server -> clients ----

class MarkerPositionOut(BaseModel):
    id: str
    lat: float
    lng: float


class AddMarkerOut(BaseModel):
    type: Literal["add-marker"] = "add-marker"
    position: MarkerPositionOut


class RemoveMarkerOut(BaseModel):
    type: Literal["remove-marker"] = "remove-marker"
    id: str


ServerToClient = Annotated[Union[AddMarkerOut, RemoveMarkerOut], Field(discriminator="type")]

_server_to_client = TypeAdapter(ServerToClient)


def parse_server_message(raw: str | bytes | dict[str, Any]) -> AddMarkerOut | RemoveMarkerOut:
    """
    Parse one server frame on the receiving side.
    Raises pydantic.ValidationError for unknown types or missing fields,
    json.JSONDecodeError for non-JSON text.
    """
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    return _server_to_client.validate_python(raw)
