"""End-to-end websocket tests against the FastAPI app."""

import asyncio

import pytest
from starlette.datastructures import Headers
from starlette.websockets import WebSocketDisconnect

from geopresence.api.v1.ws_rooms import _serve_presence
from geopresence.runtime.presence import Connection, room_registry


def _geo(lat, lng):
    return {"cf-iplatitude": str(lat), "cf-iplongitude": str(lng)}


class FailingSocket:
    """Stand-in transport whose receive or send raises instead of closing cleanly."""

    def __init__(self, conn_id, *, receive_error=None, send_error=None):
        self.headers = Headers(_geo(10, 20))
        self.query_params = {"id": conn_id}
        self.receive_error = receive_error
        self.send_error = send_error
        self.sent = []

    async def accept(self):
        pass

    async def close(self, code=1000, reason=None):
        pass

    async def receive(self):
        if self.receive_error is not None:
            raise self.receive_error
        await asyncio.Event().wait()

    async def send_json(self, data):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)


def _queued_types(conn):
    types = []
    while not conn.outbox.empty():
        item = conn.outbox.get_nowait()
        types.append(item.type)
    return types


class TestPresenceSocket:
    def test_join_and_disconnect_scenario(self, client):
        with client.websocket_connect("/v1/rooms/default/ws?id=visitor-y", headers=_geo(30, 40)) as y:
            with client.websocket_connect("/v1/rooms/default/ws?id=visitor-x", headers=_geo(10, 20)) as x:
                assert y.receive_json() == {
                    "type": "add-marker",
                    "position": {"id": "visitor-x", "lat": 10.0, "lng": 20.0},
                }
                assert x.receive_json() == {
                    "type": "add-marker",
                    "position": {"id": "visitor-y", "lat": 30.0, "lng": 40.0},
                }

            # x closed its socket
            assert y.receive_json() == {"type": "remove-marker", "id": "visitor-x"}

    def test_snapshot_lists_existing_members(self, client):
        with client.websocket_connect("/v1/rooms/lobby/ws?id=a", headers=_geo(1, 2)) as a:
            with client.websocket_connect("/v1/rooms/lobby/ws?id=b", headers=_geo(3, 4)) as b:
                assert b.receive_json()["position"]["id"] == "a"
                assert a.receive_json()["position"]["id"] == "b"

                with client.websocket_connect("/v1/rooms/lobby/ws?id=c") as c:
                    snapshot = {c.receive_json()["position"]["id"] for _ in range(2)}
                    assert snapshot == {"a", "b"}
                    assert a.receive_json()["position"] == {"id": "c", "lat": 0.0, "lng": 0.0}
                    assert b.receive_json()["position"]["id"] == "c"

    def test_missing_geolocation_uses_fallback(self, client):
        with client.websocket_connect("/v1/rooms/lobby/ws?id=watcher") as watcher:
            with client.websocket_connect("/v1/rooms/lobby/ws?id=anon"):
                assert watcher.receive_json()["position"] == {"id": "anon", "lat": 0.0, "lng": 0.0}

    def test_server_assigns_ids_when_not_supplied(self, client):
        with client.websocket_connect("/v1/rooms/lobby/ws") as first:
            with client.websocket_connect("/v1/rooms/lobby/ws") as second:
                from_first = first.receive_json()["position"]["id"]
                from_second = second.receive_json()["position"]["id"]
                assert from_first and from_second
                assert from_first != from_second

    def test_incoming_frames_are_ignored(self, client):
        with client.websocket_connect("/v1/rooms/lobby/ws?id=watcher") as watcher:
            with client.websocket_connect("/v1/rooms/lobby/ws?id=chatty") as chatty:
                assert watcher.receive_json()["position"]["id"] == "chatty"
                chatty.send_text("hello?")
                chatty.send_bytes(b"\x00\x01")
                chatty.send_json({"type": "add-marker"})
            assert watcher.receive_json() == {"type": "remove-marker", "id": "chatty"}

    def test_rooms_are_isolated(self, client):
        with client.websocket_connect("/v1/rooms/north/ws?id=n1") as n1:
            with client.websocket_connect("/v1/rooms/south/ws?id=s1"):
                with client.websocket_connect("/v1/rooms/north/ws?id=n2"):
                    assert n1.receive_json()["position"]["id"] == "n2"

    def test_default_room_route(self, client):
        with client.websocket_connect("/v1/ws?id=one") as one:
            with client.websocket_connect("/v1/rooms/default/ws?id=two"):
                assert one.receive_json()["position"]["id"] == "two"


class TestRejectedConnections:
    def test_duplicate_id_closed_with_policy_violation(self, client):
        with client.websocket_connect("/v1/rooms/lobby/ws?id=same") as first:
            with client.websocket_connect("/v1/rooms/lobby/ws?id=watcher"):
                assert first.receive_json()["position"]["id"] == "watcher"

            assert first.receive_json() == {"type": "remove-marker", "id": "watcher"}

            with client.websocket_connect("/v1/rooms/lobby/ws?id=same") as second:
                with pytest.raises(WebSocketDisconnect) as exc:
                    second.receive_json()
                assert exc.value.code == 1008

            # the original member is untouched and nobody heard about the duplicate
            with client.websocket_connect("/v1/rooms/lobby/ws?id=late") as late:
                assert late.receive_json()["position"]["id"] == "same"
                assert first.receive_json()["position"]["id"] == "late"

    def test_invalid_client_id_rejected(self, client):
        with client.websocket_connect("/v1/rooms/lobby/ws?id=not%20ok!") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == 1008


class TestRoomsApi:
    def test_unknown_room_404(self, client):
        res = client.get("/v1/rooms/nowhere")
        assert res.status_code == 404
        assert res.json() == {"detail": "room not found"}

    def test_participant_counts(self, client):
        assert client.get("/v1/rooms").json() == {"rooms": []}

        with client.websocket_connect("/v1/rooms/lobby/ws?id=a"):
            with client.websocket_connect("/v1/rooms/lobby/ws?id=b") as b:
                # b has its snapshot, so both joins are done
                assert b.receive_json()["position"]["id"] == "a"

                assert client.get("/v1/rooms/lobby").json() == {"name": "lobby", "participant_count": 2}
                assert client.get("/v1/rooms").json() == {
                    "rooms": [{"name": "lobby", "participant_count": 2}]
                }


class TestTransportFailures:
    @pytest.mark.asyncio
    async def test_receive_error_runs_leave(self):
        watcher = Connection(position=(0.0, 0.0), id="watcher")
        room, _ = await room_registry.join("lobby", watcher)
        sock = FailingSocket("dropped", receive_error=ConnectionResetError("peer reset"))

        await asyncio.wait_for(_serve_presence(sock, "lobby"), timeout=1.0)

        assert _queued_types(watcher) == ["add-marker", "remove-marker"]
        assert room.member_ids() == ["watcher"]

    @pytest.mark.asyncio
    async def test_send_error_runs_leave(self):
        watcher = Connection(position=(0.0, 0.0), id="watcher")
        room, _ = await room_registry.join("lobby", watcher)
        # The watcher's snapshot record is the first send, and it fails.
        sock = FailingSocket("dropped", send_error=ConnectionResetError("broken pipe"))

        await asyncio.wait_for(_serve_presence(sock, "lobby"), timeout=1.0)

        assert sock.sent == []
        assert _queued_types(watcher) == ["add-marker", "remove-marker"]
        assert room.member_ids() == ["watcher"]
