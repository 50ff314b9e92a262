#!/usr/bin/env python3
"""
WebSocket Test Client for the geopresence API

Usage:
    python ws_test_client.py <server_url> [room] [--id CONNECTION_ID]

Examples:
    python ws_test_client.py ws://localhost:8000
    python ws_test_client.py ws://localhost:8000 default
    python ws_test_client.py wss://your-server.com lobby --id my-laptop

Prints every marker added or removed in the room and the current visitor count.
Press Ctrl+C to disconnect.
"""

import argparse
import asyncio
import json
import sys

import websockets
from pydantic import ValidationError

from geopresence.client.mirror import MarkerMirror
from geopresence.schemas.ws import AddMarkerOut


def print_event(mirror: MarkerMirror, msg) -> None:
    """Pretty print one applied presence event."""
    if isinstance(msg, AddMarkerOut):
        pos = msg.position
        you = " (you)" if pos.id == mirror.own_id else ""
        print(f"📍 ADD     {pos.id}{you} at ({pos.lat:.2f}, {pos.lng:.2f})")
    else:
        print(f"👋 REMOVE  {msg.id}")

    label = "visitor" if mirror.count == 1 else "visitors"
    print(f"   👥 {mirror.count} {label} online")


async def receive_markers(websocket, mirror: MarkerMirror) -> None:
    """Continuously apply and print server frames."""
    try:
        async for message in websocket:
            try:
                msg = mirror.apply(message)
            except (json.JSONDecodeError, ValidationError):
                print(f"⚠️  Received unexpected message: {message}")
                continue
            print_event(mirror, msg)
    except websockets.exceptions.ConnectionClosed as e:
        print(f"\n❌ Connection closed: {e}")


async def main(server_url: str, room: str | None, conn_id: str | None) -> None:
    """Connect and mirror presence until interrupted."""

    if room:
        ws_url = f"{server_url}/v1/rooms/{room}/ws"
    else:
        ws_url = f"{server_url}/v1/ws"
    if conn_id:
        ws_url = f"{ws_url}?id={conn_id}"

    print(f"🔌 Connecting to: {ws_url}")
    print("-" * 60)

    mirror = MarkerMirror(own_id=conn_id)
    try:
        async with websockets.connect(ws_url) as websocket:
            print("✅ Connected! Waiting for presence events...\n")
            await receive_markers(websocket, mirror)
    except websockets.exceptions.InvalidStatus as e:
        print(f"❌ Connection failed with status code: {e.response.status_code}")
    except websockets.exceptions.InvalidURI as e:
        print(f"❌ Invalid URI: {e}")
        print("   Make sure the server URL starts with ws:// or wss://")
    except ConnectionRefusedError:
        print("❌ Connection refused. Is the server running?")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Mirror presence markers for one room.")
    parser.add_argument("server_url")
    parser.add_argument("room", nargs="?", default=None)
    parser.add_argument("--id", dest="conn_id", default=None)
    args = parser.parse_args()

    server_url = args.server_url.rstrip("/")

    # Validate URL scheme
    if not server_url.startswith(("ws://", "wss://")):
        print("⚠️  Warning: URL should start with ws:// or wss://")
        print("   Assuming ws:// prefix...")
        server_url = f"ws://{server_url}"

    try:
        asyncio.run(main(server_url, args.room, args.conn_id))
    except KeyboardInterrupt:
        print("\n\n👋 Interrupted by user. Goodbye!")
        sys.exit(0)
