import json

import pytest
from fastapi.testclient import TestClient

from chess_client.client import RoomClient
from chess_client.models import MoveRecord, Participant
from chess_client.position import PositionEngine
from chess_client.server import app, rooms
from chess_client.transport import EventChannel


def make_records(moves, actor=None):
    """Ledger records for `moves` played from the starting position."""
    engine = PositionEngine()
    return [
        MoveRecord(move=m, fen=engine.apply(m), index=i, actor=actor, ts=float(i))
        for i, m in enumerate(moves)
    ]


class Wire:
    """EventChannel whose outbound frames are kept in a list."""

    def __init__(self) -> None:
        self.frames: list[str] = []
        self.channel = EventChannel(self.frames.append)

    def deliver(self, event: str, **payload) -> bool:
        return self.channel.dispatch({"type": event, **payload})

    def sent(self, event: str | None = None) -> list[dict]:
        frames = [json.loads(f) for f in self.frames]
        return [f for f in frames if event is None or f["type"] == event]


@pytest.fixture
def records():
    return make_records


@pytest.fixture
def wire():
    return Wire()


@pytest.fixture
def alice():
    return Participant("u-alice", "Alice")


@pytest.fixture
def bob():
    return Participant("u-bob", "Bob")


@pytest.fixture
def client(wire, alice):
    c = RoomClient(wire.channel, alice, playback_interval=0.001)
    yield c
    c.close()


@pytest.fixture
def room_snapshot(alice, bob):
    def build(seat="white", moves=(), players=None, **extra):
        if players is None:
            players = [
                {"user": alice.to_payload(), "seat": "white"},
                {"user": bob.to_payload(), "seat": "black"},
            ]
        return {
            "roomId": "r1",
            "seat": seat,
            "players": players,
            "moves": [m.to_payload() for m in moves],
            "lastIndex": len(moves) - 1,
            **extra,
        }

    return build


@pytest.fixture
def joined_client(client, wire, room_snapshot):
    client.join_room("r1")
    wire.deliver("room-joined", **room_snapshot())
    return client


@pytest.fixture
def server():
    rooms.clear()
    with TestClient(app) as test_client:
        yield test_client
