"""
Plain data types shared by the session store, controllers, client and server.

Everything that crosses the wire has a from_payload/to_payload pair; payload keys
are camelCase to match the JSON frames.
"""
from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

WHITE = "white"
BLACK = "black"
SPECTATOR = "spectator"
SEATS = (WHITE, BLACK)

_SEAT_ALIASES = {"w": WHITE, "b": BLACK, WHITE: WHITE, BLACK: BLACK, SPECTATOR: SPECTATOR}


def normalize_seat(value: Any) -> Optional[str]:
    """Map wire spellings ('w', 'white', 'spectator', ...) onto seat names."""
    if value is None:
        return None
    seat = _SEAT_ALIASES.get(str(value).strip().lower())
    if seat is None:
        raise ValueError(f"unknown seat {value!r}")
    return seat


def other_seat(seat: str) -> str:
    return BLACK if seat == WHITE else WHITE


def normalize_move(move: Any) -> str:
    """Return a move descriptor as a string; {from, to, promotion} becomes UCI."""
    if isinstance(move, Mapping):
        src = str(move.get("from") or "").strip().lower()
        dst = str(move.get("to") or "").strip().lower()
        promo_suffix = (move.get("promotion") or "").strip()[:1].lower()
        if not (src and dst):
            raise ValueError(f"move needs from/to squares: {dict(move)!r}")
        return f"{src}{dst}{promo_suffix}"
    if not isinstance(move, str) or not move.strip():
        raise ValueError(f"bad move descriptor {move!r}")
    return move.strip()


@dataclass(frozen=True)
class Participant:
    """Canonical identity of a user in a room; user_id is the only key compared."""

    user_id: str
    display_name: str = ""
    avatar: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Mapping) -> "Participant":
        uid = data.get("id") or data.get("userId")
        if not uid:
            raise ValueError(f"participant without id: {dict(data)!r}")
        return cls(
            user_id=str(uid),
            display_name=data.get("displayName") or data.get("username") or "",
            avatar=data.get("avatarUrl") or data.get("avatar"),
        )

    def to_payload(self) -> dict:
        return {"id": self.user_id, "displayName": self.display_name, "avatarUrl": self.avatar}


@dataclass(frozen=True)
class Player:
    user: Participant
    seat: str

    @classmethod
    def from_payload(cls, data: Mapping) -> "Player":
        user = data.get("user")
        participant = Participant.from_payload(user if isinstance(user, Mapping) else data)
        return cls(user=participant, seat=normalize_seat(data.get("seat") or data.get("color") or SPECTATOR))

    def to_payload(self) -> dict:
        return {"user": self.user.to_payload(), "seat": self.seat}


@dataclass(frozen=True)
class MoveRecord:
    """One confirmed (or speculative local) move and the position after it."""

    move: str
    fen: str
    index: int
    actor: Optional[str] = None
    ts: float = field(default_factory=time.time)

    @classmethod
    def from_payload(cls, data: Mapping) -> "MoveRecord":
        index = data.get("index")
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise ValueError(f"move record needs a non-negative integer index, got {index!r}")
        fen = data.get("fen")
        if not fen:
            raise ValueError(f"move record {index} has no fen")
        ts = data.get("ts")
        return cls(
            move=normalize_move(data.get("move")),
            fen=str(fen),
            index=index,
            actor=data.get("actor"),
            ts=float(ts) if ts is not None else time.time(),
        )

    def to_payload(self) -> dict:
        return {"move": self.move, "fen": self.fen, "index": self.index, "actor": self.actor, "ts": self.ts}


@dataclass(frozen=True)
class ChatMessage:
    id: str
    user: Participant
    text: str
    ts: float

    @classmethod
    def from_payload(cls, data: Mapping) -> "ChatMessage":
        return cls(
            id=str(data["id"]),
            user=Participant.from_payload(data.get("user") or {}),
            text=str(data.get("text", "")),
            ts=float(data.get("ts") or time.time()),
        )

    def to_payload(self) -> dict:
        return {"id": self.id, "user": self.user.to_payload(), "text": self.text, "ts": self.ts}


@dataclass(frozen=True)
class Outcome:
    """How a game finished, as announced by the authoritative peer."""

    reason: str
    winner: Optional[str] = None
    loser: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Mapping) -> "Outcome":
        return cls(
            reason=data.get("reason") or "game-over",
            winner=data.get("winner"),
            loser=data.get("loser"),
            message=data.get("message"),
        )

    def to_payload(self) -> dict:
        return {"reason": self.reason, "winner": self.winner, "loser": self.loser, "message": self.message}


@dataclass(frozen=True)
class Clocks:
    # milliseconds left per side; None when the room has no clock
    white: Optional[int] = None
    black: Optional[int] = None
    running: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Mapping) -> "Clocks":
        def _ms(*keys):
            for k in keys:
                if isinstance(data.get(k), (int, float)):
                    return int(data[k])
            return None

        running = data.get("running")
        return cls(
            white=_ms(WHITE, "w"),
            black=_ms(BLACK, "b"),
            running=_SEAT_ALIASES.get(str(running).strip().lower()) if running else None,
        )

    def remaining(self, seat: str) -> Optional[int]:
        return self.white if seat == WHITE else self.black

    def to_payload(self) -> dict:
        return {"white": self.white, "black": self.black, "running": self.running}
