"""
Reference authoritative room server.

Small FastAPI app the client can play against locally and that the integration
tests drive through TestClient. It owns the truth for every room: seats, the
indexed move list, chat history, draw/rematch requests and the game result.
Every frame is JSON {"type": <event>, ...}; every client frame names its roomId.
"""
from __future__ import annotations

import asyncio
import json
import logging
import random
import time
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from chess_client.config import SETTINGS
from chess_client.errors import IllegalMove
from chess_client.models import BLACK, SEATS, SPECTATOR, WHITE, Outcome, Participant, other_seat
from chess_client.position import PositionEngine

log = logging.getLogger("room_server")

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---- Game room storage ----
Room = Dict[str, Any]
rooms: Dict[str, Room] = {}

_END_REASONS = {
    "Checkmate": "checkmate",
    "Stalemate": "stalemate",
    "Draw (insufficient material)": "insufficient-material",
    "Draw (3-fold repetition)": "threefold-repetition",
    "Draw (fifty moves)": "fifty-moves",
}


def generate_room_id(length: int = 6) -> str:
    # Short, friendly code; avoid ambiguous chars
    alphabet = "abcdefghjkmnpqrstuvwxyz23456789"
    return "".join(random.choice(alphabet) for _ in range(length))


def new_room(room_id: str, reserved: Optional[Dict[str, str]] = None) -> Room:
    return {
        "id": room_id,
        "engine": PositionEngine(),
        "moves": [],                          # move record payloads, index == position
        "clients": set(),                     # sockets currently in this room
        "users": {},                          # websocket -> Participant
        "players": {},                        # user_id -> Participant, in arrival order
        "seats": {WHITE: None, BLACK: None},  # colour -> user_id
        "reserved": reserved or {},           # user_id -> colour (rematch rooms)
        "messages": deque(maxlen=SETTINGS.message_cap),
        "pending_draw": None,
        "pending_rematch": None,
        "finished": None,
    }


def get_room(room_id: str) -> Room:
    room = rooms.get(room_id)
    if room is None:
        room = new_room(room_id)
        rooms[room_id] = room
    return room


def seat_of(room: Room, user_id: str) -> str:
    for colour, holder in room["seats"].items():
        if holder == user_id:
            return colour
    return SPECTATOR


def assign_seat(room: Room, user: Participant, preferred_color: Optional[str]) -> str:
    """Give the user their old seat, their reserved seat, or the first free one."""
    seats = room["seats"]
    current = seat_of(room, user.user_id)
    if current != SPECTATOR:
        return current

    reserved_for_others = {c for uid, c in room["reserved"].items() if uid != user.user_id}
    free = [c for c in SEATS if seats[c] is None and c not in reserved_for_others]
    if not free:
        return SPECTATOR

    wanted = room["reserved"].get(user.user_id)
    if wanted is None:
        if preferred_color == "random":
            wanted = random.choice(SEATS)
        elif preferred_color in SEATS:
            wanted = preferred_color
    colour = wanted if wanted in free else free[0]
    seats[colour] = user.user_id
    return colour


def players_payload(room: Room) -> list:
    return [
        {"user": user.to_payload(), "seat": seat_of(room, uid)}
        for uid, user in room["players"].items()
    ]


def snapshot(room: Room, seat: Optional[str] = None) -> dict:
    payload = {
        "roomId": room["id"],
        "players": players_payload(room),
        "moves": list(room["moves"]),
        "lastIndex": len(room["moves"]) - 1,
        "fen": room["engine"].fen(),
        "messages": list(room["messages"]),
        "finished": room["finished"],
        "pendingDrawOffer": room["pending_draw"],
        "pendingRematch": room["pending_rematch"],
    }
    if seat is not None:
        payload["seat"] = seat
    return payload


async def send(websocket: WebSocket, event: str, **payload) -> None:
    await websocket.send_text(json.dumps({"type": event, **payload}))


async def broadcast(room: Room, event: str, exclude: Optional[WebSocket] = None, **payload) -> None:
    clients: Set[WebSocket] = room["clients"]
    targets = [ws for ws in list(clients) if ws is not exclude]
    if not targets:
        return

    msg = json.dumps({"type": event, **payload})
    await asyncio.gather(
        *[ws.send_text(msg) for ws in targets],
        return_exceptions=True,
    )


async def finish(room: Room, reason: str, winner: Optional[str] = None, message: Optional[str] = None) -> None:
    loser = other_seat(winner) if winner in SEATS else None
    room["finished"] = Outcome(reason=reason, winner=winner, loser=loser, message=message).to_payload()
    room["pending_draw"] = None
    log.info("Room %s finished: %s (winner=%s)", room["id"], reason, winner)
    await broadcast(room, "game-over", **room["finished"])


def detach(websocket: WebSocket, conn: dict) -> Optional[Room]:
    """Take the socket out of its current room; its seat is kept for reconnects."""
    room = rooms.get(conn.get("room") or "")
    if room is None:
        return None
    room["clients"].discard(websocket)
    room["users"].pop(websocket, None)
    conn["room"] = None
    return room


# ---- Frame handlers ----
Handler = Callable[[WebSocket, dict, Room, Participant, dict], Awaitable[None]]


async def on_request_sync(websocket, conn, room, user, msg) -> None:
    await send(websocket, "room-joined", **snapshot(room, seat_of(room, user.user_id)))


async def on_send_move(websocket, conn, room, user, msg) -> None:
    engine: PositionEngine = room["engine"]
    seat = seat_of(room, user.user_id)
    if room["finished"] is not None:
        await send(websocket, "invalid-move", reason="Game is over")
        return
    if None in room["seats"].values():
        await send(websocket, "not-enough-players", error="Waiting for another player")
        return
    if seat != engine.turn:
        # Not your turn or spectator: no-op
        await send(websocket, "not-your-turn", error="Not your turn")
        return

    try:
        mv = engine.parse(msg.get("move"))
    except IllegalMove as exc:
        await send(websocket, "invalid-move", reason=f"Illegal move {exc.move!r}")
        return
    engine.board.push(mv)
    record = {
        "move": mv.uci(),
        "fen": engine.fen(),
        "index": len(room["moves"]),
        "actor": user.user_id,
        "ts": time.time(),
    }
    room["moves"].append(record)
    await broadcast(room, "opponent-move", **record)

    status = engine.status()
    if status.over:
        reason = _END_REASONS.get(status.text, "draw")
        await finish(room, reason, winner=seat if reason == "checkmate" else None, message=status.text)


async def on_send_chat(websocket, conn, room, user, msg) -> None:
    text = str(msg.get("text") or "").strip()
    if not text:
        return
    entry = {"id": uuid.uuid4().hex, "user": user.to_payload(), "text": text, "ts": time.time()}
    room["messages"].append(entry)
    await broadcast(room, "chat-message", **entry)


async def on_offer_draw(websocket, conn, room, user, msg) -> None:
    if room["finished"] or room["pending_draw"] or seat_of(room, user.user_id) == SPECTATOR:
        return
    room["pending_draw"] = {"from": user.to_payload(), "ts": time.time()}
    await broadcast(room, "draw-offered", **room["pending_draw"])


def _answer_draw(room: Room, user: Participant) -> bool:
    pending = room["pending_draw"]
    if not pending or pending["from"]["id"] == user.user_id or seat_of(room, user.user_id) == SPECTATOR:
        return False
    room["pending_draw"] = None
    return True


async def on_accept_draw(websocket, conn, room, user, msg) -> None:
    if _answer_draw(room, user):
        await broadcast(room, "draw-accepted", by=user.to_payload())
        await finish(room, "draw-agreed", winner="draw", message="Game drawn by agreement")


async def on_decline_draw(websocket, conn, room, user, msg) -> None:
    if _answer_draw(room, user):
        await broadcast(room, "draw-declined", by=user.to_payload())


async def on_resign(websocket, conn, room, user, msg) -> None:
    seat = seat_of(room, user.user_id)
    if room["finished"] or seat == SPECTATOR:
        return
    await finish(room, "resign", winner=other_seat(seat), message=f"{seat.capitalize()} resigned")


async def on_player_timeout(websocket, conn, room, user, msg) -> None:
    loser = msg.get("loser")
    if room["finished"] or loser not in SEATS:
        return
    await finish(room, "timeout", winner=other_seat(loser))


async def on_request_rematch(websocket, conn, room, user, msg) -> None:
    if not room["finished"] or room["pending_rematch"] or seat_of(room, user.user_id) == SPECTATOR:
        return
    room["pending_rematch"] = {"from": user.to_payload(), "ts": time.time()}
    await broadcast(room, "rematch-requested", **room["pending_rematch"])


async def on_accept_rematch(websocket, conn, room, user, msg) -> None:
    pending = room["pending_rematch"]
    if not pending or pending["from"]["id"] == user.user_id or seat_of(room, user.user_id) == SPECTATOR:
        return
    # Colours swap for the rematch
    reserved = {uid: other_seat(colour) for colour, uid in room["seats"].items() if uid}
    new_id = generate_room_id()
    while new_id in rooms:
        new_id = generate_room_id()
    rooms[new_id] = new_room(new_id, reserved=reserved)
    room["pending_rematch"] = None
    await broadcast(room, "rematch-accepted", roomId=new_id, message="Rematch started")


async def on_decline_rematch(websocket, conn, room, user, msg) -> None:
    if not room["pending_rematch"]:
        return
    room["pending_rematch"] = None
    await broadcast(room, "rematch-declined", message="Rematch declined")


async def on_leave_room(websocket, conn, room, user, msg) -> None:
    detach(websocket, conn)
    if seat_of(room, user.user_id) == SPECTATOR and user not in room["users"].values():
        room["players"].pop(user.user_id, None)
    await broadcast(room, "players-updated", players=players_payload(room))


HANDLERS: Dict[str, Handler] = {
    "request-sync": on_request_sync,
    "send-move": on_send_move,
    "send-chat": on_send_chat,
    "offer-draw": on_offer_draw,
    "accept-draw": on_accept_draw,
    "decline-draw": on_decline_draw,
    "resign": on_resign,
    "player-timeout": on_player_timeout,
    "request-rematch": on_request_rematch,
    "accept-rematch": on_accept_rematch,
    "decline-rematch": on_decline_rematch,
    "leave-room": on_leave_room,
}


async def on_join_room(websocket: WebSocket, conn: dict, msg: dict) -> None:
    room_id = str(msg.get("roomId") or "").strip() or generate_room_id()
    try:
        user = Participant.from_payload(msg.get("user") or {})
    except ValueError:
        # Anonymous sockets still get to watch
        user = Participant(user_id=f"guest-{uuid.uuid4().hex[:8]}", display_name="guest")

    if conn.get("room") and conn["room"] != room_id:
        old = detach(websocket, conn)
        if old is not None:
            await broadcast(old, "players-updated", players=players_payload(old))

    room = get_room(room_id)
    room["clients"].add(websocket)
    room["users"][websocket] = user
    room["players"].setdefault(user.user_id, user)
    conn["room"] = room_id
    conn["user"] = user

    seat = assign_seat(room, user, msg.get("preferredColor"))
    log.info("User %s joined room %s as %s", user.user_id, room_id, seat)
    await send(websocket, "room-joined", **snapshot(room, seat))
    await broadcast(room, "players-updated", exclude=websocket, players=players_payload(room))


# ---- HTTP ----
@app.get("/rooms/{room_id}")
async def room_state(room_id: str) -> dict:
    room = rooms.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail=f"No room with id {room_id}")
    return snapshot(room)


# ---- WebSocket endpoint ----
@app.websocket("/ws")
async def ws_room(websocket: WebSocket) -> None:
    await websocket.accept()
    conn: dict = {"room": None, "user": None}

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except ValueError:
                await send(websocket, "error", error="malformed frame")
                continue
            if not isinstance(msg, dict):
                await send(websocket, "error", error="malformed frame")
                continue
            msg_type = msg.get("type")

            if msg_type == "join-room":
                await on_join_room(websocket, conn, msg)
                continue

            handler = HANDLERS.get(msg_type)
            if handler is None:
                await send(websocket, "error", error=f"unknown event {msg_type!r}")
                continue

            room = rooms.get(str(msg.get("roomId") or ""))
            if room is None:
                await send(websocket, "no-such-room", roomId=msg.get("roomId"))
                continue
            if conn["room"] != room["id"] or conn["user"] is None:
                await send(websocket, "error", error="join the room first")
                continue
            await handler(websocket, conn, room, conn["user"], msg)

    except WebSocketDisconnect:
        detach(websocket, conn)


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, SETTINGS.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port)


if __name__ == "__main__":
    main()
