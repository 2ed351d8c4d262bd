"""
RoomClient: the client half of a live chess room.

- Inbound transport events are routed to the SessionStore, the message buffer
  and the draw/rematch controllers; handlers never touch session fields directly.
- Board gestures are checked against the position engine first, applied
  locally as a speculative move, then sent upstream as `send-move`. The peer's
  `opponent-move` echo is what confirms them.
- One SessionStore per room: created on join_room(), dropped on leave() or when a
  rematch hands the players over to a new room.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Optional

from chess_client.errors import ChessClientError, IllegalMove, LedgerInconsistency, OutOfOrderMove
from chess_client.messages import MessageBuffer
from chess_client.models import (
    BLACK,
    SEATS,
    SPECTATOR,
    WHITE,
    ChatMessage,
    Clocks,
    MoveRecord,
    Outcome,
    Participant,
)
from chess_client.position import PositionEngine
from chess_client.protocols import DrawOffer, PromotionChoice, Rematch
from chess_client.replay import Playback, ReplayCursor
from chess_client.session import SessionStore
from chess_client.transport import Transport

log = logging.getLogger("room_client")

# attempt_move() / choose_promotion() results, besides the can_move() reasons
SENT = "sent"
PENDING_PROMOTION = "pending-promotion"
ILLEGAL = "illegal"

_BLOCKED_STATUS = {
    "not-joined": "Join a room first.",
    "game-over": "Game is over. No more moves allowed.",
    "history-view": "Exit history view to play a move",
    "waiting": "Waiting for second player...",
    "spectator": "You are a spectator and cannot move pieces.",
    "not-your-turn": "Not your turn.",
}

_GAME_OVER_STATUS = {
    "timeout": "Game over: {winner} wins by timeout",
    "resign": "Game over: {winner} wins (resignation)",
    "checkmate": "Game over: {winner} wins by checkmate",
    "draw-agreed": "Game drawn by agreement",
}

_DRAW_REASONS = {"draw-agreed", "stalemate", "insufficient-material", "threefold-repetition", "fifty-moves", "draw"}

# inbound event -> handler method
_HANDLERS = {
    "room-joined": "_on_room_joined",
    "player-assigned": "_on_player_assigned",
    "players-updated": "_on_players_updated",
    "opponent-move": "_on_opponent_move",
    "chat-message": "_on_chat_message",
    "draw-offered": "_on_draw_offered",
    "draw-accepted": "_on_draw_accepted",
    "draw-declined": "_on_draw_declined",
    "rematch-requested": "_on_rematch_requested",
    "rematch-accepted": "_on_rematch_accepted",
    "rematch-declined": "_on_rematch_declined",
    "game-over": "_on_game_over",
    "clock-update": "_on_clock_update",
    "invalid-move": "_on_invalid_move",
    "not-your-turn": "_on_refused",
    "not-enough-players": "_on_refused",
    "no-such-room": "_on_no_such_room",
}


def _seat_title(seat: Optional[str]) -> str:
    return (seat or "?").capitalize()


def result_tag(outcome: Optional[Outcome]) -> Optional[str]:
    """PGN result for a finished game, or None to let the position decide."""
    if outcome is None:
        return None
    winner = (outcome.winner or "").lower()
    if winner == WHITE:
        return "1-0"
    if winner == BLACK:
        return "0-1"
    if winner == "draw" or outcome.reason in _DRAW_REASONS:
        return "1/2-1/2"
    return None


class RoomClient:
    def __init__(
        self,
        transport: Transport,
        me: Participant,
        playback_interval: Optional[float] = None,
        message_cap: Optional[int] = None,
    ) -> None:
        self.transport = transport
        self.me = me
        self.store: Optional[SessionStore] = None
        self.cursor: Optional[ReplayCursor] = None
        self.playback: Optional[Playback] = None
        self.messages = MessageBuffer(message_cap)
        self.draw = DrawOffer(me)
        self.rematch = Rematch(me)
        self.promotion = PromotionChoice()
        self.status = "idle"
        self.selected: Optional[str] = None
        self.legal_targets: set[str] = set()
        self._playback_interval = playback_interval
        for event, name in _HANDLERS.items():
            self.transport.on(event, getattr(self, name))

    def close(self) -> None:
        """Tear down: stop playback and stop listening to the transport."""
        if self.playback is not None:
            self.playback.stop()
        for event in _HANDLERS:
            self.transport.off(event)

    def set_status(self, text: str) -> None:
        self.status = text
        log.debug("status: %s", text)

    @property
    def room_id(self) -> Optional[str]:
        return self.store.room_id if self.store else None

    def _emit(self, event: str, **payload) -> None:
        self.transport.emit(event, {"roomId": self.room_id, **payload})

    # ---------------- Session lifecycle -----------------
    def _open_session(self, room_id: str) -> SessionStore:
        self.store = SessionStore(room_id)
        self.cursor = ReplayCursor(self.store)
        self.playback = Playback(self.cursor, self._playback_interval)
        return self.store

    def _drop_session(self) -> None:
        if self.playback is not None:
            self.playback.stop()
        if self.store is not None:
            self.store.leave()
        self.store = self.cursor = self.playback = None
        self.draw.clear()
        self.rematch.clear()
        self.promotion.abandon()
        self.messages.clear()
        self._clear_selection()

    def join_room(self, room_id: str) -> None:
        if self.store is not None and self.store.room_id != room_id:
            self._drop_session()
        if self.store is None:
            self._open_session(room_id)
        self._emit("join-room", user=self.me.to_payload())
        self.set_status(f"Joining room {room_id}...")

    def leave(self) -> None:
        if self.store is None:
            return
        if self.store.seat in SEATS and self.store.finished is None:
            self._emit("resign")
        self._emit("leave-room")
        self._drop_session()
        self.set_status("Left room")

    def request_sync(self) -> None:
        if self.store is not None:
            self._emit("request-sync")

    # ---------------- Inbound events -----------------
    def _on_room_joined(self, payload: dict) -> None:
        room_id = payload.get("roomId") or self.room_id
        if not room_id:
            log.debug("room-joined without a room id; ignoring")
            return
        if self.store is None or self.store.room_id != room_id:
            self._drop_session()
            self._open_session(room_id)
        try:
            self.store.join(room_id, payload)
        except (ValueError, ChessClientError) as exc:
            log.warning("Unusable snapshot for room %s: %s", room_id, exc)
            return

        if isinstance(payload.get("messages"), list):
            self.messages.replace_all(self._parse_messages(payload["messages"]))
        self.draw.restore(payload.get("pendingDrawOffer"))
        self.rematch.restore(payload.get("pendingRematch"))
        self.playback.stop()
        self.cursor.live()
        self.promotion.abandon()
        self._clear_selection()

        if self.store.finished is not None:
            self.set_status(self.store.finished.message or "Game finished")
        elif self.store.seated_count < 2:
            self.set_status("Waiting for second player...")
        else:
            self.set_status("Game ready")

    def _parse_messages(self, raw: Iterable) -> Iterable[ChatMessage]:
        for item in raw:
            try:
                yield ChatMessage.from_payload(item)
            except (KeyError, TypeError, ValueError):
                log.debug("Skipping malformed chat entry %r", item)

    def _on_player_assigned(self, payload: dict) -> None:
        if self.store is None:
            return
        try:
            self.store.assign_seat(payload.get("seat"))
        except ValueError:
            log.debug("Bad seat in player-assigned: %r", payload)
            return
        if self.store.seat == SPECTATOR:
            self.set_status("You are a spectator")
        elif self.store.seat:
            self.set_status(f"You are {_seat_title(self.store.seat)}")

    def _on_players_updated(self, payload: dict) -> None:
        if self.store is None:
            return
        try:
            self.store.set_players(payload.get("players") or [])
        except ValueError:
            log.debug("Bad player list: %r", payload)

    def _on_opponent_move(self, payload: dict) -> None:
        if self.store is None or not self.store.joined:
            log.debug("Move for a room we are not in: %r", payload)
            return
        try:
            record = MoveRecord.from_payload(payload)
        except ValueError:
            log.debug("Malformed move frame %r; requesting sync", payload)
            self.request_sync()
            return
        try:
            self.store.apply_confirmed_move(record)
        except OutOfOrderMove as exc:
            if exc.is_gap:
                self.request_sync()
            return
        except LedgerInconsistency:
            self.request_sync()
            return
        self._clear_selection()

    def _on_chat_message(self, payload: dict) -> None:
        if self.store is None:
            return
        for message in self._parse_messages([payload]):
            self.messages.append(message)

    def _sender(self, payload: dict) -> Optional[Participant]:
        if self.store is None:
            return None
        try:
            return Participant.from_payload(payload.get("from") or {})
        except ValueError:
            log.debug("Request without a sender: %r", payload)
            return None

    def _on_draw_offered(self, payload: dict) -> None:
        sender = self._sender(payload)
        if sender is None:
            return
        if self.draw.receive(sender, payload.get("ts")) and not self.draw.is_mine(sender):
            self.set_status("Opponent offered a draw")

    def _on_draw_accepted(self, payload: dict) -> None:
        if self.store is None:
            return
        mine = self.draw.is_initiator
        if self.draw.resolve():
            self.set_status("Your draw offer was accepted" if mine else "Draw accepted")

    def _on_draw_declined(self, payload: dict) -> None:
        if self.store is None:
            return
        mine = self.draw.is_initiator
        if self.draw.resolve():
            self.set_status("Your draw offer was declined" if mine else "Draw declined")

    def _on_rematch_requested(self, payload: dict) -> None:
        sender = self._sender(payload)
        if sender is None:
            return
        if self.rematch.receive(sender, payload.get("ts")) and not self.rematch.is_mine(sender):
            self.set_status("Rematch requested")

    def _on_rematch_accepted(self, payload: dict) -> None:
        if self.store is None:
            return
        new_room = payload.get("roomId")
        if not new_room or str(new_room) == self.room_id:
            log.debug("rematch-accepted without a new room id: %r", payload)
            return
        if not self.rematch.take_handoff():
            return
        self._drop_session()
        self.join_room(str(new_room))
        self.set_status(payload.get("message") or "Rematch started")

    def _on_rematch_declined(self, payload: dict) -> None:
        if self.store is None:
            return
        if self.rematch.resolve():
            self.set_status(payload.get("message") or "Rematch declined")

    def _on_game_over(self, payload: dict) -> None:
        if self.store is None:
            return
        outcome = Outcome.from_payload(payload)
        self.store.mark_finished(outcome)
        self.playback.stop()
        self.draw.clear()
        self.promotion.abandon()
        self._clear_selection()
        template = _GAME_OVER_STATUS.get(outcome.reason)
        if template and "{winner}" not in template:
            self.set_status(template)
        elif template and outcome.winner:
            self.set_status(template.format(winner=_seat_title(outcome.winner)))
        else:
            self.set_status(outcome.message or "Game over")

    def _on_clock_update(self, payload: dict) -> None:
        if self.store is None:
            return
        before = self.store.clocks
        clocks = Clocks.from_payload(payload)
        self.store.update_clocks(clocks)
        if self.store.finished is not None:
            return
        for seat in SEATS:
            prev, now = before.remaining(seat), clocks.remaining(seat)
            if (prev is None or prev > 0) and now is not None and now <= 0:
                self._emit("player-timeout", loser=seat)
                self.set_status(f"{_seat_title(seat)} ran out of time")

    def _on_invalid_move(self, payload: dict) -> None:
        self.set_status(payload.get("reason") or "Invalid move")
        self.request_sync()

    def _on_refused(self, payload: dict) -> None:
        self.set_status(payload.get("error") or "Move refused")

    def _on_no_such_room(self, payload: dict) -> None:
        rid = payload.get("roomId")
        self.set_status(f"No room with id {rid}")
        if self.store is not None and self.store.room_id == rid:
            self._drop_session()

    # ---------------- Board gestures -----------------
    def can_move(self) -> Optional[str]:
        """None if the local user may move now, otherwise the reason they may not."""
        store = self.store
        if store is None or not store.joined:
            return "not-joined"
        if store.finished is not None:
            return "game-over"
        if not self.cursor.is_live:
            return "history-view"
        if store.seated_count < 2:
            return "waiting"
        if store.seat not in SEATS:
            return "spectator"
        if store.turn != store.seat:
            return "not-your-turn"
        return None

    def _blocked(self) -> Optional[str]:
        reason = self.can_move()
        if reason:
            self.set_status(_BLOCKED_STATUS[reason])
        return reason

    def _clear_selection(self) -> None:
        self.selected = None
        self.legal_targets = set()

    def select(self, square: str) -> set[str]:
        """Select one of our pieces and return the squares it can move to."""
        if self._blocked():
            return set()
        engine = PositionEngine(self.store.fen)
        if engine.piece_seat(square) != self.store.seat:
            self._clear_selection()
            return set()
        self.selected = square
        self.legal_targets = engine.legal_targets(square)
        return self.legal_targets

    def click(self, square: str) -> Optional[str]:
        """Click-to-move: select, reselect, deselect, or move the selected piece."""
        if self.selected is None:
            self.select(square)
            return None
        if self.selected == square:
            self._clear_selection()
            return None
        if self.store is not None and PositionEngine(self.store.fen).piece_seat(square) == self.store.seat:
            self.select(square)
            return None
        src = self.selected
        result = self.attempt_move(src, square)
        if result != PENDING_PROMOTION:
            self._clear_selection()
        return result

    def attempt_move(self, src: str, dst: str) -> str:
        reason = self._blocked()
        if reason:
            return reason
        if self.promotion.request is not None:
            self.set_status("Choose a piece to promote to")
            return PENDING_PROMOTION
        engine = PositionEngine(self.store.fen)
        if dst not in engine.legal_targets(src):
            self.set_status("Illegal move")
            return ILLEGAL
        if engine.needs_promotion(src, dst):
            self.promotion.begin(src, dst)
            self.set_status("Choose a piece to promote to")
            return PENDING_PROMOTION
        return self._submit(engine, f"{src}{dst}")

    def choose_promotion(self, piece) -> str:
        if self.promotion.request is None:
            return ILLEGAL
        reason = self._blocked()
        if reason:
            self.promotion.abandon()
            return reason
        uci = self.promotion.choose(piece)
        if uci is None:
            self.set_status("Choose q, r, b or n")
            return PENDING_PROMOTION
        return self._submit(PositionEngine(self.store.fen), uci)

    def abandon_promotion(self) -> bool:
        dropped = self.promotion.abandon()
        if dropped:
            self._clear_selection()
        return dropped

    def _submit(self, engine: PositionEngine, uci: str) -> str:
        try:
            fen = engine.apply(uci)
        except IllegalMove:
            self.set_status("Illegal move locally, requesting sync")
            self.request_sync()
            return ILLEGAL
        record = MoveRecord(move=uci, fen=fen, index=len(self.store.ledger), actor=self.me.user_id)
        self.store.apply_local_move(record)
        self._emit("send-move", move=uci)
        self._clear_selection()
        self.set_status(engine.status().text)
        return SENT

    # ---------------- Chat and sub-protocol actions -----------------
    def send_chat(self, text: str) -> bool:
        t = (text or "").strip()
        if not t or self.store is None:
            return False
        self._emit("send-chat", text=t)
        return True

    def offer_draw(self) -> bool:
        if self.store is None:
            return False
        if not self.draw.offer(finished=self.store.finished is not None):
            if self.draw.is_initiator:
                self.set_status("Draw already offered")
            return False
        self._emit("offer-draw")
        self.set_status("Draw offered, waiting for opponent response")
        return True

    def accept_draw(self) -> bool:
        if self.store is None or not self.draw.accept():
            return False
        self._emit("accept-draw")
        self.set_status("Draw accepted")
        return True

    def decline_draw(self) -> bool:
        if self.store is None or not self.draw.decline():
            return False
        self._emit("decline-draw")
        self.set_status("Draw declined")
        return True

    def resign(self) -> bool:
        store = self.store
        if store is None or store.finished is not None or store.seat not in SEATS:
            return False
        self._emit("resign")
        self.set_status("You resigned")
        return True

    def request_rematch(self) -> bool:
        if self.store is None or not self.rematch.request(finished=self.store.finished is not None):
            return False
        self._emit("request-rematch")
        self.set_status("Requesting rematch...")
        return True

    def accept_rematch(self) -> bool:
        if self.store is None or not self.rematch.accept():
            return False
        self._emit("accept-rematch")
        self.set_status("Accepting rematch...")
        return True

    def decline_rematch(self) -> bool:
        if self.store is None or not self.rematch.decline():
            return False
        self._emit("decline-rematch")
        self.set_status("Rematch declined")
        return True

    def cancel_rematch(self) -> bool:
        if self.store is None or not self.rematch.cancel():
            return False
        self._emit("decline-rematch")
        self.set_status("Rematch request cancelled")
        return True

    # ---------------- Review -----------------
    def displayed_position(self) -> Optional[str]:
        return self.cursor.position() if self.cursor else None

    def export_notation(self) -> str:
        store = self.store
        if store is None:
            return ""
        names = {p.seat: p.user.display_name or p.user.user_id for p in store.players}
        headers: Mapping[str, str] = {
            "Event": "Live chess",
            "Site": store.room_id or "?",
            "White": names.get(WHITE, "?"),
            "Black": names.get(BLACK, "?"),
        }
        return store.ledger.export_pgn(headers, result=result_tag(store.finished))
