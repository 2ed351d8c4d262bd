"""
Session state store: the client's single mutable view of one room.

A SessionStore is created when the client enters a room and dropped when it
leaves. Inbound transport events and local gestures both go through its methods;
nothing else writes its fields or its ledger. Subscribers are told about every
successful mutation with an event name ("joined", "move", "confirmed", "seat",
"players", "finished", "clocks", "left").

Move reconciliation:
- confirmed moves must carry index == len(ledger), otherwise OutOfOrderMove;
- a local move is appended speculatively under the same contract;
- the authoritative echo of a speculative move replaces it when both agree on
  the resulting position and raises LedgerInconsistency when they do not. There
  is no rollback here; callers ask the peer for a resync.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Callable, Optional

from chess_client.errors import LedgerInconsistency, OutOfOrderMove
from chess_client.ledger import MoveLedger
from chess_client.models import SEATS, Clocks, MoveRecord, Outcome, Player, normalize_seat
from chess_client.position import STARTING_FEN, PositionEngine

log = logging.getLogger("session")

Listener = Callable[[str, "SessionStore"], None]


def _same_position(a: str, b: str) -> bool:
    # placement, side to move and castling; en passant and clocks are ignored
    return a.split()[:3] == b.split()[:3]


class SessionStore:
    def __init__(self, room_id: Optional[str] = None) -> None:
        self.room_id = room_id
        self._listeners: list[Listener] = []
        self._reset()

    def _reset(self) -> None:
        self.joined = False
        self.players: tuple[Player, ...] = ()
        self.seat: Optional[str] = None
        self.ledger = MoveLedger()
        self.base_fen = STARTING_FEN
        self.finished: Optional[Outcome] = None
        self.clocks = Clocks()
        self._speculative: set[int] = set()

    # ---------------- Derived state -----------------
    @property
    def last_move(self) -> Optional[MoveRecord]:
        return self.ledger.tip

    @property
    def fen(self) -> str:
        """Serialized live position: the ledger tip, or the snapshot position."""
        tip = self.ledger.tip
        return tip.fen if tip else self.base_fen

    @property
    def turn(self) -> str:
        return PositionEngine(self.fen).turn

    @property
    def seated_count(self) -> int:
        return sum(1 for p in self.players if p.seat in SEATS)

    def is_speculative(self, index: int) -> bool:
        return index in self._speculative

    # ---------------- Change notification -----------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event, self)

    # ---------------- Transitions -----------------
    def join(self, room_id: str, snapshot: Mapping) -> None:
        """Seed the session from an authoritative room snapshot (join or resync)."""
        ledger = MoveLedger.from_payload(snapshot.get("moves") or [])
        last_index = snapshot.get("lastIndex")
        if isinstance(last_index, int) and last_index != len(ledger) - 1:
            log.warning("Room %s snapshot says lastIndex=%d but carries %d moves", room_id, last_index, len(ledger))

        if self.joined and room_id != self.room_id:
            # different room: new session, seat is free again
            self._reset()
        self.room_id = room_id
        self.joined = True
        self.players = tuple(Player.from_payload(p) for p in snapshot.get("players") or [])
        self.ledger = ledger
        self._speculative.clear()
        # a fen-only snapshot (no move list) still gives us a live position
        self.base_fen = STARTING_FEN if len(ledger) else (snapshot.get("fen") or STARTING_FEN)
        self._set_seat(snapshot.get("seat"))
        finished = snapshot.get("finished")
        self.finished = Outcome.from_payload(finished) if finished else None
        if isinstance(snapshot.get("clocks"), Mapping):
            self.clocks = Clocks.from_payload(snapshot["clocks"])
        self._notify("joined")

    def _set_seat(self, value) -> bool:
        seat = normalize_seat(value)
        if seat is None:
            return False
        if self.seat is None:
            self.seat = seat
            return True
        if seat != self.seat:
            log.warning("Seat already assigned as %s in room %s; ignoring %s", self.seat, self.room_id, seat)
        return False

    def assign_seat(self, value) -> bool:
        changed = self._set_seat(value)
        if changed:
            self._notify("seat")
        return changed

    def set_players(self, players: Iterable[Mapping]) -> None:
        self.players = tuple(Player.from_payload(p) for p in players)
        self._notify("players")

    def apply_confirmed_move(self, record: MoveRecord) -> MoveRecord:
        expected = len(self.ledger)
        if self.is_speculative(record.index):
            local = self.ledger[record.index]
            if record.index != expected - 1 or not _same_position(local.fen, record.fen):
                log.error(
                    "Ledger inconsistency in room %s at move %d: local %r, confirmed %r",
                    self.room_id, record.index, local.move, record.move,
                )
                raise LedgerInconsistency(record.index, local.move, record.move)
            self.ledger.replace_tip(record)
            self._speculative.discard(record.index)
            self._notify("confirmed")
            return record

        if record.index != expected:
            log.warning(
                "Rejected out-of-order move in room %s: expected index %d, got %d",
                self.room_id, expected, record.index,
            )
            raise OutOfOrderMove(expected, record.index)
        self.ledger.append(record)
        self._notify("move")
        return record

    def apply_local_move(self, record: MoveRecord) -> MoveRecord:
        expected = len(self.ledger)
        if record.index != expected:
            log.warning("Rejected local move at index %d; ledger expects %d", record.index, expected)
            raise OutOfOrderMove(expected, record.index)
        self.ledger.append(record)
        self._speculative.add(record.index)
        self._notify("move")
        return record

    def mark_finished(self, outcome: Outcome) -> None:
        self.finished = outcome
        self._notify("finished")

    def update_clocks(self, clocks: Clocks) -> None:
        self.clocks = clocks
        self._notify("clocks")

    def leave(self) -> None:
        self._reset()
        self.room_id = None
        self._notify("left")
