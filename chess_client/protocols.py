"""
Sub-protocol controllers layered on a session: draw offer, rematch and
promotion choice.

Each controller is a small state machine that owns its pending request and
clears it in one step. Methods return True when a transition happened and False
when the call does not apply to the current state (a stale or duplicate event,
or a local action that is not allowed right now). The caller decides what to
emit on the transport; controllers never talk to it.

Identity is always the participant's user_id; an inbound request whose sender
is ourselves is our own request echoed back by the peer.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from chess_client.models import Participant
from chess_client.position import PROMOTION_PIECES

log = logging.getLogger("protocols")

NONE = "none"
PENDING_SELF = "pending-self"
PENDING_OPPONENT = "pending-opponent"

INACTIVE = "inactive"
AWAITING_CHOICE = "awaiting-choice"


@dataclass(frozen=True)
class PendingRequest:
    sender: Participant
    ts: float


class _RequestMachine:
    name = "request"

    def __init__(self, me: Participant) -> None:
        self.me = me
        self.pending: Optional[PendingRequest] = None

    @property
    def state(self) -> str:
        if self.pending is None:
            return NONE
        return PENDING_SELF if self.is_mine(self.pending.sender) else PENDING_OPPONENT

    @property
    def is_initiator(self) -> bool:
        return self.state == PENDING_SELF

    def is_mine(self, participant: Participant) -> bool:
        return participant.user_id == self.me.user_id

    def _open(self, sender: Participant, ts: Optional[float] = None) -> None:
        self.pending = PendingRequest(sender, ts if ts is not None else time.time())

    def _stale(self, what: str) -> bool:
        log.debug("Ignoring %s %s in state %s", self.name, what, self.state)
        return False

    def receive(self, sender: Participant, ts: Optional[float] = None) -> bool:
        """Inbound request from the peer (possibly our own, echoed back)."""
        if self.pending is not None:
            return self._stale(f"request from {sender.user_id}")
        self._open(sender, ts)
        return True

    def resolve(self) -> bool:
        """Inbound accepted/declined: clear whatever is pending."""
        if self.pending is None:
            return self._stale("resolution")
        self.pending = None
        return True

    def _answer(self, what: str) -> bool:
        if self.state != PENDING_OPPONENT:
            return self._stale(what)
        self.pending = None
        return True

    def accept(self) -> bool:
        return self._answer("accept")

    def decline(self) -> bool:
        return self._answer("decline")

    def clear(self) -> None:
        self.pending = None

    def restore(self, payload: Optional[Mapping]) -> None:
        """Adopt the pending request carried by a room snapshot (or none)."""
        if not payload:
            self.pending = None
            return
        try:
            sender = Participant.from_payload(payload.get("from") or payload.get("initiator") or {})
        except ValueError:
            log.debug("Snapshot %s request without a sender: %r", self.name, payload)
            self.pending = None
            return
        self._open(sender, payload.get("ts"))


class DrawOffer(_RequestMachine):
    name = "draw"

    def offer(self, finished: bool = False) -> bool:
        if finished:
            return self._stale("offer after game end")
        if self.pending is not None:
            return self._stale("offer")
        self._open(self.me)
        return True


class Rematch(_RequestMachine):
    name = "rematch"

    def __init__(self, me: Participant) -> None:
        super().__init__(me)
        # we accepted; the peer's rematch-accepted (with the new room) is still due
        self.awaiting_handoff = False

    def accept(self) -> bool:
        accepted = super().accept()
        if accepted:
            self.awaiting_handoff = True
        return accepted

    def take_handoff(self) -> bool:
        """Inbound rematch-accepted: True only if it answers our request or our accept."""
        if self.awaiting_handoff:
            self.awaiting_handoff = False
            self.pending = None
            return True
        return self.resolve()

    def clear(self) -> None:
        super().clear()
        self.awaiting_handoff = False

    def request(self, finished: bool = True) -> bool:
        if not finished:
            return self._stale("request during a game")
        if self.pending is not None:
            return self._stale("request")
        self._open(self.me)
        return True

    def cancel(self) -> bool:
        if self.state != PENDING_SELF:
            return self._stale("cancel")
        self.pending = None
        return True


_PROMOTION_NAMES = {"queen": "q", "rook": "r", "bishop": "b", "knight": "n"}


def normalize_promotion(piece) -> Optional[str]:
    """'q', 'Queen', 'knight' ... -> one of q/r/b/n, or None."""
    if not piece:
        return None
    text = str(piece).strip().lower()
    if text in PROMOTION_PIECES:
        return text
    return _PROMOTION_NAMES.get(text)


@dataclass(frozen=True)
class PromotionRequest:
    src: str
    dst: str


class PromotionChoice:
    def __init__(self) -> None:
        self.request: Optional[PromotionRequest] = None

    @property
    def state(self) -> str:
        return INACTIVE if self.request is None else AWAITING_CHOICE

    def begin(self, src: str, dst: str) -> bool:
        if self.request is not None:
            log.debug("Promotion %s already awaiting a choice", self.request)
            return False
        self.request = PromotionRequest(src, dst)
        return True

    def choose(self, piece) -> Optional[str]:
        """Finish the held move; returns its UCI string, or None if nothing applies."""
        if self.request is None:
            log.debug("Promotion choice %r with no pending move", piece)
            return None
        promo = normalize_promotion(piece)
        if promo is None:
            log.debug("Unknown promotion piece %r", piece)
            return None
        req, self.request = self.request, None
        return f"{req.src}{req.dst}{promo}"

    def abandon(self) -> bool:
        if self.request is None:
            return False
        self.request = None
        return True
