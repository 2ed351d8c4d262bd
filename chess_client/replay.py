"""
Replay cursor and timed playback over a session's move ledger.

The cursor never writes to the ledger. index None means "live": the displayed
position follows the ledger tip. Any integer freezes the view at that move, even
while confirmed moves keep arriving, until live() is called.

Playback walks the cursor from the first move to the last on the running asyncio
loop. Only one playback timer exists at a time; start() cancels the previous one.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from chess_client.config import SETTINGS
from chess_client.ledger import MoveLedger
from chess_client.session import SessionStore

log = logging.getLogger("replay")


class ReplayCursor:
    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self.index: Optional[int] = None

    @property
    def ledger(self) -> MoveLedger:
        return self._store.ledger

    @property
    def is_live(self) -> bool:
        return self.index is None

    def set(self, index: Optional[int]) -> None:
        if index is not None and not 0 <= index < len(self.ledger):
            raise IndexError(f"cursor {index} outside ledger of {len(self.ledger)} moves")
        self.index = index

    def step(self, delta: int) -> Optional[int]:
        """Move the cursor by delta, clamped to the ledger; from live, start at the tip."""
        size = len(self.ledger)
        if size == 0:
            return self.index
        base = size - 1 if self.index is None else self.index
        self.index = max(0, min(size - 1, base + delta))
        return self.index

    def live(self) -> None:
        self.index = None

    def position(self) -> str:
        """Serialized position the viewer should show."""
        if self.index is None:
            return self._store.fen
        return self.ledger.position_at(self.index)


class Playback:
    def __init__(self, cursor: ReplayCursor, interval: Optional[float] = None) -> None:
        self.cursor = cursor
        self.interval = SETTINGS.playback_interval_s if interval is None else interval
        self.playing = False
        self._handle: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._next = 0

    @property
    def active(self) -> bool:
        """True while a playback timer is scheduled."""
        return self._handle is not None

    def start(self, interval: Optional[float] = None) -> None:
        self.stop()
        if interval is not None:
            self.interval = interval
        if not len(self.cursor.ledger):
            return
        self._loop = asyncio.get_running_loop()
        self.playing = True
        self._next = 0
        self._tick()

    def _tick(self) -> None:
        self._handle = None
        if self._next >= len(self.cursor.ledger):
            log.debug("Playback reached move %d; stopping", self._next - 1)
            self.stop()
            return
        self.cursor.set(self._next)
        self._next += 1
        self._handle = self._loop.call_later(self.interval, self._tick)

    def stop(self) -> None:
        self.playing = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
