"""
Move ledger: the append-only, index-ordered history of a session's moves.

- ledger[i].index == i always holds; append() refuses anything else.
- position_at() rebuilds a position by replaying from the starting position,
  every call, so it can never go stale while the ledger grows.
- export_pgn() serializes the ledger as PGN. Records the engine rejects are
  skipped (and logged) in both replay and export, so a single bad record does
  not cost the rest of the history.

Only SessionStore mutates a ledger; everything else treats it as read-only.
"""
from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Optional

import chess
import chess.pgn

from chess_client.errors import IllegalMove, OutOfOrderMove
from chess_client.models import MoveRecord
from chess_client.position import PositionEngine

log = logging.getLogger("ledger")


class MoveLedger:
    def __init__(self, records: Iterable[MoveRecord] = ()) -> None:
        self._records: list[MoveRecord] = []
        for record in records:
            self.append(record)

    @classmethod
    def from_payload(cls, moves: Iterable[Mapping]) -> "MoveLedger":
        """Build a ledger from a room snapshot; missing indices/fens are derived."""
        engine = PositionEngine()
        records = []
        for i, raw in enumerate(moves):
            data = dict(raw)
            data.setdefault("index", i)
            if not data.get("fen"):
                data["fen"] = engine.apply(data.get("move"))
            else:
                try:
                    engine.load(data["fen"])
                except ValueError as exc:
                    raise ValueError(f"snapshot move {i} has a bad fen") from exc
            records.append(MoveRecord.from_payload(data))
        return cls(records)

    # ---------------- Sequence protocol -----------------
    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[MoveRecord]:
        return iter(self._records)

    def __getitem__(self, index):
        return self._records[index]

    @property
    def records(self) -> tuple[MoveRecord, ...]:
        return tuple(self._records)

    @property
    def tip(self) -> Optional[MoveRecord]:
        return self._records[-1] if self._records else None

    # ---------------- Mutation (SessionStore only) -----------------
    def append(self, record: MoveRecord) -> None:
        expected = len(self._records)
        if record.index != expected:
            raise OutOfOrderMove(expected, record.index)
        self._records.append(record)

    def replace_tip(self, record: MoveRecord) -> None:
        """Swap the last record for one with the same index (confirmation)."""
        if not self._records or record.index != len(self._records) - 1:
            raise OutOfOrderMove(len(self._records) - 1, record.index)
        self._records[-1] = record

    # ---------------- Replay -----------------
    def _walk(self, records: Iterable[MoveRecord], engine: PositionEngine) -> Iterator[tuple[MoveRecord, chess.Move]]:
        for record in records:
            try:
                mv = engine.parse(record.move)
            except IllegalMove as exc:
                log.warning("Replay desync at move %d (%r): %s; skipping", record.index, record.move, exc.reason)
                continue
            engine.board.push(mv)
            yield record, mv

    def replay(self, upto: Optional[int] = None) -> PositionEngine:
        """Return an engine holding the position after records [0..upto]."""
        engine = PositionEngine()
        records = self._records if upto is None else self._records[: upto + 1]
        for _ in self._walk(records, engine):
            pass
        return engine

    def position_at(self, index: int) -> str:
        if not 0 <= index < len(self._records):
            raise IndexError(f"no move {index} in a ledger of {len(self._records)}")
        return self.replay(index).fen()

    def export_pgn(self, headers: Optional[Mapping[str, str]] = None, result: Optional[str] = None) -> str:
        game = chess.pgn.Game()
        game.headers["Date"] = datetime.date.today().strftime("%Y.%m.%d")
        for k, v in (headers or {}).items():
            game.headers[k] = v

        engine = PositionEngine()
        node = game
        for _, mv in self._walk(self._records, engine):
            node = node.add_variation(mv)

        if result is None:
            result = engine.board.result() if engine.board.is_game_over() else "*"
        game.headers["Result"] = result
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=False)
        return game.accept(exporter)
