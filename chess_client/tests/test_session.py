import logging
from dataclasses import replace

import pytest

from chess_client.errors import LedgerInconsistency, OutOfOrderMove
from chess_client.models import MoveRecord
from chess_client.position import STARTING_FEN, PositionEngine
from chess_client.session import SessionStore


def test_gapless_confirmations_build_the_ledger(records):
    store = SessionStore("r1")
    moves = ["e4", "e5", "Nf3", "Nc6"]
    recs = records(moves)
    for r in recs:
        store.apply_confirmed_move(r)

    assert len(store.ledger) == 4
    assert store.last_move == recs[-1]
    assert store.fen == recs[-1].fen

    engine = PositionEngine()
    for mv in moves:
        engine.apply(mv)
    assert store.ledger.position_at(3) == engine.fen()
    assert store.turn == "white"


@pytest.mark.parametrize("index", [0, 1, 3, 7])
def test_out_of_order_confirmation_leaves_ledger_alone(records, index):
    store = SessionStore("r1")
    recs = records(["e4", "e5"])
    for r in recs:
        store.apply_confirmed_move(r)
    before = store.ledger.records

    stray = MoveRecord(move="Nf3", fen=recs[1].fen, index=index)
    with pytest.raises(OutOfOrderMove) as info:
        store.apply_confirmed_move(stray)

    assert info.value.is_gap == (index > 2)
    assert store.ledger.records == before


def test_confirmation_promotes_speculative_move(records):
    store = SessionStore("r1")
    local = records(["e4"])[0]
    store.apply_local_move(local)
    assert store.is_speculative(0)

    confirmed = replace(local, move="e2e4", actor="u-alice")
    store.apply_confirmed_move(confirmed)

    assert not store.is_speculative(0)
    assert len(store.ledger) == 1
    assert store.ledger[0] is confirmed


def test_disagreeing_confirmation_is_an_inconsistency(records, caplog):
    store = SessionStore("r1")
    local = records(["e4"])[0]
    store.apply_local_move(local)

    with caplog.at_level(logging.ERROR, logger="session"):
        with pytest.raises(LedgerInconsistency):
            store.apply_confirmed_move(records(["d4"])[0])

    assert store.ledger[0] is local
    assert "inconsistency" in caplog.text.lower()


def test_local_move_needs_the_next_index(records):
    store = SessionStore("r1")
    with pytest.raises(OutOfOrderMove):
        store.apply_local_move(replace(records(["e4"])[0], index=1))
    assert len(store.ledger) == 0


def test_join_seeds_from_snapshot(records):
    recs = records(["e4", "e5"])
    store = SessionStore()
    events = []
    store.subscribe(lambda event, s: events.append(event))

    store.join("r1", {
        "seat": "w",
        "players": [
            {"user": {"id": "u-alice", "displayName": "Alice"}, "seat": "white"},
            {"userId": "u-bob", "color": "b"},
        ],
        "moves": [r.to_payload() for r in recs],
        "lastIndex": 1,
    })

    assert store.joined
    assert store.room_id == "r1"
    assert store.seat == "white"
    assert store.seated_count == 2
    assert [r.move for r in store.ledger] == ["e4", "e5"]
    assert events == ["joined"]


def test_fen_only_snapshot_sets_live_position():
    fen = "k7/4P3/8/8/8/8/8/4K3 w - - 0 1"
    store = SessionStore()
    store.join("r1", {"fen": fen})
    assert store.fen == fen
    assert store.turn == "white"
    assert store.last_move is None


def test_seat_is_assigned_once(caplog):
    store = SessionStore("r1")
    assert store.assign_seat("black") is True

    with caplog.at_level(logging.WARNING, logger="session"):
        assert store.assign_seat("white") is False
    assert store.seat == "black"
    assert "already assigned" in caplog.text

    store.join("r1", {"seat": "white"})
    assert store.seat == "black"


def test_joining_another_room_starts_fresh(records):
    store = SessionStore()
    store.join("r1", {"seat": "white", "moves": [r.to_payload() for r in records(["e4"])]})
    store.join("r2", {"seat": "black"})

    assert store.room_id == "r2"
    assert store.seat == "black"
    assert len(store.ledger) == 0


def test_leave_resets_everything(records):
    store = SessionStore()
    store.join("r1", {"seat": "white", "moves": [r.to_payload() for r in records(["e4", "e5"])]})
    store.leave()

    assert not store.joined
    assert store.room_id is None
    assert store.seat is None
    assert len(store.ledger) == 0
    assert store.last_move is None
    assert store.fen == STARTING_FEN


def test_unsubscribed_listener_hears_nothing(records):
    store = SessionStore("r1")
    recs = records(["e4", "e5"])
    events = []
    unsubscribe = store.subscribe(lambda event, s: events.append((event, len(s.ledger))))

    store.apply_confirmed_move(recs[0])
    unsubscribe()
    store.apply_confirmed_move(recs[1])

    assert events == [("move", 1)]
