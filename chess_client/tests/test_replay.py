import asyncio

import chess
import pytest

from chess_client.position import STARTING_FEN
from chess_client.replay import Playback, ReplayCursor
from chess_client.session import SessionStore


@pytest.fixture
def store(records):
    s = SessionStore("r1")
    for r in records(["e2e4", "e7e5", "Nf3"]):
        s.apply_confirmed_move(r)
    return s


def test_cursor_holds_its_position_while_moves_arrive(store, records):
    cursor = ReplayCursor(store)
    cursor.set(1)
    frozen = cursor.position()

    board = chess.Board()
    board.push_uci("e2e4")
    board.push_uci("e7e5")
    assert frozen == board.fen()

    incoming = records(["e2e4", "e7e5", "Nf3", "Nc6"])[3]
    store.apply_confirmed_move(incoming)
    assert cursor.index == 1
    assert cursor.position() == frozen

    cursor.live()
    assert cursor.position() == incoming.fen


def test_navigation_never_touches_the_ledger(store):
    before = store.ledger.records
    cursor = ReplayCursor(store)
    for i in range(len(store.ledger)):
        cursor.set(i)
        cursor.position()
    cursor.step(-10)
    cursor.set(None)
    assert store.ledger.records == before


def test_step_is_clamped(store):
    cursor = ReplayCursor(store)
    assert cursor.step(-1) == 1  # live starts from the tip
    assert cursor.step(-1) == 0
    assert cursor.step(-1) == 0
    assert cursor.step(5) == 2
    with pytest.raises(IndexError):
        cursor.set(3)


def test_empty_ledger_stays_live():
    cursor = ReplayCursor(SessionStore("r1"))
    assert cursor.step(1) is None
    assert cursor.is_live
    assert cursor.position() == STARTING_FEN


def test_playback_runs_to_the_last_move(store):
    cursor = ReplayCursor(store)
    playback = Playback(cursor, interval=0.001)
    seen = []

    async def scenario():
        playback.start()
        assert playback.active
        for _ in range(1000):
            if not playback.playing:
                break
            seen.append(cursor.index)
            await asyncio.sleep(0.001)

    asyncio.run(scenario())

    assert not playback.playing
    assert not playback.active
    assert cursor.index == 2
    assert seen[0] == 0


def test_restart_cancels_the_previous_timer(store):
    cursor = ReplayCursor(store)
    playback = Playback(cursor, interval=10)

    async def scenario():
        playback.start()
        first = playback._handle
        playback.start()
        assert first.cancelled()
        assert playback.active
        playback.stop()
        assert not playback.active

    asyncio.run(scenario())
    assert cursor.index == 0


def test_playback_of_empty_ledger_schedules_nothing():
    playback = Playback(ReplayCursor(SessionStore("r1")), interval=0.001)
    playback.start()
    assert not playback.active
    assert not playback.playing
