import chess
import pytest

from chess_client.errors import IllegalMove
from chess_client.position import STARTING_FEN, PositionEngine

PROMO_FEN = "k7/4P3/8/8/8/8/8/4K3 w - - 0 1"


def test_legal_move_updates_position():
    engine = PositionEngine()

    # Starting position: e2e4 is legal
    fen = engine.apply("e2e4")
    assert fen == engine.fen()
    assert fen != STARTING_FEN

    assert engine.turn == "black"  # after white moves, black to move
    assert engine.status().over is False


def test_illegal_move_is_rejected():
    engine = PositionEngine()

    # e2e5 is illegal (pawn cannot move 3 squares)
    with pytest.raises(IllegalMove):
        engine.apply("e2e5")
    # Board should not have any moves played
    assert len(engine.board.move_stack) == 0
    assert engine.fen() == STARTING_FEN


def test_accepts_san_and_square_mappings():
    engine = PositionEngine()
    engine.apply("e4")
    engine.apply({"from": "e7", "to": "e5"})
    engine.apply("Nf3")
    assert [m.uci() for m in engine.board.move_stack] == ["e2e4", "e7e5", "g1f3"]


def test_malformed_move_is_reported_as_illegal():
    with pytest.raises(IllegalMove) as info:
        PositionEngine().apply({"from": "e2"})
    assert info.value.reason == "malformed"


def test_legal_targets_and_piece_seat():
    engine = PositionEngine()
    assert engine.legal_targets("g1") == {"f3", "h3"}
    assert engine.legal_targets("e4") == set()
    assert engine.legal_targets("z9") == set()
    assert engine.piece_seat("e2") == "white"
    assert engine.piece_seat("e7") == "black"
    assert engine.piece_seat("e4") is None


def test_promotion_needs_a_piece():
    engine = PositionEngine(PROMO_FEN)
    assert engine.needs_promotion("e7", "e8") is True
    assert engine.needs_promotion("e1", "e2") is False

    with pytest.raises(IllegalMove):
        engine.apply("e7e8")
    engine.apply("e7e8q")
    assert engine.board.piece_at(chess.E8).piece_type == chess.QUEEN


def test_status_detects_checkmate_and_check():
    engine = PositionEngine()
    for mv in ["f3", "e5", "g4", "Qh4#"]:
        engine.apply(mv)
    assert engine.status() == ("Checkmate", True)

    engine = PositionEngine(PROMO_FEN)
    engine.apply("e7e8q")
    assert engine.status() == ("Check", False)
