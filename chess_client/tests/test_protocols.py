import pytest

from chess_client.models import Participant
from chess_client.protocols import (
    AWAITING_CHOICE,
    INACTIVE,
    NONE,
    PENDING_OPPONENT,
    PENDING_SELF,
    DrawOffer,
    PromotionChoice,
    Rematch,
    normalize_promotion,
)

ME = Participant("u-alice", "Alice")
OPPONENT = Participant("u-bob", "Bob")


def test_draw_offer_cycle():
    draw = DrawOffer(ME)
    assert draw.state == NONE

    assert draw.offer() is True
    assert draw.state == PENDING_SELF
    assert draw.is_initiator

    # cannot re-offer or accept our own offer
    assert draw.offer() is False
    assert draw.accept() is False

    assert draw.resolve() is True
    assert draw.state == NONE


def test_offer_does_not_overwrite_opponents_offer():
    draw = DrawOffer(ME)
    assert draw.receive(OPPONENT, ts=1.0)

    assert draw.offer() is False
    assert draw.state == PENDING_OPPONENT
    assert draw.pending.sender == OPPONENT
    assert draw.pending.ts == 1.0


def test_echo_of_own_offer_keeps_it_ours():
    draw = DrawOffer(ME)
    draw.offer()
    assert draw.receive(Participant("u-alice")) is False
    assert draw.state == PENDING_SELF


def test_no_offer_after_the_game_ended():
    draw = DrawOffer(ME)
    assert draw.offer(finished=True) is False
    assert draw.state == NONE


def test_stale_answers_are_ignored():
    draw = DrawOffer(ME)
    assert draw.resolve() is False
    assert draw.decline() is False
    assert draw.state == NONE


@pytest.mark.parametrize("answer", ["accept", "decline"])
def test_answering_an_opponent_offer_clears_it(answer):
    draw = DrawOffer(ME)
    draw.receive(OPPONENT)
    assert getattr(draw, answer)() is True
    assert draw.state == NONE


def test_restore_from_snapshot():
    draw = DrawOffer(ME)
    draw.restore({"from": {"id": "u-bob"}, "ts": 5})
    assert draw.state == PENDING_OPPONENT
    assert draw.pending.ts == 5

    draw.restore(None)
    assert draw.state == NONE

    draw.restore({"from": {}})
    assert draw.state == NONE


def test_rematch_needs_a_finished_game():
    rematch = Rematch(ME)
    assert rematch.request(finished=False) is False
    assert rematch.request() is True
    assert rematch.state == PENDING_SELF

    assert rematch.cancel() is True
    assert rematch.state == NONE


def test_rematch_from_opponent():
    rematch = Rematch(ME)
    rematch.receive(OPPONENT)
    assert rematch.cancel() is False
    assert rematch.accept() is True
    assert rematch.state == NONE


def test_rematch_handoff_needs_a_request_or_an_accept():
    rematch = Rematch(ME)
    assert rematch.take_handoff() is False

    rematch.request()
    assert rematch.take_handoff() is True
    assert rematch.take_handoff() is False

    rematch.receive(OPPONENT)
    rematch.accept()
    assert rematch.awaiting_handoff
    assert rematch.take_handoff() is True
    assert not rematch.awaiting_handoff
    assert rematch.take_handoff() is False


@pytest.mark.parametrize("piece,expected", [
    ("q", "q"), ("N", "n"), ("Queen", "q"), ("knight", "n"), ("king", None), ("", None), (None, None),
])
def test_normalize_promotion(piece, expected):
    assert normalize_promotion(piece) == expected


def test_promotion_choice_completes_the_held_move():
    promo = PromotionChoice()
    assert promo.state == INACTIVE
    assert promo.begin("e7", "e8") is True
    assert promo.begin("a7", "a8") is False
    assert promo.state == AWAITING_CHOICE

    assert promo.choose("king") is None
    assert promo.state == AWAITING_CHOICE

    assert promo.choose("Queen") == "e7e8q"
    assert promo.state == INACTIVE
    assert promo.choose("q") is None


def test_abandoned_promotion_sends_nothing():
    promo = PromotionChoice()
    promo.begin("b2", "b1")
    assert promo.abandon() is True
    assert promo.abandon() is False
    assert promo.choose("r") is None
