import re
from typing import NamedTuple, Optional

import chess

from chess_client.errors import IllegalMove
from chess_client.models import BLACK, WHITE, normalize_move

STARTING_FEN = chess.STARTING_FEN
UCI_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$", re.I)
PROMOTION_PIECES = ("q", "r", "b", "n")


class GameStatus(NamedTuple):
    text: str
    over: bool


# Wraps a python-chess Board; the rules live in the library, not here
class PositionEngine:
    def __init__(self, fen: Optional[str] = None) -> None:
        self.board = chess.Board(fen) if fen else chess.Board()

    def load(self, fen: str) -> None:
        """Replace the current position with the one serialized in `fen`."""
        self.board = chess.Board(fen)

    def fen(self) -> str:
        return self.board.fen()

    @property
    def turn(self) -> str:
        return WHITE if self.board.turn else BLACK

    def parse(self, move) -> chess.Move:
        """
        Resolve a move descriptor (UCI, SAN or {from, to, promotion}) against
        the current position. Raises IllegalMove if it is not legal here.
        """
        try:
            text = normalize_move(move)
        except ValueError as exc:
            raise IllegalMove(move, self.fen(), "malformed") from exc

        if UCI_RE.match(text):
            mv = chess.Move.from_uci(text.lower())
            if mv not in self.board.legal_moves:
                raise IllegalMove(move, self.fen())
            return mv

        try:
            return self.board.parse_san(text)
        except ValueError as exc:
            raise IllegalMove(move, self.fen()) from exc

    def apply(self, move) -> str:
        """Play a move and return the serialized position after it."""
        self.board.push(self.parse(move))
        return self.fen()

    def legal_targets(self, square: str) -> set[str]:
        """Destination squares of the legal moves starting on `square`."""
        try:
            src = chess.parse_square(square)
        except ValueError:
            return set()
        return {
            chess.square_name(mv.to_square)
            for mv in self.board.legal_moves
            if mv.from_square == src
        }

    def piece_seat(self, square: str) -> Optional[str]:
        """Colour of the piece on `square`, or None if it is empty."""
        try:
            piece = self.board.piece_at(chess.parse_square(square))
        except ValueError:
            return None
        if piece is None:
            return None
        return WHITE if piece.color else BLACK

    def needs_promotion(self, src: str, dst: str) -> bool:
        """True when moving src->dst is a legal pawn move onto the last rank."""
        try:
            from_sq = chess.parse_square(src)
            to_sq = chess.parse_square(dst)
        except ValueError:
            return False
        piece = self.board.piece_at(from_sq)
        if not piece or piece.piece_type != chess.PAWN:
            return False
        rank = chess.square_rank(to_sq)
        if not ((piece.color and rank == 7) or ((not piece.color) and rank == 0)):
            return False
        return chess.Move(from_sq, to_sq, promotion=chess.QUEEN) in self.board.legal_moves

    def status(self) -> GameStatus:
        board = self.board
        if board.is_checkmate():
            return GameStatus("Checkmate", True)
        if board.is_stalemate():
            return GameStatus("Stalemate", True)
        if board.is_insufficient_material():
            return GameStatus("Draw (insufficient material)", True)
        if board.can_claim_threefold_repetition():
            return GameStatus("Draw (3-fold repetition)", True)
        if board.is_fifty_moves():
            return GameStatus("Draw (fifty moves)", True)
        if board.is_check():
            return GameStatus("Check", False)
        return GameStatus("Ongoing", False)
