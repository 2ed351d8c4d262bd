class ChessClientError(Exception):
    """Base class for errors raised by the chess client core."""


class IllegalMove(ChessClientError, ValueError):
    """The position engine rejected a move in the given position."""

    def __init__(self, move, fen: str, reason: str = "illegal") -> None:
        self.move = move
        self.fen = fen
        self.reason = reason
        super().__init__(f"{reason} move {move!r} in {fen}")


class OutOfOrderMove(ChessClientError):
    """A confirmed move did not carry the next expected ledger index."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"expected move index {expected}, got {received}")

    @property
    def is_gap(self) -> bool:
        # A gap means we missed moves; lower indices are duplicates.
        return self.received > self.expected


class LedgerInconsistency(ChessClientError):
    """The authoritative confirmation disagrees with our speculative move."""

    def __init__(self, index: int, local, confirmed) -> None:
        self.index = index
        self.local = local
        self.confirmed = confirmed
        super().__init__(f"move {index}: local {local!r} != confirmed {confirmed!r}")
