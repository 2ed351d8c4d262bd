from collections import deque
from collections.abc import Iterable, Iterator
from typing import Optional

from chess_client.config import SETTINGS
from chess_client.models import ChatMessage


class MessageBuffer:
    """Room chat log in arrival order; the oldest entries fall off past the cap."""

    def __init__(self, cap: Optional[int] = None) -> None:
        self.cap = SETTINGS.message_cap if cap is None else cap
        self._items: deque[ChatMessage] = deque(maxlen=self.cap)

    def append(self, message: ChatMessage) -> None:
        self._items.append(message)

    def replace_all(self, messages: Iterable[ChatMessage]) -> None:
        """Resync from the peer's history; only the newest `cap` are kept."""
        self._items = deque(messages, maxlen=self.cap)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._items)

    def __getitem__(self, index: int) -> ChatMessage:
        return self._items[index]
