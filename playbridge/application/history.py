from collections import deque
from typing import Iterator, List


DEFAULT_HISTORY_SIZE = 100


class PlayHistory:
    """Bounded FIFO of recently started URIs.

    Used only to de-prioritize immediate repeats when breaking ranking ties.
    In-memory only; a new instance is created per session.
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE):
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self.capacity = capacity
        self._uris = deque(maxlen=capacity)

    def record(self, uri: str) -> None:
        """Append a uri, evicting the oldest entry once full."""
        if not uri:
            return
        self._uris.append(uri)

    def recent(self) -> List[str]:
        return list(self._uris)

    def clear(self) -> None:
        self._uris.clear()

    def __contains__(self, uri: object) -> bool:
        return uri in self._uris

    def __len__(self) -> int:
        return len(self._uris)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._uris))
