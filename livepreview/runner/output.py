"""Bounded buffer for live process output."""

from ..config import OUTPUT_LIMIT


class OutputBuffer:
    """Append-only text with a hard cap; the oldest text is dropped first."""

    def __init__(self, limit: int = OUTPUT_LIMIT):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        combined = self._text + chunk
        self._text = combined[-self.limit :] if len(combined) > self.limit else combined

    def clear(self) -> None:
        self._text = ""

    def __len__(self) -> int:
        return len(self._text)
