"""Buffering for streamed planner responses."""

from dataclasses import dataclass, field


@dataclass
class ResponseBuffer:
    """
    Collects a streamed planner response.

    ``text`` always holds everything received so far (provisional trees are
    parsed from it). Chunk notifications are released once at least
    ``batch_size`` characters are pending.
    """

    batch_size: int = 64
    text: str = field(default="", init=False)
    tokens: int = field(default=0, init=False)
    _pending: str = field(default="", init=False, repr=False)

    def feed(self, token: str) -> str | None:
        """Append a token; return a chunk when enough text is pending."""
        if not token:
            return None
        self.tokens += 1
        self.text += token
        self._pending += token
        if len(self._pending) < self.batch_size:
            return None
        return self.drain()

    def drain(self) -> str | None:
        """Release pending text, if any."""
        chunk, self._pending = self._pending, ""
        return chunk or None

    @property
    def chars(self) -> int:
        return len(self.text)


__all__ = ["ResponseBuffer"]
