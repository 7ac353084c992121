from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SpeechSink(Protocol):
    """Fire-and-forget target for completed sentences."""

    def enqueue(self, sentence: str) -> None: ...


class SpeechQueue:
    """FIFO of sentences waiting to be spoken.

    Sentences are handed to ``speak`` strictly in the order they were
    enqueued.  Without a ``speak`` callable the queue only buffers, and a
    consumer drains it with :meth:`next_sentence`.

    Args:
        speak: Synthesiser callback; called once per sentence.
    """

    def __init__(self, speak: Callable[[str], None] | None = None):
        self.speak = speak
        self._queue: deque[str] = deque()
        self.current_sentence = ""

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, sentence: str) -> None:
        self._queue.append(sentence)
        if self.speak is not None:
            self._drain()

    def next_sentence(self) -> str | None:
        if not self._queue:
            return None
        self.current_sentence = self._queue.popleft()
        return self.current_sentence

    def cancel(self) -> None:
        """Drop every sentence that has not been spoken yet."""
        self._queue.clear()
        self.current_sentence = ""

    def _drain(self) -> None:
        while (sentence := self.next_sentence()) is not None:
            logger.debug(f"Speaking: {sentence}")
            try:
                self.speak(sentence)
            except Exception as e:
                logger.warning(f"Speech output failed: {e}")
