from __future__ import annotations

import logging
import time
from collections.abc import Callable

from colloquy.events import ConversationEvent, TurnUpdated
from colloquy.message import Turn

logger = logging.getLogger(__name__)

Subscriber = Callable[[ConversationEvent], None]


class ThrottledPublisher:
    """Fans conversation events out to subscribers.

    Content changes for a turn are coalesced: at most one
    :class:`TurnUpdated` per ``interval`` seconds while the turn streams.
    :meth:`flush` always publishes a pending change, so the final
    snapshot of a closed turn is never lost.  Publishing never touches
    the turn itself; its ``content`` stays authoritative.

    Args:
        interval: Minimum seconds between content updates for one turn.
            ``0`` publishes every change.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.clock = clock
        self._subscribers: list[Subscriber] = []
        self._last_published: dict[str, float] = {}
        self._dirty: set[str] = set()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ConversationEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber {callback!r} failed on {type(event).__name__}: {e}")

    def content_changed(self, turn: Turn) -> None:
        now = self.clock()
        last = self._last_published.get(turn.id)
        if last is not None and now - last < self.interval:
            self._dirty.add(turn.id)
            return
        self._publish_turn(turn, now)

    def flush(self, turn: Turn) -> None:
        """Publish the current state of ``turn`` unconditionally.

        A closed turn's throttling state is dropped; a reused slot starts
        a fresh window when it streams again.
        """
        self._publish_turn(turn, self.clock())
        if not turn.answering:
            self._last_published.pop(turn.id, None)

    def _publish_turn(self, turn: Turn, now: float) -> None:
        self._dirty.discard(turn.id)
        self._last_published[turn.id] = now
        self.publish(
            TurnUpdated(
                chat_id=turn.chat_id,
                turn_id=turn.id,
                content=turn.content,
                answering=turn.answering,
                tool_name=turn.tool_name,
                tool_log=turn.tool_log,
                error=turn.error,
                attachments=[a.path for a in turn.attachments],
            )
        )

    def pending(self, turn_id: str) -> bool:
        return turn_id in self._dirty
