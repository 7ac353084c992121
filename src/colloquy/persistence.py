from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from colloquy.message import Turn

logger = logging.getLogger(__name__)


@runtime_checkable
class Persistence(Protocol):
    """Storage for turns.  Called when a turn closes, never per delta."""

    async def save(self, turn: Turn) -> None: ...

    async def load_history(self, chat_id: str) -> list[Turn]: ...


class InMemoryPersistence:
    """Keeps saved turns per chat in save order.

    Saving a turn that was saved before replaces the stored copy in
    place, so reused slots keep their position.
    """

    def __init__(self):
        self._chats: dict[str, dict[str, Turn]] = {}
        self.save_count = 0

    async def save(self, turn: Turn) -> None:
        self.save_count += 1
        self._chats.setdefault(turn.chat_id, {})[turn.id] = turn.model_copy(deep=True)
        logger.debug(f"Saved turn {turn.id} in chat {turn.chat_id}")

    async def load_history(self, chat_id: str) -> list[Turn]:
        stored = self._chats.get(chat_id, {})
        return [turn.model_copy(deep=True) for turn in stored.values()]
