"""Cooperative cancellation of in-flight chains.

Nothing here interrupts a task.  A cancelled scope only flips flags;
the orchestrator checks :meth:`CancelScope.is_live` at every suspension
point and abandons its work once it turns false.
"""

from __future__ import annotations

import logging
import uuid

from colloquy.conversation import Conversation
from colloquy.message import Turn

logger = logging.getLogger(__name__)


class CancelScope:
    """Cancellation flag for one chain.

    Args:
        root_turn_id: The user turn that started the chain.
    """

    def __init__(self, root_turn_id: str):
        self.id = uuid.uuid4().hex
        self.root_turn_id = root_turn_id
        self.cancelled = False

    def is_live(self, turn: Turn) -> bool:
        """True while the chain runs and ``turn`` is still answering."""
        return not self.cancelled and turn.answering


class CancellationCoordinator:
    """Maps turns to the chain currently responsible for them.

    Each turn is owned by at most one live scope: the most recent chain
    that touched it.  A resent turn therefore moves to the new chain and
    the superseded chain can no longer close it.
    """

    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self._scopes: dict[str, CancelScope] = {}
        self._owners: dict[str, CancelScope] = {}

    def open(self, root: Turn) -> CancelScope:
        scope = CancelScope(root.id)
        self._scopes[scope.id] = scope
        self._owners[root.id] = scope
        return scope

    def track(self, scope: CancelScope, turn: Turn) -> None:
        self._owners[turn.id] = scope

    def owner(self, turn_id: str) -> CancelScope | None:
        return self._owners.get(turn_id)

    def owns(self, scope: CancelScope, turn: Turn) -> bool:
        """True if ``scope`` is still the chain responsible for ``turn``."""
        return self._owners.get(turn.id) is scope

    def owned_turns(self, scope: CancelScope) -> list[Turn]:
        return [
            turn
            for turn in self.conversation.turns
            if self._owners.get(turn.id) is scope
        ]

    def close(self, scope: CancelScope) -> list[Turn]:
        """Retire ``scope``, closing any of its turns still answering."""
        stopped = self._stop_turns(scope)
        self._scopes.pop(scope.id, None)
        for turn_id in [k for k, v in self._owners.items() if v is scope]:
            del self._owners[turn_id]
        return stopped

    @property
    def scopes(self) -> list[CancelScope]:
        return list(self._scopes.values())

    def cancel(self, turn_id: str) -> list[Turn]:
        """Cancel the chain responsible for ``turn_id``.

        Returns the turns that were answering and are now closed.
        """
        stopped = []
        scope = self._owners.get(turn_id)
        if scope is not None:
            stopped.extend(self._cancel_scope(scope))
        turn = self.conversation.get(turn_id)
        if turn is not None and turn.answering:
            turn.answering = False
            stopped.append(turn)
        return stopped

    def cancel_all(self) -> list[Turn]:
        """Stop generating: close every active turn and chain."""
        stopped = []
        for scope in self.scopes:
            stopped.extend(self._cancel_scope(scope))
        for turn in self.conversation.active_turns():
            turn.answering = False
            stopped.append(turn)
        return stopped

    def _cancel_scope(self, scope: CancelScope) -> list[Turn]:
        if not scope.cancelled:
            scope.cancelled = True
            logger.info(f"Cancelling chain started by {scope.root_turn_id}")
        return self._stop_turns(scope)

    def _stop_turns(self, scope: CancelScope) -> list[Turn]:
        stopped = []
        for turn in self.owned_turns(scope):
            if turn.answering:
                turn.answering = False
                stopped.append(turn)
        return stopped
