from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from colloquy.message import Attachment, Turn, TurnRole

if TYPE_CHECKING:
    from colloquy.persistence import Persistence


class Conversation(BaseModel):
    """Authoritative in-memory model of one chat.

    Turns are kept in insertion order and looked up by ``id``.  The
    orchestrator is the only writer of ``content`` / ``answering`` on
    assistant turns; user edits go through :meth:`edit`.

    Args:
        chat_id: Identifier shared by every turn in the chat.
        turns: Ordered turns, oldest first.
    """

    chat_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:10])
    turns: list[Turn] = Field(default_factory=list)

    @classmethod
    async def load(cls, persistence: Persistence, chat_id: str) -> Conversation:
        """Rebuild a conversation from persisted history."""
        turns = await persistence.load_history(chat_id)
        for turn in turns:
            # nothing loaded from storage can still be streaming
            turn.answering = False
        return cls(chat_id=chat_id, turns=turns)

    def __len__(self) -> int:
        return len(self.turns)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def new_turn(self, role: TurnRole, content: str = "", **fields) -> Turn:
        return Turn(chat_id=self.chat_id, role=role, content=content, **fields)

    def append(self, turn: Turn) -> Turn:
        if turn.chat_id != self.chat_id:
            raise ValueError(
                f"turn {turn.id} belongs to chat {turn.chat_id}, not {self.chat_id}"
            )
        if self.get(turn.id) is not None:
            raise ValueError(f"turn {turn.id} is already in the conversation")
        self.turns.append(turn)
        return turn

    def insert_after(self, anchor_id: str, turn: Turn) -> Turn:
        """Insert ``turn`` directly after the turn with ``anchor_id``."""
        index = self.index_of(anchor_id)
        if self.get(turn.id) is not None:
            raise ValueError(f"turn {turn.id} is already in the conversation")
        self.turns.insert(index + 1, turn)
        return turn

    def set_answering(self, turn_id: str, answering: bool) -> None:
        self.require(turn_id).answering = answering

    def edit(self, turn_id: str, content: str) -> Turn:
        """Replace the content of a user turn ahead of a resend."""
        turn = self.require(turn_id)
        if turn.role != TurnRole.USER:
            raise ValueError(f"only user turns can be edited, got {turn.role.value}")
        turn.content = content
        return turn

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, turn_id: str) -> Turn | None:
        for turn in self.turns:
            if turn.id == turn_id:
                return turn
        return None

    def require(self, turn_id: str) -> Turn:
        turn = self.get(turn_id)
        if turn is None:
            raise KeyError(f"no turn {turn_id} in chat {self.chat_id}")
        return turn

    def index_of(self, turn_id: str) -> int:
        for index, turn in enumerate(self.turns):
            if turn.id == turn_id:
                return index
        raise KeyError(f"no turn {turn_id} in chat {self.chat_id}")

    def turn_following(self, turn_id: str) -> Turn | None:
        index = self.index_of(turn_id)
        if index + 1 < len(self.turns):
            return self.turns[index + 1]
        return None

    def last_user_turn(self) -> Turn | None:
        for turn in reversed(self.turns):
            if turn.role == TurnRole.USER:
                return turn
        return None

    def active_turns(self) -> list[Turn]:
        return [turn for turn in self.turns if turn.answering]

    def history_through(self, turn_id: str) -> list[Turn]:
        """Turns up to and including ``turn_id``, in order."""
        return list(self.turns[: self.index_of(turn_id) + 1])

    def request_history(self, turn_id: str) -> list[Turn]:
        """History to send with a model request that continues from ``turn_id``.

        Turns another chain is still answering are left out, and so is
        any tool call or tool result whose counterpart is missing: a
        call still executing, or a stale result left behind by a
        shorter resent chain.
        """
        settled = [turn for turn in self.history_through(turn_id) if not turn.answering]
        history: list[Turn] = []
        for index, turn in enumerate(settled):
            if turn.dispatched_tool_call:
                following = settled[index + 1] if index + 1 < len(settled) else None
                if following is None or not _answers(following, turn):
                    continue
            elif turn.role in (TurnRole.TOOL, TurnRole.CHOICE):
                if not history or not _answers(turn, history[-1]):
                    continue
            history.append(turn)
        return history

    def text_attachments(self) -> list[Attachment]:
        """Attachments with extractable text, newest turn first."""
        return [
            attachment
            for turn in reversed(self.turns)
            for attachment in turn.attachments
            if attachment.has_text
        ]


def _answers(result: Turn, call: Turn) -> bool:
    return (
        result.role in (TurnRole.TOOL, TurnRole.CHOICE)
        and call.dispatched_tool_call
        and result.tool_call_id == call.tool_call_id
    )
