"""Events published to subscribers while chains run."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ConversationEvent:
    """Base for all subscriber events."""

    chat_id: str = ""


@dataclass
class TurnAdded(ConversationEvent):
    """A turn was inserted into the conversation at ``index``."""

    turn_id: str = ""
    role: str = ""
    index: int = 0


@dataclass
class TurnUpdated(ConversationEvent):
    """Snapshot of a turn's mutable fields.

    Content updates are coalesced; the last ``TurnUpdated`` for a closed
    turn always carries its final content.
    """

    turn_id: str = ""
    content: str = ""
    answering: bool = False
    tool_name: str | None = None
    tool_log: str = ""
    error: str | None = None
    attachments: list[str] = field(default_factory=list)


@dataclass
class ChainStateChanged(ConversationEvent):
    """The orchestrator moved a chain to a new state.

    ``state`` values: ``"requesting"``, ``"streaming"``,
    ``"finalizing"``, ``"dispatching_tool"``, ``"idle"``,
    ``"cancelled"``.
    """

    root_turn_id: str = ""
    state: str = ""
    depth: int = 0
