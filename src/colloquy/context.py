from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from colloquy.message import Attachment, Turn


@dataclass
class ToolContext:
    """Runtime context passed to every tool execution.

    Built fresh for each dispatch from the conversation, so tools never
    read a shared "latest attachments" snapshot.

    Args:
        chat_id: The chat the tool call belongs to.
        history: Turns up to and including the calling assistant turn.
        turn: The assistant turn that requested the tool.
        attachments: Text-bearing attachments, newest first, used to
            resolve file-path arguments.
        is_cancelled: Returns True once the calling turn was cancelled.
    """

    chat_id: str
    history: list[Turn]
    turn: Turn
    attachments: list[Attachment] = field(default_factory=list)
    is_cancelled: Callable[[], bool] = lambda: False

    @property
    def cancelled(self) -> bool:
        return self.is_cancelled()

    def resolve(self, reference: str) -> Attachment:
        """Map a file-path argument back to an attachment.

        Matches by full path first, then by file name.  Unknown
        references become a bare attachment on the given path.
        """
        for attachment in self.attachments:
            if attachment.path == reference:
                return attachment
        for attachment in self.attachments:
            if attachment.name == reference:
                return attachment
        return Attachment(path=reference)
