from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_serializer


class TurnRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    CHOICE = "system-select"


class AttachmentKind(Enum):
    DOC = "doc"
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    URL = "url"
    FOLDER = "folder"


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Attachment(BaseModel):
    """Reference to externally owned file or URL data.

    Attachments are identified by ``path``; a turn never holds two
    attachments with the same path.
    """

    path: str
    kind: AttachmentKind = AttachmentKind.DOC

    @field_serializer("kind")
    def serialize_kind(self, kind: AttachmentKind, _info) -> str:
        return kind.value

    @property
    def name(self) -> str:
        return urlparse(self.path).path.rstrip("/").rsplit("/", 1)[-1] or self.path

    @property
    def is_local(self) -> bool:
        return urlparse(self.path).scheme in ("", "file")

    @property
    def has_text(self) -> bool:
        return self.kind == AttachmentKind.DOC

    def render(self) -> str:
        """File-reference token sent to the model instead of raw bytes."""
        return f"file_path: {self.path}"


class Turn(BaseModel):
    """One message in a conversation.

    ``content`` only grows while ``answering`` is true; the orchestrator
    freezes it when the turn closes.  Tool metadata is filled in as the
    function call streams.
    """

    id: str = Field(default_factory=_new_id)
    chat_id: str
    role: TurnRole
    created_at: datetime = Field(default_factory=_now)
    content: str = ""
    answering: bool = False
    tool_name: str | None = None
    tool_arguments_raw: str | None = None
    tool_call_id: str | None = None
    tool_log: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    options: list[str] = Field(default_factory=list)
    error: str | None = None

    @field_serializer("role")
    def serialize_role(self, role: TurnRole, _info) -> str:
        return role.value

    @property
    def dispatched_tool_call(self) -> bool:
        return (
            self.role == TurnRole.ASSISTANT
            and self.tool_call_id is not None
            and self.tool_name is not None
        )

    def attach(self, attachment: Attachment) -> Attachment:
        """Attach by path, returning the existing attachment on a repeat."""
        for existing in self.attachments:
            if existing.path == attachment.path:
                return existing
        self.attachments.append(attachment)
        return attachment

    def clear(self) -> None:
        """Reset a reused slot before it is answered again."""
        self.content = ""
        self.tool_name = None
        self.tool_arguments_raw = None
        self.tool_call_id = None
        self.tool_log = ""
        self.attachments = []
        self.options = []
        self.error = None

    def _body(self) -> str:
        lines = [self.content] if self.content else []
        lines.extend(a.render() for a in self.attachments)
        return "\n".join(lines)

    def to_model_message(self) -> dict:
        """Render this turn in the chat-completions message shape."""
        if self.dispatched_tool_call:
            return {
                "role": "assistant",
                "content": self.content or None,
                "tool_calls": [
                    {
                        "id": self.tool_call_id,
                        "type": "function",
                        "function": {
                            "name": self.tool_name,
                            "arguments": self.tool_arguments_raw or "{}",
                        },
                    }
                ],
            }
        if self.role == TurnRole.TOOL:
            return {
                "role": "tool",
                "tool_call_id": self.tool_call_id,
                "content": self._body(),
            }
        if self.role == TurnRole.CHOICE:
            listing = "\n".join(f"- {option}" for option in self.options)
            body = "\n".join(part for part in (self.content, listing) if part)
            return {
                "role": "tool",
                "tool_call_id": self.tool_call_id,
                "content": f"{body}\nAwaiting the user's selection.".strip(),
            }
        return {"role": self.role.value, "content": self._body()}

    def to_markdown(self) -> str:
        if self.role == TurnRole.USER:
            return f"**{self._body()}**"
        if self.role == TurnRole.ASSISTANT:
            return self._body()
        return f"**{self.role.value}:** {self._body()}"
