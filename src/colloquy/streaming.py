"""Streaming primitives for model responses.

Providers yield :class:`ModelEvent` objects.  The
:class:`FunctionCallAccumulator` reassembles a function call whose name
and arguments arrive in fragments across many events.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from typing import TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from colloquy.errors import MalformedToolCall

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ModelEvent:
    """Base for all events read from a model stream."""


@dataclass
class TextDelta(ModelEvent):
    """Plain answer text."""

    text: str = ""


@dataclass
class FunctionNameDelta(ModelEvent):
    """A fragment of the function-call name."""

    text: str = ""
    call_id: str | None = None


@dataclass
class FunctionArgsDelta(ModelEvent):
    """A fragment of the function-call JSON arguments."""

    text: str = ""


@dataclass
class StreamDone(ModelEvent):
    """The model finished its response."""

    finish_reason: str | None = None


@dataclass
class StreamFailed(ModelEvent):
    """The provider reported an error in-band."""

    message: str = ""


class FunctionCallAccumulator:
    """Assembles a single function call from streamed fragments.

    Name and argument fragments may arrive at any granularity and
    interleaved.  ``name_resolved`` flips to true exactly once, when the
    accumulated name first matches a known tool identifier.  A name that
    is also a strict prefix of another known identifier (``search`` vs
    ``search_contacts``) is only resolved once it is known to be
    complete: at the first argument fragment or at :meth:`finalize`.

    Args:
        known_names: Tool identifiers the name may resolve to.
    """

    def __init__(self, known_names: Collection[str] = ()) -> None:
        self._known = frozenset(known_names)
        self._name = ""
        self._arguments = ""
        self._resolved = False
        self.call_id: str | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def raw_arguments(self) -> str:
        return self._arguments

    @property
    def name_resolved(self) -> bool:
        return self._resolved

    @property
    def started(self) -> bool:
        """True once any function-call fragment has been seen."""
        return bool(self._name or self._arguments)

    def append_name(self, fragment: str, call_id: str | None = None) -> bool:
        """Add a name fragment.  Returns True on the resolution edge."""
        if call_id and not self.call_id:
            self.call_id = call_id
        self._name += fragment
        return self._try_resolve(name_complete=False)

    def append_arguments(self, fragment: str) -> bool:
        """Add an argument fragment.  Returns True on the resolution edge."""
        self._arguments += fragment
        return self._try_resolve(name_complete=True)

    def finalize(self) -> bool:
        """Mark the stream as ended.  Returns True on the resolution edge."""
        return self._try_resolve(name_complete=True)

    def _try_resolve(self, name_complete: bool) -> bool:
        if self._resolved or self._name not in self._known:
            return False
        if not name_complete and self._is_ambiguous_prefix(self._name):
            return False
        self._resolved = True
        logger.debug(f"Function name resolved: {self._name}")
        return True

    def _is_ambiguous_prefix(self, name: str) -> bool:
        return any(
            other != name and other.startswith(name) for other in self._known
        )

    def decode(self, schema: type[T]) -> T:
        """Parse the accumulated arguments as ``schema``.

        Only meaningful after the stream has ended.  Empty arguments are
        read as ``{}``.

        Raises:
            MalformedToolCall: If the arguments are not valid JSON or do
                not satisfy ``schema``.
        """
        raw = self._arguments.strip() or "{}"
        try:
            if isinstance(schema, type) and issubclass(schema, BaseModel):
                return schema.model_validate_json(raw)
            return TypeAdapter(schema).validate_json(raw)
        except ValidationError as e:
            raise MalformedToolCall(
                f"arguments for {self._name or '<unnamed>'} failed to decode: {e}",
                tool_name=self._name,
                raw_arguments=self._arguments,
            ) from e

