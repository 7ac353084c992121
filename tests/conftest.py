import inspect
import json
from collections.abc import Callable

import pytest

from colloquy.config import Settings
from colloquy.context import ToolContext
from colloquy.conversation import Conversation
from colloquy.message import Turn, TurnRole
from colloquy.orchestrator import StreamOrchestrator
from colloquy.persistence import InMemoryPersistence
from colloquy.provider import ModelProvider
from colloquy.streaming import (
    FunctionArgsDelta,
    FunctionNameDelta,
    ModelEvent,
    StreamDone,
    TextDelta,
)
from colloquy.tools import ToolDispatchTable, tool


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that replays pre-queued scripts.  No network calls.

    Each script is a list of :class:`ModelEvent` objects or zero-argument
    callables.  Callables run inline when reached (awaited if they return
    an awaitable), so a test can cancel, resend or sleep at an exact
    point in the stream.
    """

    system = "mock"

    def __init__(self):
        self.scripts: list[list[ModelEvent | Callable[[], None]]] = []
        self.call_log: list[dict] = []

    async def stream(self, model, messages, tools=None, temperature=None):
        self.call_log.append({"model": model, "messages": messages, "tools": tools})
        script = self.scripts.pop(0)
        for item in script:
            if isinstance(item, ModelEvent):
                yield item
            else:
                result = item()
                if inspect.isawaitable(result):
                    await result


# ---------------------------------------------------------------------------
# Script builder helpers
# ---------------------------------------------------------------------------

def text_script(*chunks: str) -> list[ModelEvent]:
    """Stream that answers with plain text."""
    return [TextDelta(text=c) for c in chunks] + [StreamDone(finish_reason="stop")]


def tool_call_script(
    name: str,
    args: dict | str,
    call_id: str = "call_1",
    chunk_size: int | None = None,
    content: str = "",
) -> list[ModelEvent]:
    """Stream containing a single function call.

    ``chunk_size`` splits both the name and the arguments into fragments
    of that many characters.
    """
    raw = args if isinstance(args, str) else json.dumps(args)
    size = chunk_size or max(len(name), len(raw), 1)
    events: list[ModelEvent] = [TextDelta(text=content)] if content else []
    for i in range(0, len(name), size):
        events.append(FunctionNameDelta(text=name[i:i + size], call_id=call_id if i == 0 else None))
    for i in range(0, len(raw), size):
        events.append(FunctionArgsDelta(text=raw[i:i + size]))
    events.append(StreamDone(finish_reason="tool_calls"))
    return events


# ---------------------------------------------------------------------------
# Mock collaborators
# ---------------------------------------------------------------------------

class RecordingSpeech:
    """Speech sink that records every enqueued sentence."""

    def __init__(self):
        self.sentences: list[str] = []

    def enqueue(self, sentence: str) -> None:
        self.sentences.append(sentence)


class EventLog:
    """Subscriber that keeps every published event."""

    def __init__(self):
        self.events = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def settings():
    return Settings(publish_interval=0.0, system_prompt="You are a test assistant.")


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def speech():
    return RecordingSpeech()


@pytest.fixture
def weather_tool():
    @tool
    def get_weather(city: str):
        """Look up the current weather.

        Args:
            city: City to look up.
        """
        return f"Sunny in {city}"
    return get_weather


@pytest.fixture
def sample_context_tool():
    @tool
    def whoami(context: ToolContext, prefix: str = ""):
        """Report the calling chat."""
        return f"{prefix}{context.chat_id}"
    return whoami


@pytest.fixture
def tool_table(weather_tool):
    return ToolDispatchTable([weather_tool])


@pytest.fixture
def conversation():
    return Conversation(chat_id="chat-test")


@pytest.fixture
def make_orchestrator(mock_provider, settings, persistence, speech, conversation):
    """Factory fixture building an orchestrator on the shared mocks."""

    def _make(tools=None, **kwargs):
        kwargs.setdefault("settings", settings)
        return StreamOrchestrator(
            mock_provider,
            tools=tools,
            conversation=conversation,
            persistence=persistence,
            speech=speech,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_context(conversation):
    """Factory fixture for a ToolContext bound to a fresh assistant turn."""

    def _make(attachments=None, cancelled=False):
        turn = Turn(chat_id=conversation.chat_id, role=TurnRole.ASSISTANT, answering=True)
        return ToolContext(
            chat_id=conversation.chat_id,
            history=[turn],
            turn=turn,
            attachments=list(attachments or []),
            is_cancelled=lambda: cancelled,
        )

    return _make
