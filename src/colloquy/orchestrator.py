import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from colloquy.cancellation import CancellationCoordinator, CancelScope
from colloquy.config import Settings
from colloquy.context import ToolContext
from colloquy.conversation import Conversation
from colloquy.errors import (
    CancelledByUser,
    MalformedToolCall,
    StreamTransportError,
    ToolExecutionFailure,
)
from colloquy.events import ChainStateChanged, ConversationEvent, TurnAdded
from colloquy.instrumentation import chain_span, completion_span, record_error, tool_span
from colloquy.message import Attachment, Turn, TurnRole
from colloquy.persistence import InMemoryPersistence, Persistence
from colloquy.postprocess import DEFAULT_TRANSFORMS, TextTransform, apply_all
from colloquy.provider import ModelProvider
from colloquy.publisher import ThrottledPublisher
from colloquy.sentences import DEFAULT_ABBREVIATIONS, SentenceBoundaryScanner
from colloquy.speech import SpeechSink
from colloquy.streaming import (
    FunctionArgsDelta,
    FunctionCallAccumulator,
    FunctionNameDelta,
    StreamDone,
    StreamFailed,
    TextDelta,
)
from colloquy.tools import ChoiceResult, DataResult, Failure, TextResult, ToolDispatchTable, ToolOutcome

logger = logging.getLogger(__name__)

CHAIN_LIMIT_NOTICE = "Maximum chain length reached. Please try again."


class CycleState(Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DISPATCHING_TOOL = "dispatching_tool"
    CANCELLED = "cancelled"


@dataclass
class _Chain:
    """Bookkeeping for one answer -> tool -> answer chain."""

    root: Turn
    scope: CancelScope
    reuse_slots: bool
    depth: int = 0
    state: CycleState = CycleState.IDLE
    last: Turn | None = None

    def check(self, turn: Turn) -> None:
        """Suspension-point check; unwinds the cycle once ``turn`` stops."""
        if not self.scope.is_live(turn):
            raise CancelledByUser(f"turn {turn.id} is no longer answering")


class StreamOrchestrator:
    """Drives a conversation against a streaming model.

    Each user turn starts a chain.  A chain opens a model request with
    the history up to its latest turn, streams the answer into an
    assistant turn and, when the model asks for a tool, executes it,
    records the outcome as a new turn and opens the next request.  The
    chain ends on a plain answer, a choice prompt, a failure or a
    cancellation.  Several chains may run at once; each owns its own
    accumulator and sentence scanner per cycle.

    Args:
        provider: Source of model streams.
        tools: Tools the model may call.
        conversation: Conversation to drive; a new one by default.
        settings: Model, prompt and throttling configuration.
        persistence: Where closed turns are saved.
        speech: Sink for completed sentences when ``speak_answers`` is on.
        transforms: Text transforms applied once to each final answer.
        publisher: Subscriber fan-out; built from ``settings`` by default.
    """

    def __init__(
        self,
        provider: ModelProvider,
        tools: ToolDispatchTable | None = None,
        conversation: Conversation | None = None,
        settings: Settings | None = None,
        persistence: Persistence | None = None,
        speech: SpeechSink | None = None,
        transforms: Iterable[TextTransform] = DEFAULT_TRANSFORMS,
        publisher: ThrottledPublisher | None = None,
    ):
        self.provider = provider
        self.tools = tools if tools is not None else ToolDispatchTable()
        self.conversation = conversation if conversation is not None else Conversation()
        self.settings = settings or Settings()
        self.persistence = persistence or InMemoryPersistence()
        self.speech = speech
        self.transforms = tuple(transforms)
        self.publisher = publisher or ThrottledPublisher(
            interval=self.settings.publish_interval,
        )
        self.cancellation = CancellationCoordinator(self.conversation)
        self.speak_answers = self.settings.speak_answers
        self.abbreviations = DEFAULT_ABBREVIATIONS | {
            a.lower() for a in self.settings.abbreviations
        }

    # ------------------------------------------------------------------
    # Caller surface
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[ConversationEvent], None]) -> Callable[[], None]:
        return self.publisher.subscribe(callback)

    async def submit(self, text: str, attachments: Iterable[Attachment] = ()) -> Turn:
        """Append a user turn and answer it.  Returns the chain's last turn."""
        user = self.conversation.new_turn(TurnRole.USER, text)
        for attachment in attachments:
            user.attach(attachment)
        self._add_after(None, user)
        await self._save(user)
        return await self._run_chain(user, reuse_slots=False)

    async def resend(self, turn_id: str, content: str | None = None) -> Turn:
        """Answer a historical user turn again, optionally after editing it.

        The turns that followed it are reused in place rather than
        duplicated.  A chain still answering this turn is cancelled.
        """
        user = self.conversation.require(turn_id)
        if user.role != TurnRole.USER:
            raise ValueError(f"only user turns can be resent, got {user.role.value}")
        self.cancel(turn_id)
        if content is not None:
            self.conversation.edit(turn_id, content)
            self.publisher.flush(user)
        await self._save(user)
        return await self._run_chain(user, reuse_slots=True)

    async def choose(self, choice_turn_id: str, option: str) -> Turn:
        """Answer a choice prompt with one of its options."""
        turn = self.conversation.require(choice_turn_id)
        if turn.role != TurnRole.CHOICE:
            raise ValueError(f"turn {choice_turn_id} is not a choice prompt")
        if option not in turn.options:
            raise ValueError(f"{option!r} is not one of {turn.options}")
        return await self.submit(option)

    def cancel(self, turn_id: str) -> None:
        for turn in self.cancellation.cancel(turn_id):
            self.publisher.flush(turn)

    def cancel_all(self) -> None:
        for turn in self.cancellation.cancel_all():
            self.publisher.flush(turn)

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------

    async def _run_chain(self, root: Turn, reuse_slots: bool) -> Turn:
        chain = _Chain(
            root=root,
            scope=self.cancellation.open(root),
            reuse_slots=reuse_slots,
        )
        anchor = root
        try:
            async with chain_span(self.conversation.chat_id, self.settings.model):
                for depth in range(self.settings.max_chain_length):
                    if chain.scope.cancelled:
                        break
                    chain.depth = depth
                    assistant = self._claim_slot(chain, anchor, TurnRole.ASSISTANT)
                    anchor = await self._cycle(chain, anchor, assistant)
                    if anchor is None:
                        break
                else:
                    logger.warning(
                        f"Chain from {root.id} hit max_chain_length={self.settings.max_chain_length}"
                    )
                    notice = self._claim_slot(chain, anchor, TurnRole.ASSISTANT)
                    notice.content = CHAIN_LIMIT_NOTICE
                    notice.answering = False
                    self.publisher.flush(notice)
                    await self._save(notice)
        finally:
            for turn in self.cancellation.close(chain.scope):
                self.publisher.flush(turn)
            self._transition(chain, CycleState.IDLE)
        return chain.last or root

    async def _cycle(self, chain: _Chain, anchor: Turn, turn: Turn) -> Turn | None:
        """Run one Requesting/Streaming cycle.

        Returns the tool turn to continue from, or ``None`` when the
        chain is over.
        """
        self._transition(chain, CycleState.REQUESTING)
        history = self.conversation.request_history(anchor.id)
        messages = [
            {"role": "system", "content": self.settings.system_prompt},
            *[t.to_model_message() for t in history],
        ]
        accumulator = FunctionCallAccumulator(self.tools.names)
        scanner = SentenceBoundaryScanner(self._speak, self.abbreviations)

        try:
            async with completion_span(self.provider.system, self.settings.model) as span:
                try:
                    await self._drain(chain, turn, messages, accumulator, scanner)
                except StreamTransportError as e:
                    chain.check(turn)
                    record_error(span, e)
                    logger.error(f"Stream for turn {turn.id} failed: {e}")
                    return await self._close_failed(turn, f"Stream failed: {e}")

            if accumulator.finalize():
                self._on_name_resolved(turn, accumulator)
            if not accumulator.started:
                return await self._finalize(chain, turn, scanner)
            return await self._dispatch(chain, turn, accumulator)
        except CancelledByUser as e:
            self._transition(chain, CycleState.CANCELLED)
            logger.info(f"Abandoning cycle: {e}")
            if not self.cancellation.owns(chain.scope, turn):
                # a resend has taken the slot over
                return None
            # a call without a recorded result cannot be replayed to the model
            turn.tool_call_id = None
            self.publisher.flush(turn)
            return None

    async def _drain(
        self,
        chain: _Chain,
        turn: Turn,
        messages: list[dict],
        accumulator: FunctionCallAccumulator,
        scanner: SentenceBoundaryScanner,
    ) -> None:
        """Route stream events into ``turn`` until the stream ends."""
        chain.check(turn)
        stream = self.provider.stream(
            model=self.settings.model,
            messages=messages,
            tools=self.tools.schemas() or None,
            temperature=self.settings.temperature,
        )
        self._transition(chain, CycleState.STREAMING)
        try:
            async for event in stream:
                chain.check(turn)
                if isinstance(event, TextDelta):
                    turn.content += event.text
                    self.publisher.content_changed(turn)
                    scanner.feed(event.text)
                elif isinstance(event, FunctionNameDelta):
                    if accumulator.append_name(event.text, event.call_id):
                        self._on_name_resolved(turn, accumulator)
                elif isinstance(event, FunctionArgsDelta):
                    echoed = accumulator.name_resolved
                    if accumulator.append_arguments(event.text):
                        self._on_name_resolved(turn, accumulator)
                    elif echoed:
                        turn.tool_log += event.text
                        self.publisher.content_changed(turn)
                elif isinstance(event, StreamFailed):
                    raise StreamTransportError(event.message or "provider reported an error")
                elif isinstance(event, StreamDone):
                    break
        except (StreamTransportError, CancelledByUser):
            raise
        except Exception as e:
            logger.exception(f"Unexpected error while streaming turn {turn.id}")
            raise StreamTransportError(str(e)) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        chain.check(turn)

    def _on_name_resolved(self, turn: Turn, accumulator: FunctionCallAccumulator) -> None:
        logger.debug(f"Turn {turn.id} is calling {accumulator.name}")
        turn.tool_name = accumulator.name
        turn.tool_log += f"\n```json\n{accumulator.raw_arguments}"
        self.publisher.content_changed(turn)

    async def _finalize(self, chain: _Chain, turn: Turn, scanner: SentenceBoundaryScanner) -> None:
        self._transition(chain, CycleState.FINALIZING)
        scanner.flush()
        turn.content = apply_all(turn.content, self.transforms)
        turn.answering = False
        self.publisher.flush(turn)
        await self._save(turn)
        logger.info(f"Turn {turn.id} answered")
        return None

    async def _dispatch(
        self, chain: _Chain, turn: Turn, accumulator: FunctionCallAccumulator,
    ) -> Turn | None:
        self._transition(chain, CycleState.DISPATCHING_TOOL)
        if turn.tool_name:
            turn.tool_log += "\n```\n"

        tool_obj = self.tools.get(accumulator.name) if accumulator.name_resolved else None
        try:
            if tool_obj is None:
                raise MalformedToolCall(
                    f"unknown tool {accumulator.name!r}",
                    tool_name=accumulator.name,
                    raw_arguments=accumulator.raw_arguments,
                )
            accumulator.decode(tool_obj.arguments_model)
        except MalformedToolCall as e:
            logger.warning(f"Malformed tool call on turn {turn.id}: {e}")
            return await self._close_failed(turn, str(e))

        turn.tool_arguments_raw = accumulator.raw_arguments
        turn.tool_call_id = accumulator.call_id or f"call_{uuid.uuid4().hex[:24]}"
        context = ToolContext(
            chat_id=self.conversation.chat_id,
            history=self.conversation.history_through(turn.id),
            turn=turn,
            attachments=self.conversation.text_attachments(),
            is_cancelled=lambda: not chain.scope.is_live(turn),
        )

        async with tool_span(tool_obj.name, turn.tool_call_id) as span:
            outcome = await self.tools.execute(tool_obj.name, accumulator.raw_arguments, context)
            if isinstance(outcome, Failure):
                record_error(span, ToolExecutionFailure(outcome.reason))

        chain.check(turn)

        result = self._record_outcome(chain, turn, outcome)
        turn.answering = False
        self.publisher.flush(turn)
        self.publisher.flush(result)
        await asyncio.gather(self._save(turn), self._save(result))

        if isinstance(outcome, (ChoiceResult, Failure)):
            return None
        return result

    def _record_outcome(self, chain: _Chain, turn: Turn, outcome: ToolOutcome) -> Turn:
        role = TurnRole.CHOICE if isinstance(outcome, ChoiceResult) else TurnRole.TOOL
        result = self._claim_slot(chain, turn, role, answering=False)
        result.tool_name = turn.tool_name
        result.tool_call_id = turn.tool_call_id
        if isinstance(outcome, TextResult):
            result.content = outcome.content
        elif isinstance(outcome, DataResult):
            result.content = outcome.content
            for attachment in outcome.attachments:
                result.attach(attachment)
        elif isinstance(outcome, ChoiceResult):
            result.content = outcome.prompt
            result.options = list(outcome.options)
        else:
            result.content = f"Error: {outcome.reason}"
            result.error = outcome.reason
        return result

    async def _close_failed(self, turn: Turn, reason: str) -> None:
        turn.error = reason
        turn.answering = False
        self.publisher.flush(turn)
        await self._save(turn)
        return None

    # ------------------------------------------------------------------
    # Turn slots
    # ------------------------------------------------------------------

    def _claim_slot(
        self, chain: _Chain, after: Turn, role: TurnRole, answering: bool = True,
    ) -> Turn:
        """Get the turn that follows ``after`` in this chain.

        When resending, the existing follower is cleared and reused if it
        has a compatible role and is not answering for another chain.
        """
        follower = self.conversation.turn_following(after.id)
        if chain.reuse_slots and follower is not None and not follower.answering \
                and self._compatible(follower.role, role):
            follower.clear()
            follower.role = role
            follower.answering = answering
            self.cancellation.track(chain.scope, follower)
            chain.last = follower
            self.publisher.flush(follower)
            return follower

        turn = self.conversation.new_turn(role, answering=answering)
        self._add_after(after, turn)
        self.cancellation.track(chain.scope, turn)
        chain.last = turn
        return turn

    @staticmethod
    def _compatible(existing: TurnRole, wanted: TurnRole) -> bool:
        results = (TurnRole.TOOL, TurnRole.CHOICE)
        return existing == wanted or (existing in results and wanted in results)

    def _add_after(self, after: Turn | None, turn: Turn) -> None:
        if after is None:
            self.conversation.append(turn)
        else:
            self.conversation.insert_after(after.id, turn)
        self.publisher.publish(
            TurnAdded(
                chat_id=turn.chat_id,
                turn_id=turn.id,
                role=turn.role.value,
                index=self.conversation.index_of(turn.id),
            )
        )
        self.publisher.flush(turn)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _speak(self, sentence: str) -> None:
        if self.speak_answers and self.speech is not None:
            self.speech.enqueue(sentence)

    async def _save(self, turn: Turn) -> None:
        try:
            await self.persistence.save(turn)
        except Exception as e:
            logger.error(f"Failed to save turn {turn.id}: {e}")

    def _transition(self, chain: _Chain, state: CycleState) -> None:
        chain.state = state
        logger.debug(f"Chain {chain.root.id} depth {chain.depth}: {state.value}")
        self.publisher.publish(
            ChainStateChanged(
                chat_id=self.conversation.chat_id,
                root_turn_id=chain.root.id,
                state=state.value,
                depth=chain.depth,
            )
        )
