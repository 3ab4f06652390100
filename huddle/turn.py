"""Drive one agent turn from prompt to stored message."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from huddle.annotations import SourceCitation, ToolCallEntry, clean_streaming_content, compose_content
from huddle.events import (
    ErrorEvent,
    EventBus,
    MessagePersistedEvent,
    PlaceholderCreatedEvent,
    PlaceholderRemovedEvent,
    PlaceholderUpdatedEvent,
    ToolCallFinishedEvent,
    ToolCallStartedEvent,
    TurnStateChangedEvent,
    sidebar_event,
)
from huddle.events.base import BaseEvent
from huddle.exceptions import StoreError
from huddle.generation.base import (
    DoneFrame,
    GenerationRequest,
    GenerationService,
    SourcesFrame,
    TextFrame,
    ToolCallFrame,
    ToolResultFrame,
    parse_frame,
)
from huddle.prompt import NO_REPLY
from huddle.store.base import Store
from huddle.store.models import MESSAGES, Message
from huddle.tools import ToolContext, ToolOutcome, dispatch
from huddle.view import ConversationView, Placeholder

logger = logging.getLogger(__name__)

DEFAULT_PERSIST_RETRY_DELAY = 1.0

TOOLS_UNAVAILABLE = "Tools are not available in this conversation."


class TurnState(str, Enum):
    COMPOSING = "composing"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class TurnAccumulator:
    """Running text, tool-call entries, and sources of a streaming reply.

    Holds exactly one entry per tool-call id, in first-seen order.
    """

    def __init__(self):
        self._parts: List[str] = []
        self._calls: Dict[str, ToolCallEntry] = {}
        self.sources: List[SourceCitation] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def tool_calls(self) -> List[ToolCallEntry]:
        return list(self._calls.values())

    def entry(self, call_id: str) -> Optional[ToolCallEntry]:
        return self._calls.get(call_id)

    def add_text(self, text: str) -> None:
        self._parts.append(text)

    def add_sources(self, sources: List[SourceCitation]) -> None:
        self.sources.extend(sources)

    def start_call(self, frame: ToolCallFrame) -> bool:
        """Record a requested call. Returns False if the id was already known."""
        if frame.id in self._calls:
            return False
        self._calls[frame.id] = ToolCallEntry(id=frame.id, name=frame.name, arguments=frame.arguments)
        return True

    def finish_call(self, frame: ToolResultFrame) -> ToolCallEntry:
        entry = self._calls.get(frame.id)
        if entry is None:
            entry = ToolCallEntry(id=frame.id, name=frame.name)
            self._calls[frame.id] = entry
        entry.success = frame.success
        entry.result = frame.result
        return entry

    def display(self) -> str:
        """Live copy: tool-status block, cleaned text, source block."""
        return compose_content(clean_streaming_content(self.text), self.tool_calls, self.sources)

    def final_content(self) -> str:
        """Content to store. Empty when the reply produced nothing at all."""
        text = self.text.rstrip()
        if not text.strip() and not self._calls and not self.sources:
            return ""
        return compose_content(text, self.tool_calls, self.sources)


@dataclass
class TurnResult:
    state: TurnState
    content: str = ""
    message: Optional[Message] = None
    silent: bool = False
    error: Optional[str] = None


class AgentTurn:
    """One agent reply: ``COMPOSING -> STREAMING -> PERSISTING -> DONE``.

    ``FAILED`` is reached when the generation transport fails (the
    placeholder is removed) or when storing the reply fails twice (the
    placeholder is kept so the text is not lost).

    Args:
        store: Workspace store
        service: Generation service
        view: Client view of the conversation the reply goes to
        sender_id: Participant id of the replying agent
        compose: Coroutine factory building the generation request
        tool_context: Acting user for tool calls, or None to refuse tools
        bus: Event bus for placeholder, tool, and state events
        persist_retry_delay: Seconds to wait before the single insert retry
        allow_silence: Treat a bare ``[NO_REPLY]`` answer as choosing not to reply
    """

    def __init__(
        self,
        store: Store,
        service: GenerationService,
        view: ConversationView,
        sender_id: str,
        compose: Callable[[], Awaitable[GenerationRequest]],
        tool_context: Optional[ToolContext] = None,
        bus: Optional[EventBus] = None,
        persist_retry_delay: float = DEFAULT_PERSIST_RETRY_DELAY,
        allow_silence: bool = False,
    ):
        self.id = str(uuid.uuid4())
        self.store = store
        self.service = service
        self.view = view
        self.sender_id = sender_id
        self.compose = compose
        self.tool_context = tool_context
        self.bus = bus
        self.persist_retry_delay = persist_retry_delay
        self.allow_silence = allow_silence
        self.accumulator = TurnAccumulator()
        self.placeholder: Optional[Placeholder] = None
        self.state = TurnState.COMPOSING

    @property
    def conversation_id(self) -> str:
        return self.view.conversation_id

    def _emit(self, event: BaseEvent) -> None:
        if self.bus is not None:
            self.bus.emit(event)

    def _set_state(self, state: TurnState) -> None:
        self.state = state
        self._emit(TurnStateChangedEvent(turn_id=self.id, conversation_id=self.conversation_id, state=state.value))

    def _publish_display(self) -> None:
        if self.placeholder is None:
            return
        content = self.accumulator.display()
        self.view.update_placeholder(self.placeholder.id, content)
        self._emit(
            PlaceholderUpdatedEvent(
                conversation_id=self.conversation_id, placeholder_id=self.placeholder.id, content=content
            )
        )

    def _drop_placeholder(self, reason: str) -> None:
        if self.placeholder is None:
            return
        self.view.remove_placeholder(self.placeholder.id)
        self._emit(
            PlaceholderRemovedEvent(
                conversation_id=self.conversation_id, placeholder_id=self.placeholder.id, reason=reason
            )
        )
        self.placeholder = None

    def _fail(self, error: Exception) -> TurnResult:
        self._emit(ErrorEvent(error=str(error), error_type=type(error).__name__))
        self._set_state(TurnState.FAILED)
        return TurnResult(state=TurnState.FAILED, error=str(error))

    async def run(self) -> TurnResult:
        """Run the turn to completion.

        Transport and storage failures are reported in the result, not raised.
        """
        self._set_state(TurnState.COMPOSING)
        try:
            request = await self.compose()
        except Exception as e:
            logger.exception("Failed to compose turn for conversation %s", self.conversation_id)
            return self._fail(e)

        self._set_state(TurnState.STREAMING)
        self.placeholder = self.view.add_placeholder(self.sender_id)
        self._emit(
            PlaceholderCreatedEvent(
                conversation_id=self.conversation_id, placeholder_id=self.placeholder.id, sender_id=self.sender_id
            )
        )

        try:
            await self._stream(request)
        except asyncio.CancelledError:
            self._drop_placeholder("cancelled")
            self._set_state(TurnState.FAILED)
            raise
        except Exception as e:
            logger.error("Generation failed for conversation %s: %s", self.conversation_id, e)
            self._drop_placeholder("generation failed")
            return self._fail(e)

        return await self._finish()

    async def _stream(self, request: GenerationRequest) -> None:
        session = await self.service.open(request)
        try:
            async for raw in session:
                frame = parse_frame(raw)
                if frame is None:
                    logger.debug("Skipping malformed frame: %r", raw)
                    continue
                if isinstance(frame, DoneFrame):
                    break

                if isinstance(frame, TextFrame):
                    self.accumulator.add_text(frame.text)
                elif isinstance(frame, SourcesFrame):
                    self.accumulator.add_sources(frame.sources)
                elif isinstance(frame, ToolCallFrame):
                    if not self.accumulator.start_call(frame):
                        logger.debug("Ignoring repeated tool call %s", frame.id)
                        continue
                    self._emit(ToolCallStartedEvent(call_id=frame.id, name=frame.name, arguments=frame.arguments))
                    self._publish_display()
                    # A dispatch that has started must finish even if the turn is cancelled
                    outcome = await asyncio.shield(self._dispatch(frame))
                    await session.submit_tool_outcome(outcome)
                    continue
                elif isinstance(frame, ToolResultFrame):
                    self.accumulator.finish_call(frame)
                    self._emit(
                        ToolCallFinishedEvent(
                            call_id=frame.id, name=frame.name, success=frame.success, result=frame.result
                        )
                    )
                    signal = sidebar_event(frame.name, frame.success, frame.result)
                    if signal is not None:
                        self._emit(signal)

                self._publish_display()
        finally:
            await session.aclose()

    async def _dispatch(self, frame: ToolCallFrame) -> ToolOutcome:
        if self.tool_context is None:
            return ToolOutcome(success=False, error=TOOLS_UNAVAILABLE, call_id=frame.id)
        return await dispatch(frame.name, frame.arguments, self.tool_context, call_id=frame.id)

    async def _finish(self) -> TurnResult:
        self._set_state(TurnState.PERSISTING)
        content = self.accumulator.final_content()

        if self.allow_silence and self.accumulator.text.strip() == NO_REPLY and not self.accumulator.tool_calls:
            self._drop_placeholder("no reply")
            self._set_state(TurnState.DONE)
            return TurnResult(state=TurnState.DONE, silent=True)

        if not content:
            self._drop_placeholder("empty reply")
            self._set_state(TurnState.DONE)
            return TurnResult(state=TurnState.DONE)

        message = await self._persist(content)
        if message is None:
            self._emit(ErrorEvent(error="Failed to save agent reply", error_type=StoreError.__name__))
            self._set_state(TurnState.FAILED)
            return TurnResult(state=TurnState.FAILED, content=content, error="Failed to save agent reply")

        placeholder_id = self.placeholder.id if self.placeholder else None
        if placeholder_id:
            self.view.replace_placeholder(placeholder_id, message)
            self.placeholder = None
        else:
            self.view.add_message(message)
        self._emit(
            MessagePersistedEvent(
                conversation_id=self.conversation_id,
                placeholder_id=placeholder_id,
                message_id=message.id,
                content=message.content,
            )
        )
        self._set_state(TurnState.DONE)
        return TurnResult(state=TurnState.DONE, content=content, message=message)

    async def _persist(self, content: str) -> Optional[Message]:
        """Insert the reply, retrying once after a delay. None if both attempts fail."""
        row = {"conversation_id": self.conversation_id, "sender_id": self.sender_id, "content": content}
        try:
            return Message.model_validate(await self.store.insert(MESSAGES, row))
        except StoreError as e:
            logger.warning("Failed to save reply (will retry in %ss): %s", self.persist_retry_delay, e)

        await asyncio.sleep(self.persist_retry_delay)
        try:
            return Message.model_validate(await self.store.insert(MESSAGES, row))
        except StoreError as e:
            logger.error("Failed to save reply in conversation %s after retry: %s", self.conversation_id, e)
            return None
