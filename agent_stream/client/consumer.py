"""Apply decoded stream events to the client's view of a chat run."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol, Union
from uuid import uuid4

from agent_stream.domain.conversation import MessageRecord
from agent_stream.domain.events import (
    Connected,
    Done,
    Error,
    StreamEvent,
    StreamMessageType,
    Token,
    ToolEnd,
    ToolStart,
)
from agent_stream.domain.exceptions import BusinessError
from agent_stream.domain.models import Role
from agent_stream.infrastructure.logging.logger import logger

PROCESSING = "Processing..."


class MessageAppender(Protocol):
    def append_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        ...


@dataclass
class ToolRecord:
    name: str
    input: Any
    output: Any = None
    status: Literal["processing", "done"] = "processing"

    def render(self) -> str:
        shown = PROCESSING if self.status == "processing" else self.output
        if not isinstance(shown, str):
            shown = json.dumps(shown, ensure_ascii=False, default=str)
        args = json.dumps(self.input, ensure_ascii=False, default=str)
        return f"\n```tool\n$ {self.name} {args}\n{shown}\n```\n"


@dataclass
class ChatRunState:
    """What a chat view shows while a run is in progress and after it ends."""

    conversation_id: str
    messages: List[MessageRecord] = field(default_factory=list)
    streamed_text: str = ""
    segments: List[Union[str, ToolRecord]] = field(default_factory=list)
    current_tool: Optional[ToolRecord] = None
    optimistic_id: Optional[str] = None
    connected: bool = False
    is_loading: bool = False
    finished: bool = False
    error: Optional[str] = None

    def render(self) -> str:
        """Live partial answer with tool activity rendered inline."""

        parts = []
        for segment in self.segments:
            parts.append(segment.render() if isinstance(segment, ToolRecord) else segment)
        return "".join(parts)

    def reset_run(self) -> None:
        self.streamed_text = ""
        self.segments = []
        self.current_tool = None
        self.optimistic_id = None
        self.connected = False
        self.is_loading = False


class StreamConsumer:
    """Dispatch stream events into a ChatRunState.

    Tool activity is shown in the live view but kept out of the answer text;
    the persisted assistant message is exactly the concatenated tokens.
    """

    def __init__(
        self,
        conversation_id: str,
        store: MessageAppender,
        initial_messages: Optional[List[MessageRecord]] = None,
    ):
        self._store = store
        self.state = ChatRunState(conversation_id=conversation_id, messages=list(initial_messages or []))
        self._handlers: Dict[StreamMessageType, Callable[[Any], None]] = {
            StreamMessageType.CONNECTED: self._on_connected,
            StreamMessageType.TOKEN: self._on_token,
            StreamMessageType.TOOL_START: self._on_tool_start,
            StreamMessageType.TOOL_END: self._on_tool_end,
            StreamMessageType.ERROR: self._on_error,
            StreamMessageType.DONE: self._on_done,
        }

    def begin(self, text: str) -> MessageRecord:
        """Start a run: reset transient state and show the user's message optimistically."""

        self.state.reset_run()
        self.state.error = None
        self.state.finished = False
        self.state.is_loading = True
        optimistic = MessageRecord(
            id=f"temp-{uuid4().hex}",
            conversation_id=self.state.conversation_id,
            role="user",
            content=text,
            created_at=datetime.now(timezone.utc),
        )
        self.state.optimistic_id = optimistic.id
        self.state.messages.append(optimistic)
        return optimistic

    def handle(self, event: StreamEvent) -> None:
        if self.state.finished:
            logger.warning("Event after terminal event ignored", extra={"extra": {"type": event.type.value}})
            return
        handler = self._handlers.get(event.type)
        if handler is not None:
            handler(event)

    def fail(self, message: str) -> None:
        """Abort the run: drop optimistic state and surface ``message``."""

        if self.state.optimistic_id:
            self.state.messages = [m for m in self.state.messages if m.id != self.state.optimistic_id]
        self.state.reset_run()
        self.state.error = message
        self.state.finished = True
        logger.warning(
            "Chat run failed",
            extra={"extra": {"conversation_id": self.state.conversation_id, "error": message}},
        )

    def _on_connected(self, event: Connected) -> None:
        self.state.connected = True

    def _on_token(self, event: Token) -> None:
        self.state.streamed_text += event.token
        if self.state.segments and isinstance(self.state.segments[-1], str):
            self.state.segments[-1] += event.token
        else:
            self.state.segments.append(event.token)

    def _on_tool_start(self, event: ToolStart) -> None:
        record = ToolRecord(name=event.tool, input=event.input)
        self.state.current_tool = record
        self.state.segments.append(record)

    def _on_tool_end(self, event: ToolEnd) -> None:
        # one tool call in flight at a time: the end belongs to the latest start
        record = self.state.current_tool
        if record is None:
            logger.warning("tool_end without open tool_start", extra={"extra": {"tool": event.tool}})
            return
        record.output = event.output
        record.status = "done"
        self.state.current_tool = None

    def _on_error(self, event: Error) -> None:
        self.fail(event.error)

    def _on_done(self, event: Done) -> None:
        text = self.state.streamed_text
        try:
            record = self._store.append_message(self.state.conversation_id, "assistant", text)
        except BusinessError as exc:
            self.fail(f"Failed to save response: {exc.message}")
            return
        self.state.messages.append(record)
        self.state.reset_run()
        self.state.finished = True
        logger.info(
            "Chat run finished",
            extra={"extra": {"conversation_id": self.state.conversation_id, "message_id": record.id}},
        )
