"""Wire-level stream events.

StreamEvent is a closed tagged variant shared by the server-side encoder and
the client-side parser. Events only exist on the wire; they are never
persisted as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union


class StreamMessageType(str, Enum):
    CONNECTED = "connected"
    TOKEN = "token"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class Connected:
    type = StreamMessageType.CONNECTED

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value}


@dataclass(frozen=True)
class Token:
    token: str
    type = StreamMessageType.TOKEN

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "token": self.token}


@dataclass(frozen=True)
class ToolStart:
    tool: str
    input: Any = None
    type = StreamMessageType.TOOL_START

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "tool": self.tool, "input": self.input}


@dataclass(frozen=True)
class ToolEnd:
    tool: str
    output: Any = None
    type = StreamMessageType.TOOL_END

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "tool": self.tool, "output": self.output}


@dataclass(frozen=True)
class Error:
    error: str
    type = StreamMessageType.ERROR

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "error": self.error}


@dataclass(frozen=True)
class Done:
    type = StreamMessageType.DONE

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value}


StreamEvent = Union[Connected, Token, ToolStart, ToolEnd, Error, Done]


def event_from_payload(payload: Any) -> Optional[StreamEvent]:
    """Build a StreamEvent from a decoded JSON payload.

    Returns None for anything that is not a known event, so newer servers can
    add event types without breaking older clients.
    """

    if not isinstance(payload, dict):
        return None
    try:
        kind = StreamMessageType(payload.get("type"))
    except ValueError:
        return None
    if kind is StreamMessageType.CONNECTED:
        return Connected()
    if kind is StreamMessageType.TOKEN:
        return Token(token=str(payload.get("token") or ""))
    if kind is StreamMessageType.TOOL_START:
        return ToolStart(tool=str(payload.get("tool") or ""), input=payload.get("input"))
    if kind is StreamMessageType.TOOL_END:
        return ToolEnd(tool=str(payload.get("tool") or ""), output=payload.get("output"))
    if kind is StreamMessageType.ERROR:
        return Error(error=str(payload.get("error") or ""))
    # Done only travels as the [DONE] sentinel, never as a JSON payload
    return None
