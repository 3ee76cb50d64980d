"""State definitions for the agent graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from agent_stream.domain.models import ChatMessage
from agent_stream.tools.definitions import ToolCall


class Node(str, Enum):
    AGENT = "agent"
    TOOLS = "tools"
    DONE = "done"


class Transition(str, Enum):
    """Tagged result of a node step."""

    TO_TOOLS = "to_tools"
    TO_AGENT = "to_agent"
    TERMINATE = "terminate"


NEXT_NODE = {
    Transition.TO_TOOLS: Node.TOOLS,
    Transition.TO_AGENT: Node.AGENT,
    Transition.TERMINATE: Node.DONE,
}


@dataclass
class GraphState:
    """Working state of one run.

    messages is the full working transcript (tool calls and tool results
    included); pieces accumulates the text streamed by the current AGENT step.
    """

    thread_id: str
    messages: List[ChatMessage] = field(default_factory=list)
    pieces: List[str] = field(default_factory=list)
    pending_tool_calls: List[ToolCall] = field(default_factory=list)
    tool_rounds: int = 0
    node: Node = Node.AGENT

    @property
    def response_text(self) -> str:
        return "".join(self.pieces)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thread_id": self.thread_id,
            "messages": [_message_to_dict(m) for m in self.messages],
            "tool_rounds": self.tool_rounds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphState":
        return cls(
            thread_id=data["thread_id"],
            messages=[_message_from_dict(m) for m in data.get("messages") or []],
            tool_rounds=int(data.get("tool_rounds", 0)),
        )


def _message_to_dict(message: ChatMessage) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"role": message.role, "content": message.content}
    if message.meta:
        payload["meta"] = message.meta
    if message.tool_calls:
        payload["tool_calls"] = [
            {"id": c.id, "name": c.name, "arguments": c.arguments} for c in message.tool_calls
        ]
    if message.tool_call_id:
        payload["tool_call_id"] = message.tool_call_id
    return payload


def _message_from_dict(data: Dict[str, Any]) -> ChatMessage:
    calls: Optional[List[ToolCall]] = None
    if data.get("tool_calls"):
        calls = [ToolCall(id=c["id"], name=c["name"], arguments=c.get("arguments")) for c in data["tool_calls"]]
    return ChatMessage(
        role=data["role"],
        content=data.get("content") or "",
        meta=data.get("meta") or {},
        tool_calls=calls,
        tool_call_id=data.get("tool_call_id"),
    )
