"""History trimming: bound the context sent to the model."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence

from agent_stream.domain.models import ChatMessage, Role

Unit = Literal["messages", "tokens"]

# rough chars-per-token ratio used when no tokenizer is available
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TrimConfig:
    max_units: int = 10
    unit: Unit = "messages"
    include_system: bool = True
    start_on: Optional[Role] = "user"

    @classmethod
    def from_settings(cls, s) -> "TrimConfig":
        return cls(
            max_units=s.trim_max_units,
            unit=s.trim_unit,
            include_system=s.trim_include_system,
            start_on=s.trim_start_on,
        )


def approx_tokens(message: ChatMessage) -> int:
    text = message.content or ""
    for call in message.tool_calls or []:
        text += call.name + json.dumps(call.arguments, ensure_ascii=False, default=str)
    return max(1, -(-len(text) // CHARS_PER_TOKEN))


def message_units(message: ChatMessage, unit: Unit) -> int:
    if unit == "tokens":
        return approx_tokens(message)
    return 1


def trim_messages(messages: Sequence[ChatMessage], config: TrimConfig) -> List[ChatMessage]:
    """Return the suffix of ``messages`` that fits ``config.max_units``.

    A leading system message is kept (and charged against the budget) when
    ``include_system`` is set. The window always opens on a ``start_on``
    message: a suffix that fits is advanced to its first such message, and a
    suffix that holds none is extended backward to the latest one before it.
    The budget gives way in that case, so the question that started the
    current exchange is never cut. When the history has no ``start_on``
    message at all it is returned whole.
    """

    if not messages:
        return []
    budget = config.max_units
    head: List[ChatMessage] = []
    body = list(messages)
    if config.include_system and body[0].role == "system":
        system_cost = message_units(body[0], config.unit)
        body = body[1:]
        if system_cost <= budget:
            head = [messages[0]]
            budget -= system_cost

    start = len(body)
    used = 0
    for idx in range(len(body) - 1, -1, -1):
        cost = message_units(body[idx], config.unit)
        if used + cost > budget:
            break
        used += cost
        start = idx

    if config.start_on is None:
        return head + body[start:]
    boundary = next((i for i in range(start, len(body)) if body[i].role == config.start_on), None)
    if boundary is None:
        boundary = next((i for i in range(start - 1, -1, -1) if body[i].role == config.start_on), None)
    if boundary is None:
        return list(messages)
    return head + body[boundary:]
