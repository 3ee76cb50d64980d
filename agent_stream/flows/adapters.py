"""Model and tool adapters consumed by the agent graph.

The graph never talks to a provider or a tool backend directly. It depends on
two small capabilities, both easy to replace with stubs in tests:

- ``ModelInvoker.invoke(messages, allow_tools=True)`` yields ``TokenFragment``
  and ``ToolCallRequest`` items as the model produces them.
- ``ToolExecutor.execute(name, arguments)`` returns the tool output or raises.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Union

from agent_stream.domain.exceptions import BusinessError, EngineFatalError
from agent_stream.domain.models import ChatMessage, ChatRequest, ToolCallDelta
from agent_stream.infrastructure.logging.logger import logger
from agent_stream.providers.base import ProviderClient
from agent_stream.tools.definitions import ToolCall, ToolDef


@dataclass(frozen=True)
class TokenFragment:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    call: ToolCall


ModelOutput = Union[TokenFragment, ToolCallRequest]


class ModelInvoker(Protocol):
    def invoke(self, messages: List[ChatMessage], allow_tools: bool = True) -> Iterable[ModelOutput]:
        ...


class ToolExecutor(Protocol):
    def execute(self, name: str, arguments: Any) -> Any:
        ...

    def definitions(self) -> List[ToolDef]:
        ...


@dataclass
class _PendingCall:
    id: Optional[str] = None
    name: str = ""
    arguments: str = ""


def _parse_arguments(raw: str) -> Any:
    """Tool arguments arrive as a JSON string; keep the raw text if it is not JSON."""

    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw": raw}


class ProviderModelInvoker:
    """Adapt a streaming ProviderClient to the ModelInvoker contract.

    Text deltas are forwarded immediately. Tool-call deltas are merged by
    index and released as complete requests once the provider stream ends.
    Tool definitions come either from ``tool_defs`` or, on first use, from
    ``tool_source.definitions()``; a failed lookup is retried on the next
    invocation. Any provider or discovery failure surfaces as EngineFatalError.
    """

    def __init__(
        self,
        provider_client: ProviderClient,
        model: str,
        tool_defs: Optional[List[ToolDef]] = None,
        temperature: float = 0.7,
        tool_source: Optional[ToolExecutor] = None,
    ) -> None:
        self._client = provider_client
        self._model = model
        self._tool_defs = list(tool_defs) if tool_defs is not None else None
        self._tool_source = tool_source
        self._temperature = temperature

    def _definitions(self) -> List[ToolDef]:
        if self._tool_defs is None:
            self._tool_defs = self._tool_source.definitions() if self._tool_source is not None else []
        return self._tool_defs

    def invoke(self, messages: List[ChatMessage], allow_tools: bool = True) -> Iterator[ModelOutput]:
        pending: Dict[int, _PendingCall] = {}
        try:
            req = ChatRequest(
                provider=self._client.name,
                model=self._model,
                messages=list(messages),
                temperature=self._temperature,
                tools=self._definitions() or None,
                tool_choice="auto" if allow_tools else "none",
            )
            for chunk in self._client.chat_stream(req):
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.content:
                    yield TokenFragment(choice.content)
                for delta in choice.tool_calls:
                    self._merge(pending, delta)
        except BusinessError as exc:
            raise EngineFatalError(f"Model invocation failed: {exc.message}", provider=self._client.name) from exc

        for index in sorted(pending):
            call = pending[index]
            if not call.name:
                logger.warning("Dropping tool call without name", extra={"extra": {"index": index}})
                continue
            yield ToolCallRequest(
                ToolCall(
                    id=call.id or f"tool_call_{index}",
                    name=call.name,
                    arguments=_parse_arguments(call.arguments),
                )
            )

    @staticmethod
    def _merge(pending: Dict[int, _PendingCall], delta: ToolCallDelta) -> None:
        call = pending.setdefault(delta.index, _PendingCall())
        if delta.id:
            call.id = delta.id
        if delta.name:
            call.name += delta.name
        if delta.arguments:
            call.arguments += delta.arguments
