"""Agent graph: an explicit AGENT/TOOLS state machine with observable steps."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Iterator, List, Optional, Sequence
from uuid import uuid4

from agent_stream.domain.events import StreamEvent, Token, ToolEnd, ToolStart
from agent_stream.domain.exceptions import BusinessError, EngineFatalError
from agent_stream.domain.models import EPHEMERAL_CACHE, ChatMessage
from agent_stream.flows.adapters import ModelInvoker, TokenFragment, ToolCallRequest, ToolExecutor
from agent_stream.flows.cache_hints import add_cache_hints
from agent_stream.flows.state import NEXT_NODE, GraphState, Node, Transition
from agent_stream.flows.trimmer import TrimConfig, trim_messages
from agent_stream.infrastructure.logging.logger import logger
from agent_stream.infrastructure.storage.checkpoint import CheckpointStore

Step = Generator[StreamEvent, None, Transition]


@dataclass
class AgentConfig:
    system_prompt: Optional[str] = None
    trim: TrimConfig = field(default_factory=TrimConfig)
    cache_hints: bool = True
    max_tool_rounds: int = 10


def _tool_content(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)


class AgentGraph:
    """Reason/act loop for one user turn.

    ``stream`` is a generator: every token, tool start and tool end is yielded
    as soon as it happens, and the next step only runs when the consumer asks
    for the next event. Model failures raise EngineFatalError; tool failures
    are fed back to the model as tool results.
    """

    def __init__(
        self,
        model: ModelInvoker,
        tools: Optional[ToolExecutor] = None,
        checkpoints: Optional[CheckpointStore] = None,
        config: Optional[AgentConfig] = None,
    ):
        self._model = model
        self._tools = tools
        self._checkpoints = checkpoints
        self._config = config or AgentConfig()

    def stream(
        self,
        thread_id: str,
        history: Sequence[ChatMessage] = (),
        new_message: Optional[str] = None,
    ) -> Iterator[StreamEvent]:
        start_time = time.time()
        log_ctx: Dict[str, Any] = {"run_id": f"run-{uuid4().hex}", "thread_id": thread_id}
        state = self._seed(thread_id, history, new_message, log_ctx)
        self._log(logging.INFO, "Run started", log_ctx, messages=len(state.messages))

        while state.node is not Node.DONE:
            if state.node is Node.AGENT:
                transition = yield from self._agent_step(state, log_ctx)
            else:
                transition = yield from self._tools_step(state, log_ctx)
            state.node = NEXT_NODE[transition]

        if self._checkpoints is not None:
            self._checkpoints.save(thread_id, state)
        self._log(
            logging.INFO,
            "Run completed",
            log_ctx,
            tool_rounds=state.tool_rounds,
            elapsed_seconds=round(time.time() - start_time, 2),
        )

    def _seed(
        self,
        thread_id: str,
        history: Sequence[ChatMessage],
        new_message: Optional[str],
        log_ctx: Dict[str, Any],
    ) -> GraphState:
        checkpoint = self._checkpoints.load(thread_id) if self._checkpoints is not None else None
        if checkpoint is not None:
            # the checkpoint already holds the full transcript, tool traffic included
            messages = list(checkpoint.messages)
            self._log(logging.INFO, "Resumed from checkpoint", log_ctx, messages=len(messages))
        else:
            messages = list(history)
        if new_message:
            messages.append(ChatMessage(role="user", content=new_message))
        return GraphState(thread_id=thread_id, messages=messages)

    def _prompt(self, messages: List[ChatMessage]) -> List[ChatMessage]:
        prompt = trim_messages(messages, self._config.trim)
        if self._config.cache_hints:
            prompt = add_cache_hints(prompt)
        if self._config.system_prompt:
            system = ChatMessage(
                role="system",
                content=self._config.system_prompt,
                cache_control=dict(EPHEMERAL_CACHE) if self._config.cache_hints else None,
            )
            prompt = [system] + prompt
        return prompt

    def _agent_step(self, state: GraphState, log_ctx: Dict[str, Any]) -> Step:
        allow_tools = self._tools is not None and state.tool_rounds < self._config.max_tool_rounds
        if self._tools is not None and not allow_tools:
            self._log(logging.WARNING, "Reached max tool rounds", log_ctx, max_rounds=self._config.max_tool_rounds)
        prompt = self._prompt(state.messages)
        self._log(logging.INFO, "Calling model", log_ctx, prompt_messages=len(prompt), allow_tools=allow_tools)

        state.pieces = []
        calls = []
        try:
            for item in self._model.invoke(prompt, allow_tools=allow_tools):
                if isinstance(item, TokenFragment):
                    if item.text:
                        state.pieces.append(item.text)
                        yield Token(item.text)
                elif isinstance(item, ToolCallRequest):
                    calls.append(item.call)
        except EngineFatalError:
            raise
        except BusinessError as exc:
            raise EngineFatalError(f"Model invocation failed: {exc.message}") from exc
        except Exception as exc:
            raise EngineFatalError(f"Model invocation failed: {exc}") from exc

        if calls and not allow_tools:
            self._log(logging.WARNING, "Ignoring tool calls", log_ctx, call_count=len(calls))
            calls = []
        state.messages.append(ChatMessage(role="assistant", content=state.response_text, tool_calls=calls or None))
        if calls:
            state.pending_tool_calls = calls
            return Transition.TO_TOOLS
        return Transition.TERMINATE

    def _tools_step(self, state: GraphState, log_ctx: Dict[str, Any]) -> Step:
        state.tool_rounds += 1
        for call in state.pending_tool_calls:
            yield ToolStart(tool=call.name, input=call.arguments)
            is_error = False
            try:
                if self._tools is None:
                    raise RuntimeError("Tool executor not configured")
                output = self._tools.execute(call.name, call.arguments)
                self._log(logging.INFO, "Tool execution finished", log_ctx, tool_name=call.name, tool_call_id=call.id)
            except Exception as exc:
                is_error = True
                message = exc.message if isinstance(exc, BusinessError) else str(exc)
                output = f"Error: {message}"
                self._log(logging.ERROR, "Tool execution failed", log_ctx, tool_name=call.name, error=message)
            yield ToolEnd(tool=call.name, output=output)
            state.messages.append(
                ChatMessage(
                    role="tool",
                    content=_tool_content(output),
                    tool_call_id=call.id,
                    meta={"tool": call.name, "is_error": is_error},
                )
            )
        state.pending_tool_calls = []
        return Transition.TO_AGENT

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
