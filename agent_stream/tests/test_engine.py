import pytest

from agent_stream.domain.events import Token, ToolEnd, ToolStart
from agent_stream.domain.exceptions import EngineFatalError, ToolError
from agent_stream.domain.models import EPHEMERAL_CACHE, ChatMessage
from agent_stream.flows.adapters import TokenFragment, ToolCallRequest
from agent_stream.flows.engine import AgentConfig, AgentGraph
from agent_stream.infrastructure.storage.checkpoint import MemoryCheckpointStore
from agent_stream.tools.definitions import ToolCall


class FakeModel:
    """Plays back one scripted response per invocation."""

    def __init__(self, *scripts):
        self._scripts = list(scripts)
        self.prompts = []
        self.allow_tools = []

    def invoke(self, messages, allow_tools=True):
        self.prompts.append(list(messages))
        self.allow_tools.append(allow_tools)
        script = self._scripts.pop(0)
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item


class FakeTools:
    def __init__(self, results):
        self._results = results
        self.calls = []

    def definitions(self):
        return []

    def execute(self, name, arguments):
        self.calls.append((name, arguments))
        result = self._results[name]
        if isinstance(result, Exception):
            raise result
        return result


def _weather_call(call_id="call_1"):
    return ToolCallRequest(ToolCall(id=call_id, name="get_weather", arguments={"city": "Paris"}))


def _plain_config(**kw):
    return AgentConfig(system_prompt=None, cache_hints=False, **kw)


def test_tool_round_event_order():
    model = FakeModel(
        [_weather_call()],
        [TokenFragment("It is "), TokenFragment("22C in Paris.")],
    )
    tools = FakeTools({"get_weather": "22C"})
    graph = AgentGraph(model, tools=tools, config=_plain_config())

    events = list(graph.stream("t1", new_message="What's the weather in Paris?"))

    assert events == [
        ToolStart(tool="get_weather", input={"city": "Paris"}),
        ToolEnd(tool="get_weather", output="22C"),
        Token("It is "),
        Token("22C in Paris."),
    ]
    assert tools.calls == [("get_weather", {"city": "Paris"})]
    second_prompt = model.prompts[1]
    assert [m.role for m in second_prompt] == ["user", "assistant", "tool"]
    assert second_prompt[1].tool_calls[0].id == "call_1"
    assert second_prompt[2].content == "22C"
    assert second_prompt[2].tool_call_id == "call_1"


def test_graph_is_lazy():
    model = FakeModel([TokenFragment("hi")])
    graph = AgentGraph(model, config=_plain_config())
    stream = graph.stream("t1", new_message="hello")
    assert model.prompts == []
    assert next(stream) == Token("hi")
    assert len(model.prompts) == 1


def test_model_failure_is_fatal_after_partial_output():
    model = FakeModel([TokenFragment("par"), RuntimeError("connection reset")])
    checkpoints = MemoryCheckpointStore()
    graph = AgentGraph(model, checkpoints=checkpoints, config=_plain_config())

    seen = []
    with pytest.raises(EngineFatalError) as exc_info:
        for event in graph.stream("t1", new_message="hello"):
            seen.append(event)

    assert seen == [Token("par")]
    assert "connection reset" in exc_info.value.message
    assert checkpoints.load("t1") is None


def test_tool_failure_is_fed_back_to_model():
    model = FakeModel(
        [_weather_call()],
        [TokenFragment("Sorry, no data.")],
    )
    tools = FakeTools({"get_weather": ToolError("service down")})
    graph = AgentGraph(model, tools=tools, config=_plain_config())

    events = list(graph.stream("t1", new_message="weather?"))

    assert events[1] == ToolEnd(tool="get_weather", output="Error: service down")
    assert events[-1] == Token("Sorry, no data.")
    tool_msg = model.prompts[1][-1]
    assert tool_msg.role == "tool"
    assert tool_msg.meta["is_error"] is True


def test_multiple_tool_calls_run_in_order():
    model = FakeModel(
        [_weather_call("a"), ToolCallRequest(ToolCall(id="b", name="get_time", arguments={}))],
        [TokenFragment("done")],
    )
    tools = FakeTools({"get_weather": "22C", "get_time": "noon"})
    graph = AgentGraph(model, tools=tools, config=_plain_config())

    events = list(graph.stream("t1", new_message="weather and time?"))

    assert [type(e).__name__ for e in events] == ["ToolStart", "ToolEnd", "ToolStart", "ToolEnd", "Token"]
    assert [m.tool_call_id for m in model.prompts[1] if m.role == "tool"] == ["a", "b"]


def test_max_tool_rounds_disables_tools():
    model = FakeModel([_weather_call()], [TokenFragment("final")])
    tools = FakeTools({"get_weather": "22C"})
    graph = AgentGraph(model, tools=tools, config=_plain_config(max_tool_rounds=1))

    events = list(graph.stream("t1", new_message="weather?"))

    assert model.allow_tools == [True, False]
    assert events[-1] == Token("final")


def test_checkpoint_resume_continues_transcript():
    checkpoints = MemoryCheckpointStore()
    model = FakeModel([TokenFragment("hello")], [TokenFragment("again")])
    graph = AgentGraph(model, checkpoints=checkpoints, config=_plain_config())

    list(graph.stream("t1", new_message="hi"))
    saved = checkpoints.load("t1")
    assert [m.content for m in saved.messages] == ["hi", "hello"]

    # incoming history is ignored once the thread has a checkpoint
    list(graph.stream("t1", history=[ChatMessage(role="user", content="stale")], new_message="more"))
    assert [m.content for m in model.prompts[1]] == ["hi", "hello", "more"]


def test_system_prompt_is_prepended_and_cached():
    model = FakeModel([TokenFragment("ok")])
    graph = AgentGraph(model, config=AgentConfig(system_prompt="be helpful", cache_hints=True))

    list(graph.stream("t1", new_message="hi"))

    prompt = model.prompts[0]
    assert prompt[0].role == "system"
    assert prompt[0].content == "be helpful"
    assert prompt[0].cache_control == EPHEMERAL_CACHE
    assert prompt[-1].cache_control == EPHEMERAL_CACHE


def test_long_tool_exchange_keeps_user_question_in_prompt():
    rounds = [[_weather_call(f"call_{i}")] for i in range(6)]
    model = FakeModel(*rounds, [TokenFragment("22C all week")])
    tools = FakeTools({"get_weather": "22C"})
    graph = AgentGraph(model, tools=tools, config=AgentConfig(system_prompt="sys", cache_hints=False))

    events = list(graph.stream("t1", new_message="Weather in Paris this week?"))

    assert events[-1] == Token("22C all week")
    for prompt in model.prompts:
        assert [m.role for m in prompt[:2]] == ["system", "user"]
        assert prompt[1].content == "Weather in Paris this week?"
