from agent_stream.domain.models import ChatMessage
from agent_stream.flows.trimmer import TrimConfig, approx_tokens, trim_messages
from agent_stream.tools.definitions import ToolCall


def _dialog(turns):
    msgs = [ChatMessage(role="system", content="sys")]
    for i in range(turns):
        msgs.append(ChatMessage(role="user", content=f"u{i}"))
        msgs.append(ChatMessage(role="assistant", content=f"a{i}"))
    return msgs


def test_trim_keeps_system_and_starts_on_user():
    msgs = _dialog(6)
    out = trim_messages(msgs, TrimConfig(max_units=10))
    assert out[0].role == "system"
    assert out[1].role == "user"
    assert out[1].content == "u2"
    assert out[-1].content == "a5"
    assert len(out) <= 10


def test_trim_under_budget_returns_everything():
    msgs = _dialog(2)
    out = trim_messages(msgs, TrimConfig(max_units=10))
    assert out == msgs
    assert out is not msgs


def test_trim_without_system_budget():
    msgs = _dialog(6)
    out = trim_messages(msgs, TrimConfig(max_units=4, include_system=False))
    assert all(m.role != "system" for m in out)
    assert out[0].role == "user"
    assert [m.content for m in out] == ["u4", "a4", "u5", "a5"]


def _tool_rounds(rounds):
    msgs = [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="weather?")]
    for i in range(rounds):
        call = ToolCall(id=f"c{i}", name="get_weather", arguments={"city": "Paris"})
        msgs.append(ChatMessage(role="assistant", content="", tool_calls=[call]))
        msgs.append(ChatMessage(role="tool", content="22C", tool_call_id=f"c{i}"))
    return msgs


def test_trim_extends_back_to_user_message():
    call = ToolCall(id="c1", name="get_weather", arguments={"city": "Paris"})
    msgs = [
        ChatMessage(role="user", content="weather?"),
        ChatMessage(role="assistant", content="", tool_calls=[call]),
        ChatMessage(role="tool", content="22C", tool_call_id="c1"),
        ChatMessage(role="assistant", content="It is 22C"),
    ]
    out = trim_messages(msgs, TrimConfig(max_units=2, include_system=False))
    assert [m.role for m in out] == ["user", "assistant", "tool", "assistant"]


def test_trim_long_tool_exchange_keeps_question():
    msgs = _tool_rounds(6)
    out = trim_messages(msgs, TrimConfig(max_units=10))
    assert [m.role for m in out[:2]] == ["system", "user"]
    assert out[1].content == "weather?"
    assert out[-1] is msgs[-1]


def test_trim_without_user_message_returns_full_history():
    msgs = [ChatMessage(role="system", content="sys")] + [
        ChatMessage(role="assistant", content=f"a{i}") for i in range(6)
    ]
    assert trim_messages(msgs, TrimConfig(max_units=3)) == msgs


def test_trim_window_opens_on_start_role():
    cases = [
        _dialog(0),
        _dialog(1),
        _dialog(6),
        _tool_rounds(1),
        _tool_rounds(7),
        _dialog(3) + [ChatMessage(role="tool", content="x"), ChatMessage(role="assistant", content="y")],
    ]
    for msgs in cases:
        for budget in range(1, 14):
            for include_system in (True, False):
                out = trim_messages(msgs, TrimConfig(max_units=budget, include_system=include_system))
                rest = [m for m in out if m.role != "system"]
                has_user = any(m.role == "user" for m in msgs)
                if has_user:
                    assert rest and rest[0].role == "user", (budget, include_system)
                else:
                    assert out == msgs


def test_trim_token_unit():
    msgs = [
        ChatMessage(role="user", content="x" * 40),
        ChatMessage(role="assistant", content="y" * 40),
        ChatMessage(role="user", content="z" * 8),
    ]
    assert approx_tokens(msgs[0]) == 10
    out = trim_messages(msgs, TrimConfig(max_units=12, unit="tokens", include_system=False))
    assert [m.content for m in out] == ["z" * 8]


def test_trim_oversized_system_is_dropped():
    msgs = [ChatMessage(role="system", content="s" * 400), ChatMessage(role="user", content="hi")]
    out = trim_messages(msgs, TrimConfig(max_units=5, unit="tokens"))
    assert [m.role for m in out] == ["user"]


def test_trim_without_start_on_keeps_plain_suffix():
    msgs = _dialog(3)
    out = trim_messages(msgs, TrimConfig(max_units=3, include_system=False, start_on=None))
    assert [m.content for m in out] == ["a1", "u2", "a2"]


def test_trim_empty():
    assert trim_messages([], TrimConfig()) == []
