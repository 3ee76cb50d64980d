import json

from agent_stream.domain.events import Done, Token, ToolStart
from agent_stream.domain.exceptions import EngineFatalError
from agent_stream.streaming import SSE_DATA_PREFIX, StreamRelay, encode_event


class ListSink:
    def __init__(self, fail_on_write=None, fail_on_close=False):
        self.frames = []
        self.close_count = 0
        self._fail_on_write = fail_on_write
        self._fail_on_close = fail_on_close

    def write(self, frame):
        if self._fail_on_write is not None and len(self.frames) + 1 == self._fail_on_write:
            raise BrokenPipeError("client went away")
        self.frames.append(frame)

    def close(self):
        self.close_count += 1
        if self._fail_on_close:
            raise OSError("already closed")


def _payloads(frames):
    out = []
    for frame in frames:
        assert frame.startswith(SSE_DATA_PREFIX)
        assert frame.endswith("\n\n")
        body = frame[len(SSE_DATA_PREFIX):-2]
        out.append(body if body == "[DONE]" else json.loads(body))
    return out


def test_encode_event_single_line():
    frame = encode_event(Token("line1\nline2"))
    assert frame.count("\n") == 2
    assert json.loads(frame[len(SSE_DATA_PREFIX):])["token"] == "line1\nline2"
    assert encode_event(Done()) == "data: [DONE]\n\n"
    assert json.loads(encode_event(ToolStart(tool="t", input={"q": "x"}))[6:]) == {
        "type": "tool_start",
        "tool": "t",
        "input": {"q": "x"},
    }


def test_pump_success():
    sink = ListSink()
    outcome = StreamRelay().pump([Token("a"), Token("b")], sink)

    assert _payloads(sink.frames) == [
        {"type": "connected"},
        {"type": "token", "token": "a"},
        {"type": "token", "token": "b"},
        "[DONE]",
    ]
    assert outcome.completed
    assert outcome.frames_written == 4
    assert sink.close_count == 1


def test_pump_engine_failure_emits_single_error():
    def events():
        yield Token("par")
        raise EngineFatalError("Model invocation failed: boom")

    sink = ListSink()
    outcome = StreamRelay().pump(events(), sink)

    payloads = _payloads(sink.frames)
    assert payloads == [
        {"type": "connected"},
        {"type": "token", "token": "par"},
        {"type": "error", "error": "Model invocation failed: boom"},
    ]
    assert not outcome.completed
    assert outcome.error == "Model invocation failed: boom"
    assert sink.close_count == 1


def test_pump_plain_exception_message():
    def events():
        raise RuntimeError()
        yield  # pragma: no cover

    sink = ListSink()
    outcome = StreamRelay().pump(events(), sink)
    assert _payloads(sink.frames)[-1] == {"type": "error", "error": "RuntimeError"}
    assert outcome.error == "RuntimeError"


def test_close_failure_is_swallowed():
    sink = ListSink(fail_on_close=True)
    outcome = StreamRelay().pump([Token("a")], sink)
    assert outcome.completed
    assert sink.close_count == 1


def test_write_failure_stops_pulling_events():
    state = {"pulled": 0, "closed": False}

    def events():
        try:
            for i in range(100):
                state["pulled"] += 1
                yield Token(str(i))
        finally:
            state["closed"] = True

    sink = ListSink(fail_on_write=2)
    outcome = StreamRelay().pump(events(), sink)

    assert outcome.transport_failed
    assert not outcome.completed
    assert outcome.frames_written == 1
    assert state["pulled"] == 1
    assert state["closed"]
    assert sink.close_count == 1
