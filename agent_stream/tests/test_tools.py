import pytest

from agent_stream.domain.exceptions import ToolError
from agent_stream.tools.http_provider import HttpToolProvider
from agent_stream.tools.registry import ToolRegistry


def test_registry_execute():
    registry = ToolRegistry()

    @registry.tool(description="Current weather for a city")
    def get_weather(city):
        return f"22C in {city}"

    registry.register("echo", lambda text: text)

    assert [d.name for d in registry.definitions()] == ["get_weather", "echo"]
    assert registry.execute("get_weather", {"city": "Paris"}) == "22C in Paris"
    assert registry.execute("echo", "raw") == "raw"


def test_registry_errors_are_tool_errors():
    registry = ToolRegistry()
    registry.register("boom", lambda: 1 / 0)
    with pytest.raises(ToolError):
        registry.execute("boom", None)
    with pytest.raises(ToolError):
        registry.execute("missing", {})


def _install_client(monkeypatch, responses, captured):
    class Resp:
        def __init__(self, status_code, data):
            self.status_code = status_code
            self._data = data

        def json(self):
            return self._data

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def get(self, url, **_):
            captured.append(("GET", url, None))
            return Resp(*responses.pop(0))

        def post(self, url, json=None, **_):
            captured.append(("POST", url, json))
            return Resp(*responses.pop(0))

    monkeypatch.setattr("httpx.Client", Client)


def test_http_tool_provider(monkeypatch):
    captured = []
    responses = [
        (
            200,
            {
                "tools": [
                    {
                        "name": "get_weather",
                        "description": "Current weather",
                        "parameters": {
                            "type": "object",
                            "properties": {"city": {"type": "string", "description": "City"}},
                            "required": ["city"],
                        },
                    }
                ]
            },
        ),
        (200, {"output": "22C"}),
        (500, {"error": "backend down"}),
    ]
    _install_client(monkeypatch, responses, captured)
    provider = HttpToolProvider("https://tools.test/", api_key="secret")

    defs = provider.definitions()
    assert defs[0].params["city"].required
    assert provider.definitions() is defs
    assert provider.execute("get_weather", {"city": "Paris"}) == "22C"
    assert captured[1] == ("POST", "https://tools.test/tools/get_weather", {"input": {"city": "Paris"}})
    with pytest.raises(ToolError) as exc_info:
        provider.execute("get_weather", {"city": "Paris"})
    assert exc_info.value.message == "backend down"
