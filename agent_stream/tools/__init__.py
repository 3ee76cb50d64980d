"""工具层。

- definitions: 工具 schema 与调用数据结构。
- registry: 本地 Python 函数工具。
- http_provider: 通过 HTTP 调用的远程工具服务。
"""

from agent_stream.tools.definitions import ToolCall, ToolDef, ToolParam

__all__ = ["ToolCall", "ToolDef", "ToolParam"]
