"""统一的对话数据模型。

本模块定义了 Agent 内部在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatStreamChunk: 从 Provider 流式响应解析出的统一增量。

Provider 适配器只依赖这些模型，并负责在各自的 API JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from agent_stream.tools.definitions import ToolCall, ToolDef


# LLM 消息角色类型（与 OpenAI / Moonshot 等厂商的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool"]

# Anthropic 风格的缓存断点标记
EPHEMERAL_CACHE = {"type": "ephemeral"}


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色，如 system/user/assistant/tool。
    - content: 纯文本内容。
    - meta: 附加元数据，不直接发给 Provider，主要用于日志与 UI 展示。
    - tool_calls: 当 role 为 "assistant" 且模型触发工具调用时，保存调用列表。
    - tool_call_id: 当 role 为 "tool" 时，用于关联某一次工具调用。
    - cache_control: 缓存断点标记；非空时 Provider 会把 content 包装为带
      cache_control 的内容块。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None
    cache_control: Optional[Dict[str, str]] = None


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Engine 会将上下文裁剪、标注缓存断点后生成 ChatRequest，再交给具体 ProviderClient。
    """

    provider: str  # 逻辑 Provider 名，如 "kimi"
    model: str  # 逻辑模型名，如 "chat"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    temperature: float = 0.7
    top_p: float = 0.95
    max_tokens: Optional[int] = None
    # 工具定义列表：当模型支持工具调用时，会通过 Provider 转成对应 schema
    tools: Optional[List["ToolDef"]] = None
    # 模型是否必须/禁止使用工具
    tool_choice: Literal["auto", "none", "required"] = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ToolCallDelta:
    """流式返回中单个工具调用的片段。

    OpenAI 兼容接口会把 arguments 拆成多段字符串下发，通过 index 归并。
    """

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    content: str = ""
    tool_calls: List[ToolCallDelta] = field(default_factory=list)
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """流式对话的增量结果。

    每次流式回调由若干 choice 组成，choice.content 代表本次文本增量。
    """

    provider: str
    model: str
    choices: List[ChatStreamChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
