"""OpenAI 兼容 chat/completions 流式 Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI 兼容的 HTTP 请求（Kimi / GLM / Anthropic 兼容端点通用）。
3. 以 stream=True 调用接口，逐行解析厂商 SSE，处理网络/API 异常。
4. 将每条增量解析为统一的 ChatStreamChunk（含文本增量与工具调用片段）。
"""

import json
from typing import Any, Dict, Iterable, List

import httpx

from agent_stream.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from agent_stream.domain.models import (
    ChatMessage,
    ChatRequest,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatUsage,
    ToolCallDelta,
)
from agent_stream.providers.registry import ModelConfig, ProviderConfig
from agent_stream.tools.definitions import ToolDef

PROVIDER_DONE = "[DONE]"


class ChatCompletionsClient:
    """OpenAI 兼容 Provider 客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat_stream: 流式调用入口，逐步 yield ChatStreamChunk。
    """

    def __init__(self, provider_config: ProviderConfig, settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._config = provider_config
        self._settings = settings
        self.name = provider_config.name

    def chat_stream(self, req: ChatRequest) -> Iterable[ChatStreamChunk]:
        """执行一次流式对话调用，逐步 yield ChatStreamChunk。"""

        api_key = self._settings.provider_api_key(self.name)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message=f"{self.name.upper()}_API_KEY not set")
        model_cfg = self._config.models.get(req.model)
        if model_cfg is None:
            raise ValidationError(code="UNKNOWN_MODEL", message=f"{self.name} has no model {req.model!r}")
        payload = self._build_payload(req, model_cfg)
        base = self._settings.provider_base_url(self.name) or self._config.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                        "Accept": "text/event-stream",
                    },
                ) as resp:
                    if resp.status_code == 429:
                        # 限流错误交给上层处理
                        raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit")
                    if resp.status_code >= 400:
                        resp.read()
                        raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
                    for line in resp.iter_lines():
                        data_str = line.strip()
                        if not data_str:
                            continue
                        if data_str.startswith("data:"):
                            data_str = data_str[5:].strip()
                        elif data_str.startswith(":") or data_str.startswith("event:"):
                            continue
                        if not data_str or data_str == PROVIDER_DONE:
                            continue
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        yield self._parse_stream_chunk(payload_chunk, req)
        except httpx.HTTPError as e:
            # 网络错误：DNS 失败、连接超时、流中断等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "top_p": req.top_p,
            "stream": True,
        }
        # 工具调用：如果请求中携带了工具定义，则按 function tool 规范转换
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _serialize_tool(self, tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 function tool 描述。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            properties[name] = param.schema or {"type": "string"}
            if param.description:
                properties[name] = {
                    **properties[name],
                    "description": param.description,
                }
            if param.required:
                required.append(name)
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    def _message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.cache_control and self._config.supports_cache_control:
            # 带缓存断点的消息以内容块形式发送
            payload["content"] = [
                {"type": "text", "text": message.content or "", "cache_control": dict(message.cache_control)}
            ]
        elif message.content or message.role != "assistant":
            payload["content"] = message.content or ""
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload

    def _parse_stream_chunk(self, data: dict, req: ChatRequest) -> ChatStreamChunk:
        """解析流式响应中的单条增量。"""

        choices: List[ChatStreamChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            delta = ch.get("delta") or {}
            tool_deltas: List[ToolCallDelta] = []
            for pos, call in enumerate(delta.get("tool_calls") or []):
                func = call.get("function") or {}
                tool_deltas.append(
                    ToolCallDelta(
                        index=call.get("index", pos),
                        id=call.get("id"),
                        name=func.get("name"),
                        arguments=func.get("arguments") or "",
                    )
                )
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    content=delta.get("content") or "",
                    tool_calls=tool_deltas,
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatStreamChunk(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=usage,
            raw=data,
        )
