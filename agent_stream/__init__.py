"""Agent Stream 顶层包。

该包实现一个可流式输出的工具增强对话 Agent：
包括配置加载、领域模型、Provider 适配、工具系统、
推理/执行状态机、SSE 事件编码与中继，以及客户端增量解析与消费。
"""

from agent_stream.domain.events import StreamEvent, StreamMessageType
from agent_stream.flows.engine import AgentGraph

__all__ = ["AgentGraph", "StreamEvent", "StreamMessageType"]
