"""对外服务模块。

ChatService 把一次流式对话请求串起来：
校验会话归属 → 持久化用户消息 → 构建历史 → AgentGraph 产生事件 → StreamRelay 写帧。
所有依赖通过构造函数注入；build_default_service 按配置组装默认实现。
"""

from typing import Any, Dict, Iterable, List, Optional

from agent_stream.config.settings import Settings, settings as default_settings
from agent_stream.domain.conversation import Conversation, ConversationStore, MessageRecord
from agent_stream.domain.events import StreamEvent
from agent_stream.domain.exceptions import StoreError
from agent_stream.domain.models import ChatMessage, Role
from agent_stream.flows.adapters import ProviderModelInvoker
from agent_stream.flows.engine import AgentConfig, AgentGraph
from agent_stream.flows.trimmer import TrimConfig
from agent_stream.infrastructure.logging.logger import logger
from agent_stream.infrastructure.storage.checkpoint import create_checkpoint_store
from agent_stream.infrastructure.storage.json_store import JsonConversationStore
from agent_stream.prompts import load_system_prompt
from agent_stream.providers import create_provider
from agent_stream.streaming.relay import FrameSink, RelayOutcome, StreamRelay
from agent_stream.tools.http_provider import HttpToolProvider


class ChatService:
    def __init__(self, store: ConversationStore, graph: AgentGraph):
        self._store = store
        self._graph = graph

    # ---- 会话管理 ----

    def create_chat(self, user_id: str, title: str = "") -> Conversation:
        conv = self._store.create_conversation(user_id=user_id, title=title)
        logger.info("Created conversation", extra={"extra": {"conversation_id": conv.id, "user_id": user_id}})
        return conv

    def list_chats(self, user_id: str) -> List[Conversation]:
        return self._store.list_conversations(user_id=user_id)

    def get_chat(self, user_id: str, chat_id: str) -> Conversation:
        conv = self._store.get_conversation(chat_id)
        if conv.user_id != user_id:
            # 不暴露其他用户的会话是否存在
            raise StoreError(code="CONVERSATION_NOT_FOUND", message=chat_id, http_status=404)
        return conv

    def delete_chat(self, user_id: str, chat_id: str) -> None:
        self.get_chat(user_id, chat_id)
        self._store.delete_conversation(chat_id)
        logger.info("Deleted conversation", extra={"extra": {"conversation_id": chat_id, "user_id": user_id}})

    def list_messages(self, user_id: str, chat_id: str) -> List[MessageRecord]:
        self.get_chat(user_id, chat_id)
        return self._store.list_messages(chat_id)

    def append_message(
        self,
        user_id: str,
        chat_id: str,
        role: Role,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        self.get_chat(user_id, chat_id)
        return self._store.append_message(chat_id, role, content, meta)

    # ---- 流式对话 ----

    def open_run(
        self,
        user_id: str,
        chat_id: str,
        history: List[ChatMessage],
        new_message: str,
    ) -> Iterable[StreamEvent]:
        """在打开流之前完成校验与用户消息持久化，返回尚未启动的事件流。

        Raises:
            StoreError: 会话不存在或不属于当前用户。
        """

        self.get_chat(user_id, chat_id)
        record = self._store.append_message(chat_id, "user", new_message)
        logger.info(
            "Stored user message",
            extra={"extra": {"conversation_id": chat_id, "message_id": record.id, "history": len(history)}},
        )
        return self._graph.stream(chat_id, history, new_message)

    @staticmethod
    def relay(events: Iterable[StreamEvent], sink: FrameSink, chat_id: str) -> RelayOutcome:
        return StreamRelay(log_ctx={"conversation_id": chat_id}).pump(events, sink)


def build_default_service(settings: Optional[Settings] = None) -> ChatService:
    """按配置组装默认 ChatService。"""

    cfg = settings or default_settings
    store = JsonConversationStore(root=cfg.storage_root)
    tools = None
    if cfg.tool_endpoint:
        tools = HttpToolProvider(cfg.tool_endpoint, api_key=cfg.tool_api_key, timeout=cfg.http_timeout)
    model = ProviderModelInvoker(
        create_provider(cfg.default_provider),
        model=cfg.default_model,
        temperature=cfg.temperature,
        tool_source=tools,
    )
    graph = AgentGraph(
        model=model,
        tools=tools,
        checkpoints=create_checkpoint_store(cfg.checkpoint_backend),
        config=AgentConfig(
            system_prompt=load_system_prompt(),
            trim=TrimConfig.from_settings(cfg),
            cache_hints=cfg.cache_hints_enabled,
            max_tool_rounds=cfg.max_tool_rounds,
        ),
    )
    return ChatService(store=store, graph=graph)
