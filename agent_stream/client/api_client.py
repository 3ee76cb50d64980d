"""HTTP 客户端：调用聊天服务的 REST 接口与流式接口。

- 会话管理：create_chat / list_chats / delete_chat / list_messages / append_message。
- 流式对话：stream_chat 把响应字节块交给 SSEParser，再分发给 StreamConsumer。

append_message 与 ConversationStore 同签名，因此可直接作为 StreamConsumer 的存储。
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from agent_stream.client.consumer import ChatRunState, StreamConsumer
from agent_stream.client.sse_parser import SSEParser
from agent_stream.domain.conversation import Conversation, MessageRecord
from agent_stream.domain.exceptions import ApiError, AuthError, NetworkError
from agent_stream.domain.models import Role
from agent_stream.infrastructure.logging.logger import logger


class ChatApiClient:
    """聊天服务客户端。

    http_client 可注入（例如 FastAPI TestClient）；未注入时每次调用新建 httpx.Client。
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._http_client = http_client

    @contextmanager
    def _client(self) -> Iterator[httpx.Client]:
        if self._http_client is not None:
            yield self._http_client
            return
        with httpx.Client(timeout=self._timeout, trust_env=False) as client:
            yield client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            with self._client() as client:
                resp = client.request(method, f"{self._base_url}{path}", json=json, headers=self._headers())
        except httpx.HTTPError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp)
        return resp.json() if resp.content else None

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code == 401:
            raise AuthError()
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)

    # ---- 会话管理 ----

    def create_chat(self, title: str = "") -> Conversation:
        return _to_conversation(self._request("POST", "/api/chats", {"title": title}))

    def list_chats(self) -> List[Conversation]:
        return [_to_conversation(item) for item in self._request("GET", "/api/chats")]

    def delete_chat(self, chat_id: str) -> None:
        self._request("DELETE", f"/api/chats/{chat_id}")

    def list_messages(self, chat_id: str) -> List[MessageRecord]:
        return [_to_message(item) for item in self._request("GET", f"/api/chats/{chat_id}/messages")]

    def append_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        data = self._request(
            "POST",
            f"/api/chats/{conversation_id}/messages",
            {"role": role, "content": content, "meta": meta or {}},
        )
        return _to_message(data)

    # ---- 流式对话 ----

    def stream_chat(
        self,
        chat_id: str,
        new_message: str,
        history: Sequence[MessageRecord] = (),
        consumer: Optional[StreamConsumer] = None,
    ) -> ChatRunState:
        """提交问题并消费流式响应，返回最终的 ChatRunState。

        请求在流打开前被拒绝（401/422 等）时抛出异常；流打开后的任何失败
        都转成 consumer 上的错误状态。
        """

        consumer = consumer or StreamConsumer(chat_id, self, initial_messages=list(history))
        body = {
            "messages": [{"role": m.role, "content": m.content} for m in history],
            "newMessage": new_message,
            "chatId": chat_id,
        }
        consumer.begin(new_message)
        parser = SSEParser()
        try:
            with self._client() as client:
                with client.stream(
                    "POST",
                    f"{self._base_url}/api/chat/stream",
                    json=body,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        consumer.fail(resp.text or f"HTTP {resp.status_code}")
                        self._raise_for_status(resp)
                    for chunk in resp.iter_bytes():
                        for event in parser.parse(chunk):
                            consumer.handle(event)
            for event in parser.finish():
                consumer.handle(event)
        except httpx.HTTPError as e:
            logger.warning("Stream request failed", extra={"extra": {"chat_id": chat_id, "error": str(e)}})
            consumer.fail(str(e) or "connection lost")
            return consumer.state
        if not consumer.state.finished:
            consumer.fail("Stream ended before completion")
        return consumer.state


def _parse_ts(raw: str) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def _to_conversation(data: Dict[str, Any]) -> Conversation:
    return Conversation(
        id=data["id"],
        title=data.get("title") or "",
        user_id=data.get("user_id") or "",
        created_at=_parse_ts(data["created_at"]),
        updated_at=_parse_ts(data["updated_at"]),
        meta=data.get("meta") or {},
    )


def _to_message(data: Dict[str, Any]) -> MessageRecord:
    return MessageRecord(
        id=data["id"],
        conversation_id=data["conversation_id"],
        role=data["role"],
        content=data.get("content") or "",
        created_at=_parse_ts(data["created_at"]),
        meta=data.get("meta") or {},
    )
