"""FastAPI 应用：会话管理接口与流式对话接口。

流式接口在打开流之前完成认证、参数校验与用户消息持久化，因此这些失败
以普通 HTTP 错误返回（401/404/422）。流一旦打开，后续失败只会以
error 帧的形式出现在流内。
"""

import threading
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from agent_stream.api.auth import AuthCheck, TokenAuth
from agent_stream.api.schemas import AppendMessageRequest, ChatStreamRequest, CreateChatRequest
from agent_stream.api.service import ChatService, build_default_service
from agent_stream.config.settings import settings
from agent_stream.domain.exceptions import BusinessError
from agent_stream.domain.models import ChatMessage
from agent_stream.infrastructure.logging.logger import logger
from agent_stream.streaming.frames import SSE_HEADERS
from agent_stream.streaming.sinks import QueueFrameSink


def _dump(obj: Any) -> Dict[str, Any]:
    data = asdict(obj)
    for key in ("created_at", "updated_at"):
        if key in data:
            data[key] = data[key].isoformat()
    return data


def create_app(
    service: Optional[ChatService] = None,
    auth: Optional[AuthCheck] = None,
    queue_size: Optional[int] = None,
) -> FastAPI:
    app = FastAPI(title="agent-stream")
    app.state.service = service or build_default_service()
    app.state.auth = auth or TokenAuth(settings.api_tokens)
    app.state.queue_size = queue_size or settings.stream_queue_size

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        logger.warning(
            "Request rejected",
            extra={"extra": {"path": request.url.path, "code": exc.code, "error": exc.message}},
        )
        return JSONResponse(
            status_code=exc.http_status,
            content={"code": exc.code, "message": exc.message},
        )

    def current_user(request: Request, authorization: Optional[str] = Header(default=None)) -> str:
        return request.app.state.auth.authenticate(authorization)

    def get_service(request: Request) -> ChatService:
        return request.app.state.service

    @app.get("/api/chats")
    def list_chats(user_id: str = Depends(current_user), svc: ChatService = Depends(get_service)):
        return [_dump(c) for c in svc.list_chats(user_id)]

    @app.post("/api/chats", status_code=201)
    def create_chat(
        body: CreateChatRequest,
        user_id: str = Depends(current_user),
        svc: ChatService = Depends(get_service),
    ):
        return _dump(svc.create_chat(user_id, body.title))

    @app.delete("/api/chats/{chat_id}", status_code=204)
    def delete_chat(chat_id: str, user_id: str = Depends(current_user), svc: ChatService = Depends(get_service)):
        svc.delete_chat(user_id, chat_id)
        return Response(status_code=204)

    @app.get("/api/chats/{chat_id}/messages")
    def list_messages(chat_id: str, user_id: str = Depends(current_user), svc: ChatService = Depends(get_service)):
        return [_dump(m) for m in svc.list_messages(user_id, chat_id)]

    @app.post("/api/chats/{chat_id}/messages", status_code=201)
    def append_message(
        chat_id: str,
        body: AppendMessageRequest,
        user_id: str = Depends(current_user),
        svc: ChatService = Depends(get_service),
    ):
        return _dump(svc.append_message(user_id, chat_id, body.role, body.content, body.meta))

    @app.post("/api/chat/stream")
    def chat_stream(
        request: Request,
        body: ChatStreamRequest,
        user_id: str = Depends(current_user),
        svc: ChatService = Depends(get_service),
    ):
        history = [ChatMessage(role=m.role, content=m.content) for m in body.messages]
        events = svc.open_run(user_id, body.chat_id, history, body.new_message)

        sink = QueueFrameSink(maxsize=request.app.state.queue_size)
        worker = threading.Thread(
            target=svc.relay,
            args=(events, sink, body.chat_id),
            name=f"relay-{body.chat_id}",
            daemon=True,
        )
        worker.start()

        async def frames():
            try:
                while True:
                    frame = await run_in_threadpool(sink.read)
                    if frame is None:
                        return
                    yield frame
            finally:
                # 客户端断开或读取结束：让 relay 线程在下一次写入时停止
                sink.cancel()

        return StreamingResponse(frames(), headers=SSE_HEADERS)

    return app
