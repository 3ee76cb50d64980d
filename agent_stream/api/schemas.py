"""HTTP 请求/响应模型（pydantic）。"""

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageIn(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str


class ChatStreamRequest(BaseModel):
    """流式对话请求体：{messages, newMessage, chatId}。"""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[MessageIn] = Field(default_factory=list)
    new_message: str = Field(alias="newMessage")
    chat_id: str = Field(alias="chatId", min_length=1)

    @field_validator("new_message")
    @classmethod
    def validate_new_message(cls, v: str) -> str:
        text = v.strip()
        if not text:
            raise ValueError("newMessage must not be empty")
        return text


class CreateChatRequest(BaseModel):
    title: str = ""


class AppendMessageRequest(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    meta: Dict[str, Any] = Field(default_factory=dict)
