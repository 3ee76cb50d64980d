from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Protocol
from datetime import datetime
from .models import Role


@dataclass
class Conversation:
    id: str
    title: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageRecord:
    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)


class ConversationStore(Protocol):
    def create_conversation(self, user_id: str, title: str = "", meta: Optional[Dict[str, Any]] = None) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self, user_id: Optional[str] = None) -> List[Conversation]:
        ...

    def append_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        ...

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...
