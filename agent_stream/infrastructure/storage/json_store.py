import json
import os
import shutil
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional
from uuid import uuid4

from agent_stream.config.settings import settings
from agent_stream.domain.conversation import ConversationStore, Conversation, MessageRecord
from agent_stream.domain.exceptions import StoreError
from agent_stream.domain.models import Role


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(raw: str) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """会话存储：每个会话一个目录，meta.json + 追加写的 messages.jsonl。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def create_conversation(self, user_id: str, title: str = "", meta: Optional[Dict[str, Any]] = None) -> Conversation:
        cid = f"c-{uuid4().hex}"
        cdir = self._conv_root / cid
        cdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        conv = Conversation(id=cid, title=title, user_id=user_id, created_at=now, updated_at=now, meta=dict(meta or {}))
        self._write_meta(cdir, conv)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        meta_path = self._conv_root / conversation_id / "meta.json"
        if not meta_path.exists():
            raise StoreError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        return self._to_conversation(data)

    def list_conversations(self, user_id: Optional[str] = None) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in sorted(self._conv_root.glob("*/")):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                conv = self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError, KeyError):
                continue
            if user_id is None or conv.user_id == user_id:
                items.append(conv)
        items.sort(key=lambda c: c.created_at, reverse=True)
        return items

    def append_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        conv = self.get_conversation(conversation_id)
        cdir = self._conv_root / conversation_id
        msgs_path = cdir / "messages.jsonl"
        record = MessageRecord(
            id=f"m-{uuid4().hex}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=datetime.now(timezone.utc),
            meta=dict(meta or {}),
        )
        payload = asdict(record)
        payload["created_at"] = _iso(record.created_at)
        try:
            with self._lock:
                with msgs_path.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(payload, ensure_ascii=False) + "\n")
                conv.updated_at = record.created_at
                self._write_meta(cdir, conv)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        return record

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        items: List[MessageRecord] = []
        if not msgs_path.exists():
            return items
        # 行顺序即到达顺序，不按时间戳重排
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (json.JSONDecodeError, KeyError):
                continue
        return items

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_root / conversation_id
        if not cdir.exists():
            raise StoreError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e))

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "title": conv.title,
            "user_id": conv.user_id,
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
            "meta": conv.meta,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            title=data.get("title") or "",
            user_id=data.get("user_id") or "",
            created_at=_parse_ts(data["created_at"]),
            updated_at=_parse_ts(data["updated_at"]),
            meta=data.get("meta") or {},
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            created_at=_parse_ts(data["created_at"]),
            meta=data.get("meta") or {},
        )
