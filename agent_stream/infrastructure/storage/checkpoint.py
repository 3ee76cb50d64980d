"""Per-thread checkpoint stores for the agent graph.

The graph only relies on load/save; durability is the store's business.
Both stores are last-writer-wins per thread id.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol
from uuid import uuid4

from agent_stream.config.settings import settings
from agent_stream.domain.exceptions import StoreError
from agent_stream.flows.state import GraphState


class CheckpointStore(Protocol):
    def load(self, thread_id: str) -> Optional[GraphState]:
        ...

    def save(self, thread_id: str, state: GraphState) -> None:
        ...


class MemoryCheckpointStore:
    """In-process store. Snapshots are deep-copied in and out."""

    def __init__(self) -> None:
        self._states: Dict[str, GraphState] = {}
        self._lock = threading.Lock()

    def load(self, thread_id: str) -> Optional[GraphState]:
        with self._lock:
            state = self._states.get(thread_id)
            return copy.deepcopy(state) if state is not None else None

    def save(self, thread_id: str, state: GraphState) -> None:
        snapshot = copy.deepcopy(state)
        with self._lock:
            self._states[thread_id] = snapshot


class JsonCheckpointStore:
    """One JSON file per thread, replaced atomically on save."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = (Path(root or settings.storage_root) / "checkpoints").resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, thread_id: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in thread_id)
        return self._root / f"{safe}.json"

    def load(self, thread_id: str) -> Optional[GraphState]:
        path = self._path(thread_id)
        if not path.exists():
            return None
        try:
            return GraphState.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, KeyError) as e:
            raise StoreError(code="CHECKPOINT_READ_ERROR", message=str(e))

    def save(self, thread_id: str, state: GraphState) -> None:
        path = self._path(thread_id)
        tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.tmp")
        try:
            tmp_path.write_text(json.dumps(state.to_dict(), ensure_ascii=False, default=str), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(code="CHECKPOINT_WRITE_ERROR", message=str(e))


def create_checkpoint_store(backend: Optional[str] = None) -> CheckpointStore:
    name = (backend or settings.checkpoint_backend).lower()
    if name == "json":
        return JsonCheckpointStore()
    return MemoryCheckpointStore()
