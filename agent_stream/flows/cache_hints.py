"""Prompt-cache breakpoints for turn-by-turn conversations."""

from __future__ import annotations

from dataclasses import replace
from typing import List, Sequence

from agent_stream.domain.models import EPHEMERAL_CACHE, ChatMessage, Role


def add_cache_hints(messages: Sequence[ChatMessage], user_role: Role = "user") -> List[ChatMessage]:
    """Mark the last message and the latest earlier user message as cacheable.

    Returns a new list; marked entries are copies, the caller's messages are
    left untouched. Stale marks on other entries are cleared so at most two
    breakpoints are ever set.
    """

    if not messages:
        return []
    last = len(messages) - 1
    targets = {last}
    for idx in range(last - 1, -1, -1):
        if messages[idx].role == user_role:
            targets.add(idx)
            break

    hinted: List[ChatMessage] = []
    for idx, message in enumerate(messages):
        if idx in targets:
            hinted.append(replace(message, cache_control=dict(EPHEMERAL_CACHE)))
        elif message.cache_control:
            hinted.append(replace(message, cache_control=None))
        else:
            hinted.append(message)
    return hinted
