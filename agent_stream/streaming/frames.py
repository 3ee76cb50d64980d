"""Wire frames: ``data: <single-line JSON>`` followed by a blank line."""

from __future__ import annotations

import json

from agent_stream.domain.events import Done, StreamEvent

SSE_DATA_PREFIX = "data: "
SSE_LINE_DELIMITER = "\n\n"
SSE_DONE_MESSAGE = "[DONE]"

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: StreamEvent) -> str:
    if isinstance(event, Done):
        body = SSE_DONE_MESSAGE
    else:
        # json.dumps escapes control characters, so the payload stays on one line
        body = json.dumps(event.to_payload(), ensure_ascii=False, default=str)
    return f"{SSE_DATA_PREFIX}{body}{SSE_LINE_DELIMITER}"
