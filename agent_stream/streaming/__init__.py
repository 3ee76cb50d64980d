"""Server side of the streaming protocol: frame encoding, relay and sinks."""

from agent_stream.streaming.frames import SSE_DATA_PREFIX, SSE_DONE_MESSAGE, SSE_LINE_DELIMITER, encode_event
from agent_stream.streaming.relay import StreamRelay

__all__ = ["SSE_DATA_PREFIX", "SSE_DONE_MESSAGE", "SSE_LINE_DELIMITER", "StreamRelay", "encode_event"]
