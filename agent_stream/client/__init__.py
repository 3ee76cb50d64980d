"""Client side of the streaming protocol: parser, consumer and HTTP client."""

from agent_stream.client.consumer import ChatRunState, StreamConsumer
from agent_stream.client.sse_parser import SSEParser

__all__ = ["ChatRunState", "SSEParser", "StreamConsumer"]
