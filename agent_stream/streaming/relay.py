"""Pump agent events to a transport, one frame at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional, Protocol

from agent_stream.domain.events import Connected, Done, Error, StreamEvent
from agent_stream.domain.exceptions import BusinessError, TransportError
from agent_stream.infrastructure.logging.logger import logger
from agent_stream.streaming.frames import encode_event


class FrameSink(Protocol):
    def write(self, frame: str) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass
class RelayOutcome:
    frames_written: int = 0
    completed: bool = False
    error: Optional[str] = None
    transport_failed: bool = False


class StreamRelay:
    """Serialize engine events into frames and push them to a sink.

    The relay pulls the next event only after the previous frame has been
    written, so at most one frame is ever in flight. Exactly one terminal
    frame is produced: ``[DONE]`` on success, a single error frame otherwise.
    The sink is closed exactly once on every exit path.
    """

    def __init__(self, log_ctx: Optional[Dict[str, Any]] = None):
        self._log_ctx = dict(log_ctx or {})

    def run_events(self, events: Iterable[StreamEvent]) -> Iterator[StreamEvent]:
        """Wrap the run's events with Connected and exactly one terminal event."""

        yield Connected()
        source = iter(events)
        try:
            for event in source:
                yield event
        except Exception as exc:
            if isinstance(exc, BusinessError):
                message = exc.message
            else:
                message = str(exc) or exc.__class__.__name__
            self._log(logging.ERROR, "Run failed", error=message, error_type=exc.__class__.__name__)
            yield Error(error=message)
            return
        finally:
            close = getattr(source, "close", None)
            if close is not None:
                close()
        yield Done()

    def pump(self, events: Iterable[StreamEvent], sink: FrameSink) -> RelayOutcome:
        outcome = RelayOutcome()
        stream = self.run_events(events)
        try:
            for event in stream:
                frame = encode_event(event)
                try:
                    sink.write(frame)
                except Exception as exc:
                    raise TransportError(str(exc) or exc.__class__.__name__) from exc
                outcome.frames_written += 1
                if isinstance(event, Error):
                    outcome.error = event.error
                elif isinstance(event, Done):
                    outcome.completed = True
        except TransportError as exc:
            outcome.transport_failed = True
            self._log(logging.WARNING, "Transport write failed", error=exc.message, frames=outcome.frames_written)
        finally:
            # stop pulling from the engine before releasing the transport
            stream.close()
            self._close_sink(sink)
        self._log(
            logging.INFO,
            "Relay finished",
            frames=outcome.frames_written,
            completed=outcome.completed,
            transport_failed=outcome.transport_failed,
        )
        return outcome

    def _close_sink(self, sink: FrameSink) -> None:
        try:
            sink.close()
        except Exception as exc:
            self._log(logging.WARNING, "Transport close failed", error=str(exc))

    def _log(self, level: int, message: str, **fields: Any) -> None:
        payload = dict(self._log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
