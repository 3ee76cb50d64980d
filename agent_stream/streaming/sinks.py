"""Frame sinks bridging the relay to an HTTP response body."""

from __future__ import annotations

import queue
import threading
from typing import Iterator, Optional

from agent_stream.domain.exceptions import TransportError

_CLOSED = object()


class QueueFrameSink:
    """Bounded hand-off between the relay thread and the response body.

    ``write`` blocks until the reader has taken the previous frame (with
    ``maxsize=1`` only one frame is ever queued). Once the reader goes away
    the sink is cancelled and every further write raises TransportError.
    """

    def __init__(self, maxsize: int = 1, poll_interval: float = 0.25):
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._poll_interval = poll_interval
        self._cancelled = threading.Event()
        self._closed = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def write(self, frame: str) -> None:
        if self._closed.is_set():
            raise TransportError("sink already closed")
        self._put(frame)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._put(_CLOSED)
        except TransportError:
            # reader is gone, nobody waits for the end marker
            pass

    def cancel(self) -> None:
        self._cancelled.set()

    def read(self) -> Optional[str]:
        """Next frame, or None once the sink is closed or cancelled."""

        while True:
            try:
                item = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                if self._cancelled.is_set():
                    return None
                continue
            if item is _CLOSED:
                return None
            return item  # type: ignore[return-value]

    def _put(self, item: object) -> None:
        while True:
            if self._cancelled.is_set():
                raise TransportError("client disconnected")
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return
            except queue.Full:
                continue

    def __iter__(self) -> Iterator[str]:
        try:
            while True:
                frame = self.read()
                if frame is None:
                    return
                yield frame
        finally:
            self.cancel()
