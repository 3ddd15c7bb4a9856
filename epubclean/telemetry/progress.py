"""Bounded progress channel with a single consumer thread.

Producers (job runner, worker pool callbacks) never block on the sink:
``publish`` assigns a sequence number and enqueues without waiting. When the
queue is full the event is dropped and counted, so sinks see a gap in the
sequence numbers instead of a stalled producer.
"""

from __future__ import annotations

import collections
import itertools
import logging
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    seq: int
    job_id: str
    stage: str
    progress: float
    message: str
    level: str = "INFO"
    ts: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "job_id": self.job_id,
            "stage": self.stage,
            "progress": self.progress,
            "message": self.message,
            "level": self.level,
            "ts": self.ts,
        }


Sink = Callable[[ProgressEvent], None]

_STOP = object()


class ProgressChannel:
    def __init__(self, sink: Sink, maxsize: int = 1024) -> None:
        self._sink = sink
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._seq = itertools.count(1)
        self._seq_lock = threading.Lock()
        self._dropped = 0
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(
                target=self._consume, name="epubclean-progress", daemon=True
            )
            self._thread.start()

    def publish(
        self,
        job_id: str,
        stage: str,
        progress: float,
        message: str,
        level: str = "INFO",
    ) -> int:
        with self._seq_lock:
            seq = next(self._seq)
        evt = ProgressEvent(
            seq=seq,
            job_id=job_id,
            stage=stage,
            progress=float(progress),
            message=message,
            level=level,
            ts=time.time(),
        )
        try:
            self._queue.put_nowait(evt)
        except queue.Full:
            with self._seq_lock:
                self._dropped += 1
        return seq

    def close(self, timeout: float = 5.0) -> None:
        """Deliver everything already queued, then stop the consumer."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._queue.put(_STOP)
            thread.join(timeout)
            self._thread = None

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self._sink(item)  # type: ignore[arg-type]
            except Exception:
                log.exception("progress sink failed")


class LogBuffer:
    """In-memory tail of human-readable progress lines.

    When full, the oldest fifth is dropped in one go. Sequence gaps (events
    dropped upstream) are counted.
    """

    def __init__(self, max_lines: int = 10000) -> None:
        self._max = max(5, int(max_lines))
        self._lines: Deque[str] = collections.deque()
        self._lock = threading.Lock()
        self._last_seq = 0
        self._gaps = 0

    def __call__(self, evt: ProgressEvent) -> None:
        ts = datetime.fromtimestamp(evt.ts or time.time()).strftime("%H:%M:%S.%f")[:-3]
        line = f"[{ts}] {evt.message}"
        with self._lock:
            if self._last_seq and evt.seq != self._last_seq + 1:
                self._gaps += evt.seq - self._last_seq - 1
            self._last_seq = max(self._last_seq, evt.seq)
            if len(self._lines) >= self._max:
                for _ in range(self._max // 5):
                    self._lines.popleft()
            self._lines.append(line)

    @property
    def gaps(self) -> int:
        with self._lock:
            return self._gaps

    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)


def fanout(*sinks: Sink) -> Sink:
    def _deliver(evt: ProgressEvent) -> None:
        for sink in sinks:
            sink(evt)

    return _deliver


def logging_sink(logger: logging.Logger | None = None) -> Sink:
    target = logger or log

    def _emit(evt: ProgressEvent) -> None:
        level = getattr(logging, evt.level.upper(), logging.INFO)
        target.log(
            level,
            evt.message,
            extra={"job_id": evt.job_id, "stage": evt.stage, "progress": evt.progress, "seq": evt.seq},
        )

    return _emit


__all__ = ["ProgressEvent", "ProgressChannel", "LogBuffer", "fanout", "logging_sink"]
