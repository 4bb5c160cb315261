# extengine/core/tracing.py
from __future__ import annotations

import contextvars
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from extengine.core.ids import uuidv7
from extengine.core.time import nowIso, nowMonotonicMs

__all__ = ["TraceSpan", "TraceHub", "Tracer", "getTracer", "getTraceHub"]

JsonDict = dict[str, Any]

# Context keys copied to the top level of every record for filtering
_PROMOTED_KEYS = ("extensionId", "hostId", "operation", "source", "senderId")



_spanContextVar: contextvars.ContextVar["TraceSpan | None"] = contextvars.ContextVar(
    "extengine_current_span",
    default=None,
)



@dataclass
class TraceSpan:
    traceId: str
    spanId: str
    parentSpanId: str | None
    spanName: str
    context: JsonDict = field(default_factory=dict)
    startedMs: int = field(default_factory=nowMonotonicMs)
    ended: bool = False
    token: contextvars.Token | None = field(default=None, repr=False)



class TraceHub:
    """
    Bounded in-memory ring buffer with synchronous subscribers.

    - emit(record): append to buffer, fan out to subscribers
    - subscribe(fn): returns a snapshot of the buffer; fn receives future records
    - unsubscribe(fn)
    """
    def __init__(self, capacity: int = 2000) -> None:
        self.capacity = max(1, capacity)
        self._buffer: deque[JsonDict] = deque(maxlen=self.capacity)
        self._subscribers: list[Any] = []
        self._lock = threading.Lock()

    def emit(self, record: JsonDict) -> None:
        with self._lock:
            self._buffer.append(record)
            subscribers = list(self._subscribers)
        for fn in subscribers:
            try:
                fn(record)
            except Exception:
                # Slow or broken subscribers never block tracing
                continue

    def subscribe(self, fn) -> list[JsonDict]:
        with self._lock:
            self._subscribers.append(fn)
            return list(self._buffer)

    def unsubscribe(self, fn) -> None:
        with self._lock:
            try:
                self._subscribers.remove(fn)
            except ValueError:
                pass

    def records(self) -> list[JsonDict]:
        with self._lock:
            return list(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()



class Tracer:
    """
    Emits JSON-serializable span and event records to a TraceHub.
    The current span is tracked per task through a ContextVar.
    Never raises out of emit().
    """

    def __init__(self, hub: TraceHub | None = None) -> None:
        self.hub = hub or TraceHub()
        self._seq = 0
        self._seqLock = threading.Lock()

    def _nextSeq(self) -> int:
        with self._seqLock:
            self._seq += 1
            return self._seq

    def currentSpan(self) -> TraceSpan | None:
        return _spanContextVar.get(None)

    def _buildRecord(
        self,
        recordType: str,
        span: TraceSpan | None,
        level: str,
        tags: list[str] | None,
        attrs: JsonDict | None,
    ) -> JsonDict:
        ctx = dict(span.context) if span is not None else {}
        record: JsonDict = {
            "recordType": recordType,
            "time": nowIso(),
            "seq": self._nextSeq(),
            "traceId": span.traceId if span is not None else "",
            "spanId": span.spanId if span is not None else "",
            "level": level,
            "tags": tags or [],
            "attrs": {**ctx, **(attrs or {})},
        }
        for key in _PROMOTED_KEYS:
            if key in record["attrs"]:
                record[key] = record["attrs"][key]
        return record

    # ----- Spans -----

    def startSpan(
        self,
        spanName: str,
        attrs: JsonDict | None = None,
        level: str = "info",
        tags: list[str] | None = None,
    ) -> TraceSpan:
        """Starts a span, makes it current for this task and emits spanStart."""
        parent = self.currentSpan()
        traceId = parent.traceId if parent is not None else uuidv7(prefix="trace_")
        span = TraceSpan(
            traceId=traceId,
            spanId=uuidv7(prefix="span_"),
            parentSpanId=parent.spanId if parent is not None else None,
            spanName=spanName,
            context=dict(attrs or {}),
        )
        span.token = _spanContextVar.set(span)

        record = self._buildRecord("spanStart", span, level, tags, None)
        record["spanName"] = spanName
        record["parentSpanId"] = span.parentSpanId
        self._emit(record)
        return span

    def endSpan(
        self,
        span: TraceSpan,
        status: str = "ok",
        *,
        level: str = "info",
        tags: list[str] | None = None,
        errorType: str | None = None,
        errorMessage: str | None = None,
        attrs: JsonDict | None = None,
    ) -> None:
        """Ends a span once, restores the previous current span and emits spanEnd."""
        if span.ended:
            return
        span.ended = True

        if span.token is not None:
            try:
                _spanContextVar.reset(span.token)
            except ValueError:
                # Token created in another context; leave the current span alone
                pass
            span.token = None

        endAttrs = dict(attrs or {})
        endAttrs.setdefault("durationMs", nowMonotonicMs() - span.startedMs)
        record = self._buildRecord("spanEnd", span, level, tags, endAttrs)
        record["spanName"] = span.spanName
        record["status"] = status
        record["errorType"] = errorType
        record["errorMessage"] = errorMessage
        self._emit(record)

    # ----- Events -----

    def traceEvent(
        self,
        eventName: str,
        attrs: JsonDict | None = None,
        *,
        level: str = "debug",
        tags: list[str] | None = None,
        span: TraceSpan | None = None,
    ) -> None:
        """Emits an event attached to the given span or the current one."""
        if span is None:
            span = self.currentSpan()
        record = self._buildRecord("event", span, level, tags, attrs)
        record["eventName"] = eventName
        self._emit(record)

    def _emit(self, record: JsonDict) -> None:
        try:
            self.hub.emit(record)
        except Exception:
            # Tracing must not crash
            pass



# Global tracer + hub singletons
_globalHub = TraceHub()
_globalTracer = Tracer(_globalHub)



def getTraceHub() -> TraceHub:
    return _globalHub

def getTracer() -> Tracer:
    return _globalTracer
