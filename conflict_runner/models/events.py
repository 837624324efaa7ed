"""
Event Channel — topic-based push notifications from the analysis engine.

Topics:
  - progress: per-file ProgressEvent (Queued / Processing / Success / Error)
  - log: LogEntry lines forwarded from the analyzer's stdout/stderr
  - safety: SafetySignal, fatal to the current run

The channel is pure transport. It never interprets payloads; the run
aggregator and the safety monitor subscribe to the topics they care about.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Mapping

logger = logging.getLogger(__name__)


class Topic(str, Enum):
    PROGRESS = "progress"
    LOG = "log"
    SAFETY = "safety"


Callback = Callable[[Any], None]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it back to unsubscribe()."""
    id: int
    topic: Topic


def to_sse(topic: str, payload: Any) -> str:
    """Format a payload as a Server-Sent Event string."""
    data = payload.to_dict() if hasattr(payload, "to_dict") else payload
    return f"data: {json.dumps({'topic': topic, 'payload': data}, default=str)}\n\n"


class EventChannel:
    """
    Delivers engine notifications to registered callbacks.
    The engine calls channel.emit(); consumers call channel.subscribe()
    or, preferably, use channel.session() so the handlers are released
    on every exit path.
    """

    def __init__(self):
        self._subscribers: dict[Topic, dict[int, Callback]] = {t: {} for t in Topic}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, topic: Topic | str, callback: Callback) -> Subscription:
        topic = Topic(topic)
        with self._lock:
            handle = Subscription(id=next(self._ids), topic=topic)
            self._subscribers[topic][handle.id] = callback
        logger.debug("Subscribed #%d to %s", handle.id, topic.value)
        return handle

    def unsubscribe(self, handle: Subscription) -> None:
        """Release a subscription. Unknown or already released handles are a no-op."""
        with self._lock:
            removed = self._subscribers[handle.topic].pop(handle.id, None)
        if removed is not None:
            logger.debug("Unsubscribed #%d from %s", handle.id, handle.topic.value)

    def emit(self, topic: Topic | str, payload: Any) -> None:
        topic = Topic(topic)
        with self._lock:
            callbacks = list(self._subscribers[topic].values())
        for cb in callbacks:
            try:
                cb(payload)
            except Exception:
                logger.exception("Subscriber on %s raised while handling %r", topic.value, payload)

    def subscriber_count(self, topic: Topic | str) -> int:
        with self._lock:
            return len(self._subscribers[Topic(topic)])

    @contextmanager
    def session(self, callbacks: Mapping[Topic | str, Callback]) -> Iterator[list[Subscription]]:
        """Subscribe a set of callbacks for the duration of a with-block."""
        handles: list[Subscription] = []
        try:
            for topic, cb in callbacks.items():
                handles.append(self.subscribe(topic, cb))
            yield handles
        finally:
            for handle in handles:
                self.unsubscribe(handle)
