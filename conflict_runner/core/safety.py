"""
Safety Monitor — reacts to the engine's fatal safety signal.

The analyzer runs a memory guard. When it trips, the engine boundary emits
a `safety` event and the child process dies. The monitor turns that into an
irrevocable Aborted run with a message that cannot be mistaken for a normal
result or a per-file error. There is no automatic retry.
"""

from __future__ import annotations

import logging
from typing import Optional

from conflict_runner.core.aggregator import RunAggregator
from conflict_runner.models.events import EventChannel, Subscription, Topic
from conflict_runner.models.types import SafetySignal

logger = logging.getLogger(__name__)

SAFETY_PREFIX = "[SAFETY TERMINATION]"
SAFETY_HEADLINE = "MEMORY OVERFLOW"
SAFETY_EXPLANATION = (
    "The analysis was terminated because memory usage exceeded the safe limit."
)


def format_safety_message(diagnostic: str) -> str:
    return f"{SAFETY_PREFIX} {SAFETY_HEADLINE}\n\n{SAFETY_EXPLANATION}\n\n{diagnostic}".rstrip()


def is_safety_message(text: Optional[str]) -> bool:
    return bool(text) and text.startswith(SAFETY_PREFIX)


class SafetyMonitor:
    def __init__(self, aggregator: RunAggregator):
        self.aggregator = aggregator
        self._channel: Optional[EventChannel] = None
        self._subscription: Optional[Subscription] = None

    def attach(self, channel: EventChannel) -> None:
        if self._subscription is not None:
            return
        self._channel = channel
        self._subscription = channel.subscribe(Topic.SAFETY, self._on_event)

    def detach(self) -> None:
        if self._subscription is None:
            return
        self._channel.unsubscribe(self._subscription)
        self._subscription = None

    def _on_event(self, payload: SafetySignal | str) -> None:
        diagnostic = payload.diagnostic if isinstance(payload, SafetySignal) else str(payload)
        self.on_safety_signal(diagnostic)

    def on_safety_signal(self, diagnostic: str) -> None:
        logger.critical("Safety signal received: %s", diagnostic)
        self.aggregator.abort(format_safety_message(diagnostic))
