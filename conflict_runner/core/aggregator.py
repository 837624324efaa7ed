"""
Run Aggregator — owns the in-memory state of the current analysis run.

Consumes progress and log notifications (normally through the EventChannel)
plus the dispatcher's terminal outcome, and exposes an immutable Run
snapshot for the HTTP layer.

Phase machine:

    Idle --reset--> Running --finish--> Completed
                    Running --abort---> Aborted
    Completed | Aborted --reset--> Running

Outcomes are append-only and kept in arrival order. Progress events that
arrive after Completed are still recorded; after Aborted they are dropped.
Completed and Aborted are both terminal: a safety signal after Completed is
ignored.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace

from conflict_runner.core.decoder import decode_event
from conflict_runner.models.events import EventChannel, Subscription, Topic
from conflict_runner.models.types import (
    FileOutcome,
    LogEntry,
    ProgressEvent,
    Run,
    RunPhase,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a run phase change is not in the transition map."""

    def __init__(self, from_phase: RunPhase, to_phase: RunPhase):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid run transition {from_phase.value} -> {to_phase.value}")


_VALID_TRANSITIONS: dict[RunPhase, tuple[RunPhase, ...]] = {
    RunPhase.IDLE: (RunPhase.RUNNING,),
    RunPhase.RUNNING: (RunPhase.COMPLETED, RunPhase.ABORTED),
    RunPhase.COMPLETED: (RunPhase.RUNNING,),
    RunPhase.ABORTED: (RunPhase.RUNNING,),
}


class RunAggregator:
    def __init__(self):
        self._lock = threading.Lock()
        self._run = Run()
        self._outcomes: list[FileOutcome] = []
        self._logs: list[LogEntry] = []
        self._subscriptions: list[Subscription] = []
        self._channel: EventChannel | None = None

    # ── Channel wiring ──────────────────────────

    def attach(self, channel: EventChannel) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            channel.subscribe(Topic.PROGRESS, self.on_progress),
            channel.subscribe(Topic.LOG, self.on_log),
        ]
        self._channel = channel

    def detach(self) -> None:
        if self._channel is None:
            return
        for handle in self._subscriptions:
            self._channel.unsubscribe(handle)
        self._subscriptions = []

    # ── Reads ───────────────────────────────────

    @property
    def phase(self) -> RunPhase:
        with self._lock:
            return self._run.phase

    def snapshot(self) -> Run:
        with self._lock:
            return replace(self._run, outcomes=tuple(self._outcomes))

    def logs(self) -> list[LogEntry]:
        with self._lock:
            return list(self._logs)

    def to_dict(self) -> dict:
        return self.snapshot().to_dict()

    # ── Event handlers ──────────────────────────

    def on_progress(self, event: ProgressEvent) -> None:
        with self._lock:
            if not self._accepting(event.file):
                return
            self._advance(event.file, event.progress)
            if event.status.is_terminal:
                self._append(decode_event(event))

    def on_outcome(self, outcome: FileOutcome) -> None:
        """Record the single outcome of a file or pasted-text run, already decoded."""
        with self._lock:
            if not self._accepting(outcome.file):
                return
            self._advance(outcome.file, 1.0)
            self._append(outcome)

    def on_log(self, entry: LogEntry) -> None:
        with self._lock:
            self._logs.append(entry)

    # ── Lifecycle ───────────────────────────────

    def reset(self) -> None:
        """Start a fresh run: outcomes, logs and message are cleared."""
        with self._lock:
            self._transition(RunPhase.RUNNING)
            self._outcomes = []
            self._logs = []
            self._run = Run(phase=RunPhase.RUNNING)
        logger.info("Run reset; phase Running")

    def finish(self, message: str, failed: bool = False) -> None:
        with self._lock:
            if self._run.phase == RunPhase.ABORTED:
                logger.info("Ignoring terminal message, run was aborted: %s", message)
                return
            self._transition(RunPhase.COMPLETED)
            self._run = replace(self._run, phase=RunPhase.COMPLETED, message=message, failed=failed)
        logger.info("Run completed%s: %s", " with error" if failed else "", message)

    def abort(self, message: str) -> None:
        with self._lock:
            phase = self._run.phase
            if phase == RunPhase.ABORTED:
                logger.warning("Run already aborted; keeping the first diagnostic")
                return
            if phase != RunPhase.RUNNING:
                logger.warning("Ignoring safety signal, run is %s: %s", phase.value, message)
                return
            self._transition(RunPhase.ABORTED)
            self._run = replace(
                self._run,
                phase=RunPhase.ABORTED,
                message=message,
                failed=True,
                aborted_by_safety=True,
            )
        logger.critical("Run aborted: %s", message)

    def _accepting(self, file: str) -> bool:
        phase = self._run.phase
        if phase in (RunPhase.IDLE, RunPhase.ABORTED):
            logger.debug("Dropping progress for %s: run is %s", file, phase.value)
            return False
        return True

    def _advance(self, file: str, value: float) -> None:
        progress = self._run.current_progress
        regressions = self._run.progress_regressions
        if value < progress:
            regressions += 1
            logger.warning(
                "Progress went backwards for %s (%.3f < %.3f); keeping %.3f",
                file, value, progress, progress,
            )
        else:
            progress = value

        self._run = replace(
            self._run,
            current_file=file,
            current_progress=progress,
            progress_regressions=regressions,
        )

    def _append(self, outcome: FileOutcome) -> None:
        self._outcomes.append(outcome)
        logger.info("Recorded %s for %s", outcome.status.value, outcome.file)

    def _transition(self, to_phase: RunPhase) -> None:
        # Caller holds self._lock
        from_phase = self._run.phase
        if to_phase not in _VALID_TRANSITIONS[from_phase]:
            raise InvalidTransitionError(from_phase, to_phase)
        self._run = replace(self._run, phase=to_phase)
        logger.debug("Run: %s -> %s", from_phase.value, to_phase.value)
