"""Shared data contracts for the analysis run.

Every component consumes and produces these types. This is the single source
of truth for what flows between the engine boundary, the decoder, the
dispatcher and the run aggregator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


PLACEHOLDER = "-"


# ── Requests ────────────────────────────────────────────────

class AnalysisMode(str, Enum):
    """Detail level passed to the analyzer."""
    DEFAULT = "Default"
    VERBOSE = "Verbose"
    TEST = "Test"               # makes the analyzer print its RESULT_CSV line

    @property
    def engine_flags(self) -> list[str]:
        if self is AnalysisMode.VERBOSE:
            return ["-v"]
        if self is AnalysisMode.TEST:
            return ["-t"]
        return []


class RequestKind(str, Enum):
    SINGLE_FILE = "SingleFile"
    PASTED_TEXT = "PastedText"
    DIRECTORY = "Directory"


@dataclass(frozen=True)
class SingleFileRequest:
    path: str
    mode: AnalysisMode = AnalysisMode.DEFAULT
    kind: RequestKind = field(default=RequestKind.SINGLE_FILE, init=False)


@dataclass(frozen=True)
class PastedTextRequest:
    text: str
    mode: AnalysisMode = AnalysisMode.DEFAULT
    kind: RequestKind = field(default=RequestKind.PASTED_TEXT, init=False)


@dataclass(frozen=True)
class DirectoryRequest:
    path: str
    mode: AnalysisMode = AnalysisMode.TEST
    kind: RequestKind = field(default=RequestKind.DIRECTORY, init=False)


AnalysisRequest = Union[SingleFileRequest, PastedTextRequest, DirectoryRequest]


# ── Engine events ───────────────────────────────────────────

class FileStatus(str, Enum):
    QUEUED = "Queued"
    PROCESSING = "Processing"
    SUCCESS = "Success"
    ERROR = "Error"

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.SUCCESS, FileStatus.ERROR)


@dataclass(frozen=True)
class ProgressEvent:
    """One per-file notification pushed by the engine."""
    file: str
    status: FileStatus
    raw_result: Optional[str] = None    # RESULT_CSV payload on Success, error text on Error
    elapsed_ms: Optional[int] = None
    progress: float = 0.0               # fraction of the run, 0.0-1.0

    def __post_init__(self):
        if not 0.0 <= self.progress <= 1.0:
            raise ValueError(f"progress must be within [0, 1], got {self.progress}")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ProgressEvent:
        return cls(
            file=payload["file"],
            status=FileStatus(payload["status"]),
            raw_result=payload.get("result"),
            elapsed_ms=payload.get("elapsed_ms"),
            progress=float(payload.get("progress", 0.0)),
        )

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "status": self.status.value,
            "result": self.raw_result,
            "elapsed_ms": self.elapsed_ms,
            "progress": self.progress,
        }


class LogSeverity(str, Enum):
    """Verbosity tiers used by the analyzer's own logger."""
    MINIMAL = "Minimal"
    NECESSARY = "Necessary"
    ADDITIONAL = "Additional"


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    severity: LogSeverity
    message: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class SafetySignal:
    """Out-of-band fatal notification, e.g. the analyzer's memory guard firing."""
    diagnostic: str

    def to_dict(self) -> dict:
        return {"diagnostic": self.diagnostic}


# ── Outcomes ────────────────────────────────────────────────

METRIC_FIELDS = (
    "time_ms",
    "states",
    "transitions",
    "individuals",
    "actions",
    "conflict_count",
    "automaton_size_mb",
    "max_memory_mb",
)


@dataclass(frozen=True)
class FileOutcome:
    """Decoded result row for one analyzed file. Metrics stay as display text."""
    file: str
    status: FileStatus
    time_ms: str = PLACEHOLDER
    states: str = PLACEHOLDER
    transitions: str = PLACEHOLDER
    individuals: str = PLACEHOLDER
    actions: str = PLACEHOLDER
    conflicting: bool = False
    conflict_count: str = PLACEHOLDER
    automaton_size_mb: str = PLACEHOLDER
    max_memory_mb: str = PLACEHOLDER
    info: str = ""

    def metric(self, name: str) -> int | float | None:
        """Numeric value of a metric field, or None when it is not a number."""
        if name not in METRIC_FIELDS:
            raise KeyError(name)
        text = getattr(self, name)
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "status": self.status.value,
            "time_ms": self.time_ms,
            "states": self.states,
            "transitions": self.transitions,
            "individuals": self.individuals,
            "actions": self.actions,
            "conflicting": self.conflicting,
            "conflict_count": self.conflict_count,
            "automaton_size_mb": self.automaton_size_mb,
            "max_memory_mb": self.max_memory_mb,
            "info": self.info,
        }


# ── Run ─────────────────────────────────────────────────────

class RunPhase(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETED = "Completed"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunPhase.COMPLETED, RunPhase.ABORTED)


@dataclass(frozen=True)
class Run:
    """Point-in-time view of the current run, as handed out by the aggregator."""
    phase: RunPhase = RunPhase.IDLE
    outcomes: tuple[FileOutcome, ...] = ()
    current_file: str = ""
    current_progress: float = 0.0
    message: Optional[str] = None
    failed: bool = False
    aborted_by_safety: bool = False
    progress_regressions: int = 0

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "current_file": self.current_file,
            "current_progress": self.current_progress,
            "message": self.message,
            "failed": self.failed,
            "aborted_by_safety": self.aborted_by_safety,
            "progress_regressions": self.progress_regressions,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass(frozen=True)
class TerminalMessage:
    """What a dispatch resolves to: a human-readable summary or failure."""
    text: str
    ok: bool = True
    aborted: bool = False

    def to_dict(self) -> dict:
        return {"text": self.text, "ok": self.ok, "aborted": self.aborted}
