"""
Abstract Engine Interface — The contract for analysis engine backends.

This defines the ONLY interface through which the rest of the system talks
to the conflict-analysis engine. Any backend (local analyzer subprocess,
remote worker, test double) must implement EngineBackend.

Integration contract:
  - single file / pasted text in → EngineResult out (correlated with the call)
  - directory in → completion message out; per-file detail is pushed
    through the EventChannel while the call is outstanding
  - log lines and safety signals are pushed through the EventChannel
  - invocation failures raise EngineError
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from conflict_runner.models.events import EventChannel
from conflict_runner.models.types import AnalysisMode


class EngineError(RuntimeError):
    """Engine unreachable, request malformed, or the run could not be completed."""


@dataclass
class EngineResult:
    """The ONLY return type for a single-contract analysis. This is the contract."""
    success: bool
    summary: str = ""                   # human-readable summary printed by the analyzer
    raw_result: Optional[str] = None    # RESULT_CSV payload, present in Test mode
    error: Optional[str] = None
    exit_code: int = 0
    elapsed_ms: Optional[int] = None
    memory_exceeded: bool = False


class EngineBackend(ABC):
    """Abstract interface for analysis engine backends.

    Backends push progress/log/safety notifications into the channel they
    were constructed with. Everything else in the system calls through
    this interface.
    """

    def __init__(self, channel: EventChannel):
        self.channel = channel

    @abstractmethod
    async def analyze_file(self, path: str, mode: AnalysisMode = AnalysisMode.DEFAULT) -> EngineResult:
        """Analyze one contract file.

        Raises:
            EngineError: the file does not exist or the analyzer cannot be started.
        """
        ...

    @abstractmethod
    async def analyze_text(self, text: str, mode: AnalysisMode = AnalysisMode.DEFAULT) -> EngineResult:
        """Analyze contract source handed over inline."""
        ...

    @abstractmethod
    async def analyze_directory(self, path: str) -> str:
        """Analyze every eligible contract in a directory.

        Returns:
            Run-level completion message.

        Raises:
            EngineError: not a directory, nothing to analyze, or results not saved.
        """
        ...

    @abstractmethod
    async def pick_directory(self) -> Optional[str]:
        """Let the operator choose a directory. None when cancelled."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the engine backend is operational."""
        ...

    @abstractmethod
    async def cleanup(self) -> None:
        """Kill any lingering analyzer processes."""
        ...
