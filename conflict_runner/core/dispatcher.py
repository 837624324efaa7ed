"""
Job Dispatcher — sends one analysis request to the engine and resolves it
into a TerminalMessage.

Single-file and pasted-text requests are answered by the engine call
itself; their one outcome is handed to the aggregator directly. Directory
requests suspend until the engine acknowledges the whole batch, while
per-file progress keeps arriving through the EventChannel.

If the safety monitor aborts the run while a call is outstanding, the
aborted run decides what the caller sees, not the engine's return value.
"""

from __future__ import annotations

import logging
from pathlib import Path

from conflict_runner.core.aggregator import RunAggregator
from conflict_runner.core.decoder import decode, decode_error
from conflict_runner.core.engine_interface import EngineBackend, EngineError, EngineResult
from conflict_runner.models.types import (
    AnalysisRequest,
    DirectoryRequest,
    FileOutcome,
    PastedTextRequest,
    RequestKind,
    RunPhase,
    SingleFileRequest,
    TerminalMessage,
)

logger = logging.getLogger(__name__)

PASTED_CONTRACT_NAME = "pasted contract"
NO_OUTPUT_MESSAGE = "Analysis completed (no output)"


class RunInProgressError(RuntimeError):
    """A dispatch was attempted while another run is still Running."""


class JobDispatcher:
    def __init__(self, engine: EngineBackend, aggregator: RunAggregator):
        self.engine = engine
        self.aggregator = aggregator

    def prepare(self, request: AnalysisRequest) -> None:
        """Claim the run: refuse while busy, otherwise reset the aggregator."""
        if self.aggregator.phase == RunPhase.RUNNING:
            raise RunInProgressError("An analysis is already running")
        self.aggregator.reset()
        logger.info("Dispatching %s request", request.kind.value)

    async def dispatch(self, request: AnalysisRequest) -> TerminalMessage:
        self.prepare(request)
        return await self.execute(request)

    async def execute(self, request: AnalysisRequest) -> TerminalMessage:
        """Run an already prepared request to its terminal message."""
        try:
            if request.kind == RequestKind.DIRECTORY:
                message = await self._run_directory(request)
            else:
                message = await self._run_single(request)
        except EngineError as e:
            logger.error("%s request failed: %s", request.kind.value, e)
            message = TerminalMessage(text=str(e), ok=False)
        except Exception as e:
            logger.exception("Unexpected failure while dispatching %s", request.kind.value)
            message = TerminalMessage(text=f"Analysis failed: {e}", ok=False)

        self.aggregator.finish(message.text, failed=not message.ok)

        run = self.aggregator.snapshot()
        if run.phase == RunPhase.ABORTED:
            return TerminalMessage(text=run.message or "", ok=False, aborted=True)
        return message

    async def _run_directory(self, request: DirectoryRequest) -> TerminalMessage:
        text = await self.engine.analyze_directory(request.path)
        return TerminalMessage(text=text)

    async def _run_single(self, request: SingleFileRequest | PastedTextRequest) -> TerminalMessage:
        if request.kind == RequestKind.SINGLE_FILE:
            name = Path(request.path).name or request.path
            result = await self.engine.analyze_file(request.path, request.mode)
        else:
            name = PASTED_CONTRACT_NAME
            result = await self.engine.analyze_text(request.text, request.mode)

        self.aggregator.on_outcome(self._outcome(name, result))

        if result.success:
            return TerminalMessage(text=result.summary or NO_OUTPUT_MESSAGE)
        return TerminalMessage(text=result.error or "An unknown error occurred during analysis.", ok=False)

    @staticmethod
    def _outcome(name: str, result: EngineResult) -> FileOutcome:
        # Default and Verbose runs print no record; a clean exit is still a Success
        if result.success:
            return decode(result.raw_result, file=name, elapsed_ms=result.elapsed_ms)
        return decode_error(result.error, file=name, elapsed_ms=result.elapsed_ms)
