"""
Subprocess engine — runs the analyzer executable as a child process.

Analyzer protocol:
  - invoked as `<analyzer> <contract_file> [-v|-t]`
  - the human-readable summary is printed between FINAL_SUMMARY_START and
    FINAL_SUMMARY_END
  - in Test mode (-t) a `RESULT_CSV:<record>` line carries the metrics
  - the analyzer's memory guard prints `CRITICAL: Memory usage exceeded! ...`
    and exits with status 137

Stdout/stderr lines are forwarded to the EventChannel as log entries while
the process runs. Swap in another EngineBackend in engine_factory.py.
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from conflict_runner.core.batch_report import BatchReport
from conflict_runner.core.engine_interface import (
    EngineBackend,
    EngineError,
    EngineResult,
)
from conflict_runner.models.events import EventChannel, Topic
from conflict_runner.models.types import (
    AnalysisMode,
    FileStatus,
    LogEntry,
    LogSeverity,
    ProgressEvent,
    SafetySignal,
)

logger = logging.getLogger(__name__)

CONTRACT_SUFFIX = ".rcl"
SUMMARY_START = "FINAL_SUMMARY_START"
SUMMARY_END = "FINAL_SUMMARY_END"
RESULT_PREFIX = "RESULT_CSV:"
COMPLETION_LINE = "Analysis completed."
CRITICAL_MARKER = "CRITICAL:"
MEMORY_OVERFLOW_MARKER = "CRITICAL: Memory usage exceeded"
MEMORY_GUARD_EXIT_CODE = 137
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
STREAM_LIMIT = 4 * 1024 * 1024  # conflict traces can exceed the default 64 KiB line limit

_ANSI_CODES = re.compile(r"\x1B\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    return _ANSI_CODES.sub("", text)


# ─────────────────────────────────────────────
# Output parsing
# ─────────────────────────────────────────────

@dataclass
class ProcessOutput:
    """Everything captured from one analyzer invocation."""
    exit_code: int
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    elapsed_ms: int = 0
    memory_diagnostic: Optional[str] = None


def extract_summary(stdout: list[str]) -> str:
    """Lines between the summary markers, or everything but the protocol lines."""
    inside = False
    summary: list[str] = []
    for line in stdout:
        if line == SUMMARY_START:
            inside = True
            continue
        if line == SUMMARY_END:
            inside = False
            continue
        if inside:
            summary.append(line)

    if not summary:
        summary = [
            line for line in stdout
            if not line.startswith(RESULT_PREFIX)
            and line not in (COMPLETION_LINE, SUMMARY_START, SUMMARY_END)
        ]
    return strip_ansi("\n".join(summary)).strip()


def extract_result(stdout: list[str]) -> str:
    """The RESULT_CSV record without its prefix, or "" when absent."""
    for line in stdout:
        trimmed = line.strip()
        if trimmed.startswith(RESULT_PREFIX):
            return trimmed.replace(RESULT_PREFIX, "")
    return ""


def error_message(output: ProcessOutput, default: str) -> str:
    stderr = "\n".join(output.stderr).strip()
    if stderr:
        return strip_ansi(stderr)
    for line in output.stdout:
        if CRITICAL_MARKER in line:
            return strip_ansi(line.strip())
    return default


# ─────────────────────────────────────────────
# SubprocessEngine — async EngineBackend
# ─────────────────────────────────────────────

class SubprocessEngine(EngineBackend):
    """Local analyzer executable driven through asyncio subprocesses."""

    def __init__(
        self,
        channel: EventChannel,
        command: Sequence[str] = ("analyzer",),
        timeout: Optional[float] = None,
    ):
        super().__init__(channel)
        self.command = list(command)
        self.timeout = timeout
        self._processes: set[asyncio.subprocess.Process] = set()

    # ── Notifications ───────────────────────────

    def _emit_log(self, severity: LogSeverity, message: str) -> None:
        self.channel.emit(Topic.LOG, LogEntry(
            timestamp=datetime.now().strftime(LOG_DATE_FORMAT),
            severity=severity,
            message=strip_ansi(message),
        ))

    def _emit_safety(self, diagnostic: str) -> None:
        logger.critical("Analyzer memory guard tripped: %s", diagnostic)
        self.channel.emit(Topic.SAFETY, SafetySignal(diagnostic=diagnostic))

    def _emit_progress(self, event: ProgressEvent) -> None:
        self.channel.emit(Topic.PROGRESS, event)

    # ── Process execution ───────────────────────

    async def _run(
        self,
        contract_path: str,
        flags: Sequence[str],
        forward_logs: bool = True,
    ) -> ProcessOutput:
        argv = [*self.command, contract_path, *flags]
        logger.info("Running analyzer: %s", " ".join(argv))
        start = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise EngineError(f"Failed to spawn analyzer: {e}") from e

        output = ProcessOutput(exit_code=-1)
        self._processes.add(proc)

        async def pump(stream: asyncio.StreamReader, sink: list[str], severity: LogSeverity) -> None:
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                sink.append(line)
                if MEMORY_OVERFLOW_MARKER in line and output.memory_diagnostic is None:
                    output.memory_diagnostic = strip_ansi(line.strip())
                    self._emit_safety(output.memory_diagnostic)
                if forward_logs and line.strip() not in (SUMMARY_START, SUMMARY_END):
                    self._emit_log(severity, line)

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    pump(proc.stdout, output.stdout, LogSeverity.MINIMAL),
                    pump(proc.stderr, output.stderr, LogSeverity.NECESSARY),
                    proc.wait(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            self._kill(proc)
            await proc.wait()
            raise EngineError(f"Execution timed out after {self.timeout}s") from e
        finally:
            self._processes.discard(proc)

        output.exit_code = proc.returncode
        output.elapsed_ms = int((time.perf_counter() - start) * 1000)

        if output.exit_code == MEMORY_GUARD_EXIT_CODE and output.memory_diagnostic is None:
            output.memory_diagnostic = (
                f"Analyzer terminated by its memory guard (exit {MEMORY_GUARD_EXIT_CODE}) "
                f"after {output.elapsed_ms}ms"
            )
            self._emit_safety(output.memory_diagnostic)

        logger.info(
            "Analyzer finished: %s exit=%s in %dms",
            Path(contract_path).name, output.exit_code, output.elapsed_ms,
        )
        return output

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass

    def _to_result(self, output: ProcessOutput) -> EngineResult:
        success = output.exit_code == 0 and output.memory_diagnostic is None
        return EngineResult(
            success=success,
            summary=extract_summary(output.stdout) if success else "",
            raw_result=extract_result(output.stdout) or None,
            error=None if success else error_message(
                output, f"Analysis failed with exit code {output.exit_code}"
            ),
            exit_code=output.exit_code,
            elapsed_ms=output.elapsed_ms,
            memory_exceeded=output.memory_diagnostic is not None,
        )

    # ── EngineBackend ───────────────────────────

    async def analyze_file(self, path: str, mode: AnalysisMode = AnalysisMode.DEFAULT) -> EngineResult:
        if not Path(path).exists():
            raise EngineError(f"File not found: {path}")
        output = await self._run(path, mode.engine_flags)
        return self._to_result(output)

    async def analyze_text(self, text: str, mode: AnalysisMode = AnalysisMode.DEFAULT) -> EngineResult:
        try:
            with tempfile.NamedTemporaryFile(
                mode="w", prefix="contract_", suffix=CONTRACT_SUFFIX,
                delete=False, dir=tempfile.gettempdir(), encoding="utf-8",
            ) as f:
                f.write(text)
                tmp_path = f.name
        except OSError as e:
            raise EngineError(f"Failed to create temp file: {e}") from e

        try:
            output = await self._run(tmp_path, mode.engine_flags)
            return self._to_result(output)
        finally:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass

    async def analyze_directory(self, path: str) -> str:
        folder = Path(path)
        if not folder.is_dir():
            raise EngineError("Path is not a directory")

        try:
            files = sorted(
                p for p in folder.iterdir()
                if p.is_file() and p.suffix == CONTRACT_SUFFIX
            )
        except OSError as e:
            raise EngineError(str(e)) from e

        if not files:
            raise EngineError(f"No {CONTRACT_SUFFIX} files found in the directory")

        total = len(files)
        report = BatchReport()
        logger.info("Batch analysis of %d file(s) in %s", total, folder)

        for i, file_path in enumerate(files):
            name = file_path.name
            self._emit_progress(ProgressEvent(
                file=name, status=FileStatus.PROCESSING, progress=i / total,
            ))

            output = await self._run(str(file_path), AnalysisMode.TEST.engine_flags, forward_logs=False)
            raw = extract_result(output.stdout)

            if output.exit_code == 0 and raw:
                report.add_success(name, raw)
                self._emit_progress(ProgressEvent(
                    file=name, status=FileStatus.SUCCESS, raw_result=raw,
                    elapsed_ms=output.elapsed_ms, progress=(i + 1) / total,
                ))
            else:
                message = error_message(output, "Unknown error")
                report.add_error(name, output.elapsed_ms, message, output.exit_code)
                self._emit_progress(ProgressEvent(
                    file=name, status=FileStatus.ERROR, raw_result=message,
                    elapsed_ms=output.elapsed_ms, progress=(i + 1) / total,
                ))

            if output.memory_diagnostic is not None:
                raise EngineError(
                    f"Batch analysis stopped at {name}: {output.memory_diagnostic}"
                )

        results_path = report.save(folder)
        return f"Batch analysis completed. Results saved to {results_path}"

    async def pick_directory(self) -> Optional[str]:
        return await asyncio.to_thread(_ask_directory)

    async def health_check(self) -> bool:
        executable = self.command[0]
        return shutil.which(executable) is not None or Path(executable).is_file()

    async def cleanup(self) -> None:
        for proc in list(self._processes):
            self._kill(proc)
        self._processes.clear()


def _ask_directory() -> Optional[str]:
    """Native folder dialog. Returns None when cancelled or without a display."""
    try:
        import tkinter
        from tkinter import filedialog
    except ImportError:
        logger.warning("tkinter is not installed; directory picker unavailable")
        return None

    try:
        root = tkinter.Tk()
    except tkinter.TclError as e:
        logger.warning("No display for the directory picker: %s", e)
        return None

    try:
        root.withdraw()
        chosen = filedialog.askdirectory(parent=root, title="Select a folder of contracts")
    finally:
        root.destroy()
    return chosen or None
