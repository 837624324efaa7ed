"""Shared fixtures: an in-memory engine double and wired-up run components."""

import asyncio
from typing import Any, Optional

import pytest

from conflict_runner.core.aggregator import RunAggregator
from conflict_runner.core.dispatcher import JobDispatcher
from conflict_runner.core.engine_interface import EngineBackend, EngineError, EngineResult
from conflict_runner.core.safety import SafetyMonitor
from conflict_runner.models.events import EventChannel, Topic
from conflict_runner.models.types import AnalysisMode


class ScriptedEngine(EngineBackend):
    """Engine double. Each call replays `events` on the channel, then answers.

    Like the subprocess engine, it answers straight after its last emit
    without yielding to the event loop.
    """

    def __init__(self, channel: EventChannel):
        super().__init__(channel)
        self.file_results: dict[str, EngineResult] = {}
        self.text_result = EngineResult(success=True, summary="[CONFLICT-FREE] The analyzed contract is conflict-free.")
        self.events: list[tuple[Topic, Any]] = []
        self.directory_message = "2 files processed"
        self.directory_error: Optional[str] = None
        self.picked: Optional[str] = None
        self.healthy = True
        self.calls: list[tuple] = []
        self.cleaned_up = False

    async def _replay(self) -> None:
        for topic, payload in self.events:
            await asyncio.sleep(0)
            self.channel.emit(topic, payload)

    async def analyze_file(self, path: str, mode: AnalysisMode = AnalysisMode.DEFAULT) -> EngineResult:
        self.calls.append(("file", path, mode))
        if path not in self.file_results:
            raise EngineError(f"File not found: {path}")
        await self._replay()
        return self.file_results[path]

    async def analyze_text(self, text: str, mode: AnalysisMode = AnalysisMode.DEFAULT) -> EngineResult:
        self.calls.append(("text", text, mode))
        await self._replay()
        return self.text_result

    async def analyze_directory(self, path: str) -> str:
        self.calls.append(("directory", path))
        await self._replay()
        if self.directory_error:
            raise EngineError(self.directory_error)
        return self.directory_message

    async def pick_directory(self) -> Optional[str]:
        return self.picked

    async def health_check(self) -> bool:
        return self.healthy

    async def cleanup(self) -> None:
        self.cleaned_up = True


@pytest.fixture
def channel():
    return EventChannel()


@pytest.fixture
def aggregator(channel):
    agg = RunAggregator()
    agg.attach(channel)
    yield agg
    agg.detach()


@pytest.fixture
def monitor(channel, aggregator):
    mon = SafetyMonitor(aggregator)
    mon.attach(channel)
    yield mon
    mon.detach()


@pytest.fixture
def engine(channel):
    return ScriptedEngine(channel)


@pytest.fixture
def dispatcher(engine, aggregator, monitor):
    return JobDispatcher(engine, aggregator)
