"""
FastAPI Server — Contract conflict-analysis run orchestrator.

Architecture:
  1. EventChannel — engine pushes progress / log / safety notifications
  2. RunAggregator — subscribed to progress + log, owns the current run
  3. SafetyMonitor — subscribed to safety, aborts the run on memory overflow
  4. JobDispatcher — sends one request at a time to the engine backend
  5. SSE stream — every channel event plus a run snapshot, in real time

Single file and pasted text requests are answered synchronously. A
directory run is claimed immediately and executed as a background task;
clients follow it on /api/stream.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from conflict_runner.core.aggregator import RunAggregator
from conflict_runner.core.dispatcher import JobDispatcher, RunInProgressError
from conflict_runner.core.engine_factory import create_engine
from conflict_runner.core.engine_interface import EngineBackend
from conflict_runner.core.safety import SafetyMonitor
from conflict_runner.models.events import EventChannel, Topic, to_sse
from conflict_runner.models.types import (
    AnalysisMode,
    AnalysisRequest,
    DirectoryRequest,
    PastedTextRequest,
    SingleFileRequest,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
STREAM_END = "data: {\"topic\": \"end\"}\n\n"


# ═══════════════════════════════════════════════════════════
# Request/Response Models
# ═══════════════════════════════════════════════════════════

class AnalyzeFileRequest(BaseModel):
    path: str
    mode: AnalysisMode = AnalysisMode.DEFAULT


class AnalyzeTextRequest(BaseModel):
    text: str
    mode: AnalysisMode = AnalysisMode.DEFAULT


class AnalyzeDirectoryRequest(BaseModel):
    path: str


class AnalysisResponse(BaseModel):
    message: str
    ok: bool
    aborted: bool
    run: dict


class StartedResponse(BaseModel):
    message: str
    run: dict


class PickDirectoryResponse(BaseModel):
    path: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    engine_ready: bool


# ═══════════════════════════════════════════════════════════
# App Setup
# ═══════════════════════════════════════════════════════════

def create_app(engine: Optional[EngineBackend] = None, channel: Optional[EventChannel] = None) -> FastAPI:
    """Wire channel, engine, aggregator, monitor and dispatcher into an app."""
    channel = channel or (engine.channel if engine else EventChannel())
    engine = engine or create_engine(channel)

    aggregator = RunAggregator()
    aggregator.attach(channel)
    monitor = SafetyMonitor(aggregator)
    monitor.attach(channel)
    dispatcher = JobDispatcher(engine, aggregator)

    # Open SSE streams; each gets a None sentinel when a background run ends
    stream_queues: set[asyncio.Queue] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        monitor.detach()
        aggregator.detach()
        await engine.cleanup()

    app = FastAPI(
        title="ConflictRunner",
        description="Drives the contract conflict analyzer and streams its progress",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.channel = channel
    app.state.engine = engine
    app.state.aggregator = aggregator
    app.state.monitor = monitor
    app.state.dispatcher = dispatcher

    def _claim(request: AnalysisRequest) -> None:
        try:
            dispatcher.prepare(request)
        except RunInProgressError as e:
            raise HTTPException(409, str(e)) from e

    async def _run_in_background(request: AnalysisRequest) -> None:
        try:
            message = await dispatcher.execute(request)
            logger.info("Background %s run finished: %s", request.kind.value, message.text)
        finally:
            # Same path as the frames, so the sentinel lands behind them
            loop = asyncio.get_running_loop()
            for queue in list(stream_queues):
                loop.call_soon_threadsafe(queue.put_nowait, None)

    async def _respond(request: AnalysisRequest) -> AnalysisResponse:
        _claim(request)
        message = await dispatcher.execute(request)
        return AnalysisResponse(
            message=message.text,
            ok=message.ok,
            aborted=message.aborted,
            run=aggregator.to_dict(),
        )

    # ═══════════════════════════════════════════════════════════
    # API Endpoints
    # ═══════════════════════════════════════════════════════════

    @app.get("/api/health")
    async def health():
        return HealthResponse(
            status="ok",
            version=VERSION,
            engine_ready=await engine.health_check(),
        )

    @app.post("/api/analyze/file")
    async def analyze_file(body: AnalyzeFileRequest):
        """Analyze one contract file and return its summary."""
        return await _respond(SingleFileRequest(path=body.path, mode=body.mode))

    @app.post("/api/analyze/text")
    async def analyze_text(body: AnalyzeTextRequest):
        """Analyze a pasted contract and return its summary."""
        if not body.text.strip():
            raise HTTPException(400, "Please paste a contract before analyzing.")
        return await _respond(PastedTextRequest(text=body.text, mode=body.mode))

    @app.post("/api/analyze/directory")
    async def analyze_directory(body: AnalyzeDirectoryRequest, background_tasks: BackgroundTasks):
        """Start a batch run over every contract in a directory."""
        request = DirectoryRequest(path=body.path)
        _claim(request)
        background_tasks.add_task(_run_in_background, request)
        return StartedResponse(message="Batch analysis started", run=aggregator.to_dict())

    @app.post("/api/pick-directory")
    async def pick_directory():
        return PickDirectoryResponse(path=await engine.pick_directory())

    @app.get("/api/run")
    async def get_run():
        return aggregator.to_dict()

    @app.get("/api/logs")
    async def get_logs():
        return {"logs": [entry.to_dict() for entry in aggregator.logs()]}

    @app.get("/api/stream")
    async def stream_events():
        """SSE endpoint -- streams channel events and run snapshots in real time."""
        queue: asyncio.Queue = asyncio.Queue()
        loop = asyncio.get_running_loop()

        def forward(topic: Topic):
            def put(payload):
                # The aggregator subscribed first, so its snapshot already
                # reflects this payload.
                frame = to_sse(topic.value, payload)
                if topic != Topic.LOG:
                    frame += to_sse("run", aggregator.to_dict())
                loop.call_soon_threadsafe(queue.put_nowait, frame)
            return put

        async def event_generator():
            stream_queues.add(queue)
            try:
                with channel.session({topic: forward(topic) for topic in Topic}):
                    yield to_sse("run", aggregator.to_dict())
                    while True:
                        frame = await queue.get()
                        if frame is None:
                            yield to_sse("run", aggregator.to_dict())
                            yield STREAM_END
                            break
                        yield frame
            finally:
                stream_queues.discard(queue)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app


def configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ═══════════════════════════════════════════════════════════
# Run
# ═══════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn

    configure_logging()
    uvicorn.run(
        create_app(),
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
    )
