# Module: models
# Depends on: (none — leaf module)
#
# Shared data contracts and the event channel used by every core component.

from conflict_runner.models.types import (
    PLACEHOLDER,
    AnalysisMode,
    RequestKind,
    SingleFileRequest,
    PastedTextRequest,
    DirectoryRequest,
    AnalysisRequest,
    FileStatus,
    ProgressEvent,
    LogSeverity,
    LogEntry,
    SafetySignal,
    FileOutcome,
    RunPhase,
    Run,
    TerminalMessage,
)
from conflict_runner.models.events import EventChannel, Subscription, Topic, to_sse
