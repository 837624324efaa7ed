"""
Engine Factory — Returns the configured analysis engine backend.

Environment:
  ENGINE_BACKEND=subprocess        backend to use (only the local analyzer ships)
  ANALYZER_COMMAND="analyzer"      analyzer executable, split like a shell command
  ENGINE_TIMEOUT_SECONDS=600       per-invocation timeout; unset means no limit
"""

import logging
import os
import shlex
from typing import Optional

from conflict_runner.core.engine_interface import EngineBackend
from conflict_runner.models.events import EventChannel

logger = logging.getLogger(__name__)

DEFAULT_ANALYZER_COMMAND = "analyzer"


def _timeout_from_env() -> Optional[float]:
    raw = os.environ.get("ENGINE_TIMEOUT_SECONDS", "").strip()
    if not raw:
        return None
    try:
        timeout = float(raw)
    except ValueError as e:
        raise ValueError(f"ENGINE_TIMEOUT_SECONDS must be a number, got {raw!r}") from e
    return timeout if timeout > 0 else None


def create_engine(channel: EventChannel) -> EngineBackend:
    """Factory that returns the engine backend selected by the environment."""
    backend = os.environ.get("ENGINE_BACKEND", "subprocess")

    if backend != "subprocess":
        raise ValueError(f"Unknown ENGINE_BACKEND {backend!r} (expected 'subprocess')")

    command = shlex.split(os.environ.get("ANALYZER_COMMAND", DEFAULT_ANALYZER_COMMAND))
    if not command:
        raise ValueError("ANALYZER_COMMAND is empty")

    from conflict_runner.core.engine import SubprocessEngine
    timeout = _timeout_from_env()
    logger.info("Using subprocess engine: %s (timeout=%s)", " ".join(command), timeout)
    return SubprocessEngine(channel, command=command, timeout=timeout)
