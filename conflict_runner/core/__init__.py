# Module: core
# Depends on: models/
#
# Engine boundary + result decoding + run orchestration.

from conflict_runner.core.decoder import decode, decode_error, decode_event
from conflict_runner.core.aggregator import RunAggregator, InvalidTransitionError
from conflict_runner.core.safety import SafetyMonitor, format_safety_message, is_safety_message
from conflict_runner.core.engine_interface import EngineBackend, EngineError, EngineResult
from conflict_runner.core.engine_factory import create_engine
from conflict_runner.core.dispatcher import JobDispatcher, RunInProgressError
