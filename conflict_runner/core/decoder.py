"""
Result Decoder — turns the analyzer's RESULT_CSV record into a FileOutcome.

Wire format (semicolon separated, positional):

    time_ms;states;transitions;individuals;actions;conflicting;conflict_count;
    automaton_size_mb;max_memory_mb;status

Decoding is best-effort. A missing or empty position becomes the "-"
placeholder and nothing here ever raises on malformed input.
"""

from __future__ import annotations

import re
from typing import Optional

from conflict_runner.models.types import PLACEHOLDER, FileOutcome, FileStatus, ProgressEvent

SEPARATOR = ";"

# Position of each attribute in the record
TIME_MS = 0
STATES = 1
TRANSITIONS = 2
INDIVIDUALS = 3
ACTIONS = 4
CONFLICTING = 5
CONFLICT_COUNT = 6
AUTOMATON_SIZE = 7
MAX_MEMORY = 8
STATUS = 9

_LINE_BREAKS = re.compile(r"\r\n|\r|\n")


def _field(parts: list[str], index: int) -> str:
    if index < len(parts) and parts[index]:
        return parts[index]
    return PLACEHOLDER


def _elapsed_text(elapsed_ms: Optional[int]) -> str:
    return str(elapsed_ms) if elapsed_ms is not None else PLACEHOLDER


def decode(raw_result: Optional[str], file: str = "", elapsed_ms: Optional[int] = None) -> FileOutcome:
    """Decode a Success record. elapsed_ms is the fallback for an empty time field."""
    parts = (raw_result or "").split(SEPARATOR)

    time_ms = _field(parts, TIME_MS)
    if time_ms == PLACEHOLDER:
        time_ms = _elapsed_text(elapsed_ms)

    return FileOutcome(
        file=file,
        status=FileStatus.SUCCESS,
        time_ms=time_ms,
        states=_field(parts, STATES),
        transitions=_field(parts, TRANSITIONS),
        individuals=_field(parts, INDIVIDUALS),
        actions=_field(parts, ACTIONS),
        conflicting=len(parts) > CONFLICTING and parts[CONFLICTING] == "1",
        conflict_count=_field(parts, CONFLICT_COUNT),
        automaton_size_mb=_field(parts, AUTOMATON_SIZE),
        max_memory_mb=_field(parts, MAX_MEMORY),
    )


def single_line(text: str) -> str:
    """Collapse every CRLF, CR and LF into a single space."""
    return _LINE_BREAKS.sub(" ", text)


def decode_error(message: Optional[str], file: str = "", elapsed_ms: Optional[int] = None) -> FileOutcome:
    """Build the Error row for a failed file. info is always single-line."""
    return FileOutcome(
        file=file,
        status=FileStatus.ERROR,
        time_ms=_elapsed_text(elapsed_ms),
        info=single_line(message or "Unknown error"),
    )


def decode_event(event: ProgressEvent) -> FileOutcome:
    """Decode a terminal channel event. A Success without a record counts as an Error."""
    if event.status == FileStatus.SUCCESS and event.raw_result:
        return decode(event.raw_result, file=event.file, elapsed_ms=event.elapsed_ms)
    if event.status == FileStatus.SUCCESS:
        return decode_error(None, file=event.file, elapsed_ms=event.elapsed_ms)
    if event.status == FileStatus.ERROR:
        return decode_error(event.raw_result, file=event.file, elapsed_ms=event.elapsed_ms)
    raise ValueError(f"Cannot decode non-terminal event for {event.file!r} ({event.status.value})")
