"""
Batch report — the semicolon-separated results file written after a
directory run. One row per analyzed file, in processing order.
"""

from __future__ import annotations

from pathlib import Path

from conflict_runner.core.engine_interface import EngineError

REPORT_FILENAME = "batch_results.csv"
HEADER = (
    "file;time_ms;states;transitions;individuals;actions;conflicting;"
    "conflict_count;automaton_size_mb;max_memory_mb;obs"
)
_EMPTY_METRICS = ";".join(["-"] * 8)


class BatchReport:
    def __init__(self):
        self.rows: list[str] = [HEADER]

    def add_success(self, file_name: str, raw_result: str) -> None:
        self.rows.append(f"{file_name};{raw_result}")

    def add_error(self, file_name: str, elapsed_ms: int, message: str, exit_code: int) -> None:
        obs = message.replace(";", ",").replace("\n", " ")
        self.rows.append(f"{file_name};{elapsed_ms};{_EMPTY_METRICS};{obs} (Exit {exit_code})")

    def render(self) -> str:
        return "\n".join(self.rows) + "\n"

    def save(self, directory: str | Path) -> Path:
        path = Path(directory) / REPORT_FILENAME
        try:
            path.write_text(self.render(), encoding="utf-8")
        except OSError as e:
            raise EngineError(f"Failed to save results: {e}") from e
        return path
