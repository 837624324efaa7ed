"""Tests for core/aggregator.py"""

import pytest

from conflict_runner.core.aggregator import InvalidTransitionError, RunAggregator
from conflict_runner.core.decoder import decode
from conflict_runner.models.events import Topic
from conflict_runner.models.types import (
    FileStatus,
    LogEntry,
    LogSeverity,
    ProgressEvent,
    RunPhase,
)

OK_RECORD = "120;45;60;3;5;1;2;1.2;30;success"


def processing(name, progress):
    return ProgressEvent(name, FileStatus.PROCESSING, progress=progress)


def success(name, progress, raw=OK_RECORD):
    return ProgressEvent(name, FileStatus.SUCCESS, raw, 12, progress)


def error(name, progress, message="Parse error"):
    return ProgressEvent(name, FileStatus.ERROR, message, 3, progress)


class TestProgressEvent:
    def test_progress_bounds(self):
        with pytest.raises(ValueError):
            ProgressEvent("a.rcl", FileStatus.PROCESSING, progress=1.5)
        with pytest.raises(ValueError):
            ProgressEvent("a.rcl", FileStatus.PROCESSING, progress=-0.1)

    def test_payload_round_trip(self):
        payload = {"file": "a.rcl", "status": "Success", "result": OK_RECORD, "elapsed_ms": 9, "progress": 1}
        event = ProgressEvent.from_payload(payload)
        assert event.status == FileStatus.SUCCESS
        assert event.to_dict() == {**payload, "progress": 1.0}


class TestOutcomes:
    def test_only_terminal_events_recorded_in_arrival_order(self, channel, aggregator):
        aggregator.reset()
        for event in [
            processing("b.rcl", 0.0),
            error("b.rcl", 0.5),
            processing("a.rcl", 0.5),
            ProgressEvent("c.rcl", FileStatus.QUEUED, progress=0.5),
            success("a.rcl", 1.0),
        ]:
            channel.emit(Topic.PROGRESS, event)

        run = aggregator.snapshot()
        assert [(o.file, o.status) for o in run.outcomes] == [
            ("b.rcl", FileStatus.ERROR),
            ("a.rcl", FileStatus.SUCCESS),
        ]
        assert run.current_file == "a.rcl"
        assert run.current_progress == 1.0

    def test_processing_may_recur(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(processing("a.rcl", 0.0))
        aggregator.on_progress(processing("a.rcl", 0.0))
        aggregator.on_progress(success("a.rcl", 1.0))
        assert len(aggregator.snapshot().outcomes) == 1

    def test_duplicate_terminal_events_are_both_kept(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(error("a.rcl", 1.0))
        aggregator.on_progress(success("a.rcl", 1.0))
        statuses = [o.status for o in aggregator.snapshot().outcomes]
        assert statuses == [FileStatus.ERROR, FileStatus.SUCCESS]

    def test_snapshot_is_a_copy(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(success("a.rcl", 0.5))
        before = aggregator.snapshot()
        aggregator.on_progress(success("b.rcl", 1.0))
        assert len(before.outcomes) == 1
        assert len(aggregator.snapshot().outcomes) == 2

    def test_channel_success_without_record_is_an_error(self, channel, aggregator):
        aggregator.reset()
        channel.emit(Topic.PROGRESS, success("a.rcl", 1.0, raw=None))
        (outcome,) = aggregator.snapshot().outcomes
        assert outcome.status == FileStatus.ERROR
        assert outcome.info == "Unknown error"

    def test_direct_outcome_is_kept_as_given(self, aggregator):
        aggregator.reset()
        aggregator.on_outcome(decode(None, file="a.rcl", elapsed_ms=40))
        run = aggregator.snapshot()
        assert [(o.file, o.status) for o in run.outcomes] == [("a.rcl", FileStatus.SUCCESS)]
        assert run.current_file == "a.rcl"
        assert run.current_progress == 1.0

    def test_direct_outcome_dropped_after_abort(self, aggregator):
        aggregator.reset()
        aggregator.abort("memory")
        aggregator.on_outcome(decode(None, file="a.rcl"))
        assert aggregator.snapshot().outcomes == ()

    def test_events_before_any_run_are_dropped(self, aggregator):
        aggregator.on_progress(success("a.rcl", 1.0))
        run = aggregator.snapshot()
        assert run.phase == RunPhase.IDLE
        assert run.outcomes == ()


class TestProgress:
    def test_monotonic_sequence(self, aggregator):
        aggregator.reset()
        observed = []
        for value in (0.0, 0.3, 0.3, 0.7, 1.0):
            aggregator.on_progress(processing("a.rcl", value))
            observed.append(aggregator.snapshot().current_progress)
        assert observed == sorted(observed)
        assert aggregator.snapshot().progress_regressions == 0

    def test_decrease_is_flagged_not_applied(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(processing("a.rcl", 0.7))
        aggregator.on_progress(error("b.rcl", 0.2))
        run = aggregator.snapshot()
        assert run.current_progress == 0.7
        assert run.progress_regressions == 1
        assert run.current_file == "b.rcl"
        assert [o.file for o in run.outcomes] == ["b.rcl"]


class TestLifecycle:
    def test_reset_clears_previous_run(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(success("a.rcl", 1.0))
        aggregator.on_log(LogEntry("2024-01-01 00:00:00", LogSeverity.MINIMAL, "hello"))
        aggregator.finish("done")

        aggregator.reset()
        run = aggregator.snapshot()
        assert run.phase == RunPhase.RUNNING
        assert run.outcomes == ()
        assert run.message is None
        assert run.current_progress == 0.0
        assert aggregator.logs() == []

    def test_finish_completes(self, aggregator):
        aggregator.reset()
        aggregator.finish("2 files processed")
        run = aggregator.snapshot()
        assert run.phase == RunPhase.COMPLETED
        assert run.message == "2 files processed"
        assert run.failed is False

    def test_finish_with_error_keeps_outcomes(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(success("a.rcl", 0.5))
        aggregator.finish("Failed to save results", failed=True)
        run = aggregator.snapshot()
        assert run.phase == RunPhase.COMPLETED
        assert run.failed is True
        assert len(run.outcomes) == 1

    def test_progress_after_completion_still_recorded(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(error("a.rcl", 0.5))
        aggregator.finish("2 files processed")
        aggregator.on_progress(success("b.rcl", 1.0))
        run = aggregator.snapshot()
        assert run.phase == RunPhase.COMPLETED
        assert [o.file for o in run.outcomes] == ["a.rcl", "b.rcl"]

    def test_abort_is_irrevocable(self, aggregator):
        aggregator.reset()
        aggregator.on_progress(success("a.rcl", 0.5))
        aggregator.abort("memory")
        aggregator.on_progress(success("b.rcl", 1.0))
        aggregator.finish("2 files processed")
        run = aggregator.snapshot()
        assert run.phase == RunPhase.ABORTED
        assert run.message == "memory"
        assert run.aborted_by_safety is True
        assert [o.file for o in run.outcomes] == ["a.rcl"]

    def test_abort_after_completion_is_ignored(self, aggregator):
        aggregator.reset()
        aggregator.finish("2 files processed")
        aggregator.abort("memory")
        run = aggregator.snapshot()
        assert run.phase == RunPhase.COMPLETED
        assert run.message == "2 files processed"
        assert run.aborted_by_safety is False

    def test_new_run_after_abort(self, aggregator):
        aggregator.reset()
        aggregator.abort("memory")
        aggregator.reset()
        assert aggregator.phase == RunPhase.RUNNING
        assert aggregator.snapshot().aborted_by_safety is False

    def test_reset_while_running_is_invalid(self, aggregator):
        aggregator.reset()
        with pytest.raises(InvalidTransitionError):
            aggregator.reset()

    def test_finish_without_run_is_invalid(self):
        with pytest.raises(InvalidTransitionError):
            RunAggregator().finish("nothing ran")

    def test_logs_are_append_only(self, channel, aggregator):
        aggregator.reset()
        channel.emit(Topic.LOG, LogEntry("t1", LogSeverity.MINIMAL, "one"))
        channel.emit(Topic.LOG, LogEntry("t2", LogSeverity.NECESSARY, "two"))
        assert [e.message for e in aggregator.logs()] == ["one", "two"]

    def test_detach_stops_delivery(self, channel):
        agg = RunAggregator()
        agg.attach(channel)
        agg.attach(channel)
        assert channel.subscriber_count(Topic.PROGRESS) == 1
        agg.detach()
        agg.reset()
        channel.emit(Topic.PROGRESS, success("a.rcl", 1.0))
        assert agg.snapshot().outcomes == ()
