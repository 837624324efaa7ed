"""Tests for core/decoder.py"""

import pytest

from conflict_runner.core.decoder import decode, decode_error, decode_event, single_line
from conflict_runner.models.types import FileStatus, ProgressEvent


class TestDecode:
    def test_full_record(self):
        outcome = decode("120;45;60;3;5;1;2;1.2;30;Success", file="a.rcl")
        assert outcome.file == "a.rcl"
        assert outcome.status == FileStatus.SUCCESS
        assert outcome.time_ms == "120"
        assert outcome.states == "45"
        assert outcome.transitions == "60"
        assert outcome.individuals == "3"
        assert outcome.actions == "5"
        assert outcome.conflicting is True
        assert outcome.conflict_count == "2"
        assert outcome.automaton_size_mb == "1.2"
        assert outcome.max_memory_mb == "30"
        assert outcome.info == ""

    def test_numeric_view(self):
        outcome = decode("120;45;60;3;5;1;2;1.2;30;Success")
        assert outcome.metric("time_ms") == 120
        assert outcome.metric("automaton_size_mb") == pytest.approx(1.2)
        assert outcome.metric("max_memory_mb") == 30

    def test_empty_interior_fields_become_placeholders(self):
        outcome = decode("80;;;;;0;;;;")
        assert outcome.time_ms == "80"
        for name in ("states", "transitions", "individuals", "actions",
                     "conflict_count", "automaton_size_mb", "max_memory_mb"):
            assert getattr(outcome, name) == "-"
            assert outcome.metric(name) is None
        assert outcome.conflicting is False

    def test_short_record(self):
        outcome = decode("120;45")
        assert outcome.states == "45"
        assert outcome.transitions == "-"
        assert outcome.max_memory_mb == "-"
        assert outcome.conflicting is False

    def test_garbage_never_raises(self):
        outcome = decode("this is not a record")
        assert outcome.time_ms == "this is not a record"
        assert outcome.states == "-"
        assert outcome.metric("time_ms") is None

    @pytest.mark.parametrize("flag", ["0", " 1", "1 ", "true", "01", ""])
    def test_conflicting_only_for_literal_one(self, flag):
        outcome = decode(f"1;2;3;4;5;{flag};0;0;0;success")
        assert outcome.conflicting is False

    def test_time_falls_back_to_elapsed(self):
        assert decode(";1;2", elapsed_ms=55).time_ms == "55"
        assert decode(None, elapsed_ms=7).time_ms == "7"
        assert decode(None).time_ms == "-"

    def test_record_time_wins_over_elapsed(self):
        assert decode("120;1", elapsed_ms=999).time_ms == "120"

    def test_unknown_metric_name(self):
        with pytest.raises(KeyError):
            decode("1").metric("file")


class TestDecodeError:
    def test_line_breaks_collapsed(self):
        outcome = decode_error("line1\nline2\r\nline3")
        assert outcome.info == "line1 line2 line3"
        assert outcome.status == FileStatus.ERROR

    def test_lone_carriage_return(self):
        assert decode_error("a\rb").info == "a b"

    def test_crlf_is_one_space(self):
        assert single_line("a\r\n\r\nb") == "a  b"

    def test_empty_message(self):
        assert decode_error("").info == "Unknown error"
        assert decode_error(None).info == "Unknown error"

    def test_metrics_are_placeholders(self):
        outcome = decode_error("boom", file="b.rcl", elapsed_ms=15)
        assert outcome.file == "b.rcl"
        assert outcome.time_ms == "15"
        assert outcome.states == "-"
        assert outcome.conflicting is False


class TestDecodeEvent:
    def test_success_event(self):
        event = ProgressEvent("a.rcl", FileStatus.SUCCESS, "10;1;1;1;1;1;1;0.1;2;success", 11, 1.0)
        outcome = decode_event(event)
        assert outcome.file == "a.rcl"
        assert outcome.conflicting is True

    def test_error_event(self):
        event = ProgressEvent("b.rcl", FileStatus.ERROR, "bad\ninput", 4, 1.0)
        outcome = decode_event(event)
        assert outcome.status == FileStatus.ERROR
        assert outcome.info == "bad input"
        assert outcome.time_ms == "4"

    @pytest.mark.parametrize("raw", [None, ""])
    def test_success_without_record_is_an_error(self, raw):
        outcome = decode_event(ProgressEvent("c.rcl", FileStatus.SUCCESS, raw, 8, 1.0))
        assert outcome.status == FileStatus.ERROR
        assert outcome.info == "Unknown error"
        assert outcome.time_ms == "8"

    def test_non_terminal_event_rejected(self):
        with pytest.raises(ValueError):
            decode_event(ProgressEvent("a.rcl", FileStatus.PROCESSING, progress=0.0))
