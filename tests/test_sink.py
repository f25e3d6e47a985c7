"""Tests for the result sink writer and reader (no host needed)."""

import pytest

from reaper_harness.errors import SinkFormatError
from reaper_harness.models import OutcomeTag, RunManifest, StepResult
from reaper_harness.sink import (
    ResultSink,
    SinkReader,
    format_result,
    read_sink,
    sink_path,
)


def _lines(path):
    return path.read_text(encoding="utf-8").splitlines()


# ============================================================================
# Writer
# ============================================================================

class TestResultSink:
    """Test the in-host writer."""

    def test_open_writes_header(self, sink_dir):
        with ResultSink.open(sink_dir, "run1", 3) as sink:
            assert sink.path == sink_dir / "run1.results"
        assert _lines(sink_dir / "run1.results") == ["RUN | run1 | 3"]

    def test_records_are_visible_before_close(self, sink_dir):
        sink = ResultSink.open(sink_dir, "run1", 2)
        sink.record(StepResult.pass_(0, "init"))
        sink.record(StepResult.fail(1, "check", "boom"))

        # Still open: everything must already be on disk.
        assert _lines(sink.path) == [
            "RUN | run1 | 2",
            "0 | init | PASS | ",
            "1 | check | FAIL | boom",
        ]
        sink.close()

    def test_out_of_order_record_rejected(self, sink_dir):
        with ResultSink.open(sink_dir, "run1", 2) as sink:
            with pytest.raises(SinkFormatError):
                sink.record(StepResult.pass_(1, "skipped-ahead"))
            sink.record(StepResult.pass_(0, "first"))
            with pytest.raises(SinkFormatError):
                sink.record(StepResult.pass_(0, "duplicate"))
            assert sink.next_index == 1

    def test_mark_complete_is_idempotent(self, sink_dir):
        manifest = RunManifest("run1", 0)
        with ResultSink.open(sink_dir, "run1", 0) as sink:
            sink.mark_complete(manifest)
            sink.mark_complete(manifest)
            assert sink.complete
        assert manifest.completion_marker
        assert _lines(sink_dir / "run1.results") == ["RUN | run1 | 0", "COMPLETE | 0"]

    def test_no_records_after_complete(self, sink_dir):
        with ResultSink.open(sink_dir, "run1", 0) as sink:
            sink.mark_complete()
            with pytest.raises(SinkFormatError):
                sink.record(StepResult.pass_(0, "late"))

    def test_run_id_is_never_reused(self, sink_dir):
        ResultSink.open(sink_dir, "run1", 1).close()
        with pytest.raises(FileExistsError):
            ResultSink.open(sink_dir, "run1", 1)

    def test_pass_record_has_empty_message(self):
        line = format_result(StepResult(0, "ok", OutcomeTag.PASS, "ignored"))
        assert line == "0 | ok | PASS | "


class TestSinkPath:
    """Storage location derivation."""

    def test_distinct_run_ids_get_distinct_files(self, sink_dir):
        assert sink_path(sink_dir, "a") != sink_path(sink_dir, "b")

    @pytest.mark.parametrize("bad", ["", "../escape", "a/b", "a b", "a|b"])
    def test_invalid_run_ids_rejected(self, sink_dir, bad):
        with pytest.raises(ValueError):
            sink_path(sink_dir, bad)


# ============================================================================
# Reader
# ============================================================================

class TestSinkReader:
    """Test the launcher-side incremental reader."""

    def test_round_trip_preserves_names_messages_and_order(self, sink_dir):
        written = [
            StepResult.pass_(0, "plain"),
            StepResult.fail(1, "pipe | in name", "expected 1 | got 2"),
            StepResult.aborted(2, "multi\nline", "Traceback\n  line 1\r\n  line 2"),
            StepResult.fail(3, "back\\slash", "C:\\path\\n"),
            StepResult.pass_(4, " padded "),
            StepResult.fail(5, "", " trailing space "),
        ]
        with ResultSink.open(sink_dir, "rt", len(written)) as sink:
            for r in written:
                sink.record(r)
            sink.mark_complete()

        manifest, results = read_sink(sink_dir / "rt.results")

        assert results == written
        assert manifest == RunManifest("rt", len(written), True)

    def test_poll_returns_only_new_results(self, sink_dir):
        sink = ResultSink.open(sink_dir, "inc", 2)
        reader = SinkReader(sink.path)

        assert reader.poll() == []
        sink.record(StepResult.pass_(0, "one"))
        assert [r.step_name for r in reader.poll()] == ["one"]
        assert reader.poll() == []
        sink.record(StepResult.pass_(1, "two"))
        sink.mark_complete()
        assert [r.step_name for r in reader.poll()] == ["two"]
        assert reader.completed
        assert reader.total_steps == 2
        sink.close()

    def test_missing_file_reads_as_nothing_yet(self, sink_dir):
        reader = SinkReader(sink_dir / "absent.results")
        assert reader.poll() == []
        assert not reader.completed
        assert reader.run_id == "absent"

    def test_partial_line_waits_for_newline(self, sink_dir):
        path = sink_dir / "partial.results"
        path.write_text("RUN | partial | 1\n0 | first | PA")
        reader = SinkReader(path)

        assert reader.poll() == []
        with open(path, "a") as fh:
            fh.write("SS | \n")
        results = reader.poll()
        assert [(r.step_name, r.tag) for r in results] == [("first", OutcomeTag.PASS)]

    def test_header_is_optional(self, sink_dir):
        path = sink_dir / "bare.results"
        path.write_text("0 | a | PASS | \n1 | b | FAIL | boom\nCOMPLETE|2\n")
        manifest, results = read_sink(path)
        assert manifest.completion_marker
        assert manifest.total_steps == 2
        assert results[1].message == "boom"

    def test_compact_complete_line(self, sink_dir):
        path = sink_dir / "empty.results"
        path.write_text("COMPLETE|0\n")
        manifest, results = read_sink(path)
        assert manifest.completion_marker
        assert results == []

    @pytest.mark.parametrize("content", [
        "1 | gap | PASS | \n",
        "0 | a | PASS | \n0 | a | PASS | \n",
        "0 | a | MAYBE | \n",
        "0 | a | PASS\n",
        "COMPLETE | 0\n0 | late | PASS | \n",
        "0 | a | PASS | \nRUN | x | 1\n",
        "0 | a | PASS | \nCOMPLETE | 0\n",
        "x | a | PASS | \n",
        "0 | bad \\q escape | PASS | \n",
    ])
    def test_malformed_storage_rejected(self, sink_dir, content):
        path = sink_dir / "bad.results"
        path.write_text(content)
        with pytest.raises(SinkFormatError):
            read_sink(path)

    def test_runs_do_not_see_each_other(self, sink_dir):
        with ResultSink.open(sink_dir, "left", 1) as left:
            left.record(StepResult.fail(0, "left-step", "nope"))
            left.mark_complete()
        with ResultSink.open(sink_dir, "right", 1) as right:
            right.record(StepResult.pass_(0, "right-step"))

        _, left_results = read_sink(sink_path(sink_dir, "left"))
        manifest, right_results = read_sink(sink_path(sink_dir, "right"))

        assert [r.step_name for r in left_results] == ["left-step"]
        assert [r.step_name for r in right_results] == ["right-step"]
        assert not manifest.completion_marker
