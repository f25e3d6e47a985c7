"""
Result Sink — durable, append-only channel out of the host process

The in-host runner writes one line per executed step and a final COMPLETE
sentinel; every line is flushed and fsync'ed before the call returns, so a
crash loses at most the record being written. The launcher reads the same
file by polling. Lines are never rewritten, which makes concurrent reads
safe without locking.

Format (one record per line, " | " separated):

    RUN | <run_id> | <total_steps>
    <sequence_index> | <step_name> | <PASS|FAIL|ABORTED> | <message>
    COMPLETE | <total_steps>
"""

import logging
import os
import re
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import SinkFormatError
from .models import OutcomeTag, RunManifest, StepResult

logger = logging.getLogger(__name__)

SEPARATOR = " | "
HEADER_TAG = "RUN"
COMPLETE_TAG = "COMPLETE"
SINK_SUFFIX = ".results"

RUN_ID_RE = re.compile(r'^[A-Za-z0-9_-]+$')


def new_run_id() -> str:
    return uuid.uuid4().hex


def sink_path(sink_dir, run_id: str) -> Path:
    """Return the storage path for run_id. The only place it is derived."""
    if not RUN_ID_RE.match(run_id or ""):
        raise ValueError(f"Invalid run id {run_id!r}: use letters, digits, '-' or '_'")
    return Path(sink_dir) / f"{run_id}{SINK_SUFFIX}"


# ============================================================================
# Line encoding
# ============================================================================

_ESCAPES = {"\\": "\\\\", "|": "\\|", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", "|": "|", "n": "\n", "r": "\r"}


def _escape(text: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def _split_fields(line: str) -> List[str]:
    """Split on unescaped '|' and unescape each field."""
    fields = []
    buf = []
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            if i + 1 >= len(line) or line[i + 1] not in _UNESCAPES:
                raise SinkFormatError(f"Bad escape sequence in sink line: {line!r}")
            buf.append(_UNESCAPES[line[i + 1]])
            i += 2
            continue
        if ch == "|":
            fields.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    fields.append("".join(buf))
    return fields


def _trim(text: str, left: bool, right: bool) -> str:
    # Strip exactly the separator padding so free text round-trips.
    if left and text.startswith(" "):
        text = text[1:]
    if right and text.endswith(" "):
        text = text[:-1]
    return text


def format_header(run_id: str, total_steps: int) -> str:
    return SEPARATOR.join([HEADER_TAG, _escape(run_id), str(total_steps)])


def format_result(result: StepResult) -> str:
    message = "" if result.tag is OutcomeTag.PASS else result.message
    return SEPARATOR.join([
        str(result.sequence_index),
        _escape(result.step_name),
        result.tag.value,
        _escape(message),
    ])


def format_complete(total_steps: int) -> str:
    return SEPARATOR.join([COMPLETE_TAG, str(total_steps)])


def _parse_count(text: str, line: str) -> int:
    try:
        value = int(text.strip())
    except ValueError:
        raise SinkFormatError(f"Expected a number in sink line: {line!r}")
    if value < 0:
        raise SinkFormatError(f"Negative number in sink line: {line!r}")
    return value


# ============================================================================
# Writer (in-host)
# ============================================================================

class ResultSink:
    """Append-only writer for one run's sink file."""

    def __init__(self, path: Path, manifest: RunManifest, handle):
        self.path = path
        self.manifest = manifest
        self._handle = handle
        self._next_index = 0

    @classmethod
    def open(cls, sink_dir, run_id: str, total_steps: int) -> "ResultSink":
        """Create the sink file for a new run and write its header.

        Refuses to reuse an existing file: a run id is never written twice.
        """
        path = sink_path(sink_dir, run_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(path, "x", encoding="utf-8", newline="\n")
        sink = cls(path, RunManifest(run_id=run_id, total_steps=total_steps), handle)
        sink._write_line(format_header(run_id, total_steps))
        logger.debug(f"Result sink opened at {path}")
        return sink

    @property
    def next_index(self) -> int:
        return self._next_index

    @property
    def complete(self) -> bool:
        return self.manifest.completion_marker

    def record(self, result: StepResult) -> None:
        """Persist one step result. Returns only after the line is on disk."""
        if self.complete:
            raise SinkFormatError("Run already marked complete; no more results accepted")
        if result.sequence_index != self._next_index:
            raise SinkFormatError(
                f"Out of order result: expected index {self._next_index}, "
                f"got {result.sequence_index}"
            )
        self._write_line(format_result(result))
        self._next_index += 1

    def mark_complete(self, manifest: Optional[RunManifest] = None) -> None:
        """Write the COMPLETE sentinel. Calling it again is a no-op."""
        if self.complete:
            return
        if manifest is not None:
            self.manifest.total_steps = manifest.total_steps
        self._write_line(format_complete(self.manifest.total_steps))
        self.manifest.completion_marker = True
        if manifest is not None:
            manifest.completion_marker = True

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()

    def _write_line(self, line: str) -> None:
        self._handle.write(line + "\n")
        self._handle.flush()
        os.fsync(self._handle.fileno())

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


# ============================================================================
# Reader (launcher side)
# ============================================================================

class SinkReader:
    """Incremental reader for a sink file that may still be growing.

    Only newline-terminated lines are consumed; a partially written last
    line stays in the file until a later poll sees it completed.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.run_id = self.path.name[: -len(SINK_SUFFIX)] if self.path.name.endswith(SINK_SUFFIX) else self.path.stem
        self.total_steps: Optional[int] = None
        self.results: List[StepResult] = []
        self.completed = False
        self._offset = 0
        self._lines_seen = 0

    @property
    def manifest(self) -> RunManifest:
        total = self.total_steps if self.total_steps is not None else len(self.results)
        return RunManifest(self.run_id, total, self.completed)

    def poll(self) -> List[StepResult]:
        """Consume lines written since the last poll and return new results."""
        try:
            with open(self.path, "rb") as fh:
                fh.seek(self._offset)
                data = fh.read()
        except FileNotFoundError:
            return []

        end = data.rfind(b"\n")
        if end < 0:
            return []
        chunk = data[: end + 1]
        self._offset += len(chunk)

        new_results = []
        for raw in chunk.split(b"\n")[:-1]:
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError:
                raise SinkFormatError(f"Sink line is not valid UTF-8: {raw!r}")
            result = self._consume(line)
            if result is not None:
                new_results.append(result)
        return new_results

    def _consume(self, line: str) -> Optional[StepResult]:
        self._lines_seen += 1
        if self.completed:
            raise SinkFormatError(f"Line after COMPLETE sentinel: {line!r}")

        fields = _split_fields(line)
        head = fields[0].strip()

        if head == HEADER_TAG:
            if self._lines_seen != 1 or len(fields) != 3:
                raise SinkFormatError(f"Misplaced or malformed RUN header: {line!r}")
            self.run_id = _trim(fields[1], True, True)
            self.total_steps = _parse_count(fields[2], line)
            return None

        if head == COMPLETE_TAG:
            if len(fields) != 2:
                raise SinkFormatError(f"Malformed COMPLETE sentinel: {line!r}")
            total = _parse_count(fields[1], line)
            if total < len(self.results):
                raise SinkFormatError(
                    f"COMPLETE reports {total} step(s) but {len(self.results)} were recorded"
                )
            self.total_steps = total
            self.completed = True
            return None

        if len(fields) != 4:
            raise SinkFormatError(f"Malformed result line: {line!r}")
        index = _parse_count(fields[0], line)
        if index != len(self.results):
            raise SinkFormatError(
                f"Non-contiguous result: expected index {len(self.results)}, got {index}"
            )
        try:
            tag = OutcomeTag(fields[2].strip())
        except ValueError:
            raise SinkFormatError(f"Unknown outcome tag in sink line: {line!r}")
        result = StepResult(
            sequence_index=index,
            step_name=_trim(fields[1], True, True),
            tag=tag,
            message=_trim(fields[3], True, False),
        )
        self.results.append(result)
        return result


def read_sink(path) -> Tuple[RunManifest, List[StepResult]]:
    """Parse a whole sink file in one go."""
    reader = SinkReader(path)
    reader.poll()
    return reader.manifest, list(reader.results)
