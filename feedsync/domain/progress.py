"""Progress Reporting and the NDJSON Progress Stream.

ProgressReporter forwards (status, percent) pairs to a callback while
tracking the run state; percentages never go backwards. The NDJSON codec
carries the same information over HTTP, one JSON object per line:

    {"phase": "<run state>", "status": "...", "pct": 42}
    {"phase": "done", "status": "...", "pct": 100, "result": {...}}
    {"phase": "error", "error": "...", "pct": 0}

Architecture:
    - Encoder and decoder are symmetric and transport-agnostic
    - The decoder accepts arbitrary byte boundaries: multibyte characters
      split across reads are reassembled by an incremental UTF-8 decoder
"""

import codecs
import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from feedsync.domain.models import RunState
from feedsync.domain.ports import CloudImportError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]
StateCallback = Callable[[RunState], None]


class ProgressReporter:
    """Monotonic progress forwarding with run-state tracking."""

    def __init__(self, callback: Optional[ProgressCallback] = None, on_state: Optional[StateCallback] = None):
        self.callback = callback
        self.on_state = on_state
        self.state = RunState.IDLE
        self.pct = 0
        self.status = ""

    def transition(self, state: RunState, status: Optional[str] = None, pct: Optional[float] = None) -> None:
        """Enter a new run state, optionally reporting a status line."""
        if self.state.is_terminal and state is not self.state:
            raise RuntimeError(f"Run already finished in state '{self.state.value}'")
        logger.debug(f"Run state {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state is not None:
            self.on_state(state)
        if status is not None:
            self.report(status, pct)

    def report(self, status: str, pct: Optional[float] = None) -> None:
        """Report a status line; pct is clamped to [current, 100]."""
        if pct is not None:
            self.pct = max(self.pct, min(100, int(round(pct))))
        self.status = status
        if self.callback is None:
            return
        try:
            self.callback(status, self.pct)
        except Exception as e:
            # A broken listener must not fail the import
            logger.warning(f"Progress callback raised {type(e).__name__}: {e}")

    def scaled(self, start: float, end: float) -> Callable[[int, int], None]:
        """Progress function mapping (done, total) onto the [start, end] band."""
        def _report(done: int, total: int) -> None:
            fraction = done / total if total else 1.0
            self.report(f"Procesando... {done}/{total}", start + (end - start) * fraction)
        return _report


class NdjsonEncoder:
    """Serializes progress frames as newline-terminated JSON."""

    @staticmethod
    def _line(frame: Dict[str, Any]) -> bytes:
        return (json.dumps(frame, ensure_ascii=False, default=str) + "\n").encode("utf-8")

    def progress(self, phase: str, status: str, pct: int) -> bytes:
        return self._line({"phase": phase, "status": status, "pct": pct})

    def done(self, result: Dict[str, Any], status: str = "Importación completada") -> bytes:
        return self._line({"phase": "done", "status": status, "pct": 100, "result": result})

    def error(self, message: str) -> bytes:
        return self._line({"phase": "error", "error": message, "pct": 0})


class NdjsonDecoder:
    """Incremental NDJSON frame decoder.

    feed() accepts raw bytes in any split and returns the complete frames
    seen so far; close() flushes the trailing partial line. Unparseable
    lines are skipped. A frame with a "result" key sets result; one with an
    "error" key (or phase "error") raises CloudImportError.
    """

    def __init__(self, on_progress: Optional[ProgressCallback] = None):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self.on_progress = on_progress
        self.result: Optional[Dict[str, Any]] = None

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return list(self._handle(lines))

    def close(self) -> List[Dict[str, Any]]:
        self._buffer += self._decoder.decode(b"", final=True)
        lines, self._buffer = [self._buffer], ""
        return list(self._handle(lines))

    def _handle(self, lines: List[str]) -> Iterator[Dict[str, Any]]:
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                frame = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparseable progress line: {line[:80]}")
                continue
            if not isinstance(frame, dict):
                continue

            # A frame carrying "result" or "error" is terminal, with or without a phase.
            if frame.get("phase") == "error" or "error" in frame:
                raise CloudImportError(str(frame.get("error") or "La importación falló en el servidor"))
            if frame.get("phase") == "done" or "result" in frame:
                self.result = frame.get("result")
            elif self.on_progress and "status" in frame:
                self.on_progress(str(frame["status"]), int(frame.get("pct") or 0))
            yield frame
