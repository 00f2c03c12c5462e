"""Operation status for the frame service.

The current operation (usually an indexing run), its progress and the
recently finished operations are kept in memory and mirrored to
<activity_dir>/<name>.json so the kiosk or a shell can watch a long scan.
"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_RECENT = 20


class ActivityReporter:
    def __init__(self, name: str, activity_dir: Path | None = None):
        self._name = name
        self._file = activity_dir / f"{name}.json" if activity_dir else None
        self._lock = threading.Lock()
        self._io_lock = threading.Lock()
        self._recent: list[dict] = []
        self._operation: str | None = None
        self._started: float | None = None
        self._progress: dict | None = None
        self._write_state()

    @contextmanager
    def report(self, operation: str):
        """Mark the frame busy with operation for the wrapped block."""
        with self._lock:
            self._operation = operation
            self._started = time.time()
            self._progress = None
        self._write_state()
        status = "ok"
        try:
            yield self
        except BaseException:
            status = "failed"
            raise
        finally:
            finished = time.time()
            with self._lock:
                entry = {
                    "operation": operation,
                    "status": status,
                    "started_at": self._started,
                    "finished_at": finished,
                    "duration_s": round(finished - (self._started or finished), 3),
                    "progress": self._progress,
                }
                self._recent = [entry] + self._recent[: MAX_RECENT - 1]
                self._operation = None
                self._started = None
                self._progress = None
            self._write_state()

    def set_progress(self, **counters) -> None:
        """Replace the progress counters of the current operation."""
        with self._lock:
            self._progress = dict(counters)
        self._write_state()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "name": self._name,
                "state": "busy" if self._operation else "idle",
                "operation": self._operation,
                "started_at": self._started,
                "progress": self._progress,
                "recent": list(self._recent),
                "updated_at": time.time(),
            }

    def _write_state(self) -> None:
        if self._file is None:
            return
        state = self.snapshot()
        tmp = self._file.with_suffix(".tmp")
        try:
            with self._io_lock:
                self._file.parent.mkdir(parents=True, exist_ok=True)
                tmp.write_text(json.dumps(state))
                tmp.replace(self._file)
        except OSError:
            logger.debug("Failed to write activity file: %s", self._file)

    def cleanup(self) -> None:
        """Remove the activity file on shutdown."""
        if self._file is None:
            return
        try:
            self._file.unlink(missing_ok=True)
        except OSError:
            pass
