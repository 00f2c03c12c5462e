"""Snapshot files and the periodic flush timer.

Snapshots are plain JSON written to a temp file and renamed into place,
so a crash mid-write leaves the previous snapshot intact.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


def load_json(path: Path, default: Any) -> Any:
    """Read a snapshot, returning default when it is missing or corrupt."""
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        logger.warning("Corrupt snapshot %s, starting empty", path, exc_info=True)
        return default


class SnapshotTimer:
    """Calls flush() every interval seconds on a daemon thread."""

    def __init__(self, flush: Callable[[], Any], interval: float, name: str = "snapshot-timer"):
        self._flush = flush
        self._interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._flush()
            except Exception:
                logger.warning("Periodic snapshot failed", exc_info=True)
