"""Indexing runs: a scan worker process streaming batches into the library.

    worker process                      calling thread
    ==============                      ==============
    scan_photos(target)
      -> BatchEmitter --(queue)-->      library.merge(batch)
      -> close(): tail + "done"  -->    run complete, snapshot

One producer, one consumer per run; a second run while one is active is
refused. Batches merged before a worker crash stay in the library, and a
rerun does not duplicate them because merge is idempotent.
"""

import logging
import multiprocessing
import queue
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

import config as cfg
from activity import ActivityReporter
from emitter import BatchEmitter
from library import PhotoLibrary
from records import Photo
from scanner import ScanStats, scan_photos

logger = logging.getLogger(__name__)

MODES = ("defaults", "full")


class IndexingInProgress(Exception):
    pass


class IndexerFailed(Exception):
    pass


@dataclass
class IndexResult:
    mode: str
    batches: int = 0
    received: int = 0
    added: int = 0
    files: int = 0
    dirs: int = 0
    exit_code: int | None = None
    duration_s: float = 0.0
    errors: list[str] = field(default_factory=list)


def scan_target(root: Path, mode: str) -> Path:
    if mode not in MODES:
        raise ValueError(f"Unknown indexing mode: {mode}")
    return root / cfg.FAVORITES_FOLDER_NAME if mode == "defaults" else root


def scan_worker(
    root: str,
    mode: str,
    channel,
    batch_size: int,
    excluded: set[str],
    extensions: set[str],
) -> None:
    """Worker entry point. Exits non-zero if the scan fails."""
    try:
        target = scan_target(Path(root), mode)
        stats = ScanStats()
        emitter = BatchEmitter(channel.put, batch_size)
        emitter.extend(scan_photos(target, excluded, extensions, stats))
        emitter.close(files=stats.files, dirs=stats.dirs)
    except Exception:
        logger.exception("Indexer worker failed")
        sys.exit(1)


class Indexer:
    def __init__(
        self,
        root: Path,
        library: PhotoLibrary,
        reporter: ActivityReporter | None = None,
    ):
        self.root = Path(root)
        self.library = library
        self.reporter = reporter or ActivityReporter("indexer")
        self._running = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._running.locked()

    def run(self, mode: str) -> IndexResult:
        """Run one scan to completion, merging batches as they arrive."""
        scan_target(self.root, mode)
        if not self._running.acquire(blocking=False):
            raise IndexingInProgress(f"an indexing run is already active ({mode} refused)")
        try:
            with self.reporter.report(f"Indexing [{mode}]"):
                return self._run(mode)
        finally:
            self._running.release()

    def _run(self, mode: str) -> IndexResult:
        logger.info("Indexer [%s] started, scanning %s", mode, scan_target(self.root, mode))
        started = time.monotonic()
        result = IndexResult(mode=mode)

        ctx = multiprocessing.get_context("spawn")
        channel = ctx.Queue(maxsize=cfg.INDEX_QUEUE_MAXSIZE)
        proc = ctx.Process(
            target=scan_worker,
            args=(
                str(self.root),
                mode,
                channel,
                cfg.BATCH_SIZE,
                set(cfg.EXCLUDED_FOLDER_NAMES),
                set(cfg.SUPPORTED_EXTENSIONS),
            ),
            name=f"indexer-{mode}",
            daemon=True,
        )
        proc.start()

        try:
            done = self._consume(channel, proc, result)
        finally:
            proc.join(cfg.INDEX_DONE_GRACE_SECONDS)
            if proc.is_alive():
                logger.warning("Indexer [%s] did not exit, terminating", mode)
                proc.terminate()
                proc.join()
            result.exit_code = proc.exitcode
            result.duration_s = round(time.monotonic() - started, 3)
            self.library.snapshot_if_dirty()

        if not done or proc.exitcode != 0:
            raise IndexerFailed(
                f"indexer [{mode}] exited with {proc.exitcode} "
                f"({'final flush received' if done else 'no final flush'}); "
                f"{result.added} photos merged before the failure"
            )
        logger.info(
            "Indexer [%s] finished: %d files in %d dirs, %d new (%.1fs)",
            mode, result.files, result.dirs, result.added, result.duration_s,
        )
        return result

    def _consume(self, channel, proc, result: IndexResult) -> bool:
        """Merge batches until the final flush. False if the worker died first."""
        exited_at: float | None = None
        while True:
            try:
                msg = channel.get(timeout=cfg.INDEX_POLL_SECONDS)
            except queue.Empty:
                if proc.is_alive():
                    continue
                # Give the feeder thread a moment to deliver anything still queued.
                if exited_at is None:
                    exited_at = time.monotonic()
                elif time.monotonic() - exited_at > cfg.INDEX_DONE_GRACE_SECONDS:
                    return False
                continue

            kind = msg.get("type")
            if kind == "batch":
                photos = [Photo.from_dict(p) for p in msg.get("photos", [])]
                added = self.library.merge(photos)
                result.batches += 1
                result.received += len(photos)
                result.added += added
                self.reporter.set_progress(
                    batches=result.batches, received=result.received, added=result.added,
                )
            elif kind == "done":
                result.files = msg.get("files", 0)
                result.dirs = msg.get("dirs", 0)
                return True
            else:
                logger.warning("Ignoring unknown indexer message: %r", kind)
