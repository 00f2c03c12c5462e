"""The frame: library, text cache, indexer and relocator behind one object.

This is everything the HTTP layer needs:

    select_next()            -> Memory(photo, text)
    relocate(path, bucket)   -> new path
    favorite / unfavorite / omit / delete
    reindex(full)            -> False if a run is already active
    existence_check(root)    -> is the photo storage mounted
"""

import logging
import os
import threading
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from urllib.parse import quote

import config as cfg
from activity import ActivityReporter
from generator import TextGenerator
from indexer import Indexer, IndexerFailed, IndexingInProgress
from library import PhotoLibrary
from persist import SnapshotTimer
from records import Photo, TextEntry
from relocation import Bucket, Relocator
from selection import SelectionPolicy
from texts import TextCache, TextService

logger = logging.getLogger(__name__)


class StorageUnavailable(Exception):
    """The photo root is not reachable (e.g. the NAS is not mounted)."""


class LibraryEmpty(Exception):
    """Storage is fine but nothing is indexed yet."""


class StalePhotoError(Exception):
    """Every selection attempt hit a photo that no longer exists."""


@dataclass
class Memory:
    photo: Photo
    text: TextEntry

    def to_payload(self) -> dict:
        return {
            "text": self.text.content,
            "type": self.text.kind,
            "author": self.text.author,
            "date": self.photo.created,
            "imagePathEncoded": quote(self.photo.path, safe=""),
        }


class NightlyReindex:
    """Runs an append-only reindex once a day at cfg.REINDEX_HOUR."""

    def __init__(self, frame: "Frame", interval: float | None = None):
        self._frame = frame
        self._interval = interval or cfg.REINDEX_CHECK_INTERVAL
        self._last_run: date | None = None
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="nightly-reindex", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout)

    def due(self, now: datetime) -> bool:
        return now.hour == cfg.REINDEX_HOUR and self._last_run != now.date()

    def tick(self, now: datetime | None = None) -> bool:
        now = now or datetime.now()
        if not self.due(now):
            return False
        self._last_run = now.date()
        logger.info("Nightly reindex triggered")
        try:
            return self._frame.reindex(full=False)
        except StorageUnavailable:
            logger.error("Nightly reindex skipped: storage not mounted at %s", self._frame.root)
            return False

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.tick()
            except Exception:
                logger.warning("Nightly reindex check failed", exc_info=True)


class Frame:
    def __init__(
        self,
        root: Path | str | None = None,
        library: PhotoLibrary | None = None,
        texts: TextCache | None = None,
        generator: TextGenerator | None = None,
        policy: SelectionPolicy | None = None,
        reporter: ActivityReporter | None = None,
    ):
        self.root = Path(root or cfg.ROOT_DIR)
        self.library = library if library is not None else PhotoLibrary.load()
        self.texts = texts if texts is not None else TextCache.load()
        self.text_service = TextService(
            self.texts, generator or TextGenerator(), is_current=self.library.__contains__,
        )
        self.policy = policy or SelectionPolicy(self.root / cfg.FAVORITES_FOLDER_NAME)
        self.reporter = reporter or ActivityReporter("memory-frame", cfg.ACTIVITY_DIR)
        self.indexer = Indexer(self.root, self.library, self.reporter)
        self.relocator = Relocator(self.root, self.library, self.texts)

        self._reindex_lock = threading.Lock()
        self._reindex_thread: threading.Thread | None = None
        self._snapshot_timer: SnapshotTimer | None = None
        self._nightly: NightlyReindex | None = None

    # -- storage --

    def existence_check(self, root: Path | str | None = None) -> bool:
        return Path(root or self.root).is_dir()

    def _require_storage(self) -> None:
        if not self.existence_check():
            logger.error("Photo storage at %s is not accessible", self.root)
            raise StorageUnavailable(f"photo storage not mounted: {self.root}")

    def flush(self) -> bool:
        return self.library.snapshot_if_dirty()

    # -- serving --

    def _forget(self, path: str) -> None:
        self.library.remove(path)
        if self.texts.purge(path):
            try:
                self.texts.save()
            except OSError:
                logger.error("Could not persist text cache", exc_info=True)

    def select_next(self) -> Memory:
        """Pick the next photo and its text.

        Photos whose file has vanished are dropped from the library and
        another pick is made, up to cfg.SELECTION_ATTEMPTS times.
        """
        self._require_storage()
        for _ in range(cfg.SELECTION_ATTEMPTS):
            photos = self.library.photos()
            if not photos:
                raise LibraryEmpty("no photos indexed yet")
            photo = self.policy.choose(photos)
            if not os.path.isfile(photo.path):
                logger.warning("Photo vanished, removing from library: %s", photo.path)
                self._forget(photo.path)
                continue
            return Memory(photo=photo, text=self.text_service.get_text(photo))
        raise StalePhotoError(f"no existing photo found in {cfg.SELECTION_ATTEMPTS} attempts")

    def relocate(self, path: str, bucket: Bucket | str) -> str:
        return self.relocator.relocate(path, bucket)

    def favorite(self, path: str) -> str:
        return self.relocator.relocate(path, Bucket.FAVORITE)

    def unfavorite(self, path: str) -> str:
        return self.relocator.relocate(path, Bucket.UNFAVORITED)

    def omit(self, path: str) -> str:
        return self.relocator.omit(path)

    def delete(self, path: str) -> None:
        self.relocator.delete(path)

    # -- indexing --

    def reindex(self, full: bool, wait: bool = False) -> bool:
        """Start a reindex in the background.

        full=True wipes the library, indexes the favorites folder first and
        then the whole tree (a rebuild). full=False appends new files from a
        whole-tree scan. Returns False if a reindex is already running.
        """
        self._require_storage()
        if not self._reindex_lock.acquire(blocking=False):
            logger.info("Reindex requested while one is running, ignoring")
            return False
        if self.indexer.in_progress:
            self._reindex_lock.release()
            logger.info("Indexer busy, ignoring reindex request")
            return False

        def _run():
            try:
                self._reindex(full)
            finally:
                self._reindex_lock.release()

        self._reindex_thread = threading.Thread(target=_run, name="reindex", daemon=True)
        self._reindex_thread.start()
        if wait:
            self._reindex_thread.join()
        return True

    def _reindex(self, full: bool) -> None:
        if full:
            logger.info("Clearing library for a full rebuild")
            self.library.clear()
            try:
                self.indexer.run("defaults")
            except (IndexerFailed, IndexingInProgress):
                logger.error("Favorites indexing failed", exc_info=True)

        try:
            self.indexer.run("full")
        except (IndexerFailed, IndexingInProgress):
            logger.error("Background indexing failed", exc_info=True)
            return

        if full:
            self.texts.prune(self.library.paths())
            try:
                self.texts.save()
            except OSError:
                logger.error("Could not persist text cache", exc_info=True)

    def wait_for_reindex(self, timeout: float | None = None) -> None:
        thread = self._reindex_thread
        if thread is not None:
            thread.join(timeout)

    # -- lifecycle --

    def start(self) -> None:
        self._snapshot_timer = SnapshotTimer(self.flush, cfg.SNAPSHOT_INTERVAL)
        self._snapshot_timer.start()
        self._nightly = NightlyReindex(self)
        self._nightly.start()

        if len(self.library) == 0:
            if self.existence_check():
                logger.info("Library empty, starting first-run indexing")
                self.reindex(full=True)
            else:
                logger.error("Library empty and storage not mounted at %s", self.root)

    def stop(self) -> None:
        for timer in (self._snapshot_timer, self._nightly):
            if timer is not None:
                timer.stop()
        self.flush()

    def status(self) -> dict:
        return {
            "root": str(self.root),
            "storage_available": self.existence_check(),
            "photos": len(self.library),
            "texts": len(self.texts),
            "dirty": self.library.is_dirty,
            "indexing": self.indexer.in_progress or self._reindex_lock.locked(),
            "last_generation_error": self.text_service.last_error,
            "activity": self.reporter.snapshot(),
        }
