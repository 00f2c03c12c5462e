"""In-memory photo library with a membership index and dirty tracking."""

import logging
import threading
from pathlib import Path
from typing import Iterable

import config as cfg
from persist import atomic_write_json, load_json
from records import Photo

logger = logging.getLogger(__name__)


class PhotoLibrary:
    """Ordered list of photos plus a path set, guarded by one lock.

    Every mutation touches both structures under the lock and bumps a
    version counter; a snapshot clears the dirty flag only if the version
    it wrote is still current.
    """

    def __init__(self, snapshot_path: Path | None = None, photos: Iterable[Photo] = ()):
        self._snapshot_path = snapshot_path or cfg.PHOTOS_FILE
        self._lock = threading.RLock()
        self._snapshot_lock = threading.Lock()
        self._photos: list[Photo] = []
        self._paths: set[str] = set()
        self._version = 0
        self._saved_version = 0
        for photo in photos:
            if photo.path not in self._paths:
                self._paths.add(photo.path)
                self._photos.append(photo)

    @classmethod
    def load(cls, snapshot_path: Path | None = None) -> "PhotoLibrary":
        path = snapshot_path or cfg.PHOTOS_FILE
        raw = load_json(path, [])
        photos = []
        for item in raw if isinstance(raw, list) else []:
            try:
                photos.append(Photo.from_dict(item))
            except (KeyError, TypeError):
                logger.warning("Skipping malformed library record: %r", item)
        library = cls(path, photos)
        logger.info("Photos loaded: %d", len(library))
        return library

    # -- reads --

    def __len__(self) -> int:
        with self._lock:
            return len(self._photos)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._paths

    def photos(self) -> list[Photo]:
        with self._lock:
            return list(self._photos)

    def paths(self) -> set[str]:
        with self._lock:
            return set(self._paths)

    @property
    def is_dirty(self) -> bool:
        with self._lock:
            return self._version != self._saved_version

    # -- writes --

    def _touch(self) -> None:
        self._version += 1

    def merge(self, photos: Iterable[Photo]) -> int:
        """Insert photos whose path is not yet known. Returns the number added."""
        added = 0
        with self._lock:
            for photo in photos:
                if photo.path in self._paths:
                    continue
                self._paths.add(photo.path)
                self._photos.append(photo)
                added += 1
            if added:
                self._touch()
        return added

    def remove(self, path: str) -> bool:
        with self._lock:
            if path not in self._paths:
                return False
            self._paths.discard(path)
            self._photos = [p for p in self._photos if p.path != path]
            self._touch()
            return True

    def rekey(self, old_path: str, new_path: str) -> bool:
        """Replace old_path with new_path in place. False if old_path is unknown."""
        with self._lock:
            if old_path not in self._paths:
                return False
            if old_path == new_path:
                return True
            if new_path in self._paths:
                # Already indexed under the destination (e.g. a rescan beat us).
                self._photos = [p for p in self._photos if p.path != old_path]
            else:
                for i, photo in enumerate(self._photos):
                    if photo.path == old_path:
                        self._photos[i] = Photo(path=new_path, created=photo.created)
                        break
                self._paths.add(new_path)
            self._paths.discard(old_path)
            self._touch()
            return True

    def clear(self) -> None:
        """Drop everything. Used only by a full rebuild."""
        with self._lock:
            self._photos = []
            self._paths = set()
            self._touch()

    # -- persistence --

    def snapshot_if_dirty(self) -> bool:
        """Write the snapshot when there are unsaved changes.

        Snapshots are serialized so an older copy can never land on disk
        after a newer one. Reads and merges still proceed during the write.
        """
        with self._snapshot_lock:
            with self._lock:
                if self._version == self._saved_version:
                    return False
                version = self._version
                data = [p.to_dict() for p in self._photos]

            atomic_write_json(self._snapshot_path, data)

            with self._lock:
                # A concurrent merge during the write keeps the store dirty.
                if self._saved_version < version:
                    self._saved_version = version
        logger.info("Saved %d photos to %s", len(data), self._snapshot_path)
        return True
