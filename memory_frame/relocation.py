"""Moving photos between buckets while keeping library and text keys in sync.

    normal / unfavorited  --favorite-->   <root>/_photoframe_defaults
    favorite              --unfavorite--> <root>/_photoframe_unfavorited
    any                   --omit-->       <root>/_photoframe_omitted  (and forgotten)
    any                   --delete-->     removed from disk            (and forgotten)

The file move happens first; in-memory bookkeeping only runs once the
move has succeeded, so a failed move leaves state untouched.
"""

import logging
import os
import shutil
import threading
import time
from enum import StrEnum
from pathlib import Path

import config as cfg
from library import PhotoLibrary
from records import Photo, iso_timestamp
from texts import TextCache

logger = logging.getLogger(__name__)


class Bucket(StrEnum):
    NORMAL = "normal"
    FAVORITE = "favorite"
    UNFAVORITED = "unfavorited"
    OMITTED = "omitted"


class RelocationError(Exception):
    """The filesystem move or delete failed; nothing was changed in memory."""


class PhotoNotFoundError(RelocationError):
    """The source photo does not exist on disk."""


def bucket_dirs(root: Path) -> dict[Bucket, Path]:
    return {
        Bucket.FAVORITE: root / cfg.FAVORITES_FOLDER_NAME,
        Bucket.UNFAVORITED: root / cfg.UNFAVORITED_FOLDER_NAME,
        Bucket.OMITTED: root / cfg.OMITTED_FOLDER_NAME,
    }


def unique_destination(directory: Path, name: str) -> Path:
    """directory/name, or directory/stem_<timestamp>.ext if that is taken."""
    dest = directory / name
    if not dest.exists():
        return dest
    stem, suffix = os.path.splitext(name)
    stamp = time.strftime("%Y%m%d-%H%M%S")
    dest = directory / f"{stem}_{stamp}{suffix}"
    counter = 1
    while dest.exists():
        dest = directory / f"{stem}_{stamp}-{counter}{suffix}"
        counter += 1
    return dest


class Relocator:
    def __init__(self, root: Path, library: PhotoLibrary, texts: TextCache):
        self.root = Path(root)
        self.library = library
        self.texts = texts
        self._dirs = bucket_dirs(self.root)
        self._lock = threading.Lock()

    def bucket_of(self, path: str) -> Bucket:
        parent = Path(path).parent
        for bucket, directory in self._dirs.items():
            if parent == directory or directory in parent.parents:
                return bucket
        return Bucket.NORMAL

    def _move(self, path: str, bucket: Bucket) -> str:
        """Move the file into bucket's folder. Caller holds the lock."""
        source = Path(path)
        if not source.is_file():
            raise PhotoNotFoundError(f"photo not found: {path}")
        target_dir = self._dirs[bucket]
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            dest = unique_destination(target_dir, source.name)
            shutil.move(str(source), str(dest))
        except OSError as exc:
            raise RelocationError(f"could not move {path} to {bucket}: {exc}") from exc
        logger.info("Moved %s -> %s", path, dest)
        return str(dest)

    def relocate(self, path: str, bucket: Bucket | str) -> str:
        """Move path into bucket and rekey the library and the text cache.

        Omitted photos are dropped instead of rekeyed, in the same lock hold
        as the move, so readers never see them under the omitted folder.
        """
        bucket = Bucket(bucket)
        if bucket == Bucket.NORMAL:
            raise ValueError("photos cannot be moved back to the normal bucket")

        with self._lock:
            if self.bucket_of(path) == bucket and Path(path).is_file():
                if bucket == Bucket.OMITTED:
                    self._forget(path)
                return path
            new_path = self._move(path, bucket)
            if bucket == Bucket.OMITTED:
                self._forget(path)
            else:
                self._rekey(path, new_path)
            return new_path

    def _rekey(self, old_path: str, new_path: str) -> None:
        if not self.library.rekey(old_path, new_path):
            # Removed concurrently (e.g. a rebuild); index the file where it now lives.
            logger.warning("Library no longer had %s, indexing %s as new", old_path, new_path)
            created = iso_timestamp(os.path.getmtime(new_path))
            self.library.merge([Photo(path=new_path, created=created)])
        if self.texts.rekey(old_path, new_path):
            self._save_texts()

    def _forget(self, path: str) -> None:
        # Library first: a text write racing with this checks membership.
        self.library.remove(path)
        if self.texts.purge(path):
            self._save_texts()

    def _save_texts(self) -> None:
        try:
            self.texts.save()
        except OSError:
            logger.error("Could not persist text cache", exc_info=True)

    def omit(self, path: str) -> str:
        """Move to the omitted bucket and drop from library and cache."""
        return self.relocate(path, Bucket.OMITTED)

    def delete(self, path: str) -> None:
        """Remove the file from disk and drop it from library and cache."""
        with self._lock:
            source = Path(path)
            if not source.is_file():
                raise PhotoNotFoundError(f"photo not found: {path}")
            try:
                source.unlink()
            except OSError as exc:
                raise RelocationError(f"could not delete {path}: {exc}") from exc
            logger.info("Deleted %s", path)
            self._forget(path)
