"""Depth-first photo tree walk.

Entries are visited in descending name order so dated folders
(2024/, 2023/, ...) surface their newest photos first.
"""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import config as cfg
from records import Photo, iso_timestamp

logger = logging.getLogger(__name__)


@dataclass
class ScanStats:
    dirs: int = 0
    files: int = 0


def _is_hidden(name: str) -> bool:
    return name.startswith(cfg.HIDDEN_PREFIXES)


def scan_photos(
    root: str | Path,
    excluded_names: set[str] | None = None,
    extensions: set[str] | None = None,
    stats: ScanStats | None = None,
) -> Iterator[Photo]:
    """Yield a Photo for every supported image file under root.

    A missing root yields nothing. Unreadable directories are logged and
    skipped. Symlinks are never followed.
    """
    excluded = cfg.EXCLUDED_FOLDER_NAMES if excluded_names is None else excluded_names
    exts = cfg.SUPPORTED_EXTENSIONS if extensions is None else extensions
    stats = stats if stats is not None else ScanStats()

    root = str(root)
    if not os.path.isdir(root):
        return
    yield from _walk(root, excluded, exts, stats)


def _walk(
    directory: str,
    excluded: set[str],
    exts: set[str],
    stats: ScanStats,
) -> Iterator[Photo]:
    stats.dirs += 1
    if stats.dirs % cfg.SCAN_PROGRESS_EVERY == 0:
        logger.info("Scanned %d directories (%d photos)", stats.dirs, stats.files)

    try:
        names = sorted(os.listdir(directory), reverse=True)
    except OSError as exc:
        logger.warning("Cannot read %s: %s", directory, exc)
        return

    for name in names:
        if _is_hidden(name) or name in excluded:
            continue
        path = os.path.join(directory, name)
        try:
            st = os.lstat(path)
        except OSError:
            continue
        if stat.S_ISLNK(st.st_mode):
            continue

        if stat.S_ISDIR(st.st_mode):
            yield from _walk(path, excluded, exts, stats)
        elif stat.S_ISREG(st.st_mode):
            if os.path.splitext(name)[1].lower() not in exts:
                continue
            stats.files += 1
            yield Photo(path=os.path.abspath(path), created=iso_timestamp(st.st_mtime))
