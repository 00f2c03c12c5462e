"""Persistent cache of generated texts, keyed by photo path.

A cached entry whose content is also cached under another path is stale
by duplication: it is regenerated, with the repeated text passed to the
generator as something to avoid.
"""

import logging
import threading
from pathlib import Path
from typing import Callable

import config as cfg
from generator import GenerationError, TextGenerator
from persist import atomic_write_json, load_json
from records import Photo, TextEntry

logger = logging.getLogger(__name__)


def fallback_entry() -> TextEntry:
    return TextEntry(content=cfg.FALLBACK_TEXT, kind="poem", author=None)


class TextCache:
    def __init__(self, snapshot_path: Path | None = None, entries: dict[str, TextEntry] | None = None):
        self._snapshot_path = snapshot_path or cfg.TEXTS_FILE
        self._lock = threading.RLock()
        self._entries: dict[str, TextEntry] = {}
        # content -> paths holding it, so duplicate checks don't scan the cache
        self._by_content: dict[str, set[str]] = {}
        for path, entry in (entries or {}).items():
            self._put(path, entry)

    @classmethod
    def load(cls, snapshot_path: Path | None = None) -> "TextCache":
        path = snapshot_path or cfg.TEXTS_FILE
        raw = load_json(path, {})
        entries = {}
        for key, item in raw.items() if isinstance(raw, dict) else []:
            try:
                entries[key] = TextEntry.from_dict(item)
            except (KeyError, TypeError):
                logger.warning("Skipping malformed text entry for %s", key)
        cache = cls(path, entries)
        logger.info("Texts loaded: %d", len(cache))
        return cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._entries

    def get(self, path: str) -> TextEntry | None:
        with self._lock:
            return self._entries.get(path)

    def keys(self) -> set[str]:
        with self._lock:
            return set(self._entries)

    def _put(self, path: str, entry: TextEntry) -> None:
        self._pop(path)
        self._entries[path] = entry
        self._by_content.setdefault(entry.content, set()).add(path)

    def _pop(self, path: str) -> TextEntry | None:
        entry = self._entries.pop(path, None)
        if entry is not None:
            holders = self._by_content.get(entry.content)
            if holders is not None:
                holders.discard(path)
                if not holders:
                    del self._by_content[entry.content]
        return entry

    def put(self, path: str, entry: TextEntry) -> None:
        with self._lock:
            self._put(path, entry)

    def put_if(self, path: str, entry: TextEntry, is_current: Callable[[str], bool]) -> bool:
        """Store entry only if is_current(path) holds at write time."""
        with self._lock:
            if not is_current(path):
                return False
            self._put(path, entry)
            return True

    def purge(self, path: str) -> bool:
        with self._lock:
            return self._pop(path) is not None

    def rekey(self, old_path: str, new_path: str) -> bool:
        with self._lock:
            entry = self._pop(old_path)
            if entry is None:
                return False
            self._put(new_path, entry)
            return True

    def prune(self, keep_paths: set[str]) -> int:
        """Drop entries whose path is not in keep_paths."""
        with self._lock:
            stale = [p for p in self._entries if p not in keep_paths]
            for path in stale:
                self._pop(path)
        if stale:
            logger.info("Pruned %d texts for photos no longer in the library", len(stale))
        return len(stale)

    def find_duplicate(self, path: str, content: str) -> str | None:
        """Return another path caching the same content, if any."""
        with self._lock:
            for other in self._by_content.get(content, ()):
                if other != path:
                    return other
        return None

    def save(self) -> None:
        with self._lock:
            data = {path: entry.to_dict() for path, entry in self._entries.items()}
            atomic_write_json(self._snapshot_path, data)


class TextService:
    """Cache-first text lookup with regeneration on miss or duplication.

    is_current tells whether a path is still a library member. Relocation
    updates the library before the cache, so a text generated for a photo
    that was moved or removed meanwhile is returned but not stored.
    """

    def __init__(
        self,
        cache: TextCache,
        generator: TextGenerator,
        is_current: Callable[[str], bool] | None = None,
    ):
        self.cache = cache
        self.generator = generator
        self.is_current = is_current or (lambda path: True)
        self.last_error: str | None = None

    def get_text(self, photo: Photo) -> TextEntry:
        exclude = None
        cached = self.cache.get(photo.path)
        if cached is not None:
            duplicate_of = self.cache.find_duplicate(photo.path, cached.content)
            if duplicate_of is None:
                return cached
            logger.info(
                "Text for %s repeats %s, regenerating", Path(photo.path).name, Path(duplicate_of).name,
            )
            exclude = cached.content

        # No store lock is held here; a concurrent request for the same
        # photo may generate too, and the last write wins.
        try:
            entry = self.generator.generate(photo.path, exclude=exclude)
        except GenerationError as exc:
            logger.warning("Text generation failed for %s: %s", photo.path, exc)
            return fallback_entry()
        except Exception as exc:
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.error("Text generation error for %s", photo.path, exc_info=True)
            return fallback_entry()

        self.last_error = None
        if not self.cache.put_if(photo.path, entry, self.is_current):
            logger.info("Photo left the library during generation, not caching: %s", photo.path)
            return entry
        try:
            self.cache.save()
        except OSError:
            logger.error("Could not persist text cache", exc_info=True)
        return entry
