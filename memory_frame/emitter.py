"""Fixed-size batching between the scanner and the ingestion channel."""

import logging
from typing import Callable, Iterable

import config as cfg
from records import Photo

logger = logging.getLogger(__name__)

Send = Callable[[dict], None]


class BatchEmitter:
    """Buffers photos and sends them as {"type": "batch", "photos": [...]}.

    close() flushes the tail and then sends {"type": "done", ...}; the
    consumer treats a run as finished only after seeing "done".
    """

    def __init__(self, send: Send, batch_size: int | None = None):
        self._send = send
        self._batch_size = batch_size or cfg.BATCH_SIZE
        self._buffer: list[dict] = []
        self._closed = False
        self.batches_sent = 0

    def add(self, photo: Photo) -> None:
        if self._closed:
            raise RuntimeError("BatchEmitter is closed")
        self._buffer.append(photo.to_dict())
        if len(self._buffer) >= self._batch_size:
            self._flush()

    def extend(self, photos: Iterable[Photo]) -> None:
        for photo in photos:
            self.add(photo)

    def _flush(self) -> None:
        if not self._buffer:
            return
        batch, self._buffer = self._buffer, []
        self._send({"type": "batch", "photos": batch})
        self.batches_sent += 1

    def close(self, files: int = 0, dirs: int = 0) -> None:
        """Flush any partial batch, then signal the end of the run."""
        if self._closed:
            return
        self._flush()
        self._closed = True
        self._send({"type": "done", "files": files, "dirs": dirs})
        logger.debug("Emitter closed after %d batches", self.batches_sent)
