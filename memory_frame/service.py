"""HTTP service daemon for the memory frame.

Owns the Frame (library, text cache, indexer). The kiosk browser polls
/api/next-memory and fetches the image through /api/image.

    uv run python service.py

Startup order:
    1. Write PID, start uvicorn  -- HTTP is up immediately
    2. Background thread: load snapshots, start timers, first-run indexing
    Handlers return 503 until the frame is ready.
"""

import asyncio
import base64
import logging
import os
import signal
import sys
import threading
from datetime import datetime, timezone
from urllib.parse import unquote

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

import config as cfg
from frame import Frame, LibraryEmpty, StalePhotoError, StorageUnavailable
from relocation import PhotoNotFoundError, RelocationError

logger = logging.getLogger(__name__)

_frame: Frame | None = None
_frame_lock = threading.Lock()
_frame_ready = threading.Event()

# 1x1 transparent PNG shown behind the system-alert text
_BLANK_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+P+/HgAFhAJ/wlseKgAAAABJRU5ErkJggg=="
)


def set_frame(frame: Frame | None) -> None:
    """Install a frame (tests, or the background startup thread)."""
    global _frame
    with _frame_lock:
        _frame = frame
    if frame is None:
        _frame_ready.clear()
    else:
        _frame_ready.set()


def get_frame() -> Frame:
    """Return the Frame, blocking until it is loaded."""
    _frame_ready.wait()
    return _frame  # type: ignore[return-value]


def _create_frame() -> Frame:
    with _frame_lock:
        frame = _frame or Frame()
    set_frame(frame)
    return frame


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _loading() -> JSONResponse:
    return JSONResponse({"loading": True}, status_code=503)


def _storage_alert() -> JSONResponse:
    return JSONResponse({
        "text": "⚠️ System Error: Photo storage volume is not mounted. Please check NAS connection.",
        "type": "quote",
        "author": "System Alert",
        "date": datetime.now(timezone.utc).isoformat(),
        "imagePathEncoded": cfg.ERROR_IMAGE_MARKER,
    })


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True, "ready": _frame_ready.is_set()})


async def status(request: Request) -> JSONResponse:
    if not _frame_ready.is_set():
        return _loading()
    return JSONResponse(await asyncio.to_thread(get_frame().status))


async def next_memory(request: Request) -> JSONResponse:
    if not _frame_ready.is_set():
        return _loading()
    try:
        memory = await asyncio.to_thread(get_frame().select_next)
    except StorageUnavailable:
        return _storage_alert()
    except LibraryEmpty:
        return JSONResponse({"error": "Indexing photos..."}, status_code=503)
    except StalePhotoError:
        return JSONResponse({"error": "File missing"}, status_code=500)
    return JSONResponse(memory.to_payload())


async def image(request: Request) -> Response:
    path = unquote(request.query_params.get("path", ""))
    if path == cfg.ERROR_IMAGE_MARKER:
        return Response(_BLANK_PNG, media_type="image/png")
    if not _frame_ready.is_set():
        return _loading()
    if not path or path not in get_frame().library or not await asyncio.to_thread(os.path.isfile, path):
        return PlainTextResponse("Image not found", status_code=404)
    return FileResponse(path)


async def reindex(request: Request) -> JSONResponse:
    if not _frame_ready.is_set():
        return _loading()
    body = await _json_body(request)
    full = bool(body.get("full", True))
    try:
        started = await asyncio.to_thread(get_frame().reindex, full)
    except StorageUnavailable:
        return JSONResponse({"error": "Photo storage not mounted"}, status_code=503)
    if not started:
        return JSONResponse({"message": "Reindex already running"}, status_code=409)
    return JSONResponse({"message": "Reindexing started..."})


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _path_action(action: str):
    async def handler(request: Request) -> JSONResponse:
        if not _frame_ready.is_set():
            return _loading()
        body = await _json_body(request)
        path = body.get("path")
        if not path:
            return JSONResponse({"error": "path is required"}, status_code=400)
        frame = get_frame()
        try:
            new_path = await asyncio.to_thread(getattr(frame, action), path)
        except PhotoNotFoundError as exc:
            return JSONResponse({"error": str(exc)}, status_code=404)
        except (RelocationError, ValueError) as exc:
            logger.error("%s failed for %s: %s", action, path, exc)
            return JSONResponse({"error": str(exc)}, status_code=500)
        return JSONResponse({"ok": True, "path": new_path})

    return handler


routes = [
    Route("/health", health, methods=["GET"]),
    Route("/status", status, methods=["GET"]),
    Route("/api/next-memory", next_memory, methods=["GET"]),
    Route("/api/image", image, methods=["GET"]),
    Route("/api/reindex", reindex, methods=["POST"]),
    Route("/api/favorite", _path_action("favorite"), methods=["POST"]),
    Route("/api/unfavorite", _path_action("unfavorite"), methods=["POST"]),
    Route("/api/omit", _path_action("omit"), methods=["POST"]),
    Route("/api/delete", _path_action("delete"), methods=["POST"]),
]

app = Starlette(routes=routes)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _write_pid() -> None:
    cfg.SERVICE_PID_FILE.parent.mkdir(parents=True, exist_ok=True)
    cfg.SERVICE_PID_FILE.write_text(str(os.getpid()))
    logger.info("PID file: %s", cfg.SERVICE_PID_FILE)


def _shutdown(*_args) -> None:
    cfg.SERVICE_PID_FILE.unlink(missing_ok=True)
    if _frame is not None:
        _frame.stop()
        _frame.reporter.cleanup()


def _background_startup() -> None:
    """Load snapshots and start timers without blocking the event loop."""
    def _load():
        try:
            frame = _create_frame()
            logger.info("Frame loaded: %d photos, %d texts", len(frame.library), len(frame.texts))
            frame.start()
        except Exception:
            logger.warning("Background startup failed", exc_info=True)

    threading.Thread(target=_load, name="background-startup", daemon=True).start()


if __name__ == "__main__":
    import atexit

    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    _write_pid()
    atexit.register(_shutdown)
    signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))

    _background_startup()

    logger.info("Starting memory-frame service on %s:%d", cfg.SERVICE_HOST, cfg.SERVICE_PORT)
    uvicorn.run(app, host=cfg.SERVICE_HOST, port=cfg.SERVICE_PORT, log_level="warning")
