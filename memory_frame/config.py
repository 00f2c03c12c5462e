import os
from pathlib import Path

ROOT_DIR = Path(os.environ.get("FRAME_ROOT", "./test-photos")).expanduser().resolve()

CACHE_DIR = Path(
    os.environ.get("FRAME_CACHE_DIR", Path.home() / ".cache" / "memory-frame")
).resolve()

PHOTOS_FILE = CACHE_DIR / "photos.json"
TEXTS_FILE = CACHE_DIR / "texts.json"
ACTIVITY_DIR = CACHE_DIR

# -- buckets --

FAVORITES_FOLDER_NAME = "_photoframe_defaults"
UNFAVORITED_FOLDER_NAME = "_photoframe_unfavorited"
OMITTED_FOLDER_NAME = "_photoframe_omitted"

# -- scanning --

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}
HIDDEN_PREFIXES = (".", "@")  # "@" covers Synology @eaDir thumbnail folders
EXCLUDED_FOLDER_NAMES = {OMITTED_FOLDER_NAME}
SCAN_PROGRESS_EVERY = 100  # log every N directories

BATCH_SIZE = 50
INDEX_QUEUE_MAXSIZE = 64  # batches in flight between worker and consumer
INDEX_POLL_SECONDS = 0.5
INDEX_DONE_GRACE_SECONDS = 5.0  # wait for the final flush after the worker exits

# -- timers --

SNAPSHOT_INTERVAL = 30  # seconds between "flush if dirty" passes
REINDEX_HOUR = 2  # local hour for the nightly append-only reindex
REINDEX_CHECK_INTERVAL = 60

# -- selection --

RECENT_DAYS = int(os.environ.get("FRAME_RECENT_DAYS", "30"))
ANNIVERSARY_DAYS = int(os.environ.get("FRAME_ANNIVERSARY_DAYS", "3"))
SMART_PROBABILITY = float(os.environ.get("FRAME_SMART_PROBABILITY", "0.5"))
FAVORITE_PROBABILITY = float(os.environ.get("FRAME_FAVORITE_PROBABILITY", "0.25"))
SELECTION_ATTEMPTS = 5  # stale references healed before giving up

# -- text generation --

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")

GENERATION_ATTEMPTS = 3
GENERATION_INITIAL_DELAY = 1.0  # seconds, doubled after each transient failure
TRANSIENT_STATUS_CODES = {429, 503}

POEM_PROBABILITY = 0.3  # soft preference; the rest leans towards quotes
TEXT_LANGUAGES = [
    lang.strip()
    for lang in os.environ.get(
        "FRAME_TEXT_LANGUAGES", "English,European Portuguese (PT-PT)"
    ).split(",")
    if lang.strip()
]

GENERATION_IMAGE_SIZE = 1024  # longest edge sent to the model
GENERATION_JPEG_QUALITY = 85

FALLBACK_TEXT = "Memories are timeless treasures."

# -- service daemon --

SERVICE_PORT = int(os.environ.get("FRAME_PORT", "7830"))
SERVICE_HOST = os.environ.get("FRAME_HOST", "127.0.0.1")
SERVICE_PID_FILE = Path("/tmp/memory-frame/memory-frame.pid")
ERROR_IMAGE_MARKER = "SYSTEM_ERROR_IMAGE"
