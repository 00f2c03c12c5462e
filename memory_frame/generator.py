"""Poem / quote generation for a photo via Gemini.

The model sees a downscaled JPEG of the photo plus an instruction asking
for either a short original poem or a well-known quote, returned as JSON.
Overload errors (429 / 503) are retried with exponential backoff; any
other API error is raised on the first attempt.
"""

import io
import logging
import random
import re
import time
from typing import Callable, Literal, TypeVar

from PIL import Image, ImageOps
from pydantic import BaseModel, ConfigDict, Field, ValidationError

import config as cfg
from records import TextEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class GenerationError(Exception):
    """Generation failed in a way the caller should degrade from."""


class GenerationDecodeError(GenerationError):
    """The model replied, but not with a usable text entry."""


class TransientGenerationError(GenerationError):
    """The service stayed overloaded for the whole retry budget."""


class GeneratedText(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str = Field(min_length=1)
    type: Literal["poem", "quote"]
    author: str | None = None


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


def call_with_backoff(
    func: Callable[[], T],
    is_transient: Callable[[BaseException], bool],
    attempts: int | None = None,
    initial_delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func, retrying transient failures with a doubling delay."""
    attempts = attempts or cfg.GENERATION_ATTEMPTS
    delay = cfg.GENERATION_INITIAL_DELAY if initial_delay is None else initial_delay

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt == attempts:
                raise TransientGenerationError(
                    f"still overloaded after {attempts} attempts: {exc}"
                ) from exc
            logger.warning(
                "Generator overloaded (attempt %d/%d), retrying in %.1fs", attempt, attempts, delay,
            )
            sleep(delay)
            delay *= 2
    raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Prompt and reply
# ---------------------------------------------------------------------------


def build_prompt(prefer: str, language: str, exclude: str | None = None) -> str:
    lines = [
        "You are a poetic assistant. Look at this image.",
        "Task: Generate EITHER a short, beautiful original poem (max 4 lines) "
        "OR select a profound, well-known quote that matches the mood.",
        f"Preference: lean towards a {prefer} this time, unless the image clearly calls for the other.",
        f"Language: {language}.",
        "Output Format: JSON only.",
        'Structure: { "content": "The poem or quote text", "type": "poem" OR "quote", '
        '"author": "Author Name or null" }',
    ]
    if exclude:
        lines.append(
            "Do NOT return the following text, or anything close to it, "
            f"because it is already used for another photo: {exclude!r}"
        )
    return "\n".join(lines)


def strip_code_fences(raw: str) -> str:
    return _FENCE_RE.sub("", raw).strip()


def parse_reply(raw: str | None, exclude: str | None = None) -> TextEntry:
    if not raw:
        raise GenerationDecodeError("empty reply")
    try:
        parsed = GeneratedText.model_validate_json(strip_code_fences(raw))
    except ValidationError as exc:
        raise GenerationDecodeError(f"unexpected reply shape: {exc.error_count()} errors") from exc

    content = parsed.content.strip()
    if not content:
        raise GenerationDecodeError("blank content")
    if exclude is not None and content == exclude.strip():
        raise GenerationDecodeError("reply repeats the excluded text")
    author = parsed.author.strip() if parsed.author else None
    return TextEntry(content=content, kind=parsed.type, author=author or None)


def prepare_image(path: str, size: int | None = None) -> bytes:
    """Downscale a photo to a JPEG payload for the model."""
    size = size or cfg.GENERATION_IMAGE_SIZE
    with Image.open(path) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.thumbnail((size, size), Image.LANCZOS)
        buf = io.BytesIO()
        img.save(buf, "JPEG", quality=cfg.GENERATION_JPEG_QUALITY)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class GeminiBackend:
    """google-genai client wrapper: prompt + image in, raw text out."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        from google import genai

        self.api_key = api_key or cfg.GEMINI_API_KEY
        self.model = model or cfg.GEMINI_MODEL
        self._client = genai.Client(api_key=self.api_key)

    def generate(self, prompt: str, image: bytes, mime_type: str = "image/jpeg") -> str | None:
        from google.genai import types

        response = self._client.models.generate_content(
            model=self.model,
            contents=[
                types.Part.from_text(text=prompt),
                types.Part.from_bytes(data=image, mime_type=mime_type),
            ],
            config=types.GenerateContentConfig(response_mime_type="application/json"),
        )
        return response.text

    @staticmethod
    def is_transient(exc: BaseException) -> bool:
        from google.genai import errors

        return isinstance(exc, errors.APIError) and exc.code in cfg.TRANSIENT_STATUS_CODES


class TextGenerator:
    def __init__(
        self,
        backend=None,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backend = backend
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def backend(self):
        if self._backend is None:
            self._backend = GeminiBackend()
        return self._backend

    def _preference(self) -> str:
        return "poem" if self._rng.random() < cfg.POEM_PROBABILITY else "quote"

    def _language(self) -> str:
        return self._rng.choice(cfg.TEXT_LANGUAGES) if cfg.TEXT_LANGUAGES else "English"

    def generate(self, image_path: str, exclude: str | None = None) -> TextEntry:
        """Generate a text entry for the photo at image_path.

        Raises GenerationError subclasses for overload exhaustion and bad
        replies; other backend errors propagate unchanged.
        """
        prompt = build_prompt(self._preference(), self._language(), exclude)
        try:
            image = prepare_image(image_path)
        except OSError as exc:
            raise GenerationError(f"cannot read image: {exc}") from exc
        backend = self.backend

        raw = call_with_backoff(
            lambda: backend.generate(prompt, image),
            is_transient=backend.is_transient,
            sleep=self._sleep,
        )
        return parse_reply(raw, exclude)
