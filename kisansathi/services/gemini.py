"""
Google Gemini client used by the chat and diagnosis handlers.

Wraps `google.generativeai` behind two calls, `generate` (system prompt plus
role-tagged turns) and `generate_from_image` (prompt plus one photo), both
returning the reply text. Transient failures may be retried with exponential
backoff; quota errors are raised immediately.
"""
import base64
import binascii
import logging
import re
import time
from functools import lru_cache
from io import BytesIO
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import google.generativeai as genai
from google.api_core import exceptions as api_exceptions
from PIL import Image, UnidentifiedImageError

from .. import config
from .normalizer import UpstreamFailure, classify_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?;base64,", re.IGNORECASE)

# Inline images above either limit are re-encoded before upload.
MAX_INLINE_BYTES = 700_000
MAX_INLINE_DIMENSION = 1400
RESIZE_TARGET = 1200

# Failures worth another attempt. Bad requests, permission errors and blocked
# replies fail the same way every time.
RETRYABLE_ERRORS = (
    api_exceptions.ServiceUnavailable,
    api_exceptions.DeadlineExceeded,
    api_exceptions.InternalServerError,
    TimeoutError,
    ConnectionError,
)


def is_retryable(error: BaseException) -> bool:
    if classify_failure(error) is UpstreamFailure.QUOTA_EXCEEDED:
        return False
    return isinstance(error, RETRYABLE_ERRORS)


def call_with_retries(
    fn: Callable[[], T],
    max_retries: int = 0,
    backoff: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run `fn`, retrying transient failures up to `max_retries` times.

    Delays grow as backoff, 2*backoff, 4*backoff... Quota errors, permanent
    errors and the final transient error propagate unchanged.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= max_retries or not is_retryable(e):
                raise
            delay = (2 ** attempt) * backoff
            logger.warning("Gemini call failed (attempt %d/%d), retrying in %.2fs: %s",
                           attempt + 1, max_retries + 1, delay, e)
            sleep(delay)
            attempt += 1


def decode_image(image: str) -> Tuple[bytes, str]:
    """Decode raw base64 or a `data:` URL into (bytes, mime_type).

    Raises ValueError when the payload is not valid base64.
    """
    mime = "image/jpeg"
    payload = image.strip()
    match = _DATA_URL.match(payload)
    if match:
        mime = (match.group("mime") or mime).lower()
        payload = payload[match.end():]
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Image is not valid base64: {e}")
    if not data:
        raise ValueError("Image payload is empty")
    return data, mime


def shrink_image(data: bytes, mime: str) -> Tuple[bytes, str]:
    """Downscale large photos so inline uploads stay within provider limits."""
    try:
        with Image.open(BytesIO(data)) as img:
            w, h = img.size
            if len(data) <= MAX_INLINE_BYTES and max(w, h) <= MAX_INLINE_DIMENSION:
                return data, mime
            img = img.convert("RGB")
            if max(w, h) > RESIZE_TARGET:
                scale = RESIZE_TARGET / float(max(w, h))
                img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)
            out = BytesIO()
            img.save(out, format="JPEG", quality=75, optimize=True)
    except (UnidentifiedImageError, OSError) as e:
        # Let the provider decide what to make of a format Pillow cannot read.
        logger.info("Skipping image preflight: %s", e)
        return data, mime
    out_bytes = out.getvalue()
    logger.info("Re-encoded image for upload: %d -> %d bytes", len(data), len(out_bytes))
    return out_bytes, "image/jpeg"


def to_gemini_contents(turns: Sequence[Dict[str, str]]) -> List[Dict[str, object]]:
    """Map chat turns onto Gemini's `user`/`model` roles."""
    contents = []
    for turn in turns:
        role = "model" if turn.get("role") == "assistant" else "user"
        contents.append({"role": role, "parts": [turn.get("content") or ""]})
    return contents


class GeminiGenerator:
    def __init__(
        self,
        api_key: str,
        model_name: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
    ):
        self.api_key = api_key
        self.model_name = model_name or config.get_model_name()
        self.timeout = config.get_upstream_timeout() if timeout is None else timeout
        self.max_retries = config.get_upstream_max_retries() if max_retries is None else max_retries
        self.backoff = config.get_upstream_retry_backoff() if backoff is None else backoff
        genai.configure(api_key=self.api_key)

    def _model(self, system: Optional[str] = None):
        if system:
            return genai.GenerativeModel(self.model_name, system_instruction=system)
        return genai.GenerativeModel(self.model_name)

    def _call(self, model, contents, generation_config: Optional[Dict[str, float]] = None) -> str:
        def attempt() -> str:
            resp = model.generate_content(
                contents,
                generation_config=generation_config,
                request_options={"timeout": self.timeout},
            )
            # `.text` raises ValueError when the reply was blocked or empty.
            return resp.text

        return call_with_retries(attempt, max_retries=self.max_retries, backoff=self.backoff)

    def generate(
        self,
        system: str,
        turns: Sequence[Dict[str, str]],
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        logger.info("Gemini chat call: model=%s turns=%d", self.model_name, len(turns))
        model = self._model(system)
        return self._call(
            model,
            to_gemini_contents(turns),
            {"max_output_tokens": max_output_tokens, "temperature": temperature},
        )

    def generate_from_image(self, prompt: str, image: str) -> str:
        data, mime = shrink_image(*decode_image(image))
        logger.info("Gemini vision call: model=%s bytes=%d mime=%s", self.model_name, len(data), mime)
        model = self._model()
        return self._call(model, [prompt, {"mime_type": mime, "data": data}])


@lru_cache(maxsize=8)
def _build_generator(api_key: str, model_name: str, timeout: float, max_retries: int, backoff: float) -> GeminiGenerator:
    return GeminiGenerator(api_key, model_name=model_name, timeout=timeout,
                           max_retries=max_retries, backoff=backoff)


def get_generator() -> Optional[GeminiGenerator]:
    """Return the generator for the current settings, or None when no key is set.

    Generators are cached per key and settings so the client library is
    configured once rather than on every request.
    """
    api_key = config.get_api_key()
    if not api_key:
        return None
    return _build_generator(
        api_key,
        config.get_model_name(),
        config.get_upstream_timeout(),
        config.get_upstream_max_retries(),
        config.get_upstream_retry_backoff(),
    )
