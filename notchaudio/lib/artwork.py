"""
Artwork cache and image helpers.

ArtworkCache — bounded LRU of raw image bytes keyed by track fingerprint,
shared by the native provider and every scripted probe.  It lives in memory
only.  Scripted extraction may go through a temp file, but each extraction
gets its own uniquely named file which is deleted as soon as it is read.

encode_artwork — converts raw bytes into a compressed JPEG data URI for the
UI feed.  Runs Pillow in a thread pool (CPU-bound).
"""

import asyncio
import base64
import contextlib
import logging
import os
import tempfile
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO

from PIL import Image

log = logging.getLogger(__name__)

ARTWORK_CACHE_SIZE = 30
MAX_ARTWORK_SIZE = 500 * 1024  # 500 KB limit for JPEG output

_artwork_executor = ThreadPoolExecutor(max_workers=2)


class ArtworkCache:
    """Thread-safe LRU cache: fingerprint -> image bytes.

    ``get`` refreshes recency; inserting past capacity evicts the least
    recently used entry.
    """

    def __init__(self, max_size: int = ARTWORK_CACHE_SIZE):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._cache: OrderedDict[str, bytes] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
                return self._cache[key]
            return None

    def put(self, key: str, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            elif len(self._cache) >= self.max_size:
                evicted, _ = self._cache.popitem(last=False)
                log.debug("Artwork cache full, evicted %r", evicted)
            self._cache[key] = data

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __contains__(self, key: str):
        with self._lock:
            return key in self._cache

    def __len__(self):
        with self._lock:
            return len(self._cache)


@contextlib.contextmanager
def temp_artwork_path(suffix: str = ".bin"):
    """Yield a fresh, uniquely named temp file path; remove it on exit."""
    fd, path = tempfile.mkstemp(prefix="notchaudio-artwork-", suffix=suffix)
    os.close(fd)
    try:
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


def read_and_discard(path: str) -> bytes | None:
    """Read a transfer file written by a script.  Empty files count as no artwork."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        log.debug("Could not read artwork transfer file %s: %s", path, e)
        return None
    return data or None


def _process_image(image_bytes: bytes) -> dict | None:
    """Convert raw image bytes to a compressed JPEG base64 dict.

    Returns ``{'base64': str, 'size': (w, h)}`` or None on failure.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        if image.mode in ("RGBA", "LA", "P"):
            image = image.convert("RGB")

        buf = BytesIO()
        image.save(buf, "JPEG", quality=85)
        if buf.tell() > MAX_ARTWORK_SIZE:
            buf = BytesIO()
            image.save(buf, "JPEG", quality=60)

        buf.seek(0)
        return {
            "base64": base64.b64encode(buf.getvalue()).decode("utf-8"),
            "size": image.size,
        }
    except Exception as e:
        log.warning("Error processing image: %s", e)
        return None


async def encode_artwork(image_bytes: bytes | None) -> dict | None:
    """Encode artwork for the UI feed off the event loop."""
    if not image_bytes:
        return None
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_artwork_executor, _process_image, image_bytes)
