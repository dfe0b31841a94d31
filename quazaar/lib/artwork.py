# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Album artwork → inline ``data:`` URI.

playerctl reports ``mpris:artUrl`` as either an http(s) URL (Spotify,
browsers) or a ``file://`` path (local players).  Either way the browser on
the other end can't reach it, so the image is fetched here, re-encoded to a
size-bounded JPEG with Pillow and embedded in the snapshot.  Results are kept
in an LRU keyed by the original URI; the media poller asks every second, so
only a track change costs a fetch.
"""

import asyncio
import base64
import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from urllib.parse import unquote, urlparse

import aiohttp
from PIL import Image

log = logging.getLogger(__name__)

MAX_ARTWORK_BYTES = 500 * 1024
ARTWORK_CACHE_SIZE = 100
FETCH_TIMEOUT = 10

# Shared thread pool for CPU-bound image processing
_artwork_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="artwork")


class ArtworkCache:
    """Simple LRU cache for artwork data (URI -> data URI)."""

    def __init__(self, max_size=ARTWORK_CACHE_SIZE):
        self.max_size = max_size
        self._cache: OrderedDict[str, str] = OrderedDict()

    def get(self, uri: str):
        if uri in self._cache:
            self._cache.move_to_end(uri)
            return self._cache[uri]
        return None

    def put(self, uri: str, data: str):
        if uri in self._cache:
            self._cache.move_to_end(uri)
        else:
            if len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
        self._cache[uri] = data

    def __contains__(self, uri: str):
        return uri in self._cache

    def __len__(self):
        return len(self._cache)


def encode_image(image_bytes: bytes, max_bytes: int = MAX_ARTWORK_BYTES) -> str | None:
    """Re-encode raw image bytes as a JPEG data URI.

    Runs in a thread pool (CPU-bound).  Quality drops from 85 to 60 when the
    first pass is over *max_bytes*.  Returns None if Pillow can't read it.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        buf = BytesIO()
        image.save(buf, "JPEG", quality=85)
        if buf.tell() > max_bytes:
            buf = BytesIO()
            image.save(buf, "JPEG", quality=60)
    except Exception as e:
        log.warning("Error processing image: %s", e)
        return None

    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class ArtworkResolver:

    def __init__(self, cache_size: int = ARTWORK_CACHE_SIZE, max_bytes: int = MAX_ARTWORK_BYTES):
        self.cache = ArtworkCache(max_size=cache_size)
        self.max_bytes = max_bytes
        self._session: aiohttp.ClientSession | None = None

    async def resolve(self, uri: str | None) -> str | None:
        """Return a data URI for *uri*, or None when there is no usable image."""
        if not uri:
            return None
        if uri.startswith("data:"):
            return uri

        cached = self.cache.get(uri)
        if cached is not None:
            log.debug("Artwork cache hit for %s", uri)
            return cached

        log.debug("Artwork cache miss, fetching: %s", uri)
        try:
            image_bytes = await self._load(uri)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning("Error fetching artwork %s: %s", uri, e)
            return None
        except OSError as e:
            log.warning("Error reading artwork %s: %s", uri, e)
            return None

        if not image_bytes:
            log.warning("Artwork %s is empty", uri)
            return None

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            _artwork_executor, encode_image, image_bytes, self.max_bytes)
        if result:
            self.cache.put(uri, result)
            log.info("Cached artwork for %s (%d items in cache)", uri, len(self.cache))
        return result

    async def _load(self, uri: str) -> bytes:
        parsed = urlparse(uri)
        if parsed.scheme in ("http", "https"):
            return await self._download(uri)
        path = unquote(parsed.path) if parsed.scheme == "file" else uri
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_artwork_executor, _read_file, path)

    async def _download(self, url: str) -> bytes:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=FETCH_TIMEOUT))
        async with self._session.get(url) as resp:
            resp.raise_for_status()
            return await resp.read()

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
