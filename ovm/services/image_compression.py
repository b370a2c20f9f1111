"""
Image Compression Pipeline

Resizes and re-encodes job photos per usage category.
- Content-hash LRU cache (hash of bytes + category) skips repeat encodes
- Fixed pool of reusable encoders, picked round-robin, bounds concurrent encoding
- Batch compression runs items concurrently and reports aggregate statistics
"""

import hashlib
import io
import itertools
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from ovm.services.errors import ImageProcessingError

logger = logging.getLogger(__name__)


COMPRESSION_SETTINGS = {
    # Documentation photos
    'damage': {'quality': 85, 'max_width': 1920, 'max_height': 1080},
    'process': {'quality': 85, 'max_width': 1920, 'max_height': 1080},
    'general': {'quality': 85, 'max_width': 1920, 'max_height': 1080},
    # Receipts need to stay readable
    'expense': {'quality': 92, 'max_width': 1920, 'max_height': 1080},
    # Inline PDF embedding
    'pdf': {'quality': 60, 'max_width': 800, 'max_height': 800},
    'thumbnail': {'quality': 75, 'max_width': 300, 'max_height': 300},
}


@dataclass
class CompressionResult:
    compressed: bytes
    thumbnail: Optional[bytes]
    original_size: int
    compressed_size: int
    compression_ratio: float
    cached: bool = False

    def stats(self) -> Dict[str, Any]:
        return {
            'original_size': self.original_size,
            'compressed_size': self.compressed_size,
            'compression_ratio': round(self.compression_ratio, 4),
        }


def _flatten(img: Image.Image) -> Image.Image:
    """Convert to RGB, compositing any transparency onto white."""
    if img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info):
        rgba = img.convert('RGBA')
        background = Image.new('RGB', rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


class ImageEncoder:
    """Reusable JPEG encoder. Each instance encodes one image at a time."""

    def __init__(self, index: int):
        self.index = index
        self.lock = threading.Lock()
        self.encoded = 0

    def encode(self, data: bytes, settings: Dict[str, int]) -> bytes:
        try:
            with Image.open(io.BytesIO(data)) as source:
                img = ImageOps.exif_transpose(source)
                img = _flatten(img)
                img.thumbnail((settings['max_width'], settings['max_height']), Image.Resampling.LANCZOS)
                output = io.BytesIO()
                img.save(output, format='JPEG', quality=settings['quality'], optimize=True)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise ImageProcessingError(f"Failed to process image: {e}")
        self.encoded += 1
        return output.getvalue()


class EncoderPool:
    """Round-robin pool of encoders; at most ``size`` encodes run at once."""

    def __init__(self, size: int):
        if size < 1:
            raise ValueError("Encoder pool size must be at least 1")
        self.size = size
        self._encoders = [ImageEncoder(i) for i in range(size)]
        self._cycle = itertools.cycle(self._encoders)
        self._cycle_lock = threading.Lock()
        self.dispatched = 0

    @contextmanager
    def acquire(self):
        with self._cycle_lock:
            encoder = next(self._cycle)
            self.dispatched += 1
        with encoder.lock:
            yield encoder


class LRUCache:
    """Thread-safe bounded cache; least recently used entry is evicted first."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._entries: "OrderedDict[str, bytes]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: bytes) -> None:
        if self.capacity <= 0:
            return
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = value
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Compression cache evicted {evicted}")

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class CompressionPipeline:
    """Category-aware image compression with caching and a bounded encoder pool."""

    def __init__(self, pool_size: int = 4, cache_size: int = 100):
        self.configure(pool_size, cache_size)

    def init_app(self, app):
        self.configure(
            app.config.get('COMPRESSION_POOL_SIZE', 4),
            app.config.get('COMPRESSION_CACHE_SIZE', 100),
        )
        app.extensions['ovm_compression'] = self

    def configure(self, pool_size: int, cache_size: int) -> None:
        self.pool = EncoderPool(pool_size)
        self.cache = LRUCache(cache_size)
        logger.info(f"Compression pipeline ready: {pool_size} encoders, cache of {cache_size}")

    @staticmethod
    def cache_key(data: bytes, category: str) -> str:
        return f"{hashlib.md5(data).hexdigest()}-{category}"

    def compress(self, data: bytes, category: str = 'general', generate_thumbnail: bool = True) -> CompressionResult:
        """
        Compress an image for the given usage category.

        Args:
            data: Raw image bytes (JPEG/PNG)
            category: One of COMPRESSION_SETTINGS keys except 'thumbnail'
            generate_thumbnail: Also produce a 300px thumbnail (skipped for 'pdf' and on cache hits)

        Returns:
            CompressionResult

        Raises:
            ImageProcessingError: If the bytes cannot be decoded or encoded
        """
        settings = COMPRESSION_SETTINGS.get(category)
        if settings is None or category == 'thumbnail':
            raise ImageProcessingError(f"Unknown compression category: {category}")
        if not data:
            raise ImageProcessingError("Empty image payload")

        original_size = len(data)
        key = self.cache_key(data, category)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit for {category} image: {original_size // 1024}KB -> {len(cached) // 1024}KB")
            return CompressionResult(
                compressed=cached,
                thumbnail=None,
                original_size=original_size,
                compressed_size=len(cached),
                compression_ratio=(original_size - len(cached)) / original_size,
                cached=True,
            )

        start = time.perf_counter()
        with self.pool.acquire() as encoder:
            compressed = encoder.encode(data, settings)

        thumbnail = None
        if generate_thumbnail and category != 'pdf':
            try:
                with self.pool.acquire() as encoder:
                    thumbnail = encoder.encode(data, COMPRESSION_SETTINGS['thumbnail'])
            except ImageProcessingError as e:
                logger.debug(f"Thumbnail generation skipped: {e}")

        try:
            self.cache.set(key, compressed)
        except Exception as e:
            logger.debug(f"Compression cache write skipped: {e}")

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Compressed {category} image: {original_size // 1024}KB -> "
            f"{len(compressed) // 1024}KB ({elapsed_ms:.1f}ms)"
        )
        return CompressionResult(
            compressed=compressed,
            thumbnail=thumbnail,
            original_size=original_size,
            compressed_size=len(compressed),
            compression_ratio=(original_size - len(compressed)) / original_size,
        )

    def compress_batch(self, images: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Compress many images concurrently. Each item is ``{'id', 'data', 'category'}``.

        Failures are reported per item; one bad image never aborts the batch.
        Results keep the input order.
        """
        start = time.perf_counter()
        logger.info(f"Batch compression of {len(images)} images started")

        def run(item):
            try:
                result = self.compress(item['data'], item.get('category', 'general'), generate_thumbnail=False)
                return {'id': item.get('id'), 'ok': True, 'result': result}
            except ImageProcessingError as e:
                logger.warning(f"Batch item {item.get('id')} failed: {e.message}")
                return {'id': item.get('id'), 'ok': False, 'error': e.message}

        if images:
            with ThreadPoolExecutor(max_workers=self.pool.size, thread_name_prefix="image-batch") as executor:
                results = list(executor.map(run, images))
        else:
            results = []

        total_ms = (time.perf_counter() - start) * 1000
        succeeded = [r['result'] for r in results if r['ok']]
        original_total = sum(r.original_size for r in succeeded)
        compressed_total = sum(r.compressed_size for r in succeeded)
        stats = {
            'count': len(images),
            'succeeded': len(succeeded),
            'failed': len(results) - len(succeeded),
            'total_ms': round(total_ms, 1),
            'avg_ms': round(total_ms / len(images), 1) if images else 0.0,
            'original_bytes': original_total,
            'compressed_bytes': compressed_total,
            'reduction_percent': round((original_total - compressed_total) / original_total * 100, 1)
            if original_total else 0.0,
        }
        logger.info(
            f"Batch complete: {stats['succeeded']}/{stats['count']} images in {stats['total_ms']}ms, "
            f"{original_total // 1024}KB -> {compressed_total // 1024}KB ({stats['reduction_percent']}% reduction)"
        )
        return {'results': results, 'stats': stats}
