import io
import threading
import time

import pytest
from PIL import Image

from ovm.services.errors import ImageProcessingError
from ovm.services.image_compression import (
    COMPRESSION_SETTINGS,
    CompressionPipeline,
    EncoderPool,
    ImageEncoder,
    LRUCache,
)


@pytest.fixture
def pipeline():
    return CompressionPipeline(pool_size=2, cache_size=4)


@pytest.fixture
def busy_encoders(monkeypatch):
    """Slow every encode down and track how many run at the same time."""
    original = ImageEncoder.encode
    lock = threading.Lock()
    state = {'active': 0, 'peak': 0, 'calls': 0}

    def tracked(self, data, settings):
        with lock:
            state['active'] += 1
            state['calls'] += 1
            state['peak'] = max(state['peak'], state['active'])
        try:
            time.sleep(0.02)
            return original(self, data, settings)
        finally:
            with lock:
                state['active'] -= 1

    monkeypatch.setattr(ImageEncoder, 'encode', tracked)
    return state

def _size(data):
    with Image.open(io.BytesIO(data)) as img:
        return img.size


class TestCompress:

    def test_resizes_within_category_bounds_keeping_aspect(self, pipeline, make_image):
        result = pipeline.compress(make_image(2400, 1600), 'general')
        width, height = _size(result.compressed)
        assert width <= 1920 and height <= 1080
        assert abs(width / height - 1.5) < 0.01
        assert result.compressed_size == len(result.compressed)
        assert result.original_size > 0
        assert result.cached is False

    def test_never_enlarges(self, pipeline, make_image):
        result = pipeline.compress(make_image(100, 80), 'general')
        assert _size(result.compressed) == (100, 80)

    def test_thumbnail_generated_except_for_pdf(self, pipeline, make_image):
        general = pipeline.compress(make_image(1200, 900), 'process')
        assert general.thumbnail is not None
        assert max(_size(general.thumbnail)) <= 300

        pdf = pipeline.compress(make_image(1200, 900), 'pdf')
        assert pdf.thumbnail is None
        assert max(_size(pdf.compressed)) <= 800

    def test_expense_keeps_higher_quality(self, pipeline, make_image):
        data = make_image(1600, 1000)
        general = pipeline.compress(data, 'general', generate_thumbnail=False)
        expense = pipeline.compress(data, 'expense', generate_thumbnail=False)
        assert COMPRESSION_SETTINGS['expense']['quality'] > COMPRESSION_SETTINGS['general']['quality']
        assert expense.compressed_size >= general.compressed_size

    def test_rejects_bad_input(self, pipeline, make_image):
        with pytest.raises(ImageProcessingError):
            pipeline.compress(b'definitely not an image', 'general')
        with pytest.raises(ImageProcessingError):
            pipeline.compress(b'', 'general')
        with pytest.raises(ImageProcessingError):
            pipeline.compress(make_image(10, 10), 'thumbnail')
        with pytest.raises(ImageProcessingError):
            pipeline.compress(make_image(10, 10), 'poster')

    def test_transparency_flattened_to_white(self, pipeline, make_image):
        data = make_image(64, 64, color=(0, 0, 0, 0), fmt='PNG', mode='RGBA')
        result = pipeline.compress(data, 'general', generate_thumbnail=False)
        with Image.open(io.BytesIO(result.compressed)) as img:
            assert img.mode == 'RGB'
            assert all(channel >= 250 for channel in img.getpixel((2, 2)))


class TestCache:

    def test_second_call_is_cache_hit_without_encoding(self, pipeline, make_image):
        data = make_image(1200, 900)
        first = pipeline.compress(data, 'damage')
        dispatched = pipeline.pool.dispatched

        second = pipeline.compress(data, 'damage')

        assert second.compressed == first.compressed
        assert second.cached is True
        assert second.thumbnail is None
        assert pipeline.pool.dispatched == dispatched

    def test_category_is_part_of_key(self, pipeline, make_image):
        data = make_image(1200, 900)
        pipeline.compress(data, 'damage', generate_thumbnail=False)
        result = pipeline.compress(data, 'pdf')
        assert result.cached is False
        assert CompressionPipeline.cache_key(data, 'damage') != CompressionPipeline.cache_key(data, 'pdf')

    def test_lru_evicts_least_recently_used(self):
        cache = LRUCache(2)
        cache.set('a', b'1')
        cache.set('b', b'2')
        assert cache.get('a') == b'1'
        cache.set('c', b'3')
        assert 'a' in cache
        assert 'b' not in cache
        assert 'c' in cache
        assert len(cache) == 2

    def test_zero_capacity_cache_stores_nothing(self):
        cache = LRUCache(0)
        cache.set('a', b'1')
        assert len(cache) == 0


class TestEncoderPool:

    def test_round_robin(self):
        pool = EncoderPool(3)
        seen = []
        for _ in range(6):
            with pool.acquire() as encoder:
                seen.append(encoder.index)
        assert seen == [0, 1, 2, 0, 1, 2]
        assert pool.dispatched == 6

    def test_pool_size_must_be_positive(self):
        with pytest.raises(ValueError):
            EncoderPool(0)

    def test_concurrent_compress_is_bounded_by_pool_size(self, pipeline, make_image, busy_encoders):
        images = [make_image(300, 200, color=(20 * n, 10, 10)) for n in range(6)]
        threads = [
            threading.Thread(target=pipeline.compress, args=(data, 'general', False))
            for data in images
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert busy_encoders['calls'] == 6
        assert 1 <= busy_encoders['peak'] <= pipeline.pool.size


class TestBatch:

    def test_batch_reports_per_item_results_in_order(self, pipeline, make_image):
        images = [
            {'id': 'one', 'data': make_image(1000, 800), 'category': 'general'},
            {'id': 'broken', 'data': b'corrupt', 'category': 'general'},
            {'id': 'three', 'data': make_image(900, 700, color=(0, 0, 200)), 'category': 'pdf'},
        ]
        outcome = pipeline.compress_batch(images)

        assert [r['id'] for r in outcome['results']] == ['one', 'broken', 'three']
        assert [r['ok'] for r in outcome['results']] == [True, False, True]
        assert 'error' in outcome['results'][1]

        stats = outcome['stats']
        assert stats['count'] == 3
        assert stats['succeeded'] == 2
        assert stats['failed'] == 1
        assert stats['original_bytes'] == len(images[0]['data']) + len(images[2]['data'])
        assert stats['compressed_bytes'] == sum(r['result'].compressed_size for r in outcome['results'] if r['ok'])

    def test_empty_batch(self, pipeline):
        outcome = pipeline.compress_batch([])
        assert outcome['results'] == []
        assert outcome['stats']['count'] == 0
        assert outcome['stats']['avg_ms'] == 0.0

    def test_large_batch_never_exceeds_pool_size(self, busy_encoders, make_image):
        pipeline = CompressionPipeline(pool_size=2, cache_size=32)
        images = [
            {'id': f'img-{n}', 'data': make_image(300, 200, color=(10 * n, 40, 40)), 'category': 'general'}
            for n in range(12)
        ]

        outcome = pipeline.compress_batch(images)

        assert [r['id'] for r in outcome['results']] == [f'img-{n}' for n in range(12)]
        assert all(r['ok'] for r in outcome['results'])
        assert busy_encoders['calls'] == 12
        assert busy_encoders['peak'] <= pipeline.pool.size
