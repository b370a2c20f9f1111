import io
from pathlib import Path

import pytest
from PIL import Image

from ovm.services.errors import InvalidFileType, InvalidJobNumber, InvalidStage, PayloadTooLarge
from ovm.services.image_compression import CompressionPipeline
from ovm.services.media_store import (
    MediaStore,
    month_folder_for,
    parse_collection_date,
    sanitize_component,
)


def _tree(root: Path):
    return sorted(str(p.relative_to(root)) for p in root.rglob('*'))


class TestPathDerivation:

    def test_month_folder_from_job_number(self):
        assert month_folder_for('150825003') == 'August 2025'
        assert month_folder_for('010124001') == 'January 2024'
        assert month_folder_for('311299') == 'December 2099'

    def test_invalid_month_maps_to_unknown(self):
        assert month_folder_for('151325001') == 'Unknown 2025'
        assert month_folder_for('15AB25001') == 'Unknown 2025'

    def test_short_job_number_rejected(self):
        with pytest.raises(InvalidJobNumber):
            month_folder_for('1508')
        with pytest.raises(InvalidJobNumber):
            month_folder_for('../..')

    def test_path_for_is_pure_and_stable(self, store):
        first = store.path_for('150825003')
        second = store.path_for('150825003')
        assert first == second
        assert first.job_folder == store.root / 'August 2025' / '150825003'
        assert first.collection_photos == first.job_folder / 'Documents' / 'Photos' / 'Collection'
        assert first.expenses_delivery == first.job_folder / 'Expenses' / 'Delivery'
        assert not store.root.exists()

    def test_path_for_strips_traversal(self, store):
        folders = store.path_for('../150825003/../x')
        assert '..' not in str(folders.job_folder.relative_to(store.root))
        assert folders.job_folder.parent == store.root / 'August 2025'

    def test_sanitize_component(self):
        assert sanitize_component('a/b\\c..d<e>:"f|g?h*') == 'abcdefgh'

    def test_parse_collection_date(self):
        assert parse_collection_date('150825003').isoformat() == '2025-08-15'
        with pytest.raises(InvalidJobNumber):
            parse_collection_date('310225001')


class TestFolders:

    def test_ensure_folders_is_idempotent(self, store):
        store.ensure_folders('150825003')
        once = _tree(store.root)
        for _ in range(3):
            store.ensure_folders('150825003')
        assert _tree(store.root) == once
        assert 'August 2025/150825003/Expenses/Collection' in once
        assert 'August 2025/150825003/Documents/Photos/Delivery' in once


class TestSaveImage:

    def test_save_image_compresses_and_writes_thumbnail(self, store, make_image):
        asset = store.save_image('150825003', 'front.png', make_image(fmt='PNG'), 'collection', 'damage')

        path = Path(asset.path)
        assert path.name == 'front.jpg'
        assert path.parent == store.path_for('150825003').collection_photos
        with Image.open(path) as img:
            assert img.format == 'JPEG'
            assert img.width <= 1920 and img.height <= 1080
        assert asset.thumbnail_path is not None
        with Image.open(asset.thumbnail_path) as thumb:
            assert max(thumb.size) <= 300
        assert asset.stats['original_size'] > 0
        assert asset.category == 'damage'

    def test_rejects_unsupported_extension(self, store, make_image):
        with pytest.raises(InvalidFileType):
            store.save_image('150825003', 'evil.exe', make_image())
        with pytest.raises(InvalidFileType):
            store.save_image('150825003', 'notes.pdf', b'%PDF')

    def test_rejects_oversized_payload(self, tmp_path, make_image):
        small = MediaStore(tmp_path / 'Jobs', compression=CompressionPipeline(pool_size=1, cache_size=2), max_bytes=100)
        with pytest.raises(PayloadTooLarge):
            small.save_image('150825003', 'big.jpg', make_image())
        assert not (tmp_path / 'Jobs').exists()

    def test_rejects_bad_stage_and_job_number(self, store, make_image):
        with pytest.raises(InvalidStage):
            store.save_image('150825003', 'a.jpg', make_image(), stage='handover')
        with pytest.raises(InvalidJobNumber):
            store.save_image('123', 'a.jpg', make_image())

    def test_filename_is_sanitized(self, store, make_image):
        asset = store.save_image('150825003', '../../etc/passwd.jpg', make_image(200, 100))
        assert Path(asset.path).parent == store.path_for('150825003').collection_photos

    def test_same_stem_does_not_overwrite(self, store, make_image):
        first = store.save_image('150825003', 'front.png', make_image(400, 300, fmt='PNG'))
        second = store.save_image('150825003', 'front.jpg', make_image(400, 300, color=(0, 0, 120)))

        assert first.filename == 'front.jpg'
        assert second.filename == 'front_2.jpg'
        assert Path(first.path).is_file() and Path(second.path).is_file()
        assert Path(first.path).read_bytes() != Path(second.path).read_bytes()
        assert store.list_photos('150825003', 'collection') == [first.path, second.path]
        assert Path(second.thumbnail_path).name.endswith('front_2.jpg')


class TestReceiptsAndDocuments:

    def test_receipt_filename_and_suffix(self, store, make_image):
        first = store.save_expense_receipt('150825003', 'fuel', 'AB12 CDE', make_image(800, 600), 'delivery')
        second = store.save_expense_receipt('150825003', 'fuel', 'AB12 CDE', make_image(800, 600, color=(1, 2, 3)), 'delivery')

        assert first.filename == 'fuel_receipt_150825003 (AB12 CDE).jpg'
        assert second.filename == 'fuel_receipt_150825003 (AB12 CDE)_2.jpg'
        assert Path(first.path).parent == store.path_for('150825003').expenses_delivery
        assert store.list_receipts('150825003', 'delivery') == sorted([first.path, second.path])
        assert store.list_receipts('150825003', 'collection') == []

    def test_save_document_replaces_previous(self, store):
        store.save_document('150825003', 'POC', b'%PDF-1 old')
        path = store.save_document('150825003', 'POC', b'%PDF-1 new')
        assert Path(path).read_bytes() == b'%PDF-1 new'
        assert store.document_exists('150825003', 'POC')
        assert not store.document_exists('150825003', 'POD')
        assert not list(Path(path).parent.glob('*.tmp'))

    def test_unknown_document_type(self, store):
        with pytest.raises(InvalidFileType):
            store.save_document('150825003', 'Contract', b'%PDF')


class TestListAndDelete:

    def test_list_photos_by_stage_and_across_stages(self, store, make_image):
        a = store.save_image('150825003', 'a.jpg', make_image(400, 300), 'collection')
        b = store.save_image('150825003', 'b.jpg', make_image(400, 300, color=(0, 90, 0)), 'delivery')

        assert store.list_photos('150825003', 'collection') == [a.path]
        assert store.list_photos('150825003', 'delivery') == [b.path]
        assert store.list_photos('150825003') == [a.path, b.path]
        assert len(store.list_photos('150825003', 'collection', include_thumbnails=True)) == 2

    def test_list_photos_for_unknown_job_is_empty(self, store):
        assert store.list_photos('010125999') == []

    def test_delete_photo_removes_thumbnail(self, store, make_image):
        asset = store.save_image('150825003', 'a.jpg', make_image(400, 300))
        assert store.delete_photo('150825003', 'collection', 'a.jpg') is True
        assert not Path(asset.path).exists()
        assert not Path(asset.thumbnail_path).exists()
        assert store.delete_photo('150825003', 'collection', 'a.jpg') is False

    def test_delete_receipt(self, store, make_image):
        asset = store.save_expense_receipt('150825003', 'taxi', 'AB12 CDE', make_image(300, 300), 'collection')
        assert store.delete_receipt('150825003', 'collection', asset.filename) is True
        assert store.list_receipts('150825003') == []
        assert store.delete_receipt('150825003', 'collection', asset.filename) is False

    def test_remove_job_folder(self, store):
        store.ensure_folders('150825003')
        assert store.remove_job_folder('150825003') is True
        assert not store.path_for('150825003').job_folder.exists()
        assert store.remove_job_folder('150825003') is False


def test_saved_image_is_rgb_jpeg_for_transparent_png(store, make_image):
    data = make_image(300, 200, color=(10, 20, 30, 0), fmt='PNG', mode='RGBA')
    asset = store.save_image('150825003', 'clear.png', data)
    with Image.open(io.BytesIO(Path(asset.path).read_bytes())) as img:
        assert img.mode == 'RGB'
        # Transparent pixels flattened onto white
        assert all(channel >= 250 for channel in img.getpixel((0, 0)))
