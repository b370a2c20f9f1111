import io

from PIL import Image

from ovm.services.watermark import WatermarkEngine, watermark_label


def test_label_format():
    assert watermark_label('150825003', 'AB12 CDE') == '150825003 (AB12 CDE)'


def test_watermark_keeps_dimensions_and_marks_corner(make_image):
    original = make_image(1200, 800, color=(200, 30, 30))
    marked = WatermarkEngine().add_watermark(original, '150825003', 'AB12 CDE')

    assert marked != original
    with Image.open(io.BytesIO(marked)) as img:
        assert img.format == 'JPEG'
        assert img.size == (1200, 800)
        # Label background darkens the top-left corner
        red, _, _ = img.getpixel((12, 12))
        assert red < 150
        # Far corner untouched
        red, _, _ = img.getpixel((1190, 790))
        assert red > 150


def test_png_input_becomes_jpeg(make_image):
    original = make_image(400, 300, color=(0, 0, 0, 0), fmt='PNG', mode='RGBA')
    marked = WatermarkEngine(quality=80).add_watermark(original, '010124001', 'NOREG')
    with Image.open(io.BytesIO(marked)) as img:
        assert img.format == 'JPEG'
        assert img.mode == 'RGB'


def test_invalid_image_returned_unchanged():
    data = b'not an image at all'
    assert WatermarkEngine().add_watermark(data, '150825003', 'AB12 CDE') is data
