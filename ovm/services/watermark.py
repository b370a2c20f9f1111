"""
Receipt watermarking.

Burns "{jobNumber} ({vehicleReg})" into expense receipt photos before they are
compressed, so a stored receipt can always be traced back to its job.
"""

import io
import logging

from PIL import Image, ImageDraw, ImageFont, ImageOps

logger = logging.getLogger(__name__)

LABEL_FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf")


def watermark_label(job_number: str, vehicle_reg: str) -> str:
    return f"{job_number} ({vehicle_reg})"


def _load_font(size: int):
    for name in LABEL_FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


class WatermarkEngine:
    """Composites the audit label onto the top-left corner of an image."""

    def __init__(self, quality: int = 95):
        self.quality = quality

    def add_watermark(self, data: bytes, job_number: str, vehicle_reg: str) -> bytes:
        """
        Return the watermarked image as JPEG bytes.

        On any failure the original bytes are returned unchanged.
        """
        label = watermark_label(job_number, vehicle_reg)
        try:
            with Image.open(io.BytesIO(data)) as source:
                img = ImageOps.exif_transpose(source).convert('RGBA')

            # Label scales with the image, 48px text on a 1920px-wide photo
            font_size = max(12, img.width // 40)
            font = _load_font(font_size)
            overlay = Image.new('RGBA', img.size, (0, 0, 0, 0))
            draw = ImageDraw.Draw(overlay)

            left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
            padding = font_size // 2
            margin = max(4, font_size // 3)
            box = (
                margin,
                margin,
                margin + (right - left) + padding * 2,
                margin + (bottom - top) + padding * 2,
            )
            draw.rounded_rectangle(box, radius=max(2, font_size // 5), fill=(0, 0, 0, 190))
            text_origin = (margin + padding - left, margin + padding - top)
            # Offset shadow then the label itself
            draw.text((text_origin[0] + 2, text_origin[1] + 2), label, font=font, fill=(0, 0, 0, 150))
            draw.text(text_origin, label, font=font, fill=(255, 255, 255, 255))

            composed = Image.alpha_composite(img, overlay).convert('RGB')
            output = io.BytesIO()
            composed.save(output, format='JPEG', quality=self.quality)
            logger.info(f"Watermark added: \"{label}\"")
            return output.getvalue()
        except Exception as e:
            logger.error(f"Failed to add watermark \"{label}\", keeping original receipt: {e}")
            return data
