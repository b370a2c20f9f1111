"""
Media Store

Owns the on-disk job folder hierarchy. Every job's media lives under a folder
derived from the DDMMYY prefix of its job number:

    {root}/{Month YYYY}/{jobNumber}/
        Documents/{POC,POD,Invoice}.pdf
        Documents/Photos/{Collection,Delivery}/*.jpg
        Expenses/{Collection,Delivery}/{type}_receipt_{jobNumber} ({vehicleReg}).jpg

The month folder is computed from the job number only, so the same job number
always maps to the same folder. Do not change the derivation once folders
exist for it: existing files would be orphaned.
"""

import logging
import re
import shutil
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import current_app

from ovm.services.errors import (
    InvalidFileType,
    InvalidJobNumber,
    InvalidStage,
    PayloadTooLarge,
)
from ovm.services.image_compression import CompressionPipeline
from ovm.services.watermark import WatermarkEngine

logger = logging.getLogger(__name__)

# Fixed English names: folder placement must not depend on the process locale
MONTH_NAMES = (
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December',
)
STAGES = ('collection', 'delivery')
DOCUMENT_TYPES = ('POC', 'POD', 'Invoice')
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png'}
ALLOWED_EXTENSIONS = IMAGE_EXTENSIONS | {'.pdf', '.txt'}
PHOTO_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif)$', re.IGNORECASE)
RECEIPT_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif|pdf)$', re.IGNORECASE)
THUMBNAIL_PREFIX = 'thumb_'
DEFAULT_MAX_BYTES = 50 * 1024 * 1024

_UNSAFE_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')


def sanitize_component(value) -> str:
    """Strip traversal sequences, reserved characters and path separators."""
    value = str(value).replace('..', '')
    value = _UNSAFE_CHARS.sub('', value)
    value = value.replace('/', '').replace('\\', '')
    return value.strip()


def month_folder_for(job_number: str) -> str:
    """
    Derive the "Month YYYY" folder name from a DDMMYY-prefixed job number.

    An out-of-range month maps to "Unknown YYYY" rather than failing, so any
    job number of six or more characters has a stable folder.

    Raises:
        InvalidJobNumber: If the sanitized job number is shorter than six characters
    """
    sanitized = sanitize_component(job_number)
    if len(sanitized) < 6:
        raise InvalidJobNumber(f"Invalid job number format: '{job_number}'")

    mm, yy = sanitized[2:4], sanitized[4:6]
    month_index = int(mm) - 1 if mm.isdigit() else -1
    month_name = MONTH_NAMES[month_index] if 0 <= month_index < 12 else 'Unknown'
    return f"{month_name} 20{yy}"


def parse_collection_date(job_number: str) -> date:
    """Strictly parse the DDMMYY prefix; used when new job numbers are issued."""
    sanitized = sanitize_component(job_number)
    if len(sanitized) < 6 or not sanitized[:6].isdigit():
        raise InvalidJobNumber(f"Invalid job number format: '{job_number}'")
    try:
        return date(2000 + int(sanitized[4:6]), int(sanitized[2:4]), int(sanitized[0:2]))
    except ValueError:
        raise InvalidJobNumber(f"Job number '{job_number}' does not encode a valid date")


def validate_stage(stage: str) -> str:
    if stage not in STAGES:
        raise InvalidStage(f"Invalid stage '{stage}'. Expected one of: {', '.join(STAGES)}")
    return stage


@dataclass(frozen=True)
class FolderSet:
    month: str
    job_folder: Path
    documents: Path
    photos: Path
    collection_photos: Path
    delivery_photos: Path
    expenses: Path
    expenses_collection: Path
    expenses_delivery: Path

    def photos_for(self, stage: str) -> Path:
        validate_stage(stage)
        return self.collection_photos if stage == 'collection' else self.delivery_photos

    def expenses_for(self, stage: str) -> Path:
        validate_stage(stage)
        return self.expenses_collection if stage == 'collection' else self.expenses_delivery

    def document(self, document_type: str) -> Path:
        if document_type not in DOCUMENT_TYPES:
            raise InvalidFileType(f"Unknown document type '{document_type}'")
        return self.documents / f"{document_type}.pdf"

    def directories(self) -> List[Path]:
        return [
            self.job_folder,
            self.documents,
            self.photos,
            self.collection_photos,
            self.delivery_photos,
            self.expenses,
            self.expenses_collection,
            self.expenses_delivery,
        ]


@dataclass
class MediaAsset:
    path: str
    filename: str
    category: str
    stage: str
    stats: Dict[str, Any] = field(default_factory=dict)
    thumbnail_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'filename': self.filename,
            'category': self.category,
            'stage': self.stage,
            'thumbnail_path': self.thumbnail_path,
            'compression_stats': self.stats,
        }


class MediaStore:
    """Filesystem store for job photos, expense receipts and generated documents."""

    def __init__(self, root, compression: Optional[CompressionPipeline] = None,
                 watermark: Optional[WatermarkEngine] = None, max_bytes: int = DEFAULT_MAX_BYTES):
        self.root = Path(root)
        self.compression = compression or CompressionPipeline()
        self.watermark = watermark or WatermarkEngine()
        self.max_bytes = max_bytes

    @classmethod
    def from_config(cls) -> "MediaStore":
        """Build a store for the current Flask app using the shared compression pipeline."""
        from ovm.extensions import compression

        return cls(
            current_app.config['JOBS_STORAGE_ROOT'],
            compression=compression,
            max_bytes=current_app.config.get('MAX_MEDIA_BYTES', DEFAULT_MAX_BYTES),
        )

    # ------------------------------------------------------------------
    # paths
    # ------------------------------------------------------------------
    def path_for(self, job_number: str) -> FolderSet:
        """Pure path derivation; touches nothing on disk."""
        month = month_folder_for(job_number)
        job_folder = self.root / month / sanitize_component(job_number)
        documents = job_folder / 'Documents'
        photos = documents / 'Photos'
        expenses = job_folder / 'Expenses'
        return FolderSet(
            month=month,
            job_folder=job_folder,
            documents=documents,
            photos=photos,
            collection_photos=photos / 'Collection',
            delivery_photos=photos / 'Delivery',
            expenses=expenses,
            expenses_collection=expenses / 'Collection',
            expenses_delivery=expenses / 'Delivery',
        )

    def ensure_folders(self, job_number: str) -> FolderSet:
        """Create the job subtree. Safe to call before every write."""
        folders = self.path_for(job_number)
        for directory in folders.directories():
            directory.mkdir(parents=True, exist_ok=True)
        return folders

    # ------------------------------------------------------------------
    # validation
    # ------------------------------------------------------------------
    def _check_payload(self, filename: str, data: bytes, allowed_extensions) -> str:
        sanitized = sanitize_component(filename)
        extension = Path(sanitized).suffix.lower()
        if not sanitized or extension not in allowed_extensions:
            raise InvalidFileType(
                f"Invalid file type '{extension or filename}'. Allowed: {', '.join(sorted(allowed_extensions))}"
            )
        if len(data) > self.max_bytes:
            raise PayloadTooLarge(
                f"File size exceeds maximum limit of {self.max_bytes // (1024 * 1024)}MB"
            )
        return sanitized

    @staticmethod
    def _unique_path(path: Path) -> Path:
        if not path.exists():
            return path
        counter = 2
        while True:
            candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
            if not candidate.exists():
                return candidate
            counter += 1

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def save_image(self, job_number: str, filename: str, data: bytes,
                   stage: str = 'collection', category: str = 'general') -> MediaAsset:
        """
        Compress and store a job photo, plus a thumbnail when one can be made.

        The stored file is always JPEG, so the extension is normalised to .jpg
        and a clashing name gets a numeric suffix.

        Raises:
            InvalidJobNumber, InvalidFileType, InvalidStage, PayloadTooLarge,
            ImageProcessingError
        """
        validate_stage(stage)
        sanitized = self._check_payload(filename, data, IMAGE_EXTENSIONS)
        folders = self.ensure_folders(job_number)
        target_dir = folders.photos_for(stage)

        result = self.compression.compress(data, category, generate_thumbnail=True)

        file_path = self._unique_path(target_dir / f"{Path(sanitized).stem}.jpg")
        stored_name = file_path.name
        file_path.write_bytes(result.compressed)

        thumbnail_path = None
        if result.thumbnail:
            try:
                thumb = target_dir / f"{THUMBNAIL_PREFIX}{stored_name}"
                thumb.write_bytes(result.thumbnail)
                thumbnail_path = str(thumb)
            except OSError as e:
                logger.debug(f"Thumbnail write skipped for {file_path}: {e}")

        logger.info(f"Photo saved for job {job_number} ({stage}/{category}): {file_path}")
        return MediaAsset(
            path=str(file_path),
            filename=stored_name,
            category=category,
            stage=stage,
            stats=result.stats(),
            thumbnail_path=thumbnail_path,
        )

    def save_expense_receipt(self, job_number: str, expense_type: str, vehicle_reg: str,
                             data: bytes, stage: str = 'collection') -> MediaAsset:
        """
        Watermark, compress and store an expense receipt.

        Filename: ``{type}_receipt_{jobNumber} ({vehicleReg}).jpg``; a numeric
        suffix is added when the stage already holds a receipt of that type.
        """
        validate_stage(stage)
        if len(data) > self.max_bytes:
            raise PayloadTooLarge(
                f"File size exceeds maximum limit of {self.max_bytes // (1024 * 1024)}MB"
            )
        folders = self.ensure_folders(job_number)

        watermarked = self.watermark.add_watermark(data, job_number, vehicle_reg)
        result = self.compression.compress(watermarked, 'expense', generate_thumbnail=False)

        filename = sanitize_component(
            f"{expense_type}_receipt_{job_number} ({vehicle_reg}).jpg"
        )
        file_path = self._unique_path(folders.expenses_for(stage) / filename)
        file_path.write_bytes(result.compressed)

        logger.info(f"Expense receipt saved: {file_path.name} in {stage} folder")
        return MediaAsset(
            path=str(file_path),
            filename=file_path.name,
            category='expense',
            stage=stage,
            stats=result.stats(),
        )

    def save_document(self, job_number: str, document_type: str, data: bytes) -> str:
        """Write POC.pdf / POD.pdf / Invoice.pdf into the job's Documents folder, replacing any previous one."""
        folders = self.ensure_folders(job_number)
        target = folders.document(document_type)
        if len(data) > self.max_bytes:
            raise PayloadTooLarge(
                f"File size exceeds maximum limit of {self.max_bytes // (1024 * 1024)}MB"
            )
        temp = target.with_suffix('.pdf.tmp')
        temp.write_bytes(data)
        temp.replace(target)
        logger.info(f"{document_type} saved for job {job_number}: {target}")
        return str(target)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    @staticmethod
    def _list(directory: Path, pattern, include_thumbnails: bool = True) -> List[str]:
        if not directory.exists():
            return []
        return sorted(
            str(entry) for entry in directory.iterdir()
            if entry.is_file()
            and pattern.search(entry.name)
            and (include_thumbnails or not entry.name.startswith(THUMBNAIL_PREFIX))
        )

    def list_photos(self, job_number: str, stage: Optional[str] = None,
                    include_thumbnails: bool = False) -> List[str]:
        folders = self.path_for(job_number)
        stages = [validate_stage(stage)] if stage else list(STAGES)
        photos = []
        for item in stages:
            photos.extend(self._list(folders.photos_for(item), PHOTO_PATTERN, include_thumbnails))
        return photos

    def list_receipts(self, job_number: str, stage: Optional[str] = None) -> List[str]:
        folders = self.path_for(job_number)
        stages = [validate_stage(stage)] if stage else list(STAGES)
        receipts = []
        for item in stages:
            receipts.extend(self._list(folders.expenses_for(item), RECEIPT_PATTERN))
        return receipts

    def document_path(self, job_number: str, document_type: str) -> str:
        return str(self.path_for(job_number).document(document_type))

    def document_exists(self, job_number: str, document_type: str) -> bool:
        return self.path_for(job_number).document(document_type).exists()

    # ------------------------------------------------------------------
    # deletes
    # ------------------------------------------------------------------
    def delete_photo(self, job_number: str, stage: str, filename: str) -> bool:
        """Delete a photo and its thumbnail. Returns False when nothing was there."""
        directory = self.path_for(job_number).photos_for(stage)
        name = sanitize_component(filename)
        if not name:
            raise InvalidFileType(f"Invalid file name '{filename}'")
        deleted = False
        for candidate in (directory / name, directory / f"{THUMBNAIL_PREFIX}{name}"):
            if candidate.is_file():
                candidate.unlink()
                deleted = True
        if deleted:
            logger.info(f"Deleted photo {name} ({stage}) for job {job_number}")
        return deleted

    def delete_receipt(self, job_number: str, stage: str, filename: str) -> bool:
        directory = self.path_for(job_number).expenses_for(stage)
        name = sanitize_component(filename)
        target = directory / name
        if name and target.is_file():
            target.unlink()
            logger.info(f"Deleted receipt {name} ({stage}) for job {job_number}")
            return True
        return False

    def remove_job_folder(self, job_number: str) -> bool:
        job_folder = self.path_for(job_number).job_folder
        if job_folder.exists():
            shutil.rmtree(job_folder)
            logger.info(f"Removed job folder {job_folder}")
            return True
        return False
