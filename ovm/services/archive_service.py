"""
Monthly archive management for the Jobs folder tree.

Month folders ("August 2025") are bundled into a single zip with a manifest.
Archiving and cleanup are separate operations: archiving never deletes, and
cleanup refuses to delete a month unless an archive whose manifest covers
every job currently in that month exists.
"""

import json
import logging
import re
import shutil
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import current_app

from ovm.services.errors import ArchiveError
from ovm.services.media_store import MONTH_NAMES, THUMBNAIL_PREFIX, PHOTO_PATTERN, sanitize_component

logger = logging.getLogger(__name__)

MONTH_FOLDER_PATTERN = re.compile(r'^(' + '|'.join(MONTH_NAMES) + r') (\d{4})$')
LEGACY_BUCKET = 'Legacy Jobs'
MANIFEST_NAME = 'manifest.json'
DOCUMENT_FILES = {'poc': 'POC.pdf', 'pod': 'POD.pdf', 'invoice': 'Invoice.pdf'}

BYTES_PER_MB = 1024 * 1024


def _mb(size_bytes: int) -> float:
    return round(size_bytes / BYTES_PER_MB, 2)


def folder_size(path: Path) -> int:
    return sum(f.stat().st_size for f in path.rglob('*') if f.is_file())


def month_sort_key(month: str):
    match = MONTH_FOLDER_PATTERN.match(month)
    return int(match.group(2)), MONTH_NAMES.index(match.group(1)) + 1


def job_sort_key(job_number: str):
    """Order DDMMYY-prefixed job numbers chronologically, then by sequence."""
    if len(job_number) >= 6 and job_number[:6].isdigit():
        return 0, job_number[4:6], job_number[2:4], job_number[0:2], job_number[6:]
    return 1, '', '', '', job_number


class ArchiveManager:

    def __init__(self, jobs_root, archive_root):
        self.jobs_root = Path(jobs_root)
        self.archive_root = Path(archive_root)

    @classmethod
    def from_config(cls) -> "ArchiveManager":
        return cls(current_app.config['JOBS_STORAGE_ROOT'], current_app.config['ARCHIVE_ROOT'])

    @staticmethod
    def is_month_folder(name: str) -> bool:
        return bool(MONTH_FOLDER_PATTERN.match(name))

    def _month_dir(self, month: str, must_exist: bool = True) -> Path:
        if not self.is_month_folder(month or ''):
            raise ArchiveError(f"Invalid month '{month}'. Expected 'Month YYYY', e.g. 'August 2025'")
        path = self.jobs_root / month
        if must_exist and not path.is_dir():
            raise ArchiveError(f"Month folder not found: {month}", code=404)
        return path

    @staticmethod
    def _job_dirs(month_dir: Path) -> List[Path]:
        return sorted((d for d in month_dir.iterdir() if d.is_dir()), key=lambda d: job_sort_key(d.name))

    # ------------------------------------------------------------------
    # reporting
    # ------------------------------------------------------------------
    def list_months(self) -> List[Dict[str, Any]]:
        """Month buckets newest first; folders outside the Month YYYY scheme are grouped as Legacy Jobs, listed last."""
        if not self.jobs_root.is_dir():
            return []

        months = []
        legacy_jobs = []
        legacy_size = 0
        for entry in self.jobs_root.iterdir():
            if not entry.is_dir():
                continue
            if not self.is_month_folder(entry.name):
                legacy_jobs.append(entry.name)
                legacy_size += folder_size(entry)
                continue
            jobs = [d.name for d in self._job_dirs(entry)]
            months.append({
                'month': entry.name,
                'job_count': len(jobs),
                'total_size_mb': _mb(folder_size(entry)),
                'oldest_job': jobs[0] if jobs else None,
                'newest_job': jobs[-1] if jobs else None,
                'is_legacy': False,
            })

        months.sort(key=lambda m: month_sort_key(m['month']), reverse=True)
        if legacy_jobs:
            legacy_jobs.sort(key=job_sort_key)
            months.append({
                'month': LEGACY_BUCKET,
                'job_count': len(legacy_jobs),
                'total_size_mb': _mb(legacy_size),
                'oldest_job': legacy_jobs[0],
                'newest_job': legacy_jobs[-1],
                'is_legacy': True,
            })
        return months

    def jobs_in_month(self, month: str) -> List[Dict[str, Any]]:
        month_dir = self._month_dir(month)
        jobs = []
        for job_dir in self._job_dirs(month_dir):
            documents = job_dir / 'Documents'
            photos_dir = documents / 'Photos'
            photo_count = 0
            if photos_dir.is_dir():
                photo_count = sum(
                    1 for f in photos_dir.rglob('*')
                    if f.is_file() and PHOTO_PATTERN.search(f.name) and not f.name.startswith(THUMBNAIL_PREFIX)
                )
            jobs.append({
                'job_id': job_dir.name,
                'folder_path': str(job_dir),
                'size_mb': _mb(folder_size(job_dir)),
                'has_documents': {key: (documents / name).is_file() for key, name in DOCUMENT_FILES.items()},
                'photo_count': photo_count,
            })
        jobs.reverse()
        return jobs

    # ------------------------------------------------------------------
    # archive
    # ------------------------------------------------------------------
    def archive_month(self, month: str, archive_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Bundle a month folder into ``{ARCHIVE_ROOT}/{Month-YYYY}-Archive-{timestamp}.zip``.

        The zip holds the month tree under its own folder name plus a
        manifest.json listing the archived job numbers. Source folders are
        left untouched.
        """
        month_dir = self._month_dir(month)
        job_dirs = self._job_dirs(month_dir)
        if not job_dirs:
            raise ArchiveError(f"No jobs to archive in {month}")

        timestamp = datetime.now().strftime('%Y-%m-%dT%H-%M-%S')
        name = sanitize_component(archive_name) if archive_name else ''
        if not name:
            name = f"{month.replace(' ', '-')}-Archive-{timestamp}"
        if not name.endswith('.zip'):
            name = f"{name}.zip"

        self.archive_root.mkdir(parents=True, exist_ok=True)
        archive_path = self.archive_root / name
        partial = archive_path.with_name(f"{archive_path.name}.partial")
        archived_jobs = [d.name for d in job_dirs]
        file_count = 0
        source_bytes = 0

        logger.info(f"Archiving {month}: {len(archived_jobs)} jobs -> {archive_path}")
        try:
            with zipfile.ZipFile(partial, 'w', compression=zipfile.ZIP_DEFLATED, compresslevel=9) as bundle:
                for file_path in sorted(month_dir.rglob('*')):
                    if file_path.is_file():
                        bundle.write(file_path, arcname=file_path.relative_to(self.jobs_root).as_posix())
                        file_count += 1
                        source_bytes += file_path.stat().st_size
                manifest = {
                    'month': month,
                    'jobs': archived_jobs,
                    'job_count': len(archived_jobs),
                    'file_count': file_count,
                    'source_size_bytes': source_bytes,
                    'created_at': datetime.now().isoformat(timespec='seconds'),
                }
                bundle.writestr(MANIFEST_NAME, json.dumps(manifest, indent=2))
            partial.replace(archive_path)
        except OSError as e:
            partial.unlink(missing_ok=True)
            logger.error(f"Archive of {month} failed: {e}", exc_info=True)
            raise ArchiveError(f"Failed to archive {month}: {e}", code=500)

        total_size = archive_path.stat().st_size
        logger.info(
            f"Archive complete: {archive_path.name} ({_mb(total_size)}MB, {file_count} files, "
            f"{_mb(source_bytes)}MB source)"
        )
        return {
            'archive_path': str(archive_path),
            'archive_name': archive_path.name,
            'total_jobs': len(archived_jobs),
            'total_size_mb': _mb(total_size),
            'source_size_mb': _mb(source_bytes),
            'archived_jobs': archived_jobs,
        }

    @staticmethod
    def read_manifest(archive_path: Path) -> Optional[Dict[str, Any]]:
        try:
            with zipfile.ZipFile(archive_path) as bundle:
                return json.loads(bundle.read(MANIFEST_NAME))
        except (zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
            logger.debug(f"No readable manifest in {archive_path}: {e}")
            return None

    def list_archives(self) -> List[Dict[str, Any]]:
        if not self.archive_root.is_dir():
            return []
        archives = []
        for path in sorted(self.archive_root.glob('*.zip')):
            manifest = self.read_manifest(path) or {}
            archives.append({
                'archive_name': path.name,
                'archive_path': str(path),
                'size_mb': _mb(path.stat().st_size),
                'month': manifest.get('month'),
                'jobs': manifest.get('jobs', []),
                'created_at': manifest.get('created_at'),
            })
        return archives

    def find_archive(self, month: str, required_jobs=()) -> Optional[Dict[str, Any]]:
        """Newest archive whose manifest names ``month`` and covers ``required_jobs``."""
        required = set(required_jobs)
        candidates = [
            a for a in self.list_archives()
            if a['month'] == month and required.issubset(a['jobs'])
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a['created_at'] or '')

    # ------------------------------------------------------------------
    # cleanup
    # ------------------------------------------------------------------
    def cleanup_month(self, month: str) -> Dict[str, Any]:
        """Delete a month folder once an archive covering all of its jobs exists."""
        month_dir = self._month_dir(month, must_exist=False)
        result = {'month': month, 'deleted': False, 'jobs_deleted': 0, 'space_freed_mb': 0.0, 'archive_path': None}
        if not month_dir.is_dir():
            result['reason'] = 'Month folder not found'
            return result

        jobs = [d.name for d in self._job_dirs(month_dir)]
        archive = self.find_archive(month, jobs)
        if archive is None:
            logger.warning(f"Cleanup of {month} refused: no archive covers its {len(jobs)} jobs")
            result['reason'] = 'No archive covering this month was found; archive it first'
            return result

        size = folder_size(month_dir)
        shutil.rmtree(month_dir)
        logger.info(f"Cleaned up {month}: {len(jobs)} jobs, {_mb(size)}MB freed (archive {archive['archive_name']})")
        result.update({
            'deleted': True,
            'jobs_deleted': len(jobs),
            'space_freed_mb': _mb(size),
            'archive_path': archive['archive_path'],
        })
        return result

    def storage_stats(self) -> Dict[str, Any]:
        months = self.list_months()
        archives = self.list_archives()
        return {
            'total_months': sum(1 for m in months if not m['is_legacy']),
            'total_jobs': sum(m['job_count'] for m in months),
            'total_size_mb': round(sum(m['total_size_mb'] for m in months), 2),
            'archive_count': len(archives),
            'archive_size_mb': round(sum(a['size_mb'] for a in archives), 2),
            'jobs_root': str(self.jobs_root),
            'archive_root': str(self.archive_root),
        }
