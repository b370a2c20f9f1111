"""
Inspection records: one per (job, stage).

The driver's app auto-saves its progress into the record while the inspection
is in progress; stage completion merges the final payload into the same row.
Writes for a job are serialized in-process, and the (job_id, stage) unique
constraint catches a writer from another process: the losing insert is rolled
back and retried as an update.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

from ovm.extensions import db
from ovm.models.inspection import InspectionRecord
from ovm.services.job_service import JobService
from ovm.services.media_store import validate_stage

logger = logging.getLogger(__name__)

# job_id -> [lock, holders]; an entry lives only while someone holds or waits on it
_job_locks = {}
_job_locks_guard = threading.Lock()


@contextmanager
def job_lock(job_id):
    with _job_locks_guard:
        entry = _job_locks.get(job_id)
        if entry is None:
            entry = _job_locks[job_id] = [threading.Lock(), 0]
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _job_locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _job_locks[job_id]


class InspectionService:

    @staticmethod
    def find(job_id, stage) -> Optional[InspectionRecord]:
        # Earliest wins if historical duplicates exist
        return InspectionRecord.query.filter_by(job_id=job_id, stage=stage) \
            .order_by(InspectionRecord.created_at.asc()).first()

    @staticmethod
    def upsert(job, stage, build: Callable[[Dict], Dict], **fields) -> InspectionRecord:
        """
        Insert or update the record for (job, stage).

        ``build`` receives a copy of the stored data ({} for a new record) and
        returns the data to store. Extra keyword arguments are set as columns.
        """
        validate_stage(stage)
        job_id, job_number = job.id, job.job_number
        with job_lock(job_id):
            for attempt in range(2):
                record = InspectionService.find(job_id, stage)
                try:
                    if record is None:
                        record = InspectionRecord(
                            job_id=job_id,
                            job_number=job_number,
                            stage=stage,
                            data=build({}),
                        )
                        db.session.add(record)
                    else:
                        record.data = build(dict(record.data or {}))
                    for name, value in fields.items():
                        setattr(record, name, value)
                    db.session.commit()
                    return record
                except IntegrityError:
                    db.session.rollback()
                    if attempt:
                        raise
                    logger.warning(f"Concurrent insert of {stage} inspection for job {job_number}; retrying as update")

    @staticmethod
    def auto_save(job_ref, stage, snapshot: Dict, current_step=None) -> InspectionRecord:
        """Merge an in-progress snapshot over the stored data and remember the step."""
        job = JobService.resolve(job_ref)
        snapshot = dict(snapshot or {})
        fields = {}
        if current_step is not None:
            fields['current_step'] = current_step

        record = InspectionService.upsert(job, stage, lambda existing: {**existing, **snapshot}, **fields)
        logger.info(f"Auto-saved {stage} inspection for job {job.job_number} (step {current_step})")
        return record

    @staticmethod
    def get_record(job_ref, stage) -> Optional[InspectionRecord]:
        job = JobService.resolve(job_ref)
        validate_stage(stage)
        return InspectionService.find(job.id, stage)
