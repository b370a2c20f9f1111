"""
Stage completion.

Turns a driver's collection/delivery submission into durable state:

1. resolve the job (by id or job number)                      fatal
2. advance the job status for the stage                       fatal
3. merge the payload into the (job, stage) inspection record  best-effort
4. save each submitted expense and its receipt                best-effort, per item
5. schedule the POC/POD document                              best-effort, detached

Once the status is recorded nothing downstream turns the call into a failure.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ovm.extensions import db
from ovm.services.document_service import DocumentService
from ovm.services.expense_service import ExpenseService, decode_receipt
from ovm.services.inspection_service import InspectionService
from ovm.services.job_service import JobService
from ovm.services.media_store import MediaStore, validate_stage
from ovm.utils.timezone_utils import format_datetime_for_api, to_db_datetime, utc_now

logger = logging.getLogger(__name__)

RESERVED_KEYS = {'customer_name', 'signature', 'completed_at', 'inspection', 'damage_markers', 'expenses', 'driver_id'}
MARKER_REQUIRED_FIELDS = ('position', 'type', 'severity')


@dataclass
class CompletionOutcome:
    job_number: str
    stage: str
    job_status: str
    status_changed: bool
    inspection_id: Optional[str] = None
    expenses_created: int = 0
    expenses_failed: int = 0
    expense_ids: List[str] = field(default_factory=list)
    document_task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'message': f"{self.stage.capitalize()} completed for job {self.job_number}",
            'inspection_id': self.inspection_id,
            'job_status': self.job_status,
            'status_changed': self.status_changed,
            'expenses_created': self.expenses_created,
            'expenses_failed': self.expenses_failed,
            'expense_ids': self.expense_ids,
            'document_task_id': self.document_task_id,
        }


def normalize_damage_markers(markers, job_number=None) -> List[Dict[str, Any]]:
    """Keep well-formed markers; malformed entries are logged and dropped."""
    normalized = []
    for index, marker in enumerate(markers):
        if not isinstance(marker, dict):
            logger.warning(f"Job {job_number}: damage marker {index} is not an object, dropped")
            continue
        missing = [name for name in MARKER_REQUIRED_FIELDS if marker.get(name) in (None, '')]
        if missing:
            logger.warning(f"Job {job_number}: damage marker {index} missing {', '.join(missing)}, dropped")
            continue
        photos = marker.get('photos') or []
        if not isinstance(photos, list):
            photos = [photos]
        normalized.append({**marker, 'photos': [str(p) for p in photos if p]})
    return normalized


class CompletionService:

    def __init__(self, store: Optional[MediaStore] = None):
        self._store = store

    @property
    def store(self) -> MediaStore:
        if self._store is None:
            self._store = MediaStore.from_config()
        return self._store

    def complete_stage(self, job_ref, stage, payload: Dict[str, Any]) -> CompletionOutcome:
        """
        Complete ``stage`` for a job.

        Raises:
            InvalidStage: Unknown stage
            JobNotFound: No job matches ``job_ref``
            JobStateError: The job is cancelled or aborted
        """
        validate_stage(stage)
        payload = dict(payload or {})
        job = JobService.resolve(job_ref)

        try:
            status_changed = JobService.advance_for_stage(job, stage)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        outcome = CompletionOutcome(
            job_number=job.job_number,
            stage=stage,
            job_status=job.status,
            status_changed=status_changed,
        )

        record = self._save_inspection(job, stage, payload)
        if record is not None:
            outcome.inspection_id = record.id

        self._save_expenses(job, stage, payload, outcome)

        try:
            task = DocumentService.schedule_for_stage(job, stage, record)
            outcome.document_task_id = task.id
        except Exception as e:
            logger.error(f"Job {job.job_number}: could not schedule {stage} document: {e}", exc_info=True)

        logger.info(
            f"Job {job.job_number} {stage} completed: status {job.status}, inspection {outcome.inspection_id}, "
            f"expenses {outcome.expenses_created} saved / {outcome.expenses_failed} failed"
        )
        return outcome

    def _save_inspection(self, job, stage, payload):
        completed_at = payload.get('completed_at') or format_datetime_for_api(utc_now())
        try:
            completed_at_column = to_db_datetime(completed_at)
        except ValueError:
            logger.warning(f"Job {job.job_number}: unparseable completed_at '{completed_at}', using current time")
            completed_at = format_datetime_for_api(utc_now())
            completed_at_column = to_db_datetime(completed_at)
        snapshot = payload.get('inspection') if isinstance(payload.get('inspection'), dict) else {}
        extra = {k: v for k, v in payload.items() if k not in RESERVED_KEYS}

        request_markers = payload.get('damage_markers')
        if request_markers is not None and not isinstance(request_markers, list):
            logger.warning(f"Job {job.job_number}: damage_markers is not a list, ignored")
            request_markers = None
        if request_markers is not None:
            request_markers = normalize_damage_markers(request_markers, job.job_number)

        def build(existing):
            merged = {**existing, **snapshot, **extra}
            for name in ('customer_name', 'signature'):
                if payload.get(name) is not None:
                    merged[name] = payload[name]
            merged['completed_at'] = completed_at
            # Request markers replace stored ones; an omitted list keeps what is stored
            if request_markers is not None:
                merged['damage_markers'] = request_markers
            else:
                merged['damage_markers'] = existing.get('damage_markers') or []
            return merged

        try:
            return InspectionService.upsert(job, stage, build, completed_at=completed_at_column)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Job {job.job_number}: failed to save {stage} inspection record: {e}", exc_info=True)
            return None

    def _save_expenses(self, job, stage, payload, outcome: CompletionOutcome) -> None:
        items = payload.get('expenses') or []
        if not isinstance(items, list):
            logger.warning(f"Job {job.job_number}: expenses is not a list, ignored")
            return
        driver_id = payload.get('driver_id') or job.driver_id

        for index, item in enumerate(items):
            try:
                if not isinstance(item, dict):
                    raise ValueError("expense entry is not an object")
                expense = ExpenseService.build(job, driver_id, item, stage=stage)
                receipt = decode_receipt(item.get('receipt'))
                if receipt:
                    expense.receipt_path = ExpenseService.save_receipt(self.store, job, expense.type, receipt, stage)
                db.session.add(expense)
                db.session.commit()
                outcome.expenses_created += 1
                outcome.expense_ids.append(expense.id)
            except Exception as e:
                db.session.rollback()
                outcome.expenses_failed += 1
                logger.warning(f"Job {job.job_number}: expense {index + 1} of {len(items)} not saved: {e}")
