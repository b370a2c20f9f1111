import logging
from datetime import date

from sqlalchemy import or_

from ovm.extensions import db
from ovm.models.customer import Customer
from ovm.models.driver import Driver
from ovm.models.job import (
    ABSORBING_STATUSES,
    STAGE_STATUS,
    STATUS_TIMESTAMPS,
    Job,
    JobStatus,
    can_transition,
    status_rank,
)
from ovm.models.job_audit import JobAudit
from ovm.models.vehicle import Vehicle
from ovm.services.errors import JobNotFound, JobStateError, ServiceError
from ovm.services.media_store import parse_collection_date
from ovm.utils.timezone_utils import db_now

logger = logging.getLogger(__name__)


class JobService:

    @staticmethod
    def resolve(job_ref):
        """Find a job by internal id or by human job number."""
        if not job_ref:
            raise JobNotFound("Job not found")
        job_ref = str(job_ref).strip()
        job = Job.query_active().filter(
            or_(Job.id == job_ref, Job.job_number == job_ref)
        ).first()
        if not job:
            raise JobNotFound(f"Job not found: {job_ref}")
        return job

    @staticmethod
    def get_all(status=None):
        query = Job.query_active()
        if status:
            query = query.filter_by(status=status)
        return query.order_by(Job.created_at.desc()).all()

    @staticmethod
    def generate_job_number(collection_date: date) -> str:
        """DDMMYY followed by a three digit daily sequence, e.g. 150825003."""
        prefix = collection_date.strftime('%d%m%y')
        existing = db.session.query(Job.job_number).filter(Job.job_number.like(f"{prefix}%")).all()
        sequence = 0
        for (number,) in existing:
            suffix = number[len(prefix):]
            if suffix.isdigit():
                sequence = max(sequence, int(suffix))
        return f"{prefix}{sequence + 1:03d}"

    @staticmethod
    def create(data):
        """
        Create a job. ``job_number`` may be supplied; otherwise it is generated
        from ``collection_date``. The number's date prefix must be a real date.
        """
        customer = Customer.query_active().filter_by(id=data.get('customer_id')).first()
        if not customer:
            raise ServiceError("Customer not found")

        driver = None
        if data.get('driver_id'):
            driver = Driver.query_active().filter_by(id=data['driver_id']).first()
            if not driver:
                raise ServiceError("Driver not found")
        if data.get('vehicle_id') and not Vehicle.query_active().filter_by(id=data['vehicle_id']).first():
            raise ServiceError("Vehicle not found")

        job_number = data.get('job_number')
        if job_number:
            collection_date = parse_collection_date(job_number)
            if Job.query.filter_by(job_number=job_number).first():
                raise ServiceError(f"Job number {job_number} already exists")
        else:
            collection_date = data.get('collection_date')
            if not isinstance(collection_date, date):
                raise ServiceError("collection_date is required when job_number is not given")
            job_number = JobService.generate_job_number(collection_date)

        try:
            job = Job(
                job_number=job_number,
                customer_id=customer.id,
                driver_id=driver.id if driver else None,
                vehicle_id=data.get('vehicle_id'),
                collection_date=collection_date,
                collection_address=data.get('collection_address'),
                delivery_address=data.get('delivery_address'),
                collection_contact=data.get('collection_contact'),
                delivery_contact=data.get('delivery_contact'),
                calculated_mileage=data.get('calculated_mileage'),
                total_movement_fee=data.get('total_movement_fee') or 0.0,
                override_poc_emails=data.get('override_poc_emails'),
                override_pod_emails=data.get('override_pod_emails'),
                override_invoice_emails=data.get('override_invoice_emails'),
                status=JobStatus.CREATED.value,
            )
            db.session.add(job)
            db.session.flush()
            db.session.add(JobAudit(job_id=job.id, old_status=None, new_status=job.status, reason="Job created"))
            if driver:
                JobService._apply_status(job, JobStatus.ASSIGNED, reason="Driver assigned at creation")
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating job {job_number}: {e}", exc_info=True)
            raise ServiceError("Could not create job. Please try again later.")

        logger.info(f"Job {job.job_number} created for customer {customer.name}")
        return job

    @staticmethod
    def _apply_status(job, target: JobStatus, reason=None, changed_by=None, additional_data=None):
        old_status = job.status
        job.status = target.value
        column = STATUS_TIMESTAMPS.get(target)
        if column:
            setattr(job, column, db_now())
        db.session.add(JobAudit(
            job_id=job.id,
            old_status=old_status,
            new_status=target.value,
            reason=reason,
            changed_by=changed_by,
            additional_data=additional_data,
        ))
        logger.info(f"Job {job.job_number} status {old_status} -> {target.value} ({reason})")

    @staticmethod
    def transition(job_ref, target, reason=None, changed_by=None):
        """
        Move a job to ``target`` following the lifecycle rules.

        Used by billing (invoiced, paid), assignment and administrative
        cancellation. Marking a job invoiced schedules the invoice document.

        Raises:
            JobNotFound: Unknown job
            JobStateError: Illegal or backward transition
        """
        job = job_ref if isinstance(job_ref, Job) else JobService.resolve(job_ref)
        try:
            target = JobStatus(target)
        except ValueError:
            raise ServiceError(f"Unknown job status '{target}'")

        if not can_transition(job.status, target):
            raise JobStateError(f"Cannot move job {job.job_number} from {job.status} to {target.value}")

        JobService._apply_status(job, target, reason=reason, changed_by=changed_by)
        db.session.commit()

        if target == JobStatus.INVOICED:
            from ovm.services.document_service import DocumentService
            try:
                DocumentService.schedule(job, 'Invoice')
            except Exception as e:
                logger.error(f"Job {job.job_number}: could not schedule invoice document: {e}", exc_info=True)
        return job

    @staticmethod
    def assign(job_ref, driver_id, vehicle_id=None, changed_by=None):
        job = JobService.resolve(job_ref)
        driver = Driver.query_active().filter_by(id=driver_id).first()
        if not driver:
            raise ServiceError("Driver not found")
        if vehicle_id:
            if not Vehicle.query_active().filter_by(id=vehicle_id).first():
                raise ServiceError("Vehicle not found")
            job.vehicle_id = vehicle_id
        job.driver_id = driver.id
        if job.status == JobStatus.CREATED.value:
            return JobService.transition(job, JobStatus.ASSIGNED, reason=f"Assigned to {driver.name}", changed_by=changed_by)
        if JobStatus(job.status) in ABSORBING_STATUSES:
            raise JobStateError(f"Job {job.job_number} is {job.status} and cannot be reassigned")
        db.session.commit()
        return job

    @staticmethod
    def advance_for_stage(job, stage):
        """
        Record that a stage happened in the field.

        Skipping forward is allowed (created -> collected); a stage already
        reached or passed leaves the status alone. Returns True if the status
        changed. Does not commit.

        Raises:
            JobStateError: The job is cancelled or aborted
        """
        target = STAGE_STATUS[stage]
        current = JobStatus(job.status)
        if current in ABSORBING_STATUSES:
            raise JobStateError(f"Job {job.job_number} is {current.value}; {stage} cannot be completed")
        if status_rank(current) >= status_rank(target):
            logger.info(f"Job {job.job_number} already {current.value}; {stage} completion leaves status unchanged")
            return False
        JobService._apply_status(job, target, reason=f"{stage.capitalize()} completed by driver")
        return True

    @staticmethod
    def audit_trail(job_ref):
        job = JobService.resolve(job_ref)
        return JobAudit.query.filter_by(job_id=job.id).order_by(JobAudit.changed_at.asc()).all()
