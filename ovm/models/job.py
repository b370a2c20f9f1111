from enum import Enum

from sqlalchemy import false

from ovm.extensions import db
from ovm.models.types import JSONVariant, new_id


class JobStatus(Enum):
    CREATED = "created"
    ASSIGNED = "assigned"
    COLLECTED = "collected"
    DELIVERED = "delivered"
    INVOICED = "invoiced"
    PAID = "paid"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


# Main line, in order. A job only ever moves to the right.
STATUS_FLOW = [
    JobStatus.CREATED,
    JobStatus.ASSIGNED,
    JobStatus.COLLECTED,
    JobStatus.DELIVERED,
    JobStatus.INVOICED,
    JobStatus.PAID,
]
ABSORBING_STATUSES = {JobStatus.CANCELLED, JobStatus.ABORTED}
# Side branches are only reachable before the vehicle is delivered
PRE_DELIVERY_STATUSES = {JobStatus.CREATED, JobStatus.ASSIGNED, JobStatus.COLLECTED}

STAGE_STATUS = {
    'collection': JobStatus.COLLECTED,
    'delivery': JobStatus.DELIVERED,
}

STATUS_TIMESTAMPS = {
    JobStatus.ASSIGNED: 'assigned_at',
    JobStatus.COLLECTED: 'collected_at',
    JobStatus.DELIVERED: 'delivered_at',
    JobStatus.INVOICED: 'invoiced_at',
    JobStatus.PAID: 'paid_at',
    JobStatus.CANCELLED: 'cancelled_at',
    JobStatus.ABORTED: 'aborted_at',
}


def status_rank(status):
    status = JobStatus(status)
    if status in ABSORBING_STATUSES:
        return None
    return STATUS_FLOW.index(status)


def can_transition(current, target):
    """True if ``current -> target`` is a legal move in the job lifecycle."""
    current, target = JobStatus(current), JobStatus(target)
    if current in ABSORBING_STATUSES or current == target:
        return False
    if target in ABSORBING_STATUSES:
        return current in PRE_DELIVERY_STATUSES
    return status_rank(target) > status_rank(current)


class Job(db.Model):
    __tablename__ = 'job'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    # First six characters encode the DDMMYY collection date; media placement depends on it
    job_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    customer_id = db.Column(db.String(36), db.ForeignKey('customer.id', ondelete='CASCADE'), nullable=False, index=True)
    driver_id = db.Column(db.String(36), db.ForeignKey('driver.id', ondelete='SET NULL'), nullable=True, index=True)
    vehicle_id = db.Column(db.String(36), db.ForeignKey('vehicle.id', ondelete='SET NULL'), nullable=True, index=True)
    collection_date = db.Column(db.Date, nullable=True)

    collection_address = db.Column(JSONVariant, nullable=True)
    delivery_address = db.Column(JSONVariant, nullable=True)
    collection_contact = db.Column(JSONVariant, nullable=True)
    delivery_contact = db.Column(JSONVariant, nullable=True)
    calculated_mileage = db.Column(db.Float, nullable=True)
    total_movement_fee = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(32), nullable=False, default=JobStatus.CREATED.value, index=True)
    assigned_at = db.Column(db.DateTime, nullable=True)
    collected_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    invoiced_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    aborted_at = db.Column(db.DateTime, nullable=True)

    # Job-level recipient overrides; None means "use the customer defaults"
    override_poc_emails = db.Column(JSONVariant, nullable=True)
    override_pod_emails = db.Column(JSONVariant, nullable=True)
    override_invoice_emails = db.Column(JSONVariant, nullable=True)

    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())
    updated_at = db.Column(db.DateTime, default=db.func.current_timestamp(), onupdate=db.func.current_timestamp())
    is_deleted = db.Column(db.Boolean, default=False, nullable=False, server_default=false())

    customer = db.relationship('Customer', backref='jobs', lazy='select')
    driver = db.relationship('Driver', backref='jobs', lazy='select')
    vehicle = db.relationship('Vehicle', backref='jobs', lazy='select')

    @classmethod
    def query_active(cls):
        """Query active (non-deleted) records only"""
        return cls.query.filter_by(is_deleted=False)

    @property
    def vehicle_reg(self):
        return self.vehicle.registration if self.vehicle else None

    def override_emails_for(self, document_type):
        return {
            'POC': self.override_poc_emails,
            'POD': self.override_pod_emails,
            'Invoice': self.override_invoice_emails,
        }.get(document_type)

    def __repr__(self):
        return f"<Job {self.job_number} {self.status}>"
