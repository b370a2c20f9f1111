from ovm.extensions import db
from ovm.models.types import JSONVariant, new_id
from ovm.utils.timezone_utils import db_now


class JobAudit(db.Model):
    __tablename__ = 'job_audit'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_id = db.Column(db.String(36), db.ForeignKey('job.id', ondelete="CASCADE"), nullable=False, index=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=db_now,
                           server_default=db.func.current_timestamp())
    changed_by = db.Column(db.String(128), nullable=True)
    old_status = db.Column(db.String(50), nullable=True)
    new_status = db.Column(db.String(50), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    additional_data = db.Column(JSONVariant, nullable=True)

    job = db.relationship('Job', backref=db.backref('audit_records', cascade='all, delete-orphan'))
