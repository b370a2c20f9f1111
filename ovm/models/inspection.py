from ovm.extensions import db
from ovm.models.types import JSONVariant, new_id


class InspectionRecord(db.Model):
    """One record per (job, stage); auto-save creates it, completion finalizes it."""
    __tablename__ = 'inspection_record'
    __table_args__ = (
        db.UniqueConstraint('job_id', 'stage', name='uq_inspection_job_stage'),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_id = db.Column(db.String(36), db.ForeignKey('job.id', ondelete='CASCADE'), nullable=False, index=True)
    job_number = db.Column(db.String(32), nullable=False, index=True)
    stage = db.Column(db.String(16), nullable=False)
    data = db.Column(JSONVariant, nullable=False, default=dict)
    current_step = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp(), index=True)
    updated_at = db.Column(db.DateTime, default=db.func.current_timestamp(), onupdate=db.func.current_timestamp())

    job = db.relationship('Job', backref=db.backref('inspections', cascade='all, delete-orphan'))

    @property
    def damage_markers(self):
        return (self.data or {}).get('damage_markers') or []

    def __repr__(self):
        return f"<InspectionRecord {self.job_number}/{self.stage}>"
