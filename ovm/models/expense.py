from sqlalchemy import false

from ovm.extensions import db
from ovm.models.types import new_id

EXPENSE_TYPES = ('fuel', 'train', 'bus', 'taxi', 'other')


class Expense(db.Model):
    __tablename__ = 'expense'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_id = db.Column(db.String(36), db.ForeignKey('job.id', ondelete='CASCADE'), nullable=False, index=True)
    driver_id = db.Column(db.String(36), db.ForeignKey('driver.id', ondelete='SET NULL'), nullable=True, index=True)
    stage = db.Column(db.String(16), nullable=True)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.Text, nullable=True)
    fuel_type = db.Column(db.String(32), nullable=True)
    receipt_path = db.Column(db.String(512), nullable=True)
    is_approved = db.Column(db.Boolean, default=False, nullable=False, server_default=false())
    charge_to_customer = db.Column(db.Boolean, default=False, nullable=False, server_default=false())
    approved_at = db.Column(db.DateTime, nullable=True)
    approved_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    job = db.relationship('Job', backref=db.backref('expenses', cascade='all, delete-orphan'))
    driver = db.relationship('Driver', backref='expenses')

    @property
    def is_chargeable(self):
        return bool(self.is_approved and self.charge_to_customer)
