from sqlalchemy import false

from ovm.extensions import db
from ovm.models.types import new_id


class Vehicle(db.Model):
    __tablename__ = 'vehicle'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    registration = db.Column(db.String(16), nullable=False, index=True)
    make = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)
    colour = db.Column(db.String(32), nullable=True)
    fuel_type = db.Column(db.String(32), nullable=True)  # petrol / diesel / electric / hybrid
    is_deleted = db.Column(db.Boolean, default=False, nullable=False, server_default=false())

    @classmethod
    def query_active(cls):
        """Query active (non-deleted) records only"""
        return cls.query.filter_by(is_deleted=False)
