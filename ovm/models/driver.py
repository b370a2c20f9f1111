from sqlalchemy import false

from ovm.extensions import db
from ovm.models.types import new_id


class Driver(db.Model):
    __tablename__ = 'driver'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(128), nullable=True)
    mobile = db.Column(db.String(32), nullable=True)
    license_number = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(32), default='Active', nullable=False)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False, server_default=false())

    @classmethod
    def query_active(cls):
        """Query active (non-deleted) records only"""
        return cls.query.filter_by(is_deleted=False)
