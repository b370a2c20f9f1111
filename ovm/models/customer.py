from sqlalchemy import false

from ovm.extensions import db
from ovm.models.types import JSONVariant, new_id


class Customer(db.Model):
    __tablename__ = 'customer'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(128), nullable=True, index=True)
    mobile = db.Column(db.String(32), nullable=True)
    company_name = db.Column(db.String(128), nullable=True)
    address = db.Column(db.String(256), nullable=True)
    # Per-document recipient lists used when a job has no override
    default_poc_emails = db.Column(JSONVariant, nullable=False, default=list)
    default_pod_emails = db.Column(JSONVariant, nullable=False, default=list)
    default_invoice_emails = db.Column(JSONVariant, nullable=False, default=list)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False, server_default=false())
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    @classmethod
    def query_active(cls):
        """Query active (non-deleted) records only"""
        return cls.query.filter_by(is_deleted=False)

    def default_emails_for(self, document_type):
        return {
            'POC': self.default_poc_emails,
            'POD': self.default_pod_emails,
            'Invoice': self.default_invoice_emails,
        }.get(document_type) or []
