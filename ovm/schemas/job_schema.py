from marshmallow import Schema, fields, validates, ValidationError
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema, auto_field

from ovm.models.job import Job, JobStatus
from ovm.models.job_audit import JobAudit


class JobSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = Job
        include_fk = True
        exclude = ('is_deleted',)

    id = auto_field(dump_only=True)
    collection_address = fields.Raw(allow_none=True)
    delivery_address = fields.Raw(allow_none=True)
    collection_contact = fields.Raw(allow_none=True)
    delivery_contact = fields.Raw(allow_none=True)
    override_poc_emails = fields.List(fields.Email(), allow_none=True)
    override_pod_emails = fields.List(fields.Email(), allow_none=True)
    override_invoice_emails = fields.List(fields.Email(), allow_none=True)
    vehicle_reg = fields.String(dump_only=True)
    customer_name = fields.Method('get_customer_name', dump_only=True)

    def get_customer_name(self, obj):
        return obj.customer.name if obj.customer else None


class JobCreateSchema(Schema):
    customer_id = fields.String(required=True)
    job_number = fields.String(load_default=None)
    collection_date = fields.Date(load_default=None)
    driver_id = fields.String(load_default=None)
    vehicle_id = fields.String(load_default=None)
    collection_address = fields.Raw(load_default=None)
    delivery_address = fields.Raw(load_default=None)
    collection_contact = fields.Raw(load_default=None)
    delivery_contact = fields.Raw(load_default=None)
    calculated_mileage = fields.Float(load_default=None)
    total_movement_fee = fields.Float(load_default=0.0)
    override_poc_emails = fields.List(fields.Email(), load_default=None)
    override_pod_emails = fields.List(fields.Email(), load_default=None)
    override_invoice_emails = fields.List(fields.Email(), load_default=None)


class JobStatusUpdateSchema(Schema):
    status = fields.String(required=True)
    reason = fields.String(load_default=None)
    changed_by = fields.String(load_default=None)

    @validates('status')
    def validate_status(self, value, **kwargs):
        allowed = [s.value for s in JobStatus]
        if value not in allowed:
            raise ValidationError(f"Status must be one of: {', '.join(allowed)}")


class JobAssignSchema(Schema):
    driver_id = fields.String(required=True)
    vehicle_id = fields.String(load_default=None)
    changed_by = fields.String(load_default=None)


class JobAuditSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = JobAudit
        include_fk = True

    additional_data = fields.Raw(allow_none=True)
