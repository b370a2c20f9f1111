from marshmallow import Schema, fields, validate, validates_schema, ValidationError
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema, auto_field

from ovm.models.expense import EXPENSE_TYPES, Expense
from ovm.services.media_store import STAGES


class ExpenseSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = Expense
        include_fk = True

    id = auto_field(dump_only=True)
    receipt_filename = fields.Method('get_receipt_filename', dump_only=True)

    def get_receipt_filename(self, obj):
        if not obj.receipt_path:
            return None
        return obj.receipt_path.replace('\\', '/').rsplit('/', 1)[-1]


class ExpenseCreateSchema(Schema):
    type = fields.String(required=True, validate=validate.OneOf(EXPENSE_TYPES))
    amount = fields.Float(required=True, validate=validate.Range(min=0, min_inclusive=False))
    description = fields.String(load_default=None, allow_none=True)
    fuel_type = fields.String(load_default=None, allow_none=True)
    stage = fields.String(load_default='collection', validate=validate.OneOf(STAGES))
    driver_id = fields.String(load_default=None, allow_none=True)

    @validates_schema
    def validate_other_description(self, data, **kwargs):
        if data.get('type') == 'other' and not (data.get('description') or '').strip():
            raise ValidationError("A description is required for 'other' expenses", 'description')


class ExpenseApprovalSchema(Schema):
    is_approved = fields.Boolean(required=True)
    charge_to_customer = fields.Boolean(load_default=False)
    approved_by = fields.String(load_default=None, allow_none=True)
