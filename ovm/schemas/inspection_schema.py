from marshmallow import EXCLUDE, INCLUDE, Schema, fields
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema, auto_field

from ovm.models.inspection import InspectionRecord


class InspectionRecordSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = InspectionRecord
        include_fk = True

    id = auto_field(dump_only=True)
    data = fields.Raw()


class CompletionSchema(Schema):
    """Stage completion payload. Unknown keys are kept and merged into the record."""

    class Meta:
        unknown = INCLUDE

    customer_name = fields.String(load_default=None, allow_none=True)
    signature = fields.String(load_default=None, allow_none=True)
    completed_at = fields.String(load_default=None, allow_none=True)
    inspection = fields.Dict(load_default=dict)
    # Validated per marker by the completion service
    damage_markers = fields.Raw(load_default=None, allow_none=True)
    expenses = fields.List(fields.Raw(), load_default=list)
    driver_id = fields.String(load_default=None, allow_none=True)


class AutoSaveSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    data = fields.Dict(required=True)
    current_step = fields.Integer(load_default=None, allow_none=True)
