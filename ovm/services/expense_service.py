import base64
import binascii
import logging
import re

from ovm.extensions import db
from ovm.models.driver import Driver
from ovm.models.expense import EXPENSE_TYPES, Expense
from ovm.services.errors import ExpenseNotFound, ServiceError
from ovm.services.job_service import JobService
from ovm.services.media_store import MediaStore, validate_stage
from ovm.utils.timezone_utils import db_now

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r'^data:image/[\w.+-]+;base64,(?P<payload>.+)$', re.DOTALL)

UNKNOWN_VEHICLE_REG = 'NOREG'


def decode_receipt(value):
    """
    Decode a ``data:image/...;base64,`` receipt from the mobile app.

    Returns None when no inline image was sent.

    Raises:
        ServiceError: If the payload is not valid base64
    """
    if not value or not isinstance(value, str):
        return None
    match = DATA_URL_PATTERN.match(value.strip())
    if not match:
        return None
    try:
        return base64.b64decode(match.group('payload'), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ServiceError(f"Invalid receipt image data: {e}")


class ExpenseService:

    @staticmethod
    def _validate(data):
        expense_type = (data.get('type') or '').lower()
        if expense_type not in EXPENSE_TYPES:
            raise ServiceError(f"Invalid expense type '{data.get('type')}'. Expected one of: {', '.join(EXPENSE_TYPES)}")
        try:
            amount = float(data.get('amount'))
        except (TypeError, ValueError):
            raise ServiceError("Expense amount must be a number")
        if amount <= 0:
            raise ServiceError("Expense amount must be greater than zero")
        description = (data.get('description') or '').strip() or None
        if expense_type == 'other' and not description:
            raise ServiceError("A description is required for 'other' expenses")
        return expense_type, amount, description

    @staticmethod
    def build(job, driver_id, data, stage=None, receipt_path=None):
        """Create an unsaved Expense row; fuel expenses take the vehicle's fuel type."""
        expense_type, amount, description = ExpenseService._validate(data)
        fuel_type = None
        if expense_type == 'fuel':
            fuel_type = data.get('fuel_type') or (job.vehicle.fuel_type if job.vehicle else None)
        return Expense(
            job_id=job.id,
            driver_id=driver_id or job.driver_id,
            stage=stage,
            type=expense_type,
            amount=amount,
            description=description,
            fuel_type=fuel_type,
            receipt_path=receipt_path,
        )

    @staticmethod
    def save_receipt(store: MediaStore, job, expense_type, receipt: bytes, stage):
        asset = store.save_expense_receipt(
            job.job_number,
            expense_type,
            job.vehicle_reg or UNKNOWN_VEHICLE_REG,
            receipt,
            stage,
        )
        return asset.path

    @staticmethod
    def create(job_ref, data, receipt: bytes, store: MediaStore = None):
        """
        Ad hoc expense submission from the driver app. A receipt image is required.
        """
        job = JobService.resolve(job_ref)
        stage = validate_stage(data.get('stage') or 'collection')
        if not receipt:
            raise ServiceError("A receipt image is required")
        driver_id = data.get('driver_id')
        if driver_id and not Driver.query_active().filter_by(id=driver_id).first():
            raise ServiceError("Driver not found")

        expense_type, _, _ = ExpenseService._validate(data)
        store = store or MediaStore.from_config()
        receipt_path = ExpenseService.save_receipt(store, job, expense_type, receipt, stage)
        expense = ExpenseService.build(job, driver_id, data, stage=stage, receipt_path=receipt_path)
        try:
            db.session.add(expense)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error saving expense for job {job.job_number}: {e}", exc_info=True)
            raise ServiceError("Could not save expense. Please try again later.")
        logger.info(f"Expense {expense.type} {expense.amount:.2f} recorded for job {job.job_number}")
        return expense

    @staticmethod
    def get_by_id(expense_id):
        expense = db.session.get(Expense, expense_id)
        if not expense:
            raise ExpenseNotFound(f"Expense not found: {expense_id}")
        return expense

    @staticmethod
    def approve(expense_id, is_approved, charge_to_customer=False, approved_by=None):
        """Administrator decision on a submitted expense."""
        expense = ExpenseService.get_by_id(expense_id)
        expense.is_approved = bool(is_approved)
        # Only approved expenses can be re-charged
        expense.charge_to_customer = bool(charge_to_customer) and expense.is_approved
        expense.approved_at = db_now() if expense.is_approved else None
        expense.approved_by = approved_by if expense.is_approved else None
        db.session.commit()
        logger.info(
            f"Expense {expense.id} {'approved' if expense.is_approved else 'rejected'}"
            f" (charge to customer: {expense.charge_to_customer}) by {approved_by}"
        )
        return expense

    @staticmethod
    def list_for_job(job_ref):
        job = JobService.resolve(job_ref)
        return Expense.query.filter_by(job_id=job.id).order_by(Expense.created_at.asc()).all()

    @staticmethod
    def list_for_driver(driver_id, approved=None):
        query = Expense.query.filter_by(driver_id=driver_id)
        if approved is not None:
            query = query.filter_by(is_approved=approved)
        return query.order_by(Expense.created_at.desc()).all()

    @staticmethod
    def chargeable_for_job(job_id):
        return Expense.query.filter_by(job_id=job_id, is_approved=True, charge_to_customer=True) \
            .order_by(Expense.created_at.asc()).all()
