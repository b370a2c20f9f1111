import logging

from flask import Blueprint, jsonify, request
from marshmallow import ValidationError

from ovm.extensions import db
from ovm.schemas.expense_schema import ExpenseApprovalSchema, ExpenseSchema
from ovm.services.errors import ServiceError
from ovm.services.expense_service import ExpenseService

logger = logging.getLogger(__name__)

expense_bp = Blueprint('expense', __name__)
schema = ExpenseSchema()
schema_many = ExpenseSchema(many=True)
approval_schema = ExpenseApprovalSchema()


@expense_bp.route('/<expense_id>', methods=['GET'])
def get_expense(expense_id):
    try:
        return jsonify(schema.dump(ExpenseService.get_by_id(expense_id))), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in get_expense: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@expense_bp.route('/<expense_id>/approval', methods=['PUT'])
def approve_expense(expense_id):
    try:
        data = approval_schema.load(request.get_json(silent=True) or {})
        expense = ExpenseService.approve(
            expense_id,
            data['is_approved'],
            charge_to_customer=data.get('charge_to_customer', False),
            approved_by=data.get('approved_by'),
        )
        return jsonify(schema.dump(expense)), 200
    except ValidationError as ve:
        return jsonify({'error': 'Validation failed', 'details': ve.messages}), 400
    except ServiceError as se:
        db.session.rollback()
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unhandled error in approve_expense: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@expense_bp.route('/driver/<driver_id>', methods=['GET'])
def driver_expenses(driver_id):
    approved = request.args.get('approved')
    if approved is not None:
        approved = approved.lower() == 'true'
    try:
        return jsonify(schema_many.dump(ExpenseService.list_for_driver(driver_id, approved))), 200
    except Exception as e:
        logger.error(f"Unhandled error in driver_expenses: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
