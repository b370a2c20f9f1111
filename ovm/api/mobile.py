import logging

from flask import Blueprint, current_app, jsonify, request
from marshmallow import ValidationError

from ovm.extensions import db, limiter
from ovm.schemas.expense_schema import ExpenseCreateSchema, ExpenseSchema
from ovm.schemas.inspection_schema import AutoSaveSchema, CompletionSchema, InspectionRecordSchema
from ovm.services.completion_service import CompletionService
from ovm.services.errors import ServiceError
from ovm.services.expense_service import ExpenseService
from ovm.services.inspection_service import InspectionService
from ovm.services.job_service import JobService
from ovm.services.media_store import MediaStore, validate_stage

logger = logging.getLogger(__name__)

mobile_bp = Blueprint('mobile', __name__)
completion_schema = CompletionSchema()
auto_save_schema = AutoSaveSchema()
inspection_schema = InspectionRecordSchema()
expense_create_schema = ExpenseCreateSchema()
expense_schema = ExpenseSchema()


def _photo_rate_limit():
    return current_app.config.get('PHOTO_UPLOAD_RATE_LIMIT', '120 per minute')


@mobile_bp.route('/jobs/<job_ref>/<stage>/complete', methods=['POST'])
def complete_stage(job_ref, stage):
    """
    Driver completes collection or delivery.
    Body: customer_name, signature, completed_at, inspection{}, damage_markers[], expenses[]
    """
    try:
        payload = completion_schema.load(request.get_json(silent=True) or {})
        outcome = CompletionService().complete_stage(job_ref, stage, payload)
        return jsonify(outcome.to_dict()), 200
    except ValidationError as ve:
        return jsonify({'error': 'Validation failed', 'details': ve.messages}), 400
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unhandled error completing {stage} for job {job_ref}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to complete stage'}), 500


@mobile_bp.route('/jobs/<job_ref>/<stage>/auto-save', methods=['POST'])
def auto_save(job_ref, stage):
    try:
        data = auto_save_schema.load(request.get_json(silent=True) or {})
        record = InspectionService.auto_save(job_ref, stage, data['data'], data.get('current_step'))
        return jsonify({
            'success': True,
            'inspection_id': record.id,
            'current_step': record.current_step,
            'updated_at': record.updated_at.isoformat() if record.updated_at else None,
        }), 200
    except ValidationError as ve:
        return jsonify({'error': 'Validation failed', 'details': ve.messages}), 400
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unhandled error auto-saving {stage} for job {job_ref}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to save progress'}), 500


@mobile_bp.route('/jobs/<job_ref>/<stage>/auto-save', methods=['GET'])
def get_auto_save(job_ref, stage):
    try:
        record = InspectionService.get_record(job_ref, stage)
        if record is None:
            return jsonify({'exists': False, 'record': None}), 200
        return jsonify({'exists': True, 'record': inspection_schema.dump(record)}), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error loading {stage} progress for job {job_ref}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to load progress'}), 500


@mobile_bp.route('/jobs/<job_ref>/photos', methods=['POST'])
@limiter.limit(_photo_rate_limit)
def upload_photo(job_ref):
    """
    Upload a job photo
    - multipart form: file, stage (collection|delivery), category (damage|process|general)
    - compressed per category, thumbnail stored alongside
    """
    if 'file' not in request.files:
        return jsonify({'error': 'No file part in request'}), 400
    file = request.files['file']
    if not file or file.filename == '':
        return jsonify({'error': 'No selected file'}), 400

    stage = request.form.get('stage', 'collection')
    category = request.form.get('category', 'general')
    if category not in ('damage', 'process', 'general'):
        return jsonify({'error': f"Invalid category '{category}'"}), 400

    try:
        job = JobService.resolve(job_ref)
        asset = MediaStore.from_config().save_image(job.job_number, file.filename, file.read(), stage, category)
        return jsonify({'success': True, 'photo': asset.to_dict()}), 201
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error uploading photo for job {job_ref}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to upload photo'}), 500


@mobile_bp.route('/jobs/<job_ref>/photos', methods=['GET'])
def list_photos(job_ref):
    stage = request.args.get('stage') or None
    include_thumbnails = request.args.get('include_thumbnails', 'false').lower() == 'true'
    try:
        job = JobService.resolve(job_ref)
        photos = MediaStore.from_config().list_photos(job.job_number, stage, include_thumbnails)
        return jsonify({'job_number': job.job_number, 'stage': stage, 'count': len(photos), 'photos': photos}), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error listing photos for job {job_ref}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to list photos'}), 500


@mobile_bp.route('/jobs/<job_ref>/photos/<stage>/<filename>', methods=['DELETE'])
def delete_photo(job_ref, stage, filename):
    try:
        job = JobService.resolve(job_ref)
        validate_stage(stage)
        if not MediaStore.from_config().delete_photo(job.job_number, stage, filename):
            return jsonify({'error': 'Photo not found'}), 404
        return jsonify({'success': True}), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error deleting photo {filename} for job {job_ref}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to delete photo'}), 500


@mobile_bp.route('/jobs/<job_ref>/expenses', methods=['POST'])
@limiter.limit(_photo_rate_limit)
def submit_expense(job_ref):
    """Ad hoc expense: multipart form with type, amount, description, stage and a receipt file."""
    receipt = request.files.get('receipt')
    if not receipt or receipt.filename == '':
        return jsonify({'error': 'A receipt image is required'}), 400
    try:
        data = expense_create_schema.load(request.form.to_dict())
        expense = ExpenseService.create(job_ref, data, receipt.read())
        return jsonify(expense_schema.dump(expense)), 201
    except ValidationError as ve:
        return jsonify({'error': 'Validation failed', 'details': ve.messages}), 400
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unhandled error submitting expense for job {job_ref}: {e}", exc_info=True)
        return jsonify({'error': 'Failed to submit expense'}), 500
