import logging
import os

from flask import Blueprint, jsonify, request, send_file
from marshmallow import ValidationError

from ovm.extensions import db
from ovm.schemas.expense_schema import ExpenseSchema
from ovm.schemas.job_schema import (
    JobAssignSchema,
    JobAuditSchema,
    JobCreateSchema,
    JobSchema,
    JobStatusUpdateSchema,
)
from ovm.services.document_service import DocumentService
from ovm.services.errors import ServiceError
from ovm.services.expense_service import ExpenseService
from ovm.services.inspection_service import InspectionService
from ovm.services.job_service import JobService
from ovm.services.media_store import DOCUMENT_TYPES, MediaStore

logger = logging.getLogger(__name__)

job_bp = Blueprint('job', __name__)
schema = JobSchema()
schema_many = JobSchema(many=True)
create_schema = JobCreateSchema()
status_schema = JobStatusUpdateSchema()
assign_schema = JobAssignSchema()
audit_schema_many = JobAuditSchema(many=True)
expense_schema_many = ExpenseSchema(many=True)


@job_bp.route('', methods=['GET'])
def list_jobs():
    try:
        jobs = JobService.get_all(status=request.args.get('status'))
        return jsonify(schema_many.dump(jobs)), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in list_jobs: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('', methods=['POST'])
def create_job():
    try:
        data = create_schema.load(request.get_json(silent=True) or {})
        job = JobService.create(data)
        return jsonify(schema.dump(job)), 201
    except ValidationError as ve:
        return jsonify({'error': 'Validation failed', 'details': ve.messages}), 400
    except ServiceError as se:
        db.session.rollback()
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unhandled error in create_job: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>', methods=['GET'])
def get_job(job_ref):
    try:
        job = JobService.resolve(job_ref)
        data = schema.dump(job)
        data['inspections'] = {}
        for stage in ('collection', 'delivery'):
            record = InspectionService.find(job.id, stage)
            data['inspections'][stage] = record.id if record else None
        return jsonify(data), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in get_job: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>/status', methods=['POST'])
def update_status(job_ref):
    """Billing and admin transitions: assigned, invoiced, paid, cancelled, aborted."""
    try:
        data = status_schema.load(request.get_json(silent=True) or {})
        job = JobService.transition(job_ref, data['status'], reason=data.get('reason'), changed_by=data.get('changed_by'))
        return jsonify(schema.dump(job)), 200
    except ValidationError as ve:
        return jsonify({'error': 'Validation failed', 'details': ve.messages}), 400
    except ServiceError as se:
        db.session.rollback()
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unhandled error in update_status: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>/assign', methods=['POST'])
def assign_job(job_ref):
    try:
        data = assign_schema.load(request.get_json(silent=True) or {})
        job = JobService.assign(job_ref, data['driver_id'], data.get('vehicle_id'), changed_by=data.get('changed_by'))
        return jsonify(schema.dump(job)), 200
    except ValidationError as ve:
        return jsonify({'error': 'Validation failed', 'details': ve.messages}), 400
    except ServiceError as se:
        db.session.rollback()
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Unhandled error in assign_job: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>/audit', methods=['GET'])
def job_audit(job_ref):
    try:
        return jsonify(audit_schema_many.dump(JobService.audit_trail(job_ref))), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in job_audit: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>/expenses', methods=['GET'])
def job_expenses(job_ref):
    try:
        return jsonify(expense_schema_many.dump(ExpenseService.list_for_job(job_ref))), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in job_expenses: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>/receipts', methods=['GET'])
def job_receipts(job_ref):
    stage = request.args.get('stage') or None
    try:
        job = JobService.resolve(job_ref)
        receipts = MediaStore.from_config().list_receipts(job.job_number, stage)
        return jsonify({'job_number': job.job_number, 'stage': stage, 'count': len(receipts), 'receipts': receipts}), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in job_receipts: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>/documents/<document_type>', methods=['GET'])
def download_document(job_ref, document_type):
    if document_type not in DOCUMENT_TYPES:
        return jsonify({'error': f"Unknown document type '{document_type}'"}), 400
    try:
        job = JobService.resolve(job_ref)
        path = MediaStore.from_config().document_path(job.job_number, document_type)
        if not os.path.isfile(path):
            return jsonify({'error': f"{document_type} has not been generated for job {job.job_number}"}), 404
        return send_file(path, mimetype='application/pdf', as_attachment=True,
                         download_name=f"{document_type}_{job.job_number}.pdf")
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in download_document: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@job_bp.route('/<job_ref>/documents/<document_type>/regenerate', methods=['POST'])
def regenerate_document(job_ref, document_type):
    if document_type not in DOCUMENT_TYPES:
        return jsonify({'error': f"Unknown document type '{document_type}'"}), 400
    try:
        job = JobService.resolve(job_ref)
        inspection = None
        if document_type in ('POC', 'POD'):
            stage = 'collection' if document_type == 'POC' else 'delivery'
            inspection = InspectionService.find(job.id, stage)
            if inspection is None:
                return jsonify({'error': f"No {stage} inspection recorded for job {job.job_number}"}), 409
        task = DocumentService.schedule(job, document_type, inspection=inspection)
        return jsonify({'success': True, 'task': task.to_dict()}), 202
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error in regenerate_document: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
