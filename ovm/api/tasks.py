import logging

from flask import Blueprint, jsonify, request

from ovm.extensions import document_tasks

logger = logging.getLogger(__name__)

tasks_bp = Blueprint('tasks', __name__)


@tasks_bp.route('', methods=['GET'])
def list_tasks():
    """Background document tasks, newest first. Optional ?status=failed"""
    records = document_tasks.list(status=request.args.get('status'))
    records.reverse()
    return jsonify({'tasks': [r.to_dict() for r in records], 'count': len(records)}), 200


@tasks_bp.route('/<task_id>', methods=['GET'])
def get_task(task_id):
    record = document_tasks.get(task_id)
    if record is None:
        return jsonify({'error': 'Task not found'}), 404
    return jsonify(record.to_dict()), 200


@tasks_bp.route('/<task_id>/retry', methods=['POST'])
def retry_task(task_id):
    record = document_tasks.get(task_id)
    if record is None:
        return jsonify({'error': 'Task not found'}), 404
    if document_tasks.retry(task_id) is None:
        return jsonify({'error': f"Only failed or cancelled tasks can be retried (status: {record.status})"}), 409
    logger.info(f"Task {task_id} ({record.name}) retried via API")
    return jsonify(record.to_dict()), 202


@tasks_bp.route('/<task_id>/cancel', methods=['POST'])
def cancel_task(task_id):
    record = document_tasks.get(task_id)
    if record is None:
        return jsonify({'error': 'Task not found'}), 404
    if not document_tasks.cancel(task_id):
        return jsonify({'error': f"Task already {record.status}"}), 409
    return jsonify(record.to_dict()), 200
