import logging

from flask import Blueprint, jsonify, request

from ovm.services.archive_service import ArchiveManager
from ovm.services.errors import ServiceError

logger = logging.getLogger(__name__)

archive_bp = Blueprint('archive', __name__)


@archive_bp.route('/months', methods=['GET'])
def list_months():
    try:
        months = ArchiveManager.from_config().list_months()
        return jsonify({'months': months, 'count': len(months)}), 200
    except Exception as e:
        logger.error(f"Unhandled error listing archive months: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@archive_bp.route('/months/<month>/jobs', methods=['GET'])
def jobs_in_month(month):
    try:
        jobs = ArchiveManager.from_config().jobs_in_month(month)
        return jsonify({'month': month, 'jobs': jobs, 'count': len(jobs)}), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error listing jobs for {month}: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@archive_bp.route('/months/<month>/archive', methods=['POST'])
def archive_month(month):
    body = request.get_json(silent=True) or {}
    try:
        result = ArchiveManager.from_config().archive_month(month, body.get('archive_name'))
        return jsonify({'success': True, **result}), 201
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error archiving {month}: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@archive_bp.route('/months/<month>/cleanup', methods=['DELETE'])
def cleanup_month(month):
    try:
        result = ArchiveManager.from_config().cleanup_month(month)
        return jsonify(result), 200
    except ServiceError as se:
        return jsonify({'error': se.message}), se.code
    except Exception as e:
        logger.error(f"Unhandled error cleaning up {month}: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@archive_bp.route('/storage-stats', methods=['GET'])
def storage_stats():
    try:
        manager = ArchiveManager.from_config()
        stats = manager.storage_stats()
        stats['archives'] = manager.list_archives()
        for archive in stats['archives']:
            archive.pop('jobs', None)
        return jsonify(stats), 200
    except Exception as e:
        logger.error(f"Unhandled error computing storage stats: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
