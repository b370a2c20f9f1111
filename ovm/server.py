import atexit
import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter.errors import RateLimitExceeded
from werkzeug.exceptions import HTTPException

# Load environment variables from .env file
load_dotenv()

from ovm.config import DevConfig, ProductionConfig  # noqa: E402
from ovm.extensions import compression, db, document_tasks, limiter, mail  # noqa: E402
from ovm.utils.request_logger import RequestLogger  # noqa: E402

logger = logging.getLogger(__name__)

CONFIGS = {
    'development': DevConfig,
    'production': ProductionConfig,
}


def configure_logging(app):
    handlers = [logging.StreamHandler()]
    logs_dir = app.config.get('LOG_DIR')
    if logs_dir:
        os.makedirs(logs_dir, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.join(logs_dir, 'app.log')))
    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        handlers=handlers
    )


def register_blueprints(app):
    from ovm.api.archive import archive_bp
    from ovm.api.expense import expense_bp
    from ovm.api.job import job_bp
    from ovm.api.mobile import mobile_bp
    from ovm.api.tasks import tasks_bp

    for blueprint, prefix in [
        (job_bp, '/api/jobs'),
        (mobile_bp, '/api/mobile'),
        (expense_bp, '/api/expenses'),
        (archive_bp, '/api/archive'),
        (tasks_bp, '/api/tasks'),
    ]:
        app.register_blueprint(blueprint, url_prefix=prefix)
        logger.info(f"Registered blueprint {blueprint.name} at {prefix}")


def register_error_handlers(app):

    @app.errorhandler(HTTPException)
    def http_error(e):
        if e.code >= 500:
            logger.error(f"{e.code} for {request.method} {request.path}: {e}")
        else:
            logger.warning(f"{e.code} for {request.method} {request.path}")
        return jsonify({'error': e.description, 'path': request.path}), e.code

    @app.errorhandler(RateLimitExceeded)
    def ratelimit_handler(e):
        logger.warning(f"Rate limit exceeded for {request.method} {request.url}")
        return jsonify({'error': 'Rate limit exceeded. Please try again later.'}), 429

    @app.errorhandler(Exception)
    def handle_exception(e):
        logger.error(f"Unhandled exception for {request.method} {request.url}: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


def create_app(config_object=DevConfig):
    app = Flask(__name__)
    app.config.from_object(config_object)
    configure_logging(app)

    storage_path = app.config.get('STORAGE_PATH')
    if storage_path:
        os.makedirs(storage_path, exist_ok=True)
    os.makedirs(app.config['JOBS_STORAGE_ROOT'], exist_ok=True)

    db.init_app(app)
    mail.init_app(app)
    limiter.init_app(app)
    compression.init_app(app)
    document_tasks.init_app(app)
    CORS(app, supports_credentials=True, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}})
    RequestLogger.init_app(app)

    register_blueprints(app)
    register_error_handlers(app)

    @app.route('/api/health-check')
    def health_check():
        healthy = db.health_check()
        return jsonify({
            'status': 'ok' if healthy else 'degraded',
            'database': healthy,
            'pool': db.get_pool_stats(),
        }), 200 if healthy else 503

    with app.app_context():
        import ovm.models  # noqa: F401
        db.create_all()
    logger.info("Database connected: %s", "sqlite" if "sqlite" in app.config.get("SQLALCHEMY_DATABASE_URI", "") else "non-sqlite")

    if app.config.get('SCHEDULER_ENABLED'):
        from ovm.services.scheduler_service import scheduler_service
        scheduler_service.init_app(app)
        scheduler_service.start()
        atexit.register(scheduler_service.shutdown)

    atexit.register(document_tasks.shutdown)
    return app


if __name__ == '__main__':
    app = create_app(CONFIGS.get(os.environ.get('OVM_ENV', 'development'), DevConfig))
    app.run(host=app.config.get('FLASK_HOST', '0.0.0.0'), port=app.config.get('FLASK_PORT', 5000),
            debug=app.config.get('DEBUG', False))
