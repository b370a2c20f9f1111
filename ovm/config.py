import os
from pathlib import Path


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return default
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration - shared across all environments"""

    # Security
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    BASE_DIR = os.path.dirname(os.path.abspath(__file__))

    # Media storage (Jobs/{Month YYYY}/{jobNumber}/...)
    JOBS_STORAGE_ROOT = os.getenv(
        "JOBS_STORAGE_ROOT",
        str(Path(__file__).resolve().parents[1] / "Jobs"))
    ARCHIVE_ROOT = os.getenv(
        "ARCHIVE_ROOT",
        str(Path(__file__).resolve().parents[1] / "archives"))

    DISPLAY_TIMEZONE = os.environ.get('DISPLAY_TIMEZONE', 'Europe/London')

    # Logging
    LOG_DIR = os.getenv('LOG_DIR', str(Path(__file__).resolve().parents[1] / 'logs'))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Upload limits
    MAX_MEDIA_BYTES = 50 * 1024 * 1024  # 50MB per stored file
    MAX_CONTENT_LENGTH = 64 * 1024 * 1024  # whole request, base64 receipts included

    # Compression pipeline
    COMPRESSION_POOL_SIZE = int(os.environ.get('COMPRESSION_POOL_SIZE', 4))
    COMPRESSION_CACHE_SIZE = int(os.environ.get('COMPRESSION_CACHE_SIZE', 100))

    # Detached document generation
    DOCUMENT_WORKERS = int(os.environ.get('DOCUMENT_WORKERS', 2))
    DOCUMENT_EMAIL_ENABLED = True

    # Monthly archive scheduler
    SCHEDULER_ENABLED = False
    ARCHIVE_AFTER_MONTHS = int(os.environ.get('ARCHIVE_AFTER_MONTHS', 3))

    # Email (documents are sent best-effort)
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'localhost')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'true').lower() == 'true'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'noreply@ovm.local')

    # Rate limiting
    RATELIMIT_DEFAULT = "1000 per day;500 per hour"
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    PHOTO_UPLOAD_RATE_LIMIT = "120 per minute"

    CORS_ORIGINS = _env_list('CORS_ORIGINS', [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5000",
        "http://127.0.0.1:5000",
    ])


class DevConfig(Config):
    """Development configuration"""
    DEBUG = True
    FLASK_HOST = '0.0.0.0'
    FLASK_PORT = 5000

    STORAGE_PATH = str(Path(__file__).resolve().parents[1] / "storage" / "database")
    DB_PATH = os.path.join(STORAGE_PATH, 'ovm.db')
    SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI', f"sqlite:///{DB_PATH}")


class TestConfig(Config):
    """Test configuration - tests override the storage roots per run"""
    TESTING = True
    LOG_DIR = None
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    RATELIMIT_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    COMPRESSION_POOL_SIZE = 2
    COMPRESSION_CACHE_SIZE = 8
    DOCUMENT_WORKERS = 1


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    FLASK_HOST = '::'
    FLASK_PORT = 5000
    SCHEDULER_ENABLED = True

    # Production database - MUST be set via environment
    SQLALCHEMY_DATABASE_URI = os.environ.get('SQLALCHEMY_DATABASE_URI')
