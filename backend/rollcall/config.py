"""Configuration module for the Rollcall attendance service."""
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # Ledger
    LEDGER_BACKEND = os.environ.get('LEDGER_BACKEND', 'sql')  # sql, memory

    # Token rotation
    DEFAULT_ROTATION_SECONDS = int(os.environ.get('DEFAULT_ROTATION_SECONDS', 15))
    MAX_ROTATION_SECONDS = 3600
    PIN_LENGTH = 4
    WINDOW_RETENTION = 4
    AUTO_ROTATE = _env_bool('AUTO_ROTATE', True)

    # Verification
    GRACE_SECONDS = int(os.environ.get('GRACE_SECONDS', 5))
    GRACE_POLICY = os.environ.get('GRACE_POLICY', 'pending')  # pending, accept
    SIGNATURE_VERIFIER = os.environ.get('SIGNATURE_VERIFIER', 'none')  # none, hmac-jwt
    SIGNATURE_SECRET = os.environ.get('SIGNATURE_SECRET') or 'signature-secret-change-in-production'
    SIGNATURE_MAX_LENGTH = 4096

    # Feed
    FEED_SUPPRESS_SECONDS = 1.5

    # CORS
    CORS_ORIGINS = ["http://localhost:*", "http://127.0.0.1:*"]

    # Rate Limiting
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_DEFAULT = "2000 per hour"
    REDEEM_RATE_LIMIT = "120 per minute"

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = 'logs/rollcall.log'


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        'sqlite:///rollcall_dev.db'
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')

    # Enhanced security
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    CORS_ORIGINS = [o for o in os.environ.get('CORS_ORIGINS', '').split(',') if o] or ["*"]
    LOG_FILE = os.environ.get('LOG_FILE', '/app/logs/rollcall.log')


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    LEDGER_BACKEND = 'memory'
    AUTO_ROTATE = False
    RATELIMIT_ENABLED = False
    SIGNATURE_VERIFIER = 'none'
    LOG_LEVEL = 'WARNING'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration by name."""
    return config.get(config_name or os.environ.get('FLASK_ENV', 'default'), DevelopmentConfig)
