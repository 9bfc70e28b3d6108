"""
Flask application configuration.
"""
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def clamp_sync_interval(seconds: int) -> int:
    """Auto-sync interval in seconds; 0 disables, otherwise kept within 10-3600."""
    if seconds <= 0:
        return 0
    return max(10, min(seconds, 3600))


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-please-change-in-production'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'instance', 'emby_stats.db'))
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sync engine
    SYNC_PAGE_SIZE = _env_int('SYNC_PAGE_SIZE', 50)
    SYNC_RESUME_LIMIT = _env_int('SYNC_RESUME_LIMIT', 100)
    SYNC_LEASE_TTL = _env_int('SYNC_LEASE_TTL', 1800)
    AUTO_SYNC_INTERVAL = clamp_sync_interval(_env_int('AUTO_SYNC_INTERVAL', 0))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    AUTO_SYNC_INTERVAL = 0
