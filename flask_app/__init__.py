"""
Flask application factory.
"""
import logging
import os
import sys

from flask import Flask

from emby_stats.timezone_utils import get_local_timezone

CONFIG_OBJECTS = {
    'development': 'flask_app.config.DevelopmentConfig',
    'production': 'flask_app.config.ProductionConfig',
    'testing': 'flask_app.config.TestingConfig',
}


def configure_logging(level: str = 'INFO') -> None:
    """Configure root logging for the web app and the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Silence noisy third-party loggers
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)


def create_app(config_name='development', start_scheduler=True):
    """Create and configure the Flask application.

    Args:
        config_name: development, production or testing
        start_scheduler: Start the auto-sync thread when AUTO_SYNC_INTERVAL is set
    """
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    app.config.from_object(CONFIG_OBJECTS.get(config_name, CONFIG_OBJECTS['development']))
    configure_logging(app.config['LOG_LEVEL'])

    app_timezone = get_local_timezone()
    app.config['TIMEZONE_NAME'] = getattr(app_timezone, 'key', 'UTC')

    # Ensure instance folder exists
    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass

    # Initialize extensions
    from flask_app.models import db
    db.init_app(app)

    # Register blueprints
    from flask_app.routes.main import main_bp
    from flask_app.routes.settings import settings_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(settings_bp, url_prefix='/settings')

    # Create database tables and initialize default settings
    with app.app_context():
        db.create_all()
        _initialize_default_settings()

    interval = app.config.get('AUTO_SYNC_INTERVAL', 0)
    if interval and start_scheduler:
        from flask_app.services.sync_scheduler import SyncScheduler
        app.extensions['sync_scheduler'] = SyncScheduler.start(app, interval)

    return app


def _initialize_default_settings():
    """Create default AnalyticsSettings if none exist."""
    from flask_app.models import db, AnalyticsSettings

    if AnalyticsSettings.query.first() is None:
        default_settings = AnalyticsSettings()
        db.session.add(default_settings)
        db.session.commit()
