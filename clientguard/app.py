"""Application entry point for the client management portal security core"""
import logging

from flask import Flask, jsonify, redirect, session, url_for
from flask.logging import default_handler

from clientguard.config import config
from clientguard.exceptions import AuditWriteError, ConfigurationError
from clientguard.extensions import db

logger = logging.getLogger(__name__)


def create_app(config_name='default'):
    """Create and configure Flask application"""
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])
    missing = [name for name in app.config.get('REQUIRED_SETTINGS', ()) if not app.config.get(name)]
    if missing:
        raise ConfigurationError(f'Missing required settings: {", ".join(missing)}')

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)

    # Register blueprints
    from clientguard.controllers.admin_controller import admin_bp
    from clientguard.controllers.auth_controller import auth_bp
    from clientguard.controllers.dashboard_controller import dashboard_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(dashboard_bp, url_prefix='/dashboard')

    @app.route('/')
    def index():
        if 'user_id' in session:
            return redirect(url_for('dashboard.dashboard'))
        return redirect(url_for('auth.login'))

    register_error_handlers(app)

    from clientguard.cli import register_commands
    register_commands(app)

    # Create database tables
    with app.app_context():
        from clientguard import models  # noqa: F401
        db.create_all()

    return app


def configure_logging(app):
    """Route the package's loggers through Flask's handler at LOG_LEVEL"""
    package_logger = logging.getLogger('clientguard')
    package_logger.setLevel(str(app.config.get('LOG_LEVEL', 'INFO')).upper())
    if default_handler not in package_logger.handlers:
        package_logger.addHandler(default_handler)


def register_error_handlers(app):
    """Register error handlers"""
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(AuditWriteError)
    def audit_write_failed(error):
        # The operation was rolled back with its audit row; do not leave a login behind
        db.session.rollback()
        session.clear()
        logger.error('Request aborted: %s', error)
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500
