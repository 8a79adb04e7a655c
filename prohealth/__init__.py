"""
ProHealth Partner Program
Flask application factory
"""
import os
import re
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.cache import init_cache
from .utils.errors import error_response, ErrorCode
from .utils.exceptions import ProHealthError, ShopifyError
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    validate_config(config_name)
    config = get_config(config_name)

    # Setup logging before anything else
    setup_logging(config.LOG_LEVEL)

    app = Flask(__name__)
    app.config.from_object(config)

    db.init_app(app)
    migrate.init_app(app, db)
    init_cache(app)

    cors_origins = [
        'http://localhost:5173',
        'http://127.0.0.1:5173',
        'https://admin.shopify.com',
        re.compile(r'https://.*\.myshopify\.com'),
    ]
    CORS(
        app,
        origins=cors_origins,
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'X-Shop-Domain', 'X-Edit-Token'],
    )

    register_blueprints(app)

    from .commands import init_app as init_commands
    init_commands(app)

    register_error_handlers(app)

    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'prohealth-partners'}

    return app


def register_blueprints(app: Flask) -> None:
    """Register all API and webhook blueprints."""
    from .api.partners import partners_bp
    from .api.signups import signups_bp
    from .api.analytics import analytics_bp
    from .api.settings import settings_bp
    from .api.edit_mode import edit_mode_bp
    from .api.shopify_oauth import shopify_oauth_bp
    from .webhooks import orders_bp, app_lifecycle_bp

    app.register_blueprint(partners_bp, url_prefix='/api/partners')
    app.register_blueprint(signups_bp, url_prefix='/api/signups')
    app.register_blueprint(analytics_bp, url_prefix='/api/analytics')
    app.register_blueprint(settings_bp, url_prefix='/api/settings')
    app.register_blueprint(edit_mode_bp, url_prefix='/api/edit-mode')
    app.register_blueprint(shopify_oauth_bp, url_prefix='/api/shopify')

    app.register_blueprint(orders_bp, url_prefix='/webhook')
    app.register_blueprint(app_lifecycle_bp, url_prefix='/webhook')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""

    @app.errorhandler(ProHealthError)
    def handle_prohealth_error(error):
        if isinstance(error, ShopifyError):
            logger.error(f'Shopify error: {error.message} {error.user_errors or ""}')
            return error_response(
                'Shopify request failed, please retry',
                ErrorCode.SHOPIFY_ERROR,
                error.status_code,
                log_error=False,
            )
        return error_response(error.message, error.code, error.status_code)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return error_response('An unexpected error occurred', ErrorCode.INTERNAL_ERROR, 500)
