import os
import logging
import traceback
from flask import Flask, jsonify
from flask_cors import CORS

from outreach_engine.config import config
from outreach_engine.extensions import db

# (module, blueprint attribute, url prefix)
BLUEPRINTS = [
    ('outreach_engine.routes.event', 'event_bp', '/api/v1'),
    ('outreach_engine.routes.trigger', 'trigger_bp', '/api/v1'),
    ('outreach_engine.routes.sequence', 'sequence_bp', '/api/v1'),
    ('outreach_engine.routes.suppression', 'suppression_bp', '/api/v1'),
    ('outreach_engine.routes.unsubscribe', 'unsubscribe_bp', '/api/v1'),
]


def _register_blueprints(app):
    from importlib import import_module

    for module_name, attribute, url_prefix in BLUEPRINTS:
        try:
            blueprint = getattr(import_module(module_name), attribute)
            app.register_blueprint(blueprint, url_prefix=url_prefix)
            app.logger.info(f"Registered {blueprint.name} blueprint")
        except Exception as e:
            app.logger.error(f"Failed to register {attribute}: {str(e)}")
            app.logger.error(f"Blueprint error traceback: {traceback.format_exc()}")


def create_app(config_name=None):
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app.config.from_object(config[config_name])

    # Validate production configuration if needed
    if config_name == 'production':
        config[config_name].validate_config()

    # Configure CORS
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    # Initialize extensions
    db.init_app(app)

    # Configure logging first so we can see route registration errors
    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))
    if not app.debug:
        if not os.path.exists('logs'):
            os.mkdir('logs')
        file_handler = logging.FileHandler('logs/outreach_engine.log')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        app.logger.setLevel(logging.INFO)
        app.logger.info('Outreach engine startup')

    _register_blueprints(app)

    # Initialize scheduler with app context
    from outreach_engine.services.scheduler import get_sweep_scheduler
    sweep_scheduler = get_sweep_scheduler()
    sweep_scheduler.init_app(app)

    # Start scheduler in production or when explicitly requested
    if config_name == 'production' or app.config.get('START_SCHEDULER', False):
        try:
            sweep_scheduler.start()
            app.logger.info("Sweep scheduler started automatically")
        except Exception as e:
            app.logger.error(f"Failed to start scheduler: {str(e)}")

    # Create database tables (avoid fatal boot failures in production)
    try:
        with app.app_context():
            # In production, only run if explicitly enabled
            if config_name != 'production' or os.environ.get('STARTUP_DB_CREATE_ALL', 'false').lower() == 'true':
                db.create_all()
                app.logger.info("Database tables created/verified")
            else:
                app.logger.info("Skipping db.create_all() on startup in production")
    except Exception as e:
        app.logger.error(f"Failed to create/verify database tables on startup: {str(e)}")

    # Register global error handlers
    from outreach_engine.utils.error_handlers import register_error_handlers
    register_error_handlers(app)
    app.logger.info("Registered global error handlers")

    # Simple health check endpoint
    @app.route('/')
    def index():
        return jsonify({'status': 'ok', 'message': 'Outreach engine is running'})

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=5001, debug=True)
