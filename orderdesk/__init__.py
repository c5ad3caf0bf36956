"""Flask application factory."""
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from orderdesk.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Initialize Redis Cache (report results)
    from orderdesk.services.cache_service import init_cache
    init_cache(app)

    # Setup Prometheus metrics instrumentation
    from orderdesk.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix behind a reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Error Handlers
    from orderdesk.exceptions import OrderDeskError

    @app.errorhandler(OrderDeskError)
    def handle_orderdesk_error(error):
        """Serialize application exceptions as JSON."""
        if error.status_code >= 500:
            app.logger.error(f"OrderDeskError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"OrderDeskError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from orderdesk.blueprints.sales import sales_bp
    from orderdesk.blueprints.returns import returns_bp
    from orderdesk.blueprints.customers import customers_bp
    from orderdesk.blueprints.catalog import catalog_bp
    from orderdesk.blueprints.suppliers import suppliers_bp
    from orderdesk.blueprints.reports import reports_bp
    from orderdesk.blueprints.metrics import metrics_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from orderdesk.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
