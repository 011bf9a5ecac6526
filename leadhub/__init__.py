"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
import logging
import uuid

from flask import Flask, g, jsonify, request

logger = logging.getLogger('leadhub.app')


def create_app():
    """Create and configure the Flask application."""
    from leadhub.logging_config import configure_logging

    app = Flask(__name__)
    configure_logging(app)
    app.json.sort_keys = False

    # ── Request context (picked up by RequestContextFilter) ─────────────────
    @app.before_request
    def bind_request_context():
        g.request_id = request.headers.get('X-Request-Id') or uuid.uuid4().hex[:12]
        g.organization_id = None

    @app.after_request
    def expose_request_id(response):
        response.headers['X-Request-Id'] = g.get('request_id', '')
        return response

    # ── Error rendering ─────────────────────────────────────────────────────
    from leadhub.errors import LeadHubError, TransientStoreError
    from leadhub.services.circuit_breaker import CircuitOpenError
    from leadhub.services.store import TRANSIENT_ERRORS

    @app.errorhandler(LeadHubError)
    def handle_domain_error(e):
        if e.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.reason)
        else:
            logger.info("%s %s → %d %s", request.method, request.path, e.status_code, e.reason)
        return jsonify(e.to_dict()), e.status_code

    # Driver errors that escaped read_with_retry / translate_errors
    def handle_store_error(e):
        return handle_domain_error(TransientStoreError(f'store unavailable: {e.__class__.__name__}'))

    for exc_class in TRANSIENT_ERRORS:
        app.register_error_handler(exc_class, handle_store_error)

    @app.errorhandler(CircuitOpenError)
    def handle_circuit_open(e):
        logger.warning("%s %s short-circuited: %s", request.method, request.path, e)
        return jsonify({'error': 'service_unavailable', 'reason': str(e)}), 503

    # Register blueprints
    from leadhub.routes.health import bp as health_bp
    from leadhub.routes.lead_scoring import bp as lead_scoring_bp
    from leadhub.routes.lead_webhooks import bp as lead_webhooks_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(lead_scoring_bp)
    app.register_blueprint(lead_webhooks_bp)

    # Initialize circuit breakers for external API services
    from leadhub.extensions import redis_client
    from leadhub.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    # Import models so Base.metadata knows about them.
    # Schema is managed by Alembic, no create_all() call.
    import importlib
    for module in ('organization', 'deal', 'lead_score', 'lead_webhook', 'assignment_event'):
        importlib.import_module(f'leadhub.models.{module}')

    return app
