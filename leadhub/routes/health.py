"""
Health routes: liveness, integration breakers, database reachability.
"""
import logging
from flask import Blueprint, jsonify
from sqlalchemy import text

from leadhub.routes.context import db_session
from leadhub.services.circuit_breaker import all_breakers
from leadhub.services.store import TRANSIENT_ERRORS

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Liveness check."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def api_health():
    """Breaker state of every integration plus a database ping."""
    services = {name: cb.health().to_dict() for name, cb in all_breakers().items()}

    session = db_session()
    try:
        session.execute(text('SELECT 1'))
        database = 'ok'
    except TRANSIENT_ERRORS as e:
        logger.warning("Database ping failed: %s", e)
        database = 'unavailable'
    finally:
        session.close()

    status = 200 if database == 'ok' else 503
    return jsonify({'database': database, 'services': services}), status


@bp.route('/api/health/<service>/reset', methods=['POST'])
def reset_circuit(service):
    cb = all_breakers().get(service)
    if cb is None:
        return jsonify({'error': 'not_found', 'reason': f'unknown service {service}'}), 404
    cb.reset()
    return jsonify({'ok': True, 'service': service, 'state': cb.state})
