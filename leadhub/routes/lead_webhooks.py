"""
Lead webhook API: webhook CRUD, distribution pool, logs, and the public
receive endpoint that external forms post leads to.
"""
import logging
from flask import Blueprint, jsonify, request

from leadhub.distribution import webhooks
from leadhub.distribution.ingestion import ingest_lead
from leadhub.errors import ValidationError
from leadhub.routes.context import (
    bool_arg, current_organization_id, current_user_id, db_session, json_body,
)
from leadhub.scoring.history import assignment_history, parse_limit

logger = logging.getLogger('routes.lead_webhooks')

bp = Blueprint('lead_webhooks', __name__, url_prefix='/api/lead-webhooks')


# ── Public receive endpoint (token is the credential) ────────────────────────

def _source_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or ''


@bp.route('/receive/<token>', methods=['POST'])
def receive_lead(token):
    payload = request.get_json(silent=True)
    if payload is None and request.form:
        payload = request.form.to_dict()

    session = db_session()
    try:
        result = ingest_lead(
            session, token, payload if payload is not None else {},
            source_ip=_source_ip(),
            user_agent=request.headers.get('User-Agent', '')[:500],
        )
        return jsonify({'success': True, **result.to_dict()}), 201
    finally:
        session.close()


# ── Webhooks ─────────────────────────────────────────────────────────────────

@bp.route('', methods=['GET'])
def list_webhooks():
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.list_webhooks(session, org_id))
    finally:
        session.close()


@bp.route('', methods=['POST'])
def create_webhook():
    body = json_body()
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.create_webhook(session, org_id, body,
                                               created_by=current_user_id())), 201
    finally:
        session.close()


@bp.route('/<webhook_id>', methods=['PUT'])
def update_webhook(webhook_id):
    body = json_body()
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.update_webhook(session, org_id, webhook_id, body))
    finally:
        session.close()


@bp.route('/<webhook_id>', methods=['DELETE'])
def delete_webhook(webhook_id):
    session = db_session()
    try:
        org_id = current_organization_id(session)
        webhooks.delete_webhook(session, org_id, webhook_id)
        return jsonify({'deleted': True, 'id': webhook_id})
    finally:
        session.close()


@bp.route('/<webhook_id>/regenerate-token', methods=['POST'])
def regenerate_token(webhook_id):
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.regenerate_token(session, org_id, webhook_id))
    finally:
        session.close()


@bp.route('/<webhook_id>/logs', methods=['GET'])
def webhook_logs(webhook_id):
    limit = parse_limit(request.args.get('limit'), default=50, maximum=500)
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.webhook_logs(session, org_id, webhook_id, limit=limit))
    finally:
        session.close()


@bp.route('/<webhook_id>/assignments', methods=['GET'])
def webhook_assignments(webhook_id):
    limit = parse_limit(request.args.get('limit'), default=50, maximum=500)
    session = db_session()
    try:
        org_id = current_organization_id(session)
        webhooks.get_webhook(session, org_id, webhook_id)
        return jsonify(assignment_history(session, org_id, webhook_id=webhook_id, limit=limit))
    finally:
        session.close()


# ── Distribution pool ────────────────────────────────────────────────────────

@bp.route('/<webhook_id>/distribution', methods=['GET'])
def get_distribution(webhook_id):
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.get_distribution(session, org_id, webhook_id))
    finally:
        session.close()


@bp.route('/<webhook_id>/distribution/toggle', methods=['PATCH'])
def toggle_distribution(webhook_id):
    body = json_body()
    if 'enabled' not in body:
        raise ValidationError('enabled is required')
    enabled = bool_arg(body['enabled'], 'enabled')
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.toggle_distribution(session, org_id, webhook_id, enabled))
    finally:
        session.close()


@bp.route('/<webhook_id>/distribution/members', methods=['POST'])
def add_member(webhook_id):
    body = json_body()
    session = db_session()
    try:
        org_id = current_organization_id(session)
        member = webhooks.add_member(session, org_id, webhook_id, body.get('user_id'),
                                     max_leads_per_day=body.get('max_leads_per_day'))
        return jsonify(member), 201
    finally:
        session.close()


@bp.route('/<webhook_id>/distribution/members/<user_id>', methods=['PATCH'])
def update_member(webhook_id, user_id):
    body = json_body()
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(webhooks.update_member(session, org_id, webhook_id, user_id, body))
    finally:
        session.close()


@bp.route('/<webhook_id>/distribution/members/<user_id>', methods=['DELETE'])
def remove_member(webhook_id, user_id):
    session = db_session()
    try:
        org_id = current_organization_id(session)
        webhooks.remove_member(session, org_id, webhook_id, user_id)
        return jsonify({'deleted': True, 'user_id': user_id})
    finally:
        session.close()
