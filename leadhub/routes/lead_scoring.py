"""
Lead scoring API: config, per-deal scores and history, batches, reporting.

All routes are tenant-scoped by the organization header.
"""
import logging
from flask import Blueprint, jsonify, request

from leadhub.errors import ValidationError
from leadhub.routes.context import (
    bool_arg, current_actor, current_organization_id, db_session, json_body,
)
from leadhub.scoring import config as scoring_config
from leadhub.scoring import history, service
from leadhub.scoring.config import TenantConfigCache

logger = logging.getLogger('routes.lead_scoring')

bp = Blueprint('lead_scoring', __name__, url_prefix='/api/lead-scoring')


# ── Config ───────────────────────────────────────────────────────────────────

@bp.route('/config', methods=['GET'])
def get_config():
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(scoring_config.get_config(session, org_id))
    finally:
        session.close()


@bp.route('/config', methods=['PUT'])
def update_config():
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(scoring_config.update_config(session, org_id, json_body()))
    finally:
        session.close()


# ── Single deal ──────────────────────────────────────────────────────────────

@bp.route('/deal/<deal_id>', methods=['GET'])
def get_deal_score(deal_id):
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(service.get_deal_score(session, org_id, deal_id))
    finally:
        session.close()


@bp.route('/deal/<deal_id>/recalculate', methods=['POST'])
def recalculate_deal(deal_id):
    """Manual recalculation; `with_insight` also asks OpenAI for a summary."""
    body = json_body()
    with_insight = bool_arg(body.get('with_insight'), 'with_insight')
    session = db_session()
    try:
        org_id = current_organization_id(session)
        score = service.compute_score(session, org_id, deal_id, trigger='manual',
                                      actor=current_actor(), with_insight=with_insight)
        return jsonify(score.to_dict())
    finally:
        session.close()


@bp.route('/deal/<deal_id>/history', methods=['GET'])
def deal_history(deal_id):
    limit = history.parse_limit(request.args.get('limit'), default=50, maximum=500)
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(history.deal_history(session, org_id, deal_id, limit=limit))
    finally:
        session.close()


@bp.route('/events', methods=['POST'])
def score_event():
    """Conversation or funnel event for a deal; recalculates if the tenant's config says so."""
    body = json_body()
    deal_id = body.get('deal_id')
    event = body.get('event')
    if not deal_id or not event:
        raise ValidationError('deal_id and event are required')

    session = db_session()
    try:
        org_id = current_organization_id(session)
        score = service.handle_event(session, org_id, deal_id, event, actor=current_actor())
        if score is None:
            return jsonify({'recalculated': False, 'deal_id': deal_id, 'event': event})
        return jsonify({'recalculated': True, 'score': score.to_dict()})
    finally:
        session.close()


# ── Batches ──────────────────────────────────────────────────────────────────

@bp.route('/recalculate-all', methods=['POST'])
def recalculate_all():
    """Every open deal of the tenant; `background: true` hands it to the RQ worker."""
    body = json_body()
    background = bool_arg(body.get('background'), 'background')
    session = db_session()
    try:
        org_id = current_organization_id(session)
        if background:
            from leadhub.jobs import enqueue_recalculate_all
            job_id = enqueue_recalculate_all(org_id, actor=current_actor())
            return jsonify({'queued': True, 'job_id': job_id}), 202

        result = service.recalculate_all(session, org_id, actor=current_actor(),
                                         cache=TenantConfigCache())
        return jsonify(result.to_dict())
    finally:
        session.close()


@bp.route('/recalculate-all/status', methods=['GET'])
def recalculate_all_status():
    from leadhub.jobs import get_status
    session = db_session()
    try:
        org_id = current_organization_id(session)
    finally:
        session.close()
    return jsonify(get_status(org_id) or {'state': 'idle'})


@bp.route('/recalculate-all/cancel', methods=['POST'])
def cancel_recalculate_all():
    from leadhub.jobs import request_cancel
    session = db_session()
    try:
        org_id = current_organization_id(session)
    finally:
        session.close()
    request_cancel(org_id)
    return jsonify({'cancel_requested': True}), 202


@bp.route('/recalculate-stale', methods=['POST'])
def recalculate_stale():
    """Interval trigger, meant for an external scheduler."""
    session = db_session()
    try:
        org_id = current_organization_id(session)
        result = service.recalculate_stale(session, org_id, cache=TenantConfigCache())
        return jsonify(result.to_dict())
    finally:
        session.close()


# ── Reporting ────────────────────────────────────────────────────────────────

@bp.route('/leaderboard', methods=['GET'])
def leaderboard():
    limit = history.parse_limit(request.args.get('limit'))
    label = request.args.get('label') or None
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(history.leaderboard(session, org_id, limit=limit, label=label))
    finally:
        session.close()


@bp.route('/stats', methods=['GET'])
def stats():
    session = db_session()
    try:
        org_id = current_organization_id(session)
        return jsonify(history.stats(session, org_id))
    finally:
        session.close()
