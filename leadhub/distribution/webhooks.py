"""
Webhook and distribution-pool management for one tenant.

Every function takes the tenant's organization_id and treats rows of other
tenants as missing.
"""
import logging
import secrets

from sqlalchemy import select, delete, func

from leadhub.errors import NotFoundError, ValidationError
from leadhub.models.deal import Funnel, FunnelStage
from leadhub.models.lead_webhook import DistributionMember, LeadWebhook, WebhookLog
from leadhub.models.organization import User
from leadhub.distribution.allocator import effective_leads_today, reset_stale_counters, webhook_today
from leadhub.distribution.ingestion import validate_field_mapping
from leadhub.services.store import retrying_read, translate_errors
from leadhub.timeutil import isoformat, utcnow

logger = logging.getLogger('distribution.webhooks')

TOKEN_BYTES = 24

EDITABLE_FIELDS = {
    'name', 'description', 'is_active', 'funnel_id', 'stage_id', 'owner_id',
    'distribution_enabled', 'field_mapping', 'default_value', 'default_probability',
}


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


# ── Serialization ────────────────────────────────────────────────────────────

def webhook_to_dict(session, webhook: LeadWebhook) -> dict:
    funnel_name = stage_name = owner_name = None
    if webhook.funnel_id:
        funnel_name = session.execute(
            select(Funnel.name).where(Funnel.id == webhook.funnel_id)).scalar_one_or_none()
    if webhook.stage_id:
        stage_name = session.execute(
            select(FunnelStage.name).where(FunnelStage.id == webhook.stage_id)).scalar_one_or_none()
    if webhook.owner_id:
        owner_name = session.execute(
            select(User.name).where(User.id == webhook.owner_id)).scalar_one_or_none()
    return {
        'id': webhook.id,
        'organization_id': webhook.organization_id,
        'name': webhook.name,
        'description': webhook.description,
        'webhook_token': webhook.webhook_token,
        'is_active': webhook.is_active,
        'funnel_id': webhook.funnel_id,
        'stage_id': webhook.stage_id,
        'owner_id': webhook.owner_id,
        'funnel_name': funnel_name,
        'stage_name': stage_name,
        'owner_name': owner_name,
        'distribution_enabled': webhook.distribution_enabled,
        'field_mapping': webhook.field_mapping or {},
        'default_value': webhook.default_value,
        'default_probability': webhook.default_probability,
        'total_leads': webhook.total_leads,
        'last_lead_at': isoformat(webhook.last_lead_at),
        'created_by': webhook.created_by,
        'created_at': isoformat(webhook.created_at),
        'updated_at': isoformat(webhook.updated_at),
    }


def member_to_dict(member: DistributionMember, user: User, today) -> dict:
    return {
        'id': member.id,
        'webhook_id': member.webhook_id,
        'user_id': member.user_id,
        'user_name': user.name if user else None,
        'user_email': user.email if user else None,
        'is_active': member.is_active,
        'max_leads_per_day': member.max_leads_per_day,
        'leads_today': effective_leads_today(member, today),
        'last_lead_at': isoformat(member.last_lead_at),
        'created_at': isoformat(member.created_at),
    }


# ── Validation ───────────────────────────────────────────────────────────────

def _check_owned(session, model, entity, entity_id, organization_id):
    if entity_id is None:
        return
    row = session.get(model, entity_id)
    if row is None or row.organization_id != organization_id:
        raise ValidationError(f'{entity} {entity_id} does not exist')


def _validate_changes(session, organization_id, changes, current: LeadWebhook = None):
    if not isinstance(changes, dict):
        raise ValidationError('request body must be a JSON object')
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"unknown webhook fields: {', '.join(sorted(unknown))}")

    clean = dict(changes)
    if current is None or 'name' in clean:
        name = clean.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('name is required')
        clean['name'] = name.strip()
    if 'field_mapping' in clean:
        clean['field_mapping'] = validate_field_mapping(clean['field_mapping'])
    if 'default_value' in clean:
        v = clean['default_value']
        if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
            raise ValidationError('default_value must be a non-negative number')
        clean['default_value'] = float(v)
    if 'default_probability' in clean:
        p = clean['default_probability']
        if isinstance(p, bool) or not isinstance(p, int) or not 0 <= p <= 100:
            raise ValidationError('default_probability must be an integer between 0 and 100')
    for flag in ('is_active', 'distribution_enabled'):
        if flag in clean and not isinstance(clean[flag], bool):
            raise ValidationError(f'{flag} must be a boolean')

    if 'funnel_id' in clean:
        _check_owned(session, Funnel, 'funnel', clean['funnel_id'], organization_id)
    if 'owner_id' in clean:
        _check_owned(session, User, 'user', clean['owner_id'], organization_id)

    # Stage must belong to the resulting funnel, changed or stored
    if 'stage_id' in clean or 'funnel_id' in clean:
        funnel_id = clean['funnel_id'] if 'funnel_id' in clean else getattr(current, 'funnel_id', None)
        stage_id = clean['stage_id'] if 'stage_id' in clean else getattr(current, 'stage_id', None)
        if stage_id is not None:
            stage = session.get(FunnelStage, stage_id)
            if stage is None or (funnel_id and stage.funnel_id != funnel_id):
                raise ValidationError(f'stage {stage_id} does not belong to the funnel')
            _check_owned(session, Funnel, 'funnel', stage.funnel_id, organization_id)
    return clean


# ── Webhooks ─────────────────────────────────────────────────────────────────

@retrying_read
def get_webhook(session, organization_id, webhook_id) -> LeadWebhook:
    webhook = session.get(LeadWebhook, webhook_id)
    if webhook is None or webhook.organization_id != organization_id or webhook.deleted_at is not None:
        raise NotFoundError('webhook', webhook_id)
    return webhook


@retrying_read
def list_webhooks(session, organization_id):
    rows = session.execute(
        select(LeadWebhook)
        .where(LeadWebhook.organization_id == organization_id, LeadWebhook.deleted_at.is_(None))
        .order_by(LeadWebhook.created_at.desc())
    ).scalars().all()
    return [webhook_to_dict(session, w) for w in rows]


def create_webhook(session, organization_id, data, created_by=None) -> dict:
    clean = _validate_changes(session, organization_id, data)
    webhook = LeadWebhook(
        organization_id=organization_id,
        webhook_token=new_token(),
        created_by=created_by,
        **clean,
    )
    session.add(webhook)
    session.commit()
    logger.info("Webhook %s created for org %s", webhook.id, organization_id)
    return webhook_to_dict(session, webhook)


def update_webhook(session, organization_id, webhook_id, changes) -> dict:
    webhook = get_webhook(session, organization_id, webhook_id)
    clean = _validate_changes(session, organization_id, changes, current=webhook)
    for key, value in clean.items():
        setattr(webhook, key, value)
    webhook.updated_at = utcnow()
    session.commit()
    logger.info("Webhook %s updated (%s)", webhook_id, ', '.join(sorted(clean)) or 'no changes')
    return webhook_to_dict(session, webhook)


def delete_webhook(session, organization_id, webhook_id):
    """
    Retire a webhook: it stops receiving leads and disappears from listings.

    The row stays so its logs and assignment events keep their reference;
    only the distribution pool is removed.
    """
    webhook = get_webhook(session, organization_id, webhook_id)
    with translate_errors(session):
        session.execute(delete(DistributionMember).where(DistributionMember.webhook_id == webhook.id))
        webhook.is_active = False
        webhook.distribution_enabled = False
        webhook.deleted_at = utcnow()
        session.commit()
    logger.info("Webhook %s deleted", webhook_id)


def regenerate_token(session, organization_id, webhook_id) -> dict:
    webhook = get_webhook(session, organization_id, webhook_id)
    webhook.webhook_token = new_token()
    webhook.updated_at = utcnow()
    session.commit()
    logger.info("Webhook %s token regenerated", webhook_id)
    return webhook_to_dict(session, webhook)


def toggle_distribution(session, organization_id, webhook_id, enabled) -> dict:
    if not isinstance(enabled, bool):
        raise ValidationError('enabled must be a boolean')
    webhook = get_webhook(session, organization_id, webhook_id)
    webhook.distribution_enabled = enabled
    webhook.updated_at = utcnow()
    session.commit()
    logger.info("Webhook %s distribution %s", webhook_id, 'enabled' if enabled else 'disabled')
    return {'id': webhook.id, 'distribution_enabled': webhook.distribution_enabled}


@retrying_read
def webhook_logs(session, organization_id, webhook_id, limit=50):
    get_webhook(session, organization_id, webhook_id)
    rows = session.execute(
        select(WebhookLog)
        .where(WebhookLog.webhook_id == webhook_id)
        .order_by(WebhookLog.created_at.desc(), WebhookLog.id.desc())
        .limit(limit)
    ).scalars().all()
    return [
        {
            'id': r.id,
            'webhook_id': r.webhook_id,
            'request_body': r.request_body or {},
            'response_status': r.response_status,
            'response_message': r.response_message,
            'deal_id': r.deal_id,
            'prospect_id': r.prospect_id,
            'assigned_to': r.assigned_to,
            'source_ip': r.source_ip,
            'user_agent': r.user_agent,
            'created_at': isoformat(r.created_at),
        }
        for r in rows
    ]


# ── Distribution pool ────────────────────────────────────────────────────────

def _validate_cap(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError('max_leads_per_day must be a positive integer or null')
    return value


def _get_member(session, webhook_id, user_id) -> DistributionMember:
    member = session.execute(
        select(DistributionMember).where(DistributionMember.webhook_id == webhook_id,
                                         DistributionMember.user_id == user_id)
    ).scalar_one_or_none()
    if member is None:
        raise NotFoundError('distribution member', user_id)
    return member


@retrying_read
def _pool_rows(session, webhook_id):
    return session.execute(
        select(DistributionMember, User)
        .outerjoin(User, User.id == DistributionMember.user_id)
        .where(DistributionMember.webhook_id == webhook_id)
        .order_by(DistributionMember.created_at, DistributionMember.id)
    ).all()


def get_distribution(session, organization_id, webhook_id, now=None) -> dict:
    """Pool of a webhook; stale daily counters are zeroed and persisted."""
    webhook = get_webhook(session, organization_id, webhook_id)
    today = webhook_today(session, webhook, now)
    with translate_errors(session):
        if reset_stale_counters(session, webhook.id, today):
            session.commit()

    return {
        'distribution_enabled': webhook.distribution_enabled,
        'members': [member_to_dict(m, u, today) for m, u in _pool_rows(session, webhook.id)],
    }


def add_member(session, organization_id, webhook_id, user_id, max_leads_per_day=None, now=None) -> dict:
    webhook = get_webhook(session, organization_id, webhook_id)
    if not user_id:
        raise ValidationError('user_id is required')
    user = session.get(User, user_id)
    if user is None or user.organization_id != organization_id:
        raise ValidationError(f'user {user_id} does not belong to this organization')
    cap = _validate_cap(max_leads_per_day)

    exists = session.execute(
        select(func.count(DistributionMember.id))
        .where(DistributionMember.webhook_id == webhook.id, DistributionMember.user_id == user_id)
    ).scalar()
    if exists:
        raise ValidationError(f'user {user_id} is already in the distribution pool')

    member = DistributionMember(webhook_id=webhook.id, user_id=user_id, max_leads_per_day=cap)
    session.add(member)
    session.commit()
    logger.info("User %s added to webhook %s pool (cap=%s)", user_id, webhook_id, cap)
    return member_to_dict(member, user, webhook_today(session, webhook, now))


def update_member(session, organization_id, webhook_id, user_id, changes, now=None) -> dict:
    webhook = get_webhook(session, organization_id, webhook_id)
    if not isinstance(changes, dict):
        raise ValidationError('request body must be a JSON object')
    unknown = set(changes) - {'is_active', 'max_leads_per_day'}
    if unknown:
        raise ValidationError(f"unknown member fields: {', '.join(sorted(unknown))}")

    member = _get_member(session, webhook.id, user_id)
    if 'is_active' in changes:
        if not isinstance(changes['is_active'], bool):
            raise ValidationError('is_active must be a boolean')
        member.is_active = changes['is_active']
    if 'max_leads_per_day' in changes:
        member.max_leads_per_day = _validate_cap(changes['max_leads_per_day'])
    session.commit()
    logger.info("Pool member %s of webhook %s updated", user_id, webhook_id)
    return member_to_dict(member, session.get(User, user_id), webhook_today(session, webhook, now))


def remove_member(session, organization_id, webhook_id, user_id):
    webhook = get_webhook(session, organization_id, webhook_id)
    member = _get_member(session, webhook.id, user_id)
    session.delete(member)
    session.commit()
    logger.info("User %s removed from webhook %s pool", user_id, webhook_id)
