"""
Lead ingestion: turns one inbound webhook call into a prospect + deal.

    token → webhook → payload mapping → Prospect + Deal → assignment → logs

Everything is written in a single transaction. The distribution claim runs in
a savepoint: if no member has capacity, or the claim hits a store error, the
lead is still created, unassigned. Every call against a known webhook leaves a
WebhookLog row, including rejected ones; successful calls also leave one
AssignmentEvent.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Tuple

from sqlalchemy import select, update

from leadhub.errors import CapacityExhausted, NotFoundError, TransientStoreError, ValidationError
from leadhub.models.assignment_event import AssignmentEvent
from leadhub.models.deal import Deal, FunnelStage, Prospect
from leadhub.models.lead_webhook import LeadWebhook, WebhookLog
from leadhub.models.organization import new_id
from leadhub.distribution.allocator import select_assignee
from leadhub.services.notifications import notify_capacity_exhausted
from leadhub.services.store import TRANSIENT_ERRORS, translate_errors
from leadhub.timeutil import as_utc, utcnow

logger = logging.getLogger('distribution.ingestion')

PROSPECT_FIELDS = ('name', 'phone', 'email', 'company', 'city', 'job_title')
MAPPABLE_FIELDS = PROSPECT_FIELDS + ('value',)

MAX_FIELD_LENGTH = 1000


@dataclass
class IngestResult:
    deal_id: str
    prospect_id: str
    assigned_user_id: Optional[str]
    outcome: str

    def to_dict(self):
        return asdict(self)


# ── Payload handling ─────────────────────────────────────────────────────────

def normalize_payload(payload) -> Dict[str, str]:
    """Flat JSON object → {key: str}; nulls dropped, nested values rejected."""
    if not isinstance(payload, dict):
        raise ValidationError('payload must be a JSON object')
    flat = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, (dict, list)):
            raise ValidationError(f"field '{key}' must be a scalar value")
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        flat[str(key)] = str(value).strip()[:MAX_FIELD_LENGTH]
    return flat


def validate_field_mapping(mapping) -> Dict[str, str]:
    if mapping is None:
        return {}
    if not isinstance(mapping, dict):
        raise ValidationError('field_mapping must be an object of payload key → field')
    for key, target in mapping.items():
        if not isinstance(key, str) or not isinstance(target, str):
            raise ValidationError('field_mapping keys and values must be strings')
        if target not in MAPPABLE_FIELDS:
            raise ValidationError(
                f"field_mapping target '{target}' must be one of {', '.join(MAPPABLE_FIELDS)}"
            )
    return dict(mapping)


def map_fields(flat: Dict[str, str], field_mapping: Dict[str, str]) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Split a normalized payload into (known fields, extra_fields).

    A key listed in field_mapping goes to its target. A key that already is a
    known field name is taken as is. Anything else is kept in extra_fields.
    """
    mapped, extra = {}, {}
    for key, value in flat.items():
        target = field_mapping.get(key)
        if target is None and key in MAPPABLE_FIELDS:
            target = key
        if target is None:
            extra[key] = value
        elif value and not mapped.get(target):
            mapped[target] = value
    return mapped, extra


def parse_value(raw: Optional[str], default: float) -> float:
    if not raw:
        return float(default or 0.0)
    cleaned = raw.replace(' ', '')
    if ',' in cleaned and '.' not in cleaned:
        cleaned = cleaned.replace(',', '.')
    else:
        cleaned = cleaned.replace(',', '')
    try:
        value = float(cleaned)
    except ValueError:
        raise ValidationError(f"value '{raw}' is not a number")
    if value < 0:
        raise ValidationError('value must not be negative')
    return value


# ── Persistence helpers ──────────────────────────────────────────────────────

def find_webhook_by_token(session, token) -> Optional[LeadWebhook]:
    if not token:
        return None
    return session.execute(
        select(LeadWebhook).where(LeadWebhook.webhook_token == token,
                                  LeadWebhook.deleted_at.is_(None))
    ).scalar_one_or_none()


def _initial_stage_id(session, webhook):
    if webhook.stage_id or not webhook.funnel_id:
        return webhook.stage_id
    return session.execute(
        select(FunnelStage.id)
        .where(FunnelStage.funnel_id == webhook.funnel_id)
        .order_by(FunnelStage.position, FunnelStage.id)
        .limit(1)
    ).scalar_one_or_none()


def _request_body(payload):
    return payload if isinstance(payload, dict) else {'raw': str(payload)[:MAX_FIELD_LENGTH]}


def _write_rejection(session, webhook, payload, status, message, source_ip, user_agent):
    """Log a rejected call in its own transaction."""
    session.rollback()
    session.add(WebhookLog(
        webhook_id=webhook.id,
        request_body=_request_body(payload),
        response_status=status,
        response_message=message,
        source_ip=source_ip or '',
        user_agent=user_agent or '',
    ))
    try:
        session.commit()
    except TRANSIENT_ERRORS as e:
        session.rollback()
        logger.error("Webhook log for %s not written: %s", webhook.id, e)


def _assign(session, webhook, now):
    """(user_id, outcome, reason) for a new lead."""
    if not webhook.distribution_enabled:
        if webhook.owner_id:
            return webhook.owner_id, 'owner_default', 'distribution disabled'
        return None, 'unassigned', 'distribution disabled and no owner configured'

    try:
        with session.begin_nested():
            user_id = select_assignee(session, webhook.id, now=now)
        return user_id, 'assigned', 'round robin'
    except CapacityExhausted as e:
        return None, 'unassigned', e.reason
    except TRANSIENT_ERRORS as e:
        logger.error("Distribution for webhook %s failed, lead left unassigned: %s", webhook.id, e)
        return None, 'unassigned', f'store error: {e.__class__.__name__}'


# ── Entry point ──────────────────────────────────────────────────────────────

def ingest_lead(session, token, payload, source_ip='', user_agent='', now=None) -> IngestResult:
    """
    Create a prospect and deal from an inbound webhook payload.

    Raises NotFoundError for unknown or inactive tokens, ValidationError for
    payloads without a name or phone (or with nested/invalid values) and
    TransientStoreError when the lead could not be stored.
    """
    now = as_utc(now) or utcnow()

    webhook = find_webhook_by_token(session, token)
    if webhook is None:
        logger.warning("Lead received for unknown webhook token from %s", source_ip or '?')
        raise NotFoundError('webhook')
    if not webhook.is_active:
        _write_rejection(session, webhook, payload, 404, 'webhook inactive', source_ip, user_agent)
        logger.warning("Lead received for inactive webhook %s", webhook.id)
        raise NotFoundError('webhook')

    try:
        flat = normalize_payload(payload)
        mapped, extra = map_fields(flat, webhook.field_mapping or {})
        if not mapped.get('name') and not mapped.get('phone'):
            raise ValidationError('lead needs at least a name or a phone')
        value = parse_value(mapped.get('value'), webhook.default_value)
    except ValidationError as e:
        _write_rejection(session, webhook, payload, 400, e.reason, source_ip, user_agent)
        logger.info("Lead rejected for webhook %s: %s", webhook.id, e.reason)
        raise

    try:
        with translate_errors(session):
            prospect = Prospect(
                id=new_id(),
                organization_id=webhook.organization_id,
                extra_fields=extra,
                source=f'webhook:{webhook.name}',
                created_at=now,
                **{f: mapped.get(f, '') for f in PROSPECT_FIELDS},
            )
            session.add(prospect)

            deal = Deal(
                id=new_id(),
                organization_id=webhook.organization_id,
                funnel_id=webhook.funnel_id,
                stage_id=_initial_stage_id(session, webhook),
                prospect_id=prospect.id,
                title=prospect.name or prospect.phone,
                value=value,
                probability=webhook.default_probability or 0,
                status='open',
                created_at=now,
                updated_at=now,
            )
            session.add(deal)
            session.flush()

            user_id, outcome, reason = _assign(session, webhook, now)
            deal.owner_id = user_id

            session.execute(
                update(LeadWebhook)
                .where(LeadWebhook.id == webhook.id)
                .values(total_leads=LeadWebhook.total_leads + 1, last_lead_at=now)
                .execution_options(synchronize_session=False)
            )
            session.add(AssignmentEvent(
                organization_id=webhook.organization_id,
                webhook_id=webhook.id,
                deal_id=deal.id,
                user_id=user_id,
                outcome=outcome,
                reason=reason,
                created_at=now,
            ))
            session.add(WebhookLog(
                webhook_id=webhook.id,
                request_body=_request_body(payload),
                response_status=201,
                response_message=f'lead created ({outcome})',
                deal_id=deal.id,
                prospect_id=prospect.id,
                assigned_to=user_id,
                source_ip=source_ip or '',
                user_agent=user_agent or '',
                created_at=now,
            ))
            session.commit()
    except TransientStoreError as e:
        _write_rejection(session, webhook, payload, 503, e.reason, source_ip, user_agent)
        raise

    result = IngestResult(deal_id=deal.id, prospect_id=prospect.id,
                          assigned_user_id=user_id, outcome=outcome)
    logger.info("Lead from webhook %s → deal %s (%s, user=%s)",
                webhook.id, deal.id, outcome, user_id)

    if outcome == 'unassigned' and webhook.distribution_enabled:
        notify_capacity_exhausted(webhook, deal.id)
    return result
