"""
Signal collection: reads the conversation, profile and funnel state of a deal.
"""
import logging

from sqlalchemy import select

from leadhub.models.deal import DealMessage, FunnelStage, Prospect
from leadhub.scoring.engine import DealSignals, FactorRules
from leadhub.timeutil import as_utc, utcnow

logger = logging.getLogger('scoring.signals')


def _first_response_minutes(messages):
    """
    Minutes between the team's first outbound message and the lead's next reply.

    A lead who writes first (inbound before any outbound) answered instantly.
    """
    first_outbound = None
    for direction, created_at in messages:
        if direction == 'inbound':
            if first_outbound is None:
                return 0.0
            delta = as_utc(created_at) - first_outbound
            return max(0.0, delta.total_seconds() / 60.0)
        if direction == 'outbound' and first_outbound is None:
            first_outbound = as_utc(created_at)
    return None


def _filled(value):
    return value is not None and bool(str(value).strip())


def _profile_completeness(prospect, rules: FactorRules):
    fields = rules.profile_fields
    if prospect is None:
        return 0, len(fields)
    filled = 0
    for name in fields:
        value = getattr(prospect, name, None)
        # Columns default to '', so blank means "look in extra_fields"
        if not _filled(value) and prospect.extra_fields:
            value = prospect.extra_fields.get(name)
        if _filled(value):
            filled += 1
    return filled, len(fields)


def _funnel_progress(session, deal):
    """(stages reached, total stages); a won deal has reached every stage."""
    if not deal.funnel_id:
        return 0, 0
    stage_ids = session.execute(
        select(FunnelStage.id)
        .where(FunnelStage.funnel_id == deal.funnel_id)
        .order_by(FunnelStage.position, FunnelStage.id)
    ).scalars().all()
    total = len(stage_ids)
    if deal.status == 'won':
        return total, total
    if deal.stage_id in stage_ids:
        return stage_ids.index(deal.stage_id) + 1, total
    return 0, total


def collect_signals(session, deal, rules: FactorRules, now=None) -> DealSignals:
    """Gather every raw input the engine needs for one deal."""
    now = as_utc(now) or utcnow()

    messages = session.execute(
        select(DealMessage.direction, DealMessage.created_at)
        .where(DealMessage.deal_id == deal.id, DealMessage.organization_id == deal.organization_id)
        .order_by(DealMessage.created_at, DealMessage.id)
    ).all()

    inbound = sum(1 for direction, _ in messages if direction == 'inbound')
    last_message_at = as_utc(messages[-1][1]) if messages else None
    last_activity = last_message_at or as_utc(deal.updated_at) or as_utc(deal.created_at)
    hours_since = None
    if last_activity is not None:
        hours_since = max(0.0, (now - last_activity).total_seconds() / 3600.0)

    prospect = session.get(Prospect, deal.prospect_id) if deal.prospect_id else None
    filled, total_fields = _profile_completeness(prospect, rules)
    stages_done, stages_total = _funnel_progress(session, deal)

    return DealSignals(
        total_messages=len(messages),
        inbound_messages=inbound,
        first_response_minutes=_first_response_minutes(messages),
        hours_since_activity=hours_since,
        profile_fields_filled=filled,
        profile_fields_total=total_fields,
        funnel_stages_completed=stages_done,
        funnel_stages_total=stages_total,
        deal_value=float(deal.value or 0.0),
        last_activity_at=last_activity,
    )
