"""
Distribution allocator: picks which pool member receives the next lead.

Round-robin without a rotation cursor: the member who waited longest since
their last lead goes first (never-assigned members before everyone), ties
broken by fewer leads today, then by who joined the pool first.

Daily counters reset lazily. `leads_today` counts leads for the tenant-local
day stored in `leads_today_date`; any other date means the effective count
is 0 and the next claim restarts it at 1.

The claim is one conditional UPDATE that re-checks activity and capacity. If
a concurrent request took the last slot the UPDATE matches no row and the
next candidate is tried, so a daily cap is never exceeded.
"""
import logging
from typing import List, Optional

from sqlalchemy import select, update, case, or_

from leadhub.errors import CapacityExhausted, NotFoundError
from leadhub.models.lead_webhook import DistributionMember, LeadWebhook
from leadhub.models.organization import Organization
from leadhub.timeutil import as_utc, tenant_today, utcnow

logger = logging.getLogger('distribution.allocator')


def effective_leads_today(member: DistributionMember, today) -> int:
    """Leads the member received on `today`; stale counters read as 0."""
    if member.leads_today_date != today:
        return 0
    return member.leads_today or 0


def has_capacity(member: DistributionMember, today) -> bool:
    if not member.is_active:
        return False
    if member.max_leads_per_day is None:
        return True
    return effective_leads_today(member, today) < member.max_leads_per_day


def webhook_today(session, webhook: LeadWebhook, now=None):
    """Tenant-local date for a webhook's organization."""
    tz_name = session.execute(
        select(Organization.timezone).where(Organization.id == webhook.organization_id)
    ).scalar_one_or_none()
    return tenant_today(tz_name, now)


def ordered_candidates(members: List[DistributionMember], today) -> List[DistributionMember]:
    """Eligible members in assignment order."""
    eligible = [m for m in members if has_capacity(m, today)]

    def sort_key(m):
        last = as_utc(m.last_lead_at)
        return (
            last is not None,
            last.timestamp() if last is not None else 0.0,
            effective_leads_today(m, today),
            as_utc(m.created_at).timestamp() if m.created_at else 0.0,
            m.id or 0,
        )

    return sorted(eligible, key=sort_key)


def _claim_slot(session, member_id, today, now) -> bool:
    """Atomically take one slot from a member; False if it was no longer available."""
    today_count = case(
        (DistributionMember.leads_today_date == today, DistributionMember.leads_today),
        else_=0,
    )
    result = session.execute(
        update(DistributionMember)
        .where(
            DistributionMember.id == member_id,
            DistributionMember.is_active.is_(True),
            or_(
                DistributionMember.max_leads_per_day.is_(None),
                today_count < DistributionMember.max_leads_per_day,
            ),
        )
        .values(
            leads_today=today_count + 1,
            leads_today_date=today,
            last_lead_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def select_assignee(session, webhook_id, now=None) -> str:
    """
    Claim a slot for the next lead of a webhook and return the member's user_id.

    Raises CapacityExhausted when every member is inactive or at their cap.
    Runs inside the caller's transaction and does not commit.
    """
    now = as_utc(now) or utcnow()
    webhook = session.get(LeadWebhook, webhook_id)
    if webhook is None:
        raise NotFoundError('webhook', webhook_id)
    today = webhook_today(session, webhook, now)

    members = session.execute(
        select(DistributionMember).where(DistributionMember.webhook_id == webhook_id)
    ).scalars().all()

    candidates = ordered_candidates(members, today)
    for member in candidates:
        if _claim_slot(session, member.id, today, now):
            session.expire(member)
            logger.info("Webhook %s lead assigned to user %s", webhook_id, member.user_id)
            return member.user_id
        logger.debug("Member %s lost its slot to a concurrent claim, trying next", member.id)

    logger.warning("Webhook %s has no eligible distribution member (%d in pool)",
                   webhook_id, len(members))
    raise CapacityExhausted(webhook_id)


def reset_stale_counters(session, webhook_id, today) -> int:
    """Persist zeroed counters for members whose count belongs to an earlier day."""
    result = session.execute(
        update(DistributionMember)
        .where(
            DistributionMember.webhook_id == webhook_id,
            or_(DistributionMember.leads_today_date.is_(None),
                DistributionMember.leads_today_date != today),
        )
        .values(leads_today=0, leads_today_date=today)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def next_in_line(session, webhook_id, now=None) -> Optional[str]:
    """Preview who would receive the next lead, without claiming anything."""
    webhook = session.get(LeadWebhook, webhook_id)
    if webhook is None:
        raise NotFoundError('webhook', webhook_id)
    today = webhook_today(session, webhook, now)
    members = session.execute(
        select(DistributionMember).where(DistributionMember.webhook_id == webhook_id)
    ).scalars().all()
    candidates = ordered_candidates(members, today)
    return candidates[0].user_id if candidates else None
