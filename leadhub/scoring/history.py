"""
Read side of the audit trail: per-deal score history, leaderboard, stats and
assignment decisions. Nothing here writes; history rows and assignment events
are inserted by the scoring service and lead ingestion only.
"""
import logging

from sqlalchemy import select, func, case

from leadhub.config import SCORE_LABELS
from leadhub.errors import NotFoundError, ValidationError
from leadhub.models.assignment_event import AssignmentEvent
from leadhub.models.deal import Deal, Prospect
from leadhub.models.lead_score import LeadScore, LeadScoreHistory
from leadhub.models.organization import User
from leadhub.services.store import retrying_read
from leadhub.timeutil import isoformat

logger = logging.getLogger('scoring.history')

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def parse_limit(raw, default=DEFAULT_LIMIT, maximum=MAX_LIMIT) -> int:
    if raw in (None, ''):
        return default
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'limit must be an integer, got {raw!r}')
    if limit < 1:
        raise ValidationError('limit must be at least 1')
    return min(limit, maximum)


@retrying_read
def deal_history(session, organization_id, deal_id, limit=None):
    """History rows of one deal, newest first."""
    deal = session.execute(
        select(Deal.id).where(Deal.id == deal_id, Deal.organization_id == organization_id)
    ).scalar_one_or_none()
    if deal is None:
        raise NotFoundError('deal', deal_id)

    stmt = (
        select(LeadScoreHistory)
        .where(LeadScoreHistory.deal_id == deal_id,
               LeadScoreHistory.organization_id == organization_id)
        .order_by(LeadScoreHistory.created_at.desc(), LeadScoreHistory.id.desc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return [
        {
            'id': row.id,
            'deal_id': row.deal_id,
            'score': row.score,
            'score_label': row.score_label,
            'factor_scores': row.factor_scores or {},
            'trigger_event': row.trigger_event,
            'actor': row.actor,
            'created_at': isoformat(row.created_at),
        }
        for row in session.execute(stmt).scalars()
    ]


@retrying_read
def leaderboard(session, organization_id, limit=DEFAULT_LIMIT, label=None):
    """Top scored deals of a tenant, highest score first, ties by most recently updated."""
    if label is not None and label not in SCORE_LABELS:
        raise ValidationError(f"label must be one of {', '.join(SCORE_LABELS)}")

    stmt = (
        select(LeadScore, Deal.title, Deal.value, Deal.status, Prospect.company, User.name)
        .join(Deal, Deal.id == LeadScore.deal_id)
        .outerjoin(Prospect, Prospect.id == Deal.prospect_id)
        .outerjoin(User, User.id == Deal.owner_id)
        .where(LeadScore.organization_id == organization_id,
               Deal.organization_id == organization_id)
        .order_by(LeadScore.score.desc(), LeadScore.updated_at.desc(), LeadScore.id)
        .limit(limit)
    )
    if label is not None:
        stmt = stmt.where(LeadScore.score_label == label)

    rows = []
    for score, title, value, status, company, owner_name in session.execute(stmt):
        entry = score.to_dict()
        entry.update({
            'deal_title': title,
            'deal_value': value,
            'deal_status': status,
            'company_name': company,
            'owner_name': owner_name,
        })
        rows.append(entry)
    return rows


@retrying_read
def stats(session, organization_id):
    """Label distribution, score spread and trend counts of a tenant's current scores."""
    row = session.execute(
        select(
            func.count(LeadScore.id),
            func.sum(case((LeadScore.score_label == 'hot', 1), else_=0)),
            func.sum(case((LeadScore.score_label == 'warm', 1), else_=0)),
            func.sum(case((LeadScore.score_label == 'cold', 1), else_=0)),
            func.avg(LeadScore.score),
            func.min(LeadScore.score),
            func.max(LeadScore.score),
            func.sum(case((LeadScore.score_trend == 'up', 1), else_=0)),
            func.sum(case((LeadScore.score_trend == 'down', 1), else_=0)),
        ).where(LeadScore.organization_id == organization_id)
    ).one()
    total, hot, warm, cold, avg, low, high, up, down = row
    return {
        'total_scored': total or 0,
        'hot_count': hot or 0,
        'warm_count': warm or 0,
        'cold_count': cold or 0,
        'avg_score': round(float(avg), 1) if avg is not None else 0.0,
        'min_score': low if low is not None else 0,
        'max_score': high if high is not None else 0,
        'trending_up': up or 0,
        'trending_down': down or 0,
    }


@retrying_read
def assignment_history(session, organization_id, webhook_id=None, limit=DEFAULT_LIMIT):
    """Assignment decisions, newest first, optionally for one webhook."""
    stmt = (
        select(AssignmentEvent)
        .where(AssignmentEvent.organization_id == organization_id)
        .order_by(AssignmentEvent.created_at.desc(), AssignmentEvent.id.desc())
        .limit(limit)
    )
    if webhook_id is not None:
        stmt = stmt.where(AssignmentEvent.webhook_id == webhook_id)
    return [
        {
            'id': e.id,
            'webhook_id': e.webhook_id,
            'deal_id': e.deal_id,
            'user_id': e.user_id,
            'outcome': e.outcome,
            'reason': e.reason,
            'actor': e.actor,
            'created_at': isoformat(e.created_at),
        }
        for e in session.execute(stmt).scalars()
    ]
