"""
Lead scoring service: persisted score computation and recalculation batches.

compute_score() is the single write path for scores:

  1. lock the deal row (serializes concurrent recalculations of one deal)
  2. collect signals → engine → score / label / sub-scores
  3. read the immediately preceding history score → previous_score + trend
  4. update the current LeadScore row in place, append one LeadScoreHistory row
  5. commit, then fire side effects (hot-band notification, optional AI insight)

Side effects run after the commit and never undo or fail it.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy import select

from leadhub.config import LEAD_SCORE_AI_INSIGHTS
from leadhub.errors import NotFoundError, ValidationError
from leadhub.models.deal import Deal
from leadhub.models.lead_score import LeadScore, LeadScoreHistory
from leadhub.scoring.config import TenantConfigCache, should_recalculate
from leadhub.scoring.engine import score_signals, score_trend
from leadhub.scoring.signals import collect_signals
from leadhub.services.notifications import notify_hot_transition
from leadhub.services.store import read_with_retry, retrying_read, translate_errors
from leadhub.timeutil import as_utc, utcnow

logger = logging.getLogger('scoring.service')

EVENT_TRIGGERS = ('message_received', 'stage_change')


@dataclass
class BatchResult:
    """Outcome of a bulk recalculation."""
    total: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    failed_deal_ids: List[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self):
        return {
            'success': self.failed == 0 and not self.cancelled,
            'total': self.total,
            'updated': self.updated,
            'failed': self.failed,
            'skipped': self.skipped,
            'failed_deal_ids': self.failed_deal_ids,
            'cancelled': self.cancelled,
        }


# ── Reads ────────────────────────────────────────────────────────────────────

def deal_query(organization_id, deal_id, lock=False):
    """SELECT of one tenant deal; lock=True adds FOR UPDATE, held until commit."""
    stmt = select(Deal).where(Deal.id == deal_id, Deal.organization_id == organization_id)
    if lock:
        stmt = stmt.with_for_update()
    return stmt


def get_deal(session, organization_id, deal_id, lock=False) -> Deal:
    """Fetch a tenant's deal or raise NotFoundError (also for other tenants' deals)."""
    deal = session.execute(deal_query(organization_id, deal_id, lock=lock)).scalar_one_or_none()
    if deal is None:
        raise NotFoundError('deal', deal_id)
    return deal


def get_current_score(session, deal_id) -> Optional[LeadScore]:
    return session.execute(
        select(LeadScore).where(LeadScore.deal_id == deal_id)
    ).scalar_one_or_none()


@retrying_read
def get_deal_score(session, organization_id, deal_id) -> dict:
    """Current score of a deal; NotFoundError if the deal was never scored."""
    get_deal(session, organization_id, deal_id)
    current = get_current_score(session, deal_id)
    if current is None:
        raise NotFoundError('lead score for deal', deal_id)
    return current.to_dict()


def _latest_history(session, deal_id) -> Optional[LeadScoreHistory]:
    return session.execute(
        select(LeadScoreHistory)
        .where(LeadScoreHistory.deal_id == deal_id)
        .order_by(LeadScoreHistory.created_at.desc(), LeadScoreHistory.id.desc())
        .limit(1)
    ).scalar_one_or_none()


# ── Single-deal computation ──────────────────────────────────────────────────

def compute_score(session, organization_id, deal_id, trigger='manual', actor='system',
                  cache: TenantConfigCache = None, now=None, with_insight=False) -> LeadScore:
    """
    Recompute, persist and return the current LeadScore for one deal.

    Raises NotFoundError for unknown/foreign deals and TransientStoreError on
    store failures; in both cases nothing is written.
    """
    cache = cache or TenantConfigCache()
    now = as_utc(now) or utcnow()

    with translate_errors(session):
        deal = get_deal(session, organization_id, deal_id, lock=True)
        settings = cache.settings_for(session, organization_id)
        signals = collect_signals(session, deal, cache.rules, now=now)
        result = score_signals(signals, settings, cache.rules)

        previous = _latest_history(session, deal.id)
        previous_score = previous.score if previous is not None else None
        previous_label = previous.score_label if previous is not None else None

        current = get_current_score(session, deal.id)
        if current is None:
            current = LeadScore(deal_id=deal.id, organization_id=organization_id, created_at=now)
            session.add(current)

        subs = result.factor_scores
        current.score = result.score
        current.score_label = result.score_label
        current.score_response_time = subs['response_time']
        current.score_engagement = subs['engagement']
        current.score_profile = subs['profile']
        current.score_value = subs['value']
        current.score_funnel = subs['funnel']
        current.score_recency = subs['recency']
        current.total_messages = signals.total_messages
        current.profile_fields_filled = signals.profile_fields_filled
        current.profile_fields_total = signals.profile_fields_total
        current.funnel_stages_completed = signals.funnel_stages_completed
        current.funnel_stages_total = signals.funnel_stages_total
        current.previous_score = previous_score
        current.score_trend = score_trend(result.score, previous_score)
        current.updated_at = now

        session.add(LeadScoreHistory(
            deal_id=deal.id,
            organization_id=organization_id,
            score=result.score,
            score_label=result.score_label,
            factor_scores=subs,
            trigger_event=trigger,
            actor=actor,
            created_at=now,
        ))
        session.commit()

    logger.info("Deal %s scored %d (%s, %s) trigger=%s",
                deal.id, current.score, current.score_label, current.score_trend, trigger)

    entered_hot = current.score_label == 'hot' and previous_label != 'hot'
    left_hot = previous_label == 'hot' and current.score_label != 'hot'
    if entered_hot or left_hot:
        notify_hot_transition(deal, current, entered=entered_hot)

    if with_insight and LEAD_SCORE_AI_INSIGHTS:
        _attach_insight(session, deal, current)

    return current


def _attach_insight(session, deal, current):
    """Best-effort AI summary; the committed score stands whatever happens here."""
    from leadhub.services.openai_client import generate_lead_insight
    try:
        insight = generate_lead_insight(deal, current.to_dict())
        if not insight:
            return
        current.ai_summary = insight.get('summary')
        current.ai_recommended_action = insight.get('recommended_action')
        session.commit()
    except Exception:
        session.rollback()
        logger.error("AI insight failed for deal %s", deal.id, exc_info=True)


# ── Event triggers ───────────────────────────────────────────────────────────

def handle_event(session, organization_id, deal_id, event, actor='system', now=None,
                 cache: TenantConfigCache = None) -> Optional[LeadScore]:
    """
    React to a conversation/funnel event; returns the new score, or None when
    the tenant's config says this event does not trigger a recalculation.
    """
    if event not in EVENT_TRIGGERS:
        raise ValidationError(f"unknown event '{event}', expected one of {', '.join(EVENT_TRIGGERS)}")
    cache = cache or TenantConfigCache()
    get_deal(session, organization_id, deal_id)
    settings = cache.settings_for(session, organization_id)
    if not should_recalculate(settings, event):
        logger.debug("Event %s ignored for deal %s (config)", event, deal_id)
        return None
    return compute_score(session, organization_id, deal_id, trigger=event, actor=actor,
                         cache=cache, now=now)


# ── Batches ──────────────────────────────────────────────────────────────────

def _open_deal_ids(session, organization_id) -> List[str]:
    return list(session.execute(
        select(Deal.id)
        .where(Deal.organization_id == organization_id, Deal.status == 'open')
        .order_by(Deal.created_at, Deal.id)
    ).scalars().all())


def _run_batch(session, organization_id, deal_ids, trigger, actor, cache, now,
               should_cancel: Optional[Callable[[], bool]] = None,
               select_deal: Optional[Callable[[str], bool]] = None) -> BatchResult:
    result = BatchResult(total=len(deal_ids))
    for deal_id in deal_ids:
        if should_cancel is not None and should_cancel():
            result.cancelled = True
            logger.warning("Batch for org %s cancelled after %d/%d deals",
                           organization_id, result.updated + result.failed + result.skipped,
                           result.total)
            break
        if select_deal is not None and not select_deal(deal_id):
            result.skipped += 1
            continue
        try:
            compute_score(session, organization_id, deal_id, trigger=trigger, actor=actor,
                          cache=cache, now=now)
            result.updated += 1
        except Exception as e:
            session.rollback()
            result.failed += 1
            result.failed_deal_ids.append(deal_id)
            logger.error("Recalculation failed for deal %s: %s", deal_id, e, exc_info=True)
    return result


def recalculate_all(session, organization_id, should_cancel=None, actor='system', now=None,
                    cache: TenantConfigCache = None) -> BatchResult:
    """
    Recalculate every open deal of a tenant.

    Each deal commits on its own: a failing deal is rolled back, counted in
    `failed` and keeps its previous score; cancellation stops between deals.
    """
    cache = cache or TenantConfigCache()
    deal_ids = read_with_retry(_open_deal_ids, session, organization_id)
    result = _run_batch(session, organization_id, deal_ids, 'bulk', actor, cache, now,
                        should_cancel=should_cancel)
    logger.info("Recalculate-all org %s: %d updated, %d failed of %d",
                organization_id, result.updated, result.failed, result.total)
    return result


def recalculate_stale(session, organization_id, now=None, should_cancel=None,
                      cache: TenantConfigCache = None) -> BatchResult:
    """Interval trigger: rescore open deals whose last score is older than the configured interval."""
    cache = cache or TenantConfigCache()
    now = as_utc(now) or utcnow()
    settings = cache.settings_for(session, organization_id)
    deal_ids = read_with_retry(_open_deal_ids, session, organization_id)

    last_scored = dict(session.execute(
        select(LeadScore.deal_id, LeadScore.updated_at)
        .where(LeadScore.organization_id == organization_id)
    ).all())

    def is_stale(deal_id):
        return should_recalculate(settings, 'interval', last_scored.get(deal_id), now=now)

    result = _run_batch(session, organization_id, deal_ids, 'interval', 'system', cache, now,
                        should_cancel=should_cancel, select_deal=is_stale)
    logger.info("Recalculate-stale org %s: %d updated, %d skipped, %d failed",
                organization_id, result.updated, result.skipped, result.failed)
    return result
