"""
Background jobs: tenant-wide score recalculation on an RQ worker.

A run is cancelled cooperatively: the API sets a Redis flag, and the job
checks it between deals. Deals already scored stay scored.
"""
import json
import logging
import uuid

import redis

from leadhub.config import RECALCULATE_JOB_TIMEOUT
from leadhub.timeutil import utcnow

logger = logging.getLogger('leadhub.jobs')

CANCEL_KEY = 'leadhub:recalc_cancel:{org}'
STATUS_KEY = 'leadhub:recalc_status:{org}'


# ── Lazy RQ queue (no Redis connection at import time) ───────────────────────

_queue = None


def _get_queue():
    global _queue
    if _queue is None:
        from leadhub.extensions import redis_client
        from rq import Queue
        _queue = Queue('lead-scoring', connection=redis_client)
    return _queue


def _redis():
    from leadhub.extensions import redis_client
    return redis_client


# ── Cancellation + status ────────────────────────────────────────────────────

def request_cancel(organization_id):
    _redis().setex(CANCEL_KEY.format(org=organization_id), RECALCULATE_JOB_TIMEOUT, '1')
    logger.info("Cancel requested for recalculation of org %s", organization_id)


def cancel_requested(organization_id) -> bool:
    try:
        return bool(_redis().get(CANCEL_KEY.format(org=organization_id)))
    except redis.RedisError as e:
        logger.warning("Cancel flag unreadable for org %s: %s", organization_id, e)
        return False


def _save_status(organization_id, status):
    try:
        _redis().setex(STATUS_KEY.format(org=organization_id), RECALCULATE_JOB_TIMEOUT,
                       json.dumps(status))
    except redis.RedisError as e:
        logger.warning("Recalculation status not saved for org %s: %s", organization_id, e)


def get_status(organization_id):
    raw = _redis().get(STATUS_KEY.format(org=organization_id))
    return json.loads(raw) if raw else None


# ── Public API ───────────────────────────────────────────────────────────────

def enqueue_recalculate_all(organization_id, actor='system') -> str:
    """Queue a tenant-wide recalculation; returns the RQ job id."""
    _redis().delete(CANCEL_KEY.format(org=organization_id))
    # Status goes in first: a worker may pick the job up and mark it running
    # before enqueue() returns
    job_id = uuid.uuid4().hex
    _save_status(organization_id, {'job_id': job_id, 'state': 'queued',
                                   'queued_at': utcnow().isoformat()})
    try:
        _get_queue().enqueue(run_recalculate_all, organization_id, actor,
                             job_id=job_id, job_timeout=RECALCULATE_JOB_TIMEOUT)
    except redis.RedisError as e:
        _save_status(organization_id, {'job_id': job_id, 'state': 'failed', 'error': str(e)[:500]})
        raise
    logger.info("Recalculation for org %s queued as job %s", organization_id, job_id)
    return job_id


# ── Job body (runs on the worker) ────────────────────────────────────────────

def run_recalculate_all(organization_id, actor='system') -> dict:
    from leadhub.database import get_session
    from leadhub.scoring.service import recalculate_all

    logger.info("Recalculation started for org %s", organization_id)
    _save_status(organization_id, {'state': 'running', 'started_at': utcnow().isoformat()})
    session = get_session()
    try:
        result = recalculate_all(
            session, organization_id, actor=actor,
            should_cancel=lambda: cancel_requested(organization_id),
        ).to_dict()
    except Exception as e:
        logger.error("Recalculation for org %s failed: %s", organization_id, e, exc_info=True)
        _save_status(organization_id, {'state': 'failed', 'error': str(e)[:500]})
        raise
    finally:
        session.close()

    state = 'cancelled' if result['cancelled'] else 'finished'
    _save_status(organization_id, {'state': state, 'finished_at': utcnow().isoformat(),
                                   'result': result})
    try:
        _redis().delete(CANCEL_KEY.format(org=organization_id))
    except redis.RedisError as e:
        logger.warning("Cancel flag for org %s not cleared: %s", organization_id, e)
    return result
