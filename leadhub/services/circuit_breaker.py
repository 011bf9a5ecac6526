"""
Redis-backed circuit breakers for the outbound integrations (OpenAI, Slack).

A breaker keeps all of its state in one Redis hash, `leadhub:cb:<name>`:

    state            closed | open | half_open
    failures         consecutive failures since the last success
    opened_at        epoch seconds the breaker tripped
    total_success    lifetime counters, reported by /api/health
    total_failure
    last_success / last_failure / last_error

After `reset_timeout` seconds an open breaker lets one trial call through
(half_open); the trial call's outcome closes or re-opens it. If Redis itself is
unreachable the breaker lets calls through: integrations are optional, and a
cache outage must not turn into a notification outage.
"""
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Optional

import redis

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'

KEY_PREFIX = 'leadhub:cb'


class CircuitOpenError(Exception):
    """Raised instead of calling a service whose breaker is open."""

    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"circuit '{name}' is open, retry in {retry_after or 0:.0f}s")


@dataclass
class BreakerHealth:
    name: str
    state: str
    failure_count: int
    failure_threshold: int
    reset_timeout: int
    total_success: int = 0
    total_failure: int = 0
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    last_error: str = ''

    def to_dict(self):
        return asdict(self)


def _as_float(value):
    return float(value) if value not in (None, '') else None


class CircuitBreaker:
    """
    Guard calls to one external service.

        cb = CircuitBreaker('slack', redis_client, failure_threshold=5, reset_timeout=120)
        with cb.guard():
            requests.post(...)

    or `cb.call(fn, *args)`.
    """

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=60, clock=time.time):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock

    @property
    def key(self):
        return f'{KEY_PREFIX}:{self.name}'

    def _snapshot(self) -> dict:
        try:
            return self.redis.hgetall(self.key) or {}
        except redis.RedisError as e:
            logger.debug("Breaker '%s' state unavailable: %s", self.name, e)
            return {}

    def _write(self, mapping, incr=None):
        try:
            pipe = self.redis.pipeline()
            pipe.hset(self.key, mapping=mapping)
            for field, amount in (incr or {}).items():
                pipe.hincrby(self.key, field, amount)
            pipe.execute()
        except redis.RedisError as e:
            logger.debug("Breaker '%s' state not saved: %s", self.name, e)

    # ── State ────────────────────────────────────────────────────────────────

    def _state_from(self, data) -> str:
        state = data.get('state') or CLOSED
        if state == OPEN:
            opened_at = _as_float(data.get('opened_at')) or 0.0
            if self._clock() - opened_at >= self.reset_timeout:
                return HALF_OPEN
        return state

    @property
    def state(self) -> str:
        return self._state_from(self._snapshot())

    def _retry_after(self, data):
        opened_at = _as_float(data.get('opened_at')) or 0.0
        return max(0.0, self.reset_timeout - (self._clock() - opened_at))

    # ── Guarded execution ────────────────────────────────────────────────────

    @contextmanager
    def guard(self):
        """Run the enclosed block through the breaker; re-raises the block's errors."""
        data = self._snapshot()
        if self._state_from(data) == OPEN:
            raise CircuitOpenError(self.name, retry_after=self._retry_after(data))
        try:
            yield self
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()

    def call(self, func, *args, **kwargs):
        with self.guard():
            return func(*args, **kwargs)

    def record_success(self):
        now = self._clock()
        self._write({'state': CLOSED, 'failures': 0, 'last_success': now},
                    incr={'total_success': 1})

    def record_failure(self, error):
        data = self._snapshot()
        failures = int(data.get('failures') or 0) + 1
        now = self._clock()
        mapping = {'failures': failures, 'last_failure': now, 'last_error': str(error)[:200]}

        trial_failed = self._state_from(data) == HALF_OPEN
        if trial_failed or failures >= self.failure_threshold:
            mapping.update(state=OPEN, opened_at=now)
            logger.warning("Circuit '%s' open after %d failures: %s", self.name, failures, error)
        else:
            logger.info("Circuit '%s' failure %d/%d: %s",
                        self.name, failures, self.failure_threshold, error)
        self._write(mapping, incr={'total_failure': 1})

    def reset(self):
        """Force the breaker closed, keeping lifetime counters."""
        self._write({'state': CLOSED, 'failures': 0, 'opened_at': ''})
        logger.info("Circuit '%s' manually reset", self.name)

    def health(self) -> BreakerHealth:
        data = self._snapshot()
        return BreakerHealth(
            name=self.name,
            state=self._state_from(data),
            failure_count=int(data.get('failures') or 0),
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
            total_success=int(data.get('total_success') or 0),
            total_failure=int(data.get('total_failure') or 0),
            last_success=_as_float(data.get('last_success')),
            last_failure=_as_float(data.get('last_failure')),
            last_error=data.get('last_error') or '',
        )


# ── Registry ─────────────────────────────────────────────────────────────────

BREAKER_SETTINGS = {
    'openai': {'failure_threshold': 5, 'reset_timeout': 60},
    'slack': {'failure_threshold': 5, 'reset_timeout': 120},
}

_breakers = {}


def init_breakers(redis_client):
    """Register one breaker per integration; called from create_app()."""
    for name, settings in BREAKER_SETTINGS.items():
        _breakers[name] = CircuitBreaker(name, redis_client, **settings)
    return dict(_breakers)


def get_breaker(name) -> CircuitBreaker:
    if name not in _breakers:
        if name not in BREAKER_SETTINGS:
            raise KeyError(name)
        from leadhub.extensions import redis_client
        _breakers[name] = CircuitBreaker(name, redis_client, **BREAKER_SETTINGS[name])
    return _breakers[name]


def all_breakers():
    return dict(_breakers)
