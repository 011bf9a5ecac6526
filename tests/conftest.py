"""Shared test fixtures."""
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from leadhub.database import Base

NOW = datetime(2026, 3, 10, 15, 0, 0, tzinfo=timezone.utc)


def _import_models():
    import leadhub.models.organization  # noqa: F401
    import leadhub.models.deal  # noqa: F401
    import leadhub.models.lead_score  # noqa: F401
    import leadhub.models.lead_webhook  # noqa: F401
    import leadhub.models.assignment_event  # noqa: F401


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    _import_models()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that route handlers calling session.close()
    in their finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('leadhub.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


# ── Redis ────────────────────────────────────────────────────────────────────

class FakeRedis:
    """Minimal in-memory Redis covering the commands leadhub uses."""

    def __init__(self):
        self.store = {}
        self.hashes = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = str(value)
        return True

    def setex(self, key, ttl, value):
        self.store[key] = str(value)
        return True

    def delete(self, *keys):
        removed = 0
        for k in keys:
            removed += int(self.store.pop(k, None) is not None)
            removed += int(self.hashes.pop(k, None) is not None)
        return removed

    def hset(self, key, field=None, value=None, mapping=None):
        h = self.hashes.setdefault(key, {})
        if field is not None:
            h[field] = str(value)
        for k, v in (mapping or {}).items():
            h[k] = str(v)
        return len(mapping or {}) + (1 if field is not None else 0)

    def hincrby(self, key, field, amount=1):
        h = self.hashes.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)
        return int(h[field])

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Queues calls and replays them on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        results = [getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._ops]
        self._ops = []
        return results


@pytest.fixture
def fake_redis():
    mock = FakeRedis()
    with patch('leadhub.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app(fake_redis):
    """Flask test app."""
    from leadhub import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


# ── Factories ────────────────────────────────────────────────────────────────

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_org(db_session):
    """Factory fixture: persisted Organization."""
    from leadhub.models.organization import Organization

    def _make(name='Acme', timezone=None):
        org = Organization(name=name, timezone=timezone)
        db_session.add(org)
        db_session.commit()
        return org
    return _make


@pytest.fixture
def make_user(db_session):
    from leadhub.models.organization import User

    def _make(org, name='Seller', email=None):
        user = User(organization_id=org.id, name=name, email=email or f'{name.lower()}@example.com')
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_funnel(db_session):
    """Factory fixture: funnel with `stages` ordered stages; returns (funnel, [stages])."""
    from leadhub.models.deal import Funnel, FunnelStage

    def _make(org, stages=5, name='Sales'):
        funnel = Funnel(organization_id=org.id, name=name)
        db_session.add(funnel)
        db_session.flush()
        rows = []
        for i in range(stages):
            stage = FunnelStage(funnel_id=funnel.id, name=f'Stage {i + 1}', position=i)
            db_session.add(stage)
            rows.append(stage)
        db_session.commit()
        return funnel, rows
    return _make


@pytest.fixture
def make_deal(db_session):
    """
    Factory fixture: Deal with an optional prospect and conversation.

    `messages` is a list of (direction, minutes_before_now) tuples.
    """
    from leadhub.models.deal import Deal, DealMessage, Prospect

    def _make(org, funnel=None, stage=None, value=0.0, status='open', owner=None,
              prospect_fields=None, messages=(), created=None, title='Deal'):
        created = created or NOW - timedelta(days=3)
        prospect = None
        if prospect_fields is not None:
            prospect = Prospect(organization_id=org.id, **prospect_fields)
            db_session.add(prospect)
            db_session.flush()
        deal = Deal(
            organization_id=org.id,
            funnel_id=funnel.id if funnel else None,
            stage_id=stage.id if stage else None,
            prospect_id=prospect.id if prospect else None,
            owner_id=owner.id if owner else None,
            title=title,
            value=value,
            status=status,
            created_at=created,
            updated_at=created,
        )
        db_session.add(deal)
        db_session.flush()
        for direction, minutes_ago in messages:
            db_session.add(DealMessage(
                organization_id=org.id, deal_id=deal.id, direction=direction,
                created_at=NOW - timedelta(minutes=minutes_ago),
            ))
        db_session.commit()
        return deal
    return _make


@pytest.fixture
def make_webhook(db_session):
    from leadhub.models.lead_webhook import LeadWebhook

    def _make(org, name='Site form', token=None, distribution_enabled=True, owner=None,
              funnel=None, stage=None, field_mapping=None, is_active=True, default_value=0.0):
        webhook = LeadWebhook(
            organization_id=org.id,
            name=name,
            webhook_token=token or f'tok-{name.lower().replace(" ", "-")}',
            is_active=is_active,
            distribution_enabled=distribution_enabled,
            owner_id=owner.id if owner else None,
            funnel_id=funnel.id if funnel else None,
            stage_id=stage.id if stage else None,
            field_mapping=field_mapping or {},
            default_value=default_value,
            total_leads=0,
        )
        db_session.add(webhook)
        db_session.commit()
        return webhook
    return _make


@pytest.fixture
def make_member(db_session):
    from leadhub.models.lead_webhook import DistributionMember

    def _make(webhook, user, max_leads_per_day=None, is_active=True, leads_today=0,
              leads_today_date=None, last_lead_at=None, created=None):
        member = DistributionMember(
            webhook_id=webhook.id,
            user_id=user.id,
            is_active=is_active,
            max_leads_per_day=max_leads_per_day,
            leads_today=leads_today,
            leads_today_date=leads_today_date,
            last_lead_at=last_lead_at,
            created_at=created or NOW - timedelta(days=30),
        )
        db_session.add(member)
        db_session.commit()
        return member
    return _make


@pytest.fixture
def org_headers():
    """Builds the tenant header dict for API calls."""
    def _headers(org, user=None):
        h = {'X-Organization-Id': org.id}
        if user is not None:
            h['X-User-Id'] = user.id
        return h
    return _headers
