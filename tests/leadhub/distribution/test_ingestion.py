"""Tests for leadhub.distribution.ingestion: payload mapping, lead creation, assignment, logs."""
from datetime import timedelta

import pytest
from unittest.mock import patch
from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select

from leadhub.distribution.ingestion import (
    ingest_lead, map_fields, normalize_payload, parse_value, validate_field_mapping,
)
from leadhub.errors import NotFoundError, TransientStoreError, ValidationError
from leadhub.models.assignment_event import AssignmentEvent
from leadhub.models.deal import Deal, Prospect
from leadhub.models.lead_webhook import DistributionMember, LeadWebhook, WebhookLog


def _count(session, model):
    return session.execute(select(func.count()).select_from(model)).scalar()


# ── Payload helpers ──────────────────────────────────────────────────────────

class TestNormalizePayload:

    def test_flattens_scalars(self):
        flat = normalize_payload({'name': '  Ana ', 'age': 31, 'vip': True, 'note': None})
        assert flat == {'name': 'Ana', 'age': '31', 'vip': 'true'}

    def test_nested_rejected(self):
        with pytest.raises(ValidationError):
            normalize_payload({'name': 'Ana', 'tags': ['a', 'b']})

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            normalize_payload(['Ana'])

    def test_long_values_truncated(self):
        assert len(normalize_payload({'note': 'x' * 5000})['note']) == 1000


class TestFieldMapping:

    def test_validate_rejects_unknown_target(self):
        with pytest.raises(ValidationError):
            validate_field_mapping({'nome': 'full_name'})

    def test_validate_accepts_none(self):
        assert validate_field_mapping(None) == {}

    def test_mapped_identity_and_extra(self):
        mapped, extra = map_fields(
            {'nome': 'Ana', 'phone': '+55 11 9999', 'utm_source': 'ads'},
            {'nome': 'name'},
        )
        assert mapped == {'name': 'Ana', 'phone': '+55 11 9999'}
        assert extra == {'utm_source': 'ads'}

    def test_first_non_empty_value_wins(self):
        mapped, _ = map_fields({'nome': 'Ana', 'name': 'Other'}, {'nome': 'name'})
        assert mapped['name'] == 'Ana'


class TestParseValue:

    @pytest.mark.parametrize('raw,expected', [
        ('1500', 1500.0), ('1500.50', 1500.5), ('1500,50', 1500.5), ('1,500.25', 1500.25),
    ])
    def test_formats(self, raw, expected):
        assert parse_value(raw, 0) == expected

    def test_missing_uses_default(self):
        assert parse_value(None, 250) == 250.0

    @pytest.mark.parametrize('raw', ['abc', '-10'])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            parse_value(raw, 0)


# ── ingest_lead ──────────────────────────────────────────────────────────────

@pytest.fixture
def site(make_org, make_user, make_webhook, make_member, make_funnel):
    org = make_org()
    funnel, stages = make_funnel(org, stages=3)
    a, b = make_user(org, name='A'), make_user(org, name='B')
    webhook = make_webhook(org, name='site', funnel=funnel, field_mapping={'nome': 'name'},
                           default_value=300)
    make_member(webhook, a, max_leads_per_day=1)
    make_member(webhook, b, max_leads_per_day=1)
    return org, webhook, (a, b), stages


class TestIngestLead:

    def test_creates_prospect_deal_and_assigns(self, db_session, site, now):
        org, webhook, (a, _), stages = site

        result = ingest_lead(db_session, 'tok-site',
                             {'nome': 'Ana', 'phone': '5511', 'utm_source': 'ads'},
                             source_ip='10.0.0.1', user_agent='curl', now=now)

        assert result.outcome == 'assigned'
        assert result.assigned_user_id == a.id

        deal = db_session.get(Deal, result.deal_id)
        assert deal.organization_id == org.id
        assert deal.owner_id == a.id
        assert deal.stage_id == stages[0].id
        assert deal.value == 300.0
        assert deal.status == 'open'
        assert deal.title == 'Ana'

        prospect = db_session.get(Prospect, result.prospect_id)
        assert prospect.name == 'Ana'
        assert prospect.extra_fields == {'utm_source': 'ads'}
        assert prospect.source == 'webhook:site'

        log = db_session.execute(select(WebhookLog)).scalar_one()
        assert log.response_status == 201
        assert log.assigned_to == a.id
        assert log.source_ip == '10.0.0.1'

        event = db_session.execute(select(AssignmentEvent)).scalar_one()
        assert event.outcome == 'assigned'
        assert event.user_id == a.id

        db_session.refresh(webhook)
        assert webhook.total_leads == 1

    def test_round_robin_then_unassigned_when_pool_full(self, db_session, site, now):
        _, webhook, (a, b), _ = site
        with patch('leadhub.distribution.ingestion.notify_capacity_exhausted') as notify:
            first = ingest_lead(db_session, 'tok-site', {'name': 'L1'}, now=now)
            second = ingest_lead(db_session, 'tok-site', {'name': 'L2'}, now=now + timedelta(minutes=1))
            third = ingest_lead(db_session, 'tok-site', {'name': 'L3'}, now=now + timedelta(minutes=2))

        assert [first.assigned_user_id, second.assigned_user_id] == [a.id, b.id]
        assert third.assigned_user_id is None
        assert third.outcome == 'unassigned'
        assert db_session.get(Deal, third.deal_id).owner_id is None
        notify.assert_called_once()

        events = db_session.execute(
            select(AssignmentEvent).order_by(AssignmentEvent.id)).scalars().all()
        assert [e.outcome for e in events] == ['assigned', 'assigned', 'unassigned']
        assert 'no eligible' in events[2].reason
        assert _count(db_session, WebhookLog) == 3

        counts = db_session.execute(select(DistributionMember.leads_today)).scalars().all()
        assert counts == [1, 1]

    def test_distribution_disabled_uses_owner(self, db_session, make_org, make_user, make_webhook, now):
        org = make_org()
        owner = make_user(org, name='Owner')
        make_webhook(org, name='ads', distribution_enabled=False, owner=owner)
        result = ingest_lead(db_session, 'tok-ads', {'phone': '5511'}, now=now)
        assert result.outcome == 'owner_default'
        assert result.assigned_user_id == owner.id
        assert db_session.get(Deal, result.deal_id).title == '5511'

    def test_distribution_disabled_without_owner(self, db_session, make_org, make_webhook, now):
        make_webhook(make_org(), name='ads', distribution_enabled=False)
        with patch('leadhub.distribution.ingestion.notify_capacity_exhausted') as notify:
            result = ingest_lead(db_session, 'tok-ads', {'name': 'Bo'}, now=now)
        assert result.outcome == 'unassigned'
        notify.assert_not_called()

    def test_unknown_token_writes_nothing(self, db_session, site, now):
        with pytest.raises(NotFoundError):
            ingest_lead(db_session, 'nope', {'name': 'Ana'}, now=now)
        assert _count(db_session, Deal) == 0
        assert _count(db_session, WebhookLog) == 0

    def test_inactive_webhook_logged_404(self, db_session, make_org, make_webhook, now):
        make_webhook(make_org(), name='old', is_active=False)
        with pytest.raises(NotFoundError):
            ingest_lead(db_session, 'tok-old', {'name': 'Ana'}, now=now)
        log = db_session.execute(select(WebhookLog)).scalar_one()
        assert log.response_status == 404
        assert _count(db_session, Deal) == 0

    @pytest.mark.parametrize('payload', [
        {'email': 'x@y.com'},
        {'name': 'Ana', 'tags': {'a': 1}},
        {'name': 'Ana', 'value': 'lots'},
    ])
    def test_invalid_payload_logged_400(self, db_session, site, now, payload):
        with pytest.raises(ValidationError):
            ingest_lead(db_session, 'tok-site', payload, now=now)
        log = db_session.execute(select(WebhookLog)).scalar_one()
        assert log.response_status == 400
        assert _count(db_session, Deal) == 0
        assert _count(db_session, Prospect) == 0
        counts = db_session.execute(select(DistributionMember.leads_today)).scalars().all()
        assert counts == [0, 0]

    def test_store_error_during_claim_leaves_lead_unassigned(self, db_session, site, now):
        with patch('leadhub.distribution.ingestion.select_assignee',
                   side_effect=sa_exc.OperationalError('UPDATE', {}, Exception('locked'))), \
             patch('leadhub.distribution.ingestion.notify_capacity_exhausted'):
            result = ingest_lead(db_session, 'tok-site', {'name': 'Ana'}, now=now)
        assert result.outcome == 'unassigned'
        event = db_session.execute(select(AssignmentEvent)).scalar_one()
        assert event.reason.startswith('store error')

    def test_store_error_on_write_rolls_back_and_logs_503(self, db_session, site, now):
        real_flush = db_session.flush

        def failing_flush(*args, **kwargs):
            if any(isinstance(obj, Deal) for obj in db_session.new):
                raise sa_exc.OperationalError('INSERT', {}, Exception('timeout'))
            return real_flush(*args, **kwargs)

        with patch.object(db_session, 'flush', side_effect=failing_flush):
            with pytest.raises(TransientStoreError):
                ingest_lead(db_session, 'tok-site', {'name': 'Ana'}, now=now)

        assert _count(db_session, Deal) == 0
        assert _count(db_session, AssignmentEvent) == 0
        log = db_session.execute(select(WebhookLog)).scalar_one()
        assert log.response_status == 503
        total = db_session.execute(select(LeadWebhook.total_leads)).scalar_one()
        assert total == 0
