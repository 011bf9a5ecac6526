"""Tests for leadhub.routes.lead_scoring: /api/lead-scoring endpoints."""
from unittest.mock import patch

from sqlalchemy import exc as sa_exc

from leadhub.scoring.service import compute_score


class TestTenantHeader:

    def test_missing_header_is_400(self, client):
        resp = client.get('/api/lead-scoring/config')
        assert resp.status_code == 400
        assert resp.json['error'] == 'validation_error'

    def test_unknown_org_is_404(self, client):
        resp = client.get('/api/lead-scoring/config', headers={'X-Organization-Id': 'ghost'})
        assert resp.status_code == 404

    def test_request_id_echoed(self, client, make_org, org_headers):
        headers = {**org_headers(make_org()), 'X-Request-Id': 'req-1'}
        resp = client.get('/api/lead-scoring/config', headers=headers)
        assert resp.headers['X-Request-Id'] == 'req-1'


class TestConfigRoutes:

    def test_get_defaults(self, client, make_org, org_headers):
        resp = client.get('/api/lead-scoring/config', headers=org_headers(make_org()))
        assert resp.status_code == 200
        assert resp.json['hot_threshold'] == 70

    def test_put_updates(self, client, make_org, org_headers):
        org = make_org()
        resp = client.put('/api/lead-scoring/config', headers=org_headers(org),
                          json={'weight_recency': 5, 'hot_threshold': 80})
        assert resp.status_code == 200
        assert resp.json['hot_threshold'] == 80
        assert client.get('/api/lead-scoring/config', headers=org_headers(org)).json['weight_recency'] == 5

    def test_put_invalid_thresholds(self, client, make_org, org_headers):
        org = make_org()
        resp = client.put('/api/lead-scoring/config', headers=org_headers(org),
                          json={'hot_threshold': 50, 'warm_threshold': 60})
        assert resp.status_code == 400
        assert 'hot_threshold' in resp.json['reason']
        assert client.get('/api/lead-scoring/config', headers=org_headers(org)).json['hot_threshold'] == 70

    def test_put_non_object(self, client, make_org, org_headers):
        resp = client.put('/api/lead-scoring/config', headers=org_headers(make_org()), json=[1, 2])
        assert resp.status_code == 400


class TestDealRoutes:

    def test_unscored_deal_is_404(self, client, make_org, make_deal, org_headers):
        org = make_org()
        deal = make_deal(org)
        resp = client.get(f'/api/lead-scoring/deal/{deal.id}', headers=org_headers(org))
        assert resp.status_code == 404

    def test_recalculate_then_get(self, client, make_org, make_user, make_deal, org_headers):
        org = make_org()
        user = make_user(org)
        deal = make_deal(org, value=3000, messages=[('inbound', 10)])

        resp = client.post(f'/api/lead-scoring/deal/{deal.id}/recalculate',
                           headers=org_headers(org, user), json={})
        assert resp.status_code == 200
        assert resp.json['score_value'] == 30
        assert resp.json['score_label'] in ('hot', 'warm', 'cold')

        got = client.get(f'/api/lead-scoring/deal/{deal.id}', headers=org_headers(org))
        assert got.json['score'] == resp.json['score']

        hist = client.get(f'/api/lead-scoring/deal/{deal.id}/history', headers=org_headers(org))
        assert len(hist.json) == 1
        assert hist.json[0]['trigger_event'] == 'manual'
        assert hist.json[0]['actor'] == f'user:{user.id}'

    def test_other_tenants_deal_is_404(self, client, make_org, make_deal, org_headers):
        org, other = make_org('A'), make_org('B')
        deal = make_deal(org)
        resp = client.post(f'/api/lead-scoring/deal/{deal.id}/recalculate', headers=org_headers(other))
        assert resp.status_code == 404

    def test_bad_history_limit(self, client, make_org, make_deal, org_headers):
        org = make_org()
        deal = make_deal(org)
        resp = client.get(f'/api/lead-scoring/deal/{deal.id}/history?limit=abc', headers=org_headers(org))
        assert resp.status_code == 400


class TestEventRoute:

    def test_event_recalculates(self, client, make_org, make_deal, org_headers):
        org = make_org()
        deal = make_deal(org)
        resp = client.post('/api/lead-scoring/events', headers=org_headers(org),
                           json={'deal_id': deal.id, 'event': 'message_received'})
        assert resp.status_code == 200
        assert resp.json['recalculated'] is True

    def test_event_disabled(self, client, make_org, make_deal, org_headers):
        org = make_org()
        client.put('/api/lead-scoring/config', headers=org_headers(org),
                   json={'auto_update_on_message': False})
        deal = make_deal(org)
        resp = client.post('/api/lead-scoring/events', headers=org_headers(org),
                           json={'deal_id': deal.id, 'event': 'message_received'})
        assert resp.json == {'recalculated': False, 'deal_id': deal.id, 'event': 'message_received'}

    def test_missing_fields(self, client, make_org, org_headers):
        resp = client.post('/api/lead-scoring/events', headers=org_headers(make_org()),
                           json={'event': 'stage_change'})
        assert resp.status_code == 400


class TestBatchRoutes:

    def test_recalculate_all_inline(self, client, make_org, make_deal, org_headers):
        org = make_org()
        make_deal(org)
        make_deal(org, status='won')
        resp = client.post('/api/lead-scoring/recalculate-all', headers=org_headers(org), json={})
        assert resp.status_code == 200
        assert resp.json['success'] is True
        assert resp.json['total'] == 1
        assert resp.json['updated'] == 1

    def test_recalculate_all_background(self, client, make_org, org_headers):
        org = make_org()
        with patch('leadhub.jobs.enqueue_recalculate_all', return_value='job-1') as enqueue:
            resp = client.post('/api/lead-scoring/recalculate-all', headers=org_headers(org),
                               json={'background': True})
        assert resp.status_code == 202
        assert resp.json == {'queued': True, 'job_id': 'job-1'}
        assert enqueue.call_args.args == (org.id,)

    def test_status_idle_then_cancel(self, client, make_org, org_headers, fake_redis):
        org = make_org()
        resp = client.get('/api/lead-scoring/recalculate-all/status', headers=org_headers(org))
        assert resp.json == {'state': 'idle'}

        resp = client.post('/api/lead-scoring/recalculate-all/cancel', headers=org_headers(org))
        assert resp.status_code == 202
        from leadhub.jobs import cancel_requested
        assert cancel_requested(org.id) is True

    def test_recalculate_stale(self, client, make_org, make_deal, org_headers):
        org = make_org()
        make_deal(org)
        resp = client.post('/api/lead-scoring/recalculate-stale', headers=org_headers(org))
        assert resp.status_code == 200
        assert resp.json['updated'] == 1


class TestReportingRoutes:

    def test_leaderboard_and_stats(self, client, db_session, make_org, make_deal, org_headers, now):
        org = make_org()
        for value in (1000, 9000):
            compute_score(db_session, org.id, make_deal(org, value=value).id, now=now)

        board = client.get('/api/lead-scoring/leaderboard?limit=5', headers=org_headers(org))
        assert board.status_code == 200
        assert len(board.json) == 2
        assert board.json[0]['score'] >= board.json[1]['score']

        stats = client.get('/api/lead-scoring/stats', headers=org_headers(org))
        assert stats.json['total_scored'] == 2
        assert set(stats.json) >= {'hot_count', 'warm_count', 'cold_count', 'avg_score',
                                   'max_score', 'min_score', 'trending_up', 'trending_down'}
        assert 'company_name' in board.json[0]

    def test_store_outage_is_503(self, client, make_org, org_headers):
        org = make_org()
        outage = sa_exc.OperationalError('SELECT', {}, Exception('could not connect'))
        with patch('leadhub.scoring.history.stats', side_effect=outage):
            resp = client.get('/api/lead-scoring/stats', headers=org_headers(org))
        assert resp.status_code == 503
        assert resp.json['error'] == 'store_unavailable'

    @patch('leadhub.services.store.time.sleep')
    def test_tenant_lookup_outage_is_503(self, mock_sleep, client, make_org, org_headers):
        org = make_org()
        outage = sa_exc.OperationalError('SELECT', {}, Exception('could not connect'))
        with patch('sqlalchemy.orm.Session.get', side_effect=outage):
            resp = client.get('/api/lead-scoring/config', headers=org_headers(org))
        assert resp.status_code == 503
        assert mock_sleep.call_count == 2

    def test_leaderboard_bad_label(self, client, make_org, org_headers):
        resp = client.get('/api/lead-scoring/leaderboard?label=tepid', headers=org_headers(make_org()))
        assert resp.status_code == 400
