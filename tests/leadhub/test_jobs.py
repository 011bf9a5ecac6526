"""Tests for leadhub.jobs: RQ enqueue, cooperative cancel, status tracking."""
import json
import pytest
import redis
from unittest.mock import MagicMock, patch

from leadhub import jobs
from leadhub.jobs import (
    CANCEL_KEY, STATUS_KEY, cancel_requested, enqueue_recalculate_all,
    get_status, request_cancel, run_recalculate_all,
)


class TestCancelFlag:

    def test_round_trip(self, fake_redis):
        assert cancel_requested('org-1') is False
        request_cancel('org-1')
        assert cancel_requested('org-1') is True
        assert cancel_requested('org-2') is False

    def test_redis_down_reads_as_not_cancelled(self):
        broken = MagicMock()
        broken.get.side_effect = redis.ConnectionError('no redis')
        with patch('leadhub.extensions.redis_client', broken):
            assert cancel_requested('org-1') is False


class TestEnqueue:

    def test_enqueue_clears_flag_and_records_status(self, fake_redis):
        fake_redis.set(CANCEL_KEY.format(org='org-1'), '1')
        queue = MagicMock()

        with patch('leadhub.jobs._get_queue', return_value=queue):
            job_id = enqueue_recalculate_all('org-1', actor='user:u1')

        args = queue.enqueue.call_args
        assert args.args == (run_recalculate_all, 'org-1', 'user:u1')
        assert args.kwargs['job_id'] == job_id
        assert 'job_timeout' in args.kwargs
        assert cancel_requested('org-1') is False
        assert get_status('org-1')['state'] == 'queued'
        assert get_status('org-1')['job_id'] == job_id

    def test_fast_worker_status_not_overwritten(self, fake_redis):
        def start_immediately(*args, **kwargs):
            jobs._save_status('org-1', {'state': 'running'})

        queue = MagicMock()
        queue.enqueue.side_effect = start_immediately
        with patch('leadhub.jobs._get_queue', return_value=queue):
            enqueue_recalculate_all('org-1')

        assert get_status('org-1')['state'] == 'running'

    def test_enqueue_failure_marks_status_failed(self, fake_redis):
        queue = MagicMock()
        queue.enqueue.side_effect = redis.ConnectionError('refused')
        with patch('leadhub.jobs._get_queue', return_value=queue):
            with pytest.raises(redis.ConnectionError):
                enqueue_recalculate_all('org-1')

        assert get_status('org-1')['state'] == 'failed'

    def test_queue_is_lazy(self, fake_redis, monkeypatch):
        monkeypatch.setattr(jobs, '_queue', None)
        with patch('rq.Queue') as mock_queue:
            first = jobs._get_queue()
            second = jobs._get_queue()
        assert first is second
        mock_queue.assert_called_once_with('lead-scoring', connection=fake_redis)


class TestRunRecalculateAll:

    def test_runs_and_records_result(self, fake_redis, make_org, make_deal):
        org = make_org()
        make_deal(org)
        make_deal(org)

        result = run_recalculate_all(org.id, actor='user:u1')

        assert result['updated'] == 2
        assert result['success'] is True
        status = json.loads(fake_redis.get(STATUS_KEY.format(org=org.id)))
        assert status['state'] == 'finished'
        assert status['result']['total'] == 2

    def test_honours_cancel_flag(self, fake_redis, make_org, make_deal):
        org = make_org()
        make_deal(org)
        request_cancel(org.id)

        result = run_recalculate_all(org.id)

        assert result['cancelled'] is True
        assert result['updated'] == 0
        assert get_status(org.id)['state'] == 'cancelled'
        assert cancel_requested(org.id) is False

    def test_failure_recorded_and_reraised(self, fake_redis, make_org):
        org = make_org()
        with patch('leadhub.scoring.service.recalculate_all', side_effect=RuntimeError('boom')):
            with pytest.raises(RuntimeError):
                run_recalculate_all(org.id)
        status = get_status(org.id)
        assert status['state'] == 'failed'
        assert 'boom' in status['error']
