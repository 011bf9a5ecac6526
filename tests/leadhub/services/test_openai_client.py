"""Tests for leadhub.services.openai_client: lead insight generation."""
import json
import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from leadhub.services.circuit_breaker import CircuitBreaker, CircuitOpenError


def _mock_chat_response(content_dict_or_str):
    """Build a MagicMock that looks like an openai ChatCompletion response."""
    if isinstance(content_dict_or_str, dict):
        text = json.dumps(content_dict_or_str)
    else:
        text = content_dict_or_str
    message = MagicMock()
    message.content = text
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    return response


DEAL = SimpleNamespace(id='deal-1', title='Ana / Recife')
SCORE = {
    'score': 74, 'score_label': 'hot', 'score_trend': 'up',
    'score_response_time': 90, 'score_engagement': 40, 'score_profile': 67,
    'score_value': 50, 'score_funnel': 60, 'score_recency': 95,
}


@pytest.fixture
def breaker(fake_redis):
    cb = CircuitBreaker('openai', fake_redis, failure_threshold=1, reset_timeout=60)
    with patch('leadhub.services.circuit_breaker.get_breaker', return_value=cb):
        yield cb


class TestGenerateLeadInsight:

    def test_none_without_client(self):
        from leadhub.services.openai_client import generate_lead_insight
        with patch('leadhub.services.openai_client.client', None):
            assert generate_lead_insight(DEAL, SCORE) is None

    @patch('leadhub.services.openai_client.client')
    def test_returns_summary_and_action(self, mock_client, breaker):
        from leadhub.services.openai_client import generate_lead_insight
        mock_client.chat.completions.create.return_value = _mock_chat_response({
            'summary': 'Fast replies and a recent message.',
            'recommended_action': 'Send the proposal today.',
        })

        result = generate_lead_insight(DEAL, SCORE)

        assert result == {'summary': 'Fast replies and a recent message.',
                          'recommended_action': 'Send the proposal today.'}
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs['response_format'] == {'type': 'json_object'}
        prompt = kwargs['messages'][0]['content']
        assert 'Ana / Recife' in prompt
        assert '74 (hot, trend up)' in prompt

    @patch('leadhub.services.openai_client.client')
    def test_missing_keys_become_empty(self, mock_client, breaker):
        from leadhub.services.openai_client import generate_lead_insight
        mock_client.chat.completions.create.return_value = _mock_chat_response({})
        assert generate_lead_insight(DEAL, SCORE) == {'summary': '', 'recommended_action': ''}

    @patch('leadhub.services.openai_client.client')
    def test_errors_trip_breaker(self, mock_client, breaker):
        from leadhub.services.openai_client import generate_lead_insight
        mock_client.chat.completions.create.side_effect = TimeoutError('slow')

        with pytest.raises(TimeoutError):
            generate_lead_insight(DEAL, SCORE)
        with pytest.raises(CircuitOpenError):
            generate_lead_insight(DEAL, SCORE)
        assert mock_client.chat.completions.create.call_count == 1
