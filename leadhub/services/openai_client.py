"""
OpenAI helpers: short sales insight for a scored lead.
"""
import json
import logging
from typing import Any, Dict, Optional

from leadhub.config import OPENAI_MODEL
from leadhub.extensions import openai_client as client

logger = logging.getLogger('services.openai')

INSIGHT_PROMPT = """You are a sales assistant for a WhatsApp CRM. A lead was scored 0-100
from six factors (each 0-100): response time, engagement, profile completeness,
deal value, funnel progress and recency.

DEAL: {title}
SCORE: {score} ({label}, trend {trend})
FACTORS: {factors}
MESSAGES EXCHANGED: {messages}

Respond in JSON:
{{
  "summary": "one or two sentences on why this lead scored as it did",
  "recommended_action": "one concrete next step for the salesperson"
}}"""


def _chat_completion(**kwargs):
    """Route chat completion through the OpenAI circuit breaker."""
    from leadhub.services.circuit_breaker import get_breaker
    cb = get_breaker('openai')
    return cb.call(client.chat.completions.create, **kwargs)


def generate_lead_insight(deal, score: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """Return {'summary', 'recommended_action'} for a scored deal, or None if OpenAI is not configured."""
    if client is None:
        return None

    factors = {
        'response_time': score.get('score_response_time'),
        'engagement': score.get('score_engagement'),
        'profile': score.get('score_profile'),
        'value': score.get('score_value'),
        'funnel': score.get('score_funnel'),
        'recency': score.get('score_recency'),
    }
    response = _chat_completion(
        model=OPENAI_MODEL,
        messages=[{
            "role": "user",
            "content": INSIGHT_PROMPT.format(
                title=deal.title or deal.id,
                score=score.get('score'),
                label=score.get('score_label'),
                trend=score.get('score_trend'),
                factors=json.dumps(factors),
                messages=score.get('total_messages', 0),
            ),
        }],
        response_format={"type": "json_object"},
        max_tokens=300,
    )
    result = json.loads(response.choices[0].message.content)
    logger.debug("Insight generated for deal %s", deal.id)
    return {
        'summary': str(result.get('summary', ''))[:1000],
        'recommended_action': str(result.get('recommended_action', ''))[:500],
    }
