"""
Notifications: Slack webhook alerts for lead scoring events.

Sent after the score is committed. A failed or skipped notification never
affects the score.
"""
import logging
import requests

from leadhub.config import SLACK_WEBHOOK_URL
from leadhub.services.circuit_breaker import CircuitOpenError, get_breaker

logger = logging.getLogger('services.notifications')


def _post(payload):
    cb = get_breaker('slack')
    with cb.guard():
        resp = requests.post(SLACK_WEBHOOK_URL, json=payload, timeout=10)
        resp.raise_for_status()


def notify_hot_transition(deal, lead_score, entered=True):
    """Post when a deal enters or leaves the hot band."""
    if not SLACK_WEBHOOK_URL:
        return

    title = deal.title or deal.id[:8]
    headline = (f"Lead is HOT: {title}" if entered
                else f"Lead cooled down: {title}")
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": headline},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Score:* {lead_score.score}"},
                {"type": "mrkdwn", "text": f"*Previous:* {lead_score.previous_score if lead_score.previous_score is not None else '-'}"},
                {"type": "mrkdwn", "text": f"*Label:* {lead_score.score_label}"},
                {"type": "mrkdwn", "text": f"*Trend:* {lead_score.score_trend}"},
            ],
        },
    ]
    if deal.value:
        blocks.append({
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Deal value: {deal.value:,.2f}"}],
        })

    try:
        _post({"blocks": blocks})
        logger.info("Hot-band notification sent for deal %s (entered=%s)", deal.id, entered)
    except CircuitOpenError as e:
        logger.warning("Slack notification skipped for deal %s: %s", deal.id, e)
    except Exception:
        logger.error("Failed to send hot-band notification for deal %s", deal.id, exc_info=True)


def notify_capacity_exhausted(webhook, deal_id):
    """Post when a captured lead could not be assigned to anyone."""
    if not SLACK_WEBHOOK_URL:
        return

    blocks = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*Unassigned lead* on webhook _{webhook.name}_: every distribution "
                        f"member is inactive or at their daily cap (deal `{deal_id}`).",
            },
        },
    ]
    try:
        _post({"blocks": blocks})
        logger.info("Capacity notification sent for webhook %s", webhook.id)
    except CircuitOpenError as e:
        logger.warning("Slack notification skipped for webhook %s: %s", webhook.id, e)
    except Exception:
        logger.error("Failed to send capacity notification for webhook %s", webhook.id, exc_info=True)
