"""
Centralized configuration: env vars, timeouts, scoring defaults.
"""
import os


# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
REDIS_SOCKET_TIMEOUT = float(os.getenv('REDIS_SOCKET_TIMEOUT', '2'))

# ── Database ──────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')
DB_CONNECT_TIMEOUT = int(os.getenv('DB_CONNECT_TIMEOUT', '5'))
DB_STATEMENT_TIMEOUT_MS = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', '5000'))
DB_POOL_TIMEOUT = int(os.getenv('DB_POOL_TIMEOUT', '10'))

# Reads are retried on transient store errors; writes never are
STORE_READ_RETRIES = int(os.getenv('STORE_READ_RETRIES', '3'))
STORE_RETRY_BACKOFF = float(os.getenv('STORE_RETRY_BACKOFF', '0.2'))

# ── OpenAI (lead insights) ────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
OPENAI_TIMEOUT = float(os.getenv('OPENAI_TIMEOUT', '30'))
LEAD_SCORE_AI_INSIGHTS = os.getenv('LEAD_SCORE_AI_INSIGHTS', '').lower() in ('1', 'true', 'yes')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Tenancy ──────────────────────────────────────────────────────────────────
DEFAULT_TIMEZONE = os.getenv('DEFAULT_TIMEZONE', 'UTC')
ORGANIZATION_HEADER = 'X-Organization-Id'
USER_HEADER = 'X-User-Id'

# ── Background jobs ──────────────────────────────────────────────────────────
RECALCULATE_JOB_TIMEOUT = int(os.getenv('RECALCULATE_JOB_TIMEOUT', '3600'))

# ── Lead scoring defaults (used until a tenant saves its own config) ─────────
DEFAULT_SCORING_CONFIG = {
    'is_active': True,
    'weight_response_time': 20.0,
    'weight_engagement': 20.0,
    'weight_profile_completeness': 15.0,
    'weight_deal_value': 15.0,
    'weight_funnel_progress': 20.0,
    'weight_recency': 10.0,
    'hot_threshold': 70,
    'warm_threshold': 40,
    'auto_update_on_message': True,
    'auto_update_on_stage_change': True,
    'recalculate_interval_hours': 24,
}

SCORE_LABELS = ['hot', 'warm', 'cold']
