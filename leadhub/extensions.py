"""
Shared client instances: Redis, OpenAI.

Importing this module never opens a connection: redis.from_url connects on
first command, and the OpenAI client is only built when a key is configured.
"""
import logging
import redis

from leadhub.config import OPENAI_API_KEY, OPENAI_TIMEOUT, REDIS_SOCKET_TIMEOUT, REDIS_URL

logger = logging.getLogger('leadhub.extensions')

# Breaker state, job status and cancel flags are all short reads; a stalled
# Redis must not hold a webhook request open
redis_client = redis.from_url(
    REDIS_URL,
    decode_responses=True,
    socket_timeout=REDIS_SOCKET_TIMEOUT,
    socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
)


def _build_openai_client():
    if not OPENAI_API_KEY:
        logger.info("OPENAI_API_KEY not set, lead insights disabled")
        return None
    from openai import OpenAI
    # Retries are the circuit breaker's job
    return OpenAI(api_key=OPENAI_API_KEY, timeout=OPENAI_TIMEOUT, max_retries=0)


openai_client = _build_openai_client()
