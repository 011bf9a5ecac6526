"""
Structured logging configuration.

Called once from create_app(). LOG_FORMAT picks text or JSON output,
LOG_LEVEL sets the root level, and LOG_LEVELS raises or lowers single areas:

    LOG_LEVELS="scoring=DEBUG,distribution.allocator=WARNING"

Records emitted while serving a request carry the tenant id and a request id
(see RequestContextFilter), so one lead's journey can be followed across
scoring, assignment and webhook logging.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ('organization_id', 'request_id')

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s [org=%(organization_id)s] %(message)s'

# Libraries that log every HTTP call or job pickup at INFO
_NOISY_LOGGERS = ('urllib3', 'openai', 'httpcore', 'httpx', 'rq.worker', 'alembic.runtime')


class RequestContextFilter(logging.Filter):
    """Attach organization_id / request_id from flask.g when inside a request."""

    def filter(self, record):
        values = dict.fromkeys(CONTEXT_FIELDS)
        try:
            from flask import g, has_request_context
            if has_request_context():
                values = {k: getattr(g, k, None) for k in CONTEXT_FIELDS}
        except ImportError:
            pass
        for key, value in values.items():
            setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; context fields only when set."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update({k: getattr(record, k) for k in CONTEXT_FIELDS if getattr(record, k, None)})
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _level(name, default=logging.INFO):
    level = logging.getLevelName((name or '').strip().upper())
    return level if isinstance(level, int) else default


def parse_level_overrides(raw):
    """'scoring=DEBUG,distribution=WARNING' → {'scoring': 10, 'distribution': 30}; bad pairs skipped."""
    overrides = {}
    for pair in (raw or '').split(','):
        name, sep, level = pair.partition('=')
        if not sep or not name.strip():
            continue
        value = _level(level, default=None)
        if value is not None:
            overrides[name.strip()] = value
    return overrides


def configure_logging(app=None):
    """Install a single stderr handler on the root logger."""
    level = _level(os.getenv('LOG_LEVEL', 'INFO'))
    as_json = os.getenv('LOG_FORMAT', 'text').lower() == 'json'

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.NOTSET)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if as_json
                         else logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name, override in parse_level_overrides(os.getenv('LOG_LEVELS')).items():
        logging.getLogger(name).setLevel(override)

    if app is not None:
        # Flask's own handler would print every record twice
        app.logger.handlers.clear()
        app.logger.propagate = True
