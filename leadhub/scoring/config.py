"""
Tenant scoring configuration: read, validate, update, and trigger policy.

A tenant without a saved row scores with DEFAULT_SCORING_CONFIG. Updates are
validated as a whole before anything is written: a rejected update leaves the
stored row untouched.
"""
import logging
from datetime import timedelta

from sqlalchemy import select

from leadhub.config import DEFAULT_SCORING_CONFIG
from leadhub.errors import ValidationError
from leadhub.models.lead_score import LeadScoreConfig
from leadhub.scoring.engine import ScoringSettings, WEIGHT_FIELDS, load_factor_rules
from leadhub.services.store import retrying_read
from leadhub.timeutil import as_utc, isoformat, utcnow

logger = logging.getLogger('scoring.config')

EDITABLE_FIELDS = set(DEFAULT_SCORING_CONFIG.keys())
BOOL_FIELDS = {'is_active', 'auto_update_on_message', 'auto_update_on_stage_change'}


def _load_row(session, organization_id):
    return session.execute(
        select(LeadScoreConfig).where(LeadScoreConfig.organization_id == organization_id)
    ).scalar_one_or_none()


def config_to_dict(organization_id, row=None):
    """Serialize a config row, or the defaults when the tenant has none."""
    if row is None:
        return {'id': None, 'organization_id': organization_id, **DEFAULT_SCORING_CONFIG,
                'created_at': None, 'updated_at': None}
    data = {'id': row.id, 'organization_id': row.organization_id}
    for key in DEFAULT_SCORING_CONFIG:
        data[key] = getattr(row, key)
    data['created_at'] = isoformat(row.created_at)
    data['updated_at'] = isoformat(row.updated_at)
    return data


@retrying_read
def get_config(session, organization_id) -> dict:
    return config_to_dict(organization_id, _load_row(session, organization_id))


def get_settings(session, organization_id) -> ScoringSettings:
    row = _load_row(session, organization_id)
    return ScoringSettings.from_config(row if row is not None else DEFAULT_SCORING_CONFIG)


def validate_config(values: dict):
    """Raise ValidationError with a specific reason for the first violation."""
    for key in WEIGHT_FIELDS.values():
        w = values[key]
        if not isinstance(w, (int, float)) or isinstance(w, bool):
            raise ValidationError(f'{key} must be a number')
        if w < 0:
            raise ValidationError(f'{key} must be non-negative')
    if sum(values[k] for k in WEIGHT_FIELDS.values()) <= 0:
        raise ValidationError('at least one weight must be greater than zero')

    for key in ('hot_threshold', 'warm_threshold'):
        t = values[key]
        if not isinstance(t, int) or isinstance(t, bool):
            raise ValidationError(f'{key} must be an integer')
        if not 0 <= t <= 100:
            raise ValidationError(f'{key} must be between 0 and 100')
    if values['hot_threshold'] <= values['warm_threshold']:
        raise ValidationError(
            f"hot_threshold ({values['hot_threshold']}) must be greater than "
            f"warm_threshold ({values['warm_threshold']})"
        )

    interval = values['recalculate_interval_hours']
    if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
        raise ValidationError('recalculate_interval_hours must be a positive integer')

    for key in BOOL_FIELDS:
        if not isinstance(values[key], bool):
            raise ValidationError(f'{key} must be a boolean')


def update_config(session, organization_id, changes: dict) -> dict:
    """
    Merge `changes` over the current config, validate, then persist.

    Raises ValidationError (nothing written) on unknown fields or invalid values.
    """
    if not isinstance(changes, dict):
        raise ValidationError('config update must be a JSON object')
    ignored = {'id', 'organization_id', 'created_at', 'updated_at'}
    unknown = set(changes) - EDITABLE_FIELDS - ignored
    if unknown:
        raise ValidationError(f"unknown config fields: {', '.join(sorted(unknown))}")

    row = _load_row(session, organization_id)
    merged = config_to_dict(organization_id, row)
    merged.update({k: v for k, v in changes.items() if k in EDITABLE_FIELDS})
    validate_config(merged)

    if row is None:
        row = LeadScoreConfig(organization_id=organization_id)
        session.add(row)
    for key in EDITABLE_FIELDS:
        setattr(row, key, merged[key])
    row.updated_at = utcnow()
    session.commit()

    logger.info("Scoring config updated for org %s: hot=%s warm=%s",
                organization_id, row.hot_threshold, row.warm_threshold)
    return config_to_dict(organization_id, row)


# ── Trigger policy ───────────────────────────────────────────────────────────

def should_recalculate(settings: ScoringSettings, trigger: str, last_calculated_at=None, now=None) -> bool:
    """
    Decide whether an incoming trigger warrants a recalculation.

    manual and bulk always run; with an inactive config nothing else does.
    """
    if trigger in ('manual', 'bulk'):
        return True
    if not settings.is_active:
        return False
    if trigger == 'message_received':
        return settings.auto_update_on_message
    if trigger == 'stage_change':
        return settings.auto_update_on_stage_change
    if trigger == 'interval':
        if last_calculated_at is None:
            return True
        now = now or utcnow()
        elapsed = now - as_utc(last_calculated_at)
        return elapsed >= timedelta(hours=settings.recalculate_interval_hours)
    return False


class TenantConfigCache:
    """
    Per-call cache of tenant settings and factor rules.

    Created by a caller (one request, one bulk run) and passed by reference;
    nothing outlives it.
    """

    def __init__(self, rules=None):
        self._settings = {}
        self.rules = rules or load_factor_rules()

    def settings_for(self, session, organization_id) -> ScoringSettings:
        if organization_id not in self._settings:
            self._settings[organization_id] = get_settings(session, organization_id)
        return self._settings[organization_id]
