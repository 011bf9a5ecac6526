"""
Scoring engine: pure computation, no database access.

Turns a deal's raw signals into six 0-100 sub-scores, combines them with the
tenant's weights into a composite 0-100 score, and classifies it hot / warm /
cold. Weights are normalized at computation time (weighted sum divided by the
sum of weights), so a tenant's weights never need to add up to 100.

All functions here are deterministic given (signals, settings, rules).
"""
import logging
import math
import os
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

import yaml

logger = logging.getLogger('scoring.engine')

FACTORS = [
    'response_time',
    'engagement',
    'profile',
    'value',
    'funnel',
    'recency',
]

# factor → LeadScoreConfig weight column
WEIGHT_FIELDS = {
    'response_time': 'weight_response_time',
    'engagement': 'weight_engagement',
    'profile': 'weight_profile_completeness',
    'value': 'weight_deal_value',
    'funnel': 'weight_funnel_progress',
    'recency': 'weight_recency',
}


# ── Inputs ───────────────────────────────────────────────────────────────────

@dataclass
class DealSignals:
    """Raw signals for one deal, as collected from the store."""
    total_messages: int = 0
    inbound_messages: int = 0
    first_response_minutes: Optional[float] = None   # None = lead never replied
    hours_since_activity: Optional[float] = None      # None = no activity at all
    profile_fields_filled: int = 0
    profile_fields_total: int = 0
    funnel_stages_completed: int = 0
    funnel_stages_total: int = 0
    deal_value: float = 0.0
    last_activity_at: Optional[datetime] = None


@dataclass
class ScoringSettings:
    """Detached snapshot of a tenant's LeadScoreConfig."""
    weights: Dict[str, float]
    hot_threshold: int = 70
    warm_threshold: int = 40
    is_active: bool = True
    auto_update_on_message: bool = True
    auto_update_on_stage_change: bool = True
    recalculate_interval_hours: int = 24

    @classmethod
    def from_config(cls, config) -> 'ScoringSettings':
        """Build from a LeadScoreConfig row or a plain dict of its columns."""
        get = config.get if isinstance(config, dict) else lambda k: getattr(config, k)
        return cls(
            weights={factor: float(get(col) or 0) for factor, col in WEIGHT_FIELDS.items()},
            hot_threshold=int(get('hot_threshold')),
            warm_threshold=int(get('warm_threshold')),
            is_active=bool(get('is_active')),
            auto_update_on_message=bool(get('auto_update_on_message')),
            auto_update_on_stage_change=bool(get('auto_update_on_stage_change')),
            recalculate_interval_hours=int(get('recalculate_interval_hours')),
        )


@dataclass
class FactorRules:
    """Normalization constants for each factor (see scoring_rules.yaml)."""
    fast_minutes: float = 5.0
    cutoff_minutes: float = 1440.0
    saturation_messages: int = 30
    profile_fields: List[str] = field(default_factory=lambda: [
        'name', 'phone', 'email', 'company', 'city', 'job_title',
    ])
    full_score_value: float = 10000.0
    half_life_hours: float = 48.0
    version: str = 'default'


@dataclass
class ScoreResult:
    score: int
    score_label: str
    factor_scores: Dict[str, int]

    def to_dict(self):
        return asdict(self)


# ── Rules loading (YAML with hardcoded fallback) ─────────────────────────────

RULES_PATH = os.path.join(os.path.dirname(__file__), 'scoring_rules.yaml')


def load_factor_rules(path: str = None) -> FactorRules:
    """
    Read factor rules from YAML, falling back to FactorRules() defaults.

    Not cached at module level: callers that score many deals hold the
    returned object (see TenantConfigCache).
    """
    path = path or RULES_PATH
    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Scoring rules not loaded (%s), using defaults", e)
        return FactorRules()

    defaults = FactorRules()
    rules = FactorRules(
        fast_minutes=float(raw.get('response_time', {}).get('fast_minutes', defaults.fast_minutes)),
        cutoff_minutes=float(raw.get('response_time', {}).get('cutoff_minutes', defaults.cutoff_minutes)),
        saturation_messages=int(raw.get('engagement', {}).get('saturation_messages', defaults.saturation_messages)),
        profile_fields=list(raw.get('profile', {}).get('fields', defaults.profile_fields)),
        full_score_value=float(raw.get('deal_value', {}).get('full_score_value', defaults.full_score_value)),
        half_life_hours=float(raw.get('recency', {}).get('half_life_hours', defaults.half_life_hours)),
        version=str(raw.get('version', 'yaml')),
    )
    logger.debug("Scoring rules loaded (version=%s)", rules.version)
    return rules


# ── Factor normalization ─────────────────────────────────────────────────────

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp(x: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, x))


def normalize_response_time(minutes: Optional[float], rules: FactorRules) -> float:
    """Faster is better; log decay between fast_minutes and cutoff_minutes."""
    if minutes is None:
        return 0.0
    minutes = max(0.0, float(minutes))
    if minutes <= rules.fast_minutes:
        return 100.0
    if minutes >= rules.cutoff_minutes:
        return 0.0
    span = math.log(rules.cutoff_minutes / rules.fast_minutes)
    return _clamp(100.0 * (1.0 - math.log(minutes / rules.fast_minutes) / span))


def normalize_engagement(total_messages: int, rules: FactorRules) -> float:
    if not total_messages or rules.saturation_messages <= 0:
        return 0.0
    return _clamp(100.0 * total_messages / rules.saturation_messages)


def normalize_ratio(done: int, total: int) -> float:
    """Shared rule for profile completeness and funnel progress."""
    if not total or total <= 0:
        return 0.0
    return _clamp(100.0 * (done or 0) / total)


def normalize_deal_value(value: Optional[float], rules: FactorRules) -> float:
    if not value or value <= 0 or rules.full_score_value <= 0:
        return 0.0
    return _clamp(100.0 * value / rules.full_score_value)


def normalize_recency(hours: Optional[float], rules: FactorRules) -> float:
    """Exponential decay with a half-life; non-increasing in hours."""
    if hours is None:
        return 0.0
    hours = max(0.0, float(hours))
    return _clamp(100.0 * math.pow(0.5, hours / rules.half_life_hours))


def factor_scores(signals: DealSignals, rules: FactorRules) -> Dict[str, int]:
    """All six sub-scores, each rounded to an int in [0, 100]."""
    raw = {
        'response_time': normalize_response_time(signals.first_response_minutes, rules),
        'engagement': normalize_engagement(signals.total_messages, rules),
        'profile': normalize_ratio(signals.profile_fields_filled, signals.profile_fields_total),
        'value': normalize_deal_value(signals.deal_value, rules),
        'funnel': normalize_ratio(signals.funnel_stages_completed, signals.funnel_stages_total),
        'recency': normalize_recency(signals.hours_since_activity, rules),
    }
    return {k: _round_half_up(v) for k, v in raw.items()}


# ── Composite, label, trend ──────────────────────────────────────────────────

def composite_score(sub_scores: Dict[str, int], weights: Dict[str, float]) -> int:
    """Weighted mean of the sub-scores, rounded half-up and clamped to [0, 100]."""
    total_weight = sum(max(0.0, weights.get(f, 0.0)) for f in FACTORS)
    if total_weight <= 0:
        return 0
    weighted = sum(max(0.0, weights.get(f, 0.0)) * sub_scores.get(f, 0) for f in FACTORS)
    return int(_clamp(_round_half_up(weighted / total_weight)))


def classify(score: int, hot_threshold: int, warm_threshold: int) -> str:
    if score >= hot_threshold:
        return 'hot'
    if score >= warm_threshold:
        return 'warm'
    return 'cold'


def score_trend(new_score: int, previous_score: Optional[int]) -> str:
    if previous_score is None or new_score == previous_score:
        return 'stable'
    return 'up' if new_score > previous_score else 'down'


def score_signals(signals: DealSignals, settings: ScoringSettings, rules: FactorRules) -> ScoreResult:
    """Full computation for one deal: sub-scores → composite → label."""
    subs = factor_scores(signals, rules)
    score = composite_score(subs, settings.weights)
    return ScoreResult(
        score=score,
        score_label=classify(score, settings.hot_threshold, settings.warm_threshold),
        factor_scores=subs,
    )
