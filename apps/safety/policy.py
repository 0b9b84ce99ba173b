# apps/safety/policy.py
# ============================================================
# SAFETY POLICY – immutable threshold / weight tables
# ============================================================
"""
One frozen dataclass tree holding every tunable number used by the
trust & safety services.

Defaults come from the per-app ``constants`` modules; deployments override
single values through ``settings.SAFETY_POLICY``::

    SAFETY_POLICY = {
        "shield": {"level_thresholds": [[80, "CRITICAL"], [50, "HIGH"], [25, "MEDIUM"], [10, "LOW"]]},
        "orchestrator": {"provider_timeout_seconds": 1.5},
    }

Services accept ``policy=`` and fall back to ``get_safety_policy()``.
Tests build variants with ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Mapping, Tuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.safety import constants as safety_c
from apps.consent import constants as consent_c
from apps.detection import constants as detection_c
from apps.shield import constants as shield_c
from apps.behavior import constants as behavior_c
from apps.risk import constants as risk_c


def _frozen(mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


# ------------------------------------------------------------
# Sections
# ------------------------------------------------------------
@dataclass(frozen=True)
class ConsentPolicy:
    allow_reinitialize_after_revoke: bool = consent_c.ALLOW_REINITIALIZE_AFTER_REVOKE


@dataclass(frozen=True)
class DetectionPolicy:
    spam_burst_threshold: int = detection_c.SPAM_BURST_THRESHOLD
    spam_burst_confidence: float = detection_c.SPAM_BURST_CONFIDENCE
    repeated_contact_threshold: int = detection_c.REPEATED_CONTACT_THRESHOLD
    repeated_contact_confidence: float = detection_c.REPEATED_CONTACT_CONFIDENCE
    trauma_risk_confidence: float = detection_c.TRAUMA_RISK_CONFIDENCE
    pressure_language_confidence: float = detection_c.PRESSURE_LANGUAGE_CONFIDENCE
    impersonation_similarity_threshold: float = detection_c.IMPERSONATION_SIMILARITY_THRESHOLD
    block_evasion_confidence: float = detection_c.BLOCK_EVASION_CONFIDENCE
    trauma_risk_phrases: Tuple[str, ...] = tuple(detection_c.TRAUMA_RISK_PHRASES)
    pressure_phrases: Tuple[str, ...] = tuple(detection_c.PRESSURE_PHRASES)


@dataclass(frozen=True)
class ShieldPolicy:
    signal_weights: Mapping[str, float] = field(default_factory=lambda: _frozen(shield_c.SIGNAL_WEIGHTS))
    default_signal_weight: float = shield_c.DEFAULT_SIGNAL_WEIGHT
    level_thresholds: Tuple[Tuple[float, str], ...] = safety_c.LEVEL_THRESHOLDS
    restore_consent_on_resolve: bool = shield_c.RESTORE_CONSENT_ON_RESOLVE


@dataclass(frozen=True)
class MemoryPolicy:
    importance_base_confidence: Mapping[str, float] = field(
        default_factory=lambda: _frozen(behavior_c.IMPORTANCE_BASE_CONFIDENCE)
    )
    recurrence_window_days: int = behavior_c.RECURRENCE_WINDOW_DAYS
    frequency_boost_per_occurrence: float = behavior_c.FREQUENCY_BOOST_PER_OCCURRENCE
    frequency_boost_cap: float = behavior_c.FREQUENCY_BOOST_CAP
    recency_boosts: Tuple[Tuple[int, float], ...] = behavior_c.RECENCY_BOOSTS
    retention_days: int = behavior_c.RETENTION_DAYS
    sweep_page_size: int = behavior_c.SWEEP_PAGE_SIZE
    trend_window: int = behavior_c.TREND_WINDOW
    worsening_ratio: float = behavior_c.WORSENING_RATIO
    improving_ratio: float = behavior_c.IMPROVING_RATIO
    default_lookback_months: int = behavior_c.DEFAULT_LOOKBACK_MONTHS
    cyclic_gap_days: int = behavior_c.CYCLIC_GAP_DAYS
    cyclic_min_cycles: int = behavior_c.CYCLIC_MIN_CYCLES
    coordinated_window_hours: int = behavior_c.COORDINATED_WINDOW_HOURS
    coordinated_min_attackers: int = behavior_c.COORDINATED_MIN_ATTACKERS
    coordinated_min_events: int = behavior_c.COORDINATED_MIN_EVENTS
    bypass_window_days: int = behavior_c.BYPASS_WINDOW_DAYS
    bypass_min_events: int = behavior_c.BYPASS_MIN_EVENTS


@dataclass(frozen=True)
class RiskProfilePolicy:
    pattern_weights: Mapping[str, float] = field(default_factory=lambda: _frozen(risk_c.PATTERN_WEIGHTS))
    default_pattern_weight: float = risk_c.DEFAULT_PATTERN_WEIGHT
    frequency_multipliers: Tuple[Tuple[int, float], ...] = risk_c.FREQUENCY_MULTIPLIERS
    trend_multipliers: Mapping[str, float] = field(default_factory=lambda: _frozen(risk_c.TREND_MULTIPLIERS))
    very_recent_days: int = risk_c.VERY_RECENT_DAYS
    stale_after_days: int = risk_c.STALE_AFTER_DAYS
    recency_very_recent: float = risk_c.RECENCY_MULTIPLIER_VERY_RECENT
    recency_normal: float = risk_c.RECENCY_MULTIPLIER_NORMAL
    recency_stale: float = risk_c.RECENCY_MULTIPLIER_STALE
    level_thresholds: Tuple[Tuple[float, str], ...] = safety_c.LEVEL_THRESHOLDS
    lookback_months: int = behavior_c.DEFAULT_LOOKBACK_MONTHS


@dataclass(frozen=True)
class OrchestratorPolicy:
    severity_weights: Mapping[str, float] = field(default_factory=lambda: _frozen(risk_c.SEVERITY_WEIGHTS))
    lockdown_threshold: float = risk_c.LOCKDOWN_THRESHOLD
    high_risk_threshold: float = risk_c.HIGH_RISK_THRESHOLD
    medium_risk_threshold: float = risk_c.MEDIUM_RISK_THRESHOLD
    low_risk_threshold: float = risk_c.LOW_RISK_THRESHOLD
    notify_threshold: float = risk_c.NOTIFY_THRESHOLD
    provider_timeout_seconds: float = risk_c.PROVIDER_TIMEOUT_SECONDS


@dataclass(frozen=True)
class ConfidencePolicy:
    min_samples: int = detection_c.MIN_FEEDBACK_SAMPLES
    learning_rate: float = detection_c.CONFIDENCE_LEARNING_RATE
    min_confidence: float = detection_c.MIN_RULE_CONFIDENCE
    max_confidence: float = detection_c.MAX_RULE_CONFIDENCE
    default_base_confidence: float = detection_c.DEFAULT_BASE_CONFIDENCE
    batch_limit: int = detection_c.FEEDBACK_BATCH_LIMIT


@dataclass(frozen=True)
class SafetyPolicy:
    consent: ConsentPolicy = field(default_factory=ConsentPolicy)
    detection: DetectionPolicy = field(default_factory=DetectionPolicy)
    shield: ShieldPolicy = field(default_factory=ShieldPolicy)
    memory: MemoryPolicy = field(default_factory=MemoryPolicy)
    risk_profile: RiskProfilePolicy = field(default_factory=RiskProfilePolicy)
    orchestrator: OrchestratorPolicy = field(default_factory=OrchestratorPolicy)
    confidence: ConfidencePolicy = field(default_factory=ConfidencePolicy)


# ------------------------------------------------------------
# Builders
# ------------------------------------------------------------
def _coerce(current, value):
    # Settings dicts carry lists / dicts; keep the frozen shapes.
    if isinstance(current, MappingProxyType):
        merged = dict(current)
        merged.update(value)
        return _frozen(merged)
    if isinstance(current, tuple):
        return tuple(tuple(v) if isinstance(v, list) else v for v in value)
    return value


def _override_section(section, overrides: dict):
    known = {f.name for f in fields(section)}
    unknown = set(overrides) - known
    if unknown:
        raise ImproperlyConfigured(
            f"Unknown SAFETY_POLICY keys for {type(section).__name__}: {sorted(unknown)}"
        )
    changes = {name: _coerce(getattr(section, name), value) for name, value in overrides.items()}
    return replace(section, **changes)


def build_safety_policy(overrides: dict | None = None) -> SafetyPolicy:
    policy = SafetyPolicy()
    if not overrides:
        return policy

    sections = {f.name for f in fields(policy)}
    unknown = set(overrides) - sections
    if unknown:
        raise ImproperlyConfigured(f"Unknown SAFETY_POLICY sections: {sorted(unknown)}")

    changes = {
        name: _override_section(getattr(policy, name), values or {})
        for name, values in overrides.items()
    }
    return replace(policy, **changes)


def get_safety_policy() -> SafetyPolicy:
    """Policy for the current settings (re-read on every call so override_settings works)."""
    return build_safety_policy(getattr(settings, "SAFETY_POLICY", None))


def resolve_policy(policy: SafetyPolicy | None) -> SafetyPolicy:
    return policy if policy is not None else get_safety_policy()
