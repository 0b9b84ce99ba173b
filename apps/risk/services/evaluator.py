# apps/risk/services/evaluator.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from django.db import transaction, IntegrityError
from django.utils import timezone

from apps.safety.constants import (
    SYSTEM_ACTOR,
    PRIORITY_HIGH,
    PRIORITY_CRITICAL,
    ACCOUNT_VERIFICATION_REQUIRED,
    ACCOUNT_HARD_RESTRICTED,
    ACCOUNT_SUSPENDED,
)
from apps.safety.exceptions import RecordNotFound, require_ids
from apps.safety.levels import RiskLevel, cap_score, level_for_score
from apps.safety.policy import resolve_policy
from apps.safety.collaborators.audit import record_audit_event
from apps.safety.collaborators.cases import get_case_sink
from apps.safety.collaborators.enforcement import get_enforcement_sink
from apps.consent.services.ledger import pause_all_active_consents
from apps.behavior.services.memory import BehaviorPattern, detect_patterns
from apps.behavior.constants import TREND_WORSENING
from apps.risk.models import RiskProfile, RiskProfileTransition
from apps.risk.constants import (
    RELATIONSHIP_PATTERNS,
    SHIELD_PATTERNS,
    FRAUD_PATTERNS,
    EVASION_PATTERNS,
    RECOMMEND_REVALIDATE_CONSENT,
    RECOMMEND_ENABLE_SHIELD,
    RECOMMEND_MODERATOR_REVIEW,
    RECOMMEND_FORCED_VERIFICATION,
    RECOMMEND_ACCOUNT_LOCKDOWN,
    RECOMMEND_MONITOR,
    FLAG_WORSENING_TREND,
    FLAG_EVASION_DETECTED,
    FLAG_FRAUD_DETECTED,
    FLAG_RELATIONSHIP_RISK,
)

logger = logging.getLogger(__name__)

TRIGGER_FIELDS = (
    ("can_trigger_consent_revalidation", RECOMMEND_REVALIDATE_CONSENT),
    ("can_trigger_harassment_shield", RECOMMEND_ENABLE_SHIELD),
    ("can_trigger_moderator_review", RECOMMEND_MODERATOR_REVIEW),
    ("can_trigger_forced_verification", RECOMMEND_FORCED_VERIFICATION),
    ("can_trigger_account_lockdown", RECOMMEND_ACCOUNT_LOCKDOWN),
)


@dataclass(frozen=True)
class RiskEvaluation:
    profile: RiskProfile
    recommended_actions: Tuple[str, ...]
    level_changed: bool = False


@dataclass(frozen=True)
class TriggerExecution:
    user_id: str
    paused_pairs: Tuple[str, ...] = ()
    review_case_id: Optional[str] = None
    verification_requested: bool = False
    lockdown_status: Optional[str] = None
    failed_steps: Tuple[str, ...] = ()

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "paused_pairs": list(self.paused_pairs),
            "review_case_id": self.review_case_id,
            "verification_requested": self.verification_requested,
            "lockdown_status": self.lockdown_status,
            "failed_steps": list(self.failed_steps),
        }


# ---------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------
def frequency_multiplier(frequency: int, table) -> float:
    for minimum, multiplier in table:
        if frequency >= minimum:
            return multiplier
    return 0.0


def recency_multiplier(last_occurrence: datetime, now: datetime, rp) -> float:
    days = (now - last_occurrence).total_seconds() / 86400.0
    if days <= rp.very_recent_days:
        return rp.recency_very_recent
    if days <= rp.stale_after_days:
        return rp.recency_normal
    return rp.recency_stale


def pattern_contribution(pattern: BehaviorPattern, now: datetime, rp) -> float:
    base = rp.pattern_weights.get(pattern.event_type, rp.default_pattern_weight)
    return (
        base
        * frequency_multiplier(pattern.frequency, rp.frequency_multipliers)
        * rp.trend_multipliers.get(pattern.trend, 1.0)
        * recency_multiplier(pattern.last_occurrence, now, rp)
    )


def score_patterns(patterns: Iterable[BehaviorPattern], now: datetime, rp) -> Tuple[float, float]:
    """
    Returns (score, confidence). Confidence is the contribution-weighted
    mean of the patterns' detector confidence.
    """
    total = 0.0
    weighted_confidence = 0.0
    for pattern in patterns:
        contribution = pattern_contribution(pattern, now, rp)
        total += contribution
        weighted_confidence += contribution * pattern.mean_confidence
    confidence = round(weighted_confidence / total, 4) if total else 0.0
    return cap_score(total), confidence


def compute_triggers(pattern_types: set, level: RiskLevel) -> dict:
    return {
        "can_trigger_consent_revalidation": bool(pattern_types & RELATIONSHIP_PATTERNS) and level >= RiskLevel.MEDIUM,
        "can_trigger_harassment_shield": bool(pattern_types & SHIELD_PATTERNS) and level >= RiskLevel.MEDIUM,
        "can_trigger_moderator_review": level >= RiskLevel.HIGH,
        "can_trigger_forced_verification": bool(pattern_types & FRAUD_PATTERNS) and level >= RiskLevel.HIGH,
        # Evasion locks regardless of level
        "can_trigger_account_lockdown": level >= RiskLevel.CRITICAL or bool(pattern_types & EVASION_PATTERNS),
    }


def compute_flags(patterns: List[BehaviorPattern]) -> List[str]:
    types = {p.event_type for p in patterns}
    flags = []
    if any(p.trend == TREND_WORSENING for p in patterns):
        flags.append(FLAG_WORSENING_TREND)
    if types & EVASION_PATTERNS:
        flags.append(FLAG_EVASION_DETECTED)
    if types & FRAUD_PATTERNS:
        flags.append(FLAG_FRAUD_DETECTED)
    if types & RELATIONSHIP_PATTERNS:
        flags.append(FLAG_RELATIONSHIP_RISK)
    return flags


def recommended_actions_for(triggers: dict, score: float) -> Tuple[str, ...]:
    actions = tuple(code for field_name, code in TRIGGER_FIELDS if triggers[field_name])
    if not actions and score > 0:
        return (RECOMMEND_MONITOR,)
    return actions


# ---------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------
def get_risk_profile(user_id) -> Optional[RiskProfile]:
    (user_id,) = require_ids(user_id=user_id)
    return RiskProfile.objects.filter(user_id=user_id).first()


def _get_or_create_profile(user_id) -> RiskProfile:
    try:
        with transaction.atomic():
            profile, _ = RiskProfile.objects.get_or_create(user_id=user_id)
    except IntegrityError:
        profile = RiskProfile.objects.get(user_id=user_id)
    return profile


def evaluate_risk_profile(user_id, *, patterns=None, now=None, policy=None) -> RiskEvaluation:
    """
    Rebuild the user's profile from behavior memory.
    `patterns` replaces the memory lookup (tests, backfills).
    """
    (user_id,) = require_ids(user_id=user_id)
    policy = resolve_policy(policy)
    rp = policy.risk_profile
    now = now or timezone.now()

    if patterns is None:
        patterns = detect_patterns(user_id, rp.lookback_months, now=now, policy=policy)
    patterns = list(patterns)

    score, confidence = score_patterns(patterns, now, rp)
    level = level_for_score(score, rp.level_thresholds)
    triggers = compute_triggers({p.event_type for p in patterns}, level)
    flags = compute_flags(patterns)

    _get_or_create_profile(user_id)
    with transaction.atomic():
        profile = RiskProfile.objects.select_for_update().get(user_id=user_id)
        previous = RiskLevel(profile.level)

        profile.level = int(level)
        profile.score = score
        profile.confidence = confidence
        profile.patterns = [p.as_dict() for p in patterns]
        profile.flags = flags
        for field_name, value in triggers.items():
            setattr(profile, field_name, value)
        profile.last_evaluated_at = now
        profile.save()

        level_changed = previous != level
        if level_changed:
            RiskProfileTransition.objects.create(
                profile=profile,
                from_level=int(previous),
                to_level=int(level),
                score=score,
                reason=",".join(sorted(p.event_type for p in patterns)) or "no patterns",
            )

    actions = recommended_actions_for(triggers, score)
    if level_changed:
        logger.info("[RiskProfile] %s %s -> %s (score=%s)", user_id, previous.name, level.name, score)
        record_audit_event(
            "RISK_LEVEL_CHANGED", user_id,
            details={"from": previous.name, "to": level.name, "score": score, "flags": flags},
        )
    return RiskEvaluation(profile=profile, recommended_actions=actions, level_changed=level_changed)


# ---------------------------------------------------------------------
# Trigger execution
# ---------------------------------------------------------------------
def execute_risk_triggers(user_id, profile: Optional[RiskProfile] = None) -> TriggerExecution:
    """
    Carry out the enforcement triggers of an evaluated profile.
    Steps are independent; each one runs at most once per profile and a
    failing step is logged without stopping the others.
    The harassment-shield trigger needs a counterpart and stays a recommendation.
    """
    (user_id,) = require_ids(user_id=user_id)
    if profile is None:
        profile = get_risk_profile(user_id)
    if profile is None:
        raise RecordNotFound("No risk profile exists for this user.")

    failed = []
    paused_pairs = ()
    verification_requested = False
    lockdown_status = None
    reason_codes = sorted(profile.pattern_types - {None})

    if profile.can_trigger_consent_revalidation:
        try:
            paused_pairs = tuple(pause_all_active_consents(user_id, reason="risk profile requires consent revalidation"))
            RiskProfile.objects.filter(pk=profile.pk).update(consent_revalidated_at=timezone.now())
        except Exception:
            logger.error("[RiskProfile] consent revalidation failed for %s", user_id, exc_info=True)
            failed.append("consent_revalidation")

    if profile.can_trigger_moderator_review and not profile.review_case_id:
        try:
            case_id = get_case_sink().open_case(
                user_id,
                SYSTEM_ACTOR,
                reason_codes,
                priority=PRIORITY_CRITICAL if profile.level >= RiskLevel.CRITICAL else PRIORITY_HIGH,
                evidence_refs=[f"risk_profile:{profile.pk}"],
            )
            if RiskProfile.objects.filter(pk=profile.pk, review_case_id__isnull=True).update(review_case_id=case_id):
                profile.review_case_id = case_id
        except Exception:
            logger.error("[RiskProfile] review case failed for %s", user_id, exc_info=True)
            failed.append("moderator_review")

    if profile.can_trigger_forced_verification and profile.verification_requested_at is None:
        try:
            get_enforcement_sink().apply(user_id, ACCOUNT_VERIFICATION_REQUIRED, reason_codes)
            stamped = timezone.now()
            RiskProfile.objects.filter(pk=profile.pk, verification_requested_at__isnull=True).update(
                verification_requested_at=stamped,
            )
            profile.verification_requested_at = stamped
            verification_requested = True
        except Exception:
            logger.error("[RiskProfile] forced verification failed for %s", user_id, exc_info=True)
            failed.append("forced_verification")

    if profile.can_trigger_account_lockdown and profile.lockdown_applied_at is None:
        status = ACCOUNT_SUSPENDED if profile.level >= RiskLevel.CRITICAL else ACCOUNT_HARD_RESTRICTED
        try:
            get_enforcement_sink().apply(user_id, status, reason_codes)
            stamped = timezone.now()
            RiskProfile.objects.filter(pk=profile.pk, lockdown_applied_at__isnull=True).update(
                lockdown_applied_at=stamped,
            )
            profile.lockdown_applied_at = stamped
            lockdown_status = status
        except Exception:
            logger.error("[RiskProfile] lockdown failed for %s", user_id, exc_info=True)
            failed.append("account_lockdown")

    result = TriggerExecution(
        user_id=user_id,
        paused_pairs=paused_pairs,
        review_case_id=profile.review_case_id,
        verification_requested=verification_requested,
        lockdown_status=lockdown_status,
        failed_steps=tuple(failed),
    )
    record_audit_event("RISK_TRIGGERS_EXECUTED", user_id, details=result.as_dict())
    return result
