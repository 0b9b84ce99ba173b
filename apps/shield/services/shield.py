# apps/shield/services/shield.py

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from django.db import transaction, IntegrityError
from django.utils import timezone

from apps.safety.constants import SYSTEM_ACTOR, PRIORITY_HIGH, PRIORITY_CRITICAL, NOTIFY_SHIELD_UPDATE
from apps.safety.exceptions import RecordNotFound, PreconditionViolation, require_ids, require_distinct_pair
from apps.safety.levels import RiskLevel, cap_score
from apps.safety.policy import resolve_policy
from apps.safety.collaborators.audit import record_audit_event
from apps.safety.collaborators.cases import get_case_sink
from apps.safety.collaborators.notifications import send_safety_notification
from apps.consent.constants import SOURCE_SYSTEM
from apps.consent.services.ledger import initialize_consent, revoke_consent
from apps.detection.evidence import evidence_to_dict
from apps.shield.models import HarassmentShield, ShieldSignal, ShieldAction
from apps.shield.services.transitions import plan_escalation, FLAG_NAMES
from apps.shield.constants import (
    ACTION_SIGNALS_RECORDED,
    ACTION_RESOLVED,
    ACTION_CONSENT_RESTORED,
    EFFECT_REVOKE_CONSENT,
    EFFECT_OPEN_CASE,
    EFFECT_NOTIFY_PROTECTED_USER,
)

logger = logging.getLogger(__name__)

SHIELD_NOTICE_TITLE = "Safety Notice"
SHIELD_NOTICE_BODY = "We've activated additional protections for your safety"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _normalize_signals(signals: Iterable) -> list:
    """Accept DetectionSignal objects or plain dicts (API payloads)."""
    rows = []
    for signal in signals or ():
        if isinstance(signal, dict):
            signal_type = signal.get("signal_type")
            confidence = signal.get("confidence", 0.0)
            evidence = signal.get("evidence") or {}
        else:
            signal_type = signal.signal_type
            confidence = signal.confidence
            evidence = evidence_to_dict(signal.evidence)
        (signal_type,) = require_ids(signal_type=signal_type)
        rows.append((signal_type, max(0.0, min(float(confidence), 1.0)), evidence))
    return rows


def _score(shield: HarassmentShield, shield_policy) -> float:
    """Sum of weight x confidence over every signal of the current activation."""
    total = 0.0
    rows = (
        ShieldSignal.objects
        .filter(shield=shield, detected_at__gte=shield.activated_at)
        .values_list("signal_type", "confidence")
    )
    for signal_type, confidence in rows:
        total += shield_policy.signal_weights.get(signal_type, shield_policy.default_signal_weight) * confidence
    return cap_score(total)


def _log_action(shield, action, level, reason=""):
    ShieldAction.objects.create(shield=shield, action=action, level=int(level), reason=reason)


def _pair_ids(protected_user_id, counterpart_id):
    protected_user_id, counterpart_id = require_ids(
        protected_user_id=protected_user_id, counterpart_id=counterpart_id,
    )
    require_distinct_pair(protected_user_id, counterpart_id)
    return protected_user_id, counterpart_id


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------
def get_active_shield(protected_user_id, counterpart_id) -> Optional[HarassmentShield]:
    protected_user_id, counterpart_id = _pair_ids(protected_user_id, counterpart_id)
    return HarassmentShield.objects.filter(
        protected_user_id=protected_user_id,
        counterpart_id=counterpart_id,
        resolved_at__isnull=True,
    ).first()


def get_shield_signal_types(protected_user_id, counterpart_id, *, active_only=True) -> List[str]:
    protected_user_id, counterpart_id = _pair_ids(protected_user_id, counterpart_id)
    qs = ShieldSignal.objects.filter(
        shield__protected_user_id=protected_user_id,
        shield__counterpart_id=counterpart_id,
    )
    if active_only:
        qs = qs.filter(shield__resolved_at__isnull=True)
    return sorted(set(qs.values_list("signal_type", flat=True)))


# ---------------------------------------------------------------------
# Activation / escalation
# ---------------------------------------------------------------------
def activate_shield(protected_user_id, counterpart_id, signals, *, policy=None) -> HarassmentShield:
    """
    Create the shield for the pair (or reopen a resolved one) and score it.
    An active shield is escalated with the new signals instead.
    """
    protected_user_id, counterpart_id = _pair_ids(protected_user_id, counterpart_id)

    try:
        with transaction.atomic():
            shield, created = HarassmentShield.objects.get_or_create(
                protected_user_id=protected_user_id,
                counterpart_id=counterpart_id,
            )
    except IntegrityError:
        shield, created = HarassmentShield.objects.get(
            protected_user_id=protected_user_id, counterpart_id=counterpart_id,
        ), False

    if created:
        logger.info("[Shield] activated %s <- %s", protected_user_id, counterpart_id)
    elif not shield.is_active:
        # New activation: earlier signals stay on record but no longer score
        HarassmentShield.objects.filter(pk=shield.pk, resolved_at__isnull=False).update(
            level=RiskLevel.NONE, risk_score=0.0,
            slow_mode=False, reply_only=False, hard_block=False,
            consent_revoked=False, case_id=None, case_requested_at=None,
            activated_at=timezone.now(), last_escalated_at=None,
            resolved_at=None, resolved_by=None, resolution_reason="",
        )
        logger.info("[Shield] reactivated %s <- %s", protected_user_id, counterpart_id)

    return escalate_shield(protected_user_id, counterpart_id, signals, policy=policy)


def escalate_shield(protected_user_id, counterpart_id, signals, *, policy=None) -> HarassmentShield:
    """
    Record signals, rescore from the union and apply upgrade steps only.
    Consent revocation and the case are requested once per activation.
    """
    protected_user_id, counterpart_id = _pair_ids(protected_user_id, counterpart_id)
    shield_policy = resolve_policy(policy).shield
    rows = _normalize_signals(signals)

    with transaction.atomic():
        shield = (
            HarassmentShield.objects
            .select_for_update()
            .filter(protected_user_id=protected_user_id, counterpart_id=counterpart_id)
            .first()
        )
        if shield is None:
            raise RecordNotFound("No harassment shield exists for this pair.")
        if not shield.is_active:
            raise PreconditionViolation("The shield for this pair has been resolved.")

        now = timezone.now()
        ShieldSignal.objects.bulk_create([
            ShieldSignal(shield=shield, signal_type=t, confidence=c, evidence=e, detected_at=now)
            for t, c, e in rows
        ])

        score = _score(shield, shield_policy)
        plan = plan_escalation(
            shield.level,
            {name: getattr(shield, name) for name in FLAG_NAMES},
            score,
            shield_policy.level_thresholds,
        )

        HarassmentShield.objects.filter(pk=shield.pk).update(risk_score=score)
        if plan.escalated:
            # Monotonic: a concurrent writer that already went higher wins
            HarassmentShield.objects.filter(pk=shield.pk, level__lt=plan.level).update(
                level=plan.level, last_escalated_at=now, **plan.flags,
            )
            for action in plan.actions:
                _log_action(shield, action, plan.level, reason=f"score={score}")
        elif rows:
            _log_action(shield, ACTION_SIGNALS_RECORDED, shield.level, reason=f"score={score}")

        shield.refresh_from_db()

    if plan.escalated:
        logger.info(
            "[Shield] %s <- %s escalated to %s (score=%s, actions=%s)",
            protected_user_id, counterpart_id, shield.level_name, score, ",".join(plan.actions),
        )
        record_audit_event(
            "SHIELD_ESCALATED", counterpart_id, affected_user_id=protected_user_id,
            details={"shield_id": shield.pk, "level": shield.level_name, "score": score, "actions": list(plan.actions)},
        )

    _run_effects(shield, plan.effects)
    return shield


def _run_effects(shield: HarassmentShield, effects) -> None:
    effects = set(effects)
    # Retry once-only effects that failed on an earlier escalation
    if shield.level >= RiskLevel.HIGH:
        if not shield.consent_revoked:
            effects.add(EFFECT_REVOKE_CONSENT)
        if not shield.case_id:
            effects.add(EFFECT_OPEN_CASE)

    if EFFECT_REVOKE_CONSENT in effects:
        _revoke_pair_consent(shield)
    if EFFECT_OPEN_CASE in effects:
        _open_shield_case(shield)
    if EFFECT_NOTIFY_PROTECTED_USER in effects:
        send_safety_notification(
            user_id=shield.protected_user_id,
            category=NOTIFY_SHIELD_UPDATE,
            title=SHIELD_NOTICE_TITLE,
            body=SHIELD_NOTICE_BODY,
            priority=PRIORITY_HIGH,
        )


def _revoke_pair_consent(shield: HarassmentShield) -> None:
    reason = f"harassment shield {shield.level_name}"
    try:
        try:
            revoke_consent(shield.protected_user_id, shield.counterpart_id, actor=SYSTEM_ACTOR, reason=reason)
        except RecordNotFound:
            # No relationship yet: create one only to close it
            initialize_consent(
                shield.counterpart_id, shield.protected_user_id,
                initiator=SYSTEM_ACTOR, source=SOURCE_SYSTEM,
            )
            revoke_consent(shield.protected_user_id, shield.counterpart_id, actor=SYSTEM_ACTOR, reason=reason)
    except Exception:
        logger.warning("[Shield] consent revocation failed for shield=%s", shield.pk, exc_info=True)
        return

    HarassmentShield.objects.filter(pk=shield.pk).update(consent_revoked=True)
    shield.consent_revoked = True


def _open_shield_case(shield: HarassmentShield) -> None:
    claimed = HarassmentShield.objects.filter(
        pk=shield.pk, case_id__isnull=True, case_requested_at__isnull=True,
    ).update(case_requested_at=timezone.now())
    if not claimed:
        # Another writer owns the case for this activation
        return

    reason_codes = sorted(set(
        ShieldSignal.objects
        .filter(shield=shield, detected_at__gte=shield.activated_at)
        .values_list("signal_type", flat=True)
    ))
    priority = PRIORITY_CRITICAL if shield.level >= RiskLevel.CRITICAL else PRIORITY_HIGH
    try:
        case_id = get_case_sink().open_case(
            shield.counterpart_id,
            SYSTEM_ACTOR,
            reason_codes,
            priority=priority,
            evidence_refs=[f"shield:{shield.pk}"],
        )
    except Exception:
        logger.warning("[Shield] case creation failed for shield=%s", shield.pk, exc_info=True)
        # Release the claim so a later escalation retries
        HarassmentShield.objects.filter(pk=shield.pk).update(case_requested_at=None)
        return

    HarassmentShield.objects.filter(pk=shield.pk).update(case_id=case_id)
    shield.case_id = case_id


# ---------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------
def resolve_shield(protected_user_id, counterpart_id, *, actor, reason="", policy=None) -> HarassmentShield:
    protected_user_id, counterpart_id = _pair_ids(protected_user_id, counterpart_id)
    (actor,) = require_ids(actor=actor)
    policy = resolve_policy(policy)

    with transaction.atomic():
        shield = (
            HarassmentShield.objects
            .select_for_update()
            .filter(protected_user_id=protected_user_id, counterpart_id=counterpart_id)
            .first()
        )
        if shield is None:
            raise RecordNotFound("No harassment shield exists for this pair.")
        if not shield.is_active:
            raise PreconditionViolation("The shield for this pair is already resolved.")

        shield.resolved_at = timezone.now()
        shield.resolved_by = actor
        shield.resolution_reason = reason or ""
        shield.save(update_fields=["resolved_at", "resolved_by", "resolution_reason", "updated_at"])
        _log_action(shield, ACTION_RESOLVED, shield.level, reason=reason or "")

    logger.info("[Shield] resolved %s <- %s by %s", protected_user_id, counterpart_id, actor)
    record_audit_event(
        "SHIELD_RESOLVED", actor, affected_user_id=protected_user_id,
        details={"shield_id": shield.pk, "counterpart_id": counterpart_id, "reason": reason or ""},
    )

    if policy.shield.restore_consent_on_resolve and shield.consent_revoked:
        # Revocation is terminal; restoring means a fresh PENDING relationship
        reinit_policy = replace(policy, consent=replace(policy.consent, allow_reinitialize_after_revoke=True))
        try:
            initialize_consent(
                protected_user_id, counterpart_id,
                initiator=actor, source=SOURCE_SYSTEM, policy=reinit_policy,
            )
            _log_action(shield, ACTION_CONSENT_RESTORED, shield.level, reason=reason or "")
        except Exception:
            logger.warning("[Shield] consent restore failed for shield=%s", shield.pk, exc_info=True)

    return shield
