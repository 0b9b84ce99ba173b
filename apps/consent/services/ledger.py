# apps/consent/services/ledger.py

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Optional

from django.db import transaction, IntegrityError
from django.db.models import Q
from django.utils import timezone

from rest_framework.exceptions import ValidationError

from apps.safety.constants import SYSTEM_ACTOR
from apps.safety.exceptions import (
    RecordNotFound,
    ConsentPreconditionError,
    require_ids,
    require_distinct_pair,
)
from apps.safety.policy import resolve_policy
from apps.safety.collaborators.audit import record_audit_event
from apps.consent.models import ConsentRecord, ConsentTransition as ConsentHistory, ConsentPendingRefund
from apps.consent.services.transitions import transition
from apps.consent.constants import (
    PENDING, ACTIVE_CONSENT, PAUSED, REVOKED,
    EVENT_REQUEST, EVENT_GRANT, EVENT_PAUSE, EVENT_RESUME, EVENT_REVOKE, EVENT_REINITIALIZE,
    EFFECT_DRAIN_PENDING_REFUNDS, EFFECT_AUDIT,
    REQUEST_MESSAGE, REQUEST_TYPE_TO_CAPABILITY,
    ACTION_REQUEST_CONSENT, ACTION_RESUME_CONSENT,
    NO_RECORD,
    SOURCE_CHAT,
    REFUND_PENDING, REFUND_DELIVERED, REFUND_REFUNDED,
)

logger = logging.getLogger(__name__)

# Compare-and-set retries when another writer moved the record first
_CAS_ATTEMPTS = 3


@dataclass(frozen=True)
class ConsentCheckResult:
    allowed: bool
    state: str
    reason: str
    required_action: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------
# Keys / lookup
# ---------------------------------------------------------------------
def consent_key(user_a, user_b) -> str:
    """Order-independent pair key: consent_key(a, b) == consent_key(b, a)."""
    a, b = require_ids(user_a=user_a, user_b=user_b)
    require_distinct_pair(a, b)
    first, second = sorted((a, b))
    return f"{first}_{second}"


def get_consent_record(user_a, user_b) -> Optional[ConsentRecord]:
    return ConsentRecord.objects.filter(pair_key=consent_key(user_a, user_b)).first()


def _require_record(user_a, user_b) -> ConsentRecord:
    record = get_consent_record(user_a, user_b)
    if record is None:
        raise RecordNotFound("No consent record exists for this pair.")
    return record


def _affected_user(record: ConsentRecord, actor) -> Optional[str]:
    actor = str(actor or "")
    if actor in (record.user_a, record.user_b):
        return record.counterpart_of(actor)
    return None


# ---------------------------------------------------------------------
# Transition choke point
# ---------------------------------------------------------------------
def _apply_event(record: ConsentRecord, event: str, *, actor: str, reason: str = "") -> ConsentRecord:
    """
    Plan with the pure state machine, persist by compare-and-set on `state`,
    append history, run requested effects. Re-plans if a concurrent writer won.
    """
    for _ in range(_CAS_ATTEMPTS):
        plan = transition(record.state, event)
        if not plan.changed:
            return record

        now = timezone.now()
        updates = {
            "state": plan.next_state,
            "last_state_change_at": now,
            "updated_at": now,
            **plan.capabilities,
        }
        if plan.next_state == PAUSED:
            updates["paused_at"] = now
        elif plan.next_state == REVOKED:
            updates["revoked_at"] = now
        elif plan.next_state == ACTIVE_CONSENT:
            updates["paused_at"] = None

        with transaction.atomic():
            moved = (
                ConsentRecord.objects
                .filter(pk=record.pk, state=record.state)
                .update(**updates)
            )
            if moved:
                ConsentHistory.objects.create(
                    record=record,
                    from_state=record.state,
                    to_state=plan.next_state,
                    actor=str(actor or SYSTEM_ACTOR),
                    reason=reason or "",
                )
                refunded = []
                if EFFECT_DRAIN_PENDING_REFUNDS in plan.effects:
                    refunded = _drain_refunds(record)
                if EFFECT_AUDIT in plan.effects:
                    record_audit_event(
                        f"CONSENT_{event}",
                        str(actor or SYSTEM_ACTOR),
                        affected_user_id=_affected_user(record, actor),
                        details={
                            "pair_key": record.pair_key,
                            "from_state": record.state,
                            "to_state": plan.next_state,
                            "reason": reason or "",
                            "refunded_transactions": refunded,
                        },
                    )

        if moved:
            logger.info(
                "[Consent] %s %s -> %s (actor=%s)",
                record.pair_key, record.state, plan.next_state, actor,
            )
            record.refresh_from_db()
            return record

        # Lost the race: re-read and plan again from the new state
        record.refresh_from_db()

    raise ConsentPreconditionError("Consent changed concurrently; retry the operation.")


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------
def initialize_consent(user_a, user_b, *, initiator=None, source=SOURCE_CHAT, policy=None) -> ConsentRecord:
    """
    Create a PENDING record for the pair, or return the existing one.
    A REVOKED pair only starts over when the consent policy allows it.
    """
    key = consent_key(user_a, user_b)
    a, b = sorted((str(user_a).strip(), str(user_b).strip()))
    initiator = str(initiator or user_a).strip()
    policy = resolve_policy(policy)

    try:
        with transaction.atomic():
            record, created = ConsentRecord.objects.get_or_create(
                pair_key=key,
                defaults={
                    "user_a": a,
                    "user_b": b,
                    "initiator_id": initiator,
                    "source": source,
                    "state": PENDING,
                    "last_state_change_at": timezone.now(),
                },
            )
            if created:
                ConsentHistory.objects.create(
                    record=record, from_state=None, to_state=PENDING,
                    actor=initiator, reason="initialized",
                )
    except IntegrityError:
        # Concurrent create of the same pair
        record, created = ConsentRecord.objects.get(pair_key=key), False

    if created:
        logger.info("[Consent] initialized %s (initiator=%s, source=%s)", key, initiator, source)
        return record

    if record.state == REVOKED:
        if not policy.consent.allow_reinitialize_after_revoke:
            raise ConsentPreconditionError("Consent was revoked for this pair and cannot be re-initialized.")
        return _apply_event(record, EVENT_REINITIALIZE, actor=initiator, reason="fresh start after revoke")

    return record


def request_consent(from_user, to_user, *, policy=None) -> ConsentRecord:
    record = get_consent_record(from_user, to_user)
    if record is None:
        record = initialize_consent(from_user, to_user, initiator=from_user, policy=policy)
    return _apply_event(record, EVENT_REQUEST, actor=str(from_user).strip(), reason="consent requested")


def grant_consent(from_user, to_user, *, actor=None) -> ConsentRecord:
    record = _require_record(from_user, to_user)
    return _apply_event(record, EVENT_GRANT, actor=actor or str(from_user).strip(), reason="consent granted")


def pause_consent(user_a, user_b, *, actor=SYSTEM_ACTOR, reason="") -> ConsentRecord:
    record = _require_record(user_a, user_b)
    return _apply_event(record, EVENT_PAUSE, actor=actor, reason=reason)


def revoke_consent(user_a, user_b, *, actor=SYSTEM_ACTOR, reason="") -> ConsentRecord:
    record = _require_record(user_a, user_b)
    return _apply_event(record, EVENT_REVOKE, actor=actor, reason=reason)


def resume_consent(user_a, user_b, *, actor=SYSTEM_ACTOR) -> ConsentRecord:
    record = _require_record(user_a, user_b)
    return _apply_event(record, EVENT_RESUME, actor=actor, reason="consent resumed")


def pause_all_active_consents(user_id, *, actor=SYSTEM_ACTOR, reason="") -> List[str]:
    """Pause every ACTIVE_CONSENT record the user is part of. Returns paused pair keys."""
    (user_id,) = require_ids(user_id=user_id)
    records = ConsentRecord.objects.filter(
        Q(user_a=user_id) | Q(user_b=user_id),
        state=ACTIVE_CONSENT,
    )

    paused = []
    for record in records:
        try:
            _apply_event(record, EVENT_PAUSE, actor=actor, reason=reason)
            paused.append(record.pair_key)
        except ConsentPreconditionError:
            # Moved to REVOKED meanwhile
            logger.warning("[Consent] could not pause %s", record.pair_key, exc_info=True)
    return paused


# ---------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------
def _check_record(record: Optional[ConsentRecord], request_type: str) -> ConsentCheckResult:
    if record is None:
        return ConsentCheckResult(False, NO_RECORD, "No consent record exists for this pair.", ACTION_REQUEST_CONSENT)

    if record.state == ACTIVE_CONSENT:
        capability = REQUEST_TYPE_TO_CAPABILITY[request_type]
        if getattr(record, capability):
            return ConsentCheckResult(True, record.state, "Consent is active.")
        return ConsentCheckResult(False, record.state, f"{request_type} is not permitted for this pair.")

    if record.state == PAUSED:
        return ConsentCheckResult(False, record.state, "Consent is paused.", ACTION_RESUME_CONSENT)
    if record.state == PENDING:
        return ConsentCheckResult(False, record.state, "Consent has not been given yet.", ACTION_REQUEST_CONSENT)

    # REVOKED: hard deny, no hint
    return ConsentCheckResult(False, record.state, "Consent has been revoked.")


def _validate_request_type(request_type: str) -> str:
    request_type = (request_type or REQUEST_MESSAGE).strip().upper()
    if request_type not in REQUEST_TYPE_TO_CAPABILITY:
        raise ValidationError({"request_type": f"Unknown request type: {request_type}"})
    return request_type


def check_consent(from_user, to_user, request_type=REQUEST_MESSAGE) -> ConsentCheckResult:
    request_type = _validate_request_type(request_type)
    return _check_record(get_consent_record(from_user, to_user), request_type)


def batch_check_consent(from_user, counterparts: Iterable, request_type=REQUEST_MESSAGE) -> Dict[str, ConsentCheckResult]:
    """Check one sender against many counterparts with a single query."""
    request_type = _validate_request_type(request_type)
    keys = {str(other).strip(): consent_key(from_user, other) for other in counterparts}
    records = {r.pair_key: r for r in ConsentRecord.objects.filter(pair_key__in=keys.values())}
    return {other: _check_record(records.get(key), request_type) for other, key in keys.items()}


# ---------------------------------------------------------------------
# Pending refund set
# ---------------------------------------------------------------------
def track_pending_transaction(user_a, user_b, transaction_id) -> ConsentPendingRefund:
    (transaction_id,) = require_ids(transaction_id=transaction_id)
    record = _require_record(user_a, user_b)
    if record.state == REVOKED:
        raise ConsentPreconditionError("Consent was revoked; no new transactions can be tracked.")

    try:
        with transaction.atomic():
            row, _ = ConsentPendingRefund.objects.get_or_create(record=record, transaction_id=transaction_id)
    except IntegrityError:
        row = ConsentPendingRefund.objects.get(record=record, transaction_id=transaction_id)
    return row


def mark_transaction_delivered(user_a, user_b, transaction_id) -> bool:
    (transaction_id,) = require_ids(transaction_id=transaction_id)
    record = _require_record(user_a, user_b)
    updated = (
        ConsentPendingRefund.objects
        .filter(record=record, transaction_id=transaction_id, status=REFUND_PENDING)
        .update(status=REFUND_DELIVERED, resolved_at=timezone.now())
    )
    return bool(updated)


def _drain_refunds(record: ConsentRecord) -> List[str]:
    with transaction.atomic():
        ids = list(
            ConsentPendingRefund.objects
            .select_for_update()
            .filter(record=record, status=REFUND_PENDING)
            .values_list("transaction_id", flat=True)
        )
        if ids:
            ConsentPendingRefund.objects.filter(
                record=record, transaction_id__in=ids, status=REFUND_PENDING,
            ).update(status=REFUND_REFUNDED, resolved_at=timezone.now())
            logger.info("[Consent] %s refunded %d pending transactions", record.pair_key, len(ids))
    return ids


def drain_pending_refunds(user_a, user_b) -> List[str]:
    return _drain_refunds(_require_record(user_a, user_b))
