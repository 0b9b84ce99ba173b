# apps/detection/services/confidence.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from django.db import transaction, IntegrityError
from django.db.models import Count, F
from django.utils import timezone

from rest_framework.exceptions import ValidationError

from apps.safety.exceptions import require_ids
from apps.safety.policy import resolve_policy
from apps.detection.models import ConfidenceRule, ModerationFeedback
from apps.detection.constants import (
    FEEDBACK_OUTCOME_CHOICES,
    OUTCOME_COUNTER_FIELD,
    TRUE_POSITIVE, FALSE_POSITIVE,
)

logger = logging.getLogger(__name__)

_OUTCOMES = {code for code, _ in FEEDBACK_OUTCOME_CHOICES}


@dataclass(frozen=True)
class FeedbackBatchResult:
    event_type: str
    applied: int
    rule: Optional[ConfidenceRule]
    skipped_reason: str = ""


# ---------------------------------------------------------------------
# Feedback intake
# ---------------------------------------------------------------------
def record_moderation_feedback(*, case_id, event_type, outcome, moderator, notes="") -> ModerationFeedback:
    case_id, event_type, moderator = require_ids(case_id=case_id, event_type=event_type, moderator=moderator)
    outcome = (outcome or "").strip().upper()
    if outcome not in _OUTCOMES:
        raise ValidationError({"outcome": f"Unknown outcome: {outcome}"})

    feedback = ModerationFeedback.objects.create(
        case_id=case_id,
        event_type=event_type,
        outcome=outcome,
        moderator_id=moderator,
        notes=notes or "",
    )
    logger.info("[Confidence] feedback case=%s type=%s outcome=%s", case_id, event_type, outcome)
    return feedback


def get_confidence_rule(event_type) -> Optional[ConfidenceRule]:
    (event_type,) = require_ids(event_type=event_type)
    return ConfidenceRule.objects.filter(event_type=event_type).first()


def calibrated_confidence(event_type: str, raw: float) -> float:
    """Scale a detector's raw confidence by what moderators taught us about its type."""
    rule = ConfidenceRule.objects.filter(event_type=event_type).only("base_confidence", "current_confidence").first()
    if rule is None or rule.base_confidence <= 0:
        return raw
    return max(0.0, min(1.0, raw * rule.current_confidence / rule.base_confidence))


# ---------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------
def _locked_rule(event_type: str, base_confidence: float) -> ConfidenceRule:
    try:
        rule, _ = (
            ConfidenceRule.objects
            .select_for_update()
            .get_or_create(
                event_type=event_type,
                defaults={"base_confidence": base_confidence, "current_confidence": base_confidence},
            )
        )
        return rule
    except IntegrityError:
        return ConfidenceRule.objects.select_for_update().get(event_type=event_type)


def _ratio(num: int, den: int, fallback: float) -> float:
    return num / den if den else fallback


def apply_feedback_batch(event_type, feedback_ids: Iterable[int] | None = None, *, policy=None) -> FeedbackBatchResult:
    """
    Fold unapplied feedback for one event type into its rule.

    - needs at least `min_samples` unapplied rows, otherwise nothing changes
    - each row's `applied` flag is claimed by compare-and-set, so a row is
      counted once even if two batches race
    - counters move with F(); confidence moves `learning_rate` of the way
      toward precision and stays inside [min_confidence, max_confidence]
    """
    (event_type,) = require_ids(event_type=event_type)
    conf = resolve_policy(policy).confidence

    pending = ModerationFeedback.objects.filter(event_type=event_type, applied=False)
    if feedback_ids is not None:
        pending = pending.filter(id__in=list(feedback_ids))
    ids = list(pending.order_by("id").values_list("id", flat=True)[:conf.batch_limit])

    if len(ids) < conf.min_samples:
        return FeedbackBatchResult(
            event_type, 0, get_confidence_rule(event_type),
            skipped_reason=f"{len(ids)} unapplied samples (< {conf.min_samples})",
        )

    now = timezone.now()
    with transaction.atomic():
        rule = _locked_rule(event_type, conf.default_base_confidence)

        claimed = {}
        for outcome in OUTCOME_COUNTER_FIELD:
            claimed[outcome] = (
                ModerationFeedback.objects
                .filter(id__in=ids, applied=False, outcome=outcome)
                .update(applied=True, applied_at=now)
            )
        total = sum(claimed.values())
        if not total:
            return FeedbackBatchResult(event_type, 0, rule, skipped_reason="already applied")

        increments = {
            OUTCOME_COUNTER_FIELD[outcome]: F(OUTCOME_COUNTER_FIELD[outcome]) + count
            for outcome, count in claimed.items() if count
        }
        ConfidenceRule.objects.filter(pk=rule.pk).update(
            total_feedback=F("total_feedback") + total,
            **increments,
        )
        rule.refresh_from_db()

        tp, fp, fn = rule.true_positives, rule.false_positives, rule.false_negatives
        precision = _ratio(tp, tp + fp, rule.precision)
        recall = _ratio(tp, tp + fn, rule.recall)
        f1 = _ratio(2 * precision * recall, precision + recall, 0.0)

        current = rule.current_confidence
        if tp + fp:
            current = current + conf.learning_rate * (precision - current)
        current = max(conf.min_confidence, min(conf.max_confidence, current))

        rule.precision = round(precision, 4)
        rule.recall = round(recall, 4)
        rule.f1_score = round(f1, 4)
        rule.current_confidence = round(current, 4)
        rule.last_applied_at = now
        rule.save(update_fields=["precision", "recall", "f1_score", "current_confidence", "last_applied_at", "updated_at"])

    logger.info(
        "[Confidence] %s applied=%d tp=%d fp=%d precision=%.3f confidence=%.3f",
        event_type, total, claimed[TRUE_POSITIVE], claimed[FALSE_POSITIVE], rule.precision, rule.current_confidence,
    )
    return FeedbackBatchResult(event_type, total, rule)


def apply_pending_feedback(cursor: str | None = None, limit: int | None = None, *, policy=None) -> dict:
    """
    One page of the feedback sweep: event types (ordered) with enough unapplied
    samples, after `cursor`. Per-type failures are logged and skipped.
    """
    policy = resolve_policy(policy)
    limit = limit or policy.confidence.batch_limit

    qs = (
        ModerationFeedback.objects
        .filter(applied=False)
        .values("event_type")
        .annotate(n=Count("id"))
        .filter(n__gte=policy.confidence.min_samples)
        .order_by("event_type")
    )
    if cursor:
        qs = qs.filter(event_type__gt=cursor)
    event_types = [row["event_type"] for row in qs[:limit]]

    applied = 0
    failed = 0
    for event_type in event_types:
        try:
            applied += apply_feedback_batch(event_type, policy=policy).applied
        except Exception:
            failed += 1
            logger.warning("[Confidence] batch failed for %s", event_type, exc_info=True)

    next_cursor = event_types[-1] if len(event_types) == limit else None
    return {"event_types": len(event_types), "applied": applied, "failed": failed, "next_cursor": next_cursor}
