# apps/behavior/services/memory.py

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from statistics import mean
from typing import List, Optional, Tuple

from django.utils import timezone

from rest_framework.exceptions import ValidationError

from apps.safety.exceptions import require_ids
from apps.safety.policy import resolve_policy
from apps.detection.evidence import GenericEvidence, evidence_to_dict
from apps.behavior.models import BehaviorLogEntry
from apps.behavior.constants import (
    EVENT_TYPES,
    IMPORTANCE_MEDIUM,
    CONTENT_NEAR_MISS,
    CYCLIC_HARASSMENT,
    COORDINATED_ATTACK,
    TREND_WORSENING, TREND_STABLE, TREND_IMPROVING,
)

logger = logging.getLogger(__name__)

_DAY = 86400.0


@dataclass(frozen=True)
class BehaviorPattern:
    event_type: str
    frequency: int
    avg_interval_days: Optional[float]
    first_occurrence: datetime
    last_occurrence: datetime
    mean_confidence: float
    trend: str

    def as_dict(self) -> dict:
        data = asdict(self)
        data["first_occurrence"] = self.first_occurrence.isoformat()
        data["last_occurrence"] = self.last_occurrence.isoformat()
        return data


@dataclass(frozen=True)
class CyclicHarassmentResult:
    detected: bool
    cycles: int
    long_gaps_days: Tuple[float, ...] = ()


@dataclass(frozen=True)
class CoordinatedAttackResult:
    detected: bool
    attacker_ids: Tuple[str, ...] = ()
    event_count: int = 0


@dataclass(frozen=True)
class PolicyBypassResult:
    detected: bool
    near_miss_count: int = 0


def _days(delta: timedelta) -> float:
    return delta.total_seconds() / _DAY


# ---------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------
def _evidence_payload(evidence) -> dict:
    if evidence is None:
        return {}
    if isinstance(evidence, dict):
        if "kind" in evidence:
            return dict(evidence)
        return evidence_to_dict(GenericEvidence(payload=dict(evidence)))
    return evidence_to_dict(evidence)


def log_behavior_event(
    user_id,
    event_type,
    evidence=None,
    *,
    counterpart_id=None,
    importance=IMPORTANCE_MEDIUM,
    detected_at=None,
    policy=None,
) -> BehaviorLogEntry:
    """
    Append one behavior event.
    confidence = min(1, importance base + frequency boost + recency boost)
    """
    (user_id,) = require_ids(user_id=user_id)
    memory = resolve_policy(policy).memory
    event_type = (event_type or "").strip().upper()
    if event_type not in EVENT_TYPES:
        raise ValidationError({"event_type": f"Unknown behavior event type: {event_type}"})
    if importance not in memory.importance_base_confidence:
        raise ValidationError({"importance": f"Unknown importance: {importance}"})

    now = detected_at or timezone.now()
    same_type = BehaviorLogEntry.objects.filter(user_id=user_id, event_type=event_type, detected_at__lte=now)

    previous = same_type.order_by("-detected_at", "-id").first()
    in_window = same_type.filter(detected_at__gte=now - timedelta(days=memory.recurrence_window_days)).count()

    days_since_last = _days(now - previous.detected_at) if previous else None

    frequency_boost = min(memory.frequency_boost_cap, memory.frequency_boost_per_occurrence * in_window)
    recency_boost = 0.0
    if days_since_last is not None:
        for max_days, boost in memory.recency_boosts:
            if days_since_last <= max_days:
                recency_boost = boost
                break

    confidence = min(1.0, memory.importance_base_confidence[importance] + frequency_boost + recency_boost)

    entry = BehaviorLogEntry.objects.create(
        user_id=user_id,
        event_type=event_type,
        importance=importance,
        counterpart_id=str(counterpart_id).strip() if counterpart_id else None,
        detected_at=now,
        confidence=round(confidence, 4),
        evidence=_evidence_payload(evidence),
        occurrence_count=in_window + 1,
        days_since_last=round(days_since_last, 4) if days_since_last is not None else None,
        expires_at=now + timedelta(days=memory.retention_days),
    )
    logger.info(
        "[Behavior] %s %s occurrence=%d confidence=%.2f",
        user_id, event_type, entry.occurrence_count, entry.confidence,
    )
    return entry


# ---------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------
def compute_trend(timestamps: List[datetime], memory) -> str:
    """
    Compare the event rate of the most recent gaps with the gaps before them
    (up to `trend_window` on each side). Fewer than 4 events -> STABLE.
    """
    if len(timestamps) < 4:
        return TREND_STABLE

    gaps = [_days(b - a) for a, b in zip(timestamps, timestamps[1:])]
    k = min(memory.trend_window, len(gaps) // 2)
    recent, preceding = gaps[-k:], gaps[-2 * k:-k]

    recent_gap, preceding_gap = mean(recent), mean(preceding)
    if recent_gap == 0:
        return TREND_WORSENING if preceding_gap > 0 else TREND_STABLE

    # rate ratio = (1 / recent_gap) / (1 / preceding_gap)
    ratio = preceding_gap / recent_gap
    if ratio >= memory.worsening_ratio:
        return TREND_WORSENING
    if ratio <= memory.improving_ratio:
        return TREND_IMPROVING
    return TREND_STABLE


def _pattern(event_type: str, rows: list, memory) -> BehaviorPattern:
    times = [t for t, _ in rows]
    gaps = [_days(b - a) for a, b in zip(times, times[1:])]
    return BehaviorPattern(
        event_type=event_type,
        frequency=len(rows),
        avg_interval_days=round(mean(gaps), 2) if gaps else None,
        first_occurrence=times[0],
        last_occurrence=times[-1],
        mean_confidence=round(mean(c for _, c in rows), 4),
        trend=compute_trend(times, memory),
    )


def detect_patterns(user_id, lookback_months=None, *, include_derived=True, now=None, policy=None) -> List[BehaviorPattern]:
    """Per event type: frequency, spacing, recency, confidence and trend."""
    (user_id,) = require_ids(user_id=user_id)
    memory = resolve_policy(policy).memory
    now = now or timezone.now()
    months = lookback_months if lookback_months is not None else memory.default_lookback_months
    since = now - timedelta(days=30 * int(months))

    rows = (
        BehaviorLogEntry.objects
        .filter(user_id=user_id, detected_at__gte=since, detected_at__lte=now, expires_at__gt=now)
        .order_by("detected_at", "id")
        .values_list("event_type", "detected_at", "confidence")
    )
    grouped = {}
    for event_type, detected_at, confidence in rows:
        grouped.setdefault(event_type, []).append((detected_at, confidence))

    patterns = [_pattern(event_type, items, memory) for event_type, items in sorted(grouped.items())]

    if include_derived:
        patterns.extend(_derived_patterns(user_id, since, now, set(grouped), memory))
    return patterns


def _derived_patterns(user_id, since, now, logged_types, memory) -> List[BehaviorPattern]:
    """Cyclic / coordinated behavior of this user as synthetic patterns."""
    derived = []
    counterparts = (
        BehaviorLogEntry.objects
        .filter(
            user_id=user_id, counterpart_id__isnull=False,
            detected_at__gte=since, detected_at__lte=now, expires_at__gt=now,
        )
        .values_list("counterpart_id", flat=True)
        .distinct()
    )
    counterparts = sorted(set(counterparts))

    if CYCLIC_HARASSMENT not in logged_types:
        cyclic = [
            c for c in counterparts
            if detect_cyclic_harassment(user_id, c, since=since, now=now, policy=memory).detected
        ]
        if cyclic:
            derived.append(_synthetic(user_id, CYCLIC_HARASSMENT, cyclic, since, now, memory))

    if COORDINATED_ATTACK not in logged_types:
        window_start = now - timedelta(hours=memory.coordinated_window_hours)
        joined = []
        for c in counterparts:
            attack = detect_coordinated_attack(c, now=now, policy=memory)
            if attack.detected and user_id in attack.attacker_ids:
                joined.append(c)
        if joined:
            derived.append(_synthetic(user_id, COORDINATED_ATTACK, joined, window_start, now, memory))
    return derived


def _synthetic(user_id, event_type, counterparts, since, now, memory) -> BehaviorPattern:
    rows = list(
        BehaviorLogEntry.objects
        .filter(
            user_id=user_id, counterpart_id__in=counterparts,
            detected_at__gte=since, detected_at__lte=now, expires_at__gt=now,
        )
        .order_by("detected_at", "id")
        .values_list("detected_at", "confidence")
    )
    return _pattern(event_type, rows, memory)


# ---------------------------------------------------------------------
# Derived detectors
# ---------------------------------------------------------------------
def _memory_policy(policy):
    # Accept either the full SafetyPolicy or its memory section
    return policy if hasattr(policy, "cyclic_gap_days") else resolve_policy(policy).memory


def detect_cyclic_harassment(user_id, counterpart_id, *, since=None, now=None, policy=None) -> CyclicHarassmentResult:
    """
    Contact that stops and restarts: episodes separated by gaps of at least
    `cyclic_gap_days`; `cyclic_min_cycles` episodes or more is a cycle pattern.
    """
    user_id, counterpart_id = require_ids(user_id=user_id, counterpart_id=counterpart_id)
    memory = _memory_policy(policy)
    now = now or timezone.now()

    qs = BehaviorLogEntry.objects.filter(user_id=user_id, counterpart_id=counterpart_id, expires_at__gt=now)
    if since is not None:
        qs = qs.filter(detected_at__gte=since)
    times = list(qs.order_by("detected_at").values_list("detected_at", flat=True))
    if not times:
        return CyclicHarassmentResult(False, 0)

    long_gaps = tuple(
        round(_days(b - a), 2) for a, b in zip(times, times[1:])
        if _days(b - a) >= memory.cyclic_gap_days
    )
    cycles = len(long_gaps) + 1
    return CyclicHarassmentResult(cycles >= memory.cyclic_min_cycles, cycles, long_gaps)


def detect_coordinated_attack(target_id, window_hours=None, *, now=None, policy=None) -> CoordinatedAttackResult:
    (target_id,) = require_ids(target_id=target_id)
    memory = _memory_policy(policy)
    now = now or timezone.now()
    hours = window_hours if window_hours is not None else memory.coordinated_window_hours

    attackers = list(
        BehaviorLogEntry.objects
        .filter(
            counterpart_id=target_id, expires_at__gt=now,
            detected_at__gte=now - timedelta(hours=hours), detected_at__lte=now,
        )
        .values_list("user_id", flat=True)
    )
    distinct = tuple(sorted(set(attackers)))
    detected = len(distinct) >= memory.coordinated_min_attackers and len(attackers) >= memory.coordinated_min_events
    if detected:
        logger.info("[Behavior] coordinated attack on %s by %d accounts", target_id, len(distinct))
    return CoordinatedAttackResult(detected, distinct, len(attackers))


def detect_policy_bypass(user_id, *, now=None, policy=None) -> PolicyBypassResult:
    (user_id,) = require_ids(user_id=user_id)
    memory = _memory_policy(policy)
    now = now or timezone.now()

    count = BehaviorLogEntry.objects.filter(
        user_id=user_id,
        event_type=CONTENT_NEAR_MISS,
        detected_at__gte=now - timedelta(days=memory.bypass_window_days),
        detected_at__lte=now,
        expires_at__gt=now,
    ).count()
    return PolicyBypassResult(count >= memory.bypass_min_events, count)


# ---------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------
def purge_expired_entries(cursor=None, limit=None, *, now=None, policy=None) -> Tuple[int, Optional[int]]:
    """Delete one page of expired entries. Returns (deleted, next_cursor)."""
    memory = resolve_policy(policy).memory
    limit = limit or memory.sweep_page_size
    now = now or timezone.now()

    ids = list(
        BehaviorLogEntry.objects
        .filter(expires_at__lte=now, id__gt=int(cursor or 0))
        .order_by("id")
        .values_list("id", flat=True)[:limit]
    )
    if not ids:
        return 0, None

    deleted, _ = BehaviorLogEntry.objects.filter(id__in=ids).delete()
    next_cursor = ids[-1] if len(ids) == limit else None
    return deleted, next_cursor
