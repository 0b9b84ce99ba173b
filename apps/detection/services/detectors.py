# apps/detection/services/detectors.py
"""
Stateless harassment heuristics.

Each producer looks at one InteractionEvent and returns a DetectionSignal or
None. `detect_harassment_signals` runs them all in a fixed order.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import Levenshtein

from apps.safety.exceptions import require_ids
from apps.safety.policy import DetectionPolicy, resolve_policy
from apps.detection.constants import (
    SPAM_BURST,
    REPEATED_UNWANTED_CONTACT,
    TRAUMA_RISK_PHRASE,
    PRESSURE_LANGUAGE,
    IMPERSONATION,
    BLOCK_EVASION,
)
from apps.detection.evidence import (
    Evidence,
    SpamBurstEvidence,
    RepeatedContactEvidence,
    PhraseMatchEvidence,
    ImpersonationEvidence,
    BlockEvasionEvidence,
)


@dataclass(frozen=True)
class InteractionEvent:
    sender_id: str
    recipient_id: str
    text: str = ""
    messages_last_minute: int = 0
    unanswered_contact_attempts: int = 0
    sender_display_name: str = ""
    # Display names of accounts the recipient already knows (contacts, verified members)
    known_display_names: Tuple[str, ...] = ()
    device_fingerprint: str = ""
    # fingerprint -> account ids the recipient has blocked on that device
    blocked_fingerprints: Mapping[str, Sequence[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class DetectionSignal:
    signal_type: str
    confidence: float
    evidence: Evidence


# ---------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------
_NON_WORD = re.compile(r"[^a-z0-9' ]+")
_SPACES = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    text = unicodedata.normalize("NFKD", text or "")
    text = "".join(ch for ch in text if not unicodedata.combining(ch)).casefold()
    text = _NON_WORD.sub(" ", text)
    return _SPACES.sub(" ", text).strip()


def normalize_name(name: str) -> str:
    return normalize_text(name).replace(" ", "").replace("'", "")


def name_similarity(a: str, b: str) -> float:
    """1 - edit distance / longer length, on normalized names."""
    a, b = normalize_name(a), normalize_name(b)
    longest = max(len(a), len(b))
    if not longest:
        return 0.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def _match_phrases(text: str, phrases) -> Tuple[str, ...]:
    padded = f" {normalize_text(text)} "
    return tuple(p for p in phrases if f" {normalize_text(p)} " in padded)


# ---------------------------------------------------------------------
# Producers
# ---------------------------------------------------------------------
def detect_spam_burst(event: InteractionEvent, policy: DetectionPolicy) -> Optional[DetectionSignal]:
    if event.messages_last_minute < policy.spam_burst_threshold:
        return None
    return DetectionSignal(
        SPAM_BURST,
        policy.spam_burst_confidence,
        SpamBurstEvidence(event.messages_last_minute, policy.spam_burst_threshold),
    )


def detect_repeated_contact(event: InteractionEvent, policy: DetectionPolicy) -> Optional[DetectionSignal]:
    if event.unanswered_contact_attempts < policy.repeated_contact_threshold:
        return None
    return DetectionSignal(
        REPEATED_UNWANTED_CONTACT,
        policy.repeated_contact_confidence,
        RepeatedContactEvidence(event.unanswered_contact_attempts, policy.repeated_contact_threshold),
    )


def detect_trauma_phrases(event: InteractionEvent, policy: DetectionPolicy) -> Optional[DetectionSignal]:
    matched = _match_phrases(event.text, policy.trauma_risk_phrases)
    if not matched:
        return None
    return DetectionSignal(TRAUMA_RISK_PHRASE, policy.trauma_risk_confidence, PhraseMatchEvidence(matched))


def detect_pressure_language(event: InteractionEvent, policy: DetectionPolicy) -> Optional[DetectionSignal]:
    matched = _match_phrases(event.text, policy.pressure_phrases)
    if not matched:
        return None
    return DetectionSignal(PRESSURE_LANGUAGE, policy.pressure_language_confidence, PhraseMatchEvidence(matched))


def detect_impersonation(event: InteractionEvent, policy: DetectionPolicy) -> Optional[DetectionSignal]:
    if not event.sender_display_name or not event.known_display_names:
        return None

    best_name, best_ratio = None, 0.0
    for known in event.known_display_names:
        ratio = name_similarity(event.sender_display_name, known)
        if ratio > best_ratio:
            best_name, best_ratio = known, ratio

    if best_ratio <= policy.impersonation_similarity_threshold:
        return None
    return DetectionSignal(
        IMPERSONATION,
        round(best_ratio, 4),
        ImpersonationEvidence(event.sender_display_name, best_name, round(best_ratio, 4)),
    )


def detect_block_evasion(event: InteractionEvent, policy: DetectionPolicy) -> Optional[DetectionSignal]:
    if not event.device_fingerprint:
        return None
    blocked = [
        str(account) for account in event.blocked_fingerprints.get(event.device_fingerprint, ())
        if str(account) != str(event.sender_id)
    ]
    if not blocked:
        return None
    return DetectionSignal(
        BLOCK_EVASION,
        policy.block_evasion_confidence,
        BlockEvasionEvidence(event.device_fingerprint, tuple(blocked)),
    )


PRODUCERS = (
    detect_spam_burst,
    detect_repeated_contact,
    detect_trauma_phrases,
    detect_pressure_language,
    detect_impersonation,
    detect_block_evasion,
)


def detect_harassment_signals(event: InteractionEvent, *, policy=None) -> List[DetectionSignal]:
    require_ids(sender_id=event.sender_id, recipient_id=event.recipient_id)
    detection_policy = resolve_policy(policy).detection

    signals = []
    for producer in PRODUCERS:
        signal = producer(event, detection_policy)
        if signal is not None:
            signals.append(signal)
    return signals


def interaction_event_from_payload(data: Dict) -> InteractionEvent:
    """Build an event from validated API / task payload data."""
    return InteractionEvent(
        sender_id=str(data.get("sender_id", "")).strip(),
        recipient_id=str(data.get("recipient_id", "")).strip(),
        text=data.get("text") or "",
        messages_last_minute=int(data.get("messages_last_minute") or 0),
        unanswered_contact_attempts=int(data.get("unanswered_contact_attempts") or 0),
        sender_display_name=data.get("sender_display_name") or "",
        known_display_names=tuple(data.get("known_display_names") or ()),
        device_fingerprint=data.get("device_fingerprint") or "",
        blocked_fingerprints={k: tuple(v) for k, v in (data.get("blocked_fingerprints") or {}).items()},
    )
