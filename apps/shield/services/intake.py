# apps/shield/services/intake.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace as dc_replace
from typing import List, Optional

from apps.safety.policy import resolve_policy
from apps.detection.services.detectors import InteractionEvent, DetectionSignal, detect_harassment_signals
from apps.detection.constants import TRAUMA_RISK_PHRASE
from apps.detection.services.confidence import calibrated_confidence
from apps.behavior.constants import SIGNAL_TO_EVENT_TYPE, SIGNAL_IMPORTANCE, IMPORTANCE_MEDIUM
from apps.behavior.services.memory import log_behavior_event
from apps.shield.models import HarassmentShield
from apps.shield.services.shield import activate_shield

logger = logging.getLogger(__name__)


@dataclass
class IntakeResult:
    signals: List[DetectionSignal] = field(default_factory=list)
    shield: Optional[HarassmentShield] = None
    behavior_entry_ids: List[int] = field(default_factory=list)


def _calibrate(signal: DetectionSignal) -> DetectionSignal:
    # Trauma phrases are never scaled down by moderator feedback
    if signal.signal_type == TRAUMA_RISK_PHRASE:
        return signal
    return dc_replace(signal, confidence=calibrated_confidence(signal.signal_type, signal.confidence))


def detect_and_shield(event: InteractionEvent, *, policy=None) -> IntakeResult:
    """
    One interaction in, protections out:
    detect -> calibrate -> shield the recipient -> remember the sender's behavior.
    """
    policy = resolve_policy(policy)
    raw = detect_harassment_signals(event, policy=policy)
    if not raw:
        return IntakeResult()

    signals = [_calibrate(s) for s in raw]

    shield = activate_shield(event.recipient_id, event.sender_id, signals, policy=policy)

    entry_ids = []
    for signal in signals:
        event_type = SIGNAL_TO_EVENT_TYPE.get(signal.signal_type)
        if event_type is None:
            continue
        try:
            entry = log_behavior_event(
                event.sender_id,
                event_type,
                signal.evidence,
                counterpart_id=event.recipient_id,
                importance=SIGNAL_IMPORTANCE.get(signal.signal_type, IMPORTANCE_MEDIUM),
                policy=policy,
            )
            entry_ids.append(entry.pk)
        except Exception:
            logger.warning("[Shield] behavior log failed for %s (%s)", event.sender_id, event_type, exc_info=True)

    return IntakeResult(signals=signals, shield=shield, behavior_entry_ids=entry_ids)
