# apps/consent/services/transitions.py
"""
Pure consent state machine.

`transition(state, event)` is the only place that knows which moves are legal
and which capability row belongs to a state. It touches no storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

from apps.safety.exceptions import ConsentPreconditionError
from apps.consent.constants import (
    PENDING, ACTIVE_CONSENT, PAUSED, REVOKED,
    CAPABILITY_MATRIX,
    EVENT_REQUEST, EVENT_GRANT, EVENT_PAUSE, EVENT_RESUME, EVENT_REVOKE, EVENT_REINITIALIZE,
    EFFECT_DRAIN_PENDING_REFUNDS, EFFECT_AUDIT,
)


@dataclass(frozen=True)
class ConsentTransition:
    next_state: str
    capabilities: Dict[str, bool]
    effects: Tuple[str, ...] = field(default_factory=tuple)
    changed: bool = True


def capabilities_for(state: str) -> Dict[str, bool]:
    return dict(CAPABILITY_MATRIX[state])


def _move(next_state, *effects) -> ConsentTransition:
    return ConsentTransition(next_state=next_state, capabilities=capabilities_for(next_state), effects=tuple(effects))


def _stay(state) -> ConsentTransition:
    return ConsentTransition(next_state=state, capabilities=capabilities_for(state), changed=False)


# (state, event) -> handler
_TABLE = {
    (PENDING, EVENT_REQUEST): lambda: _move(ACTIVE_CONSENT),
    (ACTIVE_CONSENT, EVENT_REQUEST): lambda: _stay(ACTIVE_CONSENT),

    (PENDING, EVENT_GRANT): lambda: _move(ACTIVE_CONSENT),
    (PAUSED, EVENT_GRANT): lambda: _move(ACTIVE_CONSENT),
    (ACTIVE_CONSENT, EVENT_GRANT): lambda: _stay(ACTIVE_CONSENT),

    (ACTIVE_CONSENT, EVENT_PAUSE): lambda: _move(PAUSED),
    (PAUSED, EVENT_PAUSE): lambda: _stay(PAUSED),

    (PAUSED, EVENT_RESUME): lambda: _move(ACTIVE_CONSENT),
    (ACTIVE_CONSENT, EVENT_RESUME): lambda: _stay(ACTIVE_CONSENT),

    (PENDING, EVENT_REVOKE): lambda: _move(REVOKED, EFFECT_DRAIN_PENDING_REFUNDS, EFFECT_AUDIT),
    (ACTIVE_CONSENT, EVENT_REVOKE): lambda: _move(REVOKED, EFFECT_DRAIN_PENDING_REFUNDS, EFFECT_AUDIT),
    (PAUSED, EVENT_REVOKE): lambda: _move(REVOKED, EFFECT_DRAIN_PENDING_REFUNDS, EFFECT_AUDIT),
    (REVOKED, EVENT_REVOKE): lambda: _stay(REVOKED),

    (REVOKED, EVENT_REINITIALIZE): lambda: _move(PENDING, EFFECT_AUDIT),
}

_REJECTIONS = {
    (PAUSED, EVENT_REQUEST): "Consent is paused for this pair; resume it instead of requesting again.",
    (PENDING, EVENT_PAUSE): "Consent has not been granted yet; there is nothing to pause.",
    (PENDING, EVENT_RESUME): "Consent has not been granted yet; request it instead of resuming.",
}


def transition(state: str, event: str) -> ConsentTransition:
    """
    Next state, its capability row and the side effects the caller must run.
    Raises ConsentPreconditionError for moves the lifecycle forbids.
    """
    handler = _TABLE.get((state, event))
    if handler is not None:
        return handler()

    if (state, event) in _REJECTIONS:
        raise ConsentPreconditionError(_REJECTIONS[(state, event)])
    if state == REVOKED:
        raise ConsentPreconditionError("Consent was revoked for this pair and cannot be changed.")
    raise ConsentPreconditionError(f"Cannot apply {event} to consent in state {state}.")
