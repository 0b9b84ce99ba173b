# apps/shield/services/transitions.py
"""
Pure escalation planner for the harassment shield.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

from apps.safety.constants import LEVEL_THRESHOLDS
from apps.safety.levels import RiskLevel, level_for_score
from apps.shield.constants import (
    ACTION_ENABLE_SLOW_MODE,
    ACTION_ENABLE_REPLY_ONLY,
    ACTION_HARD_BLOCK,
    ACTION_REVOKE_CONSENT,
    ACTION_OPEN_CASE,
    ACTION_CRITICAL_ESCALATION,
    EFFECT_REVOKE_CONSENT,
    EFFECT_OPEN_CASE,
    EFFECT_NOTIFY_PROTECTED_USER,
)

FLAG_NAMES = ("slow_mode", "reply_only", "hard_block")


@dataclass(frozen=True)
class EscalationPlan:
    level: RiskLevel
    flags: Dict[str, bool]
    actions: Tuple[str, ...] = field(default_factory=tuple)
    effects: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def escalated(self) -> bool:
        return bool(self.actions)


def _step(level: RiskLevel, flags: dict):
    """Apply one level's upgrade to `flags`; return (actions, effects)."""
    if level == RiskLevel.LOW:
        flags["slow_mode"] = True
        return (ACTION_ENABLE_SLOW_MODE,), ()
    if level == RiskLevel.MEDIUM:
        flags["slow_mode"] = False
        flags["reply_only"] = True
        return (ACTION_ENABLE_REPLY_ONLY,), ()
    if level == RiskLevel.HIGH:
        flags["hard_block"] = True
        return (
            (ACTION_HARD_BLOCK, ACTION_REVOKE_CONSENT, ACTION_OPEN_CASE),
            (EFFECT_REVOKE_CONSENT, EFFECT_OPEN_CASE, EFFECT_NOTIFY_PROTECTED_USER),
        )
    if level == RiskLevel.CRITICAL:
        flags["hard_block"] = True
        return (ACTION_CRITICAL_ESCALATION,), ()
    return (), ()


def plan_escalation(current_level, current_flags: dict, new_score: float, thresholds=LEVEL_THRESHOLDS) -> EscalationPlan:
    """
    Next level / flags / ordered actions for a recomputed score.
    Never plans a downgrade: a lower score keeps the current level and flags.
    """
    current = RiskLevel(int(current_level))
    target = max(current, level_for_score(new_score, thresholds))

    flags = {name: bool(current_flags.get(name, False)) for name in FLAG_NAMES}
    actions, effects = [], []
    for value in range(current + 1, target + 1):
        step_actions, step_effects = _step(RiskLevel(value), flags)
        actions.extend(step_actions)
        effects.extend(e for e in step_effects if e not in effects)

    return EscalationPlan(level=target, flags=flags, actions=tuple(actions), effects=tuple(effects))
