# apps/risk/services/orchestrator.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from asgiref.sync import async_to_sync
from rest_framework.exceptions import ValidationError

from apps.safety.constants import (
    SYSTEM_ACTOR,
    PRIORITY_MEDIUM,
    PRIORITY_HIGH,
    PRIORITY_CRITICAL,
    ACCOUNT_HARD_RESTRICTED,
    NOTIFY_SAFETY_ALERT,
)
from apps.safety.exceptions import RecordNotFound, PreconditionViolation, require_ids, require_distinct_pair
from apps.safety.levels import cap_score
from apps.safety.policy import resolve_policy
from apps.safety.collaborators.audit import record_audit_event
from apps.safety.collaborators.cases import get_case_sink
from apps.safety.collaborators.enforcement import get_enforcement_sink
from apps.safety.collaborators.notifications import send_safety_notification
from apps.consent.services.ledger import pause_consent
from apps.detection.constants import COORDINATED_HARASSMENT
from apps.detection.evidence import ProviderEvidence, evidence_to_dict
from apps.shield.services.shield import activate_shield
from apps.risk.models import RiskAssessmentLog
from apps.risk.services.providers import ProviderSignal, SignalProvider, load_signal_providers
from apps.risk.constants import (
    CONTEXT_CHOICES,
    SENSITIVE_CONTEXTS,
    HARASSMENT_SOURCES,
    ACTION_NO_ACTION,
    ACTION_SOFT_SAFETY_WARNING,
    ACTION_CONSENT_RECONFIRM,
    ACTION_ENABLE_HARASSMENT_SHIELD,
    ACTION_QUEUE_FOR_REVIEW,
    ACTION_IMMEDIATE_LOCKDOWN,
    SAFETY_NOTIFICATION_TITLE,
    SAFETY_NOTIFICATION_MESSAGES,
    DEFAULT_SAFETY_NOTIFICATION_MESSAGE,
)

logger = logging.getLogger(__name__)

CONTEXTS = frozenset(code for code, _ in CONTEXT_CHOICES)
ORCHESTRATION_REASON_CODE = "RISK_ORCHESTRATION_TRIGGERED"


@dataclass(frozen=True)
class RiskAssessment:
    user_id: str
    context: str
    action: str
    aggregated_risk: float
    signals: Tuple[ProviderSignal, ...]
    reasoning: str
    notify_user: bool
    counterpart_id: Optional[str] = None
    case_id: Optional[str] = None
    shield_activated: bool = False
    consent_paused: bool = False
    enforcement_changed: bool = False
    log_id: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "counterpart_id": self.counterpart_id,
            "context": self.context,
            "action": self.action,
            "aggregated_risk": self.aggregated_risk,
            "signals": [s.as_dict() for s in self.signals],
            "reasoning": self.reasoning,
            "notify_user": self.notify_user,
            "case_id": self.case_id,
            "shield_activated": self.shield_activated,
            "consent_paused": self.consent_paused,
            "enforcement_changed": self.enforcement_changed,
            "log_id": self.log_id,
        }


class RiskOrchestrator:
    """
    Fan out to every signal provider, fuse the answers into one score,
    pick one action and carry out its side effects.
    """

    def __init__(self, providers: Optional[Iterable[SignalProvider]] = None, policy=None):
        self.providers = list(providers) if providers is not None else load_signal_providers()
        self.policy = resolve_policy(policy)
        self.settings = self.policy.orchestrator

    # ---------------------------------------------------------------
    # Gather
    # ---------------------------------------------------------------
    async def _fetch(self, provider: SignalProvider, user_id, counterpart_id) -> ProviderSignal:
        source = getattr(provider, "source", "") or type(provider).__name__
        try:
            signal = await asyncio.wait_for(
                provider.fetch(user_id, counterpart_id),
                timeout=self.settings.provider_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("[RiskOrchestration] %s timed out for user=%s", source, user_id)
            return ProviderSignal.absent(source)
        except Exception:
            logger.warning("[RiskOrchestration] %s failed for user=%s", source, user_id, exc_info=True)
            return ProviderSignal.absent(source)
        return signal if signal is not None else ProviderSignal.absent(source)

    async def gather_signals(self, user_id, counterpart_id=None) -> List[ProviderSignal]:
        results = await asyncio.gather(*(self._fetch(p, user_id, counterpart_id) for p in self.providers))
        return [signal for signal in results if signal.present]

    # ---------------------------------------------------------------
    # Aggregate + decide
    # ---------------------------------------------------------------
    def aggregate(self, signals: Iterable[ProviderSignal]) -> float:
        weights = self.settings.severity_weights
        return cap_score(sum(weights.get(s.level.name, 0.0) * s.confidence for s in signals))

    def decide(self, aggregated_risk: float, signals, context: str, counterpart_id=None) -> str:
        s = self.settings
        sources = {signal.source for signal in signals}

        if aggregated_risk >= s.lockdown_threshold:
            return ACTION_IMMEDIATE_LOCKDOWN
        if aggregated_risk >= s.high_risk_threshold:
            if sources & HARASSMENT_SOURCES and counterpart_id:
                return ACTION_ENABLE_HARASSMENT_SHIELD
            return ACTION_QUEUE_FOR_REVIEW
        if aggregated_risk >= s.medium_risk_threshold:
            if context in SENSITIVE_CONTEXTS and counterpart_id:
                return ACTION_CONSENT_RECONFIRM
            return ACTION_SOFT_SAFETY_WARNING
        if aggregated_risk >= s.low_risk_threshold:
            return ACTION_SOFT_SAFETY_WARNING
        return ACTION_NO_ACTION

    @staticmethod
    def reasoning(signals, aggregated_risk: float, action: str) -> str:
        if not signals:
            return "No risk signals detected"
        sources = ", ".join(s.source for s in signals)
        return f"Risk level {aggregated_risk}/100 based on signals from: {sources}. Action: {action}"

    def case_priority(self, aggregated_risk: float) -> str:
        if aggregated_risk >= self.settings.lockdown_threshold:
            return PRIORITY_CRITICAL
        if aggregated_risk >= self.settings.high_risk_threshold:
            return PRIORITY_HIGH
        return PRIORITY_MEDIUM

    # ---------------------------------------------------------------
    # Side effects
    # ---------------------------------------------------------------
    def _open_case(self, user_id, signals, aggregated_risk) -> Optional[str]:
        try:
            return get_case_sink().open_case(
                user_id,
                SYSTEM_ACTOR,
                [s.source for s in signals],
                priority=self.case_priority(aggregated_risk),
                evidence_refs=[f"risk_score:{aggregated_risk}"],
            )
        except Exception:
            logger.error("[RiskOrchestration] case creation failed for user=%s", user_id, exc_info=True)
            return None

    def _activate_shield(self, user_id, counterpart_id, signals) -> bool:
        shield_signals = [
            {
                "signal_type": COORDINATED_HARASSMENT,
                "confidence": s.confidence,
                "evidence": evidence_to_dict(ProviderEvidence(
                    source=s.source, level=s.level.name, confidence=s.confidence, details=s.details,
                )),
            }
            for s in signals if s.source in HARASSMENT_SOURCES
        ]
        try:
            activate_shield(counterpart_id, user_id, shield_signals, policy=self.policy)
        except Exception:
            logger.error(
                "[RiskOrchestration] shield activation failed for %s <- %s", counterpart_id, user_id, exc_info=True,
            )
            return False
        return True

    def _pause_consent(self, user_id, counterpart_id) -> bool:
        try:
            pause_consent(
                user_id, counterpart_id,
                actor=SYSTEM_ACTOR, reason="Risk assessment requires consent reconfirmation",
            )
        except (RecordNotFound, PreconditionViolation):
            logger.info("[RiskOrchestration] no active consent to pause for %s / %s", user_id, counterpart_id)
            return False
        except Exception:
            logger.error("[RiskOrchestration] consent pause failed for %s / %s", user_id, counterpart_id, exc_info=True)
            return False
        return True

    def _restrict_account(self, user_id) -> bool:
        try:
            get_enforcement_sink().apply(user_id, ACCOUNT_HARD_RESTRICTED, [ORCHESTRATION_REASON_CODE])
        except Exception:
            logger.error("[RiskOrchestration] enforcement update failed for user=%s", user_id, exc_info=True)
            return False
        return True

    def execute(self, action, user_id, counterpart_id, signals, aggregated_risk) -> dict:
        effects = {"case_id": None, "shield_activated": False, "consent_paused": False, "enforcement_changed": False}

        if action == ACTION_ENABLE_HARASSMENT_SHIELD:
            effects["shield_activated"] = self._activate_shield(user_id, counterpart_id, signals)
        elif action == ACTION_CONSENT_RECONFIRM:
            effects["consent_paused"] = self._pause_consent(user_id, counterpart_id)
        elif action == ACTION_QUEUE_FOR_REVIEW:
            effects["case_id"] = self._open_case(user_id, signals, aggregated_risk)
        elif action == ACTION_IMMEDIATE_LOCKDOWN:
            effects["case_id"] = self._open_case(user_id, signals, aggregated_risk)
            effects["enforcement_changed"] = self._restrict_account(user_id)
        return effects

    def notify(self, user_id, action, aggregated_risk) -> None:
        send_safety_notification(
            user_id=user_id,
            category=NOTIFY_SAFETY_ALERT,
            title=SAFETY_NOTIFICATION_TITLE,
            body=SAFETY_NOTIFICATION_MESSAGES.get(action, DEFAULT_SAFETY_NOTIFICATION_MESSAGE),
            priority=PRIORITY_HIGH if aggregated_risk >= self.settings.high_risk_threshold else PRIORITY_MEDIUM,
        )

    # ---------------------------------------------------------------
    # Entry point
    # ---------------------------------------------------------------
    def assess(self, user_id, context, counterpart_id=None) -> RiskAssessment:
        (user_id,) = require_ids(user_id=user_id)
        if context not in CONTEXTS:
            raise ValidationError({"context": f"Unknown context: {context!r}"})
        if counterpart_id is not None:
            (counterpart_id,) = require_ids(counterpart_id=counterpart_id)
            require_distinct_pair(user_id, counterpart_id)

        signals = async_to_sync(self.gather_signals)(user_id, counterpart_id)
        aggregated_risk = self.aggregate(signals)
        action = self.decide(aggregated_risk, signals, context, counterpart_id)
        reasoning = self.reasoning(signals, aggregated_risk, action)
        notify_user = action != ACTION_NO_ACTION and aggregated_risk >= self.settings.notify_threshold

        effects = self.execute(action, user_id, counterpart_id, signals, aggregated_risk)
        if notify_user:
            self.notify(user_id, action, aggregated_risk)

        log = RiskAssessmentLog.objects.create(
            user_id=user_id,
            counterpart_id=counterpart_id,
            context=context,
            action=action,
            aggregated_risk=aggregated_risk,
            signals=[s.as_dict() for s in signals],
            reasoning=reasoning,
            notify_user=notify_user,
            **effects,
        )
        logger.info(
            "[RiskOrchestration] user=%s context=%s risk=%s action=%s", user_id, context, aggregated_risk, action,
        )
        record_audit_event(
            ORCHESTRATION_REASON_CODE, user_id, affected_user_id=counterpart_id,
            details={
                "action": action,
                "aggregated_risk": aggregated_risk,
                "signal_count": len(signals),
                "reasoning": reasoning,
                "log_id": log.pk,
            },
        )

        return RiskAssessment(
            user_id=user_id,
            context=context,
            action=action,
            aggregated_risk=aggregated_risk,
            signals=tuple(signals),
            reasoning=reasoning,
            notify_user=notify_user,
            counterpart_id=counterpart_id,
            log_id=log.pk,
            **effects,
        )


def assess_risk(user_id, context, counterpart_id=None, *, providers=None, policy=None) -> RiskAssessment:
    return RiskOrchestrator(providers=providers, policy=policy).assess(user_id, context, counterpart_id)
