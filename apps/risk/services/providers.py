# apps/risk/services/providers.py
"""
Signal providers consulted by the risk orchestrator.

Each provider answers `await fetch(user_id, counterpart_id)` with one
`ProviderSignal`. A provider with nothing to say (no data, not configured)
returns an absent signal; absence never counts as risk.

Database-backed providers run through `sync_to_async(thread_sensitive=True)`
so they share the caller's connection; HTTP providers run in a worker thread
with `thread_sensitive=False`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils.module_loading import import_string

from apps.safety.constants import (
    ACCOUNT_ACTIVE,
    ACCOUNT_SOFT_RESTRICTED,
    ACCOUNT_VERIFICATION_REQUIRED,
    ACCOUNT_HARD_RESTRICTED,
    ACCOUNT_SUSPENDED,
)
from apps.safety.levels import RiskLevel, level_for_score
from apps.safety.collaborators.enforcement import get_enforcement_sink
from apps.consent.constants import REVOKED
from apps.consent.services.ledger import get_consent_record
from apps.shield.services.shield import get_active_shield, get_shield_signal_types
from apps.risk.models import RiskProfile
from apps.risk.constants import (
    RELATIONSHIP_PATTERNS,
    PROVIDER_TIMEOUT_SECONDS,
    SOURCE_TRUST_ENGINE,
    SOURCE_ENFORCEMENT_STATE,
    SOURCE_NSFW_CLASSIFIER,
    SOURCE_BEHAVIOR_PATTERNS,
    SOURCE_FRAUD_ATTEMPTS,
    SOURCE_CONSENT_VIOLATIONS,
    SOURCE_REGION_SAFETY,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSignal:
    source: str
    present: bool = False
    level: RiskLevel = RiskLevel.NONE
    confidence: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def absent(cls, source: str) -> "ProviderSignal":
        return cls(source=source)

    @classmethod
    def found(cls, source, level, confidence, details=None) -> "ProviderSignal":
        return cls(
            source=source,
            present=True,
            level=RiskLevel(level),
            confidence=max(0.0, min(float(confidence), 1.0)),
            details=dict(details or {}),
        )

    def as_dict(self) -> dict:
        return {
            "source": self.source,
            "present": self.present,
            "level": self.level.name,
            "confidence": self.confidence,
            "details": self.details,
        }


class SignalProvider:
    source: str = ""

    async def fetch(self, user_id: str, counterpart_id: Optional[str] = None) -> ProviderSignal:
        raise NotImplementedError


# ---------------------------------------------------------------------
# Database-backed providers
# ---------------------------------------------------------------------
class DatabaseSignalProvider(SignalProvider):
    async def fetch(self, user_id, counterpart_id=None):
        return await sync_to_async(self.read, thread_sensitive=True)(user_id, counterpart_id)

    def read(self, user_id, counterpart_id) -> ProviderSignal:
        raise NotImplementedError


class EnforcementStateProvider(DatabaseSignalProvider):
    source = SOURCE_ENFORCEMENT_STATE
    confidence = 0.9

    STATUS_LEVELS = {
        ACCOUNT_SUSPENDED: RiskLevel.CRITICAL,
        ACCOUNT_HARD_RESTRICTED: RiskLevel.HIGH,
        ACCOUNT_SOFT_RESTRICTED: RiskLevel.MEDIUM,
        ACCOUNT_VERIFICATION_REQUIRED: RiskLevel.LOW,
    }

    def read(self, user_id, counterpart_id):
        status = get_enforcement_sink().current_status(user_id)
        level = self.STATUS_LEVELS.get(status)
        if status == ACCOUNT_ACTIVE or level is None:
            return ProviderSignal.absent(self.source)
        return ProviderSignal.found(self.source, level, self.confidence, {"account_status": status})


class BehaviorPatternProvider(DatabaseSignalProvider):
    """
    Relationship hints about the user as seen by the counterpart:
    an active shield the counterpart holds against the user, else the
    user's own relationship-type risk profile.
    """
    source = SOURCE_BEHAVIOR_PATTERNS
    confidence = 0.7

    def read(self, user_id, counterpart_id):
        if not counterpart_id or counterpart_id == user_id:
            return ProviderSignal.absent(self.source)

        shield = get_active_shield(counterpart_id, user_id)
        if shield is not None and shield.level >= RiskLevel.LOW:
            return ProviderSignal.found(
                self.source,
                min(shield.level, RiskLevel.HIGH),
                self.confidence,
                {
                    "shield_id": shield.pk,
                    "shield_level": shield.level_name,
                    "signals": get_shield_signal_types(counterpart_id, user_id),
                },
            )

        profile = RiskProfile.objects.filter(user_id=user_id).first()
        if profile is None or profile.level < RiskLevel.LOW:
            return ProviderSignal.absent(self.source)
        relationship = sorted(profile.pattern_types & RELATIONSHIP_PATTERNS)
        if not relationship:
            return ProviderSignal.absent(self.source)
        return ProviderSignal.found(
            self.source,
            min(profile.level, RiskLevel.HIGH),
            self.confidence,
            {"profile_level": profile.level_name, "patterns": relationship},
        )


class ConsentViolationProvider(DatabaseSignalProvider):
    source = SOURCE_CONSENT_VIOLATIONS

    def read(self, user_id, counterpart_id):
        if not counterpart_id or counterpart_id == user_id:
            return ProviderSignal.absent(self.source)
        record = get_consent_record(user_id, counterpart_id)
        if record is None or record.state != REVOKED:
            return ProviderSignal.absent(self.source)
        return ProviderSignal.found(
            self.source,
            RiskLevel.HIGH,
            1.0,
            {
                "state": record.state,
                "revoked_at": record.revoked_at.isoformat() if record.revoked_at else None,
            },
        )


# ---------------------------------------------------------------------
# HTTP providers
# ---------------------------------------------------------------------
class HttpSignalProvider(SignalProvider):
    """
    GET `<base_url><path>` and interpret the JSON body.
    An empty base URL setting switches the provider off; 404 means "no data".
    """
    base_url_setting = ""
    path = ""
    http_timeout = PROVIDER_TIMEOUT_SECONDS

    def base_url(self) -> str:
        return (getattr(settings, self.base_url_setting, "") or "").rstrip("/")

    def params(self, user_id, counterpart_id) -> dict:
        return {}

    async def fetch(self, user_id, counterpart_id=None):
        if not self.base_url():
            return ProviderSignal.absent(self.source)
        payload = await sync_to_async(self.request, thread_sensitive=False)(user_id, counterpart_id)
        if payload is None:
            return ProviderSignal.absent(self.source)
        return self.interpret(payload)

    def request(self, user_id, counterpart_id):
        headers = {"Accept": "application/json"}
        api_key = getattr(settings, "SIGNAL_PROVIDER_API_KEY", "")
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        url = self.base_url() + self.path.format(user_id=user_id)
        response = requests.get(url, params=self.params(user_id, counterpart_id), headers=headers, timeout=self.http_timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def interpret(self, payload) -> ProviderSignal:
        raise NotImplementedError


def _results(payload) -> list:
    if isinstance(payload, list):
        return payload
    return list(payload.get("results") or [])


class TrustEngineProvider(HttpSignalProvider):
    source = SOURCE_TRUST_ENGINE
    base_url_setting = "TRUST_ENGINE_BASE_URL"
    path = "/trust-profiles/{user_id}"

    def interpret(self, payload):
        risk_score = float(payload.get("risk_score") or 0)
        level = level_for_score(risk_score)
        if level == RiskLevel.NONE:
            return ProviderSignal.absent(self.source)
        return ProviderSignal.found(
            self.source,
            level,
            min(risk_score / 100.0, 1.0),
            {
                "risk_score": risk_score,
                "flags": payload.get("flags") or [],
                "enforcement_level": payload.get("enforcement_level"),
            },
        )


class NSFWClassifierProvider(HttpSignalProvider):
    source = SOURCE_NSFW_CLASSIFIER
    base_url_setting = "NSFW_CLASSIFIER_BASE_URL"
    path = "/violations"
    confidence = 0.8

    def params(self, user_id, counterpart_id):
        return {"user_id": user_id, "status": "CONFIRMED", "limit": 5}

    def interpret(self, payload):
        violations = _results(payload)[:5]
        if not violations:
            return ProviderSignal.absent(self.source)
        count = len(violations)
        level = RiskLevel.HIGH if count >= 5 else RiskLevel.MEDIUM if count >= 3 else RiskLevel.LOW
        return ProviderSignal.found(
            self.source, level, self.confidence,
            {"recent_violations": count, "latest_violation": violations[0]},
        )


class FraudAttemptProvider(HttpSignalProvider):
    source = SOURCE_FRAUD_ATTEMPTS
    base_url_setting = "FRAUD_DETECTION_BASE_URL"
    path = "/fraud-events"
    confidence = 0.85

    def params(self, user_id, counterpart_id):
        return {"user_id": user_id, "risk_level": "HIGH,CRITICAL", "limit": 3}

    def interpret(self, payload):
        attempts = _results(payload)[:3]
        if not attempts:
            return ProviderSignal.absent(self.source)
        count = len(attempts)
        level = RiskLevel.CRITICAL if count >= 3 else RiskLevel.HIGH if count >= 2 else RiskLevel.MEDIUM
        return ProviderSignal.found(
            self.source, level, self.confidence,
            {"recent_attempts": count, "latest_attempt": attempts[0]},
        )


class RegionSafetyProvider(HttpSignalProvider):
    source = SOURCE_REGION_SAFETY
    base_url_setting = "REGION_POLICY_BASE_URL"
    path = "/region-policies/users/{user_id}"
    confidence = 0.6

    def interpret(self, payload):
        safety_level = payload.get("safety_risk_level")
        restricted = payload.get("restricted_features") or []
        if safety_level != "HIGH" and not restricted:
            return ProviderSignal.absent(self.source)
        return ProviderSignal.found(
            self.source, RiskLevel.MEDIUM, self.confidence,
            {
                "region_code": payload.get("region_code"),
                "safety_risk_level": safety_level,
                "restricted_features": restricted,
            },
        )


def load_signal_providers(paths=None) -> List[SignalProvider]:
    paths = paths if paths is not None else getattr(settings, "SAFETY_SIGNAL_PROVIDERS", [])
    return [import_string(path)() for path in paths]
