# apps/shield/constants.py
# ============================================================
# HARASSMENT SHIELD – Weights, thresholds, action log codes
# ============================================================

from apps.detection.constants import (
    SPAM_BURST,
    REPEATED_UNWANTED_CONTACT,
    TRAUMA_RISK_PHRASE,
    PRESSURE_LANGUAGE,
    IMPERSONATION,
    BLOCK_EVASION,
    COORDINATED_HARASSMENT,
)


# ------------------------------------------------------------
# Severity weight per signal type (score = sum(weight * confidence), cap 100)
# ------------------------------------------------------------
SIGNAL_WEIGHTS = {
    SPAM_BURST: 15.0,
    REPEATED_UNWANTED_CONTACT: 20.0,
    PRESSURE_LANGUAGE: 25.0,
    IMPERSONATION: 30.0,
    COORDINATED_HARASSMENT: 35.0,
    BLOCK_EVASION: 40.0,
    TRAUMA_RISK_PHRASE: 50.0,
}

# Unknown signal types still count, lightly
DEFAULT_SIGNAL_WEIGHT = 10.0


# ------------------------------------------------------------
# Action log codes (one row per automatic step)
# ------------------------------------------------------------
ACTION_ENABLE_SLOW_MODE = 'ENABLE_SLOW_MODE'
ACTION_ENABLE_REPLY_ONLY = 'ENABLE_REPLY_ONLY'
ACTION_HARD_BLOCK = 'HARD_BLOCK'
ACTION_REVOKE_CONSENT = 'REVOKE_CONSENT'
ACTION_OPEN_CASE = 'OPEN_CASE'
ACTION_CRITICAL_ESCALATION = 'CRITICAL_ESCALATION'
ACTION_SIGNALS_RECORDED = 'SIGNALS_RECORDED'
ACTION_RESOLVED = 'RESOLVED'
ACTION_CONSENT_RESTORED = 'CONSENT_RESTORED'

SHIELD_ACTION_CHOICES = [
    (ACTION_ENABLE_SLOW_MODE, 'Slow mode enabled'),
    (ACTION_ENABLE_REPLY_ONLY, 'Reply-only enabled'),
    (ACTION_HARD_BLOCK, 'Hard block'),
    (ACTION_REVOKE_CONSENT, 'Consent revoked'),
    (ACTION_OPEN_CASE, 'Case opened'),
    (ACTION_CRITICAL_ESCALATION, 'Critical escalation'),
    (ACTION_SIGNALS_RECORDED, 'Signals recorded'),
    (ACTION_RESOLVED, 'Resolved by moderator'),
    (ACTION_CONSENT_RESTORED, 'Consent restored'),
]


# ------------------------------------------------------------
# Side effects requested by the escalation planner
# ------------------------------------------------------------
EFFECT_REVOKE_CONSENT = 'REVOKE_CONSENT'
EFFECT_OPEN_CASE = 'OPEN_CASE'
EFFECT_NOTIFY_PROTECTED_USER = 'NOTIFY_PROTECTED_USER'

# Whether resolving a shield re-grants consent for the pair (product decision; off)
RESTORE_CONSENT_ON_RESOLVE = False
