# apps/risk/constants.py
# ============================================================
# RISK PROFILE + ORCHESTRATION – Weights, multipliers, decisions
# ============================================================

from apps.behavior.constants import (
    HARASSMENT,
    SPAM,
    TRAUMA_RISK,
    MANIPULATION,
    BOUNDARY_VIOLATION,
    FRAUD_ATTEMPT,
    SCAM,
    IMPERSONATION,
    BAN_EVASION,
    BLOCK_EVASION,
    CONTENT_NEAR_MISS,
    COORDINATED_ATTACK,
    CYCLIC_HARASSMENT,
    TREND_WORSENING,
    TREND_STABLE,
    TREND_IMPROVING,
)


# ============================================================
# RISK PROFILE
# ============================================================

# Base weight per behavior pattern
PATTERN_WEIGHTS = {
    BAN_EVASION: 30.0,
    BLOCK_EVASION: 25.0,
    FRAUD_ATTEMPT: 25.0,
    SCAM: 25.0,
    TRAUMA_RISK: 25.0,
    COORDINATED_ATTACK: 25.0,
    HARASSMENT: 20.0,
    CYCLIC_HARASSMENT: 20.0,
    IMPERSONATION: 20.0,
    MANIPULATION: 15.0,
    BOUNDARY_VIOLATION: 15.0,
    CONTENT_NEAR_MISS: 10.0,
    SPAM: 5.0,
}
DEFAULT_PATTERN_WEIGHT = 10.0

# (minimum occurrences, multiplier), descending
FREQUENCY_MULTIPLIERS = (
    (10, 2.0),
    (7, 1.75),
    (4, 1.5),
    (2, 1.25),
    (1, 1.0),
)

TREND_MULTIPLIERS = {
    TREND_IMPROVING: 0.7,
    TREND_STABLE: 1.0,
    TREND_WORSENING: 1.5,
}

VERY_RECENT_DAYS = 7
STALE_AFTER_DAYS = 60
RECENCY_MULTIPLIER_VERY_RECENT = 1.3
RECENCY_MULTIPLIER_NORMAL = 1.0
RECENCY_MULTIPLIER_STALE = 0.8

# Pattern families used by trigger rules
RELATIONSHIP_PATTERNS = frozenset({HARASSMENT, BOUNDARY_VIOLATION, MANIPULATION, CYCLIC_HARASSMENT})
SHIELD_PATTERNS = frozenset({HARASSMENT, COORDINATED_ATTACK, CYCLIC_HARASSMENT})
FRAUD_PATTERNS = frozenset({FRAUD_ATTEMPT, IMPERSONATION, SCAM})
EVASION_PATTERNS = frozenset({BAN_EVASION, BLOCK_EVASION})

# Recommended actions returned by evaluate_risk_profile
RECOMMEND_REVALIDATE_CONSENT = 'REVALIDATE_CONSENT'
RECOMMEND_ENABLE_SHIELD = 'ENABLE_HARASSMENT_SHIELD'
RECOMMEND_MODERATOR_REVIEW = 'MODERATOR_REVIEW'
RECOMMEND_FORCED_VERIFICATION = 'FORCED_VERIFICATION'
RECOMMEND_ACCOUNT_LOCKDOWN = 'ACCOUNT_LOCKDOWN'
RECOMMEND_MONITOR = 'MONITOR'

# Profile flags
FLAG_WORSENING_TREND = 'WORSENING_TREND'
FLAG_EVASION_DETECTED = 'EVASION_DETECTED'
FLAG_FRAUD_DETECTED = 'FRAUD_DETECTED'
FLAG_RELATIONSHIP_RISK = 'RELATIONSHIP_RISK'


# ============================================================
# ORCHESTRATION
# ============================================================

# Signal sources
SOURCE_TRUST_ENGINE = 'TRUST_ENGINE'
SOURCE_ENFORCEMENT_STATE = 'ENFORCEMENT_STATE'
SOURCE_NSFW_CLASSIFIER = 'NSFW_CLASSIFIER'
SOURCE_BEHAVIOR_PATTERNS = 'BEHAVIOR_PATTERNS'
SOURCE_FRAUD_ATTEMPTS = 'FRAUD_ATTEMPTS'
SOURCE_CONSENT_VIOLATIONS = 'CONSENT_VIOLATIONS'
SOURCE_REGION_SAFETY = 'REGION_SAFETY'

SIGNAL_SOURCES = (
    SOURCE_TRUST_ENGINE,
    SOURCE_ENFORCEMENT_STATE,
    SOURCE_NSFW_CLASSIFIER,
    SOURCE_BEHAVIOR_PATTERNS,
    SOURCE_FRAUD_ATTEMPTS,
    SOURCE_CONSENT_VIOLATIONS,
    SOURCE_REGION_SAFETY,
)

# Signals that justify a pairwise shield rather than a review
HARASSMENT_SOURCES = frozenset({SOURCE_BEHAVIOR_PATTERNS, SOURCE_CONSENT_VIOLATIONS})

# Severity weight per provider level
SEVERITY_WEIGHTS = {
    'CRITICAL': 40.0,
    'HIGH': 25.0,
    'MEDIUM': 15.0,
    'LOW': 5.0,
    'NONE': 0.0,
}

# Decision thresholds
LOCKDOWN_THRESHOLD = 90.0
HIGH_RISK_THRESHOLD = 70.0
MEDIUM_RISK_THRESHOLD = 40.0
LOW_RISK_THRESHOLD = 20.0
NOTIFY_THRESHOLD = 40.0

PROVIDER_TIMEOUT_SECONDS = 2.0

# Contexts
CONTEXT_MESSAGE = 'MESSAGE'
CONTEXT_CALL_REQUEST = 'CALL_REQUEST'
CONTEXT_LOCATION_SHARE = 'LOCATION_SHARE'
CONTEXT_EVENT_INVITE = 'EVENT_INVITE'
CONTEXT_PROFILE_VIEW = 'PROFILE_VIEW'
CONTEXT_PAYMENT = 'PAYMENT'

CONTEXT_CHOICES = [
    (CONTEXT_MESSAGE, 'Message'),
    (CONTEXT_CALL_REQUEST, 'Call request'),
    (CONTEXT_LOCATION_SHARE, 'Location share'),
    (CONTEXT_EVENT_INVITE, 'Event invite'),
    (CONTEXT_PROFILE_VIEW, 'Profile view'),
    (CONTEXT_PAYMENT, 'Payment'),
]

SENSITIVE_CONTEXTS = frozenset({CONTEXT_CALL_REQUEST, CONTEXT_LOCATION_SHARE})

# Actions
ACTION_NO_ACTION = 'NO_ACTION'
ACTION_SOFT_SAFETY_WARNING = 'SOFT_SAFETY_WARNING'
ACTION_CONSENT_RECONFIRM = 'CONSENT_RECONFIRM'
ACTION_ENABLE_HARASSMENT_SHIELD = 'ENABLE_HARASSMENT_SHIELD'
ACTION_QUEUE_FOR_REVIEW = 'QUEUE_FOR_REVIEW'
ACTION_IMMEDIATE_LOCKDOWN = 'IMMEDIATE_LOCKDOWN'

ORCHESTRATION_ACTION_CHOICES = [
    (ACTION_NO_ACTION, 'No action'),
    (ACTION_SOFT_SAFETY_WARNING, 'Soft safety warning'),
    (ACTION_CONSENT_RECONFIRM, 'Consent reconfirmation'),
    (ACTION_ENABLE_HARASSMENT_SHIELD, 'Harassment shield'),
    (ACTION_QUEUE_FOR_REVIEW, 'Queued for review'),
    (ACTION_IMMEDIATE_LOCKDOWN, 'Immediate lockdown'),
]

# User-facing copy
SAFETY_NOTIFICATION_TITLE = 'Safety Notice'
SAFETY_NOTIFICATION_MESSAGES = {
    ACTION_SOFT_SAFETY_WARNING: 'Please be mindful of our community guidelines',
    ACTION_CONSENT_RECONFIRM: 'For your safety, please reconfirm your consent to continue',
    ACTION_ENABLE_HARASSMENT_SHIELD: "We've activated additional protections for your safety",
    ACTION_QUEUE_FOR_REVIEW: 'Your account activity is being reviewed by our safety team',
    ACTION_IMMEDIATE_LOCKDOWN: 'Your account has been temporarily restricted. Please contact support',
}
DEFAULT_SAFETY_NOTIFICATION_MESSAGE = 'Thank you for helping keep the community safe'
