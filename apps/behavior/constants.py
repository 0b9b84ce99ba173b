# apps/behavior/constants.py
# ============================================================
# LONG-TERM BEHAVIOR MEMORY – Event types, windows, trends
# ============================================================

from apps.detection.constants import (
    SPAM_BURST,
    REPEATED_UNWANTED_CONTACT,
    TRAUMA_RISK_PHRASE,
    PRESSURE_LANGUAGE,
    IMPERSONATION as SIGNAL_IMPERSONATION,
    BLOCK_EVASION as SIGNAL_BLOCK_EVASION,
    COORDINATED_HARASSMENT,
)


# ------------------------------------------------------------
# Event types
# ------------------------------------------------------------
HARASSMENT = 'HARASSMENT'
SPAM = 'SPAM'
TRAUMA_RISK = 'TRAUMA_RISK'
MANIPULATION = 'MANIPULATION'
BOUNDARY_VIOLATION = 'BOUNDARY_VIOLATION'
FRAUD_ATTEMPT = 'FRAUD_ATTEMPT'
SCAM = 'SCAM'
IMPERSONATION = 'IMPERSONATION'
BAN_EVASION = 'BAN_EVASION'
BLOCK_EVASION = 'BLOCK_EVASION'
CONTENT_NEAR_MISS = 'CONTENT_NEAR_MISS'
COORDINATED_ATTACK = 'COORDINATED_ATTACK'
CYCLIC_HARASSMENT = 'CYCLIC_HARASSMENT'

EVENT_TYPE_CHOICES = [
    (HARASSMENT, 'Harassment'),
    (SPAM, 'Spam'),
    (TRAUMA_RISK, 'Trauma-risk language'),
    (MANIPULATION, 'Manipulation / pressure'),
    (BOUNDARY_VIOLATION, 'Boundary violation'),
    (FRAUD_ATTEMPT, 'Fraud attempt'),
    (SCAM, 'Scam'),
    (IMPERSONATION, 'Impersonation'),
    (BAN_EVASION, 'Ban evasion'),
    (BLOCK_EVASION, 'Block evasion'),
    (CONTENT_NEAR_MISS, 'Content policy near-miss'),
    (COORDINATED_ATTACK, 'Coordinated attack'),
    (CYCLIC_HARASSMENT, 'Cyclic harassment'),
]

EVENT_TYPES = frozenset(code for code, _ in EVENT_TYPE_CHOICES)

# Detector signal -> durable behavior event
SIGNAL_TO_EVENT_TYPE = {
    SPAM_BURST: SPAM,
    REPEATED_UNWANTED_CONTACT: HARASSMENT,
    TRAUMA_RISK_PHRASE: TRAUMA_RISK,
    PRESSURE_LANGUAGE: MANIPULATION,
    SIGNAL_IMPERSONATION: IMPERSONATION,
    SIGNAL_BLOCK_EVASION: BLOCK_EVASION,
    COORDINATED_HARASSMENT: COORDINATED_ATTACK,
}


# ------------------------------------------------------------
# Importance -> base confidence
# ------------------------------------------------------------
IMPORTANCE_LOW = 'LOW'
IMPORTANCE_MEDIUM = 'MEDIUM'
IMPORTANCE_HIGH = 'HIGH'
IMPORTANCE_CRITICAL = 'CRITICAL'

IMPORTANCE_CHOICES = [
    (IMPORTANCE_LOW, 'Low'),
    (IMPORTANCE_MEDIUM, 'Medium'),
    (IMPORTANCE_HIGH, 'High'),
    (IMPORTANCE_CRITICAL, 'Critical'),
]

IMPORTANCE_BASE_CONFIDENCE = {
    IMPORTANCE_LOW: 0.3,
    IMPORTANCE_MEDIUM: 0.5,
    IMPORTANCE_HIGH: 0.7,
    IMPORTANCE_CRITICAL: 0.9,
}


# ------------------------------------------------------------
# Confidence boosts
# ------------------------------------------------------------
RECURRENCE_WINDOW_DAYS = 90
FREQUENCY_BOOST_PER_OCCURRENCE = 0.05
FREQUENCY_BOOST_CAP = 0.3

# (max days since previous occurrence, boost)
RECENCY_BOOSTS = (
    (7, 0.2),
    (30, 0.1),
)


# ------------------------------------------------------------
# Retention (36 months)
# ------------------------------------------------------------
RETENTION_DAYS = 36 * 30
SWEEP_PAGE_SIZE = 300


# ------------------------------------------------------------
# Trends
# ------------------------------------------------------------
TREND_WORSENING = 'WORSENING'
TREND_STABLE = 'STABLE'
TREND_IMPROVING = 'IMPROVING'

TREND_CHOICES = [
    (TREND_WORSENING, 'Worsening'),
    (TREND_STABLE, 'Stable'),
    (TREND_IMPROVING, 'Improving'),
]

TREND_WINDOW = 3                     # events compared on each side
WORSENING_RATIO = 1.5
IMPROVING_RATIO = 0.67
DEFAULT_LOOKBACK_MONTHS = 6


# ------------------------------------------------------------
# Derived detectors
# ------------------------------------------------------------
CYCLIC_GAP_DAYS = 7
CYCLIC_MIN_CYCLES = 3

COORDINATED_WINDOW_HOURS = 24
COORDINATED_MIN_ATTACKERS = 3
COORDINATED_MIN_EVENTS = 5

BYPASS_WINDOW_DAYS = 7
BYPASS_MIN_EVENTS = 3

# Importance assigned when a detector signal is logged for the sender
SIGNAL_IMPORTANCE = {
    SPAM_BURST: IMPORTANCE_LOW,
    REPEATED_UNWANTED_CONTACT: IMPORTANCE_MEDIUM,
    PRESSURE_LANGUAGE: IMPORTANCE_MEDIUM,
    SIGNAL_IMPERSONATION: IMPORTANCE_HIGH,
    COORDINATED_HARASSMENT: IMPORTANCE_HIGH,
    SIGNAL_BLOCK_EVASION: IMPORTANCE_HIGH,
    TRAUMA_RISK_PHRASE: IMPORTANCE_CRITICAL,
}
