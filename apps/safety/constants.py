# apps/safety/constants.py
# ============================================================
# SHARED TRUST & SAFETY CONSTANTS
# ============================================================

# Actor recorded for automated transitions
SYSTEM_ACTOR = 'SYSTEM'

# Score bounds shared by every risk aggregate
MIN_RISK_SCORE = 0.0
MAX_RISK_SCORE = 100.0

# Score -> level thresholds (descending, first match wins)
LEVEL_THRESHOLDS = (
    (75.0, 'CRITICAL'),
    (50.0, 'HIGH'),
    (25.0, 'MEDIUM'),
    (10.0, 'LOW'),
)


# ------------------------------------------------------------
# Priorities (notifications + cases)
# ------------------------------------------------------------
PRIORITY_LOW = 'LOW'
PRIORITY_MEDIUM = 'MEDIUM'
PRIORITY_HIGH = 'HIGH'
PRIORITY_CRITICAL = 'CRITICAL'

PRIORITY_CHOICES = [
    (PRIORITY_LOW, 'Low'),
    (PRIORITY_MEDIUM, 'Medium'),
    (PRIORITY_HIGH, 'High'),
    (PRIORITY_CRITICAL, 'Critical'),
]


# ------------------------------------------------------------
# Account enforcement statuses (written through the enforcement sink)
# ------------------------------------------------------------
ACCOUNT_ACTIVE = 'ACTIVE'
ACCOUNT_SOFT_RESTRICTED = 'SOFT_RESTRICTED'
ACCOUNT_VERIFICATION_REQUIRED = 'VERIFICATION_REQUIRED'
ACCOUNT_HARD_RESTRICTED = 'HARD_RESTRICTED'
ACCOUNT_SUSPENDED = 'SUSPENDED'

ACCOUNT_STATUS_CHOICES = [
    (ACCOUNT_ACTIVE, 'Active'),
    (ACCOUNT_SOFT_RESTRICTED, 'Soft Restricted'),
    (ACCOUNT_VERIFICATION_REQUIRED, 'Verification Required'),
    (ACCOUNT_HARD_RESTRICTED, 'Hard Restricted'),
    (ACCOUNT_SUSPENDED, 'Suspended'),
]


# ------------------------------------------------------------
# Case lifecycle
# ------------------------------------------------------------
CASE_OPEN = 'OPEN'
CASE_IN_REVIEW = 'IN_REVIEW'
CASE_CLOSED = 'CLOSED'

CASE_STATUS_CHOICES = [
    (CASE_OPEN, 'Open'),
    (CASE_IN_REVIEW, 'In Review'),
    (CASE_CLOSED, 'Closed'),
]


# ------------------------------------------------------------
# Notification categories
# ------------------------------------------------------------
NOTIFY_SAFETY_ALERT = 'SAFETY_ALERT'
NOTIFY_CONSENT_UPDATE = 'CONSENT_UPDATE'
NOTIFY_SHIELD_UPDATE = 'SHIELD_UPDATE'

NOTIFICATION_CATEGORY_CHOICES = [
    (NOTIFY_SAFETY_ALERT, 'Safety Alert'),
    (NOTIFY_CONSENT_UPDATE, 'Consent Update'),
    (NOTIFY_SHIELD_UPDATE, 'Shield Update'),
]
