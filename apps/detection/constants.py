# apps/detection/constants.py
# ============================================================
# DETECTION SIGNALS – Types, thresholds, phrase lists
# ============================================================

# ------------------------------------------------------------
# Signal types
# ------------------------------------------------------------
SPAM_BURST = 'SPAM_BURST'
REPEATED_UNWANTED_CONTACT = 'REPEATED_UNWANTED_CONTACT'
TRAUMA_RISK_PHRASE = 'TRAUMA_RISK_PHRASE'
PRESSURE_LANGUAGE = 'PRESSURE_LANGUAGE'
IMPERSONATION = 'IMPERSONATION'
BLOCK_EVASION = 'BLOCK_EVASION'
COORDINATED_HARASSMENT = 'COORDINATED_HARASSMENT'

SIGNAL_TYPE_CHOICES = [
    (SPAM_BURST, 'Spam Burst'),
    (REPEATED_UNWANTED_CONTACT, 'Repeated Unwanted Contact'),
    (TRAUMA_RISK_PHRASE, 'Trauma-Risk Phrase'),
    (PRESSURE_LANGUAGE, 'Pressure Language'),
    (IMPERSONATION, 'Impersonation'),
    (BLOCK_EVASION, 'Block Evasion'),
    (COORDINATED_HARASSMENT, 'Coordinated Harassment'),
]

SIGNAL_TYPES = frozenset(code for code, _ in SIGNAL_TYPE_CHOICES)


# ------------------------------------------------------------
# Burst / repeated contact
# ------------------------------------------------------------
SPAM_BURST_THRESHOLD = 10            # messages in the last minute
SPAM_BURST_CONFIDENCE = 0.9

REPEATED_CONTACT_THRESHOLD = 5       # unanswered contact attempts
REPEATED_CONTACT_CONFIDENCE = 0.8


# ------------------------------------------------------------
# Phrase lists (lowercase, matched on normalized text)
# ------------------------------------------------------------
TRAUMA_RISK_CONFIDENCE = 1.0          # never a false-negative risk: always maximal

TRAUMA_RISK_PHRASES = (
    'kill yourself',
    'kys',
    'go die',
    'you should die',
    'end your life',
    'nobody would miss you',
    'i will hurt you',
    'i know where you live',
)

PRESSURE_LANGUAGE_CONFIDENCE = 0.75

PRESSURE_PHRASES = (
    'you owe me',
    'if you loved me',
    'prove it',
    'send me your location',
    'why are you ignoring me',
    'you better respond',
    'answer me now',
    'do it or else',
    'dont tell anyone',
    "don't tell anyone",
    'no one will believe you',
)


# ------------------------------------------------------------
# Impersonation / block evasion
# ------------------------------------------------------------
IMPERSONATION_SIMILARITY_THRESHOLD = 0.8

BLOCK_EVASION_CONFIDENCE = 0.95


# ------------------------------------------------------------
# Moderator feedback outcomes
# ------------------------------------------------------------
TRUE_POSITIVE = 'TRUE_POSITIVE'
FALSE_POSITIVE = 'FALSE_POSITIVE'
TRUE_NEGATIVE = 'TRUE_NEGATIVE'
FALSE_NEGATIVE = 'FALSE_NEGATIVE'

FEEDBACK_OUTCOME_CHOICES = [
    (TRUE_POSITIVE, 'Confirmed (true positive)'),
    (FALSE_POSITIVE, 'Rejected (false positive)'),
    (TRUE_NEGATIVE, 'Correctly ignored (true negative)'),
    (FALSE_NEGATIVE, 'Missed (false negative)'),
]

# Counter column incremented for each outcome
OUTCOME_COUNTER_FIELD = {
    TRUE_POSITIVE: 'true_positives',
    FALSE_POSITIVE: 'false_positives',
    TRUE_NEGATIVE: 'true_negatives',
    FALSE_NEGATIVE: 'false_negatives',
}


# ------------------------------------------------------------
# Confidence model
# ------------------------------------------------------------
MIN_RULE_CONFIDENCE = 0.1
MAX_RULE_CONFIDENCE = 0.95
DEFAULT_BASE_CONFIDENCE = 0.7
MIN_FEEDBACK_SAMPLES = 20            # never adjust from fewer samples
CONFIDENCE_LEARNING_RATE = 0.5
FEEDBACK_BATCH_LIMIT = 300
