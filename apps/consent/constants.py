# apps/consent/constants.py
# ============================================================
# CONSENT LEDGER – States, capabilities, request types
# ============================================================

# ------------------------------------------------------------
# Consent lifecycle
# ------------------------------------------------------------
PENDING = 'PENDING'
ACTIVE_CONSENT = 'ACTIVE_CONSENT'
PAUSED = 'PAUSED'
REVOKED = 'REVOKED'

CONSENT_STATE_CHOICES = [
    (PENDING, 'Pending'),
    (ACTIVE_CONSENT, 'Active Consent'),
    (PAUSED, 'Paused'),
    (REVOKED, 'Revoked'),
]


# ------------------------------------------------------------
# Capabilities (one boolean column each on ConsentRecord)
# ------------------------------------------------------------
CAN_MESSAGE = 'can_message'
CAN_SEND_MEDIA = 'can_send_media'
CAN_CALL = 'can_call'
CAN_SHARE_LOCATION = 'can_share_location'
CAN_INVITE_TO_EVENTS = 'can_invite_to_events'

CAPABILITY_FIELDS = (
    CAN_MESSAGE,
    CAN_SEND_MEDIA,
    CAN_CALL,
    CAN_SHARE_LOCATION,
    CAN_INVITE_TO_EVENTS,
)

# Capabilities are exactly a function of state
CAPABILITY_MATRIX = {
    PENDING: {
        CAN_MESSAGE: False,
        CAN_SEND_MEDIA: False,
        CAN_CALL: False,
        CAN_SHARE_LOCATION: False,
        CAN_INVITE_TO_EVENTS: False,
    },
    ACTIVE_CONSENT: {
        CAN_MESSAGE: True,
        CAN_SEND_MEDIA: True,
        CAN_CALL: True,
        CAN_SHARE_LOCATION: True,
        CAN_INVITE_TO_EVENTS: True,
    },
    PAUSED: {
        CAN_MESSAGE: False,
        CAN_SEND_MEDIA: False,
        CAN_CALL: False,
        CAN_SHARE_LOCATION: False,
        CAN_INVITE_TO_EVENTS: False,
    },
    REVOKED: {
        CAN_MESSAGE: False,
        CAN_SEND_MEDIA: False,
        CAN_CALL: False,
        CAN_SHARE_LOCATION: False,
        CAN_INVITE_TO_EVENTS: False,
    },
}


# ------------------------------------------------------------
# Request types accepted by check_consent
# ------------------------------------------------------------
REQUEST_MESSAGE = 'MESSAGE'
REQUEST_MEDIA = 'MEDIA'
REQUEST_CALL = 'CALL'
REQUEST_LOCATION = 'LOCATION'
REQUEST_EVENT_INVITE = 'EVENT_INVITE'

REQUEST_TYPE_TO_CAPABILITY = {
    REQUEST_MESSAGE: CAN_MESSAGE,
    REQUEST_MEDIA: CAN_SEND_MEDIA,
    REQUEST_CALL: CAN_CALL,
    REQUEST_LOCATION: CAN_SHARE_LOCATION,
    REQUEST_EVENT_INVITE: CAN_INVITE_TO_EVENTS,
}

REQUEST_TYPE_CHOICES = [
    (REQUEST_MESSAGE, 'Message'),
    (REQUEST_MEDIA, 'Media'),
    (REQUEST_CALL, 'Call'),
    (REQUEST_LOCATION, 'Location Share'),
    (REQUEST_EVENT_INVITE, 'Event Invite'),
]


# ------------------------------------------------------------
# Transition events (input to services.transitions.transition)
# ------------------------------------------------------------
EVENT_REQUEST = 'REQUEST'
EVENT_GRANT = 'GRANT'
EVENT_PAUSE = 'PAUSE'
EVENT_RESUME = 'RESUME'
EVENT_REVOKE = 'REVOKE'
EVENT_REINITIALIZE = 'REINITIALIZE'


# ------------------------------------------------------------
# Check results
# ------------------------------------------------------------
ACTION_REQUEST_CONSENT = 'REQUEST_CONSENT'
ACTION_RESUME_CONSENT = 'RESUME_CONSENT'

NO_RECORD = 'NO_RECORD'


# ------------------------------------------------------------
# Where a relationship was first created
# ------------------------------------------------------------
SOURCE_CHAT = 'CHAT'
SOURCE_MATCH = 'MATCH'
SOURCE_EVENT = 'EVENT'
SOURCE_SYSTEM = 'SYSTEM'

SOURCE_CHOICES = [
    (SOURCE_CHAT, 'Chat'),
    (SOURCE_MATCH, 'Match'),
    (SOURCE_EVENT, 'Event'),
    (SOURCE_SYSTEM, 'System'),
]


# ------------------------------------------------------------
# Pending refund set
# ------------------------------------------------------------
REFUND_PENDING = 'PENDING'
REFUND_DELIVERED = 'DELIVERED'
REFUND_REFUNDED = 'REFUNDED'

REFUND_STATUS_CHOICES = [
    (REFUND_PENDING, 'Pending'),
    (REFUND_DELIVERED, 'Delivered'),
    (REFUND_REFUNDED, 'Refunded'),
]

# Re-initializing a REVOKED pair is a product decision (off by default)
ALLOW_REINITIALIZE_AFTER_REVOKE = False


# ------------------------------------------------------------
# Side effects requested by a transition
# ------------------------------------------------------------
EFFECT_DRAIN_PENDING_REFUNDS = 'DRAIN_PENDING_REFUNDS'
EFFECT_AUDIT = 'AUDIT'
