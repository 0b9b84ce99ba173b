# apps/consent/models.py

from django.db import models

from apps.consent.constants import (
    CONSENT_STATE_CHOICES, PENDING,
    SOURCE_CHOICES, SOURCE_CHAT,
    REFUND_STATUS_CHOICES, REFUND_PENDING,
    CAPABILITY_FIELDS,
)


# Consent Record ---------------------------------------------------------------------------
class ConsentRecord(models.Model):
    """
    Consent between two users, keyed by the order-independent pair key.
    Capability columns are always the capability matrix row of `state`;
    only apps.consent.services.ledger writes them.
    """
    pair_key = models.CharField(max_length=140, unique=True)
    user_a = models.CharField(max_length=64, db_index=True)
    user_b = models.CharField(max_length=64, db_index=True)
    initiator_id = models.CharField(max_length=64)
    source = models.CharField(max_length=16, choices=SOURCE_CHOICES, default=SOURCE_CHAT)

    state = models.CharField(max_length=20, choices=CONSENT_STATE_CHOICES, default=PENDING, db_index=True)

    can_message = models.BooleanField(default=False)
    can_send_media = models.BooleanField(default=False)
    can_call = models.BooleanField(default=False)
    can_share_location = models.BooleanField(default=False)
    can_invite_to_events = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    last_state_change_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Consent Record"
        verbose_name_plural = "Consent Records"
        indexes = [
            models.Index(fields=["user_a", "state"]),
            models.Index(fields=["user_b", "state"]),
        ]

    @property
    def capabilities(self) -> dict:
        return {name: getattr(self, name) for name in CAPABILITY_FIELDS}

    def counterpart_of(self, user_id: str) -> str:
        return self.user_b if user_id == self.user_a else self.user_a

    def __str__(self):
        return f"Consent({self.pair_key}, {self.state})"


# Consent Transition -----------------------------------------------------------------------
class ConsentTransition(models.Model):
    """
    Append-only state history.
    """
    record = models.ForeignKey(ConsentRecord, on_delete=models.CASCADE, related_name="transitions")
    from_state = models.CharField(max_length=20, choices=CONSENT_STATE_CHOICES, null=True, blank=True)
    to_state = models.CharField(max_length=20, choices=CONSENT_STATE_CHOICES)
    actor = models.CharField(max_length=64)
    reason = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Consent Transition"
        verbose_name_plural = "Consent Transitions"
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"Transition({self.record_id}: {self.from_state} -> {self.to_state})"


# Pending Refund ---------------------------------------------------------------------------
class ConsentPendingRefund(models.Model):
    """
    Paid interactions (e.g. boosted messages) awaiting delivery under a consent.
    Revocation drains PENDING rows to REFUNDED.
    """
    record = models.ForeignKey(ConsentRecord, on_delete=models.CASCADE, related_name="pending_refunds")
    transaction_id = models.CharField(max_length=64)
    status = models.CharField(max_length=16, choices=REFUND_STATUS_CHOICES, default=REFUND_PENDING, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Consent Pending Refund"
        verbose_name_plural = "Consent Pending Refunds"
        constraints = [
            models.UniqueConstraint(fields=["record", "transaction_id"], name="uniq_consent_refund_txn"),
        ]

    def __str__(self):
        return f"Refund({self.transaction_id}, {self.status})"
