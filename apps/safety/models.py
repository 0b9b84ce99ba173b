# apps/safety/models.py

import uuid

from django.db import models

from apps.safety.constants import (
    PRIORITY_CHOICES, PRIORITY_MEDIUM,
    ACCOUNT_STATUS_CHOICES, ACCOUNT_ACTIVE,
    CASE_STATUS_CHOICES, CASE_OPEN,
    NOTIFICATION_CATEGORY_CHOICES,
)


# Safety Audit Log -------------------------------------------------------------------------
class SafetyAuditLog(models.Model):
    """
    Write-only audit trail for automated trust & safety decisions.
    Backing table of the default audit sink.
    """
    event_type = models.CharField(max_length=64, db_index=True)
    user_id = models.CharField(max_length=64, db_index=True)
    affected_user_id = models.CharField(max_length=64, null=True, blank=True)
    details = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Safety Audit Log"
        verbose_name_plural = "Safety Audit Logs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user_id", "created_at"]),
        ]

    def __str__(self):
        return f"Audit({self.event_type}, user={self.user_id}, at={self.created_at})"


# Safety Case ------------------------------------------------------------------------------
class SafetyCase(models.Model):
    """
    Moderation case opened by automation (shield escalation, risk review, lockdown).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    subject_user_id = models.CharField(max_length=64, db_index=True)
    reporter_id = models.CharField(max_length=64)
    reason_codes = models.JSONField(default=list, blank=True)
    priority = models.CharField(max_length=16, choices=PRIORITY_CHOICES, default=PRIORITY_MEDIUM)
    evidence_refs = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=16, choices=CASE_STATUS_CHOICES, default=CASE_OPEN, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Safety Case"
        verbose_name_plural = "Safety Cases"
        ordering = ["-created_at"]

    def __str__(self):
        return f"Case({self.id}, subject={self.subject_user_id}, {self.priority}/{self.status})"


# Safety Notification ----------------------------------------------------------------------
class SafetyNotification(models.Model):
    """
    Outbox row; a delivery worker outside this project fans these out.
    """
    user_id = models.CharField(max_length=64, db_index=True)
    category = models.CharField(max_length=32, choices=NOTIFICATION_CATEGORY_CHOICES)
    title = models.CharField(max_length=120)
    body = models.TextField()
    priority = models.CharField(max_length=16, choices=PRIORITY_CHOICES, default=PRIORITY_MEDIUM)

    is_delivered = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Safety Notification"
        verbose_name_plural = "Safety Notifications"
        ordering = ["-created_at"]

    def __str__(self):
        return f"Notification(user={self.user_id}, {self.category}, delivered={self.is_delivered})"


# Account Enforcement State ----------------------------------------------------------------
class AccountEnforcementState(models.Model):
    """
    Current enforcement status per account.
    Written by the default enforcement sink and read by the enforcement-state provider.
    """
    user_id = models.CharField(max_length=64, unique=True)
    status = models.CharField(max_length=32, choices=ACCOUNT_STATUS_CHOICES, default=ACCOUNT_ACTIVE, db_index=True)
    reason_codes = models.JSONField(default=list, blank=True)

    changed_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Account Enforcement State"
        verbose_name_plural = "Account Enforcement States"

    def __str__(self):
        return f"Enforcement(user={self.user_id}, status={self.status})"
