# apps/shield/models.py

from django.db import models
from django.utils import timezone

from apps.safety.levels import RiskLevel
from apps.detection.constants import SIGNAL_TYPE_CHOICES
from apps.shield.constants import SHIELD_ACTION_CHOICES


# Harassment Shield ------------------------------------------------------------------------
class HarassmentShield(models.Model):
    """
    Protection of one user against one counterpart.
    `level` only moves up while the shield is active; resolving stamps
    `resolved_at` and leaves level and mode flags as they were.
    """
    protected_user_id = models.CharField(max_length=64, db_index=True)
    counterpart_id = models.CharField(max_length=64, db_index=True)

    level = models.PositiveSmallIntegerField(choices=RiskLevel.choices, default=RiskLevel.NONE)
    risk_score = models.FloatField(default=0.0)

    slow_mode = models.BooleanField(default=False)
    reply_only = models.BooleanField(default=False)
    hard_block = models.BooleanField(default=False)

    consent_revoked = models.BooleanField(default=False)
    case_id = models.CharField(max_length=64, null=True, blank=True)
    # Set by the writer that won the right to open the case
    case_requested_at = models.DateTimeField(null=True, blank=True)

    activated_at = models.DateTimeField(default=timezone.now)
    last_escalated_at = models.DateTimeField(null=True, blank=True)

    resolved_at = models.DateTimeField(null=True, blank=True)
    resolved_by = models.CharField(max_length=64, null=True, blank=True)
    resolution_reason = models.TextField(blank=True, default="")

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Harassment Shield"
        verbose_name_plural = "Harassment Shields"
        constraints = [
            models.UniqueConstraint(fields=["protected_user_id", "counterpart_id"], name="uniq_shield_pair"),
        ]
        indexes = [
            models.Index(fields=["counterpart_id", "resolved_at"]),
        ]

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    @property
    def level_name(self) -> str:
        return RiskLevel(self.level).name

    def __str__(self):
        return f"Shield({self.protected_user_id} <- {self.counterpart_id}, {self.level_name}, active={self.is_active})"


# Shield Signal ----------------------------------------------------------------------------
class ShieldSignal(models.Model):
    """
    Every signal ever recorded for a shield (insert-only).
    """
    shield = models.ForeignKey(HarassmentShield, on_delete=models.CASCADE, related_name="signals")
    signal_type = models.CharField(max_length=40, choices=SIGNAL_TYPE_CHOICES)
    confidence = models.FloatField()
    evidence = models.JSONField(default=dict, blank=True)
    detected_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = "Shield Signal"
        verbose_name_plural = "Shield Signals"
        ordering = ["detected_at", "id"]

    def __str__(self):
        return f"ShieldSignal({self.signal_type}, {self.confidence})"


# Shield Action ----------------------------------------------------------------------------
class ShieldAction(models.Model):
    """
    Action log: one row per automatic step or moderator decision.
    """
    shield = models.ForeignKey(HarassmentShield, on_delete=models.CASCADE, related_name="actions")
    action = models.CharField(max_length=32, choices=SHIELD_ACTION_CHOICES)
    level = models.PositiveSmallIntegerField(choices=RiskLevel.choices)
    reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Shield Action"
        verbose_name_plural = "Shield Actions"
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"ShieldAction({self.action}, level={self.level})"
