# apps/risk/models.py

from django.db import models
from django.utils import timezone

from apps.safety.levels import RiskLevel
from apps.risk.constants import CONTEXT_CHOICES, ORCHESTRATION_ACTION_CHOICES


# Risk Profile -----------------------------------------------------------------------------
class RiskProfile(models.Model):
    """
    Long-term risk picture of one user, rebuilt from behavior memory.
    The five `can_trigger_*` flags are recomputed on every evaluation;
    the `*_at` / `review_case_id` stamps record which triggers already ran.
    """
    user_id = models.CharField(max_length=64, unique=True)

    level = models.PositiveSmallIntegerField(choices=RiskLevel.choices, default=RiskLevel.NONE)
    score = models.FloatField(default=0.0)
    confidence = models.FloatField(default=0.0)

    patterns = models.JSONField(default=list, blank=True)
    flags = models.JSONField(default=list, blank=True)

    can_trigger_consent_revalidation = models.BooleanField(default=False)
    can_trigger_harassment_shield = models.BooleanField(default=False)
    can_trigger_moderator_review = models.BooleanField(default=False)
    can_trigger_forced_verification = models.BooleanField(default=False)
    can_trigger_account_lockdown = models.BooleanField(default=False)

    review_case_id = models.CharField(max_length=64, null=True, blank=True)
    consent_revalidated_at = models.DateTimeField(null=True, blank=True)
    verification_requested_at = models.DateTimeField(null=True, blank=True)
    lockdown_applied_at = models.DateTimeField(null=True, blank=True)

    last_evaluated_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Risk Profile"
        verbose_name_plural = "Risk Profiles"
        indexes = [
            models.Index(fields=["level", "last_evaluated_at"]),
        ]

    @property
    def level_name(self) -> str:
        return RiskLevel(self.level).name

    @property
    def pattern_types(self) -> set:
        return {p.get("event_type") for p in self.patterns or []}

    def __str__(self):
        return f"RiskProfile({self.user_id}, {self.level_name}, score={self.score})"


# Risk Profile Transition ------------------------------------------------------------------
class RiskProfileTransition(models.Model):
    """
    Append-only level history; one row each time an evaluation moves the level.
    """
    profile = models.ForeignKey(RiskProfile, on_delete=models.CASCADE, related_name="transitions")
    from_level = models.PositiveSmallIntegerField(choices=RiskLevel.choices)
    to_level = models.PositiveSmallIntegerField(choices=RiskLevel.choices)
    score = models.FloatField()
    reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Risk Profile Transition"
        verbose_name_plural = "Risk Profile Transitions"
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"RiskTransition({self.profile.user_id}: {self.from_level} -> {self.to_level})"


# Risk Assessment Log ----------------------------------------------------------------------
class RiskAssessmentLog(models.Model):
    """
    One row per orchestrated assessment: what was gathered, decided and done.
    """
    user_id = models.CharField(max_length=64, db_index=True)
    counterpart_id = models.CharField(max_length=64, null=True, blank=True)
    context = models.CharField(max_length=32, choices=CONTEXT_CHOICES)

    action = models.CharField(max_length=32, choices=ORCHESTRATION_ACTION_CHOICES)
    aggregated_risk = models.FloatField()
    signals = models.JSONField(default=list, blank=True)
    reasoning = models.TextField(blank=True, default="")

    notify_user = models.BooleanField(default=False)
    case_id = models.CharField(max_length=64, null=True, blank=True)
    shield_activated = models.BooleanField(default=False)
    consent_paused = models.BooleanField(default=False)
    enforcement_changed = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Risk Assessment Log"
        verbose_name_plural = "Risk Assessment Logs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user_id", "created_at"]),
        ]

    def __str__(self):
        return f"RiskAssessment({self.user_id}, {self.context}, {self.action}, {self.aggregated_risk})"
