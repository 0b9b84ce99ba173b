# apps/detection/models.py

from django.db import models

from apps.detection.constants import (
    FEEDBACK_OUTCOME_CHOICES,
    DEFAULT_BASE_CONFIDENCE,
)


# Confidence Rule --------------------------------------------------------------------------
class ConfidenceRule(models.Model):
    """
    Learned trust in one detector event type.
    Created lazily on first feedback; counters only move through F() updates.
    """
    event_type = models.CharField(max_length=64, unique=True)

    base_confidence = models.FloatField(default=DEFAULT_BASE_CONFIDENCE)
    current_confidence = models.FloatField(default=DEFAULT_BASE_CONFIDENCE)

    true_positives = models.PositiveIntegerField(default=0)
    false_positives = models.PositiveIntegerField(default=0)
    true_negatives = models.PositiveIntegerField(default=0)
    false_negatives = models.PositiveIntegerField(default=0)
    total_feedback = models.PositiveIntegerField(default=0)

    precision = models.FloatField(default=0.0)
    recall = models.FloatField(default=0.0)
    f1_score = models.FloatField(default=0.0)

    last_applied_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Confidence Rule"
        verbose_name_plural = "Confidence Rules"

    def __str__(self):
        return f"ConfidenceRule({self.event_type}, {self.current_confidence:.2f})"


# Moderation Feedback ----------------------------------------------------------------------
class ModerationFeedback(models.Model):
    """
    One moderator verdict on an automated detection.
    `applied` flips exactly once, when a batch folds it into the rule.
    """
    case_id = models.CharField(max_length=64, db_index=True)
    event_type = models.CharField(max_length=64, db_index=True)
    outcome = models.CharField(max_length=20, choices=FEEDBACK_OUTCOME_CHOICES)
    moderator_id = models.CharField(max_length=64)
    notes = models.TextField(blank=True, default="")

    applied = models.BooleanField(default=False, db_index=True)
    applied_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Moderation Feedback"
        verbose_name_plural = "Moderation Feedback"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["event_type", "applied"]),
        ]

    def __str__(self):
        return f"Feedback({self.event_type}, {self.outcome}, applied={self.applied})"
