# apps/behavior/models.py

from django.db import models

from apps.behavior.constants import EVENT_TYPE_CHOICES, IMPORTANCE_CHOICES, IMPORTANCE_MEDIUM


# Behavior Log Entry -----------------------------------------------------------------------
class BehaviorLogEntry(models.Model):
    """
    One remembered behavior event of a user.
    Never updated; rows leave only through the expiry sweep.
    """
    user_id = models.CharField(max_length=64)
    event_type = models.CharField(max_length=32, choices=EVENT_TYPE_CHOICES)
    importance = models.CharField(max_length=16, choices=IMPORTANCE_CHOICES, default=IMPORTANCE_MEDIUM)
    counterpart_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)

    detected_at = models.DateTimeField()
    confidence = models.FloatField()
    evidence = models.JSONField(default=dict, blank=True)

    # Same type within the recurrence window, this entry included
    occurrence_count = models.PositiveIntegerField(default=1)
    days_since_last = models.FloatField(null=True, blank=True)

    expires_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Behavior Log Entry"
        verbose_name_plural = "Behavior Log Entries"
        ordering = ["detected_at", "id"]
        indexes = [
            models.Index(fields=["user_id", "event_type", "detected_at"]),
            models.Index(fields=["counterpart_id", "detected_at"]),
        ]

    def __str__(self):
        return f"Behavior({self.user_id}, {self.event_type}, {self.detected_at:%Y-%m-%d})"
