# apps/detection/admin.py

from django.contrib import admin

from apps.detection.models import ConfidenceRule, ModerationFeedback


@admin.register(ConfidenceRule)
class ConfidenceRuleAdmin(admin.ModelAdmin):
    list_display = ("event_type", "current_confidence", "base_confidence", "precision", "recall", "total_feedback", "last_applied_at")
    search_fields = ("event_type",)
    readonly_fields = (
        "true_positives", "false_positives", "true_negatives", "false_negatives",
        "total_feedback", "precision", "recall", "f1_score", "current_confidence", "last_applied_at",
    )


@admin.register(ModerationFeedback)
class ModerationFeedbackAdmin(admin.ModelAdmin):
    list_display = ("case_id", "event_type", "outcome", "moderator_id", "applied", "created_at")
    list_filter = ("event_type", "outcome", "applied")
    search_fields = ("case_id", "moderator_id")
    readonly_fields = ("applied", "applied_at", "created_at")
