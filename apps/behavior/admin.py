# apps/behavior/admin.py

from django.contrib import admin

from apps.behavior.models import BehaviorLogEntry


@admin.register(BehaviorLogEntry)
class BehaviorLogEntryAdmin(admin.ModelAdmin):
    list_display = ("user_id", "event_type", "importance", "confidence", "occurrence_count", "detected_at", "expires_at")
    list_filter = ("event_type", "importance")
    search_fields = ("user_id", "counterpart_id")
    date_hierarchy = "detected_at"

    # Append-only memory
    def has_change_permission(self, request, obj=None):
        return False
