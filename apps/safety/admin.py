# apps/safety/admin.py

from django.contrib import admin

from apps.safety.models import SafetyAuditLog, SafetyCase, SafetyNotification, AccountEnforcementState


@admin.register(SafetyAuditLog)
class SafetyAuditLogAdmin(admin.ModelAdmin):
    list_display = ("event_type", "user_id", "affected_user_id", "created_at")
    list_filter = ("event_type",)
    search_fields = ("user_id", "affected_user_id")
    readonly_fields = ("event_type", "user_id", "affected_user_id", "details", "created_at")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(SafetyCase)
class SafetyCaseAdmin(admin.ModelAdmin):
    list_display = ("id", "subject_user_id", "priority", "status", "created_at")
    list_filter = ("priority", "status")
    search_fields = ("subject_user_id", "reporter_id")
    readonly_fields = ("id", "created_at", "updated_at")


@admin.register(SafetyNotification)
class SafetyNotificationAdmin(admin.ModelAdmin):
    list_display = ("user_id", "category", "title", "priority", "is_delivered", "created_at")
    list_filter = ("category", "priority", "is_delivered")
    search_fields = ("user_id",)


@admin.register(AccountEnforcementState)
class AccountEnforcementStateAdmin(admin.ModelAdmin):
    list_display = ("user_id", "status", "changed_at")
    list_filter = ("status",)
    search_fields = ("user_id",)
