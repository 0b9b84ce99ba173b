# apps/shield/admin.py

from django.contrib import admin

from apps.shield.models import HarassmentShield, ShieldSignal, ShieldAction


class ShieldSignalInline(admin.TabularInline):
    model = ShieldSignal
    extra = 0
    can_delete = False
    readonly_fields = ("signal_type", "confidence", "evidence", "detected_at")


class ShieldActionInline(admin.TabularInline):
    model = ShieldAction
    extra = 0
    can_delete = False
    readonly_fields = ("action", "level", "reason", "created_at")


@admin.register(HarassmentShield)
class HarassmentShieldAdmin(admin.ModelAdmin):
    list_display = ("protected_user_id", "counterpart_id", "level", "risk_score", "hard_block", "case_id", "resolved_at")
    list_filter = ("level", "hard_block", "reply_only", "slow_mode")
    search_fields = ("protected_user_id", "counterpart_id", "case_id")
    inlines = [ShieldSignalInline, ShieldActionInline]

    # Escalation is service-driven; resolve through the API
    readonly_fields = (
        "level", "risk_score", "slow_mode", "reply_only", "hard_block", "consent_revoked",
        "case_id", "case_requested_at", "activated_at", "last_escalated_at",
        "resolved_at", "resolved_by", "resolution_reason",
    )
