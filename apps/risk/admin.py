# apps/risk/admin.py

from django.contrib import admin

from apps.risk.models import RiskProfile, RiskProfileTransition, RiskAssessmentLog


class RiskProfileTransitionInline(admin.TabularInline):
    model = RiskProfileTransition
    extra = 0
    can_delete = False
    readonly_fields = ("from_level", "to_level", "score", "reason", "created_at")


@admin.register(RiskProfile)
class RiskProfileAdmin(admin.ModelAdmin):
    list_display = ("user_id", "level", "score", "confidence", "review_case_id", "lockdown_applied_at", "last_evaluated_at")
    list_filter = ("level", "can_trigger_account_lockdown", "can_trigger_moderator_review")
    search_fields = ("user_id", "review_case_id")
    inlines = [RiskProfileTransitionInline]
    readonly_fields = (
        "level", "score", "confidence", "patterns", "flags",
        "can_trigger_consent_revalidation", "can_trigger_harassment_shield",
        "can_trigger_moderator_review", "can_trigger_forced_verification", "can_trigger_account_lockdown",
        "review_case_id", "consent_revalidated_at", "verification_requested_at", "lockdown_applied_at",
        "last_evaluated_at",
    )


@admin.register(RiskAssessmentLog)
class RiskAssessmentLogAdmin(admin.ModelAdmin):
    list_display = ("user_id", "counterpart_id", "context", "action", "aggregated_risk", "case_id", "created_at")
    list_filter = ("action", "context", "shield_activated", "enforcement_changed")
    search_fields = ("user_id", "counterpart_id", "case_id")
    date_hierarchy = "created_at"
