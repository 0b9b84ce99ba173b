# apps/consent/admin.py

from django.contrib import admin

from apps.consent.models import ConsentRecord, ConsentTransition, ConsentPendingRefund


class ConsentTransitionInline(admin.TabularInline):
    model = ConsentTransition
    extra = 0
    can_delete = False
    readonly_fields = ("from_state", "to_state", "actor", "reason", "created_at")


class ConsentPendingRefundInline(admin.TabularInline):
    model = ConsentPendingRefund
    extra = 0
    can_delete = False
    readonly_fields = ("transaction_id", "status", "created_at", "resolved_at")


@admin.register(ConsentRecord)
class ConsentRecordAdmin(admin.ModelAdmin):
    list_display = ("pair_key", "state", "source", "last_state_change_at", "updated_at")
    list_filter = ("state", "source")
    search_fields = ("pair_key", "user_a", "user_b")
    inlines = [ConsentTransitionInline, ConsentPendingRefundInline]

    # State changes go through the ledger service only
    readonly_fields = (
        "pair_key", "user_a", "user_b", "initiator_id", "source", "state",
        "can_message", "can_send_media", "can_call", "can_share_location", "can_invite_to_events",
        "created_at", "updated_at", "last_state_change_at", "paused_at", "revoked_at",
    )
