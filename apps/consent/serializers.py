# apps/consent/serializers.py
from rest_framework import serializers

from apps.consent.models import ConsentRecord, ConsentTransition
from apps.consent.constants import SOURCE_CHOICES, SOURCE_CHAT, REQUEST_TYPE_CHOICES, REQUEST_MESSAGE


# Consent record serializers ----------------------------------------------------------------
class ConsentTransitionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ConsentTransition
        fields = ["from_state", "to_state", "actor", "reason", "created_at"]
        read_only_fields = fields


class ConsentRecordSerializer(serializers.ModelSerializer):
    transitions = ConsentTransitionSerializer(many=True, read_only=True)

    class Meta:
        model = ConsentRecord
        fields = [
            "pair_key", "user_a", "user_b", "initiator_id", "source", "state",
            "can_message", "can_send_media", "can_call", "can_share_location", "can_invite_to_events",
            "created_at", "updated_at", "last_state_change_at", "paused_at", "revoked_at",
            "transitions",
        ]
        read_only_fields = fields


# Input serializers -------------------------------------------------------------------------
class ConsentPairSerializer(serializers.Serializer):
    # Defaults to the authenticated user
    user_id = serializers.CharField(max_length=64, required=False)
    counterpart_id = serializers.CharField(max_length=64)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ConsentInitializeSerializer(ConsentPairSerializer):
    source = serializers.ChoiceField(choices=SOURCE_CHOICES, default=SOURCE_CHAT)


class ConsentCheckSerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=64, required=False)
    counterpart_id = serializers.CharField(max_length=64)
    request_type = serializers.ChoiceField(choices=REQUEST_TYPE_CHOICES, default=REQUEST_MESSAGE)


class ConsentBatchCheckSerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=64, required=False)
    counterpart_ids = serializers.ListField(
        child=serializers.CharField(max_length=64),
        allow_empty=False,
        max_length=200,
    )
    request_type = serializers.ChoiceField(choices=REQUEST_TYPE_CHOICES, default=REQUEST_MESSAGE)


class ConsentCheckResultSerializer(serializers.Serializer):
    allowed = serializers.BooleanField()
    state = serializers.CharField()
    reason = serializers.CharField()
    required_action = serializers.CharField(allow_null=True)
