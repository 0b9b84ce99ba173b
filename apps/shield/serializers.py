# apps/shield/serializers.py
from rest_framework import serializers

from apps.detection.constants import SIGNAL_TYPE_CHOICES
from apps.shield.models import HarassmentShield, ShieldSignal, ShieldAction


# Shield serializers ------------------------------------------------------------------------
class ShieldSignalSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShieldSignal
        fields = ["signal_type", "confidence", "evidence", "detected_at"]
        read_only_fields = fields


class ShieldActionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShieldAction
        fields = ["action", "level", "reason", "created_at"]
        read_only_fields = fields


class HarassmentShieldSerializer(serializers.ModelSerializer):
    level = serializers.CharField(source="level_name", read_only=True)
    is_active = serializers.BooleanField(read_only=True)
    actions = ShieldActionSerializer(many=True, read_only=True)

    class Meta:
        model = HarassmentShield
        fields = [
            "id", "protected_user_id", "counterpart_id", "level", "risk_score",
            "slow_mode", "reply_only", "hard_block", "consent_revoked", "case_id",
            "activated_at", "last_escalated_at", "resolved_at", "resolved_by", "resolution_reason",
            "is_active", "actions",
        ]
        read_only_fields = fields


# Input serializers -------------------------------------------------------------------------
class SignalInputSerializer(serializers.Serializer):
    signal_type = serializers.ChoiceField(choices=SIGNAL_TYPE_CHOICES)
    confidence = serializers.FloatField(min_value=0.0, max_value=1.0)
    evidence = serializers.DictField(required=False, default=dict)


class ShieldPairSerializer(serializers.Serializer):
    # Defaults to the authenticated user
    protected_user_id = serializers.CharField(max_length=64, required=False)
    counterpart_id = serializers.CharField(max_length=64)


class ShieldActivateSerializer(ShieldPairSerializer):
    signals = SignalInputSerializer(many=True, allow_empty=False)


class ShieldResolveSerializer(ShieldPairSerializer):
    protected_user_id = serializers.CharField(max_length=64)
    reason = serializers.CharField(allow_blank=False)
