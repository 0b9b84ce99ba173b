# apps/risk/serializers.py
from rest_framework import serializers

from apps.risk.constants import CONTEXT_CHOICES
from apps.risk.models import RiskProfile, RiskProfileTransition


# Profile serializers -----------------------------------------------------------------------
class RiskProfileTransitionSerializer(serializers.ModelSerializer):
    class Meta:
        model = RiskProfileTransition
        fields = ["from_level", "to_level", "score", "reason", "created_at"]
        read_only_fields = fields


class RiskProfileSerializer(serializers.ModelSerializer):
    level = serializers.CharField(source="level_name", read_only=True)
    transitions = RiskProfileTransitionSerializer(many=True, read_only=True)

    class Meta:
        model = RiskProfile
        fields = [
            "user_id", "level", "score", "confidence", "patterns", "flags",
            "can_trigger_consent_revalidation", "can_trigger_harassment_shield",
            "can_trigger_moderator_review", "can_trigger_forced_verification",
            "can_trigger_account_lockdown",
            "review_case_id", "consent_revalidated_at", "verification_requested_at", "lockdown_applied_at",
            "last_evaluated_at", "transitions",
        ]
        read_only_fields = fields


# Input serializers -------------------------------------------------------------------------
class ProfileUserSerializer(serializers.Serializer):
    # Defaults to the authenticated user
    user_id = serializers.CharField(max_length=64, required=False)


class ExecuteTriggersSerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=64)


class AssessRiskSerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=64, required=False)
    context = serializers.ChoiceField(choices=CONTEXT_CHOICES)
    counterpart_id = serializers.CharField(max_length=64, required=False, allow_null=True, default=None)
