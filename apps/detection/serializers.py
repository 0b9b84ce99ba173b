# apps/detection/serializers.py
from rest_framework import serializers

from apps.detection.models import ConfidenceRule, ModerationFeedback
from apps.detection.constants import FEEDBACK_OUTCOME_CHOICES
from apps.detection.evidence import evidence_to_dict


# Interaction event --------------------------------------------------------------------------
class InteractionEventSerializer(serializers.Serializer):
    sender_id = serializers.CharField(max_length=64)
    recipient_id = serializers.CharField(max_length=64)
    text = serializers.CharField(required=False, allow_blank=True, default="")
    messages_last_minute = serializers.IntegerField(min_value=0, default=0)
    unanswered_contact_attempts = serializers.IntegerField(min_value=0, default=0)
    sender_display_name = serializers.CharField(required=False, allow_blank=True, default="")
    known_display_names = serializers.ListField(
        child=serializers.CharField(max_length=120), required=False, default=list,
    )
    device_fingerprint = serializers.CharField(required=False, allow_blank=True, default="")
    blocked_fingerprints = serializers.DictField(
        child=serializers.ListField(child=serializers.CharField(max_length=64)),
        required=False, default=dict,
    )

    def validate(self, attrs):
        if attrs["sender_id"].strip() == attrs["recipient_id"].strip():
            raise serializers.ValidationError("sender_id and recipient_id must differ.")
        return attrs


class DetectionSignalSerializer(serializers.Serializer):
    signal_type = serializers.CharField()
    confidence = serializers.FloatField()
    evidence = serializers.SerializerMethodField()

    def get_evidence(self, obj):
        return evidence_to_dict(obj.evidence)


# Confidence model --------------------------------------------------------------------------
class ModerationFeedbackSerializer(serializers.ModelSerializer):
    outcome = serializers.ChoiceField(choices=FEEDBACK_OUTCOME_CHOICES)

    class Meta:
        model = ModerationFeedback
        fields = ["id", "case_id", "event_type", "outcome", "moderator_id", "notes", "applied", "applied_at", "created_at"]
        read_only_fields = ["id", "moderator_id", "applied", "applied_at", "created_at"]


class ConfidenceRuleSerializer(serializers.ModelSerializer):
    class Meta:
        model = ConfidenceRule
        fields = [
            "event_type", "base_confidence", "current_confidence",
            "true_positives", "false_positives", "true_negatives", "false_negatives",
            "total_feedback", "precision", "recall", "f1_score", "last_applied_at",
        ]
        read_only_fields = fields
