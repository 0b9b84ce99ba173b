# apps/behavior/serializers.py
from rest_framework import serializers

from apps.behavior.models import BehaviorLogEntry
from apps.behavior.constants import EVENT_TYPE_CHOICES, IMPORTANCE_CHOICES, IMPORTANCE_MEDIUM


class BehaviorLogEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = BehaviorLogEntry
        fields = [
            "id", "user_id", "event_type", "importance", "counterpart_id",
            "detected_at", "confidence", "evidence", "occurrence_count", "days_since_last", "expires_at",
        ]
        read_only_fields = fields


class BehaviorEventInputSerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=64)
    event_type = serializers.ChoiceField(choices=EVENT_TYPE_CHOICES)
    importance = serializers.ChoiceField(choices=IMPORTANCE_CHOICES, default=IMPORTANCE_MEDIUM)
    counterpart_id = serializers.CharField(max_length=64, required=False, allow_null=True, default=None)
    evidence = serializers.DictField(required=False, default=dict)


class PatternQuerySerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=64, required=False)
    lookback_months = serializers.IntegerField(min_value=1, max_value=36, required=False)
