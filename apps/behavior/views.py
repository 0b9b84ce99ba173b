# apps/behavior/views.py
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.permissions import IsSafetyStaff, acting_user_id, assert_party_or_staff
from apps.behavior.serializers import (
    BehaviorLogEntrySerializer,
    BehaviorEventInputSerializer,
    PatternQuerySerializer,
)
from apps.behavior.services.memory import log_behavior_event, detect_patterns


# Behavior Event ViewSet -------------------------------------------------------------------
class BehaviorEventViewSet(viewsets.ViewSet):
    """
      POST /behavior/events/           -> append one event (staff / internal callers)
      GET  /behavior/events/patterns/  -> patterns of a user (self or staff)
    """

    def get_permissions(self):
        if self.action == "create":
            return [IsSafetyStaff()]
        return [IsAuthenticated()]

    def create(self, request):
        ser = BehaviorEventInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        entry = log_behavior_event(
            data["user_id"],
            data["event_type"],
            data["evidence"],
            counterpart_id=data["counterpart_id"],
            importance=data["importance"],
        )
        return Response(BehaviorLogEntrySerializer(entry).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="patterns")
    def patterns(self, request):
        ser = PatternQuerySerializer(data=request.query_params)
        ser.is_valid(raise_exception=True)
        user_id = ser.validated_data.get("user_id") or acting_user_id(request)
        assert_party_or_staff(request, user_id)

        patterns = detect_patterns(user_id, ser.validated_data.get("lookback_months"))
        return Response({"user_id": user_id, "patterns": [p.as_dict() for p in patterns]})
