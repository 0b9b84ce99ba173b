# apps/shield/views.py
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.permissions import IsSafetyStaff, acting_user_id, assert_party_or_staff
from apps.detection.serializers import InteractionEventSerializer, DetectionSignalSerializer
from apps.detection.services.detectors import interaction_event_from_payload
from apps.shield.serializers import (
    HarassmentShieldSerializer,
    ShieldPairSerializer,
    ShieldActivateSerializer,
    ShieldResolveSerializer,
)
from apps.shield.services.shield import activate_shield, get_active_shield, resolve_shield
from apps.shield.services.intake import detect_and_shield


# Harassment Shield ViewSet ----------------------------------------------------------------
class HarassmentShieldViewSet(viewsets.ViewSet):
    """
      POST /shield/shields/activate/  -> activate or escalate (protected user or staff)
      GET  /shield/shields/active/    -> active shield for a pair, or null
      POST /shield/shields/resolve/   -> staff only
      POST /shield/shields/intake/    -> detect + shield + remember (staff / internal)
    """

    def get_permissions(self):
        if self.action in ("resolve", "intake"):
            return [IsSafetyStaff()]
        return [IsAuthenticated()]

    def _pair(self, request, serializer_class, data):
        ser = serializer_class(data=data)
        ser.is_valid(raise_exception=True)
        payload = ser.validated_data
        protected = payload.get("protected_user_id") or acting_user_id(request)
        assert_party_or_staff(request, protected)
        return protected, payload

    @action(detail=False, methods=["post"], url_path="activate")
    def activate(self, request):
        protected, data = self._pair(request, ShieldActivateSerializer, request.data)
        shield = activate_shield(protected, data["counterpart_id"], data["signals"])
        return Response(HarassmentShieldSerializer(shield).data, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path="active")
    def active(self, request):
        protected, data = self._pair(request, ShieldPairSerializer, request.query_params)
        shield = get_active_shield(protected, data["counterpart_id"])
        return Response({"shield": HarassmentShieldSerializer(shield).data if shield else None})

    @action(detail=False, methods=["post"], url_path="resolve")
    def resolve(self, request):
        protected, data = self._pair(request, ShieldResolveSerializer, request.data)
        shield = resolve_shield(protected, data["counterpart_id"], actor=acting_user_id(request), reason=data["reason"])
        return Response(HarassmentShieldSerializer(shield).data)

    @action(detail=False, methods=["post"], url_path="intake")
    def intake(self, request):
        ser = InteractionEventSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = detect_and_shield(interaction_event_from_payload(ser.validated_data))
        return Response({
            "signals": DetectionSignalSerializer(result.signals, many=True).data,
            "shield": HarassmentShieldSerializer(result.shield).data if result.shield else None,
            "behavior_entry_ids": result.behavior_entry_ids,
        })
