# apps/risk/views.py
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.permissions import IsSafetyStaff, acting_user_id, assert_party_or_staff
from apps.risk.serializers import (
    RiskProfileSerializer,
    ProfileUserSerializer,
    ExecuteTriggersSerializer,
    AssessRiskSerializer,
)
from apps.risk.services.evaluator import evaluate_risk_profile, execute_risk_triggers, get_risk_profile
from apps.risk.services.orchestrator import assess_risk


# Risk Profile ViewSet ---------------------------------------------------------------------
class RiskProfileViewSet(viewsets.ViewSet):
    """
      POST /risk/profiles/evaluate/          -> rebuild a profile (self or staff)
      POST /risk/profiles/execute-triggers/  -> staff only
      GET  /risk/profiles/lookup/            -> profile or null (self or staff)
    """

    def get_permissions(self):
        if self.action == "execute_triggers":
            return [IsSafetyStaff()]
        return [IsAuthenticated()]

    def _subject(self, request, data):
        ser = ProfileUserSerializer(data=data)
        ser.is_valid(raise_exception=True)
        user_id = ser.validated_data.get("user_id") or acting_user_id(request)
        assert_party_or_staff(request, user_id)
        return user_id

    @action(detail=False, methods=["post"], url_path="evaluate")
    def evaluate(self, request):
        user_id = self._subject(request, request.data)
        evaluation = evaluate_risk_profile(user_id)
        return Response({
            "profile": RiskProfileSerializer(evaluation.profile).data,
            "recommended_actions": list(evaluation.recommended_actions),
            "level_changed": evaluation.level_changed,
        })

    @action(detail=False, methods=["post"], url_path="execute-triggers")
    def execute_triggers(self, request):
        ser = ExecuteTriggersSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = execute_risk_triggers(ser.validated_data["user_id"])
        return Response(result.as_dict())

    @action(detail=False, methods=["get"], url_path="lookup")
    def lookup(self, request):
        user_id = self._subject(request, request.query_params)
        profile = get_risk_profile(user_id)
        return Response({"profile": RiskProfileSerializer(profile).data if profile else None})


# Risk Assessment ViewSet ------------------------------------------------------------------
class RiskAssessmentViewSet(viewsets.ViewSet):
    """
      POST /risk/assess/  -> orchestrated assessment before a sensitive action
    """
    permission_classes = [IsAuthenticated]

    @method_decorator(ratelimit(key='user_or_ip', rate='30/m', method='POST', block=True))
    def create(self, request):
        ser = AssessRiskSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        user_id = data.get("user_id") or acting_user_id(request)
        assert_party_or_staff(request, user_id)

        assessment = assess_risk(user_id, data["context"], data["counterpart_id"])
        return Response(assessment.as_dict(), status=status.HTTP_200_OK)
