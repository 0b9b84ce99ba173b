# apps/detection/views.py
from rest_framework import viewsets, mixins, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework.exceptions import NotFound

from common.permissions import IsSafetyStaff, acting_user_id
from apps.detection.models import ConfidenceRule, ModerationFeedback
from apps.detection.serializers import (
    InteractionEventSerializer,
    DetectionSignalSerializer,
    ModerationFeedbackSerializer,
    ConfidenceRuleSerializer,
)
from apps.detection.services.detectors import detect_harassment_signals, interaction_event_from_payload
from apps.detection.services.confidence import record_moderation_feedback, get_confidence_rule


# Detection Signal ViewSet -----------------------------------------------------------------
class DetectionSignalViewSet(viewsets.ViewSet):
    """
    POST /detection/signals/detect/ -> signals for one interaction (nothing persisted)
    """
    permission_classes = [IsAuthenticated]

    @action(detail=False, methods=["post"], url_path="detect")
    def detect(self, request):
        ser = InteractionEventSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        signals = detect_harassment_signals(interaction_event_from_payload(ser.validated_data))
        return Response({"signals": DetectionSignalSerializer(signals, many=True).data})


# Moderation Feedback ViewSet --------------------------------------------------------------
class ModerationFeedbackViewSet(mixins.CreateModelMixin, mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = ModerationFeedbackSerializer
    permission_classes = [IsSafetyStaff]
    queryset = ModerationFeedback.objects.all().order_by("-created_at")

    def create(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        feedback = record_moderation_feedback(
            case_id=ser.validated_data["case_id"],
            event_type=ser.validated_data["event_type"],
            outcome=ser.validated_data["outcome"],
            moderator=acting_user_id(request),
            notes=ser.validated_data.get("notes", ""),
        )
        return Response(self.get_serializer(feedback).data, status=status.HTTP_201_CREATED)


# Confidence Rule ViewSet ------------------------------------------------------------------
class ConfidenceRuleViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = ConfidenceRuleSerializer
    permission_classes = [IsAuthenticated]
    queryset = ConfidenceRule.objects.all().order_by("event_type")
    lookup_field = "event_type"

    def retrieve(self, request, *args, **kwargs):
        rule = get_confidence_rule(kwargs.get("event_type"))
        if rule is None:
            raise NotFound("No confidence rule for this event type yet.")
        return Response(self.get_serializer(rule).data)
