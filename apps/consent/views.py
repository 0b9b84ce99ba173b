# apps/consent/views.py
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.permissions import acting_user_id, assert_party_or_staff
from apps.consent.serializers import (
    ConsentRecordSerializer,
    ConsentPairSerializer,
    ConsentInitializeSerializer,
    ConsentCheckSerializer,
    ConsentBatchCheckSerializer,
    ConsentCheckResultSerializer,
)
from apps.consent.services.ledger import (
    initialize_consent,
    request_consent,
    pause_consent,
    revoke_consent,
    resume_consent,
    check_consent,
    batch_check_consent,
    get_consent_record,
)


# Consent Record ViewSet -------------------------------------------------------------------
class ConsentRecordViewSet(viewsets.ViewSet):
    """
    Consent ledger endpoints. The caller acts as `user_id` (defaults to self);
    only staff may act for someone else.

      POST /consent/records/initialize/
      POST /consent/records/request/
      POST /consent/records/pause/
      POST /consent/records/revoke/
      POST /consent/records/resume/
      GET  /consent/records/check/?counterpart_id=..&request_type=..
      POST /consent/records/batch-check/
      GET  /consent/records/lookup/?counterpart_id=..
    """
    permission_classes = [IsAuthenticated]

    # ----------------------------
    # Helpers
    # ----------------------------
    def _pair(self, request, serializer_class, data):
        ser = serializer_class(data=data)
        ser.is_valid(raise_exception=True)
        payload = ser.validated_data
        user_id = payload.get("user_id") or acting_user_id(request)
        assert_party_or_staff(request, user_id)
        return user_id, payload

    def _record_response(self, record, http_status=status.HTTP_200_OK):
        return Response(ConsentRecordSerializer(record).data, status=http_status)

    # ----------------------------
    # Lifecycle
    # ----------------------------
    @action(detail=False, methods=["post"], url_path="initialize")
    def initialize(self, request):
        user_id, data = self._pair(request, ConsentInitializeSerializer, request.data)
        record = initialize_consent(
            user_id, data["counterpart_id"],
            initiator=user_id,
            source=data["source"],
        )
        return self._record_response(record, status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="request")
    def request_consent(self, request):
        user_id, data = self._pair(request, ConsentPairSerializer, request.data)
        return self._record_response(request_consent(user_id, data["counterpart_id"]))

    @action(detail=False, methods=["post"], url_path="pause")
    def pause(self, request):
        user_id, data = self._pair(request, ConsentPairSerializer, request.data)
        record = pause_consent(user_id, data["counterpart_id"], actor=acting_user_id(request), reason=data["reason"])
        return self._record_response(record)

    @action(detail=False, methods=["post"], url_path="revoke")
    def revoke(self, request):
        user_id, data = self._pair(request, ConsentPairSerializer, request.data)
        record = revoke_consent(user_id, data["counterpart_id"], actor=acting_user_id(request), reason=data["reason"])
        return self._record_response(record)

    @action(detail=False, methods=["post"], url_path="resume")
    def resume(self, request):
        user_id, data = self._pair(request, ConsentPairSerializer, request.data)
        record = resume_consent(user_id, data["counterpart_id"], actor=acting_user_id(request))
        return self._record_response(record)

    # ----------------------------
    # Reads
    # ----------------------------
    @action(detail=False, methods=["get"], url_path="check")
    def check(self, request):
        user_id, data = self._pair(request, ConsentCheckSerializer, request.query_params)
        result = check_consent(user_id, data["counterpart_id"], data["request_type"])
        return Response(ConsentCheckResultSerializer(result.as_dict()).data)

    @action(detail=False, methods=["post"], url_path="batch-check")
    def batch_check(self, request):
        user_id, data = self._pair(request, ConsentBatchCheckSerializer, request.data)
        results = batch_check_consent(user_id, data["counterpart_ids"], data["request_type"])
        return Response({
            "results": {
                other: ConsentCheckResultSerializer(result.as_dict()).data
                for other, result in results.items()
            }
        })

    @action(detail=False, methods=["get"], url_path="lookup")
    def lookup(self, request):
        user_id, data = self._pair(request, ConsentPairSerializer, request.query_params)
        record = get_consent_record(user_id, data["counterpart_id"])
        if record is None:
            return Response({"detail": "No consent record for this pair.", "record": None}, status=status.HTTP_200_OK)
        return self._record_response(record)
