# apps/safety/exceptions.py
from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


class RecordNotFound(NotFound):
    default_detail = "No record exists for this user or pair."
    default_code = "record_not_found"


class PreconditionViolation(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The record is not in a state that allows this operation."
    default_code = "precondition_violation"


class ConsentPreconditionError(PreconditionViolation):
    default_detail = "Consent for this pair cannot transition from its current state."
    default_code = "consent_precondition"


def require_ids(**ids):
    """
    Validate required identifiers before any state is read.
    Returns the stripped values in the order given.
    """
    missing = [name for name, value in ids.items() if not str(value or "").strip()]
    if missing:
        raise ValidationError({name: "This identifier is required." for name in missing})
    return [str(value).strip() for value in ids.values()]


def require_distinct_pair(user_a: str, user_b: str):
    if user_a == user_b:
        raise ValidationError("A pair requires two different users.")


def custom_exception_handler(exc, context):
    """
    Thin wrapper around DRF's default handler:
    - Uses default mapping
    - Normalizes payload to {"message": "...", "code": "...", "error": ...}
    """
    resp = drf_exception_handler(exc, context)
    if resp is None:
        return Response(
            {"message": "An unexpected error occurred.", "code": "server_error", "error": str(exc)},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    data = resp.data
    message = None
    if isinstance(data, dict):
        message = data.get("detail") or data.get("message")
    elif isinstance(data, list) and data:
        message = data[0]

    normalized = {
        "message": message or "Request failed.",
        "code": getattr(exc, "default_code", "error"),
        "error": data,
    }
    return Response(normalized, status=resp.status_code)
