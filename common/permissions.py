# common/permissions.py

from rest_framework import permissions
from rest_framework.exceptions import PermissionDenied


# Is Safety Staff ------------------------------------------------------------------------------------------------
class IsSafetyStaff(permissions.BasePermission):
    """Moderator-only endpoints (resolve shield, execute triggers, feedback)."""
    message = "Only trust & safety staff can perform this action."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_staff)


# Acting user helpers --------------------------------------------------------------------------------------------
def acting_user_id(request) -> str:
    return str(request.user.pk)


def assert_party_or_staff(request, *user_ids):
    """Non-staff callers may only act on records they are a party to."""
    if request.user.is_staff:
        return
    if acting_user_id(request) not in {str(u).strip() for u in user_ids if u is not None}:
        raise PermissionDenied("You can only act on your own relationships.")
