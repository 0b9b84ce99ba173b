# apps/safety/collaborators/enforcement.py

import logging

from apps.safety.constants import ACCOUNT_ACTIVE
from apps.safety.collaborators.base import load_collaborator

logger = logging.getLogger(__name__)


class EnforcementSink:
    def apply(self, user_id: str, new_status: str, reason_codes) -> None:
        raise NotImplementedError

    def current_status(self, user_id: str) -> str:
        return ACCOUNT_ACTIVE


class DatabaseEnforcementSink(EnforcementSink):
    def apply(self, user_id, new_status, reason_codes):
        from apps.safety.models import AccountEnforcementState

        AccountEnforcementState.objects.update_or_create(
            user_id=str(user_id),
            defaults={"status": new_status, "reason_codes": list(reason_codes or [])},
        )
        logger.info("[Sinks] enforcement user=%s status=%s reasons=%s", user_id, new_status, reason_codes)

    def current_status(self, user_id):
        from apps.safety.models import AccountEnforcementState

        status = (
            AccountEnforcementState.objects
            .filter(user_id=str(user_id))
            .values_list("status", flat=True)
            .first()
        )
        return status or ACCOUNT_ACTIVE


def get_enforcement_sink() -> EnforcementSink:
    return load_collaborator("ENFORCEMENT_SINK")
