# apps/safety/collaborators/cases.py

import logging

from apps.safety.constants import PRIORITY_MEDIUM
from apps.safety.collaborators.base import load_collaborator

logger = logging.getLogger(__name__)


class CaseSink:
    def open_case(self, subject: str, reporter: str, reason_codes, priority=PRIORITY_MEDIUM, evidence_refs=None) -> str:
        """Open a moderation case and return its id."""
        raise NotImplementedError


class DatabaseCaseSink(CaseSink):
    def open_case(self, subject, reporter, reason_codes, priority=PRIORITY_MEDIUM, evidence_refs=None):
        from apps.safety.models import SafetyCase

        case = SafetyCase.objects.create(
            subject_user_id=str(subject),
            reporter_id=str(reporter),
            reason_codes=list(reason_codes or []),
            priority=priority,
            evidence_refs=list(evidence_refs or []),
        )
        logger.info("[Sinks] case opened id=%s subject=%s priority=%s", case.id, subject, priority)
        return str(case.id)


def get_case_sink() -> CaseSink:
    return load_collaborator("CASE_SINK")
