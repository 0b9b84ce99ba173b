from dataclasses import replace

from django.conf import settings
from django.test import TestCase, SimpleTestCase, override_settings
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from apps.safety.exceptions import RecordNotFound, PreconditionViolation
from apps.safety.levels import RiskLevel
from apps.safety.models import SafetyCase, SafetyNotification
from apps.safety.policy import SafetyPolicy, ShieldPolicy
from apps.consent.constants import REVOKED, PENDING
from apps.consent.services.ledger import request_consent, get_consent_record
from apps.detection.constants import SPAM_BURST, TRAUMA_RISK_PHRASE, PRESSURE_LANGUAGE, BLOCK_EVASION
from apps.detection.models import ConfidenceRule
from apps.detection.services.detectors import InteractionEvent
from apps.behavior.models import BehaviorLogEntry
from apps.behavior.constants import SPAM, TRAUMA_RISK
from apps.shield.models import HarassmentShield, ShieldAction
from apps.shield.services.transitions import plan_escalation
from apps.shield.services.shield import (
    activate_shield,
    escalate_shield,
    get_active_shield,
    resolve_shield,
    get_shield_signal_types,
)
from apps.shield.services.intake import detect_and_shield
from apps.shield.constants import (
    ACTION_ENABLE_SLOW_MODE, ACTION_ENABLE_REPLY_ONLY, ACTION_HARD_BLOCK,
    ACTION_REVOKE_CONSENT, ACTION_OPEN_CASE, ACTION_CRITICAL_ESCALATION,
    ACTION_SIGNALS_RECORDED, ACTION_RESOLVED, ACTION_CONSENT_RESTORED,
    EFFECT_REVOKE_CONSENT, EFFECT_OPEN_CASE,
)

CustomUser = get_user_model()

NO_FLAGS = {"slow_mode": False, "reply_only": False, "hard_block": False}


def _signal(signal_type, confidence):
    return {"signal_type": signal_type, "confidence": confidence, "evidence": {}}


def _actions(shield):
    return list(ShieldAction.objects.filter(shield=shield).values_list("action", flat=True))


class EscalationPlanTests(SimpleTestCase):
    def test_low_enables_slow_mode(self):
        plan = plan_escalation(RiskLevel.NONE, NO_FLAGS, 13.5)
        self.assertEqual(plan.level, RiskLevel.LOW)
        self.assertEqual(plan.actions, (ACTION_ENABLE_SLOW_MODE,))
        self.assertTrue(plan.flags["slow_mode"])

    def test_medium_switches_to_reply_only(self):
        plan = plan_escalation(RiskLevel.LOW, {"slow_mode": True}, 30)
        self.assertEqual(plan.actions, (ACTION_ENABLE_REPLY_ONLY,))
        self.assertEqual(plan.flags, {"slow_mode": False, "reply_only": True, "hard_block": False})

    def test_jump_to_critical_runs_every_step_in_order(self):
        plan = plan_escalation(RiskLevel.LOW, {"slow_mode": True}, 77)
        self.assertEqual(plan.level, RiskLevel.CRITICAL)
        self.assertEqual(plan.actions, (
            ACTION_ENABLE_REPLY_ONLY,
            ACTION_HARD_BLOCK, ACTION_REVOKE_CONSENT, ACTION_OPEN_CASE,
            ACTION_CRITICAL_ESCALATION,
        ))
        self.assertIn(EFFECT_REVOKE_CONSENT, plan.effects)
        self.assertIn(EFFECT_OPEN_CASE, plan.effects)
        self.assertTrue(plan.flags["hard_block"])

    def test_never_downgrades(self):
        plan = plan_escalation(RiskLevel.HIGH, {"reply_only": True, "hard_block": True}, 5)
        self.assertEqual(plan.level, RiskLevel.HIGH)
        self.assertEqual(plan.actions, ())
        self.assertTrue(plan.flags["hard_block"])


class ShieldServiceTests(TestCase):
    def test_spam_burst_alone_is_low(self):
        shield = activate_shield("victim", "sender", [_signal(SPAM_BURST, 0.9)])
        self.assertEqual(shield.level, RiskLevel.LOW)
        self.assertEqual(shield.risk_score, 13.5)
        self.assertTrue(shield.slow_mode)
        self.assertFalse(shield.hard_block)
        self.assertIsNone(shield.case_id)
        self.assertEqual(SafetyCase.objects.count(), 0)

    def test_high_revokes_consent_and_opens_one_case(self):
        request_consent("sender", "victim")
        shield = activate_shield("victim", "sender", [_signal(BLOCK_EVASION, 0.95), _signal(SPAM_BURST, 0.9)])

        self.assertEqual(shield.level, RiskLevel.HIGH)
        self.assertTrue(shield.hard_block)
        self.assertTrue(shield.consent_revoked)
        self.assertEqual(get_consent_record("victim", "sender").state, REVOKED)
        self.assertEqual(SafetyCase.objects.get().subject_user_id, "sender")
        self.assertEqual(str(SafetyCase.objects.get().id), shield.case_id)
        self.assertTrue(SafetyNotification.objects.filter(user_id="victim").exists())

        # More signals later: still a single case
        shield = escalate_shield("victim", "sender", [_signal(TRAUMA_RISK_PHRASE, 1.0)])
        self.assertEqual(shield.level, RiskLevel.CRITICAL)
        self.assertEqual(SafetyCase.objects.count(), 1)

    def test_case_claimed_by_concurrent_writer_is_not_reopened(self):
        shield = activate_shield("victim", "sender", [_signal(SPAM_BURST, 0.9)])
        # Another escalation holds the case slot and is still talking to the sink
        HarassmentShield.objects.filter(pk=shield.pk).update(case_requested_at=timezone.now())

        shield = escalate_shield("victim", "sender", [_signal(BLOCK_EVASION, 0.95)])

        self.assertEqual(shield.level, RiskLevel.HIGH)
        self.assertIsNone(shield.case_id)
        self.assertEqual(SafetyCase.objects.count(), 0)

    def test_failed_case_creation_is_retried_once(self):
        broken = {**settings.SAFETY_COLLABORATORS, "CASE_SINK": "apps.safety.collaborators.cases.CaseSink"}
        with override_settings(SAFETY_COLLABORATORS=broken):
            shield = activate_shield("victim", "sender", [_signal(BLOCK_EVASION, 0.95), _signal(SPAM_BURST, 0.9)])
        self.assertEqual(shield.level, RiskLevel.HIGH)
        self.assertIsNone(HarassmentShield.objects.get(pk=shield.pk).case_requested_at)

        shield = escalate_shield("victim", "sender", [_signal(SPAM_BURST, 0.1)])
        escalate_shield("victim", "sender", [_signal(SPAM_BURST, 0.1)])

        self.assertEqual(SafetyCase.objects.count(), 1)
        self.assertEqual(str(SafetyCase.objects.get().id), shield.case_id)

    def test_revocation_creates_closed_relationship_when_none_exists(self):
        activate_shield("victim", "sender", [_signal(TRAUMA_RISK_PHRASE, 1.0)])
        self.assertEqual(get_consent_record("victim", "sender").state, REVOKED)

    def test_level_is_monotonic(self):
        activate_shield("victim", "sender", [_signal(PRESSURE_LANGUAGE, 0.75), _signal(PRESSURE_LANGUAGE, 0.75)])
        levels = [get_active_shield("victim", "sender").level]
        for _ in range(3):
            levels.append(escalate_shield("victim", "sender", [_signal(SPAM_BURST, 0.1)]).level)
        self.assertEqual(levels, sorted(levels))
        self.assertIn(ACTION_SIGNALS_RECORDED, _actions(get_active_shield("victim", "sender")))

    def test_escalate_missing_shield(self):
        with self.assertRaises(RecordNotFound):
            escalate_shield("victim", "sender", [_signal(SPAM_BURST, 0.9)])

    def test_score_capped_at_100(self):
        shield = activate_shield("victim", "sender", [_signal(TRAUMA_RISK_PHRASE, 1.0)] * 5)
        self.assertEqual(shield.risk_score, 100.0)

    def test_alternate_thresholds(self):
        policy = replace(SafetyPolicy(), shield=ShieldPolicy(level_thresholds=((10.0, "CRITICAL"),)))
        shield = activate_shield("victim", "sender", [_signal(SPAM_BURST, 0.9)], policy=policy)
        self.assertEqual(shield.level, RiskLevel.CRITICAL)

    def test_resolve_keeps_level_and_flags(self):
        activate_shield("victim", "sender", [_signal(PRESSURE_LANGUAGE, 0.75), _signal(SPAM_BURST, 0.9)])
        shield = resolve_shield("victim", "sender", actor="mod-1", reason="talked it out")

        self.assertFalse(shield.is_active)
        self.assertEqual(shield.level, RiskLevel.MEDIUM)
        self.assertTrue(shield.reply_only)
        self.assertIsNone(get_active_shield("victim", "sender"))
        self.assertEqual(_actions(shield)[-1], ACTION_RESOLVED)

        with self.assertRaises(PreconditionViolation):
            resolve_shield("victim", "sender", actor="mod-1")

    def test_resolve_missing(self):
        with self.assertRaises(RecordNotFound):
            resolve_shield("victim", "sender", actor="mod-1")

    def test_resolve_can_restore_consent_by_policy(self):
        activate_shield("victim", "sender", [_signal(TRAUMA_RISK_PHRASE, 1.0)])
        policy = replace(SafetyPolicy(), shield=ShieldPolicy(restore_consent_on_resolve=True))
        shield = resolve_shield("victim", "sender", actor="mod-1", reason="false alarm", policy=policy)
        self.assertEqual(get_consent_record("victim", "sender").state, PENDING)
        self.assertIn(ACTION_CONSENT_RESTORED, _actions(shield))

    def test_activation_after_resolve_starts_fresh(self):
        activate_shield("victim", "sender", [_signal(PRESSURE_LANGUAGE, 0.75), _signal(SPAM_BURST, 0.9)])
        resolve_shield("victim", "sender", actor="mod-1", reason="ok")

        shield = activate_shield("victim", "sender", [_signal(SPAM_BURST, 0.9)])
        self.assertTrue(shield.is_active)
        self.assertEqual(shield.level, RiskLevel.LOW)
        self.assertEqual(shield.risk_score, 13.5)
        self.assertEqual(HarassmentShield.objects.count(), 1)

    def test_signal_types_for_pair(self):
        activate_shield("victim", "sender", [_signal(SPAM_BURST, 0.9), _signal(PRESSURE_LANGUAGE, 0.75)])
        self.assertEqual(get_shield_signal_types("victim", "sender"), [PRESSURE_LANGUAGE, SPAM_BURST])
        self.assertEqual(get_shield_signal_types("sender", "victim"), [])


class DetectAndShieldTests(TestCase):
    def test_burst_then_trauma_phrase(self):
        burst = InteractionEvent("sender", "victim", text="hi", messages_last_minute=10)
        first = detect_and_shield(burst)

        self.assertEqual([s.signal_type for s in first.signals], [SPAM_BURST])
        self.assertEqual(first.signals[0].confidence, 0.9)
        self.assertEqual(first.shield.level, RiskLevel.LOW)
        self.assertEqual(first.shield.risk_score, 13.5)
        self.assertTrue(first.shield.slow_mode)
        self.assertIsNone(first.shield.case_id)

        # Burst still running when the trauma phrase arrives
        later = InteractionEvent("sender", "victim", text="kill yourself", messages_last_minute=12)
        second = detect_and_shield(later)

        self.assertEqual([s.signal_type for s in second.signals], [SPAM_BURST, TRAUMA_RISK_PHRASE])
        shield = second.shield
        self.assertGreaterEqual(shield.risk_score, 75)
        self.assertEqual(shield.level, RiskLevel.CRITICAL)
        self.assertTrue(shield.hard_block)
        self.assertEqual(get_consent_record("sender", "victim").state, REVOKED)
        self.assertEqual(SafetyCase.objects.count(), 1)

        logged = list(BehaviorLogEntry.objects.filter(user_id="sender").values_list("event_type", flat=True))
        self.assertEqual(sorted(logged), [SPAM, SPAM, TRAUMA_RISK])

    def test_trauma_phrase_after_burst_is_high(self):
        detect_and_shield(InteractionEvent("sender", "victim", text="hi", messages_last_minute=10))
        result = detect_and_shield(InteractionEvent("sender", "victim", text="kill yourself"))

        self.assertEqual([s.signal_type for s in result.signals], [TRAUMA_RISK_PHRASE])
        # 15 x 0.9 for the earlier burst + 50 x 1.0 for the phrase
        self.assertEqual(result.shield.risk_score, 63.5)
        self.assertEqual(result.shield.level, RiskLevel.HIGH)
        self.assertTrue(result.shield.hard_block)
        self.assertEqual(get_consent_record("sender", "victim").state, REVOKED)
        self.assertEqual(SafetyCase.objects.count(), 1)

    def test_trauma_phrase_ignores_learned_confidence(self):
        ConfidenceRule.objects.create(event_type=TRAUMA_RISK_PHRASE, base_confidence=0.7, current_confidence=0.1)
        ConfidenceRule.objects.create(event_type=SPAM_BURST, base_confidence=0.9, current_confidence=0.45)

        result = detect_and_shield(InteractionEvent("sender", "victim", text="kill yourself", messages_last_minute=10))

        confidence = {s.signal_type: s.confidence for s in result.signals}
        self.assertEqual(confidence[TRAUMA_RISK_PHRASE], 1.0)
        self.assertAlmostEqual(confidence[SPAM_BURST], 0.45)
        self.assertEqual(result.shield.level, RiskLevel.HIGH)

    def test_clean_message_does_nothing(self):
        result = detect_and_shield(InteractionEvent("sender", "victim", text="good morning"))
        self.assertEqual(result.signals, [])
        self.assertIsNone(result.shield)
        self.assertFalse(HarassmentShield.objects.exists())


class ShieldApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(username="victim", password="pw-12345")
        self.staff = CustomUser.objects.create_user(username="moderator", password="pw-12345", is_staff=True)
        self.me = str(self.user.pk)

    def test_activate_and_lookup(self):
        self.client.force_authenticate(self.user)
        resp = self.client.post(
            "/api/shield/shields/activate/",
            {"counterpart_id": "sender", "signals": [_signal(SPAM_BURST, 0.9)]},
            format="json",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["level"], "LOW")

        resp = self.client.get("/api/shield/shields/active/", {"counterpart_id": "sender"})
        self.assertEqual(resp.data["shield"]["protected_user_id"], self.me)

    def test_resolve_is_staff_only(self):
        activate_shield(self.me, "sender", [_signal(SPAM_BURST, 0.9)])
        payload = {"protected_user_id": self.me, "counterpart_id": "sender", "reason": "resolved"}

        self.client.force_authenticate(self.user)
        self.assertEqual(self.client.post("/api/shield/shields/resolve/", payload, format="json").status_code, 403)

        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/shield/shields/resolve/", payload, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.data["is_active"])

        resp = self.client.post("/api/shield/shields/resolve/", payload, format="json")
        self.assertEqual(resp.status_code, 409)

    def test_intake_endpoint(self):
        self.client.force_authenticate(self.staff)
        resp = self.client.post(
            "/api/shield/shields/intake/",
            {"sender_id": "sender", "recipient_id": "victim", "text": "kill yourself"},
            format="json",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["shield"]["level"], "HIGH")
