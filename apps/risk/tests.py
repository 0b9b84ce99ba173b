import asyncio
from dataclasses import replace
from datetime import timedelta

from django.test import TestCase, SimpleTestCase, override_settings
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from apps.safety.constants import (
    ACCOUNT_HARD_RESTRICTED,
    ACCOUNT_SUSPENDED,
    ACCOUNT_VERIFICATION_REQUIRED,
    PRIORITY_CRITICAL,
    PRIORITY_HIGH,
)
from apps.safety.exceptions import RecordNotFound
from apps.safety.levels import RiskLevel
from apps.safety.models import SafetyAuditLog, SafetyCase, SafetyNotification, AccountEnforcementState
from apps.safety.policy import SafetyPolicy, OrchestratorPolicy
from apps.safety.collaborators.enforcement import get_enforcement_sink
from apps.consent.constants import ACTIVE_CONSENT, PAUSED, REVOKED
from apps.consent.services.ledger import request_consent, revoke_consent, get_consent_record
from apps.detection.constants import SPAM_BURST, COORDINATED_HARASSMENT
from apps.behavior.constants import (
    HARASSMENT, BAN_EVASION, FRAUD_ATTEMPT, SPAM,
    TREND_STABLE, TREND_WORSENING, TREND_IMPROVING,
)
from apps.behavior.services.memory import BehaviorPattern, log_behavior_event
from apps.shield.models import ShieldSignal
from apps.shield.services.shield import activate_shield, get_active_shield
from apps.risk.models import RiskProfileTransition, RiskAssessmentLog
from apps.risk.services.evaluator import (
    compute_triggers,
    frequency_multiplier,
    evaluate_risk_profile,
    execute_risk_triggers,
    get_risk_profile,
)
from apps.risk.services.orchestrator import RiskOrchestrator, assess_risk
from apps.risk.services.providers import (
    ProviderSignal,
    SignalProvider,
    EnforcementStateProvider,
    BehaviorPatternProvider,
    ConsentViolationProvider,
    TrustEngineProvider,
    NSFWClassifierProvider,
    FraudAttemptProvider,
    RegionSafetyProvider,
)
from apps.risk.constants import (
    FREQUENCY_MULTIPLIERS,
    RECOMMEND_ACCOUNT_LOCKDOWN,
    RECOMMEND_REVALIDATE_CONSENT,
    RECOMMEND_ENABLE_SHIELD,
    RECOMMEND_MONITOR,
    FLAG_EVASION_DETECTED,
    FLAG_WORSENING_TREND,
    SOURCE_TRUST_ENGINE,
    SOURCE_ENFORCEMENT_STATE,
    SOURCE_NSFW_CLASSIFIER,
    SOURCE_BEHAVIOR_PATTERNS,
    SOURCE_FRAUD_ATTEMPTS,
    SOURCE_CONSENT_VIOLATIONS,
    CONTEXT_MESSAGE,
    CONTEXT_CALL_REQUEST,
    ACTION_NO_ACTION,
    ACTION_SOFT_SAFETY_WARNING,
    ACTION_CONSENT_RECONFIRM,
    ACTION_ENABLE_HARASSMENT_SHIELD,
    ACTION_QUEUE_FOR_REVIEW,
    ACTION_IMMEDIATE_LOCKDOWN,
)

CustomUser = get_user_model()


def _pattern(event_type, frequency, trend=TREND_STABLE, days_ago=1, confidence=0.8):
    last = timezone.now() - timedelta(days=days_ago)
    return BehaviorPattern(
        event_type=event_type,
        frequency=frequency,
        avg_interval_days=2.0,
        first_occurrence=last - timedelta(days=2 * frequency),
        last_occurrence=last,
        mean_confidence=confidence,
        trend=trend,
    )


class FakeProvider(SignalProvider):
    def __init__(self, source, level, confidence=1.0):
        self.source = source
        self.level = level
        self.confidence = confidence

    async def fetch(self, user_id, counterpart_id=None):
        return ProviderSignal.found(self.source, self.level, self.confidence, {"fake": True})


class SlowProvider(SignalProvider):
    source = "SLOW"

    async def fetch(self, user_id, counterpart_id=None):
        await asyncio.sleep(5)
        return ProviderSignal.found(self.source, RiskLevel.CRITICAL, 1.0)


class BrokenProvider(SignalProvider):
    source = "BROKEN"

    async def fetch(self, user_id, counterpart_id=None):
        raise ConnectionError("provider down")


# ---------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------
class ScoringTests(SimpleTestCase):
    def test_frequency_multiplier_bands(self):
        self.assertEqual(frequency_multiplier(1, FREQUENCY_MULTIPLIERS), 1.0)
        self.assertEqual(frequency_multiplier(3, FREQUENCY_MULTIPLIERS), 1.25)
        self.assertEqual(frequency_multiplier(4, FREQUENCY_MULTIPLIERS), 1.5)
        self.assertEqual(frequency_multiplier(9, FREQUENCY_MULTIPLIERS), 1.75)
        self.assertEqual(frequency_multiplier(12, FREQUENCY_MULTIPLIERS), 2.0)

    def test_evasion_locks_down_at_any_level(self):
        triggers = compute_triggers({BAN_EVASION}, RiskLevel.LOW)
        self.assertTrue(triggers["can_trigger_account_lockdown"])
        self.assertFalse(triggers["can_trigger_moderator_review"])

    def test_fraud_needs_high_for_verification(self):
        self.assertFalse(compute_triggers({FRAUD_ATTEMPT}, RiskLevel.MEDIUM)["can_trigger_forced_verification"])
        self.assertTrue(compute_triggers({FRAUD_ATTEMPT}, RiskLevel.HIGH)["can_trigger_forced_verification"])


class RiskProfileEvaluationTests(TestCase):
    def test_ban_evasion_worsening_triggers_lockdown(self):
        evaluation = evaluate_risk_profile("user-1", patterns=[_pattern(BAN_EVASION, 4, TREND_WORSENING, days_ago=90)])
        profile = evaluation.profile

        # 30 x 1.5 x 1.5 x 0.8
        self.assertEqual(profile.score, 54.0)
        self.assertEqual(profile.level, RiskLevel.HIGH)
        self.assertTrue(profile.can_trigger_account_lockdown)
        self.assertIn(RECOMMEND_ACCOUNT_LOCKDOWN, evaluation.recommended_actions)
        self.assertIn(FLAG_EVASION_DETECTED, profile.flags)
        self.assertIn(FLAG_WORSENING_TREND, profile.flags)

    def test_relationship_pattern_at_medium(self):
        evaluation = evaluate_risk_profile("user-1", patterns=[_pattern(HARASSMENT, 5)])
        profile = evaluation.profile

        # 20 x 1.5 x 1.0 x 1.3
        self.assertEqual(profile.score, 39.0)
        self.assertEqual(profile.level, RiskLevel.MEDIUM)
        self.assertTrue(profile.can_trigger_consent_revalidation)
        self.assertTrue(profile.can_trigger_harassment_shield)
        self.assertFalse(profile.can_trigger_moderator_review)
        self.assertEqual(evaluation.recommended_actions, (RECOMMEND_REVALIDATE_CONSENT, RECOMMEND_ENABLE_SHIELD))

    def test_low_score_only_monitors(self):
        evaluation = evaluate_risk_profile("user-1", patterns=[_pattern(SPAM, 1, TREND_IMPROVING, days_ago=30)])
        self.assertEqual(evaluation.recommended_actions, (RECOMMEND_MONITOR,))
        self.assertEqual(evaluation.profile.level, RiskLevel.NONE)

    def test_transition_recorded_only_when_level_moves(self):
        evaluate_risk_profile("user-1", patterns=[_pattern(HARASSMENT, 5)])
        evaluate_risk_profile("user-1", patterns=[_pattern(HARASSMENT, 5)])
        second = evaluate_risk_profile("user-1", patterns=[])

        transitions = list(RiskProfileTransition.objects.filter(profile__user_id="user-1").values_list("from_level", "to_level"))
        self.assertEqual(transitions, [(RiskLevel.NONE, RiskLevel.MEDIUM), (RiskLevel.MEDIUM, RiskLevel.NONE)])
        self.assertTrue(second.level_changed)
        self.assertFalse(second.profile.can_trigger_consent_revalidation)

    def test_reads_behavior_memory(self):
        now = timezone.now()
        for days in (6, 4, 2):
            log_behavior_event("user-1", HARASSMENT, counterpart_id="user-2", detected_at=now - timedelta(days=days))

        profile = evaluate_risk_profile("user-1", now=now).profile

        self.assertEqual(profile.patterns[0]["event_type"], HARASSMENT)
        self.assertEqual(profile.patterns[0]["frequency"], 3)
        self.assertGreater(profile.score, 0)
        self.assertGreater(profile.confidence, 0)

    def test_lone_contact_does_not_arm_shield(self):
        now = timezone.now()
        log_behavior_event("user-1", SPAM, counterpart_id="user-2", detected_at=now - timedelta(hours=1))

        profile = evaluate_risk_profile("user-1", now=now).profile

        self.assertEqual(profile.pattern_types, {SPAM})
        self.assertEqual(profile.level, RiskLevel.NONE)
        self.assertFalse(profile.can_trigger_harassment_shield)

    def test_get_risk_profile(self):
        self.assertIsNone(get_risk_profile("nobody"))
        evaluate_risk_profile("user-1", patterns=[])
        self.assertEqual(get_risk_profile("user-1").user_id, "user-1")


class ExecuteRiskTriggersTests(TestCase):
    def setUp(self):
        request_consent("user-1", "friend")
        self.evaluation = evaluate_risk_profile(
            "user-1",
            patterns=[_pattern(FRAUD_ATTEMPT, 10, TREND_WORSENING), _pattern(HARASSMENT, 4), _pattern(BAN_EVASION, 1)],
        )

    def test_runs_every_trigger_once(self):
        self.assertEqual(self.evaluation.profile.level, RiskLevel.CRITICAL)

        result = execute_risk_triggers("user-1")

        self.assertEqual(result.paused_pairs, (get_consent_record("user-1", "friend").pair_key,))
        self.assertEqual(get_consent_record("user-1", "friend").state, PAUSED)
        self.assertIsNotNone(result.review_case_id)
        self.assertEqual(SafetyCase.objects.get(pk=result.review_case_id).priority, PRIORITY_CRITICAL)
        self.assertTrue(result.verification_requested)
        self.assertEqual(result.lockdown_status, ACCOUNT_SUSPENDED)
        self.assertEqual(get_enforcement_sink().current_status("user-1"), ACCOUNT_SUSPENDED)
        self.assertEqual(result.failed_steps, ())

        again = execute_risk_triggers("user-1")
        self.assertEqual(again.review_case_id, result.review_case_id)
        self.assertFalse(again.verification_requested)
        self.assertIsNone(again.lockdown_status)
        self.assertEqual(SafetyCase.objects.filter(subject_user_id="user-1").count(), 1)

    def test_lockdown_below_critical_is_hard_restriction(self):
        evaluate_risk_profile("user-3", patterns=[_pattern(BAN_EVASION, 1, days_ago=30)])
        result = execute_risk_triggers("user-3")

        self.assertEqual(result.lockdown_status, ACCOUNT_HARD_RESTRICTED)
        self.assertIsNone(result.review_case_id)
        self.assertFalse(result.verification_requested)

    @override_settings(SAFETY_COLLABORATORS={
        "NOTIFICATION_SINK": "apps.safety.collaborators.notifications.OutboxNotificationSink",
        "CASE_SINK": "apps.safety.collaborators.cases.CaseSink",
        "ENFORCEMENT_SINK": "apps.safety.collaborators.enforcement.DatabaseEnforcementSink",
        "AUDIT_SINK": "apps.safety.collaborators.audit.DatabaseAuditSink",
    })
    def test_failing_step_does_not_stop_the_rest(self):
        result = execute_risk_triggers("user-1")

        self.assertIn("moderator_review", result.failed_steps)
        self.assertIsNone(result.review_case_id)
        self.assertEqual(result.lockdown_status, ACCOUNT_SUSPENDED)
        self.assertEqual(get_consent_record("user-1", "friend").state, PAUSED)

    def test_missing_profile(self):
        with self.assertRaises(RecordNotFound):
            execute_risk_triggers("nobody")


# ---------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------
class RiskOrchestratorTests(TestCase):
    def test_no_signals_no_action(self):
        assessment = assess_risk("user-1", CONTEXT_MESSAGE, providers=[])

        self.assertEqual(assessment.action, ACTION_NO_ACTION)
        self.assertEqual(assessment.aggregated_risk, 0.0)
        self.assertEqual(assessment.reasoning, "No risk signals detected")
        self.assertFalse(assessment.notify_user)
        self.assertTrue(RiskAssessmentLog.objects.filter(pk=assessment.log_id).exists())
        self.assertTrue(SafetyAuditLog.objects.filter(event_type="RISK_ORCHESTRATION_TRIGGERED", user_id="user-1").exists())

    def test_aggregate_is_capped(self):
        orchestrator = RiskOrchestrator(providers=[])
        signals = [ProviderSignal.found(f"S{i}", RiskLevel.CRITICAL, 1.0) for i in range(5)]
        self.assertEqual(orchestrator.aggregate(signals), 100.0)

    def test_slow_and_broken_providers_count_as_absent(self):
        policy = replace(SafetyPolicy(), orchestrator=OrchestratorPolicy(provider_timeout_seconds=0.05))
        assessment = assess_risk(
            "user-1", CONTEXT_MESSAGE,
            providers=[SlowProvider(), BrokenProvider(), FakeProvider(SOURCE_NSFW_CLASSIFIER, RiskLevel.HIGH, 0.8)],
            policy=policy,
        )

        self.assertEqual([s.source for s in assessment.signals], [SOURCE_NSFW_CLASSIFIER])
        self.assertEqual(assessment.aggregated_risk, 20.0)
        self.assertEqual(assessment.action, ACTION_SOFT_SAFETY_WARNING)
        self.assertFalse(assessment.notify_user)
        self.assertFalse(SafetyNotification.objects.filter(user_id="user-1").exists())

    def test_immediate_lockdown(self):
        assessment = assess_risk("user-1", CONTEXT_MESSAGE, providers=[
            FakeProvider(SOURCE_TRUST_ENGINE, RiskLevel.CRITICAL),
            FakeProvider(SOURCE_FRAUD_ATTEMPTS, RiskLevel.CRITICAL),
            FakeProvider(SOURCE_ENFORCEMENT_STATE, RiskLevel.HIGH, 0.9),
        ])

        self.assertEqual(assessment.aggregated_risk, 100.0)
        self.assertEqual(assessment.action, ACTION_IMMEDIATE_LOCKDOWN)
        self.assertTrue(assessment.enforcement_changed)
        self.assertEqual(AccountEnforcementState.objects.get(user_id="user-1").status, ACCOUNT_HARD_RESTRICTED)
        self.assertEqual(SafetyCase.objects.get(pk=assessment.case_id).priority, PRIORITY_CRITICAL)
        notice = SafetyNotification.objects.get(user_id="user-1")
        self.assertEqual(notice.priority, PRIORITY_HIGH)

    def test_harassment_signals_activate_shield_for_counterpart(self):
        assessment = assess_risk("sender", CONTEXT_MESSAGE, "victim", providers=[
            FakeProvider(SOURCE_BEHAVIOR_PATTERNS, RiskLevel.HIGH),
            FakeProvider(SOURCE_CONSENT_VIOLATIONS, RiskLevel.HIGH),
            FakeProvider(SOURCE_ENFORCEMENT_STATE, RiskLevel.CRITICAL, 0.5),
        ])

        self.assertEqual(assessment.aggregated_risk, 70.0)
        self.assertEqual(assessment.action, ACTION_ENABLE_HARASSMENT_SHIELD)
        self.assertTrue(assessment.shield_activated)
        self.assertIsNone(assessment.case_id)

        shield = get_active_shield("victim", "sender")
        self.assertEqual(shield.level, RiskLevel.HIGH)
        types = set(ShieldSignal.objects.filter(shield=shield).values_list("signal_type", flat=True))
        self.assertEqual(types, {COORDINATED_HARASSMENT})

    def test_high_risk_without_counterpart_is_queued(self):
        assessment = assess_risk("user-1", CONTEXT_MESSAGE, providers=[
            FakeProvider(SOURCE_TRUST_ENGINE, RiskLevel.CRITICAL),
            FakeProvider(SOURCE_FRAUD_ATTEMPTS, RiskLevel.HIGH),
            FakeProvider(SOURCE_NSFW_CLASSIFIER, RiskLevel.LOW),
        ])

        self.assertEqual(assessment.aggregated_risk, 70.0)
        self.assertEqual(assessment.action, ACTION_QUEUE_FOR_REVIEW)
        self.assertEqual(SafetyCase.objects.get(pk=assessment.case_id).priority, PRIORITY_HIGH)
        self.assertFalse(assessment.enforcement_changed)

    def test_sensitive_context_pauses_consent(self):
        request_consent("user-1", "user-2")
        assessment = assess_risk("user-1", CONTEXT_CALL_REQUEST, "user-2", providers=[
            FakeProvider(SOURCE_TRUST_ENGINE, RiskLevel.CRITICAL),
        ])

        self.assertEqual(assessment.action, ACTION_CONSENT_RECONFIRM)
        self.assertTrue(assessment.consent_paused)
        self.assertTrue(assessment.notify_user)
        self.assertEqual(get_consent_record("user-1", "user-2").state, PAUSED)

    def test_consent_reconfirm_without_record_still_completes(self):
        assessment = assess_risk("user-1", CONTEXT_CALL_REQUEST, "user-2", providers=[
            FakeProvider(SOURCE_TRUST_ENGINE, RiskLevel.CRITICAL),
        ])
        self.assertEqual(assessment.action, ACTION_CONSENT_RECONFIRM)
        self.assertFalse(assessment.consent_paused)

    def test_medium_risk_in_message_context_warns(self):
        request_consent("user-1", "user-2")
        assessment = assess_risk("user-1", CONTEXT_MESSAGE, "user-2", providers=[
            FakeProvider(SOURCE_TRUST_ENGINE, RiskLevel.CRITICAL),
        ])

        self.assertEqual(assessment.action, ACTION_SOFT_SAFETY_WARNING)
        self.assertTrue(assessment.notify_user)
        self.assertEqual(get_consent_record("user-1", "user-2").state, ACTIVE_CONSENT)
        self.assertTrue(SafetyNotification.objects.filter(user_id="user-1").exists())

    def test_rejects_unknown_context(self):
        with self.assertRaises(ValidationError):
            assess_risk("user-1", "TELEPORT", providers=[])


class DatabaseProviderTests(TestCase):
    def _fetch(self, provider, user_id, counterpart_id=None):
        return assess_risk(user_id, CONTEXT_MESSAGE, counterpart_id, providers=[provider]).signals

    def test_enforcement_state(self):
        self.assertEqual(self._fetch(EnforcementStateProvider(), "user-1"), ())
        get_enforcement_sink().apply("user-1", ACCOUNT_SUSPENDED, ["test"])

        (signal,) = self._fetch(EnforcementStateProvider(), "user-1")
        self.assertEqual(signal.level, RiskLevel.CRITICAL)
        self.assertEqual(signal.confidence, 0.9)

    def test_consent_violation_needs_revoked_pair(self):
        request_consent("user-1", "user-2")
        self.assertEqual(self._fetch(ConsentViolationProvider(), "user-1", "user-2"), ())

        revoke_consent("user-2", "user-1", actor="user-2")
        (signal,) = self._fetch(ConsentViolationProvider(), "user-1", "user-2")
        self.assertEqual(signal.level, RiskLevel.HIGH)
        self.assertEqual(signal.details["state"], REVOKED)

    def test_behavior_patterns_from_counterpart_shield(self):
        activate_shield("victim", "sender", [{"signal_type": SPAM_BURST, "confidence": 0.9, "evidence": {}}])

        (signal,) = self._fetch(BehaviorPatternProvider(), "sender", "victim")
        self.assertEqual(signal.level, RiskLevel.LOW)
        self.assertEqual(signal.details["signals"], [SPAM_BURST])
        self.assertEqual(self._fetch(BehaviorPatternProvider(), "sender"), ())

    def test_behavior_patterns_from_profile(self):
        evaluate_risk_profile("sender", patterns=[_pattern(HARASSMENT, 5)])

        (signal,) = self._fetch(BehaviorPatternProvider(), "sender", "someone")
        self.assertEqual(signal.level, RiskLevel.MEDIUM)
        self.assertEqual(signal.details["patterns"], [HARASSMENT])

    @override_settings(TRUST_ENGINE_BASE_URL="", NSFW_CLASSIFIER_BASE_URL="")
    def test_unconfigured_http_providers_are_silent(self):
        self.assertEqual(self._fetch(TrustEngineProvider(), "user-1"), ())
        self.assertEqual(self._fetch(NSFWClassifierProvider(), "user-1"), ())


class HttpProviderInterpretationTests(SimpleTestCase):
    def test_trust_engine_maps_score(self):
        signal = TrustEngineProvider().interpret({"risk_score": 60, "flags": ["x"]})
        self.assertEqual(signal.level, RiskLevel.HIGH)
        self.assertEqual(signal.confidence, 0.6)
        self.assertFalse(TrustEngineProvider().interpret({"risk_score": 5}).present)

    def test_violation_counts(self):
        self.assertEqual(NSFWClassifierProvider().interpret({"results": [{}] * 3}).level, RiskLevel.MEDIUM)
        self.assertEqual(NSFWClassifierProvider().interpret([{}] * 7).level, RiskLevel.HIGH)
        self.assertEqual(FraudAttemptProvider().interpret({"results": [{}] * 2}).level, RiskLevel.HIGH)
        self.assertFalse(FraudAttemptProvider().interpret({"results": []}).present)

    def test_region_policy(self):
        signal = RegionSafetyProvider().interpret({"region_code": "XX", "safety_risk_level": "HIGH"})
        self.assertEqual(signal.level, RiskLevel.MEDIUM)
        self.assertEqual(signal.confidence, 0.6)
        self.assertFalse(RegionSafetyProvider().interpret({"region_code": "YY", "safety_risk_level": "LOW"}).present)


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
@override_settings(SAFETY_SIGNAL_PROVIDERS=["apps.risk.services.providers.EnforcementStateProvider"])
class RiskApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(username="member", password="pw-12345")
        self.staff = CustomUser.objects.create_user(username="moderator", password="pw-12345", is_staff=True)
        self.me = str(self.user.pk)

    def test_evaluate_and_lookup_own_profile(self):
        self.client.force_authenticate(self.user)
        resp = self.client.post("/api/risk/profiles/evaluate/", {}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["profile"]["user_id"], self.me)

        resp = self.client.get("/api/risk/profiles/lookup/")
        self.assertEqual(resp.data["profile"]["level"], "NONE")

        resp = self.client.get("/api/risk/profiles/lookup/", {"user_id": "someone-else"})
        self.assertEqual(resp.status_code, 403)

    def test_execute_triggers_is_staff_only(self):
        evaluate_risk_profile("user-1", patterns=[_pattern(BAN_EVASION, 1)])

        self.client.force_authenticate(self.user)
        resp = self.client.post("/api/risk/profiles/execute-triggers/", {"user_id": "user-1"}, format="json")
        self.assertEqual(resp.status_code, 403)

        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/risk/profiles/execute-triggers/", {"user_id": "user-1"}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertIsNotNone(resp.data["lockdown_status"])

    def test_assess_self(self):
        get_enforcement_sink().apply(self.me, ACCOUNT_VERIFICATION_REQUIRED, ["test"])
        self.client.force_authenticate(self.user)
        resp = self.client.post("/api/risk/assess/", {"context": CONTEXT_MESSAGE}, format="json")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["user_id"], self.me)
        self.assertEqual(resp.data["signals"][0]["source"], SOURCE_ENFORCEMENT_STATE)
        self.assertEqual(resp.data["action"], ACTION_NO_ACTION)

    def test_assess_validates_context(self):
        self.client.force_authenticate(self.user)
        resp = self.client.post("/api/risk/assess/", {"context": "TELEPORT"}, format="json")
        self.assertEqual(resp.status_code, 400)
