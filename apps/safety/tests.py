from dataclasses import FrozenInstanceError

from django.core.exceptions import ImproperlyConfigured
from django.test import TestCase, SimpleTestCase, override_settings
from rest_framework.exceptions import ValidationError

from apps.safety.constants import ACCOUNT_ACTIVE, ACCOUNT_SUSPENDED, NOTIFY_SAFETY_ALERT
from apps.safety.exceptions import (
    PreconditionViolation,
    RecordNotFound,
    custom_exception_handler,
    require_ids,
    require_distinct_pair,
)
from apps.safety.levels import RiskLevel, parse_level, cap_score, level_for_score
from apps.safety.models import SafetyAuditLog, SafetyNotification
from apps.safety.policy import build_safety_policy, get_safety_policy
from apps.safety.collaborators.audit import record_audit_event
from apps.safety.collaborators.cases import get_case_sink
from apps.safety.collaborators.enforcement import get_enforcement_sink
from apps.safety.collaborators.notifications import send_safety_notification


class RiskLevelTests(SimpleTestCase):
    def test_thresholds(self):
        self.assertEqual(level_for_score(75), RiskLevel.CRITICAL)
        self.assertEqual(level_for_score(74.99), RiskLevel.HIGH)
        self.assertEqual(level_for_score(25), RiskLevel.MEDIUM)
        self.assertEqual(level_for_score(10), RiskLevel.LOW)
        self.assertEqual(level_for_score(9.9), RiskLevel.NONE)

    def test_cap_and_parse(self):
        self.assertEqual(cap_score(140), 100.0)
        self.assertEqual(cap_score(-3), 0.0)
        self.assertEqual(parse_level("high"), RiskLevel.HIGH)
        self.assertEqual(parse_level(4), RiskLevel.CRITICAL)
        with self.assertRaises(ValueError):
            parse_level("SEVERE")


class SafetyPolicyTests(SimpleTestCase):
    def test_defaults_come_from_constants(self):
        policy = build_safety_policy()
        self.assertEqual(policy.orchestrator.lockdown_threshold, 90.0)
        self.assertEqual(policy.shield.signal_weights["TRAUMA_RISK_PHRASE"], 50.0)
        self.assertEqual(policy.memory.retention_days, 1080)

    def test_overrides_merge_into_sections(self):
        policy = build_safety_policy({
            "orchestrator": {"provider_timeout_seconds": 1.5},
            "shield": {"signal_weights": {"SPAM_BURST": 20.0}},
        })
        self.assertEqual(policy.orchestrator.provider_timeout_seconds, 1.5)
        self.assertEqual(policy.shield.signal_weights["SPAM_BURST"], 20.0)
        self.assertEqual(policy.shield.signal_weights["TRAUMA_RISK_PHRASE"], 50.0)

    def test_threshold_table_override(self):
        policy = build_safety_policy({
            "shield": {"level_thresholds": [[80, "CRITICAL"], [50, "HIGH"], [25, "MEDIUM"], [10, "LOW"]]},
        })
        self.assertEqual(policy.shield.level_thresholds[0], (80, "CRITICAL"))
        self.assertEqual(level_for_score(78, policy.shield.level_thresholds), RiskLevel.HIGH)

    def test_policy_is_immutable(self):
        policy = build_safety_policy()
        with self.assertRaises(FrozenInstanceError):
            policy.shield.default_signal_weight = 1.0
        with self.assertRaises(TypeError):
            policy.shield.signal_weights["SPAM_BURST"] = 1.0

    def test_unknown_keys_rejected(self):
        with self.assertRaises(ImproperlyConfigured):
            build_safety_policy({"shield": {"critical": 80}})
        with self.assertRaises(ImproperlyConfigured):
            build_safety_policy({"firewall": {}})

    @override_settings(SAFETY_POLICY={"consent": {"allow_reinitialize_after_revoke": True}})
    def test_reads_settings(self):
        self.assertTrue(get_safety_policy().consent.allow_reinitialize_after_revoke)


class ExceptionHandlingTests(SimpleTestCase):
    def test_require_ids(self):
        self.assertEqual(require_ids(a=" x ", b="y"), ["x", "y"])
        with self.assertRaises(ValidationError):
            require_ids(a="x", b="  ")
        with self.assertRaises(ValidationError):
            require_distinct_pair("x", "x")

    def test_handler_normalizes_payload(self):
        resp = custom_exception_handler(PreconditionViolation(), {})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["code"], "precondition_violation")

        resp = custom_exception_handler(RecordNotFound(), {})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.data["message"], "No record exists for this user or pair.")

    def test_unhandled_exception_becomes_500(self):
        resp = custom_exception_handler(RuntimeError("boom"), {})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.data["code"], "server_error")


class CollaboratorTests(TestCase):
    def test_default_sinks_write_local_tables(self):
        self.assertTrue(record_audit_event("TEST_EVENT", "user-1", "user-2", {"k": 1}))
        self.assertEqual(SafetyAuditLog.objects.get(event_type="TEST_EVENT").affected_user_id, "user-2")

        self.assertTrue(send_safety_notification(
            user_id="user-1", category=NOTIFY_SAFETY_ALERT, title="t", body="b",
        ))
        self.assertEqual(SafetyNotification.objects.filter(user_id="user-1").count(), 1)

        case_id = get_case_sink().open_case("user-1", "SYSTEM", ["X"])
        self.assertTrue(case_id)

        sink = get_enforcement_sink()
        self.assertEqual(sink.current_status("user-1"), ACCOUNT_ACTIVE)
        sink.apply("user-1", ACCOUNT_SUSPENDED, ["X"])
        self.assertEqual(sink.current_status("user-1"), ACCOUNT_SUSPENDED)

    @override_settings(SAFETY_COLLABORATORS={"AUDIT_SINK": "apps.safety.collaborators.audit.AuditSink"})
    def test_audit_failure_is_swallowed(self):
        self.assertFalse(record_audit_event("TEST_EVENT", "user-1"))

    @override_settings(SAFETY_COLLABORATORS={})
    def test_missing_collaborator_is_misconfiguration(self):
        with self.assertRaises(ImproperlyConfigured):
            get_case_sink()
