from datetime import timedelta

from django.test import TestCase
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from apps.detection.evidence import SpamBurstEvidence
from apps.behavior.models import BehaviorLogEntry
from apps.behavior.services.memory import (
    log_behavior_event,
    detect_patterns,
    detect_cyclic_harassment,
    detect_coordinated_attack,
    detect_policy_bypass,
    purge_expired_entries,
)
from apps.behavior.tasks import purge_expired_behavior_logs
from apps.behavior.constants import (
    HARASSMENT, SPAM, CONTENT_NEAR_MISS, CYCLIC_HARASSMENT, COORDINATED_ATTACK,
    IMPORTANCE_LOW, IMPORTANCE_MEDIUM, IMPORTANCE_CRITICAL,
    TREND_WORSENING, TREND_STABLE, TREND_IMPROVING,
)

CustomUser = get_user_model()


class LogBehaviorEventTests(TestCase):
    def setUp(self):
        self.now = timezone.now()

    def test_first_event_uses_importance_base(self):
        entry = log_behavior_event("u1", HARASSMENT, {"note": "first"}, importance=IMPORTANCE_MEDIUM)
        self.assertEqual(entry.confidence, 0.5)
        self.assertEqual(entry.occurrence_count, 1)
        self.assertIsNone(entry.days_since_last)
        self.assertEqual(entry.evidence["kind"], "GenericEvidence")
        self.assertAlmostEqual((entry.expires_at - entry.detected_at).days, 1080)

    def test_frequency_and_recency_boost(self):
        log_behavior_event("u1", HARASSMENT, detected_at=self.now - timedelta(days=20))
        log_behavior_event("u1", HARASSMENT, detected_at=self.now - timedelta(days=10))
        entry = log_behavior_event("u1", HARASSMENT, detected_at=self.now - timedelta(days=3))

        # base 0.5 + 2 prior x 0.05 + recent (<= 7 days) 0.2
        self.assertAlmostEqual(entry.confidence, 0.8)
        self.assertEqual(entry.occurrence_count, 3)
        self.assertAlmostEqual(entry.days_since_last, 7.0, places=2)

    def test_recurrence_window_limits_count(self):
        log_behavior_event("u1", SPAM, detected_at=self.now - timedelta(days=120))
        entry = log_behavior_event("u1", SPAM, detected_at=self.now, importance=IMPORTANCE_LOW)
        self.assertEqual(entry.occurrence_count, 1)
        self.assertAlmostEqual(entry.confidence, 0.3)

    def test_confidence_is_capped(self):
        for days in range(10, 0, -1):
            entry = log_behavior_event("u1", HARASSMENT, importance=IMPORTANCE_CRITICAL, detected_at=self.now - timedelta(days=days))
        self.assertEqual(entry.confidence, 1.0)

    def test_typed_evidence_is_tagged(self):
        entry = log_behavior_event("u1", SPAM, SpamBurstEvidence(12, 10))
        self.assertEqual(entry.evidence, {"messages_last_minute": 12, "threshold": 10, "kind": "SpamBurstEvidence"})

    def test_unknown_event_type_rejected(self):
        with self.assertRaises(ValidationError):
            log_behavior_event("u1", "JAYWALKING")


class PatternTests(TestCase):
    def setUp(self):
        self.now = timezone.now()

    def _log_at(self, user, event_type, days_ago, counterpart=None):
        return log_behavior_event(user, event_type, counterpart_id=counterpart, detected_at=self.now - timedelta(days=days_ago))

    def test_fewer_than_four_events_is_stable(self):
        for d in (30, 20, 1):
            self._log_at("u1", HARASSMENT, d)
        pattern = detect_patterns("u1", now=self.now)[0]
        self.assertEqual(pattern.frequency, 3)
        self.assertEqual(pattern.trend, TREND_STABLE)
        self.assertAlmostEqual(pattern.avg_interval_days, 14.5)

    def test_accelerating_events_are_worsening(self):
        for d in (60, 40, 20, 10, 5, 3, 2):
            self._log_at("u1", HARASSMENT, d)
        self.assertEqual(detect_patterns("u1", now=self.now)[0].trend, TREND_WORSENING)

    def test_slowing_events_are_improving(self):
        for d in (100, 99, 98, 97, 80, 60, 30):
            self._log_at("u1", HARASSMENT, d)
        self.assertEqual(detect_patterns("u1", now=self.now)[0].trend, TREND_IMPROVING)

    def test_lookback_excludes_old_entries(self):
        self._log_at("u1", SPAM, 200)
        self._log_at("u1", HARASSMENT, 5)
        self.assertEqual([p.event_type for p in detect_patterns("u1", now=self.now)], [HARASSMENT])
        self.assertEqual(len(detect_patterns("u1", lookback_months=12, now=self.now)), 2)

    def test_cyclic_harassment(self):
        for d in (40, 39, 25, 24, 10):
            self._log_at("u1", HARASSMENT, d, counterpart="victim")
        result = detect_cyclic_harassment("u1", "victim")
        self.assertTrue(result.detected)
        self.assertEqual(result.cycles, 3)

        types = [p.event_type for p in detect_patterns("u1", now=self.now)]
        self.assertIn(CYCLIC_HARASSMENT, types)

    def test_short_gaps_are_not_cyclic(self):
        for d in (5, 4, 3, 2):
            self._log_at("u1", HARASSMENT, d, counterpart="victim")
        self.assertFalse(detect_cyclic_harassment("u1", "victim").detected)
        self.assertNotIn(CYCLIC_HARASSMENT, [p.event_type for p in detect_patterns("u1", now=self.now)])

    def test_coordinated_attack(self):
        for i, attacker in enumerate(["a1", "a2", "a3", "a1", "a2"]):
            log_behavior_event(attacker, HARASSMENT, counterpart_id="target", detected_at=self.now - timedelta(hours=i + 1))
        result = detect_coordinated_attack("target", now=self.now)
        self.assertTrue(result.detected)
        self.assertEqual(result.attacker_ids, ("a1", "a2", "a3"))
        self.assertEqual(result.event_count, 5)

        self.assertIn(COORDINATED_ATTACK, [p.event_type for p in detect_patterns("a3", now=self.now)])

    def test_too_few_attackers(self):
        for i, attacker in enumerate(["a1", "a2", "a1", "a2", "a1"]):
            log_behavior_event(attacker, HARASSMENT, counterpart_id="target", detected_at=self.now - timedelta(hours=i + 1))
        self.assertFalse(detect_coordinated_attack("target", now=self.now).detected)
        self.assertNotIn(COORDINATED_ATTACK, [p.event_type for p in detect_patterns("a1", now=self.now)])

    def test_lone_contact_is_not_coordinated_attack(self):
        log_behavior_event("u1", SPAM, counterpart_id="target", detected_at=self.now - timedelta(hours=1))
        self.assertEqual([p.event_type for p in detect_patterns("u1", now=self.now)], [SPAM])

    def test_policy_bypass(self):
        for d in (6, 3):
            self._log_at("u1", CONTENT_NEAR_MISS, d)
        self.assertFalse(detect_policy_bypass("u1", now=self.now).detected)
        self._log_at("u1", CONTENT_NEAR_MISS, 1)
        self.assertTrue(detect_policy_bypass("u1", now=self.now).detected)


class RetentionTests(TestCase):
    def test_expired_entries_do_not_form_patterns(self):
        now = timezone.now()
        log_behavior_event("u1", HARASSMENT, detected_at=now - timedelta(days=40 * 30))
        self.assertEqual(detect_patterns("u1", lookback_months=48, now=now), [])

    def test_expired_entries_ignored_by_derived_detectors(self):
        now = timezone.now()
        for d in (40, 39, 25, 24, 10):
            log_behavior_event("u1", HARASSMENT, counterpart_id="victim", detected_at=now - timedelta(days=d))
        BehaviorLogEntry.objects.filter(detected_at__lt=now - timedelta(days=20)).update(expires_at=now - timedelta(days=1))

        self.assertFalse(detect_cyclic_harassment("u1", "victim", now=now).detected)
        self.assertEqual([p.frequency for p in detect_patterns("u1", now=now)], [1])

    def _expired(self, n):
        past = timezone.now() - timedelta(days=2000)
        for _ in range(n):
            log_behavior_event("u1", SPAM, detected_at=past)

    def test_purge_pages_with_cursor(self):
        self._expired(5)
        log_behavior_event("u1", SPAM)

        deleted, cursor = purge_expired_entries(limit=3)
        self.assertEqual(deleted, 3)
        self.assertIsNotNone(cursor)

        deleted, cursor = purge_expired_entries(cursor=cursor, limit=3)
        self.assertEqual(deleted, 2)
        self.assertIsNone(cursor)
        self.assertEqual(BehaviorLogEntry.objects.count(), 1)

    def test_task_purges(self):
        self._expired(2)
        result = purge_expired_behavior_logs.apply().get()
        self.assertEqual(result, {"deleted": 2, "next_cursor": None})


class BehaviorApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(username="member", password="pw-12345")
        self.staff = CustomUser.objects.create_user(username="moderator", password="pw-12345", is_staff=True)

    def test_only_staff_logs_events(self):
        payload = {"user_id": "u1", "event_type": HARASSMENT, "evidence": {"message_id": "m1"}}
        self.client.force_authenticate(self.user)
        self.assertEqual(self.client.post("/api/behavior/events/", payload, format="json").status_code, 403)

        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/behavior/events/", payload, format="json")
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.data["occurrence_count"], 1)

    def test_patterns_for_self_only(self):
        log_behavior_event(str(self.user.pk), HARASSMENT)
        self.client.force_authenticate(self.user)

        resp = self.client.get("/api/behavior/events/patterns/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["patterns"][0]["event_type"], HARASSMENT)

        self.assertEqual(self.client.get("/api/behavior/events/patterns/", {"user_id": "someone"}).status_code, 403)
