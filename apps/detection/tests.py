from dataclasses import replace

from django.test import TestCase, SimpleTestCase
from django.contrib.auth import get_user_model
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from apps.safety.policy import SafetyPolicy, ConfidencePolicy
from apps.detection.constants import (
    SPAM_BURST, REPEATED_UNWANTED_CONTACT, TRAUMA_RISK_PHRASE, PRESSURE_LANGUAGE,
    IMPERSONATION, BLOCK_EVASION,
    TRUE_POSITIVE, FALSE_POSITIVE, FALSE_NEGATIVE,
)
from apps.detection.evidence import (
    SpamBurstEvidence, PhraseMatchEvidence, ImpersonationEvidence, GenericEvidence,
    evidence_to_dict, evidence_from_dict,
)
from apps.detection.models import ConfidenceRule, ModerationFeedback
from apps.detection.services.detectors import (
    InteractionEvent, detect_harassment_signals, name_similarity,
)
from apps.detection.services.confidence import (
    record_moderation_feedback,
    get_confidence_rule,
    apply_feedback_batch,
    apply_pending_feedback,
    calibrated_confidence,
)
from apps.detection.tasks import apply_moderation_feedback

CustomUser = get_user_model()


def _types(signals):
    return [s.signal_type for s in signals]


class DetectorTests(SimpleTestCase):
    def test_spam_burst_at_threshold(self):
        signals = detect_harassment_signals(InteractionEvent("s", "r", messages_last_minute=10))
        self.assertEqual(_types(signals), [SPAM_BURST])
        self.assertEqual(signals[0].confidence, 0.9)
        self.assertEqual(signals[0].evidence, SpamBurstEvidence(10, 10))

    def test_below_thresholds_is_quiet(self):
        event = InteractionEvent("s", "r", text="hey, how was your day?", messages_last_minute=9, unanswered_contact_attempts=4)
        self.assertEqual(detect_harassment_signals(event), [])

    def test_repeated_contact(self):
        signals = detect_harassment_signals(InteractionEvent("s", "r", unanswered_contact_attempts=5))
        self.assertEqual(_types(signals), [REPEATED_UNWANTED_CONTACT])
        self.assertEqual(signals[0].confidence, 0.8)

    def test_trauma_phrase_is_case_and_punctuation_insensitive(self):
        signals = detect_harassment_signals(InteractionEvent("s", "r", text="Just KILL yourself!!!"))
        self.assertEqual(_types(signals), [TRAUMA_RISK_PHRASE])
        self.assertEqual(signals[0].confidence, 1.0)
        self.assertIn("kill yourself", signals[0].evidence.matched_phrases)

    def test_phrase_needs_word_boundaries(self):
        self.assertEqual(detect_harassment_signals(InteractionEvent("s", "r", text="kysomething")), [])

    def test_pressure_language(self):
        signals = detect_harassment_signals(InteractionEvent("s", "r", text="You owe me. Answer me now"))
        self.assertEqual(_types(signals), [PRESSURE_LANGUAGE])
        self.assertEqual(signals[0].evidence.matched_phrases, ("you owe me", "answer me now"))

    def test_impersonation_by_similar_name(self):
        event = InteractionEvent("s", "r", sender_display_name="Jenifer Smith", known_display_names=("Jennifer Smith", "Bob"))
        signals = detect_harassment_signals(event)
        self.assertEqual(_types(signals), [IMPERSONATION])
        self.assertGreater(signals[0].confidence, 0.8)
        self.assertEqual(signals[0].evidence.impersonated_name, "Jennifer Smith")

    def test_dissimilar_name_ignored(self):
        event = InteractionEvent("s", "r", sender_display_name="Alex", known_display_names=("Jennifer Smith",))
        self.assertEqual(detect_harassment_signals(event), [])

    def test_name_similarity_bounds(self):
        self.assertEqual(name_similarity("Anna", "anna"), 1.0)
        self.assertEqual(name_similarity("", ""), 0.0)
        self.assertAlmostEqual(name_similarity("abcd", "abcx"), 0.75)

    def test_block_evasion(self):
        event = InteractionEvent(
            "new-account", "r",
            device_fingerprint="fp-1",
            blocked_fingerprints={"fp-1": ["old-account"], "fp-2": ["other"]},
        )
        signals = detect_harassment_signals(event)
        self.assertEqual(_types(signals), [BLOCK_EVASION])
        self.assertEqual(signals[0].confidence, 0.95)
        self.assertEqual(signals[0].evidence.blocked_account_ids, ("old-account",))

    def test_stable_order_for_multiple_signals(self):
        event = InteractionEvent("s", "r", text="kill yourself", messages_last_minute=12, unanswered_contact_attempts=6)
        self.assertEqual(
            _types(detect_harassment_signals(event)),
            [SPAM_BURST, REPEATED_UNWANTED_CONTACT, TRAUMA_RISK_PHRASE],
        )

    def test_missing_ids_rejected(self):
        with self.assertRaises(ValidationError):
            detect_harassment_signals(InteractionEvent("", "r", messages_last_minute=50))


class EvidenceTests(SimpleTestCase):
    def test_dict_form_is_tagged(self):
        data = evidence_to_dict(PhraseMatchEvidence(("go die",)))
        self.assertEqual(data, {"matched_phrases": ["go die"], "kind": "PhraseMatchEvidence"})
        self.assertEqual(evidence_from_dict(None, data), PhraseMatchEvidence(("go die",)))

    def test_signal_type_used_when_untagged(self):
        evidence = evidence_from_dict(IMPERSONATION, {"display_name": "a", "impersonated_name": "b", "similarity": 0.9})
        self.assertIsInstance(evidence, ImpersonationEvidence)

    def test_unknown_shapes_become_generic(self):
        self.assertEqual(evidence_from_dict("HARASSMENT", {"note": "x"}), GenericEvidence({"note": "x"}))
        self.assertIsInstance(evidence_from_dict(SPAM_BURST, {"unexpected": 1}), GenericEvidence)


class ConfidenceModelTests(TestCase):
    def _feedback(self, outcome, n, event_type=SPAM_BURST):
        return [
            record_moderation_feedback(case_id=f"case-{outcome}-{i}", event_type=event_type, outcome=outcome, moderator="mod")
            for i in range(n)
        ]

    def test_no_rule_until_feedback_applied(self):
        self.assertIsNone(get_confidence_rule(SPAM_BURST))
        self.assertEqual(calibrated_confidence(SPAM_BURST, 0.9), 0.9)

    def test_unknown_outcome_rejected(self):
        with self.assertRaises(ValidationError):
            record_moderation_feedback(case_id="c", event_type=SPAM_BURST, outcome="MAYBE", moderator="mod")

    def test_requires_minimum_samples(self):
        self._feedback(TRUE_POSITIVE, 19)
        result = apply_feedback_batch(SPAM_BURST)
        self.assertEqual(result.applied, 0)
        self.assertIsNone(get_confidence_rule(SPAM_BURST))
        self.assertFalse(ModerationFeedback.objects.filter(applied=True).exists())

    def test_moves_halfway_toward_precision(self):
        self._feedback(TRUE_POSITIVE, 5)
        self._feedback(FALSE_POSITIVE, 15)
        self._feedback(FALSE_NEGATIVE, 5)

        result = apply_feedback_batch(SPAM_BURST)
        rule = result.rule

        self.assertEqual(result.applied, 25)
        self.assertEqual((rule.true_positives, rule.false_positives, rule.false_negatives), (5, 15, 5))
        self.assertAlmostEqual(rule.precision, 0.25)
        self.assertAlmostEqual(rule.recall, 0.5)
        # 0.7 + 0.5 * (0.25 - 0.7)
        self.assertAlmostEqual(rule.current_confidence, 0.475)
        self.assertAlmostEqual(calibrated_confidence(SPAM_BURST, 0.7), 0.475)

    def test_reapplying_changes_nothing(self):
        feedback = self._feedback(TRUE_POSITIVE, 20)
        first = apply_feedback_batch(SPAM_BURST).rule
        again = apply_feedback_batch(SPAM_BURST, feedback_ids=[f.id for f in feedback])
        rule = get_confidence_rule(SPAM_BURST)

        self.assertEqual(again.applied, 0)
        self.assertEqual(rule.total_feedback, first.total_feedback)
        self.assertEqual(rule.current_confidence, first.current_confidence)

    def test_confidence_stays_clamped(self):
        policy = replace(SafetyPolicy(), confidence=ConfidencePolicy(min_samples=1, learning_rate=1.0))
        self._feedback(TRUE_POSITIVE, 3)
        self.assertEqual(apply_feedback_batch(SPAM_BURST, policy=policy).rule.current_confidence, 0.95)

        self._feedback(FALSE_POSITIVE, 300)
        for _ in range(3):
            apply_feedback_batch(SPAM_BURST, policy=policy)
        rule = get_confidence_rule(SPAM_BURST)
        self.assertGreaterEqual(rule.current_confidence, 0.1)
        self.assertLessEqual(rule.current_confidence, 0.95)

    def test_sweep_pages_over_event_types(self):
        self._feedback(TRUE_POSITIVE, 20, event_type=SPAM_BURST)
        self._feedback(TRUE_POSITIVE, 20, event_type=TRAUMA_RISK_PHRASE)
        self._feedback(TRUE_POSITIVE, 3, event_type=BLOCK_EVASION)

        page = apply_pending_feedback(limit=1)
        self.assertEqual(page["event_types"], 1)
        self.assertEqual(page["next_cursor"], SPAM_BURST)

        page = apply_pending_feedback(cursor=page["next_cursor"], limit=1)
        self.assertEqual(page["applied"], 20)
        self.assertIsNotNone(get_confidence_rule(TRAUMA_RISK_PHRASE))
        self.assertIsNone(get_confidence_rule(BLOCK_EVASION))

    def test_task_runs_sweep(self):
        self._feedback(TRUE_POSITIVE, 20)
        result = apply_moderation_feedback.apply().get()
        self.assertEqual(result["applied"], 20)
        self.assertIsNone(result["next_cursor"])


class DetectionApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = CustomUser.objects.create_user(username="member", password="pw-12345")
        self.staff = CustomUser.objects.create_user(username="moderator", password="pw-12345", is_staff=True)

    def test_detect_endpoint(self):
        self.client.force_authenticate(self.user)
        resp = self.client.post(
            "/api/detection/signals/detect/",
            {"sender_id": "s", "recipient_id": "r", "messages_last_minute": 10},
            format="json",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["signals"][0]["signal_type"], SPAM_BURST)
        self.assertEqual(resp.data["signals"][0]["evidence"]["kind"], "SpamBurstEvidence")

    def test_feedback_is_staff_only(self):
        payload = {"case_id": "c1", "event_type": SPAM_BURST, "outcome": TRUE_POSITIVE}
        self.client.force_authenticate(self.user)
        self.assertEqual(self.client.post("/api/detection/feedback/", payload, format="json").status_code, 403)

        self.client.force_authenticate(self.staff)
        resp = self.client.post("/api/detection/feedback/", payload, format="json")
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.data["moderator_id"], str(self.staff.pk))

    def test_confidence_rule_lookup(self):
        self.client.force_authenticate(self.user)
        self.assertEqual(self.client.get(f"/api/detection/confidence-rules/{SPAM_BURST}/").status_code, 404)

        ConfidenceRule.objects.create(event_type=SPAM_BURST)
        resp = self.client.get(f"/api/detection/confidence-rules/{SPAM_BURST}/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["current_confidence"], 0.7)
