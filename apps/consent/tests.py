from dataclasses import replace

from django.conf import settings
from django.test import TestCase, SimpleTestCase, override_settings
from django.contrib.auth import get_user_model
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from apps.safety.exceptions import RecordNotFound, ConsentPreconditionError
from apps.safety.policy import SafetyPolicy, ConsentPolicy
from apps.safety.models import SafetyAuditLog
from apps.safety.collaborators.audit import AuditSink
from apps.consent.models import ConsentRecord, ConsentTransition, ConsentPendingRefund
from apps.consent.services.transitions import transition
from apps.consent.services.ledger import (
    consent_key,
    initialize_consent,
    request_consent,
    grant_consent,
    pause_consent,
    revoke_consent,
    resume_consent,
    check_consent,
    batch_check_consent,
    get_consent_record,
    track_pending_transaction,
    mark_transaction_delivered,
    drain_pending_refunds,
    pause_all_active_consents,
)
from apps.consent.constants import (
    PENDING, ACTIVE_CONSENT, PAUSED, REVOKED,
    EVENT_REQUEST, EVENT_PAUSE, EVENT_RESUME, EVENT_REVOKE,
    EFFECT_DRAIN_PENDING_REFUNDS,
    CAPABILITY_FIELDS,
    ACTION_REQUEST_CONSENT, ACTION_RESUME_CONSENT,
    NO_RECORD,
    REQUEST_CALL,
    REFUND_PENDING, REFUND_DELIVERED, REFUND_REFUNDED,
)

CustomUser = get_user_model()


class NullEventAuditSink(AuditSink):
    """Fails with a database error on every write."""

    def record(self, event_type, user_id, affected_user_id=None, details=None):
        SafetyAuditLog.objects.create(event_type=None, user_id=str(user_id))


class ConsentTransitionTests(SimpleTestCase):
    def test_capabilities_follow_state(self):
        plan = transition(PENDING, EVENT_REQUEST)
        self.assertEqual(plan.next_state, ACTIVE_CONSENT)
        self.assertTrue(all(plan.capabilities[name] for name in CAPABILITY_FIELDS))

        plan = transition(ACTIVE_CONSENT, EVENT_PAUSE)
        self.assertEqual(plan.next_state, PAUSED)
        self.assertFalse(any(plan.capabilities.values()))

    def test_revoke_requests_refund_drain(self):
        plan = transition(PAUSED, EVENT_REVOKE)
        self.assertEqual(plan.next_state, REVOKED)
        self.assertIn(EFFECT_DRAIN_PENDING_REFUNDS, plan.effects)

    def test_repeat_events_are_noops(self):
        self.assertFalse(transition(PAUSED, EVENT_PAUSE).changed)
        self.assertFalse(transition(REVOKED, EVENT_REVOKE).changed)

    def test_revoked_is_terminal(self):
        with self.assertRaises(ConsentPreconditionError):
            transition(REVOKED, EVENT_RESUME)
        with self.assertRaises(ConsentPreconditionError):
            transition(REVOKED, EVENT_REQUEST)


class ConsentKeyTests(SimpleTestCase):
    def test_key_is_order_independent(self):
        self.assertEqual(consent_key("alice", "bob"), consent_key("bob", "alice"))
        self.assertEqual(consent_key("bob", "alice"), "alice_bob")

    def test_missing_identifier_rejected(self):
        with self.assertRaises(ValidationError):
            consent_key("alice", "  ")

    def test_same_user_rejected(self):
        with self.assertRaises(ValidationError):
            consent_key("alice", "alice")


class ConsentLedgerTests(TestCase):
    def setUp(self):
        self.record = initialize_consent("alice", "bob", initiator="alice")

    def test_initialize_creates_pending_record_once(self):
        self.assertEqual(self.record.state, PENDING)
        again = initialize_consent("bob", "alice", initiator="bob")
        self.assertEqual(again.pk, self.record.pk)
        self.assertEqual(ConsentRecord.objects.count(), 1)
        self.assertEqual(self.record.transitions.count(), 1)

    def test_request_activates_and_grants_capabilities(self):
        record = request_consent("alice", "bob")
        self.assertEqual(record.state, ACTIVE_CONSENT)
        self.assertTrue(record.can_message)
        self.assertTrue(record.can_share_location)

    def test_request_lazily_initializes(self):
        record = request_consent("carol", "dave")
        self.assertEqual(record.state, ACTIVE_CONSENT)
        self.assertEqual(
            list(record.transitions.values_list("to_state", flat=True)),
            [PENDING, ACTIVE_CONSENT],
        )

    def test_request_on_paused_advises_resume(self):
        request_consent("alice", "bob")
        pause_consent("alice", "bob", actor="bob")
        with self.assertRaises(ConsentPreconditionError):
            request_consent("alice", "bob")

    def test_pause_resume_cycle(self):
        request_consent("alice", "bob")
        record = pause_consent("alice", "bob", actor="bob", reason="need a break")
        self.assertEqual(record.state, PAUSED)
        self.assertIsNotNone(record.paused_at)
        self.assertFalse(record.can_message)

        # idempotent
        self.assertEqual(pause_consent("alice", "bob", actor="bob").state, PAUSED)

        record = resume_consent("alice", "bob", actor="bob")
        self.assertEqual(record.state, ACTIVE_CONSENT)
        self.assertTrue(record.can_message)

    def test_grant_from_paused(self):
        request_consent("alice", "bob")
        pause_consent("alice", "bob")
        self.assertEqual(grant_consent("bob", "alice").state, ACTIVE_CONSENT)

    def test_pause_missing_record_not_found(self):
        with self.assertRaises(RecordNotFound):
            pause_consent("alice", "zed")

    def test_resume_on_revoked_raises_without_mutation(self):
        request_consent("alice", "bob")
        revoke_consent("alice", "bob", actor="bob", reason="harassment")
        before = get_consent_record("alice", "bob")
        history = ConsentTransition.objects.filter(record=before).count()

        with self.assertRaises(ConsentPreconditionError):
            resume_consent("alice", "bob", actor="alice")

        after = get_consent_record("alice", "bob")
        self.assertEqual(after.state, REVOKED)
        self.assertEqual(after.updated_at, before.updated_at)
        self.assertEqual(ConsentTransition.objects.filter(record=after).count(), history)

    def test_revoke_is_idempotent_and_audited(self):
        revoke_consent("alice", "bob", actor="bob")
        revoke_consent("alice", "bob", actor="bob")
        record = get_consent_record("alice", "bob")
        self.assertEqual(record.state, REVOKED)
        self.assertEqual(record.transitions.filter(to_state=REVOKED).count(), 1)
        self.assertTrue(
            SafetyAuditLog.objects.filter(event_type="CONSENT_REVOKE", affected_user_id="alice").exists()
        )

    @override_settings(SAFETY_COLLABORATORS={
        **settings.SAFETY_COLLABORATORS, "AUDIT_SINK": "apps.consent.tests.NullEventAuditSink",
    })
    def test_failed_audit_write_keeps_transition(self):
        record = revoke_consent("alice", "bob", actor="bob")

        self.assertEqual(record.state, REVOKED)
        self.assertEqual(ConsentRecord.objects.get(pair_key=record.pair_key).state, REVOKED)
        self.assertEqual(record.transitions.filter(to_state=REVOKED).count(), 1)
        self.assertFalse(SafetyAuditLog.objects.exists())

    def test_initialize_after_revoke_follows_policy(self):
        revoke_consent("alice", "bob")
        with self.assertRaises(ConsentPreconditionError):
            initialize_consent("alice", "bob")

        policy = replace(SafetyPolicy(), consent=ConsentPolicy(allow_reinitialize_after_revoke=True))
        record = initialize_consent("alice", "bob", policy=policy)
        self.assertEqual(record.state, PENDING)
        self.assertEqual(record.transitions.last().from_state, REVOKED)


class ConsentCheckTests(TestCase):
    def test_missing_record(self):
        result = check_consent("alice", "bob")
        self.assertFalse(result.allowed)
        self.assertEqual(result.state, NO_RECORD)
        self.assertEqual(result.required_action, ACTION_REQUEST_CONSENT)

    def test_states_map_to_hints(self):
        initialize_consent("alice", "bob")
        self.assertEqual(check_consent("alice", "bob").required_action, ACTION_REQUEST_CONSENT)

        request_consent("alice", "bob")
        result = check_consent("alice", "bob", REQUEST_CALL)
        self.assertTrue(result.allowed)
        self.assertIsNone(result.required_action)

        pause_consent("alice", "bob")
        self.assertEqual(check_consent("bob", "alice").required_action, ACTION_RESUME_CONSENT)

        revoke_consent("alice", "bob")
        result = check_consent("alice", "bob")
        self.assertFalse(result.allowed)
        self.assertEqual(result.state, REVOKED)
        self.assertIsNone(result.required_action)

    def test_unknown_request_type_rejected(self):
        with self.assertRaises(ValidationError):
            check_consent("alice", "bob", "TELEPATHY")

    def test_batch_check_single_query(self):
        request_consent("alice", "bob")
        initialize_consent("alice", "carol")
        with self.assertNumQueries(1):
            results = batch_check_consent("alice", ["bob", "carol", "dave"])
        self.assertTrue(results["bob"].allowed)
        self.assertEqual(results["carol"].state, PENDING)
        self.assertEqual(results["dave"].state, NO_RECORD)


class PendingRefundTests(TestCase):
    def setUp(self):
        request_consent("alice", "bob")

    def test_revoke_drains_pending_transactions(self):
        track_pending_transaction("alice", "bob", "tx-1")
        track_pending_transaction("alice", "bob", "tx-2")
        track_pending_transaction("alice", "bob", "tx-1")  # set semantics
        self.assertTrue(mark_transaction_delivered("alice", "bob", "tx-2"))

        revoke_consent("bob", "alice", actor="bob")

        statuses = dict(ConsentPendingRefund.objects.values_list("transaction_id", "status"))
        self.assertEqual(statuses, {"tx-1": REFUND_REFUNDED, "tx-2": REFUND_DELIVERED})
        self.assertEqual(drain_pending_refunds("alice", "bob"), [])

    def test_drain_returns_refunded_ids(self):
        track_pending_transaction("alice", "bob", "tx-9")
        self.assertEqual(drain_pending_refunds("alice", "bob"), ["tx-9"])
        self.assertFalse(ConsentPendingRefund.objects.filter(status=REFUND_PENDING).exists())

    def test_no_tracking_after_revoke(self):
        revoke_consent("alice", "bob")
        with self.assertRaises(ConsentPreconditionError):
            track_pending_transaction("alice", "bob", "tx-3")


class PauseAllActiveTests(TestCase):
    def test_pauses_only_active_records_of_user(self):
        request_consent("alice", "bob")
        request_consent("carol", "alice")
        initialize_consent("alice", "dave")
        request_consent("erin", "frank")

        paused = pause_all_active_consents("alice", reason="risk revalidation")

        self.assertCountEqual(paused, [consent_key("alice", "bob"), consent_key("alice", "carol")])
        self.assertEqual(get_consent_record("alice", "dave").state, PENDING)
        self.assertEqual(get_consent_record("erin", "frank").state, ACTIVE_CONSENT)


class ConsentApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.alice = CustomUser.objects.create_user(username="alice", password="pw-12345")
        self.bob = CustomUser.objects.create_user(username="bob", password="pw-12345")
        self.client.force_authenticate(self.alice)
        self.me = str(self.alice.pk)
        self.other = str(self.bob.pk)

    def test_request_then_check(self):
        resp = self.client.post("/api/consent/records/request/", {"counterpart_id": self.other}, format="json")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["state"], ACTIVE_CONSENT)

        resp = self.client.get("/api/consent/records/check/", {"counterpart_id": self.other, "request_type": "CALL"})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data["allowed"])

    def test_resume_revoked_is_conflict(self):
        self.client.post("/api/consent/records/request/", {"counterpart_id": self.other}, format="json")
        self.client.post("/api/consent/records/revoke/", {"counterpart_id": self.other}, format="json")
        resp = self.client.post("/api/consent/records/resume/", {"counterpart_id": self.other}, format="json")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["code"], "consent_precondition")

    def test_pause_missing_is_not_found(self):
        resp = self.client.post("/api/consent/records/pause/", {"counterpart_id": self.other}, format="json")
        self.assertEqual(resp.status_code, 404)

    def test_cannot_act_for_someone_else(self):
        resp = self.client.post(
            "/api/consent/records/pause/",
            {"user_id": self.other, "counterpart_id": "someone"},
            format="json",
        )
        self.assertEqual(resp.status_code, 403)

    def test_lookup_without_record(self):
        resp = self.client.get("/api/consent/records/lookup/", {"counterpart_id": self.other})
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(resp.data["record"])

    def test_batch_check(self):
        resp = self.client.post(
            "/api/consent/records/batch-check/",
            {"counterpart_ids": [self.other, "ghost"]},
            format="json",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["results"]["ghost"]["state"], NO_RECORD)
