"""Tests for the membership workflow shared by groups and events."""

from __future__ import annotations

import datetime
from unittest.mock import patch

from smaaks.core.constants import (
    EVENTS_COLLECTION,
    MEMBER_REMOVED,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    REQUESTS_COLLECTION,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_MODERATOR,
)
from smaaks.core.timestamps import utcnow
from smaaks.errors import (
    AlreadyMember,
    DuplicateRequest,
    GroupFull,
    NotFoundError,
    PermissionDenied,
    PreconditionFailed,
    RequestNotPending,
    ValidationError,
)
from smaaks.group.services import membership
from smaaks.group.services.group_service import GroupService
from tests.conftest import ALICE, BOB, CAROL, OWNER, FirestoreTestCase


def _group_data(**settings):
    return {
        "name": "Randonneurs du dimanche",
        "description": "Sorties en montagne chaque semaine.",
        "category": "Sport & Fitness",
        "settings": settings,
    }


class MembershipTestCase(FirestoreTestCase):
    """Shared helpers for membership tests."""

    def create_group(self, questions=None, **settings):
        data = _group_data(**settings)
        if questions is not None:
            data["admissionQuestions"] = questions
        return GroupService.create_group(self.db, OWNER, data)

    def load(self, group_id):
        return membership.load_entity(self.db, group_id)

    def count(self, group_id):
        return membership.member_count(self.load(group_id))


class TestDirectJoin(MembershipTestCase):
    def test_open_group_adds_member_without_request(self) -> None:
        group = self.create_group(requiresApproval=False)

        result = membership.request_to_join(self.db, group["id"], ALICE)

        self.assertIsNone(result)
        self.assertEqual(self.count(group["id"]), 2)
        self.assertIn(ALICE.uid, self.load(group["id"])["memberIds"])
        self.assertIsNone(membership.get_user_request(self.db, group["id"], ALICE.uid))
        member = membership.get_member(self.db, group["id"], ALICE.uid)
        self.assertEqual(member["role"], ROLE_MEMBER)
        self.assertEqual(member["status"], "active")

    def test_joining_twice_is_rejected(self) -> None:
        group = self.create_group()
        membership.request_to_join(self.db, group["id"], ALICE)

        with self.assertRaises(AlreadyMember):
            membership.request_to_join(self.db, group["id"], ALICE)
        self.assertEqual(self.count(group["id"]), 2)

    def test_owner_cannot_join_own_group(self) -> None:
        group = self.create_group()
        with self.assertRaises(AlreadyMember):
            membership.request_to_join(self.db, group["id"], OWNER)

    def test_full_group_is_rejected(self) -> None:
        group = self.create_group(maxMembers=2)
        membership.request_to_join(self.db, group["id"], ALICE)

        with self.assertRaises(GroupFull):
            membership.request_to_join(self.db, group["id"], BOB)
        self.assertEqual(self.count(group["id"]), 2)

    def test_unknown_group(self) -> None:
        with self.assertRaises(NotFoundError):
            membership.request_to_join(self.db, "missing", ALICE)


class TestRequestToJoin(MembershipTestCase):
    def test_approval_required_creates_single_pending_request(self) -> None:
        group = self.create_group(requiresApproval=True)

        request = membership.request_to_join(self.db, group["id"], ALICE)

        self.assertEqual(request["status"], REQUEST_PENDING)
        self.assertEqual(request["id"], f"{group['id']}_{ALICE.uid}")
        self.assertEqual(request["groupId"], group["id"])
        self.assertEqual(request["userInfo"]["name"], "Alice")
        self.assertEqual(self.count(group["id"]), 1)

        with self.assertRaises(DuplicateRequest):
            membership.request_to_join(self.db, group["id"], ALICE)
        pending = membership.list_pending_requests(self.db, group["id"], OWNER)
        self.assertEqual(len(pending), 1)

    def test_answers_are_stored_by_question(self) -> None:
        group = self.create_group(
            questions=[{"id": "q1", "question": "Expérience en randonnée ?", "required": True}],
            requiresApproval=True,
        )

        request = membership.request_to_join(
            self.db, group["id"], ALICE, [{"questionId": "q1", "answer": " 5 ans "}]
        )

        self.assertEqual(request["answers"], [{"questionId": "q1", "answer": "5 ans"}])
        stored = membership.get_user_request(self.db, group["id"], ALICE.uid)
        self.assertEqual(stored["answers"][0]["answer"], "5 ans")

    def test_answers_accept_a_mapping(self) -> None:
        group = self.create_group(
            questions=[{"id": "q1", "question": "Pourquoi ?"}], requiresApproval=True
        )
        request = membership.request_to_join(
            self.db, group["id"], ALICE, {"q1": "Pour marcher"}
        )
        self.assertEqual(request["answers"], [{"questionId": "q1", "answer": "Pour marcher"}])

    def test_missing_required_answer(self) -> None:
        group = self.create_group(
            questions=[{"id": "q1", "question": "Niveau ?", "required": True}],
            requiresApproval=True,
        )
        with self.assertRaises(ValidationError):
            membership.request_to_join(self.db, group["id"], ALICE, [])

    def test_answers_must_be_a_list_or_mapping(self) -> None:
        group = self.create_group(requiresApproval=True)
        for answers in (5, "oui", True):
            with self.subTest(answers=answers):
                with self.assertRaises(ValidationError):
                    membership.request_to_join(self.db, group["id"], ALICE, answers)
        self.assertIsNone(membership.get_user_request(self.db, group["id"], ALICE.uid))

    def test_unknown_question(self) -> None:
        group = self.create_group(
            questions=[{"id": "q1", "question": "Niveau ?"}], requiresApproval=True
        )
        with self.assertRaises(ValidationError):
            membership.request_to_join(
                self.db, group["id"], ALICE, [{"questionId": "q9", "answer": "?"}]
            )


class TestRespondToRequest(MembershipTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.group = self.create_group(requiresApproval=True)
        self.request = membership.request_to_join(self.db, self.group["id"], ALICE)

    def respond(self, decision, reviewer=OWNER, reason=None):
        return membership.respond_to_request(
            self.db, self.group["id"], self.request["id"], decision, reviewer, reason
        )

    def test_approve_adds_member(self) -> None:
        result = self.respond("approve")

        self.assertEqual(result["status"], REQUEST_APPROVED)
        self.assertEqual(result["reviewedBy"], OWNER.uid)
        self.assertEqual(self.count(self.group["id"]), 2)
        group = GroupService.get_group(self.db, self.group["id"])
        alice = [m for m in group["members"] if m["uid"] == ALICE.uid]
        self.assertEqual(len(alice), 1)
        self.assertEqual(alice[0]["role"], ROLE_MEMBER)
        self.assertEqual(alice[0]["status"], "active")

    def test_double_approve_adds_member_once(self) -> None:
        self.respond("approve")
        second = self.respond("approve")

        self.assertEqual(second["status"], REQUEST_APPROVED)
        self.assertEqual(self.count(self.group["id"]), 2)
        self.assertEqual(self.load(self.group["id"])["memberIds"].count(ALICE.uid), 1)
        self.assertEqual(len(membership.list_members(self.db, self.group["id"])), 2)

    def test_concurrent_approval_is_treated_as_applied(self) -> None:
        # Another reviewer approves between this reviewer's read and commit.
        group_id = self.group["id"]
        original_get_member = membership.get_member
        raced = []

        def stale_get_member(db, entity_id, uid, collection="groups"):
            result = original_get_member(db, entity_id, uid, collection)
            if uid == ALICE.uid and not raced:
                raced.append(True)
                membership.respond_to_request(
                    db, group_id, self.request["id"], "approve", OWNER
                )
            return result

        with patch.object(membership, "get_member", side_effect=stale_get_member):
            result = self.respond("approve")

        self.assertEqual(result["status"], REQUEST_APPROVED)
        self.assertEqual(self.count(group_id), 2)
        self.assertEqual(self.load(group_id)["memberIds"].count(ALICE.uid), 1)

    def test_reject_with_reason(self) -> None:
        result = self.respond("reject", reason="Groupe complet pour cette saison")

        self.assertEqual(result["status"], REQUEST_REJECTED)
        stored = membership.get_user_request(self.db, self.group["id"], ALICE.uid)
        self.assertEqual(stored["rejectionReason"], "Groupe complet pour cette saison")
        self.assertEqual(self.count(self.group["id"]), 1)
        self.assertIsNone(membership.get_member(self.db, self.group["id"], ALICE.uid))

    def test_rejected_user_can_ask_again_and_history_is_kept(self) -> None:
        self.respond("reject", reason="Pas maintenant")

        again = membership.request_to_join(self.db, self.group["id"], ALICE)

        self.assertEqual(again["status"], REQUEST_PENDING)
        self.assertEqual(len(again["history"]), 1)
        self.assertEqual(again["history"][0]["status"], REQUEST_REJECTED)
        self.assertEqual(again["history"][0]["rejectionReason"], "Pas maintenant")

    def test_member_cannot_review(self) -> None:
        membership.request_to_join(self.db, self.group["id"], BOB)
        self.respond("approve")
        with self.assertRaises(PermissionDenied):
            membership.respond_to_request(
                self.db,
                self.group["id"],
                f"{self.group['id']}_{BOB.uid}",
                "approve",
                ALICE,
            )

    def test_moderator_can_review(self) -> None:
        membership.request_to_join(self.db, self.group["id"], BOB)
        self.respond("approve")
        membership.set_member_role(self.db, self.group["id"], ALICE.uid, ROLE_MODERATOR, OWNER)

        result = membership.respond_to_request(
            self.db, self.group["id"], f"{self.group['id']}_{BOB.uid}", "approve", ALICE
        )
        self.assertEqual(result["status"], REQUEST_APPROVED)
        self.assertEqual(self.count(self.group["id"]), 3)

    def test_unknown_decision(self) -> None:
        with self.assertRaises(ValidationError):
            self.respond("maybe")

    def test_request_of_another_group(self) -> None:
        other = self.create_group(requiresApproval=True)
        with self.assertRaises(NotFoundError):
            membership.respond_to_request(
                self.db, other["id"], self.request["id"], "approve", OWNER
            )

    def test_approve_when_full(self) -> None:
        membership.request_to_join(self.db, self.group["id"], BOB)
        GroupService.update_group(
            self.db, self.group["id"], OWNER, {"settings": {"requiresApproval": True, "maxMembers": 2}}
        )
        self.respond("approve")

        with self.assertRaises(GroupFull):
            membership.respond_to_request(
                self.db, self.group["id"], f"{self.group['id']}_{BOB.uid}", "approve", OWNER
            )
        self.assertEqual(self.count(self.group["id"]), 2)


class TestCancelAndLeave(MembershipTestCase):
    def test_cancel_pending_request(self) -> None:
        group = self.create_group(requiresApproval=True)
        membership.request_to_join(self.db, group["id"], ALICE)

        membership.cancel_request(self.db, group["id"], ALICE)

        self.assertIsNone(membership.get_user_request(self.db, group["id"], ALICE.uid))
        with self.assertRaises(RequestNotPending):
            membership.cancel_request(self.db, group["id"], ALICE)

    def test_leave_decrements_counter(self) -> None:
        group = self.create_group()
        membership.request_to_join(self.db, group["id"], ALICE)

        self.assertTrue(membership.leave(self.db, group["id"], ALICE))

        self.assertEqual(self.count(group["id"]), 1)
        self.assertNotIn(ALICE.uid, self.load(group["id"])["memberIds"])
        self.assertIsNone(membership.get_member_role(self.db, self.load(group["id"]), ALICE.uid))

    def test_leave_by_non_member_changes_nothing(self) -> None:
        group = self.create_group()

        self.assertFalse(membership.leave(self.db, group["id"], BOB))
        self.assertFalse(membership.leave(self.db, group["id"], BOB))
        self.assertEqual(self.count(group["id"]), 1)

    def test_leave_clears_approved_request(self) -> None:
        group = self.create_group(requiresApproval=True)
        request = membership.request_to_join(self.db, group["id"], ALICE)
        membership.respond_to_request(self.db, group["id"], request["id"], "approve", OWNER)

        membership.leave(self.db, group["id"], ALICE)

        self.assertIsNone(membership.get_user_request(self.db, group["id"], ALICE.uid))
        # A fresh request is possible after leaving.
        again = membership.request_to_join(self.db, group["id"], ALICE)
        self.assertEqual(again["status"], REQUEST_PENDING)
        self.assertNotIn("history", again)

    def test_owner_cannot_leave(self) -> None:
        group = self.create_group()
        with self.assertRaises(PreconditionFailed):
            membership.leave(self.db, group["id"], OWNER)

    def test_member_count_never_negative(self) -> None:
        self.assertEqual(membership.member_count({"stats": {"memberCount": -2}}), 0)
        self.assertEqual(membership.member_count({"memberIds": ["a", "b"]}), 2)

    def test_leave_after_counter_drift_stores_zero(self) -> None:
        group = self.create_group()
        membership.request_to_join(self.db, group["id"], ALICE)
        self.db.collection("groups").document(group["id"]).update({"stats.memberCount": 0})

        membership.leave(self.db, group["id"], ALICE)

        self.assertEqual(self.load(group["id"])["stats"]["memberCount"], 0)

    def test_last_member_leaving_stores_zero(self) -> None:
        group = self.create_group()
        membership.request_to_join(self.db, group["id"], ALICE)
        self.db.collection("groups").document(group["id"]).update({"stats.memberCount": 1})

        membership.leave(self.db, group["id"], ALICE)

        self.assertEqual(self.load(group["id"])["stats"]["memberCount"], 0)


class TestMemberManagement(MembershipTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.group = self.create_group()
        for identity in (ALICE, BOB, CAROL):
            membership.request_to_join(self.db, self.group["id"], identity)

    def test_owner_removes_member(self) -> None:
        membership.remove_member(self.db, self.group["id"], ALICE.uid, OWNER)

        member = membership.get_member(self.db, self.group["id"], ALICE.uid)
        self.assertEqual(member["status"], MEMBER_REMOVED)
        self.assertEqual(member["removedBy"], OWNER.uid)
        self.assertEqual(self.count(self.group["id"]), 3)

    def test_removed_member_can_rejoin(self) -> None:
        membership.remove_member(self.db, self.group["id"], ALICE.uid, OWNER)

        membership.request_to_join(self.db, self.group["id"], ALICE)

        member = membership.get_member(self.db, self.group["id"], ALICE.uid)
        self.assertEqual(member["status"], "active")
        self.assertEqual(self.count(self.group["id"]), 4)

    def test_plain_member_cannot_remove(self) -> None:
        with self.assertRaises(PermissionDenied):
            membership.remove_member(self.db, self.group["id"], BOB.uid, ALICE)

    def test_only_owner_removes_admins(self) -> None:
        membership.set_member_role(self.db, self.group["id"], ALICE.uid, ROLE_ADMIN, OWNER)
        membership.set_member_role(self.db, self.group["id"], BOB.uid, ROLE_MODERATOR, OWNER)

        with self.assertRaises(PermissionDenied):
            membership.remove_member(self.db, self.group["id"], BOB.uid, ALICE)
        membership.remove_member(self.db, self.group["id"], CAROL.uid, ALICE)
        with self.assertRaises(PermissionDenied):
            membership.remove_member(self.db, self.group["id"], OWNER.uid, ALICE)

    def test_set_role_is_owner_only(self) -> None:
        with self.assertRaises(PermissionDenied):
            membership.set_member_role(self.db, self.group["id"], BOB.uid, ROLE_ADMIN, ALICE)
        with self.assertRaises(ValidationError):
            membership.set_member_role(self.db, self.group["id"], BOB.uid, "owner", OWNER)

        membership.set_member_role(self.db, self.group["id"], BOB.uid, ROLE_ADMIN, OWNER)
        self.assertEqual(
            membership.get_member_role(self.db, self.load(self.group["id"]), BOB.uid),
            ROLE_ADMIN,
        )

    def test_remove_after_counter_drift_stores_zero(self) -> None:
        self.db.collection("groups").document(self.group["id"]).update(
            {"stats.memberCount": 0}
        )

        membership.remove_member(self.db, self.group["id"], ALICE.uid, OWNER)

        self.assertEqual(self.load(self.group["id"])["stats"]["memberCount"], 0)

    def test_set_role_of_unknown_member(self) -> None:
        with self.assertRaises(NotFoundError):
            membership.set_member_role(self.db, self.group["id"], "nobody", ROLE_ADMIN, OWNER)

    def test_reconcile_repairs_drifted_counter(self) -> None:
        self.db.collection("groups").document(self.group["id"]).update(
            {"stats.memberCount": 17}
        )

        count = membership.reconcile_count(self.db, self.group["id"])

        self.assertEqual(count, 4)
        self.assertEqual(self.count(self.group["id"]), 4)
        self.assertEqual(
            sorted(self.load(self.group["id"])["memberIds"]),
            sorted([OWNER.uid, ALICE.uid, BOB.uid, CAROL.uid]),
        )


class TestEventRoster(FirestoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.db.collection(EVENTS_COLLECTION).document("ev1").set(
            {
                "title": "Tennis du soir",
                "creatorId": OWNER.uid,
                "participantIds": [OWNER.uid],
                "stats": {"participantCount": 1},
                "maxParticipants": 2,
                "settings": {"requiresApproval": True},
            }
        )
        self.db.collection(EVENTS_COLLECTION).document("ev1").collection(
            "members"
        ).document(OWNER.uid).set({"uid": OWNER.uid, "role": "owner", "status": "active"})

    def test_participation_request_is_keyed_by_event(self) -> None:
        request = membership.request_to_join(
            self.db, "ev1", ALICE, collection=EVENTS_COLLECTION
        )

        self.assertEqual(request["eventId"], "ev1")
        self.assertNotIn("groupId", request)
        stored = self.db.collection(REQUESTS_COLLECTION).document("ev1_alice").get()
        self.assertTrue(stored.exists)

    def test_approval_fills_event(self) -> None:
        request = membership.request_to_join(
            self.db, "ev1", ALICE, collection=EVENTS_COLLECTION
        )
        membership.request_to_join(self.db, "ev1", BOB, collection=EVENTS_COLLECTION)

        membership.respond_to_request(
            self.db, "ev1", request["id"], "approve", OWNER, collection=EVENTS_COLLECTION
        )

        event = membership.load_entity(self.db, "ev1", EVENTS_COLLECTION)
        self.assertEqual(membership.member_count(event, EVENTS_COLLECTION), 2)
        self.assertIn(ALICE.uid, event["participantIds"])
        with self.assertRaises(GroupFull):
            membership.respond_to_request(
                self.db, "ev1", "ev1_bob", "approve", OWNER, collection=EVENTS_COLLECTION
            )

    def test_unknown_event(self) -> None:
        with self.assertRaises(NotFoundError):
            membership.load_entity(self.db, "nope", EVENTS_COLLECTION)

    def test_closed_events_refuse_participants(self) -> None:
        event_ref = self.db.collection(EVENTS_COLLECTION).document("ev1")
        for status in ("cancelled", "completed"):
            with self.subTest(status=status):
                event_ref.update({"status": status})
                with self.assertRaises(PreconditionFailed):
                    membership.request_to_join(
                        self.db, "ev1", ALICE, collection=EVENTS_COLLECTION
                    )
                self.assertIsNone(membership.get_user_request(self.db, "ev1", ALICE.uid))

    def test_event_marked_full_refuses_participants(self) -> None:
        self.db.collection(EVENTS_COLLECTION).document("ev1").update({"status": "full"})

        with self.assertRaises(GroupFull):
            membership.request_to_join(self.db, "ev1", ALICE, collection=EVENTS_COLLECTION)

    def test_past_event_refuses_participants(self) -> None:
        self.db.collection(EVENTS_COLLECTION).document("ev1").update(
            {"date": utcnow() - datetime.timedelta(hours=1)}
        )

        with self.assertRaises(PreconditionFailed):
            membership.request_to_join(self.db, "ev1", ALICE, collection=EVENTS_COLLECTION)

    def test_cancelled_event_cannot_approve_pending_request(self) -> None:
        request = membership.request_to_join(
            self.db, "ev1", ALICE, collection=EVENTS_COLLECTION
        )
        self.db.collection(EVENTS_COLLECTION).document("ev1").update({"status": "cancelled"})

        with self.assertRaises(PreconditionFailed):
            membership.respond_to_request(
                self.db, "ev1", request["id"], "approve", OWNER, collection=EVENTS_COLLECTION
            )

        event = membership.load_entity(self.db, "ev1", EVENTS_COLLECTION)
        self.assertEqual(event["participantIds"], [OWNER.uid])
        stored = membership.get_user_request(self.db, "ev1", ALICE.uid)
        self.assertEqual(stored["status"], REQUEST_PENDING)

    def test_upcoming_active_event_accepts_participants(self) -> None:
        self.db.collection(EVENTS_COLLECTION).document("ev1").update(
            {"status": "active", "date": utcnow() + datetime.timedelta(days=1)}
        )

        request = membership.request_to_join(
            self.db, "ev1", ALICE, collection=EVENTS_COLLECTION
        )

        self.assertEqual(request["status"], REQUEST_PENDING)
