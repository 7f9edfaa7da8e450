"""Membership workflow shared by groups and events.

Members live in a keyed ``members`` sub-collection (one document per user)
and requests in ``membershipRequests/{entity}_{user}``, so joining, leaving
and reviewing never rewrite a whole member list. Each membership change is a
single batch holding the member document, an atomic counter increment and
the id-list union/removal. New member documents are written with
``create()`` so that two concurrent approvals of the same request cannot
both add the member: the second batch fails with ``AlreadyExists`` and is
treated as already applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

from firebase_admin import firestore
from flask import current_app, has_app_context
from google.api_core.exceptions import AlreadyExists

from smaaks import store
from smaaks.core.constants import (
    EVENT_ACTIVE,
    EVENT_FULL,
    EVENTS_COLLECTION,
    GROUPS_COLLECTION,
    MEMBER_ACTIVE,
    MEMBER_REMOVED,
    MEMBER_ROLES,
    MEMBERS_SUBCOLLECTION,
    MODERATOR_ROLES,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    REQUESTS_COLLECTION,
    ROLE_MEMBER,
    ROLE_OWNER,
)
from smaaks.core.timestamps import sort_key, to_datetime, utcnow
from smaaks.errors import (
    AlreadyMember,
    DuplicateRequest,
    GroupFull,
    NotFoundError,
    PermissionDenied,
    PreconditionFailed,
    RequestNotPending,
    ValidationError,
    WriteFailed,
)

if TYPE_CHECKING:
    from google.cloud.firestore_v1.batch import WriteBatch
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference

    from smaaks.auth.models import Identity
    from smaaks.group.models import Member, MembershipRequest

APPROVE = "approve"
REJECT = "reject"


@dataclass(frozen=True)
class Roster:
    """Where the members of a joinable entity are stored."""

    collection: str
    ref_field: str
    counter: str
    ids_field: str

    @property
    def counter_path(self) -> str:
        return f"stats.{self.counter}"


ROSTERS = {
    GROUPS_COLLECTION: Roster(GROUPS_COLLECTION, "groupId", "memberCount", "memberIds"),
    EVENTS_COLLECTION: Roster(
        EVENTS_COLLECTION, "eventId", "participantCount", "participantIds"
    ),
}


def _roster(collection: str) -> Roster:
    try:
        return ROSTERS[collection]
    except KeyError:
        raise ValueError(f"Unknown roster collection: {collection}") from None


def _log(message: str) -> None:
    if has_app_context():
        current_app.logger.info(message)


def owner_id(entity: dict[str, Any]) -> str | None:
    """Return the UID of the organizer of a group or event."""
    organizer = entity.get("organizer") or {}
    return entity.get("ownerId") or organizer.get("uid") or entity.get("creatorId")


def load_entity(db: Client, entity_id: str, collection: str = GROUPS_COLLECTION):
    """Fetch a group or event, raising NotFoundError if it does not exist."""
    entity = store.get(db, collection, entity_id)
    if entity is None:
        if collection == EVENTS_COLLECTION:
            raise NotFoundError("Événement introuvable.")
        raise NotFoundError("Groupe introuvable.")
    return entity


def request_id_for(entity_id: str, uid: str) -> str:
    """Return the key of the membership request of a user for an entity."""
    return f"{entity_id}_{uid}"


def _entity_ref(db: Client, roster: Roster, entity_id: str) -> DocumentReference:
    return db.collection(roster.collection).document(entity_id)


def _member_ref(
    db: Client, roster: Roster, entity_id: str, uid: str
) -> DocumentReference:
    return (
        _entity_ref(db, roster, entity_id)
        .collection(MEMBERS_SUBCOLLECTION)
        .document(uid)
    )


def _request_ref(db: Client, entity_id: str, uid: str) -> DocumentReference:
    return db.collection(REQUESTS_COLLECTION).document(request_id_for(entity_id, uid))


def get_member(
    db: Client, entity_id: str, uid: str, collection: str = GROUPS_COLLECTION
) -> Member | None:
    """Return the member document of a user, active or removed."""
    doc = _member_ref(db, _roster(collection), entity_id, uid).get()
    return cast("Member | None", store.snapshot_to_dict(doc))


def list_members(
    db: Client, entity_id: str, collection: str = GROUPS_COLLECTION
) -> list[Member]:
    """Return the active members, earliest joiner first."""
    members_ref = _entity_ref(db, _roster(collection), entity_id).collection(
        MEMBERS_SUBCOLLECTION
    )
    members: list[Member] = []
    for doc in members_ref.stream():
        data = store.snapshot_to_dict(doc)
        if data and data.get("status") == MEMBER_ACTIVE:
            members.append(cast("Member", data))
    members.sort(key=lambda m: sort_key(m.get("joinedAt")))
    return members


def get_member_role(
    db: Client,
    entity: dict[str, Any],
    uid: str,
    collection: str = GROUPS_COLLECTION,
) -> str | None:
    """Return the role of a user in a group or event, None for non-members."""
    if uid and uid == owner_id(entity):
        return ROLE_OWNER
    member = get_member(db, entity["id"], uid, collection)
    if member and member.get("status") == MEMBER_ACTIVE:
        return member.get("role") or ROLE_MEMBER
    return None


def can_manage(role: str | None) -> bool:
    """Return True if the role may review requests and moderate content."""
    return role in MODERATOR_ROLES


def member_count(entity: dict[str, Any], collection: str = GROUPS_COLLECTION) -> int:
    """Return the denormalized member counter, never below zero."""
    roster = _roster(collection)
    stats = entity.get("stats") or {}
    count = stats.get(roster.counter)
    if count is None:
        count = len(entity.get(roster.ids_field) or [])
    return max(0, int(count))


def capacity(entity: dict[str, Any]) -> int | None:
    """Return the maximum number of members, if the organizer set one."""
    settings = entity.get("settings") or {}
    limit = settings.get("maxMembers") or entity.get("maxParticipants")
    return int(limit) if limit else None


def _ensure_open(entity: dict[str, Any], collection: str) -> None:
    """Reject joins on events that are full, closed or already past."""
    if collection != EVENTS_COLLECTION:
        return
    status = entity.get("status") or EVENT_ACTIVE
    if status == EVENT_FULL:
        raise GroupFull("Cet événement est complet.")
    if status != EVENT_ACTIVE:
        raise PreconditionFailed("Cet événement n'accepte plus de participants.")
    date = to_datetime(entity.get("date"))
    if date is not None and date <= utcnow():
        raise PreconditionFailed("Cet événement est déjà passé.")


def _ensure_capacity(entity: dict[str, Any], collection: str) -> None:
    limit = capacity(entity)
    if limit is not None and member_count(entity, collection) >= limit:
        raise GroupFull()


def _decremented_count(entity: dict[str, Any], collection: str) -> Any:
    """Return the counter write for one member leaving.

    The last remaining member (or a counter that has drifted to zero) gets
    an absolute floored value so the stored counter never goes negative.
    """
    count = member_count(entity, collection)
    if count <= 1:
        return 0
    return firestore.Increment(-1)


def _queue_add_member(
    batch: WriteBatch,
    db: Client,
    roster: Roster,
    entity_id: str,
    uid: str,
    existing: dict[str, Any] | None,
) -> dict[str, Any]:
    now = utcnow()
    member = {
        "uid": uid,
        "role": ROLE_MEMBER,
        "status": MEMBER_ACTIVE,
        "joinedAt": now,
    }
    member_ref = _member_ref(db, roster, entity_id, uid)
    if existing is None:
        batch.create(member_ref, member)
    else:
        # A removed member coming back.
        batch.set(member_ref, member)
    batch.update(
        _entity_ref(db, roster, entity_id),
        {
            roster.counter_path: firestore.Increment(1),
            roster.ids_field: firestore.ArrayUnion([uid]),
            "updatedAt": now,
        },
    )
    return member


def _normalize_answers(
    entity: dict[str, Any], answers: Any
) -> list[dict[str, Any]]:
    """Validate admission answers and return them keyed by question ID."""
    if not answers:
        answers = []
    if isinstance(answers, dict):
        answers = [{"questionId": qid, "answer": a} for qid, a in answers.items()]
    elif not isinstance(answers, list):
        raise ValidationError("Format des réponses invalide.")

    questions = {q.get("id"): q for q in entity.get("admissionQuestions") or []}
    normalized: dict[str, Any] = {}
    for item in answers:
        question_id = item.get("questionId") if isinstance(item, dict) else None
        if not question_id:
            raise ValidationError("Réponse sans question associée.")
        if questions and question_id not in questions:
            raise ValidationError(f"Question inconnue : {question_id}")
        answer = item.get("answer")
        if isinstance(answer, str):
            answer = answer.strip()
        normalized[question_id] = answer

    for question_id, question in questions.items():
        if question.get("required") and not normalized.get(question_id):
            raise ValidationError("Merci de répondre à toutes les questions obligatoires.")

    return [{"questionId": qid, "answer": a} for qid, a in normalized.items()]


def request_to_join(
    db: Client,
    entity_id: str,
    identity: Identity,
    answers: Any = None,
    collection: str = GROUPS_COLLECTION,
) -> dict[str, Any] | None:
    """Join a group or event, or ask the organizers to let the user in.

    Returns the pending MembershipRequest, or None when the user was added
    directly because the entity does not require approval.
    """
    roster = _roster(collection)
    entity = load_entity(db, entity_id, collection)
    uid = identity.uid

    if get_member_role(db, entity, uid, collection) is not None:
        raise AlreadyMember()

    existing_request = store.get(db, REQUESTS_COLLECTION, request_id_for(entity_id, uid))
    if existing_request and existing_request.get("status") == REQUEST_PENDING:
        raise DuplicateRequest()

    _ensure_open(entity, collection)
    settings = entity.get("settings") or {}
    if not settings.get("requiresApproval"):
        _ensure_capacity(entity, collection)
        existing_member = get_member(db, entity_id, uid, collection)
        batch = db.batch()
        _queue_add_member(batch, db, roster, entity_id, uid, existing_member)
        try:
            store.commit(batch)
        except AlreadyExists:
            raise AlreadyMember() from None
        _log(f"User {uid} joined {collection}/{entity_id}")
        return None

    request: dict[str, Any] = {
        roster.ref_field: entity_id,
        "userId": uid,
        "userInfo": identity.as_author(),
        "answers": _normalize_answers(entity, answers),
        "status": REQUEST_PENDING,
        "submittedAt": utcnow(),
    }
    if existing_request:
        previous = [
            {
                "status": existing_request.get("status"),
                "submittedAt": existing_request.get("submittedAt"),
                "reviewedAt": existing_request.get("reviewedAt"),
                "rejectionReason": existing_request.get("rejectionReason"),
            }
        ]
        request["history"] = (existing_request.get("history") or []) + previous

    request_id = store.create(
        db, REQUESTS_COLLECTION, request, doc_id=request_id_for(entity_id, uid)
    )
    request["id"] = request_id
    _log(f"User {uid} requested to join {collection}/{entity_id}")
    return request


def respond_to_request(  # noqa: PLR0913
    db: Client,
    entity_id: str,
    request_id: str,
    decision: str,
    reviewer: Identity,
    reason: str | None = None,
    collection: str = GROUPS_COLLECTION,
) -> dict[str, Any]:
    """Approve or reject a pending membership request.

    Responding to a request that is no longer pending changes nothing and
    returns it as stored, so a repeated approval never adds the member twice.
    """
    if decision not in (APPROVE, REJECT):
        raise ValidationError("Décision inconnue.")

    roster = _roster(collection)
    entity = load_entity(db, entity_id, collection)
    if not can_manage(get_member_role(db, entity, reviewer.uid, collection)):
        raise PermissionDenied("Seuls les organisateurs peuvent gérer les demandes.")

    request = store.get(db, REQUESTS_COLLECTION, request_id)
    if request is None or request.get(roster.ref_field) != entity_id:
        raise NotFoundError("Demande introuvable.")
    if request.get("status") != REQUEST_PENDING:
        return request

    now = utcnow()
    patch: dict[str, Any] = {
        "status": REQUEST_APPROVED if decision == APPROVE else REQUEST_REJECTED,
        "reviewedBy": reviewer.uid,
        "reviewedAt": now,
    }
    if decision == REJECT and reason:
        patch["rejectionReason"] = reason

    batch = db.batch()
    if decision == APPROVE:
        uid = request["userId"]
        existing_member = get_member(db, entity_id, uid, collection)
        if not existing_member or existing_member.get("status") != MEMBER_ACTIVE:
            _ensure_open(entity, collection)
            _ensure_capacity(entity, collection)
            _queue_add_member(batch, db, roster, entity_id, uid, existing_member)
    batch.update(db.collection(REQUESTS_COLLECTION).document(request_id), patch)

    try:
        store.commit(batch)
    except AlreadyExists:
        _log(f"Request {request_id} was already applied by another reviewer")
        return store.get(db, REQUESTS_COLLECTION, request_id) or request

    request.update(patch)
    _log(f"Request {request_id} {patch['status']} by {reviewer.uid}")
    return request


def cancel_request(
    db: Client, entity_id: str, identity: Identity, collection: str = GROUPS_COLLECTION
) -> None:
    """Withdraw the user's own pending request."""
    load_entity(db, entity_id, collection)
    request_id = request_id_for(entity_id, identity.uid)
    request = store.get(db, REQUESTS_COLLECTION, request_id)
    if request is None or request.get("status") != REQUEST_PENDING:
        raise RequestNotPending()
    store.delete(db, REQUESTS_COLLECTION, request_id)


def leave(
    db: Client, entity_id: str, identity: Identity, collection: str = GROUPS_COLLECTION
) -> bool:
    """Remove the user from a group or event and clear their request.

    Returns False when there was nothing to leave.
    """
    roster = _roster(collection)
    entity = load_entity(db, entity_id, collection)
    uid = identity.uid
    if uid == owner_id(entity):
        raise PreconditionFailed(
            "L'organisateur ne peut pas quitter ; il doit supprimer le groupe."
        )

    member = get_member(db, entity_id, uid, collection)
    request_ref = _request_ref(db, entity_id, uid)
    has_request = request_ref.get().exists
    was_active = bool(member and member.get("status") == MEMBER_ACTIVE)
    if not was_active and not has_request:
        return False

    batch = db.batch()
    if was_active:
        batch.delete(_member_ref(db, roster, entity_id, uid))
        batch.update(
            _entity_ref(db, roster, entity_id),
            {
                roster.counter_path: _decremented_count(entity, collection),
                roster.ids_field: firestore.ArrayRemove([uid]),
                "updatedAt": utcnow(),
            },
        )
    if has_request:
        batch.delete(request_ref)
    store.commit(batch)
    _log(f"User {uid} left {collection}/{entity_id}")
    return was_active


def remove_member(
    db: Client,
    entity_id: str,
    target_uid: str,
    actor: Identity,
    collection: str = GROUPS_COLLECTION,
) -> None:
    """Remove another member. Only the owner may remove admins or moderators."""
    roster = _roster(collection)
    entity = load_entity(db, entity_id, collection)
    actor_role = get_member_role(db, entity, actor.uid, collection)
    if not can_manage(actor_role):
        raise PermissionDenied()
    target_role = get_member_role(db, entity, target_uid, collection)
    if target_role is None:
        raise NotFoundError("Membre introuvable.")
    if target_role == ROLE_OWNER or (
        target_role != ROLE_MEMBER and actor_role != ROLE_OWNER
    ):
        raise PermissionDenied()

    now = utcnow()
    batch = db.batch()
    batch.update(
        _member_ref(db, roster, entity_id, target_uid),
        {"status": MEMBER_REMOVED, "removedAt": now, "removedBy": actor.uid},
    )
    batch.update(
        _entity_ref(db, roster, entity_id),
        {
            roster.counter_path: _decremented_count(entity, collection),
            roster.ids_field: firestore.ArrayRemove([target_uid]),
            "updatedAt": now,
        },
    )
    store.commit(batch)


def set_member_role(
    db: Client,
    entity_id: str,
    target_uid: str,
    role: str,
    actor: Identity,
    collection: str = GROUPS_COLLECTION,
) -> None:
    """Promote or demote a member. Owner only."""
    if role not in MEMBER_ROLES or role == ROLE_OWNER:
        raise ValidationError("Rôle inconnu.")
    roster = _roster(collection)
    entity = load_entity(db, entity_id, collection)
    if actor.uid != owner_id(entity):
        raise PermissionDenied("Seul l'organisateur peut changer les rôles.")
    member = get_member(db, entity_id, target_uid, collection)
    if not member or member.get("status") != MEMBER_ACTIVE:
        raise NotFoundError("Membre introuvable.")
    try:
        _member_ref(db, roster, entity_id, target_uid).update({"role": role})
    except Exception as e:
        raise WriteFailed() from e


def get_user_request(
    db: Client, entity_id: str, uid: str
) -> MembershipRequest | None:
    """Return the latest membership request of a user, if any."""
    request = store.get(db, REQUESTS_COLLECTION, request_id_for(entity_id, uid))
    return cast("MembershipRequest | None", request)


def list_pending_requests(
    db: Client, entity_id: str, viewer: Identity, collection: str = GROUPS_COLLECTION
) -> list[dict[str, Any]]:
    """Return pending requests, oldest first. Managers only."""
    roster = _roster(collection)
    entity = load_entity(db, entity_id, collection)
    if not can_manage(get_member_role(db, entity, viewer.uid, collection)):
        raise PermissionDenied()
    requests = store.query(
        db,
        REQUESTS_COLLECTION,
        [(roster.ref_field, "==", entity_id), ("status", "==", REQUEST_PENDING)],
    )
    requests.sort(key=lambda r: sort_key(r.get("submittedAt")))
    return requests


def reconcile_count(
    db: Client, entity_id: str, collection: str = GROUPS_COLLECTION
) -> int:
    """Recompute the member counter and id list from the member documents.

    Safe to run at any time; returns the repaired count.
    """
    roster = _roster(collection)
    load_entity(db, entity_id, collection)
    members = list_members(db, entity_id, collection)
    count = max(0, len(members))
    store.update(
        db,
        collection,
        entity_id,
        {
            roster.counter_path: count,
            roster.ids_field: [m["id"] for m in members],
            "updatedAt": utcnow(),
        },
    )
    _log(f"Reconciled {collection}/{entity_id}: {count} members")
    return count
