"""Event chat with participant reports and organizer moderation.

Each report is a document keyed by the reporter's UID under the message, so
a user can report a message at most once even under concurrent requests.
The message keeps an atomic ``reportCount``; once it reaches the threshold
the message switches to ``reported`` and only the organizer still sees it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, cast

from firebase_admin import firestore
from flask import current_app, has_app_context
from google.api_core.exceptions import AlreadyExists

from smaaks import store
from smaaks.core.constants import (
    EVENT_MESSAGES_COLLECTION,
    EVENTS_COLLECTION,
    MESSAGE_HIDDEN,
    MESSAGE_REPORTED,
    MESSAGE_REPORTS_SUBCOLLECTION,
    MESSAGE_VISIBLE,
    REPORT_REASONS,
    REPORT_THRESHOLD,
)
from smaaks.core.timestamps import sort_key, utcnow
from smaaks.errors import (
    DuplicateReport,
    NotAMember,
    NotFoundError,
    PermissionDenied,
    PreconditionFailed,
    ValidationError,
)
from smaaks.group.services.membership import get_member_role, load_entity
from smaaks.notifications.dispatcher import event_topic, notify_topic, preview

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

    from smaaks.auth.models import Identity
    from smaaks.event.models import EventMessage, MessageReport

CHAT_TITLE = "💬 Nouveau message dans le chat"
MODERATION_ACTIONS = {"hide": MESSAGE_HIDDEN, "show": MESSAGE_VISIBLE}


def _message_ref(db: Client, message_id: str):
    return db.collection(EVENT_MESSAGES_COLLECTION).document(message_id)


def _load_message(db: Client, message_id: str) -> dict[str, Any]:
    message = store.get(db, EVENT_MESSAGES_COLLECTION, message_id)
    if message is None:
        raise NotFoundError("Message introuvable.")
    return message


def post_message(
    db: Client, event_id: str, author: Identity, text: str
) -> dict[str, Any]:
    """Post a chat message. Only the organizer and participants may post."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Le message est vide.")
    event = load_entity(db, event_id, EVENTS_COLLECTION)
    if get_member_role(db, event, author.uid, EVENTS_COLLECTION) is None:
        raise NotAMember("Seuls les participants peuvent envoyer des messages.")

    message: dict[str, Any] = {
        "eventId": event_id,
        "userId": author.uid,
        "userName": author.name,
        "userAvatar": author.photo_url,
        "content": text,
        "status": MESSAGE_VISIBLE,
        "isOrganizer": event.get("creatorId") == author.uid,
        "reportCount": 0,
        "createdAt": utcnow(),
    }
    message["id"] = store.create(db, EVENT_MESSAGES_COLLECTION, message)
    notify_topic(event_topic(event_id), CHAT_TITLE, f"{author.name}: {preview(text)}")
    return message


def list_reports(db: Client, message_id: str) -> list[MessageReport]:
    """Return the reports filed against a message, oldest first."""
    reports: list[MessageReport] = []
    for doc in _message_ref(db, message_id).collection(
        MESSAGE_REPORTS_SUBCOLLECTION
    ).stream():
        report = store.snapshot_to_dict(doc)
        if report is not None:
            reports.append(cast("MessageReport", report))
    reports.sort(key=lambda r: sort_key(r.get("createdAt")))
    return reports


def get_message(db: Client, message_id: str) -> EventMessage:
    """Fetch a message with its reports."""
    message = _load_message(db, message_id)
    message["reports"] = list_reports(db, message_id)
    return cast("EventMessage", message)


def report_message(
    db: Client,
    message_id: str,
    reporter: Identity,
    reason: str,
    description: str | None = None,
) -> dict[str, Any]:
    """Report a message. Returns the message as it stands afterwards."""
    if reason not in REPORT_REASONS:
        raise ValidationError("Motif de signalement inconnu.")
    if _load_message(db, message_id).get("userId") == reporter.uid:
        raise PreconditionFailed("Vous ne pouvez pas signaler votre propre message.")
    message_ref = _message_ref(db, message_id)
    report_ref = message_ref.collection(MESSAGE_REPORTS_SUBCOLLECTION).document(
        reporter.uid
    )
    if report_ref.get().exists:
        raise DuplicateReport()

    now = utcnow()
    batch = db.batch()
    batch.create(
        report_ref,
        {
            "userId": reporter.uid,
            "userName": reporter.name,
            "reason": reason,
            "description": description or "",
            "createdAt": now,
        },
    )
    batch.update(
        message_ref, {"reportCount": firestore.Increment(1), "updatedAt": now}
    )
    try:
        store.commit(batch)
    except AlreadyExists:
        raise DuplicateReport() from None

    message = _load_message(db, message_id)
    if (
        message.get("reportCount", 0) >= REPORT_THRESHOLD
        and message.get("status") != MESSAGE_REPORTED
    ):
        store.update(
            db, EVENT_MESSAGES_COLLECTION, message_id, {"status": MESSAGE_REPORTED}
        )
        message["status"] = MESSAGE_REPORTED
        if has_app_context():
            current_app.logger.warning(
                f"Message {message_id} reached {REPORT_THRESHOLD} reports"
            )
    return message


def _event_of(db: Client, message: dict[str, Any]) -> dict[str, Any]:
    return load_entity(db, message["eventId"], EVENTS_COLLECTION)


def moderate(
    db: Client, message_id: str, action: str, organizer: Identity
) -> dict[str, Any]:
    """Hide or show a message. Event creator only."""
    if action not in MODERATION_ACTIONS:
        raise ValidationError("Action de modération inconnue.")
    message = _load_message(db, message_id)
    event = _event_of(db, message)
    if event.get("creatorId") != organizer.uid:
        raise PermissionDenied("Seul l'organisateur peut modérer les messages.")
    patch = {"status": MODERATION_ACTIONS[action], "updatedAt": utcnow()}
    store.update(db, EVENT_MESSAGES_COLLECTION, message_id, patch)
    message.update(patch)
    return message


def delete_message(db: Client, message_id: str, actor: Identity) -> None:
    """Delete a message. Allowed for its author and the event creator."""
    message = _load_message(db, message_id)
    if message.get("userId") != actor.uid:
        event = _event_of(db, message)
        if event.get("creatorId") != actor.uid:
            raise PermissionDenied(
                "Seul l'auteur ou l'organisateur peut supprimer ce message."
            )
    message_ref = _message_ref(db, message_id)
    refs = [
        doc.reference
        for doc in message_ref.collection(MESSAGE_REPORTS_SUBCOLLECTION).stream()
    ]
    refs.append(message_ref)
    store.delete_refs(db, refs)


def visible_messages(
    messages: list[dict[str, Any]], is_organizer: bool
) -> list[dict[str, Any]]:
    """Apply the read-side visibility rule, newest first.

    The organizer sees every message; everyone else only visible ones.
    """
    if not is_organizer:
        messages = [m for m in messages if m.get("status") == MESSAGE_VISIBLE]
    return sorted(messages, key=lambda m: sort_key(m.get("createdAt")), reverse=True)


def list_messages(db: Client, event_id: str, viewer_id: str) -> list[dict[str, Any]]:
    """Return the chat of an event as the viewer is allowed to see it."""
    event = load_entity(db, event_id, EVENTS_COLLECTION)
    messages = store.query(
        db, EVENT_MESSAGES_COLLECTION, [("eventId", "==", event_id)]
    )
    return visible_messages(messages, event.get("creatorId") == viewer_id)


def subscribe_to_messages(
    db: Client,
    event_id: str,
    viewer_id: str,
    callback: Callable[[list[dict[str, Any]]], None],
) -> Callable[[], None]:
    """Push the viewer's chat on every change. Returns the unsubscribe function."""
    event = load_entity(db, event_id, EVENTS_COLLECTION)
    is_organizer = event.get("creatorId") == viewer_id

    def on_change(messages: list[dict[str, Any]]) -> None:
        callback(visible_messages(messages, is_organizer))

    return store.subscribe(
        db, EVENT_MESSAGES_COLLECTION, on_change, [("eventId", "==", event_id)]
    )
