"""Service functions for sport events."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from flask import current_app, has_app_context

from smaaks import store
from smaaks.core.constants import (
    EVENT_ACTIVE,
    EVENT_FULL,
    EVENT_MESSAGES_COLLECTION,
    EVENT_STATUSES,
    EVENTS_COLLECTION,
    EVENTS_LIST_LIMIT,
    MEMBER_ACTIVE,
    MEMBERS_SUBCOLLECTION,
    MESSAGE_REPORTS_SUBCOLLECTION,
    MIN_PARTICIPANTS,
    REQUEST_PENDING,
    REQUESTS_COLLECTION,
    ROLE_OWNER,
    SKILL_LEVEL_ALL,
    SKILL_LEVELS,
    SPORTS,
)
from smaaks.core.timestamps import sort_key, to_datetime, utcnow
from smaaks.errors import PermissionDenied, ValidationError
from smaaks.group.services import membership

if TYPE_CHECKING:
    from datetime import datetime

    from google.cloud.firestore_v1.client import Client

    from smaaks.auth.models import Identity
    from smaaks.event.models import Event

EDITABLE_FIELDS = (
    "title",
    "description",
    "date",
    "location",
    "maxParticipants",
    "skillLevel",
    "equipment",
    "status",
    "settings",
)


def _clean_title(value: Any) -> str:
    title = (value or "").strip()
    if not title:
        raise ValidationError("Le titre est obligatoire.")
    return title


def _clean_date(value: Any, now: datetime) -> datetime:
    date = to_datetime(value)
    if date is None:
        raise ValidationError("Date invalide.")
    if date <= now:
        raise ValidationError("La date doit être dans le futur.")
    return date


def _clean_capacity(value: Any) -> int:
    try:
        capacity = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Nombre de participants invalide.") from None
    if capacity < MIN_PARTICIPANTS:
        raise ValidationError(
            f"Il faut au moins {MIN_PARTICIPANTS} participants."
        )
    return capacity


def _clean_location(value: Any) -> str:
    location = (value or "").strip()
    if not location:
        raise ValidationError("Le lieu est obligatoire.")
    return location


def _clean_skill_level(value: Any) -> str:
    level = value or SKILL_LEVEL_ALL
    if level not in SKILL_LEVELS:
        raise ValidationError("Niveau inconnu.")
    return level


def is_full(event: dict[str, Any]) -> bool:
    """Return True when no participant can be added."""
    if event.get("status") == EVENT_FULL:
        return True
    limit = membership.capacity(event)
    return limit is not None and membership.member_count(event, EVENTS_COLLECTION) >= limit


def create_event(db: Client, creator: Identity, data: dict[str, Any]) -> dict[str, Any]:
    """Create an event with its creator as first participant."""
    now = utcnow()
    sport = data.get("sport")
    if sport not in SPORTS:
        raise ValidationError("Sport inconnu.")
    settings = data.get("settings") or {}

    event: dict[str, Any] = {
        "title": _clean_title(data.get("title")),
        "description": (data.get("description") or "").strip(),
        "sport": sport,
        "date": _clean_date(data.get("date"), now),
        "location": _clean_location(data.get("location")),
        "maxParticipants": _clean_capacity(data.get("maxParticipants")),
        "skillLevel": _clean_skill_level(data.get("skillLevel")),
        "equipment": (data.get("equipment") or "").strip(),
        "settings": {"requiresApproval": bool(settings.get("requiresApproval"))},
        "creatorId": creator.uid,
        "organizer": {"uid": creator.uid, **creator.as_author()},
        "participantIds": [creator.uid],
        "stats": {"participantCount": 1},
        "status": EVENT_ACTIVE,
        "createdAt": now,
        "updatedAt": now,
    }

    event_ref = db.collection(EVENTS_COLLECTION).document()
    batch = db.batch()
    batch.set(event_ref, event)
    batch.set(
        event_ref.collection(MEMBERS_SUBCOLLECTION).document(creator.uid),
        {
            "uid": creator.uid,
            "role": ROLE_OWNER,
            "status": MEMBER_ACTIVE,
            "joinedAt": now,
        },
    )
    store.commit(batch)
    event["id"] = event_ref.id
    if has_app_context():
        current_app.logger.info(f"Event {event_ref.id} created by {creator.uid}")
    return event


def get_event(
    db: Client, event_id: str, viewer: Identity | None = None
) -> Event:
    """Fetch an event with its participants and the viewer's status."""
    event = membership.load_entity(db, event_id, EVENTS_COLLECTION)
    event["participants"] = [
        {"uid": m["id"], "role": m.get("role"), "joinedAt": m.get("joinedAt")}
        for m in membership.list_members(db, event_id, EVENTS_COLLECTION)
    ]
    event["participantCount"] = membership.member_count(event, EVENTS_COLLECTION)
    event["isFull"] = is_full(event)
    if viewer is not None:
        event["viewerRole"] = membership.get_member_role(
            db, event, viewer.uid, EVENTS_COLLECTION
        )
        event["viewerRequest"] = membership.get_user_request(db, event_id, viewer.uid)
    return cast("Event", event)


def filter_events(
    events: list[dict[str, Any]],
    sport: str | None = None,
    location: str | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Keep active events matching the filters, newest first."""
    selected = [e for e in events if e.get("status") == EVENT_ACTIVE]
    selected.sort(key=lambda e: sort_key(e.get("createdAt")), reverse=True)
    if sport:
        selected = [e for e in selected if e.get("sport") == sport]
    if location:
        needle = location.lower()
        selected = [e for e in selected if needle in (e.get("location") or "").lower()]
    if limit:
        selected = selected[:limit]
    return selected


def list_events(
    db: Client,
    sport: str | None = None,
    location: str | None = None,
    limit: int | None = EVENTS_LIST_LIMIT,
) -> list[dict[str, Any]]:
    """Return active events, newest first."""
    events = store.query(db, EVENTS_COLLECTION, [("status", "==", EVENT_ACTIVE)])
    return filter_events(events, sport=sport, location=location, limit=limit)


def subscribe_to_events(
    db: Client,
    callback,
    sport: str | None = None,
    location: str | None = None,
    limit: int | None = None,
):
    """Push the filtered list of active events on every change.

    Returns a function that stops the listener.
    """

    def on_change(events: list[dict[str, Any]]) -> None:
        callback(filter_events(events, sport=sport, location=location, limit=limit))

    return store.subscribe(db, EVENTS_COLLECTION, on_change)


def _require_creator(event: dict[str, Any], actor: Identity) -> None:
    if event.get("creatorId") != actor.uid:
        raise PermissionDenied("Seul l'organisateur peut modifier l'événement.")


def update_event(
    db: Client, event_id: str, actor: Identity, changes: dict[str, Any]
) -> dict[str, Any]:
    """Edit or reschedule an event. Creator only."""
    event = membership.load_entity(db, event_id, EVENTS_COLLECTION)
    _require_creator(event, actor)
    now = utcnow()

    patch: dict[str, Any] = {}
    for field in EDITABLE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "title":
            value = _clean_title(value)
        elif field == "date":
            value = _clean_date(value, now)
        elif field == "location":
            value = _clean_location(value)
        elif field == "skillLevel":
            value = _clean_skill_level(value)
        elif field == "maxParticipants":
            value = _clean_capacity(value)
            if value < membership.member_count(event, EVENTS_COLLECTION):
                raise ValidationError(
                    "Il y a déjà plus de participants que cette limite."
                )
        elif field == "status" and value not in EVENT_STATUSES:
            raise ValidationError("Statut inconnu.")
        elif field == "settings":
            value = {"requiresApproval": bool((value or {}).get("requiresApproval"))}
        elif isinstance(value, str):
            value = value.strip()
        patch[field] = value
    if not patch:
        return event

    patch["updatedAt"] = now
    store.update(db, EVENTS_COLLECTION, event_id, patch)
    event.update(patch)
    return event


def delete_event(db: Client, event_id: str, actor: Identity) -> int:
    """Delete an event with its participants, requests and messages.

    The event document is deleted last so an interrupted run can be repeated.
    """
    event = membership.load_entity(db, event_id, EVENTS_COLLECTION)
    _require_creator(event, actor)

    event_ref = db.collection(EVENTS_COLLECTION).document(event_id)
    refs = [doc.reference for doc in event_ref.collection(MEMBERS_SUBCOLLECTION).stream()]
    for request in store.query(db, REQUESTS_COLLECTION, [("eventId", "==", event_id)]):
        refs.append(db.collection(REQUESTS_COLLECTION).document(request["id"]))
    for message in store.query(
        db, EVENT_MESSAGES_COLLECTION, [("eventId", "==", event_id)]
    ):
        message_ref = db.collection(EVENT_MESSAGES_COLLECTION).document(message["id"])
        refs.extend(
            doc.reference
            for doc in message_ref.collection(MESSAGE_REPORTS_SUBCOLLECTION).stream()
        )
        refs.append(message_ref)
    refs.append(event_ref)
    return store.delete_refs(db, refs)


def _by_date(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(events, key=lambda e: sort_key(e.get("date")))


def get_user_events(db: Client, uid: str) -> dict[str, list[dict[str, Any]]]:
    """Return the events a user created, joins, or asked to join."""
    created = store.query(db, EVENTS_COLLECTION, [("creatorId", "==", uid)])
    participating = [
        e
        for e in store.query(
            db, EVENTS_COLLECTION, [("participantIds", "array_contains", uid)]
        )
        if e.get("creatorId") != uid
    ]
    pending = []
    for request in store.query(
        db,
        REQUESTS_COLLECTION,
        [("userId", "==", uid), ("status", "==", REQUEST_PENDING)],
    ):
        if not request.get("eventId"):
            continue
        event = store.get(db, EVENTS_COLLECTION, request["eventId"])
        if event is not None:
            pending.append(event)
    return {
        "created": _by_date(created),
        "participating": _by_date(participating),
        "pending": _by_date(pending),
    }


def next_action(
    db: Client, identity: Identity | None, now: datetime | None = None
) -> dict[str, Any]:
    """Pick what the dashboard should suggest to the user next."""
    create = {"type": "create", "url": "/create", "label": "Créer un événement"}
    if identity is None:
        return create
    now = now or utcnow()
    user_events = get_user_events(db, identity.uid)

    upcoming = [
        e
        for e in user_events["participating"] + user_events["created"]
        if (to_datetime(e.get("date")) or now) > now
    ]
    if upcoming:
        event = _by_date(upcoming)[0]
        return {
            "type": "next_event",
            "url": f"/events/{event['id']}",
            "label": "Prochaine partie",
            "event": event,
        }

    if user_events["pending"]:
        return {"type": "search", "url": "/mes-parties", "label": "Mes demandes"}

    for event in list_events(db, limit=10):
        date = to_datetime(event.get("date"))
        if (
            date is not None
            and date > now
            and event.get("creatorId") != identity.uid
            and identity.uid not in (event.get("participantIds") or [])
            and membership.get_user_request(db, event["id"], identity.uid) is None
        ):
            return {"type": "search", "url": "/search", "label": "Chercher des parties"}

    return create
