"""Routes for the event blueprint."""

from firebase_admin import firestore
from flask import g, jsonify, request

from smaaks import store
from smaaks.auth.decorators import login_required
from smaaks.core.constants import EVENTS_COLLECTION, USERS_COLLECTION
from smaaks.errors import NotFoundError
from smaaks.group.services import membership

from . import bp, chat, services
from .suggestions import suggest_events


def _payload():
    return request.get_json(silent=True) or {}


@bp.route("", methods=["GET"])
@login_required
def list_events():
    """List active events, optionally filtered by sport and location."""
    db = firestore.client()
    events = services.list_events(
        db,
        sport=request.args.get("sport"),
        location=request.args.get("location"),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"events": events})


@bp.route("", methods=["POST"])
@login_required
def create_event():
    """Create an event."""
    db = firestore.client()
    event = services.create_event(db, g.identity, _payload())
    return jsonify(event), 201


@bp.route("/mine", methods=["GET"])
@login_required
def my_events():
    """List the events the caller created, joined or asked to join."""
    db = firestore.client()
    return jsonify(services.get_user_events(db, g.identity.uid))


@bp.route("/next-action", methods=["GET"])
@login_required
def next_action():
    """Return the action the dashboard should put forward."""
    db = firestore.client()
    return jsonify(services.next_action(db, g.identity))


@bp.route("/suggestions", methods=["GET"])
@login_required
def suggestions():
    """Suggest events matching the caller's profile."""
    db = firestore.client()
    profile = store.get(db, USERS_COLLECTION, g.identity.uid) or {}
    events = services.list_events(db, limit=None)
    return jsonify({"events": suggest_events(profile, g.identity.uid, events)})


@bp.route("/<string:event_id>", methods=["GET"])
@login_required
def view_event(event_id):
    """Return an event with its participants."""
    db = firestore.client()
    return jsonify(services.get_event(db, event_id, viewer=g.identity))


@bp.route("/<string:event_id>", methods=["PATCH"])
@login_required
def edit_event(event_id):
    """Edit or reschedule an event. Creator only."""
    db = firestore.client()
    return jsonify(services.update_event(db, event_id, g.identity, _payload()))


@bp.route("/<string:event_id>", methods=["DELETE"])
@login_required
def delete_event(event_id):
    """Delete an event. Creator only."""
    db = firestore.client()
    deleted = services.delete_event(db, event_id, g.identity)
    return jsonify({"success": True, "deleted": deleted})


@bp.route("/<string:event_id>/join", methods=["POST"])
@login_required
def join_event(event_id):
    """Join an event or ask the organizer to."""
    db = firestore.client()
    join_request = membership.request_to_join(
        db, event_id, g.identity, _payload().get("answers"), EVENTS_COLLECTION
    )
    if join_request is None:
        return jsonify({"status": "joined"})
    return jsonify({"status": "pending", "request": join_request}), 201


@bp.route("/<string:event_id>/leave", methods=["POST"])
@login_required
def leave_event(event_id):
    """Leave an event."""
    db = firestore.client()
    left = membership.leave(db, event_id, g.identity, EVENTS_COLLECTION)
    return jsonify({"success": True, "left": left})


@bp.route("/<string:event_id>/cancel", methods=["POST"])
@login_required
def cancel_request(event_id):
    """Withdraw the caller's pending participation request."""
    db = firestore.client()
    membership.cancel_request(db, event_id, g.identity, EVENTS_COLLECTION)
    return jsonify({"success": True})


@bp.route("/<string:event_id>/requests", methods=["GET"])
@login_required
def pending_requests(event_id):
    """List pending participation requests. Organizer only."""
    db = firestore.client()
    requests = membership.list_pending_requests(
        db, event_id, g.identity, EVENTS_COLLECTION
    )
    return jsonify({"requests": requests})


@bp.route("/<string:event_id>/requests/<string:request_id>", methods=["POST"])
@login_required
def respond_to_request(event_id, request_id):
    """Approve or reject a participation request."""
    payload = _payload()
    db = firestore.client()
    result = membership.respond_to_request(
        db,
        event_id,
        request_id,
        payload.get("decision"),
        g.identity,
        reason=payload.get("reason"),
        collection=EVENTS_COLLECTION,
    )
    return jsonify(result)


@bp.route("/<string:event_id>/messages", methods=["GET"])
@login_required
def messages(event_id):
    """Return the event chat as the caller may see it."""
    db = firestore.client()
    return jsonify({"messages": chat.list_messages(db, event_id, g.identity.uid)})


@bp.route("/<string:event_id>/messages", methods=["POST"])
@login_required
def post_message(event_id):
    """Post a chat message."""
    db = firestore.client()
    message = chat.post_message(db, event_id, g.identity, _payload().get("text", ""))
    return jsonify(message), 201


def _message_in_event(db, event_id, message_id):
    message = chat.get_message(db, message_id)
    if message.get("eventId") != event_id:
        raise NotFoundError("Message introuvable.")
    return message


@bp.route("/<string:event_id>/messages/<string:message_id>/report", methods=["POST"])
@login_required
def report_message(event_id, message_id):
    """Report a chat message."""
    payload = _payload()
    db = firestore.client()
    _message_in_event(db, event_id, message_id)
    message = chat.report_message(
        db,
        message_id,
        g.identity,
        payload.get("reason"),
        payload.get("description"),
    )
    return jsonify({"success": True, "status": message.get("status")})


@bp.route(
    "/<string:event_id>/messages/<string:message_id>/moderate", methods=["POST"]
)
@login_required
def moderate_message(event_id, message_id):
    """Hide or show a chat message. Organizer only."""
    db = firestore.client()
    _message_in_event(db, event_id, message_id)
    message = chat.moderate(db, message_id, _payload().get("action"), g.identity)
    return jsonify({"success": True, "status": message["status"]})


@bp.route("/<string:event_id>/messages/<string:message_id>", methods=["DELETE"])
@login_required
def delete_message(event_id, message_id):
    """Delete a chat message. Author or organizer only."""
    db = firestore.client()
    _message_in_event(db, event_id, message_id)
    chat.delete_message(db, message_id, g.identity)
    return jsonify({"success": True})
