"""Routes for the group blueprint."""

from firebase_admin import firestore
from flask import g, jsonify, request

from smaaks.auth.decorators import login_required
from smaaks.core.constants import FEED_LIMIT
from smaaks.errors import NotFoundError

from . import bp
from .forms import GroupForm, ReportForm, validate_json_form
from .services import feed, membership
from .services.group_service import GroupService


def _payload():
    return request.get_json(silent=True) or {}


@bp.route("", methods=["GET"])
@login_required
def my_groups():
    """List the groups the user owns, belongs to or asked to join."""
    db = firestore.client()
    return jsonify(GroupService.list_user_groups(db, g.identity.uid))


@bp.route("/public", methods=["GET"])
@login_required
def public_groups():
    """Search public groups by category and text."""
    db = firestore.client()
    groups = GroupService.list_public_groups(
        db,
        category=request.args.get("category"),
        search=request.args.get("search"),
    )
    return jsonify({"groups": groups})


@bp.route("", methods=["POST"])
@login_required
def create_group():
    """Create a new group."""
    payload = _payload()
    _form, errors = validate_json_form(GroupForm, payload)
    if errors:
        return jsonify({"error": "Formulaire invalide.", "fields": errors}), 400
    db = firestore.client()
    group = GroupService.create_group(db, g.identity, payload)
    return jsonify(group), 201


@bp.route("/<string:group_id>", methods=["GET"])
@login_required
def view_group(group_id):
    """Return a group with its members and the caller's status."""
    db = firestore.client()
    return jsonify(GroupService.get_group(db, group_id, viewer=g.identity))


@bp.route("/<string:group_id>", methods=["PATCH"])
@login_required
def edit_group(group_id):
    """Edit a group. Owner and admins only."""
    db = firestore.client()
    group = GroupService.update_group(db, group_id, g.identity, _payload())
    return jsonify(group)


@bp.route("/<string:group_id>", methods=["DELETE"])
@login_required
def delete_group(group_id):
    """Delete a group and its content. Owner only."""
    db = firestore.client()
    deleted = GroupService.delete_group(db, group_id, g.identity)
    return jsonify({"success": True, "deleted": deleted})


@bp.route("/<string:group_id>/join", methods=["POST"])
@login_required
def join_group(group_id):
    """Join a group directly or submit a membership request."""
    db = firestore.client()
    answers = _payload().get("answers")
    join_request = membership.request_to_join(db, group_id, g.identity, answers)
    if join_request is None:
        return jsonify({"status": "joined"})
    return jsonify({"status": "pending", "request": join_request}), 201


@bp.route("/<string:group_id>/leave", methods=["POST"])
@login_required
def leave_group(group_id):
    """Leave a group."""
    db = firestore.client()
    left = membership.leave(db, group_id, g.identity)
    return jsonify({"success": True, "left": left})


@bp.route("/<string:group_id>/cancel", methods=["POST"])
@login_required
def cancel_request(group_id):
    """Withdraw the caller's pending request."""
    db = firestore.client()
    membership.cancel_request(db, group_id, g.identity)
    return jsonify({"success": True})


@bp.route("/<string:group_id>/requests", methods=["GET"])
@login_required
def pending_requests(group_id):
    """List pending requests. Moderators only."""
    db = firestore.client()
    requests = membership.list_pending_requests(db, group_id, g.identity)
    return jsonify({"requests": requests})


@bp.route("/<string:group_id>/requests/<string:request_id>", methods=["POST"])
@login_required
def respond_to_request(group_id, request_id):
    """Approve or reject a membership request."""
    payload = _payload()
    db = firestore.client()
    result = membership.respond_to_request(
        db,
        group_id,
        request_id,
        payload.get("decision"),
        g.identity,
        reason=payload.get("reason"),
    )
    return jsonify(result)


@bp.route("/<string:group_id>/members/<string:uid>", methods=["DELETE"])
@login_required
def remove_member(group_id, uid):
    """Remove a member from the group."""
    db = firestore.client()
    membership.remove_member(db, group_id, uid, g.identity)
    return jsonify({"success": True})


@bp.route("/<string:group_id>/members/<string:uid>/role", methods=["POST"])
@login_required
def set_member_role(group_id, uid):
    """Change the role of a member. Owner only."""
    db = firestore.client()
    membership.set_member_role(db, group_id, uid, _payload().get("role"), g.identity)
    return jsonify({"success": True})


@bp.route("/<string:group_id>/report", methods=["POST"])
@login_required
def report_group(group_id):
    """Report a group to the administrators."""
    payload = _payload()
    form, errors = validate_json_form(ReportForm, payload)
    if errors:
        return jsonify({"error": "Merci d'indiquer un motif.", "fields": errors}), 400
    db = firestore.client()
    report = GroupService.report_group(
        db, group_id, g.identity, form.reason.data, form.details.data or ""
    )
    return jsonify(
        {
            "success": True,
            "message": "Signalement envoyé avec succès",
            "reportId": report["id"],
        }
    )


@bp.route("/<string:group_id>/posts", methods=["GET"])
@login_required
def group_feed(group_id):
    """Return the group feed with a reaction summary for each post."""
    db = firestore.client()
    limit = request.args.get("limit", default=FEED_LIMIT, type=int)
    posts = feed.get_feed(db, group_id, viewer=g.identity, limit=limit)
    for post in posts:
        post["reactionSummary"] = feed.reaction_summary(post, g.identity.uid)
    return jsonify({"posts": posts})


@bp.route("/<string:group_id>/posts", methods=["POST"])
@login_required
def create_post(group_id):
    """Publish a post."""
    payload = _payload()
    db = firestore.client()
    post = feed.create_post(
        db, group_id, g.identity, payload.get("text", ""), payload.get("images")
    )
    return jsonify(post), 201


def _post_in_group(db, group_id, post_id):
    post = feed.get_post(db, post_id)
    if post.get("groupId") != group_id:
        raise NotFoundError("Publication introuvable.")
    return post


@bp.route("/<string:group_id>/posts/<string:post_id>/reactions", methods=["POST"])
@login_required
def react(group_id, post_id):
    """Toggle the caller's reaction on a post."""
    db = firestore.client()
    _post_in_group(db, group_id, post_id)
    reactions = feed.toggle_reaction(db, post_id, g.identity, _payload().get("type"))
    post = {"reactions": reactions}
    return jsonify(
        {
            "reactions": reactions,
            "summary": feed.reaction_summary(post, g.identity.uid),
        }
    )


@bp.route("/<string:group_id>/posts/<string:post_id>/pin", methods=["POST"])
@login_required
def pin(group_id, post_id):
    """Pin a post."""
    db = firestore.client()
    _post_in_group(db, group_id, post_id)
    feed.pin_post(db, post_id, g.identity)
    return jsonify({"success": True, "isPinned": True})


@bp.route("/<string:group_id>/posts/<string:post_id>/unpin", methods=["POST"])
@login_required
def unpin(group_id, post_id):
    """Unpin a post."""
    db = firestore.client()
    _post_in_group(db, group_id, post_id)
    feed.unpin_post(db, post_id, g.identity)
    return jsonify({"success": True, "isPinned": False})


@bp.route("/<string:group_id>/posts/<string:post_id>/comments", methods=["GET"])
@login_required
def comments(group_id, post_id):
    """List the comments of a post."""
    db = firestore.client()
    _post_in_group(db, group_id, post_id)
    return jsonify({"comments": feed.list_comments(db, post_id)})


@bp.route("/<string:group_id>/posts/<string:post_id>/comments", methods=["POST"])
@login_required
def add_comment(group_id, post_id):
    """Comment on a post."""
    db = firestore.client()
    _post_in_group(db, group_id, post_id)
    comment = feed.add_comment(db, post_id, g.identity, _payload().get("text", ""))
    return jsonify(comment), 201


@bp.route("/<string:group_id>/posts/<string:post_id>", methods=["DELETE"])
@login_required
def delete_post(group_id, post_id):
    """Delete a post. Author and moderators only."""
    db = firestore.client()
    _post_in_group(db, group_id, post_id)
    feed.delete_post(db, post_id, g.identity)
    return jsonify({"success": True})


@bp.route("/<string:group_id>/chat", methods=["POST"])
@login_required
def chat(group_id):
    """Send a message to the group chat."""
    db = firestore.client()
    message = feed.send_group_chat_message(
        db, group_id, g.identity, _payload().get("text", "")
    )
    return jsonify(message), 201
