"""Admin routes for the application."""

from firebase_admin import firestore
from flask import g, jsonify

from smaaks import store
from smaaks.auth.decorators import login_required
from smaaks.core.constants import (
    GROUPS_COLLECTION,
    POSTS_COLLECTION,
    REPORTS_COLLECTION,
    REQUEST_PENDING,
    REQUESTS_COLLECTION,
    USERS_COLLECTION,
)
from smaaks.core.timestamps import sort_key
from smaaks.group.services.group_service import GroupService

from . import bp


def _count(db, collection, predicates=()):
    return len(store.query(db, collection, predicates))


@bp.route("/stats")
@login_required(admin_required=True)
def stats():
    """Return platform-wide counters for the admin dashboard."""
    db = firestore.client()
    return jsonify(
        {
            "isAdmin": True,
            "email": g.identity.email,
            "stats": {
                "totalUsers": _count(db, USERS_COLLECTION),
                "totalGroups": _count(db, GROUPS_COLLECTION),
                "pendingRequests": _count(
                    db, REQUESTS_COLLECTION, [("status", "==", REQUEST_PENDING)]
                ),
                "totalPosts": _count(db, POSTS_COLLECTION),
                "totalReports": _count(db, REPORTS_COLLECTION),
            },
        }
    )


@bp.route("/reports")
@login_required(admin_required=True)
def reports():
    """List group reports awaiting review, newest first."""
    db = firestore.client()
    pending = store.query(db, REPORTS_COLLECTION, [("status", "==", "pending")])
    pending.sort(key=lambda r: sort_key(r.get("createdAt")), reverse=True)
    return jsonify({"reports": pending})


@bp.route("/groups/<string:group_id>/reconcile", methods=["POST"])
@login_required(admin_required=True)
def reconcile_group(group_id):
    """Repair the member counter of a group."""
    db = firestore.client()
    count = GroupService.reconcile_member_count(db, group_id)
    return jsonify({"groupId": group_id, "memberCount": count})
