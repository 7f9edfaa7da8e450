"""Service layer for group operations and data orchestration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from flask import current_app, has_app_context

from smaaks import store
from smaaks.core.constants import (
    COMMENTS_COLLECTION,
    EXTERNAL_LINK_KINDS,
    GROUP_CATEGORIES,
    GROUP_MESSAGES_COLLECTION,
    GROUPS_COLLECTION,
    MEMBER_ACTIVE,
    MEMBERS_SUBCOLLECTION,
    NOTIFICATIONS_COLLECTION,
    POSTS_COLLECTION,
    PUBLIC_GROUPS_LIMIT,
    REACTIONS_SUBCOLLECTION,
    REPORTS_COLLECTION,
    REQUEST_PENDING,
    REQUESTS_COLLECTION,
    ROLE_ADMIN,
    ROLE_OWNER,
)
from smaaks.core.timestamps import sort_key, utcnow
from smaaks.errors import PermissionDenied, ValidationError
from smaaks.group.services import membership
from smaaks.utils import send_email_background

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

    from smaaks.auth.models import Identity
    from smaaks.group.models import Group

EDITABLE_FIELDS = (
    "description",
    "category",
    "location",
    "rules",
    "externalLinks",
    "settings",
    "admissionQuestions",
)


def _clean_settings(settings: dict[str, Any] | None) -> dict[str, Any]:
    """Keep the known settings, dropping empty optional bounds."""
    settings = settings or {}
    cleaned: dict[str, Any] = {
        "isPrivate": bool(settings.get("isPrivate", False)),
        "requiresApproval": bool(settings.get("requiresApproval", False)),
    }
    for key in ("maxMembers", "minAge", "maxAge"):
        value = settings.get(key)
        if value in (None, "", 0):
            continue
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Valeur invalide pour {key}.") from None
        if value < 1:
            raise ValidationError(f"Valeur invalide pour {key}.")
        cleaned[key] = value
    if cleaned.get("minAge") and cleaned.get("maxAge"):
        if cleaned["minAge"] > cleaned["maxAge"]:
            raise ValidationError("L'âge minimum dépasse l'âge maximum.")
    return cleaned


def _clean_questions(questions: list[Any] | None) -> list[dict[str, Any]]:
    """Drop blank admission questions and number the others."""
    cleaned = []
    for index, question in enumerate(questions or [], start=1):
        if isinstance(question, str):
            question = {"question": question}
        text = (question.get("question") or "").strip()
        if not text:
            continue
        cleaned.append(
            {
                "id": str(question.get("id") or index),
                "question": text,
                "required": bool(question.get("required", False)),
            }
        )
    ids = [q["id"] for q in cleaned]
    if len(ids) != len(set(ids)):
        raise ValidationError("Deux questions portent le même identifiant.")
    return cleaned


def _clean_links(links: dict[str, Any] | None) -> dict[str, Any]:
    """Remove empty external links."""
    links = links or {}
    cleaned: dict[str, Any] = {
        kind: links[kind].strip()
        for kind in EXTERNAL_LINK_KINDS
        if isinstance(links.get(kind), str) and links[kind].strip()
    }
    other = [
        {"name": link["name"].strip(), "url": link["url"].strip()}
        for link in links.get("other") or []
        if (link.get("name") or "").strip() and (link.get("url") or "").strip()
    ]
    if other:
        cleaned["other"] = other
    return cleaned


def _clean_rules(rules: list[Any] | None) -> list[str]:
    return [rule.strip() for rule in rules or [] if isinstance(rule, str) and rule.strip()]


class GroupService:
    """Service class for group-related operations."""

    @staticmethod
    def create_group(db: Client, owner: Identity, data: dict[str, Any]) -> dict[str, Any]:
        """Create a group with its owner as first member."""
        name = (data.get("name") or "").strip()
        description = (data.get("description") or "").strip()
        category = data.get("category") or ""
        if not name:
            raise ValidationError("Le nom du groupe est obligatoire.")
        if not description:
            raise ValidationError("La description est obligatoire.")
        if category not in GROUP_CATEGORIES:
            raise ValidationError("Catégorie inconnue.")

        now = utcnow()
        group: dict[str, Any] = {
            "name": name,
            "description": description,
            "category": category,
            "location": data.get("location") or {},
            "rules": _clean_rules(data.get("rules")),
            "admissionQuestions": _clean_questions(data.get("admissionQuestions")),
            "externalLinks": _clean_links(data.get("externalLinks")),
            "settings": _clean_settings(data.get("settings")),
            "ownerId": owner.uid,
            "organizer": {"uid": owner.uid, **owner.as_author()},
            "memberIds": [owner.uid],
            "stats": {"memberCount": 1},
            "createdAt": now,
            "updatedAt": now,
        }

        group_ref = db.collection(GROUPS_COLLECTION).document()
        batch = db.batch()
        batch.set(group_ref, group)
        batch.set(
            group_ref.collection(MEMBERS_SUBCOLLECTION).document(owner.uid),
            {
                "uid": owner.uid,
                "role": ROLE_OWNER,
                "status": MEMBER_ACTIVE,
                "joinedAt": now,
            },
        )
        store.commit(batch)
        group["id"] = group_ref.id
        if has_app_context():
            current_app.logger.info(f"Group {group_ref.id} created by {owner.uid}")
        return group

    @staticmethod
    def update_group(
        db: Client, group_id: str, actor: Identity, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Edit the descriptive fields and settings of a group."""
        group = membership.load_entity(db, group_id)
        role = membership.get_member_role(db, group, actor.uid)
        if role not in (ROLE_OWNER, ROLE_ADMIN):
            raise PermissionDenied("Seuls les administrateurs peuvent modifier le groupe.")

        patch: dict[str, Any] = {}
        for field in EDITABLE_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if field == "settings":
                value = _clean_settings(value)
            elif field == "admissionQuestions":
                value = _clean_questions(value)
            elif field == "externalLinks":
                value = _clean_links(value)
            elif field == "rules":
                value = _clean_rules(value)
            elif field == "category" and value not in GROUP_CATEGORIES:
                raise ValidationError("Catégorie inconnue.")
            elif field == "description":
                value = (value or "").strip()
                if not value:
                    raise ValidationError("La description est obligatoire.")
            patch[field] = value
        if not patch:
            return group

        patch["updatedAt"] = utcnow()
        store.update(db, GROUPS_COLLECTION, group_id, patch)
        group.update(patch)
        return group

    @staticmethod
    def get_group(
        db: Client, group_id: str, viewer: Identity | None = None
    ) -> Group:
        """Fetch a group with its active members and the viewer's status."""
        group = membership.load_entity(db, group_id)
        group["members"] = [
            {
                "uid": m["id"],
                "role": m.get("role"),
                "status": m.get("status"),
                "joinedAt": m.get("joinedAt"),
            }
            for m in membership.list_members(db, group_id)
        ]
        group["memberCount"] = membership.member_count(group)
        if viewer is not None:
            role = membership.get_member_role(db, group, viewer.uid)
            request = membership.get_user_request(db, group_id, viewer.uid)
            group["viewerRole"] = role
            group["canManage"] = membership.can_manage(role)
            group["viewerRequest"] = request
        return cast("Group", group)

    @staticmethod
    def list_public_groups(
        db: Client,
        category: str | None = None,
        search: str | None = None,
        limit: int = PUBLIC_GROUPS_LIMIT,
    ) -> list[dict[str, Any]]:
        """Return public groups, newest first, optionally filtered."""
        predicates = [("settings.isPrivate", "==", False)]
        if category:
            predicates.append(("category", "==", category))
        groups = store.query(db, GROUPS_COLLECTION, predicates)
        if search:
            needle = search.lower()
            groups = [
                g
                for g in groups
                if needle in g.get("name", "").lower()
                or needle in g.get("description", "").lower()
            ]
        groups.sort(key=lambda g: sort_key(g.get("createdAt")), reverse=True)
        return groups[:limit]

    @staticmethod
    def list_user_groups(db: Client, uid: str) -> dict[str, list[dict[str, Any]]]:
        """Split the user's groups into owned and joined, plus pending requests."""
        groups = store.query(
            db, GROUPS_COLLECTION, [("memberIds", "array_contains", uid)]
        )
        groups.sort(key=lambda g: sort_key(g.get("createdAt")), reverse=True)
        owned = [g for g in groups if membership.owner_id(g) == uid]
        joined = [g for g in groups if membership.owner_id(g) != uid]
        pending = store.query(
            db,
            REQUESTS_COLLECTION,
            [("userId", "==", uid), ("status", "==", REQUEST_PENDING)],
        )
        pending = [r for r in pending if r.get("groupId")]
        return {"owned": owned, "joined": joined, "pending": pending}

    @staticmethod
    def _dependent_refs(db: Client, group_id: str) -> list[Any]:
        group_ref = db.collection(GROUPS_COLLECTION).document(group_id)
        refs = [doc.reference for doc in group_ref.collection(MEMBERS_SUBCOLLECTION).stream()]
        for request in store.query(
            db, REQUESTS_COLLECTION, [("groupId", "==", group_id)]
        ):
            refs.append(db.collection(REQUESTS_COLLECTION).document(request["id"]))
        for comment in store.query(
            db, COMMENTS_COLLECTION, [("groupId", "==", group_id)]
        ):
            refs.append(db.collection(COMMENTS_COLLECTION).document(comment["id"]))
        for message in store.query(
            db, GROUP_MESSAGES_COLLECTION, [("groupId", "==", group_id)]
        ):
            refs.append(db.collection(GROUP_MESSAGES_COLLECTION).document(message["id"]))
        for post in store.query(db, POSTS_COLLECTION, [("groupId", "==", group_id)]):
            post_ref = db.collection(POSTS_COLLECTION).document(post["id"])
            refs.extend(
                doc.reference
                for doc in post_ref.collection(REACTIONS_SUBCOLLECTION).stream()
            )
            refs.append(post_ref)
        return refs

    @staticmethod
    def delete_group(db: Client, group_id: str, actor: Identity) -> int:
        """Delete a group and everything that belongs to it. Owner only.

        Dependents are deleted first and the group document last, so a run
        interrupted by a failure can simply be repeated.
        """
        group = membership.load_entity(db, group_id)
        if actor.uid != membership.owner_id(group):
            raise PermissionDenied("Seul l'organisateur peut supprimer le groupe.")
        refs = GroupService._dependent_refs(db, group_id)
        refs.append(db.collection(GROUPS_COLLECTION).document(group_id))
        deleted = store.delete_refs(db, refs)
        if has_app_context():
            current_app.logger.info(
                f"Group {group_id} deleted by {actor.uid} ({deleted} documents)"
            )
        return deleted

    @staticmethod
    def reconcile_member_count(db: Client, group_id: str) -> int:
        """Repair stats.memberCount from the member documents."""
        return membership.reconcile_count(db, group_id, GROUPS_COLLECTION)

    @staticmethod
    def report_group(
        db: Client,
        group_id: str,
        reporter: Identity,
        reason: str,
        details: str = "",
    ) -> dict[str, Any]:
        """Report a group to the administrators and warn its organizer."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Merci d'indiquer un motif.")
        group = membership.load_entity(db, group_id)
        organizer = group.get("organizer") or {}
        now = utcnow()

        report: dict[str, Any] = {
            "groupId": group_id,
            "groupName": group.get("name"),
            "groupOrganizerId": membership.owner_id(group),
            "groupOrganizerName": organizer.get("name"),
            "reportedBy": reporter.uid,
            "reporterInfo": reporter.as_author(),
            "reason": reason,
            "details": details or "",
            "status": REQUEST_PENDING,
            "createdAt": now,
            "updatedAt": now,
        }
        report["id"] = store.create(db, REPORTS_COLLECTION, report)

        store.create(
            db,
            NOTIFICATIONS_COLLECTION,
            {
                "userId": membership.owner_id(group),
                "type": "group_reported",
                "title": "Signalement de votre groupe",
                "message": f'Votre groupe "{group.get("name")}" a été signalé pour: {reason}',
                "data": {
                    "groupId": group_id,
                    "groupName": group.get("name"),
                    "reportId": report["id"],
                    "reason": reason,
                },
                "isRead": False,
                "createdAt": now,
            },
        )

        if has_app_context():
            app = current_app._get_current_object()  # type: ignore[attr-defined]
            send_email_background(
                app,
                {
                    "to": app.config["REPORTS_EMAIL"],
                    "subject": f'[SIGNALEMENT] Groupe "{group.get("name")}"',
                    "template": "email/group_report.html",
                    "group": group,
                    "reporter": reporter.as_author(),
                    "report": report,
                },
            )
        return report
