"""Service functions for the group content feed."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from firebase_admin import firestore
from flask import current_app, has_app_context

from smaaks import store
from smaaks.core.constants import (
    COMMENTS_COLLECTION,
    FEED_LIMIT,
    GROUP_MESSAGES_COLLECTION,
    GROUPS_COLLECTION,
    POSTS_COLLECTION,
    REACTION_EMOJIS,
    REACTION_TYPES,
    REACTIONS_SUBCOLLECTION,
)
from smaaks.core.timestamps import sort_key, utcnow
from smaaks.errors import (
    NotAMember,
    NotFoundError,
    PermissionDenied,
    ValidationError,
    WriteFailed,
)
from smaaks.group.services.membership import can_manage, get_member_role, load_entity
from smaaks.notifications.dispatcher import group_topic, notify_topic, preview

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

    from smaaks.auth.models import Identity
    from smaaks.group.models import Comment, Post

POST_TITLE = "📢 Nouveau post dans votre groupe"
CHAT_TITLE = "💬 Nouveau message dans le chat"


def _require_member(db: Client, group: dict[str, Any], uid: str) -> str:
    role = get_member_role(db, group, uid)
    if role is None:
        raise NotAMember()
    return role


def _load_post(db: Client, post_id: str) -> dict[str, Any]:
    post = store.get(db, POSTS_COLLECTION, post_id)
    if post is None:
        raise NotFoundError("Publication introuvable.")
    return post


def _reactions_ref(db: Client, post_id: str):
    return (
        db.collection(POSTS_COLLECTION)
        .document(post_id)
        .collection(REACTIONS_SUBCOLLECTION)
    )


def load_reactions(db: Client, post_id: str) -> dict[str, list[dict[str, Any]]]:
    """Return the reactions of a post grouped by kind, oldest first."""
    reactions: dict[str, list[dict[str, Any]]] = {}
    for doc in _reactions_ref(db, post_id).stream():
        data = doc.to_dict() or {}
        kind = data.get("type")
        if kind not in REACTION_EMOJIS:
            continue
        reactions.setdefault(kind, []).append(
            {"userId": doc.id, "createdAt": data.get("createdAt")}
        )
    for entries in reactions.values():
        entries.sort(key=lambda r: sort_key(r.get("createdAt")))
    return reactions


def create_post(
    db: Client,
    group_id: str,
    author: Identity,
    text: str = "",
    images: list[str] | None = None,
) -> dict[str, Any]:
    """Publish a post in a group and notify its members."""
    text = (text or "").strip()
    images = [url for url in images or [] if url]
    if not text and not images:
        raise ValidationError("La publication est vide.")

    group = load_entity(db, group_id)
    role = _require_member(db, group, author.uid)

    now = utcnow()
    author_info = author.as_author()
    author_info["role"] = role
    post: dict[str, Any] = {
        "groupId": group_id,
        "authorId": author.uid,
        "authorInfo": author_info,
        "content": {"text": text, "images": images},
        "isPinned": False,
        "commentsCount": 0,
        "createdAt": now,
        "updatedAt": now,
    }
    post["id"] = store.create(db, POSTS_COLLECTION, post)
    post["reactions"] = {}

    notify_topic(
        group_topic(group_id), POST_TITLE, f"{author.name} a publié quelque chose"
    )
    return post


def get_post(db: Client, post_id: str) -> Post:
    """Fetch a post with its reactions."""
    post = _load_post(db, post_id)
    post["reactions"] = load_reactions(db, post_id)
    return cast("Post", post)


def toggle_reaction(
    db: Client, post_id: str, identity: Identity, kind: str
) -> dict[str, list[dict[str, Any]]]:
    """Add, switch or remove the user's reaction on a post.

    Each user has a single reaction document per post, so setting a new kind
    replaces the previous one and a user can never hold two kinds at once.
    Returns the reactions of the post after the change.
    """
    if kind not in REACTION_TYPES:
        raise ValidationError("Réaction inconnue.")
    post = _load_post(db, post_id)
    group = load_entity(db, post["groupId"])
    _require_member(db, group, identity.uid)

    reaction_ref = _reactions_ref(db, post_id).document(identity.uid)
    current = reaction_ref.get()
    try:
        if current.exists and (current.to_dict() or {}).get("type") == kind:
            reaction_ref.delete()
        else:
            reaction_ref.set(
                {"userId": identity.uid, "type": kind, "createdAt": utcnow()}
            )
    except Exception as e:
        if has_app_context():
            current_app.logger.error(f"Error toggling reaction on {post_id}: {e}")
        raise WriteFailed("Erreur lors de la réaction.") from e
    return load_reactions(db, post_id)


def reaction_summary(
    post: dict[str, Any], viewer_id: str | None = None
) -> list[dict[str, Any]]:
    """Summarize the non-empty reaction kinds of a post, most used first."""
    summary = []
    for kind, entries in (post.get("reactions") or {}).items():
        if not entries or kind not in REACTION_EMOJIS:
            continue
        summary.append(
            {
                "type": kind,
                "emoji": REACTION_EMOJIS[kind],
                "count": len(entries),
                "userReacted": any(e.get("userId") == viewer_id for e in entries),
            }
        )
    summary.sort(key=lambda s: s["count"], reverse=True)
    return summary


def _set_pinned(db: Client, post_id: str, actor: Identity, pinned: bool) -> None:
    post = _load_post(db, post_id)
    group = load_entity(db, post["groupId"])
    if not can_manage(get_member_role(db, group, actor.uid)):
        raise PermissionDenied("Seuls les modérateurs peuvent épingler.")
    patch: dict[str, Any] = {"isPinned": pinned, "updatedAt": utcnow()}
    if pinned:
        patch["pinnedBy"] = actor.uid
    store.update(db, POSTS_COLLECTION, post_id, patch)


def pin_post(db: Client, post_id: str, actor: Identity) -> None:
    """Pin a post to the top of the feed."""
    _set_pinned(db, post_id, actor, True)


def unpin_post(db: Client, post_id: str, actor: Identity) -> None:
    """Unpin a post."""
    _set_pinned(db, post_id, actor, False)


def add_comment(
    db: Client, post_id: str, author: Identity, text: str
) -> dict[str, Any]:
    """Comment on a post and bump its comment counter in the same batch."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Le commentaire est vide.")
    post = _load_post(db, post_id)
    group = load_entity(db, post["groupId"])
    _require_member(db, group, author.uid)

    now = utcnow()
    comment: dict[str, Any] = {
        "postId": post_id,
        "groupId": post["groupId"],
        "authorId": author.uid,
        "authorInfo": author.as_author(),
        "content": text,
        "createdAt": now,
        "updatedAt": now,
    }
    comment_ref = db.collection(COMMENTS_COLLECTION).document()
    batch = db.batch()
    batch.set(comment_ref, comment)
    batch.update(
        db.collection(POSTS_COLLECTION).document(post_id),
        {"commentsCount": firestore.Increment(1), "updatedAt": now},
    )
    store.commit(batch)
    comment["id"] = comment_ref.id
    return comment


def list_comments(db: Client, post_id: str) -> list[Comment]:
    """Return the comments of a post, oldest first."""
    comments = store.query(db, COMMENTS_COLLECTION, [("postId", "==", post_id)])
    comments.sort(key=lambda c: sort_key(c.get("createdAt")))
    return cast("list[Comment]", comments)


def sort_feed(posts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order posts pinned first, then newest first within each part."""
    newest_first = sorted(
        posts, key=lambda p: sort_key(p.get("createdAt")), reverse=True
    )
    return sorted(newest_first, key=lambda p: not p.get("isPinned"))


def get_feed(
    db: Client,
    group_id: str,
    viewer: Identity | None = None,
    limit: int = FEED_LIMIT,
) -> list[dict[str, Any]]:
    """Return the feed of a group with reactions attached.

    Private groups only show their feed to members.
    """
    group = load_entity(db, group_id)
    settings = group.get("settings") or {}
    if settings.get("isPrivate") and (
        viewer is None or get_member_role(db, group, viewer.uid) is None
    ):
        raise PermissionDenied("Ce groupe est privé.")

    posts = sort_feed(store.query(db, POSTS_COLLECTION, [("groupId", "==", group_id)]))
    if limit:
        posts = posts[:limit]
    for post in posts:
        post["reactions"] = load_reactions(db, post["id"])
    return posts


def delete_post(db: Client, post_id: str, actor: Identity) -> int:
    """Delete a post with its reactions and comments.

    Allowed for the author and for the group's moderators. Returns the
    number of deleted documents.
    """
    post = _load_post(db, post_id)
    if post.get("authorId") != actor.uid:
        group = load_entity(db, post["groupId"])
        if not can_manage(get_member_role(db, group, actor.uid)):
            raise PermissionDenied()

    refs = [doc.reference for doc in _reactions_ref(db, post_id).stream()]
    refs.extend(
        db.collection(COMMENTS_COLLECTION).document(comment["id"])
        for comment in list_comments(db, post_id)
    )
    refs.append(db.collection(POSTS_COLLECTION).document(post_id))
    return store.delete_refs(db, refs)


def send_group_chat_message(
    db: Client, group_id: str, author: Identity, text: str
) -> dict[str, Any]:
    """Post a message in the group chat and notify the group topic."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Le message est vide.")
    group = load_entity(db, group_id, GROUPS_COLLECTION)
    _require_member(db, group, author.uid)

    message: dict[str, Any] = {
        "groupId": group_id,
        "authorId": author.uid,
        "authorInfo": author.as_author(),
        "content": text,
        "createdAt": utcnow(),
    }
    message["id"] = store.create(db, GROUP_MESSAGES_COLLECTION, message)
    notify_topic(group_topic(group_id), CHAT_TITLE, f"{author.name}: {preview(text)}")
    return message
